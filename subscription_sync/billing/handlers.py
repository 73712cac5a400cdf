"""
Paid / Cancelled webhook flows.

Both flows commit exactly one ledger row and only then touch the gateway's
schedule for the next cycle. Schedule work is best-effort: once the ledger
row exists the webhook has succeeded, and a schedule failure is reported
through `HandlerResult.reconciliation` instead of an exception.

A redelivery finds its row already committed and re-runs only the schedule
step against that row, so a worker lost between the two steps heals on the
gateway's next attempt.
"""
import logging
import uuid
from enum import Enum
from typing import Callable, NamedTuple, Optional

from subscription_sync.errors import NonFatalReconciliationError, NotFoundError, UpstreamError
from subscription_sync.models import Payment
from .gateway import PaymentDetail, PortOneClient
from .ledger import SubscriptionLedger
from .periods import PeriodCalculator, as_utc

logger = logging.getLogger(__name__)

# PortOne answers 409 when a schedule for that paymentId already exists
HTTP_CONFLICT = 409


class Reconciliation(str, Enum):
    COMPLETE = "complete"   # ledger committed, gateway schedule in sync
    SKIPPED = "skipped"     # ledger committed, nothing to do on the gateway
    FAILED = "failed"       # ledger committed, schedule needs operator follow-up


class HandlerResult(NamedTuple):
    entry: Payment
    reconciliation: Reconciliation
    reason: Optional[str] = None
    duplicate: bool = False

    @property
    def needs_follow_up(self) -> bool:
        return self.reconciliation is Reconciliation.FAILED


def _new_schedule_id() -> str:
    return str(uuid.uuid4())


class PaidEventHandler:
    message = "Webhook processed"

    def __init__(
        self,
        gateway: PortOneClient,
        ledger: SubscriptionLedger,
        calculator: PeriodCalculator,
        currency: str = "KRW",
        id_factory: Callable[[], str] = _new_schedule_id,
    ):
        self.gateway = gateway
        self.ledger = ledger
        self.calculator = calculator
        self.currency = currency
        self.id_factory = id_factory

    def handle(self, payment_id: str) -> HandlerResult:
        detail = self.gateway.get_payment(payment_id)
        logger.info("Payment %s resolved: amount=%s billing_key=%s",
                    payment_id, detail.amount_total, bool(detail.billing_key))

        period = self.calculator.compute_period()
        appended = self.ledger.append_paid(
            transaction_key=payment_id,
            amount=detail.amount_total,
            period=period,
            next_schedule_id=self.id_factory(),
        )
        entry = appended.entry
        duplicate = appended.duplicate

        if not detail.billing_key:
            logger.info("No billing key on %s; one-time payment, next cycle not scheduled", payment_id)
            return HandlerResult(entry, Reconciliation.SKIPPED, "no billing key", duplicate=duplicate)

        if duplicate:
            # An earlier attempt may have died between the commit and the
            # schedule call. Replay it with the stored id and time.
            logger.info("Redelivery for %s; re-checking schedule %s", payment_id, entry.next_schedule_id)
            time_to_pay = as_utc(entry.next_schedule_at)
        else:
            time_to_pay = period.next_schedule_at

        try:
            self._schedule_next_cycle(detail, entry.next_schedule_id, time_to_pay, existing_ok=duplicate)
        except NonFatalReconciliationError as e:
            logger.warning("Next cycle for %s not scheduled: %s", payment_id, e)
            return HandlerResult(entry, Reconciliation.FAILED, str(e), duplicate=duplicate)

        return HandlerResult(entry, Reconciliation.COMPLETE, duplicate=duplicate)

    def _schedule_next_cycle(self, detail: PaymentDetail, schedule_id: str, time_to_pay, existing_ok: bool = False) -> None:
        try:
            self.gateway.create_schedule(
                schedule_id,
                billing_key=detail.billing_key,
                order_name=detail.order_name,
                customer_id=detail.customer_id,
                amount_total=detail.amount_total,
                currency=self.currency,
                time_to_pay=time_to_pay,
            )
        except UpstreamError as e:
            if existing_ok and e.status_code == HTTP_CONFLICT:
                logger.info("Schedule %s already registered", schedule_id)
                return
            raise NonFatalReconciliationError(f"schedule creation failed: {e}") from e
        logger.info("Scheduled next cycle %s at %s", schedule_id, time_to_pay)


class CancelledEventHandler:
    message = "Cancellation processed"

    def __init__(self, gateway: PortOneClient, ledger: SubscriptionLedger, calculator: PeriodCalculator):
        self.gateway = gateway
        self.ledger = ledger
        self.calculator = calculator

    @staticmethod
    def canonical_key(detail: PaymentDetail, payment_id: str) -> str:
        return detail.gateway_payment_id or detail.id or payment_id

    def handle(self, payment_id: str) -> HandlerResult:
        detail = self.gateway.get_payment(payment_id)
        key = self.canonical_key(detail, payment_id)

        paid = self.ledger.latest_paid(key)
        if paid is None:
            raise NotFoundError(f"No Paid ledger entry found for transaction key {key}")

        appended = self.ledger.append_reversal(paid)
        entry = appended.entry
        duplicate = appended.duplicate

        if not (detail.billing_key and paid.next_schedule_at and paid.next_schedule_id):
            logger.info("Nothing scheduled to cancel for %s", key)
            return HandlerResult(entry, Reconciliation.SKIPPED, "no pending schedule to cancel", duplicate=duplicate)

        try:
            # On a redelivery the schedule may already be gone
            self._cancel_next_cycle(detail.billing_key, paid, missing_ok=duplicate)
        except NonFatalReconciliationError as e:
            logger.warning("Next cycle for %s not cancelled: %s", key, e)
            return HandlerResult(entry, Reconciliation.FAILED, str(e), duplicate=duplicate)

        return HandlerResult(entry, Reconciliation.COMPLETE, duplicate=duplicate)

    def _cancel_next_cycle(self, billing_key: str, paid: Payment, missing_ok: bool = False) -> None:
        from_, until = self.calculator.schedule_search_window(paid.next_schedule_at)
        try:
            schedules = self.gateway.query_payment_schedules(billing_key, from_, until)
        except UpstreamError as e:
            raise NonFatalReconciliationError(f"schedule lookup failed: {e}") from e

        # Correlate on the id we minted, never on the timestamp
        target = next((s for s in schedules if s.payment_id == paid.next_schedule_id), None)
        if target is None:
            if missing_ok:
                logger.info("Schedule for paymentId %s already cancelled", paid.next_schedule_id)
                return
            raise NonFatalReconciliationError(
                f"no pending schedule with paymentId {paid.next_schedule_id} between {from_} and {until}"
            )

        try:
            self.gateway.cancel_schedules([target.id])
        except UpstreamError as e:
            raise NonFatalReconciliationError(f"schedule cancellation failed: {e}") from e
        logger.info("Cancelled schedule %s (paymentId %s)", target.id, paid.next_schedule_id)

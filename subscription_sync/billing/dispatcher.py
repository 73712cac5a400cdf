import logging
from typing import Any, Dict, NamedTuple, Tuple

from sqlalchemy.exc import SQLAlchemyError

from subscription_sync.errors import ValidationError
from subscription_sync.models import WebhookDelivery
from subscription_sync.models.webhook_delivery import (
    OUTCOME_COMMITTED,
    OUTCOME_DUPLICATE,
    OUTCOME_FAILED,
    OUTCOME_IGNORED,
    OUTCOME_RECONCILIATION_FAILED,
    OUTCOME_REJECTED,
)
from subscription_sync.observability import log_event
from .handlers import HandlerResult

logger = logging.getLogger(__name__)

EVENT_PAID = "Paid"
EVENT_CANCELLED = "Cancelled"


class WebhookEvent(NamedTuple):
    payment_id: str
    status: str

    @classmethod
    def parse(cls, payload: Any) -> "WebhookEvent":
        if not isinstance(payload, dict):
            raise ValidationError("Webhook body must be a JSON object")
        payment_id = payload.get("payment_id")
        if not isinstance(payment_id, str) or not payment_id.strip():
            raise ValidationError("payment_id is required")
        status = payload.get("status")
        if not isinstance(status, str):
            raise ValidationError("status is required")
        # The id is the ledger's transaction key; keep it byte-for-byte
        return cls(payment_id, status)


def _outcome(result: HandlerResult) -> str:
    if result.needs_follow_up:
        return OUTCOME_RECONCILIATION_FAILED
    if result.duplicate:
        return OUTCOME_DUPLICATE
    return OUTCOME_COMMITTED


class WebhookDispatcher:
    """
    Entry point for PortOne deliveries: validates, routes to the Paid or
    Cancelled flow and shapes the response. Delivery is at-least-once;
    replays are absorbed by the ledger's (transaction_key, status) guard.
    """

    def __init__(self, paid_handler, cancelled_handler, db):
        self.handlers = {
            EVENT_PAID: paid_handler,
            EVENT_CANCELLED: cancelled_handler,
        }
        self.db = db

    def dispatch(self, payload: Any) -> Tuple[Dict[str, Any], int]:
        raw_id = payload.get("payment_id") if isinstance(payload, dict) else None
        raw_id = raw_id if isinstance(raw_id, str) else None

        status = payload.get("status") if isinstance(payload, dict) else None
        handler = self.handlers.get(status) if isinstance(status, str) else None
        if isinstance(payload, dict) and handler is None:
            # Any other tag, or none at all: acknowledge so the gateway stops retrying
            logger.info("Ignoring PortOne webhook status %r for %s", status, raw_id)
            self._record(raw_id, None if status is None else str(status)[:32], OUTCOME_IGNORED)
            return {"success": True}, 200

        try:
            event = WebhookEvent.parse(payload)
        except ValidationError as e:
            logger.warning("Rejected PortOne webhook: %s", e)
            self._record(raw_id, status if handler else None, OUTCOME_REJECTED, str(e))
            return {"success": False, "error": str(e)}, 400

        try:
            result = handler.handle(event.payment_id)
        except Exception as e:
            logger.exception("PortOne webhook %s for %s failed", event.status, event.payment_id)
            self.db.session.rollback()
            message = str(e) or type(e).__name__
            self._record(event.payment_id, event.status, OUTCOME_FAILED, f"{type(e).__name__}: {message}")
            return {"success": False, "error": message}, 500

        outcome = _outcome(result)
        log_event(
            logger,
            "portone_webhook",
            payment_id=event.payment_id,
            status=event.status,
            outcome=outcome,
            reconciliation=result.reconciliation.value,
            reason=result.reason,
            ledger_id=result.entry.id,
        )
        self._record(event.payment_id, event.status, outcome, result.reason)

        body = {
            "success": True,
            "message": handler.message,
            "payment": result.entry.to_dict(),
            "reconciliation": result.reconciliation.value,
        }
        if result.duplicate:
            body["duplicate"] = True
        return body, 200

    def _record(self, payment_id, status, outcome: str, notes: str | None = None) -> None:
        session = self.db.session
        try:
            session.add(WebhookDelivery(
                payment_id=payment_id,
                status=status,
                outcome=outcome,
                notes=(notes or None) and notes[:255],
            ))
            session.commit()
        except SQLAlchemyError:
            # Audit row is secondary to the ledger
            session.rollback()
            logger.exception("Could not record webhook delivery for %s", payment_id)

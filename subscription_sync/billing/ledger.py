import logging
from datetime import datetime
from typing import Callable, List, NamedTuple, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from subscription_sync.errors import PersistenceError
from subscription_sync.models import Payment, STATUS_CANCEL, STATUS_PAID
from .periods import BillingPeriod, as_utc, utc_now

logger = logging.getLogger(__name__)


class AppendResult(NamedTuple):
    entry: Payment
    duplicate: bool = False


def _newest_first():
    return (Payment.created_at.desc(), Payment.id.desc())


class SubscriptionLedger:
    """
    Append-only access to the `payment` table. All "latest row wins" reads
    go through here so the webhook flow and the status endpoint agree.
    """

    def __init__(self, db, clock: Callable[[], datetime] = utc_now):
        self.db = db
        self.clock = clock

    @property
    def session(self):
        return self.db.session

    # ----- writes -----

    def append_paid(
        self,
        transaction_key: str,
        amount: int,
        period: BillingPeriod,
        next_schedule_id: str,
    ) -> AppendResult:
        return self._append(Payment(
            transaction_key=transaction_key,
            amount=amount,
            status=STATUS_PAID,
            start_at=period.start_at,
            end_at=period.end_at,
            end_grace_at=period.end_grace_at,
            next_schedule_at=period.next_schedule_at,
            next_schedule_id=next_schedule_id,
            created_at=self.clock(),
        ))

    def append_reversal(self, paid: Payment) -> AppendResult:
        """Cancel row: negated amount, window fields copied from the Paid row."""
        return self._append(Payment(
            transaction_key=paid.transaction_key,
            amount=-paid.amount,
            status=STATUS_CANCEL,
            start_at=paid.start_at,
            end_at=paid.end_at,
            end_grace_at=paid.end_grace_at,
            next_schedule_at=paid.next_schedule_at,
            next_schedule_id=paid.next_schedule_id,
            created_at=self.clock(),
        ))

    def _append(self, entry: Payment) -> AppendResult:
        session = self.session
        session.add(entry)
        try:
            session.commit()
        except IntegrityError as e:
            session.rollback()
            existing = self._latest(entry.transaction_key, entry.status)
            if existing is None:
                raise PersistenceError(f"Ledger insert rejected: {e.orig}") from e
            logger.info(
                "Ledger row already exists for %s/%s (id=%s); treating as redelivery",
                entry.transaction_key, entry.status, existing.id,
            )
            return AppendResult(existing, duplicate=True)
        except SQLAlchemyError as e:
            session.rollback()
            raise PersistenceError(f"Ledger insert failed: {e}") from e
        return AppendResult(entry)

    # ----- reads -----

    def _scalar(self, stmt) -> Optional[Payment]:
        try:
            return self.session.execute(stmt).scalars().first()
        except SQLAlchemyError as e:
            self.session.rollback()
            raise PersistenceError(f"Ledger lookup failed: {e}") from e

    def _all(self, stmt) -> List[Payment]:
        try:
            return list(self.session.execute(stmt).scalars().all())
        except SQLAlchemyError as e:
            self.session.rollback()
            raise PersistenceError(f"Ledger lookup failed: {e}") from e

    def _latest(self, transaction_key: str, status: Optional[str] = None) -> Optional[Payment]:
        stmt = select(Payment).where(Payment.transaction_key == transaction_key)
        if status is not None:
            stmt = stmt.where(Payment.status == status)
        return self._scalar(stmt.order_by(*_newest_first()).limit(1))

    def latest_paid(self, transaction_key: str) -> Optional[Payment]:
        return self._latest(transaction_key, STATUS_PAID)

    def current_period(self, transaction_key: str, now: Optional[datetime] = None) -> Optional[Payment]:
        """
        The row that defines the key's subscription state right now: its
        newest row, provided that row is Paid and `now` is inside
        [start_at, end_grace_at]. A newer Cancel row hides the Paid one.
        """
        now = as_utc(now or self.clock())
        latest = self._latest(transaction_key)
        if latest is not None and latest.is_active_at(now):
            return latest
        return None

    def active_periods(self, now: Optional[datetime] = None) -> List[Payment]:
        """`current_period` for every transaction key, newest first."""
        now = as_utc(now or self.clock())
        ranked = select(
            Payment.id.label("id"),
            func.row_number().over(
                partition_by=Payment.transaction_key,
                order_by=_newest_first(),
            ).label("rn"),
        ).subquery()
        stmt = (
            select(Payment)
            .join(ranked, ranked.c.id == Payment.id)
            .where(ranked.c.rn == 1)
            .order_by(*_newest_first())
        )
        return [row for row in self._all(stmt) if row.is_active_at(now)]

    def entries(self, transaction_key: str) -> List[Payment]:
        stmt = (
            select(Payment)
            .where(Payment.transaction_key == transaction_key)
            .order_by(Payment.created_at.asc(), Payment.id.asc())
        )
        return self._all(stmt)

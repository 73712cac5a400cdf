from sqlalchemy import TIMESTAMP, CheckConstraint, UniqueConstraint, func
from subscription_sync.extensions import db
from subscription_sync.billing.periods import as_utc, isoformat_utc, utc_now

STATUS_PAID = "Paid"
STATUS_CANCEL = "Cancel"


class Payment(db.Model):
    """
    One append-only ledger row: a realized billing period (Paid) or its
    reversal (Cancel). Rows are never updated or deleted.
    """
    __tablename__ = "payment"

    id = db.Column(db.Integer, primary_key=True)
    transaction_key = db.Column(db.String(128), nullable=False, index=True)
    amount = db.Column(db.BigInteger, nullable=False)
    status = db.Column(db.String(16), nullable=False, index=True)

    start_at = db.Column(TIMESTAMP(timezone=True), nullable=False)
    end_at = db.Column(TIMESTAMP(timezone=True), nullable=False)
    end_grace_at = db.Column(TIMESTAMP(timezone=True), nullable=False)
    next_schedule_at = db.Column(TIMESTAMP(timezone=True), nullable=True)
    next_schedule_id = db.Column(db.String(64), nullable=True, index=True)

    created_at = db.Column(TIMESTAMP(timezone=True), nullable=False, default=utc_now, server_default=func.now())

    __table_args__ = (
        # One Paid and at most one Cancel per gateway payment; a redelivered
        # webhook collides here instead of opening a second period.
        UniqueConstraint("transaction_key", "status", name="uq_payment_transaction_key_status"),
        CheckConstraint("status IN ('Paid', 'Cancel')", name="ck_payment_status"),
    )

    def is_active_at(self, now) -> bool:
        return (
            self.status == STATUS_PAID
            and as_utc(self.start_at) <= as_utc(now) <= as_utc(self.end_grace_at)
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "transaction_key": self.transaction_key,
            "amount": self.amount,
            "status": self.status,
            "start_at": isoformat_utc(self.start_at),
            "end_at": isoformat_utc(self.end_at),
            "end_grace_at": isoformat_utc(self.end_grace_at),
            "next_schedule_at": isoformat_utc(self.next_schedule_at),
            "next_schedule_id": self.next_schedule_id,
            "created_at": isoformat_utc(self.created_at),
        }

    def __repr__(self) -> str:
        return f"<Payment id={self.id} transaction_key={self.transaction_key!r} status={self.status!r} amount={self.amount}>"

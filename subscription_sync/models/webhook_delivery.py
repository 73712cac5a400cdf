from sqlalchemy import TIMESTAMP, func
from subscription_sync.extensions import db
from subscription_sync.billing.periods import utc_now

OUTCOME_COMMITTED = "committed"
OUTCOME_DUPLICATE = "duplicate"
OUTCOME_RECONCILIATION_FAILED = "reconciliation_failed"
OUTCOME_IGNORED = "ignored"
OUTCOME_REJECTED = "rejected"
OUTCOME_FAILED = "failed"


class WebhookDelivery(db.Model):
    """Audit trail: one row per inbound PortOne webhook delivery."""
    __tablename__ = "webhook_deliveries"

    id = db.Column(db.Integer, primary_key=True)
    payment_id = db.Column(db.String(128), nullable=True, index=True)
    status = db.Column(db.String(32), nullable=True)
    outcome = db.Column(db.String(32), nullable=False, index=True)
    notes = db.Column(db.String(255), nullable=True)

    created_at = db.Column(TIMESTAMP(timezone=True), nullable=False, default=utc_now, server_default=func.now())

    def __repr__(self) -> str:
        return f"<WebhookDelivery id={self.id} payment_id={self.payment_id!r} outcome={self.outcome!r}>"

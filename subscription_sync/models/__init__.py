from .payment import Payment, STATUS_PAID, STATUS_CANCEL
from .webhook_delivery import WebhookDelivery

__all__ = ["Payment", "STATUS_PAID", "STATUS_CANCEL", "WebhookDelivery"]

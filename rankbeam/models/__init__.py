from rankbeam.models.license import License
from rankbeam.models.webhook_delivery import WebhookDelivery

__all__ = [
    "License",
    "WebhookDelivery",
]

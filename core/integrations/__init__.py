"""
Core Integrations: outbound connections to external systems.
"""
from core.integrations.webhooks import (
    WebhookClient,
    WebhookDelivery,
    sign_payload,
    verify_signature,
)

__all__ = [
    "WebhookClient",
    "WebhookDelivery",
    "sign_payload",
    "verify_signature",
]

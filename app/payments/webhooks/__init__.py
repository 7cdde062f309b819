"""
Webhook handling for payment gateway events.

Webhooks are authenticated by the gateway adapter and applied
synchronously by the reconciliation engine.

Usage:
    # In urls.py
    from payments.webhooks.views import process_webhook

    urlpatterns = [
        path("webhooks/<str:gateway>/", process_webhook, name="webhook"),
    ]
"""

from payments.webhooks.views import process_webhook

__all__ = [
    "process_webhook",
]

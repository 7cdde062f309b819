"""
Webhook endpoint for payment gateways.

One endpoint serves every configured gateway; the gateway name in the
URL selects the adapter that authenticates and parses the payload.
The view:
1. Passes the raw body and headers to PaymentService.process_webhook
2. Returns 400 when the signature is invalid
3. Returns 200 for every authenticated event, including duplicates and
   events for unknown transactions, so the gateway stops redelivering

Processing is synchronous: the engine's conditional updates are cheap,
and the gateway needs a non-2xx response to retry a failed write.

Usage:
    # In urls.py
    from payments.webhooks.views import process_webhook

    urlpatterns = [
        path("webhooks/<str:gateway>/", process_webhook, name="webhook"),
    ]
"""

from __future__ import annotations

import logging

from django.http import HttpRequest, JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_POST

from payments.services import PaymentService

logger = logging.getLogger(__name__)


@csrf_exempt
@require_POST
def process_webhook(request: HttpRequest, gateway: str) -> JsonResponse:
    """
    Receive and apply a gateway webhook.

    Security:
    - Signature verification happens in the gateway adapter
      (x-paystack-signature HMAC-SHA512, Stripe-Signature)
    - CSRF exemption required for external webhooks
    - Only POST requests accepted

    Returns:
        JsonResponse with status:
        - 200: Event accepted (applied, duplicate, or acknowledged)
        - 400: Invalid signature, payload or gateway
        - 500: Local failure; the gateway should redeliver
    """
    result = PaymentService.process_webhook(gateway, request.body, request.headers)

    if not result.success:
        logger.warning(
            "Webhook rejected",
            extra={"gateway": gateway, "error_code": result.error_code},
        )
    return JsonResponse(result.to_response(), status=result.http_status)

"""
Payment gateway adapters.

All external payment API calls go through these adapters to ensure
consistent error handling, timeouts and observability. The engine only
depends on the GatewayAdapter contract and looks adapters up through a
GatewayRegistry.

Usage:
    from payments.adapters import GatewayRegistry

    registry = GatewayRegistry.from_settings()
    adapter = registry.get("paystack")
    result = adapter.verify("ref_123", timeout=10)
"""

from payments.adapters.base import (
    GatewayAdapter,
    InitiateResult,
    RefundResult,
    VerifyResult,
    WebhookResult,
)
from payments.adapters.paystack_adapter import PaystackAdapter
from payments.adapters.registry import GatewayRegistry
from payments.adapters.stripe_adapter import IdempotencyKeyGenerator, StripeAdapter

__all__ = [
    "GatewayAdapter",
    "GatewayRegistry",
    "IdempotencyKeyGenerator",
    "InitiateResult",
    "PaystackAdapter",
    "RefundResult",
    "StripeAdapter",
    "VerifyResult",
    "WebhookResult",
]

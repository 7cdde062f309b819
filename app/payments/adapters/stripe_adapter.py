"""
Stripe API adapter.

Wraps the stripe SDK behind the GatewayAdapter contract: PaymentIntents
for charges, Refund.create for refunds and Webhook.construct_event for
webhook authentication. Amounts are sent in minor units.

Features:
- Per-call timeout via the SDK's RequestsClient
- Stripe exceptions translated to GatewayError subclasses
- Structured logging with timing metrics
- Deterministic idempotency keys on initiate so a retried request
  never creates a second PaymentIntent

Configuration (settings.PAYMENT_GATEWAYS["stripe"]["OPTIONS"]):
    secret_key: Stripe API secret key
    webhook_secret: Webhook signing secret (whsec_...)
"""

from __future__ import annotations

import hashlib
import time
import uuid
from decimal import Decimal
from typing import Any, Mapping

import stripe
from django.conf import settings

from core.helpers import from_minor_units, to_minor_units
from payments.adapters.base import (
    GatewayAdapter,
    InitiateResult,
    RefundResult,
    VerifyResult,
    WebhookResult,
)
from payments.exceptions import (
    GatewayError,
    GatewayRequestError,
    GatewayTimeoutError,
    GatewayUnavailableError,
    InvalidWebhookSignatureError,
)
from payments.state_machines import TransactionStatus, WebhookAction

# PaymentIntent status -> normalized status
STATUS_MAP = {
    "succeeded": TransactionStatus.COMPLETED,
    "processing": TransactionStatus.PROCESSING,
    "requires_payment_method": TransactionStatus.PENDING,
    "requires_confirmation": TransactionStatus.PENDING,
    "requires_action": TransactionStatus.PENDING,
    "requires_capture": TransactionStatus.PROCESSING,
    "canceled": TransactionStatus.FAILED,
}

WEBHOOK_ACTIONS = {
    "payment_intent.succeeded": WebhookAction.PAYMENT_COMPLETED,
    "payment_intent.payment_failed": WebhookAction.PAYMENT_FAILED,
    "payment_intent.canceled": WebhookAction.PAYMENT_FAILED,
}

SIGNATURE_HEADER = "Stripe-Signature"
PAYMENT_INTENT_PREFIX = "pi_"


# =============================================================================
# Idempotency Key Generator
# =============================================================================


class IdempotencyKeyGenerator:
    """
    Generate idempotency keys for Stripe API calls.

    Format: "{operation}:{entity_id}:{attempt}:{hash}"

    Example:
        key = IdempotencyKeyGenerator.generate("initiate", transaction.id)
        # "initiate:550e8400-e29b-41d4-a716-446655440000:1:a1b2c3d4"
    """

    @staticmethod
    def generate(operation: str, entity_id: uuid.UUID | str, attempt: int = 1) -> str:
        entity_str = str(entity_id)
        hash_input = f"{operation}:{entity_str}:{attempt}:{settings.SECRET_KEY}"
        short_hash = hashlib.sha256(hash_input.encode()).hexdigest()[:8]
        return f"{operation}:{entity_str}:{attempt}:{short_hash}"


def _stringify(metadata: Mapping[str, Any]) -> dict[str, str]:
    """Stripe metadata values must be strings."""
    return {str(k): "" if v is None else str(v) for k, v in (metadata or {}).items()}


# =============================================================================
# Stripe Adapter
# =============================================================================


class StripeAdapter(GatewayAdapter):
    """
    Adapter for Stripe PaymentIntents.

    Error translation:
        CardError on initiate     -> success=False result (declined)
        InvalidRequestError       -> GatewayRequestError
        AuthenticationError       -> GatewayUnavailableError (logged CRITICAL)
        RateLimitError / APIError -> GatewayUnavailableError (retryable)
        APIConnectionError        -> GatewayTimeoutError when the cause is
                                     a timeout, else GatewayUnavailableError
    """

    name = "stripe"
    supported_currencies = frozenset({"USD", "EUR", "GBP", "NGN", "GHS", "ZAR", "KES"})

    def __init__(
        self,
        name: str | None = None,
        secret_key: str = "",
        webhook_secret: str = "",
        **options: Any,
    ) -> None:
        super().__init__(name=name, **options)
        self.secret_key = secret_key
        self.webhook_secret = webhook_secret

    def _configure_stripe(self, timeout: float) -> None:
        """Configure the SDK with our key and the caller's timeout."""
        stripe.api_key = self.secret_key
        stripe.default_http_client = stripe.RequestsClient(timeout=timeout)

    # =========================================================================
    # Operations
    # =========================================================================

    def initiate(
        self,
        amount: Decimal,
        currency: str,
        reference: str,
        metadata: Mapping[str, Any],
        *,
        timeout: float,
    ) -> InitiateResult:
        self._configure_stripe(timeout)
        logger = self.get_logger()
        log_context = {
            "operation": "create_payment_intent",
            "reference": reference,
            "amount": str(amount),
            "currency": currency,
        }

        start_time = time.time()
        logger.info("Starting Stripe operation", extra=log_context)

        try:
            intent = stripe.PaymentIntent.create(
                amount=to_minor_units(amount),
                currency=currency.lower(),
                metadata=_stringify({**dict(metadata or {}), "reference": reference}),
                payment_method_types=["card"],
                idempotency_key=IdempotencyKeyGenerator.generate("initiate", reference),
            )
        except stripe.CardError as e:
            logger.warning(
                "Card declined by Stripe",
                extra={
                    **log_context,
                    "decline_code": getattr(e, "decline_code", None),
                    "duration_ms": (time.time() - start_time) * 1000,
                },
            )
            return InitiateResult(
                success=False,
                status=TransactionStatus.FAILED,
                raw={"error": str(e), "code": e.code},
                message=str(e.user_message or e),
            )
        except Exception as e:
            self._handle_stripe_error(e, log_context, (time.time() - start_time) * 1000)
            raise

        logger.info(
            "Stripe operation completed",
            extra={
                **log_context,
                "payment_intent_id": intent.id,
                "status": intent.status,
                "duration_ms": (time.time() - start_time) * 1000,
            },
        )

        status = STATUS_MAP.get(intent.status, TransactionStatus.PENDING)
        return InitiateResult(
            success=status != TransactionStatus.FAILED,
            gateway_reference=intent.id,
            status=status,
            raw=intent.to_dict(),
            message=intent.status,
        )

    def verify(self, gateway_reference: str, *, timeout: float) -> VerifyResult:
        self._configure_stripe(timeout)
        logger = self.get_logger()
        log_context = {
            "operation": "retrieve_payment_intent",
            "payment_intent_id": gateway_reference,
        }

        start_time = time.time()
        logger.debug("Starting Stripe operation", extra=log_context)

        try:
            if gateway_reference.startswith(PAYMENT_INTENT_PREFIX):
                intent = stripe.PaymentIntent.retrieve(gateway_reference)
            else:
                intent = self._find_intent(gateway_reference)
        except Exception as e:
            self._handle_stripe_error(e, log_context, (time.time() - start_time) * 1000)
            raise

        logger.debug(
            "Stripe operation completed",
            extra={
                **log_context,
                "status": intent.status,
                "duration_ms": (time.time() - start_time) * 1000,
            },
        )

        status = STATUS_MAP.get(intent.status, TransactionStatus.PENDING)
        error = intent.last_payment_error or {}
        return VerifyResult(
            success=status == TransactionStatus.COMPLETED,
            status=status,
            amount=from_minor_units(intent.amount_received or intent.amount),
            currency=(intent.currency or "").upper() or None,
            payment_method=(intent.payment_method_types or [""])[0],
            gateway_reference=intent.id,
            raw=intent.to_dict(),
            message=error.get("message", "") if isinstance(error, dict) else str(error),
            metadata=dict(intent.metadata or {}),
        )

    def _find_intent(self, reference: str):
        """
        Look a PaymentIntent up by the reference we sent on initiate.

        Used when initiate timed out before the intent id was stored.
        """
        found = stripe.PaymentIntent.search(
            query=f"metadata['reference']:'{reference}'",
            limit=1,
        )
        if not found.data:
            raise GatewayRequestError(
                f"No PaymentIntent found for reference {reference}",
                error_code="UNKNOWN_REFERENCE",
                gateway=self.name,
                details={"reference": reference},
            )
        return found.data[0]

    def refund(
        self,
        gateway_reference: str,
        amount: Decimal,
        reason: str,
        *,
        timeout: float,
    ) -> RefundResult:
        self._configure_stripe(timeout)
        logger = self.get_logger()
        minor = to_minor_units(amount)
        log_context = {
            "operation": "create_refund",
            "payment_intent_id": gateway_reference,
            "amount": str(amount),
        }

        start_time = time.time()
        logger.info("Starting Stripe operation", extra=log_context)

        try:
            refund = stripe.Refund.create(
                payment_intent=gateway_reference,
                amount=minor,
                metadata={"reason": reason or ""},
            )
        except Exception as e:
            self._handle_stripe_error(e, log_context, (time.time() - start_time) * 1000)
            raise

        logger.info(
            "Stripe operation completed",
            extra={
                **log_context,
                "refund_id": refund.id,
                "status": refund.status,
                "duration_ms": (time.time() - start_time) * 1000,
            },
        )

        return RefundResult(
            success=refund.status in ("succeeded", "pending"),
            refund_id=refund.id,
            amount=from_minor_units(refund.amount),
            status=refund.status,
            raw=refund.to_dict(),
            message=refund.failure_reason or "",
        )

    # =========================================================================
    # Webhook Verification
    # =========================================================================

    def parse_webhook(self, payload: bytes, headers: Mapping[str, str]) -> WebhookResult:
        signature = headers.get(SIGNATURE_HEADER) or headers.get(SIGNATURE_HEADER.lower())
        if not signature:
            raise InvalidWebhookSignatureError(
                "Missing Stripe signature",
                details={"gateway": self.name},
            )

        try:
            event = stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        except stripe.SignatureVerificationError as e:
            self.get_logger().warning(
                "Invalid Stripe webhook signature",
                extra={"gateway": self.name},
            )
            raise InvalidWebhookSignatureError(
                "Invalid Stripe signature",
                details={"gateway": self.name, "error": str(e)},
            ) from e
        except ValueError as e:
            raise InvalidWebhookSignatureError(
                "Webhook body is not valid JSON",
                details={"gateway": self.name},
            ) from e

        event_dict = event.to_dict()
        event_type = event_dict.get("type", "")
        obj = (event_dict.get("data") or {}).get("object") or {}
        methods = obj.get("payment_method_types") or [""]

        return WebhookResult(
            valid=True,
            action=WEBHOOK_ACTIONS.get(event_type, WebhookAction.EVENT_RECEIVED),
            gateway_reference=obj.get("id") if obj.get("object") == "payment_intent" else None,
            raw=event_dict,
            amount=from_minor_units(obj.get("amount_received") or obj.get("amount")),
            currency=(obj.get("currency") or "").upper() or None,
            payment_method=methods[0],
            metadata=dict(obj.get("metadata") or {}),
            event=event_type,
        )

    # =========================================================================
    # Error Handling
    # =========================================================================

    def _handle_stripe_error(
        self,
        error: Exception,
        log_context: dict[str, Any],
        duration_ms: float,
    ) -> None:
        """
        Translate Stripe exceptions to GatewayError subclasses.

        Always raises.
        """
        logger = self.get_logger()
        log_context = {**log_context, "duration_ms": duration_ms}

        if isinstance(error, GatewayError):
            raise error

        if isinstance(error, stripe.CardError):
            logger.warning("Card error from Stripe", extra=log_context)
            raise GatewayRequestError(
                str(error.user_message or error),
                error_code="CARD_DECLINED",
                gateway=self.name,
                details={"stripe_code": error.code},
            ) from error

        if isinstance(error, stripe.InvalidRequestError):
            logger.error(
                "Invalid request to Stripe",
                extra={**log_context, "stripe_code": error.code},
            )
            raise GatewayRequestError(
                str(error),
                gateway=self.name,
                details={"stripe_code": error.code},
            ) from error

        if isinstance(error, stripe.AuthenticationError):
            logger.critical("Stripe authentication failed - check API key", extra=log_context)
            raise GatewayUnavailableError(
                "Stripe authentication failed",
                error_code="GATEWAY_AUTHENTICATION_FAILED",
                gateway=self.name,
            ) from error

        if isinstance(error, stripe.RateLimitError):
            logger.warning("Rate limited by Stripe", extra=log_context)
            raise GatewayUnavailableError(
                "Stripe rate limit exceeded",
                gateway=self.name,
            ) from error

        if isinstance(error, stripe.APIConnectionError):
            message = str(error).lower()
            if "timeout" in message or "timed out" in message:
                logger.warning("Stripe request timed out", extra=log_context)
                raise GatewayTimeoutError(
                    "Stripe did not answer in time",
                    gateway=self.name,
                ) from error
            logger.error("Connection error to Stripe", extra=log_context, exc_info=True)
            raise GatewayUnavailableError(
                "Could not connect to Stripe",
                gateway=self.name,
            ) from error

        if isinstance(error, stripe.APIError):
            logger.error("Stripe API error", extra=log_context, exc_info=True)
            raise GatewayUnavailableError(
                "Stripe service error",
                gateway=self.name,
            ) from error

        logger.error(
            f"Unexpected error from Stripe: {type(error).__name__}",
            extra=log_context,
            exc_info=True,
        )
        raise GatewayUnavailableError(
            f"Unexpected Stripe error: {error}",
            gateway=self.name,
        ) from error

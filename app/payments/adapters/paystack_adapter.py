"""
Paystack API adapter.

Talks to the Paystack REST API with requests. Amounts go over the wire
in kobo (minor units) and come back as Decimals in major units.

Endpoints used:
    POST /transaction/initialize
    GET  /transaction/verify/{reference}
    POST /refund

Webhooks are authenticated with the x-paystack-signature header: the
hex HMAC-SHA512 of the raw request body keyed with the secret key.

Configuration (settings.PAYMENT_GATEWAYS["paystack"]["OPTIONS"]):
    secret_key: Paystack secret key (sk_live_... / sk_test_...)
    base_url: API root (default: https://api.paystack.co)
    callback_url: Where Paystack redirects the customer after payment
    default_email: Used when the caller supplies no customer email
"""

from __future__ import annotations

import hashlib
import hmac
import json
import time
from decimal import Decimal
from typing import Any, Mapping

import requests

from core.helpers import from_minor_units, to_minor_units
from payments.adapters.base import (
    GatewayAdapter,
    InitiateResult,
    RefundResult,
    VerifyResult,
    WebhookResult,
)
from payments.exceptions import (
    GatewayRequestError,
    GatewayTimeoutError,
    GatewayUnavailableError,
    InvalidWebhookSignatureError,
)
from payments.state_machines import TransactionStatus, WebhookAction

# Paystack transaction status -> normalized status
STATUS_MAP = {
    "success": TransactionStatus.COMPLETED,
    "failed": TransactionStatus.FAILED,
    "abandoned": TransactionStatus.FAILED,
    "reversed": TransactionStatus.FAILED,
    "ongoing": TransactionStatus.PENDING,
    "pending": TransactionStatus.PENDING,
    "queued": TransactionStatus.PENDING,
    "processing": TransactionStatus.PROCESSING,
}

SIGNATURE_HEADER = "x-paystack-signature"

# Our payment method names -> Paystack channels
CHANNELS = {
    "card": "card",
    "bank": "bank",
    "bank_transfer": "bank_transfer",
    "ussd": "ussd",
    "qr": "qr",
    "mobile_money": "mobile_money",
}


def _header(headers: Mapping[str, str], name: str) -> str | None:
    """Case-insensitive header lookup for plain dicts and HttpHeaders."""
    value = headers.get(name)
    if value is not None:
        return value
    lowered = name.lower()
    for key, val in headers.items():
        if key.lower() == lowered:
            return val
    return None


class PaystackAdapter(GatewayAdapter):
    """
    Adapter for Paystack (NGN, GHS, ZAR, USD).

    Stateless apart from configuration; one instance is shared per
    process by the GatewayRegistry.

    Error translation:
        requests.Timeout            -> GatewayTimeoutError (retryable)
        ConnectionError / 5xx / 429 -> GatewayUnavailableError (retryable)
        401 / 403, non-JSON body   -> GatewayUnavailableError (retryable)
        unknown ref on verify       -> GatewayRequestError
        status=false on init/refund -> success=False result (declined)
    """

    name = "paystack"
    supported_currencies = frozenset({"NGN", "GHS", "ZAR", "USD"})

    DEFAULT_BASE_URL = "https://api.paystack.co"

    def __init__(
        self,
        name: str | None = None,
        secret_key: str = "",
        base_url: str | None = None,
        callback_url: str | None = None,
        default_email: str = "customer@example.com",
        **options: Any,
    ) -> None:
        super().__init__(name=name, **options)
        self.secret_key = secret_key
        self.base_url = (base_url or self.DEFAULT_BASE_URL).rstrip("/")
        self.callback_url = callback_url
        self.default_email = default_email

    # =========================================================================
    # HTTP plumbing
    # =========================================================================

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.secret_key}",
            "Content-Type": "application/json",
        }

    def _request(
        self,
        method: str,
        path: str,
        *,
        timeout: float,
        payload: dict[str, Any] | None = None,
        log_context: dict[str, Any],
    ) -> tuple[int, dict[str, Any]]:
        """
        Perform one API call and return (http_status, json_body).

        4xx bodies are returned to the caller, which decides whether the
        operation was declined. Everything else that is not a usable
        response raises a GatewayError subclass.
        """
        logger = self.get_logger()
        url = f"{self.base_url}{path}"
        start_time = time.time()
        logger.info("Starting Paystack operation", extra=log_context)

        try:
            response = requests.request(
                method,
                url,
                json=payload,
                headers=self._headers(),
                timeout=timeout,
            )
        except requests.Timeout as e:
            duration_ms = (time.time() - start_time) * 1000
            logger.warning(
                "Paystack request timed out",
                extra={**log_context, "duration_ms": duration_ms},
            )
            raise GatewayTimeoutError(
                f"Paystack did not answer within {timeout}s",
                gateway=self.name,
            ) from e
        except requests.RequestException as e:
            duration_ms = (time.time() - start_time) * 1000
            logger.error(
                "Connection error to Paystack",
                extra={**log_context, "duration_ms": duration_ms},
                exc_info=True,
            )
            raise GatewayUnavailableError(
                "Could not connect to Paystack",
                gateway=self.name,
            ) from e

        duration_ms = (time.time() - start_time) * 1000
        log_context = {
            **log_context,
            "http_status": response.status_code,
            "duration_ms": duration_ms,
        }

        if response.status_code in (401, 403):
            logger.critical("Paystack authentication failed - check secret key", extra=log_context)
            raise GatewayUnavailableError(
                "Paystack authentication failed",
                error_code="GATEWAY_AUTHENTICATION_FAILED",
                gateway=self.name,
                details={"http_status": response.status_code},
            )

        if response.status_code == 429 or response.status_code >= 500:
            logger.error("Paystack service error", extra=log_context)
            raise GatewayUnavailableError(
                f"Paystack returned HTTP {response.status_code}",
                gateway=self.name,
                details={"http_status": response.status_code},
            )

        try:
            body = response.json()
        except ValueError as e:
            logger.error("Paystack returned a non-JSON body", extra=log_context)
            raise GatewayUnavailableError(
                "Unreadable response from Paystack",
                gateway=self.name,
                details={"http_status": response.status_code},
            ) from e

        if not isinstance(body, dict):
            raise GatewayUnavailableError(
                "Unexpected response shape from Paystack",
                gateway=self.name,
            )

        logger.info("Paystack operation completed", extra=log_context)
        return response.status_code, body

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
        metadata = dict(metadata or {})
        payload: dict[str, Any] = {
            "email": metadata.get("email") or self.default_email,
            "amount": to_minor_units(amount),
            "currency": currency.upper(),
            "reference": reference,
            "metadata": metadata,
        }
        if self.callback_url:
            payload["callback_url"] = self.callback_url
        channel = CHANNELS.get(metadata.get("payment_method", ""))
        if channel:
            payload["channels"] = [channel]

        _, body = self._request(
            "POST",
            "/transaction/initialize",
            timeout=timeout,
            payload=payload,
            log_context={
                "operation": "initialize",
                "reference": reference,
                "amount": str(amount),
                "currency": currency,
            },
        )

        if not body.get("status"):
            return InitiateResult(
                success=False,
                status=TransactionStatus.FAILED,
                raw=body,
                message=body.get("message") or "Paystack declined the payment",
            )

        data = body.get("data") or {}
        return InitiateResult(
            success=True,
            gateway_reference=data.get("reference") or reference,
            status=TransactionStatus.PENDING,
            raw=body,
            message=body.get("message", ""),
            authorization_url=data.get("authorization_url"),
        )

    def verify(self, gateway_reference: str, *, timeout: float) -> VerifyResult:
        _, body = self._request(
            "GET",
            f"/transaction/verify/{gateway_reference}",
            timeout=timeout,
            log_context={"operation": "verify", "reference": gateway_reference},
        )

        if not body.get("status"):
            raise GatewayRequestError(
                body.get("message") or "Paystack could not verify the transaction",
                gateway=self.name,
                details={"reference": gateway_reference},
            )

        data = body.get("data") or {}
        provider_status = data.get("status", "")
        status = STATUS_MAP.get(provider_status, TransactionStatus.PENDING)
        metadata = data.get("metadata")
        return VerifyResult(
            success=status == TransactionStatus.COMPLETED,
            status=status,
            amount=from_minor_units(data.get("amount")),
            currency=(data.get("currency") or "").upper() or None,
            payment_method=data.get("channel") or "",
            gateway_reference=data.get("reference") or gateway_reference,
            raw=body,
            message=data.get("gateway_response") or body.get("message", ""),
            metadata=metadata if isinstance(metadata, dict) else {},
        )

    def refund(
        self,
        gateway_reference: str,
        amount: Decimal,
        reason: str,
        *,
        timeout: float,
    ) -> RefundResult:
        payload: dict[str, Any] = {
            "transaction": gateway_reference,
            "amount": to_minor_units(amount),
        }
        if reason:
            payload["merchant_note"] = reason

        _, body = self._request(
            "POST",
            "/refund",
            timeout=timeout,
            payload=payload,
            log_context={
                "operation": "refund",
                "reference": gateway_reference,
                "amount": str(amount),
            },
        )

        if not body.get("status"):
            return RefundResult(
                success=False,
                raw=body,
                message=body.get("message") or "Paystack declined the refund",
            )

        data = body.get("data") or {}
        refunded = from_minor_units(data.get("amount"))
        return RefundResult(
            success=True,
            refund_id=str(data["id"]) if data.get("id") is not None else None,
            amount=refunded if refunded is not None else amount,
            status=data.get("status", ""),
            raw=body,
            message=body.get("message", ""),
        )

    def parse_webhook(self, payload: bytes, headers: Mapping[str, str]) -> WebhookResult:
        signature = _header(headers, SIGNATURE_HEADER)
        if not signature or not self.secret_key:
            raise InvalidWebhookSignatureError(
                "Missing Paystack signature",
                details={"gateway": self.name},
            )

        expected = hmac.new(
            self.secret_key.encode("utf-8"), payload, hashlib.sha512
        ).hexdigest()
        if not hmac.compare_digest(expected, signature):
            self.get_logger().warning(
                "Invalid Paystack webhook signature",
                extra={"gateway": self.name},
            )
            raise InvalidWebhookSignatureError(
                "Invalid Paystack signature",
                details={"gateway": self.name},
            )

        try:
            event = json.loads(payload)
        except ValueError as e:
            raise InvalidWebhookSignatureError(
                "Webhook body is not valid JSON",
                details={"gateway": self.name},
            ) from e

        event_name = event.get("event", "")
        data = event.get("data") or {}
        action = WebhookAction.EVENT_RECEIVED
        if event_name == "charge.success" and data.get("status") == "success":
            action = WebhookAction.PAYMENT_COMPLETED
        elif event_name == "charge.failed":
            action = WebhookAction.PAYMENT_FAILED

        metadata = data.get("metadata")
        return WebhookResult(
            valid=True,
            action=action,
            gateway_reference=data.get("reference"),
            raw=event,
            amount=from_minor_units(data.get("amount")),
            currency=(data.get("currency") or "").upper() or None,
            payment_method=data.get("channel") or "",
            metadata=metadata if isinstance(metadata, dict) else {},
            event=event_name,
        )

"""
In-memory stand-ins for the gateway and side-effect dispatch.

FakeGatewayAdapter implements the GatewayAdapter contract without any
network. Tests script its answers per call:

    gateway.initiate_results.append(InitiateResult(success=True, ...))
    gateway.verify_results.append(GatewayTimeoutError("slow"))

Queued exceptions are raised, anything else is returned. When a queue is
empty a sensible default is used (pending initiate, pending verify,
successful refund). Every call is recorded in gateway.calls.

RecordingDispatcher collects notifications and ride updates instead of
queueing Celery tasks.
"""

from __future__ import annotations

import json
from collections import deque
from decimal import Decimal
from typing import Any, Mapping

from payments.adapters.base import (
    GatewayAdapter,
    InitiateResult,
    RefundResult,
    VerifyResult,
    WebhookResult,
)
from payments.exceptions import InvalidWebhookSignatureError
from payments.state_machines import TransactionStatus, WebhookAction

FAKE_SIGNATURE = "valid-signature"


class FakeGatewayAdapter(GatewayAdapter):
    """Scriptable gateway adapter."""

    name = "fakepay"
    supported_currencies = frozenset({"NGN", "USD"})

    def __init__(self, name: str | None = None, **options: Any) -> None:
        super().__init__(name=name, **options)
        self.initiate_results: deque = deque()
        self.verify_results: deque = deque()
        self.refund_results: deque = deque()
        self.calls: list[tuple[str, dict[str, Any]]] = []

    @staticmethod
    def _next(queue: deque, default):
        result = queue.popleft() if queue else default
        if isinstance(result, BaseException):
            raise result
        return result

    def calls_to(self, method: str) -> list[dict[str, Any]]:
        return [kwargs for name, kwargs in self.calls if name == method]

    def initiate(self, amount, currency, reference, metadata, *, timeout):
        self.calls.append(
            (
                "initiate",
                {
                    "amount": amount,
                    "currency": currency,
                    "reference": reference,
                    "metadata": dict(metadata),
                    "timeout": timeout,
                },
            )
        )
        return self._next(
            self.initiate_results,
            InitiateResult(
                success=True,
                gateway_reference=reference,
                status=TransactionStatus.PENDING,
                authorization_url=f"https://pay.example.com/{reference}",
                raw={"reference": reference},
            ),
        )

    def verify(self, gateway_reference, *, timeout):
        self.calls.append(("verify", {"gateway_reference": gateway_reference, "timeout": timeout}))
        return self._next(
            self.verify_results,
            VerifyResult(
                success=False,
                status=TransactionStatus.PENDING,
                gateway_reference=gateway_reference,
            ),
        )

    def refund(self, gateway_reference, amount, reason, *, timeout):
        self.calls.append(
            (
                "refund",
                {
                    "gateway_reference": gateway_reference,
                    "amount": amount,
                    "reason": reason,
                    "timeout": timeout,
                },
            )
        )
        return self._next(
            self.refund_results,
            RefundResult(
                success=True,
                refund_id=f"rf_{len(self.calls_to('refund'))}",
                amount=amount,
                status="processed",
                raw={"refunded": str(amount)},
            ),
        )

    def parse_webhook(self, payload: bytes, headers: Mapping[str, str]) -> WebhookResult:
        """
        Accepts JSON bodies signed with FAKE_SIGNATURE.

        Body shape: {"event", "action", "reference", "amount", "currency",
        "metadata"}
        """
        if headers.get("x-fake-signature") != FAKE_SIGNATURE:
            raise InvalidWebhookSignatureError("Invalid fake signature")
        body = json.loads(payload)
        amount = body.get("amount")
        return WebhookResult(
            valid=True,
            action=body.get("action", WebhookAction.EVENT_RECEIVED),
            gateway_reference=body.get("reference"),
            raw=body,
            amount=Decimal(str(amount)) if amount is not None else None,
            currency=body.get("currency"),
            payment_method=body.get("payment_method", ""),
            metadata=body.get("metadata") or {},
            event=body.get("event", ""),
        )


def webhook_body(**fields: Any) -> bytes:
    """Encode a FakeGatewayAdapter webhook body."""
    return json.dumps(fields).encode()


def signed_headers() -> dict[str, str]:
    return {"x-fake-signature": FAKE_SIGNATURE}


def completed_verify(reference: str, amount: str = "5000.00", **kwargs: Any) -> VerifyResult:
    """Gateway answer for a captured charge."""
    return VerifyResult(
        success=True,
        status=TransactionStatus.COMPLETED,
        amount=Decimal(amount),
        currency=kwargs.pop("currency", "NGN"),
        payment_method=kwargs.pop("payment_method", "card"),
        gateway_reference=reference,
        raw={"status": "success", "reference": reference},
        **kwargs,
    )


def failed_verify(reference: str, message: str = "Declined") -> VerifyResult:
    return VerifyResult(
        success=False,
        status=TransactionStatus.FAILED,
        gateway_reference=reference,
        message=message,
        raw={"status": "failed", "reference": reference},
    )


class RecordingDispatcher:
    """SideEffectDispatcher that records what it was asked to send."""

    def __init__(self) -> None:
        self.notifications: list[tuple[Any, str, dict[str, Any]]] = []
        self.ride_updates: list[tuple[Any, dict[str, Any]]] = []

    def notify(self, user_id, notification_type, payload) -> None:
        self.notifications.append((user_id, notification_type, payload))

    def update_ride_status(self, ride_id, payment_fields) -> None:
        self.ride_updates.append((ride_id, payment_fields))

    def notification_types(self) -> list[str]:
        return [notification_type for _, notification_type, _ in self.notifications]


class ExplodingDispatcher(RecordingDispatcher):
    """Dispatcher whose delivery always fails."""

    def notify(self, user_id, notification_type, payload) -> None:
        raise RuntimeError("broker down")

    def update_ride_status(self, ride_id, payment_fields) -> None:
        raise RuntimeError("broker down")

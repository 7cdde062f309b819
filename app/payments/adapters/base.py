"""
Gateway adapter contract.

Every payment provider is wrapped by a GatewayAdapter. The reconciliation
engine only ever talks to this interface, so adding a provider means
writing one adapter and registering it in settings.PAYMENT_GATEWAYS.

Result types are frozen dataclasses carrying normalized values plus the
provider's raw payload. Adapters report *declined* outcomes through
success=False results and *transport* failures (timeouts, network
errors, unusable responses) by raising GatewayError subclasses.

Normalized statuses:
    completed  - money captured
    pending    - accepted, awaiting customer action or settlement
    processing - provider is working on it
    failed     - definitively declined / abandoned
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Mapping

from payments.state_machines import TransactionStatus, WebhookAction


# =============================================================================
# Result Types
# =============================================================================


@dataclass(frozen=True)
class InitiateResult:
    """
    Outcome of starting a charge at the provider.

    Attributes:
        success: Provider accepted the request
        gateway_reference: Provider identifier for the attempt
        status: Normalized status (see module docstring)
        raw: Provider response body
        message: Provider message, used as failure reason when declined
        authorization_url: Where the customer completes payment, if any
    """

    success: bool
    gateway_reference: str | None = None
    status: str = TransactionStatus.PENDING
    raw: dict[str, Any] = field(default_factory=dict)
    message: str = ""
    authorization_url: str | None = None


@dataclass(frozen=True)
class VerifyResult:
    """
    Current state of a charge as reported by the provider.

    success is True only when the charge is completed; a charge that is
    still pending reports success=False with status pending/processing.
    """

    success: bool
    status: str
    amount: Decimal | None = None
    currency: str | None = None
    payment_method: str = ""
    gateway_reference: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)
    message: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def is_open(self) -> bool:
        """Provider has not settled the charge yet."""
        return self.status in (TransactionStatus.PENDING, TransactionStatus.PROCESSING)


@dataclass(frozen=True)
class RefundResult:
    success: bool
    refund_id: str | None = None
    amount: Decimal | None = None
    status: str = ""
    raw: dict[str, Any] = field(default_factory=dict)
    message: str = ""


@dataclass(frozen=True)
class WebhookResult:
    """
    Authenticated, normalized webhook event.

    Attributes:
        valid: Signature verified and payload parsed
        action: WebhookAction value
        gateway_reference: Charge the event refers to
        event: Provider event name (charge.success, payment_intent.succeeded)
        metadata: Metadata echoed back by the provider (carries transaction_id)
    """

    valid: bool
    action: str = WebhookAction.EVENT_RECEIVED
    gateway_reference: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)
    amount: Decimal | None = None
    currency: str | None = None
    payment_method: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)
    event: str = ""


# =============================================================================
# Adapter Interface
# =============================================================================


class GatewayAdapter(ABC):
    """
    Interface implemented by every payment provider adapter.

    Instances are shared per process by the GatewayRegistry and must be
    safe to call from several threads (no per-call instance state).

    Attributes:
        name: Registry key, stored on Transaction.gateway
        supported_currencies: Uppercase ISO codes the provider accepts
    """

    name: str = ""
    supported_currencies: frozenset[str] = frozenset()

    def __init__(self, name: str | None = None, **options: Any) -> None:
        if name:
            self.name = name
        self.options = options

    @classmethod
    def get_logger(cls) -> logging.Logger:
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")

    def supports_currency(self, currency: str) -> bool:
        return bool(currency) and currency.upper() in self.supported_currencies

    @abstractmethod
    def initiate(
        self,
        amount: Decimal,
        currency: str,
        reference: str,
        metadata: Mapping[str, Any],
        *,
        timeout: float,
    ) -> InitiateResult:
        """Start a charge. reference is our transaction id."""

    @abstractmethod
    def verify(self, gateway_reference: str, *, timeout: float) -> VerifyResult:
        """Ask the provider for the current state of a charge."""

    @abstractmethod
    def refund(
        self,
        gateway_reference: str,
        amount: Decimal,
        reason: str,
        *,
        timeout: float,
    ) -> RefundResult:
        """Refund (part of) a completed charge."""

    @abstractmethod
    def parse_webhook(self, payload: bytes, headers: Mapping[str, str]) -> WebhookResult:
        """
        Authenticate and normalize a webhook delivery.

        Raises:
            InvalidWebhookSignatureError: Signature missing or wrong
        """

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name!r}>"

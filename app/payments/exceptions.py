"""
Payment-specific exceptions for payment operations.

This module provides a hierarchy of exceptions for the reconciliation core,
covering payment domain errors, gateway errors and concurrency control.

Exception Hierarchy:
    PaymentError (base for payment domain)
    ├── TransactionNotFoundError - Reference matches no transaction (404)
    ├── PaymentValidationError - Input rejected before any write (400)
    │   ├── InsufficientBalanceError - Cashout exceeds available balance
    │   ├── RefundNotAllowedError - Original not refundable / over-refund
    │   └── InvalidWebhookSignatureError - Webhook failed authentication
    ├── GatewayError - Adapter call failed (502)
    │   ├── GatewayTimeoutError - Call exceeded its timeout (transient)
    │   ├── GatewayUnavailableError - Network/5xx from provider (transient)
    │   └── GatewayRequestError - Provider rejected the request (permanent)
    └── PersistenceGapError - Gateway moved money, local write failed

    StaleRecordError - Lost a status-conditioned update (inherits ConflictError)
    LockAcquisitionError - Distributed lock timeout (inherits ConflictError)
    InvalidStateTransitionError - FSM transition not allowed (inherits ConflictError)
    DuplicateGatewayReferenceError - Reference already held by another record (inherits ConflictError)

Usage:
    from payments.exceptions import GatewayTimeoutError, StaleRecordError

    # Conditional update lost the race
    if rows_updated == 0:
        raise StaleRecordError(
            f"Transaction {pk} is no longer {expected}",
            details={"pk": str(pk), "expected_status": expected},
        )

    # Adapter timeout
    raise GatewayTimeoutError(
        "Paystack did not answer within 10s",
        gateway="paystack",
    )
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from core.exceptions import (
    BaseApplicationError,
    ConflictError,
    ExternalServiceError,
    NotFoundError,
    ValidationError,
)

if TYPE_CHECKING:
    from typing import Any


# =============================================================================
# Payment Domain Exceptions
# =============================================================================


class PaymentError(BaseApplicationError):
    """
    Base exception for payment domain errors.

    All payment-specific exceptions inherit from this class,
    allowing catch-all handling of payment errors.
    """

    default_error_code: str = "PAYMENT_ERROR"


class TransactionNotFoundError(PaymentError, NotFoundError):
    """
    Raised when a reference matches neither an internal id nor a
    gateway reference.
    """

    default_error_code: str = "TRANSACTION_NOT_FOUND"
    http_status: int = 404


class PaymentValidationError(PaymentError, ValidationError):
    """
    Raised when payment input validation fails.

    Example:
        if amount <= 0:
            raise PaymentValidationError(
                "Amount must be positive",
                error_code="INVALID_AMOUNT",
                details={"amount": str(amount)},
            )
    """

    default_error_code: str = "PAYMENT_VALIDATION_ERROR"
    http_status: int = 400


class InsufficientBalanceError(PaymentValidationError):
    """Raised when a cashout request exceeds the available balance."""

    default_error_code: str = "INSUFFICIENT_BALANCE"


class RefundNotAllowedError(PaymentValidationError):
    """
    Raised when a refund cannot be issued.

    Covers originals that are not completed, non-refundable transaction
    types, and amounts above the remaining refundable balance.
    """

    default_error_code: str = "REFUND_NOT_ALLOWED"


class InvalidWebhookSignatureError(PaymentValidationError):
    """Raised when a webhook payload fails signature verification."""

    default_error_code: str = "INVALID_WEBHOOK_SIGNATURE"


# =============================================================================
# Gateway Exceptions
# =============================================================================


class GatewayError(PaymentError, ExternalServiceError):
    """
    Base exception for payment gateway failures.

    Attributes:
        gateway: Name of the gateway that failed
        is_retryable: Whether the call can be retried safely

    Use is_retryable to decide what to do with the local record:
    - True: outcome unknown, leave the transaction open for Verify/webhook
    - False: the gateway definitively refused, record the failure
    """

    default_error_code: str = "GATEWAY_ERROR"
    http_status: int = 502
    is_retryable: bool = False

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        gateway: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        details = details or {}
        if gateway:
            details["gateway"] = gateway
        super().__init__(message, error_code=error_code, details=details)
        self.gateway = gateway


class GatewayTimeoutError(GatewayError):
    """The gateway did not answer within the configured timeout."""

    default_error_code: str = "GATEWAY_TIMEOUT"
    http_status: int = 504
    is_retryable: bool = True


class GatewayUnavailableError(GatewayError):
    """Network failure or a 5xx/rate-limit response from the provider."""

    default_error_code: str = "GATEWAY_UNAVAILABLE"
    is_retryable: bool = True


class GatewayRequestError(GatewayError):
    """
    The provider rejected the request or answered with an unusable body.

    Permanent: retrying the same request will not help.
    """

    default_error_code: str = "GATEWAY_REQUEST_ERROR"
    is_retryable: bool = False


class PersistenceGapError(PaymentError):
    """
    Raised when the gateway confirmed a money movement but the local
    write that records it failed.

    Never downgrades the operation to a failure response: the handler
    records a ReconciliationGap and reports the gateway's success.

    Attributes:
        details: Contains gateway, gateway_reference, amount and the
            database error message
    """

    default_error_code: str = "PERSISTENCE_GAP"
    http_status: int = 200


# =============================================================================
# Concurrency Control Exceptions
# =============================================================================


class StaleRecordError(ConflictError):
    """
    Raised when a status-conditioned update matches zero rows.

    Another request moved the transaction first. Callers inside the
    reconciliation engine treat this as "already handled" and re-read
    the record instead of surfacing an error.

    Example:
        rows = Transaction.objects.filter(pk=pk, status=expected).update(...)
        if rows == 0:
            raise StaleRecordError(
                f"Transaction {pk} is no longer {expected}",
                details={"pk": str(pk), "expected_status": expected},
            )
    """

    default_error_code: str = "STALE_RECORD"


class LockAcquisitionError(ConflictError):
    """
    Raised when a distributed lock cannot be acquired.

    Example:
        with DistributedLock(f"transaction:refund:{pk}", ttl=120, timeout=10):
            ...
    """

    default_error_code: str = "LOCK_ACQUISITION_FAILED"


class DuplicateGatewayReferenceError(ConflictError):
    """
    Raised when a gateway reference is already stored on another record.

    Happens when a gateway-first record was created for a charge before
    the originating record learned its reference. details carries
    existing_transaction_id so the caller can converge on that row.
    """

    default_error_code: str = "DUPLICATE_GATEWAY_REFERENCE"


class InvalidStateTransitionError(ConflictError):
    """
    Raised when a state machine transition is not allowed.

    Wraps django-fsm's TransitionNotAllowed with our standard error format.

    Example:
        raise InvalidStateTransitionError(
            "Cannot complete transaction from 'failed' state",
            details={"current_state": "failed", "transition": "complete"},
        )
    """

    default_error_code: str = "INVALID_STATE_TRANSITION"


# =============================================================================
# Exports
# =============================================================================

__all__ = [
    # Payment domain
    "PaymentError",
    "TransactionNotFoundError",
    "PaymentValidationError",
    "InsufficientBalanceError",
    "RefundNotAllowedError",
    "InvalidWebhookSignatureError",
    "PersistenceGapError",
    # Gateway
    "GatewayError",
    "GatewayTimeoutError",
    "GatewayUnavailableError",
    "GatewayRequestError",
    # Concurrency control
    "StaleRecordError",
    "LockAcquisitionError",
    "InvalidStateTransitionError",
    "DuplicateGatewayReferenceError",
]

"""
Payment service: the entry point views and tasks use.

PaymentService wraps the ReconciliationEngine and BalanceCalculator and
converts their outcomes and domain errors into ServiceResult values.
Every result that concerns a transaction carries meta["transaction_id"],
and meta["http_status"] suggests the response code.

Usage:
    from payments.services import InitiatePaymentParams, PaymentService

    result = PaymentService.initiate_payment(
        InitiatePaymentParams(
            user=request.user,
            amount=Decimal("5000.00"),
            currency="NGN",
            ride_id=ride.id,
        )
    )
    if result.success:
        authorization_url = result.data["authorization_url"]
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Mapping

from django.apps import apps

from core.exceptions import BaseApplicationError
from core.helpers import calculate_pagination
from core.services import BaseService, ServiceResult
from payments.exceptions import GatewayError, GatewayTimeoutError, TransactionNotFoundError
from payments.models import Transaction
from payments.state_machines import TransactionStatus, TransactionType

if TYPE_CHECKING:
    from django.contrib.auth.models import User

    from payments.services.balance_service import BalanceCalculator
    from payments.services.reconciliation_engine import Outcome, ReconciliationEngine

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100
SORTABLE_FIELDS = ("created_at", "amount", "status", "type")


# =============================================================================
# Parameter Types
# =============================================================================


@dataclass
class InitiatePaymentParams:
    """
    Parameters for initiating a payment.

    Attributes:
        user: User paying
        amount: Major-unit amount (e.g. Decimal("5000.00"))
        currency: ISO 4217 code (default: PAYMENT_DEFAULT_CURRENCY)
        gateway: Gateway name (default: PAYMENT_DEFAULT_GATEWAY)
        ride_id: Ride the payment settles
        payment_method: card, bank_transfer, ...
        description: Free-text description
        metadata: Arbitrary key-value pairs echoed to the gateway
        type: TransactionType of the record
    """

    user: User
    amount: Any
    currency: str | None = None
    gateway: str | None = None
    ride_id: uuid.UUID | str | None = None
    payment_method: str = ""
    description: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)
    type: str = TransactionType.RIDE_PAYMENT


# =============================================================================
# Payment Service
# =============================================================================


class PaymentService(BaseService):
    """
    Facade over the reconciliation engine for the HTTP and task layers.

    The engine and balance calculator are built once by PaymentsConfig;
    tests replace them with set_engine() / set_balance_calculator().

    Methods:
        initiate_payment: Create a transaction and start the charge
        verify_payment: Reconcile a transaction with its gateway
        process_webhook: Apply an authenticated gateway webhook
        refund_payment: Refund (part of) a completed charge
        get_transaction: Look a transaction up by id or gateway reference
        get_user_transactions: Paginated transaction history
        get_balance: Available balance per currency
        initiate_cashout: Reserve funds for a cashout
    """

    _engine: ReconciliationEngine | None = None
    _balance_calculator: BalanceCalculator | None = None

    @classmethod
    def get_engine(cls) -> ReconciliationEngine:
        """Get the reconciliation engine."""
        return cls._engine or apps.get_app_config("payments").engine

    @classmethod
    def set_engine(cls, engine: ReconciliationEngine | None) -> None:
        """Set the reconciliation engine (for testing)."""
        cls._engine = engine

    @classmethod
    def get_balance_calculator(cls) -> BalanceCalculator:
        """Get the balance calculator."""
        return cls._balance_calculator or apps.get_app_config("payments").balance_calculator

    @classmethod
    def set_balance_calculator(cls, calculator: BalanceCalculator | None) -> None:
        """Set the balance calculator (for testing)."""
        cls._balance_calculator = calculator

    # =========================================================================
    # Charges
    # =========================================================================

    @classmethod
    def initiate_payment(cls, params: InitiatePaymentParams) -> ServiceResult[dict]:
        """
        Create a pending transaction and start the charge at the gateway.

        Returns:
            Success (201) when the charge completed or is awaiting the
            customer; data carries authorization_url when the gateway
            needs a redirect.

        Error codes:
            INVALID_AMOUNT / UNSUPPORTED_CURRENCY / UNKNOWN_GATEWAY (400)
            GATEWAY_TIMEOUT (202): record left pending, verify later
            PAYMENT_FAILED (402): gateway declined or could not be reached
        """
        cls.get_logger().info(
            "Initiating payment",
            extra={
                "user_id": str(params.user.pk),
                "amount": str(params.amount),
                "currency": params.currency,
                "gateway": params.gateway,
                "ride_id": str(params.ride_id) if params.ride_id else None,
            },
        )

        try:
            outcome = cls.get_engine().initiate(
                params.user,
                params.amount,
                params.currency,
                gateway=params.gateway,
                ride_id=params.ride_id,
                payment_method=params.payment_method,
                metadata=params.metadata,
                description=params.description,
                type=params.type,
            )
        except BaseApplicationError as e:
            return cls.handle_exception(e, "Payment initiation rejected")

        meta = {"transaction_id": outcome.transaction_id}
        if isinstance(outcome.error, GatewayTimeoutError):
            return ServiceResult.failure(
                "Gateway did not respond in time; the payment is pending verification",
                error_code=outcome.error.error_code,
                meta={**meta, "http_status": 202},
            )
        if not outcome.success:
            return ServiceResult.failure(
                outcome.message or "Payment failed",
                error_code="PAYMENT_FAILED",
                meta={**meta, "http_status": 402},
            )
        return ServiceResult.success(cls._outcome_data(outcome), meta={**meta, "http_status": 201})

    @classmethod
    def verify_payment(
        cls,
        reference: Any,
        gateway: str | None = None,
        user: User | None = None,
    ) -> ServiceResult[dict]:
        """
        Reconcile a transaction with its gateway.

        Args:
            reference: Internal transaction id or gateway reference
            gateway: Adapter to ask when no local record exists
            user: When given, an existing record owned by someone else
                is reported as not found

        Error codes:
            PAYMENT_PENDING (202): still open at the gateway
            PAYMENT_FAILED (402): the charge failed
            PAYMENT_NOT_VERIFIED (404): unknown reference, not paid at gateway
            GATEWAY_* (502/504): gateway unreachable
        """
        engine = cls.get_engine()
        if user is not None:
            existing = engine.store.find(reference)
            if existing is not None and existing.user_id not in (None, user.pk):
                return cls.handle_exception(
                    TransactionNotFoundError(f"Transaction {reference} not found"),
                    log_level=logging.INFO,
                )

        try:
            outcome = engine.verify(reference, gateway=gateway)
        except BaseApplicationError as e:
            return cls.handle_exception(e, f"Verify {reference} failed")

        # a gateway reference can resolve to a record stored under another owner
        if (
            user is not None
            and outcome.transaction is not None
            and outcome.transaction.user_id not in (None, user.pk)
        ):
            return cls.handle_exception(
                TransactionNotFoundError(f"Transaction {reference} not found"),
                log_level=logging.INFO,
            )

        meta = {"transaction_id": outcome.transaction_id}
        if outcome.success:
            return ServiceResult.success(cls._outcome_data(outcome), meta=meta)

        if outcome.transaction is None:
            return ServiceResult.failure(
                outcome.message or "Payment could not be verified",
                error_code="PAYMENT_NOT_VERIFIED",
                meta={**meta, "http_status": 404},
            )
        if outcome.status == TransactionStatus.FAILED:
            return ServiceResult.failure(
                outcome.transaction.failure_reason or "Payment failed",
                error_code="PAYMENT_FAILED",
                meta={**meta, "http_status": 402},
            )
        if outcome.error is not None:
            # The record is unchanged; the caller may retry
            return ServiceResult.failure(
                outcome.error.message,
                error_code=outcome.error.error_code,
                meta={**meta, "http_status": 202},
            )
        return ServiceResult.failure(
            outcome.message or "Payment is still pending",
            error_code="PAYMENT_PENDING",
            meta={**meta, "http_status": 202},
        )

    @classmethod
    def process_webhook(
        cls,
        gateway: str,
        payload: bytes,
        headers: Mapping[str, str],
    ) -> ServiceResult[dict]:
        """
        Apply a gateway webhook.

        Every authenticated event is acknowledged with success, including
        events for unknown or already-settled transactions, so the gateway
        stops redelivering.

        Error codes:
            INVALID_WEBHOOK_SIGNATURE (400)
            UNKNOWN_GATEWAY (400)
            WEBHOOK_PROCESSING_ERROR (500): gateway should redeliver
        """
        try:
            outcome = cls.get_engine().handle_webhook(gateway, payload, headers)
        except BaseApplicationError as e:
            return cls.handle_exception(e, f"Webhook from {gateway} rejected")
        except Exception:
            cls.get_logger().exception(
                "Unexpected error processing webhook",
                extra={"gateway": gateway},
            )
            return ServiceResult.failure(
                "Webhook processing failed",
                error_code="WEBHOOK_PROCESSING_ERROR",
                meta={"http_status": 500},
            )

        return ServiceResult.success(
            {
                "received": True,
                "acknowledged": outcome.acknowledged,
                "applied": outcome.applied,
                "status": outcome.status,
                "persisted": outcome.persisted,
            },
            meta={"transaction_id": outcome.transaction_id},
        )

    @classmethod
    def refund_payment(
        cls,
        reference: Any,
        amount: Any = None,
        reason: str = "",
    ) -> ServiceResult[dict]:
        """
        Refund (part of) a completed charge.

        Args:
            reference: Internal transaction id or gateway reference
            amount: Amount to refund (default: everything refundable)
            reason: Stored on the refund record and sent to the gateway

        Returns:
            Success with refund_transaction, or persisted=False when the
            gateway refunded but the local write was queued as a gap.

        Error codes:
            TRANSACTION_NOT_FOUND (404)
            REFUND_NOT_ALLOWED / INVALID_AMOUNT (400)
            LOCK_ACQUISITION_FAILED (409)
            REFUND_DECLINED / GATEWAY_* (502/504)
        """
        try:
            outcome = cls.get_engine().refund(reference, amount, reason)
        except BaseApplicationError as e:
            meta = {}
            details = getattr(e, "details", None) or {}
            if details.get("transaction_id"):
                meta["transaction_id"] = details["transaction_id"]
            log_level = logging.ERROR if isinstance(e, GatewayError) else logging.WARNING
            return cls.handle_exception(e, f"Refund of {reference} failed", log_level, meta)

        data = cls._outcome_data(outcome)
        data["refund_transaction"] = outcome.refund_transaction
        data["gap_id"] = str(outcome.gap.id) if outcome.gap is not None else None
        return ServiceResult.success(data, meta={"transaction_id": outcome.transaction_id})

    # =========================================================================
    # Queries
    # =========================================================================

    @classmethod
    def get_transaction(cls, reference: Any, user: User | None = None) -> ServiceResult[Transaction]:
        """
        Look a transaction up by internal id or gateway reference.

        When user is given, transactions belonging to other users are
        reported as not found.
        """
        try:
            txn = cls.get_engine().store.get(reference, user=user)
        except BaseApplicationError as e:
            return cls.handle_exception(e, log_level=logging.INFO)
        return ServiceResult.success(txn, meta={"transaction_id": str(txn.id)})

    @classmethod
    def get_user_transactions(
        cls,
        user: User,
        limit: int = 10,
        page: int = 1,
        type: str | None = None,
        status: str | None = None,
        sort_by: str = "created_at",
        sort_direction: str = "desc",
    ) -> ServiceResult[dict]:
        """
        Paginated transaction history for a user.

        Args:
            limit: Page size, capped at 100
            page: 1-indexed page number
            type: Filter by TransactionType
            status: Filter by TransactionStatus
            sort_by: created_at, amount, status or type (others fall back
                to created_at)
            sort_direction: asc or desc

        Returns:
            ServiceResult with {"results": [Transaction], "pagination": {...}}
        """
        limit = max(1, min(int(limit or 10), MAX_PAGE_SIZE))
        page = max(1, int(page or 1))
        if sort_by not in SORTABLE_FIELDS:
            sort_by = "created_at"
        ordering = sort_by if sort_direction == "asc" else f"-{sort_by}"

        queryset = Transaction.objects.filter(user=user)
        if type:
            queryset = queryset.filter(type=type)
        if status:
            queryset = queryset.filter(status=status)

        pagination = calculate_pagination(queryset.count(), page, limit)
        offset = (pagination["page"] - 1) * limit
        results = list(queryset.order_by(ordering, "-id")[offset : offset + limit])

        return ServiceResult.success({"results": results, "pagination": pagination})

    @classmethod
    def get_balance(cls, user: User, currency: str | None = None) -> ServiceResult[dict]:
        """Available balance for the user in one currency."""
        balance = cls.get_balance_calculator().get_balance(user, currency)
        return ServiceResult.success(balance.to_dict())

    # =========================================================================
    # Cashouts
    # =========================================================================

    @classmethod
    def initiate_cashout(
        cls,
        user: User,
        amount: Decimal,
        currency: str | None = None,
        bank_details: dict[str, Any] | None = None,
        description: str = "",
    ) -> ServiceResult[Transaction]:
        """
        Reserve funds for a cashout.

        Error codes:
            INVALID_AMOUNT (400)
            INSUFFICIENT_BALANCE (400)
        """
        try:
            cashout = cls.get_balance_calculator().initiate_cashout(
                user,
                amount,
                currency=currency,
                bank_details=bank_details,
                description=description,
            )
        except BaseApplicationError as e:
            return cls.handle_exception(e, f"Cashout for user {user.pk} rejected")
        return ServiceResult.success(
            cashout,
            meta={"transaction_id": str(cashout.id), "http_status": 201},
        )

    # =========================================================================
    # Helpers
    # =========================================================================

    @staticmethod
    def _outcome_data(outcome: Outcome) -> dict[str, Any]:
        return {
            "transaction": outcome.transaction,
            "status": outcome.status,
            "message": outcome.message,
            "authorization_url": outcome.authorization_url,
            "applied": outcome.applied,
            "cached": outcome.cached,
            "persisted": outcome.persisted,
        }

"""
Reconciliation engine: converges Initiate, Verify and webhooks on one
Transaction record.

Three independent sources report on the same money movement: the client
request, a polled gateway verification and an asynchronous gateway
webhook. They may arrive in any order, any number of times, and fail
part-way. The engine keeps them consistent with three rules:

1. Gateway calls never run inside a database transaction. Refunds hold
   only a Redis lock across the call.
2. Every state change is a status-conditioned UPDATE. The caller whose
   UPDATE lands applied the change; everyone else re-reads the record
   and returns the winner's state.
3. Side effects fire only for the caller that applied the change, after
   the write committed.

Usage:
    engine = ReconciliationEngine(registry, CeleryDispatcher())
    outcome = engine.initiate(user, Decimal("5000"), "NGN")
    outcome = engine.verify(outcome.transaction_id)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING, Any, Mapping

from django.conf import settings
from django.contrib.auth import get_user_model
from django.db import DatabaseError, transaction
from django.utils import timezone

from core.helpers import parse_uuid
from payments.exceptions import (
    DuplicateGatewayReferenceError,
    GatewayError,
    GatewayRequestError,
    GatewayTimeoutError,
    InvalidStateTransitionError,
    InvalidWebhookSignatureError,
    PaymentValidationError,
    PersistenceGapError,
    RefundNotAllowedError,
    StaleRecordError,
)
from payments.locks import refund_lock
from payments.models import ReconciliationGap, Transaction
from payments.services.transaction_store import TransactionStore
from payments.state_machines import (
    OPEN_STATES,
    REFUNDABLE_STATES,
    REFUNDABLE_TYPES,
    GapKind,
    TransactionStatus,
    TransactionType,
    WebhookAction,
)

if TYPE_CHECKING:
    from payments.adapters.base import GatewayAdapter
    from payments.adapters.registry import GatewayRegistry
    from payments.dispatch import SideEffectDispatcher

logger = logging.getLogger(__name__)

# Notification types
PAYMENT_SUCCESS = "payment_success"
PAYMENT_PENDING = "payment_pending"
PAYMENT_FAILED = "payment_failed"
PAYMENT_REFUND = "payment_refund"

SUCCESS_STATES = frozenset(
    [
        TransactionStatus.COMPLETED,
        TransactionStatus.PARTIALLY_REFUNDED,
        TransactionStatus.REFUNDED,
    ]
)


@dataclass
class Outcome:
    """
    Result of an engine operation.

    Attributes:
        transaction: Record the operation converged on (None when no
            record exists and none was created)
        success: Money movement succeeded (or is in a successful state)
        applied: This call performed the state change
        cached: Answered from the stored record, no gateway call
        persisted: False when the gateway moved money but the local
            write failed (see ReconciliationGap)
        acknowledged: Webhook accepted without producing a state change
    """

    transaction: Transaction | None
    success: bool
    status: str | None = None
    message: str = ""
    applied: bool = False
    cached: bool = False
    persisted: bool = True
    acknowledged: bool = False
    authorization_url: str | None = None
    refund_transaction: Transaction | None = None
    gap: ReconciliationGap | None = None
    error: GatewayError | None = None

    @property
    def transaction_id(self) -> str | None:
        return str(self.transaction.id) if self.transaction is not None else None


class ReconciliationEngine:
    """
    Applies gateway reports to Transaction records.

    Args:
        registry: GatewayRegistry used to resolve adapters by name
        dispatcher: SideEffectDispatcher for notifications and ride updates
        store: TransactionStore (injectable for tests)
        timeout: Seconds passed to every adapter call
    """

    def __init__(
        self,
        registry: GatewayRegistry,
        dispatcher: SideEffectDispatcher,
        store: TransactionStore | None = None,
        timeout: float | None = None,
    ) -> None:
        self.registry = registry
        self.dispatcher = dispatcher
        self.store = store or TransactionStore()
        self.timeout = timeout or getattr(settings, "PAYMENT_GATEWAY_TIMEOUT_SECONDS", 10)

    # =========================================================================
    # Initiate
    # =========================================================================

    def initiate(
        self,
        user,
        amount: Any,
        currency: str | None = None,
        *,
        gateway: str | None = None,
        ride_id=None,
        payment_method: str = "",
        metadata: Mapping[str, Any] | None = None,
        description: str = "",
        type: str = TransactionType.RIDE_PAYMENT,
    ) -> Outcome:
        """
        Create a pending record, then start the charge at the gateway.

        The record is committed before the gateway call so a crash or
        timeout always leaves something Verify and the webhook can find.

        Raises:
            PaymentValidationError: Bad amount, unknown gateway or
                unsupported currency (nothing written)
        """
        amount = self._validate_amount(amount)
        currency = (currency or settings.PAYMENT_DEFAULT_CURRENCY).upper()
        adapter = self.registry.get(gateway)
        if not adapter.supports_currency(currency):
            raise PaymentValidationError(
                f"Currency {currency} is not supported by {adapter.name}",
                error_code="UNSUPPORTED_CURRENCY",
                details={"currency": currency, "gateway": adapter.name},
            )

        txn = self.store.create_pending(
            user=user,
            amount=amount,
            currency=currency,
            type=type,
            gateway=adapter.name,
            ride_id=parse_uuid(ride_id) if ride_id else None,
            payment_method=payment_method,
            description=description,
            metadata=dict(metadata or {}),
        )

        gateway_metadata = {
            **txn.metadata,
            "user_id": str(user.pk) if user is not None else "",
            "email": getattr(user, "email", "") or "",
            "ride_id": str(txn.ride_id) if txn.ride_id else "",
            "payment_method": payment_method,
        }
        log_context = {"transaction_id": str(txn.id), "gateway": adapter.name}

        try:
            result = adapter.initiate(
                txn.amount,
                txn.currency,
                reference=str(txn.id),
                metadata=gateway_metadata,
                timeout=self.timeout,
            )
        except GatewayTimeoutError as e:
            logger.warning("Gateway timed out during initiate; left pending", extra=log_context)
            txn = self.store.reload(txn)
            if txn.status not in OPEN_STATES:
                # a webhook settled it while we waited
                return self._cached(txn)
            self._dispatch_for(txn, initiated=True)
            return Outcome(
                transaction=txn,
                success=False,
                status=txn.status,
                message=e.message,
                error=e,
            )
        except GatewayError as e:
            logger.warning(
                "Gateway error during initiate",
                extra={**log_context, "error_code": e.error_code},
            )
            return self._finish_initiate(txn, "fail", {"reason": e.message}, error=e)
        except Exception as e:
            logger.exception("Unexpected error during initiate", extra=log_context)
            return self._finish_initiate(txn, "fail", {"reason": str(e) or type(e).__name__})

        if not result.success:
            return self._finish_initiate(
                txn,
                "fail",
                {"reason": result.message or "Payment declined by gateway"},
                gateway_response=result.raw,
                gateway_reference=result.gateway_reference,
            )

        if result.status == TransactionStatus.COMPLETED:
            name = "complete"
        elif result.status == TransactionStatus.PROCESSING:
            name = "start_processing"
        elif result.status == TransactionStatus.FAILED:
            return self._finish_initiate(
                txn,
                "fail",
                {"reason": result.message or "Payment declined by gateway"},
                gateway_response=result.raw,
                gateway_reference=result.gateway_reference,
            )
        else:
            try:
                txn = self.store.record_gateway_details(
                    txn,
                    gateway_reference=result.gateway_reference,
                    gateway_response=result.raw,
                )
            except DuplicateGatewayReferenceError as e:
                return self._cached(self._supersede(txn, e))
            if txn.status in OPEN_STATES:
                self._dispatch_for(txn, initiated=True)
            return Outcome(
                transaction=txn,
                success=txn.status in OPEN_STATES or txn.status in SUCCESS_STATES,
                status=txn.status,
                message=result.message,
                authorization_url=result.authorization_url,
            )

        outcome = self._finish_initiate(
            txn,
            name,
            {},
            gateway_response=result.raw,
            gateway_reference=result.gateway_reference,
        )
        outcome.authorization_url = result.authorization_url
        return outcome

    def _finish_initiate(
        self,
        txn: Transaction,
        name: str,
        kwargs: dict[str, Any],
        *,
        gateway_response: dict[str, Any] | None = None,
        gateway_reference: str | None = None,
        error: GatewayError | None = None,
    ) -> Outcome:
        txn, applied = self._apply(
            txn,
            name,
            gateway_reference=gateway_reference,
            gateway_response=gateway_response,
            **kwargs,
        )
        if applied:
            self._dispatch_for(txn, initiated=True)
        return Outcome(
            transaction=txn,
            success=txn.status in SUCCESS_STATES or txn.status in OPEN_STATES,
            status=txn.status,
            message=txn.failure_reason or "",
            applied=applied,
            error=error,
        )

    # =========================================================================
    # Verify
    # =========================================================================

    def verify(self, reference: Any, *, gateway: str | None = None) -> Outcome:
        """
        Reconcile a record with the gateway's view of it.

        Settled records are answered from the store. Open records are
        checked with the gateway and moved with a conditional update.
        Unknown references are checked with the gateway. When the provider
        echoes our transaction id the originating record is reconciled,
        otherwise a successful charge is recorded as a gateway-first
        transaction.

        Timeouts and unavailable gateways leave an open record unchanged;
        a permanent rejection (GatewayRequestError) fails it.

        Raises:
            GatewayError: Only when no local record exists
        """
        txn = self.store.find(reference)
        if txn is None:
            return self._verify_unknown(reference, gateway)

        if txn.is_settled:
            return self._cached(txn)

        adapter = self.registry.get(txn.gateway or gateway)
        gateway_reference = txn.gateway_reference or str(txn.id)
        log_context = {"transaction_id": str(txn.id), "gateway": adapter.name}
        try:
            result = adapter.verify(gateway_reference, timeout=self.timeout)
        except GatewayError as e:
            if e.is_retryable or txn.status not in OPEN_STATES:
                logger.warning(
                    "Gateway error during verify; record unchanged",
                    extra={**log_context, "error_code": e.error_code},
                )
                return Outcome(
                    transaction=txn,
                    success=False,
                    status=txn.status,
                    message=e.message,
                    error=e,
                )
            logger.warning(
                "Gateway rejected verification; failing record",
                extra={**log_context, "error_code": e.error_code},
            )
            outcome = self._apply_report(
                txn,
                TransactionStatus.FAILED,
                gateway_reference=None,
                gateway_response=None,
                payment_method="",
                message=e.message,
                source="verify",
            )
            outcome.error = e
            return outcome

        if txn.status not in OPEN_STATES:
            # completed without processed_at
            if result.success:
                txn = self.store.stamp_processed(txn)
            return self._cached(txn)

        return self._apply_report(
            txn,
            result.status,
            gateway_reference=result.gateway_reference or txn.gateway_reference,
            gateway_response=result.raw,
            payment_method=result.payment_method,
            message=result.message,
            source="verify",
        )

    def _verify_unknown(self, reference: Any, gateway: str | None) -> Outcome:
        adapter = self.registry.get(gateway)
        result = adapter.verify(str(reference), timeout=self.timeout)

        # the provider knows the charge, we have not stored its reference yet
        txn = self.store.find(result.metadata.get("transaction_id"))
        if txn is not None:
            if txn.status not in OPEN_STATES:
                return self._cached(txn)
            return self._apply_report(
                txn,
                result.status,
                gateway_reference=result.gateway_reference or str(reference),
                gateway_response=result.raw,
                payment_method=result.payment_method,
                message=result.message,
                source="verify",
            )

        if not result.success:
            logger.info(
                "Verify of unknown reference did not succeed at gateway; nothing recorded",
                extra={
                    "gateway_reference": str(reference),
                    "gateway": adapter.name,
                    "gateway_status": result.status,
                },
            )
            default_message = (
                "Payment still pending at gateway"
                if result.is_open
                else "Payment not successful at gateway"
            )
            return Outcome(
                transaction=None,
                success=False,
                status=result.status,
                message=result.message or default_message,
            )

        return self._record_gateway_first(
            adapter,
            gateway_reference=result.gateway_reference or str(reference),
            amount=result.amount,
            currency=result.currency,
            payment_method=result.payment_method,
            raw=result.raw,
            metadata=result.metadata,
        )

    # =========================================================================
    # Webhook
    # =========================================================================

    def handle_webhook(
        self,
        gateway: str,
        payload: bytes,
        headers: Mapping[str, str],
    ) -> Outcome:
        """
        Apply an authenticated gateway webhook.

        Raises:
            InvalidWebhookSignatureError: Authentication failed
            PaymentValidationError: Unknown gateway name
        """
        adapter = self.registry.get(gateway)
        result = adapter.parse_webhook(payload, headers)
        if not result.valid:
            raise InvalidWebhookSignatureError(
                "Webhook rejected by gateway adapter",
                details={"gateway": adapter.name},
            )

        log_context = {
            "gateway": adapter.name,
            "event": result.event,
            "action": result.action,
            "gateway_reference": result.gateway_reference,
        }
        logger.info("Webhook received", extra=log_context)

        txn = self.store.find(result.gateway_reference)
        if txn is None:
            txn = self.store.find(result.metadata.get("transaction_id"))

        if result.action not in (WebhookAction.PAYMENT_COMPLETED, WebhookAction.PAYMENT_FAILED):
            return Outcome(
                transaction=txn,
                success=True,
                status=txn.status if txn else None,
                acknowledged=True,
            )

        if txn is None:
            if result.action == WebhookAction.PAYMENT_FAILED or not result.gateway_reference:
                logger.info("Webhook for unknown transaction acknowledged", extra=log_context)
                return Outcome(transaction=None, success=True, acknowledged=True)
            return self._record_gateway_first(
                adapter,
                gateway_reference=result.gateway_reference,
                amount=result.amount,
                currency=result.currency,
                payment_method=result.payment_method,
                raw=result.raw,
                metadata=result.metadata,
            )

        if txn.status not in OPEN_STATES:
            if txn.status == TransactionStatus.FAILED and result.action == WebhookAction.PAYMENT_COMPLETED:
                logger.warning(
                    "Completion webhook for failed transaction ignored",
                    extra={**log_context, "transaction_id": str(txn.id)},
                )
            return Outcome(
                transaction=txn,
                success=txn.status in SUCCESS_STATES,
                status=txn.status,
                cached=True,
                acknowledged=True,
            )

        status = (
            TransactionStatus.COMPLETED
            if result.action == WebhookAction.PAYMENT_COMPLETED
            else TransactionStatus.FAILED
        )
        return self._apply_report(
            txn,
            status,
            gateway_reference=result.gateway_reference,
            gateway_response=result.raw,
            payment_method=result.payment_method,
            message=f"Gateway reported {result.event or result.action}",
            source="webhook",
        )

    # =========================================================================
    # Refund
    # =========================================================================

    def refund(self, reference: Any, amount: Any = None, reason: str = "") -> Outcome:
        """
        Refund (part of) a completed charge.

        Refunds of one original are serialized by a Redis lock held
        across the gateway call. On gateway failure nothing is written.
        When the gateway succeeds but the local write fails, the gap is
        queued as a ReconciliationGap and the refund is still reported
        as successful with persisted=False.

        Raises:
            TransactionNotFoundError: Unknown reference
            RefundNotAllowedError: Original not refundable / over-refund
            LockAcquisitionError: Another refund holds the lock too long
            GatewayError: Gateway declined or could not be reached
        """
        original = self.store.get(reference)
        amount = self._validate_refund(original, amount)

        with refund_lock(original.id):
            original = self.store.reload(original)
            amount = self._validate_refund(original, amount)
            adapter = self.registry.get(original.gateway or None)
            log_context = {
                "transaction_id": str(original.id),
                "gateway": adapter.name,
                "amount": str(amount),
            }

            result = adapter.refund(
                original.gateway_reference or str(original.id),
                amount,
                reason,
                timeout=self.timeout,
            )
            if not result.success:
                logger.warning("Gateway declined refund", extra=log_context)
                raise GatewayRequestError(
                    result.message or "Refund declined by gateway",
                    error_code="REFUND_DECLINED",
                    gateway=adapter.name,
                    details={"transaction_id": str(original.id)},
                )

            try:
                refund_txn, original = self._persist_refund(original, amount, reason, result)
            except PersistenceGapError as gap_error:
                gap = self._record_gap(
                    gap_error,
                    kind=GapKind.REFUND_NOT_RECORDED,
                    txn=original,
                    gateway=adapter.name,
                    gateway_reference=result.refund_id or "",
                    amount=amount,
                    currency=original.currency,
                    details={"reason": reason, "raw": result.raw},
                )
                return Outcome(
                    transaction=original,
                    success=True,
                    status=original.status,
                    message="Refund processed by gateway; local record pending reconciliation",
                    persisted=False,
                    gap=gap,
                )

        logger.info(
            "Refund recorded",
            extra={**log_context, "refund_transaction_id": str(refund_txn.id)},
        )
        if original.user_id is not None:
            self._notify(
                original.user_id,
                PAYMENT_REFUND,
                {
                    **self._payload(original),
                    "transaction_id": str(refund_txn.id),
                    "original_transaction_id": str(original.id),
                    "refund_amount": str(amount),
                    "reason": reason,
                },
            )
        return Outcome(
            transaction=original,
            success=True,
            status=original.status,
            applied=True,
            refund_transaction=refund_txn,
        )

    def _validate_refund(self, original: Transaction, amount: Any) -> Decimal:
        details = {"transaction_id": str(original.id), "status": original.status}
        if not original.is_refundable:
            if original.type not in REFUNDABLE_TYPES:
                raise RefundNotAllowedError(
                    f"Transactions of type {original.type} cannot be refunded",
                    details={**details, "type": original.type},
                )
            if original.status not in REFUNDABLE_STATES:
                raise RefundNotAllowedError(
                    f"Cannot refund a {original.status} transaction",
                    details=details,
                )
            raise RefundNotAllowedError("Transaction is already fully refunded", details=details)

        remaining = original.remaining_refundable

        amount = remaining if amount in (None, "") else self._validate_amount(amount)
        if amount > remaining:
            raise RefundNotAllowedError(
                f"Refund amount {amount} exceeds refundable balance {remaining}",
                details={**details, "amount": str(amount), "remaining": str(remaining)},
            )
        return amount

    def _persist_refund(self, original, amount, reason, result) -> tuple[Transaction, Transaction]:
        try:
            return self._write_refund(original, amount, reason, result)
        except DatabaseError as e:
            raise PersistenceGapError(
                "Gateway refunded but the local refund record could not be written",
                details={
                    "transaction_id": str(original.id),
                    "refund_id": result.refund_id,
                    "amount": str(amount),
                    "error": str(e),
                },
            ) from e

    def _write_refund(self, original, amount, reason, result) -> tuple[Transaction, Transaction]:
        now = timezone.now()
        with transaction.atomic():
            locked = Transaction.objects.select_for_update().get(pk=original.pk)
            total = locked.refunded_amount + amount
            if total >= locked.amount:
                locked.refund_full()
            else:
                locked.refund_partial()

            refund_txn = Transaction(
                user_id=locked.user_id,
                ride_id=locked.ride_id,
                amount=amount,
                currency=locked.currency,
                type=TransactionType.REFUND,
                status=TransactionStatus.COMPLETED,
                gateway=locked.gateway,
                gateway_response=result.raw,
                original_transaction=locked,
                processed_at=now,
                description=f"Refund of {locked.id}",
            )
            refund_entry = {
                "refund_transaction_id": str(refund_txn.id),
                "refund_id": result.refund_id,
                "amount": str(amount),
                "reason": reason,
                "gateway_status": result.status,
                "refunded_at": now.isoformat(),
            }
            refund_txn.metadata = {"transaction_id": str(refund_txn.id)}
            refund_txn.refund_details = {
                "original_transaction_id": str(locked.id),
                "refund_id": result.refund_id,
                "reason": reason,
                "gateway_status": result.status,
            }
            refund_txn.save(force_insert=True)

            history = (locked.refund_details or {}).get("refunds", [])
            locked.refunded_amount = total
            locked.refund_details = {
                "refunds": [*history, refund_entry],
                "total_refunded": str(total),
                "last_refunded_at": now.isoformat(),
            }
            locked.save(update_fields=["status", "refunded_amount", "refund_details", "updated_at"])

        return refund_txn, self.store.reload(locked)

    # =========================================================================
    # Shared helpers
    # =========================================================================

    def _apply_report(
        self,
        txn: Transaction,
        status: str,
        *,
        gateway_reference: str | None,
        gateway_response: dict[str, Any],
        payment_method: str,
        message: str,
        source: str,
    ) -> Outcome:
        """Move an open record according to a gateway-reported status."""
        if status == TransactionStatus.COMPLETED:
            name, kwargs = "complete", {}
        elif status == TransactionStatus.FAILED:
            name, kwargs = "fail", {"reason": message or "Payment failed at gateway"}
        elif status == TransactionStatus.PROCESSING and txn.status == TransactionStatus.PENDING:
            name, kwargs = "start_processing", {}
        else:
            return Outcome(
                transaction=txn,
                success=False,
                status=txn.status,
                message=message or "Payment still pending at gateway",
            )

        txn, applied = self._apply(
            txn,
            name,
            gateway_reference=gateway_reference,
            gateway_response=gateway_response,
            payment_method=payment_method,
            **kwargs,
        )
        if applied:
            logger.info(
                "Transaction reconciled",
                extra={"transaction_id": str(txn.id), "source": source, "status": txn.status},
            )
            self._dispatch_for(txn)
        return Outcome(
            transaction=txn,
            success=txn.status in SUCCESS_STATES,
            status=txn.status,
            message=txn.failure_reason or "",
            applied=applied,
        )

    def _apply(self, txn: Transaction, name: str, **kwargs: Any) -> tuple[Transaction, bool]:
        """
        Conditional transition. Losing the race is not an error.

        Returns:
            (current record, whether this call applied the transition)
        """
        try:
            return self.store.transition(txn, name, **kwargs), True
        except StaleRecordError:
            current = self.store.reload(txn)
            logger.info(
                "Transition already applied by another writer",
                extra={
                    "transaction_id": str(txn.pk),
                    "transition": name,
                    "status": current.status,
                },
            )
            return current, False
        except InvalidStateTransitionError:
            current = self.store.reload(txn)
            logger.info(
                "Transition not applicable",
                extra={"transaction_id": str(txn.pk), "transition": name, "status": current.status},
            )
            return current, False
        except DuplicateGatewayReferenceError as e:
            return self._supersede(txn, e), False

    def _supersede(self, txn: Transaction, error: DuplicateGatewayReferenceError) -> Transaction:
        """
        Converge on the record that already holds the gateway reference.

        The holder was recorded from a gateway confirmation before txn
        learned its reference, and has already fired its side effects.
        txn is closed as failed without notifying anyone so the stale
        sweep stops polling it.

        Returns:
            The record holding the reference
        """
        existing = self.store.get(error.details["existing_transaction_id"])
        stray = self.store.reload(txn)
        logger.warning(
            "Gateway reference already recorded on another transaction",
            extra={
                "transaction_id": str(stray.pk),
                "existing_transaction_id": str(existing.pk),
                "gateway_reference": error.details.get("gateway_reference"),
            },
        )
        if stray.status in OPEN_STATES:
            try:
                self.store.transition(stray, "fail", reason=f"Superseded by transaction {existing.pk}")
            except (StaleRecordError, InvalidStateTransitionError):
                logger.info(
                    "Superseded transaction moved concurrently",
                    extra={"transaction_id": str(stray.pk)},
                )
        return existing

    def _record_gateway_first(
        self,
        adapter: GatewayAdapter,
        *,
        gateway_reference: str,
        amount: Decimal | None,
        currency: str | None,
        payment_method: str,
        raw: dict[str, Any],
        metadata: Mapping[str, Any],
    ) -> Outcome:
        metadata = dict(metadata or {})
        user = self._resolve_user(metadata.get("user_id"))
        try:
            txn, created = self.store.create_gateway_first(
                gateway=adapter.name,
                gateway_reference=gateway_reference,
                amount=amount,
                currency=currency or settings.PAYMENT_DEFAULT_CURRENCY,
                payment_method=payment_method,
                gateway_response=raw,
                metadata=metadata,
                user=user,
            )
        except DatabaseError as e:
            gap_error = PersistenceGapError(
                "Gateway confirmed a payment that could not be recorded locally",
                details={"gateway_reference": gateway_reference, "error": str(e)},
            )
            gap = self._record_gap(
                gap_error,
                kind=GapKind.GATEWAY_FIRST_NOT_RECORDED,
                txn=None,
                gateway=adapter.name,
                gateway_reference=gateway_reference,
                amount=amount or Decimal("0"),
                currency=currency or "",
                details={"raw": raw},
            )
            return Outcome(
                transaction=None,
                success=True,
                status=TransactionStatus.COMPLETED,
                persisted=False,
                gap=gap,
            )

        if created:
            ride_id = parse_uuid(metadata.get("ride_id"))
            if ride_id is not None:
                Transaction.objects.filter(pk=txn.pk, ride_id__isnull=True).update(ride_id=ride_id)
                txn = self.store.reload(txn)
            self._dispatch_for(txn)
        return Outcome(
            transaction=txn,
            success=txn.status in SUCCESS_STATES,
            status=txn.status,
            applied=created,
        )

    def _record_gap(
        self,
        error: PersistenceGapError,
        *,
        kind: str,
        txn: Transaction | None,
        gateway: str,
        gateway_reference: str,
        amount: Decimal,
        currency: str,
        details: dict[str, Any],
    ) -> ReconciliationGap | None:
        """Queue a persistence gap for manual reconciliation."""
        logger.critical(
            "Persistence gap: gateway moved money that is not recorded locally",
            extra={
                "kind": kind,
                "gateway": gateway,
                "gateway_reference": gateway_reference,
                "amount": str(amount),
                "error_code": error.error_code,
                **error.details,
            },
        )
        try:
            with transaction.atomic():
                return ReconciliationGap.objects.create(
                    kind=kind,
                    transaction=txn,
                    gateway=gateway,
                    gateway_reference=gateway_reference,
                    amount=amount,
                    currency=currency,
                    details=self._json_safe(details),
                    error_message=error.details.get("error", error.message),
                )
        except DatabaseError:
            logger.critical(
                "Could not write reconciliation gap record",
                extra={"kind": kind, "gateway_reference": gateway_reference},
                exc_info=True,
            )
            return None

    def _cached(self, txn: Transaction) -> Outcome:
        return Outcome(
            transaction=txn,
            success=txn.status in SUCCESS_STATES,
            status=txn.status,
            message=txn.failure_reason or "",
            cached=True,
        )

    # =========================================================================
    # Side effects
    # =========================================================================

    def _dispatch_for(self, txn: Transaction, initiated: bool = False) -> None:
        """Fire the side effects owed for txn's current state."""
        payload = self._payload(txn)
        if txn.status == TransactionStatus.COMPLETED:
            notification_type = PAYMENT_SUCCESS
        elif txn.status == TransactionStatus.FAILED:
            notification_type = PAYMENT_FAILED
        elif initiated and txn.status in OPEN_STATES:
            notification_type = PAYMENT_PENDING
        else:
            return

        if txn.user_id is not None:
            self._notify(txn.user_id, notification_type, payload)

        if txn.ride_id is not None and txn.status in (
            TransactionStatus.COMPLETED,
            TransactionStatus.FAILED,
        ):
            completed = txn.status == TransactionStatus.COMPLETED
            fields = {
                "is_paid": completed,
                "payment_status": txn.status,
                "payment_completed_at": txn.processed_at.isoformat()
                if completed and txn.processed_at
                else None,
                "payment_transaction_id": str(txn.id),
            }
            try:
                self.dispatcher.update_ride_status(txn.ride_id, fields)
            except Exception:
                logger.exception(
                    "Ride status dispatch failed",
                    extra={"transaction_id": str(txn.id), "ride_id": str(txn.ride_id)},
                )

    def _notify(self, user_id, notification_type: str, payload: dict[str, Any]) -> None:
        try:
            self.dispatcher.notify(user_id, notification_type, payload)
        except Exception:
            logger.exception(
                "Notification dispatch failed",
                extra={
                    "transaction_id": payload.get("transaction_id"),
                    "notification_type": notification_type,
                },
            )

    @staticmethod
    def _payload(txn: Transaction) -> dict[str, Any]:
        return {
            "transaction_id": str(txn.id),
            "amount": str(txn.amount),
            "currency": txn.currency,
            "status": txn.status,
            "type": txn.type,
            "gateway": txn.gateway,
            "gateway_reference": txn.gateway_reference,
            "ride_id": str(txn.ride_id) if txn.ride_id else None,
            "failure_reason": txn.failure_reason,
        }

    # =========================================================================
    # Validation
    # =========================================================================

    @staticmethod
    def _validate_amount(amount: Any) -> Decimal:
        try:
            value = Decimal(str(amount))
        except (InvalidOperation, TypeError, ValueError):
            raise PaymentValidationError(
                "Amount must be a number",
                error_code="INVALID_AMOUNT",
                details={"amount": str(amount)},
            ) from None
        if not value.is_finite() or value <= 0:
            raise PaymentValidationError(
                "Amount must be greater than zero",
                error_code="INVALID_AMOUNT",
                details={"amount": str(amount)},
            )
        return value.quantize(Decimal("0.01"))

    @staticmethod
    def _resolve_user(user_id: Any):
        if not user_id:
            return None
        try:
            return get_user_model().objects.filter(pk=user_id).first()
        except (TypeError, ValueError):
            return None

    @staticmethod
    def _json_safe(value: Any) -> Any:
        if isinstance(value, dict):
            return {str(k): ReconciliationEngine._json_safe(v) for k, v in value.items()}
        if isinstance(value, (list, tuple)):
            return [ReconciliationEngine._json_safe(v) for v in value]
        if isinstance(value, (str, int, float, bool)) or value is None:
            return value
        return str(value)

"""
Transaction store: every write to a Transaction goes through here.

Two primitives make concurrent entry points safe without holding a
database transaction across gateway calls:

- transition(): compare-and-swap on status. The FSM transition is
  applied in memory to compute the new field values, then written with
  UPDATE ... WHERE id = ? AND status = ?. Zero rows means another writer
  got there first and StaleRecordError is raised.
- create_gateway_first(): insert-if-absent keyed on gateway_reference,
  backed by the unique constraint.

Usage:
    store = TransactionStore()
    txn = store.create_pending(user=user, amount=Decimal("5000"), currency="NGN", ...)
    txn = store.transition(txn, "complete", gateway_reference="ref_1")
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any

from django.db import IntegrityError, transaction
from django.db.models import F, Q
from django.utils import timezone

from django_fsm import can_proceed

from core.helpers import parse_uuid
from payments.exceptions import (
    DuplicateGatewayReferenceError,
    InvalidStateTransitionError,
    StaleRecordError,
    TransactionNotFoundError,
)
from payments.models import Transaction
from payments.state_machines import TransactionStatus, TransactionType

logger = logging.getLogger(__name__)

# Fields a transition may change, besides status itself
TRANSITION_FIELDS = (
    "processed_at",
    "failure_reason",
)


class TransactionStore:
    """Persistence primitives for Transaction records."""

    # =========================================================================
    # Lookups
    # =========================================================================

    def find(self, reference: Any, user=None) -> Transaction | None:
        """
        Look a transaction up by internal id or gateway reference.

        Args:
            reference: UUID / UUID string, or a provider reference
            user: Restrict the lookup to this owner
        """
        if reference in (None, ""):
            return None

        lookup = Q(gateway_reference=str(reference))
        pk = parse_uuid(reference)
        if pk is not None:
            lookup |= Q(pk=pk)

        queryset = Transaction.objects.filter(lookup)
        if user is not None:
            queryset = queryset.filter(user=user)
        return queryset.first()

    def get(self, reference: Any, user=None) -> Transaction:
        txn = self.find(reference, user=user)
        if txn is None:
            raise TransactionNotFoundError(
                f"Transaction {reference} not found",
                details={"reference": str(reference)},
            )
        return txn

    def reload(self, txn: Transaction) -> Transaction:
        """
        Fresh copy from the database.

        refresh_from_db() cannot be used: the protected FSM field refuses
        re-assignment on an existing instance.
        """
        return Transaction.objects.get(pk=txn.pk)

    # =========================================================================
    # Creation
    # =========================================================================

    def create_pending(
        self,
        *,
        user,
        amount: Decimal,
        currency: str,
        type: str = TransactionType.RIDE_PAYMENT,
        gateway: str = "",
        ride_id=None,
        payment_method: str = "",
        description: str = "",
        metadata: dict[str, Any] | None = None,
    ) -> Transaction:
        """Create a pending record in its own committed atomic block."""
        txn = Transaction(
            user=user,
            amount=amount,
            currency=currency.upper(),
            type=type,
            gateway=gateway,
            ride_id=ride_id,
            payment_method=payment_method,
            description=description,
        )
        txn.metadata = {**(metadata or {}), "transaction_id": str(txn.id)}
        with transaction.atomic():
            txn.save(force_insert=True)

        logger.info(
            "Transaction created",
            extra={
                "transaction_id": str(txn.id),
                "type": txn.type,
                "gateway": gateway,
                "amount": str(amount),
                "currency": txn.currency,
            },
        )
        return txn

    def create_gateway_first(
        self,
        *,
        gateway: str,
        gateway_reference: str,
        amount: Decimal,
        currency: str,
        payment_method: str = "",
        gateway_response: dict[str, Any] | None = None,
        metadata: dict[str, Any] | None = None,
        user=None,
    ) -> tuple[Transaction, bool]:
        """
        Insert a completed record for a confirmation with no local match.

        Insert-if-absent on gateway_reference: when a concurrent caller
        inserted first, the unique constraint fires and the existing row
        is returned instead.

        Returns:
            (transaction, created)
        """
        txn = Transaction(
            user=user,
            amount=amount,
            currency=(currency or "").upper(),
            type=TransactionType.RIDE_PAYMENT,
            status=TransactionStatus.COMPLETED,
            gateway=gateway,
            gateway_reference=gateway_reference,
            gateway_response=gateway_response or {},
            payment_method=payment_method,
            processed_at=timezone.now(),
            description="Recorded from gateway confirmation",
        )
        txn.metadata = {
            **(metadata or {}),
            "transaction_id": str(txn.id),
            "gateway_first": True,
        }

        try:
            with transaction.atomic():
                txn.save(force_insert=True)
        except IntegrityError:
            existing = Transaction.objects.filter(gateway_reference=gateway_reference).first()
            if existing is None:
                raise
            logger.info(
                "Gateway-first insert lost to concurrent writer",
                extra={"transaction_id": str(existing.id), "gateway_reference": gateway_reference},
            )
            return existing, False

        logger.info(
            "Gateway-first transaction created",
            extra={
                "transaction_id": str(txn.id),
                "gateway": gateway,
                "gateway_reference": gateway_reference,
                "amount": str(amount),
            },
        )
        return txn, True

    # =========================================================================
    # Conditional updates
    # =========================================================================

    def transition(
        self,
        txn: Transaction,
        name: str,
        *,
        gateway_reference: str | None = None,
        gateway_response: dict[str, Any] | None = None,
        payment_method: str | None = None,
        **kwargs: Any,
    ) -> Transaction:
        """
        Apply FSM transition `name` with a status-conditioned UPDATE.

        Args:
            txn: The record as the caller last saw it
            name: Transition method (complete, fail, start_processing, ...)
            gateway_reference: Stored only if the row has none yet
            gateway_response: Raw provider snapshot to store
            payment_method: Provider-reported method to store
            **kwargs: Passed to the transition method (e.g. reason=)

        Returns:
            Fresh copy of the updated record

        Raises:
            InvalidStateTransitionError: Edge not allowed from txn.status
            StaleRecordError: Row left txn.status before our UPDATE landed
            DuplicateGatewayReferenceError: gateway_reference is held by
                another record; nothing is written
        """
        method = getattr(txn, name)
        expected = txn.status
        if not can_proceed(method):
            raise InvalidStateTransitionError(
                f"Cannot {name} transaction from '{expected}' state",
                details={
                    "transaction_id": str(txn.pk),
                    "current_state": expected,
                    "transition": name,
                },
            )

        method(**kwargs)

        values: dict[str, Any] = {
            "status": txn.status,
            "version": F("version") + 1,
            "updated_at": timezone.now(),
        }
        for field_name in TRANSITION_FIELDS:
            values[field_name] = getattr(txn, field_name)
        if gateway_response is not None:
            values["gateway_response"] = gateway_response
        if payment_method:
            values["payment_method"] = payment_method

        with transaction.atomic():
            rows = Transaction.objects.filter(pk=txn.pk, status=expected).update(**values)
            if rows == 0:
                raise StaleRecordError(
                    f"Transaction {txn.pk} is no longer {expected}",
                    details={"transaction_id": str(txn.pk), "expected_status": expected},
                )
            if gateway_reference:
                self._assign_reference(txn.pk, gateway_reference)

        logger.info(
            "Transaction transitioned",
            extra={
                "transaction_id": str(txn.pk),
                "transition": name,
                "from_status": expected,
                "to_status": values["status"],
            },
        )
        return self.reload(txn)

    def record_gateway_details(
        self,
        txn: Transaction,
        *,
        gateway_reference: str | None = None,
        gateway_response: dict[str, Any] | None = None,
    ) -> Transaction:
        """Store provider details without changing status."""
        values: dict[str, Any] = {"updated_at": timezone.now(), "version": F("version") + 1}
        if gateway_response is not None:
            values["gateway_response"] = gateway_response
        with transaction.atomic():
            Transaction.objects.filter(pk=txn.pk).update(**values)
            if gateway_reference:
                self._assign_reference(txn.pk, gateway_reference)
        return self.reload(txn)

    def stamp_processed(self, txn: Transaction) -> Transaction:
        """Fill processed_at on a completed record that is missing it."""
        Transaction.objects.filter(
            pk=txn.pk,
            status=TransactionStatus.COMPLETED,
            processed_at__isnull=True,
        ).update(processed_at=timezone.now(), version=F("version") + 1, updated_at=timezone.now())
        return self.reload(txn)

    def _assign_reference(self, pk, gateway_reference: str) -> None:
        """
        Set gateway_reference only while it is still empty.

        Raises:
            DuplicateGatewayReferenceError: Another record holds the reference
        """
        try:
            with transaction.atomic():
                Transaction.objects.filter(pk=pk, gateway_reference__isnull=True).update(
                    gateway_reference=gateway_reference
                )
        except IntegrityError:
            holder = (
                Transaction.objects.filter(gateway_reference=gateway_reference)
                .exclude(pk=pk)
                .values_list("pk", flat=True)
                .first()
            )
            if holder is None:
                raise
            raise DuplicateGatewayReferenceError(
                f"Gateway reference {gateway_reference} already belongs to transaction {holder}",
                details={
                    "transaction_id": str(pk),
                    "gateway_reference": gateway_reference,
                    "existing_transaction_id": str(holder),
                },
            ) from None

"""
Operator reconciliation: sweeps and manual fixes on top of the engine.

The engine keeps Initiate, Verify and webhooks consistent as they
happen. This service handles what is left over:

    1. Stale records: pending/processing transactions nobody verified
       (the customer closed the browser, the webhook never arrived).
       reconcile_stale_transactions re-verifies them with the gateway.
    2. Unmatched payments: completed ride payments without a ride,
       typically gateway-first records. An operator links them with
       match_transaction_to_ride.
    3. Persistence gaps: money the gateway moved that the local write
       failed to record. Operators work through list_open_gaps and close
       each one with resolve_gap.

Usage:
    from payments.services.reconciliation_service import ReconciliationService

    result = ReconciliationService.reconcile_stale_transactions(older_than_minutes=30)
    if result.success:
        print(f"Completed {result.data.completed}, failed {result.data.failed}")

    result = ReconciliationService.match_transaction_to_ride(txn_id, ride_id)
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from django.apps import apps
from django.conf import settings
from django.db.models import F
from django.utils import timezone

from core.exceptions import BaseApplicationError
from core.helpers import parse_uuid
from core.services import BaseService, ServiceResult
from payments.exceptions import LockAcquisitionError
from payments.locks import DistributedLock
from payments.models import ReconciliationGap, Transaction
from payments.state_machines import OPEN_STATES, TransactionStatus, TransactionType

if TYPE_CHECKING:
    from payments.services.reconciliation_engine import ReconciliationEngine


logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

DEFAULT_STALE_LIMIT = 100

# Lock configuration
STALE_SWEEP_LOCK_KEY = "payments:reconcile-stale"
STALE_SWEEP_LOCK_TTL = 900  # 15 minutes, one beat interval


# =============================================================================
# Data Types
# =============================================================================


@dataclass
class StaleSweepResult:
    """Counts from one reconcile_stale_transactions run."""

    checked: int = 0
    completed: int = 0
    failed: int = 0
    unchanged: int = 0
    errors: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


# =============================================================================
# Reconciliation Service
# =============================================================================


class ReconciliationService(BaseService):
    """
    Operator-facing reconciliation operations.

    Methods:
        find_unmatched_transactions: Completed ride payments without a ride
        match_transaction_to_ride: Link a payment to a ride by hand
        reconcile_stale_transactions: Re-verify old open transactions
        list_open_gaps: Unresolved persistence gaps
        resolve_gap: Close a persistence gap
    """

    _engine: ReconciliationEngine | None = None

    @classmethod
    def get_engine(cls) -> ReconciliationEngine:
        """Get the reconciliation engine."""
        return cls._engine or apps.get_app_config("payments").engine

    @classmethod
    def set_engine(cls, engine: ReconciliationEngine | None) -> None:
        """Set the reconciliation engine (for testing)."""
        cls._engine = engine

    # =========================================================================
    # Unmatched payments
    # =========================================================================

    @classmethod
    def find_unmatched_transactions(
        cls,
        start: datetime,
        end: datetime | None = None,
        gateway: str | None = None,
    ) -> ServiceResult[list[Transaction]]:
        """
        Completed ride payments in [start, end] that are not linked to a ride.

        Args:
            start: Earliest created_at
            end: Latest created_at (default: now)
            gateway: Restrict to one gateway
        """
        end = end or timezone.now()
        queryset = Transaction.objects.filter(
            type=TransactionType.RIDE_PAYMENT,
            status=TransactionStatus.COMPLETED,
            ride_id__isnull=True,
            created_at__gte=start,
            created_at__lte=end,
        )
        if gateway:
            queryset = queryset.filter(gateway=gateway)

        transactions = list(queryset.order_by("created_at"))
        cls.get_logger().info(
            f"Found {len(transactions)} unmatched transactions",
            extra={"gateway": gateway, "start": start.isoformat(), "end": end.isoformat()},
        )
        return ServiceResult.success(transactions)

    @classmethod
    def match_transaction_to_ride(
        cls,
        transaction_id: Any,
        ride_id: Any,
    ) -> ServiceResult[Transaction]:
        """
        Link a completed ride payment to a ride and tell the ride subsystem.

        Matching the same pair twice succeeds without a second update.

        Error codes:
            INVALID_RIDE_ID (400)
            TRANSACTION_NOT_FOUND (404)
            NOT_MATCHABLE (400): not a completed ride payment
            ALREADY_MATCHED (409): linked to a different ride
        """
        ride_uuid = parse_uuid(ride_id)
        if ride_uuid is None:
            return ServiceResult.failure(
                f"Invalid ride id: {ride_id}",
                error_code="INVALID_RIDE_ID",
                meta={"http_status": 400},
            )

        engine = cls.get_engine()
        try:
            txn = engine.store.get(transaction_id)
        except BaseApplicationError as e:
            return cls.handle_exception(e, log_level=logging.INFO)

        meta = {"transaction_id": str(txn.id)}
        if txn.type != TransactionType.RIDE_PAYMENT or txn.status != TransactionStatus.COMPLETED:
            return ServiceResult.failure(
                "Only completed ride payments can be matched to a ride",
                error_code="NOT_MATCHABLE",
                meta={**meta, "http_status": 400},
            )

        if txn.ride_id is not None:
            if txn.ride_id == ride_uuid:
                return ServiceResult.success(txn, meta=meta)
            return cls._already_matched(txn, ride_uuid, meta)

        matched_at = timezone.now()
        metadata = {
            **(txn.metadata or {}),
            "ride_id": str(ride_uuid),
            "manually_matched": True,
            "matched_at": matched_at.isoformat(),
        }
        rows = Transaction.objects.filter(pk=txn.pk, ride_id__isnull=True).update(
            ride_id=ride_uuid,
            metadata=metadata,
            version=F("version") + 1,
            updated_at=matched_at,
        )
        txn = engine.store.reload(txn)
        if rows == 0 and txn.ride_id != ride_uuid:
            return cls._already_matched(txn, ride_uuid, meta)

        cls.get_logger().info(
            "Matched transaction to ride",
            extra={"transaction_id": str(txn.id), "ride_id": str(ride_uuid)},
        )
        try:
            engine.dispatcher.update_ride_status(
                ride_uuid,
                {
                    "is_paid": True,
                    "payment_status": txn.status,
                    "payment_completed_at": (txn.processed_at or txn.updated_at).isoformat(),
                    "payment_transaction_id": str(txn.id),
                },
            )
        except Exception:
            cls.get_logger().exception(
                "Ride status dispatch failed",
                extra={"transaction_id": str(txn.id), "ride_id": str(ride_uuid)},
            )
        return ServiceResult.success(txn, meta=meta)

    @classmethod
    def _already_matched(cls, txn: Transaction, ride_id, meta: dict) -> ServiceResult:
        cls.get_logger().warning(
            "Refusing to re-match transaction",
            extra={
                "transaction_id": str(txn.id),
                "ride_id": str(ride_id),
                "current_ride_id": str(txn.ride_id),
            },
        )
        return ServiceResult.failure(
            f"Transaction is already matched to ride {txn.ride_id}",
            error_code="ALREADY_MATCHED",
            meta={**meta, "http_status": 409},
        )

    # =========================================================================
    # Stale sweep
    # =========================================================================

    @classmethod
    def reconcile_stale_transactions(
        cls,
        older_than_minutes: int | None = None,
        limit: int = DEFAULT_STALE_LIMIT,
    ) -> ServiceResult[StaleSweepResult]:
        """
        Re-verify open transactions that have not moved for a while.

        Runs under a non-blocking Redis lock so overlapping beat runs skip
        instead of verifying the same records twice.

        Args:
            older_than_minutes: Age threshold (default:
                PAYMENT_STALE_TRANSACTION_MINUTES)
            limit: Maximum records per run, oldest first

        Error codes:
            RECONCILIATION_IN_PROGRESS (409): another sweep holds the lock
        """
        if older_than_minutes is None:
            older_than_minutes = settings.PAYMENT_STALE_TRANSACTION_MINUTES
        cutoff = timezone.now() - timedelta(minutes=older_than_minutes)

        try:
            with DistributedLock(STALE_SWEEP_LOCK_KEY, ttl=STALE_SWEEP_LOCK_TTL, blocking=False):
                result = cls._sweep(cutoff, limit)
        except LockAcquisitionError:
            cls.get_logger().info("Stale sweep already running; skipped")
            return ServiceResult.failure(
                "Stale transaction sweep already in progress",
                error_code="RECONCILIATION_IN_PROGRESS",
                meta={"http_status": 409},
            )

        cls.get_logger().info(
            "Stale transaction sweep finished",
            extra={"cutoff": cutoff.isoformat(), **result.to_dict()},
        )
        return ServiceResult.success(result)

    @classmethod
    def _sweep(cls, cutoff: datetime, limit: int) -> StaleSweepResult:
        engine = cls.get_engine()
        result = StaleSweepResult()
        stale = Transaction.objects.filter(
            status__in=list(OPEN_STATES),
            created_at__lt=cutoff,
        ).exclude(type=TransactionType.CASHOUT).order_by("created_at")[:limit]

        for txn in stale:
            result.checked += 1
            try:
                outcome = engine.verify(txn.id)
            except BaseApplicationError as e:
                cls.get_logger().warning(
                    f"Stale verify failed: {e}",
                    extra={"transaction_id": str(txn.id), "error_code": e.error_code},
                )
                result.errors += 1
                continue
            except Exception:
                cls.get_logger().exception(
                    "Unexpected error verifying stale transaction",
                    extra={"transaction_id": str(txn.id)},
                )
                result.errors += 1
                continue

            if outcome.error is not None:
                result.errors += 1
            elif outcome.status == TransactionStatus.COMPLETED:
                result.completed += 1
            elif outcome.status == TransactionStatus.FAILED:
                result.failed += 1
            else:
                result.unchanged += 1
        return result

    # =========================================================================
    # Persistence gaps
    # =========================================================================

    @classmethod
    def list_open_gaps(cls) -> ServiceResult[list[ReconciliationGap]]:
        """Unresolved persistence gaps, oldest first."""
        gaps = list(ReconciliationGap.objects.filter(resolved=False).order_by("created_at"))
        return ServiceResult.success(gaps)

    @classmethod
    def resolve_gap(cls, gap_id: Any, notes: str = "") -> ServiceResult[ReconciliationGap]:
        """
        Mark a persistence gap as reconciled.

        Error codes:
            GAP_NOT_FOUND (404)
            ALREADY_RESOLVED (409)
        """
        pk = parse_uuid(gap_id)
        gap = ReconciliationGap.objects.filter(pk=pk).first() if pk else None
        if gap is None:
            return ServiceResult.failure(
                f"Reconciliation gap {gap_id} not found",
                error_code="GAP_NOT_FOUND",
                meta={"http_status": 404},
            )
        if gap.resolved:
            return ServiceResult.failure(
                "Reconciliation gap is already resolved",
                error_code="ALREADY_RESOLVED",
                meta={"http_status": 409},
            )

        gap.mark_resolved(notes)
        cls.get_logger().info(
            "Reconciliation gap resolved",
            extra={"gap_id": str(gap.id), "kind": gap.kind, "gateway_reference": gap.gateway_reference},
        )
        return ServiceResult.success(gap)

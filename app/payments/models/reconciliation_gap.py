"""
ReconciliationGap: review queue for money the gateway moved but the
local store failed to record.

Rows are written by the reconciliation engine when a refund or a
gateway-first confirmation succeeds at the provider and the follow-up
local write raises a DatabaseError. Operators resolve them from the
admin or through ReconciliationService.resolve_gap().

Usage:
    from payments.models import ReconciliationGap
    from payments.state_machines import GapKind

    ReconciliationGap.objects.create(
        kind=GapKind.REFUND_NOT_RECORDED,
        transaction=original,
        gateway="paystack",
        gateway_reference="rf_123",
        amount=Decimal("2000.00"),
        currency="NGN",
        error_message="deadlock detected",
    )
"""

from __future__ import annotations

from django.db import models
from django.utils import timezone

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel

from payments.state_machines import GapKind


class ReconciliationGap(UUIDPrimaryKeyMixin, BaseModel):
    """
    A gateway-confirmed money movement missing from the Transaction table.

    Indexes:
        - (resolved, created_at): For the unresolved review queue
        - (kind): For analysing gap patterns
    """

    kind = models.CharField(
        max_length=40,
        choices=GapKind.choices,
        help_text="Which local write failed",
    )
    transaction = models.ForeignKey(
        "payments.Transaction",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="reconciliation_gaps",
        help_text="Local transaction involved, when one exists",
    )

    # What the gateway reported
    gateway = models.CharField(
        max_length=30,
        help_text="Payment provider that moved the money",
    )
    gateway_reference = models.CharField(
        max_length=255,
        blank=True,
        help_text="Provider identifier of the movement (refund id or charge reference)",
    )
    amount = models.DecimalField(
        max_digits=14,
        decimal_places=2,
        help_text="Amount the provider moved",
    )
    currency = models.CharField(
        max_length=3,
        help_text="ISO 4217 currency code",
    )
    details = models.JSONField(
        default=dict,
        blank=True,
        help_text="Raw provider payload and request context",
    )
    error_message = models.TextField(
        blank=True,
        help_text="Database error raised by the failed local write",
    )

    # Resolution
    resolved = models.BooleanField(
        default=False,
        help_text="Whether an operator has reconciled this gap",
    )
    resolved_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the gap was resolved",
    )
    resolution_notes = models.TextField(
        blank=True,
        help_text="Notes from the operator who resolved the gap",
    )

    class Meta:
        indexes = [
            models.Index(fields=["resolved", "created_at"], name="gap_resolved_created_idx"),
            models.Index(fields=["kind"], name="gap_kind_idx"),
        ]
        ordering = ["-created_at"]
        verbose_name = "Reconciliation Gap"
        verbose_name_plural = "Reconciliation Gaps"

    def __str__(self) -> str:
        state = "resolved" if self.resolved else "open"
        return f"ReconciliationGap({self.id}, {self.kind}, {self.gateway_reference}, {state})"

    def mark_resolved(self, notes: str = "") -> None:
        """Mark this gap as reconciled by an operator."""
        self.resolved = True
        self.resolved_at = timezone.now()
        self.resolution_notes = notes
        self.save(update_fields=["resolved", "resolved_at", "resolution_notes", "updated_at"])

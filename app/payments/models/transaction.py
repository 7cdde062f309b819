"""
Transaction model: the single local record of one money movement.

A Transaction is written by three independent entry points (Initiate,
Verify and the gateway webhook) which converge on the same row. All
status changes go through django-fsm transitions applied by
payments.services.transaction_store.TransactionStore with a
status-conditioned UPDATE, so exactly one writer wins each edge.

Usage:
    from payments.models import Transaction
    from payments.state_machines import TransactionStatus, TransactionType

    txn = Transaction.objects.create(
        user=user,
        amount=Decimal("5000.00"),
        currency="NGN",
        type=TransactionType.RIDE_PAYMENT,
        gateway="paystack",
    )

    txn.complete()  # pending -> completed (in memory only)
"""

from __future__ import annotations

from decimal import Decimal

from django.conf import settings
from django.db import models
from django.utils import timezone

from django_fsm import FSMField, transition

from core.model_mixins import UUIDPrimaryKeyMixin, VersionedMixin
from core.models import BaseModel

from payments.state_machines import (
    REFUNDABLE_STATES,
    REFUNDABLE_TYPES,
    TransactionStatus,
    TransactionType,
)


def default_currency() -> str:
    return getattr(settings, "PAYMENT_DEFAULT_CURRENCY", "NGN")


class Transaction(UUIDPrimaryKeyMixin, VersionedMixin, BaseModel):
    """
    Local record of a payment, refund, cashout or wallet entry.

    State Flow:
        PENDING -> PROCESSING -> COMPLETED
        PENDING -> COMPLETED (immediate completion at the gateway)
        PENDING/PROCESSING -> FAILED

    Refund Flow:
        COMPLETED -> PARTIALLY_REFUNDED -> REFUNDED
        COMPLETED -> REFUNDED

    Fields:
        user: Owner of the money movement (null for gateway-first records
            whose owner is not known yet)
        ride_id: Ride this payment settles, when there is one
        amount/currency: Immutable after creation
        type: Kind of money movement
        status: Current FSM state (protected, transitions only)
        gateway: Provider name (paystack, stripe, ...)
        gateway_reference: Provider identifier, assigned once
        gateway_response: Last raw snapshot returned by the provider
        refund_details: Refund bookkeeping on both sides of a refund
        original_transaction: Set on refund records only
        refunded_amount: Cumulative amount refunded against this record
        processed_at: When the record reached a settled state

    Note:
        Records are never deleted. The admin disables deletion.
    """

    # ==========================================================================
    # Relationships
    # ==========================================================================

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="transactions",
        help_text="User who owns this money movement",
    )

    ride_id = models.UUIDField(
        null=True,
        blank=True,
        db_index=True,
        help_text="Ride settled by this payment (rides live in another service)",
    )

    original_transaction = models.ForeignKey(
        "self",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="refunds",
        help_text="Transaction this refund was issued against",
    )

    # ==========================================================================
    # Amount & Classification
    # ==========================================================================

    amount = models.DecimalField(
        max_digits=14,
        decimal_places=2,
        help_text="Amount in major currency units (e.g. 5000.00 NGN)",
    )

    currency = models.CharField(
        max_length=3,
        default=default_currency,
        help_text="ISO 4217 currency code (uppercase)",
    )

    type = models.CharField(
        max_length=20,
        choices=TransactionType.choices,
        default=TransactionType.RIDE_PAYMENT,
        help_text="Kind of money movement",
    )

    status = FSMField(
        default=TransactionStatus.PENDING,
        choices=TransactionStatus.choices,
        db_index=True,
        protected=True,
        help_text="Current state of the transaction (managed by FSM)",
    )

    # ==========================================================================
    # Gateway Integration
    # ==========================================================================

    gateway = models.CharField(
        max_length=30,
        blank=True,
        default="",
        help_text="Payment provider that handled this transaction",
    )

    gateway_reference = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        unique=True,
        help_text="Identifier assigned by the payment provider (set once)",
    )

    gateway_response = models.JSONField(
        default=dict,
        blank=True,
        help_text="Last raw response snapshot from the provider",
    )

    payment_method = models.CharField(
        max_length=50,
        blank=True,
        default="",
        help_text="Payment method reported by the provider (card, bank, ...)",
    )

    # ==========================================================================
    # Refund Bookkeeping
    # ==========================================================================

    refunded_amount = models.DecimalField(
        max_digits=14,
        decimal_places=2,
        default=Decimal("0.00"),
        help_text="Cumulative amount refunded against this transaction",
    )

    refund_details = models.JSONField(
        null=True,
        blank=True,
        help_text="Refund linkage and provider refund information",
    )

    # ==========================================================================
    # Metadata & Error Info
    # ==========================================================================

    description = models.CharField(
        max_length=255,
        blank=True,
        default="",
        help_text="Human readable description",
    )

    metadata = models.JSONField(
        default=dict,
        blank=True,
        help_text="Arbitrary JSON metadata, always carries transaction_id",
    )

    failure_reason = models.TextField(
        null=True,
        blank=True,
        help_text="Reason reported when the transaction failed",
    )

    processed_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the transaction reached a settled state",
    )

    # ==========================================================================
    # Meta & Methods
    # ==========================================================================

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Transaction"
        verbose_name_plural = "Transactions"
        indexes = [
            models.Index(fields=["user", "created_at"], name="txn_user_created_idx"),
            models.Index(fields=["status", "created_at"], name="txn_status_created_idx"),
            models.Index(fields=["type", "status"], name="txn_type_status_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(amount__gt=0),
                name="transaction_amount_positive",
            ),
            models.CheckConstraint(
                condition=models.Q(refunded_amount__lte=models.F("amount")),
                name="transaction_refund_not_exceeding_amount",
            ),
        ]

    def __str__(self) -> str:
        return f"Transaction({self.id}, {self.type}, {self.status}, {self.amount} {self.currency})"

    # ==========================================================================
    # State Transitions (django-fsm)
    # ==========================================================================

    @transition(
        field=status,
        source=TransactionStatus.PENDING,
        target=TransactionStatus.PROCESSING,
    )
    def start_processing(self):
        """
        Transition: PENDING -> PROCESSING

        The gateway accepted the charge but has not settled it yet.
        """

    @transition(
        field=status,
        source=[TransactionStatus.PENDING, TransactionStatus.PROCESSING],
        target=TransactionStatus.COMPLETED,
    )
    def complete(self):
        """
        Transition: PENDING/PROCESSING -> COMPLETED

        Called when Initiate, Verify or a webhook confirms the charge.
        """
        self.processed_at = timezone.now()
        self.failure_reason = None

    @transition(
        field=status,
        source=[TransactionStatus.PENDING, TransactionStatus.PROCESSING],
        target=TransactionStatus.FAILED,
    )
    def fail(self, reason: str = ""):
        """
        Transition: PENDING/PROCESSING -> FAILED

        Terminal. A later webhook never moves a failed record forward.
        """
        self.processed_at = timezone.now()
        self.failure_reason = reason or "Payment failed"

    @transition(
        field=status,
        source=list(REFUNDABLE_STATES),
        target=TransactionStatus.PARTIALLY_REFUNDED,
    )
    def refund_partial(self):
        """Transition: COMPLETED/PARTIALLY_REFUNDED -> PARTIALLY_REFUNDED"""

    @transition(
        field=status,
        source=list(REFUNDABLE_STATES),
        target=TransactionStatus.REFUNDED,
    )
    def refund_full(self):
        """Transition: COMPLETED/PARTIALLY_REFUNDED -> REFUNDED (terminal)"""

    # ==========================================================================
    # Properties
    # ==========================================================================

    @property
    def remaining_refundable(self) -> Decimal:
        """Amount still available for refunds."""
        return self.amount - (self.refunded_amount or Decimal("0.00"))

    @property
    def is_settled(self) -> bool:
        """
        Whether Verify can answer from the stored record alone.

        Completed and failed records are settled once processed_at is
        set; refund states are always settled.
        """
        if self.status in (TransactionStatus.COMPLETED, TransactionStatus.FAILED):
            return self.processed_at is not None
        return self.status in (
            TransactionStatus.PARTIALLY_REFUNDED,
            TransactionStatus.REFUNDED,
        )

    @property
    def is_refundable(self) -> bool:
        return (
            self.type in REFUNDABLE_TYPES
            and self.status in REFUNDABLE_STATES
            and self.remaining_refundable > 0
        )

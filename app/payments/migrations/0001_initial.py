import decimal
import uuid

import django.db.models.deletion
import django_fsm
from django.conf import settings
from django.db import migrations, models

import payments.models.transaction


class Migration(migrations.Migration):
    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Transaction",
            fields=[
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier for this record",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "version",
                    models.PositiveIntegerField(
                        default=1,
                        help_text="Version for optimistic locking - incremented on each save",
                    ),
                ),
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this record was created",
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(
                        auto_now=True,
                        help_text="Timestamp when this record was last modified",
                    ),
                ),
                (
                    "ride_id",
                    models.UUIDField(
                        blank=True,
                        db_index=True,
                        help_text="Ride settled by this payment (rides live in another service)",
                        null=True,
                    ),
                ),
                (
                    "amount",
                    models.DecimalField(
                        decimal_places=2,
                        help_text="Amount in major currency units (e.g. 5000.00 NGN)",
                        max_digits=14,
                    ),
                ),
                (
                    "currency",
                    models.CharField(
                        default=payments.models.transaction.default_currency,
                        help_text="ISO 4217 currency code (uppercase)",
                        max_length=3,
                    ),
                ),
                (
                    "type",
                    models.CharField(
                        choices=[
                            ("ride_payment", "Ride Payment"),
                            ("fee", "Fee"),
                            ("commission", "Commission"),
                            ("refund", "Refund"),
                            ("cashout", "Cashout"),
                            ("ride_earning", "Ride Earning"),
                            ("deposit", "Deposit"),
                            ("promotion", "Promotion"),
                            ("adjustment", "Adjustment"),
                            ("withdrawal", "Withdrawal"),
                            ("tax", "Tax"),
                        ],
                        default="ride_payment",
                        help_text="Kind of money movement",
                        max_length=20,
                    ),
                ),
                (
                    "status",
                    django_fsm.FSMField(
                        choices=[
                            ("pending", "Pending"),
                            ("processing", "Processing"),
                            ("completed", "Completed"),
                            ("failed", "Failed"),
                            ("refunded", "Refunded"),
                            ("partially_refunded", "Partially Refunded"),
                        ],
                        db_index=True,
                        default="pending",
                        help_text="Current state of the transaction (managed by FSM)",
                        max_length=50,
                        protected=True,
                    ),
                ),
                (
                    "gateway",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="Payment provider that handled this transaction",
                        max_length=30,
                    ),
                ),
                (
                    "gateway_reference",
                    models.CharField(
                        blank=True,
                        help_text="Identifier assigned by the payment provider (set once)",
                        max_length=255,
                        null=True,
                        unique=True,
                    ),
                ),
                (
                    "gateway_response",
                    models.JSONField(
                        blank=True,
                        default=dict,
                        help_text="Last raw response snapshot from the provider",
                    ),
                ),
                (
                    "payment_method",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="Payment method reported by the provider (card, bank, ...)",
                        max_length=50,
                    ),
                ),
                (
                    "refunded_amount",
                    models.DecimalField(
                        decimal_places=2,
                        default=decimal.Decimal("0.00"),
                        help_text="Cumulative amount refunded against this transaction",
                        max_digits=14,
                    ),
                ),
                (
                    "refund_details",
                    models.JSONField(
                        blank=True,
                        help_text="Refund linkage and provider refund information",
                        null=True,
                    ),
                ),
                (
                    "description",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="Human readable description",
                        max_length=255,
                    ),
                ),
                (
                    "metadata",
                    models.JSONField(
                        blank=True,
                        default=dict,
                        help_text="Arbitrary JSON metadata, always carries transaction_id",
                    ),
                ),
                (
                    "failure_reason",
                    models.TextField(
                        blank=True,
                        help_text="Reason reported when the transaction failed",
                        null=True,
                    ),
                ),
                (
                    "processed_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When the transaction reached a settled state",
                        null=True,
                    ),
                ),
                (
                    "original_transaction",
                    models.ForeignKey(
                        blank=True,
                        help_text="Transaction this refund was issued against",
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="refunds",
                        to="payments.transaction",
                    ),
                ),
                (
                    "user",
                    models.ForeignKey(
                        blank=True,
                        help_text="User who owns this money movement",
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="transactions",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "verbose_name": "Transaction",
                "verbose_name_plural": "Transactions",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["user", "created_at"], name="txn_user_created_idx"),
                    models.Index(fields=["status", "created_at"], name="txn_status_created_idx"),
                    models.Index(fields=["type", "status"], name="txn_type_status_idx"),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("amount__gt", 0)),
                        name="transaction_amount_positive",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(("refunded_amount__lte", models.F("amount"))),
                        name="transaction_refund_not_exceeding_amount",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="ReconciliationGap",
            fields=[
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier for this record",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this record was created",
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(
                        auto_now=True,
                        help_text="Timestamp when this record was last modified",
                    ),
                ),
                (
                    "kind",
                    models.CharField(
                        choices=[
                            ("refund_not_recorded", "Refund Not Recorded"),
                            ("gateway_first_not_recorded", "Gateway-First Payment Not Recorded"),
                        ],
                        help_text="Which local write failed",
                        max_length=40,
                    ),
                ),
                (
                    "gateway",
                    models.CharField(
                        help_text="Payment provider that moved the money",
                        max_length=30,
                    ),
                ),
                (
                    "gateway_reference",
                    models.CharField(
                        blank=True,
                        help_text="Provider identifier of the movement (refund id or charge reference)",
                        max_length=255,
                    ),
                ),
                (
                    "amount",
                    models.DecimalField(
                        decimal_places=2,
                        help_text="Amount the provider moved",
                        max_digits=14,
                    ),
                ),
                (
                    "currency",
                    models.CharField(help_text="ISO 4217 currency code", max_length=3),
                ),
                (
                    "details",
                    models.JSONField(
                        blank=True,
                        default=dict,
                        help_text="Raw provider payload and request context",
                    ),
                ),
                (
                    "error_message",
                    models.TextField(
                        blank=True,
                        help_text="Database error raised by the failed local write",
                    ),
                ),
                (
                    "resolved",
                    models.BooleanField(
                        default=False,
                        help_text="Whether an operator has reconciled this gap",
                    ),
                ),
                (
                    "resolved_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When the gap was resolved",
                        null=True,
                    ),
                ),
                (
                    "resolution_notes",
                    models.TextField(
                        blank=True,
                        help_text="Notes from the operator who resolved the gap",
                    ),
                ),
                (
                    "transaction",
                    models.ForeignKey(
                        blank=True,
                        help_text="Local transaction involved, when one exists",
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="reconciliation_gaps",
                        to="payments.transaction",
                    ),
                ),
            ],
            options={
                "verbose_name": "Reconciliation Gap",
                "verbose_name_plural": "Reconciliation Gaps",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(
                        fields=["resolved", "created_at"],
                        name="gap_resolved_created_idx",
                    ),
                    models.Index(fields=["kind"], name="gap_kind_idx"),
                ],
            },
        ),
    ]

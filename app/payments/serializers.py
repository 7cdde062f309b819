"""
DRF serializers for payments app.

This module provides serializers for:
- Transaction display
- Payment initiation, refund and cashout requests
- Transaction history query parameters
- Engine results (payment, refund, balance)
- Operator reconciliation (unmatched payments, persistence gaps)

Related files:
    - models/transaction.py: Transaction
    - services/payment_service.py: PaymentService
    - views.py: Payment API views

Usage:
    serializer = TransactionSerializer(transaction)
    data = serializer.data
"""

from __future__ import annotations

from rest_framework import serializers

from payments.models import ReconciliationGap, Transaction
from payments.state_machines import TransactionStatus, TransactionType


class TransactionSerializer(serializers.ModelSerializer):
    """
    Read-only serializer for Transaction.

    Usage:
        serializer = TransactionSerializer(transaction)
        serializer = TransactionSerializer(transactions, many=True)
    """

    original_transaction_id = serializers.UUIDField(read_only=True, allow_null=True)
    remaining_refundable = serializers.DecimalField(
        max_digits=14,
        decimal_places=2,
        read_only=True,
    )

    class Meta:
        model = Transaction
        fields = [
            "id",
            "amount",
            "currency",
            "type",
            "status",
            "gateway",
            "gateway_reference",
            "payment_method",
            "ride_id",
            "original_transaction_id",
            "refunded_amount",
            "remaining_refundable",
            "description",
            "failure_reason",
            "processed_at",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields


class InitiatePaymentSerializer(serializers.Serializer):
    """
    Request body for POST /transactions/.

    Amount validation (positive, supported currency, known gateway) is
    left to PaymentService so the error codes match other callers.
    """

    amount = serializers.DecimalField(max_digits=14, decimal_places=2)
    currency = serializers.CharField(max_length=3, required=False, allow_blank=True)
    gateway = serializers.CharField(max_length=50, required=False, allow_blank=True)
    ride_id = serializers.UUIDField(required=False, allow_null=True)
    payment_method = serializers.CharField(max_length=50, required=False, allow_blank=True)
    description = serializers.CharField(max_length=255, required=False, allow_blank=True)
    metadata = serializers.DictField(required=False)


class TransactionListQuerySerializer(serializers.Serializer):
    """Query parameters for GET /transactions/."""

    limit = serializers.IntegerField(required=False, min_value=1, default=10)
    page = serializers.IntegerField(required=False, min_value=1, default=1)
    type = serializers.ChoiceField(choices=TransactionType.choices, required=False)
    status = serializers.ChoiceField(choices=TransactionStatus.choices, required=False)
    # unknown fields fall back to created_at
    sort_by = serializers.CharField(required=False, default="created_at")
    sort_direction = serializers.ChoiceField(
        choices=["asc", "desc"],
        required=False,
        default="desc",
    )


class VerifyPaymentSerializer(serializers.Serializer):
    """Optional body for POST /transactions/{reference}/verify/."""

    gateway = serializers.CharField(max_length=50, required=False, allow_blank=True)


class RefundRequestSerializer(serializers.Serializer):
    """Request body for POST /transactions/{reference}/refund/."""

    amount = serializers.DecimalField(
        max_digits=14,
        decimal_places=2,
        required=False,
        allow_null=True,
    )
    reason = serializers.CharField(max_length=255, required=False, allow_blank=True, default="")


class CashoutRequestSerializer(serializers.Serializer):
    """Request body for POST /cashouts/."""

    amount = serializers.DecimalField(max_digits=14, decimal_places=2)
    currency = serializers.CharField(max_length=3, required=False, allow_blank=True)
    bank_details = serializers.DictField(required=False)
    description = serializers.CharField(max_length=255, required=False, allow_blank=True)


class PaymentResultSerializer(serializers.Serializer):
    """Engine outcome returned by initiate and verify."""

    transaction = TransactionSerializer(allow_null=True)
    status = serializers.CharField(allow_null=True)
    message = serializers.CharField(allow_blank=True)
    authorization_url = serializers.URLField(allow_null=True)
    applied = serializers.BooleanField()
    cached = serializers.BooleanField()
    persisted = serializers.BooleanField()


class RefundResultSerializer(PaymentResultSerializer):
    """
    Refund outcome.

    persisted is false when the gateway refunded but the local record was
    queued for reconciliation (gap_id).
    """

    refund_transaction = TransactionSerializer(allow_null=True)
    gap_id = serializers.UUIDField(allow_null=True)


class BalanceSerializer(serializers.Serializer):
    """Balance for one currency."""

    currency = serializers.CharField()
    available = serializers.DecimalField(max_digits=14, decimal_places=2)
    credits = serializers.DecimalField(max_digits=14, decimal_places=2)
    debits = serializers.DecimalField(max_digits=14, decimal_places=2)
    pending_cashouts = serializers.DecimalField(max_digits=14, decimal_places=2)


class ReconciliationGapSerializer(serializers.ModelSerializer):
    """Read-only serializer for ReconciliationGap."""

    transaction_id = serializers.UUIDField(read_only=True, allow_null=True)

    class Meta:
        model = ReconciliationGap
        fields = [
            "id",
            "kind",
            "transaction_id",
            "gateway",
            "gateway_reference",
            "amount",
            "currency",
            "details",
            "error_message",
            "resolved",
            "resolved_at",
            "resolution_notes",
            "created_at",
        ]
        read_only_fields = fields


class UnmatchedQuerySerializer(serializers.Serializer):
    """Query parameters for GET /reconciliation/unmatched/."""

    start = serializers.DateTimeField()
    end = serializers.DateTimeField(required=False)
    gateway = serializers.CharField(max_length=50, required=False, allow_blank=True)

    def validate(self, attrs):
        end = attrs.get("end")
        if end is not None and end < attrs["start"]:
            raise serializers.ValidationError({"end": "end must not be before start"})
        return attrs


class MatchRideSerializer(serializers.Serializer):
    """Request body for POST /reconciliation/unmatched/{reference}/match/."""

    ride_id = serializers.UUIDField()


class ResolveGapSerializer(serializers.Serializer):
    """Request body for POST /reconciliation/gaps/{gap_id}/resolve/."""

    notes = serializers.CharField(required=False, allow_blank=True, default="")

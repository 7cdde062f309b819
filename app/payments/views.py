"""
DRF views for payments app.

This module provides API views for:
- Payment initiation and transaction history
- Transaction detail and verification
- Refunds (staff only)
- Balance and cashouts
- Operator reconciliation (staff only)

Related files:
    - services/payment_service.py: PaymentService
    - serializers.py: Request/response serializers
    - urls.py: URL routing
    - webhooks/views.py: Gateway webhook endpoint

Endpoints:
    POST /api/v1/payments/transactions/ - Initiate a payment
    GET /api/v1/payments/transactions/ - List transactions
    GET /api/v1/payments/transactions/{reference}/ - Get transaction
    POST /api/v1/payments/transactions/{reference}/verify/ - Verify payment
    POST /api/v1/payments/transactions/{reference}/refund/ - Refund (staff)
    GET /api/v1/payments/balance/ - Get balance
    POST /api/v1/payments/cashouts/ - Request a cashout
    GET /api/v1/payments/reconciliation/unmatched/ - Unmatched payments (staff)
    POST /api/v1/payments/reconciliation/unmatched/{reference}/match/ - Link to ride (staff)
    GET /api/v1/payments/reconciliation/gaps/ - Open persistence gaps (staff)
    POST /api/v1/payments/reconciliation/gaps/{gap_id}/resolve/ - Resolve gap (staff)

Response format:
    {"success": true, "data": {...}, "transaction_id": "..."}
    {"success": false, "error": "...", "error_code": "...", "transaction_id": "..."}

Security:
    - All endpoints require authentication
    - Users only see their own transactions; staff see all
"""

from __future__ import annotations

import logging

from rest_framework import status
from rest_framework.permissions import IsAdminUser, IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from drf_spectacular.utils import (
    extend_schema,
    extend_schema_view,
    OpenApiParameter,
    OpenApiResponse,
)

from core.services import ServiceResult
from payments.serializers import (
    BalanceSerializer,
    CashoutRequestSerializer,
    InitiatePaymentSerializer,
    MatchRideSerializer,
    PaymentResultSerializer,
    ReconciliationGapSerializer,
    RefundRequestSerializer,
    RefundResultSerializer,
    ResolveGapSerializer,
    TransactionListQuerySerializer,
    TransactionSerializer,
    UnmatchedQuerySerializer,
    VerifyPaymentSerializer,
)
from payments.services import InitiatePaymentParams, PaymentService, ReconciliationService

logger = logging.getLogger(__name__)


def service_response(result: ServiceResult, serialize=None) -> Response:
    """Render a ServiceResult with the status it suggests."""
    if serialize is not None:
        result = result.map(serialize)
    return Response(result.to_response(), status=result.http_status)


def invalid_request(serializer) -> Response:
    """400 response for a request that failed serializer validation."""
    result = ServiceResult.failure(
        "Invalid request",
        error_code="VALIDATION_ERROR",
        errors=serializer.errors,
    )
    return Response(result.to_response(), status=status.HTTP_400_BAD_REQUEST)


def owner_scope(request):
    """User to scope lookups to; staff see every transaction."""
    return None if request.user.is_staff else request.user


@extend_schema_view(
    get=extend_schema(
        operation_id="list_transactions",
        summary="List transactions",
        description="Paginated transaction history for the authenticated user.",
        parameters=[
            OpenApiParameter(
                name="limit",
                type=int,
                location=OpenApiParameter.QUERY,
                description="Page size (max 100)",
                required=False,
            ),
            OpenApiParameter(
                name="page",
                type=int,
                location=OpenApiParameter.QUERY,
                description="Page number (1-indexed)",
                required=False,
            ),
            OpenApiParameter(
                name="type",
                type=str,
                location=OpenApiParameter.QUERY,
                description="Filter by transaction type",
                required=False,
            ),
            OpenApiParameter(
                name="status",
                type=str,
                location=OpenApiParameter.QUERY,
                description="Filter by status",
                required=False,
            ),
            OpenApiParameter(
                name="sort_by",
                type=str,
                location=OpenApiParameter.QUERY,
                description="created_at, amount, status or type",
                required=False,
            ),
            OpenApiParameter(
                name="sort_direction",
                type=str,
                location=OpenApiParameter.QUERY,
                description="asc or desc",
                required=False,
            ),
        ],
        tags=["Payments - Transactions"],
    ),
    post=extend_schema(
        operation_id="initiate_payment",
        summary="Initiate payment",
        description=(
            "Create a transaction and start the charge at the gateway. "
            "The transaction id is returned even when the gateway fails."
        ),
        request=InitiatePaymentSerializer,
        responses={
            201: PaymentResultSerializer,
            202: OpenApiResponse(description="Gateway timed out; payment pending"),
            400: OpenApiResponse(description="Invalid amount, currency or gateway"),
            402: OpenApiResponse(description="Payment declined or failed"),
        },
        tags=["Payments - Transactions"],
    ),
)
class TransactionListCreateView(APIView):
    """
    List the user's transactions or initiate a new payment.

    GET /api/v1/payments/transactions/
    POST /api/v1/payments/transactions/
    """

    permission_classes = [IsAuthenticated]

    def get(self, request):
        """List transactions."""
        query = TransactionListQuerySerializer(data=request.query_params)
        if not query.is_valid():
            return invalid_request(query)

        result = PaymentService.get_user_transactions(request.user, **query.validated_data)
        return service_response(
            result,
            lambda data: {
                "results": TransactionSerializer(data["results"], many=True).data,
                "pagination": data["pagination"],
            },
        )

    def post(self, request):
        """Initiate a payment."""
        serializer = InitiatePaymentSerializer(data=request.data)
        if not serializer.is_valid():
            return invalid_request(serializer)

        data = serializer.validated_data
        params = InitiatePaymentParams(
            user=request.user,
            amount=data["amount"],
            currency=data.get("currency") or None,
            gateway=data.get("gateway") or None,
            ride_id=data.get("ride_id"),
            payment_method=data.get("payment_method", ""),
            description=data.get("description", ""),
            metadata=data.get("metadata", {}),
        )
        result = PaymentService.initiate_payment(params)
        return service_response(result, lambda d: PaymentResultSerializer(d).data)


@extend_schema_view(
    get=extend_schema(
        operation_id="get_transaction",
        summary="Get transaction",
        description="Get a transaction by internal id or gateway reference.",
        responses={
            200: TransactionSerializer,
            404: OpenApiResponse(description="Transaction not found"),
        },
        tags=["Payments - Transactions"],
    ),
)
class TransactionDetailView(APIView):
    """
    Get a single transaction.

    GET /api/v1/payments/transactions/{reference}/
    """

    permission_classes = [IsAuthenticated]

    def get(self, request, reference):
        """Get transaction."""
        result = PaymentService.get_transaction(reference, user=owner_scope(request))
        return service_response(result, lambda txn: TransactionSerializer(txn).data)


@extend_schema_view(
    post=extend_schema(
        operation_id="verify_payment",
        summary="Verify payment",
        description=(
            "Reconcile a transaction with its gateway. Settled transactions "
            "are answered from the stored record. Unknown references that "
            "the gateway reports as paid are recorded."
        ),
        request=VerifyPaymentSerializer,
        responses={
            200: PaymentResultSerializer,
            202: OpenApiResponse(description="Payment still pending"),
            402: OpenApiResponse(description="Payment failed"),
            404: OpenApiResponse(description="Unknown reference"),
            502: OpenApiResponse(description="Gateway unavailable"),
        },
        tags=["Payments - Transactions"],
    ),
)
class TransactionVerifyView(APIView):
    """
    Verify a payment with its gateway.

    POST /api/v1/payments/transactions/{reference}/verify/
    """

    permission_classes = [IsAuthenticated]

    def post(self, request, reference):
        """Verify payment."""
        serializer = VerifyPaymentSerializer(data=request.data)
        if not serializer.is_valid():
            return invalid_request(serializer)

        result = PaymentService.verify_payment(
            reference,
            gateway=serializer.validated_data.get("gateway") or None,
            user=owner_scope(request),
        )
        return service_response(result, lambda d: PaymentResultSerializer(d).data)


@extend_schema_view(
    post=extend_schema(
        operation_id="refund_payment",
        summary="Refund payment",
        description=(
            "Refund all or part of a completed payment. Omitting amount "
            "refunds everything still refundable."
        ),
        request=RefundRequestSerializer,
        responses={
            200: RefundResultSerializer,
            400: OpenApiResponse(description="Refund not allowed"),
            404: OpenApiResponse(description="Transaction not found"),
            409: OpenApiResponse(description="Another refund is in progress"),
            502: OpenApiResponse(description="Gateway declined the refund"),
        },
        tags=["Payments - Refunds"],
    ),
)
class TransactionRefundView(APIView):
    """
    Refund a payment.

    POST /api/v1/payments/transactions/{reference}/refund/
    """

    permission_classes = [IsAuthenticated, IsAdminUser]

    def post(self, request, reference):
        """Refund payment."""
        serializer = RefundRequestSerializer(data=request.data)
        if not serializer.is_valid():
            return invalid_request(serializer)

        logger.info(
            "Refund requested",
            extra={"reference": reference, "staff_user_id": str(request.user.pk)},
        )
        result = PaymentService.refund_payment(
            reference,
            amount=serializer.validated_data.get("amount"),
            reason=serializer.validated_data.get("reason", ""),
        )
        return service_response(result, lambda d: RefundResultSerializer(d).data)


@extend_schema_view(
    get=extend_schema(
        operation_id="get_balance",
        summary="Get balance",
        description="Available balance derived from completed transactions.",
        parameters=[
            OpenApiParameter(
                name="currency",
                type=str,
                location=OpenApiParameter.QUERY,
                description="ISO 4217 code (default: platform currency)",
                required=False,
            ),
        ],
        responses={200: BalanceSerializer},
        tags=["Payments - Balance"],
    ),
)
class BalanceView(APIView):
    """
    Get the user's balance.

    GET /api/v1/payments/balance/
    """

    permission_classes = [IsAuthenticated]

    def get(self, request):
        """Get balance."""
        currency = request.query_params.get("currency") or None
        result = PaymentService.get_balance(request.user, currency)
        return service_response(result, lambda d: BalanceSerializer(d).data)


@extend_schema_view(
    post=extend_schema(
        operation_id="initiate_cashout",
        summary="Request cashout",
        description="Reserve funds for a cashout to the user's bank account.",
        request=CashoutRequestSerializer,
        responses={
            201: TransactionSerializer,
            400: OpenApiResponse(description="Invalid amount or insufficient balance"),
        },
        tags=["Payments - Balance"],
    ),
)
class CashoutView(APIView):
    """
    Request a cashout.

    POST /api/v1/payments/cashouts/
    """

    permission_classes = [IsAuthenticated]

    def post(self, request):
        """Request cashout."""
        serializer = CashoutRequestSerializer(data=request.data)
        if not serializer.is_valid():
            return invalid_request(serializer)

        data = serializer.validated_data
        result = PaymentService.initiate_cashout(
            request.user,
            data["amount"],
            currency=data.get("currency") or None,
            bank_details=data.get("bank_details"),
            description=data.get("description", ""),
        )
        return service_response(result, lambda txn: TransactionSerializer(txn).data)


# =============================================================================
# Operator reconciliation
# =============================================================================


@extend_schema_view(
    get=extend_schema(
        operation_id="list_unmatched_transactions",
        summary="List unmatched payments",
        description="Completed ride payments in a time window that are not linked to a ride.",
        parameters=[
            OpenApiParameter(
                name="start",
                type=str,
                location=OpenApiParameter.QUERY,
                description="ISO 8601 window start",
                required=True,
            ),
            OpenApiParameter(
                name="end",
                type=str,
                location=OpenApiParameter.QUERY,
                description="ISO 8601 window end (default: now)",
                required=False,
            ),
            OpenApiParameter(
                name="gateway",
                type=str,
                location=OpenApiParameter.QUERY,
                description="Restrict to one gateway",
                required=False,
            ),
        ],
        responses={200: TransactionSerializer(many=True)},
        tags=["Payments - Reconciliation"],
    ),
)
class UnmatchedTransactionListView(APIView):
    """
    Payments that reached the gateway but are not linked to a ride.

    GET /api/v1/payments/reconciliation/unmatched/
    """

    permission_classes = [IsAuthenticated, IsAdminUser]

    def get(self, request):
        """List unmatched transactions."""
        query = UnmatchedQuerySerializer(data=request.query_params)
        if not query.is_valid():
            return invalid_request(query)

        data = query.validated_data
        result = ReconciliationService.find_unmatched_transactions(
            data["start"],
            end=data.get("end"),
            gateway=data.get("gateway") or None,
        )
        return service_response(result, lambda txns: TransactionSerializer(txns, many=True).data)


@extend_schema_view(
    post=extend_schema(
        operation_id="match_transaction_to_ride",
        summary="Match payment to ride",
        description=(
            "Link a completed ride payment to a ride and push the paid status "
            "to the ride subsystem. Repeating the same match is a no-op."
        ),
        request=MatchRideSerializer,
        responses={
            200: TransactionSerializer,
            400: OpenApiResponse(description="Not a completed ride payment"),
            404: OpenApiResponse(description="Transaction not found"),
            409: OpenApiResponse(description="Already matched to another ride"),
        },
        tags=["Payments - Reconciliation"],
    ),
)
class MatchTransactionView(APIView):
    """
    Link an unmatched payment to a ride.

    POST /api/v1/payments/reconciliation/unmatched/{reference}/match/
    """

    permission_classes = [IsAuthenticated, IsAdminUser]

    def post(self, request, reference):
        """Match transaction to ride."""
        serializer = MatchRideSerializer(data=request.data)
        if not serializer.is_valid():
            return invalid_request(serializer)

        logger.info(
            "Manual ride match requested",
            extra={"reference": reference, "staff_user_id": str(request.user.pk)},
        )
        result = ReconciliationService.match_transaction_to_ride(
            reference,
            serializer.validated_data["ride_id"],
        )
        return service_response(result, lambda txn: TransactionSerializer(txn).data)


@extend_schema_view(
    get=extend_schema(
        operation_id="list_reconciliation_gaps",
        summary="List open persistence gaps",
        description=(
            "Gateway operations that succeeded but could not be written "
            "locally, oldest first."
        ),
        responses={200: ReconciliationGapSerializer(many=True)},
        tags=["Payments - Reconciliation"],
    ),
)
class ReconciliationGapListView(APIView):
    """
    Unresolved persistence gaps.

    GET /api/v1/payments/reconciliation/gaps/
    """

    permission_classes = [IsAuthenticated, IsAdminUser]

    def get(self, request):
        """List open gaps."""
        result = ReconciliationService.list_open_gaps()
        return service_response(
            result, lambda gaps: ReconciliationGapSerializer(gaps, many=True).data
        )


@extend_schema_view(
    post=extend_schema(
        operation_id="resolve_reconciliation_gap",
        summary="Resolve persistence gap",
        request=ResolveGapSerializer,
        responses={
            200: ReconciliationGapSerializer,
            404: OpenApiResponse(description="Gap not found"),
            409: OpenApiResponse(description="Gap already resolved"),
        },
        tags=["Payments - Reconciliation"],
    ),
)
class ResolveGapView(APIView):
    """
    Close a persistence gap after reconciling it by hand.

    POST /api/v1/payments/reconciliation/gaps/{gap_id}/resolve/
    """

    permission_classes = [IsAuthenticated, IsAdminUser]

    def post(self, request, gap_id):
        """Resolve gap."""
        serializer = ResolveGapSerializer(data=request.data)
        if not serializer.is_valid():
            return invalid_request(serializer)

        notes = serializer.validated_data["notes"] or f"Resolved via API by {request.user}"
        result = ReconciliationService.resolve_gap(gap_id, notes=notes)
        return service_response(result, lambda gap: ReconciliationGapSerializer(gap).data)

"""
URL configuration for the payments app.

Routes:
    - /transactions/ - List (GET) / initiate (POST)
    - /transactions/{reference}/ - Detail (GET)
    - /transactions/{reference}/verify/ - Verify (POST)
    - /transactions/{reference}/refund/ - Refund, staff only (POST)
    - /balance/ - Balance (GET)
    - /cashouts/ - Cashout (POST)
    - /reconciliation/unmatched/ - Unmatched payments, staff only (GET)
    - /reconciliation/unmatched/{reference}/match/ - Link to ride, staff only (POST)
    - /reconciliation/gaps/ - Open persistence gaps, staff only (GET)
    - /reconciliation/gaps/{gap_id}/resolve/ - Resolve gap, staff only (POST)
    - /webhooks/{gateway}/ - Gateway webhook endpoint (POST)

{reference} is an internal transaction id or a gateway reference.
All routes are prefixed with /api/v1/payments/ when included in the main URLconf.

Usage:
    # In config/urls.py
    api_v1_patterns = [
        path("payments/", include("payments.urls")),
    ]
"""

from django.urls import path

from payments.views import (
    BalanceView,
    CashoutView,
    MatchTransactionView,
    ReconciliationGapListView,
    ResolveGapView,
    TransactionDetailView,
    TransactionListCreateView,
    TransactionRefundView,
    TransactionVerifyView,
    UnmatchedTransactionListView,
)
from payments.webhooks.views import process_webhook

app_name = "payments"

urlpatterns = [
    path("transactions/", TransactionListCreateView.as_view(), name="transactions"),
    path(
        "transactions/<str:reference>/",
        TransactionDetailView.as_view(),
        name="transaction-detail",
    ),
    path(
        "transactions/<str:reference>/verify/",
        TransactionVerifyView.as_view(),
        name="transaction-verify",
    ),
    path(
        "transactions/<str:reference>/refund/",
        TransactionRefundView.as_view(),
        name="transaction-refund",
    ),
    path("balance/", BalanceView.as_view(), name="balance"),
    path("cashouts/", CashoutView.as_view(), name="cashouts"),
    # Operator reconciliation
    path(
        "reconciliation/unmatched/",
        UnmatchedTransactionListView.as_view(),
        name="reconciliation-unmatched",
    ),
    path(
        "reconciliation/unmatched/<str:reference>/match/",
        MatchTransactionView.as_view(),
        name="reconciliation-match",
    ),
    path(
        "reconciliation/gaps/",
        ReconciliationGapListView.as_view(),
        name="reconciliation-gaps",
    ),
    path(
        "reconciliation/gaps/<str:gap_id>/resolve/",
        ResolveGapView.as_view(),
        name="reconciliation-gap-resolve",
    ),
    # Webhook endpoints
    path("webhooks/<str:gateway>/", process_webhook, name="webhook"),
]

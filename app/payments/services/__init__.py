"""
Payment services.

This module provides:
- PaymentService: Entry point for charges, verification, webhooks,
  refunds, history, balances and cashouts
- ReconciliationEngine: Converges Initiate, Verify and webhooks on one
  Transaction record
- TransactionStore: Conditional writes to Transaction records
- BalanceCalculator: Derived balances and balance-gated cashouts
- ReconciliationService: Stale sweeps, manual ride matching and
  persistence gap handling

Usage:
    from payments.services import InitiatePaymentParams, PaymentService

    result = PaymentService.initiate_payment(
        InitiatePaymentParams(user=user, amount=Decimal("5000.00"), currency="NGN")
    )

    result = PaymentService.verify_payment(result.meta["transaction_id"])

    from payments.services import ReconciliationService

    result = ReconciliationService.reconcile_stale_transactions(older_than_minutes=30)
"""

from payments.services.balance_service import Balance, BalanceCalculator
from payments.services.payment_service import InitiatePaymentParams, PaymentService
from payments.services.reconciliation_engine import Outcome, ReconciliationEngine
from payments.services.reconciliation_service import (
    ReconciliationService,
    StaleSweepResult,
)
from payments.services.transaction_store import TransactionStore

__all__ = [
    "Balance",
    "BalanceCalculator",
    "InitiatePaymentParams",
    "Outcome",
    "PaymentService",
    "ReconciliationEngine",
    "ReconciliationService",
    "StaleSweepResult",
    "TransactionStore",
]

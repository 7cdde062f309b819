"""
Payment domain models.

This module contains all payment-related models:
- Transaction: The single local record of a payment, refund, cashout or
  wallet entry
- ReconciliationGap: Review queue for gateway-confirmed movements the
  local store failed to record
"""

from payments.models.reconciliation_gap import ReconciliationGap
from payments.models.transaction import Transaction

__all__ = [
    "ReconciliationGap",
    "Transaction",
]

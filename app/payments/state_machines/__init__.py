"""
State machine enums and helpers for payment models.

This module defines the state enums used by payment models with django-fsm.
"""

from payments.state_machines.states import (
    CREDIT_TYPES,
    DEBIT_TYPES,
    OPEN_STATES,
    REFUNDABLE_STATES,
    REFUNDABLE_TYPES,
    GapKind,
    TransactionStatus,
    TransactionType,
    WebhookAction,
)

__all__ = [
    "CREDIT_TYPES",
    "DEBIT_TYPES",
    "OPEN_STATES",
    "REFUNDABLE_STATES",
    "REFUNDABLE_TYPES",
    "GapKind",
    "TransactionStatus",
    "TransactionType",
    "WebhookAction",
]

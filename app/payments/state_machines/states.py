"""
State enums for payment models.

This module defines the enums used by payment models with django-fsm.
These are Django TextChoices for database storage and admin integration.

State Machines Overview:

Transaction States:
    pending → processing → completed
    pending → completed (gateway reports immediate completion)
    pending/processing → failed
    completed → partially_refunded → refunded
    completed → refunded

    Gateway-first and refund records are created directly as completed.
"""

from django.db import models


class TransactionStatus(models.TextChoices):
    """
    States for the Transaction lifecycle.

    Terminal states: FAILED, REFUNDED
    Settled states (no further gateway reconciliation): COMPLETED, FAILED,
    PARTIALLY_REFUNDED, REFUNDED

    State Flow:
        PENDING → PROCESSING → COMPLETED
        PENDING/PROCESSING → FAILED

    Refund Flow:
        COMPLETED → PARTIALLY_REFUNDED → REFUNDED
        COMPLETED → REFUNDED
    """

    PENDING = "pending", "Pending"
    PROCESSING = "processing", "Processing"
    COMPLETED = "completed", "Completed"
    FAILED = "failed", "Failed"
    REFUNDED = "refunded", "Refunded"
    PARTIALLY_REFUNDED = "partially_refunded", "Partially Refunded"


class TransactionType(models.TextChoices):
    """
    Kind of money movement a Transaction records.

    RIDE_PAYMENT, FEE and COMMISSION are gateway charges; REFUND and
    CASHOUT move money back out. The remaining types are wallet entries
    used by the balance calculation.
    """

    RIDE_PAYMENT = "ride_payment", "Ride Payment"
    FEE = "fee", "Fee"
    COMMISSION = "commission", "Commission"
    REFUND = "refund", "Refund"
    CASHOUT = "cashout", "Cashout"
    RIDE_EARNING = "ride_earning", "Ride Earning"
    DEPOSIT = "deposit", "Deposit"
    PROMOTION = "promotion", "Promotion"
    ADJUSTMENT = "adjustment", "Adjustment"
    WITHDRAWAL = "withdrawal", "Withdrawal"
    TAX = "tax", "Tax"


class WebhookAction(models.TextChoices):
    """Normalized action carried by a parsed gateway webhook."""

    PAYMENT_COMPLETED = "PAYMENT_COMPLETED", "Payment Completed"
    PAYMENT_FAILED = "PAYMENT_FAILED", "Payment Failed"
    EVENT_RECEIVED = "EVENT_RECEIVED", "Event Received"


class GapKind(models.TextChoices):
    """Why a gateway-confirmed money movement is missing locally."""

    REFUND_NOT_RECORDED = "refund_not_recorded", "Refund Not Recorded"
    GATEWAY_FIRST_NOT_RECORDED = (
        "gateway_first_not_recorded",
        "Gateway-First Payment Not Recorded",
    )


# Balance classification (completed records only)
CREDIT_TYPES = frozenset(
    [
        TransactionType.RIDE_EARNING,
        TransactionType.DEPOSIT,
        TransactionType.PROMOTION,
        TransactionType.ADJUSTMENT,
    ]
)

DEBIT_TYPES = frozenset(
    [
        TransactionType.CASHOUT,
        TransactionType.WITHDRAWAL,
        TransactionType.FEE,
        TransactionType.COMMISSION,
        TransactionType.TAX,
    ]
)

# Charges that went through a gateway and can therefore be refunded
REFUNDABLE_TYPES = frozenset(
    [
        TransactionType.RIDE_PAYMENT,
        TransactionType.FEE,
        TransactionType.COMMISSION,
    ]
)

REFUNDABLE_STATES = frozenset(
    [
        TransactionStatus.COMPLETED,
        TransactionStatus.PARTIALLY_REFUNDED,
    ]
)

# States the gateway can still move (verify/webhook reconciliation applies)
OPEN_STATES = frozenset(
    [
        TransactionStatus.PENDING,
        TransactionStatus.PROCESSING,
    ]
)

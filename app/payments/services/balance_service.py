"""
Balance calculation and balance-gated cashouts.

There is no separate ledger: a user's available balance is derived from
their completed Transaction records, per currency.

    available = sum(completed credits)
              - sum(completed debits)
              - sum(cashouts still pending or processing)

Cashout requests lock the user's row before reading the balance, so two
concurrent requests are checked one after the other and cannot both
spend the same funds.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING, Any

from django.conf import settings
from django.contrib.auth import get_user_model
from django.db import transaction
from django.db.models import DecimalField, Q, Sum, Value
from django.db.models.functions import Coalesce

from payments.exceptions import InsufficientBalanceError, PaymentValidationError
from payments.models import Transaction
from payments.services.transaction_store import TransactionStore
from payments.state_machines import (
    CREDIT_TYPES,
    DEBIT_TYPES,
    OPEN_STATES,
    TransactionStatus,
    TransactionType,
)

if TYPE_CHECKING:
    from payments.dispatch import SideEffectDispatcher

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")

CASHOUT_INITIATED = "cashout_initiated"


def _amount_sum(condition: Q) -> Coalesce:
    field = DecimalField(max_digits=14, decimal_places=2)
    return Coalesce(Sum("amount", filter=condition), Value(ZERO, output_field=field), output_field=field)


@dataclass(frozen=True)
class Balance:
    currency: str
    credits: Decimal
    debits: Decimal
    pending_cashouts: Decimal

    @property
    def available(self) -> Decimal:
        return self.credits - self.debits - self.pending_cashouts

    def to_dict(self) -> dict[str, Any]:
        return {
            "currency": self.currency,
            "available": str(self.available),
            "credits": str(self.credits),
            "debits": str(self.debits),
            "pending_cashouts": str(self.pending_cashouts),
        }


class BalanceCalculator:
    """
    Derives balances from the Transaction table and gates cashouts.

    Args:
        dispatcher: Receives cashout_initiated notifications
        store: TransactionStore (injectable for tests)
    """

    def __init__(
        self,
        dispatcher: SideEffectDispatcher | None = None,
        store: TransactionStore | None = None,
    ) -> None:
        self.dispatcher = dispatcher
        self.store = store or TransactionStore()

    def get_balance(self, user, currency: str | None = None) -> Balance:
        currency = (currency or settings.PAYMENT_DEFAULT_CURRENCY).upper()
        totals = Transaction.objects.filter(user=user, currency=currency).aggregate(
            credits=_amount_sum(
                Q(status=TransactionStatus.COMPLETED, type__in=list(CREDIT_TYPES))
            ),
            debits=_amount_sum(
                Q(status=TransactionStatus.COMPLETED, type__in=list(DEBIT_TYPES))
            ),
            pending_cashouts=_amount_sum(
                Q(status__in=list(OPEN_STATES), type=TransactionType.CASHOUT)
            ),
        )
        return Balance(
            currency=currency,
            credits=totals["credits"],
            debits=totals["debits"],
            pending_cashouts=totals["pending_cashouts"],
        )

    def initiate_cashout(
        self,
        user,
        amount: Decimal,
        currency: str | None = None,
        bank_details: dict[str, Any] | None = None,
        description: str = "",
    ) -> Transaction:
        """
        Reserve funds for a cashout.

        The balance check and the cashout insert run in one atomic block
        holding a row lock on the user, so concurrent cashouts serialize.
        The record is left processing; the bank transfer happens elsewhere.

        Raises:
            PaymentValidationError: amount <= 0
            InsufficientBalanceError: amount exceeds the available balance
        """
        try:
            amount = Decimal(str(amount))
        except (InvalidOperation, TypeError, ValueError):
            raise PaymentValidationError(
                "Cashout amount must be a number",
                error_code="INVALID_AMOUNT",
                details={"amount": str(amount)},
            ) from None
        if not amount.is_finite() or amount <= 0:
            raise PaymentValidationError(
                "Cashout amount must be greater than zero",
                error_code="INVALID_AMOUNT",
                details={"amount": str(amount)},
            )
        currency = (currency or settings.PAYMENT_DEFAULT_CURRENCY).upper()

        with transaction.atomic():
            get_user_model().objects.select_for_update().get(pk=user.pk)
            balance = self.get_balance(user, currency)
            if amount > balance.available:
                raise InsufficientBalanceError(
                    "Insufficient balance for cashout",
                    details={
                        "requested": str(amount),
                        "available": str(balance.available),
                        "currency": currency,
                    },
                )

            cashout = Transaction(
                user=user,
                amount=amount,
                currency=currency,
                type=TransactionType.CASHOUT,
                description=description or "Cashout",
            )
            cashout.metadata = {
                "transaction_id": str(cashout.id),
                "bank_details": bank_details or {},
            }
            cashout.save(force_insert=True)
            cashout = self.store.transition(cashout, "start_processing")

        logger.info(
            "Cashout initiated",
            extra={
                "transaction_id": str(cashout.id),
                "user_id": str(user.pk),
                "amount": str(amount),
                "currency": currency,
            },
        )

        if self.dispatcher is not None:
            try:
                self.dispatcher.notify(
                    user.pk,
                    CASHOUT_INITIATED,
                    {
                        "transaction_id": str(cashout.id),
                        "amount": str(amount),
                        "currency": currency,
                        "status": cashout.status,
                    },
                )
            except Exception:
                logger.exception(
                    "Cashout notification dispatch failed",
                    extra={"transaction_id": str(cashout.id)},
                )
        return cashout

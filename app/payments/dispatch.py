"""
Side-effect dispatch for payment state changes.

The reconciliation engine reports state changes through a
SideEffectDispatcher. Dispatch is fire-and-forget: it must never block
or fail the caller, and consumers must tolerate duplicate delivery
(notifications are keyed "{transaction_id}:{notification_type}").

Available dispatchers:
    CeleryDispatcher: Queues payments.tasks jobs (default)

Usage:
    from payments.dispatch import CeleryDispatcher

    dispatcher = CeleryDispatcher()
    dispatcher.notify(user.id, "payment_success", {"transaction_id": "..."})
    dispatcher.update_ride_status(ride_id, {"is_paid": True})
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from typing import Any

logger = logging.getLogger(__name__)


@runtime_checkable
class SideEffectDispatcher(Protocol):
    """
    Protocol for delivering payment side effects.

    Example:
        class LoggingDispatcher:
            def notify(self, user_id, notification_type, payload): ...
            def update_ride_status(self, ride_id, payment_fields): ...
    """

    def notify(self, user_id: Any, notification_type: str, payload: dict[str, Any]) -> None:
        """
        Notify a user about a payment event.

        Args:
            user_id: Recipient primary key
            notification_type: payment_success, payment_failed, ...
            payload: Must carry transaction_id
        """
        ...

    def update_ride_status(self, ride_id: Any, payment_fields: dict[str, Any]) -> None:
        """
        Push payment fields to the ride subsystem.

        Args:
            ride_id: Ride UUID
            payment_fields: is_paid, payment_status, payment_completed_at,
                payment_transaction_id
        """
        ...


class CeleryDispatcher:
    """
    Dispatcher that queues Celery tasks.

    Broker failures are logged and swallowed; the transaction record is
    already committed and a missed notification is recoverable.
    """

    def notify(self, user_id: Any, notification_type: str, payload: dict[str, Any]) -> None:
        from payments.tasks import send_payment_notification

        try:
            send_payment_notification.delay(str(user_id), notification_type, payload)
        except Exception:
            logger.exception(
                "Failed to queue payment notification",
                extra={
                    "user_id": str(user_id),
                    "notification_type": notification_type,
                    "transaction_id": payload.get("transaction_id"),
                },
            )

    def update_ride_status(self, ride_id: Any, payment_fields: dict[str, Any]) -> None:
        from payments.tasks import update_ride_payment_status

        try:
            update_ride_payment_status.delay(str(ride_id), payment_fields)
        except Exception:
            logger.exception(
                "Failed to queue ride payment update",
                extra={
                    "ride_id": str(ride_id),
                    "transaction_id": payment_fields.get("payment_transaction_id"),
                },
            )

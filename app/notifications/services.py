"""
Notification service layer.

Services:
    NotificationService: Notification creation from templates

Design Principles:
    - Services are stateless (use class methods)
    - Expected failures return ServiceResult.failure()
    - Titles and bodies are rendered from TEMPLATES with str.format();
      explicit title/body override the template

Usage:
    from notifications.services import NotificationService

    result = NotificationService.create_notification(
        recipient=user,
        type_key="payment_success",
        data={"amount": "5000.00", "currency": "NGN", "transaction_id": "..."},
        idempotency_key="<transaction_id>:payment_success",
    )

"""

from __future__ import annotations

from typing import TYPE_CHECKING

from django.db import IntegrityError, transaction

from core.services import BaseService, ServiceResult
from notifications.models import Notification, NotificationKind

if TYPE_CHECKING:
    from django.contrib.auth.models import User


# (title_template, body_template) per notification type
TEMPLATES: dict[str, tuple[str, str]] = {
    NotificationKind.PAYMENT_SUCCESS: (
        "Payment successful",
        "Your payment of {currency} {amount} was successful.",
    ),
    NotificationKind.PAYMENT_PENDING: (
        "Payment pending",
        "Your payment of {currency} {amount} is awaiting confirmation.",
    ),
    NotificationKind.PAYMENT_FAILED: (
        "Payment failed",
        "Your payment of {currency} {amount} could not be completed.",
    ),
    NotificationKind.PAYMENT_REFUND: (
        "Payment refunded",
        "{currency} {refund_amount} has been refunded to you.",
    ),
    NotificationKind.CASHOUT_INITIATED: (
        "Cashout initiated",
        "Your cashout of {currency} {amount} is being processed.",
    ),
}


class _Defaults(dict):
    """format_map mapping that renders missing placeholders as empty."""

    def __missing__(self, key: str) -> str:
        return ""


class NotificationService(BaseService):
    """
    Service for notification operations.

    Methods:
        create_notification: Create a notification with template rendering
    """

    @classmethod
    def create_notification(
        cls,
        recipient: User,
        type_key: str,
        data: dict | None = None,
        title: str | None = None,
        body: str | None = None,
        idempotency_key: str | None = None,
    ) -> ServiceResult[Notification]:
        """
        Create a new notification for a user.

        Args:
            recipient: User receiving the notification
            type_key: NotificationKind value
            data: Event payload, also used for template rendering
            title: Explicit title (overrides template)
            body: Explicit body (overrides template)
            idempotency_key: Optional key to prevent duplicate notifications

        Returns:
            ServiceResult with created Notification if successful

        Error codes:
            TYPE_NOT_FOUND: Unknown notification type key
            DUPLICATE: Notification with this idempotency_key already exists
        """
        data = data or {}

        if type_key not in TEMPLATES:
            cls.get_logger().warning(f"Notification type not found: {type_key}")
            return ServiceResult.failure(
                f"Notification type not found: {type_key}",
                error_code="TYPE_NOT_FOUND",
            )

        if idempotency_key and Notification.objects.filter(
            idempotency_key=idempotency_key
        ).exists():
            cls.get_logger().info(
                f"Duplicate notification prevented: idempotency_key={idempotency_key}"
            )
            return ServiceResult.failure(
                f"Notification with idempotency_key already exists: {idempotency_key}",
                error_code="DUPLICATE",
            )

        title_template, body_template = TEMPLATES[type_key]
        values = _Defaults(data)
        rendered_title = title or title_template.format_map(values)
        rendered_body = body or body_template.format_map(values)

        try:
            with transaction.atomic():
                notification = Notification.objects.create(
                    recipient=recipient,
                    notification_type=type_key,
                    title=rendered_title,
                    body=rendered_body,
                    data=data,
                    idempotency_key=idempotency_key,
                )
        except IntegrityError:
            # Concurrent delivery of the same event won the insert
            cls.get_logger().info(
                f"Duplicate notification prevented: idempotency_key={idempotency_key}"
            )
            return ServiceResult.failure(
                f"Notification with idempotency_key already exists: {idempotency_key}",
                error_code="DUPLICATE",
            )

        cls.get_logger().info(
            f"Created notification {notification.id} of type {type_key} "
            f"for user {recipient.pk}"
        )
        return ServiceResult.success(notification)

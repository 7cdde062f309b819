"""
Notification models.

Notifications are the user-facing record of payment events: a charge
succeeded, is awaiting confirmation, failed, was refunded, or a cashout
was requested. They are created by payments.tasks.send_payment_notification
through NotificationService.create_notification.

Design Decisions:
    - Notification inherits from BaseModel (timestamps, ordering)
    - notification_type is a plain key (see NotificationKind); rendering
      templates live in notifications.services
    - idempotency_key is unique when set, so a redelivered Celery task
      cannot create a second notification for the same event

Usage:
    from notifications.models import Notification, NotificationKind

    unread = Notification.objects.filter(recipient=user, is_read=False)
    successes = Notification.objects.filter(
        notification_type=NotificationKind.PAYMENT_SUCCESS,
    )
"""

from __future__ import annotations

from django.conf import settings
from django.db import models

from core.models import BaseModel


class NotificationKind(models.TextChoices):
    """Notification types emitted by the payments app."""

    PAYMENT_SUCCESS = "payment_success", "Payment Successful"
    PAYMENT_PENDING = "payment_pending", "Payment Pending"
    PAYMENT_FAILED = "payment_failed", "Payment Failed"
    PAYMENT_REFUND = "payment_refund", "Payment Refunded"
    CASHOUT_INITIATED = "cashout_initiated", "Cashout Initiated"


class Notification(BaseModel):
    """
    Individual notification record for a user.

    Title and body are fully rendered strings kept as a historical
    record; data holds the event payload (transaction_id, amount, ...).

    Fields:
        recipient: User receiving the notification
        notification_type: NotificationKind key
        title: Rendered title
        body: Rendered body
        data: Event payload
        is_read: Whether the recipient has read it
        idempotency_key: "{transaction_id}:{notification_type}" for
            payment events

    Note:
        - recipient CASCADE: notifications deleted with the user
    """

    recipient = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="notifications",
        help_text="User receiving this notification",
    )

    notification_type = models.CharField(
        max_length=50,
        choices=NotificationKind.choices,
        db_index=True,
        help_text="Type of this notification",
    )

    title = models.CharField(
        max_length=500,
        help_text="Fully rendered notification title",
    )

    body = models.TextField(
        blank=True,
        default="",
        help_text="Fully rendered notification body",
    )

    data = models.JSONField(
        default=dict,
        blank=True,
        help_text="Event payload (transaction_id, amount, currency, ...)",
    )

    is_read = models.BooleanField(
        default=False,
        db_index=True,
        help_text="Whether recipient has read this notification",
    )

    idempotency_key = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        help_text="Idempotency key to prevent duplicate notifications",
    )

    class Meta:
        db_table = "notifications_notification"
        ordering = ["-created_at"]
        indexes = [
            models.Index(
                fields=["recipient", "is_read", "-created_at"],
                name="notif_recipient_unread_idx",
            ),
            models.Index(
                fields=["recipient", "notification_type"],
                name="notif_recipient_type_idx",
            ),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["idempotency_key"],
                name="notif_idempotency_key_unique",
                condition=models.Q(idempotency_key__isnull=False),
            ),
        ]

    def __str__(self) -> str:
        read_status = "read" if self.is_read else "unread"
        return (
            f"Notification({self.notification_type}) -> "
            f"User {self.recipient_id} [{read_status}]"
        )

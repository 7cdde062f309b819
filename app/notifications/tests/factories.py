"""
Factory Boy factories for notification models.

Usage:
    from notifications.tests.factories import NotificationFactory

    notification = NotificationFactory(recipient=user)
    failed = NotificationFactory(notification_type="payment_failed")
"""

import factory

from core.tests.factories import UserFactory
from notifications.models import Notification, NotificationKind


class NotificationFactory(factory.django.DjangoModelFactory):
    """
    Factory for Notification model.

    Creates an unread payment_success notification by default.
    """

    class Meta:
        model = Notification

    recipient = factory.SubFactory(UserFactory)
    notification_type = NotificationKind.PAYMENT_SUCCESS
    title = "Payment successful"
    body = factory.Sequence(lambda n: f"Your payment of NGN {n}.00 was successful.")
    data = factory.LazyFunction(dict)
    is_read = False
    idempotency_key = None

"""
Tests for payment Celery tasks.

Tasks are called directly (synchronously); CELERY_TASK_ALWAYS_EAGER is
set for the test run.
"""

import uuid
from datetime import timedelta

import pytest
from django.utils import timezone
from freezegun import freeze_time

from notifications.models import Notification
from payments.signals import ride_payment_updated
from payments.tasks import (
    reconcile_stale_transactions,
    send_payment_notification,
    update_ride_payment_status,
)
from payments.tests.factories import TransactionFactory
from payments.tests.fakes import completed_verify


@pytest.mark.django_db
class TestSendPaymentNotification:
    """Tests for send_payment_notification."""

    def test_creates_notification(self, user):
        payload = {"transaction_id": str(uuid.uuid4()), "amount": "5000.00", "currency": "NGN"}

        result = send_payment_notification(str(user.pk), "payment_success", payload)

        notification = Notification.objects.get(recipient=user)
        assert result == {"status": "created", "notification_id": notification.id}
        assert notification.idempotency_key == f"{payload['transaction_id']}:payment_success"
        assert notification.body == "Your payment of NGN 5000.00 was successful."

    def test_duplicate_delivery(self, user):
        payload = {"transaction_id": str(uuid.uuid4()), "amount": "5000.00", "currency": "NGN"}

        send_payment_notification(str(user.pk), "payment_success", payload)
        result = send_payment_notification(str(user.pk), "payment_success", payload)

        assert result["status"] == "duplicate"
        assert Notification.objects.filter(recipient=user).count() == 1

    def test_same_transaction_different_type(self, user):
        payload = {"transaction_id": str(uuid.uuid4()), "amount": "5000.00", "currency": "NGN"}

        send_payment_notification(str(user.pk), "payment_pending", payload)
        send_payment_notification(str(user.pk), "payment_success", payload)

        assert Notification.objects.filter(recipient=user).count() == 2

    def test_unknown_user(self, db):
        result = send_payment_notification("999999", "payment_success", {"transaction_id": "x"})

        assert result["status"] == "user_not_found"

    def test_unknown_type(self, user):
        result = send_payment_notification(str(user.pk), "ride_cancelled", {"transaction_id": "x"})

        assert result == {"status": "failed", "error_code": "TYPE_NOT_FOUND"}


class TestUpdateRidePaymentStatus:
    """Tests for update_ride_payment_status."""

    def test_publishes_signal(self):
        received = []

        def receiver(sender, ride_id, payment_fields, **kwargs):
            received.append((ride_id, payment_fields))

        ride_payment_updated.connect(receiver)
        try:
            result = update_ride_payment_status("ride-1", {"is_paid": True})
        finally:
            ride_payment_updated.disconnect(receiver)

        assert received == [("ride-1", {"is_paid": True})]
        assert result == {"status": "sent", "ride_id": "ride-1", "receivers": 1}


@pytest.mark.django_db
class TestReconcileStaleTransactionsTask:
    """Tests for the periodic stale sweep task."""

    def test_returns_counts(self, payment_services, fake_gateway, user, mock_redis):
        with freeze_time(timezone.now() - timedelta(hours=2)):
            txn = TransactionFactory(user=user)
        fake_gateway.verify_results.append(completed_verify(txn.gateway_reference))

        result = reconcile_stale_transactions(older_than_minutes=30)

        assert result == {
            "status": "completed",
            "checked": 1,
            "completed": 1,
            "failed": 0,
            "unchanged": 0,
            "errors": 0,
        }

    def test_skipped_when_locked(self, payment_services, mock_redis):
        mock_redis.set.return_value = False

        result = reconcile_stale_transactions()

        assert result == {"status": "skipped", "error_code": "RECONCILIATION_IN_PROGRESS"}

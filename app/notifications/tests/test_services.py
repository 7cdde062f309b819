"""
Unit tests for notification services.

Test Classes:
    TestNotificationServiceCreate: Tests for create_notification()
"""

from notifications.models import Notification
from notifications.services import NotificationService


# =============================================================================
# create_notification
# =============================================================================


class TestNotificationServiceCreate:
    """
    Tests for NotificationService.create_notification().

    Verifies:
    - Template rendering from the event payload
    - Type validation
    - Idempotency
    """

    def test_renders_payment_success_template(self, db, user, payment_payload):
        """Title and body are rendered from the payload."""
        result = NotificationService.create_notification(
            recipient=user,
            type_key="payment_success",
            data=payment_payload,
        )

        assert result.success
        notification = result.data
        assert notification.title == "Payment successful"
        assert notification.body == "Your payment of NGN 5000.00 was successful."
        assert notification.data == payment_payload
        assert notification.recipient == user

    def test_refund_template_uses_refund_amount(self, db, user, payment_payload):
        """Refund notifications show the refunded amount, not the charge."""
        result = NotificationService.create_notification(
            recipient=user,
            type_key="payment_refund",
            data={**payment_payload, "refund_amount": "1500.00"},
        )

        assert result.success
        assert result.data.body == "NGN 1500.00 has been refunded to you."

    def test_missing_placeholders_render_empty(self, db, user):
        """A payload without amount still produces a notification."""
        result = NotificationService.create_notification(
            recipient=user,
            type_key="payment_failed",
            data={"transaction_id": "abc"},
        )

        assert result.success
        assert result.data.body == "Your payment of   could not be completed."

    def test_explicit_title_body_overrides_template(self, db, user):
        """Explicit title and body override template rendering."""
        result = NotificationService.create_notification(
            recipient=user,
            type_key="cashout_initiated",
            title="Custom Title",
            body="Custom Body",
        )

        assert result.success
        assert result.data.title == "Custom Title"
        assert result.data.body == "Custom Body"

    def test_fails_for_unknown_type_key(self, db, user):
        """Returns failure for unknown notification type key."""
        result = NotificationService.create_notification(
            recipient=user,
            type_key="nonexistent_type",
        )

        assert not result.success
        assert result.error_code == "TYPE_NOT_FOUND"
        assert "nonexistent_type" in result.error
        assert not Notification.objects.exists()

    def test_duplicate_idempotency_key_is_rejected(self, db, user, payment_payload):
        """A redelivered event does not create a second notification."""
        key = f"{payment_payload['transaction_id']}:payment_success"

        first = NotificationService.create_notification(
            recipient=user,
            type_key="payment_success",
            data=payment_payload,
            idempotency_key=key,
        )
        second = NotificationService.create_notification(
            recipient=user,
            type_key="payment_success",
            data=payment_payload,
            idempotency_key=key,
        )

        assert first.success
        assert not second.success
        assert second.error_code == "DUPLICATE"
        assert Notification.objects.filter(idempotency_key=key).count() == 1

    def test_same_transaction_different_types_both_created(self, db, user, payment_payload):
        """Idempotency is per (transaction, type) pair."""
        txn_id = payment_payload["transaction_id"]

        pending = NotificationService.create_notification(
            recipient=user,
            type_key="payment_pending",
            data=payment_payload,
            idempotency_key=f"{txn_id}:payment_pending",
        )
        success = NotificationService.create_notification(
            recipient=user,
            type_key="payment_success",
            data=payment_payload,
            idempotency_key=f"{txn_id}:payment_success",
        )

        assert pending.success
        assert success.success
        assert Notification.objects.filter(recipient=user).count() == 2

"""
Test configuration and fixtures for notification tests.

Usage:
    def test_example(user, unread_notification):
        assert unread_notification.recipient == user
"""

import pytest

from core.tests.factories import UserFactory


# =============================================================================
# User Fixtures
# =============================================================================


@pytest.fixture
def user(db):
    """Create a rider to receive notifications."""
    return UserFactory()


# =============================================================================
# Notification Fixtures
# =============================================================================


@pytest.fixture
def unread_notification(db, user):
    """Create an unread payment_success notification."""
    from notifications.tests.factories import NotificationFactory

    return NotificationFactory(recipient=user, is_read=False)


@pytest.fixture
def payment_payload():
    """Payload as sent by the payments dispatcher."""
    return {
        "transaction_id": "3f2b6a58-3c55-4bcb-9c7c-1b1d5d1d3a01",
        "amount": "5000.00",
        "currency": "NGN",
        "status": "completed",
    }

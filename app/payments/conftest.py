"""
Pytest fixtures shared by all payment test packages.

Engine fixtures wire a ReconciliationEngine to an in-memory gateway
(FakeGatewayAdapter, registered as "fakepay") and a RecordingDispatcher,
so no test talks to a real provider or Celery broker.

Usage:
    def test_verify_completes(engine, fake_gateway, pending_txn):
        fake_gateway.verify_results.append(completed_verify(pending_txn.gateway_reference))
        outcome = engine.verify(pending_txn.id)
        assert outcome.status == TransactionStatus.COMPLETED
"""

from unittest.mock import MagicMock

import pytest
from rest_framework.test import APIClient

from core.tests.factories import UserFactory
from payments.adapters import GatewayRegistry
from payments.services import (
    BalanceCalculator,
    PaymentService,
    ReconciliationEngine,
    ReconciliationService,
)
from payments.tests.factories import TransactionFactory
from payments.tests.fakes import FakeGatewayAdapter, RecordingDispatcher


# =============================================================================
# User Fixtures
# =============================================================================


@pytest.fixture
def user(db):
    """Create a rider."""
    return UserFactory()


@pytest.fixture
def other_user(db):
    """Create a second rider."""
    return UserFactory()


@pytest.fixture
def staff_user(db):
    """Create a staff user (may issue refunds)."""
    return UserFactory(is_staff=True)


@pytest.fixture
def api_client():
    """Unauthenticated API client."""
    return APIClient()


@pytest.fixture
def authenticated_client(user):
    """API client authenticated as the rider."""
    client = APIClient()
    client.force_authenticate(user=user)
    return client


@pytest.fixture
def staff_client(staff_user):
    """API client authenticated as staff."""
    client = APIClient()
    client.force_authenticate(user=staff_user)
    return client


# =============================================================================
# Engine Fixtures
# =============================================================================


@pytest.fixture
def fake_gateway():
    """Scriptable in-memory gateway registered as "fakepay"."""
    return FakeGatewayAdapter()


@pytest.fixture
def dispatcher():
    """Dispatcher that records notifications and ride updates."""
    return RecordingDispatcher()


@pytest.fixture
def registry(fake_gateway):
    return GatewayRegistry(adapters={"fakepay": fake_gateway}, default="fakepay")


@pytest.fixture
def engine(registry, dispatcher):
    """ReconciliationEngine over the fake gateway."""
    return ReconciliationEngine(registry, dispatcher, timeout=5)


@pytest.fixture
def balance_calculator(dispatcher):
    return BalanceCalculator(dispatcher=dispatcher)


@pytest.fixture
def payment_services(engine, balance_calculator):
    """
    Point PaymentService and ReconciliationService at the test engine.

    Restores the app-configured components afterwards.
    """
    PaymentService.set_engine(engine)
    PaymentService.set_balance_calculator(balance_calculator)
    ReconciliationService.set_engine(engine)
    yield engine
    PaymentService.set_engine(None)
    PaymentService.set_balance_calculator(None)
    ReconciliationService.set_engine(None)


# =============================================================================
# Redis Fixtures
# =============================================================================


@pytest.fixture
def mock_redis(mocker):
    """
    Mock Redis connection used by DistributedLock.

    Locks are always granted and released unless a test changes
    set/eval return values.
    """
    redis_instance = MagicMock()
    redis_instance.set.return_value = True
    redis_instance.eval.return_value = 1
    mocker.patch("payments.locks.get_redis_connection", return_value=redis_instance)
    return redis_instance


# =============================================================================
# Transaction Fixtures
# =============================================================================


@pytest.fixture
def pending_txn(db, user):
    """Pending ride payment on the fake gateway."""
    return TransactionFactory(user=user)


@pytest.fixture
def completed_txn(db, user):
    """Completed ride payment on the fake gateway."""
    return TransactionFactory(user=user, completed=True)


@pytest.fixture
def failed_txn(db, user):
    """Failed ride payment on the fake gateway."""
    return TransactionFactory(user=user, failed=True)

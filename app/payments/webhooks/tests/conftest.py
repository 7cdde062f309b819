"""
Pytest fixtures for webhook view tests.

Unlike the engine tests, these run the real Paystack and Stripe adapters
so signature checks happen exactly as in production. Only the Stripe
SDK's construct_event is mocked; Paystack payloads are signed with
paystack_secret.
"""

import pytest
from django.test import RequestFactory

from payments.adapters import GatewayRegistry, PaystackAdapter, StripeAdapter
from payments.services import PaymentService, ReconciliationEngine
from payments.tests.factories import TransactionFactory


@pytest.fixture
def rf():
    """Request factory for creating test requests."""
    return RequestFactory()


@pytest.fixture
def paystack_secret():
    return "sk_test_webhooks"


@pytest.fixture
def webhook_engine(dispatcher, paystack_secret):
    """
    Engine over real adapters, installed as PaymentService's engine.

    Restores the app-configured engine afterwards.
    """
    registry = GatewayRegistry(
        adapters={
            "paystack": PaystackAdapter(secret_key=paystack_secret),
            "stripe": StripeAdapter(secret_key="sk_test", webhook_secret="whsec_test"),
        },
        default="paystack",
    )
    engine = ReconciliationEngine(registry, dispatcher, timeout=5)
    PaymentService.set_engine(engine)
    yield engine
    PaymentService.set_engine(None)


@pytest.fixture
def paystack_txn(db, user):
    """Pending Paystack charge."""
    return TransactionFactory(user=user, gateway="paystack", gateway_reference="ps_ref_1")


@pytest.fixture
def stripe_txn(db, user):
    """Pending Stripe charge."""
    return TransactionFactory(
        user=user,
        gateway="stripe",
        gateway_reference="pi_webhook_1",
        currency="USD",
        amount="50.00",
    )

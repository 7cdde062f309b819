"""
Pytest fixtures for gateway adapter tests.

This module provides fixtures for testing the Paystack and Stripe
adapters without network access: canned HTTP responses for Paystack,
mock SDK objects for Stripe, and pre-built Stripe exceptions.

Sections:
    - Adapter Fixtures
    - Paystack Response Fixtures
    - Mock Stripe Response Fixtures
    - Mock Stripe Error Fixtures
    - Mock Stripe Client Fixtures
"""

import hashlib
import hmac
import json
from dataclasses import dataclass
from typing import Any
from unittest.mock import MagicMock, patch

import pytest
import requests
import stripe

from payments.adapters.paystack_adapter import PaystackAdapter
from payments.adapters.stripe_adapter import StripeAdapter

PAYSTACK_SECRET = "sk_test_paystack"


# =============================================================================
# Adapter Fixtures
# =============================================================================


@pytest.fixture
def paystack_adapter():
    """Paystack adapter pointed at a fake base URL."""
    return PaystackAdapter(
        secret_key=PAYSTACK_SECRET,
        base_url="https://paystack.test/",
        callback_url="https://app.test/payments/callback",
    )


@pytest.fixture
def stripe_adapter():
    """Stripe adapter with test credentials."""
    return StripeAdapter(secret_key="sk_test_stripe", webhook_secret="whsec_test")


# =============================================================================
# Paystack Response Fixtures
# =============================================================================


@pytest.fixture
def paystack_response():
    """Build a requests.Response-like mock."""

    def _create(body: Any = None, status_code: int = 200, json_error: bool = False):
        response = MagicMock(spec=requests.Response)
        response.status_code = status_code
        if json_error:
            response.json.side_effect = ValueError("No JSON object could be decoded")
        else:
            response.json.return_value = body
        return response

    return _create


@pytest.fixture
def mock_requests(mocker):
    """Patch requests.request as seen by the Paystack adapter."""
    return mocker.patch("payments.adapters.paystack_adapter.requests.request")


@pytest.fixture
def paystack_verify_body():
    """Create a /transaction/verify response body."""

    def _create(
        status: str = "success",
        reference: str = "ref_123",
        amount: int = 500000,
        currency: str = "NGN",
        channel: str = "card",
        metadata: Any = None,
    ) -> dict[str, Any]:
        return {
            "status": True,
            "message": "Verification successful",
            "data": {
                "status": status,
                "reference": reference,
                "amount": amount,
                "currency": currency,
                "channel": channel,
                "gateway_response": "Approved" if status == "success" else "Declined",
                "metadata": metadata if metadata is not None else {},
            },
        }

    return _create


@pytest.fixture
def sign_paystack():
    """Sign a webhook body the way Paystack does."""

    def _sign(payload: bytes, secret: str = PAYSTACK_SECRET) -> str:
        return hmac.new(secret.encode("utf-8"), payload, hashlib.sha512).hexdigest()

    return _sign


@pytest.fixture
def paystack_event():
    """Serialize a Paystack webhook event."""

    def _create(
        event: str = "charge.success",
        status: str = "success",
        reference: str = "ref_123",
        amount: int = 500000,
        metadata: Any = None,
    ) -> bytes:
        return json.dumps(
            {
                "event": event,
                "data": {
                    "status": status,
                    "reference": reference,
                    "amount": amount,
                    "currency": "NGN",
                    "channel": "card",
                    "metadata": metadata if metadata is not None else {},
                },
            }
        ).encode()

    return _create


# =============================================================================
# Mock Stripe Response Fixtures
# =============================================================================


@dataclass
class MockStripeObject:
    """Mock Stripe API object with to_dict support."""

    data: dict[str, Any]

    def __getattr__(self, name: str) -> Any:
        if name == "data":
            return self.__dict__["data"]
        return self.data.get(name)

    def to_dict(self) -> dict[str, Any]:
        return self.data


@pytest.fixture
def mock_payment_intent():
    """Create a mock PaymentIntent response."""

    def _create(
        id: str = "pi_test123456",
        status: str = "requires_payment_method",
        amount: int = 5000,
        currency: str = "usd",
        amount_received: int = 0,
        metadata: dict | None = None,
        last_payment_error: dict | None = None,
    ) -> MockStripeObject:
        return MockStripeObject(
            {
                "id": id,
                "object": "payment_intent",
                "status": status,
                "amount": amount,
                "currency": currency,
                "amount_received": amount_received,
                "payment_method_types": ["card"],
                "metadata": metadata or {},
                "last_payment_error": last_payment_error,
            }
        )

    return _create


@pytest.fixture
def mock_refund():
    """Create a mock Refund response."""

    def _create(
        id: str = "re_test123456",
        amount: int = 5000,
        status: str = "succeeded",
        failure_reason: str | None = None,
    ) -> MockStripeObject:
        return MockStripeObject(
            {
                "id": id,
                "object": "refund",
                "amount": amount,
                "currency": "usd",
                "status": status,
                "payment_intent": "pi_test123456",
                "failure_reason": failure_reason,
            }
        )

    return _create


# =============================================================================
# Mock Stripe Error Fixtures
# =============================================================================


@pytest.fixture
def card_error():
    """Create a Stripe CardError."""

    def _create(
        message: str = "Your card was declined.",
        code: str = "card_declined",
    ) -> stripe.CardError:
        return stripe.CardError(message=message, param=None, code=code)

    return _create


@pytest.fixture
def invalid_request_error():
    """Create a Stripe InvalidRequestError."""
    return stripe.InvalidRequestError(
        message="No such payment_intent: 'pi_missing'",
        param="intent",
        code="resource_missing",
    )


@pytest.fixture
def rate_limit_error():
    return stripe.RateLimitError(message="Too many requests hit the API too quickly.")


@pytest.fixture
def api_error():
    return stripe.APIError(message="Something went wrong on Stripe's end.")


@pytest.fixture
def authentication_error():
    return stripe.AuthenticationError(message="Invalid API Key provided.")


# =============================================================================
# Mock Stripe Client Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def isolated_stripe_config():
    """Keep SDK globals set by the adapter from leaking between tests."""
    with (
        patch.object(stripe, "api_key", None),
        patch.object(stripe, "default_http_client", None),
        patch("stripe.RequestsClient") as client,
    ):
        yield client


@pytest.fixture
def mock_stripe_payment_intent(mock_payment_intent):
    """Mock stripe.PaymentIntent API."""
    with patch("stripe.PaymentIntent") as mock:
        mock.create.return_value = mock_payment_intent()
        mock.retrieve.return_value = mock_payment_intent()
        yield mock


@pytest.fixture
def mock_stripe_refund(mock_refund):
    """Mock stripe.Refund API."""
    with patch("stripe.Refund") as mock:
        mock.create.return_value = mock_refund()
        yield mock


@pytest.fixture
def mock_stripe_webhook():
    """Mock stripe.Webhook API."""
    with patch("stripe.Webhook") as mock:
        mock.construct_event.return_value = MockStripeObject(
            {
                "id": "evt_test123",
                "type": "payment_intent.succeeded",
                "data": {
                    "object": {
                        "id": "pi_test123",
                        "object": "payment_intent",
                        "amount": 5000,
                        "amount_received": 5000,
                        "currency": "usd",
                        "payment_method_types": ["card"],
                        "metadata": {"transaction_id": "txn-1"},
                    }
                },
            }
        )
        yield mock

"""
Tests for Stripe adapter.

Tests cover:
- Idempotency key generation
- PaymentIntent creation and retrieval
- Error translation for each exception type
- Refunds
- Webhook signature verification
- SDK configuration (API key, per-call timeout)
"""

import uuid
from decimal import Decimal
from unittest.mock import MagicMock

import pytest
import stripe
from django.test import override_settings

from payments.adapters import IdempotencyKeyGenerator, StripeAdapter
from payments.exceptions import (
    GatewayRequestError,
    GatewayTimeoutError,
    GatewayUnavailableError,
    InvalidWebhookSignatureError,
)
from payments.state_machines import TransactionStatus, WebhookAction


# =============================================================================
# IdempotencyKeyGenerator Tests
# =============================================================================


class TestIdempotencyKeyGenerator:
    """Tests for IdempotencyKeyGenerator."""

    def test_generate_key_format(self):
        """Key should be operation:entity:attempt:hash."""
        entity_id = uuid.uuid4()

        key = IdempotencyKeyGenerator.generate("initiate", entity_id)

        operation, entity, attempt, short_hash = key.split(":")
        assert operation == "initiate"
        assert entity == str(entity_id)
        assert attempt == "1"
        assert len(short_hash) == 8

    def test_same_inputs_produce_same_key(self):
        """Retrying with the same inputs must reuse the key."""
        assert IdempotencyKeyGenerator.generate(
            "initiate", "txn-1"
        ) == IdempotencyKeyGenerator.generate("initiate", "txn-1")

    def test_different_attempts_produce_different_keys(self):
        first = IdempotencyKeyGenerator.generate("initiate", "txn-1", attempt=1)
        second = IdempotencyKeyGenerator.generate("initiate", "txn-1", attempt=2)

        assert first != second

    def test_key_depends_on_secret_key(self):
        """The hash is salted with SECRET_KEY."""
        with override_settings(SECRET_KEY="one"):
            first = IdempotencyKeyGenerator.generate("initiate", "txn-1")
        with override_settings(SECRET_KEY="two"):
            second = IdempotencyKeyGenerator.generate("initiate", "txn-1")

        assert first != second


# =============================================================================
# Initiate Tests
# =============================================================================


class TestStripeAdapterInitiate:
    """Tests for StripeAdapter.initiate."""

    def test_initiate_creates_payment_intent(
        self, stripe_adapter, mock_stripe_payment_intent
    ):
        """Amount goes out in cents with the reference in metadata."""
        result = stripe_adapter.initiate(
            Decimal("50.00"),
            "USD",
            "txn-1",
            {"ride_id": None, "user_id": 7},
            timeout=5,
        )

        kwargs = mock_stripe_payment_intent.create.call_args.kwargs
        assert kwargs["amount"] == 5000
        assert kwargs["currency"] == "usd"
        assert kwargs["metadata"] == {"ride_id": "", "user_id": "7", "reference": "txn-1"}
        assert kwargs["idempotency_key"] == IdempotencyKeyGenerator.generate(
            "initiate", "txn-1"
        )
        assert result.success is True
        assert result.gateway_reference == "pi_test123456"
        assert result.status == TransactionStatus.PENDING
        assert result.raw["id"] == "pi_test123456"

    def test_initiate_already_succeeded(
        self, stripe_adapter, mock_stripe_payment_intent, mock_payment_intent
    ):
        mock_stripe_payment_intent.create.return_value = mock_payment_intent(
            status="succeeded", amount_received=5000
        )

        result = stripe_adapter.initiate(Decimal("50"), "USD", "txn-1", {}, timeout=5)

        assert result.success is True
        assert result.status == TransactionStatus.COMPLETED

    def test_initiate_canceled_is_not_success(
        self, stripe_adapter, mock_stripe_payment_intent, mock_payment_intent
    ):
        mock_stripe_payment_intent.create.return_value = mock_payment_intent(
            status="canceled"
        )

        result = stripe_adapter.initiate(Decimal("50"), "USD", "txn-1", {}, timeout=5)

        assert result.success is False
        assert result.status == TransactionStatus.FAILED

    def test_card_error_is_a_declined_result(
        self, stripe_adapter, mock_stripe_payment_intent, card_error
    ):
        """A card decline is an answer, not a transport failure."""
        mock_stripe_payment_intent.create.side_effect = card_error()

        result = stripe_adapter.initiate(Decimal("50"), "USD", "txn-1", {}, timeout=5)

        assert result.success is False
        assert result.status == TransactionStatus.FAILED
        assert result.gateway_reference is None
        assert result.raw["code"] == "card_declined"
        assert "declined" in result.message

    def test_configures_sdk_per_call(
        self, stripe_adapter, mock_stripe_payment_intent, isolated_stripe_config
    ):
        """API key and timeout are applied before each call."""
        stripe_adapter.initiate(Decimal("50"), "USD", "txn-1", {}, timeout=7)

        assert stripe.api_key == "sk_test_stripe"
        isolated_stripe_config.assert_called_with(timeout=7)


# =============================================================================
# Error Translation Tests
# =============================================================================


class TestStripeAdapterErrorTranslation:
    """Tests for Stripe error translation to gateway exceptions."""

    def test_invalid_request_error(
        self, stripe_adapter, mock_stripe_payment_intent, invalid_request_error
    ):
        mock_stripe_payment_intent.retrieve.side_effect = invalid_request_error

        with pytest.raises(GatewayRequestError) as exc_info:
            stripe_adapter.verify("pi_missing", timeout=5)

        assert exc_info.value.details["stripe_code"] == "resource_missing"
        assert exc_info.value.gateway == "stripe"
        assert exc_info.value.is_retryable is False

    def test_authentication_error(
        self, stripe_adapter, mock_stripe_payment_intent, authentication_error
    ):
        mock_stripe_payment_intent.retrieve.side_effect = authentication_error

        with pytest.raises(GatewayUnavailableError, match="authentication") as exc_info:
            stripe_adapter.verify("pi_1", timeout=5)

        assert exc_info.value.error_code == "GATEWAY_AUTHENTICATION_FAILED"
        assert exc_info.value.is_retryable is True

    def test_rate_limit_error(
        self, stripe_adapter, mock_stripe_payment_intent, rate_limit_error
    ):
        mock_stripe_payment_intent.create.side_effect = rate_limit_error

        with pytest.raises(GatewayUnavailableError) as exc_info:
            stripe_adapter.initiate(Decimal("50"), "USD", "txn-1", {}, timeout=5)

        assert exc_info.value.is_retryable is True

    def test_api_connection_timeout(self, stripe_adapter, mock_stripe_payment_intent):
        """A connection error caused by a timeout is a GatewayTimeoutError."""
        mock_stripe_payment_intent.create.side_effect = stripe.APIConnectionError(
            "Request to Stripe timed out"
        )

        with pytest.raises(GatewayTimeoutError):
            stripe_adapter.initiate(Decimal("50"), "USD", "txn-1", {}, timeout=5)

    def test_api_connection_error(self, stripe_adapter, mock_stripe_payment_intent):
        mock_stripe_payment_intent.create.side_effect = stripe.APIConnectionError(
            "Could not connect to Stripe."
        )

        with pytest.raises(GatewayUnavailableError) as exc_info:
            stripe_adapter.initiate(Decimal("50"), "USD", "txn-1", {}, timeout=5)

        assert not isinstance(exc_info.value, GatewayTimeoutError)

    def test_api_error(self, stripe_adapter, mock_stripe_payment_intent, api_error):
        mock_stripe_payment_intent.retrieve.side_effect = api_error

        with pytest.raises(GatewayUnavailableError):
            stripe_adapter.verify("pi_1", timeout=5)

    def test_card_error_outside_initiate(
        self, stripe_adapter, mock_stripe_refund, card_error
    ):
        """Card errors on other operations become CARD_DECLINED request errors."""
        mock_stripe_refund.create.side_effect = card_error()

        with pytest.raises(GatewayRequestError) as exc_info:
            stripe_adapter.refund("pi_1", Decimal("10"), "", timeout=5)

        assert exc_info.value.error_code == "CARD_DECLINED"

    def test_unknown_error(self, stripe_adapter, mock_stripe_payment_intent):
        mock_stripe_payment_intent.retrieve.side_effect = RuntimeError("boom")

        with pytest.raises(GatewayUnavailableError, match="boom"):
            stripe_adapter.verify("pi_1", timeout=5)


# =============================================================================
# Verify Tests
# =============================================================================


class TestStripeAdapterVerify:
    """Tests for StripeAdapter.verify."""

    def test_verify_succeeded(
        self, stripe_adapter, mock_stripe_payment_intent, mock_payment_intent
    ):
        mock_stripe_payment_intent.retrieve.return_value = mock_payment_intent(
            status="succeeded",
            amount=5000,
            amount_received=4500,
            metadata={"transaction_id": "txn-1"},
        )

        result = stripe_adapter.verify("pi_test123456", timeout=5)

        mock_stripe_payment_intent.retrieve.assert_called_once_with("pi_test123456")
        assert result.success is True
        assert result.status == TransactionStatus.COMPLETED
        assert result.amount == Decimal("45.00")
        assert result.currency == "USD"
        assert result.payment_method == "card"
        assert result.metadata == {"transaction_id": "txn-1"}
        assert result.is_open is False

    @pytest.mark.parametrize(
        "stripe_status,expected",
        [
            ("processing", TransactionStatus.PROCESSING),
            ("requires_action", TransactionStatus.PENDING),
            ("requires_capture", TransactionStatus.PROCESSING),
            ("something_new", TransactionStatus.PENDING),
        ],
    )
    def test_verify_open_statuses(
        self,
        stripe_adapter,
        mock_stripe_payment_intent,
        mock_payment_intent,
        stripe_status,
        expected,
    ):
        mock_stripe_payment_intent.retrieve.return_value = mock_payment_intent(
            status=stripe_status
        )

        result = stripe_adapter.verify("pi_1", timeout=5)

        assert result.success is False
        assert result.status == expected
        assert result.is_open is True

    def test_verify_canceled_with_error_message(
        self, stripe_adapter, mock_stripe_payment_intent, mock_payment_intent
    ):
        mock_stripe_payment_intent.retrieve.return_value = mock_payment_intent(
            status="canceled",
            last_payment_error={"message": "Insufficient funds"},
        )

        result = stripe_adapter.verify("pi_1", timeout=5)

        assert result.status == TransactionStatus.FAILED
        assert result.message == "Insufficient funds"

    def test_verify_by_local_reference_searches_metadata(
        self, stripe_adapter, mock_stripe_payment_intent, mock_payment_intent
    ):
        """Initiate timed out before the intent id was stored."""
        reference = str(uuid.uuid4())
        mock_stripe_payment_intent.search.return_value = MagicMock(
            data=[mock_payment_intent(id="pi_found", status="succeeded")]
        )

        result = stripe_adapter.verify(reference, timeout=5)

        mock_stripe_payment_intent.search.assert_called_once_with(
            query=f"metadata['reference']:'{reference}'",
            limit=1,
        )
        mock_stripe_payment_intent.retrieve.assert_not_called()
        assert result.gateway_reference == "pi_found"
        assert result.status == TransactionStatus.COMPLETED

    def test_verify_by_local_reference_not_found(
        self, stripe_adapter, mock_stripe_payment_intent
    ):
        mock_stripe_payment_intent.search.return_value = MagicMock(data=[])

        with pytest.raises(GatewayRequestError) as exc_info:
            stripe_adapter.verify(str(uuid.uuid4()), timeout=5)

        assert exc_info.value.error_code == "UNKNOWN_REFERENCE"
        assert exc_info.value.is_retryable is False


# =============================================================================
# Refund Tests
# =============================================================================


class TestStripeAdapterRefund:
    """Tests for StripeAdapter.refund."""

    def test_refund_success(self, stripe_adapter, mock_stripe_refund, mock_refund):
        mock_stripe_refund.create.return_value = mock_refund(id="re_1", amount=2500)

        result = stripe_adapter.refund("pi_1", Decimal("25.00"), "Rider complaint", timeout=5)

        mock_stripe_refund.create.assert_called_once_with(
            payment_intent="pi_1",
            amount=2500,
            metadata={"reason": "Rider complaint"},
        )
        assert result.success is True
        assert result.refund_id == "re_1"
        assert result.amount == Decimal("25.00")

    def test_pending_refund_counts_as_success(
        self, stripe_adapter, mock_stripe_refund, mock_refund
    ):
        mock_stripe_refund.create.return_value = mock_refund(status="pending")

        result = stripe_adapter.refund("pi_1", Decimal("50"), "", timeout=5)

        assert result.success is True
        assert result.status == "pending"

    def test_failed_refund(self, stripe_adapter, mock_stripe_refund, mock_refund):
        mock_stripe_refund.create.return_value = mock_refund(
            status="failed", failure_reason="expired_or_canceled_card"
        )

        result = stripe_adapter.refund("pi_1", Decimal("50"), "", timeout=5)

        assert result.success is False
        assert result.message == "expired_or_canceled_card"


# =============================================================================
# Webhook Tests
# =============================================================================


class TestStripeAdapterParseWebhook:
    """Tests for StripeAdapter.parse_webhook."""

    def test_payment_succeeded_event(self, stripe_adapter, mock_stripe_webhook):
        result = stripe_adapter.parse_webhook(
            b"{}", {"Stripe-Signature": "t=1,v1=abc"}
        )

        mock_stripe_webhook.construct_event.assert_called_once_with(
            b"{}", "t=1,v1=abc", "whsec_test"
        )
        assert result.valid is True
        assert result.action == WebhookAction.PAYMENT_COMPLETED
        assert result.gateway_reference == "pi_test123"
        assert result.amount == Decimal("50.00")
        assert result.currency == "USD"
        assert result.metadata == {"transaction_id": "txn-1"}
        assert result.event == "payment_intent.succeeded"

    def test_lowercase_signature_header(self, stripe_adapter, mock_stripe_webhook):
        result = stripe_adapter.parse_webhook(b"{}", {"stripe-signature": "sig"})

        assert result.valid is True

    def test_payment_failed_event(self, stripe_adapter, mock_stripe_webhook):
        event = mock_stripe_webhook.construct_event.return_value
        event.data["type"] = "payment_intent.payment_failed"

        result = stripe_adapter.parse_webhook(b"{}", {"Stripe-Signature": "sig"})

        assert result.action == WebhookAction.PAYMENT_FAILED

    def test_unrelated_event(self, stripe_adapter, mock_stripe_webhook):
        event = mock_stripe_webhook.construct_event.return_value
        event.data["type"] = "charge.dispute.created"
        event.data["data"]["object"]["object"] = "dispute"

        result = stripe_adapter.parse_webhook(b"{}", {"Stripe-Signature": "sig"})

        assert result.action == WebhookAction.EVENT_RECEIVED
        assert result.gateway_reference is None

    def test_missing_signature(self, stripe_adapter, mock_stripe_webhook):
        with pytest.raises(InvalidWebhookSignatureError):
            stripe_adapter.parse_webhook(b"{}", {})

        mock_stripe_webhook.construct_event.assert_not_called()

    def test_invalid_signature(self, stripe_adapter, mock_stripe_webhook):
        mock_stripe_webhook.construct_event.side_effect = (
            stripe.SignatureVerificationError(
                "Unable to verify webhook signature.", sig_header="bad"
            )
        )

        with pytest.raises(InvalidWebhookSignatureError) as exc_info:
            stripe_adapter.parse_webhook(b"{}", {"Stripe-Signature": "bad"})

        assert exc_info.value.details["gateway"] == "stripe"

    def test_invalid_json(self, stripe_adapter, mock_stripe_webhook):
        mock_stripe_webhook.construct_event.side_effect = ValueError("bad json")

        with pytest.raises(InvalidWebhookSignatureError, match="JSON"):
            stripe_adapter.parse_webhook(b"not json", {"Stripe-Signature": "sig"})

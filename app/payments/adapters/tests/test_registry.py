"""Tests for GatewayRegistry."""

import pytest
from django.test import override_settings

from payments.adapters import GatewayRegistry, PaystackAdapter, StripeAdapter
from payments.exceptions import PaymentValidationError
from payments.tests.fakes import FakeGatewayAdapter

CONFIG = {
    "paystack": {
        "ADAPTER": "payments.adapters.paystack_adapter.PaystackAdapter",
        "OPTIONS": {"secret_key": "sk_test_1", "base_url": "https://paystack.test"},
    },
    "stripe": {
        "ADAPTER": "payments.adapters.stripe_adapter.StripeAdapter",
        "OPTIONS": {"secret_key": "sk_test_2"},
    },
}


class TestGatewayRegistry:
    """Tests for adapter lookup."""

    def test_builds_adapter_from_config(self):
        registry = GatewayRegistry(config=CONFIG)

        adapter = registry.get("paystack")

        assert isinstance(adapter, PaystackAdapter)
        assert adapter.name == "paystack"
        assert adapter.secret_key == "sk_test_1"
        assert adapter.base_url == "https://paystack.test"

    def test_adapter_instance_is_shared(self):
        registry = GatewayRegistry(config=CONFIG)

        assert registry.get("stripe") is registry.get("stripe")

    def test_adapters_are_built_lazily(self, mocker):
        import_string = mocker.patch(
            "payments.adapters.registry.import_string", return_value=StripeAdapter
        )
        registry = GatewayRegistry(config=CONFIG)

        import_string.assert_not_called()
        registry.get("stripe")
        import_string.assert_called_once_with(
            "payments.adapters.stripe_adapter.StripeAdapter"
        )

    def test_default_gateway(self):
        registry = GatewayRegistry(config=CONFIG, default="stripe")

        assert isinstance(registry.get(), StripeAdapter)

    def test_default_falls_back_to_first_name(self):
        registry = GatewayRegistry(config=CONFIG)

        assert registry.default == "paystack"

    def test_unknown_gateway(self):
        registry = GatewayRegistry(config=CONFIG)

        with pytest.raises(PaymentValidationError) as exc_info:
            registry.get("flutterwave")

        assert exc_info.value.error_code == "UNKNOWN_GATEWAY"
        assert exc_info.value.details["available"] == ["paystack", "stripe"]

    def test_prebuilt_adapters_take_precedence(self):
        fake = FakeGatewayAdapter(name="paystack")
        registry = GatewayRegistry(config=CONFIG, adapters={"paystack": fake})

        assert registry.get("paystack") is fake

    def test_register(self):
        registry = GatewayRegistry()
        fake = FakeGatewayAdapter()

        registry.register("fakepay", fake)

        assert "fakepay" in registry
        assert registry.names() == ["fakepay"]
        assert registry.get("fakepay") is fake

    @override_settings(
        PAYMENT_GATEWAYS=CONFIG,
        PAYMENT_DEFAULT_GATEWAY="stripe",
    )
    def test_from_settings(self):
        registry = GatewayRegistry.from_settings()

        assert registry.names() == ["paystack", "stripe"]
        assert registry.default == "stripe"


class TestSupportsCurrency:
    """Tests for GatewayAdapter.supports_currency."""

    @pytest.mark.parametrize(
        "currency,expected",
        [("NGN", True), ("ngn", True), ("EUR", False), ("", False)],
    )
    def test_paystack_currencies(self, currency, expected):
        assert PaystackAdapter().supports_currency(currency) is expected

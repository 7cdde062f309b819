"""
Tests for side-effect dispatch and app wiring.
"""

import uuid

from django.apps import apps

from payments.dispatch import CeleryDispatcher, SideEffectDispatcher
from payments.services import BalanceCalculator, PaymentService, ReconciliationEngine
from payments.tests.fakes import RecordingDispatcher


class TestCeleryDispatcher:
    """Tests for CeleryDispatcher."""

    def test_satisfies_protocol(self):
        assert isinstance(CeleryDispatcher(), SideEffectDispatcher)
        assert isinstance(RecordingDispatcher(), SideEffectDispatcher)

    def test_notify_queues_task(self, mocker):
        delay = mocker.patch("payments.tasks.send_payment_notification.delay")
        user_id = 42

        CeleryDispatcher().notify(user_id, "payment_success", {"transaction_id": "t1"})

        delay.assert_called_once_with("42", "payment_success", {"transaction_id": "t1"})

    def test_update_ride_queues_task(self, mocker):
        delay = mocker.patch("payments.tasks.update_ride_payment_status.delay")
        ride_id = uuid.uuid4()

        CeleryDispatcher().update_ride_status(ride_id, {"is_paid": True})

        delay.assert_called_once_with(str(ride_id), {"is_paid": True})

    def test_broker_failure_is_swallowed(self, mocker):
        mocker.patch(
            "payments.tasks.send_payment_notification.delay",
            side_effect=ConnectionError("broker unreachable"),
        )
        mocker.patch(
            "payments.tasks.update_ride_payment_status.delay",
            side_effect=ConnectionError("broker unreachable"),
        )
        dispatcher = CeleryDispatcher()

        dispatcher.notify(1, "payment_success", {"transaction_id": "t1"})
        dispatcher.update_ride_status(uuid.uuid4(), {"is_paid": True})


class TestAppWiring:
    """PaymentsConfig.ready() builds the shared components."""

    def test_components_built(self):
        config = apps.get_app_config("payments")

        assert isinstance(config.engine, ReconciliationEngine)
        assert isinstance(config.engine.dispatcher, CeleryDispatcher)
        assert isinstance(config.balance_calculator, BalanceCalculator)
        assert config.engine.registry is config.gateway_registry

    def test_service_uses_app_engine_by_default(self):
        assert PaymentService.get_engine() is apps.get_app_config("payments").engine

    def test_registry_from_settings(self):
        registry = apps.get_app_config("payments").gateway_registry

        assert registry.names() == ["paystack", "stripe"]
        assert registry.default == "paystack"

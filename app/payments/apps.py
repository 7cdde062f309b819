"""
Payments app configuration.

ready() builds the process-wide payment components from settings:

    gateway_registry: GatewayRegistry over PAYMENT_GATEWAYS
    engine: ReconciliationEngine using the registry and CeleryDispatcher
    balance_calculator: BalanceCalculator sharing the dispatcher

Adapters are instantiated lazily on first use, so a missing API key
only fails the gateway that needs it.
"""

from django.apps import AppConfig


class PaymentsConfig(AppConfig):
    """Configuration for the payments application."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "payments"
    verbose_name = "Payments"

    gateway_registry = None
    engine = None
    balance_calculator = None

    def ready(self):
        from payments.adapters import GatewayRegistry
        from payments.dispatch import CeleryDispatcher
        from payments.services.balance_service import BalanceCalculator
        from payments.services.reconciliation_engine import ReconciliationEngine

        dispatcher = CeleryDispatcher()
        self.gateway_registry = GatewayRegistry.from_settings()
        self.engine = ReconciliationEngine(self.gateway_registry, dispatcher)
        self.balance_calculator = BalanceCalculator(dispatcher=dispatcher)

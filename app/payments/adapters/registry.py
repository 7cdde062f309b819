"""
Gateway registry: name -> shared adapter instance.

Built from settings.PAYMENT_GATEWAYS:

    PAYMENT_GATEWAYS = {
        "paystack": {
            "ADAPTER": "payments.adapters.paystack_adapter.PaystackAdapter",
            "OPTIONS": {"secret_key": "sk_test_..."},
        },
    }

Adapters are instantiated lazily on first lookup and then shared for the
lifetime of the process. The registry is created by PaymentsConfig and
handed to the ReconciliationEngine explicitly; tests build their own
registry with in-memory adapters via GatewayRegistry(adapters={...}).
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Mapping

from django.conf import settings
from django.utils.module_loading import import_string

from payments.adapters.base import GatewayAdapter
from payments.exceptions import PaymentValidationError

logger = logging.getLogger(__name__)


class GatewayRegistry:
    """
    Keyed, lazily-populated collection of gateway adapters.

    Args:
        config: Mapping of name -> {"ADAPTER": dotted path, "OPTIONS": {...}}
        adapters: Pre-built adapter instances (take precedence over config)
        default: Name used when callers do not pick a gateway
    """

    def __init__(
        self,
        config: Mapping[str, Mapping[str, Any]] | None = None,
        adapters: Mapping[str, GatewayAdapter] | None = None,
        default: str | None = None,
    ) -> None:
        self._config = dict(config or {})
        self._instances: dict[str, GatewayAdapter] = dict(adapters or {})
        self._lock = threading.Lock()
        self.default = default or next(iter(self.names()), None)

    @classmethod
    def from_settings(cls) -> GatewayRegistry:
        return cls(
            config=getattr(settings, "PAYMENT_GATEWAYS", {}),
            default=getattr(settings, "PAYMENT_DEFAULT_GATEWAY", None),
        )

    def names(self) -> list[str]:
        return sorted(set(self._config) | set(self._instances))

    def __contains__(self, name: str) -> bool:
        return name in self._config or name in self._instances

    def get(self, name: str | None = None) -> GatewayAdapter:
        """
        Return the shared adapter for name (or the default gateway).

        Raises:
            PaymentValidationError: Unknown gateway name
        """
        name = name or self.default
        adapter = self._instances.get(name)
        if adapter is not None:
            return adapter

        with self._lock:
            adapter = self._instances.get(name)
            if adapter is None:
                adapter = self._build(name)
                self._instances[name] = adapter
        return adapter

    def _build(self, name: str | None) -> GatewayAdapter:
        entry = self._config.get(name) if name else None
        if entry is None:
            raise PaymentValidationError(
                f"Unknown payment gateway: {name}",
                error_code="UNKNOWN_GATEWAY",
                details={"gateway": name, "available": self.names()},
            )

        adapter_class = import_string(entry["ADAPTER"])
        adapter = adapter_class(name=name, **entry.get("OPTIONS", {}))
        logger.info(
            "Initialized payment gateway adapter",
            extra={"gateway": name, "adapter": entry["ADAPTER"]},
        )
        return adapter

    def register(self, name: str, adapter: GatewayAdapter) -> None:
        """Install an already-built adapter under name."""
        with self._lock:
            self._instances[name] = adapter

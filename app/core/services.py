"""
Base service layer patterns for business logic encapsulation.

This module provides foundational patterns for the service layer:
- ServiceResult: Standard result wrapper for consistent success/failure handling
- BaseService: Base class with common service utilities

Pattern Comparison:
    - ServiceResult: Use for expected failures (validation, business rules)
    - Exceptions: Use for unexpected failures (database errors, bugs)

Usage:
    from core.services import BaseService, ServiceResult

    class WalletService(BaseService):
        @classmethod
        def credit(cls, user, amount) -> ServiceResult[Transaction]:
            if amount <= 0:
                return ServiceResult.failure(
                    "Amount must be positive",
                    error_code="INVALID_AMOUNT",
                )

            with transaction.atomic():
                txn = Transaction.objects.create(user=user, amount=amount, ...)

            cls.get_logger().info("Credited wallet", extra={"user_id": user.id})
            return ServiceResult.success(txn, meta={"transaction_id": str(txn.id)})

    # In view
    result = WalletService.credit(request.user, amount)
    if result.success:
        return Response(result.to_response(), status=201)
    return Response(result.to_response(), status=400)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Generic, TypeVar

if TYPE_CHECKING:
    from typing import Any

    from core.exceptions import BaseApplicationError

# Generic type for ServiceResult data
T = TypeVar("T")


@dataclass
class ServiceResult(Generic[T]):
    """
    Standard result wrapper for service operations.

    Provides consistent success/failure handling without exceptions.

    Attributes:
        success: Whether the operation succeeded
        data: Result data if successful (None if failed)
        error: Error message if failed (None if successful)
        error_code: Machine-readable error code for client handling
        errors: Field-level errors for validation failures
        meta: Extra top-level response keys (e.g. a correlation id) that
            are present on both success and failure

    Usage:
        return ServiceResult.success(txn, meta={"transaction_id": str(txn.id)})

        return ServiceResult.failure(
            "Insufficient balance",
            error_code="INSUFFICIENT_BALANCE",
        )
    """

    success: bool
    data: T | None = None
    error: str | None = None
    error_code: str | None = None
    errors: dict[str, list[str]] | None = field(default=None)
    meta: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def success(cls, data: T, meta: dict[str, Any] | None = None) -> ServiceResult[T]:
        """
        Create a successful result.

        Args:
            data: The result data
            meta: Extra keys merged into the API response

        Returns:
            ServiceResult with success=True and data set
        """
        return cls(success=True, data=data, meta=meta or {})

    @classmethod
    def failure(
        cls,
        error: str,
        error_code: str | None = None,
        errors: dict[str, list[str]] | None = None,
        meta: dict[str, Any] | None = None,
    ) -> ServiceResult[T]:
        """
        Create a failed result.

        Args:
            error: Human-readable error message
            error_code: Machine-readable error code for client handling
            errors: Field-level errors (for validation failures)
            meta: Extra keys merged into the API response

        Returns:
            ServiceResult with success=False and error details
        """
        return cls(
            success=False,
            error=error,
            error_code=error_code,
            errors=errors,
            meta=meta or {},
        )

    @classmethod
    def from_exception(
        cls,
        exc: Exception,
        error_code: str | None = None,
        meta: dict[str, Any] | None = None,
    ) -> ServiceResult[T]:
        """
        Create a failed result from an exception.

        Application errors keep their own message and error code; any
        other exception falls back to its class name.

        Example:
            try:
                engine.refund(reference, amount, reason)
            except BaseApplicationError as e:
                return ServiceResult.from_exception(e)
        """
        message = getattr(exc, "message", None) or str(exc)
        code = error_code or getattr(exc, "error_code", None)
        return cls(
            success=False,
            error=message,
            error_code=code or exc.__class__.__name__.upper(),
            meta=meta or {},
        )

    @property
    def http_status(self) -> int:
        """Suggested HTTP status for a failed result (200 when successful)."""
        return self.meta.get("http_status", 200 if self.success else 400)

    def to_response(self) -> dict[str, Any]:
        """
        Convert to API response format.

        Returns:
            Dict with success status, data or error details, and meta keys
        """
        extra = {k: v for k, v in self.meta.items() if k != "http_status"}
        if self.success:
            return {"success": True, "data": self.data, **extra}

        response: dict[str, Any] = {
            "success": False,
            "error": self.error,
            **extra,
        }
        if self.error_code:
            response["error_code"] = self.error_code
        if self.errors:
            response["errors"] = self.errors
        return response

    def map(self, func) -> ServiceResult:
        """
        Transform the data if successful.

        Example:
            result = PaymentService.get_transaction(reference)
            serialized = result.map(lambda t: TransactionSerializer(t).data)
        """
        if self.success and self.data is not None:
            return ServiceResult.success(func(self.data), meta=self.meta)
        return self  # type: ignore

    def __bool__(self) -> bool:
        """Allow using result in boolean context."""
        return self.success


class BaseService:
    """
    Base class for service layer classes.

    Provides common utilities for services:
    - Logging setup per service
    - Exception to ServiceResult conversion
    """

    @classmethod
    def get_logger(cls) -> logging.Logger:
        """
        Get logger for this service.

        Returns a logger named after the service class for
        easy filtering in logs.
        """
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")

    @classmethod
    def handle_exception(
        cls,
        exc: BaseApplicationError | Exception,
        context: str = "",
        log_level: int = logging.WARNING,
        meta: dict[str, Any] | None = None,
    ) -> ServiceResult:
        """
        Convert exception to ServiceResult with logging.

        Args:
            exc: The caught exception
            context: Additional context for logging
            log_level: Logging level (default WARNING)
            meta: Extra keys merged into the API response

        Returns:
            ServiceResult with error details and the exception's HTTP status
        """
        message = f"{context}: {exc}" if context else str(exc)
        cls.get_logger().log(log_level, message)
        meta = dict(meta or {})
        meta.setdefault("http_status", getattr(exc, "http_status", 400))
        return ServiceResult.from_exception(exc, meta=meta)

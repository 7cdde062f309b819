"""
Redis-backed mutual exclusion for refund processing.

Refunds are the one flow that must hold a lock across a gateway call:
two refunds against the same original must never both reach the
provider with a stale view of the remaining refundable amount. No DB
transaction is open while the lock is held, only this Redis key.

Usage:
    from payments.locks import refund_lock

    with refund_lock(original.id):
        result = adapter.refund(...)

    # Lower level
    from payments.locks import DistributedLock

    with DistributedLock("transaction:refund:123", ttl=120, timeout=10):
        ...
"""

from __future__ import annotations

import logging
import time
import uuid as uuid_module
from typing import TYPE_CHECKING

from django.conf import settings

from django_redis import get_redis_connection

from payments.exceptions import LockAcquisitionError

if TYPE_CHECKING:
    from typing import Any

    from redis import Redis

logger = logging.getLogger(__name__)


class DistributedLock:
    """
    Token-owned Redis lock with a TTL.

    The key is set with NX/EX, so a crashed holder releases it when the
    TTL runs out. Release and extend compare the stored token first,
    which keeps a slow holder from deleting a lock someone else now owns.

    Args:
        key: Lock identifier, stored as "lock:<key>"
        ttl: Seconds before Redis expires the lock
        blocking: Poll until the lock frees up (or timeout elapses)
        timeout: Maximum seconds to poll in blocking mode
        poll_interval: Seconds between attempts in blocking mode

    Raises:
        LockAcquisitionError: From acquire() / __enter__ when the lock
            stays held by someone else
    """

    RELEASE_SCRIPT = """
    if redis.call("get", KEYS[1]) == ARGV[1] then
        return redis.call("del", KEYS[1])
    end
    return 0
    """

    EXTEND_SCRIPT = """
    if redis.call("get", KEYS[1]) == ARGV[1] then
        return redis.call("expire", KEYS[1], ARGV[2])
    end
    return 0
    """

    def __init__(
        self,
        key: str,
        ttl: int = 30,
        blocking: bool = True,
        timeout: float = 10.0,
        poll_interval: float = 0.05,
    ) -> None:
        self.key = f"lock:{key}"
        self.ttl = ttl
        self.blocking = blocking
        self.timeout = timeout
        self.poll_interval = poll_interval
        self._token: str | None = None
        self._redis: Redis | None = None

    def _get_redis(self) -> Redis:
        if self._redis is None:
            self._redis = get_redis_connection("default")
        return self._redis

    def _try_acquire(self, redis: Redis, token: str) -> bool:
        return bool(redis.set(self.key, token, nx=True, ex=self.ttl))

    def acquire(self) -> bool:
        """
        Take the lock or raise.

        Returns:
            True once the lock is held

        Raises:
            LockAcquisitionError: Lock still held after timeout (blocking)
                or held right now (non-blocking)
        """
        token = str(uuid_module.uuid4())
        redis = self._get_redis()

        if self._try_acquire(redis, token):
            self._token = token
            return True

        if not self.blocking:
            raise LockAcquisitionError(
                f"Lock '{self.key}' is already held",
                details={"key": self.key},
            )

        deadline = time.monotonic() + self.timeout
        while time.monotonic() < deadline:
            time.sleep(self.poll_interval)
            if self._try_acquire(redis, token):
                self._token = token
                return True

        logger.warning(
            "Timed out waiting for lock",
            extra={"lock_key": self.key, "timeout": self.timeout},
        )
        raise LockAcquisitionError(
            f"Failed to acquire lock '{self.key}' within {self.timeout}s",
            details={"key": self.key, "timeout": self.timeout},
        )

    def release(self) -> bool:
        """Release the lock if this instance still owns it. Idempotent."""
        if self._token is None:
            return False

        token, self._token = self._token, None
        result = self._get_redis().eval(self.RELEASE_SCRIPT, 1, self.key, token)
        if not result:
            logger.warning(
                "Lock expired before release",
                extra={"lock_key": self.key, "ttl": self.ttl},
            )
        return bool(result)

    def extend(self, ttl: int | None = None) -> bool:
        """Reset the remaining TTL (to ttl, or the original TTL)."""
        if self._token is None:
            return False
        result = self._get_redis().eval(
            self.EXTEND_SCRIPT, 1, self.key, self._token, ttl or self.ttl
        )
        return bool(result)

    @property
    def is_held(self) -> bool:
        return self._token is not None

    def __enter__(self) -> DistributedLock:
        self.acquire()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> bool:
        self.release()
        return False


def refund_lock(transaction_id: Any) -> DistributedLock:
    """
    Lock serializing refunds of one original transaction.

    TTL and wait time come from REFUND_LOCK_TTL_SECONDS and
    REFUND_LOCK_TIMEOUT_SECONDS. The TTL must outlive the gateway timeout.
    """
    return DistributedLock(
        f"transaction:refund:{transaction_id}",
        ttl=getattr(settings, "REFUND_LOCK_TTL_SECONDS", 60),
        blocking=True,
        timeout=getattr(settings, "REFUND_LOCK_TIMEOUT_SECONDS", 10),
    )


__all__ = [
    "DistributedLock",
    "refund_lock",
]

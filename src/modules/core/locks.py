"""Distributed mutual exclusion over a shared key/value store.

A lock is a key ``lock:<resource>`` holding a random owner token with a
millisecond expiry.  Ownership is proven only by token equality:

- ``acquire`` is a single ``SET NX PX``.
- ``release`` / ``extend`` run server-side compare-and-act scripts, so a
  holder whose lock expired (and was taken by someone else) can never
  delete or prolong the new owner's lock.

The lock is advisory and TTL-bounded; it is not a consensus primitive.
"""

from __future__ import annotations

import time
import uuid
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, Iterator, Optional, Type, TypeVar

import structlog
from django.conf import settings

from modules.core.exceptions import Conflict, ErrorCode

logger = structlog.get_logger(__name__)

T = TypeVar("T")

LOCK_PREFIX = "lock:"
DEFAULT_TTL_MS = 3000

RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""

EXTEND_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("pexpire", KEYS[1], ARGV[2])
else
    return 0
end
"""


class ResourceLocked(Conflict):
    """The resource is held by another owner and could not be acquired."""

    code = ErrorCode.ASSIGNMENT_LOCKED
    message = "error.resource_locked"


@dataclass(frozen=True)
class LockRetryOptions:
    max_retries: int = 3
    initial_delay_ms: int = 100
    max_delay_ms: int = 1000
    backoff_multiplier: float = 2.0

    @classmethod
    def from_settings(cls) -> LockRetryOptions:
        conf = getattr(settings, "LOCK_RETRY", {})
        return cls(
            max_retries=conf.get("MAX_RETRIES", cls.max_retries),
            initial_delay_ms=conf.get("INITIAL_DELAY_MS", cls.initial_delay_ms),
            max_delay_ms=conf.get("MAX_DELAY_MS", cls.max_delay_ms),
            backoff_multiplier=conf.get("BACKOFF_MULTIPLIER", cls.backoff_multiplier),
        )


# ---------------------------------------------------------------------------
# Store contract + Redis implementation
# ---------------------------------------------------------------------------


class ILockStore(ABC):
    """Atomic primitives the lock needs from the key/value store."""

    @abstractmethod
    def set_if_absent(self, key: str, value: str, ttl_ms: int) -> bool:
        """Create ``key`` with ``value`` and expiry only when it does not exist."""

    @abstractmethod
    def delete_if_equals(self, key: str, value: str) -> bool:
        """Delete ``key`` only if it currently holds ``value``."""

    @abstractmethod
    def expire_if_equals(self, key: str, value: str, ttl_ms: int) -> bool:
        """Reset the expiry of ``key`` only if it currently holds ``value``."""


class RedisLockStore(ILockStore):
    """``ILockStore`` backed by a redis-py client (via django-redis)."""

    def __init__(self, client: Any) -> None:
        self._client = client
        self._release = client.register_script(RELEASE_SCRIPT)
        self._extend = client.register_script(EXTEND_SCRIPT)

    def set_if_absent(self, key: str, value: str, ttl_ms: int) -> bool:
        return bool(self._client.set(key, value, nx=True, px=ttl_ms))

    def delete_if_equals(self, key: str, value: str) -> bool:
        return self._release(keys=[key], args=[value]) == 1

    def expire_if_equals(self, key: str, value: str, ttl_ms: int) -> bool:
        return self._extend(keys=[key], args=[value, ttl_ms]) == 1


# ---------------------------------------------------------------------------
# Lock service
# ---------------------------------------------------------------------------


class DistributedLock:
    """Token-based lock with bounded exponential-backoff retry."""

    def __init__(
        self,
        store: ILockStore,
        sleep: Callable[[float], None] = time.sleep,
        token_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
    ) -> None:
        self._store = store
        self._sleep = sleep
        self._token_factory = token_factory

    @staticmethod
    def _key(resource: str) -> str:
        return f"{LOCK_PREFIX}{resource}"

    # ------------------------------------------------------------------
    # Primitives
    # ------------------------------------------------------------------

    def acquire(self, key: str, ttl_ms: int = DEFAULT_TTL_MS) -> Optional[str]:
        """Try once. Returns the owner token, or ``None`` if already held."""
        token = self._token_factory()
        if self._store.set_if_absent(self._key(key), token, ttl_ms):
            logger.debug("lock.acquired", key=key, ttl_ms=ttl_ms)
            return token
        logger.debug("lock.contended", key=key)
        return None

    def release(self, key: str, token: str) -> bool:
        """Release only if ``token`` still owns the lock."""
        released = self._store.delete_if_equals(self._key(key), token)
        if released:
            logger.debug("lock.released", key=key)
        else:
            logger.warning("lock.release_rejected", key=key)
        return released

    def extend(self, key: str, token: str, extra_ttl_ms: int) -> bool:
        """Reset the expiry to ``extra_ttl_ms`` only if ``token`` still owns the lock."""
        return self._store.expire_if_equals(self._key(key), token, extra_ttl_ms)

    def acquire_with_retry(
        self,
        key: str,
        ttl_ms: int = DEFAULT_TTL_MS,
        options: Optional[LockRetryOptions] = None,
    ) -> Optional[str]:
        """One attempt plus up to ``max_retries`` retries with capped backoff."""
        options = options or LockRetryOptions()
        delay_ms = options.initial_delay_ms

        for attempt in range(options.max_retries + 1):
            token = self.acquire(key, ttl_ms)
            if token is not None:
                return token
            if attempt < options.max_retries:
                logger.debug("lock.retry", key=key, attempt=attempt + 1, delay_ms=delay_ms)
                self._sleep(delay_ms / 1000)
                delay_ms = min(
                    int(delay_ms * options.backoff_multiplier), options.max_delay_ms
                )

        logger.warning("lock.retries_exhausted", key=key, attempts=options.max_retries + 1)
        return None

    # ------------------------------------------------------------------
    # Scoped helpers
    # ------------------------------------------------------------------

    @contextmanager
    def locked(
        self,
        key: str,
        ttl_ms: int = DEFAULT_TTL_MS,
        retry: Optional[LockRetryOptions] = None,
        error: Type[Conflict] = ResourceLocked,
    ) -> Iterator[str]:
        """Hold ``key`` for the duration of the block; release in all cases.

        Without ``retry`` a single attempt is made.  Contention raises
        ``error`` (a ``Conflict`` subclass) before the block runs.
        """
        if retry is None:
            token = self.acquire(key, ttl_ms)
        else:
            token = self.acquire_with_retry(key, ttl_ms, retry)
        if token is None:
            raise error(details={"resource": key})
        try:
            yield token
        finally:
            self.release(key, token)

    def with_lock(
        self,
        key: str,
        callback: Callable[[], T],
        ttl_ms: int = DEFAULT_TTL_MS,
        error: Type[Conflict] = ResourceLocked,
    ) -> T:
        with self.locked(key, ttl_ms, error=error):
            return callback()

    def with_lock_retry(
        self,
        key: str,
        callback: Callable[[], T],
        ttl_ms: int = DEFAULT_TTL_MS,
        retry: Optional[LockRetryOptions] = None,
        error: Type[Conflict] = ResourceLocked,
    ) -> T:
        with self.locked(key, ttl_ms, retry=retry or LockRetryOptions(), error=error):
            return callback()

"""Unit tests for the distributed lock.

Covers:
- Acquire / release / extend with owner tokens.
- Wrong-token release and extend never touch the lock.
- Bounded exponential backoff (delays recorded, no real sleeping).
- ``locked`` / ``with_lock`` / ``with_lock_retry`` release in all cases.
- Exactly one winner among concurrent acquirers.
- ``RedisLockStore`` command shapes against a mocked redis client.
"""

from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from unittest.mock import MagicMock

import pytest

from modules.core.exceptions import ErrorCode, ErrorKind
from modules.core.locks import (
    EXTEND_SCRIPT,
    RELEASE_SCRIPT,
    DistributedLock,
    LockRetryOptions,
    RedisLockStore,
    ResourceLocked,
)
from modules.orders.exceptions import AssignmentInProgress

pytestmark = pytest.mark.unit


# ===========================================================================
# Primitives
# ===========================================================================


class TestAcquireRelease:
    def test_acquire_returns_token_and_sets_prefixed_key(self, lock, lock_store):
        token = lock.acquire("order:assign:42", ttl_ms=3000)

        assert token is not None
        assert lock_store.values["lock:order:assign:42"] == token
        assert lock_store.ttls["lock:order:assign:42"] == 3000

    def test_second_acquire_fails_while_held(self, lock):
        assert lock.acquire("resource") is not None
        assert lock.acquire("resource") is None

    def test_release_with_owner_token(self, lock, lock_store):
        token = lock.acquire("resource")

        assert lock.release("resource", token) is True
        assert "lock:resource" not in lock_store.values
        assert lock.acquire("resource") is not None

    def test_release_with_wrong_token_keeps_lock(self, lock, lock_store):
        token = lock.acquire("resource")

        assert lock.release("resource", "not-the-owner") is False
        assert lock_store.values["lock:resource"] == token

    def test_expired_holder_cannot_release_new_owner(self, lock, lock_store):
        stale = lock.acquire("resource")
        lock_store.expire("lock:resource")
        fresh = lock.acquire("resource")

        assert lock.release("resource", stale) is False
        assert lock_store.values["lock:resource"] == fresh

    def test_extend_resets_ttl_for_owner_only(self, lock, lock_store):
        token = lock.acquire("resource", ttl_ms=1000)

        assert lock.extend("resource", "intruder", 9000) is False
        assert lock_store.ttls["lock:resource"] == 1000
        assert lock.extend("resource", token, 5000) is True
        assert lock_store.ttls["lock:resource"] == 5000

    def test_tokens_are_unique(self, lock):
        first = lock.acquire("a")
        second = lock.acquire("b")
        assert first != second


# ===========================================================================
# Retry with backoff
# ===========================================================================


class TestAcquireWithRetry:
    def test_free_lock_acquired_without_sleeping(self, lock, sleeps):
        assert lock.acquire_with_retry("resource") is not None
        assert sleeps == []

    def test_backoff_doubles_and_is_capped(self, lock, sleeps):
        lock.acquire("resource")
        options = LockRetryOptions(
            max_retries=5, initial_delay_ms=100, max_delay_ms=500, backoff_multiplier=2
        )

        assert lock.acquire_with_retry("resource", options=options) is None
        assert sleeps == [0.1, 0.2, 0.4, 0.5, 0.5]

    def test_default_options_make_four_attempts(self, lock_store, sleeps):
        attempts = []

        class CountingStore(type(lock_store)):
            def set_if_absent(self, key, value, ttl_ms):
                attempts.append(key)
                return False

        lock = DistributedLock(CountingStore(), sleep=sleeps.append)

        assert lock.acquire_with_retry("resource") is None
        assert len(attempts) == 4
        assert sleeps == [0.1, 0.2, 0.4]

    def test_succeeds_once_holder_releases(self, lock_store):
        holder = DistributedLock(lock_store)
        token = holder.acquire("resource")

        def release_on_first_sleep(_seconds):
            holder.release("resource", token)

        waiter = DistributedLock(lock_store, sleep=release_on_first_sleep)

        assert waiter.acquire_with_retry("resource") is not None

    def test_options_from_settings(self, settings):
        settings.LOCK_RETRY = {
            "MAX_RETRIES": 7,
            "INITIAL_DELAY_MS": 50,
            "MAX_DELAY_MS": 800,
            "BACKOFF_MULTIPLIER": 3,
        }

        options = LockRetryOptions.from_settings()

        assert options == LockRetryOptions(7, 50, 800, 3)


# ===========================================================================
# Scoped helpers
# ===========================================================================


class TestScopedHelpers:
    def test_with_lock_returns_callback_value_and_releases(self, lock, lock_store):
        assert lock.with_lock("resource", lambda: "done") == "done"
        assert lock_store.values == {}

    def test_with_lock_releases_when_callback_raises(self, lock, lock_store):
        def boom():
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            lock.with_lock("resource", boom)

        assert lock_store.values == {}

    def test_with_lock_raises_resource_locked_when_held(self, lock):
        lock.acquire("resource")
        called = []

        with pytest.raises(ResourceLocked) as exc_info:
            lock.with_lock("resource", lambda: called.append(True))

        assert called == []
        assert exc_info.value.kind == ErrorKind.CONFLICT
        assert exc_info.value.details == {"resource": "resource"}

    def test_with_lock_retry_raises_custom_error_after_exhaustion(self, lock, sleeps):
        lock.acquire("order:assign:1")

        with pytest.raises(AssignmentInProgress) as exc_info:
            lock.with_lock_retry(
                "order:assign:1",
                lambda: None,
                retry=LockRetryOptions(max_retries=2, initial_delay_ms=10),
                error=AssignmentInProgress,
            )

        assert exc_info.value.code == ErrorCode.ASSIGNMENT_LOCKED
        assert len(sleeps) == 2

    def test_locked_context_yields_token(self, lock, lock_store):
        with lock.locked("resource") as token:
            assert lock_store.values["lock:resource"] == token
        assert lock_store.values == {}


# ===========================================================================
# Mutual exclusion
# ===========================================================================


def test_exactly_one_concurrent_acquirer_wins(lock_store):
    guard = threading.Lock()

    class SerializedStore(type(lock_store)):
        def set_if_absent(self, key, value, ttl_ms):
            with guard:
                return super().set_if_absent(key, value, ttl_ms)

    lock = DistributedLock(SerializedStore())
    barrier = threading.Barrier(8)

    def contend(_):
        barrier.wait()
        return lock.acquire("hot-resource")

    with ThreadPoolExecutor(max_workers=8) as pool:
        tokens = list(pool.map(contend, range(8)))

    winners = [token for token in tokens if token is not None]
    assert len(winners) == 1


# ===========================================================================
# Redis store
# ===========================================================================


class TestRedisLockStore:
    @pytest.fixture()
    def client(self):
        client = MagicMock()
        self.release_script = MagicMock(name="release")
        self.extend_script = MagicMock(name="extend")
        client.register_script.side_effect = [self.release_script, self.extend_script]
        return client

    def test_registers_compare_and_act_scripts(self, client):
        RedisLockStore(client)

        scripts = [call.args[0] for call in client.register_script.call_args_list]
        assert scripts == [RELEASE_SCRIPT, EXTEND_SCRIPT]

    def test_set_if_absent_uses_nx_px(self, client):
        client.set.return_value = True
        store = RedisLockStore(client)

        assert store.set_if_absent("lock:r", "token", 3000) is True
        client.set.assert_called_once_with("lock:r", "token", nx=True, px=3000)

    def test_set_if_absent_false_when_key_exists(self, client):
        client.set.return_value = None
        store = RedisLockStore(client)

        assert store.set_if_absent("lock:r", "token", 3000) is False

    def test_delete_if_equals_runs_release_script(self, client):
        store = RedisLockStore(client)
        self.release_script.return_value = 1

        assert store.delete_if_equals("lock:r", "token") is True
        self.release_script.assert_called_once_with(keys=["lock:r"], args=["token"])

    def test_delete_if_equals_false_on_token_mismatch(self, client):
        store = RedisLockStore(client)
        self.release_script.return_value = 0

        assert store.delete_if_equals("lock:r", "other") is False

    def test_expire_if_equals_runs_extend_script(self, client):
        store = RedisLockStore(client)
        self.extend_script.return_value = 1

        assert store.expire_if_equals("lock:r", "token", 5000) is True
        self.extend_script.assert_called_once_with(
            keys=["lock:r"], args=["token", 5000]
        )

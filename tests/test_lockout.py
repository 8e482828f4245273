"""
tests/test_lockout.py -- Unit tests for LockoutGuard and the atomic failure counter.

The FrozenClock fixture drives every time-based decision so the lock window
can be crossed without sleeping. TestConcurrentFailures runs failures from a
thread pool against one account to exercise the single-UPDATE counter.
"""

from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

import pytest

from auth.errors import AccountLockedError
from auth.lockout import LockoutGuard
from auth.store import AuthStore


@pytest.fixture
def guard(store: AuthStore, clock) -> LockoutGuard:
    return LockoutGuard(store, max_attempts=3, lock_duration=timedelta(minutes=30), clock=clock)


class TestLockoutGuard:
    def test_failures_below_limit_do_not_lock(self, guard: LockoutGuard, make_user) -> None:
        user = make_user("a@x.com")
        user = guard.register_failure(user)
        user = guard.register_failure(user)
        assert user.failed_login_attempts == 2
        assert user.locked_until is None
        assert guard.is_locked(user) is False

    def test_reaching_limit_locks_for_duration(self, guard: LockoutGuard, make_user, clock) -> None:
        user = make_user("a@x.com")
        for _ in range(3):
            user = guard.register_failure(user)
        assert user.failed_login_attempts == 3
        assert user.locked_until == clock() + timedelta(minutes=30)
        with pytest.raises(AccountLockedError):
            guard.ensure_not_locked(user)

    def test_failures_during_lock_are_not_counted(self, guard: LockoutGuard, make_user) -> None:
        user = make_user("a@x.com")
        for _ in range(3):
            user = guard.register_failure(user)
        locked_until = user.locked_until

        user = guard.register_failure(user)
        assert user.failed_login_attempts == 3
        assert user.locked_until == locked_until

    def test_lock_expires(self, guard: LockoutGuard, make_user, clock) -> None:
        user = make_user("a@x.com")
        for _ in range(3):
            user = guard.register_failure(user)
        clock.advance(minutes=31)
        assert guard.is_locked(user) is False
        guard.ensure_not_locked(user)

    def test_one_failure_after_expiry_relocks(self, guard: LockoutGuard, make_user, clock) -> None:
        """The counter is left at the limit when a lock lapses, so the next miss locks again."""
        user = make_user("a@x.com")
        for _ in range(3):
            user = guard.register_failure(user)
        clock.advance(minutes=31)

        user = guard.register_failure(user)
        assert guard.is_locked(user) is True
        assert user.locked_until == clock() + timedelta(minutes=30)

    def test_success_resets_counter(self, guard: LockoutGuard, make_user, store: AuthStore, clock) -> None:
        user = make_user("a@x.com")
        user = guard.register_failure(user)
        guard.register_success(user)

        fresh = store.find_user_by_id(user.id)
        assert fresh.failed_login_attempts == 0
        assert fresh.locked_until is None
        assert fresh.last_login_at == clock()


class TestConcurrentFailures:
    """Racing failed logins against one account, as parallel requests would."""

    @staticmethod
    def _race(guard: LockoutGuard, user, threads: int) -> list[int]:
        barrier = threading.Barrier(threads)

        def attempt() -> int:
            barrier.wait()
            return guard.register_failure(user).failed_login_attempts

        with ThreadPoolExecutor(max_workers=threads) as pool:
            futures = [pool.submit(attempt) for _ in range(threads)]
            return [f.result() for f in futures]

    def test_every_failure_is_counted_once(self, store: AuthStore, make_user, clock) -> None:
        guard = LockoutGuard(store, max_attempts=100, lock_duration=timedelta(minutes=30), clock=clock)
        user = make_user("a@x.com")

        seen = self._race(guard, user, 25)

        assert sorted(seen) == list(range(1, 26))
        fresh = store.find_user_by_id(user.id)
        assert fresh.failed_login_attempts == 25
        assert fresh.locked_until is None

    def test_crossing_the_limit_locks_exactly_once(
        self, guard: LockoutGuard, store: AuthStore, make_user, clock
    ) -> None:
        user = make_user("a@x.com")

        seen = self._race(guard, user, 25)

        # Two updates counted below the limit, one reached it, the rest hit the lock.
        assert sorted(seen) == [1, 2] + [3] * 23
        fresh = store.find_user_by_id(user.id)
        assert fresh.failed_login_attempts == 3
        assert fresh.locked_until == clock() + timedelta(minutes=30)

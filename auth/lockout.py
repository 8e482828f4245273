"""
auth/lockout.py -- Account-scoped failed-login lockout.

The guard is consulted at the start of every password login:
  - locked_until in the future  -> AccountLockedError; the password is not
    checked and the counter is not touched.
  - wrong password              -> counter +1; reaching max_attempts sets
    locked_until = now + lock_duration.
  - correct password            -> counter reset, lock cleared, last_login_at stamped.

State lives on the account, not on the source IP: a distributed attacker
can lock a victim out for lock_duration. That trade of availability for
resistance to spread-out guessing is accepted.

Counter updates go through AuthStore.record_login_failure(), a single
conditional UPDATE, so concurrent failures for the same account are all
counted exactly once.
"""

from __future__ import annotations

import logging
from datetime import timedelta

from auth.errors import AccountLockedError
from auth.models import User
from auth.store import AuthStore
from core.clock import Clock, utc_now

logger = logging.getLogger("keyward.auth")


class LockoutGuard:
    def __init__(
        self,
        store: AuthStore,
        max_attempts: int = 5,
        lock_duration: timedelta = timedelta(minutes=30),
        clock: Clock = utc_now,
    ) -> None:
        self._store = store
        self.max_attempts = max_attempts
        self.lock_duration = lock_duration
        self._clock = clock

    def is_locked(self, user: User) -> bool:
        return user.locked_until is not None and user.locked_until > self._clock()

    def ensure_not_locked(self, user: User) -> None:
        if self.is_locked(user):
            raise AccountLockedError()

    def register_failure(self, user: User) -> User:
        """Record a failed password check and return the updated account state."""
        now = self._clock()
        updated = self._store.record_login_failure(user.id, self.max_attempts, now + self.lock_duration, now)
        if updated is None:
            # Deleted between lookup and update; report the state we had.
            return user
        if self.is_locked(updated):
            logger.warning(
                "Account %s locked until %s after %d failed attempts",
                updated.id,
                updated.locked_until.isoformat(),
                updated.failed_login_attempts,
            )
        return updated

    def register_success(self, user: User) -> None:
        self._store.reset_login_failures(user.id, self._clock())

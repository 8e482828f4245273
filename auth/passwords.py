"""
auth/passwords.py -- Password hashing and strength policy.

Passwords: bcrypt used directly (no passlib wrapper). Bcrypt's cost factor is
the right tool for low-entropy secrets: each guess costs 2**rounds work.
The cost is configurable (BCRYPT_ROUNDS, default 12) so tests can run at the
minimum of 4.

bcrypt only looks at the first 72 bytes of its input, and bcrypt 5.x raises
on longer input instead of truncating. Both hash() and verify() cut the
UTF-8 encoding at 72 bytes so a 128-character password hashes and verifies
consistently on every bcrypt release.

Strength policy is independent of hashing: check_strength() returns every
violation at once so the client can render the full list, and hash()
refuses to hash a password that has any.
"""

from __future__ import annotations

import re

import bcrypt

from auth.errors import PasswordPolicyError

MIN_LENGTH = 8
MAX_LENGTH = 128
_BCRYPT_MAX_BYTES = 72

COMMON_PASSWORDS: frozenset[str] = frozenset(
    {
        "password",
        "password123",
        "123456",
        "123456789",
        "qwerty",
        "abc123",
        "password1",
        "admin",
        "letmein",
        "welcome",
    }
)


def check_strength(plain: str) -> list[str]:
    """Return every policy violation for `plain` (empty list = acceptable)."""
    if not plain:
        return ["Password is required"]

    violations: list[str] = []
    if len(plain) < MIN_LENGTH:
        violations.append(f"Password must be at least {MIN_LENGTH} characters long")
    if len(plain) > MAX_LENGTH:
        violations.append(f"Password must be less than {MAX_LENGTH} characters long")
    if not re.search(r"[a-z]", plain):
        violations.append("Password must contain at least one lowercase letter")
    if not re.search(r"[A-Z]", plain):
        violations.append("Password must contain at least one uppercase letter")
    if not re.search(r"[0-9]", plain):
        violations.append("Password must contain at least one number")
    if not re.search(r"[^a-zA-Z0-9]", plain):
        violations.append("Password must contain at least one special character")
    if plain.lower() in COMMON_PASSWORDS:
        violations.append("Password is too common, please choose a stronger password")
    return violations


def _encode(plain: str) -> bytes:
    return plain.encode("utf-8")[:_BCRYPT_MAX_BYTES]


class PasswordHasher:
    """bcrypt hashing with a configurable work factor.

    Usage:
        hasher = PasswordHasher(rounds=12)
        hashed = hasher.hash("Str0ng!Pass")
        hasher.verify("Str0ng!Pass", hashed)  # True
    """

    def __init__(self, rounds: int = 12) -> None:
        self.rounds = rounds
        # Timing equalization dummy hash [C1]. Computed once so the first
        # unknown-email login is not measurably faster than later ones.
        self._dummy_hash = bcrypt.hashpw(b"keyward_timing_dummy", bcrypt.gensalt(rounds=rounds))

    def hash(self, plain: str) -> str:
        """Return a salted bcrypt hash. Raises PasswordPolicyError for empty or weak input."""
        violations = check_strength(plain)
        if violations:
            raise PasswordPolicyError(violations)
        return bcrypt.hashpw(_encode(plain), bcrypt.gensalt(rounds=self.rounds)).decode("utf-8")

    def verify(self, plain: str, hashed: str) -> bool:
        """Constant-time check. False on mismatch; ValueError only for a malformed hash."""
        if not plain:
            return False
        return bcrypt.checkpw(_encode(plain), hashed.encode("utf-8"))

    def burn(self, plain: str) -> None:
        """Spend one verification's worth of work against the dummy hash.

        Called when the email is unknown so response time does not reveal
        whether an account exists [C1].
        """
        bcrypt.checkpw(_encode(plain or "x"), self._dummy_hash)

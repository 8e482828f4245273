"""
tests/test_passwords.py -- Unit tests for the password strength policy and bcrypt hasher.

Coverage:
  - check_strength(): each rule individually, all violations reported together
  - PasswordHasher.hash(): salted output, refuses weak input
  - PasswordHasher.verify(): match, mismatch, empty input, 72-byte truncation
  - PasswordHasher.burn(): runs without raising for any input
"""

from __future__ import annotations

import pytest

from auth.errors import PasswordPolicyError
from auth.passwords import PasswordHasher, check_strength

STRONG = "Str0ng!Pass"


class TestCheckStrength:
    def test_strong_password_has_no_violations(self) -> None:
        assert check_strength(STRONG) == []

    def test_empty_password_is_required(self) -> None:
        assert check_strength("") == ["Password is required"]

    def test_too_short(self) -> None:
        violations = check_strength("S0!a")
        assert "Password must be at least 8 characters long" in violations

    def test_too_long(self) -> None:
        violations = check_strength("Aa1!" * 33)
        assert "Password must be less than 128 characters long" in violations

    @pytest.mark.parametrize(
        ("password", "expected"),
        [
            ("STR0NG!PASS", "Password must contain at least one lowercase letter"),
            ("str0ng!pass", "Password must contain at least one uppercase letter"),
            ("Strong!Pass", "Password must contain at least one number"),
            ("Str0ngPass1", "Password must contain at least one special character"),
        ],
    )
    def test_character_class_rules(self, password: str, expected: str) -> None:
        assert check_strength(password) == [expected]

    def test_common_password_rejected_case_insensitively(self) -> None:
        violations = check_strength("PASSWORD123")
        assert "Password is too common, please choose a stronger password" in violations

    def test_all_violations_reported_at_once(self) -> None:
        """A bare lowercase word violates length, uppercase, number and special rules together."""
        violations = check_strength("abc")
        assert len(violations) == 4


class TestPasswordHasher:
    def test_hash_is_salted(self, hasher: PasswordHasher) -> None:
        first = hasher.hash(STRONG)
        second = hasher.hash(STRONG)
        assert first != second
        assert first.startswith("$2")

    def test_verify_roundtrip(self, hasher: PasswordHasher) -> None:
        hashed = hasher.hash(STRONG)
        assert hasher.verify(STRONG, hashed) is True
        assert hasher.verify("Wr0ng!Pass", hashed) is False

    def test_verify_empty_plaintext_is_false(self, hasher: PasswordHasher) -> None:
        assert hasher.verify("", hasher.hash(STRONG)) is False

    def test_hash_refuses_weak_password(self, hasher: PasswordHasher) -> None:
        with pytest.raises(PasswordPolicyError) as excinfo:
            hasher.hash("weak")
        assert excinfo.value.code == "validation_error"
        assert all(e["field"] == "password" for e in excinfo.value.errors)

    def test_long_password_verifies_consistently(self, hasher: PasswordHasher) -> None:
        """Passwords beyond bcrypt's 72-byte window hash and verify without raising."""
        long_password = "Aa1!" * 30
        hashed = hasher.hash(long_password)
        assert hasher.verify(long_password, hashed) is True

    def test_malformed_hash_raises_value_error(self, hasher: PasswordHasher) -> None:
        with pytest.raises(ValueError):
            hasher.verify(STRONG, "not-a-bcrypt-hash")

    def test_burn_accepts_any_input(self, hasher: PasswordHasher) -> None:
        hasher.burn(STRONG)
        hasher.burn("")

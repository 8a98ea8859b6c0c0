"""
security helpers:
- Argon2 password hashing via argon2-cffi
- constant-cost verification, including a dummy path for unknown accounts
"""
from __future__ import annotations

import secrets
from argon2 import PasswordHasher
from argon2.exceptions import (
    HashingError as Argon2HashingError,
    InvalidHashError,
    VerificationError,
    VerifyMismatchError,
)


class HashingError(Exception):
    """The hashing primitive itself failed (not a credential failure)."""


class CredentialVerifier:
    """Hash and compare passwords with argon2id."""

    def __init__(
        self,
        time_cost: int = 3,
        memory_cost: int = 65536,
        parallelism: int = 4,
    ) -> None:
        self._ph = PasswordHasher(
            time_cost=time_cost,
            memory_cost=memory_cost,
            parallelism=parallelism,
        )
        # built up front so the first unknown-email login costs the same as the rest
        self._dummy_hash = self.hash(secrets.token_urlsafe(16))

    def hash(self, plaintext: str) -> str:
        """Return a salted argon2 hash of the plaintext password."""
        try:
            return self._ph.hash(plaintext)
        except Argon2HashingError as exc:
            raise HashingError("password hashing failed") from exc

    def verify(self, plaintext: str, password_hash: str) -> bool:
        """
        Verify a plaintext password against a stored hash.
        Mismatches and unreadable hashes both return False.
        """
        try:
            return self._ph.verify(password_hash, plaintext)
        except VerifyMismatchError:
            return False
        except (VerificationError, InvalidHashError):
            return False

    def verify_dummy(self, plaintext: str) -> bool:
        """
        Burn the same amount of work as a real verification and return False.
        Used when no account matches, so response timing does not reveal it.
        """
        self.verify(plaintext, self._dummy_hash)
        return False

    def needs_rehash(self, password_hash: str) -> bool:
        try:
            return self._ph.check_needs_rehash(password_hash)
        except InvalidHashError:
            return True

"""
Storage contracts the session service depends on.

Concrete adapters live in models/stores.py. Anything that satisfies these
protocols (an in-memory fake in tests, another database) can be passed to
SessionService instead.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Protocol


@dataclass(frozen=True)
class RefreshTokenRecord:
    token_id: str
    user_id: str
    issued_at: datetime
    expires_at: datetime
    revoked: bool = False


@dataclass(frozen=True)
class UserRecord:
    id: str
    email: str
    password_hash: str
    role: str
    f_name: Optional[str] = None
    l_name: Optional[str] = None


class RefreshTokenStore(Protocol):
    def save(
        self,
        token_id: str,
        user_id: str,
        expires_at: datetime,
        issued_at: Optional[datetime] = None,
    ) -> None:
        ...

    def find_active(self, token_id: str) -> Optional[RefreshTokenRecord]:
        """Return the record only if it exists, is not revoked and has not expired."""
        ...

    def find(self, token_id: str) -> Optional[RefreshTokenRecord]:
        """Return the record whatever its state."""
        ...

    def revoke(self, token_id: str) -> None:
        ...

    def revoke_if_active(self, token_id: str) -> bool:
        """Atomically revoke a live record; True only for the caller that flipped it."""
        ...

    def count_active_for_user(self, user_id: str) -> int:
        ...


class UserStore(Protocol):
    def create(
        self,
        email: str,
        password_hash: str,
        role: str,
        f_name: Optional[str] = None,
        l_name: Optional[str] = None,
    ) -> UserRecord:
        ...

    def find_by_email(self, email: str) -> Optional[UserRecord]:
        ...

    def get(self, user_id: str) -> Optional[UserRecord]:
        ...

    def update_password_hash(self, user_id: str, password_hash: str) -> None:
        ...

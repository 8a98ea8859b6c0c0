"""
Signed token helpers built on PyJWT.

Two token kinds are minted with the same key:
- access tokens: short-lived, carry the user id and role, never stored
- refresh tokens: long-lived, carry a ``jti`` that maps to a persisted
  RefreshToken row so they can be rotated and revoked
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

import jwt

ACCESS = "access"
REFRESH = "refresh"

REQUIRED_CLAIMS = ["exp", "iat", "sub", "jti"]


class SigningKeyUnavailable(RuntimeError):
    """No signing secret is configured; tokens cannot be minted or checked."""


class TokenError(Exception):
    """Base class for every token verification failure."""

    reason = "invalid"


class TokenMalformed(TokenError):
    reason = "malformed"


class TokenSignatureInvalid(TokenError):
    reason = "signature"


class TokenExpired(TokenError):
    reason = "expired"


@dataclass(frozen=True)
class IssuedToken:
    token: str
    expires_at: datetime
    ttl_seconds: int


@dataclass(frozen=True)
class IssuedRefreshToken:
    token: str
    token_id: str
    issued_at: datetime
    expires_at: datetime
    ttl_seconds: int


def generate_jti() -> str:
    """Generate a unique JTI (JWT ID)."""
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenIssuer:
    """Mint and verify access/refresh JWTs signed with a server-held secret."""

    def __init__(
        self,
        secret: Optional[str],
        algorithm: str = "HS256",
        issuer: str = "session-auth-api",
        access_ttl: timedelta = timedelta(minutes=15),
        refresh_ttl: timedelta = timedelta(days=30),
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        if not secret:
            raise SigningKeyUnavailable("JWT secret is not configured")
        self._secret = secret
        self._algorithm = algorithm
        self._issuer = issuer
        self.access_ttl = access_ttl
        self.refresh_ttl = refresh_ttl
        self._clock = clock or _utcnow

    def _encode(self, claims: Dict[str, Any]) -> str:
        return jwt.encode(claims, self._secret, algorithm=self._algorithm)

    def issue_access(self, user_id: str, role: str) -> IssuedToken:
        now = self._clock()
        exp = now + self.access_ttl
        payload = {
            "iss": self._issuer,
            "sub": str(user_id),
            "role": role,
            "type": ACCESS,
            "iat": int(now.timestamp()),
            "exp": int(exp.timestamp()),
            "jti": generate_jti(),
        }
        return IssuedToken(
            token=self._encode(payload),
            expires_at=exp,
            ttl_seconds=int(self.access_ttl.total_seconds()),
        )

    def issue_refresh(self, user_id: str) -> IssuedRefreshToken:
        """
        Mint a refresh token bound to a fresh token id.
        The id is returned alongside so the caller can persist it
        without decoding the token again.
        """
        now = self._clock()
        exp = now + self.refresh_ttl
        token_id = generate_jti()
        payload = {
            "iss": self._issuer,
            "sub": str(user_id),
            "type": REFRESH,
            "iat": int(now.timestamp()),
            "exp": int(exp.timestamp()),
            "jti": token_id,
        }
        return IssuedRefreshToken(
            token=self._encode(payload),
            token_id=token_id,
            issued_at=now,
            expires_at=exp,
            ttl_seconds=int(self.refresh_ttl.total_seconds()),
        )

    def _decode(self, token: str, expected_type: str, verify_exp: bool = True) -> Dict[str, Any]:
        if not token or not isinstance(token, str):
            raise TokenMalformed("Token missing")
        try:
            decoded = jwt.decode(
                token,
                self._secret,
                algorithms=[self._algorithm],
                issuer=self._issuer,
                options={"require": REQUIRED_CLAIMS, "verify_exp": verify_exp},
            )
        except jwt.ExpiredSignatureError as exc:
            raise TokenExpired("Token expired") from exc
        # InvalidSignatureError subclasses DecodeError, so it goes first
        except jwt.InvalidSignatureError as exc:
            raise TokenSignatureInvalid("Invalid token signature") from exc
        except jwt.InvalidTokenError as exc:
            raise TokenMalformed(f"Invalid token: {exc}") from exc

        if decoded.get("type") != expected_type:
            raise TokenMalformed("Wrong token type")
        return decoded

    def verify(self, token: str, expected_type: str = ACCESS) -> Dict[str, Any]:
        """
        Check signature, issuer, type and expiry; return the claims.
        Raises TokenExpired, TokenSignatureInvalid or TokenMalformed.
        """
        return self._decode(token, expected_type)

    def token_id(self, token: str, expected_type: str = REFRESH) -> str:
        """Return the ``jti`` of a token we signed, even if it has expired."""
        return str(self._decode(token, expected_type, verify_exp=False)["jti"])

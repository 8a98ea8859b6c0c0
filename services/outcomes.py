"""
Result values returned by SessionService.

The service never raises for expected failures; it returns a Failure whose
kind the HTTP layer maps to a status code (see api/errors.py).
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from services.ports import UserRecord


class FailureKind(str, Enum):
    VALIDATION_FAILURE = "VALIDATION_FAILURE"
    INVALID_CREDENTIALS = "INVALID_CREDENTIALS"
    DUPLICATE_USER = "DUPLICATE_USER"
    INVALID_SESSION = "INVALID_SESSION"
    PERSISTENCE_FAILURE = "PERSISTENCE_FAILURE"
    HASHING_ERROR = "HASHING_ERROR"


@dataclass(frozen=True)
class Failure:
    kind: FailureKind
    message: str
    # internal only (logging/alerting); never sent to clients
    reason: str = ""


@dataclass(frozen=True)
class Registered:
    user: UserRecord


@dataclass(frozen=True)
class SessionTokens:
    user_id: str
    access_token: str
    refresh_token: str
    refresh_token_id: str
    access_ttl_seconds: int
    refresh_ttl_seconds: int


INVALID_CREDENTIALS = Failure(
    FailureKind.INVALID_CREDENTIALS, "Email or password does not match"
)


def invalid_session(reason: str) -> Failure:
    return Failure(FailureKind.INVALID_SESSION, "Invalid or expired session", reason)

"""
Session orchestration: register, login, refresh (rotation) and logout.

The service only talks to the collaborators it is given:
- CredentialVerifier for password hashing/checking
- TokenIssuer for signed access/refresh tokens
- a RefreshTokenStore and a UserStore (see services/ports.py)

Expected failures come back as ``Failure`` values; nothing here knows about HTTP.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Union

from services.errors import DuplicateUserError, PersistenceError
from services.outcomes import (
    INVALID_CREDENTIALS,
    Failure,
    FailureKind,
    Registered,
    SessionTokens,
    invalid_session,
)
from services.ports import RefreshTokenStore, UserRecord, UserStore
from utils.security import CredentialVerifier, HashingError
from utils.tokens import ACCESS, REFRESH, TokenError, TokenIssuer

logger = logging.getLogger(__name__)

DEFAULT_ROLE = "customer"


def normalize_email(email: str) -> str:
    return email.strip().lower() if isinstance(email, str) else email


class SessionService:
    def __init__(
        self,
        verifier: CredentialVerifier,
        issuer: TokenIssuer,
        refresh_tokens: RefreshTokenStore,
        users: UserStore,
        default_role: str = DEFAULT_ROLE,
    ) -> None:
        self.verifier = verifier
        self.issuer = issuer
        self.refresh_tokens = refresh_tokens
        self.users = users
        self.default_role = default_role

    def register(
        self,
        email: str,
        password: str,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
    ) -> Union[Registered, Failure]:
        """Create a user with a hashed password and the default role."""
        email = normalize_email(email)
        try:
            password_hash = self.verifier.hash(password)
        except HashingError:
            logger.exception("password hashing failed during registration")
            return Failure(FailureKind.HASHING_ERROR, "Could not process the password")

        try:
            user = self.users.create(
                email=email,
                password_hash=password_hash,
                role=self.default_role,
                f_name=first_name,
                l_name=last_name,
            )
        except DuplicateUserError:
            return Failure(FailureKind.DUPLICATE_USER, "Email is already registered")
        except PersistenceError:
            logger.exception("failed to store new user")
            return Failure(
                FailureKind.PERSISTENCE_FAILURE, "Failed to store the data in the database"
            )

        logger.info("user registered user_id=%s", user.id)
        return Registered(user=user)

    def login(self, email: str, password: str) -> Union[SessionTokens, Failure]:
        """
        Check credentials and open a new session.
        Unknown email and wrong password give the same Failure and cost the
        same argon2 verification.
        """
        try:
            user = self.users.find_by_email(normalize_email(email))
        except PersistenceError:
            logger.exception("user lookup failed during login")
            return Failure(FailureKind.PERSISTENCE_FAILURE, "Login is temporarily unavailable")

        if user is None:
            self.verifier.verify_dummy(password)
            return INVALID_CREDENTIALS
        if not self.verifier.verify(password, user.password_hash):
            return INVALID_CREDENTIALS

        self._upgrade_hash(user, password)

        outcome = self._open_session(user)
        if isinstance(outcome, SessionTokens):
            logger.info("login succeeded user_id=%s", user.id)
        return outcome

    def refresh(self, presented: str) -> Union[SessionTokens, Failure]:
        """
        Rotate a refresh token: the presented one is revoked before its
        replacement is stored, so it can never be used again even if the
        new save fails.
        """
        try:
            claims = self.issuer.verify(presented, expected_type=REFRESH)
        except TokenError as exc:
            return invalid_session(exc.reason)

        token_id = str(claims["jti"])
        try:
            record = self.refresh_tokens.find_active(token_id)
            if record is None:
                return self._deny_inactive(token_id)
            if not self.refresh_tokens.revoke_if_active(token_id):
                # lost the race against a concurrent rotation of the same token
                logger.warning(
                    "concurrent refresh token reuse user_id=%s token_id=%s",
                    record.user_id,
                    token_id,
                )
                return invalid_session("reused")
        except PersistenceError:
            logger.exception("refresh token lookup failed token_id=%s", token_id)
            return Failure(FailureKind.PERSISTENCE_FAILURE, "Session store unavailable")

        try:
            user = self.users.get(record.user_id)
        except PersistenceError:
            logger.exception("user lookup failed during refresh")
            return Failure(FailureKind.PERSISTENCE_FAILURE, "Session store unavailable")
        if user is None:
            return invalid_session("user_missing")

        outcome = self._open_session(user)
        if isinstance(outcome, SessionTokens):
            logger.info(
                "session rotated user_id=%s old_token_id=%s new_token_id=%s",
                user.id,
                token_id,
                outcome.refresh_token_id,
            )
        return outcome

    def logout(self, token_id: str) -> None:
        """Revoke a refresh token; unknown or already revoked ids are a no-op."""
        if not token_id:
            return
        try:
            self.refresh_tokens.revoke(token_id)
        except PersistenceError:
            logger.exception("refresh token revoke failed token_id=%s", token_id)
            return
        logger.info("logout token_id=%s", token_id)

    def authenticate(self, access_token: str) -> Union[Dict[str, Any], Failure]:
        """Verify an access token and return its claims."""
        try:
            return self.issuer.verify(access_token, expected_type=ACCESS)
        except TokenError as exc:
            return invalid_session(exc.reason)

    def _open_session(self, user: UserRecord) -> Union[SessionTokens, Failure]:
        refresh = self.issuer.issue_refresh(user.id)
        try:
            self.refresh_tokens.save(
                refresh.token_id,
                user.id,
                refresh.expires_at,
                issued_at=refresh.issued_at,
            )
        except PersistenceError:
            logger.exception("failed to persist refresh token user_id=%s", user.id)
            return Failure(
                FailureKind.PERSISTENCE_FAILURE, "Failed to store the data in the database"
            )

        access = self.issuer.issue_access(user.id, user.role)
        return SessionTokens(
            user_id=user.id,
            access_token=access.token,
            refresh_token=refresh.token,
            refresh_token_id=refresh.token_id,
            access_ttl_seconds=access.ttl_seconds,
            refresh_ttl_seconds=refresh.ttl_seconds,
        )

    def _deny_inactive(self, token_id: str) -> Failure:
        """
        The token is signed by us but has no live record. A revoked record
        means a rotated or logged-out token was replayed.
        """
        record = self.refresh_tokens.find(token_id)
        if record is not None and record.revoked:
            logger.warning(
                "refresh token reuse detected user_id=%s token_id=%s",
                record.user_id,
                token_id,
            )
            return invalid_session("reused")
        return invalid_session("not_found")

    def _upgrade_hash(self, user: UserRecord, password: str) -> None:
        if not self.verifier.needs_rehash(user.password_hash):
            return
        try:
            self.users.update_password_hash(user.id, self.verifier.hash(password))
        except (HashingError, PersistenceError):
            logger.exception("password rehash failed user_id=%s", user.id)

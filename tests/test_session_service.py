from __future__ import annotations

import threading
from datetime import timedelta

from services.errors import PersistenceError
from services.outcomes import Failure, FailureKind, Registered, SessionTokens
from services.session_service import SessionService
from utils.security import CredentialVerifier, HashingError
from utils.tokens import TokenIssuer

from conftest import EMAIL, PASSWORD


class _FailingSaveStore:
    """Wraps the real store; ``save`` fails once ``broken`` is set."""

    def __init__(self, inner):
        self._inner = inner
        self.broken = False

    def save(self, *args, **kwargs):
        if self.broken:
            raise PersistenceError("disk full")
        return self._inner.save(*args, **kwargs)

    def __getattr__(self, name):
        return getattr(self._inner, name)


class _FailingRevokeStore:
    """Wraps the real store; every ``revoke`` fails."""

    def __init__(self, inner):
        self._inner = inner

    def revoke(self, token_id):
        raise PersistenceError("connection reset")

    def __getattr__(self, name):
        return getattr(self._inner, name)


def _rebuild(service: SessionService, **overrides) -> SessionService:
    parts = {
        "verifier": service.verifier,
        "issuer": service.issuer,
        "refresh_tokens": service.refresh_tokens,
        "users": service.users,
    }
    parts.update(overrides)
    return SessionService(**parts)


def test_register_hashes_password_and_defaults_role(service) -> None:
    outcome = service.register("  New@Example.com ", PASSWORD, "new", "user")

    assert isinstance(outcome, Registered)
    assert outcome.user.email == "new@example.com"
    assert outcome.user.role == "customer"
    assert outcome.user.password_hash != PASSWORD
    assert service.verifier.verify(PASSWORD, outcome.user.password_hash)


def test_register_duplicate_email_fails(service, registered_user) -> None:
    outcome = service.register(EMAIL.upper(), "other-password")

    assert isinstance(outcome, Failure)
    assert outcome.kind is FailureKind.DUPLICATE_USER


def test_register_reports_hashing_failure(service, monkeypatch) -> None:
    def _boom(_password):
        raise HashingError("primitive failed")

    monkeypatch.setattr(service.verifier, "hash", _boom)

    outcome = service.register("x@example.com", PASSWORD)

    assert isinstance(outcome, Failure)
    assert outcome.kind is FailureKind.HASHING_ERROR


def test_login_issues_exactly_one_new_refresh_record(service, registered_user) -> None:
    before = service.refresh_tokens.count_active_for_user(registered_user.id)

    outcome = service.login(EMAIL, PASSWORD)

    assert isinstance(outcome, SessionTokens)
    assert outcome.user_id == registered_user.id
    assert service.refresh_tokens.count_active_for_user(registered_user.id) == before + 1
    assert service.refresh_tokens.find_active(outcome.refresh_token_id) is not None
    claims = service.issuer.verify(outcome.access_token)
    assert claims["sub"] == registered_user.id
    assert claims["role"] == "customer"


def test_wrong_password_and_unknown_email_are_indistinguishable(service, registered_user) -> None:
    wrong_password = service.login(EMAIL, "not-the-password")
    unknown_email = service.login("nobody@example.com", PASSWORD)

    assert isinstance(wrong_password, Failure)
    assert wrong_password == unknown_email
    assert wrong_password.kind is FailureKind.INVALID_CREDENTIALS
    assert service.refresh_tokens.count_active_for_user(registered_user.id) == 0


def test_two_logins_open_two_independent_sessions(service, registered_user) -> None:
    first = service.login(EMAIL, PASSWORD)
    second = service.login(EMAIL, PASSWORD)

    assert first.refresh_token_id != second.refresh_token_id
    assert service.refresh_tokens.count_active_for_user(registered_user.id) == 2


def test_refresh_rotates_the_presented_token(service, registered_user) -> None:
    session = service.login(EMAIL, PASSWORD)

    rotated = service.refresh(session.refresh_token)

    assert isinstance(rotated, SessionTokens)
    assert rotated.refresh_token_id != session.refresh_token_id
    assert service.refresh_tokens.find_active(session.refresh_token_id) is None
    assert service.refresh_tokens.find_active(rotated.refresh_token_id) is not None
    assert service.refresh_tokens.count_active_for_user(registered_user.id) == 1
    assert service.issuer.verify(rotated.access_token)["sub"] == registered_user.id


def test_reusing_a_rotated_token_is_rejected(service, registered_user, caplog) -> None:
    session = service.login(EMAIL, PASSWORD)
    rotated = service.refresh(session.refresh_token)

    with caplog.at_level("WARNING", logger="services.session_service"):
        replay = service.refresh(session.refresh_token)

    assert isinstance(replay, Failure)
    assert replay.kind is FailureKind.INVALID_SESSION
    assert replay.reason == "reused"
    assert "reuse detected" in caplog.text
    assert session.refresh_token not in caplog.text
    # the legitimate successor is untouched
    assert service.refresh_tokens.find_active(rotated.refresh_token_id) is not None


def test_refresh_rejects_invalid_tokens(service, registered_user) -> None:
    session = service.login(EMAIL, PASSWORD)

    garbage = service.refresh("not-a-token")
    access_as_refresh = service.refresh(session.access_token)

    assert garbage.kind is FailureKind.INVALID_SESSION
    assert garbage.reason == "malformed"
    assert access_as_refresh.kind is FailureKind.INVALID_SESSION


def test_refresh_rejects_expired_token(service, registered_user, app) -> None:
    short_lived = TokenIssuer(
        secret=app.config["JWT_SECRET"],
        issuer=app.config["JWT_ISSUER"],
        refresh_ttl=timedelta(seconds=-5),
    )
    expiring = _rebuild(service, issuer=short_lived)
    session = expiring.login(EMAIL, PASSWORD)

    outcome = service.refresh(session.refresh_token)

    assert isinstance(outcome, Failure)
    assert outcome.kind is FailureKind.INVALID_SESSION
    assert outcome.reason == "expired"


def test_refresh_rejects_signed_token_without_record(service, registered_user) -> None:
    orphan = service.issuer.issue_refresh(registered_user.id)

    outcome = service.refresh(orphan.token)

    assert outcome.kind is FailureKind.INVALID_SESSION
    assert outcome.reason == "not_found"


def test_concurrent_refresh_with_same_token_has_one_winner(service, storage, registered_user) -> None:
    session = service.login(EMAIL, PASSWORD)
    barrier = threading.Barrier(2)
    results = []
    lock = threading.Lock()

    def worker() -> None:
        barrier.wait()
        try:
            outcome = service.refresh(session.refresh_token)
            with lock:
                results.append(outcome)
        finally:
            storage.close()

    threads = [threading.Thread(target=worker) for _ in range(2)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)

    winners = [r for r in results if isinstance(r, SessionTokens)]
    losers = [r for r in results if isinstance(r, Failure)]
    assert len(winners) == 1
    assert len(losers) == 1
    assert losers[0].kind is FailureKind.INVALID_SESSION
    assert service.refresh_tokens.count_active_for_user(registered_user.id) == 1
    assert service.refresh_tokens.find_active(winners[0].refresh_token_id) is not None


def test_logout_then_refresh_fails_and_logout_is_idempotent(service, registered_user) -> None:
    session = service.login(EMAIL, PASSWORD)

    service.logout(session.refresh_token_id)
    outcome = service.refresh(session.refresh_token)
    service.logout(session.refresh_token_id)
    service.logout("never-issued")

    assert isinstance(outcome, Failure)
    assert outcome.kind is FailureKind.INVALID_SESSION
    assert service.refresh_tokens.count_active_for_user(registered_user.id) == 0


def test_failed_save_during_rotation_fails_closed(service, registered_user) -> None:
    store = _FailingSaveStore(service.refresh_tokens)
    flaky = _rebuild(service, refresh_tokens=store)
    session = flaky.login(EMAIL, PASSWORD)

    store.broken = True
    outcome = flaky.refresh(session.refresh_token)
    store.broken = False

    assert isinstance(outcome, Failure)
    assert outcome.kind is FailureKind.PERSISTENCE_FAILURE
    # the old token was revoked first and stays revoked
    assert flaky.refresh(session.refresh_token).kind is FailureKind.INVALID_SESSION
    assert store.count_active_for_user(registered_user.id) == 0


def test_logout_survives_storage_failure(service, registered_user, caplog) -> None:
    store = _FailingRevokeStore(service.refresh_tokens)
    flaky = _rebuild(service, refresh_tokens=store)
    session = flaky.login(EMAIL, PASSWORD)

    with caplog.at_level("ERROR", logger="services.session_service"):
        assert flaky.logout(session.refresh_token_id) is None

    assert "refresh token revoke failed" in caplog.text
    assert store.find_active(session.refresh_token_id) is not None


def test_login_reports_persistence_failure_without_tokens(service, registered_user) -> None:
    store = _FailingSaveStore(service.refresh_tokens)
    store.broken = True
    flaky = _rebuild(service, refresh_tokens=store)

    outcome = flaky.login(EMAIL, PASSWORD)

    assert isinstance(outcome, Failure)
    assert outcome.kind is FailureKind.PERSISTENCE_FAILURE
    assert store.count_active_for_user(registered_user.id) == 0


def test_login_upgrades_weak_password_hash(service, registered_user) -> None:
    stronger = CredentialVerifier(time_cost=2, memory_cost=8, parallelism=1)
    upgraded = _rebuild(service, verifier=stronger)

    outcome = upgraded.login(EMAIL, PASSWORD)

    assert isinstance(outcome, SessionTokens)
    stored = service.users.get(registered_user.id).password_hash
    assert stored != registered_user.password_hash
    assert stronger.needs_rehash(stored) is False
    assert stronger.verify(PASSWORD, stored)


def test_authenticate_classifies_expired_access_token(service, registered_user, app) -> None:
    expired = TokenIssuer(
        secret=app.config["JWT_SECRET"],
        issuer=app.config["JWT_ISSUER"],
        access_ttl=timedelta(seconds=-5),
    ).issue_access(registered_user.id, "customer")
    valid = service.issuer.issue_access(registered_user.id, "customer")

    assert service.authenticate(expired.token).reason == "expired"
    assert service.authenticate(valid.token)["sub"] == registered_user.id

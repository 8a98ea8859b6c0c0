from __future__ import annotations

from pathlib import Path

import pytest

from api import create_app
from services.ports import UserRecord
from services.session_service import SessionService

EMAIL = "sameer@example.com"
PASSWORD = "S3cret!"


@pytest.fixture()
def app(tmp_path: Path):
    # file-backed so that worker threads share one database
    app = create_app(
        "testing",
        overrides={"DATABASE_URL": f"sqlite:///{tmp_path / 'auth.db'}"},
    )
    yield app
    app.extensions["storage"].drop_all()


@pytest.fixture()
def client(app):
    # cookies are passed explicitly so each test controls what is presented
    return app.test_client(use_cookies=False)


@pytest.fixture()
def storage(app):
    return app.extensions["storage"]


@pytest.fixture()
def service(app) -> SessionService:
    return app.extensions["session_service"]


@pytest.fixture()
def registered_user(service: SessionService) -> UserRecord:
    outcome = service.register(EMAIL, PASSWORD, first_name="sameer", last_name="kumar")
    return outcome.user

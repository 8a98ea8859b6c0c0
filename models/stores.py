"""
SQLAlchemy adapters for the storage contracts in services/ports.py.

Every SQLAlchemyError is rolled back and re-raised as PersistenceError so the
session service never sees a driver exception.
"""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from models.base_model import as_naive_utc, utcnow
from models.db_storage import DBStorage
from models.refresh_token import RefreshToken
from models.user import User
from services.errors import DuplicateUserError, PersistenceError
from services.ports import RefreshTokenRecord, UserRecord


def _to_record(row: RefreshToken) -> RefreshTokenRecord:
    return RefreshTokenRecord(
        token_id=row.id,
        user_id=row.user_id,
        issued_at=row.issued_at,
        expires_at=row.expires_at,
        revoked=bool(row.revoked),
    )


def _to_user(row: User) -> UserRecord:
    return UserRecord(
        id=row.id,
        email=row.email,
        password_hash=row.password_hash,
        role=row.role,
        f_name=row.f_name,
        l_name=row.l_name,
    )


class SqlRefreshTokenStore:
    """Refresh-token ledger on top of DBStorage."""

    def __init__(self, storage: DBStorage):
        self._storage = storage

    def _fail(self, exc: SQLAlchemyError, action: str):
        self._storage.rollback()
        raise PersistenceError(f"refresh token {action} failed") from exc

    def save(
        self,
        token_id: str,
        user_id: str,
        expires_at: datetime,
        issued_at: Optional[datetime] = None,
    ) -> None:
        row = RefreshToken(
            id=token_id,
            user_id=user_id,
            issued_at=as_naive_utc(issued_at) if issued_at else utcnow(),
            expires_at=as_naive_utc(expires_at),
            revoked=False,
        )
        try:
            self._storage.new(row)
            self._storage.save()
        except SQLAlchemyError as exc:
            self._fail(exc, "save")

    def find(self, token_id: str) -> Optional[RefreshTokenRecord]:
        try:
            row = self._storage.get(RefreshToken, token_id)
            if row is not None:
                self._storage.get_session().refresh(row)
        except SQLAlchemyError as exc:
            self._fail(exc, "lookup")
        return _to_record(row) if row is not None else None

    def find_active(self, token_id: str) -> Optional[RefreshTokenRecord]:
        session = self._storage.get_session()
        try:
            row = (
                session.query(RefreshToken)
                .filter(
                    RefreshToken.id == token_id,
                    RefreshToken.revoked.is_(False),
                    RefreshToken.expires_at > utcnow(),
                )
                .populate_existing()
                .first()
            )
        except SQLAlchemyError as exc:
            self._fail(exc, "lookup")
        return _to_record(row) if row is not None else None

    def _revoke_where(self, *criteria) -> int:
        session = self._storage.get_session()
        stmt = (
            update(RefreshToken)
            .where(*criteria)
            .values(revoked=True)
            .execution_options(synchronize_session=False)
        )
        try:
            result = session.execute(stmt)
            self._storage.save()
        except SQLAlchemyError as exc:
            self._fail(exc, "revoke")
        return result.rowcount or 0

    def revoke(self, token_id: str) -> None:
        self._revoke_where(RefreshToken.id == token_id, RefreshToken.revoked.is_(False))

    def revoke_if_active(self, token_id: str) -> bool:
        """
        Conditional UPDATE: only one concurrent caller can flip a live row,
        every other caller sees zero affected rows.
        """
        changed = self._revoke_where(
            RefreshToken.id == token_id,
            RefreshToken.revoked.is_(False),
            RefreshToken.expires_at > utcnow(),
        )
        return changed == 1

    def count_active_for_user(self, user_id: str) -> int:
        session = self._storage.get_session()
        try:
            return (
                session.query(func.count(RefreshToken.id))
                .filter(
                    RefreshToken.user_id == user_id,
                    RefreshToken.revoked.is_(False),
                    RefreshToken.expires_at > utcnow(),
                )
                .scalar()
            )
        except SQLAlchemyError as exc:
            self._fail(exc, "count")


class SqlUserStore:
    """User persistence; email uniqueness is enforced by the users table."""

    def __init__(self, storage: DBStorage):
        self._storage = storage

    def create(
        self,
        email: str,
        password_hash: str,
        role: str,
        f_name: Optional[str] = None,
        l_name: Optional[str] = None,
    ) -> UserRecord:
        user = User(
            email=email,
            password_hash=password_hash,
            role=role,
            f_name=f_name,
            l_name=l_name,
        )
        try:
            self._storage.new(user)
            self._storage.save()
        except IntegrityError as exc:
            # DBStorage.save() already rolled back
            raise DuplicateUserError("Email already registered") from exc
        except SQLAlchemyError as exc:
            raise PersistenceError("Failed to store the user") from exc
        return _to_user(user)

    def find_by_email(self, email: str) -> Optional[UserRecord]:
        session = self._storage.get_session()
        try:
            row = (
                session.query(User)
                .filter(User.email == email)
                .populate_existing()
                .first()
            )
        except SQLAlchemyError as exc:
            self._storage.rollback()
            raise PersistenceError("user lookup failed") from exc
        return _to_user(row) if row is not None else None

    def get(self, user_id: str) -> Optional[UserRecord]:
        try:
            row = self._storage.get(User, user_id)
            if row is not None:
                self._storage.get_session().refresh(row)
        except SQLAlchemyError as exc:
            self._storage.rollback()
            raise PersistenceError("user lookup failed") from exc
        return _to_user(row) if row is not None else None

    def update_password_hash(self, user_id: str, password_hash: str) -> None:
        session = self._storage.get_session()
        try:
            session.execute(
                update(User)
                .where(User.id == user_id)
                .values(password_hash=password_hash)
                .execution_options(synchronize_session=False)
            )
            self._storage.save()
        except SQLAlchemyError as exc:
            self._storage.rollback()
            raise PersistenceError("password hash update failed") from exc

"""Durable session storage.

Single source of truth for:
- access / refresh tokens
- serialized user record
- active company id

The store holds no logic. `set_tokens`, `replace_tokens` and `clear` are the
only write primitives for tokens; rotation, login and teardown go through
them.
"""

from __future__ import annotations

from threading import Lock
from typing import Optional, Protocol

from pydantic import ValidationError
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from tradedesk.config import settings
from tradedesk.core.observability import logger
from tradedesk.database import init_db, make_engine, make_sessionmaker
from tradedesk.models.session_entry import SessionEntry
from tradedesk.schemas.users import User


class KeyValueBackend(Protocol):
    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...

    def remove(self, *keys: str) -> None: ...


class MemoryBackend:
    """Process-local backend; the session does not survive a restart."""

    def __init__(self) -> None:
        self._data: dict[str, str] = {}
        self._lock = Lock()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._data[key] = value

    def remove(self, *keys: str) -> None:
        with self._lock:
            for key in keys:
                self._data.pop(key, None)


class SqlBackend:
    """SQLAlchemy-backed key/value table, durable across reloads."""

    def __init__(self, engine: Engine | None = None, *, create_tables: bool = True) -> None:
        self.engine = engine or make_engine()
        self._sessionmaker: sessionmaker = make_sessionmaker(self.engine)
        if create_tables:
            init_db(self.engine)

    def get(self, key: str) -> Optional[str]:
        with self._sessionmaker() as db:
            row = db.query(SessionEntry).filter(SessionEntry.key == key).first()
            return row.value if row is not None else None

    def set(self, key: str, value: str) -> None:
        with self._sessionmaker() as db:
            row = db.query(SessionEntry).filter(SessionEntry.key == key).first()
            if row is None:
                db.add(SessionEntry(key=key, value=value))
            else:
                row.value = value
            db.commit()

    def remove(self, *keys: str) -> None:
        if not keys:
            return
        with self._sessionmaker() as db:
            db.query(SessionEntry).filter(SessionEntry.key.in_(list(keys))).delete(
                synchronize_session=False
            )
            db.commit()


class SessionStore:
    def __init__(self, backend: KeyValueBackend | None = None, *, key_prefix: str | None = None):
        self.backend: KeyValueBackend = backend if backend is not None else MemoryBackend()
        prefix = key_prefix or settings.storage_key_prefix
        self.access_token_key = f"{prefix}_access_token"
        self.refresh_token_key = f"{prefix}_refresh_token"
        self.user_key = f"{prefix}_user"
        self.active_company_key = f"{prefix}_active_company"

    @classmethod
    def durable(cls, url: str | None = None) -> "SessionStore":
        return cls(SqlBackend(make_engine(url)))

    # Tokens

    def get_access_token(self) -> Optional[str]:
        return self.backend.get(self.access_token_key) or None

    def get_refresh_token(self) -> Optional[str]:
        return self.backend.get(self.refresh_token_key) or None

    def set_tokens(self, access_token: Optional[str], refresh_token: Optional[str]) -> None:
        """Write whichever tokens are given; a missing value leaves the stored one alone."""

        if access_token:
            self.backend.set(self.access_token_key, access_token)
        if refresh_token:
            self.backend.set(self.refresh_token_key, refresh_token)

    def replace_tokens(self, access_token: str, refresh_token: Optional[str]) -> None:
        """Install a new identity's tokens; no refresh token means none is kept."""

        self.backend.remove(self.access_token_key, self.refresh_token_key)
        self.set_tokens(access_token, refresh_token)

    # User

    def get_user(self) -> Optional[User]:
        raw = self.backend.get(self.user_key)
        if not raw:
            return None
        try:
            return User.model_validate_json(raw)
        except ValidationError:
            logger.warning("session_store_user_unreadable", extra={"key": self.user_key})
            return None

    def set_user(self, user: User) -> None:
        self.backend.set(self.user_key, user.model_dump_json(by_alias=True))

    # Active company

    def get_active_company_id(self) -> Optional[str]:
        return self.backend.get(self.active_company_key) or None

    def set_active_company_id(self, company_id: str) -> None:
        self.backend.set(self.active_company_key, company_id)

    def clear(self) -> None:
        try:
            self.backend.remove(
                self.access_token_key,
                self.refresh_token_key,
                self.user_key,
                self.active_company_key,
            )
        except SQLAlchemyError:
            logger.exception("session_store_clear_failed")
            raise

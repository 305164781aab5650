"""In-memory session: who is logged in, acting for which company.

Tokens are never held here; they are read through the store on demand so a
token rotation does not look like an identity change to subscribers.

Every mutation runs under one lock and bumps `epoch` when identity changes
(login, logout). A refresh that was started under an older epoch must not
write its tokens back (see `apply_refreshed_credentials`).
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from threading import RLock
from typing import Callable, Optional, Union

from tradedesk.core.observability import logger
from tradedesk.core.session_store import SessionStore
from tradedesk.models.domain import RoleName
from tradedesk.schemas.users import CompanyAccess, User


class SessionEventType(str, Enum):
    credentials_set = "credentials_set"
    tokens_refreshed = "tokens_refreshed"
    company_changed = "company_changed"
    user_updated = "user_updated"
    logged_out = "logged_out"


@dataclass(frozen=True)
class Session:
    user: User
    active_company: Optional[CompanyAccess]
    epoch: int

    @property
    def is_authenticated(self) -> bool:
        return self.user is not None

    @property
    def active_role(self) -> Optional[RoleName]:
        return self.active_company.role if self.active_company else None


@dataclass(frozen=True)
class SessionEvent:
    type: SessionEventType
    epoch: int
    previous_company_id: Optional[str] = None
    company_id: Optional[str] = None


SessionListener = Callable[[SessionEvent], None]


def _resolve_company(user: Optional[User], company_id: Optional[str]) -> Optional[CompanyAccess]:
    if user is None or not company_id:
        return None
    return user.find_company(company_id)


class SessionState:
    def __init__(self, store: SessionStore) -> None:
        self.store = store
        self._lock = RLock()
        self._user: Optional[User] = None
        self._active_company: Optional[CompanyAccess] = None
        self._epoch = 0
        self._listeners: list[SessionListener] = []

    @classmethod
    def load(cls, store: SessionStore) -> "SessionState":
        """Build the state from what the store persisted (process start / reload)."""

        state = cls(store)
        user = store.get_user()
        if user is None and (store.get_access_token() or store.get_refresh_token()):
            # Tokens without a readable user are unusable; drop them.
            logger.warning("session_restore_orphaned_tokens")
            store.clear()
        state._user = user
        state._active_company = _resolve_company(user, store.get_active_company_id())
        if user is not None:
            logger.info(
                "session_restored",
                extra={
                    "user_id": user.id,
                    "active_company_id": (
                        state._active_company.company_id if state._active_company else None
                    ),
                },
            )
        return state

    # Reads

    @property
    def user(self) -> Optional[User]:
        with self._lock:
            return self._user

    @property
    def active_company(self) -> Optional[CompanyAccess]:
        with self._lock:
            return self._active_company

    @property
    def active_company_id(self) -> Optional[str]:
        company = self.active_company
        return company.company_id if company else None

    @property
    def active_role(self) -> Optional[RoleName]:
        company = self.active_company
        return company.role if company else None

    @property
    def is_authenticated(self) -> bool:
        return self.user is not None

    @property
    def epoch(self) -> int:
        with self._lock:
            return self._epoch

    @property
    def access_token(self) -> Optional[str]:
        return self.store.get_access_token()

    @property
    def refresh_token(self) -> Optional[str]:
        return self.store.get_refresh_token()

    def snapshot(self) -> Optional[Session]:
        with self._lock:
            if self._user is None:
                return None
            return Session(user=self._user, active_company=self._active_company, epoch=self._epoch)

    # Subscriptions

    def subscribe(self, listener: SessionListener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, event: SessionEvent) -> None:
        # Called with the lock held: listeners observe the mutation atomically.
        for listener in list(self._listeners):
            listener(event)

    # Mutations

    def set_credentials(
        self, user: User, access_token: str, refresh_token: Optional[str]
    ) -> None:
        with self._lock:
            self._user = user
            self._epoch += 1
            self.store.set_user(user)
            self.store.replace_tokens(access_token, refresh_token)
            self._active_company = _resolve_company(user, self.store.get_active_company_id())
            logger.info("session_credentials_set", extra={"user_id": user.id, "epoch": self._epoch})
            self._emit(SessionEvent(SessionEventType.credentials_set, self._epoch))

    def select_known_company(self, company_id: str) -> Optional[CompanyAccess]:
        """Switch to a company already in the user's memberships; unknown ids are a no-op."""

        with self._lock:
            company = _resolve_company(self._user, company_id)
            if company is None:
                logger.info("session_company_unknown", extra={"company_id": company_id})
                return None
            self._switch_to(company)
            return company

    def adopt_company(self, company: CompanyAccess) -> CompanyAccess:
        """Activate a company the user may not have cached yet (e.g. just created)."""

        with self._lock:
            if self._user is not None:
                companies = list(self._user.companies)
                for i, existing in enumerate(companies):
                    if existing.company_id == company.company_id:
                        companies[i] = company
                        break
                else:
                    companies.append(company)
                self._user = self._user.model_copy(update={"companies": companies})
                self.store.set_user(self._user)
            self._switch_to(company)
            return company

    def set_active_company(
        self, value: Union[str, CompanyAccess]
    ) -> Optional[CompanyAccess]:
        if isinstance(value, CompanyAccess):
            return self.adopt_company(value)
        return self.select_known_company(value)

    def _switch_to(self, company: CompanyAccess) -> None:
        previous = self._active_company.company_id if self._active_company else None
        self._active_company = company
        self.store.set_active_company_id(company.company_id)
        logger.info(
            "session_company_changed",
            extra={
                "previous_company_id": previous,
                "company_id": company.company_id,
                "role": company.role.value,
            },
        )
        self._emit(
            SessionEvent(
                SessionEventType.company_changed,
                self._epoch,
                previous_company_id=previous,
                company_id=company.company_id,
            )
        )

    def update_user(self, user: User) -> None:
        with self._lock:
            self._user = user
            self.store.set_user(user)
            if self._active_company is not None:
                # Role is per membership; pick up any role change from the new record.
                # A revoked membership leaves no active company.
                self._active_company = user.find_company(self._active_company.company_id)
                if self._active_company is None:
                    logger.info("session_company_revoked", extra={"user_id": user.id})
            self._emit(SessionEvent(SessionEventType.user_updated, self._epoch))

    def apply_refreshed_credentials(
        self,
        *,
        access_token: str,
        refresh_token: Optional[str],
        user: Optional[User],
        expected_epoch: int,
    ) -> bool:
        """Persist a refresh result unless the session changed while it was in flight."""

        with self._lock:
            if self._epoch != expected_epoch or self._user is None:
                logger.warning(
                    "session_refresh_discarded",
                    extra={"expected_epoch": expected_epoch, "epoch": self._epoch},
                )
                return False
            self.store.set_tokens(access_token, refresh_token)
            if user is not None:
                self._user = user
                self.store.set_user(user)
                self._active_company = _resolve_company(user, self.store.get_active_company_id())
            self._emit(SessionEvent(SessionEventType.tokens_refreshed, self._epoch))
            return True

    def logout(self) -> None:
        with self._lock:
            was_authenticated = self._user is not None
            self._user = None
            self._active_company = None
            try:
                self.store.clear()
            finally:
                # In-memory logout stands even when the store could not be wiped.
                if was_authenticated:
                    self._epoch += 1
                    logger.info("session_logged_out", extra={"epoch": self._epoch})
                    self._emit(SessionEvent(SessionEventType.logged_out, self._epoch))


def load_session(store: SessionStore) -> SessionState:
    return SessionState.load(store)

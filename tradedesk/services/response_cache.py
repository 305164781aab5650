from __future__ import annotations

import json
from dataclasses import dataclass, field
from threading import Lock
from typing import Any, Callable, Iterable, Optional

from tradedesk.core.observability import logger
from tradedesk.core.session_state import SessionEvent, SessionEventType, SessionState

TAG_TYPES: frozenset[str] = frozenset(
    {
        "User",
        "Company",
        "Party",
        "Trade",
        "Invoice",
        "Payment",
        "Exposure",
        "Hedge",
        "Audit",
        "Dashboard",
    }
)

# ("Trade", "LIST") or ("Trade", "<id>")
CacheTag = tuple[str, str]

# Session events after which nothing cached may be shown again.
_RESET_ON = {
    SessionEventType.logged_out,
    SessionEventType.credentials_set,
    SessionEventType.company_changed,
}


def cache_key(company_id: Optional[str], method: str, path: str, params: dict | None) -> str:
    return json.dumps(
        [company_id or "", method.upper(), path, sorted((params or {}).items())],
        separators=(",", ":"),
    )


@dataclass
class _Entry:
    value: Any
    tags: frozenset[CacheTag] = field(default_factory=frozenset)


class ResponseCache:
    """Tag-based cache of company-scoped GET results."""

    def __init__(self) -> None:
        self._entries: dict[str, _Entry] = {}
        self._lock = Lock()
        self.generation = 0

    def get(self, key: str) -> Any:
        with self._lock:
            entry = self._entries.get(key)
            return entry.value if entry is not None else None

    def put(self, key: str, value: Any, tags: Iterable[CacheTag] = ()) -> None:
        tag_set = frozenset(tags)
        unknown = {t for t, _ in tag_set if t not in TAG_TYPES}
        if unknown:
            raise ValueError(f"Unknown cache tag type(s): {sorted(unknown)}")
        with self._lock:
            self._entries[key] = _Entry(value=value, tags=tag_set)

    def invalidate(self, tags: Iterable[CacheTag]) -> int:
        targets = set(tags)
        with self._lock:
            doomed = [k for k, e in self._entries.items() if e.tags & targets]
            for k in doomed:
                del self._entries[k]
        return len(doomed)

    def reset(self) -> None:
        with self._lock:
            dropped = len(self._entries)
            self._entries.clear()
            self.generation += 1
        logger.info("response_cache_reset", extra={"dropped": dropped, "generation": self.generation})

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def attach(self, session: SessionState) -> Callable[[], None]:
        """Reset on logout, login and company switch, inside the session mutation."""

        def _on_session_event(event: SessionEvent) -> None:
            if event.type in _RESET_ON:
                self.reset()

        return session.subscribe(_on_session_event)

"""Client-side session context.

The browser-side half of admin auth keeps three facts: which session record
it believes in, whether that record is a direct or a shared one, and (for
shared sessions) which visitor id it was bound to. They live in a small
key-value cache that survives restarts, like browser local storage.

SessionContext is the single owner of those keys. It is loaded once at
startup and only the auth state machines call promote()/clear().
"""

import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path

from codeprism.services.remote_auth import (
    AccessConstraints,
    SessionKind,
    new_visitor_id,
)

logger = logging.getLogger("codeprism.auth")

SESSION_KEY = "admin_session"
SHARED_FLAG_KEY = "admin_is_shared"
BOUND_VISITOR_KEY = "admin_visitor_id"
TAB_VISITOR_KEY = "visitor_id"


class LocalCache(ABC):
    """Abstract string key-value cache owned by one client."""

    @abstractmethod
    def get(self, key: str) -> str | None:
        ...

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        ...

    @abstractmethod
    def remove(self, key: str) -> None:
        """Remove a key. No-op if absent."""
        ...


class InMemoryLocalCache(LocalCache):
    """Process-lifetime cache. Also models per-tab session storage."""

    def __init__(self, initial: dict[str, str] | None = None):
        self._values: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self._values.get(key)

    def set(self, key: str, value: str) -> None:
        self._values[key] = value

    def remove(self, key: str) -> None:
        self._values.pop(key, None)


class JsonFileLocalCache(LocalCache):
    """Cache persisted to a JSON file, rewritten on every change."""

    def __init__(self, path: str | Path):
        self._path = Path(path)
        self._values: dict[str, str] = {}
        if self._path.exists():
            try:
                self._values = json.loads(self._path.read_text(encoding="utf-8"))
            except (OSError, ValueError):
                logger.warning("unreadable session cache path=%s, starting empty", self._path)

    def get(self, key: str) -> str | None:
        return self._values.get(key)

    def set(self, key: str, value: str) -> None:
        self._values[key] = value
        self._flush()

    def remove(self, key: str) -> None:
        if self._values.pop(key, None) is not None:
            self._flush()

    def _flush(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(json.dumps(self._values), encoding="utf-8")


def ensure_visitor_id(tab_cache: LocalCache) -> str:
    """Return this tab's visitor id, generating it on first use."""
    visitor_id = tab_cache.get(TAB_VISITOR_KEY)
    if not visitor_id:
        visitor_id = new_visitor_id()
        tab_cache.set(TAB_VISITOR_KEY, visitor_id)
    return visitor_id


class SessionContext:
    """What this client currently believes about its admin session."""

    def __init__(self, cache: LocalCache):
        self._cache = cache
        self.session_id: str | None = None
        self.kind: SessionKind = SessionKind.direct
        self.visitor_id: str | None = None
        self.expires_at: datetime | None = None
        self.constraints: AccessConstraints | None = None

    @classmethod
    def load(cls, cache: LocalCache) -> "SessionContext":
        context = cls(cache)
        context.session_id = cache.get(SESSION_KEY)
        if context.session_id and cache.get(SHARED_FLAG_KEY) == "true":
            context.kind = SessionKind.shared
            context.visitor_id = cache.get(BOUND_VISITOR_KEY)
        return context

    @property
    def has_session(self) -> bool:
        return self.session_id is not None

    def promote(
        self,
        session_id: str,
        kind: SessionKind,
        *,
        expires_at: datetime | None = None,
        visitor_id: str | None = None,
        constraints: AccessConstraints | None = None,
    ) -> None:
        self.session_id = session_id
        self.kind = kind
        self.visitor_id = visitor_id
        self.expires_at = expires_at
        self.constraints = constraints

        self._cache.set(SESSION_KEY, session_id)
        if kind is SessionKind.shared:
            self._cache.set(SHARED_FLAG_KEY, "true")
            if visitor_id:
                self._cache.set(BOUND_VISITOR_KEY, visitor_id)
        else:
            self._cache.remove(SHARED_FLAG_KEY)
            self._cache.remove(BOUND_VISITOR_KEY)

    def refresh(
        self,
        *,
        expires_at: datetime | None,
        constraints: AccessConstraints | None,
    ) -> None:
        """Adopt expiry/scope changes made by the approver on the live record."""
        self.expires_at = expires_at
        self.constraints = constraints

    def clear(self) -> None:
        self.session_id = None
        self.kind = SessionKind.direct
        self.visitor_id = None
        self.expires_at = None
        self.constraints = None
        for key in (SESSION_KEY, SHARED_FLAG_KEY, BOUND_VISITOR_KEY):
            self._cache.remove(key)

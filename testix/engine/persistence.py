"""
Session persistence.

The in-memory Session is authoritative; storage only mirrors it so an
attempt survives a reload. Storage failures downgrade the adapter to an
ephemeral in-memory store instead of blocking the user.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Protocol

from testix.engine.errors import InvalidConfiguration, StorageError
from testix.engine.session import Session
from testix.serialization import session_from_payload, session_to_payload

log = logging.getLogger(__name__)

SESSION_KEY_PREFIX = "testix_test_session"
CURRENT_TEST_KEY = "testix_current_test_id"


class KeyValueStorage(Protocol):
    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def remove(self, key: str) -> None: ...


class MemoryStorage:
    """Process-local storage; also the ephemeral fallback."""

    def __init__(self) -> None:
        self._data: dict[str, str] = {}

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)


class FileStorage:
    """One JSON text file per key under ``base_dir``."""

    def __init__(self, base_dir: Path):
        self.base_dir = Path(base_dir)

    def _path(self, key: str) -> Path:
        safe = "".join(char if char.isalnum() or char in "-_." else "_" for char in key)
        return self.base_dir / f"{safe}.json"

    def get(self, key: str) -> str | None:
        path = self._path(key)
        try:
            if not path.exists():
                return None
            return path.read_text(encoding="utf-8")
        except OSError as exc:
            raise StorageError(f"Failed to read {path}: {exc}") from exc

    def set(self, key: str, value: str) -> None:
        path = self._path(key)
        tmp_path = path.with_suffix(".tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(value, encoding="utf-8")
            tmp_path.replace(path)
        except OSError as exc:
            raise StorageError(f"Failed to write {path}: {exc}") from exc

    def remove(self, key: str) -> None:
        path = self._path(key)
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            raise StorageError(f"Failed to remove {path}: {exc}") from exc


def session_key(test_id: str) -> str:
    return f"{SESSION_KEY_PREFIX}:{test_id}"


@dataclass(frozen=True)
class LoadedSession:
    session: Session
    expired: bool

    @property
    def needs_grading(self) -> bool:
        """Caller must route straight to submission instead of resuming."""
        return self.expired or self.session.finished


class SessionPersistence:
    """Mirror of the live session in a key-value storage."""

    def __init__(
        self,
        storage: KeyValueStorage,
        clock: Callable[[], float] = time.time,
    ):
        self.storage = storage
        self.clock = clock
        self.ephemeral = False

    def _fallback(self, exc: Exception) -> None:
        if self.ephemeral:
            return
        log.warning(
            "Session storage unavailable, continuing without persistence: %s", exc
        )
        self.storage = MemoryStorage()
        self.ephemeral = True

    def _get(self, key: str) -> str | None:
        try:
            return self.storage.get(key)
        except StorageError as exc:
            self._fallback(exc)
            return self.storage.get(key)

    def _set(self, key: str, value: str) -> None:
        try:
            self.storage.set(key, value)
        except StorageError as exc:
            self._fallback(exc)
            self.storage.set(key, value)

    def _remove(self, key: str) -> None:
        try:
            self.storage.remove(key)
        except StorageError as exc:
            self._fallback(exc)
            self.storage.remove(key)

    def save(self, session: Session) -> None:
        previous = self._get(CURRENT_TEST_KEY)
        if previous and previous != session.test_id:
            self._remove(session_key(previous))
        self._set(
            session_key(session.test_id),
            json.dumps(session_to_payload(session), ensure_ascii=False),
        )
        self._set(CURRENT_TEST_KEY, session.test_id)

    def load(self, test_id: str) -> LoadedSession | None:
        raw = self._get(session_key(test_id))
        if raw is None:
            return None
        try:
            session = session_from_payload(json.loads(raw))
        except (json.JSONDecodeError, InvalidConfiguration, KeyError, TypeError, ValueError) as exc:
            log.warning("Discarding unreadable session for test %s: %s", test_id, exc)
            self.clear(test_id)
            return None
        return LoadedSession(session=session, expired=session.is_expired(self.clock()))

    def clear(self, test_id: str) -> None:
        self._remove(session_key(test_id))
        if self._get(CURRENT_TEST_KEY) == test_id:
            self._remove(CURRENT_TEST_KEY)

    def active_test_id(self) -> str | None:
        test_id = self._get(CURRENT_TEST_KEY)
        if not test_id:
            return None
        if self._get(session_key(test_id)) is None:
            self._remove(CURRENT_TEST_KEY)
            return None
        return test_id

    def load_active(self) -> LoadedSession | None:
        test_id = self.active_test_id()
        if test_id is None:
            return None
        return self.load(test_id)

    def clear_active(self) -> None:
        test_id = self._get(CURRENT_TEST_KEY)
        if test_id:
            self.clear(test_id)


class SessionGuard:
    """Keeps navigation pinned to the in-progress session route."""

    def __init__(self, persistence: SessionPersistence, route_template: str):
        self.persistence = persistence
        self.route_template = route_template

    def session_route(self, test_id: str) -> str:
        return self.route_template.format(test_id=test_id)

    def redirect_for(self, path: str) -> str | None:
        """Route to redirect to from ``path``, or ``None`` to stay."""
        test_id = self.persistence.active_test_id()
        if test_id is None:
            return None
        target = self.session_route(test_id)
        if path == target or path.startswith(target.rstrip("/") + "/"):
            return None
        return target

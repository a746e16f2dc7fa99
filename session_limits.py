"""Daily cap on recording sessions, persisted in a small key-value store."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import Any, Callable, Protocol

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

DAILY_SESSION_LIMIT = int(os.getenv("DAILY_SESSION_LIMIT", "5"))

SESSION_COUNT_KEY = "recordingSessionCount"
LAST_SESSION_DATE_KEY = "lastRecordingSessionDate"


class SessionLimitReached(Exception):
    def __init__(self, daily_limit: int = DAILY_SESSION_LIMIT):
        self.daily_limit = daily_limit
        super().__init__(
            f"You have reached your daily limit of {daily_limit} recording sessions."
        )


# ---------------------------------------------------------------------------
# Key-value stores
# ---------------------------------------------------------------------------

class KeyValueStore(Protocol):
    def get(self, key: str, default: Any = None) -> Any: ...

    def set(self, key: str, value: Any) -> None: ...

    def delete(self, key: str) -> None: ...


class MemoryStore:
    def __init__(self, initial: dict[str, Any] | None = None):
        self._data: dict[str, Any] = dict(initial or {})

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)


class JsonFileStore:
    """Flat JSON object on disk; rewritten in full on every change."""

    def __init__(self, path: str | Path):
        self.path = Path(path).expanduser()
        self._data = self._load()

    def _load(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text())
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Ignoring unreadable state file %s: %s", self.path, e)
            return {}
        return data if isinstance(data, dict) else {}

    def _flush(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=str(self.path.parent), suffix=".tmp")
        with os.fdopen(fd, "w") as f:
            json.dump(self._data, f, indent=2)
        os.replace(tmp_path, self.path)

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = value
        self._flush()

    def delete(self, key: str) -> None:
        if key in self._data:
            del self._data[key]
            self._flush()


# ---------------------------------------------------------------------------
# Rate limiter
# ---------------------------------------------------------------------------

@dataclass
class SessionRecord:
    date: date | None
    count_today: int


class SessionRateLimiter:
    """Allows `daily_limit` recording sessions per calendar day."""

    def __init__(
        self,
        store: KeyValueStore,
        daily_limit: int = DAILY_SESSION_LIMIT,
        today: Callable[[], date] = date.today,
    ):
        self.store = store
        self.daily_limit = daily_limit
        self._today = today

    def record(self) -> SessionRecord:
        raw = self.store.get(LAST_SESSION_DATE_KEY)
        last = date.fromisoformat(raw) if raw else None
        return SessionRecord(last, int(self.store.get(SESSION_COUNT_KEY, 0)))

    def can_start_session(self) -> bool:
        today = self._today()
        rec = self.record()
        if rec.date == today:
            return rec.count_today < self.daily_limit

        self.store.set(LAST_SESSION_DATE_KEY, today.isoformat())
        self.store.set(SESSION_COUNT_KEY, 0)
        logger.debug("Session count reset for %s", today)
        return True

    def record_session(self) -> None:
        count = self.record().count_today + 1
        self.store.set(SESSION_COUNT_KEY, count)
        logger.info("Recording session %d/%d today", count, self.daily_limit)

    def remaining_sessions(self) -> int:
        rec = self.record()
        if rec.date != self._today():
            return self.daily_limit
        return max(0, self.daily_limit - rec.count_today)

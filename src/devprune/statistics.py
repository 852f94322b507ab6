"""JSON file storage for cleaning history."""

import json
import logging
import threading
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from devprune.config import get_config_dir
from devprune.models import CleaningSession, CleaningStatistics

log = logging.getLogger(__name__)

HISTORY_FILENAME = "history.json"


class StatisticsStore:
    """Append-only history of cleaning sessions."""

    def __init__(self, path: Optional[Path] = None) -> None:
        self.path = path or get_config_dir() / HISTORY_FILENAME
        self._lock = threading.Lock()

    def _load_raw(self) -> list[dict]:
        if not self.path.exists():
            return []
        try:
            with open(self.path) as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError):
            log.exception("Failed to load history file: %s", self.path)
            return []
        sessions = data.get("sessions", []) if isinstance(data, dict) else []
        return sessions if isinstance(sessions, list) else []

    def _save_raw(self, sessions: list[dict]) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "w") as f:
                json.dump({"sessions": sessions}, f, indent=2)
        except OSError:
            log.exception("Failed to save history file: %s", self.path)

    def record_session(self, session: CleaningSession) -> None:
        """Append one session to the history."""
        with self._lock:
            sessions = self._load_raw()
            sessions.append(session.model_dump(mode="json"))
            self._save_raw(sessions)
        log.info("Recorded cleaning session %s (%d items)", session.id, session.item_count)

    def load_sessions(self) -> list[CleaningSession]:
        """All recorded sessions, newest first. Unreadable entries are skipped."""
        with self._lock:
            raw = self._load_raw()

        sessions = []
        for entry in raw:
            try:
                sessions.append(CleaningSession.model_validate(entry))
            except ValidationError:
                log.warning("Skipping malformed session entry in %s", self.path)
        sessions.sort(key=lambda s: s.timestamp, reverse=True)
        return sessions

    def get_statistics(self) -> CleaningStatistics:
        return CleaningStatistics.from_sessions(self.load_sessions())

    def clear(self) -> None:
        with self._lock:
            self._save_raw([])

"""
session/store.py — Durable key-value record per session.

Holds one SessionRecord (history + rolling summary) per session_id.
The store has no concurrency control of its own: every read-modify-write
goes through the session's SessionActor, which serializes access per key.

Two backends:
  InMemorySessionStore  — dict in the process; survives requests, not restarts
  JsonFileSessionStore  — one JSON file per session; survives restarts

Missing records load as SessionRecord() — creation is implicit.
"""
import hashlib
import json
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path

from pydantic import ValidationError

from relay.errors import SessionStorageError
from relay.models import SessionRecord
from relay.observability.logger import get_logger

logger = get_logger(__name__)


class SessionStore(ABC):
    """Load/save whole SessionRecords by session id."""

    @abstractmethod
    def load(self, session_id: str) -> SessionRecord:
        """Return a copy of the stored record, or an empty one."""

    @abstractmethod
    def save(self, session_id: str, record: SessionRecord) -> None:
        """Replace the stored record."""

    def session_count(self) -> int:
        """Number of stored sessions — for observability."""
        return 0


class InMemorySessionStore(SessionStore):

    def __init__(self) -> None:
        self._records: dict[str, SessionRecord] = {}

    def load(self, session_id: str) -> SessionRecord:
        record = self._records.get(session_id)
        if record is None:
            return SessionRecord()
        # Callers get their own list so a snapshot never changes under them
        return record.model_copy(update={"history": list(record.history)})

    def save(self, session_id: str, record: SessionRecord) -> None:
        self._records[session_id] = record.model_copy(update={"history": list(record.history)})

    def session_count(self) -> int:
        return len(self._records)


class JsonFileSessionStore(SessionStore):
    """
    One <sha256(session_id)>.json file per session under `directory`.
    Hashing keeps arbitrary client-supplied ids safe as file names.
    Writes go to a temp file first and are renamed into place.
    """

    def __init__(self, directory: str | Path) -> None:
        self._dir = Path(directory)
        self._dir.mkdir(parents=True, exist_ok=True)

    def _path(self, session_id: str) -> Path:
        digest = hashlib.sha256(session_id.encode("utf-8")).hexdigest()
        return self._dir / f"{digest}.json"

    def load(self, session_id: str) -> SessionRecord:
        path = self._path(session_id)
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return SessionRecord()
        except OSError as e:
            raise SessionStorageError(f"Failed to read session state: {e}") from e

        try:
            return SessionRecord.model_validate_json(raw)
        except ValidationError as e:
            logger.error("session_record_corrupt", extra={"path": str(path)})
            raise SessionStorageError(f"Stored session state is unreadable: {e}") from e

    def save(self, session_id: str, record: SessionRecord) -> None:
        path = self._path(session_id)
        payload = json.dumps(record.model_dump(mode="json"), ensure_ascii=False)
        tmp: str | None = None
        try:
            fd, tmp = tempfile.mkstemp(dir=self._dir, suffix=".tmp")
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
            os.replace(tmp, path)
        except OSError as e:
            if tmp is not None:
                Path(tmp).unlink(missing_ok=True)
            raise SessionStorageError(f"Failed to write session state: {e}") from e

    def session_count(self) -> int:
        return sum(1 for _ in self._dir.glob("*.json"))


def build_store(directory: str | None) -> SessionStore:
    """File-backed store when a directory is configured, in-process otherwise."""
    if directory:
        logger.info("session_store_selected", extra={"backend": "json_file", "dir": directory})
        return JsonFileSessionStore(directory)
    logger.info("session_store_selected", extra={"backend": "in_memory"})
    return InMemorySessionStore()

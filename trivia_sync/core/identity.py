"""Device identity and the locally persisted session pair.

Only the identity contract matters to the core: a stable opaque id per
device. ``FileIdentityProvider`` satisfies it with a random id kept in a
small JSON file; any other issuer can be plugged in instead.
"""

from __future__ import annotations

from dataclasses import dataclass
import json
import logging
from pathlib import Path
from typing import Protocol
from uuid import uuid4

from trivia_sync.constants.network_constants import IDENTITY_FILE_NAME, SESSION_FILE_NAME, STATE_DIR

logger = logging.getLogger(__name__)


class IdentityProvider(Protocol):
    def current_identity(self) -> str:
        ...


@dataclass(slots=True)
class StaticIdentityProvider:
    """Identity supplied by an external issuer."""

    player_id: str

    def current_identity(self) -> str:
        return self.player_id


class FileIdentityProvider:
    """Creates an id on first use and returns the same id afterwards."""

    def __init__(self, file_path: Path | None = None) -> None:
        self._file_path = file_path or STATE_DIR / IDENTITY_FILE_NAME
        self._player_id: str | None = None

    def current_identity(self) -> str:
        if self._player_id is None:
            self._player_id = self._load() or self._issue()
        return self._player_id

    def _load(self) -> str | None:
        if not self._file_path.exists():
            return None
        try:
            data = json.loads(self._file_path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            logger.warning("Identity file %s is unreadable; issuing a new id", self._file_path)
            return None
        player_id = data.get("playerId") if isinstance(data, dict) else None
        return str(player_id) if player_id else None

    def _issue(self) -> str:
        player_id = uuid4().hex
        self._file_path.parent.mkdir(parents=True, exist_ok=True)
        self._file_path.write_text(json.dumps({"playerId": player_id}), encoding="utf-8")
        logger.info("Issued new device identity")
        return player_id


@dataclass(slots=True, frozen=True)
class SavedSession:
    room_id: str
    player_id: str


class SessionStorage(Protocol):
    def load(self) -> SavedSession | None:
        ...

    def save(self, session: SavedSession) -> None:
        ...

    def clear(self) -> None:
        ...


class MemorySessionStorage:
    def __init__(self, session: SavedSession | None = None) -> None:
        self._session = session

    def load(self) -> SavedSession | None:
        return self._session

    def save(self, session: SavedSession) -> None:
        self._session = session

    def clear(self) -> None:
        self._session = None


class FileSessionStorage:
    """Keeps the last ``(roomId, playerId)`` pair across client restarts."""

    def __init__(self, file_path: Path | None = None) -> None:
        self._file_path = file_path or STATE_DIR / SESSION_FILE_NAME

    def load(self) -> SavedSession | None:
        if not self._file_path.exists():
            return None
        try:
            data = json.loads(self._file_path.read_text(encoding="utf-8"))
            return SavedSession(room_id=str(data["roomId"]), player_id=str(data["playerId"]))
        except (OSError, ValueError, KeyError, TypeError):
            logger.warning("Discarding unreadable session file %s", self._file_path)
            self.clear()
            return None

    def save(self, session: SavedSession) -> None:
        self._file_path.parent.mkdir(parents=True, exist_ok=True)
        payload = {"roomId": session.room_id, "playerId": session.player_id}
        self._file_path.write_text(json.dumps(payload), encoding="utf-8")

    def clear(self) -> None:
        self._file_path.unlink(missing_ok=True)

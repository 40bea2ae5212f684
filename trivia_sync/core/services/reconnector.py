"""Service restoring a client's room after a restart without re-registering."""

from __future__ import annotations

import logging

from trivia_sync.core.errors import NotFoundError, TransientIOError, ValidationError
from trivia_sync.core.identity import SavedSession, SessionStorage
from trivia_sync.core.models import Room
from trivia_sync.core.services.room_registry import RoomRegistry

logger = logging.getLogger(__name__)


class Reconnector:
    """Looks up the locally persisted ``(roomId, playerId)`` pair."""

    def __init__(self, registry: RoomRegistry, storage: SessionStorage) -> None:
        self._registry = registry
        self._storage = storage

    def remember(self, room_id: str, player_id: str) -> None:
        self._storage.save(SavedSession(room_id=room_id, player_id=player_id))

    def forget(self) -> None:
        self._storage.clear()

    async def reconnect(self, player_id: str) -> Room | None:
        """Return the saved room if this identity is still registered in it.

        Never raises for a stale or foreign pair: it is discarded and the
        caller falls back to the normal join flow. A transient store error
        keeps the pair so a later attempt can still resume.
        """
        saved = self._storage.load()
        if saved is None:
            return None
        if saved.player_id != player_id:
            logger.info("Saved session belongs to another identity; discarding it")
            self.forget()
            return None
        try:
            room = await self._registry.load(saved.room_id)
            await self._registry.load_player(saved.room_id, player_id)
        except (NotFoundError, ValidationError) as exc:
            logger.info("Saved session for room %s is no longer valid: %s", saved.room_id, exc)
            self.forget()
            return None
        except TransientIOError as exc:
            logger.warning("Could not verify saved session for room %s: %s", saved.room_id, exc)
            return None
        logger.info("Resuming room %s as %s", room.room_id, player_id)
        return room

"""Service for creating rooms and managing their player sub-documents."""

from __future__ import annotations

import logging
import random
from typing import Any, Callable

from trivia_sync.constants.quiz_constants import ROOM_ID_DIGITS, ROOM_ID_MAX_ATTEMPTS
from trivia_sync.core.errors import (
    NotFoundError,
    RoomAllocationError,
    StateConflictError,
    ValidationError,
)
from trivia_sync.core.models import Player, Room, RoomSettings, RoomStatus
from trivia_sync.core.retry import retry_transient
from trivia_sync.core.store import ABORT, SERVER_TIMESTAMP, Store, Subscription

logger = logging.getLogger(__name__)


def room_path(room_id: str) -> str:
    return f"rooms/{room_id}"


def players_path(room_id: str) -> str:
    return f"rooms/{room_id}/players"


def player_path(room_id: str, player_id: str) -> str:
    return f"rooms/{room_id}/players/{player_id}"


def players_from_document(data: Any) -> list[Player]:
    """Decode a players mapping into a list in join order (joinedAt, then id)."""
    if not isinstance(data, dict):
        return []
    players = [Player.from_document(pid, doc) for pid, doc in data.items() if isinstance(doc, dict)]
    return sorted(players, key=lambda p: (p.joined_at or 0, p.player_id))


class RoomRegistry:
    """Reads and writes Room documents and their players."""

    def __init__(self, store: Store, rng: random.Random | None = None) -> None:
        self._store = store
        self._rng = rng or random.Random()

    def generate_room_id(self) -> str:
        low = 10 ** (ROOM_ID_DIGITS - 1)
        return str(self._rng.randrange(low, low * 10))

    async def create(self, host_id: str, settings: RoomSettings) -> Room:
        """Write a new lobby room under a fresh id, retrying on id collisions."""
        for attempt in range(1, ROOM_ID_MAX_ATTEMPTS + 1):
            room_id = self.generate_room_id()
            document = Room(
                room_id=room_id,
                status=RoomStatus.LOBBY,
                host_id=host_id,
                settings=settings,
            ).to_document()
            document["createdAt"] = SERVER_TIMESTAMP

            def claim(current: Any, document: dict[str, Any] = document) -> Any:
                return ABORT if current is not None else document

            result = await retry_transient(
                lambda: self._store.transaction(room_path(room_id), claim),
                description=f"create room {room_id}",
            )
            if result.committed:
                logger.info("Room %s created by host %s", room_id, host_id)
                return Room.from_document(room_id, result.value)
            logger.warning(
                "Room id %s already in use (attempt %d/%d)", room_id, attempt, ROOM_ID_MAX_ATTEMPTS
            )
        raise RoomAllocationError(f"No free room id after {ROOM_ID_MAX_ATTEMPTS} attempts.")

    async def load(self, room_id: str) -> Room:
        room_id = _require_room_id(room_id)
        data = await retry_transient(
            lambda: self._store.get(room_path(room_id)),
            description=f"load room {room_id}",
        )
        if not isinstance(data, dict):
            raise NotFoundError(f"Room {room_id} not found.")
        return Room.from_document(room_id, data)

    async def exists(self, room_id: str) -> bool:
        try:
            await self.load(room_id)
        except (NotFoundError, ValidationError):
            return False
        return True

    async def add_player(self, room_id: str, player_id: str, name: str, unit: str) -> Player:
        """Register a player, or refresh name/unit if the id already joined."""
        name = name.strip()
        unit = unit.strip()
        if not name:
            raise ValidationError("Player name is required.")
        if not player_id:
            raise ValidationError("Player id is required.")
        await self.load(room_id)

        def upsert(current: Any) -> Any:
            if isinstance(current, dict):
                if current.get("name") == name and current.get("unit") == unit:
                    return ABORT
                return {**current, "name": name, "unit": unit}
            return {
                "name": name,
                "unit": unit,
                "joinedAt": SERVER_TIMESTAMP,
                "score": 0,
                "totalResponseTimeMs": 0,
                "answers": {},
            }

        result = await retry_transient(
            lambda: self._store.transaction(player_path(room_id, player_id), upsert),
            description=f"add player {player_id} to room {room_id}",
        )
        if result.committed:
            logger.info("Player %s (%s) registered in room %s", player_id, name, room_id)
        else:
            logger.debug("Player %s already registered in room %s", player_id, room_id)
        return Player.from_document(player_id, result.value)

    async def remove_player(self, room_id: str, player_id: str) -> None:
        await retry_transient(
            lambda: self._store.delete(player_path(room_id, player_id)),
            description=f"remove player {player_id} from room {room_id}",
        )
        logger.info("Player %s left room %s", player_id, room_id)

    async def load_player(self, room_id: str, player_id: str) -> Player:
        data = await retry_transient(
            lambda: self._store.get(player_path(room_id, player_id)),
            description=f"load player {player_id}",
        )
        if not isinstance(data, dict):
            raise NotFoundError(f"Player {player_id} not found in room {room_id}.")
        return Player.from_document(player_id, data)

    async def load_players(self, room_id: str) -> list[Player]:
        data = await retry_transient(
            lambda: self._store.get(players_path(room_id)),
            description=f"load players of room {room_id}",
        )
        return players_from_document(data)

    async def start_match(self, room_id: str, question_ids: list[str], settings: RoomSettings) -> Room:
        """Move a lobby room to in_progress with a fixed question sequence."""
        if not question_ids:
            raise ValidationError("A match needs at least one question.")

        def begin(current: Any) -> Any:
            if not isinstance(current, dict) or current.get("status") != RoomStatus.LOBBY.value:
                return ABORT
            return {
                **current,
                "status": RoomStatus.IN_PROGRESS.value,
                "questionIndex": 0,
                "questionIds": list(question_ids),
                "settings": settings.to_document(),
            }

        result = await retry_transient(
            lambda: self._store.transaction(room_path(room_id), begin),
            description=f"start match in room {room_id}",
        )
        if not result.committed:
            _raise_for_aborted(room_id, result.value, "start")
        logger.info("Room %s started with %d questions", room_id, len(question_ids))
        return Room.from_document(room_id, result.value)

    async def publish_question_index(self, room_id: str, index: int) -> bool:
        """Advance ``questionIndex``; stale or out-of-range values are ignored."""

        def advance(current: Any) -> Any:
            if not isinstance(current, dict):
                return ABORT
            if current.get("status") != RoomStatus.IN_PROGRESS.value:
                return ABORT
            bound = len(current.get("questionIds") or [])
            if not current.get("questionIndex", 0) <= index <= bound:
                return ABORT
            if current.get("questionIndex", 0) == index:
                return ABORT
            return {**current, "questionIndex": index}

        result = await retry_transient(
            lambda: self._store.transaction(room_path(room_id), advance),
            description=f"publish question index {index} in room {room_id}",
        )
        if result.committed:
            logger.debug("Room %s now at question %d", room_id, index)
        return result.committed

    async def finish_match(self, room_id: str) -> Room:
        def finish(current: Any) -> Any:
            if not isinstance(current, dict) or current.get("status") != RoomStatus.IN_PROGRESS.value:
                return ABORT
            return {
                **current,
                "status": RoomStatus.FINISHED.value,
                "questionIndex": len(current.get("questionIds") or []),
            }

        result = await retry_transient(
            lambda: self._store.transaction(room_path(room_id), finish),
            description=f"finish match in room {room_id}",
        )
        if not result.committed:
            _raise_for_aborted(room_id, result.value, "finish")
        logger.info("Room %s finished", room_id)
        return Room.from_document(room_id, result.value)

    async def watch_status(self, room_id: str, on_status: Callable[[RoomStatus | None], None]) -> Subscription:
        def relay(value: Any) -> None:
            on_status(RoomStatus(value) if value else None)

        return await retry_transient(
            lambda: self._store.subscribe(f"{room_path(room_id)}/status", relay),
            description=f"watch status of room {room_id}",
        )

    async def watch_players(self, room_id: str, on_players: Callable[[list[Player]], None]) -> Subscription:
        return await retry_transient(
            lambda: self._store.subscribe(players_path(room_id), lambda value: on_players(players_from_document(value))),
            description=f"watch players of room {room_id}",
        )


def _require_room_id(room_id: str) -> str:
    cleaned = (room_id or "").strip()
    if not cleaned:
        raise ValidationError("Room code is required.")
    return cleaned


def _raise_for_aborted(room_id: str, current: Any, action: str) -> None:
    if not isinstance(current, dict):
        raise NotFoundError(f"Room {room_id} not found.")
    raise StateConflictError(f"Cannot {action} room {room_id} while it is {current.get('status')}.")

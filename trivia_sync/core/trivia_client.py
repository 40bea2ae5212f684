"""Per-client facade tying the room, answer and session services together."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
import logging
from typing import Any, Callable, Coroutine

from trivia_sync.constants.quiz_constants import (
    DEFAULT_QUESTION_COUNT,
    DEFAULT_TIME_PER_QUESTION_MS,
    HOST_DISPLAY_NAME,
)
from trivia_sync.core.errors import NotFoundError, TransientIOError, ValidationError
from trivia_sync.core.models import Player, Room, RoomSettings, RoomStatus
from trivia_sync.core.results_exporter import build_results_csv
from trivia_sync.core.services.answer_ledger import AnswerLedger
from trivia_sync.core.services.ranker import StandingRow, build_standings
from trivia_sync.core.services.reconnector import Reconnector
from trivia_sync.core.services.room_registry import RoomRegistry
from trivia_sync.core.services.session_controller import SessionController
from trivia_sync.core.services.session_machine import Command, SessionState, SurfaceError, command_to_dict
from trivia_sync.core.session_context import SessionContext
from trivia_sync.core.store import Subscription

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class LoggedCommand:
    sequence: int
    command: Command

    def to_dict(self) -> dict[str, Any]:
        return {"sequence": self.sequence, **command_to_dict(self.command)}


class CommandLog:
    """Append-only record of presentation commands, read by cursor."""

    def __init__(self, capacity: int = 1000) -> None:
        self._entries: list[LoggedCommand] = []
        self._capacity = capacity
        self._next_sequence = 1

    def append(self, command: Command) -> LoggedCommand:
        entry = LoggedCommand(self._next_sequence, command)
        self._next_sequence += 1
        self._entries.append(entry)
        if len(self._entries) > self._capacity:
            del self._entries[: len(self._entries) - self._capacity]
        return entry

    def since(self, sequence: int) -> list[LoggedCommand]:
        return [entry for entry in self._entries if entry.sequence > sequence]

    @property
    def last_sequence(self) -> int:
        return self._next_sequence - 1


class TriviaClient:
    """Facade for one client process: create, join, resume, play and export."""

    def __init__(
        self,
        context: SessionContext,
        presenter: Callable[[Command], None] | None = None,
    ) -> None:
        self._context = context
        self._presenter = presenter
        self._registry = RoomRegistry(context.store, context.rng)
        self._ledger = AnswerLedger(context.store)
        self._reconnector = Reconnector(self._registry, context.session_storage)
        self._controller: SessionController | None = None
        self._room: Room | None = None
        self._last_status: RoomStatus | None = None
        self._players: list[Player] = []
        self._subscriptions: list[Subscription] = []
        self._tasks: set[asyncio.Task[None]] = set()
        self._events = CommandLog()

    # --- State ---

    @property
    def context(self) -> SessionContext:
        return self._context

    @property
    def player_id(self) -> str:
        return self._context.player_id

    @property
    def room(self) -> Room | None:
        return self._room

    @property
    def room_status(self) -> RoomStatus | None:
        return self._last_status

    @property
    def is_host(self) -> bool:
        return self._context.is_host

    @property
    def controller(self) -> SessionController | None:
        return self._controller

    @property
    def events(self) -> CommandLog:
        return self._events

    @property
    def players(self) -> list[Player]:
        return list(self._players)

    def standings(self, limit: int | None = None) -> list[StandingRow]:
        return build_standings(self._players, limit)

    # --- Room lifecycle ---

    async def create_room(
        self,
        question_count: int = DEFAULT_QUESTION_COUNT,
        time_per_question_ms: int = DEFAULT_TIME_PER_QUESTION_MS,
        host_plays: bool = True,
    ) -> Room:
        """Create a room hosted by this client.

        The host joins its own room as a player unless ``host_plays`` is False,
        in which case it only runs the match and sees the standings.
        """
        if question_count < 1:
            raise ValidationError("Question count must be at least 1.")
        if time_per_question_ms < 1:
            raise ValidationError("Time per question must be positive.")
        await self._detach()
        settings = RoomSettings(question_count=question_count, time_per_question_ms=time_per_question_ms)
        room = await self._registry.create(self.player_id, settings)
        if host_plays:
            await self._registry.add_player(room.room_id, self.player_id, HOST_DISPLAY_NAME, "")
        await self._attach(room, remember=host_plays, is_player=host_plays)
        return room

    async def join_room(self, room_code: str, name: str, unit: str) -> Room:
        room_code, name, unit = (room_code or "").strip(), (name or "").strip(), (unit or "").strip()
        if not room_code or not name or not unit:
            raise ValidationError("Room code, name and unit are required to join.")
        room = await self._registry.load(room_code)
        await self._detach()
        await self._registry.add_player(room.room_id, self.player_id, name, unit)
        await self._attach(room)
        return room

    async def room_exists(self, room_code: str) -> bool:
        return await self._registry.exists(room_code)

    async def resume(self) -> Room | None:
        """Re-attach to the saved room, if any, without registering again."""
        room = await self._reconnector.reconnect(self.player_id)
        if room is None:
            return None
        await self._detach()
        await self._attach(room, remember=False)
        return room

    async def leave(self) -> None:
        room = self._require_room()
        await self._registry.remove_player(room.room_id, self.player_id)
        self._reconnector.forget()
        await self._detach()

    async def close(self) -> None:
        await self._detach()

    # --- Match ---

    async def start_match(self, question_count: int | None = None) -> bool:
        room = self._require_room()
        if not self.is_host:
            logger.warning("Player %s is not the host of room %s", self.player_id, room.room_id)
            return False
        controller = self._ensure_controller()
        return await controller.start(
            question_count or room.settings.question_count,
            room.settings.time_per_question_ms,
        )

    def select_option(self, choice: str) -> bool:
        if self._controller is None:
            return False
        return self._controller.select_option(choice)

    async def wait_finished(self) -> list[StandingRow]:
        controller = self._ensure_controller()
        return await controller.wait_finished()

    async def results_csv(self, exported_at: datetime | None = None) -> str:
        room = self._require_room()
        players = await self._registry.load_players(room.room_id)
        return build_results_csv(room.room_id, players, exported_at or datetime.now(timezone.utc))

    # --- Subscriptions ---

    async def _attach(self, room: Room, remember: bool = True, is_player: bool = True) -> None:
        self._room = room
        self._last_status = None
        self._context.enter_room(room.room_id, is_host=room.host_id == self.player_id, is_player=is_player)
        if remember:
            self._reconnector.remember(room.room_id, self.player_id)
        self._subscriptions.append(await self._registry.watch_players(room.room_id, self._on_players))
        self._subscriptions.append(await self._registry.watch_status(room.room_id, self._on_status))
        logger.info("Attached to room %s (host=%s)", room.room_id, self.is_host)

    async def _detach(self) -> None:
        for subscription in self._subscriptions:
            subscription.unsubscribe()
        self._subscriptions.clear()
        if self._controller is not None:
            await self._controller.aclose()
            self._controller = None
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
        self._room = None
        self._players = []
        self._context.leave_room()

    def _on_players(self, players: list[Player]) -> None:
        self._players = players

    def _on_status(self, status: RoomStatus | None) -> None:
        if status is None:
            return
        if self._last_status is not None and not (
            status is self._last_status or self._last_status.can_advance_to(status)
        ):
            logger.warning("Ignoring stale status %s after %s", status.value, self._last_status.value)
            return
        self._last_status = status
        controller = self._ensure_controller()
        if status is RoomStatus.IN_PROGRESS and controller.state is SessionState.IDLE:
            self._spawn(self._follow(controller))
        elif status is RoomStatus.FINISHED:
            controller.close_match()

    async def _follow(self, controller: SessionController) -> None:
        try:
            room = await self._registry.load(self._require_room().room_id)
        except (NotFoundError, TransientIOError) as exc:
            logger.error("Could not load the started match: %s", exc)
            self._present(SurfaceError(f"Could not load the match: {exc}"))
            return
        self._room = room
        await controller.follow(room)

    def _ensure_controller(self) -> SessionController:
        if self._controller is None:
            self._controller = SessionController(self._context, self._registry, self._ledger, self._present)
        return self._controller

    def _present(self, command: Command) -> None:
        self._events.append(command)
        if self._presenter is not None:
            self._presenter(command)

    def _spawn(self, coroutine: Coroutine[object, object, None]) -> None:
        task = asyncio.get_running_loop().create_task(coroutine)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _require_room(self) -> Room:
        if self._room is None:
            raise NotFoundError("Not currently in a room.")
        return self._room

"""Per-client context shared by the registry, controller and reconnector."""

from __future__ import annotations

from dataclasses import dataclass, field
import random
import time
from typing import Callable

from trivia_sync.constants.quiz_constants import (
    COUNTDOWN_TICK_MS,
    EXPLANATION_HOLD_MS,
    TIMER_WARNING_WINDOW_SECONDS,
)
from trivia_sync.core.identity import MemorySessionStorage, SessionStorage
from trivia_sync.core.question_bank import QuestionBank, QuestionSource
from trivia_sync.core.store import Store


def monotonic_ms() -> float:
    return time.monotonic() * 1000


@dataclass(slots=True, frozen=True)
class MatchTimings:
    """Local clock settings; the per-question window comes from the room."""

    explanation_hold_ms: int = EXPLANATION_HOLD_MS
    tick_ms: int = COUNTDOWN_TICK_MS
    warning_window_seconds: int = TIMER_WARNING_WINDOW_SECONDS


@dataclass(slots=True)
class SessionContext:
    """Everything one client run needs, constructed once and passed around."""

    store: Store
    player_id: str
    question_source: QuestionSource = field(default_factory=QuestionBank)
    session_storage: SessionStorage = field(default_factory=MemorySessionStorage)
    rng: random.Random = field(default_factory=random.Random)
    clock_ms: Callable[[], float] = monotonic_ms
    timings: MatchTimings = field(default_factory=MatchTimings)
    room_id: str | None = None
    is_host: bool = False
    is_player: bool = True

    def enter_room(self, room_id: str, is_host: bool, is_player: bool = True) -> None:
        self.room_id = room_id
        self.is_host = is_host
        self.is_player = is_player

    def leave_room(self) -> None:
        self.room_id = None
        self.is_host = False
        self.is_player = True

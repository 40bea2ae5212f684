import random
from typing import Any

import pytest

from trivia_sync.core.errors import TransientIOError
from trivia_sync.core.identity import MemorySessionStorage
from trivia_sync.core.models import Question
from trivia_sync.core.session_context import MatchTimings, SessionContext
from trivia_sync.core.store import InMemoryStore


class FlakyStore(InMemoryStore):
    """In-memory store whose next ``failures`` operations raise TransientIOError."""

    def __init__(self, failures: int = 0):
        super().__init__()
        self.failures = failures
        self.calls = 0

    def _maybe_fail(self) -> None:
        self.calls += 1
        if self.failures > 0:
            self.failures -= 1
            raise TransientIOError("simulated network failure")

    async def get(self, path: str) -> Any:
        self._maybe_fail()
        return await super().get(path)

    async def transaction(self, path, update_fn):
        self._maybe_fail()
        return await super().transaction(path, update_fn)


def make_question(index: int, correct: str = "A") -> Question:
    return Question(
        id=f"q{index}",
        prompt=f"Question {index}?",
        options={"A": "Alpha", "B": "Bravo", "C": "Charlie", "D": "Delta"},
        correct_option=correct,
        explanation=f"Explanation {index}.",
    )


def make_bank(size: int = 10) -> list[Question]:
    return [make_question(i, correct="ABCD"[i % 4]) for i in range(1, size + 1)]


FAST_TIMINGS = MatchTimings(explanation_hold_ms=20, tick_ms=5, warning_window_seconds=5)


@pytest.fixture()
def store():
    return InMemoryStore(clock_ms=lambda: 1_700_000_000_000)


@pytest.fixture()
def rng():
    return random.Random(1234)


@pytest.fixture()
def bank():
    return make_bank()


@pytest.fixture()
def make_context(store, bank):
    """Factory for per-client contexts sharing one store."""

    def factory(player_id: str, seed: int = 7, timings: MatchTimings = FAST_TIMINGS, **overrides) -> SessionContext:
        options = {
            "store": store,
            "player_id": player_id,
            "question_source": lambda: list(bank),
            "session_storage": MemorySessionStorage(),
            "rng": random.Random(seed),
            "timings": timings,
        }
        options.update(overrides)
        return SessionContext(**options)

    return factory

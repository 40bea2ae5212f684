"""Service recording answers and keeping player scores consistent."""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Any

from trivia_sync.constants.quiz_constants import OPTION_LETTERS, POINTS_PER_CORRECT_ANSWER
from trivia_sync.core.errors import NotFoundError, ValidationError
from trivia_sync.core.models import AnswerRecord
from trivia_sync.core.retry import retry_transient
from trivia_sync.core.services.room_registry import player_path
from trivia_sync.core.store import ABORT, Store

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class LedgerEntry:
    """Outcome of ``register_answer``; ``recorded`` is False for duplicates."""

    record: AnswerRecord
    recorded: bool


class AnswerLedger:
    """Applies one answer to a player record in a single store transaction.

    Only correct answers add points and response time, so ``score`` always
    equals ten times the number of correct answers and
    ``totalResponseTimeMs`` sums the times of correct answers only.
    """

    def __init__(self, store: Store) -> None:
        self._store = store

    async def register_answer(
        self,
        room_id: str,
        player_id: str,
        question_id: str,
        choice: str | None,
        correct_option: str,
        elapsed_ms: float,
    ) -> LedgerEntry:
        if choice is not None and choice not in OPTION_LETTERS:
            raise ValidationError(f"Unknown option '{choice}'.")
        if elapsed_ms < 0:
            raise ValidationError("Elapsed time cannot be negative.")
        time_ms = int(round(elapsed_ms))
        record = AnswerRecord(choice=choice, correct=choice == correct_option, time_ms=time_ms)

        def apply(current: Any) -> Any:
            if not isinstance(current, dict):
                return ABORT
            answers = dict(current.get("answers") or {})
            if question_id in answers:
                return ABORT
            answers[question_id] = record.to_document()
            score = int(current.get("score", 0))
            total_time = int(current.get("totalResponseTimeMs", 0))
            if record.correct:
                score += POINTS_PER_CORRECT_ANSWER
                total_time += time_ms
            return {**current, "score": score, "totalResponseTimeMs": total_time, "answers": answers}

        result = await retry_transient(
            lambda: self._store.transaction(player_path(room_id, player_id), apply),
            description=f"register answer of {player_id} to {question_id}",
        )
        if result.committed:
            logger.info(
                "Player %s answered %s with %s (%s, %d ms)",
                player_id,
                question_id,
                choice or "nothing",
                "correct" if record.correct else "incorrect",
                time_ms,
            )
            return LedgerEntry(record=record, recorded=True)

        if not isinstance(result.value, dict):
            raise NotFoundError(f"Player {player_id} not found in room {room_id}.")
        existing = AnswerRecord.from_document(result.value["answers"][question_id])
        logger.info("Ignoring repeated answer from %s to %s", player_id, question_id)
        return LedgerEntry(record=existing, recorded=False)


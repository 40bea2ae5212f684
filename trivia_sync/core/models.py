"""Domain models for trivia matches.

The store holds plain JSON-like documents with camelCase keys; the
dataclasses below are the in-process view of those documents.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from trivia_sync.constants.quiz_constants import (
    DEFAULT_QUESTION_COUNT,
    DEFAULT_TIME_PER_QUESTION_MS,
    OPTION_LETTERS,
)


class RoomStatus(str, Enum):
    """Match lifecycle. Values only ever move forward."""

    LOBBY = "lobby"
    IN_PROGRESS = "in_progress"
    FINISHED = "finished"

    @property
    def rank(self) -> int:
        return _STATUS_ORDER.index(self)

    def can_advance_to(self, target: RoomStatus) -> bool:
        return target.rank > self.rank


_STATUS_ORDER = [RoomStatus.LOBBY, RoomStatus.IN_PROGRESS, RoomStatus.FINISHED]


@dataclass(slots=True, frozen=True)
class RoomSettings:
    """Match settings chosen by the host."""

    question_count: int = DEFAULT_QUESTION_COUNT
    time_per_question_ms: int = DEFAULT_TIME_PER_QUESTION_MS

    def to_document(self) -> dict[str, Any]:
        return {
            "questionCount": self.question_count,
            "timePerQuestionMs": self.time_per_question_ms,
        }

    @classmethod
    def from_document(cls, data: dict[str, Any] | None) -> RoomSettings:
        data = data or {}
        return cls(
            question_count=int(data.get("questionCount", DEFAULT_QUESTION_COUNT)),
            time_per_question_ms=int(data.get("timePerQuestionMs", DEFAULT_TIME_PER_QUESTION_MS)),
        )


@dataclass(slots=True)
class Room:
    """Shared match-level document."""

    room_id: str
    status: RoomStatus
    host_id: str
    settings: RoomSettings
    question_index: int = 0
    question_ids: list[str] = field(default_factory=list)
    created_at: int | None = None  # epoch milliseconds resolved by the store

    def to_document(self) -> dict[str, Any]:
        return {
            "roomId": self.room_id,
            "status": self.status.value,
            "hostId": self.host_id,
            "settings": self.settings.to_document(),
            "questionIndex": self.question_index,
            "questionIds": list(self.question_ids),
            "createdAt": self.created_at,
        }

    @classmethod
    def from_document(cls, room_id: str, data: dict[str, Any]) -> Room:
        return cls(
            room_id=str(data.get("roomId") or room_id),
            status=RoomStatus(data.get("status", RoomStatus.LOBBY.value)),
            host_id=str(data.get("hostId", "")),
            settings=RoomSettings.from_document(data.get("settings")),
            question_index=int(data.get("questionIndex", 0)),
            question_ids=[str(qid) for qid in data.get("questionIds") or []],
            created_at=data.get("createdAt"),
        )


@dataclass(slots=True, frozen=True)
class AnswerRecord:
    """One player's response to one question."""

    choice: str | None
    correct: bool
    time_ms: int

    def to_document(self) -> dict[str, Any]:
        return {"choice": self.choice, "correct": self.correct, "timeMs": self.time_ms}

    @classmethod
    def from_document(cls, data: dict[str, Any]) -> AnswerRecord:
        # Older clients stored an unanswered question as an empty string.
        choice = data.get("choice") or None
        return cls(
            choice=choice,
            correct=bool(data.get("correct", False)),
            time_ms=int(data.get("timeMs", 0)),
        )


@dataclass(slots=True)
class Player:
    """Per-participant document stored under its room."""

    player_id: str
    name: str
    unit: str
    joined_at: int | None = None
    score: int = 0
    total_response_time_ms: int = 0
    answers: dict[str, AnswerRecord] = field(default_factory=dict)

    @property
    def answered_count(self) -> int:
        return len(self.answers)

    @property
    def correct_count(self) -> int:
        return sum(1 for answer in self.answers.values() if answer.correct)

    def to_document(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "unit": self.unit,
            "joinedAt": self.joined_at,
            "score": self.score,
            "totalResponseTimeMs": self.total_response_time_ms,
            "answers": {qid: answer.to_document() for qid, answer in self.answers.items()},
        }

    @classmethod
    def from_document(cls, player_id: str, data: dict[str, Any]) -> Player:
        answers = data.get("answers") or {}
        return cls(
            player_id=player_id,
            name=str(data.get("name", "")),
            unit=str(data.get("unit", "")),
            joined_at=data.get("joinedAt"),
            score=int(data.get("score", 0)),
            total_response_time_ms=int(data.get("totalResponseTimeMs", 0)),
            answers={str(qid): AnswerRecord.from_document(a) for qid, a in answers.items()},
        )


@dataclass(slots=True, frozen=True)
class Question:
    """Multiple-choice question with options A to D."""

    id: str
    prompt: str
    options: dict[str, str]
    correct_option: str
    explanation: str = ""

    def __post_init__(self) -> None:
        if set(self.options) != set(OPTION_LETTERS):
            raise ValueError("A question must define exactly the options A, B, C and D.")
        if self.correct_option not in OPTION_LETTERS:
            raise ValueError("Correct option must be one of A, B, C or D.")

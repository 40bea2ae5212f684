"""Pure per-client match state machine.

The machine performs no I/O and reads no clock: callers feed it events
carrying timestamps and act on the commands it returns. The controller
executes store-facing commands; everything else is forwarded to the
presentation layer as data.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from enum import Enum
import logging
import math
from typing import Any, Sequence, Union

from trivia_sync.core.models import Question
from trivia_sync.core.session_context import MatchTimings

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    QUESTION_ACTIVE = "question_active"
    LOCKED = "locked"
    EXPLAINING = "explaining"
    FINISHED = "finished"


# --- Events ---


@dataclass(slots=True, frozen=True)
class LoadRequested:
    pass


@dataclass(slots=True, frozen=True)
class LoadFailed:
    reason: str


@dataclass(slots=True, frozen=True)
class QuestionsReady:
    questions: tuple[Question, ...]
    time_per_question_ms: int
    now_ms: float
    start_index: int = 0


@dataclass(slots=True, frozen=True)
class Tick:
    now_ms: float


@dataclass(slots=True, frozen=True)
class OptionSelected:
    choice: str
    now_ms: float


@dataclass(slots=True, frozen=True)
class AnswerSettled:
    now_ms: float
    error: str | None = None


@dataclass(slots=True, frozen=True)
class ExplanationElapsed:
    now_ms: float


@dataclass(slots=True, frozen=True)
class MatchClosed:
    """The room was marked finished by the host."""


Event = Union[
    LoadRequested,
    LoadFailed,
    QuestionsReady,
    Tick,
    OptionSelected,
    AnswerSettled,
    ExplanationElapsed,
    MatchClosed,
]


# --- Commands ---


@dataclass(slots=True, frozen=True)
class ShowQuestion:
    index: int
    total: int
    question: Question


@dataclass(slots=True, frozen=True)
class StartCountdown:
    duration_ms: int


@dataclass(slots=True, frozen=True)
class UpdateTimer:
    remaining_ms: int


@dataclass(slots=True, frozen=True)
class PlayTimerWarning:
    seconds_left: int


@dataclass(slots=True, frozen=True)
class StopCountdown:
    pass


@dataclass(slots=True, frozen=True)
class RegisterAnswer:
    question_id: str
    choice: str | None
    correct_option: str
    elapsed_ms: int


@dataclass(slots=True, frozen=True)
class RevealAnswer:
    question_id: str
    choice: str | None
    correct_option: str
    correct: bool


@dataclass(slots=True, frozen=True)
class ShowExplanation:
    question_id: str
    explanation: str


@dataclass(slots=True, frozen=True)
class ScheduleAdvance:
    delay_ms: int


@dataclass(slots=True, frozen=True)
class PublishQuestionIndex:
    index: int


@dataclass(slots=True, frozen=True)
class FinishMatch:
    pass


@dataclass(slots=True, frozen=True)
class ShowFinalRanking:
    standings: tuple[Any, ...]


@dataclass(slots=True, frozen=True)
class SurfaceError:
    message: str


Command = Union[
    ShowQuestion,
    StartCountdown,
    UpdateTimer,
    PlayTimerWarning,
    StopCountdown,
    RegisterAnswer,
    RevealAnswer,
    ShowExplanation,
    ScheduleAdvance,
    PublishQuestionIndex,
    FinishMatch,
    ShowFinalRanking,
    SurfaceError,
]


def command_to_dict(command: Command) -> dict[str, Any]:
    return {"type": type(command).__name__, **asdict(command)}


class SessionStateMachine:
    """Idle -> Loading -> QuestionActive -> Locked -> Explaining -> ... -> Finished."""

    def __init__(self, timings: MatchTimings | None = None) -> None:
        self._timings = timings or MatchTimings()
        self._state = SessionState.IDLE
        self._questions: tuple[Question, ...] = ()
        self._index = 0
        self._time_per_question_ms = 0
        self._question_started_at = 0.0
        self._last_warning_second: int | None = None

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def current_index(self) -> int:
        return self._index

    @property
    def questions(self) -> tuple[Question, ...]:
        return self._questions

    @property
    def time_per_question_ms(self) -> int:
        return self._time_per_question_ms

    def current_question(self) -> Question | None:
        if not self._questions or self._state in (SessionState.IDLE, SessionState.LOADING):
            return None
        return self._questions[min(self._index, len(self._questions) - 1)]

    def remaining_ms(self, now_ms: float) -> int:
        if self._state is not SessionState.QUESTION_ACTIVE:
            return 0
        elapsed = now_ms - self._question_started_at
        return int(math.ceil(max(0.0, self._time_per_question_ms - elapsed)))

    def handle(self, event: Event) -> list[Command]:
        if isinstance(event, LoadRequested):
            return self._on_load_requested()
        if isinstance(event, LoadFailed):
            return self._on_load_failed(event)
        if isinstance(event, QuestionsReady):
            return self._on_questions_ready(event)
        if isinstance(event, Tick):
            return self._on_tick(event)
        if isinstance(event, OptionSelected):
            return self._on_option_selected(event)
        if isinstance(event, AnswerSettled):
            return self._on_answer_settled(event)
        if isinstance(event, ExplanationElapsed):
            return self._on_explanation_elapsed(event)
        if isinstance(event, MatchClosed):
            return self._on_match_closed()
        raise TypeError(f"Unsupported event {event!r}")

    def _on_load_requested(self) -> list[Command]:
        if self._state is not SessionState.IDLE:
            logger.debug("Ignoring load request in state %s", self._state.value)
            return []
        self._state = SessionState.LOADING
        return []

    def _on_load_failed(self, event: LoadFailed) -> list[Command]:
        if self._state is not SessionState.LOADING:
            return []
        self._state = SessionState.IDLE
        return [SurfaceError(event.reason)]

    def _on_questions_ready(self, event: QuestionsReady) -> list[Command]:
        if self._state is not SessionState.LOADING:
            logger.debug("Ignoring question list in state %s", self._state.value)
            return []
        if not event.questions:
            self._state = SessionState.IDLE
            return [SurfaceError("The match has no questions.")]
        self._questions = tuple(event.questions)
        self._time_per_question_ms = event.time_per_question_ms
        self._index = min(max(0, event.start_index), len(self._questions) - 1)
        return self._begin_question(event.now_ms)

    def _on_tick(self, event: Tick) -> list[Command]:
        if self._state is not SessionState.QUESTION_ACTIVE:
            return []
        remaining = self.remaining_ms(event.now_ms)
        commands: list[Command] = [UpdateTimer(remaining)]
        seconds_left = math.ceil(remaining / 1000)
        if 0 < seconds_left <= self._timings.warning_window_seconds and seconds_left != self._last_warning_second:
            self._last_warning_second = seconds_left
            commands.append(PlayTimerWarning(seconds_left))
        if remaining <= 0:
            commands.extend(self._lock(None, self._time_per_question_ms))
        return commands

    def _on_option_selected(self, event: OptionSelected) -> list[Command]:
        if self._state is not SessionState.QUESTION_ACTIVE:
            logger.debug("Ignoring selection %s in state %s", event.choice, self._state.value)
            return []
        if self.remaining_ms(event.now_ms) <= 0:
            return self._lock(None, self._time_per_question_ms)
        elapsed = max(0.0, event.now_ms - self._question_started_at)
        return self._lock(event.choice, int(round(elapsed)))

    def _on_answer_settled(self, event: AnswerSettled) -> list[Command]:
        if self._state is not SessionState.LOCKED:
            return []
        question = self._questions[self._index]
        self._state = SessionState.EXPLAINING
        commands: list[Command] = []
        if event.error:
            commands.append(SurfaceError(event.error))
        commands.append(ShowExplanation(question.id, question.explanation))
        commands.append(ScheduleAdvance(self._timings.explanation_hold_ms))
        return commands

    def _on_explanation_elapsed(self, event: ExplanationElapsed) -> list[Command]:
        if self._state is not SessionState.EXPLAINING:
            return []
        if self._index + 1 < len(self._questions):
            self._index += 1
            return self._begin_question(event.now_ms)
        self._state = SessionState.FINISHED
        return [FinishMatch()]

    def _on_match_closed(self) -> list[Command]:
        if self._state is SessionState.FINISHED:
            return []
        commands: list[Command] = []
        if self._state is SessionState.QUESTION_ACTIVE:
            commands.append(StopCountdown())
        self._state = SessionState.FINISHED
        commands.append(FinishMatch())
        return commands

    def _begin_question(self, now_ms: float) -> list[Command]:
        self._state = SessionState.QUESTION_ACTIVE
        self._question_started_at = now_ms
        self._last_warning_second = None
        question = self._questions[self._index]
        return [
            ShowQuestion(self._index, len(self._questions), question),
            PublishQuestionIndex(self._index),
            StartCountdown(self._time_per_question_ms),
            UpdateTimer(self._time_per_question_ms),
        ]

    def _lock(self, choice: str | None, elapsed_ms: int) -> list[Command]:
        question = self._questions[self._index]
        self._state = SessionState.LOCKED
        return [
            StopCountdown(),
            RegisterAnswer(question.id, choice, question.correct_option, elapsed_ms),
            RevealAnswer(question.id, choice, question.correct_option, choice == question.correct_option),
        ]


def questions_in_order(bank: Sequence[Question], question_ids: Sequence[str]) -> tuple[Question, ...]:
    """Resolve a room's question ids against a locally loaded bank."""
    by_id = {question.id: question for question in bank}
    missing = [qid for qid in question_ids if qid not in by_id]
    if missing:
        raise KeyError(f"Question bank is missing ids: {', '.join(missing)}")
    return tuple(by_id[qid] for qid in question_ids)

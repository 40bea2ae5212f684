"""Asyncio driver for the per-client match state machine.

Each client runs one controller against its own copy of the question
sequence. The countdown runs on a fixed-interval ticker task; store writes
run in separate tasks so a slow or retried write never delays a tick.
"""

from __future__ import annotations

import asyncio
import logging
import random
from typing import Callable, Coroutine, Sequence

from trivia_sync.constants.quiz_constants import OPTION_LETTERS
from trivia_sync.core.errors import (
    NotFoundError,
    StateConflictError,
    TransientIOError,
    ValidationError,
)
from trivia_sync.core.models import Question, Room, RoomSettings, RoomStatus
from trivia_sync.core.question_bank import QuestionBankError
from trivia_sync.core.services.answer_ledger import AnswerLedger
from trivia_sync.core.services.ranker import StandingRow, build_standings
from trivia_sync.core.services.room_registry import RoomRegistry
from trivia_sync.core.services.session_machine import (
    AnswerSettled,
    Command,
    Event,
    ExplanationElapsed,
    FinishMatch,
    LoadFailed,
    LoadRequested,
    MatchClosed,
    OptionSelected,
    PublishQuestionIndex,
    QuestionsReady,
    RegisterAnswer,
    ScheduleAdvance,
    SessionState,
    SessionStateMachine,
    ShowFinalRanking,
    StartCountdown,
    StopCountdown,
    SurfaceError,
    Tick,
    questions_in_order,
)
from trivia_sync.core.session_context import SessionContext

logger = logging.getLogger(__name__)

Presenter = Callable[[Command], None]


def draw_questions(bank: Sequence[Question], question_count: int, rng: random.Random) -> list[Question]:
    """Shuffle a copy of the bank (Fisher-Yates via ``rng.shuffle``) and keep the first ``question_count``."""
    if question_count < 1:
        raise ValidationError("Question count must be at least 1.")
    pool = list(bank)
    rng.shuffle(pool)
    return pool[: min(question_count, len(pool))]


class SessionController:
    """Runs the question loop for one client and applies its side effects."""

    def __init__(
        self,
        context: SessionContext,
        registry: RoomRegistry,
        ledger: AnswerLedger,
        presenter: Presenter | None = None,
    ) -> None:
        self._context = context
        self._registry = registry
        self._ledger = ledger
        self._presenter = presenter
        self._machine = SessionStateMachine(context.timings)
        self._ticker: asyncio.Task[None] | None = None
        self._tasks: set[asyncio.Task[None]] = set()
        self._finished = asyncio.Event()
        self._final_standings: list[StandingRow] = []

    @property
    def state(self) -> SessionState:
        return self._machine.state

    @property
    def machine(self) -> SessionStateMachine:
        return self._machine

    @property
    def final_standings(self) -> list[StandingRow]:
        return list(self._final_standings)

    def remaining_ms(self) -> int:
        return self._machine.remaining_ms(self._context.clock_ms())

    async def start(self, question_count: int, time_per_question_ms: int) -> bool:
        """Host only: pick the questions, publish them and begin the first one."""
        room_id = self._require_room()
        if not self._context.is_host:
            logger.warning("Only the host can start room %s", room_id)
            return False
        if self._machine.state is not SessionState.IDLE:
            logger.info("Ignoring duplicate start in state %s", self._machine.state.value)
            return False
        self._dispatch(LoadRequested())
        try:
            bank = await asyncio.to_thread(self._context.question_source)
            selected = draw_questions(bank, question_count, self._context.rng)
            settings = RoomSettings(question_count=len(selected), time_per_question_ms=time_per_question_ms)
            await self._registry.start_match(room_id, [q.id for q in selected], settings)
        except StateConflictError:
            logger.info("Room %s was already started; following its question list", room_id)
            try:
                room = await self._registry.load(room_id)
            except (NotFoundError, TransientIOError) as exc:
                self._dispatch(LoadFailed(f"Could not load the match: {exc}"))
                raise
            if room.status is RoomStatus.FINISHED:
                self._dispatch(MatchClosed())
                return False
            return await self._enter_room_questions(room)
        except (NotFoundError, ValidationError, TransientIOError, QuestionBankError, OSError) as exc:
            self._dispatch(LoadFailed(f"Could not start the match: {exc}"))
            raise
        logger.info("Starting %d questions in room %s", len(selected), room_id)
        self._dispatch(QuestionsReady(tuple(selected), time_per_question_ms, self._context.clock_ms()))
        return True

    async def follow(self, room: Room) -> bool:
        """Join a match another client started, using the room's question list."""
        if self._machine.state is not SessionState.IDLE:
            return False
        self._dispatch(LoadRequested())
        return await self._enter_room_questions(room)

    def select_option(self, choice: str) -> bool:
        """Lock in ``choice``; returns False when the question is already locked."""
        if choice not in OPTION_LETTERS:
            raise ValidationError(f"Unknown option '{choice}'.")
        return bool(self._dispatch(OptionSelected(choice, self._context.clock_ms())))

    def close_match(self) -> None:
        """React to the room being marked finished by the host."""
        self._dispatch(MatchClosed())

    async def wait_finished(self) -> list[StandingRow]:
        await self._finished.wait()
        return self.final_standings

    async def aclose(self) -> None:
        tasks = [task for task in (self._ticker, *self._tasks) if task is not None]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._ticker = None
        self._tasks.clear()

    async def _enter_room_questions(self, room: Room) -> bool:
        try:
            bank = await asyncio.to_thread(self._context.question_source)
            questions = questions_in_order(bank, room.question_ids)
        except (KeyError, QuestionBankError, OSError) as exc:
            self._dispatch(LoadFailed(f"Could not load the match questions: {exc}"))
            return False
        self._dispatch(
            QuestionsReady(
                questions,
                room.settings.time_per_question_ms,
                self._context.clock_ms(),
                start_index=room.question_index,
            )
        )
        return True

    def _dispatch(self, event: Event) -> list[Command]:
        commands = self._machine.handle(event)
        for command in commands:
            self._present(command)
            self._execute(command)
        return commands

    def _present(self, command: Command) -> None:
        if self._presenter is not None:
            self._presenter(command)

    def _execute(self, command: Command) -> None:
        if isinstance(command, StartCountdown):
            self._start_ticker()
        elif isinstance(command, StopCountdown):
            self._stop_ticker()
        elif isinstance(command, RegisterAnswer):
            self._spawn(self._register_answer(command))
        elif isinstance(command, ScheduleAdvance):
            self._spawn(self._advance_after(command.delay_ms))
        elif isinstance(command, PublishQuestionIndex) and self._context.is_host:
            self._spawn(self._publish_question_index(command.index))
        elif isinstance(command, FinishMatch):
            self._spawn(self._finish())

    def _start_ticker(self) -> None:
        self._stop_ticker()
        self._ticker = asyncio.get_running_loop().create_task(self._run_ticker(), name="countdown")

    def _stop_ticker(self) -> None:
        ticker, self._ticker = self._ticker, None
        # The ticker itself may trigger the lock; it then exits on its own.
        if ticker is not None and ticker is not asyncio.current_task():
            ticker.cancel()

    async def _run_ticker(self) -> None:
        interval = self._context.timings.tick_ms / 1000
        while self._machine.state is SessionState.QUESTION_ACTIVE:
            await asyncio.sleep(interval)
            self._dispatch(Tick(self._context.clock_ms()))

    async def _register_answer(self, command: RegisterAnswer) -> None:
        error: str | None = None
        if not self._context.is_player:
            self._dispatch(AnswerSettled(self._context.clock_ms(), None))
            return
        try:
            await self._ledger.register_answer(
                self._require_room(),
                self._context.player_id,
                command.question_id,
                command.choice,
                command.correct_option,
                command.elapsed_ms,
            )
        except (TransientIOError, NotFoundError, ValidationError) as exc:
            logger.error("Answer to %s was not saved: %s", command.question_id, exc)
            error = f"Your answer could not be saved: {exc}"
        self._dispatch(AnswerSettled(self._context.clock_ms(), error))

    async def _advance_after(self, delay_ms: int) -> None:
        await asyncio.sleep(delay_ms / 1000)
        self._dispatch(ExplanationElapsed(self._context.clock_ms()))

    async def _publish_question_index(self, index: int) -> None:
        try:
            await self._registry.publish_question_index(self._require_room(), index)
        except (TransientIOError, NotFoundError) as exc:
            logger.warning("Could not publish question index %d: %s", index, exc)

    async def _finish(self) -> None:
        room_id = self._require_room()
        try:
            if self._context.is_host:
                try:
                    await self._registry.finish_match(room_id)
                except StateConflictError:
                    logger.debug("Room %s was already finished", room_id)
            players = await self._registry.load_players(room_id)
        except (TransientIOError, NotFoundError) as exc:
            logger.error("Could not finish room %s: %s", room_id, exc)
            self._present(SurfaceError(f"Could not load the final ranking: {exc}"))
        else:
            self._final_standings = build_standings(players)
            self._present(ShowFinalRanking(tuple(self._final_standings)))
        finally:
            self._finished.set()

    def _spawn(self, coroutine: Coroutine[object, object, None]) -> None:
        task = asyncio.get_running_loop().create_task(coroutine)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _require_room(self) -> str:
        if not self._context.room_id:
            raise NotFoundError("This client is not in a room.")
        return self._context.room_id

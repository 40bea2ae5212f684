"""FastAPI server exposing one trivia client to its presentation layer."""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime, timezone
import logging
from typing import AsyncIterator

from fastapi import Depends, FastAPI, Query, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel
import uvicorn

from trivia_sync.constants.about import APP_NAME, APP_VERSION
from trivia_sync.constants.network_constants import DEFAULT_HOST, DEFAULT_PORT, JOIN_QUERY_PARAMETER
from trivia_sync.constants.quiz_constants import DEFAULT_QUESTION_COUNT, DEFAULT_TIME_PER_QUESTION_MS
from trivia_sync.core.errors import (
    NotFoundError,
    RoomAllocationError,
    StateConflictError,
    TransientIOError,
    TriviaError,
    ValidationError,
)
from trivia_sync.core.markdown_renderer import renderer
from trivia_sync.core.models import Room
from trivia_sync.core.results_exporter import results_file_name
from trivia_sync.core.services.session_machine import SessionState
from trivia_sync.core.trivia_client import TriviaClient

logger = logging.getLogger(__name__)

_STATUS_FOR_ERROR: dict[type[TriviaError], int] = {
    NotFoundError: 404,
    ValidationError: 422,
    StateConflictError: 409,
    TransientIOError: 503,
    RoomAllocationError: 503,
}


class CreateRoomPayload(BaseModel):
    """Payload schema for creating a room as its host."""

    question_count: int = DEFAULT_QUESTION_COUNT
    time_per_question_ms: int = DEFAULT_TIME_PER_QUESTION_MS
    host_plays: bool = True


class JoinPayload(BaseModel):
    """Payload schema for joining an existing room."""

    room: str
    name: str
    unit: str


class StartPayload(BaseModel):
    question_count: int | None = None


class AnswerPayload(BaseModel):
    """Payload schema for a selected option."""

    choice: str


def _get_client_dependency(client: TriviaClient):
    def dependency() -> TriviaClient:
        return client

    return dependency


def _room_summary(room: Room) -> dict[str, object]:
    return {
        "room_id": room.room_id,
        "status": room.status.value,
        "host_id": room.host_id,
        "question_count": room.settings.question_count,
        "time_per_question_ms": room.settings.time_per_question_ms,
    }


def build_join_url(base_url: str, room_id: str) -> str:
    return f"{base_url.rstrip('/')}/join?{JOIN_QUERY_PARAMETER}={room_id}"


def _question_payload(client: TriviaClient) -> dict[str, object] | None:
    controller = client.controller
    if controller is None:
        return None
    machine = controller.machine
    question = machine.current_question()
    if question is None:
        return None
    explaining = machine.state in (SessionState.EXPLAINING, SessionState.FINISHED)
    return {
        "question_id": question.id,
        "index": machine.current_index,
        "total": len(machine.questions),
        "prompt_html": renderer.render_fragment(question.prompt),
        "options": {letter: renderer.render_inline(text) for letter, text in question.options.items()},
        "remaining_ms": controller.remaining_ms(),
        "time_per_question_ms": machine.time_per_question_ms,
        "correct_option": question.correct_option if explaining else None,
        "explanation_html": renderer.render_fragment(question.explanation) if explaining else None,
    }


def create_api_app(client: TriviaClient, resume_on_startup: bool = True) -> FastAPI:
    """Create a FastAPI application wired to the provided trivia client."""

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        if resume_on_startup:
            try:
                room = await client.resume()
            except TriviaError as exc:
                logger.warning("Could not resume the saved session: %s", exc)
            else:
                if room is not None:
                    logger.info("Resumed room %s", room.room_id)
        yield
        await client.close()
        await client.context.store.close()

    app = FastAPI(title=f"{APP_NAME} API", version=APP_VERSION, lifespan=lifespan)
    client_dep = _get_client_dependency(client)

    @app.exception_handler(TriviaError)
    async def handle_trivia_error(_: Request, exc: TriviaError) -> JSONResponse:
        status_code = next(
            (code for error_type, code in _STATUS_FOR_ERROR.items() if isinstance(exc, error_type)),
            500,
        )
        return JSONResponse(status_code=status_code, content={"detail": str(exc)})

    @app.get("/identity")
    async def get_identity(trivia: TriviaClient = Depends(client_dep)) -> dict[str, object]:
        room = trivia.room
        return {
            "player_id": trivia.player_id,
            "room_id": room.room_id if room else None,
            "is_host": trivia.is_host,
        }

    @app.get("/join")
    async def resolve_join_link(
        room: str = Query("", alias=JOIN_QUERY_PARAMETER),
        trivia: TriviaClient = Depends(client_dep),
    ) -> dict[str, object]:
        room_code = room.strip()
        if not room_code:
            raise ValidationError("The join link does not carry a room code.")
        if not await trivia.room_exists(room_code):
            raise NotFoundError(f"Room {room_code} does not exist.")
        return {"room_id": room_code}

    @app.post("/rooms", status_code=201)
    async def create_room(
        payload: CreateRoomPayload,
        request: Request,
        trivia: TriviaClient = Depends(client_dep),
    ) -> dict[str, object]:
        room = await trivia.create_room(
            payload.question_count, payload.time_per_question_ms, host_plays=payload.host_plays
        )
        return {**_room_summary(room), "join_url": build_join_url(str(request.base_url), room.room_id)}

    @app.post("/join", status_code=201)
    async def join_room(payload: JoinPayload, trivia: TriviaClient = Depends(client_dep)) -> dict[str, object]:
        room = await trivia.join_room(payload.room, payload.name, payload.unit)
        return {**_room_summary(room), "player_id": trivia.player_id}

    @app.post("/resume")
    async def resume(trivia: TriviaClient = Depends(client_dep)) -> dict[str, object]:
        room = await trivia.resume()
        if room is None:
            return {"resumed": False, "room": None}
        return {"resumed": True, "room": _room_summary(room)}

    @app.post("/start")
    async def start_match(
        payload: StartPayload | None = None,
        trivia: TriviaClient = Depends(client_dep),
    ) -> dict[str, object]:
        question_count = payload.question_count if payload else None
        return {"started": await trivia.start_match(question_count)}

    @app.post("/answer")
    async def submit_answer(payload: AnswerPayload, trivia: TriviaClient = Depends(client_dep)) -> dict[str, object]:
        accepted = trivia.select_option(payload.choice.strip().upper())
        if not accepted:
            logger.info("Ignored answer %s: no question is open", payload.choice)
        return {"accepted": accepted}

    @app.post("/leave")
    async def leave(trivia: TriviaClient = Depends(client_dep)) -> dict[str, object]:
        await trivia.leave()
        return {"left": True}

    @app.get("/state")
    async def get_state(trivia: TriviaClient = Depends(client_dep)) -> dict[str, object]:
        room = trivia.room
        controller = trivia.controller
        status = trivia.room_status
        return {
            "player_id": trivia.player_id,
            "is_host": trivia.is_host,
            "room": _room_summary(room) if room else None,
            "status": status.value if status else None,
            "session_state": controller.state.value if controller else SessionState.IDLE.value,
            "question": _question_payload(trivia),
            "scoreboard": [row.to_dict() for row in trivia.standings()],
            "final_ranking": [row.to_dict() for row in controller.final_standings] if controller else [],
        }

    @app.get("/events")
    async def get_events(after: int = 0, trivia: TriviaClient = Depends(client_dep)) -> dict[str, object]:
        return {
            "last_sequence": trivia.events.last_sequence,
            "events": [entry.to_dict() for entry in trivia.events.since(after)],
        }

    @app.get("/results.csv", response_class=PlainTextResponse)
    async def export_results(trivia: TriviaClient = Depends(client_dep)) -> PlainTextResponse:
        exported_at = datetime.now(timezone.utc)
        body = await trivia.results_csv(exported_at)
        room = trivia.room
        file_name = results_file_name(room.room_id if room else "room", exported_at)
        return PlainTextResponse(
            body,
            media_type="text/csv",
            headers={"Content-Disposition": f'attachment; filename="{file_name}"'},
        )

    return app


def run_api_server(
    client: TriviaClient,
    host: str = DEFAULT_HOST,
    port: int = DEFAULT_PORT,
    log_level: str = "info",
) -> None:
    """Serve the API with uvicorn until interrupted."""
    app = create_api_app(client)
    config = uvicorn.Config(app=app, host=host, port=port, log_level=log_level)
    server = uvicorn.Server(config)
    server.run()

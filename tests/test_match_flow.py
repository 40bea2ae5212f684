import asyncio

import pytest

from trivia_sync.core.errors import NotFoundError, ValidationError
from trivia_sync.core.identity import MemorySessionStorage
from trivia_sync.core.models import RoomStatus
from trivia_sync.core.results_exporter import RESULTS_HEADER
from trivia_sync.core.services.session_machine import ShowQuestion
from trivia_sync.core.trivia_client import TriviaClient


def answering(pick):
    """Presenter that answers each question with ``pick(question)`` on the next loop turn."""
    holder = {}

    def presenter(command):
        if isinstance(command, ShowQuestion):
            choice = pick(command.question)
            if choice:
                asyncio.get_running_loop().call_soon(holder["client"].select_option, choice)

    def bind(client):
        holder["client"] = client
        return client

    return presenter, bind


def always_right(question):
    return question.correct_option


def always_wrong(question):
    return "A" if question.correct_option != "A" else "B"


async def settle(seconds=0.02):
    await asyncio.sleep(seconds)


async def test_three_players_play_a_full_match(make_context):
    host_presenter, bind_host = answering(lambda question: None)
    right_presenter, bind_right = answering(always_right)
    wrong_presenter, bind_wrong = answering(always_wrong)
    host = bind_host(TriviaClient(make_context("host-1", seed=1), host_presenter))
    ana = bind_right(TriviaClient(make_context("guest-1", seed=2), right_presenter))
    bruno = bind_wrong(TriviaClient(make_context("guest-2", seed=3), wrong_presenter))

    room = await host.create_room(question_count=3, time_per_question_ms=300)
    await ana.join_room(room.room_id, "Ana", "Store 1")
    await bruno.join_room(room.room_id, "Bruno", "Store 2")
    await settle()
    assert {p.player_id for p in host.players} == {"host-1", "guest-1", "guest-2"}
    assert host.room_status is RoomStatus.LOBBY

    assert await ana.start_match() is False
    assert await host.start_match() is True

    results = await asyncio.wait_for(
        asyncio.gather(host.wait_finished(), ana.wait_finished(), bruno.wait_finished()),
        timeout=10,
    )
    await settle()

    for standings in results:
        assert len(standings) == 3
    assert host.room_status is RoomStatus.FINISHED
    assert ana.room_status is RoomStatus.FINISHED

    final = results[0]
    assert final[0].player_id == "guest-1"
    assert final[0].score == 30
    assert final[0].correct_count == 3

    by_id = {player.player_id: player for player in host.players}
    assert by_id["guest-2"].score == 0
    assert by_id["guest-2"].answered_count == 3
    assert all(answer.time_ms == 300 and answer.choice is None for answer in by_id["host-1"].answers.values())
    for player in by_id.values():
        assert player.score == 10 * player.correct_count

    csv_lines = (await host.results_csv()).split("\n")
    assert len(csv_lines) == 4

    for client in (host, ana, bruno):
        await client.close()


async def test_join_requires_an_existing_room_and_all_fields(make_context):
    client = TriviaClient(make_context("guest-1"))
    with pytest.raises(ValidationError):
        await client.join_room("123456", "Ana", "  ")
    with pytest.raises(NotFoundError):
        await client.join_room("000000", "Ana", "Store 1")
    assert client.room is None


async def test_resume_after_restart_does_not_duplicate_the_player(make_context):
    storage = MemorySessionStorage()
    host = TriviaClient(make_context("host-1"))
    room = await host.create_room()

    guest = TriviaClient(make_context("guest-1", session_storage=storage))
    await guest.join_room(room.room_id, "Ana", "Store 1")
    await guest.close()

    restarted = TriviaClient(make_context("guest-1", session_storage=storage))
    resumed = await restarted.resume()
    assert resumed.room_id == room.room_id
    await settle()
    assert [p.player_id for p in host.players].count("guest-1") == 1
    assert restarted.is_host is False

    await restarted.leave()
    await settle()
    assert "guest-1" not in {p.player_id for p in host.players}
    assert storage.load() is None
    assert await TriviaClient(make_context("guest-1", session_storage=storage)).resume() is None
    await host.close()


async def test_late_joiner_follows_a_running_match(make_context):
    host = TriviaClient(make_context("host-1"))
    room = await host.create_room(question_count=2, time_per_question_ms=5000)
    assert await host.start_match() is True

    late = TriviaClient(make_context("guest-1"))
    await late.join_room(room.room_id, "Ana", "Store 1")
    await settle(0.2)
    assert late.controller is not None
    assert late.controller.machine.current_question() is not None
    assert [q.id for q in late.controller.machine.questions] == [
        q.id for q in host.controller.machine.questions
    ]
    assert late.select_option("A") is True

    for client in (host, late):
        await client.close()


def answering_after(delay_s, correct_at):
    """Presenter answering after ``delay_s``, right only on question ``correct_at``."""
    holder = {}

    def presenter(command):
        if isinstance(command, ShowQuestion):
            question = command.question
            choice = always_right(question) if command.index == correct_at else always_wrong(question)
            asyncio.get_running_loop().call_later(delay_s, holder["client"].select_option, choice)

    def bind(client):
        holder["client"] = client
        return client

    return presenter, bind


async def test_equal_scores_rank_by_accumulated_time(make_context):
    host = TriviaClient(make_context("host-1", seed=1))
    room = await host.create_room(question_count=3, time_per_question_ms=400, host_plays=False)

    # join order differs from the expected ranking
    plan = [("guest-1", "Ana", 0.15, 0), ("guest-2", "Bruno", 0.08, 1), ("guest-3", "Carla", 0.01, 2)]
    players = []
    for seed, (player_id, name, delay, correct_at) in enumerate(plan, start=2):
        presenter, bind = answering_after(delay, correct_at)
        client = bind(TriviaClient(make_context(player_id, seed=seed), presenter))
        await client.join_room(room.room_id, name, "Store 1")
        players.append(client)
    await settle()
    assert {p.player_id for p in host.players} == {"guest-1", "guest-2", "guest-3"}

    assert await host.start_match() is True
    results = await asyncio.wait_for(
        asyncio.gather(host.wait_finished(), *(client.wait_finished() for client in players)),
        timeout=10,
    )
    await settle()

    assert host.room_status is RoomStatus.FINISHED
    for standings in results:
        assert sorted(row.player_id for row in standings) == ["guest-1", "guest-2", "guest-3"]

    final = host.standings()
    assert [row.player_id for row in final] == ["guest-3", "guest-2", "guest-1"]
    assert [row.position for row in final] == [1, 2, 3]
    for row in final:
        assert row.score == 10
        assert row.correct_count == 1
        assert row.answered_count == 3
    times = [row.total_response_time_ms for row in final]
    assert times == sorted(times)
    assert [row.player_id for row in results[0]] == ["guest-3", "guest-2", "guest-1"]

    for client in (host, *players):
        await client.close()


async def test_spectating_host_writes_no_player_record(make_context):
    storage = MemorySessionStorage()
    host = TriviaClient(make_context("host-1", session_storage=storage))
    await host.create_room(question_count=1, time_per_question_ms=50, host_plays=False)
    await settle()
    assert host.is_host is True
    assert host.players == []
    assert storage.load() is None

    assert await host.start_match() is True
    standings = await asyncio.wait_for(host.wait_finished(), timeout=5)
    assert standings == []
    await settle()
    assert host.room_status is RoomStatus.FINISHED
    assert await host.results_csv() == RESULTS_HEADER
    await host.close()

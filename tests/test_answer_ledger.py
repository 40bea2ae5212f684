import pytest

from trivia_sync.core.errors import NotFoundError, ValidationError
from trivia_sync.core.models import RoomSettings
from trivia_sync.core.services.answer_ledger import AnswerLedger
from trivia_sync.core.services.room_registry import RoomRegistry


@pytest.fixture()
async def seeded(store, rng):
    registry = RoomRegistry(store, rng)
    room = await registry.create("host-1", RoomSettings())
    await registry.add_player(room.room_id, "p1", "Ana", "Store 12")
    return registry, AnswerLedger(store), room.room_id


async def test_correct_answer_adds_points_and_time(seeded):
    registry, ledger, room_id = seeded
    entry = await ledger.register_answer(room_id, "p1", "q1", "B", "B", 3200.4)
    assert entry.recorded is True
    assert entry.record.correct is True
    assert entry.record.time_ms == 3200

    player = await registry.load_player(room_id, "p1")
    assert player.score == 10
    assert player.total_response_time_ms == 3200
    assert player.answers["q1"].choice == "B"


async def test_incorrect_answer_records_time_but_adds_nothing(seeded):
    registry, ledger, room_id = seeded
    await ledger.register_answer(room_id, "p1", "q1", "A", "B", 1500)
    player = await registry.load_player(room_id, "p1")
    assert player.score == 0
    assert player.total_response_time_ms == 0
    assert player.answers["q1"].correct is False
    assert player.answers["q1"].time_ms == 1500


async def test_timeout_is_recorded_without_a_choice(seeded):
    registry, ledger, room_id = seeded
    entry = await ledger.register_answer(room_id, "p1", "q1", None, "C", 15000)
    assert entry.record.choice is None
    assert entry.record.correct is False
    player = await registry.load_player(room_id, "p1")
    assert player.answers["q1"].time_ms == 15000
    assert player.score == 0


async def test_repeated_answer_keeps_the_first(seeded):
    registry, ledger, room_id = seeded
    await ledger.register_answer(room_id, "p1", "q1", "A", "A", 1000)
    repeat = await ledger.register_answer(room_id, "p1", "q1", "B", "B", 500)
    assert repeat.recorded is False
    assert repeat.record.choice == "A"
    player = await registry.load_player(room_id, "p1")
    assert player.score == 10
    assert player.total_response_time_ms == 1000
    assert player.answered_count == 1


async def test_score_matches_correct_answers(seeded):
    registry, ledger, room_id = seeded
    answers = [("q1", "A", "A", 900), ("q2", "B", "C", 2000), ("q3", "D", "D", 1100), ("q4", None, "A", 5000)]
    for question_id, choice, correct, elapsed in answers:
        await ledger.register_answer(room_id, "p1", question_id, choice, correct, elapsed)
    player = await registry.load_player(room_id, "p1")
    assert player.score == 10 * player.correct_count == 20
    assert player.total_response_time_ms == 900 + 1100
    assert player.answered_count == 4


async def test_unknown_player(seeded):
    _, ledger, room_id = seeded
    with pytest.raises(NotFoundError):
        await ledger.register_answer(room_id, "ghost", "q1", "A", "A", 100)


async def test_invalid_input(seeded):
    _, ledger, room_id = seeded
    with pytest.raises(ValidationError):
        await ledger.register_answer(room_id, "p1", "q1", "E", "A", 100)
    with pytest.raises(ValidationError):
        await ledger.register_answer(room_id, "p1", "q1", "A", "A", -1)

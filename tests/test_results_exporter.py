from datetime import datetime, timezone

from trivia_sync.core.models import AnswerRecord, Player
from trivia_sync.core.results_exporter import (
    RESULTS_HEADER,
    build_results_csv,
    format_timestamp_utc,
    save_results_to_file,
)

EXPORTED_AT = datetime(2024, 5, 1, 13, 45, 10, 123000, tzinfo=timezone.utc)


def sample_players():
    ana = Player(
        player_id="p1",
        name="Ana",
        unit="Store 12",
        score=20,
        total_response_time_ms=3001,
        answers={
            "q1": AnswerRecord("A", True, 1000),
            "q2": AnswerRecord("B", True, 2001),
            "q3": AnswerRecord(None, False, 15000),
        },
    )
    bruno = Player(player_id="p2", name="Bruno", unit="Store 3", answers={"q1": AnswerRecord("C", False, 800)})
    return [ana, bruno]


def test_timestamp_is_utc_with_milliseconds():
    assert format_timestamp_utc(EXPORTED_AT) == "2024-05-01T13:45:10.123Z"


def test_csv_layout():
    lines = build_results_csv("123456", sample_players(), EXPORTED_AT).split("\n")
    assert lines[0] == RESULTS_HEADER
    assert lines[1] == "123456,2024-05-01T13:45:10.123Z,Ana,Store 12,20,3001,3,2,1501"
    assert lines[2] == "123456,2024-05-01T13:45:10.123Z,Bruno,Store 3,0,0,1,0,0"
    assert len(lines) == 3


def test_empty_room_has_only_header():
    assert build_results_csv("123456", [], EXPORTED_AT) == RESULTS_HEADER


def test_save_results_to_file(tmp_path):
    path = save_results_to_file(tmp_path / "exports", "123456", sample_players(), EXPORTED_AT)
    assert path.name.startswith("results_123456_")
    assert path.read_text(encoding="utf-8").startswith(RESULTS_HEADER)

from trivia_sync.core.models import Player
from trivia_sync.core.services.ranker import build_standings, compute_ranking


def player(player_id, score, total_ms, name=None):
    return Player(player_id=player_id, name=name or player_id.upper(), unit="Store 1", score=score, total_response_time_ms=total_ms)


def test_score_then_time_ordering():
    players = [player("a", 20, 8000), player("b", 30, 12000), player("c", 30, 9000)]
    assert [p.player_id for p in compute_ranking(players)] == ["c", "b", "a"]


def test_ties_keep_input_order():
    players = [player("x", 10, 500), player("y", 10, 500), player("z", 10, 500)]
    assert [p.player_id for p in compute_ranking(players)] == ["x", "y", "z"]


def test_empty_ranking():
    assert compute_ranking([]) == []
    assert build_standings([]) == []


def test_standings_rows_and_limit():
    players = [player("a", 20, 8000), player("b", 30, 12000), player("c", 30, 9000)]
    rows = build_standings(players, limit=2)
    assert [(row.position, row.player_id) for row in rows] == [(1, "c"), (2, "b")]
    assert rows[0].to_dict()["score"] == 30
    assert rows[0].name == "C"

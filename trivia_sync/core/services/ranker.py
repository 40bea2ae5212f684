"""Standings computation for the live scoreboard and the final ranking."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Sequence

from trivia_sync.core.models import Player


@dataclass(slots=True, frozen=True)
class StandingRow:
    """Immutable snapshot returned to consumers."""

    position: int
    player_id: str
    name: str
    unit: str
    score: int
    total_response_time_ms: int
    answered_count: int
    correct_count: int

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def compute_ranking(players: Sequence[Player]) -> list[Player]:
    """Order players by score (descending), then correct-answer time (ascending).

    Players tied on both keys keep their input order, so callers should pass
    a deterministic order such as join order.
    """
    return sorted(players, key=lambda p: (-p.score, p.total_response_time_ms))


def build_standings(players: Sequence[Player], limit: int | None = None) -> list[StandingRow]:
    ranked = compute_ranking(players)
    if limit is not None:
        ranked = ranked[:limit]
    return [
        StandingRow(
            position=position,
            player_id=player.player_id,
            name=player.name,
            unit=player.unit,
            score=player.score,
            total_response_time_ms=player.total_response_time_ms,
            answered_count=player.answered_count,
            correct_count=player.correct_count,
        )
        for position, player in enumerate(ranked, start=1)
    ]

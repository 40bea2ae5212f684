"""Utilities for exporting match results as comma-separated rows.

Values are written verbatim: a comma inside a name or unit is not quoted and
will shift the remaining columns of that row.
"""

from __future__ import annotations

from datetime import datetime, timezone
import math
from pathlib import Path
from typing import Sequence

from trivia_sync.core.models import Player

RESULTS_HEADER = (
    "roomId,timestampUTC,name,unit,score,totalResponseTimeMs,"
    "answeredCount,correctCount,averageCorrectTimeMs"
)


def format_timestamp_utc(moment: datetime) -> str:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def build_results_csv(room_id: str, players: Sequence[Player], exported_at: datetime) -> str:
    """Render one header line plus one row per player, in the given order."""
    timestamp = format_timestamp_utc(exported_at)
    lines = [RESULTS_HEADER]
    lines.extend(_serialize_player(room_id, timestamp, player) for player in players)
    return "\n".join(lines)


def _serialize_player(room_id: str, timestamp: str, player: Player) -> str:
    correct_count = player.correct_count
    average = math.floor(player.total_response_time_ms / correct_count + 0.5) if correct_count > 0 else 0
    values = [
        room_id,
        timestamp,
        player.name,
        player.unit,
        player.score,
        player.total_response_time_ms,
        player.answered_count,
        correct_count,
        average,
    ]
    return ",".join(str(value) for value in values)


def results_file_name(room_id: str, exported_at: datetime) -> str:
    return f"results_{room_id}_{int(exported_at.timestamp() * 1000)}.csv"


def save_results_to_file(
    directory: Path,
    room_id: str,
    players: Sequence[Player],
    exported_at: datetime | None = None,
) -> Path:
    """Write the results CSV into ``directory`` and return the file path."""
    exported_at = exported_at or datetime.now(timezone.utc)
    directory = directory.resolve()
    directory.mkdir(parents=True, exist_ok=True)
    file_path = directory / results_file_name(room_id, exported_at)
    file_path.write_text(build_results_csv(room_id, players, exported_at), encoding="utf-8")
    return file_path

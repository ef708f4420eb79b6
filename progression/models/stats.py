from __future__ import annotations

from collections.abc import Mapping
from dataclasses import asdict, dataclass
from typing import Any

# Points per level in the observed leveling scheme.
LEVEL_SIZE = 100


@dataclass(frozen=True, slots=True)
class StatsSnapshot:
    """Wholesale-replaced view of a learner's gamification stats.

    Only ``points`` is raised directly by upstream mutations; ``level`` and
    ``next_level_points`` are derived on the server.
    """

    points: int = 0
    level: int = 1
    streak: int = 0
    idle_rate: float = 1
    next_level_points: int = 200
    quizzes_completed: int = 0
    perfect_scores: int = 0
    total_time: int = 0
    rank: int = 0

    @staticmethod
    def from_payload(data: Mapping[str, Any]) -> StatsSnapshot:
        """Build a snapshot from a pull-endpoint payload.

        Missing or falsy fields fall back to the defaults above, so a
        partial payload never leaves a field as None.
        """
        defaults = StatsSnapshot()
        return StatsSnapshot(
            points=data.get("points") or defaults.points,
            level=data.get("level") or defaults.level,
            streak=data.get("streak") or defaults.streak,
            idle_rate=data.get("idle_rate") or defaults.idle_rate,
            next_level_points=data.get("next_level_points")
            or defaults.next_level_points,
            quizzes_completed=data.get("quizzes_completed")
            or defaults.quizzes_completed,
            perfect_scores=data.get("perfect_scores") or defaults.perfect_scores,
            total_time=data.get("total_time") or defaults.total_time,
            rank=data.get("rank") or defaults.rank,
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True, slots=True)
class LevelProgress:
    level: int
    points_in_level: int
    points_to_next_level: int
    percent: int


def level_progress(snapshot: StatsSnapshot) -> LevelProgress:
    points_in_level = snapshot.points % LEVEL_SIZE
    return LevelProgress(
        level=snapshot.level,
        points_in_level=points_in_level,
        points_to_next_level=LEVEL_SIZE - points_in_level,
        percent=points_in_level * 100 // LEVEL_SIZE,
    )

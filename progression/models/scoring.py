from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class Multipliers:
    """Active reward modifiers for one quiz submission.

    Unset fields contribute nothing: a missing multiplier counts as 1 and a
    missing bonus or floor is skipped.
    """

    quiz_multiplier: float | None = None
    streak_multiplier: float | None = None
    min_points: int | None = None
    perfect_bonus: int | None = None
    streak_days: int | None = None


@dataclass(frozen=True, slots=True)
class PointsBreakdown:
    """Every term that contributed to an award, in composition order."""

    score: int
    base: int
    quiz_multiplier: float
    streak_multiplier: float
    streak_days: int | None
    raw: float
    multiplied: int
    perfect_bonus: int
    min_points_applied: bool
    final: int

    @property
    def has_quiz_bonus(self) -> bool:
        return self.quiz_multiplier > 1

    @property
    def has_streak_bonus(self) -> bool:
        return bool(self.streak_days) and self.streak_multiplier > 1

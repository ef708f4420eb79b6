"""Quiz points composition.

The grading procedure that decides a score runs upstream; this module only
recomputes how that score turns into points so the result can be shown
term by term and audited against what the server awarded.

  base   = tier(score)                 1 / 2 / 5 / 10 + (score - 70) // 3
  raw    = base * quiz_mult * streak_mult
  final  = floor(raw)
  final += perfect_bonus               only for a perfect score
  final  = max(final, min_points)      only below 30%

The order is fixed: the floor guarantee is applied last and only below 30%.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Mapping
from typing import Any

from progression.core.metrics import POINTS_AWARDED
from progression.models.scoring import Multipliers, PointsBreakdown

logger = logging.getLogger(__name__)

MIN_SCORE = 0
MAX_SCORE = 100


class ScoreValidationError(ValueError):
    pass


def base_points(score: int) -> int:
    _validate_score(score)
    if score < 30:
        return 1
    if score < 50:
        return 2
    if score < 70:
        return 5
    return 10 + math.floor((score - 70) / 3)


def calculate(
    score: int,
    multipliers: Multipliers | None = None,
    is_perfect: bool | None = None,
) -> PointsBreakdown:
    """Compose the points awarded for ``score`` under ``multipliers``.

    ``is_perfect`` defaults to ``score == 100``.

    Raises:
        ScoreValidationError: score outside 0..100 or a multiplier below 1.
    """
    multipliers = multipliers or Multipliers()
    base = base_points(score)
    quiz_multiplier = _validate_multiplier("quiz_multiplier", multipliers.quiz_multiplier)
    streak_multiplier = _validate_multiplier(
        "streak_multiplier", multipliers.streak_multiplier
    )
    if is_perfect is None:
        is_perfect = score == MAX_SCORE

    raw = base * quiz_multiplier * streak_multiplier
    multiplied = math.floor(raw)
    final = multiplied

    perfect_bonus = (multipliers.perfect_bonus or 0) if is_perfect else 0
    final += perfect_bonus

    min_points_applied = False
    if multipliers.min_points is not None and score < 30:
        if multipliers.min_points > final:
            min_points_applied = True
        final = max(final, multipliers.min_points)

    POINTS_AWARDED.observe(final)
    logger.debug(
        "Scored %d%%: base=%d raw=%.2f final=%d", score, base, raw, final
    )

    return PointsBreakdown(
        score=score,
        base=base,
        quiz_multiplier=quiz_multiplier,
        streak_multiplier=streak_multiplier,
        streak_days=multipliers.streak_days,
        raw=raw,
        multiplied=multiplied,
        perfect_bonus=perfect_bonus,
        min_points_applied=min_points_applied,
        final=final,
    )


def calculate_for_result(result: Mapping[str, Any]) -> PointsBreakdown:
    """Recompute the breakdown for a quiz-submission payload.

    Expects the shape returned by the submit procedure: ``score`` plus an
    optional ``multipliers`` object, ``perfect_bonus`` and ``streak_days``.
    """
    if "score" not in result or result["score"] is None:
        raise ScoreValidationError("score is required")

    raw_multipliers = result.get("multipliers") or {}
    multipliers = Multipliers(
        quiz_multiplier=raw_multipliers.get("quiz_multiplier"),
        streak_multiplier=raw_multipliers.get("streak_multiplier"),
        min_points=raw_multipliers.get("min_points"),
        perfect_bonus=result.get("perfect_bonus"),
        streak_days=result.get("streak_days"),
    )
    return calculate(result["score"], multipliers)


def _validate_score(score: int) -> None:
    if isinstance(score, bool) or not isinstance(score, int | float):
        raise ScoreValidationError(f"score must be a number (got {score!r})")
    if not MIN_SCORE <= score <= MAX_SCORE:
        logger.warning("Rejected out-of-range score=%s", score)
        raise ScoreValidationError(
            f"score must be between {MIN_SCORE} and {MAX_SCORE} (got {score})"
        )


def _validate_multiplier(name: str, value: float | None) -> float:
    if value is None:
        return 1
    if value < 1:
        raise ScoreValidationError(f"{name} must be >= 1 (got {value})")
    return value

"""Quiz submission and points preview.

``POST /v1/quizzes/{quiz_id}/finish`` forwards the answers to the grading
procedure, recomputes the points breakdown from what it returned and
compares the result with the ``points_earned`` it reports.  A mismatch is
logged, not corrected: the server's award is authoritative.

``POST /v1/scoring/preview`` runs the calculator alone.
"""

from __future__ import annotations

import logging
from dataclasses import asdict
from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from progression.api.courses import invalidate_progress
from progression.api.dependencies import bad_gateway, get_services
from progression.models.scoring import Multipliers, PointsBreakdown
from progression.services.container import Services
from progression.services.rpc_client import RpcError
from progression.services.score_calculator import (
    ScoreValidationError,
    calculate,
    calculate_for_result,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["quizzes"])


class MultipliersIn(BaseModel):
    quiz_multiplier: float | None = None
    streak_multiplier: float | None = None
    min_points: int | None = None


class ScorePreviewIn(BaseModel):
    score: float
    multipliers: MultipliersIn | None = None
    perfect_bonus: int | None = None
    streak_days: int | None = None
    is_perfect: bool | None = None


class BreakdownOut(BaseModel):
    score: float
    base: int
    quiz_multiplier: float
    streak_multiplier: float
    streak_days: int | None
    raw: float
    multiplied: int
    perfect_bonus: int
    min_points_applied: bool
    final: int
    has_quiz_bonus: bool
    has_streak_bonus: bool


class QuizFinishIn(BaseModel):
    answers: dict[str, Any] | list[Any] = Field(default_factory=dict)
    time_spent: int = Field(default=0, ge=0)


class QuizFinishOut(BaseModel):
    quiz_id: int
    result: Any = None
    breakdown: BreakdownOut | None = None
    points_match: bool | None = None


def _breakdown_out(breakdown: PointsBreakdown) -> BreakdownOut:
    return BreakdownOut(
        **asdict(breakdown),
        has_quiz_bonus=breakdown.has_quiz_bonus,
        has_streak_bonus=breakdown.has_streak_bonus,
    )


@router.post("/v1/quizzes/{quiz_id}/finish", response_model=QuizFinishOut)
async def finish_quiz(
    quiz_id: int,
    body: QuizFinishIn,
    services: Annotated[Services, Depends(get_services)],
) -> QuizFinishOut:
    try:
        result = await services.rpc.call(
            "finish_quiz",
            {
                "p_quiz_id": quiz_id,
                "p_answers": body.answers,
                "p_time_spent": body.time_spent,
            },
        )
    except RpcError as e:
        raise bad_gateway(e) from None

    invalidate_progress(services)
    await services.stats.refresh()

    if not isinstance(result, dict):
        return QuizFinishOut(quiz_id=quiz_id, result=result)

    try:
        breakdown = calculate_for_result(result)
    except ScoreValidationError as e:
        logger.warning("Quiz %d returned an unusable score: %s", quiz_id, e)
        return QuizFinishOut(quiz_id=quiz_id, result=result)

    points_match = None
    awarded = result.get("points_earned")
    if awarded is not None:
        points_match = awarded == breakdown.final
        if not points_match:
            logger.warning(
                "Quiz %d awarded %s points, breakdown gives %d",
                quiz_id,
                awarded,
                breakdown.final,
            )

    return QuizFinishOut(
        quiz_id=quiz_id,
        result=result,
        breakdown=_breakdown_out(breakdown),
        points_match=points_match,
    )


@router.post("/v1/scoring/preview", response_model=BreakdownOut)
async def preview_score(body: ScorePreviewIn) -> BreakdownOut:
    multipliers = body.multipliers or MultipliersIn()
    try:
        breakdown = calculate(
            body.score,
            Multipliers(
                quiz_multiplier=multipliers.quiz_multiplier,
                streak_multiplier=multipliers.streak_multiplier,
                min_points=multipliers.min_points,
                perfect_bonus=body.perfect_bonus,
                streak_days=body.streak_days,
            ),
            is_perfect=body.is_perfect,
        )
    except ScoreValidationError as e:
        raise HTTPException(
            status_code=422, detail=str(e)
        ) from None
    return _breakdown_out(breakdown)

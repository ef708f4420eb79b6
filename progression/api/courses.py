"""Course progression endpoints.

  GET  /v1/courses/{course_id}/progression
      cached ``get_course_structure`` -> resolved topics, the next
      activity with its route, and the completion summary.
      ``?refresh=true`` bypasses the cached structure.

  POST /v1/courses/{course_id}/materials/{activity_id}/complete
      records the completion upstream, drops every cached result the
      completion touched and pulls fresh stats for the active learner.
"""

from __future__ import annotations

import logging
from dataclasses import asdict
from typing import Annotated, Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from progression.api.dependencies import bad_gateway, get_services
from progression.models.course import CourseProgression
from progression.services.container import Services
from progression.services.progression_resolver import resolve_course
from progression.services.rpc_client import RpcError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/courses", tags=["courses"])

# Cached results that depend on a learner's completions.
PROGRESS_TAGS = ("get_course_structure", "get_my_courses", "get_my_stats")


class ActivityOut(BaseModel):
    id: int
    title: str | None = None
    type: str | None = None
    position: int | None = None
    completed: bool
    score: int | None = None
    is_unlocked: bool


class TopicOut(BaseModel):
    id: int
    title: str
    position: int
    is_completed: bool
    is_unlocked: bool
    activities: list[ActivityOut]


class NextActivityOut(BaseModel):
    topic_id: int
    activity: ActivityOut
    route: str


class SummaryOut(BaseModel):
    total_activities: int
    completed_activities: int
    progress_percent: int


class CourseProgressionOut(BaseModel):
    course_id: int
    topics: list[TopicOut]
    next_activity: NextActivityOut | None
    summary: SummaryOut
    is_finished: bool


class MaterialCompleteIn(BaseModel):
    time_spent: int = Field(default=0, ge=0)


class MaterialCompleteOut(BaseModel):
    activity_id: int
    result: Any = None
    invalidated: int


def _progression_out(course_id: int, progression: CourseProgression) -> CourseProgressionOut:
    next_out = None
    if progression.next_activity is not None:
        nxt = progression.next_activity
        next_out = NextActivityOut(
            topic_id=nxt.topic_id,
            activity=ActivityOut(**asdict(nxt.activity)),
            route=nxt.route(course_id),
        )
    return CourseProgressionOut(
        course_id=course_id,
        topics=[TopicOut(**asdict(topic)) for topic in progression.topics],
        next_activity=next_out,
        summary=SummaryOut(**asdict(progression.summary)),
        is_finished=progression.is_finished,
    )


def invalidate_progress(services: Services) -> int:
    return sum(services.cache.invalidate_tag(tag) for tag in PROGRESS_TAGS)


@router.get("/{course_id}/progression", response_model=CourseProgressionOut)
async def get_course_progression(
    course_id: int,
    services: Annotated[Services, Depends(get_services)],
    refresh: bool = False,
) -> CourseProgressionOut:
    try:
        rows = await services.cache.call(
            "get_course_structure", {"p_course_id": course_id}, force_refresh=refresh
        )
    except RpcError as e:
        raise bad_gateway(e) from None

    progression = resolve_course(rows or [])
    return _progression_out(course_id, progression)


@router.post(
    "/{course_id}/materials/{activity_id}/complete",
    response_model=MaterialCompleteOut,
)
async def complete_material(
    course_id: int,
    activity_id: int,
    body: MaterialCompleteIn,
    services: Annotated[Services, Depends(get_services)],
) -> MaterialCompleteOut:
    try:
        result = await services.rpc.call(
            "complete_material",
            {"p_activity_id": activity_id, "p_time_spent": body.time_spent},
        )
    except RpcError as e:
        raise bad_gateway(e) from None

    invalidated = invalidate_progress(services)
    logger.info(
        "Material %d of course %d completed; %d cached results dropped",
        activity_id,
        course_id,
        invalidated,
    )
    await services.stats.refresh()
    return MaterialCompleteOut(
        activity_id=activity_id, result=result, invalidated=invalidated
    )

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Literal

ActivityType = Literal["material", "quiz"]


@dataclass(frozen=True, slots=True)
class CompletionRow:
    """One row of the flat course-structure report.

    A topic without activities still yields a row; its activity fields
    are all None.
    """

    topic_id: int
    topic_title: str
    topic_position: int
    activity_id: int | None = None
    activity_title: str | None = None
    activity_type: ActivityType | None = None
    activity_position: int | None = None
    is_completed: bool = False
    score: int | None = None

    @staticmethod
    def from_dict(data: Mapping[str, Any]) -> CompletionRow:
        return CompletionRow(
            topic_id=data.get("topic_id"),  # type: ignore[arg-type]
            topic_title=data.get("topic_title") or "",
            topic_position=data.get("topic_position") or 0,
            activity_id=data.get("activity_id"),
            activity_title=data.get("activity_title"),
            activity_type=data.get("activity_type"),
            activity_position=data.get("activity_position"),
            is_completed=bool(data.get("is_completed", False)),
            score=data.get("score"),
        )


@dataclass(frozen=True, slots=True)
class Activity:
    id: int
    title: str
    type: ActivityType
    position: int
    completed: bool = False
    score: int | None = None
    is_unlocked: bool = False


@dataclass(frozen=True, slots=True)
class Topic:
    id: int
    title: str
    position: int
    activities: tuple[Activity, ...] = ()
    is_completed: bool = False
    is_unlocked: bool = False


@dataclass(frozen=True, slots=True)
class NextActivity:
    """The activity behind the learner's "continue" button."""

    topic_id: int
    activity: Activity

    def route(self, course_id: int | str) -> str:
        kind = "quiz" if self.activity.type == "quiz" else "lesson"
        return f"/student/courses/{course_id}/{kind}/{self.activity.id}"


@dataclass(frozen=True, slots=True)
class CourseSummary:
    total_activities: int = 0
    completed_activities: int = 0
    progress_percent: int = 0


@dataclass(frozen=True, slots=True)
class CourseProgression:
    topics: list[Topic] = field(default_factory=list)
    next_activity: NextActivity | None = None
    summary: CourseSummary = CourseSummary()

    @property
    def is_finished(self) -> bool:
        return self.summary.total_activities > 0 and (
            self.summary.completed_activities == self.summary.total_activities
        )

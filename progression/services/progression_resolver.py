"""Unlock state and "next activity" for a course.

The input is the flat completion report produced by the course-structure
query: one row per (topic, activity) pair, or a single row with null
activity fields for a topic that has no activities yet.  The output is
rebuilt from scratch on every call; nothing is patched incrementally.

UNLOCK RULES
-------------
  topic completed  <=>  it has at least one activity and all are completed
  topic unlocked   <=>  it is the first topic, or the previous topic is
                        completed
  activity unlocked <=> it is completed, or it is the first incomplete
                        activity of the whole course and its topic is
                        unlocked

An empty topic can never be completed, so every topic after it stays
locked.  Activity completion is assumed to be monotonic upstream (an
activity never goes back to incomplete); the rules do not try to detect a
report that violates that.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import replace
from typing import Any

from progression.models.course import (
    Activity,
    CompletionRow,
    CourseProgression,
    CourseSummary,
    NextActivity,
    Topic,
)

logger = logging.getLogger(__name__)


def resolve(rows: Iterable[CompletionRow | Mapping[str, Any]]) -> list[Topic]:
    """Group, order and unlock a completion report."""
    topics = _group_rows(rows)
    topics.sort(key=lambda t: t.position)

    resolved: list[Topic] = []
    first_incomplete_claimed = False
    previous_completed = False

    for index, topic in enumerate(topics):
        activities = sorted(topic.activities, key=lambda a: a.position)
        is_completed = len(activities) > 0 and all(a.completed for a in activities)
        is_unlocked = index == 0 or previous_completed

        unlocked_activities = []
        for activity in activities:
            if activity.completed:
                activity_unlocked = True
            elif is_unlocked and not first_incomplete_claimed:
                activity_unlocked = True
                first_incomplete_claimed = True
            else:
                activity_unlocked = False
            unlocked_activities.append(replace(activity, is_unlocked=activity_unlocked))

        resolved.append(
            replace(
                topic,
                activities=tuple(unlocked_activities),
                is_completed=is_completed,
                is_unlocked=is_unlocked,
            )
        )
        previous_completed = is_completed

    logger.debug(
        "Resolved %d topics (%d unlocked)",
        len(resolved),
        sum(1 for t in resolved if t.is_unlocked),
    )
    return resolved


def _group_rows(rows: Iterable[CompletionRow | Mapping[str, Any]]) -> list[Topic]:
    grouped: dict[int, Topic] = {}
    activities: dict[int, list[Activity]] = {}

    for raw in rows:
        row = raw if isinstance(raw, CompletionRow) else CompletionRow.from_dict(raw)

        if row.topic_id not in grouped:
            grouped[row.topic_id] = Topic(
                id=row.topic_id, title=row.topic_title, position=row.topic_position
            )
            activities[row.topic_id] = []

        if row.activity_id is None:
            continue

        activities[row.topic_id].append(
            Activity(
                id=row.activity_id,
                title=row.activity_title or "",
                type=row.activity_type or "material",
                position=row.activity_position or 0,
                completed=row.is_completed,
                score=row.score,
            )
        )

    return [
        replace(topic, activities=tuple(activities[topic_id]))
        for topic_id, topic in grouped.items()
    ]


def find_next_activity(topics: Iterable[Topic]) -> NextActivity | None:
    """Return the first unlocked, incomplete activity in course order.

    None means either the course is finished or everything left is locked.
    """
    for topic in topics:
        for activity in topic.activities:
            if activity.is_unlocked and not activity.completed:
                return NextActivity(topic_id=topic.id, activity=activity)
    return None


def summarize(topics: Iterable[Topic]) -> CourseSummary:
    all_activities = [a for t in topics for a in t.activities]
    total = len(all_activities)
    completed = sum(1 for a in all_activities if a.completed)
    if total == 0:
        return CourseSummary()

    # round half up, matching how the percentage is shown to learners
    percent = (completed * 100 * 2 + total) // (total * 2)
    return CourseSummary(
        total_activities=total,
        completed_activities=completed,
        progress_percent=percent,
    )


def resolve_course(
    rows: Iterable[CompletionRow | Mapping[str, Any]],
) -> CourseProgression:
    topics = resolve(rows)
    return CourseProgression(
        topics=topics,
        next_activity=find_next_activity(topics),
        summary=summarize(topics),
    )

"""Gamification stats of the active learner.

The process mirrors one learner at a time (see ``StatsSyncManager``).
A session is opened with ``PUT /v1/stats/session`` and closed with
``DELETE``; in between the snapshot follows the backend's push
notifications.  ``/v1/stats/stream`` forwards every snapshot over a
WebSocket, starting with the current one.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Annotated

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from pydantic import BaseModel, Field

from progression.api.dependencies import get_stats_manager
from progression.models.stats import StatsSnapshot, level_progress
from progression.services.stats_sync import StatsSyncManager

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/stats", tags=["stats"])


class LevelProgressOut(BaseModel):
    level: int
    points_in_level: int
    points_to_next_level: int
    percent: int


class StatsOut(BaseModel):
    points: int
    level: int
    streak: int
    idle_rate: float
    next_level_points: int
    quizzes_completed: int
    perfect_scores: int
    total_time: int
    rank: int
    level_progress: LevelProgressOut


class SessionIn(BaseModel):
    user_id: str = Field(min_length=1)


class SessionOut(BaseModel):
    user_id: str | None
    stats: StatsOut


def stats_out(snapshot: StatsSnapshot) -> StatsOut:
    progress = level_progress(snapshot)
    return StatsOut(
        **snapshot.to_dict(),
        level_progress=LevelProgressOut(
            level=progress.level,
            points_in_level=progress.points_in_level,
            points_to_next_level=progress.points_to_next_level,
            percent=progress.percent,
        ),
    )


def _session_out(manager: StatsSyncManager) -> SessionOut:
    return SessionOut(
        user_id=manager.subscribed_user_id, stats=stats_out(manager.snapshot)
    )


@router.get("", response_model=StatsOut)
async def get_stats(
    manager: Annotated[StatsSyncManager, Depends(get_stats_manager)],
) -> StatsOut:
    return stats_out(manager.snapshot)


@router.put("/session", response_model=SessionOut)
async def open_session(
    body: SessionIn,
    manager: Annotated[StatsSyncManager, Depends(get_stats_manager)],
) -> SessionOut:
    await manager.setup_subscription(body.user_id)
    return _session_out(manager)


@router.delete("/session", response_model=SessionOut)
async def close_session(
    manager: Annotated[StatsSyncManager, Depends(get_stats_manager)],
) -> SessionOut:
    await manager.cleanup()
    return _session_out(manager)


@router.post("/refresh", response_model=SessionOut)
async def refresh_stats(
    manager: Annotated[StatsSyncManager, Depends(get_stats_manager)],
) -> SessionOut:
    await manager.refresh()
    return _session_out(manager)


@router.websocket("/stream")
async def stream_stats(
    websocket: WebSocket,
    manager: Annotated[StatsSyncManager, Depends(get_stats_manager)],
) -> None:
    await websocket.accept()
    queue: asyncio.Queue[StatsSnapshot] = asyncio.Queue()
    subscription = manager.subscribe(queue.put_nowait)

    async def pump() -> None:
        while True:
            snapshot = await queue.get()
            await websocket.send_json(stats_out(snapshot).model_dump())

    sender = asyncio.ensure_future(pump())
    try:
        # the client never sends anything meaningful; reading detects the close
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.debug("Stats stream closed by client")
    finally:
        subscription.unsubscribe()
        sender.cancel()
        await asyncio.gather(sender, return_exceptions=True)

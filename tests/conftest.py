from __future__ import annotations

import sys
from collections.abc import Iterator
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from progression.main import create_app
from progression.services.container import Services
from progression.services.realtime import InMemoryRealtimeTransport
from progression.services.rpc_client import InMemoryRpcClient

# Ensure repo root is on sys.path so `import progression` works under pytest.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

# Short enough to keep the suite fast, long enough to group a burst.
SETTLE_DELAY = 0.02


def course_row(
    topic_id: int,
    activity_id: int | None = None,
    *,
    topic_position: int | None = None,
    activity_position: int | None = None,
    activity_type: str = "material",
    completed: bool = False,
    score: int | None = None,
) -> dict:
    """One row of a ``get_course_structure`` report."""
    row = {
        "topic_id": topic_id,
        "topic_title": f"Topic {topic_id}",
        "topic_position": topic_position if topic_position is not None else topic_id,
        "activity_id": activity_id,
        "activity_title": None,
        "activity_type": None,
        "activity_position": None,
        "is_completed": completed,
        "score": score,
    }
    if activity_id is not None:
        row.update(
            activity_title=f"Activity {activity_id}",
            activity_type=activity_type,
            activity_position=(
                activity_position if activity_position is not None else activity_id
            ),
        )
    return row


@pytest.fixture
def rpc() -> InMemoryRpcClient:
    return InMemoryRpcClient()


@pytest.fixture
def transport() -> InMemoryRealtimeTransport:
    return InMemoryRealtimeTransport()


@pytest.fixture
def services(rpc: InMemoryRpcClient, transport: InMemoryRealtimeTransport) -> Services:
    return Services.create(rpc, transport, settle_delay=SETTLE_DELAY)


@pytest.fixture
def client(services: Services) -> Iterator[TestClient]:
    """A client whose lifespan (and event loop) spans the whole test."""
    with TestClient(create_app(services)) as test_client:
        yield test_client

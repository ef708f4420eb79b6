from __future__ import annotations

from fastapi.testclient import TestClient

from progression.services.rpc_client import InMemoryRpcClient
from tests.conftest import course_row

_STRUCTURE = [
    course_row(1, 10, completed=True, score=None),
    course_row(1, 11, activity_type="quiz"),
    course_row(2, 20),
    course_row(3),
]


def _register_course(rpc: InMemoryRpcClient, rows: list[dict]) -> None:
    rpc.register("get_course_structure", lambda p: rows)


def test_progression_resolves_course_structure(
    client: TestClient, rpc: InMemoryRpcClient
) -> None:
    _register_course(rpc, _STRUCTURE)

    resp = client.get("/v1/courses/7/progression")

    assert resp.status_code == 200
    body = resp.json()
    assert rpc.calls == [("get_course_structure", {"p_course_id": 7})]
    assert body["course_id"] == 7
    assert [t["id"] for t in body["topics"]] == [1, 2, 3]
    assert [t["is_unlocked"] for t in body["topics"]] == [True, False, False]
    assert [a["is_unlocked"] for a in body["topics"][0]["activities"]] == [True, True]
    assert body["topics"][2]["activities"] == []
    assert body["next_activity"] == {
        "topic_id": 1,
        "activity": {
            "id": 11,
            "title": "Activity 11",
            "type": "quiz",
            "position": 11,
            "completed": False,
            "score": None,
            "is_unlocked": True,
        },
        "route": "/student/courses/7/quiz/11",
    }
    assert body["summary"] == {
        "total_activities": 3,
        "completed_activities": 1,
        "progress_percent": 33,
    }
    assert body["is_finished"] is False


def test_progression_is_cached_until_refresh(
    client: TestClient, rpc: InMemoryRpcClient
) -> None:
    _register_course(rpc, _STRUCTURE)

    client.get("/v1/courses/7/progression")
    client.get("/v1/courses/7/progression")
    assert rpc.call_count("get_course_structure") == 1

    client.get("/v1/courses/7/progression", params={"refresh": "true"})
    assert rpc.call_count("get_course_structure") == 2

    client.get("/v1/courses/8/progression")
    assert rpc.call_count("get_course_structure") == 3


def test_empty_structure_has_no_next_activity(
    client: TestClient, rpc: InMemoryRpcClient
) -> None:
    rpc.register("get_course_structure", lambda p: None)

    body = client.get("/v1/courses/1/progression").json()

    assert body["topics"] == []
    assert body["next_activity"] is None
    assert body["summary"]["progress_percent"] == 0


def test_remote_failure_maps_to_bad_gateway(client: TestClient) -> None:
    resp = client.get("/v1/courses/1/progression")
    assert resp.status_code == 502
    assert resp.json()["detail"]["function"] == "get_course_structure"


def test_completing_material_invalidates_structure_and_refreshes_stats(
    client: TestClient, rpc: InMemoryRpcClient
) -> None:
    rows = [course_row(1, 10), course_row(1, 11)]
    _register_course(rpc, rows)
    rpc.register("get_my_stats", lambda p: {"points": 5 * rpc.call_count("get_my_stats")})

    def complete(params: dict) -> dict:
        rows[0] = course_row(1, params["p_activity_id"], completed=True)
        return {"awarded": 5}

    rpc.register("complete_material", complete)
    client.put("/v1/stats/session", json={"user_id": "u1"})
    first = client.get("/v1/courses/3/progression").json()
    assert first["next_activity"]["activity"]["id"] == 10

    resp = client.post(
        "/v1/courses/3/materials/10/complete", json={"time_spent": 120}
    )

    assert resp.status_code == 200
    assert resp.json() == {"activity_id": 10, "result": {"awarded": 5}, "invalidated": 1}
    assert ("complete_material", {"p_activity_id": 10, "p_time_spent": 120}) in rpc.calls
    assert rpc.call_count("get_my_stats") == 2
    assert client.get("/v1/stats").json()["points"] == 10

    after = client.get("/v1/courses/3/progression").json()
    assert rpc.call_count("get_course_structure") == 2
    assert after["next_activity"]["activity"]["id"] == 11
    assert after["summary"]["progress_percent"] == 50


def test_complete_material_failure_maps_to_bad_gateway(client: TestClient) -> None:
    resp = client.post("/v1/courses/3/materials/10/complete", json={})
    assert resp.status_code == 502
    assert resp.json()["detail"]["message"] == "function not found"


def test_complete_material_rejects_negative_time(client: TestClient) -> None:
    resp = client.post("/v1/courses/3/materials/10/complete", json={"time_spent": -1})
    assert resp.status_code == 422

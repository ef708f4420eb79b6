"""Demo: walk a learner through a two-topic course using FastAPI TestClient.

Everything runs against in-memory backends seeded below.

Run with:
    python scripts/demo_progression_flow.py
"""

from __future__ import annotations

from fastapi.testclient import TestClient

from progression.main import create_app
from progression.services.container import Services
from progression.services.realtime import InMemoryRealtimeTransport
from progression.services.rpc_client import InMemoryRpcClient

USER_ID = "demo-learner"
COURSE_ID = 1

# (topic_id, activity_id, type)
ACTIVITIES = [(1, 10, "material"), (1, 11, "quiz"), (2, 20, "material")]


def main() -> None:
    completed: set[int] = set()
    stats = {"points": 0, "level": 1}
    rpc = InMemoryRpcClient()

    def course_structure(params: dict) -> list[dict]:
        return [
            {
                "topic_id": topic_id,
                "topic_title": f"Topic {topic_id}",
                "topic_position": topic_id,
                "activity_id": activity_id,
                "activity_title": f"{kind.title()} {activity_id}",
                "activity_type": kind,
                "activity_position": activity_id,
                "is_completed": activity_id in completed,
                "score": None,
            }
            for topic_id, activity_id, kind in ACTIVITIES
        ]

    def complete_material(params: dict) -> dict:
        completed.add(params["p_activity_id"])
        stats["points"] += 5
        return {"points_earned": 5}

    def finish_quiz(params: dict) -> dict:
        completed.add(params["p_quiz_id"])
        stats["points"] += 16
        return {
            "score": 85,
            "points_earned": 16,
            "multipliers": {"quiz_multiplier": 1.1},
        }

    rpc.register("get_course_structure", course_structure)
    rpc.register("complete_material", complete_material)
    rpc.register("finish_quiz", finish_quiz)
    rpc.register("get_my_stats", lambda params: dict(stats))

    services = Services.create(rpc, InMemoryRealtimeTransport())
    with TestClient(create_app(services)) as client:
        # ── Step 1: open the stats session ──────────────────────────
        r = client.put("/v1/stats/session", json={"user_id": USER_ID})
        print(f"1. PUT  /v1/stats/session       -> {r.status_code}  points={r.json()['stats']['points']}")

        # ── Step 2: where to start ──────────────────────────────────
        r = client.get(f"/v1/courses/{COURSE_ID}/progression")
        print(f"2. GET  progression             -> next={r.json()['next_activity']['route']}")

        # ── Step 3: read the first material ─────────────────────────
        r = client.post(
            f"/v1/courses/{COURSE_ID}/materials/10/complete", json={"time_spent": 60}
        )
        print(f"3. POST materials/10/complete   -> {r.status_code}  invalidated={r.json()['invalidated']}")

        # ── Step 4: the quiz is next ────────────────────────────────
        r = client.get(f"/v1/courses/{COURSE_ID}/progression")
        print(f"4. GET  progression             -> next={r.json()['next_activity']['route']}")

        # ── Step 5: finish the quiz ─────────────────────────────────
        r = client.post("/v1/quizzes/11/finish", json={"answers": {"q1": "a"}, "time_spent": 45})
        body = r.json()
        print(
            f"5. POST quizzes/11/finish       -> final={body['breakdown']['final']}"
            f"  matches server={body['points_match']}"
        )

        # ── Step 6: second topic is open, stats followed along ──────
        r = client.get(f"/v1/courses/{COURSE_ID}/progression")
        summary = r.json()["summary"]
        print(f"6. GET  progression             -> {summary['progress_percent']}% complete")
        r = client.get("/v1/stats")
        print(f"7. GET  /v1/stats               -> points={r.json()['points']}")

        client.delete("/v1/stats/session")


if __name__ == "__main__":
    main()

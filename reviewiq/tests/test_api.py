import asyncio

import pytest
from fastapi.testclient import TestClient

from reviewiq.common.config import AppConfig, OrchestratorConfig
from reviewiq.main import Components, create_app
from reviewiq.review.models import Problem
from reviewiq.review.orchestrator import ReviewBatchOrchestrator

PREFIX = "/api/v1/review"


async def seed(store):
    await store.save_problem(Problem(id="p-mid", title="Merge Intervals", difficulty=5.0, category_name="arrays"))
    await store.save_problem(Problem(id="p-hard", title="Word Ladder", difficulty=8.0, category_name="graphs"))


@pytest.fixture
def client(store, service):
    asyncio.run(seed(store))
    orchestrator = ReviewBatchOrchestrator(service, config=OrchestratorConfig(enabled=False))
    app = create_app(AppConfig(env="testing"), components=Components(service, orchestrator))
    with TestClient(app) as test_client:
        yield test_client


def test_root(client):
    response = client.get("/")
    assert response.status_code == 200
    assert response.json() == {"message": "Welcome to ReviewIQ API"}


class TestDifficultyRoutes:

    def test_submit_feedback(self, client):
        response = client.post(f"{PREFIX}/feedback", json={
            "user_id": "u1", "problem_id": "p-mid", "feedback": "TOO_EASY", "response_time": 40
        })
        body = response.json()
        assert response.status_code == 200
        assert body["status"] == "success"
        assert body["data"]["feedback_id"]

    def test_unknown_problem_is_404(self, client):
        response = client.post(f"{PREFIX}/feedback", json={
            "user_id": "u1", "problem_id": "missing", "feedback": "TOO_HARD"
        })
        assert response.status_code == 404
        error = response.json()["error"]
        assert error["code"] == "not_found_error"
        assert error["exception_type"] == "NotFoundError"

    def test_malformed_body_is_422(self, client):
        response = client.post(f"{PREFIX}/feedback", json={
            "user_id": "u1", "problem_id": "p-mid", "feedback": "BORING"
        })
        assert response.status_code == 422

    def test_predict(self, client):
        response = client.post(f"{PREFIX}/difficulty/predict", json={"user_id": "u1", "problem_id": "p-mid"})
        data = response.json()["data"]
        assert response.status_code == 200
        assert data["predicted_difficulty"] == 5.0
        assert set(data["factors"]) == {"profile", "feedback", "pattern", "trend"}

    def test_manual_adjustment(self, client):
        response = client.post(f"{PREFIX}/difficulty/adjust", json={
            "problem_id": "p-hard", "adjustment_value": -1.5, "reason": "curriculum review"
        })
        assert response.status_code == 200
        assert response.json()["data"]["adjustment_id"]

    def test_profile_and_recommendations(self, client):
        profile = client.post(f"{PREFIX}/profiles/performance", json={"user_id": "u1", "is_correct": True})
        assert profile.json()["data"]["ideal_difficulty"] == pytest.approx(5.1)

        problems = client.get(f"{PREFIX}/problems/personalized/u1", params={"limit": 5}).json()["data"]
        assert problems[0]["problem_id"] == "p-mid"

        consistency = client.get(f"{PREFIX}/profiles/u1/consistency").json()["data"]
        assert 0.0 <= consistency["consistency_score"] <= 1.0


class TestScheduleRoutes:

    def test_review_cycle(self, client):
        first = client.post(f"{PREFIX}/reviews", json={"user_id": "u1", "problem_id": "p-mid", "is_success": True})
        assert first.status_code == 200
        first_item = first.json()["data"]
        assert first_item["current_level"] == "LEVEL_2"

        second = client.post(f"{PREFIX}/schedules/{first_item['id']}/complete", json={"is_success": True})
        second_item = second.json()["data"]
        assert second.status_code == 200
        assert second_item["current_level"] == "LEVEL_3"
        assert second_item["previous_schedule_id"] == first_item["id"]

        again = client.post(f"{PREFIX}/schedules/{first_item['id']}/complete", json={"is_success": True})
        assert again.status_code == 404

    def test_confidence_out_of_range(self, client):
        response = client.post(f"{PREFIX}/reviews", json={
            "user_id": "u1", "problem_id": "p-mid", "is_success": True, "confidence_level": 9
        })
        assert response.status_code == 422

    def test_generate_and_read_schedule(self, client):
        client.post(f"{PREFIX}/reviews", json={"user_id": "u1", "problem_id": "p-mid", "is_success": False})

        generated = client.post(f"{PREFIX}/schedules/generate", json={"user_id": "u1", "options": {"max_items": 5}})
        assert generated.status_code == 200
        assert [item["problem_id"] for item in generated.json()["data"]] == ["p-mid"]

        assert len(client.get(f"{PREFIX}/schedules/u1").json()["data"]) == 1
        stats = client.get(f"{PREFIX}/schedules/u1/stats").json()["data"]
        assert stats["total_scheduled"] == 1

        in_range = client.get(f"{PREFIX}/schedules/u1/range", params={
            "start": "2024-03-04T00:00:00", "end": "2024-03-05T00:00:00"
        })
        assert len(in_range.json()["data"]) == 1

    def test_invalid_options(self, client):
        response = client.post(f"{PREFIX}/schedules/generate", json={
            "user_id": "u1", "options": {"time_window": {"start_hour": 20, "end_hour": 8}}
        })
        assert response.status_code == 422
        assert response.json()["error"]["code"] == "validation_error"

    @pytest.mark.parametrize("options", [{"maxItems": 3}, {"time_window": {"start": 9}}])
    def test_unknown_option_keys(self, client, options):
        response = client.post(f"{PREFIX}/schedules/generate", json={"user_id": "u1", "options": options})
        assert response.status_code == 422
        assert response.json()["error"]["code"] == "validation_error"


class TestOrchestratorRoutes:

    def test_status(self, client):
        data = client.get(f"{PREFIX}/orchestrator/status").json()["data"]
        assert data["is_running"] is False
        assert data["running_jobs"] == []
        assert data["config"]["batch_size"] == 50

    def test_trigger_job(self, client):
        response = client.post(f"{PREFIX}/orchestrator/jobs/cache-cleanup")
        assert response.json()["data"] == {"job": "cache-cleanup", "outcome": "completed"}

    def test_unknown_job(self, client):
        response = client.post(f"{PREFIX}/orchestrator/jobs/reindex")
        assert response.status_code == 422
        assert response.json()["error"]["code"] == "validation_error"

    def test_batch_progress(self, client):
        client.post(f"{PREFIX}/orchestrator/jobs/daily-schedule-generation")
        assert client.get(f"{PREFIX}/orchestrator/batches/unknown").status_code == 404

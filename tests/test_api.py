from __future__ import annotations

import uuid
from datetime import UTC, datetime

from fastapi.testclient import TestClient

from meal_planner_api.app.models import Task, TaskStatus

from .fakes import FakeCompletionAdapter, InMemoryTaskStore

GENERATE_PAYLOAD = {"daysCount": 2, "meals": ["breakfast", "lunch"], "diet": "vegetarian"}


def test_health_endpoint(client: TestClient) -> None:
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "service": "meal-planner-api"}


def test_generate_wait_and_status_flow(client: TestClient) -> None:
    create_response = client.post("/meal-plan/generate", json=GENERATE_PAYLOAD)
    assert create_response.status_code == 201
    created = create_response.json()
    assert created["status"] == "pending"
    task_id = created["task_id"]

    first_status = client.get(f"/meal-plan/status/{task_id}")
    assert first_status.status_code == 200

    wait_response = client.get(f"/meal-plan/wait/{task_id}", params={"timeout": 5})
    assert wait_response.status_code == 200
    payload = wait_response.json()
    assert payload["id"] == task_id
    assert payload["status"] == "completed"
    assert "error" not in payload
    assert len(payload["result"]["days"]) == 2
    assert payload["result"]["shopping_list"][0] == {
        "label": "apple",
        "quantity": 2.0,
        "unit": "pcs",
    }
    assert set(payload["usage"]) == {"meal_plan", "shopping_list"}

    final_status = client.get(f"/meal-plan/status/{task_id}")
    assert final_status.json() == payload


def test_failed_task_reports_error_without_result(
    client: TestClient, adapter: FakeCompletionAdapter
) -> None:
    adapter.plan = RuntimeError("model overloaded")
    task_id = client.post("/meal-plan/generate", json=GENERATE_PAYLOAD).json()["task_id"]

    payload = client.get(f"/meal-plan/wait/{task_id}", params={"timeout": 5}).json()

    assert payload["status"] == "failed"
    assert payload["error"] == "model overloaded"
    assert "result" not in payload
    assert payload["usage"] == {}


def test_generate_rejects_unknown_fields(client: TestClient) -> None:
    response = client.post("/meal-plan/generate", json={**GENERATE_PAYLOAD, "servings": 4})
    assert response.status_code == 422
    assert response.json()["detail"][0]["loc"] == ["body", "servings"]


def test_generate_rejects_invalid_fields(client: TestClient, store: InMemoryTaskStore) -> None:
    response = client.post(
        "/meal-plan/generate", json={"daysCount": 0, "meals": ["brunch"], "diet": "vegan"}
    )
    assert response.status_code == 422
    locations = {tuple(error["loc"]) for error in response.json()["detail"]}
    assert ("body", "daysCount") in locations
    assert ("body", "meals", 0) in locations
    assert store.history == {}


def test_status_of_unknown_task_is_404(client: TestClient) -> None:
    task_id = str(uuid.uuid4())
    response = client.get(f"/meal-plan/status/{task_id}")
    assert response.status_code == 404
    assert response.json() == {"detail": f"Task {task_id} not found"}


def test_status_of_malformed_task_id_is_404(client: TestClient) -> None:
    assert client.get("/meal-plan/status/not-a-task").status_code == 404


def test_wait_returns_snapshot_on_timeout(client: TestClient, store: InMemoryTaskStore) -> None:
    task_id = str(uuid.uuid4())
    store.create_or_update(
        task_id, Task(id=task_id, status=TaskStatus.PENDING, created_at=datetime.now(tz=UTC))
    )

    response = client.get(f"/meal-plan/wait/{task_id}", params={"timeout": 0.1})

    assert response.status_code == 200
    assert response.json()["status"] == "pending"
    assert "result" not in response.json()


def test_wait_accepts_target_status(client: TestClient, store: InMemoryTaskStore) -> None:
    task_id = str(uuid.uuid4())
    store.create_or_update(
        task_id,
        Task(id=task_id, status=TaskStatus.IN_PROGRESS_PLAN, created_at=datetime.now(tz=UTC)),
    )

    response = client.get(
        f"/meal-plan/wait/{task_id}",
        params={"targetStatus": "in_progress_plan", "timeout": 5},
    )

    assert response.json()["status"] == "in_progress_plan"


def test_wait_rejects_invalid_query(client: TestClient) -> None:
    task_id = str(uuid.uuid4())
    assert client.get(f"/meal-plan/wait/{task_id}", params={"targetStatus": "done"}).status_code == 422
    assert client.get(f"/meal-plan/wait/{task_id}", params={"timeout": -1}).status_code == 422
    assert client.get(f"/meal-plan/wait/{task_id}", params={"timeout": 11}).status_code == 422


def test_wait_for_unknown_task_is_404(client: TestClient) -> None:
    response = client.get(f"/meal-plan/wait/{uuid.uuid4()}", params={"timeout": 0.05})
    assert response.status_code == 404


def test_generate_rejects_snake_case_field_names(client: TestClient) -> None:
    response = client.post(
        "/meal-plan/generate",
        json={"days_count": 2, "meals": ["lunch"], "diet": "vegan"},
    )
    assert response.status_code == 422
    locations = {tuple(error["loc"]) for error in response.json()["detail"]}
    assert ("body", "days_count") in locations

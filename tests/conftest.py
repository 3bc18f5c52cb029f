from __future__ import annotations

from collections.abc import Iterator

import pytest
from fastapi.testclient import TestClient

from meal_planner_api.app.config import Settings
from meal_planner_api.app.orchestrator import MealPlanOrchestrator

from .fakes import (
    FakeCompletionAdapter,
    InMemoryTaskStore,
    build_orchestrator,
    plan_completion,
    shopping_completion,
)


@pytest.fixture
def store() -> InMemoryTaskStore:
    return InMemoryTaskStore()


@pytest.fixture
def adapter() -> FakeCompletionAdapter:
    return FakeCompletionAdapter(plan=plan_completion(), shopping=shopping_completion())


@pytest.fixture
def orchestrator(
    store: InMemoryTaskStore, adapter: FakeCompletionAdapter
) -> Iterator[MealPlanOrchestrator]:
    instance = build_orchestrator(store, adapter)
    yield instance
    instance.shutdown(wait=True)


@pytest.fixture
def client(store: InMemoryTaskStore, adapter: FakeCompletionAdapter) -> Iterator[TestClient]:
    from meal_planner_api.main import create_app

    app = create_app(
        storage=store,
        llm_adapter=adapter,
        settings_override=Settings(poll_interval_s=0.01, wait_max_timeout_s=10.0),
    )
    with TestClient(app) as test_client:
        yield test_client

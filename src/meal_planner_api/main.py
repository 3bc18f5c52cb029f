"""FastAPI application wiring for the meal plan service.

Beginner terms used in this file:
- FastAPI app: the main web application object.
- Lifespan: code that runs once at startup (build collaborators) and shutdown.
- response_model: Pydantic model used to validate/shape API responses.
- app.state: a place to store shared runtime objects (store, orchestrator).
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware

from .app.config import Settings, get_settings
from .app.errors import TaskNotFoundError
from .app.generator import MealPlanGenerator
from .app.llm import CompletionAdapter, build_llm_adapter
from .app.models import MealPlanRequest, StartTaskResponse, Task, TaskStatus
from .app.orchestrator import MealPlanOrchestrator
from .app.shopping_list import ShoppingListAggregator
from .app.storage import PostgresTaskStore, TaskStore

logger = logging.getLogger(__name__)


def build_orchestrator(
    settings: Settings,
    *,
    storage: TaskStore | None = None,
    llm_adapter: CompletionAdapter | None = None,
) -> MealPlanOrchestrator:
    """Build the orchestrator, creating any collaborator that was not injected.

    Fails fast if required configuration is missing.
    """
    if storage is None:
        database_url = settings.resolved_database_url()
        if not database_url:
            raise RuntimeError(
                "Missing database URL. Set MEAL_PLANNER_DATABASE_URL "
                "or DATABASE_URL before starting the app."
            )
        storage = PostgresTaskStore(database_url, table_name=settings.table_name)
        storage.migrate()

    if llm_adapter is None:
        llm_adapter = build_llm_adapter(settings)
        if llm_adapter is None:
            raise RuntimeError(
                "No completion service configured. Set MEAL_PLANNER_OPENAI_API_KEY "
                "or OPENAI_API_KEY before starting the app."
            )

    return MealPlanOrchestrator(
        store=storage,
        generator=MealPlanGenerator(llm_adapter=llm_adapter, timeout_s=settings.llm_timeout_s),
        aggregator=ShoppingListAggregator(
            llm_adapter=llm_adapter, timeout_s=settings.llm_timeout_s
        ),
        max_workers=settings.pipeline_workers,
        poll_interval_s=settings.poll_interval_s,
    )


def create_app(
    *,
    storage: TaskStore | None = None,
    llm_adapter: CompletionAdapter | None = None,
    settings_override: Settings | None = None,
) -> FastAPI:
    """Application factory.

    Injected collaborators are used as-is, which is how tests run the app
    without PostgreSQL or the OpenAI API.
    """
    settings = settings_override or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Fresh orchestrator per startup: a stopped one cannot accept new pipelines.
        app.state.orchestrator = build_orchestrator(
            settings, storage=storage, llm_adapter=llm_adapter
        )
        logger.info("app event=startup service=%s", settings.app_name)
        yield
        app.state.orchestrator.shutdown(wait=False)
        del app.state.orchestrator
        logger.info("app event=shutdown service=%s", settings.app_name)

    app = FastAPI(title=settings.app_name, version="0.1.0", lifespan=lifespan)
    app.state.settings = settings
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    def _orchestrator(request: Request) -> MealPlanOrchestrator:
        return request.app.state.orchestrator

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok", "service": settings.app_name}

    # Request body is validated against MealPlanRequest (422 on bad or extra fields).
    @app.post("/meal-plan/generate", response_model=StartTaskResponse, status_code=201)
    def generate_meal_plan(payload: MealPlanRequest, request: Request) -> StartTaskResponse:
        return _orchestrator(request).start(payload)

    @app.get(
        "/meal-plan/status/{task_id}",
        response_model=Task,
        response_model_exclude_none=True,
    )
    def get_meal_plan_status(task_id: str, request: Request) -> Task:
        try:
            return _orchestrator(request).get_status(task_id)
        except TaskNotFoundError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc

    @app.get(
        "/meal-plan/wait/{task_id}",
        response_model=Task,
        response_model_exclude_none=True,
    )
    def wait_for_meal_plan(
        task_id: str,
        request: Request,
        target_status: TaskStatus | None = Query(default=None, alias="targetStatus"),
        timeout: float | None = Query(default=None, ge=0, le=settings.wait_max_timeout_s),
    ) -> Task:
        # Sync route: FastAPI runs it in its worker thread pool.
        timeout_s = settings.wait_default_timeout_s if timeout is None else timeout
        try:
            return _orchestrator(request).wait_for_completion(
                task_id, target_status=target_status, timeout_s=timeout_s
            )
        except TaskNotFoundError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc

    return app


# Module-level app for `uvicorn meal_planner_api.main:app`.
app = create_app()

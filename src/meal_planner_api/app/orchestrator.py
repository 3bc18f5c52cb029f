"""Meal plan task lifecycle.

Beginner terms:
- Task: one generation request, tracked by id in the durable store.
- Pipeline: the background job that runs plan generation, then the shopping list.
- Terminal status: COMPLETED or FAILED; nothing changes after that.
- Long poll: a request that waits server-side until a status or a timeout.

Every status change is written to the store before the next stage starts, and
every read goes back to the store. No task state is kept in memory between
calls, so a restarted process still reports the last persisted status.
"""

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import UTC, datetime

from .errors import TaskNotFoundError
from .generator import MealPlanGenerator
from .models import (
    MealPlanRequest,
    MealPlanResult,
    StartTaskResponse,
    Task,
    TaskStatus,
    TaskUsage,
)
from .shopping_list import ShoppingListAggregator
from .storage import TaskStore

logger = logging.getLogger(__name__)


class InvalidTransitionError(RuntimeError):
    """A pipeline tried to move a task backwards or out of a terminal status."""


class MealPlanOrchestrator:
    """Creates tasks, runs their pipelines in the background, and answers status queries."""

    def __init__(
        self,
        *,
        store: TaskStore,
        generator: MealPlanGenerator,
        aggregator: ShoppingListAggregator,
        max_workers: int = 16,
        poll_interval_s: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.store = store
        self.generator = generator
        self.aggregator = aggregator
        self.poll_interval_s = poll_interval_s
        self._clock = clock
        self._sleep = sleep
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="meal-plan")

    def start(self, meal_request: MealPlanRequest) -> StartTaskResponse:
        """Persist a PENDING task and schedule its pipeline; returns without waiting."""
        task_id = str(uuid.uuid4())
        task = Task(id=task_id, status=TaskStatus.PENDING, created_at=datetime.now(tz=UTC))
        # The row must exist before the pipeline is submitted.
        self.store.create_or_update(task_id, task)
        logger.info("meal_plan_task event=created task_id=%s status=%s", task_id, task.status)

        self._submit(task_id, meal_request)
        return StartTaskResponse(task_id=task_id, status=TaskStatus.PENDING)

    def get_status(self, task_id: str) -> Task:
        return self.store.read(task_id)

    def wait_for_completion(
        self,
        task_id: str,
        target_status: TaskStatus | None = None,
        timeout_s: float = 30.0,
    ) -> Task:
        """Poll until `target_status`, a terminal status, or the deadline.

        A missing task is treated as not visible yet and polled again. On
        timeout the latest snapshot is returned, terminal or not.
        """
        deadline = self._clock() + timeout_s
        while True:
            remaining = deadline - self._clock()
            if remaining <= 0:
                break
            try:
                task = self.get_status(task_id)
            except TaskNotFoundError:
                pass
            else:
                if task.status.terminal or (
                    target_status is not None and task.status is target_status
                ):
                    return task
            remaining = deadline - self._clock()
            if remaining <= 0:
                break
            self._sleep(min(self.poll_interval_s, remaining))

        logger.info(
            "meal_plan_task event=wait_timeout task_id=%s timeout_s=%s", task_id, timeout_s
        )
        return self.get_status(task_id)

    def shutdown(self, *, wait: bool = True) -> None:
        self._pool.shutdown(wait=wait, cancel_futures=not wait)

    def _submit(self, task_id: str, meal_request: MealPlanRequest) -> Future[None]:
        logger.info("meal_plan_task event=scheduled task_id=%s", task_id)
        return self._pool.submit(self.run_pipeline, task_id, meal_request)

    def run_pipeline(self, task_id: str, meal_request: MealPlanRequest) -> None:
        """Run plan generation then shopping-list generation for one task.

        Errors never escape: they are recorded on the task as FAILED.
        """
        try:
            logger.info("meal_plan_task event=pipeline_started task_id=%s", task_id)
            task = self.store.read(task_id)
            task.usage = TaskUsage()
            self._advance(task, TaskStatus.IN_PROGRESS_PLAN)

            plan, plan_usage = self.generator.generate(meal_request)
            task.usage.meal_plan = plan_usage
            self._advance(task, TaskStatus.IN_PROGRESS_SHOPPING)

            shopping_list, shopping_usage = self.aggregator.aggregate(plan)
            task.usage.shopping_list = shopping_usage
            task.result = MealPlanResult(days=plan.days, shopping_list=shopping_list)
            self._advance(task, TaskStatus.COMPLETED)
        except Exception as exc:  # noqa: BLE001
            logger.exception("meal_plan_task event=failed task_id=%s error=%s", task_id, exc)
            self._record_failure(task_id, exc)

    def _advance(self, task: Task, status: TaskStatus) -> None:
        if not task.status.can_advance_to(status):
            raise InvalidTransitionError(
                f"Task {task.id} cannot move from {task.status.value} to {status.value}"
            )
        task.status = status
        self.store.create_or_update(task.id, task)
        logger.info("meal_plan_task event=status_changed task_id=%s status=%s", task.id, status)

    def _record_failure(self, task_id: str, exc: Exception) -> None:
        # Re-read: earlier writes in this pipeline may not have landed.
        try:
            task = self.store.read(task_id)
            if task.status.terminal:
                logger.warning(
                    "meal_plan_task event=failure_ignored task_id=%s status=%s",
                    task_id,
                    task.status,
                )
                return
            task.status = TaskStatus.FAILED
            task.result = None
            task.error = str(exc) or type(exc).__name__
            self.store.create_or_update(task_id, task)
        except Exception:  # noqa: BLE001
            logger.exception("meal_plan_task event=failure_not_recorded task_id=%s", task_id)
            return
        logger.info("meal_plan_task event=status_changed task_id=%s status=%s", task_id, task.status)

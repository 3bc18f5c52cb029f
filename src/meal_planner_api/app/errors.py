"""Exception types raised by the domain layer.

The HTTP layer only ever sees `TaskNotFoundError` (mapped to 404); every other
error is caught at the pipeline boundary and recorded on the task as FAILED.
"""

from __future__ import annotations


class MealPlannerError(Exception):
    """Base class for service errors."""


class TaskNotFoundError(MealPlannerError):
    """Unknown task id, or the store could not be read."""

    def __init__(self, task_id: str) -> None:
        super().__init__(f"Task {task_id} not found")
        self.task_id = task_id


class PersistenceError(MealPlannerError):
    """The durable store rejected a write."""


class CompletionServiceError(MealPlannerError):
    """The completion API could not be reached or answered with an error."""


class MealPlanGenerationError(MealPlannerError):
    """Plan generation produced empty or unusable content."""

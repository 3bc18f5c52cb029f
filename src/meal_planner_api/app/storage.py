"""PostgreSQL storage backend for meal plan tasks.

Beginner terms:
- Upsert: insert a row, or update it in place when the key already exists.
- JSONB: PostgreSQL JSON type used for usage counters and the finished plan.
- Storage key: the value used as the table's primary key for a task id.
- Row factory: returns query rows as dict-like objects instead of tuples.
"""

from __future__ import annotations

import json
import logging
import threading
import uuid
from datetime import UTC, datetime
from typing import Any, Protocol

from .errors import PersistenceError, TaskNotFoundError
from .models import MealPlanResult, Task, TaskStatus, TaskUsage

logger = logging.getLogger(__name__)


class TaskStore(Protocol):
    def migrate(self) -> None: ...

    def create_or_update(self, task_id: str, task: Task) -> None: ...

    def read(self, task_id: str) -> Task: ...


def storage_key(task_id: str) -> uuid.UUID:
    """Map a task id to its primary key.

    The id itself is a UUID, so the key is just its canonical form. Raises
    ValueError for strings that are not UUIDs.
    """
    return uuid.UUID(task_id)


def task_to_row(task_id: str, task: Task) -> dict[str, Any]:
    """Project a Task onto table columns.

    `plan` is only written for completed tasks so a reader never sees a partial result.
    """
    plan = None
    if task.status is TaskStatus.COMPLETED and task.result is not None:
        plan = task.result.model_dump(mode="json")
    return {
        "id": storage_key(task_id),
        "status": task.status.value,
        "error": task.error,
        "usage": task.usage.model_dump(mode="json", exclude_none=True) if task.usage else None,
        "plan": plan,
        "created_at": task.created_at,
    }


def row_to_task(task_id: str, row: Any) -> Task:
    """Map one DB row back to the canonical Task model."""
    usage_raw = _parse_json_optional(row["usage"])
    plan_raw = _parse_json_optional(row["plan"])
    status = TaskStatus(row["status"] or TaskStatus.PENDING)
    return Task(
        id=task_id,
        status=status,
        created_at=_parse_datetime(row["created_at"]),
        error=row["error"],
        usage=TaskUsage.model_validate(usage_raw) if usage_raw is not None else None,
        result=(
            MealPlanResult.model_validate(plan_raw)
            if plan_raw is not None and status is TaskStatus.COMPLETED
            else None
        ),
    )


class PostgresTaskStore:
    """Thread-safe PostgreSQL-backed store for Task records."""

    def __init__(self, database_url: str, *, table_name: str = "meal_plans") -> None:
        if not database_url:
            raise ValueError("database_url is required")
        self.database_url = database_url
        self.table_name = table_name
        # Lock guards DB operations done through this store instance.
        self._lock = threading.Lock()
        # Lazy import helper keeps error message clear if psycopg is missing.
        self._psycopg, self._dict_row, self._json_wrapper = self._load_psycopg()

    def migrate(self) -> None:
        """Create the task table if it does not already exist."""
        with self._lock, self._connect() as conn:
            conn.execute(f"""
                CREATE TABLE IF NOT EXISTS {self.table_name} (
                    id UUID PRIMARY KEY,
                    status TEXT NOT NULL,
                    error TEXT,
                    usage JSONB,
                    plan JSONB,
                    created_at TIMESTAMPTZ NOT NULL,
                    updated_at TIMESTAMPTZ NOT NULL
                )
                """)
            conn.execute(f"""
                CREATE INDEX IF NOT EXISTS idx_{self.table_name}_status
                ON {self.table_name}(status)
                """)
            conn.commit()

    def create_or_update(self, task_id: str, task: Task) -> None:
        """Insert or overwrite the row for `task_id`; `created_at` of an existing row is kept."""
        try:
            row = task_to_row(task_id, task)
        except ValueError as exc:
            raise PersistenceError(f"Invalid task id {task_id!r}") from exc

        try:
            with self._lock, self._connect() as conn:
                conn.execute(
                    f"""
                    INSERT INTO {self.table_name} (
                        id, status, error, usage, plan, created_at, updated_at
                    ) VALUES (%s, %s, %s, %s, %s, %s, %s)
                    ON CONFLICT (id) DO UPDATE
                    SET status = EXCLUDED.status,
                        error = EXCLUDED.error,
                        usage = EXCLUDED.usage,
                        plan = EXCLUDED.plan,
                        updated_at = EXCLUDED.updated_at
                    """,
                    (
                        row["id"],
                        row["status"],
                        row["error"],
                        self._json_wrapper(row["usage"]) if row["usage"] is not None else None,
                        self._json_wrapper(row["plan"]) if row["plan"] is not None else None,
                        row["created_at"],
                        datetime.now(tz=UTC),
                    ),
                )
                conn.commit()
        except self._psycopg.Error as exc:
            logger.error(
                "task_store event=write_failed task_id=%s status=%s reason=%s",
                task_id,
                task.status.value,
                exc,
            )
            raise PersistenceError(f"Failed to save task status: {exc}") from exc
        logger.debug("task_store event=saved task_id=%s status=%s", task_id, task.status.value)

    def read(self, task_id: str) -> Task:
        """Read one task; absent rows and read failures both raise TaskNotFoundError."""
        try:
            key = storage_key(task_id)
        except ValueError as exc:
            raise TaskNotFoundError(task_id) from exc

        try:
            with self._lock, self._connect() as conn:
                row = conn.execute(
                    f"SELECT * FROM {self.table_name} WHERE id = %s",
                    (key,),
                ).fetchone()
        except self._psycopg.Error as exc:
            # Collapsed on purpose: clients cannot tell a broken store from a missing row.
            logger.error("task_store event=read_failed task_id=%s reason=%s", task_id, exc)
            raise TaskNotFoundError(task_id) from exc
        if row is None:
            raise TaskNotFoundError(task_id)
        try:
            return row_to_task(task_id, row)
        except (ValueError, TypeError) as exc:
            # Undecodable rows (unknown status, bad JSON) count as read failures too.
            logger.error("task_store event=read_failed task_id=%s reason=%s", task_id, exc)
            raise TaskNotFoundError(task_id) from exc

    def _connect(self) -> Any:
        """Open a psycopg connection that yields dict-like rows."""
        return self._psycopg.connect(self.database_url, row_factory=self._dict_row)

    @staticmethod
    def _load_psycopg() -> tuple[Any, Any, Any]:
        """Import psycopg and helpers with a friendly install hint on failure."""
        try:
            import psycopg
            from psycopg.rows import dict_row
            from psycopg.types.json import Jsonb
        except ImportError as exc:  # pragma: no cover - exercised only without dependency
            raise RuntimeError(
                "PostgreSQL backend requires psycopg. Install with: "
                'python -m pip install "psycopg[binary]>=3.2,<4.0"'
            ) from exc
        return psycopg, dict_row, Jsonb


def _parse_json_optional(raw: Any) -> Any:
    """Parse optional JSON-like value coming back from the driver."""
    if raw is None:
        return None
    if isinstance(raw, str | bytes):
        return json.loads(raw)
    return raw


def _parse_datetime(raw: Any) -> datetime:
    """Parse datetime value from database driver output."""
    if isinstance(raw, datetime):
        return raw
    if isinstance(raw, str):
        return datetime.fromisoformat(raw)
    raise TypeError(f"Unsupported datetime value: {type(raw)!r}")

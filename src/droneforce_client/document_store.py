"""Task document store contract and an in-memory implementation."""

from __future__ import annotations

import asyncio
from typing import Any, Protocol

from droneforce_client.exceptions import SettlementError
from droneforce_client.logging import get_logger
from droneforce_client.models import Task

logger = get_logger(__name__)

_FIELD_NAMES: dict[str, str] = {
    info.alias: name for name, info in Task.model_fields.items() if info.alias is not None
}


class TaskDocumentStore(Protocol):
    """External create/read/update store for task documents."""

    async def create(self, task: Task) -> None: ...

    async def read(self, task_id: str) -> Task | None: ...

    async def update(self, task_id: str, fields: dict[str, Any]) -> None: ...


class InMemoryTaskStore:
    """
    Process-local task store.

    Used in debug mode and tests. ``update`` takes snake_case or camelCase
    field names and re-validates the merged document, so an update that
    would break a model invariant is rejected and the stored task is left
    unchanged.
    """

    def __init__(self) -> None:
        self._tasks: dict[str, Task] = {}
        self._lock = asyncio.Lock()

    async def create(self, task: Task) -> None:
        async with self._lock:
            if task.id in self._tasks:
                raise SettlementError(
                    f"Task {task.id} already exists",
                    error="TASK_EXISTS",
                    details={"task_id": task.id},
                )
            self._tasks[task.id] = task
        logger.debug("Stored task", extra={"task_id": task.id})

    async def read(self, task_id: str) -> Task | None:
        return self._tasks.get(task_id)

    async def update(self, task_id: str, fields: dict[str, Any]) -> None:
        async with self._lock:
            current = self._tasks.get(task_id)
            if current is None:
                raise SettlementError(
                    f"Task {task_id} not found",
                    error="TASK_NOT_FOUND",
                    details={"task_id": task_id},
                )
            merged = current.model_dump()
            for key, value in fields.items():
                merged[_FIELD_NAMES.get(key, key)] = value
            self._tasks[task_id] = Task.model_validate(merged)
        logger.debug("Updated task", extra={"task_id": task_id, "fields": sorted(fields)})

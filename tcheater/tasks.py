"""Task source: read-only lookup of task metadata.

Checkpoints reference tasks by id. The task source is consulted to validate
those ids at the boundary (before they reach the store) and to show task
names and booked/estimated hours. It is never written to.

tasks.yaml format:

    tasks:
      - id: "4521"
        name: Checkout redesign
        time_spent: "12h"
        time_total: "40h"
      - id: "4519"
        name: Release 2.3 QA
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

import yaml

from tcheater.errors import (
    INVALID_ID,
    TASK_NOT_FOUND,
    TASK_SOURCE_FAILED,
    Result,
    TcheaterError,
    err,
    ok,
)
from tcheater.types import TaskId

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TaskMetadata:
    """What the task system tells us about a task."""

    id: TaskId
    name: str
    time_spent: str | None = None
    time_total: str | None = None

    @property
    def label(self) -> str:
        if self.time_spent and self.time_total:
            return f"{self.id} - {self.name} [{self.time_spent} / {self.time_total}]"
        if self.time_spent:
            return f"{self.id} - {self.name} [{self.time_spent}]"
        return f"{self.id} - {self.name}"


class TaskSource(Protocol):
    """Read-only task lookup."""

    async def lookup(self, task_id: TaskId) -> Result[TaskMetadata, TcheaterError]:
        ...

    async def list_tasks(self) -> Result[list[TaskMetadata], TcheaterError]:
        ...


def parse_task_id(raw: str | int | None) -> Result[TaskId | None, TcheaterError]:
    """Normalize a user-supplied task id.

    Empty input means "no task yet" and is allowed.
    """
    if raw is None:
        return ok(None)
    value = str(raw).strip()
    if not value:
        return ok(None)
    if any(ch.isspace() for ch in value):
        return err(
            TcheaterError(
                code=INVALID_ID,
                message=f"Task id must not contain whitespace: {value!r}",
                context={"task_id": value},
            )
        )
    return ok(TaskId(value))


def task_url(prefix: str | None, task_id: TaskId | None) -> str | None:
    """Link to a task in the task system's web UI."""
    if not prefix or not task_id:
        return None
    return f"{prefix}{task_id}"


def _sort_key(task: TaskMetadata) -> tuple[int, int | str]:
    # Numeric ids newest (highest) first, then anything non-numeric
    if task.id.isdigit():
        return (0, -int(task.id))
    return (1, task.id)


class YamlTaskSource:
    """Task source backed by a tasks.yaml file.

    The file is re-read when its mtime changes, so edits show up without
    restarting.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self._tasks: dict[TaskId, TaskMetadata] | None = None
        self._mtime: float | None = None

    def _load_sync(self) -> Result[dict[TaskId, TaskMetadata], TcheaterError]:
        try:
            mtime = self.path.stat().st_mtime
        except FileNotFoundError:
            logger.debug(f"No task file at {self.path}")
            return ok({})
        except OSError as e:
            return err(self._failure(e))

        if self._tasks is not None and self._mtime == mtime:
            return ok(self._tasks)

        try:
            with open(self.path, encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
            tasks = {}
            for entry in data.get("tasks", []):
                task = TaskMetadata(
                    id=TaskId(str(entry["id"])),
                    name=str(entry.get("name", "")),
                    time_spent=entry.get("time_spent"),
                    time_total=entry.get("time_total"),
                )
                tasks[task.id] = task
        except (OSError, yaml.YAMLError, KeyError, TypeError, AttributeError) as e:
            return err(self._failure(e))

        self._tasks = tasks
        self._mtime = mtime
        logger.debug(f"Loaded {len(tasks)} tasks from {self.path}")
        return ok(tasks)

    def _failure(self, error: Exception) -> TcheaterError:
        logger.error(f"Failed to read tasks from {self.path}: {error}")
        return TcheaterError(
            code=TASK_SOURCE_FAILED,
            message=f"Failed to read tasks from {self.path}: {error}",
            context={"path": str(self.path)},
        )

    async def lookup(self, task_id: TaskId) -> Result[TaskMetadata, TcheaterError]:
        loaded = await asyncio.to_thread(self._load_sync)
        if not loaded.ok:
            return loaded
        task = loaded.value.get(task_id)
        if task is None:
            return err(
                TcheaterError(
                    code=TASK_NOT_FOUND,
                    message=f"Task {task_id} not found",
                    context={"task_id": task_id},
                )
            )
        return ok(task)

    async def list_tasks(self) -> Result[list[TaskMetadata], TcheaterError]:
        loaded = await asyncio.to_thread(self._load_sync)
        if not loaded.ok:
            return loaded
        return ok(sorted(loaded.value.values(), key=_sort_key))

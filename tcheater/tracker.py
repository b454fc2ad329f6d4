"""The tracker context.

One Tracker owns the single CheckpointStore of a session together with the
reconciler, the task source and the project definitions. The CLI (or any
other front end) creates it once and passes it around; nothing in tcheater
reaches for a module-level instance.

User input enters through here so project and task ids are validated at
the boundary before they reach the store.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, time, timedelta
from pathlib import Path

from tcheater.checkpoint import Checkpoint, TimeWindow
from tcheater.config import Config
from tcheater.errors import TASK_SOURCE_FAILED, Result, TcheaterError, err, not_found, ok
from tcheater.projects import Project, find_project, load_projects, parse_project_id
from tcheater.reconciler import Reconciler, SyncReport
from tcheater.remote import RemoteStore, YamlDocumentStore
from tcheater.store import CheckpointStore, Subscriber
from tcheater.tasks import TaskMetadata, TaskSource, YamlTaskSource, parse_task_id, task_url
from tcheater.timemath import week_bounds, week_starts_in_month
from tcheater.types import LocalId, TaskId

logger = logging.getLogger(__name__)


@dataclass
class Tracker:
    """Explicitly owned session context."""

    config: Config
    store: CheckpointStore
    remote: RemoteStore
    tasks: TaskSource
    projects: list[Project] = field(default_factory=list)
    reconciler: Reconciler = field(init=False)

    def __post_init__(self) -> None:
        self.reconciler = Reconciler(self.store, self.remote)

    @classmethod
    def from_config(
        cls,
        config: Config,
        home: Path | None = None,
        remote: RemoteStore | None = None,
    ) -> Result[Tracker, TcheaterError]:
        """Build a tracker from configuration.

        Args:
            config: Loaded configuration
            home: tcheater home directory (defaults to TCHEATER_HOME / ~/.tcheater)
            remote: Remote store to use instead of the configured document store
        """
        validated = config.validate()
        if not validated.ok:
            return validated

        projects = load_projects(config.projects_path(home))
        if not projects.ok:
            return projects

        return ok(
            cls(
                config=config,
                store=CheckpointStore(config.granularity),
                remote=remote or YamlDocumentStore(config.remote_path(home)),
                tasks=YamlTaskSource(config.tasks_path(home)),
                projects=projects.value,
            )
        )

    # ------------------------------------------------------------------
    # Windows
    # ------------------------------------------------------------------

    def week_window(self, offset: int = 0, now: datetime | None = None) -> TimeWindow:
        """The week containing now, shifted by offset weeks."""
        now = now or datetime.now().astimezone()
        start, end = week_bounds(now, self.config.first_weekday_number)
        shift = timedelta(weeks=offset)
        return TimeWindow(start + shift, end + shift)

    def month_windows(self, month: int, now: datetime | None = None) -> list[TimeWindow]:
        """Weeks touching month of the current year, up to the current week."""
        now = now or datetime.now().astimezone()
        first_weekday = self.config.first_weekday_number
        windows = []
        for day in week_starts_in_month(now.year, month, first_weekday, until=now.date()):
            noon = datetime.combine(day, time(12), tzinfo=now.tzinfo)
            windows.append(TimeWindow(*week_bounds(noon, first_weekday)))
        return windows

    # ------------------------------------------------------------------
    # Boundary validation
    # ------------------------------------------------------------------

    async def _check_task(self, raw_task: str | None) -> Result[TaskId | None, TcheaterError]:
        parsed = parse_task_id(raw_task)
        if not parsed.ok or parsed.value is None:
            return parsed

        found = await self.tasks.lookup(parsed.value)
        if found.ok:
            return ok(found.value.id)
        if found.error.code == TASK_SOURCE_FAILED:
            # Task system down: accept the id unverified rather than block tracking
            logger.warning(f"Could not verify task {parsed.value}: {found.error.message}")
            return parsed
        return found

    # ------------------------------------------------------------------
    # Operations exposed to the UI layer
    # ------------------------------------------------------------------

    def snapshot(self, window: TimeWindow | None = None) -> tuple[Checkpoint, ...]:
        return self.store.snapshot(window)

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        return self.store.subscribe(callback)

    async def create(
        self,
        project: str,
        task: str | None,
        start: datetime,
        end: datetime,
        note: str | None = None,
    ) -> Result[LocalId, TcheaterError]:
        project_id = parse_project_id(project, self.projects)
        if not project_id.ok:
            return project_id
        task_id = await self._check_task(task)
        if not task_id.ok:
            return task_id
        return self.store.create(project_id.value, task_id.value, start, end, note)

    async def update(
        self,
        local_id: LocalId,
        start: datetime | None = None,
        end: datetime | None = None,
        note: str | None = None,
        project: str | None = None,
        task: str | None = None,
    ) -> Result[None, TcheaterError]:
        """Edit a checkpoint; arguments left as None keep their current value."""
        current = self.store.get(local_id)
        if current is None or current.is_deleted:
            return err(not_found(local_id))

        extra = {}
        if project is not None:
            project_id = parse_project_id(project, self.projects)
            if not project_id.ok:
                return project_id
            extra["project_id"] = project_id.value
        if task is not None:
            task_id = await self._check_task(task)
            if not task_id.ok:
                return task_id
            extra["task_id"] = task_id.value

        return self.store.update(
            local_id,
            start if start is not None else current.start,
            end if end is not None else current.end,
            note if note is not None else current.note,
            **extra,
        )

    def delete(self, local_id: LocalId) -> Result[None, TcheaterError]:
        return self.store.delete(local_id)

    def split(self, local_id: LocalId) -> Result[LocalId, TcheaterError]:
        return self.store.split(local_id)

    def shift(
        self,
        local_id: LocalId,
        start_delta: timedelta = timedelta(0),
        end_delta: timedelta = timedelta(0),
    ) -> Result[None, TcheaterError]:
        return self.store.shift(local_id, start_delta, end_delta)

    def toggle_registered(self, local_id: LocalId) -> Result[bool, TcheaterError]:
        return self.store.toggle_registered(local_id)

    def trigger_reconciliation(self) -> None:
        self.reconciler.trigger_reconciliation()

    async def sync(self, window: TimeWindow) -> SyncReport:
        return await self.reconciler.reconcile(window)

    # ------------------------------------------------------------------
    # Display helpers
    # ------------------------------------------------------------------

    def project(self, checkpoint: Checkpoint) -> Project | None:
        return find_project(self.projects, checkpoint.project_id)

    def task_url(self, checkpoint: Checkpoint) -> str | None:
        return task_url(self.config.task_url_prefix, checkpoint.task_id)

    async def list_tasks(self) -> Result[list[TaskMetadata], TcheaterError]:
        return await self.tasks.list_tasks()

    async def describe_task(self, task_id: TaskId | None) -> str | None:
        """Task label for display, or None when unknown."""
        if task_id is None:
            return None
        found = await self.tasks.lookup(task_id)
        return found.value.label if found.ok else None


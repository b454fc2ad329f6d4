"""Shared fixtures for tcheater tests."""

from datetime import datetime, timedelta, timezone

import pytest

from tcheater.checkpoint import RemoteCheckpoint, TimeWindow
from tcheater.remote import InMemoryRemoteStore
from tcheater.store import CheckpointStore
from tcheater.types import CheckpointId, ProjectId, TaskId

# Fixed offset so wall-clock arithmetic in tests never crosses a DST change
TZ = timezone(timedelta(hours=1))


def make_at(day: int = 12, hour: int = 9, minute: int = 0, second: int = 0) -> datetime:
    """An instant in January 2026 (the 12th is a Monday)."""
    return datetime(2026, 1, day, hour, minute, second, tzinfo=TZ)


@pytest.fixture
def at():
    """Factory for test instants: at(hour, minute, day=12)."""

    def factory(hour: int, minute: int = 0, day: int = 12, second: int = 0) -> datetime:
        return make_at(day, hour, minute, second)

    return factory


@pytest.fixture
def week() -> TimeWindow:
    """The week of Monday 2026-01-12."""
    return TimeWindow(make_at(12, 0), make_at(19, 0))


@pytest.fixture
def day() -> TimeWindow:
    """Monday 2026-01-12, midnight to midnight."""
    return TimeWindow(make_at(12, 0), make_at(13, 0))


@pytest.fixture
def store() -> CheckpointStore:
    return CheckpointStore(timedelta(minutes=15))


@pytest.fixture
def remote() -> InMemoryRemoteStore:
    return InMemoryRemoteStore()


@pytest.fixture
def remote_doc():
    """Factory for remote documents as another client would write them."""

    def factory(
        doc_id: str,
        start: datetime,
        end: datetime,
        project: str = "acme",
        task: str | None = "4521",
        note: str | None = "from elsewhere",
        revision: int = 1,
        registered: bool = False,
    ) -> RemoteCheckpoint:
        return RemoteCheckpoint(
            id=CheckpointId(doc_id),
            project_id=ProjectId(project),
            task_id=TaskId(task) if task is not None else None,
            start=start,
            end=end,
            note=note,
            registered=registered,
            revision=revision,
        )

    return factory

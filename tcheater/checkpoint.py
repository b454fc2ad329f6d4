"""Checkpoint model for tcheater.

A checkpoint is a time interval tagged with a project and (optionally) a
task. Instances are immutable; the store swaps whole instances on every
change, so any snapshot handed out stays valid forever.

Remote documents are plain dicts with ISO-8601 timestamps:

    id: 3f1c9a...
    project_id: acme
    task_id: "4521"
    start: "2026-01-12T09:00:00+01:00"
    end: "2026-01-12T10:00:00+01:00"
    note: code review
    registered: false
    revision: 3
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

from tcheater.types import CheckpointId, LocalId, ProjectId, TaskId


class SyncState(str, Enum):
    """Relationship of a local checkpoint to the remote store."""

    LOCAL = "local"  # never sent
    SYNCED = "synced"  # matches remote as of the last pass
    DIRTY = "dirty"  # edited since the last pass
    DELETED = "deleted"  # remote delete pending


PENDING_STATES = frozenset({SyncState.LOCAL, SyncState.DIRTY, SyncState.DELETED})


@dataclass(frozen=True)
class TimeWindow:
    """Half-open time range [start, end)."""

    start: datetime
    end: datetime

    def intersects(self, start: datetime, end: datetime) -> bool:
        return start < self.end and end > self.start

    def contains(self, instant: datetime) -> bool:
        return self.start <= instant < self.end


@dataclass(frozen=True)
class Checkpoint:
    """A recorded time interval."""

    local_id: LocalId
    project_id: ProjectId
    task_id: TaskId | None
    start: datetime
    end: datetime
    note: str | None = None
    id: CheckpointId | None = None
    registered: bool = False  # booked in the external task system
    sync_state: SyncState = SyncState.LOCAL
    revision: int | None = None  # last remote revision seen
    version: int = 0  # bumped on every accepted local edit

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    @property
    def is_pending(self) -> bool:
        return self.sync_state in PENDING_STATES

    @property
    def is_deleted(self) -> bool:
        return self.sync_state is SyncState.DELETED

    def intersects(self, start: datetime, end: datetime) -> bool:
        return self.start < end and self.end > start

    def with_changes(self, **changes: Any) -> Checkpoint:
        return replace(self, **changes)

    def color(self) -> str:
        """Terminal color for this checkpoint.

        Checkpoints without a note render grey so missing descriptions stand
        out. Otherwise the color is derived from the project id and lands in
        the 6x6x6 cube of the 256-color palette (16-231), stable across runs.
        """
        if not self.note:
            return "bright_black"
        digest = hashlib.sha1(self.project_id.encode("utf-8")).digest()
        return f"color({int.from_bytes(digest[:8], 'big') % 216 + 16})"

    def to_document(self) -> dict[str, Any]:
        """Fields persisted remotely (no local bookkeeping)."""
        return {
            "id": self.id,
            "project_id": self.project_id,
            "task_id": self.task_id,
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "note": self.note,
            "registered": self.registered,
        }


@dataclass(frozen=True)
class RemoteCheckpoint:
    """A checkpoint as the remote store knows it."""

    id: CheckpointId
    project_id: ProjectId
    task_id: TaskId | None
    start: datetime
    end: datetime
    note: str | None = None
    registered: bool = False
    revision: int = 0

    def to_document(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "task_id": self.task_id,
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "note": self.note,
            "registered": self.registered,
            "revision": self.revision,
        }

    @classmethod
    def from_document(cls, data: dict[str, Any]) -> RemoteCheckpoint:
        """Decode a stored document.

        Raises:
            KeyError, ValueError, TypeError: on malformed documents
        """
        task_id = data.get("task_id")
        return cls(
            id=CheckpointId(str(data["id"])),
            project_id=ProjectId(str(data["project_id"])),
            task_id=TaskId(str(task_id)) if task_id is not None else None,
            start=_parse_instant(data["start"]),
            end=_parse_instant(data["end"]),
            note=data.get("note"),
            registered=bool(data.get("registered", False)),
            revision=int(data.get("revision", 0)),
        )


def _parse_instant(value: Any) -> datetime:
    # yaml.safe_load already turns unquoted timestamps into datetimes
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))

"""Result type and error taxonomy for tcheater.

Expected failures (a rejected edit, an unreachable remote store, a stale id)
are values, not exceptions. Functions return ``Ok(value)`` or
``Err(TcheaterError)`` and callers branch on ``result.ok``.

Error codes
-----------
Validation (recoverable locally, no state change):
    INVALID_INTERVAL  start >= end after rounding
    OVERLAP           interval intersects an existing checkpoint
    INVALID_ID        malformed project/task identifier
    UNKNOWN_PROJECT   project id not in the configured definitions

Stale references:
    NOT_FOUND         mutating a checkpoint that does not exist

Sync (non-fatal, retried on the next reconciliation pass):
    SYNC_FAILED       unexpected failure while talking to the remote store
    REMOTE_UNAVAILABLE remote store could not be reached
    REMOTE_NOT_FOUND  remote document does not exist

Collaborators:
    TASK_NOT_FOUND    task source has no such task
    TASK_SOURCE_FAILED task source could not be read
    CONFIG_INVALID    configuration values are unusable
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Generic, NoReturn, TypeVar, Union

T = TypeVar("T")
E = TypeVar("E")

INVALID_INTERVAL = "INVALID_INTERVAL"
OVERLAP = "OVERLAP"
INVALID_ID = "INVALID_ID"
UNKNOWN_PROJECT = "UNKNOWN_PROJECT"
NOT_FOUND = "NOT_FOUND"
SYNC_FAILED = "SYNC_FAILED"
REMOTE_UNAVAILABLE = "REMOTE_UNAVAILABLE"
REMOTE_NOT_FOUND = "REMOTE_NOT_FOUND"
TASK_NOT_FOUND = "TASK_NOT_FOUND"
TASK_SOURCE_FAILED = "TASK_SOURCE_FAILED"
CONFIG_INVALID = "CONFIG_INVALID"


@dataclass(frozen=True)
class TcheaterError:
    """A recoverable error with a machine-readable code."""

    code: str
    message: str
    context: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Ok(Generic[T]):
    """Successful result."""

    value: T

    @property
    def ok(self) -> bool:
        return True

    @property
    def error(self) -> None:
        return None

    def is_ok(self) -> bool:
        return True

    def is_err(self) -> bool:
        return False

    def unwrap(self) -> T:
        return self.value

    def unwrap_err(self) -> NoReturn:
        raise ValueError(f"Called unwrap_err() on Ok: {self.value!r}")


@dataclass(frozen=True)
class Err(Generic[E]):
    """Failed result."""

    error: E

    @property
    def ok(self) -> bool:
        return False

    @property
    def value(self) -> None:
        return None

    def is_ok(self) -> bool:
        return False

    def is_err(self) -> bool:
        return True

    def unwrap(self) -> NoReturn:
        raise ValueError(f"Called unwrap() on Err: {self.error!r}")

    def unwrap_err(self) -> E:
        return self.error


Result = Union[Ok[T], Err[E]]


def ok(value: T) -> Ok[T]:
    """Wrap a value in Ok."""
    return Ok(value)


def err(error: E) -> Err[E]:
    """Wrap an error in Err."""
    return Err(error)


def format_error(error: TcheaterError | None) -> str:
    """Render an error for terminal output."""
    if error is None:
        return "Unknown error"
    return f"{error.message} ({error.code})"


# ============================================================================
# Constructors for the common cases
# ============================================================================


def invalid_interval(start: datetime, end: datetime) -> TcheaterError:
    return TcheaterError(
        code=INVALID_INTERVAL,
        message=f"Checkpoint must end after it starts ({start:%H:%M} - {end:%H:%M})",
        context={"start": start.isoformat(), "end": end.isoformat()},
    )


def overlap(
    local_id: int,
    remote_id: str | None,
    start: datetime,
    end: datetime,
) -> TcheaterError:
    return TcheaterError(
        code=OVERLAP,
        message=f"Overlaps checkpoint #{local_id} ({start:%H:%M} - {end:%H:%M})",
        context={
            "local_id": local_id,
            "id": remote_id,
            "start": start.isoformat(),
            "end": end.isoformat(),
        },
    )


def not_found(local_id: int) -> TcheaterError:
    return TcheaterError(
        code=NOT_FOUND,
        message=f"Checkpoint #{local_id} not found",
        context={"local_id": local_id},
    )


def sync_error(message: str, code: str = SYNC_FAILED, **context: Any) -> TcheaterError:
    return TcheaterError(code=code, message=message, context=context)


def remote_overlap(
    checkpoint_id: str,
    local_id: int,
    remote_id: str | None,
    start: datetime,
    end: datetime,
) -> TcheaterError:
    """A pulled document that would overlap checkpoint #local_id."""
    error = overlap(local_id, remote_id, start, end)
    return TcheaterError(
        code=OVERLAP,
        message=f"Remote checkpoint {checkpoint_id}: {error.message}",
        context={**error.context, "remote_id": checkpoint_id},
    )

"""Change notifications emitted by the checkpoint store.

Events are immutable dataclasses delivered to store subscribers after the
store lock is released. The rendering layer only needs to know that
something changed to recompute the timeline layout; the payload says what.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class CheckpointCreated:
    """Emitted when a user action adds a checkpoint.

    Attributes:
        timestamp: ISO format timestamp of the change
        local_id: Store id of the new checkpoint
    """

    timestamp: str
    local_id: int


@dataclass(frozen=True)
class CheckpointUpdated:
    """Emitted when a user action edits a checkpoint.

    Attributes:
        timestamp: ISO format timestamp of the change
        local_id: Store id of the edited checkpoint
        sync_state: State after the edit ("local" or "dirty")
    """

    timestamp: str
    local_id: int
    sync_state: str


@dataclass(frozen=True)
class CheckpointDeleted:
    """Emitted when a checkpoint leaves the visible set.

    Attributes:
        timestamp: ISO format timestamp of the change
        local_id: Store id of the checkpoint
        purged: True if removed outright, False if only marked for remote deletion
    """

    timestamp: str
    local_id: int
    purged: bool


@dataclass(frozen=True)
class CheckpointSynced:
    """Emitted when a push is confirmed.

    Attributes:
        timestamp: ISO format timestamp of the change
        local_id: Store id of the checkpoint
        checkpoint_id: Server id returned by the remote store
        sync_state: State after confirmation
    """

    timestamp: str
    local_id: int
    checkpoint_id: str
    sync_state: str


@dataclass(frozen=True)
class RemoteApplied:
    """Emitted when pulled remote state changed the store.

    Attributes:
        timestamp: ISO format timestamp of the change
        inserted: Local ids created from remote documents
        updated: Local ids overwritten by newer remote revisions
        purged: Local ids removed because the remote document is gone
    """

    timestamp: str
    inserted: tuple[int, ...]
    updated: tuple[int, ...]
    purged: tuple[int, ...]


# Union type for all events
StoreEvent = (
    CheckpointCreated
    | CheckpointUpdated
    | CheckpointDeleted
    | CheckpointSynced
    | RemoteApplied
)

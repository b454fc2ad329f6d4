"""Remote persisted store for checkpoints.

The reconciler talks to the remote side only through the RemoteStore
protocol: list a window, put a checkpoint, delete by id. Implementations
own their connections and return Results instead of raising for expected
failures (unreachable store, missing document).

Two implementations ship here:

- YamlDocumentStore: one YAML document per checkpoint in a directory,
  typically a synced folder or network mount shared between machines.
- InMemoryRemoteStore: dict-backed, with switches to simulate outages,
  used by the tests.
"""

from __future__ import annotations

import asyncio
import logging
import re
import uuid
from pathlib import Path
from typing import Protocol

import yaml

from tcheater.atomic import atomic_write_yaml
from tcheater.checkpoint import Checkpoint, RemoteCheckpoint, TimeWindow
from tcheater.errors import (
    REMOTE_UNAVAILABLE,
    Result,
    TcheaterError,
    err,
    ok,
    sync_error,
)
from tcheater.types import CheckpointId

logger = logging.getLogger(__name__)


class RemoteStore(Protocol):
    """Key-addressed CRUD service holding the durable checkpoint set."""

    async def list(self, window: TimeWindow) -> Result[list[RemoteCheckpoint], TcheaterError]:
        """Remote checkpoints intersecting window."""
        ...

    async def put(self, checkpoint: Checkpoint) -> Result[RemoteCheckpoint, TcheaterError]:
        """Create (no id yet) or overwrite (id set) a checkpoint."""
        ...

    async def delete(self, checkpoint_id: CheckpointId) -> Result[None, TcheaterError]:
        """Remove a checkpoint. Deleting a missing id succeeds."""
        ...


def new_checkpoint_id() -> CheckpointId:
    return CheckpointId(uuid.uuid4().hex)


def _to_remote(checkpoint: Checkpoint, checkpoint_id: CheckpointId, revision: int) -> RemoteCheckpoint:
    return RemoteCheckpoint(
        id=checkpoint_id,
        project_id=checkpoint.project_id,
        task_id=checkpoint.task_id,
        start=checkpoint.start,
        end=checkpoint.end,
        note=checkpoint.note,
        registered=checkpoint.registered,
        revision=revision,
    )


# ============================================================================
# In-memory implementation
# ============================================================================


class InMemoryRemoteStore:
    """Remote store kept in a dict.

    Attributes:
        unavailable: When True every call fails with REMOTE_UNAVAILABLE
        fail_puts: Local ids whose push fails
        fail_deletes: Server ids whose delete fails
        put_gate: If set, put() waits on it before writing (lets tests
            cancel a pass while a push is in flight)
        calls: Log of (operation, argument) tuples
    """

    def __init__(self) -> None:
        self.documents: dict[CheckpointId, RemoteCheckpoint] = {}
        self.unavailable = False
        self.fail_puts: set[int] = set()
        self.fail_deletes: set[CheckpointId] = set()
        self.put_gate: asyncio.Event | None = None
        self.calls: list[tuple[str, object]] = []

    def _outage(self) -> TcheaterError:
        return sync_error("Remote store unreachable", code=REMOTE_UNAVAILABLE)

    def seed(self, document: RemoteCheckpoint) -> None:
        """Store a document directly, as another client would."""
        self.documents[document.id] = document

    async def list(self, window: TimeWindow) -> Result[list[RemoteCheckpoint], TcheaterError]:
        self.calls.append(("list", window))
        if self.unavailable:
            return err(self._outage())
        found = [doc for doc in self.documents.values() if window.intersects(doc.start, doc.end)]
        return ok(sorted(found, key=lambda doc: doc.start))

    async def put(self, checkpoint: Checkpoint) -> Result[RemoteCheckpoint, TcheaterError]:
        self.calls.append(("put", checkpoint.local_id))
        if self.put_gate is not None:
            await self.put_gate.wait()
        if self.unavailable:
            return err(self._outage())
        if checkpoint.local_id in self.fail_puts:
            return err(sync_error(f"Push of #{checkpoint.local_id} rejected", local_id=checkpoint.local_id))

        checkpoint_id = checkpoint.id or new_checkpoint_id()
        previous = self.documents.get(checkpoint_id)
        document = _to_remote(checkpoint, checkpoint_id, previous.revision + 1 if previous else 1)
        self.documents[checkpoint_id] = document
        return ok(document)

    async def delete(self, checkpoint_id: CheckpointId) -> Result[None, TcheaterError]:
        self.calls.append(("delete", checkpoint_id))
        if self.unavailable:
            return err(self._outage())
        if checkpoint_id in self.fail_deletes:
            return err(sync_error(f"Delete of {checkpoint_id} rejected", id=checkpoint_id))
        self.documents.pop(checkpoint_id, None)
        return ok(None)


# ============================================================================
# Directory-of-YAML implementation
# ============================================================================


def _sanitize_id(raw_id: str) -> str:
    """Keep ids usable as file names without escaping the store directory."""
    sanitized = re.sub(r"[^a-zA-Z0-9_-]+", "-", raw_id).strip("-")
    return sanitized or "unnamed"


class YamlDocumentStore:
    """Remote store backed by a directory of YAML documents.

    Layout:
        <root>/<checkpoint id>.yaml

    Each put bumps the document's revision. File I/O runs in a worker
    thread so the event loop (and with it the UI) never blocks on a slow
    mount.
    """

    def __init__(self, root: Path):
        self.root = Path(root)

    def _path(self, checkpoint_id: str) -> Path:
        return self.root / f"{_sanitize_id(checkpoint_id)}.yaml"

    def _read(self, path: Path) -> RemoteCheckpoint:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError(f"expected a mapping, got {type(data).__name__}")
        return RemoteCheckpoint.from_document(data)

    def _list_sync(self, window: TimeWindow) -> Result[list[RemoteCheckpoint], TcheaterError]:
        if not self.root.exists():
            return ok([])

        found = []
        try:
            paths = sorted(self.root.glob("*.yaml"))
        except OSError as e:
            return err(sync_error(f"Cannot list {self.root}: {e}", code=REMOTE_UNAVAILABLE))

        for path in paths:
            try:
                document = self._read(path)
            except OSError as e:
                return err(sync_error(f"Cannot read {path}: {e}", code=REMOTE_UNAVAILABLE))
            except (yaml.YAMLError, KeyError, ValueError, TypeError) as e:
                # One broken document must not block the rest of the week
                logger.warning(f"Skipping corrupt checkpoint document {path.name}: {e}")
                continue
            if window.intersects(document.start, document.end):
                found.append(document)

        found.sort(key=lambda doc: doc.start)
        return ok(found)

    def _put_sync(self, checkpoint: Checkpoint) -> Result[RemoteCheckpoint, TcheaterError]:
        checkpoint_id = checkpoint.id or new_checkpoint_id()
        path = self._path(checkpoint_id)

        revision = 1
        if path.exists():
            try:
                revision = self._read(path).revision + 1
            except OSError as e:
                return err(sync_error(f"Cannot read {path}: {e}", code=REMOTE_UNAVAILABLE))
            except (yaml.YAMLError, KeyError, ValueError, TypeError) as e:
                logger.warning(f"Overwriting corrupt document {path.name}: {e}")

        document = _to_remote(checkpoint, checkpoint_id, revision)
        written = atomic_write_yaml(path, document.to_document(), mode=0o644)
        if not written.ok:
            return err(
                sync_error(
                    written.error.message,
                    code=REMOTE_UNAVAILABLE,
                    **written.error.context,
                )
            )
        return ok(document)

    def _delete_sync(self, checkpoint_id: CheckpointId) -> Result[None, TcheaterError]:
        path = self._path(checkpoint_id)
        try:
            path.unlink()
        except FileNotFoundError:
            logger.debug(f"Delete of missing document {checkpoint_id} treated as success")
        except OSError as e:
            return err(sync_error(f"Cannot delete {path}: {e}", code=REMOTE_UNAVAILABLE))
        return ok(None)

    async def list(self, window: TimeWindow) -> Result[list[RemoteCheckpoint], TcheaterError]:
        return await asyncio.to_thread(self._list_sync, window)

    async def put(self, checkpoint: Checkpoint) -> Result[RemoteCheckpoint, TcheaterError]:
        return await asyncio.to_thread(self._put_sync, checkpoint)

    async def delete(self, checkpoint_id: CheckpointId) -> Result[None, TcheaterError]:
        return await asyncio.to_thread(self._delete_sync, checkpoint_id)

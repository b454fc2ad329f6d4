"""Reconciliation between the checkpoint store and the remote store.

One pass:

1. List the remote checkpoints for the active window.
2. Split the store's pending entries into pushes (LOCAL/DIRTY) and
   deletes (DELETED).
3. Push each; a confirmed push marks the entry SYNCED unless it was edited
   while the request was in flight.
4. Delete each; success or "not found" purges the entry locally.
5. Merge the listing from step 1 into the store. A DIRTY local entry beats
   a newer remote revision: the user's last edit is authoritative and
   overwrites the remote copy on the next push.

Every checkpoint is handled on its own. A failed push or delete is recorded
in the SyncReport and retried on the next pass; it never stops the rest of
the pass and never blocks local editing.

The store is only touched through its synchronous methods, between awaits,
so no store lock is ever held while waiting on the network. Cancelling a
pass (shutdown) aborts the in-flight request before its result is applied:
nothing gets marked SYNCED that the remote store has not confirmed.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, TypeVar

from tcheater.checkpoint import SyncState, TimeWindow
from tcheater.errors import REMOTE_NOT_FOUND, Result, TcheaterError, err, sync_error
from tcheater.remote import RemoteStore
from tcheater.store import ApplyResult, CheckpointStore
from tcheater.types import CheckpointId, LocalId

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class SyncReport:
    """What one reconciliation pass did."""

    timestamp: str
    window: TimeWindow
    pushed: tuple[LocalId, ...] = ()
    deleted: tuple[LocalId, ...] = ()
    applied: ApplyResult | None = None  # None when the remote listing failed
    errors: tuple[TcheaterError, ...] = ()

    @property
    def ok(self) -> bool:
        return not self.errors

    @property
    def is_noop(self) -> bool:
        """True if the pass changed nothing locally or remotely."""
        return (
            not self.pushed
            and not self.deleted
            and (self.applied is None or not self.applied.changed)
        )

    @property
    def summary(self) -> str:
        parts = []
        if self.pushed:
            parts.append(f"{len(self.pushed)} pushed")
        if self.deleted:
            parts.append(f"{len(self.deleted)} deleted")
        if self.applied is not None:
            pulled = len(self.applied.inserted) + len(self.applied.updated)
            if pulled:
                parts.append(f"{pulled} pulled")
            if self.applied.purged:
                parts.append(f"{len(self.applied.purged)} removed remotely")
            if self.applied.conflicts:
                parts.append(f"{len(self.applied.conflicts)} conflicts")
        if self.errors:
            parts.append(f"{len(self.errors)} errors")
        return ", ".join(parts) if parts else "up to date"


class Reconciler:
    """Synchronizes a CheckpointStore with a RemoteStore."""

    def __init__(self, store: CheckpointStore, remote: RemoteStore):
        self.store = store
        self.remote = remote
        self.last_report: SyncReport | None = None
        self._wake = asyncio.Event()
        self._task: asyncio.Task | None = None

    @property
    def pending_count(self) -> int:
        """Entries not yet confirmed by the remote store."""
        return self.store.pending_count()

    def status(self) -> str:
        """One-line sync indicator for the UI."""
        pending = self.pending_count
        if self.last_report is not None and self.last_report.errors:
            first = self.last_report.errors[0]
            return f"{pending} pending sync ({first.message})"
        if pending:
            return f"{pending} pending sync"
        return "synced"

    async def _call(
        self,
        operation: Callable[..., Awaitable[Result[T, TcheaterError]]],
        *args: Any,
    ) -> Result[T, TcheaterError]:
        """Await a remote operation, turning unexpected exceptions into SyncErrors.

        CancelledError is not an Exception and propagates.
        """
        try:
            return await operation(*args)
        except Exception as e:
            logger.exception(f"Remote {operation.__name__} failed")
            return err(sync_error(f"Remote {operation.__name__} failed: {e}"))

    async def reconcile(self, window: TimeWindow) -> SyncReport:
        """Run one reconciliation pass for window."""
        errors: list[TcheaterError] = []

        listed = await self._call(self.remote.list, window)
        if not listed.ok:
            logger.warning(f"Remote listing failed: {listed.error.message}")
            errors.append(listed.error)

        pending = self.store.pending()
        to_push = [c for c in pending if c.sync_state in (SyncState.LOCAL, SyncState.DIRTY)]
        to_delete = [c for c in pending if c.sync_state is SyncState.DELETED]

        pushed: list[LocalId] = []
        touched_ids: set[CheckpointId] = set()
        for checkpoint in to_push:
            result = await self._call(self.remote.put, checkpoint)
            if not result.ok:
                logger.warning(f"Push of #{checkpoint.local_id} failed: {result.error.message}")
                errors.append(result.error)
                continue

            document = result.value
            touched_ids.add(document.id)
            marked = self.store.mark_synced(checkpoint.local_id, document, checkpoint.version)
            if marked.ok:
                pushed.append(checkpoint.local_id)
                continue

            # Purged while the push was in flight; don't leave an orphan remotely
            logger.info(f"#{checkpoint.local_id} vanished during push, removing {document.id}")
            cleanup = await self._call(self.remote.delete, document.id)
            if not cleanup.ok and cleanup.error.code != REMOTE_NOT_FOUND:
                errors.append(cleanup.error)

        deleted: list[LocalId] = []
        for checkpoint in to_delete:
            if checkpoint.id is not None:
                result = await self._call(self.remote.delete, checkpoint.id)
                if not result.ok and result.error.code != REMOTE_NOT_FOUND:
                    logger.warning(f"Delete of #{checkpoint.local_id} failed: {result.error.message}")
                    errors.append(result.error)
                    continue
                touched_ids.add(checkpoint.id)
            if self.store.purge(checkpoint.local_id).ok:
                deleted.append(checkpoint.local_id)

        applied = None
        if listed.ok:
            applied = self.store.apply_remote(listed.value, window, exclude_ids=touched_ids)

        report = SyncReport(
            timestamp=datetime.now(UTC).isoformat(),
            window=window,
            pushed=tuple(pushed),
            deleted=tuple(deleted),
            applied=applied,
            errors=tuple(errors),
        )
        self.last_report = report
        if report.is_noop:
            logger.debug("Reconciliation pass: up to date")
        else:
            logger.info(f"Reconciliation pass: {report.summary}")
        return report

    # ------------------------------------------------------------------
    # Background operation
    # ------------------------------------------------------------------

    def trigger_reconciliation(self) -> None:
        """Ask the background loop to run a pass now."""
        self._wake.set()

    def start(self, window_provider: Callable[[], TimeWindow], interval: float) -> asyncio.Task:
        """Run passes every interval seconds (and on trigger) until stopped.

        Must be called from within a running event loop.
        """
        if self._task is not None and not self._task.done():
            return self._task
        self._task = asyncio.create_task(self._run(window_provider, interval))
        return self._task

    async def stop(self) -> None:
        """Cancel the background loop and wait for it to finish."""
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None

    async def _run(self, window_provider: Callable[[], TimeWindow], interval: float) -> None:
        while True:
            self._wake.clear()
            try:
                await self.reconcile(window_provider())
            except Exception:
                # Keep the loop alive; the next pass retries everything pending
                logger.error("Reconciliation pass crashed", exc_info=True)

            try:
                await asyncio.wait_for(self._wake.wait(), timeout=interval)
            except TimeoutError:
                pass

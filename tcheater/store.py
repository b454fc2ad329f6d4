"""In-memory checkpoint store.

The store owns the canonical set of checkpoints for the active time window
and enforces the invariants the rest of the system relies on:

- no two non-deleted checkpoints overlap on [start, end)
- start/end are always rounded to the configured granularity
- a server id maps to at most one entry

Non-deleted entries are kept in a list sorted by (start, local_id). Because
they are pairwise disjoint, an overlap check only has to look at the
immediate predecessor and successor of the candidate's insertion point.

Every operation runs under one re-entrant lock and never performs I/O, so
the reconciler can call in from another task or thread without holding the
lock across a network round trip. Subscribers are notified after the lock
has been released.
"""

from __future__ import annotations

import logging
import threading
from bisect import bisect_left, insort
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

from tcheater.checkpoint import Checkpoint, RemoteCheckpoint, SyncState, TimeWindow
from tcheater.errors import (
    Result,
    TcheaterError,
    err,
    invalid_interval,
    not_found,
    ok,
    overlap,
    remote_overlap,
)
from tcheater.events import (
    CheckpointCreated,
    CheckpointDeleted,
    CheckpointSynced,
    CheckpointUpdated,
    RemoteApplied,
    StoreEvent,
)
from tcheater.timemath import DEFAULT_GRANULARITY, check_granularity, count_units, round_instant
from tcheater.types import CheckpointId, LocalId, ProjectId, TaskId

logger = logging.getLogger(__name__)

Subscriber = Callable[[StoreEvent], None]

# Sentinel for "leave this field alone" in update()
_KEEP: Any = object()


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


@dataclass(frozen=True)
class ApplyResult:
    """Outcome of merging remote state into the store."""

    inserted: tuple[LocalId, ...] = ()
    updated: tuple[LocalId, ...] = ()
    purged: tuple[LocalId, ...] = ()
    kept_local: tuple[LocalId, ...] = ()  # dirty entries that won over a remote change
    conflicts: tuple[TcheaterError, ...] = ()  # remote entries not applied

    @property
    def changed(self) -> bool:
        return bool(self.inserted or self.updated or self.purged)


class CheckpointStore:
    """Owner of the in-memory checkpoint set."""

    def __init__(self, granularity: timedelta = DEFAULT_GRANULARITY):
        check_granularity(granularity)
        self.granularity = granularity
        self._lock = threading.RLock()
        self._entries: dict[LocalId, Checkpoint] = {}
        self._active: list[tuple[datetime, LocalId]] = []
        self._by_remote: dict[CheckpointId, LocalId] = {}
        self._next_id = 1
        self._subscribers: list[Subscriber] = []

    def __len__(self) -> int:
        with self._lock:
            return len(self._active)

    # ------------------------------------------------------------------
    # Notification
    # ------------------------------------------------------------------

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register a change listener.

        Returns:
            A function that removes the listener again
        """
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def _emit(self, event: StoreEvent) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(event)
            except Exception:
                logger.exception(f"Store subscriber failed on {type(event).__name__}")

    # ------------------------------------------------------------------
    # Internal index maintenance (caller holds the lock)
    # ------------------------------------------------------------------

    def _allocate_id(self) -> LocalId:
        local_id = LocalId(self._next_id)
        self._next_id += 1
        return local_id

    def _index(self, checkpoint: Checkpoint) -> None:
        self._entries[checkpoint.local_id] = checkpoint
        if not checkpoint.is_deleted:
            insort(self._active, (checkpoint.start, checkpoint.local_id))
        if checkpoint.id is not None:
            self._by_remote[checkpoint.id] = checkpoint.local_id

    def _unindex(self, checkpoint: Checkpoint) -> None:
        del self._entries[checkpoint.local_id]
        if not checkpoint.is_deleted:
            key = (checkpoint.start, checkpoint.local_id)
            idx = bisect_left(self._active, key)
            if idx < len(self._active) and self._active[idx] == key:
                del self._active[idx]
        if checkpoint.id is not None and self._by_remote.get(checkpoint.id) == checkpoint.local_id:
            del self._by_remote[checkpoint.id]

    def _replace(self, old: Checkpoint, new: Checkpoint) -> None:
        self._unindex(old)
        self._index(new)

    def _find_conflict(
        self,
        start: datetime,
        end: datetime,
        exclude: LocalId | None = None,
    ) -> Checkpoint | None:
        """Return a non-deleted checkpoint intersecting [start, end), if any.

        When both neighbours intersect, the earlier one is reported.
        """
        idx = bisect_left(self._active, (start,))

        before = idx - 1
        while before >= 0 and self._active[before][1] == exclude:
            before -= 1
        if before >= 0:
            predecessor = self._entries[self._active[before][1]]
            if predecessor.end > start:
                return predecessor

        after = idx
        while after < len(self._active) and self._active[after][1] == exclude:
            after += 1
        if after < len(self._active):
            successor = self._entries[self._active[after][1]]
            if successor.start < end:
                return successor

        return None

    def _validate(
        self,
        start: datetime,
        end: datetime,
        exclude: LocalId | None = None,
    ) -> Result[tuple[datetime, datetime], TcheaterError]:
        start = round_instant(start, self.granularity)
        end = round_instant(end, self.granularity)
        if start >= end:
            return err(invalid_interval(start, end))

        conflict = self._find_conflict(start, end, exclude)
        if conflict is not None:
            return err(overlap(conflict.local_id, conflict.id, conflict.start, conflict.end))
        return ok((start, end))

    def _live(self, local_id: LocalId) -> Checkpoint | None:
        checkpoint = self._entries.get(local_id)
        if checkpoint is None or checkpoint.is_deleted:
            return None
        return checkpoint

    # ------------------------------------------------------------------
    # User mutations
    # ------------------------------------------------------------------

    def create(
        self,
        project_id: ProjectId,
        task_id: TaskId | None,
        start: datetime,
        end: datetime,
        note: str | None = None,
    ) -> Result[LocalId, TcheaterError]:
        """Add a new LOCAL checkpoint.

        Args:
            project_id: Project the time belongs to
            task_id: Task within the project, if already known
            start: Interval start (rounded before validation)
            end: Interval end (rounded before validation)
            note: Free-form description

        Returns:
            Ok(local_id), or Err with INVALID_INTERVAL / OVERLAP. A rejected
            create leaves the store untouched.
        """
        with self._lock:
            validated = self._validate(start, end)
            if not validated.ok:
                logger.debug(f"Create rejected: {validated.error.message}")
                return validated
            start, end = validated.value

            checkpoint = Checkpoint(
                local_id=self._allocate_id(),
                project_id=project_id,
                task_id=task_id,
                start=start,
                end=end,
                note=note,
            )
            self._index(checkpoint)

        logger.debug(f"Created checkpoint #{checkpoint.local_id} {start} - {end}")
        self._emit(CheckpointCreated(timestamp=_now_iso(), local_id=checkpoint.local_id))
        return ok(checkpoint.local_id)

    def _edit_locked(self, current: Checkpoint, **changes: Any) -> Result[Checkpoint, TcheaterError]:
        start = changes.pop("start", current.start)
        end = changes.pop("end", current.end)
        validated = self._validate(start, end, exclude=current.local_id)
        if not validated.ok:
            return validated
        start, end = validated.value

        state = SyncState.LOCAL if current.sync_state is SyncState.LOCAL else SyncState.DIRTY
        updated = current.with_changes(
            start=start,
            end=end,
            sync_state=state,
            version=current.version + 1,
            **changes,
        )
        self._replace(current, updated)
        return ok(updated)

    def _edit(
        self,
        local_id: LocalId,
        changes: Callable[[Checkpoint], dict[str, Any]],
    ) -> Result[Checkpoint, TcheaterError]:
        with self._lock:
            current = self._live(local_id)
            if current is None:
                return err(not_found(local_id))
            edited = self._edit_locked(current, **changes(current))
            if not edited.ok:
                logger.debug(f"Edit of #{local_id} rejected: {edited.error.message}")
                return edited

        self._emit(
            CheckpointUpdated(
                timestamp=_now_iso(),
                local_id=local_id,
                sync_state=edited.value.sync_state.value,
            )
        )
        return edited

    def update(
        self,
        local_id: LocalId,
        start: datetime,
        end: datetime,
        note: str | None,
        *,
        project_id: ProjectId = _KEEP,
        task_id: TaskId | None = _KEEP,
        registered: bool = _KEEP,
    ) -> Result[None, TcheaterError]:
        """Edit a checkpoint.

        Validation matches create(), with the checkpoint itself excluded from
        the overlap check. SYNCED entries become DIRTY; LOCAL stays LOCAL.

        Returns:
            Ok(None), or Err with NOT_FOUND / INVALID_INTERVAL / OVERLAP
        """
        changes: dict[str, Any] = {"start": start, "end": end, "note": note}
        if project_id is not _KEEP:
            changes["project_id"] = project_id
        if task_id is not _KEEP:
            changes["task_id"] = task_id
        if registered is not _KEEP:
            changes["registered"] = registered

        edited = self._edit(local_id, lambda current: dict(changes))
        if not edited.ok:
            return edited
        return ok(None)

    def shift(
        self,
        local_id: LocalId,
        start_delta: timedelta = timedelta(0),
        end_delta: timedelta = timedelta(0),
    ) -> Result[None, TcheaterError]:
        """Move a checkpoint's start and/or end by the given amounts."""
        edited = self._edit(
            local_id,
            lambda current: {"start": current.start + start_delta, "end": current.end + end_delta},
        )
        if not edited.ok:
            return edited
        return ok(None)

    def toggle_registered(self, local_id: LocalId) -> Result[bool, TcheaterError]:
        """Flip the registered flag. Returns the new value."""
        edited = self._edit(local_id, lambda current: {"registered": not current.registered})
        if not edited.ok:
            return edited
        return ok(edited.value.registered)

    def split(self, local_id: LocalId) -> Result[LocalId, TcheaterError]:
        """Cut a checkpoint in two at its midpoint on the granularity grid.

        With an odd number of units the first half gets the extra one. The
        original keeps the first half; the second half becomes a new
        LOCAL checkpoint with the same project, task and note.

        Returns:
            Ok(local_id of the second half), or Err when the checkpoint is
            too short to split on the granularity grid.
        """
        with self._lock:
            current = self._live(local_id)
            if current is None:
                return err(not_found(local_id))

            units = count_units(current.start, current.end, self.granularity)
            if units < 2:
                return err(invalid_interval(current.start, current.start))
            middle = current.start + (units + 1) // 2 * self.granularity

            edited = self._edit_locked(current, end=middle)
            if not edited.ok:
                return edited

            second = Checkpoint(
                local_id=self._allocate_id(),
                project_id=current.project_id,
                task_id=current.task_id,
                start=middle,
                end=current.end,
                note=current.note,
            )
            self._index(second)

        logger.debug(f"Split #{local_id} at {middle}, new #{second.local_id}")
        self._emit(
            CheckpointUpdated(
                timestamp=_now_iso(),
                local_id=local_id,
                sync_state=edited.value.sync_state.value,
            )
        )
        self._emit(CheckpointCreated(timestamp=_now_iso(), local_id=second.local_id))
        return ok(second.local_id)

    def delete(self, local_id: LocalId) -> Result[None, TcheaterError]:
        """Remove a checkpoint.

        LOCAL entries have never been sent and are purged immediately.
        SYNCED/DIRTY entries are marked DELETED and disappear from snapshots;
        the reconciler purges them once the remote delete is confirmed.
        """
        with self._lock:
            current = self._live(local_id)
            if current is None:
                return err(not_found(local_id))

            purged = current.sync_state is SyncState.LOCAL
            if purged:
                self._unindex(current)
            else:
                self._replace(
                    current,
                    current.with_changes(sync_state=SyncState.DELETED, version=current.version + 1),
                )

        logger.debug(f"Deleted checkpoint #{local_id} (purged={purged})")
        self._emit(CheckpointDeleted(timestamp=_now_iso(), local_id=local_id, purged=purged))
        return ok(None)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, local_id: LocalId) -> Checkpoint | None:
        """Look up any entry, including ones pending remote deletion."""
        with self._lock:
            return self._entries.get(local_id)

    def find_by_remote_id(self, checkpoint_id: CheckpointId) -> Checkpoint | None:
        with self._lock:
            local_id = self._by_remote.get(checkpoint_id)
            return self._entries.get(local_id) if local_id is not None else None

    def snapshot(self, window: TimeWindow | None = None) -> tuple[Checkpoint, ...]:
        """Non-deleted checkpoints intersecting window, ordered by start.

        Ties are broken by insertion order. The returned tuple holds
        immutable checkpoints and is unaffected by later mutations.
        """
        with self._lock:
            if window is None:
                keys = self._active
            else:
                hi = bisect_left(self._active, (window.end,))
                lo = bisect_left(self._active, (window.start,))
                if lo > 0 and self._entries[self._active[lo - 1][1]].end > window.start:
                    lo -= 1
                keys = self._active[lo:hi]
            return tuple(self._entries[local_id] for _, local_id in keys)

    def pending(self) -> tuple[Checkpoint, ...]:
        """Entries awaiting a push or a remote delete, oldest first."""
        with self._lock:
            return tuple(
                checkpoint
                for _, checkpoint in sorted(self._entries.items())
                if checkpoint.is_pending
            )

    def pending_count(self) -> int:
        with self._lock:
            return sum(1 for checkpoint in self._entries.values() if checkpoint.is_pending)

    # ------------------------------------------------------------------
    # Reconciler entry points
    # ------------------------------------------------------------------

    def mark_synced(
        self,
        local_id: LocalId,
        remote: RemoteCheckpoint,
        pushed_version: int,
    ) -> Result[Checkpoint, TcheaterError]:
        """Record a confirmed push.

        The entry only becomes SYNCED if it was not edited while the push
        was in flight (its version still equals pushed_version). Otherwise
        it takes the server id and revision but stays DIRTY so the newer
        edit goes out on the next pass. Entries deleted meanwhile stay
        DELETED and now carry the id needed to delete them remotely.

        Returns:
            Ok(updated checkpoint), or Err(NOT_FOUND) if the entry was purged
            during the push
        """
        with self._lock:
            current = self._entries.get(local_id)
            if current is None:
                return err(not_found(local_id))

            if current.is_deleted:
                state = SyncState.DELETED
            elif current.version == pushed_version:
                state = SyncState.SYNCED
            else:
                state = SyncState.DIRTY

            holder = self._by_remote.get(remote.id)
            if holder is not None and holder != local_id:
                logger.warning(f"Server id {remote.id} already held by #{holder}, dropping it")
                self._unindex(self._entries[holder])

            updated = current.with_changes(id=remote.id, revision=remote.revision, sync_state=state)
            self._replace(current, updated)

        logger.debug(f"Checkpoint #{local_id} pushed as {remote.id} (rev {remote.revision}, {state.value})")
        self._emit(
            CheckpointSynced(
                timestamp=_now_iso(),
                local_id=local_id,
                checkpoint_id=remote.id,
                sync_state=state.value,
            )
        )
        return ok(updated)

    def purge(self, local_id: LocalId) -> Result[None, TcheaterError]:
        """Drop an entry outright (remote delete confirmed)."""
        with self._lock:
            current = self._entries.get(local_id)
            if current is None:
                return err(not_found(local_id))
            self._unindex(current)

        self._emit(CheckpointDeleted(timestamp=_now_iso(), local_id=local_id, purged=True))
        return ok(None)

    def apply_remote(
        self,
        remote: Iterable[RemoteCheckpoint],
        window: TimeWindow | None = None,
        exclude_ids: Iterable[CheckpointId] = (),
    ) -> ApplyResult:
        """Merge pulled remote state into the store.

        Rules, per remote document:
        - unknown id: inserted as SYNCED
        - known SYNCED entry with a newer revision: overwritten as SYNCED
        - known DIRTY entry: local edit wins, remote change is discarded and
          the local content is pushed on the next pass
        - known DELETED entry: left alone, the remote delete is pending
        - anything that would overlap another checkpoint: not applied,
          reported in ``conflicts``

        Overlap is checked against the merged result, not the store as it
        was: the SYNCED copies a listing overwrites are set aside first, so
        remote entries that traded places apply together. A rejected update
        keeps its old copy unless another applied document now holds that
        slot, in which case the old copy is dropped and counted as purged.

        When a window is given, SYNCED entries inside it whose id is missing
        from the remote set were deleted elsewhere and are purged.

        Args:
            remote: Remote checkpoints for the window
            window: Window the remote set was listed for
            exclude_ids: Ids touched by the current pass (pushed or deleted);
                the listing predates those operations and must not undo them

        Returns:
            ApplyResult describing what changed
        """
        excluded = set(exclude_ids)
        inserted: list[LocalId] = []
        updated: list[LocalId] = []
        purged: list[LocalId] = []
        kept_local: list[LocalId] = []
        conflicts: list[TcheaterError] = []
        seen: set[CheckpointId] = set()
        incoming: list[tuple[RemoteCheckpoint, datetime, datetime, Checkpoint | None]] = []

        with self._lock:
            for doc in remote:
                if doc.id in excluded or doc.id in seen:
                    continue
                seen.add(doc.id)

                local_id = self._by_remote.get(doc.id)
                current = self._entries.get(local_id) if local_id is not None else None

                if current is not None:
                    if current.is_deleted:
                        continue
                    if current.revision is not None and doc.revision <= current.revision:
                        continue
                    if current.sync_state is not SyncState.SYNCED:
                        logger.info(
                            f"Keeping local edit of #{current.local_id} over remote revision {doc.revision}"
                        )
                        kept_local.append(current.local_id)
                        continue

                start = round_instant(doc.start, self.granularity)
                end = round_instant(doc.end, self.granularity)
                if start >= end:
                    conflicts.append(invalid_interval(start, end))
                    logger.warning(f"Remote checkpoint {doc.id} has an empty interval, skipped")
                    continue
                incoming.append((doc, start, end, current))

            if window is not None:
                for checkpoint in list(self._entries.values()):
                    if (
                        checkpoint.sync_state is SyncState.SYNCED
                        and checkpoint.id is not None
                        and checkpoint.id not in seen
                        and checkpoint.id not in excluded
                        and window.intersects(checkpoint.start, checkpoint.end)
                    ):
                        self._unindex(checkpoint)
                        purged.append(checkpoint.local_id)

            # Stale copies leave the index first so entries can trade places
            for _, _, _, current in incoming:
                if current is not None:
                    self._unindex(current)

            rejected: list[Checkpoint] = []
            for doc, start, end, current in sorted(incoming, key=lambda item: (item[1], item[2])):
                conflict = self._find_conflict(start, end)
                if conflict is not None:
                    conflicts.append(
                        remote_overlap(doc.id, conflict.local_id, conflict.id, conflict.start, conflict.end)
                    )
                    logger.warning(f"Remote checkpoint {doc.id} overlaps #{conflict.local_id}, skipped")
                    if current is not None:
                        rejected.append(current)
                    continue

                fields = dict(
                    project_id=doc.project_id,
                    task_id=doc.task_id,
                    start=start,
                    end=end,
                    note=doc.note,
                    registered=doc.registered,
                    revision=doc.revision,
                    sync_state=SyncState.SYNCED,
                )
                if current is None:
                    checkpoint = Checkpoint(local_id=self._allocate_id(), id=doc.id, **fields)
                    self._index(checkpoint)
                    inserted.append(checkpoint.local_id)
                else:
                    self._index(current.with_changes(**fields))
                    updated.append(current.local_id)

            for stale in rejected:
                if self._find_conflict(stale.start, stale.end) is None:
                    self._index(stale)
                else:
                    # Only ever SYNCED; the next pull offers the document again
                    logger.warning(f"Dropping stale copy of {stale.id}, its slot was taken remotely")
                    purged.append(stale.local_id)

        result = ApplyResult(
            inserted=tuple(inserted),
            updated=tuple(updated),
            purged=tuple(purged),
            kept_local=tuple(kept_local),
            conflicts=tuple(conflicts),
        )
        if result.changed:
            logger.debug(
                f"Applied remote state: {len(inserted)} inserted, "
                f"{len(updated)} updated, {len(purged)} purged"
            )
            self._emit(
                RemoteApplied(
                    timestamp=_now_iso(),
                    inserted=result.inserted,
                    updated=result.updated,
                    purged=result.purged,
                )
            )
        return result

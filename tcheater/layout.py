"""Timeline layout.

Turns a time-ordered sequence of checkpoints into positioned blocks for a
viewport: an offset and a length along the time axis (in cells, rows or
pixels, whatever the viewport's ``height`` counts) plus a lane index.

The store never holds overlapping checkpoints, but two blocks can still
land on the same cell once positions are rounded to whole cells (two
15 minute checkpoints on a 10 cell day view, say). Lanes keep such blocks
apart: each block takes the lowest lane not used by an earlier block whose
display interval it intersects.

Nothing here keeps state between calls; recompute from a fresh snapshot
whenever the store reports a change.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import date, datetime, timedelta

from tcheater.checkpoint import Checkpoint
from tcheater.timemath import duration_minutes, human_duration, rescale
from tcheater.types import ProjectId


@dataclass(frozen=True)
class Viewport:
    """Visible time range mapped onto ``height`` display units."""

    start: datetime
    end: datetime
    height: int


@dataclass(frozen=True)
class LayoutBlock:
    """A checkpoint positioned inside a viewport."""

    checkpoint: Checkpoint
    top: int
    height: int
    lane: int
    start: datetime  # clipped to the viewport
    end: datetime  # clipped to the viewport

    @property
    def bottom(self) -> int:
        return self.top + self.height

    @property
    def clipped(self) -> bool:
        return self.start != self.checkpoint.start or self.end != self.checkpoint.end

    @property
    def duration_minutes(self) -> int:
        return duration_minutes(self.start, self.end)

    @property
    def label(self) -> str:
        return human_duration(self.duration_minutes)


def layout_timeline(checkpoints: Iterable[Checkpoint], viewport: Viewport) -> tuple[LayoutBlock, ...]:
    """Position checkpoints in a viewport.

    Args:
        checkpoints: Ordered by start (as returned by CheckpointStore.snapshot)
        viewport: Visible range and its size in display units

    Returns:
        One block per checkpoint intersecting the viewport, in input order.
        Checkpoints partly outside are clipped for display only.
    """
    if viewport.height <= 0 or viewport.end <= viewport.start:
        return ()

    origin = viewport.start.timestamp()
    span = viewport.end.timestamp()
    blocks: list[LayoutBlock] = []
    lane_bottoms: list[int] = []

    for checkpoint in checkpoints:
        if checkpoint.end <= viewport.start or checkpoint.start >= viewport.end:
            continue

        start = max(checkpoint.start, viewport.start)
        end = min(checkpoint.end, viewport.end)
        top = round(rescale(start.timestamp(), origin, span, 0, viewport.height))
        bottom = round(rescale(end.timestamp(), origin, span, 0, viewport.height))
        top = min(top, viewport.height - 1)
        height = max(1, bottom - top)

        # Earlier blocks start at or before this one, so a lane is free
        # once everything in it ends at or above our top.
        lane = next((i for i, lane_bottom in enumerate(lane_bottoms) if lane_bottom <= top), None)
        if lane is None:
            lane = len(lane_bottoms)
            lane_bottoms.append(top + height)
        else:
            lane_bottoms[lane] = top + height

        blocks.append(
            LayoutBlock(
                checkpoint=checkpoint,
                top=top,
                height=height,
                lane=lane,
                start=start,
                end=end,
            )
        )

    return tuple(blocks)


def lane_count(blocks: Sequence[LayoutBlock]) -> int:
    return max((block.lane for block in blocks), default=-1) + 1


def group_by_day(
    checkpoints: Iterable[Checkpoint],
    week_start: datetime,
    days: int = 7,
) -> dict[date, list[Checkpoint]]:
    """Bucket checkpoints by the local day they start on.

    Every day of the range is present in the result, empty or not, in order.
    """
    buckets: dict[date, list[Checkpoint]] = {
        (week_start + timedelta(days=offset)).date(): [] for offset in range(days)
    }
    for checkpoint in checkpoints:
        day = checkpoint.start.date()
        if day in buckets:
            buckets[day].append(checkpoint)
    return buckets


def unregistered(checkpoints: Iterable[Checkpoint]) -> list[tuple[Checkpoint, int]]:
    """Checkpoints not yet booked in the task system, with their minutes."""
    return [
        (checkpoint, duration_minutes(checkpoint.start, checkpoint.end))
        for checkpoint in checkpoints
        if not checkpoint.registered
    ]


def totals_by_project(checkpoints: Iterable[Checkpoint]) -> dict[ProjectId, int]:
    """Minutes per project, largest first."""
    totals: dict[ProjectId, int] = defaultdict(int)
    for checkpoint in checkpoints:
        totals[checkpoint.project_id] += duration_minutes(checkpoint.start, checkpoint.end)
    return dict(sorted(totals.items(), key=lambda item: item[1], reverse=True))

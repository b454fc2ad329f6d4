"""tcheater CLI - checkpoint-based time tracking."""

import asyncio
import logging
import math
import sys
from collections.abc import Awaitable, Callable
from datetime import date, datetime, time, timedelta

import click
from rich.console import Console, Group
from rich.live import Live
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from tcheater import __version__
from tcheater.checkpoint import Checkpoint, SyncState, TimeWindow
from tcheater.config import Config, ensure_directories, tcheater_home
from tcheater.errors import Result, format_error
from tcheater.layout import (
    Viewport,
    group_by_day,
    lane_count,
    layout_timeline,
    totals_by_project,
    unregistered,
)
from tcheater.reconciler import SyncReport
from tcheater.timemath import day_bounds, duration_minutes, human_duration, parse_weekday, rescale
from tcheater.tracker import Tracker
from tcheater.types import LocalId

console = Console()

BAR_WIDTH = 64
DAY_START_HOUR = 7
DAY_END_HOUR = 19


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
    )


@click.group()
@click.version_option(version=__version__)
@click.option("-v", "--verbose", is_flag=True, help="Log sync activity")
@click.option("-w", "--week", "offset", type=int, default=0, help="Week offset (-1 = last week)")
@click.pass_context
def main(ctx, verbose, offset):
    """tcheater: track where your time went, one checkpoint at a time."""
    config = Config.load()
    _setup_logging("DEBUG" if verbose else config.log_level.upper())
    ctx.obj = {"config": config, "offset": offset, "tracker": None}


# ============================================================================
# Helpers
# ============================================================================


def _tracker(ctx: click.Context) -> Tracker:
    if ctx.obj["tracker"] is None:
        result = Tracker.from_config(ctx.obj["config"])
        if not result.ok:
            console.print(f"[red]{format_error(result.error)}[/red]")
            sys.exit(1)
        ctx.obj["tracker"] = result.value
    return ctx.obj["tracker"]


def _window(ctx: click.Context, tracker: Tracker) -> TimeWindow:
    return tracker.week_window(ctx.obj["offset"])


def _parse_day(value: str | None, window: TimeWindow, first_weekday: int) -> date:
    """Resolve --day: an ISO date or weekday name within the shown week, or today."""
    if value is None:
        now = datetime.now().astimezone()
        return now.date() if window.contains(now) else window.start.date()
    try:
        day = date.fromisoformat(value)
    except ValueError:
        pass
    else:
        if not window.start.date() <= day < window.end.date():
            raise click.BadParameter(
                f"{day} is not in the week of {window.start:%d.%m.%Y}; select its week with -w",
                param_hint="--day",
            )
        return day
    try:
        weekday = parse_weekday(value)
    except ValueError:
        raise click.BadParameter(f"Not a date or weekday: {value}", param_hint="--day")
    return window.start.date() + timedelta(days=(weekday - first_weekday) % 7)


def _parse_time(value: str, day: date) -> datetime:
    """Parse "9:30", "09:30" or a full ISO timestamp into a local datetime."""
    try:
        if "T" in value or " " in value:
            parsed = datetime.fromisoformat(value)
            return parsed if parsed.tzinfo else parsed.astimezone()
        return datetime.combine(day, time.fromisoformat(value.zfill(5))).astimezone()
    except ValueError:
        raise click.BadParameter(f"Not a time: {value}")


def _check_in_window(window: TimeWindow, start: datetime, end: datetime) -> None:
    """Only the pulled week is checked for overlaps, so edits must stay inside it."""
    if min(start, end) < window.start or max(start, end) > window.end:
        raise click.BadParameter(
            f"{start:%Y-%m-%d %H:%M} - {end:%Y-%m-%d %H:%M} is outside the week of "
            f"{window.start:%d.%m.%Y}; select its week with -w"
        )


def _run_session(
    tracker: Tracker,
    window: TimeWindow,
    action: Callable[[], Awaitable[Result]] | None = None,
) -> tuple[Result | None, SyncReport]:
    """Pull the window, apply action, push the result.

    Without a successful pull the store does not know the week's
    checkpoints, so an action is not attempted at all.
    """

    async def session():
        report = await tracker.sync(window)
        if report.applied is None:
            if action is not None:
                return None, report, False
            console.print(f"[yellow]Working offline: {format_error(report.errors[0])}[/yellow]")
        if action is None:
            return None, report, True
        result = await action()
        if result.ok:
            report = await tracker.sync(window)
        return result, report, True

    result, report, loaded = asyncio.run(session())
    if not loaded:
        console.print(f"[red]Could not load the week, nothing changed: {format_error(report.errors[0])}[/red]")
        sys.exit(1)
    return result, report


def _finish(tracker: Tracker, result: Result | None, report: SyncReport) -> None:
    if result is not None and not result.ok:
        console.print(f"[red]{format_error(result.error)}[/red]")
        sys.exit(1)
    pending = tracker.store.pending_count()
    if pending:
        reason = format_error(report.errors[0]) if report.errors else "unknown"
        console.print(f"[red]{pending} change(s) not saved to the remote store: {reason}[/red]")
        sys.exit(1)


def _local_id(value: int) -> LocalId:
    return LocalId(value)


# ============================================================================
# Rendering
# ============================================================================


def _style(tracker: Tracker, checkpoint: Checkpoint) -> str:
    project = tracker.project(checkpoint)
    if project is not None and project.style and checkpoint.note:
        return project.style
    return checkpoint.color()


def _ruler(start_hour: int, end_hour: int) -> Text:
    cells = [" "] * (BAR_WIDTH + 2)
    for hour in range(start_hour, end_hour + 1, 2):
        pos = round(rescale(hour, start_hour, end_hour, 0, BAR_WIDTH))
        for i, ch in enumerate(f"{hour:02d}"):
            if pos + i < len(cells):
                cells[pos + i] = ch
    return Text("".join(cells), style="dim")


def _day_bars(tracker: Tracker, checkpoints: list[Checkpoint]) -> list[Text]:
    """One line per lane, blocks drawn over the working day."""
    midnight, _ = day_bounds(checkpoints[0].start)
    first_hour = min(DAY_START_HOUR, min(c.start.hour for c in checkpoints))
    last_end = max(c.end for c in checkpoints)
    last_hour = max(DAY_END_HOUR, min(24, math.ceil((last_end - midnight).total_seconds() / 3600)))

    viewport = Viewport(
        start=midnight + timedelta(hours=first_hour),
        end=midnight + timedelta(hours=last_hour),
        height=BAR_WIDTH,
    )
    blocks = layout_timeline(checkpoints, viewport)
    rows = [[(" ", "")] * BAR_WIDTH for _ in range(lane_count(blocks))]
    for block in blocks:
        style = _style(tracker, block.checkpoint)
        for cell in range(block.top, min(block.bottom, BAR_WIDTH)):
            rows[block.lane][cell] = ("█", style)

    lines = [_ruler(first_hour, last_hour)]
    for row in rows:
        line = Text()
        for ch, style in row:
            line.append(ch, style=style or None)
        lines.append(line)
    return lines


def _sync_marker(checkpoint: Checkpoint) -> str:
    if checkpoint.sync_state is SyncState.SYNCED:
        return "[green]●[/green]"
    return "[yellow]○[/yellow]"


def _day_table(tracker: Tracker, checkpoints: list[Checkpoint]) -> Table:
    table = Table(box=None, pad_edge=False)
    table.add_column("#", justify="right", style="dim")
    table.add_column("TIME")
    table.add_column("DUR", justify="right")
    table.add_column("PROJECT")
    table.add_column("TASK")
    table.add_column("NOTE")
    table.add_column("")

    for checkpoint in checkpoints:
        table.add_row(
            str(checkpoint.local_id),
            f"{checkpoint.start:%H:%M}-{checkpoint.end:%H:%M}",
            human_duration(duration_minutes(checkpoint.start, checkpoint.end)),
            Text(checkpoint.project_id, style=_style(tracker, checkpoint)),
            checkpoint.task_id or "-",
            checkpoint.note or "[dim]no note[/dim]",
            _sync_marker(checkpoint) + ("" if checkpoint.registered else " [red]![/red]"),
        )
    return table


def render_week(tracker: Tracker, window: TimeWindow) -> Group:
    """Everything `tcheater week` shows for one week."""
    checkpoints = tracker.snapshot(window)
    parts = [Text(f"Week of {window.start:%d.%m.%Y}", style="bold")]

    for day, entries in group_by_day(checkpoints, window.start).items():
        if not entries:
            continue
        total = sum(duration_minutes(c.start, c.end) for c in entries)
        parts.append(Text(""))
        parts.append(Text(f"{day:%a %d.%m}  {human_duration(total)}", style="bold cyan"))
        parts.extend(_day_bars(tracker, entries))
        parts.append(_day_table(tracker, entries))

    if not checkpoints:
        parts.append(Text("No checkpoints this week.", style="yellow"))
    else:
        totals = "  ".join(
            f"{project_id} {human_duration(minutes)}"
            for project_id, minutes in totals_by_project(checkpoints).items()
        )
        parts.append(Text(""))
        parts.append(Text(f"Total: {totals}"))

    pending = unregistered(checkpoints)
    if pending:
        lines = [
            f"#{c.local_id} {c.start:%a %H:%M} {c.project_id} {c.task_id or '-'} "
            f"{human_duration(minutes)}"
            for c, minutes in pending
        ]
        parts.append(Panel("\n".join(lines), title="Not registered", border_style="red"))

    parts.append(Text(f"Sync: {tracker.reconciler.status()}", style="dim"))
    return Group(*parts)


# ============================================================================
# Commands
# ============================================================================


@main.command("week")
@click.option("--offset", type=int, default=None, help="Week offset (overrides --week)")
@click.option("--month", type=click.IntRange(1, 12), default=None, help="Show every week of MONTH so far")
@click.pass_context
def week_cmd(ctx, offset, month):
    """Show the week's checkpoints."""
    if offset is not None:
        ctx.obj["offset"] = offset
    tracker = _tracker(ctx)
    if month is None:
        windows = [_window(ctx, tracker)]
    else:
        windows = tracker.month_windows(month)
        if not windows:
            console.print("[yellow]No weeks of that month so far.[/yellow]")
            return

    _, report = _run_session(tracker, TimeWindow(windows[0].start, windows[-1].end))
    for window in windows:
        console.print(render_week(tracker, window))
    for conflict in report.applied.conflicts if report.applied else ():
        console.print(f"[yellow]Skipped: {conflict.message}[/yellow]")


@main.command()
@click.argument("project")
@click.argument("start")
@click.argument("end")
@click.option("--task", "-t", help="Task id")
@click.option("--note", "-n", help="What you worked on")
@click.option("--day", "-d", help="Date (YYYY-MM-DD) or weekday; default today")
@click.pass_context
def add(ctx, project, start, end, task, note, day):
    """Add a checkpoint.

    Examples:
        tcheater add acme 9:00 10:30 --task 4521 --note "code review"
        tcheater -w -1 add internal 14:00 15:00 --day fri
    """
    tracker = _tracker(ctx)
    window = _window(ctx, tracker)
    on = _parse_day(day, window, tracker.config.first_weekday_number)
    start_at = _parse_time(start, on)
    end_at = _parse_time(end, on)
    _check_in_window(window, start_at, end_at)

    result, report = _run_session(
        tracker, window, lambda: tracker.create(project, task, start_at, end_at, note)
    )
    _finish(tracker, result, report)
    created = tracker.store.get(result.value)
    if created is not None:
        label = asyncio.run(tracker.describe_task(created.task_id))
        console.print(
            f"[green]✓[/green] Added #{created.local_id} "
            f"{created.start:%a %H:%M}-{created.end:%H:%M} {created.project_id}"
            + (f" ({label})" if label else "")
        )


@main.command()
@click.argument("local_id", type=int)
@click.option("--start", "-s", help="New start time")
@click.option("--end", "-e", help="New end time")
@click.option("--project", "-p", help="New project")
@click.option("--task", "-t", help="New task id (empty string clears it)")
@click.option("--note", "-n", help="New note")
@click.pass_context
def edit(ctx, local_id, start, end, project, task, note):
    """Edit a checkpoint shown by `tcheater week`."""
    tracker = _tracker(ctx)
    window = _window(ctx, tracker)

    async def action():
        current = tracker.store.get(_local_id(local_id))
        day = current.start.date() if current is not None else window.start.date()
        start_at = _parse_time(start, day) if start else None
        end_at = _parse_time(end, day) if end else None
        moved = start_at is not None or end_at is not None
        if moved and current is not None and not current.is_deleted:
            _check_in_window(
                window,
                start_at if start_at is not None else current.start,
                end_at if end_at is not None else current.end,
            )
        return await tracker.update(
            _local_id(local_id),
            start=start_at,
            end=end_at,
            note=note,
            project=project,
            task=task,
        )

    result, report = _run_session(tracker, window, action)
    _finish(tracker, result, report)
    console.print(f"[green]✓[/green] Updated #{local_id}")


@main.command()
@click.argument("local_id", type=int)
@click.option("--by", type=int, default=0, help="Move start and end by MINUTES")
@click.option("--start", "start_minutes", type=int, default=0, help="Move start by MINUTES")
@click.option("--end", "end_minutes", type=int, default=0, help="Move end by MINUTES")
@click.pass_context
def shift(ctx, local_id, by, start_minutes, end_minutes):
    """Move or resize a checkpoint.

    Examples:
        tcheater shift 3 --by 15       # 15 minutes later
        tcheater shift 3 --end -30     # finish half an hour earlier
    """
    tracker = _tracker(ctx)
    window = _window(ctx, tracker)
    start_delta = timedelta(minutes=by + start_minutes)
    end_delta = timedelta(minutes=by + end_minutes)

    async def action():
        current = tracker.store.get(_local_id(local_id))
        if current is not None and not current.is_deleted:
            _check_in_window(window, current.start + start_delta, current.end + end_delta)
        return tracker.shift(_local_id(local_id), start_delta, end_delta)

    result, report = _run_session(tracker, window, action)
    _finish(tracker, result, report)
    console.print(f"[green]✓[/green] Shifted #{local_id}")


@main.command("rm")
@click.argument("local_id", type=int)
@click.pass_context
def rm_cmd(ctx, local_id):
    """Delete a checkpoint."""
    tracker = _tracker(ctx)
    window = _window(ctx, tracker)

    async def action():
        return tracker.delete(_local_id(local_id))

    result, report = _run_session(tracker, window, action)
    _finish(tracker, result, report)
    console.print(f"[green]✓[/green] Deleted #{local_id}")


@main.command()
@click.argument("local_id", type=int)
@click.pass_context
def split(ctx, local_id):
    """Split a checkpoint in two at its midpoint."""
    tracker = _tracker(ctx)
    window = _window(ctx, tracker)

    async def action():
        return tracker.split(_local_id(local_id))

    result, report = _run_session(tracker, window, action)
    _finish(tracker, result, report)
    console.print(f"[green]✓[/green] Split #{local_id}")


@main.command()
@click.argument("local_id", type=int)
@click.pass_context
def register(ctx, local_id):
    """Toggle whether a checkpoint is booked in the task system."""
    tracker = _tracker(ctx)
    window = _window(ctx, tracker)

    async def action():
        return tracker.toggle_registered(_local_id(local_id))

    result, report = _run_session(tracker, window, action)
    _finish(tracker, result, report)
    state = "registered" if result.value else "not registered"
    console.print(f"[green]✓[/green] #{local_id} {state}")


@main.command()
@click.pass_context
def sync(ctx):
    """Run one reconciliation pass for the week."""
    tracker = _tracker(ctx)
    window = _window(ctx, tracker)
    _, report = _run_session(tracker, window)

    console.print(f"Sync: {report.summary}")
    if report.applied is not None:
        for conflict in report.applied.conflicts:
            console.print(f"  [yellow]{conflict.message}[/yellow]")
    if not report.ok:
        for error in report.errors:
            console.print(f"  [red]{format_error(error)}[/red]")
        sys.exit(1)


@main.command()
@click.pass_context
def watch(ctx):
    """Live week view, kept in sync in the background (Ctrl-C to quit)."""
    tracker = _tracker(ctx)
    interval = tracker.config.sync_interval_seconds

    async def run():
        loop = asyncio.get_running_loop()
        changed = asyncio.Event()
        tracker.subscribe(lambda event: loop.call_soon_threadsafe(changed.set))
        tracker.reconciler.start(lambda: _window(ctx, tracker), interval)
        try:
            with Live(render_week(tracker, _window(ctx, tracker)), console=console, auto_refresh=False) as live:
                while True:
                    try:
                        await asyncio.wait_for(changed.wait(), timeout=interval)
                    except TimeoutError:
                        pass
                    changed.clear()
                    live.update(render_week(tracker, _window(ctx, tracker)), refresh=True)
        finally:
            await tracker.reconciler.stop()

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        pass


@main.command()
@click.option("--urls", is_flag=True, help="Show links into the task system")
@click.pass_context
def tasks(ctx, urls):
    """List tasks from the task source."""
    tracker = _tracker(ctx)
    result = asyncio.run(tracker.list_tasks())
    if not result.ok:
        console.print(f"[red]{format_error(result.error)}[/red]")
        sys.exit(1)

    if not result.value:
        console.print("[yellow]No tasks found.[/yellow]")
        console.print(f"Add them to {tracker.config.tasks_path()}")
        return

    table = Table()
    table.add_column("ID")
    table.add_column("NAME")
    table.add_column("SPENT", justify="right")
    table.add_column("TOTAL", justify="right")
    if urls:
        table.add_column("URL")

    prefix = tracker.config.task_url_prefix
    for task in result.value:
        row = [task.id, task.name, task.time_spent or "-", task.time_total or "-"]
        if urls:
            row.append(f"{prefix}{task.id}" if prefix else "-")
        table.add_row(*row)

    console.print(table)


@main.command()
@click.pass_context
def projects(ctx):
    """List configured projects."""
    tracker = _tracker(ctx)
    if not tracker.projects:
        console.print("[yellow]No projects configured.[/yellow]")
        console.print(f"Any project id is accepted until {tracker.config.projects_path()} exists.")
        return

    table = Table()
    table.add_column("ID")
    table.add_column("NAME")
    table.add_column("COLOR")
    for project in tracker.projects:
        sample = Text("████", style=project.style) if project.style else Text("-")
        table.add_row(project.id, project.name, sample)

    console.print(table)


# ============================================================================
# Config
# ============================================================================


@main.group()
def config():
    """Manage configuration (~/.tcheater/config.yaml)."""
    pass


@config.command("show")
@click.pass_context
def config_show(ctx):
    """Show the effective configuration."""
    cfg = ctx.obj["config"]
    defaults = Config()

    console.print(f"[bold]Configuration[/bold] [dim]({tcheater_home() / 'config.yaml'})[/dim]")
    console.print()
    for key, value in cfg.to_dict().items():
        marker = "" if getattr(defaults, key) == value else " [cyan](custom)[/cyan]"
        console.print(f"  {key}: {value if value is not None else '[dim]not set[/dim]'}{marker}")

    console.print()
    console.print(f"  [dim]remote store: {cfg.remote_path()}[/dim]")
    console.print(f"  [dim]tasks: {cfg.tasks_path()}[/dim]")
    console.print(f"  [dim]projects: {cfg.projects_path()}[/dim]")

    validated = cfg.validate()
    if not validated.ok:
        console.print()
        console.print(f"[red]{format_error(validated.error)}[/red]")


@config.command("set")
@click.argument("key")
@click.argument("value")
@click.pass_context
def config_set(ctx, key, value):
    """Set a configuration value.

    Examples:
        tcheater config set granularity_minutes 30
        tcheater config set remote_dir ~/Dropbox/tcheater
    """
    cfg = ctx.obj["config"]
    if key not in cfg.to_dict():
        console.print(f"[red]Unknown config key: {key}[/red]")
        console.print(f"Valid keys: {', '.join(cfg.to_dict())}")
        sys.exit(1)

    current = getattr(cfg, key)
    if isinstance(getattr(Config(), key), int) or isinstance(current, int):
        try:
            parsed = int(value)
        except ValueError:
            console.print(f"[red]{key} must be an integer[/red]")
            sys.exit(1)
    else:
        parsed = value or None

    setattr(cfg, key, parsed)
    validated = cfg.validate()
    if not validated.ok:
        console.print(f"[red]{format_error(validated.error)}[/red]")
        sys.exit(1)

    home = ensure_directories()
    saved = cfg.save(home)
    if not saved.ok:
        console.print(f"[red]{format_error(saved.error)}[/red]")
        sys.exit(1)
    console.print(f"[green]✓[/green] Set {key} = {parsed}")


@config.command("path")
def config_path():
    """Print the tcheater home directory."""
    click.echo(str(tcheater_home()))


if __name__ == "__main__":
    main()

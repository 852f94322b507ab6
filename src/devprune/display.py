"""Rich terminal display for devprune."""

from datetime import datetime
from typing import Optional, Sequence, Union

from rich.console import Console
from rich.panel import Panel
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn, TimeElapsedColumn
from rich.table import Table

from devprune.models import (
    BuildFolder,
    CleaningSession,
    CleaningStatistics,
    DeletionFailureReason,
    DeletionReport,
    ScanLocation,
    ScanSession,
    StaticLocation,
    format_size,
)

console = Console()

FAILURE_LIST_LIMIT = 3
SUB_ITEM_LIMIT = 5

__all__ = [
    "console",
    "confirm_action",
    "format_age",
    "format_size",
    "show_deletion_report",
    "show_folders_table",
    "show_locations",
    "show_scan_session",
    "show_scanning_progress",
    "show_static_locations",
    "show_statistics",
]


def format_age(when: Optional[datetime], now: Optional[datetime] = None) -> str:
    """Short relative age such as 'today', '3 days ago' or 'never'."""
    if when is None:
        return "never"
    now = now or datetime.now()
    if when.tzinfo is not None:
        when = when.astimezone().replace(tzinfo=None)
    days = (now.date() - when.date()).days
    if days <= 0:
        return "today"
    if days == 1:
        return "yesterday"
    if days < 60:
        return f"{days} days ago"
    if days < 730:
        return f"{days // 30} months ago"
    return f"{days // 365} years ago"


def _size_cell(item: Union[BuildFolder, StaticLocation]) -> str:
    size = format_size(item.size_bytes)
    # Partial sizes are lower bounds
    return f"≥ {size}" if item.size_is_partial else size


def show_folders_table(
    folders: Sequence[BuildFolder],
    title: str = "Build Folders",
) -> None:
    """Display build folders, one row each."""
    table = Table(title=title, show_header=True, header_style="bold")
    table.add_column("Project", style="cyan")
    table.add_column("Type")
    table.add_column("Size", justify="right")
    table.add_column("Modified", justify="right")
    table.add_column("Path")

    for folder in folders:
        table.add_row(
            folder.project_name,
            folder.project_type.display_name,
            _size_cell(folder),
            format_age(folder.last_modified),
            folder.path if folder.exists else f"[dim strike]{folder.path}[/dim strike]",
        )

    console.print(table)
    console.print(
        f"[bold]Total: {format_size(sum(f.size_bytes for f in folders))}[/bold] "
        f"in {len(folders)} folders"
    )


def show_scan_session(session: ScanSession, folders: Optional[Sequence[BuildFolder]] = None) -> None:
    """Display a scan: per-location summary, warnings, then the folder table."""
    folders = session.build_folders if folders is None else folders

    summary = Table(title="Scan Summary", show_header=True, header_style="bold")
    summary.add_column("Location")
    summary.add_column("Folders", justify="right")
    summary.add_column("Size", justify="right")
    summary.add_column("Time", justify="right")
    for result in session.results:
        summary.add_row(
            result.root_path,
            str(len(result.build_folders)),
            format_size(result.total_size),
            f"{result.scan_duration:.1f}s",
        )
    console.print(summary)

    for warning in session.warnings:
        console.print(f"[yellow]! Skipped {warning.message}[/yellow]")

    console.print()
    if folders:
        show_folders_table(folders)
    else:
        console.print("[dim]No build folders found.[/dim]")


def show_deletion_report(report: DeletionReport, limit: int = FAILURE_LIST_LIMIT) -> None:
    """Display the outcome of a deletion pass."""
    if report.dry_run:
        console.print("[yellow]DRY RUN - Nothing was moved to the trash[/yellow]\n")

    for outcome in report.succeeded:
        verb = "would free" if report.dry_run else "freed"
        console.print(
            f"  [green]✓[/green] {outcome.name} ({outcome.type_tag}): "
            f"{format_size(outcome.size_bytes)} {verb}"
        )

    skipped = [o for o in report.failed if o.reason == DeletionFailureReason.CANCELLED]
    for outcome in report.failed:
        if outcome.reason == DeletionFailureReason.CANCELLED:
            continue
        if outcome.is_resolved:
            console.print(f"  [dim]- {outcome.name}: already gone ({outcome.path})[/dim]")
        else:
            console.print(f"  [red]✗[/red] {outcome.name}: {outcome.message}")

    console.print()
    table = Table(show_header=False)
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")
    label = "Space to free" if report.dry_run else "Space freed"
    table.add_row(label, format_size(report.bytes_freed))
    table.add_row("Items", str(report.success_count))
    if len(report.actionable_failures) > len(skipped):
        table.add_row("[red]Failed[/red]", str(len(report.actionable_failures) - len(skipped)))
    if skipped:
        table.add_row("[yellow]Skipped[/yellow]", str(len(skipped)))
    console.print(table)

    if len(report.actionable_failures) == len(skipped):
        return

    error = report.failure_error()
    if error is not None:
        console.print(
            Panel(
                f"{error.description}: {error.format_paths(limit)}\n"
                f"[dim]{error.recovery_suggestion}[/dim]",
                title="[bold yellow]Partial failure[/bold yellow]",
                border_style="yellow",
            )
        )
    elif report.is_total_failure:
        suggestions = {o.recovery_suggestion for o in report.actionable_failures if o.recovery_suggestion}
        console.print(
            Panel(
                "Nothing could be moved to the trash."
                + "".join(f"\n[dim]{s}[/dim]" for s in sorted(suggestions)),
                border_style="red",
            )
        )


def show_statistics(stats: CleaningStatistics, recent: Sequence[CleaningSession] = ()) -> None:
    """Display cleaning history totals and the most recent sessions."""
    console.print(
        Panel(
            f"[bold]Total cleaned:[/bold] {format_size(stats.total_size_cleaned)}\n"
            f"  Sessions: {stats.session_count}\n"
            f"  Items: {stats.total_items_cleaned}\n"
            f"  Average per session: {format_size(stats.average_size_per_session)}",
            title="Cleaning Statistics",
            border_style="blue",
        )
    )

    if recent:
        table = Table(title="Recent Sessions", show_header=True, header_style="bold")
        table.add_column("When")
        table.add_column("Items", justify="right")
        table.add_column("Freed", justify="right")
        for session in recent:
            table.add_row(
                session.timestamp.strftime("%Y-%m-%d %H:%M"),
                str(session.item_count),
                format_size(session.total_size),
            )
        console.print(table)


def show_locations(locations: Sequence[ScanLocation]) -> None:
    """Display configured scan locations."""
    if not locations:
        console.print("[dim]No scan locations configured. Add one with 'devprune locations add PATH'.[/dim]")
        return

    table = Table(title="Scan Locations", show_header=True, header_style="bold")
    table.add_column("ID", style="dim")
    table.add_column("Name", style="cyan")
    table.add_column("Path")
    table.add_column("Enabled", justify="center")
    table.add_column("Last scanned", justify="right")
    for loc in locations:
        table.add_row(
            str(loc.id)[:8],
            loc.name,
            loc.path,
            "[green]✓[/green]" if loc.is_enabled else "[red]✗[/red]",
            format_age(loc.last_scanned),
        )
    console.print(table)


def show_static_locations(locations: Sequence[StaticLocation]) -> None:
    """Display global cache directories."""
    table = Table(title="Developer Caches", show_header=True, header_style="bold")
    table.add_column("Cache", style="cyan")
    table.add_column("Size", justify="right")
    table.add_column("Modified", justify="right")
    table.add_column("Path")
    for loc in locations:
        if loc.exists:
            table.add_row(loc.display_name, _size_cell(loc), format_age(loc.last_modified), loc.path)
            for sub in loc.sub_items[:SUB_ITEM_LIMIT]:
                table.add_row(
                    f"[dim]  └ {sub.name}[/dim]",
                    f"[dim]{format_size(sub.size_bytes)}[/dim]",
                    f"[dim]{format_age(sub.last_modified)}[/dim]",
                    "",
                )
            if len(loc.sub_items) > SUB_ITEM_LIMIT:
                table.add_row(f"[dim]  └ and {len(loc.sub_items) - SUB_ITEM_LIMIT} more[/dim]", "", "", "")
        else:
            table.add_row(f"[dim]{loc.display_name}[/dim]", "[dim]-[/dim]", "", f"[dim]{loc.path} (not found)[/dim]")
    console.print(table)
    console.print(
        f"[bold]Total: {format_size(sum(loc.size_bytes for loc in locations if loc.exists))}[/bold]"
    )


def show_scanning_progress() -> Progress:
    """Create a spinner for scanning (total is unknown up front)."""
    return Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        TimeElapsedColumn(),
        console=console,
        transient=True,
    )


def show_deletion_progress() -> Progress:
    """Create a progress bar for moving items to the trash."""
    return Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TextColumn("{task.completed}/{task.total}"),
        TimeElapsedColumn(),
        console=console,
    )


def confirm_action(message: str) -> bool:
    """Ask for confirmation."""
    from rich.prompt import Confirm

    return Confirm.ask(message)

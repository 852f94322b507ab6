"""CLI interface for devprune."""

import json
import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from devprune import __version__
from devprune.cleaner import DeletionEngine
from devprune.config import AppConfig, ConfigStore
from devprune.display import (
    confirm_action,
    console,
    show_deletion_progress,
    show_deletion_report,
    show_folders_table,
    show_locations,
    show_scan_session,
    show_scanning_progress,
    show_static_locations,
    show_statistics,
)
from devprune.errors import ConfigurationError, DevPruneError, ScanCancelledError, ScanError
from devprune.filters import PRESETS, FilterCriteria, apply_filters, parse_size
from devprune.models import BuildFolder, ProjectType, ScanLocation, ScanSession, format_size
from devprune.project_types import ProjectTypeClassifier
from devprune.recursive_scanner import ScanEngine
from devprune.scanner import CancelToken
from devprune.static_locations import scan_static_locations
from devprune.statistics import StatisticsStore

log = logging.getLogger(__name__)

EXIT_CANCELLED = 130

# Create Typer app
app = typer.Typer(
    name="devprune",
    help="Find and remove regenerable build folders across your projects",
    add_completion=False,
)
locations_app = typer.Typer(help="Manage scan locations", no_args_is_help=True)
app.add_typer(locations_app, name="locations")
caches_app = typer.Typer(help="Show global developer caches and manage custom ones")
app.add_typer(caches_app, name="caches")


def _setup_logging(verbosity: int) -> None:
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"devprune version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None,
        "--version",
        "-v",
        help="Show version and exit.",
        callback=version_callback,
        is_eager=True,
    ),
    verbose: int = typer.Option(
        0, "--verbose", "-V", count=True, help="Increase verbosity (-V info, -VV debug)"
    ),
) -> None:
    """devprune - reclaim disk space from build artifacts."""
    _setup_logging(verbose)


def _load_config(store: ConfigStore) -> AppConfig:
    try:
        return store.load()
    except ConfigurationError as e:
        console.print(f"[red]Error: {e}[/red]")
        console.print(f"[dim]{e.recovery_suggestion}[/dim]")
        raise typer.Exit(1)


def _build_engine(config: AppConfig) -> ScanEngine:
    classifier = ProjectTypeClassifier(
        rules=config.rules or None,
        precedence=config.type_precedence,
        enabled_types=config.enabled_types,
    )
    return ScanEngine(
        classifier=classifier,
        max_workers=config.max_workers,
        max_depth=config.max_depth,
        excluded_paths=config.excluded_paths,
    )


def _resolve_locations(paths: Optional[list[Path]], config: AppConfig) -> list[ScanLocation]:
    """Ad-hoc paths from the command line, otherwise the configured locations."""
    if paths:
        return [ScanLocation(name=p.name or str(p), path=str(p.expanduser())) for p in paths]
    locations = config.enabled_locations()
    if not locations:
        console.print("[yellow]No scan locations configured.[/yellow]")
        console.print("  devprune locations add ~/Projects   # Remember a location")
        console.print("  devprune scan ~/Projects            # Scan once")
        raise typer.Exit(1)
    return locations


def _build_criteria(
    project_type: Optional[ProjectType],
    preset: Optional[str],
    min_size: Optional[str],
    older_than: Optional[int],
) -> FilterCriteria:
    if preset is not None and preset not in PRESETS:
        console.print(f"[red]Unknown preset: {preset}[/red]")
        console.print("\nAvailable presets:")
        for preset_id in PRESETS:
            console.print(f"  • {preset_id}")
        raise typer.Exit(1)

    size_threshold = None
    if min_size is not None:
        try:
            size_threshold = parse_size(min_size)
        except ValueError as e:
            console.print(f"[red]{e}[/red]")
            raise typer.Exit(1)

    return FilterCriteria(
        project_type=project_type,
        preset=preset,
        size_threshold=size_threshold,
        age_threshold_days=older_than,
    )


def _run_scan(
    engine: ScanEngine,
    locations: list[ScanLocation],
    store: ConfigStore,
    quiet: bool = False,
) -> ScanSession:
    """Scan with a spinner; Ctrl-C cancels cleanly."""
    token = CancelToken()

    def on_location_scanned(location: ScanLocation, when) -> None:
        # Ad-hoc locations are not in the config and are ignored
        try:
            store.mark_scanned(location.id, when)
        except ConfigurationError as e:
            log.warning("Could not update last scanned time: %s", e)

    try:
        if quiet:
            return engine.scan(locations, cancel_token=token, on_location_scanned=on_location_scanned)

        with show_scanning_progress() as progress:
            task = progress.add_task("Scanning...", total=None)

            def update_progress(path: str, found: int) -> None:
                progress.update(task, description=f"Found {found}: {path}")

            return engine.scan(
                locations,
                cancel_token=token,
                progress_callback=update_progress,
                on_location_scanned=on_location_scanned,
            )
    except (KeyboardInterrupt, ScanCancelledError):
        token.cancel()
        console.print("[yellow]Scan cancelled[/yellow]")
        raise typer.Exit(EXIT_CANCELLED)
    except ScanError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)


def _folder_to_json(folder: BuildFolder) -> dict:
    data = folder.model_dump(mode="json", exclude={"is_selected"})
    data["size_human"] = folder.size_human
    return data


TYPE_OPTION = typer.Option(None, "--type", "-t", help="Only this project type")
PRESET_OPTION = typer.Option(None, "--preset", "-p", help="Filter preset (see 'devprune presets')")
MIN_SIZE_OPTION = typer.Option(None, "--min-size", help="Minimum size, e.g. 500M or 1G")
OLDER_THAN_OPTION = typer.Option(None, "--older-than", min=0, help="Modified at least N days ago")


@app.command()
def scan(
    paths: Optional[list[Path]] = typer.Argument(None, help="Directories to scan (default: configured locations)"),
    project_type: Optional[ProjectType] = TYPE_OPTION,
    preset: Optional[str] = PRESET_OPTION,
    min_size: Optional[str] = MIN_SIZE_OPTION,
    older_than: Optional[int] = OLDER_THAN_OPTION,
    as_json: bool = typer.Option(False, "--json", help="Output as JSON"),
) -> None:
    """Scan for build folders and show what could be reclaimed."""
    criteria = _build_criteria(project_type, preset, min_size, older_than)
    store = ConfigStore()
    config = _load_config(store)
    locations = _resolve_locations(paths, config)

    session = _run_scan(_build_engine(config), locations, store, quiet=as_json)
    folders = apply_filters(session.build_folders, criteria)

    if as_json:
        data = {
            "total_size": sum(f.size_bytes for f in folders),
            "build_folders": [_folder_to_json(f) for f in folders],
            "warnings": [w.model_dump(mode="json") for w in session.warnings],
        }
        typer.echo(json.dumps(data, indent=2))
        return

    console.print()
    show_scan_session(session, folders)

    if folders:
        console.print()
        console.print("[dim]Run [bold]devprune clean[/bold] with the same filters to move them to the trash[/dim]")


@app.command()
def clean(
    paths: Optional[list[Path]] = typer.Argument(None, help="Directories to scan (default: configured locations)"),
    project_type: Optional[ProjectType] = TYPE_OPTION,
    preset: Optional[str] = PRESET_OPTION,
    min_size: Optional[str] = MIN_SIZE_OPTION,
    older_than: Optional[int] = OLDER_THAN_OPTION,
    caches: bool = typer.Option(False, "--caches", help="Also clean global developer caches"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Simulate without deleting"),
    yes: bool = typer.Option(False, "-y", "--yes", help="Skip confirmation prompts"),
) -> None:
    """Move matching build folders to the trash."""
    criteria = _build_criteria(project_type, preset, min_size, older_than)
    store = ConfigStore()
    config = _load_config(store)
    locations = _resolve_locations(paths, config)

    scan_engine = _build_engine(config)
    console.print("[bold]Scanning for build folders...[/bold]\n")
    session = _run_scan(scan_engine, locations, store)
    for warning in session.warnings:
        console.print(f"[yellow]! Skipped {warning.message}[/yellow]")

    folders = apply_filters(session.build_folders, criteria)
    for result in session.results:
        result.set_selected(f.id for f in folders)
    items: list = session.selected_folders()

    if caches:
        cache_criteria = criteria.model_copy(update={"project_type": None})
        static = [
            s
            for s in scan_static_locations(
                config.static_locations, custom_locations=config.custom_cache_locations
            )
            if s.exists
        ]
        items.extend(apply_filters(static, cache_criteria))

    if not items:
        console.print("[yellow]Nothing to clean.[/yellow]")
        raise typer.Exit(0)

    console.print()
    if dry_run:
        console.print("[yellow]DRY RUN - Nothing will be moved to the trash[/yellow]\n")
    build_items = [i for i in items if isinstance(i, BuildFolder)]
    if build_items:
        show_folders_table(build_items, title="To Clean")
    cache_items = [i for i in items if not isinstance(i, BuildFolder)]
    if cache_items:
        show_static_locations(cache_items)

    if not yes and not dry_run:
        console.print()
        total = sum(i.size_bytes for i in items)
        if not confirm_action(f"Move {len(items)} items ({format_size(total)}) to the trash?"):
            console.print("[yellow]Cancelled[/yellow]")
            raise typer.Exit(0)

    engine = DeletionEngine(
        classifier=scan_engine.classifier,
        recorder=StatisticsStore(),
        max_workers=config.max_workers,
    )
    token = CancelToken()

    try:
        with show_deletion_progress() as progress:
            task = progress.add_task("Moving to trash...", total=len(items))

            def update_progress(done: int, total: int, outcome) -> None:
                progress.update(task, completed=done, description=f"{outcome.name}")

            report = engine.delete(items, cancel_token=token, progress_callback=update_progress, dry_run=dry_run)
    except KeyboardInterrupt:
        token.cancel()
        console.print("[yellow]Cleaning cancelled[/yellow]")
        raise typer.Exit(EXIT_CANCELLED)

    console.print()
    show_deletion_report(report)

    if report.cancelled:
        console.print("[yellow]Cleaning cancelled[/yellow]")
        raise typer.Exit(EXIT_CANCELLED)
    if report.actionable_failures:
        raise typer.Exit(1)


@locations_app.command("list")
def locations_list() -> None:
    """List configured scan locations."""
    show_locations(_load_config(ConfigStore()).scan_locations)


@locations_app.command("add")
def locations_add(
    path: Path = typer.Argument(..., help="Directory to scan"),
    name: Optional[str] = typer.Option(None, "--name", "-n", help="Display name"),
) -> None:
    """Add a scan location."""
    try:
        location = ConfigStore().add_location(str(path), name=name)
    except ConfigurationError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)
    console.print(f"[green]✓[/green] Added {location.name} ({location.path}) [dim]{str(location.id)[:8]}[/dim]")


@locations_app.command("remove")
def locations_remove(
    location: str = typer.Argument(..., help="Location ID (or prefix) or path"),
) -> None:
    """Remove a scan location."""
    store = ConfigStore()
    try:
        removed = store.remove_location(store.find_location(location).id)
    except ConfigurationError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)
    console.print(f"[green]✓[/green] Removed {removed.name} ({removed.path})")


@locations_app.command("toggle")
def locations_toggle(
    location: str = typer.Argument(..., help="Location ID (or prefix) or path"),
) -> None:
    """Enable or disable a scan location."""
    store = ConfigStore()
    try:
        toggled = store.toggle_location(store.find_location(location).id)
    except ConfigurationError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)
    state = "[green]enabled[/green]" if toggled.is_enabled else "[red]disabled[/red]"
    console.print(f"{toggled.name} is now {state}")


@app.command()
def types(
    customize: bool = typer.Option(
        False, "--customize", help="Copy the built-in rules into the config file for editing"
    ),
    reset: bool = typer.Option(False, "--reset", help="Discard custom rules and use the built-in ones"),
) -> None:
    """List detected project types and the rules that find their build folders."""
    store = ConfigStore()
    try:
        if reset:
            store.reset_rules()
            console.print("[green]✓[/green] Detection rules reset to defaults")
        elif customize:
            rules = store.customize_rules()
            console.print(f"[green]✓[/green] {len(rules)} rules in {store.path}; edit the \"rules\" list")
    except ConfigurationError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)

    config = _load_config(store)
    title = "Project Types (custom rules)" if config.rules else "Project Types"
    table = Table(title=title, show_header=True, header_style="bold")
    table.add_column("ID", style="bold")
    table.add_column("Name", style="cyan")
    table.add_column("Build folders")
    table.add_column("Detected by")

    for rule in config.detection_rules():
        v = rule.validation
        markers = v.any_of_files + v.all_of_files + v.required_directories
        markers += [f"*.{ext}" for ext in v.file_extensions]
        table.add_row(
            rule.project_type.value,
            rule.project_type.display_name,
            ", ".join(rule.folder_names),
            ", ".join(dict.fromkeys(markers)) or "[dim]folder name[/dim]",
        )

    console.print(table)


@app.command()
def presets() -> None:
    """List filter presets."""
    for preset in PRESETS.values():
        console.print(f"  • [bold]{preset.id}[/bold] - {preset.name}: {preset.description}")


@caches_app.callback(invoke_without_command=True)
def caches_cmd(ctx: typer.Context) -> None:
    """Show global developer caches (DerivedData, Gradle, npm, ...)."""
    if ctx.invoked_subcommand is not None:
        return

    store = ConfigStore()
    config = _load_config(store)
    custom = config.enabled_custom_caches()
    try:
        with show_scanning_progress() as progress:
            task = progress.add_task("Checking caches...", total=len(config.static_locations) + len(custom))

            def update_progress(name: str, done: int, total: int) -> None:
                progress.update(task, completed=done, description=f"Checked {name}")

            locations = scan_static_locations(
                config.static_locations,
                progress_callback=update_progress,
                custom_locations=custom,
            )
    except (KeyboardInterrupt, ScanCancelledError):
        console.print("[yellow]Scan cancelled[/yellow]")
        raise typer.Exit(EXIT_CANCELLED)

    if custom:
        try:
            store.mark_caches_scanned([loc.id for loc in custom])
        except ConfigurationError as e:
            log.warning("Could not update last scanned time: %s", e)

    show_static_locations(locations)
    if any(loc.exists for loc in locations):
        console.print("[dim]Run [bold]devprune clean --caches[/bold] to include them in a cleanup[/dim]")


@caches_app.command("add")
def caches_add(
    path: Path = typer.Argument(..., help="Cache directory"),
    name: Optional[str] = typer.Option(None, "--name", "-n", help="Display name"),
    pattern: Optional[str] = typer.Option(
        None, "--pattern", help="Glob for the entries to list inside it, e.g. 'cache-*'"
    ),
) -> None:
    """Add a custom cache directory."""
    try:
        location = ConfigStore().add_custom_cache(str(path), name=name, pattern=pattern)
    except ConfigurationError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)
    console.print(f"[green]✓[/green] Added cache {location.name} ({location.path}) [dim]{str(location.id)[:8]}[/dim]")


@caches_app.command("remove")
def caches_remove(
    location: str = typer.Argument(..., help="Cache ID (or prefix) or path"),
) -> None:
    """Remove a custom cache directory."""
    try:
        removed = ConfigStore().remove_custom_cache(location)
    except ConfigurationError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)
    console.print(f"[green]✓[/green] Removed cache {removed.name} ({removed.path})")


@app.command()
def stats(
    clear: bool = typer.Option(False, "--clear", help="Forget the cleaning history"),
    recent: int = typer.Option(5, "--recent", min=0, help="Number of recent sessions to list"),
) -> None:
    """Show cleaning history."""
    store = StatisticsStore()
    if clear:
        store.clear()
        console.print("[green]✓[/green] Cleaning history cleared")
        return

    sessions = store.load_sessions()
    if not sessions:
        console.print("[dim]No cleaning sessions recorded yet.[/dim]")
        return
    show_statistics(store.get_statistics(), sessions[:recent])


def run() -> None:
    """Console script entry point."""
    try:
        app()
    except DevPruneError as e:
        console.print(f"[red]Error: {e}[/red]")
        if e.recovery_suggestion:
            console.print(f"[dim]{e.recovery_suggestion}[/dim]")
        raise SystemExit(1)


if __name__ == "__main__":
    run()

"""Recursive discovery of build folders across scan locations.

Each enabled location is walked in its own worker. Directories are tested
against the project type rules before descending; a matched build folder is
sized on a separate bounded pool and never descended into.
"""

import logging
import os
import queue
import time
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime
from pathlib import Path
from typing import Callable, Generator, Iterable, Optional
from uuid import UUID

from devprune.errors import ScanCancelledError, ScanError
from devprune.models import BuildFolder, ScanLocation, ScanResult, ScanSession, ScanWarning
from devprune.project_types import Classification, ProjectTypeClassifier
from devprune.scanner import (
    CancelToken,
    get_directory_size,
    get_last_modified,
    is_network_path,
)

log = logging.getLogger(__name__)

DEFAULT_MAX_DEPTH = 10
DEFAULT_MAX_WORKERS = 4

# Directories pruned without classification (version control, trash, OS metadata)
SKIP_DIRECTORIES = frozenset(
    {
        ".git",
        ".svn",
        ".hg",
        ".bzr",
        ".Trash",
        ".Trashes",
        ".Spotlight-V100",
        ".fseventsd",
    }
)

ProgressCallback = Callable[[str, int], None]  # (path, folders found so far in this root)

_FOLDER = "folder"
_WARNING = "warning"
_DONE = "done"


def find_build_folders(
    root: Path,
    classifier: ProjectTypeClassifier,
    max_depth: int = DEFAULT_MAX_DEPTH,
    cancel_token: Optional[CancelToken] = None,
    excluded_paths: frozenset[str] = frozenset(),
) -> Generator[tuple[Path, Classification], None, None]:
    """
    Find build folders below ``root`` without computing their sizes.

    Uses os.scandir for performance instead of pathlib.glob().

    Args:
        root: Directory to start from (never classified itself)
        classifier: Rule table used to recognise build folders
        max_depth: Maximum depth to search (prevents runaway recursion)
        cancel_token: Checked before every directory visit
        excluded_paths: Absolute paths whose subtrees are skipped

    Yields:
        (path, classification) for each build folder, in discovery order

    Raises:
        ScanCancelledError: If the token is cancelled
    """
    if max_depth <= 0:
        return

    if cancel_token is not None:
        cancel_token.raise_if_cancelled()

    home_library = str(Path.home() / "Library")

    try:
        with os.scandir(root) as it:
            entries = sorted(it, key=lambda e: e.name)
    except OSError as e:
        log.debug("Skipping unreadable directory %s: %s", root, e)
        return

    for entry in entries:
        try:
            # Skip files and never follow symlinks out of the tree
            if not entry.is_dir(follow_symlinks=False):
                continue
        except OSError:
            continue

        name = entry.name
        if name in SKIP_DIRECTORIES or entry.path in excluded_paths:
            continue

        entry_path = Path(entry.path)

        if classifier.matches_name(name):
            classification = classifier.classify(entry_path)
            if classification is not None:
                yield entry_path, classification
                # A build folder is a leaf: nothing nested inside it is reported
                continue

        # Hidden directories are only interesting when a rule names them
        if name.startswith("."):
            continue

        # macOS per-user Library holds application data, not projects
        if entry.path == home_library:
            continue

        yield from find_build_folders(
            entry_path,
            classifier,
            max_depth - 1,
            cancel_token,
            excluded_paths,
        )


def _is_within(path: str, ancestor: str) -> bool:
    return path == ancestor or path.startswith(ancestor.rstrip(os.sep) + os.sep)


def _drop_nested(folders: list[BuildFolder]) -> list[BuildFolder]:
    """Remove duplicates and folders that sit inside another reported folder."""
    kept: list[BuildFolder] = []
    kept_paths: list[str] = []
    for folder in sorted(folders, key=lambda f: len(Path(f.path).parts)):
        if any(_is_within(folder.path, p) for p in kept_paths):
            continue
        kept.append(folder)
        kept_paths.append(folder.path)
    order = {id(f): i for i, f in enumerate(folders)}
    return sorted(kept, key=lambda f: order[id(f)])


class ScanEngine:
    """Concurrent scanner over a set of scan locations."""

    def __init__(
        self,
        classifier: Optional[ProjectTypeClassifier] = None,
        max_workers: int = DEFAULT_MAX_WORKERS,
        max_depth: int = DEFAULT_MAX_DEPTH,
        excluded_paths: Iterable[str] = (),
    ) -> None:
        self.classifier = classifier or ProjectTypeClassifier()
        self.max_workers = max(1, max_workers)
        self.max_depth = max_depth
        self.excluded_paths = frozenset(os.path.abspath(os.path.expanduser(p)) for p in excluded_paths)

    def stream(
        self,
        locations: Iterable[ScanLocation],
        enabled_only: bool = True,
        cancel_token: Optional[CancelToken] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> Generator[BuildFolder, None, None]:
        """
        Lazily yield build folders as they are sized.

        No ordering is guaranteed across locations. Closing the generator
        early stops the workers. Like ``scan()``, nothing nested inside
        another reported build folder is yielded: a location that lies
        inside a build folder of another location contributes nothing.

        Raises:
            ScanCancelledError: After the workers unwind, if ``cancel_token`` was cancelled
        """
        snapshot = self._snapshot(locations, enabled_only)
        shadowed = self._shadowed_locations(snapshot)
        seen: list[str] = []
        events = self._run(snapshot, cancel_token, progress_callback)
        try:
            for kind, location, payload in events:
                if kind != _FOLDER or location.id in shadowed:
                    continue
                if any(_is_within(payload.path, p) for p in seen):
                    continue
                seen.append(payload.path)
                yield payload
        finally:
            events.close()

    def scan(
        self,
        locations: Iterable[ScanLocation],
        enabled_only: bool = True,
        cancel_token: Optional[CancelToken] = None,
        progress_callback: Optional[ProgressCallback] = None,
        on_location_scanned: Optional[Callable[[ScanLocation, datetime], None]] = None,
    ) -> ScanSession:
        """
        Scan all (enabled) locations and return the complete result.

        Either a full ScanSession is returned or an exception is raised;
        a cancelled scan never produces partial results and never reports
        locations as scanned.

        Args:
            locations: Scan locations; copied before the scan starts
            enabled_only: Skip locations whose ``is_enabled`` is False
            cancel_token: Cooperative cancellation flag
            progress_callback: Optional callback(path, found_count) per discovered folder
            on_location_scanned: Called once per successfully scanned location,
                only after the whole scan completed

        Returns:
            ScanSession with one ScanResult per scanned location plus warnings

        Raises:
            ScanCancelledError: If cancelled
            ScanError: If no location could be scanned at all
        """
        started_at = datetime.now()
        start = time.monotonic()
        snapshot = self._snapshot(locations, enabled_only)

        found: dict[UUID, list[BuildFolder]] = {loc.id: [] for loc in snapshot}
        durations: dict[UUID, float] = {}
        warnings: list[ScanWarning] = []

        for kind, location, payload in self._run(snapshot, cancel_token, progress_callback):
            if kind == _FOLDER:
                found[location.id].append(payload)
            elif kind == _WARNING:
                warnings.append(payload)
            elif kind == _DONE:
                durations[location.id] = payload

        failed = {w.location_id for w in warnings}
        if snapshot and len(failed) == len(snapshot):
            details = "; ".join(w.message for w in warnings)
            raise ScanError(f"None of the scan locations could be scanned: {details}")

        # Overlapping roots can report the same folder twice
        kept_ids = {f.id for f in _drop_nested([f for folders in found.values() for f in folders])}

        results = []
        scanned: list[ScanLocation] = []
        for location in snapshot:
            if location.id in failed:
                continue
            results.append(
                ScanResult(
                    root_path=location.path,
                    scan_date=started_at,
                    build_folders=[f for f in found[location.id] if f.id in kept_ids],
                    scan_duration=durations.get(location.id, 0.0),
                )
            )
            scanned.append(location)

        session = ScanSession(
            started_at=started_at,
            duration=time.monotonic() - start,
            results=results,
            warnings=warnings,
        )
        log.info(
            "Scan finished: %d build folders in %d locations (%.1fs)",
            len(session.build_folders),
            len(results),
            session.duration,
        )

        if on_location_scanned:
            completed_at = datetime.now()
            for location in scanned:
                on_location_scanned(location, completed_at)

        return session

    def _snapshot(self, locations: Iterable[ScanLocation], enabled_only: bool) -> list[ScanLocation]:
        """Immutable copy of the locations to scan, de-duplicated by path."""
        snapshot: list[ScanLocation] = []
        seen_paths: set[str] = set()
        for location in locations:
            if enabled_only and not location.is_enabled:
                continue
            path = os.path.abspath(os.path.expanduser(location.path))
            if path in seen_paths:
                continue
            seen_paths.add(path)
            snapshot.append(location.model_copy(deep=True, update={"path": path}))
        return snapshot

    def _shadowed_locations(self, snapshot: list[ScanLocation]) -> set[UUID]:
        """Locations that another location's walk reports as (part of) a build folder."""
        shadowed = set()
        for location in snapshot:
            for other in snapshot:
                if other is not location and _is_within(location.path, other.path):
                    if self._reached_as_build_folder(Path(other.path), Path(location.path)):
                        shadowed.add(location.id)
                        break
        return shadowed

    def _reached_as_build_folder(self, root: Path, target: Path) -> bool:
        """Would walking ``root`` stop at a build folder on the way down to ``target``?"""
        home_library = str(Path.home() / "Library")
        current = root
        for depth, name in enumerate(target.relative_to(root).parts, start=1):
            current = current / name
            if depth > self.max_depth or name in SKIP_DIRECTORIES:
                return False
            if str(current) in self.excluded_paths or current.is_symlink():
                return False
            if self.classifier.matches_name(name) and self.classifier.classify(current) is not None:
                return True
            if name.startswith(".") or str(current) == home_library:
                return False
        return False

    def _run(
        self,
        snapshot: list[ScanLocation],
        cancel_token: Optional[CancelToken],
        progress_callback: Optional[ProgressCallback],
    ) -> Generator[tuple[str, ScanLocation, object], None, None]:
        """Drive one worker per root and relay their events to the caller's thread."""
        if not snapshot:
            return

        token = CancelToken(parent=cancel_token)
        events: queue.Queue = queue.Queue()
        remaining = len(snapshot)

        with ThreadPoolExecutor(
            max_workers=self.max_workers, thread_name_prefix="devprune-size"
        ) as size_pool, ThreadPoolExecutor(
            max_workers=min(self.max_workers, len(snapshot)), thread_name_prefix="devprune-scan"
        ) as root_pool:
            try:
                for location in snapshot:
                    root_pool.submit(
                        self._scan_root, location, token, size_pool, events, progress_callback
                    )
                while remaining:
                    event = events.get()
                    if event[0] == _DONE:
                        remaining -= 1
                    yield event
            finally:
                # Consumer stopped early (closed generator, KeyboardInterrupt): stop workers
                if remaining:
                    token.cancel()

        if token.cancelled:
            raise ScanCancelledError()

    def _scan_root(
        self,
        location: ScanLocation,
        token: CancelToken,
        size_pool: ThreadPoolExecutor,
        events: queue.Queue,
        progress_callback: Optional[ProgressCallback],
    ) -> None:
        root = Path(location.path)
        start = time.monotonic()

        def warn(kind: str, message: str) -> None:
            log.warning("%s: %s", location.path, message)
            events.put(
                (
                    _WARNING,
                    location,
                    ScanWarning(
                        location_id=location.id,
                        root_path=location.path,
                        kind=kind,
                        message=f"{location.path}: {message}",
                    ),
                )
            )

        try:
            if not root.is_dir():
                warn("not_found", "location does not exist or is not a directory")
                return
            if is_network_path(root):
                warn("network_unsupported", "network volumes are not scanned")
                return
            try:
                with os.scandir(root):
                    pass
            except OSError as e:
                warn("inaccessible", f"cannot read location ({e.strerror or e})")
                return

            log.info("Scanning %s", root)
            pending: deque[Future] = deque()
            found = 0

            def flush(block: bool) -> None:
                while pending and (block or pending[0].done()):
                    folder = pending.popleft().result()
                    if folder is not None:
                        events.put((_FOLDER, location, folder))

            for path, classification in find_build_folders(
                root, self.classifier, self.max_depth, token, self.excluded_paths
            ):
                pending.append(size_pool.submit(self._build_folder, path, classification, token))
                found += 1
                if progress_callback:
                    progress_callback(str(path), found)
                flush(block=False)

            flush(block=True)
        except ScanCancelledError:
            log.info("Scan of %s cancelled", root)
        except Exception as e:
            log.exception("Scan of %s failed", root)
            warn("error", f"scan failed ({e})")
        finally:
            events.put((_DONE, location, time.monotonic() - start))

    def _build_folder(
        self,
        path: Path,
        classification: Classification,
        token: CancelToken,
    ) -> Optional[BuildFolder]:
        token.raise_if_cancelled()
        size = get_directory_size(path, token)
        try:
            last_modified = get_last_modified(path)
        except OSError as e:
            # Removed while we were sizing it
            log.debug("Build folder vanished during scan: %s (%s)", path, e)
            return None

        if size.is_partial:
            log.debug("Size of %s is partial (%d entries unreadable)", path, size.skipped)

        return BuildFolder(
            path=str(path),
            project_type=classification.project_type,
            size_bytes=size.size_bytes,
            size_is_partial=size.is_partial,
            project_name=classification.project_root.name or str(classification.project_root),
            last_modified=last_modified,
        )

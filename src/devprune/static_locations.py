"""Global developer caches that live outside project trees.

Besides the well-known caches (DerivedData, Gradle, npm, ...) users can add
their own cache directories, optionally with a glob pattern that selects
which entries inside them are listed.
"""

import fnmatch
import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Callable, Iterable, Optional

from devprune.models import (
    CustomCacheLocation,
    StaticLocation,
    StaticLocationSubItem,
    StaticLocationType,
)
from devprune.scanner import CancelToken, get_directory_size, get_last_modified

log = logging.getLogger(__name__)

StaticProgressCallback = Callable[[str, int, int], None]  # (display name, done, total)


def check_static_location(
    location_type: StaticLocationType,
    path: Optional[Path] = None,
    cancel_token: Optional[CancelToken] = None,
) -> StaticLocation:
    """
    Measure one cache directory.

    Args:
        location_type: Which cache
        path: Override for the default location (mostly for tests)
        cancel_token: Checked while sizing

    Returns:
        StaticLocation; ``exists`` is False and size 0 if the directory is missing
    """
    path = path or location_type.default_path

    if not path.is_dir() or path.is_symlink():
        log.debug("%s not present at %s", location_type.display_name, path)
        return StaticLocation(type=location_type, path=str(path), exists=False)

    size = get_directory_size(path, cancel_token)
    try:
        last_modified = get_last_modified(path)
    except OSError:
        last_modified = datetime.now()

    return StaticLocation(
        type=location_type,
        path=str(path),
        size_bytes=size.size_bytes,
        size_is_partial=size.is_partial,
        last_modified=last_modified,
    )


def matches_pattern(name: str, pattern: str) -> bool:
    """Case-sensitive shell-style match of an entry name ('cache-*', '*.log')."""
    return fnmatch.fnmatchcase(name, pattern)


def _sub_item(entry: os.DirEntry, cancel_token: Optional[CancelToken]) -> StaticLocationSubItem:
    path = Path(entry.path)
    if entry.is_dir(follow_symlinks=False):
        size = get_directory_size(path, cancel_token).size_bytes
    else:
        size = entry.stat(follow_symlinks=False).st_size
    try:
        last_modified = get_last_modified(path)
    except OSError:
        last_modified = None
    return StaticLocationSubItem(
        name=entry.name, path=str(path), size_bytes=size, last_modified=last_modified
    )


def list_sub_items(
    path: Path,
    pattern: Optional[str] = None,
    cancel_token: Optional[CancelToken] = None,
) -> list[StaticLocationSubItem]:
    """
    Size the entries directly inside a cache directory, largest first.

    With a pattern, entries whose name matches it are listed. Without one,
    or when nothing matches, the immediate subdirectories are listed.
    """
    try:
        with os.scandir(path) as it:
            entries = sorted(it, key=lambda e: e.name)
    except OSError as e:
        log.debug("Cannot list %s: %s", path, e)
        return []

    selected = []
    if pattern:
        selected = [e for e in entries if matches_pattern(e.name, pattern)]
        if not selected:
            log.debug("Nothing in %s matches %r", path, pattern)
    if not selected:
        selected = [e for e in entries if e.is_dir(follow_symlinks=False)]

    items = []
    for entry in selected:
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()
        try:
            items.append(_sub_item(entry, cancel_token))
        except OSError as e:
            log.debug("Skipping %s: %s", entry.path, e)
    return sorted(items, key=lambda i: i.size_bytes, reverse=True)


def scan_custom_cache_location(
    location: CustomCacheLocation,
    cancel_token: Optional[CancelToken] = None,
) -> Optional[StaticLocation]:
    """
    Measure a user-defined cache directory.

    Returns:
        StaticLocation with its sub-items, or None if the directory is missing
    """
    path = Path(location.path)
    if not path.is_dir() or path.is_symlink():
        log.warning("Custom cache %r not found at %s", location.name, path)
        return None

    size = get_directory_size(path, cancel_token)
    try:
        last_modified = get_last_modified(path)
    except OSError:
        last_modified = datetime.now()

    sub_items = list_sub_items(path, location.pattern, cancel_token)
    log.debug("Custom cache %r: %d entries listed", location.name, len(sub_items))

    return StaticLocation(
        id=location.id,
        name=location.name,
        path=str(path),
        size_bytes=size.size_bytes,
        size_is_partial=size.is_partial,
        last_modified=last_modified,
        sub_items=sub_items,
    )


def scan_static_locations(
    types: Optional[Iterable[StaticLocationType]] = None,
    cancel_token: Optional[CancelToken] = None,
    progress_callback: Optional[StaticProgressCallback] = None,
    paths: Optional[dict[StaticLocationType, Path]] = None,
    custom_locations: Iterable[CustomCacheLocation] = (),
) -> list[StaticLocation]:
    """
    Measure the given cache types (default: all), one result per type,
    followed by the enabled custom caches that exist.

    Raises:
        ScanCancelledError: If the token is cancelled
    """
    selected = list(StaticLocationType) if types is None else list(types)
    custom = [loc for loc in custom_locations if loc.is_enabled]
    overrides = paths or {}
    total = len(selected) + len(custom)
    results = []

    for i, location_type in enumerate(selected, start=1):
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()
        results.append(
            check_static_location(location_type, overrides.get(location_type), cancel_token)
        )
        if progress_callback:
            progress_callback(location_type.display_name, i, total)

    for i, location in enumerate(custom, start=len(selected) + 1):
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()
        result = scan_custom_cache_location(location, cancel_token)
        if result is not None:
            results.append(result)
        if progress_callback:
            progress_callback(location.name, i, total)

    found = [r for r in results if r.exists]
    log.info(
        "Checked %d cache locations, %d present (%d bytes)",
        total,
        len(found),
        sum(r.size_bytes for r in found),
    )
    return results

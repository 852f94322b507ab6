"""Filesystem primitives for devprune: sizing, cancellation and volume checks."""

import logging
import os
import threading
from datetime import datetime
from pathlib import Path
from typing import NamedTuple, Optional

import psutil

from devprune.errors import ScanCancelledError

log = logging.getLogger(__name__)

# Filesystem types reported for network mounts (Linux /proc/mounts and macOS statfs names)
NETWORK_FILESYSTEMS = frozenset(
    {
        "nfs",
        "nfs4",
        "cifs",
        "smbfs",
        "smb3",
        "afpfs",
        "webdav",
        "davfs",
        "fuse.sshfs",
        "sshfs",
        "fuse.rclone",
        "9p",
        "ncpfs",
    }
)


def expand_path(path: str) -> Path:
    """Expand ~ and environment variables in path."""
    return Path(os.path.expanduser(os.path.expandvars(path)))


class CancelToken:
    """Cooperative cancellation flag shared between threads.

    A child token also reports cancelled when its parent is, so an engine can
    stop its own workers without touching the caller's token.
    """

    def __init__(self, parent: Optional["CancelToken"] = None) -> None:
        self._event = threading.Event()
        self._parent = parent

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        return self._parent is not None and self._parent.cancelled

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise ScanCancelledError()


class DirectorySize(NamedTuple):
    size_bytes: int
    file_count: int
    dir_count: int
    skipped: int  # entries that could not be read

    @property
    def is_partial(self) -> bool:
        return self.skipped > 0


def get_directory_size(path: Path, cancel_token: Optional[CancelToken] = None) -> DirectorySize:
    """
    Calculate the size of all regular files below a directory.

    Symbolic links are never followed and hard-linked files are counted once.
    Unreadable entries are skipped and counted in ``skipped`` so the caller
    gets a complete-but-degraded size plus an explicit partial flag.

    Args:
        path: Directory to measure
        cancel_token: Checked before every directory listing

    Returns:
        DirectorySize(size_bytes, file_count, dir_count, skipped)

    Raises:
        ScanCancelledError: If the token is cancelled mid-computation
    """
    total_size = 0
    file_count = 0
    dir_count = 0
    skipped = 0
    seen_inodes: set[tuple[int, int]] = set()
    pending = [os.fspath(path)]

    while pending:
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()

        current = pending.pop()
        try:
            with os.scandir(current) as entries:
                for entry in entries:
                    try:
                        if entry.is_symlink():
                            continue
                        if entry.is_dir(follow_symlinks=False):
                            dir_count += 1
                            pending.append(entry.path)
                        elif entry.is_file(follow_symlinks=False):
                            stat = entry.stat(follow_symlinks=False)
                            if stat.st_nlink > 1:
                                key = (stat.st_dev, stat.st_ino)
                                if key in seen_inodes:
                                    continue
                                seen_inodes.add(key)
                            total_size += stat.st_size
                            file_count += 1
                    except OSError:
                        skipped += 1
        except OSError as e:
            log.debug("Skipping unreadable directory %s: %s", current, e)
            skipped += 1

    return DirectorySize(total_size, file_count, dir_count, skipped)


def get_last_modified(path: Path) -> datetime:
    """Modification time of ``path`` itself (not following symlinks)."""
    return datetime.fromtimestamp(os.lstat(path).st_mtime)


def get_filesystem_type(path: Path) -> Optional[str]:
    """
    Find the filesystem type of the mount that holds ``path``.

    Returns:
        Lower-cased fstype (e.g. 'apfs', 'ext4', 'nfs') or None if unknown
    """
    target = os.path.realpath(path)
    best_mount = ""
    best_fstype: Optional[str] = None

    try:
        partitions = psutil.disk_partitions(all=True)
    except (OSError, RuntimeError) as e:
        log.debug("Cannot list mounted filesystems: %s", e)
        return None

    for partition in partitions:
        mount = partition.mountpoint
        prefix = mount.rstrip(os.sep) + os.sep
        if target == mount or target.startswith(prefix):
            if len(mount) >= len(best_mount):
                best_mount = mount
                best_fstype = partition.fstype.lower()

    return best_fstype


def is_network_path(path: Path) -> bool:
    """Whether ``path`` lives on a network-mounted volume."""
    fstype = get_filesystem_type(path)
    return fstype is not None and fstype in NETWORK_FILESYSTEMS

"""Error taxonomy for devprune.

Every error carries a short ``description`` and an actionable
``recovery_suggestion`` so callers can surface both to the user.
"""

import errno
from pathlib import Path
from typing import Optional, Sequence


class DevPruneError(Exception):
    """Base class for all devprune errors."""

    description = "An error occurred"
    recovery_suggestion = "Please try again."

    def __init__(self, message: Optional[str] = None) -> None:
        super().__init__(message or self.description)

    @property
    def message(self) -> str:
        return str(self)


class PathError(DevPruneError):
    """Error tied to a single filesystem path."""

    def __init__(self, path: str | Path, message: Optional[str] = None) -> None:
        self.path = str(path)
        super().__init__(message or f"{self.description}: {self.path}")


class PermissionDeniedError(PathError):
    description = "Permission denied"
    recovery_suggestion = (
        "Grant Full Disk Access to your terminal (macOS: System Settings > Privacy & Security > "
        "Full Disk Access) or check the folder's ownership."
    )


class PathNotFoundError(PathError):
    description = "File or folder not found"
    recovery_suggestion = "The folder may have been moved or deleted already. Scan again to refresh."


class FolderInUseError(PathError):
    description = "Folder is in use"
    recovery_suggestion = "Close the application holding this folder open, then try again."


class OutOfDiskSpaceError(PathError):
    description = "Not enough disk space to move the folder to the trash"
    recovery_suggestion = "Free up disk space or empty the trash, then try again."


class NetworkDriveUnsupportedError(PathError):
    description = "Network volumes are not supported"
    recovery_suggestion = "Clean build folders on network drives directly on the machine that hosts them."


class InvalidPathError(PathError):
    description = "Not a removable directory"
    recovery_suggestion = "Select a build folder directory. Protected system and home folders are never removed."


class ClassificationChangedError(PathError):
    description = "Folder no longer matches its detected project type"
    recovery_suggestion = "The project changed since the last scan. Scan again before cleaning."


class PartialDeletionFailureError(DevPruneError):
    """Some, but not all, items of a deletion batch failed."""

    description = "Some folders could not be removed"
    recovery_suggestion = "Review the failed folders, resolve the listed problems and retry."

    def __init__(self, paths: Sequence[str]) -> None:
        self.paths = [str(p) for p in paths]
        super().__init__(f"{self.description}: {self.format_paths()}")

    def format_paths(self, limit: int = 3) -> str:
        """Join failed paths, truncating to ``limit`` entries plus an 'and K more' suffix."""
        shown = self.paths[:limit]
        text = ", ".join(shown)
        remaining = len(self.paths) - len(shown)
        if remaining > 0:
            text += f" and {remaining} more"
        return text


class ScanCancelledError(DevPruneError):
    description = "Scan was cancelled"
    recovery_suggestion = "You can start a new scan whenever you're ready."


class ScanError(DevPruneError):
    """No scan location could be enumerated at all."""

    description = "None of the scan locations could be scanned"
    recovery_suggestion = "Check that the locations exist, are local disks and are readable."


class ConfigurationError(DevPruneError):
    description = "Invalid configuration"
    recovery_suggestion = "Fix or remove the devprune configuration file and try again."


class UnknownDevPruneError(DevPruneError):
    description = "An unexpected error occurred"
    recovery_suggestion = "Please try again. Run with -VV for diagnostic output."

    def __init__(self, underlying: BaseException, path: Optional[str | Path] = None) -> None:
        self.underlying = underlying
        self.path = str(path) if path is not None else None
        detail = f"{type(underlying).__name__}: {underlying}"
        if self.path:
            detail = f"{self.path}: {detail}"
        super().__init__(f"{self.description} ({detail})")


_ERRNO_MAP: dict[int, type[PathError]] = {
    errno.EACCES: PermissionDeniedError,
    errno.EPERM: PermissionDeniedError,
    errno.EROFS: PermissionDeniedError,
    errno.ENOENT: PathNotFoundError,
    errno.EBUSY: FolderInUseError,
    errno.ENOSPC: OutOfDiskSpaceError,
    errno.ENOTDIR: InvalidPathError,
}
# Not defined on every platform
for _name, _cls in (("ETXTBSY", FolderInUseError), ("EDQUOT", OutOfDiskSpaceError)):
    if hasattr(errno, _name):
        _ERRNO_MAP[getattr(errno, _name)] = _cls


def error_from_os_error(exc: OSError, path: str | Path) -> DevPruneError:
    """Map an OSError raised while touching ``path`` onto the error taxonomy."""
    error_cls = _ERRNO_MAP.get(exc.errno) if exc.errno is not None else None
    if error_cls is None:
        if isinstance(exc, PermissionError):
            error_cls = PermissionDeniedError
        elif isinstance(exc, FileNotFoundError):
            error_cls = PathNotFoundError
        else:
            return UnknownDevPruneError(exc, path)
    return error_cls(path)

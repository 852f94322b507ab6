"""Deletion of build folders and caches, with safety checks.

Folders are moved to the platform trash, never erased. Every input item gets
exactly one outcome; a failing item never stops the rest of the batch.
"""

import logging
import os
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional, Protocol, Sequence, Union

from send2trash import send2trash

from devprune.errors import (
    ClassificationChangedError,
    DevPruneError,
    FolderInUseError,
    InvalidPathError,
    NetworkDriveUnsupportedError,
    OutOfDiskSpaceError,
    PathNotFoundError,
    PermissionDeniedError,
    UnknownDevPruneError,
    error_from_os_error,
)
from devprune.models import (
    BuildFolder,
    CleanedItem,
    CleaningSession,
    DeletionFailureReason,
    DeletionOutcome,
    DeletionReport,
    StaticLocation,
)
from devprune.project_types import ProjectTypeClassifier
from devprune.scanner import CancelToken, expand_path, is_network_path

log = logging.getLogger(__name__)

DEFAULT_MAX_WORKERS = 4

# Paths that should NEVER be removed, even if something classifies them
BLOCKED_PATHS = [
    "~",
    "~/Documents",
    "~/Desktop",
    "~/Downloads",
    "~/Pictures",
    "~/Music",
    "~/Movies",
    "~/Library",
    "/",
    "/System",
    "/Library",
    "/Applications",
    "/usr",
    "/bin",
    "/sbin",
    "/etc",
    "/var",
    "/private",
    "/Users",
    "/home",
]

CleanableItem = Union[BuildFolder, StaticLocation]
TrashFunction = Callable[[str], None]
DeletionProgressCallback = Callable[[int, int, DeletionOutcome], None]  # (done, total, outcome)


class SessionRecorder(Protocol):
    def record_session(self, session: CleaningSession) -> None: ...


_REASONS: dict[type[DevPruneError], DeletionFailureReason] = {
    PermissionDeniedError: DeletionFailureReason.PERMISSION_DENIED,
    PathNotFoundError: DeletionFailureReason.PATH_NOT_FOUND,
    FolderInUseError: DeletionFailureReason.FOLDER_IN_USE,
    OutOfDiskSpaceError: DeletionFailureReason.OUT_OF_DISK_SPACE,
    NetworkDriveUnsupportedError: DeletionFailureReason.NETWORK_DRIVE_UNSUPPORTED,
    InvalidPathError: DeletionFailureReason.NOT_A_DIRECTORY,
    ClassificationChangedError: DeletionFailureReason.CLASSIFICATION_CHANGED,
}


def failure_reason(error: DevPruneError) -> DeletionFailureReason:
    """Map an error onto the per-item failure reason."""
    for error_cls, reason in _REASONS.items():
        if isinstance(error, error_cls):
            return reason
    return DeletionFailureReason.UNKNOWN


def is_path_safe(path: Path) -> bool:
    """
    Check if a path is safe to delete.

    Args:
        path: Path to check

    Returns:
        True if the path is not one of the protected locations
    """
    path_str = os.path.abspath(path)
    for blocked in BLOCKED_PATHS:
        if path_str == os.path.abspath(expand_path(blocked)):
            return False
    return True


def _outcome(item: CleanableItem, error: Optional[DevPruneError] = None) -> DeletionOutcome:
    return DeletionOutcome(
        item_id=item.id,
        path=item.path,
        name=item.display_name,
        item_type=item.item_type,
        type_tag=item.type_tag,
        size_bytes=item.size_bytes,
        success=error is None,
        reason=failure_reason(error) if error is not None else None,
        message=str(error) if error is not None else None,
        recovery_suggestion=error.recovery_suggestion if error is not None else None,
    )


def _cancelled_outcome(item: CleanableItem) -> DeletionOutcome:
    return DeletionOutcome(
        item_id=item.id,
        path=item.path,
        name=item.display_name,
        item_type=item.item_type,
        type_tag=item.type_tag,
        size_bytes=item.size_bytes,
        success=False,
        reason=DeletionFailureReason.CANCELLED,
        message="Skipped: deletion was cancelled before this item started",
    )


class DeletionEngine:
    """Moves selected build folders and caches to the trash."""

    def __init__(
        self,
        classifier: Optional[ProjectTypeClassifier] = None,
        recorder: Optional[SessionRecorder] = None,
        trash: Optional[TrashFunction] = None,
        max_workers: int = DEFAULT_MAX_WORKERS,
    ) -> None:
        self.classifier = classifier or ProjectTypeClassifier()
        self.recorder = recorder
        self.trash = trash or send2trash
        self.max_workers = max(1, max_workers)

    def delete(
        self,
        items: Sequence[CleanableItem],
        cancel_token: Optional[CancelToken] = None,
        progress_callback: Optional[DeletionProgressCallback] = None,
        dry_run: bool = False,
    ) -> DeletionReport:
        """
        Move every item to the trash, best effort.

        The items are copied on entry, so later selection changes cannot
        affect a running pass. Cancelling only skips items that have not
        started; an item being moved always finishes.

        A KeyboardInterrupt while the pass runs is treated as a cancel: the
        items already in flight finish, the rest are reported as cancelled
        and the report (with ``cancelled`` set) is still returned and
        recorded.

        Args:
            items: Build folders and/or static locations to remove
            cancel_token: Stops not-yet-started items
            progress_callback: Optional callback(done, total, outcome)
            dry_run: Run the pre-checks only, move nothing, record nothing

        Returns:
            DeletionReport with one outcome per item, in input order
        """
        snapshot = [item.model_copy(deep=True) for item in items]
        started_at = datetime.now()
        start = time.monotonic()
        total = len(snapshot)
        outcomes: list[Optional[DeletionOutcome]] = [None] * total
        lock = threading.Lock()
        done = 0
        token = CancelToken(parent=cancel_token)
        interrupted = False

        def run(index: int, item: CleanableItem) -> None:
            nonlocal done
            if token.cancelled:
                outcome = _cancelled_outcome(item)
            else:
                outcome = self._delete_one(item, dry_run)
            outcomes[index] = outcome
            with lock:
                done += 1
                current = done
            if progress_callback:
                try:
                    progress_callback(current, total, outcome)
                except Exception:
                    log.warning("Deletion progress callback failed", exc_info=True)

        if snapshot:
            try:
                with ThreadPoolExecutor(
                    max_workers=min(self.max_workers, total), thread_name_prefix="devprune-trash"
                ) as executor:
                    try:
                        futures = [executor.submit(run, i, item) for i, item in enumerate(snapshot)]
                        for future in futures:
                            future.result()
                    except BaseException:
                        # Queued items must see the cancel before shutdown() runs them
                        token.cancel()
                        raise
            except KeyboardInterrupt:
                log.info("Deletion interrupted, skipping items that have not started")
                interrupted = True

        report = DeletionReport(
            started_at=started_at,
            duration=time.monotonic() - start,
            dry_run=dry_run,
            cancelled=interrupted or token.cancelled,
            outcomes=[
                o if o is not None else _cancelled_outcome(item)
                for o, item in zip(outcomes, snapshot)
            ],
        )

        log.info(
            "Deletion finished: %d succeeded, %d failed, %d bytes freed%s",
            report.success_count,
            report.failure_count,
            report.bytes_freed,
            " (cancelled)" if report.cancelled else "",
        )

        if report.succeeded and not dry_run:
            report.session = self._record_session(report)

        return report

    def _delete_one(self, item: CleanableItem, dry_run: bool) -> DeletionOutcome:
        path = Path(item.path)
        try:
            self._precheck(item, path)
            if not dry_run:
                self.trash(str(path))
        except DevPruneError as e:
            log.warning("Cannot remove %s: %s", path, e)
            return _outcome(item, e)
        except OSError as e:
            error = error_from_os_error(e, path)
            log.warning("Cannot move %s to trash: %s", path, e)
            return _outcome(item, error)
        except Exception as e:
            log.warning("Unexpected error moving %s to trash", path, exc_info=True)
            return _outcome(item, UnknownDevPruneError(e, path))

        log.debug("Moved %s to trash", path)
        return _outcome(item)

    def _precheck(self, item: CleanableItem, path: Path) -> None:
        """Make sure the folder is still what the scan saw before touching it."""
        if not os.path.lexists(path):
            raise PathNotFoundError(path)
        if path.is_symlink() or not path.is_dir():
            raise InvalidPathError(path)
        if not is_path_safe(path):
            raise InvalidPathError(path, f"Refusing to remove protected path: {path}")
        if is_network_path(path):
            raise NetworkDriveUnsupportedError(path)
        if isinstance(item, BuildFolder):
            classification = self.classifier.classify(path)
            if classification is None or classification.project_type != item.project_type:
                raise ClassificationChangedError(path)

    def _record_session(self, report: DeletionReport) -> CleaningSession:
        succeeded = report.succeeded
        session = CleaningSession(
            timestamp=report.started_at,
            total_size=report.bytes_freed,
            item_count=len(succeeded),
            duration=report.duration,
            items=[
                CleanedItem(
                    name=o.name,
                    item_type=o.item_type,
                    project_type=o.type_tag if o.item_type == "Build Folder" else None,
                    size=o.size_bytes,
                    path=o.path,
                )
                for o in succeeded
            ],
        )
        if self.recorder is not None:
            self.recorder.record_session(session)
        return session

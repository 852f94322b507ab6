"""Tests for the error taxonomy."""

import errno

from devprune.errors import (
    DevPruneError,
    FolderInUseError,
    InvalidPathError,
    OutOfDiskSpaceError,
    PartialDeletionFailureError,
    PathNotFoundError,
    PermissionDeniedError,
    ScanCancelledError,
    UnknownDevPruneError,
    error_from_os_error,
)


class TestErrorDescriptions:
    def test_every_error_has_description_and_suggestion(self):
        for cls in (
            PermissionDeniedError,
            PathNotFoundError,
            FolderInUseError,
            OutOfDiskSpaceError,
            ScanCancelledError,
        ):
            assert cls.description
            assert cls.recovery_suggestion

    def test_path_error_message_includes_path(self):
        error = PermissionDeniedError("/tmp/project/build")
        assert error.path == "/tmp/project/build"
        assert "/tmp/project/build" in str(error)
        assert isinstance(error, DevPruneError)

    def test_default_message_is_description(self):
        assert str(ScanCancelledError()) == ScanCancelledError.description

    def test_unknown_wraps_underlying(self):
        underlying = RuntimeError("boom")
        error = UnknownDevPruneError(underlying, "/x")
        assert error.underlying is underlying
        assert "RuntimeError: boom" in error.message
        assert "/x" in error.message


class TestPartialDeletionFailure:
    def test_lists_up_to_three_paths(self):
        error = PartialDeletionFailureError(["a", "b", "c"])
        assert error.format_paths() == "a, b, c"

    def test_truncates_with_and_more(self):
        error = PartialDeletionFailureError(["a", "b", "c", "d", "e"])
        assert error.format_paths() == "a, b, c and 2 more"
        assert "and 2 more" in str(error)

    def test_custom_limit(self):
        error = PartialDeletionFailureError(["a", "b", "c"])
        assert error.format_paths(limit=1) == "a and 2 more"


class TestErrorFromOsError:
    def test_permission(self):
        exc = PermissionError(errno.EACCES, "Permission denied")
        assert isinstance(error_from_os_error(exc, "/p"), PermissionDeniedError)

    def test_not_found(self):
        exc = FileNotFoundError(errno.ENOENT, "No such file")
        error = error_from_os_error(exc, "/p")
        assert isinstance(error, PathNotFoundError)
        assert error.path == "/p"

    def test_busy(self):
        assert isinstance(error_from_os_error(OSError(errno.EBUSY, "busy"), "/p"), FolderInUseError)

    def test_no_space(self):
        exc = OSError(errno.ENOSPC, "No space left on device")
        assert isinstance(error_from_os_error(exc, "/p"), OutOfDiskSpaceError)

    def test_not_a_directory(self):
        exc = NotADirectoryError(errno.ENOTDIR, "Not a directory")
        assert isinstance(error_from_os_error(exc, "/p"), InvalidPathError)

    def test_permission_error_without_errno(self):
        assert isinstance(error_from_os_error(PermissionError("nope"), "/p"), PermissionDeniedError)

    def test_unmapped_errno_is_unknown(self):
        exc = OSError(errno.EIO, "I/O error")
        error = error_from_os_error(exc, "/p")
        assert isinstance(error, UnknownDevPruneError)
        assert error.underlying is exc

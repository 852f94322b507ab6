"""Tests for filesystem primitives."""

import os
from collections import namedtuple
from pathlib import Path
from unittest.mock import patch

import pytest

from conftest import make_file
from devprune.errors import ScanCancelledError
from devprune.scanner import (
    CancelToken,
    expand_path,
    get_directory_size,
    get_filesystem_type,
    get_last_modified,
    is_network_path,
)

Partition = namedtuple("Partition", "device mountpoint fstype opts")


class TestExpandPath:
    def test_expands_tilde(self):
        result = expand_path("~/test")
        assert str(result).startswith(str(Path.home()))

    def test_handles_absolute_path(self):
        result = expand_path("/absolute/path")
        assert str(result) == "/absolute/path"


class TestCancelToken:
    def test_starts_uncancelled(self):
        token = CancelToken()
        assert not token.cancelled
        token.raise_if_cancelled()

    def test_cancel(self):
        token = CancelToken()
        token.cancel()
        with pytest.raises(ScanCancelledError):
            token.raise_if_cancelled()

    def test_child_follows_parent(self):
        parent = CancelToken()
        child = CancelToken(parent=parent)
        parent.cancel()
        assert child.cancelled

    def test_child_does_not_cancel_parent(self):
        parent = CancelToken()
        child = CancelToken(parent=parent)
        child.cancel()
        assert not parent.cancelled


class TestGetDirectorySize:
    def test_empty_directory(self, tmp_path):
        size = get_directory_size(tmp_path)
        assert size.size_bytes == 0
        assert size.file_count == 0
        assert not size.is_partial

    def test_nested_files(self, tmp_path):
        (tmp_path / "a.txt").write_text("Hello, World!")
        make_file(tmp_path / "sub" / "deep" / "blob", 5000)

        size = get_directory_size(tmp_path)
        assert size.size_bytes == len("Hello, World!") + 5000
        assert size.file_count == 2
        assert size.dir_count == 2

    def test_does_not_follow_symlinks(self, tmp_path):
        outside = tmp_path / "outside"
        make_file(outside / "big", 10_000)
        inside = tmp_path / "inside"
        inside.mkdir()
        (inside / "link").symlink_to(outside, target_is_directory=True)
        (inside / "file-link").symlink_to(outside / "big")

        size = get_directory_size(inside)
        assert size.size_bytes == 0
        assert size.file_count == 0

    def test_counts_hard_links_once(self, tmp_path):
        original = make_file(tmp_path / "a", 1000)
        os.link(original, tmp_path / "b")

        size = get_directory_size(tmp_path)
        assert size.size_bytes == 1000
        assert size.file_count == 1

    def test_unreadable_subdirectory_is_partial(self, tmp_path):
        make_file(tmp_path / "ok" / "f", 100)
        make_file(tmp_path / "locked" / "f", 100)
        real_scandir = os.scandir
        locked = str(tmp_path / "locked")

        def fake_scandir(path):
            if os.fspath(path) == locked:
                raise PermissionError(13, "Permission denied", locked)
            return real_scandir(path)

        with patch("devprune.scanner.os.scandir", side_effect=fake_scandir):
            size = get_directory_size(tmp_path)

        assert size.size_bytes == 100
        assert size.skipped == 1
        assert size.is_partial

    def test_cancelled_token_raises(self, tmp_path):
        make_file(tmp_path / "f", 10)
        token = CancelToken()
        token.cancel()
        with pytest.raises(ScanCancelledError):
            get_directory_size(tmp_path, token)


class TestGetLastModified:
    def test_uses_mtime(self, tmp_path):
        target = tmp_path / "dir"
        target.mkdir()
        os.utime(target, (1_600_000_000, 1_600_000_000))
        assert get_last_modified(target).timestamp() == pytest.approx(1_600_000_000)


class TestFilesystemType:
    def test_longest_mount_wins(self):
        partitions = [
            Partition("/dev/sda1", "/", "ext4", "rw"),
            Partition("server:/share", "/mnt/share", "nfs4", "rw"),
        ]
        with patch("devprune.scanner.psutil.disk_partitions", return_value=partitions), patch(
            "devprune.scanner.os.path.realpath", side_effect=lambda p: os.fspath(p)
        ):
            assert get_filesystem_type(Path("/mnt/share/projects")) == "nfs4"
            assert get_filesystem_type(Path("/home/user")) == "ext4"
            assert get_filesystem_type(Path("/mnt/shared")) == "ext4"

    def test_is_network_path(self):
        partitions = [
            Partition("/dev/sda1", "/", "ext4", "rw"),
            Partition("//nas/code", "/Volumes/code", "smbfs", "rw"),
        ]
        with patch("devprune.scanner.psutil.disk_partitions", return_value=partitions), patch(
            "devprune.scanner.os.path.realpath", side_effect=lambda p: os.fspath(p)
        ):
            assert is_network_path(Path("/Volumes/code/app"))
            assert not is_network_path(Path("/Users/me/app"))

    def test_psutil_failure_is_not_network(self):
        with patch("devprune.scanner.psutil.disk_partitions", side_effect=OSError("no mounts")):
            assert get_filesystem_type(Path("/")) is None
            assert not is_network_path(Path("/"))

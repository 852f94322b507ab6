"""Shared fixtures for devprune tests."""

import shutil
from pathlib import Path

import pytest

MB = 1000**2


def make_file(path: Path, size: int) -> Path:
    """Create a (sparse) file with the given apparent size."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "wb") as f:
        f.truncate(size)
    return path


def make_android_project(root: Path, name: str = "appA", size: int = 50 * MB) -> Path:
    project = root / name
    project.mkdir(parents=True, exist_ok=True)
    (project / "build.gradle").write_text("apply plugin: 'com.android.application'\n")
    make_file(project / "build" / "outputs" / "app.apk", size)
    return project / "build"


def make_swift_package(root: Path, name: str = "appB", size: int = 30 * MB) -> Path:
    project = root / name
    project.mkdir(parents=True, exist_ok=True)
    (project / "Package.swift").write_text("// swift-tools-version:5.9\n")
    make_file(project / ".build" / "debug" / "app", size)
    return project / ".build"


def make_node_project(root: Path, name: str = "web", size: int = 10 * MB) -> Path:
    project = root / name
    project.mkdir(parents=True, exist_ok=True)
    (project / "package.json").write_text("{}")
    make_file(project / "node_modules" / "left-pad" / "index.js", size)
    return project / "node_modules"


class FakeTrash:
    """Stands in for send2trash: removes the tree and remembers what it was given."""

    def __init__(self, fail_on=None):
        self.trashed: list[str] = []
        self.fail_on = fail_on or {}

    def __call__(self, path: str) -> None:
        if path in self.fail_on:
            raise self.fail_on[path]
        shutil.rmtree(path)
        self.trashed.append(path)


@pytest.fixture
def fake_trash():
    return FakeTrash()


@pytest.fixture
def projects(tmp_path):
    """Two projects: an Android app (50 MB build) and a Swift package (30 MB .build)."""
    android = make_android_project(tmp_path)
    swift = make_swift_package(tmp_path)
    return tmp_path, android, swift


@pytest.fixture(autouse=True)
def devprune_home(tmp_path, monkeypatch):
    """Keep config and history out of the real home directory."""
    home = tmp_path / ".devprune-home"
    monkeypatch.setenv("DEVPRUNE_HOME", str(home))
    return home

"""Tests for recursive build folder discovery and the scan engine."""

import os
from datetime import datetime
from pathlib import Path
from unittest.mock import patch

import pytest

from conftest import MB, make_android_project, make_file, make_node_project, make_swift_package
from devprune.errors import ScanCancelledError, ScanError
from devprune.models import ProjectType, ScanLocation
from devprune.project_types import ProjectTypeClassifier
from devprune.recursive_scanner import ScanEngine, find_build_folders
from devprune.scanner import CancelToken


def location(path, **kwargs) -> ScanLocation:
    return ScanLocation(name=Path(path).name, path=str(path), **kwargs)


class TestFindBuildFolders:
    def test_finds_build_folders(self, projects):
        root, android, swift = projects
        found = dict(find_build_folders(root, ProjectTypeClassifier()))
        assert set(found) == {android, swift}
        assert found[android].project_type == ProjectType.ANDROID
        assert found[swift].project_type == ProjectType.SWIFT_PACKAGE

    def test_does_not_descend_into_build_folder(self, tmp_path):
        node_modules = make_node_project(tmp_path)
        nested = node_modules / "dep"
        (nested / "package.json").parent.mkdir(parents=True, exist_ok=True)
        (nested / "package.json").write_text("{}")
        (nested / "node_modules").mkdir()

        found = [p for p, _ in find_build_folders(tmp_path, ProjectTypeClassifier())]
        assert found == [node_modules]

    def test_skips_unvalidated_names(self, tmp_path):
        (tmp_path / "docs" / "build").mkdir(parents=True)
        assert list(find_build_folders(tmp_path, ProjectTypeClassifier())) == []

    def test_skips_hidden_and_vcs_directories(self, tmp_path):
        make_node_project(tmp_path / ".git")
        make_node_project(tmp_path / ".hidden")
        assert list(find_build_folders(tmp_path, ProjectTypeClassifier())) == []

    def test_does_not_follow_symlinks(self, tmp_path):
        outside = tmp_path / "outside"
        make_node_project(outside)
        root = tmp_path / "root"
        root.mkdir()
        (root / "link").symlink_to(outside, target_is_directory=True)
        assert list(find_build_folders(root, ProjectTypeClassifier())) == []

    def test_respects_max_depth(self, tmp_path):
        make_node_project(tmp_path / "a" / "b" / "c")
        classifier = ProjectTypeClassifier()
        # root/a/b/c/web/node_modules is five levels below root
        assert list(find_build_folders(tmp_path, classifier, max_depth=4)) == []
        assert len(list(find_build_folders(tmp_path, classifier, max_depth=5))) == 1

    def test_excluded_paths(self, tmp_path):
        make_node_project(tmp_path / "keep")
        make_node_project(tmp_path / "skip")
        excluded = frozenset({str(tmp_path / "skip")})
        found = [p for p, _ in find_build_folders(tmp_path, ProjectTypeClassifier(), excluded_paths=excluded)]
        assert found == [tmp_path / "keep" / "web" / "node_modules"]

    def test_unreadable_directory_is_skipped(self, tmp_path):
        make_node_project(tmp_path / "ok")
        make_node_project(tmp_path / "locked")
        real_scandir = os.scandir
        locked = str(tmp_path / "locked")

        def fake_scandir(path):
            if os.fspath(path) == locked:
                raise PermissionError(13, "Permission denied", locked)
            return real_scandir(path)

        with patch("devprune.recursive_scanner.os.scandir", side_effect=fake_scandir):
            found = [p for p, _ in find_build_folders(tmp_path, ProjectTypeClassifier())]

        assert found == [tmp_path / "ok" / "web" / "node_modules"]

    def test_cancelled_token_raises(self, projects):
        root, _, _ = projects
        token = CancelToken()
        token.cancel()
        with pytest.raises(ScanCancelledError):
            list(find_build_folders(root, ProjectTypeClassifier(), cancel_token=token))


class TestScanEngine:
    def test_scan_two_projects(self, projects):
        root, android, swift = projects
        session = ScanEngine().scan([location(root)])

        assert len(session.results) == 1
        result = session.results[0]
        assert result.root_path == str(root)
        by_path = {f.path: f for f in result.build_folders}
        assert set(by_path) == {str(android), str(swift)}
        assert by_path[str(android)].size_bytes == 50 * MB
        assert by_path[str(android)].project_type == ProjectType.ANDROID
        assert by_path[str(android)].project_name == "appA"
        assert by_path[str(swift)].size_bytes == 30 * MB
        assert by_path[str(swift)].project_type == ProjectType.SWIFT_PACKAGE
        assert result.total_size == 80 * MB
        assert session.warnings == []

    def test_no_nested_results(self, tmp_path):
        make_node_project(tmp_path / "outer")
        inner = tmp_path / "outer" / "web" / "node_modules" / "pkg"
        (inner / "package.json").parent.mkdir(parents=True, exist_ok=True)
        (inner / "package.json").write_text("{}")
        make_file(inner / "node_modules" / "x", 10)

        session = ScanEngine().scan([location(tmp_path)])
        paths = [f.path for f in session.build_folders]
        for a in paths:
            for b in paths:
                if a != b:
                    assert not b.startswith(a + os.sep)

    def test_results_live_below_their_root(self, projects):
        root, _, _ = projects
        make_node_project(root / "appC")
        session = ScanEngine().scan([location(root / "appA"), location(root / "appC")])
        for result in session.results:
            for f in result.build_folders:
                assert f.path.startswith(result.root_path + os.sep)
                assert f.size_bytes >= 0

    def test_overlapping_locations_are_deduplicated(self, projects):
        root, android, _ = projects
        session = ScanEngine().scan([location(root), location(root / "appA")])
        paths = [f.path for f in session.build_folders]
        assert paths.count(str(android)) == 1

    def test_same_path_twice_scanned_once(self, projects):
        root, _, _ = projects
        session = ScanEngine().scan([location(root), location(root)])
        assert len(session.results) == 1

    def test_disabled_locations_are_skipped(self, projects):
        root, _, _ = projects
        session = ScanEngine().scan([location(root, is_enabled=False), location(root / "appB")])
        assert [r.root_path for r in session.results] == [str(root / "appB")]

    def test_missing_location_warns(self, projects):
        root, _, _ = projects
        missing = location(root / "does-not-exist")
        session = ScanEngine().scan([location(root), missing])

        assert len(session.results) == 1
        assert len(session.warnings) == 1
        assert session.warnings[0].kind == "not_found"
        assert session.warnings[0].location_id == missing.id

    def test_inaccessible_location_warns(self, projects):
        root, _, _ = projects
        locked = root / "locked"
        locked.mkdir()
        real_scandir = os.scandir

        def fake_scandir(path):
            if os.fspath(path) == str(locked):
                raise PermissionError(13, "Permission denied", str(locked))
            return real_scandir(path)

        with patch("devprune.recursive_scanner.os.scandir", side_effect=fake_scandir):
            session = ScanEngine().scan([location(root / "appA"), location(locked)])

        assert [w.kind for w in session.warnings] == ["inaccessible"]
        assert len(session.build_folders) == 1

    def test_network_location_is_skipped(self, projects):
        root, _, _ = projects
        with patch("devprune.recursive_scanner.is_network_path", return_value=True):
            with pytest.raises(ScanError):
                ScanEngine().scan([location(root)])

    def test_all_locations_failing_raises(self, tmp_path):
        with pytest.raises(ScanError):
            ScanEngine().scan([location(tmp_path / "nope")])

    def test_empty_location_list(self):
        session = ScanEngine().scan([])
        assert session.results == []

    def test_on_location_scanned_called_after_completion(self, projects):
        root, _, _ = projects
        loc = location(root)
        calls = []
        ScanEngine().scan([loc], on_location_scanned=lambda l, when: calls.append((l.id, when)))
        assert len(calls) == 1
        assert calls[0][0] == loc.id
        assert isinstance(calls[0][1], datetime)

    def test_locations_are_not_mutated(self, projects):
        root, _, _ = projects
        loc = location(root)
        ScanEngine().scan([loc])
        assert loc.last_scanned is None

    def test_cancel_during_scan(self, projects):
        root, _, _ = projects
        token = CancelToken()
        calls = []

        def progress(path, found):
            token.cancel()

        with pytest.raises(ScanCancelledError):
            ScanEngine().scan(
                [location(root)],
                cancel_token=token,
                progress_callback=progress,
                on_location_scanned=lambda l, when: calls.append(l),
            )
        assert calls == []

    def test_progress_callback(self, projects):
        root, _, _ = projects
        seen = []
        ScanEngine().scan([location(root)], progress_callback=lambda p, n: seen.append((p, n)))
        assert sorted(n for _, n in seen) == [1, 2]

    def test_precedence_is_honoured(self, tmp_path):
        project = tmp_path / "hybrid"
        project.mkdir()
        (project / "pubspec.yaml").write_text("")
        (project / "build.gradle").write_text("")
        make_file(project / "build" / "out", 10)

        engine = ScanEngine(classifier=ProjectTypeClassifier(precedence=[ProjectType.ANDROID]))
        session = engine.scan([location(tmp_path)])
        assert [f.project_type for f in session.build_folders] == [ProjectType.ANDROID]


class TestStream:
    def test_stream_yields_folders(self, projects):
        root, android, swift = projects
        found = {f.path for f in ScanEngine().stream([location(root)])}
        assert found == {str(android), str(swift)}

    def test_stream_can_stop_early(self, tmp_path):
        for i in range(5):
            make_node_project(tmp_path, name=f"web{i}", size=10)
        stream = ScanEngine(max_workers=1).stream([location(tmp_path)])
        first = next(stream)
        stream.close()
        assert first.project_type == ProjectType.NODE

    def test_stream_cancelled(self, projects):
        root, _, _ = projects
        token = CancelToken()
        token.cancel()
        with pytest.raises(ScanCancelledError):
            list(ScanEngine().stream([location(root)], cancel_token=token))

    def test_stream_skips_location_inside_build_folder(self, tmp_path):
        outer = make_node_project(tmp_path)
        pkg = outer / "pkg"
        (pkg / "package.json").parent.mkdir(parents=True, exist_ok=True)
        (pkg / "package.json").write_text("{}")
        make_file(pkg / "node_modules" / "x", 10)

        found = [f.path for f in ScanEngine().stream([location(tmp_path), location(pkg)])]

        assert found == [str(outer)]

    def test_stream_keeps_location_beside_build_folder(self, tmp_path):
        outer = make_node_project(tmp_path / "a")
        inner = make_node_project(tmp_path / "b")

        found = {f.path for f in ScanEngine().stream([location(tmp_path), location(tmp_path / "b")])}

        assert found == {str(outer), str(inner)}

from __future__ import annotations

import os
from pathlib import Path
from typing import TYPE_CHECKING

import pytest

from embedded_cassandra.distribution import (
    Distribution,
    prepare_working_directory,
    remove_paths,
    remove_working_directory,
    resolve_inside,
)
from embedded_cassandra.enums import Platform
from embedded_cassandra.exceptions import FileError
from tests.conftest import FakeDistribution

if TYPE_CHECKING:
    from pytest_mock import MockerFixture


class TestPlatform:
    def test_current_matches_interpreter(self, mocker: MockerFixture) -> None:
        _ = mocker.patch("embedded_cassandra.enums.sys.platform", "win32")
        assert Platform.current() is Platform.WINDOWS

        _ = mocker.patch("embedded_cassandra.enums.sys.platform", "darwin")
        assert Platform.current() is Platform.MACOS

        _ = mocker.patch("embedded_cassandra.enums.sys.platform", "linux")
        assert Platform.current() is Platform.LINUX

    def test_is_windows(self) -> None:
        assert Platform.WINDOWS.is_windows
        assert not Platform.LINUX.is_windows


class TestDistributionFromDirectory:
    def test_describes_posix_distribution(self, fake_distribution: FakeDistribution) -> None:
        distribution = Distribution.from_directory(fake_distribution.root, Platform.LINUX)

        assert distribution.root == fake_distribution.root.resolve()
        assert distribution.launch_script == Path("bin/cassandra")

    def test_windows_uses_powershell_script(self, fake_distribution: FakeDistribution) -> None:
        _ = (fake_distribution.bin_dir / "cassandra.ps1").write_text("")

        distribution = Distribution.from_directory(fake_distribution.root, Platform.WINDOWS)

        assert distribution.launch_script == Path("bin/cassandra.ps1")

    def test_missing_root(self, tmp_path: Path) -> None:
        with pytest.raises(FileError, match="does not exist"):
            _ = Distribution.from_directory(tmp_path / "nope")

    def test_missing_conf(self, tmp_path: Path) -> None:
        (tmp_path / "bin").mkdir()

        with pytest.raises(FileError, match="conf") as exc_info:
            _ = Distribution.from_directory(tmp_path)

        assert exc_info.value.path == tmp_path.resolve() / "conf"

    def test_missing_launch_script(self, fake_distribution: FakeDistribution) -> None:
        with pytest.raises(FileError, match="launch script"):
            _ = Distribution.from_directory(fake_distribution.root, Platform.WINDOWS)


class TestPrepareWorkingDirectory:
    def test_copies_into_temporary_directory(self, fake_distribution: FakeDistribution) -> None:
        distribution = Distribution.from_directory(fake_distribution.root, Platform.LINUX)

        path, is_temporary = prepare_working_directory(distribution)
        try:
            assert is_temporary
            assert (path / "conf/cassandra.yaml").read_text() == (
                fake_distribution.conf_dir / "cassandra.yaml"
            ).read_text()
            assert path.name.startswith("embedded-cassandra-")
        finally:
            assert remove_working_directory(path)

    def test_makes_launch_scripts_executable(self, fake_distribution: FakeDistribution, tmp_path: Path) -> None:
        distribution = Distribution.from_directory(fake_distribution.root, Platform.LINUX)

        path, _ = prepare_working_directory(distribution, tmp_path / "work")

        assert os.access(path / "bin/cassandra", os.X_OK)

    def test_leaves_distribution_untouched(self, fake_distribution: FakeDistribution, tmp_path: Path) -> None:
        distribution = Distribution.from_directory(fake_distribution.root, Platform.LINUX)
        before = (fake_distribution.bin_dir / "cassandra").stat().st_mode

        path, is_temporary = prepare_working_directory(distribution, tmp_path / "work")
        _ = (path / "conf/cassandra.yaml").write_text("changed: true\n")

        assert not is_temporary
        assert (fake_distribution.bin_dir / "cassandra").stat().st_mode == before
        assert "changed" not in (fake_distribution.conf_dir / "cassandra.yaml").read_text()

    def test_merges_into_existing_directory(self, fake_distribution: FakeDistribution, tmp_path: Path) -> None:
        target = tmp_path / "work"
        target.mkdir()
        _ = (target / "keep.txt").write_text("x")
        distribution = Distribution.from_directory(fake_distribution.root, Platform.LINUX)

        path, _ = prepare_working_directory(distribution, target)

        assert (path / "keep.txt").exists()
        assert (path / "bin/cassandra").exists()

    def test_copy_failure_raises_file_error(self, fake_distribution: FakeDistribution, mocker: MockerFixture) -> None:
        distribution = Distribution.from_directory(fake_distribution.root, Platform.LINUX)
        _ = mocker.patch("embedded_cassandra.distribution.shutil.copytree", side_effect=OSError("disk full"))

        with pytest.raises(FileError, match="disk full"):
            _ = prepare_working_directory(distribution)


class TestRemoveWorkingDirectory:
    def test_missing_directory_counts_as_removed(self, tmp_path: Path) -> None:
        assert remove_working_directory(tmp_path / "gone")

    def test_failure_is_logged_not_raised(self, tmp_path: Path, mocker: MockerFixture) -> None:
        logger = mocker.MagicMock()
        _ = mocker.patch("embedded_cassandra.distribution.shutil.rmtree", side_effect=PermissionError("denied"))

        assert not remove_working_directory(tmp_path, logger=logger)
        logger.warning.assert_called_once()


class TestResolveInside:
    def test_joins_relative_path(self, tmp_path: Path) -> None:
        assert resolve_inside(tmp_path, "conf/./logback.xml") == tmp_path / "conf/logback.xml"

    @pytest.mark.parametrize("relative", ["../outside", "conf/../../outside", ".", ""])
    def test_rejects_paths_outside_root(self, tmp_path: Path, relative: str) -> None:
        with pytest.raises(FileError, match="not inside the working directory"):
            _ = resolve_inside(tmp_path, relative)

    def test_does_not_follow_symlinks(self, tmp_path: Path) -> None:
        outside = tmp_path / "outside"
        outside.mkdir()
        root = tmp_path / "work"
        root.mkdir()
        (root / "link").symlink_to(outside)

        assert resolve_inside(root, "link") == root / "link"


class TestRemovePaths:
    def test_removes_files_and_directories(self, tmp_path: Path) -> None:
        (tmp_path / "data/commitlog").mkdir(parents=True)
        _ = (tmp_path / "data/commitlog/segment").write_text("x")
        _ = (tmp_path / "gc.log").write_text("x")
        _ = (tmp_path / "keep.txt").write_text("x")

        removed = remove_paths(tmp_path, ["data", "gc.log", "missing"])

        assert removed == [tmp_path / "data", tmp_path / "gc.log", tmp_path / "missing"]
        assert [p.name for p in tmp_path.iterdir()] == ["keep.txt"]

    def test_removes_symlink_not_its_target(self, tmp_path: Path) -> None:
        outside = tmp_path / "outside"
        outside.mkdir()
        _ = (outside / "file").write_text("x")
        root = tmp_path / "work"
        root.mkdir()
        (root / "data").symlink_to(outside)

        _ = remove_paths(root, ["data"])

        assert not (root / "data").exists()
        assert (outside / "file").exists()

    def test_rejects_path_outside_root(self, tmp_path: Path) -> None:
        with pytest.raises(FileError):
            _ = remove_paths(tmp_path / "work", ["../elsewhere"])

    def test_failure_is_logged_not_raised(self, tmp_path: Path, mocker: MockerFixture) -> None:
        logger = mocker.MagicMock()
        (tmp_path / "data").mkdir()
        _ = mocker.patch("embedded_cassandra.distribution.shutil.rmtree", side_effect=PermissionError("denied"))

        assert remove_paths(tmp_path, ["data"], logger=logger) == []
        logger.warning.assert_called_once()

from __future__ import annotations

import json
import socket
from pathlib import Path
from typing import TYPE_CHECKING

import pytest

from embedded_cassandra.utils import (
    DEBUG_ENV_VAR,
    LOOPBACK,
    atomic_write_bytes,
    atomic_write_text,
    create_logger,
    find_open_port,
    is_port_busy,
    read_text,
)

if TYPE_CHECKING:
    from pytest_mock import MockerFixture


class TestAtomicWriteText:
    def test_replaces_content(self, tmp_path: Path) -> None:
        path = tmp_path / "cassandra.yaml"
        _ = path.write_text("old")

        atomic_write_text(path, "new")

        assert path.read_text() == "new"

    def test_creates_missing_file(self, tmp_path: Path) -> None:
        path = tmp_path / "new.txt"

        atomic_write_text(path, "content")

        assert path.read_text() == "content"

    def test_keeps_line_endings(self, tmp_path: Path) -> None:
        path = tmp_path / "env.ps1"

        atomic_write_text(path, "a\r\nb\r\n")

        assert read_text(path) == "a\r\nb\r\n"

    def test_removes_temporary_file_on_failure(self, tmp_path: Path, mocker: MockerFixture) -> None:
        path = tmp_path / "file.txt"
        _ = path.write_text("old")
        _ = mocker.patch.object(Path, "replace", side_effect=OSError("rename failed"))

        with pytest.raises(OSError, match="rename failed"):
            atomic_write_text(path, "new")

        assert [p.name for p in tmp_path.iterdir()] == ["file.txt"]
        assert path.read_text() == "old"


class TestAtomicWriteBytes:
    def test_writes_binary_content(self, tmp_path: Path) -> None:
        path = tmp_path / "keystore"

        atomic_write_bytes(path, b"\x00\xff\r\n")

        assert path.read_bytes() == b"\x00\xff\r\n"

    def test_keeps_mode_of_replaced_file(self, tmp_path: Path) -> None:
        path = tmp_path / "cassandra"
        _ = path.write_bytes(b"old")
        path.chmod(0o755)

        atomic_write_bytes(path, b"new")

        assert path.stat().st_mode & 0o777 == 0o755


class TestReadText:
    def test_missing_file_raises(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            _ = read_text(tmp_path / "missing")


class TestNet:
    def test_find_open_port_returns_bindable_port(self) -> None:
        port = find_open_port()

        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
            s.bind((LOOPBACK, port))

    def test_is_port_busy_detects_listener(self) -> None:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as server:
            server.bind((LOOPBACK, 0))
            server.listen(1)
            port = server.getsockname()[1]

            assert is_port_busy(LOOPBACK, port)

    def test_is_port_busy_false_for_free_port(self) -> None:
        assert not is_port_busy(LOOPBACK, find_open_port())


class TestCreateLogger:
    def test_writes_json_to_file(self, tmp_path: Path) -> None:
        log_file = tmp_path / "logs" / "node.log"
        logger = create_logger(log_format="json", log_file=str(log_file), node="node1")

        logger.info("node_ready", pid=42)

        entry = json.loads(log_file.read_text().strip())
        assert entry["event"] == "node_ready"
        assert entry["node"] == "node1"
        assert entry["pid"] == 42
        assert entry["level"] == "info"
        assert "timestamp" in entry

    def test_filters_below_level(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv(DEBUG_ENV_VAR, raising=False)
        log_file = tmp_path / "node.log"
        logger = create_logger(level="warning", log_file=str(log_file))

        logger.info("hidden")
        logger.warning("shown")

        content = log_file.read_text()
        assert "hidden" not in content
        assert "shown" in content

    def test_debug_env_var_forces_debug(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv(DEBUG_ENV_VAR, "1")
        log_file = tmp_path / "node.log"
        logger = create_logger(level="error", log_file=str(log_file))

        logger.debug("port_allocated")

        assert "port_allocated" in log_file.read_text()

    def test_rotating_file_handler(self, tmp_path: Path) -> None:
        log_file = tmp_path / "node.log"
        logger = create_logger(log_file=str(log_file), max_bytes=200, backup_count=2)

        for i in range(20):
            logger.info("output", line=f"line {i:02d}")

        assert (tmp_path / "node.log.1").exists()
        assert not (tmp_path / "node.log.3").exists()

    def test_stderr_text_output(self, capsys: pytest.CaptureFixture[str]) -> None:
        logger = create_logger()

        logger.info("node_starting", node="node1")

        captured = capsys.readouterr()
        assert "node_starting" in captured.err
        assert "node=node1" in captured.err

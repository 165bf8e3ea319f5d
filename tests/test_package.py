"""Tests for the package logger and project metadata."""

from __future__ import annotations

import logging
import tomllib
from logging.handlers import RotatingFileHandler
from pathlib import Path

import retail_pos


def test_package_logger_writes_to_rotating_pos_log():
    file_handlers = [h for h in retail_pos.log.handlers if isinstance(h, RotatingFileHandler)]

    assert retail_pos.log.name == "retail_pos"
    assert retail_pos.LOG_FILE.name == "retail_pos.log"
    assert [Path(h.baseFilename) for h in file_handlers] == [retail_pos.LOG_FILE]
    assert file_handlers[0].maxBytes == retail_pos.LOG_MAX_BYTES
    assert file_handlers[0].backupCount == retail_pos.LOG_BACKUP_COUNT


def test_console_handler_only_shows_warnings():
    console = [
        h for h in retail_pos.log.handlers
        if isinstance(h, logging.StreamHandler) and not isinstance(h, logging.FileHandler)
    ]
    assert [h.level for h in console] == [logging.WARNING]


def test_build_file_handler_falls_back_when_directory_is_unusable(tmp_path, capsys):
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("")
    formatter = logging.Formatter(retail_pos.LOG_FORMAT)

    handler = retail_pos._build_file_handler(blocker / "retail_pos.log", formatter)

    assert handler is None
    assert "unable to initialize log file" in capsys.readouterr().err


def test_build_file_handler_creates_missing_directory(tmp_path):
    target = tmp_path / "logs" / "retail_pos.log"
    handler = retail_pos._build_file_handler(target, logging.Formatter(retail_pos.LOG_FORMAT))
    try:
        assert handler is not None
        assert handler.level == logging.INFO
        assert target.parent.is_dir()
    finally:
        handler.close()


def test_project_metadata_points_at_the_readme():
    root = Path(__file__).resolve().parents[1]
    metadata = tomllib.loads((root / "pyproject.toml").read_text(encoding="utf-8"))["project"]

    assert metadata["readme"] == "README.md"
    assert (root / metadata["readme"]).read_text(encoding="utf-8").startswith("# retail-pos")

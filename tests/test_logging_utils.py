"""Tests for :mod:`raiddeck.logging_utils`."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import pytest

from raiddeck import logging_utils

_STATE = ("_stream_handler", "_ui_handler", "_file_handler", "_log_path", "_level")


@pytest.fixture
def fresh_logging(monkeypatch: pytest.MonkeyPatch) -> Any:
    """Reset the package logger so each test configures it from scratch."""

    monkeypatch.setenv("RAIDDECK_LOG_FILE", "")
    monkeypatch.delenv("RAIDDECK_LOG_LEVEL", raising=False)
    monkeypatch.setattr(logging_utils.configure_logging, "_configured", False, raising=False)
    for attribute in _STATE:
        monkeypatch.delattr(logging_utils.configure_logging, attribute, raising=False)

    logger = logging.getLogger("raiddeck")
    saved = list(logger.handlers)
    for handler in saved:
        logger.removeHandler(handler)
    yield logging_utils
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        if isinstance(handler, logging.FileHandler):
            handler.close()
    for handler in saved:
        logger.addHandler(handler)


class RecordingViewer:
    """Stand-in for the Textual log viewer."""

    is_attached = False

    def __init__(self) -> None:
        self.entries: list[tuple[int, str]] = []

    def append_entry(self, level: int, message: str) -> None:
        self.entries.append((level, message))

    def replace_entries(self, entries: Any) -> None:
        self.entries = list(entries)


def test_configure_logging_updates_level(fresh_logging: Any) -> None:
    logger = fresh_logging.configure_logging(level="INFO")
    assert logger.getEffectiveLevel() == logging.INFO

    fresh_logging.configure_logging(level="DEBUG")
    assert logger.getEffectiveLevel() == logging.DEBUG
    assert all(handler.level == logging.DEBUG for handler in logger.handlers)


def test_environment_level_is_used(fresh_logging: Any, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("RAIDDECK_LOG_LEVEL", "warning")

    logger = fresh_logging.configure_logging()

    assert logger.getEffectiveLevel() == logging.WARNING


def test_configure_logging_changes_file_destination(fresh_logging: Any, tmp_path: Path) -> None:
    logger = fresh_logging.configure_logging(level="INFO")
    assert not any(isinstance(h, logging.FileHandler) for h in logger.handlers)
    assert fresh_logging.get_log_file_path() is None

    log_path = tmp_path / "logs" / "runtime.log"
    fresh_logging.configure_logging(log_file=str(log_path))

    file_handlers = [h for h in logger.handlers if isinstance(h, logging.FileHandler)]
    assert len(file_handlers) == 1
    assert Path(file_handlers[0].baseFilename) == log_path
    assert fresh_logging.get_log_file_path() == log_path
    assert log_path.exists()


def test_get_logger_nests_under_package(fresh_logging: Any) -> None:
    assert fresh_logging.get_logger("raiddeck.sync").name == "raiddeck.sync"
    assert fresh_logging.get_logger("plugins").name == "raiddeck.plugins"
    assert fresh_logging.get_logger().name == "raiddeck"


def test_log_viewer_receives_buffered_and_new_records(fresh_logging: Any) -> None:
    logger = fresh_logging.configure_logging(level="INFO")
    logger.info("before viewer")
    viewer = RecordingViewer()

    fresh_logging.register_log_viewer(viewer)
    stream_handler = fresh_logging.configure_logging._stream_handler
    assert stream_handler not in logger.handlers

    logger.warning("after viewer")
    messages = [message for _, message in viewer.entries]
    assert any("before viewer" in message for message in messages)
    assert viewer.entries[-1][0] == logging.WARNING
    assert "after viewer" in viewer.entries[-1][1]

    fresh_logging.register_log_viewer(None)
    assert stream_handler in logger.handlers

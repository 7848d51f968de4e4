# tests/logging/test_logging_config.py

import logging
from logging.handlers import RotatingFileHandler

import pytest

from classroll.backend.config.config import settings
from classroll.backend.logging.logging_config import setup_logging


@pytest.fixture
def root_logger():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    quiet = {name: logging.getLogger(name).level for name in ("apscheduler", "httpx")}
    yield root
    for handler in root.handlers:
        handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)
    for name, previous in quiet.items():
        logging.getLogger(name).setLevel(previous)


def test_writes_to_a_rotating_file_under_the_configured_dir(root_logger, tmp_path):
    setup_logging(log_dir=tmp_path / "logs")

    file_handlers = [h for h in root_logger.handlers if isinstance(h, RotatingFileHandler)]
    assert len(file_handlers) == 1
    assert file_handlers[0].maxBytes == 5 * 1024 * 1024
    assert file_handlers[0].backupCount == 5
    assert (tmp_path / "logs" / "app.log").exists()
    assert len(root_logger.handlers) == 2


def test_level_comes_from_settings(root_logger, tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "LOG_LEVEL", "debug")

    setup_logging(log_dir=tmp_path)

    assert root_logger.level == logging.DEBUG
    assert logging.getLogger("apscheduler").level == logging.WARNING
    assert logging.getLogger("httpx").level == logging.WARNING


def test_repeated_setup_does_not_duplicate_handlers(root_logger, tmp_path):
    setup_logging(logging.INFO, tmp_path)
    setup_logging(logging.ERROR, tmp_path)

    assert len(root_logger.handlers) == 2
    assert root_logger.level == logging.ERROR
    assert logging.getLogger("httpx").level == logging.ERROR

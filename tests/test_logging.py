"""
Tests for rigcalib.utils.logging.
"""

import logging

import pytest

from rigcalib.utils.logging import LOG_LEVEL_ENV, ROOT_LOGGER_NAME, get_logger, setup_logging


@pytest.fixture
def restore_root_logger():
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    handlers, level = list(logger.handlers), logger.level
    yield
    for handler in logger.handlers:
        handler.close()
    logger.handlers[:] = handlers
    logger.setLevel(level)


def test_get_logger_prefixes_names():
    assert get_logger("core.optimizer").name == "rigcalib.core.optimizer"
    assert get_logger("rigcalib.io").name == "rigcalib.io"
    assert get_logger().name == ROOT_LOGGER_NAME


def test_library_is_silent_by_default():
    handlers = logging.getLogger(ROOT_LOGGER_NAME).handlers
    assert any(isinstance(h, logging.NullHandler) for h in handlers)


def test_setup_logging_with_file(temp_dir, restore_root_logger):
    log_file = temp_dir / "logs" / "calib.log"
    logger = setup_logging("debug", log_file=log_file)
    get_logger("test").debug("hello file")
    for handler in logger.handlers:
        handler.flush()
    assert logger.level == logging.DEBUG
    assert "hello file" in log_file.read_text(encoding="utf-8")


def test_level_from_environment(monkeypatch, restore_root_logger):
    monkeypatch.setenv(LOG_LEVEL_ENV, "WARNING")
    assert setup_logging().level == logging.WARNING


def test_unknown_level(restore_root_logger):
    with pytest.raises(ValueError):
        setup_logging("chatty")

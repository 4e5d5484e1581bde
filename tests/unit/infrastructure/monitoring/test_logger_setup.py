import logging
import sys

import pytest

from jmapbridge.infrastructure.monitoring.logger_setup import level_from_name, setup_logging


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    httpx_level = logging.getLogger("httpx").level
    yield root
    for handler in root.handlers[:]:
        root.removeHandler(handler)
        if handler not in handlers:
            handler.close()
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(level)
    logging.getLogger("httpx").setLevel(httpx_level)


def test_console_handler_writes_to_stderr(restore_root_logger):
    setup_logging(log_level=logging.DEBUG)
    (handler,) = restore_root_logger.handlers
    assert isinstance(handler, logging.StreamHandler)
    assert handler.stream is sys.stderr
    assert restore_root_logger.level == logging.DEBUG


def test_httpx_request_lines_are_quieted(restore_root_logger):
    setup_logging(log_level=logging.DEBUG)
    assert logging.getLogger("httpx").level == logging.WARNING
    setup_logging(log_level=logging.ERROR)
    assert logging.getLogger("httpx").level == logging.ERROR


def test_file_handler_is_added(restore_root_logger, tmp_path):
    log_file = tmp_path / "jmapbridge.log"
    setup_logging(log_level=logging.INFO, log_file=str(log_file))
    logging.getLogger("jmapbridge.test").info("hello file")
    for handler in restore_root_logger.handlers:
        handler.flush()
    assert "hello file" in log_file.read_text(encoding="utf-8")


@pytest.mark.parametrize("name, expected", [
    ("debug", logging.DEBUG),
    ("WARNING", logging.WARNING),
    (None, logging.INFO),
    ("chatty", logging.INFO),
])
def test_level_from_name(name, expected):
    assert level_from_name(name) == expected

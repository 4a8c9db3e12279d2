"""
Logging Utilities Tests

Run with: pytest tests/test_logging_utils.py -v
"""

import logging
import logging.handlers
from unittest.mock import patch

import pytest

from funnelforge.logging_utils import (
    NOISY_LOGGERS,
    SafeStreamHandler,
    configure_api_logging,
    configure_safe_logging,
)


@pytest.fixture
def root_logger():
    """Restore root handlers and level after each test."""
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    root.handlers = [h for h in handlers if not isinstance(h, SafeStreamHandler)]
    yield root
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers = handlers
    root.setLevel(level)


class TestSafeStreamHandler:
    @pytest.mark.parametrize("error", [BrokenPipeError(), ValueError("I/O operation on closed file")])
    def test_emit_swallows_closed_stream(self, error):
        handler = SafeStreamHandler()
        record = logging.LogRecord("x", logging.INFO, __file__, 1, "msg", None, None)
        with patch.object(logging.StreamHandler, "emit", side_effect=error):
            handler.emit(record)


class TestConfigure:
    def test_safe_logging_is_idempotent(self, root_logger):
        configure_safe_logging(logging.INFO)
        configure_safe_logging(logging.INFO)
        safe = [h for h in root_logger.handlers if isinstance(h, SafeStreamHandler)]
        assert len(safe) == 1
        assert root_logger.level <= logging.INFO

    def test_api_logging_writes_file_once(self, root_logger, tmp_path):
        log_file = str(tmp_path / "api.log")

        configure_api_logging(log_file)
        configure_api_logging(log_file)

        file_handlers = [
            h for h in root_logger.handlers
            if isinstance(h, logging.handlers.RotatingFileHandler) and h.baseFilename == log_file
        ]
        assert len(file_handlers) == 1
        for name in NOISY_LOGGERS:
            assert logging.getLogger(name).level == logging.WARNING

        logging.getLogger("funnelforge.test").info("generation pass started")
        file_handlers[0].flush()
        assert "generation pass started" in (tmp_path / "api.log").read_text()

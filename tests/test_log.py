"""Tests for structured logging helpers."""

import structlog
from structlog.testing import capture_logs

from pcmatcher.log import LoggerMixin, configure_logging, get_logger


class Worker(LoggerMixin):
    pass


def test_get_logger_configures_structlog():
    logger = get_logger("pcmatcher.test")
    assert structlog.is_configured()
    assert hasattr(logger, "info")


def test_configure_logging_accepts_level():
    configure_logging("debug")
    assert structlog.is_configured()


def test_mixin_logger_is_cached():
    worker = Worker()
    assert worker.logger is worker.logger


def test_log_start_returns_context():
    with capture_logs():
        context = Worker().log_start("matching", pairs=3)
    assert context["event"] == "matching"
    assert context["pairs"] == 3
    assert "start_time" in context


def test_log_success_adds_duration():
    with capture_logs() as logs:
        worker = Worker()
        context = worker.log_start("matching")
        worker.log_success(context, pairs=7)

    assert logs[0]["event"] == "matching started"
    assert logs[-1]["event"] == "matching completed"
    assert logs[-1]["pairs"] == 7
    assert logs[-1]["seconds"] >= 0.0

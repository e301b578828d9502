"""Tests for event sinks and logging setup"""
import logging

from rich.logging import RichHandler

from vmaf_analyzer.events import CapturingEventSink, EventType, LoggingEventSink
from vmaf_analyzer.logging import configure_logging


def test_logging_sink_uses_component_logger(caplog):
    caplog.set_level(logging.DEBUG, logger="vmaf_analyzer")
    LoggingEventSink().emit(EventType.STAGE_FAILED, "conversion", "Video conversion failed", stderr="x")
    record = caplog.records[-1]
    assert record.name == "vmaf_analyzer.conversion"
    assert record.levelno == logging.ERROR
    assert "Video conversion failed" in record.getMessage()


def test_debug_level_events(caplog):
    caplog.set_level(logging.INFO, logger="vmaf_analyzer")
    LoggingEventSink().emit(EventType.PROCESS_STARTED, "process", "Running command: vmaf")
    assert not caplog.records


def test_capturing_sink_forwards():
    inner = CapturingEventSink()
    outer = CapturingEventSink(forward=inner)
    outer.emit(EventType.WORKSPACE_CREATED, "workspace", "Created temporary directory: /tmp/x")
    outer.emit(EventType.TOOL_NOT_FOUND, "tools", "vmaf binary not found", searched=[])
    assert len(inner.events) == 2
    assert outer.of_type(EventType.WORKSPACE_CREATED)[0].source == "workspace"
    assert outer.get_errors() == ["vmaf binary not found"]


def test_configure_logging(tmp_path):
    log_file = configure_logging("DEBUG", log_dir=tmp_path)
    logger = logging.getLogger("vmaf_analyzer")
    try:
        assert log_file.parent == tmp_path
        assert log_file.name.startswith("vmaf_analyzer_")
        assert any(isinstance(h, RichHandler) for h in logger.handlers)
        assert logger.level == logging.DEBUG
    finally:
        for handler in logger.handlers[:]:
            logger.removeHandler(handler)
            handler.close()


def test_configure_logging_console_only():
    assert configure_logging("INFO", file_logging=False) is None
    logger = logging.getLogger("vmaf_analyzer")
    assert len(logger.handlers) == 1
    logger.removeHandler(logger.handlers[0])

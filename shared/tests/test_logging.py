"""
Tests for structured logging.
"""

import json
import logging
import sys

from shared.logging import JSONFormatter, get_job_id, get_logger, job_context, set_job_id, set_request_id


def _format(logger, message, **extra):
    record = logger.makeRecord(logger.name, logging.INFO, __file__, 1, message, (), None, extra=extra)
    return json.loads(JSONFormatter().format(record))


def test_get_logger_creates_logger():
    """Test that get_logger creates a configured logger once."""
    logger = get_logger("test_module")

    assert isinstance(logger, logging.Logger)
    assert logger.name == "test_module"
    handlers = list(logger.handlers)
    assert get_logger("test_module").handlers == handlers


def test_formatter_outputs_json_with_extra():
    log_data = _format(get_logger("test_module"), "Job completed", job_ref="job_1", progress=100, tags=["a"])

    assert log_data["level"] == "INFO"
    assert log_data["logger"] == "test_module"
    assert log_data["message"] == "Job completed"
    assert log_data["job_ref"] == "job_1"
    assert log_data["progress"] == 100
    assert log_data["tags"] == "['a']"
    assert log_data["timestamp"].endswith("Z")


def test_job_context_injects_job_id():
    logger = get_logger("test_module")

    with job_context("job_abc"):
        assert get_job_id() == "job_abc"
        log_data = _format(logger, "inside")

    assert log_data["job_id"] == "job_abc"
    assert get_job_id() is None
    assert "job_id" not in _format(logger, "outside")


def test_set_job_id_and_request_id():
    logger = get_logger("test_module")
    set_job_id("job_xyz")
    set_request_id("req-123")
    try:
        log_data = _format(logger, "message")
    finally:
        set_job_id(None)
        set_request_id(None)

    assert log_data["job_id"] == "job_xyz"
    assert log_data["request_id"] == "req-123"


def test_formatter_includes_exception():
    logger = get_logger("test_module")
    try:
        raise ValueError("boom")
    except ValueError:
        record = logger.makeRecord(logger.name, logging.ERROR, __file__, 1, "failed", (), sys.exc_info())

    log_data = json.loads(JSONFormatter().format(record))

    assert "ValueError: boom" in log_data["exception"]

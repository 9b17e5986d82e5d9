"""Tests for log setup and both output formats.

The JSON format is parsed downstream, so a formatter regression would
break log search silently.  Context fields must stay top-level keys.
"""

from __future__ import annotations

import json
import logging
import sys

from engagement.core.logging import (
    RequestContextFilter,
    _ContainerFormatter,
    _JsonFormatter,
    request_id_var,
    setup_logging,
)


def _record(level: int = logging.INFO, msg: str = "hello", **extra: object) -> logging.LogRecord:
    record = logging.LogRecord(
        name="engagement.api.activity",
        level=level,
        pathname="activity.py",
        lineno=17,
        msg=msg,
        args=(),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


# ---- setup_logging ----


def test_setup_logging_sets_root_level() -> None:
    setup_logging("debug")
    assert logging.getLogger().level == logging.DEBUG
    setup_logging("nonexistent")
    assert logging.getLogger().level == logging.INFO


def test_setup_logging_keeps_library_loggers_quiet() -> None:
    setup_logging("debug")
    assert logging.getLogger("uvicorn").level == logging.WARNING
    assert logging.getLogger("sqlalchemy.engine").level == logging.WARNING

    setup_logging("error")
    assert logging.getLogger("httpx").level == logging.ERROR


def test_setup_logging_installs_single_handler_with_filter() -> None:
    setup_logging("info", json_format=True)
    handlers = logging.getLogger().handlers
    assert len(handlers) == 1
    assert isinstance(handlers[0].formatter, _JsonFormatter)
    assert any(isinstance(f, RequestContextFilter) for f in handlers[0].filters)


# ---- RequestContextFilter ----


def test_filter_stamps_current_request_id() -> None:
    token = request_id_var.set("req-42")
    try:
        record = _record()
        RequestContextFilter().filter(record)
    finally:
        request_id_var.reset(token)
    assert record.request_id == "req-42"  # type: ignore[attr-defined]


def test_filter_defaults_outside_a_request() -> None:
    record = _record()
    RequestContextFilter().filter(record)
    assert record.request_id == "-"  # type: ignore[attr-defined]


# ---- _ContainerFormatter ----


def test_container_format_omits_location_below_warning() -> None:
    output = _ContainerFormatter().format(_record())
    assert "INFO" in output
    assert "engagement.api.activity" in output
    assert "[activity.py:" not in output


def test_container_format_adds_location_for_warning() -> None:
    output = _ContainerFormatter().format(_record(logging.WARNING, "slow store"))
    assert "slow store" in output
    assert "[activity.py:17]" in output


# ---- _JsonFormatter ----


def test_json_format_lifts_context_fields() -> None:
    record = _record(
        request_id="abc-123",
        user_id="learner-1",
        course_id="course-101",
        batch_size=20,
    )
    parsed = json.loads(_JsonFormatter().format(record))
    assert parsed["level"] == "INFO"
    assert parsed["logger"] == "engagement.api.activity"
    assert parsed["message"] == "hello"
    assert parsed["request_id"] == "abc-123"
    assert parsed["user_id"] == "learner-1"
    assert parsed["course_id"] == "course-101"
    assert parsed["batch_size"] == 20
    assert "method" not in parsed


def test_json_format_includes_exception() -> None:
    try:
        raise RuntimeError("store down")
    except RuntimeError:
        record = _record(logging.ERROR, "write failed")
        record.exc_info = sys.exc_info()
        output = _JsonFormatter().format(record)

    parsed = json.loads(output)
    assert "RuntimeError: store down" in parsed["exception"]

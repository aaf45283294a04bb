from __future__ import annotations

import json
import logging
import sys
from collections.abc import Callable
from typing import Protocol, cast

import pytest
import structlog

from superapp_core.logging import (
    bind_log_context,
    clear_log_context,
    configure_structlog,
    get_log_level_value,
    log_error,
    log_exception,
    log_info,
    log_warning,
)


def _configured_renderer() -> object:
    root_handler = logging.getLogger().handlers[0]
    formatter = root_handler.formatter
    assert isinstance(formatter, structlog.stdlib.ProcessorFormatter)
    return formatter.processors[-1]


def test_get_log_level_value_maps_known_levels() -> None:
    assert get_log_level_value("debug") == logging.DEBUG
    assert get_log_level_value("INFO") == logging.INFO
    assert get_log_level_value(" warning ") == logging.WARNING
    assert get_log_level_value("ERROR") == logging.ERROR
    assert get_log_level_value("critical") == logging.CRITICAL


def test_get_log_level_value_rejects_unknown_level() -> None:
    with pytest.raises(ValueError):
        get_log_level_value("TRACE")


def test_configure_structlog_idempotent(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(sys.stderr, "isatty", lambda: False, raising=False)

    first_logger = configure_structlog(log_level="INFO")
    second_logger = configure_structlog(log_level="DEBUG")

    assert len(logging.getLogger().handlers) == 1
    assert logging.getLogger().level == logging.DEBUG
    assert first_logger is not None
    assert second_logger is not None


def test_configure_structlog_uses_console_renderer_for_tty(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setattr(sys.stderr, "isatty", lambda: True, raising=False)

    configure_structlog(log_level="INFO")

    assert isinstance(_configured_renderer(), structlog.dev.ConsoleRenderer)


def test_configure_structlog_uses_json_renderer_for_non_tty(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setattr(sys.stderr, "isatty", lambda: False, raising=False)

    configure_structlog(log_level="INFO")

    assert isinstance(_configured_renderer(), structlog.processors.JSONRenderer)


class _CaptureHandler(logging.Handler):
    def __init__(self) -> None:
        super().__init__()
        self.records: list[logging.LogRecord] = []

    def emit(self, record: logging.LogRecord) -> None:
        self.records.append(record)


class _FakeStructuredLogger:
    def __init__(self) -> None:
        self.calls: list[tuple[str, str, dict[str, object]]] = []

    def info(self, event: str, **kwargs: object) -> None:
        self.calls.append(("info", event, dict(kwargs)))

    def warning(self, event: str, **kwargs: object) -> None:
        self.calls.append(("warning", event, dict(kwargs)))

    def error(self, event: str, **kwargs: object) -> None:
        self.calls.append(("error", event, dict(kwargs)))

    def exception(self, event: str, **kwargs: object) -> None:
        self.calls.append(("exception", event, dict(kwargs)))


class _RecordWithStructuredFields(Protocol):
    queue: str
    pending: int


@pytest.mark.parametrize(
    ("log_fn", "level"),
    [
        (log_info, "info"),
        (log_warning, "warning"),
        (log_error, "error"),
        (log_exception, "exception"),
    ],
)
def test_structured_log_helpers_forward_keyword_fields(
    log_fn: Callable[..., None],
    level: str,
) -> None:
    logger = _FakeStructuredLogger()

    log_fn(logger, "sync_queue.event", queue="mutations", attempt=3)

    assert logger.calls == [
        (
            level,
            "sync_queue.event",
            {"queue": "mutations", "attempt": 3},
        )
    ]


def test_structured_log_helpers_support_stdlib_logger_extra() -> None:
    logger = logging.getLogger("tests.superapp_core.logging.helpers")
    logger.handlers.clear()
    logger.propagate = False
    logger.setLevel(logging.INFO)
    handler = _CaptureHandler()
    logger.addHandler(handler)

    log_info(logger, "sync_queue.enqueued", queue="mutations", pending=2)

    assert len(handler.records) == 1
    record = handler.records[0]
    typed_record = cast(_RecordWithStructuredFields, record)
    assert record.getMessage() == "sync_queue.enqueued"
    assert typed_record.queue == "mutations"
    assert typed_record.pending == 2


def test_configured_json_output_keeps_helper_fields(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setattr(sys.stderr, "isatty", lambda: False, raising=False)
    configure_structlog(log_level="INFO")
    formatter = logging.getLogger().handlers[0].formatter
    assert formatter is not None

    logger = logging.getLogger("tests.superapp_core.logging.rendered")
    logger.handlers.clear()
    logger.propagate = False
    handler = _CaptureHandler()
    logger.addHandler(handler)
    clear_log_context()
    bind_log_context(user_id="user-1")

    log_warning(
        logger,
        "sync_queue.replay_failed",
        queue="mutations",
        mutation_id=7,
        error="backend unavailable",
    )
    rendered = json.loads(formatter.format(handler.records[0]))
    clear_log_context()

    assert rendered["event"] == "sync_queue.replay_failed"
    assert rendered["level"] == "warning"
    assert rendered["queue"] == "mutations"
    assert rendered["mutation_id"] == 7
    assert rendered["error"] == "backend unavailable"
    assert rendered["user_id"] == "user-1"


def test_bound_log_context_is_merged_and_cleared() -> None:
    clear_log_context()
    bind_log_context(user_id="user-1", screen="cart")

    merged = structlog.contextvars.merge_contextvars(None, "info", {"event": "x"})
    assert merged == {"event": "x", "user_id": "user-1", "screen": "cart"}

    clear_log_context("screen")
    assert structlog.contextvars.get_contextvars() == {"user_id": "user-1"}

    clear_log_context()
    assert structlog.contextvars.get_contextvars() == {}

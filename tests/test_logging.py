from __future__ import annotations

import logging

import pytest

from listing_autofill.core.logging import StructuredLogFormatter, configure_logging, get_logger, log_progress


@pytest.fixture
def reset_logging_handlers():
    root = logging.getLogger()
    existing_handlers = list(root.handlers)
    yield
    root.handlers = existing_handlers


class _ListHandler(logging.Handler):
    def __init__(self, formatter: logging.Formatter):
        super().__init__()
        self.records: list[logging.LogRecord] = []
        self.setFormatter(formatter)

    def emit(self, record: logging.LogRecord) -> None:  # pragma: no cover - trivial
        self.records.append(record)


def _record(message: str) -> logging.LogRecord:
    return logging.LogRecord(
        name="test.logger",
        level=logging.INFO,
        pathname=__file__,
        lineno=42,
        msg=message,
        args=(),
        exc_info=None,
    )


def test_structured_formatter_appends_extras():
    formatter = StructuredLogFormatter(use_color=False)
    record = _record("Provider call recorded")
    record.latency_ms = 12
    record.provider_key = "ademe"
    record.capability = "emission"
    record.pollutants = ("CO", "NOx")

    formatted = formatter.format(record)

    assert "Provider call recorded" in formatted
    assert "pollutants=[CO, NOx]" in formatted
    extras = formatted.split(" | ")[-1]
    assert extras.index("capability=emission") < extras.index("provider_key=ademe") < extras.index("latency_ms=12")


def test_structured_formatter_skips_empty_extras():
    formatter = StructuredLogFormatter(use_color=False)
    record = _record("Cache miss")
    record.capability = None

    formatted = formatter.format(record)

    assert formatted.endswith("Cache miss")


def test_configure_logging_installs_structured_formatter():
    root = logging.getLogger()
    existing_handlers = list(root.handlers)
    try:
        configure_logging(force=True)
        assert root.handlers, "expected at least one handler configured"
        formatter = root.handlers[0].formatter
        assert isinstance(formatter, StructuredLogFormatter)
    finally:
        root.handlers = existing_handlers


def test_log_progress_populates_record_extras(reset_logging_handlers):
    configure_logging(force=True)
    logger = get_logger("test.progress", extra={"identifier_type": "plate"})
    root = logging.getLogger()
    collector = _ListHandler(root.handlers[0].formatter)
    root.addHandler(collector)
    try:
        log_progress(logger, "Capability served from cache", step="emission", status="cached", extra={"cache": "hit"})
    finally:
        root.removeHandler(collector)

    assert collector.records, "log_progress should emit a record"
    record = collector.records[0]
    assert getattr(record, "step") == "emission"
    assert getattr(record, "status") == "cached"
    assert getattr(record, "cache") == "hit"
    assert getattr(record, "identifier_type") == "plate"
    formatted = collector.format(record)
    assert "status=cached" in formatted
    assert "identifier_type=plate" in formatted


def test_log_level_from_environment(monkeypatch, reset_logging_handlers):
    monkeypatch.setenv("AUTOFILL_LOG_LEVEL", "warning")

    configure_logging(force=True)

    assert logging.getLogger().level == logging.WARNING
    logging.getLogger().setLevel(logging.INFO)

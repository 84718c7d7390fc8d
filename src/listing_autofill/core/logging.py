"""
Centralised logging helpers for the listing auto-fill service.

The helpers wrap :mod:`logging` so every module shares one handler and one
formatter. Structured metadata passed through ``extra`` is rendered as
``key=value`` pairs after the message, with provider-orchestration keys
(capability, provider, latency) surfaced first. Modules should obtain loggers
via :func:`get_logger` rather than installing their own handlers.
"""

from __future__ import annotations

import json
import logging
import os
import sys
from copy import copy
from functools import lru_cache
from logging import Logger, LoggerAdapter
from typing import Any, Iterable, Mapping, MutableMapping, Optional, Sequence

DEFAULT_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
DEFAULT_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
DEFAULT_LEVEL = "INFO"
_ENV_LEVEL = "AUTOFILL_LOG_LEVEL"
_ENV_COLOR = "AUTOFILL_LOG_COLOR"
_EXTRA_FOCUS_ORDER: Sequence[str] = (
    "phase",
    "step",
    "status",
    "capability",
    "provider_key",
    "endpoint",
    "status_code",
    "latency_ms",
    "cost",
    "identifier_type",
    "cache",
    "attempt",
    "method",
    "url",
)

_LEVEL_STYLES = {
    "DEBUG": "\033[36m",
    "INFO": "\033[32m",
    "WARNING": "\033[33m",
    "ERROR": "\033[31m",
    "CRITICAL": "\033[95m",
}
_RESET = "\033[0m"

_RESERVED_ATTRS = frozenset(logging.LogRecord("", 0, "", 0, "", None, None).__dict__) | {"message", "asctime"}


def _resolve_level(level: Optional[int | str]) -> int:
    if isinstance(level, int):
        return level
    candidate = (level or os.getenv(_ENV_LEVEL) or DEFAULT_LEVEL).upper()
    resolved = logging.getLevelName(candidate)
    return resolved if isinstance(resolved, int) else logging.INFO


def _coerce_bool(value: str) -> Optional[bool]:
    lowered = value.strip().lower()
    if lowered in {"1", "true", "yes", "on"}:
        return True
    if lowered in {"0", "false", "no", "off"}:
        return False
    return None


def _supports_color(stream: Any) -> bool:
    preference = os.getenv(_ENV_COLOR)
    if preference:
        resolved = _coerce_bool(preference)
        if resolved is not None:
            return resolved
    return hasattr(stream, "isatty") and bool(stream.isatty())


def _iter_extras(record: logging.LogRecord) -> Iterable[tuple[str, Any]]:
    payload = {key: value for key, value in record.__dict__.items() if key not in _RESERVED_ATTRS and not key.startswith("_") and value is not None}

    for key in _EXTRA_FOCUS_ORDER:
        if key in payload:
            yield key, payload.pop(key)

    for key in sorted(payload):
        yield key, payload[key]


def _format_extra_value(value: Any) -> str:
    if isinstance(value, (list, tuple, set)):
        return "[" + ", ".join(_format_extra_value(item) for item in value) + "]"
    if isinstance(value, Mapping):
        try:
            return json.dumps(value, ensure_ascii=False, default=str)
        except TypeError:
            return repr(dict(value))
    if isinstance(value, float):
        return f"{value:.4g}"
    return str(value)


class StructuredLogFormatter(logging.Formatter):
    """Formatter that appends structured extras and supports optional colour output."""

    def __init__(self, *, use_color: bool = False) -> None:
        super().__init__(DEFAULT_FORMAT, datefmt=DEFAULT_DATE_FORMAT)
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        working = copy(record)
        if self.use_color:
            style = _LEVEL_STYLES.get(working.levelname.strip().upper())
            if style:
                working.levelname = f"{style}{working.levelname}{_RESET}"
        base = super().format(working)
        extras = " ".join(f"{key}={_format_extra_value(value)}" for key, value in _iter_extras(record))
        if extras:
            return f"{base} | {extras}"
        return base


@lru_cache(maxsize=1)
def _base_logger_configured() -> bool:
    return False


def _build_handler(level: Optional[int | str]) -> logging.Handler:
    handler = logging.StreamHandler(stream=sys.stderr)
    handler.setLevel(_resolve_level(level))
    handler.setFormatter(StructuredLogFormatter(use_color=_supports_color(handler.stream)))
    return handler


def configure_logging(level: Optional[int | str] = None, *, force: bool = False) -> None:
    """
    Configure root logging handlers unless already initialised.

    Parameters
    ----------
    level:
        Optional logging level override. Falls back to ``AUTOFILL_LOG_LEVEL`` or ``INFO``.
    force:
        When ``True`` the configuration is reapplied even if previously initialised.
    """

    if not force and _base_logger_configured.cache_info().currsize:
        return
    handler = _build_handler(level)
    logging.basicConfig(level=_resolve_level(level), handlers=[handler], force=force)
    _base_logger_configured.cache_clear()
    _base_logger_configured()


def get_logger(
    name: str,
    *,
    level: Optional[int | str] = None,
    extra: Optional[Mapping[str, object]] = None,
) -> LoggerAdapter:
    """
    Return a :class:`logging.LoggerAdapter` bound to ``name``.

    ``extra`` is attached to every entry emitted through the adapter; values
    passed per call are merged on top of it.
    """

    configure_logging(level)
    base: Logger = logging.getLogger(name)
    if level is not None:
        base.setLevel(_resolve_level(level))
    bound = {key: value for key, value in (extra or {}).items() if value is not None}
    return _MergingAdapter(base, bound)


class _MergingAdapter(LoggerAdapter):
    """Adapter that merges call-site ``extra`` with the bound context instead of replacing it."""

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> tuple[Any, MutableMapping[str, Any]]:
        merged: dict[str, Any] = dict(self.extra or {})
        call_extra = kwargs.get("extra")
        if call_extra:
            merged.update(call_extra)
        kwargs["extra"] = merged
        return msg, kwargs


def log_progress(
    logger: LoggerAdapter | Logger,
    message: str,
    *,
    phase: Optional[str] = None,
    step: Optional[str] = None,
    status: Optional[str] = None,
    level: int = logging.INFO,
    extra: Optional[Mapping[str, object]] = None,
) -> None:
    """
    Emit a progress log with structured metadata so observers can follow the
    workflow phase and outcome of a request.
    """

    payload: MutableMapping[str, object] = dict(extra or {})
    if phase:
        payload["phase"] = phase
    if step:
        payload["step"] = step
    if status:
        payload["status"] = status
    logger.log(level, message, extra=payload)

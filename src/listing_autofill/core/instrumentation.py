"""
Per-call instrumentation and consecutive-failure alerting for provider adapters.

Every resolved provider method is wrapped by :meth:`Instrumentation.instrument`.
A wrapped call writes one :class:`CallRecord` (status 200 on success, 500 plus
the error message on failure) and feeds it to a :class:`FailureTracker`. The
tracker keeps one :class:`FailureCounter` per provider key and raises a single
critical alert when the counter reaches the threshold. Record and alert sinks
are best-effort: their failures are logged and never reach the caller.
"""

from __future__ import annotations

import functools
import threading
import time
import uuid
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol, TypeVar

from .logging import get_logger
from .registry import Capability

FAILURE_THRESHOLD = 3
SUCCESS_STATUS = 200
FAILURE_STATUS = 500
DEFAULT_HTTP_METHOD = "POST"

F = TypeVar("F", bound=Callable[..., Any])


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(slots=True, frozen=True)
class CallRecord:
    """Outcome of one instrumented provider call."""

    capability: Capability
    provider_key: str
    endpoint: str
    status_code: int
    latency_ms: int
    cost: float
    http_method: str = DEFAULT_HTTP_METHOD
    error_message: Optional[str] = None
    timestamp: datetime = field(default_factory=_utcnow)

    @property
    def failed(self) -> bool:
        return self.status_code >= 400


class CallLog(Protocol):
    def append(self, record: CallRecord) -> None:
        ...


class InMemoryCallLog:
    """Append-only call log kept in process memory."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._records: List[CallRecord] = []

    def append(self, record: CallRecord) -> None:
        with self._lock:
            self._records.append(record)

    def records(self, provider_key: Optional[str] = None) -> List[CallRecord]:
        with self._lock:
            items = list(self._records)
        if provider_key is None:
            return items
        return [item for item in items if item.provider_key == provider_key]

    def total_cost(self) -> float:
        return sum(item.cost for item in self.records())

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)


# -- Alerting -----------------------------------------------------------------


class NotificationMethod(str, Enum):
    IN_APP = "in_app"
    EMAIL = "email"
    BOTH = "both"


@dataclass(slots=True, frozen=True)
class AlertDescriptor:
    """Static description of an alert rule."""

    name: str
    metric: str
    threshold_value: float
    severity: str = "critical"
    notification_method: NotificationMethod = NotificationMethod.BOTH


@dataclass(slots=True, frozen=True)
class AlertEvent:
    id: str
    alert_name: str
    metric: str
    current_value: float
    threshold_value: float
    severity: str
    message: str
    created_at: datetime = field(default_factory=_utcnow)


class AlertSink(Protocol):
    def create_alert_event(self, descriptor: AlertDescriptor, current_value: float) -> Optional[str]:
        ...

    def send_notification(self, payload: Mapping[str, object]) -> None:
        ...


class InMemoryAlertSink:
    """
    Reference alert sink.

    Events are kept in memory. Notifications are logged at ``WARNING`` (in-app)
    or ``ERROR`` (email) and retained so callers can inspect what was sent.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.events: List[AlertEvent] = []
        self.notifications: List[Dict[str, object]] = []
        self._logger = get_logger(self.__class__.__name__)

    def create_alert_event(self, descriptor: AlertDescriptor, current_value: float) -> Optional[str]:
        event = AlertEvent(
            id=uuid.uuid4().hex,
            alert_name=descriptor.name,
            metric=descriptor.metric,
            current_value=current_value,
            threshold_value=descriptor.threshold_value,
            severity=descriptor.severity,
            message=f"{descriptor.name}: {descriptor.metric} = {current_value:g} (threshold: {descriptor.threshold_value:g})",
        )
        with self._lock:
            self.events.append(event)
        return event.id

    def send_notification(self, payload: Mapping[str, object]) -> None:
        with self._lock:
            self.notifications.append(dict(payload))
        method = str(payload.get("method", NotificationMethod.IN_APP.value))
        message = str(payload.get("message", ""))
        if method in (NotificationMethod.IN_APP.value, NotificationMethod.BOTH.value):
            self._logger.warning("Alert notification: %s", message, extra={"status": "alert"})
        if method in (NotificationMethod.EMAIL.value, NotificationMethod.BOTH.value):
            self._logger.error("Alert email dispatched: %s", message, extra={"status": "alert"})


# -- Failure tracking ---------------------------------------------------------


@dataclass(slots=True)
class FailureCounter:
    provider_key: str
    consecutive_failures: int = 0
    last_success_at: Optional[datetime] = None


class FailureTracker:
    """
    Consecutive-failure counters keyed by provider key.

    Each key has its own lock so the increment and the threshold comparison
    happen atomically; the alert fires exactly once when the count first equals
    ``threshold`` and is dispatched after the lock is released.
    """

    def __init__(self, alert_sink: Optional[AlertSink] = None, *, threshold: int = FAILURE_THRESHOLD) -> None:
        if threshold < 1:
            raise ValueError("threshold must be a positive integer")
        self.alert_sink = alert_sink
        self.threshold = threshold
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}
        self._counters: Dict[str, FailureCounter] = {}
        self._logger = get_logger(self.__class__.__name__)

    def _lock_for(self, provider_key: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(provider_key)
            if lock is None:
                lock = self._locks[provider_key] = threading.Lock()
                self._counters[provider_key] = FailureCounter(provider_key)
            return lock

    def record(self, record: CallRecord) -> bool:
        """
        Update the counter for ``record.provider_key``.

        Returns
        -------
        bool
            ``True`` when this record tripped the alert.
        """

        lock = self._lock_for(record.provider_key)
        with lock:
            counter = self._counters[record.provider_key]
            if record.failed:
                counter.consecutive_failures += 1
                count = counter.consecutive_failures
                tripped = count == self.threshold
            else:
                counter.consecutive_failures = 0
                counter.last_success_at = record.timestamp
                tripped = False

        if tripped:
            self._raise_alert(record, count)
        return tripped

    def counter(self, provider_key: str) -> FailureCounter:
        """Return a copy of the counter for ``provider_key``."""

        lock = self._lock_for(provider_key)
        with lock:
            return replace(self._counters[provider_key])

    def reset(self, provider_key: Optional[str] = None) -> None:
        with self._guard:
            keys = [provider_key] if provider_key is not None else list(self._counters)
            locks = [(key, self._locks[key]) for key in keys if key in self._locks]
        for key, lock in locks:
            with lock:
                self._counters[key] = FailureCounter(key)

    def _raise_alert(self, record: CallRecord, count: int) -> None:
        self._logger.error(
            "Provider reached consecutive failure threshold",
            extra={"capability": record.capability.value, "provider_key": record.provider_key, "status": "tripped", "attempt": count},
        )
        if self.alert_sink is None:
            return

        descriptor = AlertDescriptor(
            name=f"Provider failure: {record.provider_key}",
            metric="provider.consecutive_failures",
            threshold_value=float(self.threshold),
        )
        try:
            event_id = self.alert_sink.create_alert_event(descriptor, float(count))
            self.alert_sink.send_notification(
                {
                    "event_id": event_id,
                    "alert_name": descriptor.name,
                    "severity": descriptor.severity,
                    "method": descriptor.notification_method.value,
                    "provider_key": record.provider_key,
                    "capability": record.capability.value,
                    "message": (
                        f"Provider '{record.provider_key}' ({record.capability.value}) failed {count} times in a row. "
                        f"Last error: {record.error_message or 'unknown'}"
                    ),
                }
            )
        except Exception:  # pragma: no cover - depends on the alert backend
            self._logger.warning("Failed to dispatch provider alert", exc_info=True, extra={"provider_key": record.provider_key})


# -- Instrumentation ----------------------------------------------------------


class Instrumentation:
    """
    Wraps provider methods so every call is recorded and tracked.

    Parameters
    ----------
    call_log:
        Sink receiving one :class:`CallRecord` per call.
    tracker:
        Failure tracker fed with every record.
    """

    def __init__(self, call_log: Optional[CallLog] = None, tracker: Optional[FailureTracker] = None) -> None:
        self.call_log: CallLog = call_log if call_log is not None else InMemoryCallLog()
        self.tracker = tracker if tracker is not None else FailureTracker(InMemoryAlertSink())
        self._logger = get_logger(self.__class__.__name__)

    def instrument(
        self,
        capability: Capability,
        provider_key: str,
        cost_per_call: float,
        method: F,
        *,
        endpoint: Optional[str] = None,
    ) -> F:
        endpoint_name = endpoint or getattr(method, "__name__", "call")

        @functools.wraps(method)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            started = time.perf_counter()
            try:
                result = method(*args, **kwargs)
            except Exception as exc:
                self._record(capability, provider_key, endpoint_name, FAILURE_STATUS, started, cost_per_call, str(exc) or exc.__class__.__name__)
                raise
            self._record(capability, provider_key, endpoint_name, SUCCESS_STATUS, started, cost_per_call, None)
            return result

        return wrapper  # type: ignore[return-value]

    def _record(
        self,
        capability: Capability,
        provider_key: str,
        endpoint: str,
        status_code: int,
        started: float,
        cost: float,
        error_message: Optional[str],
    ) -> None:
        record = CallRecord(
            capability=capability,
            provider_key=provider_key,
            endpoint=endpoint,
            status_code=status_code,
            latency_ms=int((time.perf_counter() - started) * 1000),
            cost=cost,
            error_message=error_message,
        )
        self._logger.debug(
            "Provider call recorded",
            extra={
                "capability": capability.value,
                "provider_key": provider_key,
                "endpoint": endpoint,
                "status_code": status_code,
                "latency_ms": record.latency_ms,
                "cost": cost,
            },
        )
        try:
            self.call_log.append(record)
        except Exception:
            self._logger.warning("Failed to write call record", exc_info=True, extra={"provider_key": provider_key})
        try:
            self.tracker.record(record)
        except Exception:  # pragma: no cover
            self._logger.warning("Failed to update failure counter", exc_info=True, extra={"provider_key": provider_key})


class InstrumentedProvider:
    """
    Proxy exposing ``target`` with every public method instrumented.

    Non-callable attributes such as ``provider_name`` pass through untouched.
    """

    def __init__(
        self,
        target: object,
        *,
        capability: Capability,
        provider_key: str,
        cost_per_call: float,
        instrumentation: Instrumentation,
    ) -> None:
        self.target = target
        self.capability = capability
        self.provider_key = provider_key
        self.cost_per_call = cost_per_call
        self._instrumentation = instrumentation
        self._wrapped: Dict[str, Callable[..., Any]] = {}

    def __getattr__(self, name: str) -> Any:
        value = getattr(self.target, name)
        if name.startswith("_") or not callable(value):
            return value
        wrapped = self._wrapped.get(name)
        if wrapped is None:
            wrapped = self._instrumentation.instrument(self.capability, self.provider_key, self.cost_per_call, value, endpoint=name)
            self._wrapped[name] = wrapped
        return wrapped

    def __repr__(self) -> str:
        return f"InstrumentedProvider({self.provider_key!r}, capability={self.capability.value!r}, target={self.target!r})"


def wrap_provider(
    instance: object,
    *,
    capability: Capability,
    provider_key: str,
    cost_per_call: float,
    instrumentation: Instrumentation,
) -> InstrumentedProvider:
    return InstrumentedProvider(
        instance,
        capability=capability,
        provider_key=provider_key,
        cost_per_call=cost_per_call,
        instrumentation=instrumentation,
    )

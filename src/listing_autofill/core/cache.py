"""
Time-boxed cache of provider responses keyed by vehicle identifier.

Rows are never deleted. Writing a new response for a key first marks the
existing valid rows invalid, then inserts a fresh valid row whose expiry is
computed from the ``API_CACHE_TTL_HOURS`` tunable, re-read on every write.
Reads only consider valid, unexpired rows; a row whose payload cannot be
decoded is reported as corruption and treated as a miss.
"""

from __future__ import annotations

import json
import re
import threading
import uuid
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Protocol, TypeVar

from .logging import get_logger
from .registry import Capability

TTL_TUNABLE = "API_CACHE_TTL_HOURS"
DEFAULT_TTL_HOURS = 48

_LEADING_INT = re.compile(r"\s*([+-]?\d+)")

T = TypeVar("T")


class CacheCorruptionError(ValueError):
    """Raised when a stored payload cannot be decoded."""


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(slots=True, frozen=True)
class CacheKey:
    vehicle_identifier: str
    identifier_type: str
    capability: Capability

    def __str__(self) -> str:
        return f"{self.identifier_type}:{self.vehicle_identifier}:{self.capability.value}"


@dataclass(slots=True)
class CacheEntry:
    key: CacheKey
    payload: str
    fetched_at: datetime
    expires_at: datetime
    is_valid: bool = True
    id: str = field(default_factory=lambda: uuid.uuid4().hex)


class CacheStore(Protocol):
    def find_valid(self, key: CacheKey) -> List[CacheEntry]:
        ...

    def invalidate(self, key: CacheKey) -> int:
        ...

    def insert(self, entry: CacheEntry) -> None:
        ...


class TunableSource(Protocol):
    def get_tunable(self, key: str) -> Optional[str]:
        ...


class InMemoryCacheStore:
    """Thread-safe list of cache rows."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._rows: List[CacheEntry] = []

    def find_valid(self, key: CacheKey) -> List[CacheEntry]:
        with self._lock:
            return [replace(row) for row in self._rows if row.key == key and row.is_valid]

    def invalidate(self, key: CacheKey) -> int:
        count = 0
        with self._lock:
            for row in self._rows:
                if row.key == key and row.is_valid:
                    row.is_valid = False
                    count += 1
        return count

    def insert(self, entry: CacheEntry) -> None:
        with self._lock:
            self._rows.append(replace(entry))

    def rows(self, key: Optional[CacheKey] = None) -> List[CacheEntry]:
        with self._lock:
            return [replace(row) for row in self._rows if key is None or row.key == key]


def parse_ttl_hours(raw: Optional[str]) -> int:
    """
    Return the leading whole number of ``raw`` as hours.

    Trailing text is ignored, so ``"12h"`` gives 12 and ``"1.5"`` gives 1.
    Missing, non-numeric and non-positive values give the default.
    """

    if raw is None:
        return DEFAULT_TTL_HOURS
    match = _LEADING_INT.match(str(raw))
    if match is None:
        return DEFAULT_TTL_HOURS
    hours = int(match.group(1))
    return hours if hours > 0 else DEFAULT_TTL_HOURS


class ResponseCache:
    """
    Soft-invalidating response cache.

    Parameters
    ----------
    store:
        Row storage. Defaults to :class:`InMemoryCacheStore`.
    config:
        Source of the ``API_CACHE_TTL_HOURS`` tunable, usually the
        configuration snapshot. When ``None`` the default TTL applies.
    clock:
        Callable returning the current aware ``datetime``.
    """

    def __init__(
        self,
        store: Optional[CacheStore] = None,
        config: Optional[TunableSource] = None,
        *,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.store: CacheStore = store if store is not None else InMemoryCacheStore()
        self.config = config
        self.clock = clock
        self._guard = threading.Lock()
        self._locks: Dict[CacheKey, threading.Lock] = {}
        self._logger = get_logger(self.__class__.__name__)

    def ttl_hours(self) -> int:
        raw = self.config.get_tunable(TTL_TUNABLE) if self.config is not None else None
        return parse_ttl_hours(raw)

    def get(self, key: CacheKey, decoder: Optional[Callable[[Any], T]] = None) -> Optional[T | Any]:
        """
        Return the cached payload for ``key`` or ``None``.

        ``decoder`` turns the stored JSON document into a typed value; any
        decoding failure counts as a miss.
        """

        now = self.clock()
        candidates = [row for row in self.store.find_valid(key) if row.is_valid and row.expires_at > now]
        if not candidates:
            self._logger.debug("Cache miss", extra={"capability": key.capability.value, "cache": "miss"})
            return None

        entry = max(candidates, key=lambda row: row.fetched_at)
        try:
            return self._decode(entry, decoder)
        except CacheCorruptionError as exc:
            self._logger.warning(
                "Ignoring corrupted cache entry",
                extra={"capability": key.capability.value, "cache": "corrupt", "entry_id": entry.id, "error": str(exc)},
            )
            return None

    def set(self, key: CacheKey, value: Any) -> CacheEntry:
        """Invalidate existing rows for ``key`` and insert ``value`` as the valid row."""

        payload = json.dumps(_to_document(value), ensure_ascii=False)
        with self._lock_for(key):
            try:
                self.store.invalidate(key)
            except Exception:
                self._logger.warning("Failed to invalidate previous cache entries", exc_info=True, extra={"capability": key.capability.value})

            fetched_at = self.clock()
            entry = CacheEntry(
                key=key,
                payload=payload,
                fetched_at=fetched_at,
                expires_at=fetched_at + timedelta(hours=self.ttl_hours()),
            )
            self.store.insert(entry)
        self._logger.debug("Cache write", extra={"capability": key.capability.value, "cache": "write"})
        return entry

    def _lock_for(self, key: CacheKey) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock

    @staticmethod
    def _decode(entry: CacheEntry, decoder: Optional[Callable[[Any], T]]) -> T | Any:
        try:
            document = json.loads(entry.payload)
            return decoder(document) if decoder is not None else document
        except (ValueError, TypeError, KeyError) as exc:
            raise CacheCorruptionError(f"Cache entry {entry.id} for {entry.key} is malformed: {exc}") from exc


def _to_document(value: Any) -> Any:
    to_payload = getattr(value, "to_payload", None)
    if callable(to_payload):
        return to_payload()
    return value

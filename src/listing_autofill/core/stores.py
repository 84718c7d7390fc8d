"""
Persistence collaborators used by the auto-fill workflow.

Entity storage is owned by the surrounding application; this module only
defines the protocols the orchestrator writes through, plus thread-safe
in-memory implementations used by the CLI and the test-suite.
"""

from __future__ import annotations

import threading
import uuid
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from typing import Dict, List, Mapping, Optional, Protocol, Tuple


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(slots=True)
class CertifiedField:
    """A listing fact attributed to the data source it came from."""

    listing_id: str
    field_name: str
    field_value: str
    source: str
    source_timestamp: datetime
    is_certified: bool = True
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    created_at: datetime = field(default_factory=_utcnow)


@dataclass(slots=True, frozen=True)
class AuditRecord:
    action: str
    resource: str
    details: Mapping[str, object]
    user_id: Optional[str] = None
    timestamp: datetime = field(default_factory=_utcnow)


class CertifiedFieldStore(Protocol):
    def upsert(self, item: CertifiedField) -> CertifiedField:
        ...


class AuditSink(Protocol):
    def append(self, record: AuditRecord) -> None:
        ...


class InMemoryCertifiedFieldStore:
    """Certified fields keyed by ``(listing_id, field_name)``."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._items: Dict[Tuple[str, str], CertifiedField] = {}

    def upsert(self, item: CertifiedField) -> CertifiedField:
        key = (item.listing_id, item.field_name)
        with self._lock:
            current = self._items.get(key)
            if current is not None:
                item = replace(item, id=current.id, created_at=current.created_at)
            self._items[key] = item
        return item

    def for_listing(self, listing_id: str) -> List[CertifiedField]:
        with self._lock:
            return [item for (owner, _), item in self._items.items() if owner == listing_id]

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)


class InMemoryAuditLog:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._records: List[AuditRecord] = []

    def append(self, record: AuditRecord) -> None:
        with self._lock:
            self._records.append(record)

    def records(self, action: Optional[str] = None) -> List[AuditRecord]:
        with self._lock:
            items = list(self._records)
        return [item for item in items if action is None or item.action == action]

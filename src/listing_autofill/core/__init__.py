"""
Core infrastructure shared by the provider orchestration layer.

This package holds the configuration snapshot, logging helpers, call
instrumentation, the response cache, and persistence protocols. Capability
resolution lives in :mod:`listing_autofill.core.resolver`, which depends on the
adapter catalogue and is therefore not re-exported here.
"""

from .cache import CacheCorruptionError, CacheEntry, CacheKey, InMemoryCacheStore, ResponseCache
from .instrumentation import (
    FAILURE_THRESHOLD,
    CallRecord,
    FailureCounter,
    FailureTracker,
    InMemoryAlertSink,
    InMemoryCallLog,
    Instrumentation,
    wrap_provider,
)
from .logging import configure_logging, get_logger, log_progress
from .registry import Capability, ConfigurationLoadError, ConfigurationSnapshot, ProviderRegistration, ProviderStatus
from .stores import AuditRecord, CertifiedField, InMemoryAuditLog, InMemoryCertifiedFieldStore

__all__ = [
    "AuditRecord",
    "CacheCorruptionError",
    "CacheEntry",
    "CacheKey",
    "CallRecord",
    "Capability",
    "CertifiedField",
    "ConfigurationLoadError",
    "ConfigurationSnapshot",
    "FAILURE_THRESHOLD",
    "FailureCounter",
    "FailureTracker",
    "InMemoryAlertSink",
    "InMemoryAuditLog",
    "InMemoryCacheStore",
    "InMemoryCallLog",
    "InMemoryCertifiedFieldStore",
    "Instrumentation",
    "ProviderRegistration",
    "ProviderStatus",
    "ResponseCache",
    "configure_logging",
    "get_logger",
    "log_progress",
    "wrap_provider",
]

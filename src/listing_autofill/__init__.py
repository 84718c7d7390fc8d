"""
Provider orchestration for vehicle listing auto-fill.

:class:`~listing_autofill.services.AutofillService` is the main entry point: it
resolves the configured provider for each capability, consults the response
cache, fans out to the secondary providers and returns source-attributed facts.
"""

from .core.registry import Capability, ConfigurationSnapshot, ProviderRegistration, ProviderStatus
from .core.resolver import CapabilityResolver, ConfigurationError
from .models import ApiSourceStatus, AutofillResult, CertifiedFieldResult, SourceStatus
from .services import AutofillService, ValidationError

__all__ = [
    "ApiSourceStatus",
    "AutofillResult",
    "AutofillService",
    "Capability",
    "CapabilityResolver",
    "CertifiedFieldResult",
    "ConfigurationError",
    "ConfigurationSnapshot",
    "ProviderRegistration",
    "ProviderStatus",
    "SourceStatus",
    "ValidationError",
]

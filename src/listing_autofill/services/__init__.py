"""
Service-layer helpers orchestrating the resolver, cache and persistence sinks.
"""

from .autofill import AutofillService, LookupContext, ValidationError, load_provider_config

__all__ = ["AutofillService", "LookupContext", "ValidationError", "load_provider_config"]

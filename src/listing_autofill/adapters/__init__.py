"""
Provider adapters for vehicle data capabilities.

Concrete adapters live in submodules grouped by transport: ``api`` for public
REST services, ``local`` for in-process implementations and ``mock`` for the
deterministic fallbacks. :mod:`.catalog` binds provider keys to factories.
"""

from .base import (
    BlobStorage,
    EmissionProvider,
    IdentityProvider,
    LowEmissionClassifier,
    ProviderError,
    RecallProvider,
    VehicleLookupProvider,
    VehicleNotFoundError,
    VinDecodeProvider,
)

__all__ = [
    "BlobStorage",
    "EmissionProvider",
    "IdentityProvider",
    "LowEmissionClassifier",
    "ProviderError",
    "RecallProvider",
    "VehicleLookupProvider",
    "VehicleNotFoundError",
    "VinDecodeProvider",
]

"""
Capability contracts implemented by vehicle data providers.

Adapters are intentionally narrow: each exposes a single typed method for its
capability plus ``provider_name``/``provider_version`` attributes. Higher-level
orchestration (instrumentation, caching, fan-out) is handled by the core and
service modules so adapters stay swappable.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from ..models import (
    CritAirRequest,
    CritAirResponse,
    EmissionRequest,
    EmissionResponse,
    RecallRequest,
    RecallResponse,
    VehicleLookupRequest,
    VehicleLookupResponse,
    VinDecodeRequest,
    VinDecodeResponse,
)


class ProviderError(RuntimeError):
    """Raised when a provider cannot produce a response."""


class VehicleNotFoundError(ProviderError):
    """Raised when a registry has no record for the requested identifier."""


@runtime_checkable
class VehicleLookupProvider(Protocol):
    provider_name: str
    provider_version: str

    def lookup(self, request: VehicleLookupRequest) -> VehicleLookupResponse:
        """Return the registry record for a plate or VIN."""


@runtime_checkable
class EmissionProvider(Protocol):
    provider_name: str
    provider_version: str

    def get_emissions(self, request: EmissionRequest) -> EmissionResponse:
        """Return homologated emission figures for a vehicle."""


@runtime_checkable
class RecallProvider(Protocol):
    provider_name: str
    provider_version: str

    def get_recalls(self, request: RecallRequest) -> RecallResponse:
        """Return recall campaigns matching a make/model."""


@runtime_checkable
class LowEmissionClassifier(Protocol):
    provider_name: str
    provider_version: str

    def calculate(self, request: CritAirRequest) -> CritAirResponse:
        """Return the Crit'Air classification for a vehicle."""


@runtime_checkable
class VinDecodeProvider(Protocol):
    provider_name: str
    provider_version: str

    def decode(self, request: VinDecodeRequest) -> VinDecodeResponse:
        """Return technical attributes decoded from a VIN."""


class IdentityProvider(Protocol):
    def create_user(self, email: str, first_name: str, last_name: str, password: str) -> str:
        """Create a user and return its external identifier."""

    def disable_user(self, external_id: str) -> None:
        ...

    def update_user(self, external_id: str, attributes: dict) -> None:
        ...


class BlobStorage(Protocol):
    def upload_file(self, container: str, path: str, content: bytes | str) -> str:
        """Store ``content`` and return its URL."""

    def generate_signed_url(self, container: str, path: str, expiry_minutes: int) -> str:
        ...

    def delete_file(self, container: str, path: str) -> None:
        ...

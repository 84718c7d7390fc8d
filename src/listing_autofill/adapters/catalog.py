"""
Static dispatch table binding provider keys to adapter factories.

The table is keyed by :class:`~listing_autofill.core.registry.Capability` first
so a key registered for the wrong capability never resolves. ``FALLBACK_KEYS``
is exhaustive over the enum: capabilities without a fallback (identity, blob
storage) map to ``None``.
"""

from __future__ import annotations

from types import MappingProxyType
from typing import Callable, Mapping, Optional

from ..config import AutofillSettings, EndpointSettings
from ..core.registry import Capability, ProviderRegistration
from .api import ademe, nhtsa, rappelconso
from .api.base import DEFAULT_TIMEOUT
from .local import LocalBlobStorage, LocalCritAirCalculator
from .mock import MockCritAirProvider, MockEmissionProvider, MockRecallProvider, MockVehicleLookupProvider, MockVinDecodeProvider

ProviderFactory = Callable[[Optional[ProviderRegistration], AutofillSettings], object]


def _endpoint(key: str, registration: Optional[ProviderRegistration], settings: AutofillSettings, default_url: str) -> tuple[str, float]:
    configured: EndpointSettings = settings.endpoint(key)
    base_url = (registration.base_url if registration else None) or configured.base_url or default_url
    timeout = configured.timeout or DEFAULT_TIMEOUT
    return base_url, timeout


def _build_ademe(registration: Optional[ProviderRegistration], settings: AutofillSettings) -> object:
    base_url, timeout = _endpoint("ademe", registration, settings, ademe.DEFAULT_BASE_URL)
    return ademe.AdemeEmissionAdapter(client=ademe.AdemeClient(base_url=base_url, timeout=timeout))


def _build_rappelconso(registration: Optional[ProviderRegistration], settings: AutofillSettings) -> object:
    base_url, timeout = _endpoint("rappelconso", registration, settings, rappelconso.DEFAULT_BASE_URL)
    return rappelconso.RappelConsoRecallAdapter(client=rappelconso.RappelConsoClient(base_url=base_url, timeout=timeout))


def _build_nhtsa(registration: Optional[ProviderRegistration], settings: AutofillSettings) -> object:
    base_url, timeout = _endpoint("nhtsa", registration, settings, nhtsa.DEFAULT_BASE_URL)
    return nhtsa.NhtsaVinDecodeAdapter(client=nhtsa.NhtsaClient(base_url=base_url, timeout=timeout))


def _build_local_blob(registration: Optional[ProviderRegistration], settings: AutofillSettings) -> object:
    if settings.blob_root:
        return LocalBlobStorage(root=settings.blob_root)
    return LocalBlobStorage()


def _simple(factory: Callable[[], object]) -> ProviderFactory:
    return lambda registration, settings: factory()


PROVIDER_FACTORIES: Mapping[Capability, Mapping[str, ProviderFactory]] = MappingProxyType(
    {
        Capability.VEHICLE_LOOKUP: MappingProxyType(
            {
                "mock.vehicle-lookup": _simple(MockVehicleLookupProvider),
            }
        ),
        Capability.EMISSION: MappingProxyType(
            {
                "ademe": _build_ademe,
                "mock.emission": _simple(MockEmissionProvider),
            }
        ),
        Capability.RECALL: MappingProxyType(
            {
                "rappelconso": _build_rappelconso,
                "mock.recall": _simple(MockRecallProvider),
            }
        ),
        Capability.LOW_EMISSION: MappingProxyType(
            {
                "local.critair": _simple(LocalCritAirCalculator),
                "mock.critair": _simple(MockCritAirProvider),
            }
        ),
        Capability.VIN_DECODE: MappingProxyType(
            {
                "nhtsa": _build_nhtsa,
                "mock.vin-technical": _simple(MockVinDecodeProvider),
            }
        ),
        Capability.IDENTITY: MappingProxyType({}),
        Capability.BLOB_STORAGE: MappingProxyType(
            {
                "local.blob": _build_local_blob,
            }
        ),
    }
)

FALLBACK_KEYS: Mapping[Capability, Optional[str]] = MappingProxyType(
    {
        Capability.VEHICLE_LOOKUP: "mock.vehicle-lookup",
        Capability.EMISSION: "mock.emission",
        Capability.RECALL: "mock.recall",
        Capability.LOW_EMISSION: "mock.critair",
        Capability.VIN_DECODE: "mock.vin-technical",
        Capability.IDENTITY: None,
        Capability.BLOB_STORAGE: None,
    }
)

"""Deterministic providers used as fallbacks and for paid APIs not yet integrated."""

from .providers import (
    MOCK_VEHICLES,
    MockCritAirProvider,
    MockEmissionProvider,
    MockRecallProvider,
    MockVehicleLookupProvider,
    MockVinDecodeProvider,
)

__all__ = [
    "MOCK_VEHICLES",
    "MockCritAirProvider",
    "MockEmissionProvider",
    "MockRecallProvider",
    "MockVehicleLookupProvider",
    "MockVinDecodeProvider",
]

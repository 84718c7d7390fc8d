"""
Deterministic in-memory providers.

They serve two purposes: fallbacks when a capability has no usable provider
configured, and stand-ins for paid registries that are not integrated yet. All
responses are tagged with provider name ``mock``.
"""

from __future__ import annotations

import re
import time
from dataclasses import dataclass, replace
from typing import Dict, List, Tuple

from ...models import (
    CritAirRequest,
    CritAirResponse,
    EmissionRequest,
    EmissionResponse,
    ProviderInfo,
    RecallCampaign,
    RecallRequest,
    RecallResponse,
    VehicleLookupRequest,
    VehicleLookupResponse,
    VinDecodeRequest,
    VinDecodeResponse,
)
from ..base import ProviderError, VehicleNotFoundError
from ..local.critair import CRITAIR_LABELS, classify, normalise_fuel, parse_euro_norm

MOCK_PROVIDER = ProviderInfo("mock", "1.0.0")

MOCK_VEHICLES: Tuple[VehicleLookupResponse, ...] = (
    VehicleLookupResponse(
        plate="AB-123-CD",
        vin="VF1RFB00X56789012",
        make="Renault",
        model="Clio V",
        variant="RS Line",
        year=2022,
        registration_date="2022-03-15",
        fuel_type="essence",
        engine_capacity_cc=1333,
        power_kw=96,
        power_hp=131,
        gearbox="EDC",
        body_type="berline",
        doors=5,
        seats=5,
        color="Rouge Flamme",
        co2_g_km=128,
        euro_norm="Euro 6d",
        provider=MOCK_PROVIDER,
    ),
    VehicleLookupResponse(
        plate="EF-456-GH",
        vin="VF3LCBHZ6JS123456",
        make="Peugeot",
        model="308",
        variant="GT",
        year=2023,
        registration_date="2023-01-10",
        fuel_type="diesel",
        engine_capacity_cc=1499,
        power_kw=96,
        power_hp=130,
        gearbox="EAT8",
        body_type="berline",
        doors=5,
        seats=5,
        color="Bleu Vertigo",
        co2_g_km=102,
        euro_norm="Euro 6d-FULL",
        provider=MOCK_PROVIDER,
    ),
    VehicleLookupResponse(
        plate="IJ-789-KL",
        vin="WVWZZZ3CZWE123456",
        make="Volkswagen",
        model="Golf 8",
        variant=None,
        year=2021,
        registration_date="2021-09-20",
        fuel_type="essence",
        engine_capacity_cc=1498,
        power_kw=110,
        power_hp=150,
        gearbox="DSG",
        body_type="berline",
        doors=5,
        seats=5,
        color="Gris Moonstone",
        co2_g_km=132,
        euro_norm="Euro 6d",
        provider=MOCK_PROVIDER,
    ),
    VehicleLookupResponse(
        plate="MN-012-OP",
        vin="WBA11AA010CH12345",
        make="BMW",
        model="Série 3",
        variant="320d",
        year=2020,
        registration_date="2020-06-01",
        fuel_type="diesel",
        engine_capacity_cc=1995,
        power_kw=140,
        power_hp=190,
        gearbox="automatique",
        body_type="berline",
        doors=4,
        seats=5,
        color="Noir Saphir",
        co2_g_km=118,
        euro_norm="Euro 6d-TEMP",
        provider=MOCK_PROVIDER,
    ),
)

MOCK_EMISSIONS: Dict[str, EmissionResponse] = {
    "Renault|Clio V|2022|essence": EmissionResponse(128, "B", "Euro 6d", "essence", MOCK_PROVIDER, {"NOx": 0.04, "CO": 0.5, "HC": 0.05}),
    "Peugeot|308|2023|diesel": EmissionResponse(102, "A", "Euro 6d-FULL", "diesel", MOCK_PROVIDER, {"NOx": 0.06, "PM": 0.004, "CO": 0.3}),
    "Volkswagen|Golf 8|2021|essence": EmissionResponse(132, "B", "Euro 6d", "essence", MOCK_PROVIDER, {"NOx": 0.04, "CO": 0.6}),
    "BMW|Série 3|2020|diesel": EmissionResponse(118, "A", "Euro 6d-TEMP", "diesel", MOCK_PROVIDER, {"NOx": 0.08, "PM": 0.005, "CO": 0.4}),
}

MOCK_RECALLS: Dict[str, Tuple[RecallCampaign, ...]] = {
    "Citroën|C3": (
        RecallCampaign(
            id="RC-2024-001",
            title="Airbag conducteur défectueux",
            description="Risque de non-déploiement de l'airbag en cas de choc frontal",
            published_date="2024-01-15",
            risk_level="high",
            manufacturer="Citroën",
            affected_models=("C3 2017-2020",),
        ),
    ),
    "Renault|Clio V": (),
    "Peugeot|308": (
        RecallCampaign(
            id="RC-2023-042",
            title="Ceinture de sécurité arrière",
            description="Fixation insuffisante de la ceinture centrale arrière",
            published_date="2023-09-20",
            risk_level="medium",
            manufacturer="Peugeot",
            affected_models=("308 2021-2022",),
        ),
        RecallCampaign(
            id="RC-2024-018",
            title="Fuite circuit de refroidissement",
            description="Risque de fuite de liquide de refroidissement sur moteur 1.5 BlueHDi",
            published_date="2024-03-01",
            risk_level="low",
            manufacturer="Peugeot",
            affected_models=("308 2022-2023",),
        ),
    ),
}

MOCK_VIN_DATA: Dict[str, VinDecodeResponse] = {
    "VF1RFB00X56789012": VinDecodeResponse(
        vin="VF1RFB00X56789012", make="Renault", model="Clio", year=2022, body_class="Hatchback", drive_type="FWD",
        engine_cylinders=4, engine_capacity_cc=1333, fuel_type="Gasoline", plant_country="France",
        manufacturer="Renault SAS", vehicle_type="Passenger Car", provider=MOCK_PROVIDER,
    ),
    "VF3LCBHZ6JS123456": VinDecodeResponse(
        vin="VF3LCBHZ6JS123456", make="Peugeot", model="308", year=2023, body_class="Hatchback", drive_type="FWD",
        engine_cylinders=4, engine_capacity_cc=1499, fuel_type="Diesel", plant_country="France",
        manufacturer="Automobiles Peugeot", vehicle_type="Passenger Car", provider=MOCK_PROVIDER,
    ),
    "WVWZZZ3CZWE123456": VinDecodeResponse(
        vin="WVWZZZ3CZWE123456", make="Volkswagen", model="Golf", year=2021, body_class="Hatchback", drive_type="FWD",
        engine_cylinders=4, engine_capacity_cc=1498, fuel_type="Gasoline", plant_country="Germany",
        manufacturer="Volkswagen AG", vehicle_type="Passenger Car", provider=MOCK_PROVIDER,
    ),
    "WBA11AA010CH12345": VinDecodeResponse(
        vin="WBA11AA010CH12345", make="BMW", model="3 Series", year=2020, body_class="Sedan", drive_type="RWD",
        engine_cylinders=4, engine_capacity_cc=1995, fuel_type="Diesel", plant_country="Germany",
        manufacturer="BMW AG", vehicle_type="Passenger Car", provider=MOCK_PROVIDER,
    ),
}

_YEAR = re.compile(r"\d{4}")


@dataclass(slots=True)
class _MockProvider:
    delay_seconds: float = 0.0
    provider_name: str = "mock"
    provider_version: str = "1.0.0"

    def _pause(self) -> None:
        if self.delay_seconds > 0:
            time.sleep(self.delay_seconds)


@dataclass(slots=True)
class MockVehicleLookupProvider(_MockProvider):
    def lookup(self, request: VehicleLookupRequest) -> VehicleLookupResponse:
        self._pause()
        if not request.plate and not request.vin:
            raise ProviderError("Either plate or vin must be provided")
        for vehicle in MOCK_VEHICLES:
            if (request.plate and vehicle.plate == request.plate) or (request.vin and vehicle.vin == request.vin):
                return replace(vehicle)
        raise VehicleNotFoundError(f"Vehicle not found for plate={request.plate} vin={request.vin}")


@dataclass(slots=True)
class MockEmissionProvider(_MockProvider):
    def get_emissions(self, request: EmissionRequest) -> EmissionResponse:
        self._pause()
        known = MOCK_EMISSIONS.get(f"{request.make}|{request.model}|{request.year}|{request.fuel_type}")
        if known is not None:
            return replace(known)
        return EmissionResponse(
            co2_g_km=120,
            energy_class="B",
            euro_norm="Euro 6",
            fuel_type=request.fuel_type or "essence",
            pollutants=None,
            provider=MOCK_PROVIDER,
        )


def _matches_years(campaign: RecallCampaign, year_from: int | None, year_to: int | None) -> bool:
    years: List[int] = [int(token) for model in campaign.affected_models for token in _YEAR.findall(model)]
    return any((year_from is None or year >= year_from) and (year_to is None or year <= year_to) for year in years)


@dataclass(slots=True)
class MockRecallProvider(_MockProvider):
    def get_recalls(self, request: RecallRequest) -> RecallResponse:
        self._pause()
        campaigns = MOCK_RECALLS.get(f"{request.make}|{request.model}", ())
        if request.year_from or request.year_to:
            campaigns = tuple(item for item in campaigns if _matches_years(item, request.year_from, request.year_to))
        return RecallResponse(recalls=campaigns, total_count=len(campaigns), provider=MOCK_PROVIDER)


@dataclass(slots=True)
class MockCritAirProvider(_MockProvider):
    """Classifies on fuel and Euro norm only; the registration date is ignored."""

    def calculate(self, request: CritAirRequest) -> CritAirResponse:
        self._pause()
        level, colour = classify(normalise_fuel(request.fuel_type), parse_euro_norm(request.euro_norm), None)
        return CritAirResponse(level=level, label=CRITAIR_LABELS[level], color=colour, provider=MOCK_PROVIDER)


@dataclass(slots=True)
class MockVinDecodeProvider(_MockProvider):
    def decode(self, request: VinDecodeRequest) -> VinDecodeResponse:
        self._pause()
        data = MOCK_VIN_DATA.get(request.vin)
        if data is None:
            raise VehicleNotFoundError(f"VIN not found: {request.vin}")
        return replace(data)

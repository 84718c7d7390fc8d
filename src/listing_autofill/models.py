"""
Typed request and response payloads exchanged with vehicle data providers.

Each capability has its own request/response pair so the orchestrator can
extract certified fields per type instead of probing loosely typed mappings.
Responses round-trip through plain JSON-compatible mappings
(:meth:`to_payload` / :meth:`from_payload`) for storage in the response cache;
``from_payload`` raises :class:`PayloadError` when a stored mapping does not
have the expected shape.
"""

from __future__ import annotations

import json
from dataclasses import MISSING, asdict, dataclass, field, fields
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Type, TypeVar

T = TypeVar("T")


class PayloadError(ValueError):
    """Raised when a mapping cannot be converted into a typed payload."""


def _from_mapping(cls: Type[T], payload: object, **converters: Callable[[Any], Any]) -> T:
    if not isinstance(payload, Mapping):
        raise PayloadError(f"{cls.__name__} payload must be a mapping, got {type(payload).__name__}.")
    kwargs: Dict[str, Any] = {}
    for item in fields(cls):  # type: ignore[arg-type]
        if item.name not in payload:
            if item.default is MISSING and item.default_factory is MISSING:
                raise PayloadError(f"{cls.__name__} payload is missing '{item.name}'.")
            continue
        value = payload[item.name]
        convert = converters.get(item.name)
        try:
            kwargs[item.name] = convert(value) if convert and value is not None else value
        except (TypeError, ValueError, KeyError) as exc:
            raise PayloadError(f"Invalid '{item.name}' in {cls.__name__} payload: {exc}") from exc
    return cls(**kwargs)


class _Payload:
    __slots__ = ()

    def to_payload(self) -> Dict[str, Any]:
        return asdict(self)  # type: ignore[call-overload]


@dataclass(slots=True, frozen=True)
class ProviderInfo(_Payload):
    provider_name: str
    provider_version: str = "1.0.0"

    @classmethod
    def from_payload(cls, payload: object) -> "ProviderInfo":
        return _from_mapping(cls, payload)


def _provider(value: Any) -> ProviderInfo:
    return ProviderInfo.from_payload(value)


# -- Vehicle lookup -----------------------------------------------------------


@dataclass(slots=True, frozen=True)
class VehicleLookupRequest:
    plate: Optional[str] = None
    vin: Optional[str] = None


@dataclass(slots=True, frozen=True)
class VehicleLookupResponse(_Payload):
    """Registry record returned for a plate or VIN."""

    plate: Optional[str]
    vin: Optional[str]
    make: str
    model: str
    provider: ProviderInfo
    variant: Optional[str] = None
    year: Optional[int] = None
    registration_date: Optional[str] = None
    fuel_type: Optional[str] = None
    engine_capacity_cc: Optional[int] = None
    power_kw: Optional[int] = None
    power_hp: Optional[int] = None
    gearbox: Optional[str] = None
    body_type: Optional[str] = None
    doors: Optional[int] = None
    seats: Optional[int] = None
    color: Optional[str] = None
    co2_g_km: Optional[float] = None
    euro_norm: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: object) -> "VehicleLookupResponse":
        return _from_mapping(cls, payload, provider=_provider)


# -- Emissions ----------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class EmissionRequest:
    vin: Optional[str] = None
    make: Optional[str] = None
    model: Optional[str] = None
    year: Optional[int] = None
    fuel_type: Optional[str] = None
    engine_capacity_cc: Optional[int] = None


@dataclass(slots=True, frozen=True)
class EmissionResponse(_Payload):
    co2_g_km: Optional[float]
    energy_class: Optional[str]
    euro_norm: Optional[str]
    fuel_type: Optional[str]
    provider: ProviderInfo
    pollutants: Optional[Dict[str, float]] = None

    @classmethod
    def from_payload(cls, payload: object) -> "EmissionResponse":
        return _from_mapping(cls, payload, provider=_provider, pollutants=dict)


# -- Recalls ------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class RecallRequest:
    make: str
    model: str
    vin: Optional[str] = None
    year_from: Optional[int] = None
    year_to: Optional[int] = None


@dataclass(slots=True, frozen=True)
class RecallCampaign(_Payload):
    id: str
    title: str
    description: str = ""
    published_date: str = ""
    risk_level: str = "unknown"
    manufacturer: Optional[str] = None
    affected_models: Tuple[str, ...] = ()

    @classmethod
    def from_payload(cls, payload: object) -> "RecallCampaign":
        return _from_mapping(cls, payload, affected_models=tuple)


@dataclass(slots=True, frozen=True)
class RecallResponse(_Payload):
    recalls: Tuple[RecallCampaign, ...]
    total_count: int
    provider: ProviderInfo

    @classmethod
    def from_payload(cls, payload: object) -> "RecallResponse":
        return _from_mapping(
            cls,
            payload,
            provider=_provider,
            recalls=lambda items: tuple(RecallCampaign.from_payload(item) for item in items),
            total_count=int,
        )


# -- Low-emission classification (Crit'Air) -----------------------------------


@dataclass(slots=True, frozen=True)
class CritAirRequest:
    fuel_type: str
    euro_norm: str
    registration_date: str


@dataclass(slots=True, frozen=True)
class CritAirResponse(_Payload):
    level: str
    label: str
    color: str
    provider: ProviderInfo

    @classmethod
    def from_payload(cls, payload: object) -> "CritAirResponse":
        return _from_mapping(cls, payload, provider=_provider)


# -- VIN technical decode ------------------------------------------------------


@dataclass(slots=True, frozen=True)
class VinDecodeRequest:
    vin: str


@dataclass(slots=True, frozen=True)
class VinDecodeResponse(_Payload):
    vin: str
    make: str
    model: str
    provider: ProviderInfo
    year: Optional[int] = None
    body_class: Optional[str] = None
    drive_type: Optional[str] = None
    engine_cylinders: Optional[int] = None
    engine_capacity_cc: Optional[int] = None
    fuel_type: Optional[str] = None
    gvwr: Optional[str] = None
    plant_country: Optional[str] = None
    manufacturer: Optional[str] = None
    vehicle_type: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: object) -> "VinDecodeResponse":
        return _from_mapping(cls, payload, provider=_provider)


# -- Orchestrator results -----------------------------------------------------


class SourceStatus(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    CACHED = "cached"
    FAILED = "failed"


@dataclass(slots=True)
class CertifiedFieldResult:
    """A single fact extracted from a provider response, attributed to its source."""

    field_name: str
    field_value: str
    source: str
    source_timestamp: str
    is_certified: bool = True

    def to_dict(self) -> Dict[str, object]:
        return {
            "fieldName": self.field_name,
            "fieldValue": self.field_value,
            "source": self.source,
            "sourceTimestamp": self.source_timestamp,
            "isCertified": self.is_certified,
        }


@dataclass(slots=True)
class ApiSourceStatus:
    """Outcome of one capability call within an auto-fill request."""

    capability: str
    provider_key: str = ""
    status: SourceStatus = SourceStatus.PENDING
    response_time_ms: Optional[int] = None
    error_message: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status in (SourceStatus.SUCCESS, SourceStatus.CACHED)

    def to_dict(self) -> Dict[str, object]:
        payload: Dict[str, object] = {
            "capability": self.capability,
            "providerKey": self.provider_key,
            "status": self.status.value,
        }
        if self.response_time_ms is not None:
            payload["responseTimeMs"] = self.response_time_ms
        if self.error_message is not None:
            payload["errorMessage"] = self.error_message
        return payload


@dataclass(slots=True)
class AutofillResult:
    fields: List[CertifiedFieldResult] = field(default_factory=list)
    sources: List[ApiSourceStatus] = field(default_factory=list)
    listing_id: Optional[str] = None

    def field_values(self) -> Dict[str, str]:
        return {item.field_name: item.field_value for item in self.fields}

    def to_dict(self) -> Dict[str, object]:
        return {
            "fields": [item.to_dict() for item in self.fields],
            "sources": [item.to_dict() for item in self.sources],
        }

    def to_json(self, *, indent: Optional[int] = 2) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False, indent=indent)

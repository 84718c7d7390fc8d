"""
Listing auto-fill orchestration.

One request runs through ``validate → primary lookup → secondary fan-out →
extraction → persistence``. The registry lookup runs first because the
secondary requests are built from its result; the four secondary capabilities
(emissions, recalls, Crit'Air, VIN decode) then run concurrently on a thread
pool and are all awaited. Only validation raises: every provider, cache or
persistence failure is recorded in the returned :class:`AutofillResult`.
"""

from __future__ import annotations

import logging
import re
import time
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from importlib import resources
from logging import LoggerAdapter
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from ..config import AutofillSettings, load_settings
from ..core.cache import CacheKey, ResponseCache
from ..core.instrumentation import Instrumentation
from ..core.logging import get_logger, log_progress
from ..core.registry import Capability, ConfigurationSnapshot
from ..core.resolver import CapabilityResolver
from ..core.stores import AuditRecord, AuditSink, CertifiedField, CertifiedFieldStore, InMemoryAuditLog, InMemoryCertifiedFieldStore
from ..models import (
    ApiSourceStatus,
    AutofillResult,
    CertifiedFieldResult,
    CritAirRequest,
    CritAirResponse,
    EmissionRequest,
    EmissionResponse,
    RecallRequest,
    RecallResponse,
    SourceStatus,
    VehicleLookupRequest,
    VehicleLookupResponse,
    VinDecodeRequest,
    VinDecodeResponse,
)

PLATE_PATTERN = re.compile(r"^[A-Z]{2}-[0-9]{3}-[A-Z]{2}$")
VIN_PATTERN = re.compile(r"^[A-HJ-NPR-Z0-9]{17}$")
IDENTIFIER_TYPES: Tuple[str, ...] = ("plate", "vin")

CACHE_PROVIDER_KEY = "cache"
INSUFFICIENT_VIN_MESSAGE = "Insufficient data (no VIN available)"
AUDIT_ACTION = "listing.autofill"
AUDIT_RESOURCE = "Vehicle"
DEFAULT_PROVIDERS_PACKAGE = "listing_autofill.resources.providers"


class ValidationError(ValueError):
    """Raised when the identifier or its type is rejected before any provider call."""


def load_provider_config(path: Optional[Path] = None) -> ConfigurationSnapshot:
    """Load ``path`` or the packaged ``default.yaml`` provider configuration."""

    if path is not None:
        return ConfigurationSnapshot.from_yaml(path)
    with resources.as_file(resources.files(DEFAULT_PROVIDERS_PACKAGE) / "default.yaml") as resolved:
        return ConfigurationSnapshot.from_yaml(resolved)


# -- Per-capability call plans ------------------------------------------------


@dataclass(slots=True, frozen=True)
class LookupContext:
    identifier: str
    identifier_type: str
    vehicle: Optional[VehicleLookupResponse] = None

    @property
    def vin(self) -> Optional[str]:
        if self.identifier_type == "vin":
            return self.identifier
        return self.vehicle.vin if self.vehicle else None


@dataclass(slots=True, frozen=True)
class CapabilityCall:
    """
    How to call one capability and which fields to extract from its response.

    ``build_request`` returns ``None`` when the context lacks a prerequisite;
    the call is then skipped and reported as failed with ``skip_message``.
    """

    capability: Capability
    method: str
    build_request: Callable[[LookupContext], Any]
    decode: Callable[[Any], Any]
    extract: Callable[[Any], Mapping[str, object]]
    skip_message: str = "Insufficient data"


def _vehicle_request(ctx: LookupContext) -> VehicleLookupRequest:
    if ctx.identifier_type == "plate":
        return VehicleLookupRequest(plate=ctx.identifier)
    return VehicleLookupRequest(vin=ctx.identifier)


def _emission_request(ctx: LookupContext) -> EmissionRequest:
    vehicle = ctx.vehicle
    if vehicle is None:
        return EmissionRequest()
    return EmissionRequest(
        vin=vehicle.vin,
        make=vehicle.make,
        model=vehicle.model,
        year=vehicle.year,
        fuel_type=vehicle.fuel_type,
        engine_capacity_cc=vehicle.engine_capacity_cc,
    )


def _recall_request(ctx: LookupContext) -> RecallRequest:
    vehicle = ctx.vehicle
    return RecallRequest(
        make=(vehicle.make if vehicle else None) or "Unknown",
        model=(vehicle.model if vehicle else None) or "Unknown",
        vin=vehicle.vin if vehicle else None,
    )


def _critair_request(ctx: LookupContext) -> CritAirRequest:
    vehicle = ctx.vehicle
    return CritAirRequest(
        fuel_type=(vehicle.fuel_type if vehicle else None) or "essence",
        euro_norm=(vehicle.euro_norm if vehicle else None) or "Euro 6",
        registration_date=(vehicle.registration_date if vehicle else None) or "2020-01-01",
    )


def _vin_decode_request(ctx: LookupContext) -> Optional[VinDecodeRequest]:
    vin = ctx.vin
    return VinDecodeRequest(vin=vin) if vin else None


def _vehicle_fields(data: VehicleLookupResponse) -> Mapping[str, object]:
    return {
        "plate": data.plate,
        "vin": data.vin,
        "make": data.make,
        "model": data.model,
        "variant": data.variant,
        "year": data.year,
        "registrationDate": data.registration_date,
        "fuelType": data.fuel_type,
        "engineCapacityCc": data.engine_capacity_cc,
        "powerKw": data.power_kw,
        "powerHp": data.power_hp,
        "gearbox": data.gearbox,
        "bodyType": data.body_type,
        "doors": data.doors,
        "seats": data.seats,
        "color": data.color,
        "co2GKm": data.co2_g_km,
        "euroNorm": data.euro_norm,
    }


def _emission_fields(data: EmissionResponse) -> Mapping[str, object]:
    return {"co2GKm": data.co2_g_km, "energyClass": data.energy_class, "euroNorm": data.euro_norm}


def _recall_fields(data: RecallResponse) -> Mapping[str, object]:
    return {"recallCount": data.total_count}


def _critair_fields(data: CritAirResponse) -> Mapping[str, object]:
    return {"critAirLevel": data.level, "critAirLabel": data.label, "critAirColor": data.color}


def _vin_decode_fields(data: VinDecodeResponse) -> Mapping[str, object]:
    return {
        "bodyClass": data.body_class,
        "driveType": data.drive_type,
        "engineCylinders": data.engine_cylinders,
        "manufacturer": data.manufacturer,
        "vehicleType": data.vehicle_type,
        "plantCountry": data.plant_country,
    }


PRIMARY_CALL = CapabilityCall(
    Capability.VEHICLE_LOOKUP, "lookup", _vehicle_request, VehicleLookupResponse.from_payload, _vehicle_fields
)
SECONDARY_CALLS: Tuple[CapabilityCall, ...] = (
    CapabilityCall(Capability.EMISSION, "get_emissions", _emission_request, EmissionResponse.from_payload, _emission_fields),
    CapabilityCall(Capability.RECALL, "get_recalls", _recall_request, RecallResponse.from_payload, _recall_fields),
    CapabilityCall(Capability.LOW_EMISSION, "calculate", _critair_request, CritAirResponse.from_payload, _critair_fields),
    CapabilityCall(
        Capability.VIN_DECODE,
        "decode",
        _vin_decode_request,
        VinDecodeResponse.from_payload,
        _vin_decode_fields,
        skip_message=INSUFFICIENT_VIN_MESSAGE,
    ),
)


def _stringify(value: object) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def extract_fields(call: CapabilityCall, response: Any, source: str, timestamp: str) -> List[CertifiedFieldResult]:
    """Turn ``response`` into certified fields, dropping empty values."""

    results: List[CertifiedFieldResult] = []
    for name, value in call.extract(response).items():
        if value is None or value == "":
            continue
        results.append(CertifiedFieldResult(field_name=name, field_value=_stringify(value), source=source, source_timestamp=timestamp))
    return results


@dataclass(slots=True)
class _Outcome:
    source: ApiSourceStatus
    fields: List[CertifiedFieldResult] = field(default_factory=list)
    response: Any = None


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


def _utcnow() -> datetime:
    return datetime.now(UTC)


# -- Service ------------------------------------------------------------------


@dataclass(slots=True)
class AutofillService:
    """
    Orchestrates one auto-fill request across the configured providers.

    Parameters
    ----------
    resolver:
        Capability resolver supplying instrumented providers.
    cache:
        Response cache consulted before each live call.
    certified_fields:
        Store receiving one upsert per extracted field.
    audit:
        Sink receiving one summary record per request.
    """

    resolver: CapabilityResolver
    cache: ResponseCache
    certified_fields: CertifiedFieldStore = field(default_factory=InMemoryCertifiedFieldStore)
    audit: AuditSink = field(default_factory=InMemoryAuditLog)
    clock: Callable[[], datetime] = _utcnow
    logger: LoggerAdapter = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self.logger = get_logger(self.__class__.__name__)

    @classmethod
    def build_default(
        cls,
        *,
        snapshot: Optional[ConfigurationSnapshot] = None,
        settings: Optional[AutofillSettings] = None,
        instrumentation: Optional[Instrumentation] = None,
    ) -> "AutofillService":
        """
        Wire a service with in-memory collaborators.

        ``snapshot`` defaults to the packaged provider configuration and
        ``settings`` to :func:`listing_autofill.config.load_settings`.
        """

        resolved_snapshot = snapshot or load_provider_config()
        resolver = CapabilityResolver(
            resolved_snapshot,
            instrumentation=instrumentation,
            settings=settings or load_settings(strict=False),
        )
        return cls(resolver=resolver, cache=ResponseCache(config=resolved_snapshot))

    # -- Validation ---------------------------------------------------------

    @staticmethod
    def validate(identifier: str, identifier_type: str) -> str:
        """Return the normalised identifier or raise :class:`ValidationError`."""

        if identifier_type not in IDENTIFIER_TYPES:
            raise ValidationError("Invalid identifierType. Must be 'plate' or 'vin'")
        if not isinstance(identifier, str):
            raise ValidationError("Identifier must be a string")

        normalized = identifier.strip().upper()
        if identifier_type == "plate" and not PLATE_PATTERN.match(normalized):
            raise ValidationError("Invalid plate format. Expected: XX-NNN-XX (e.g., AB-123-CD)")
        if identifier_type == "vin" and not VIN_PATTERN.match(normalized):
            raise ValidationError("Invalid VIN format. Expected: 17 alphanumeric characters (no I, O, Q)")
        return normalized

    # -- Workflow -----------------------------------------------------------

    def autofill(self, identifier: str, identifier_type: str, *, user_id: Optional[str] = None) -> AutofillResult:
        """
        Collect certified vehicle facts for ``identifier``.

        Raises
        ------
        ValidationError
            When the identifier does not match its declared type. No provider
            is called in that case.
        """

        normalized = self.validate(identifier, identifier_type)
        log_progress(self.logger, "Auto-fill started", phase="autofill", step="validate", status="ok", extra={"identifier_type": identifier_type})

        context = LookupContext(identifier=normalized, identifier_type=identifier_type)
        primary = self._run(PRIMARY_CALL, context)
        vehicle = primary.response if isinstance(primary.response, VehicleLookupResponse) else None

        secondaries = self._fan_out(replace(context, vehicle=vehicle))

        outcomes = [primary, *secondaries]
        fields = [item for outcome in outcomes for item in outcome.fields]
        sources = [outcome.source for outcome in outcomes]

        listing_id = str(uuid.uuid4())
        self._persist_fields(listing_id, fields)
        self._write_audit(identifier_type, fields, sources, user_id)

        log_progress(
            self.logger,
            "Auto-fill finished",
            phase="autofill",
            step="done",
            status="ok",
            extra={"fields": len(fields), "succeeded": sum(1 for item in sources if item.succeeded)},
        )
        return AutofillResult(fields=fields, sources=sources, listing_id=listing_id)

    def _fan_out(self, context: LookupContext) -> List[_Outcome]:
        with ThreadPoolExecutor(max_workers=len(SECONDARY_CALLS), thread_name_prefix="autofill") as executor:
            futures: List[Tuple[CapabilityCall, Future[_Outcome]]] = [
                (call, executor.submit(self._run, call, context)) for call in SECONDARY_CALLS
            ]
            return [self._settle(call, future) for call, future in futures]

    def _settle(self, call: CapabilityCall, future: Future[_Outcome]) -> _Outcome:
        try:
            return future.result()
        except Exception as exc:  # pragma: no cover - _run records its own failures
            self.logger.error("Unexpected auto-fill worker error", exc_info=True, extra={"capability": call.capability.value})
            return _Outcome(ApiSourceStatus(call.capability.value, status=SourceStatus.FAILED, error_message=str(exc)))

    def _run(self, call: CapabilityCall, context: LookupContext) -> _Outcome:
        capability = call.capability
        source = ApiSourceStatus(capability=capability.value)
        outcome = _Outcome(source)
        started = time.perf_counter()

        request = call.build_request(context)
        if request is None:
            source.status = SourceStatus.FAILED
            source.error_message = call.skip_message
            source.response_time_ms = _elapsed_ms(started)
            log_progress(self.logger, "Capability skipped", step=capability.value, status="skipped", extra={"capability": capability.value})
            return outcome

        key = CacheKey(context.identifier, context.identifier_type, capability)
        try:
            cached = self._cache_get(key, call)
            if cached is not None:
                source.status = SourceStatus.CACHED
                source.provider_key = CACHE_PROVIDER_KEY
                outcome.response = cached
                outcome.fields = extract_fields(call, cached, f"cache ({capability.value})", self._timestamp())
                log_progress(self.logger, "Capability served from cache", step=capability.value, status="cached", extra={"capability": capability.value, "cache": "hit"})
                return outcome

            provider = self.resolver.resolve(capability)
            response = getattr(provider, call.method)(request)
            info = getattr(response, "provider", None)
            provider_name = getattr(info, "provider_name", None) or getattr(provider, "provider_name", None) or "unknown"
            source.status = SourceStatus.SUCCESS
            source.provider_key = provider_name
            source.response_time_ms = _elapsed_ms(started)
            outcome.response = response
            outcome.fields = extract_fields(call, response, provider_name, self._timestamp())
        except Exception as exc:
            source.status = SourceStatus.FAILED
            source.error_message = str(exc) or exc.__class__.__name__
            source.response_time_ms = _elapsed_ms(started)
            log_progress(
                self.logger,
                "Capability failed",
                step=capability.value,
                status="failed",
                level=logging.WARNING,
                extra={"capability": capability.value, "error": source.error_message},
            )
            return outcome

        log_progress(
            self.logger,
            "Capability succeeded",
            step=capability.value,
            status="success",
            extra={"capability": capability.value, "provider_key": source.provider_key, "latency_ms": source.response_time_ms},
        )
        self._cache_set(key, outcome.response)
        return outcome

    # -- Best-effort side effects -------------------------------------------

    def _cache_get(self, key: CacheKey, call: CapabilityCall) -> Any:
        try:
            return self.cache.get(key, call.decode)
        except Exception:
            self.logger.warning("Cache read failed", exc_info=True, extra={"capability": key.capability.value})
            return None

    def _cache_set(self, key: CacheKey, response: Any) -> None:
        try:
            self.cache.set(key, response)
        except Exception:
            self.logger.warning("Cache write failed", exc_info=True, extra={"capability": key.capability.value})

    def _persist_fields(self, listing_id: str, fields: Sequence[CertifiedFieldResult]) -> None:
        for item in fields:
            try:
                self.certified_fields.upsert(
                    CertifiedField(
                        listing_id=listing_id,
                        field_name=item.field_name,
                        field_value=item.field_value,
                        source=item.source,
                        source_timestamp=datetime.fromisoformat(item.source_timestamp),
                        is_certified=item.is_certified,
                    )
                )
            except Exception:
                self.logger.warning("Failed to certify field", exc_info=True, extra={"field": item.field_name})

    def _write_audit(
        self,
        identifier_type: str,
        fields: Sequence[CertifiedFieldResult],
        sources: Sequence[ApiSourceStatus],
        user_id: Optional[str],
    ) -> None:
        details: Dict[str, object] = {
            "identifierType": identifier_type,
            "fieldsCount": len(fields),
            "sourcesCount": len(sources),
            "successCount": sum(1 for item in sources if item.succeeded),
        }
        try:
            self.audit.append(AuditRecord(action=AUDIT_ACTION, resource=AUDIT_RESOURCE, details=details, user_id=user_id or "unknown"))
        except Exception:
            self.logger.warning("Failed to write auto-fill audit record", exc_info=True)

    def _timestamp(self) -> str:
        return self.clock().isoformat()

from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from unittest.mock import MagicMock, patch

import pytest

from listing_autofill.core.cache import CacheKey, ResponseCache
from listing_autofill.core.registry import Capability
from listing_autofill.models import (
    CritAirResponse,
    EmissionResponse,
    ProviderInfo,
    RecallResponse,
    SourceStatus,
    VehicleLookupResponse,
    VinDecodeResponse,
)
from listing_autofill.services import AutofillService, ValidationError
from listing_autofill.services.autofill import INSUFFICIENT_VIN_MESSAGE, SECONDARY_CALLS, LookupContext

RENAULT_PLATE = "AB-123-CD"
RENAULT_VIN = "VF1RFB00X56789012"


def _capabilities(result):
    return [source.capability for source in result.sources]


def _source(result, capability: Capability):
    return next(item for item in result.sources if item.capability == capability.value)


class BarrierProvider:
    """Secondary stub that only returns once every secondary call is in flight."""

    provider_name = "barrier"

    def __init__(self, barrier: threading.Barrier) -> None:
        self.barrier = barrier
        self.threads: list[str] = []

    def _wait(self) -> ProviderInfo:
        self.threads.append(threading.current_thread().name)
        self.barrier.wait()
        return ProviderInfo(self.provider_name)

    def get_emissions(self, request):
        return EmissionResponse(110, "B", "Euro 6", "essence", self._wait())

    def get_recalls(self, request):
        return RecallResponse(recalls=(), total_count=0, provider=self._wait())

    def calculate(self, request):
        return CritAirResponse(level="1", label="Crit'Air 1", color="violet", provider=self._wait())

    def decode(self, request):
        return VinDecodeResponse(vin=request.vin, make="Renault", model="Clio", provider=self._wait())


def test_end_to_end_with_default_providers(service, call_log):
    result = service.autofill(RENAULT_PLATE, "plate")

    values = result.field_values()
    assert _capabilities(result) == ["vehicle_lookup", "emission", "recall", "low_emission", "vin_decode"]
    assert all(source.status == SourceStatus.SUCCESS for source in result.sources)
    assert values["make"] == "Renault"
    assert values["model"] == "Clio V"
    assert values["vin"] == RENAULT_VIN
    assert values["energyClass"] == "B"
    assert values["recallCount"] == "0"
    assert values["critAirLevel"] == "1"
    assert values["critAirColor"] == "violet"
    assert values["bodyClass"] == "Hatchback"
    assert values["manufacturer"] == "Renault SAS"
    assert _source(result, Capability.LOW_EMISSION).provider_key == "local-critair"
    assert _source(result, Capability.EMISSION).provider_key == "mock"
    assert len(call_log) == 5



class ScenarioProvider:
    """Stubs answering every capability with a fixed Renault Clio V record."""

    def lookup(self, request):
        return VehicleLookupResponse(
            plate=RENAULT_PLATE, vin=RENAULT_VIN, make="Renault", model="Clio V", provider=ProviderInfo("registry-stub")
        )

    def get_emissions(self, request):
        return EmissionResponse(128, "C", "Euro 6", "essence", ProviderInfo("emission-stub"))

    def get_recalls(self, request):
        return RecallResponse(recalls=(), total_count=0, provider=ProviderInfo("recall-stub"))

    def calculate(self, request):
        return CritAirResponse(level="1", label="Crit'Air 1", color="violet", provider=ProviderInfo("critair-stub"))

    def decode(self, request):
        return VinDecodeResponse(
            vin=request.vin, make="Renault", model="Clio V", provider=ProviderInfo("vin-stub"), body_class="Hatchback"
        )


def test_stubbed_providers_scenario(service, resolver):
    stub = ScenarioProvider()
    for capability in Capability:
        resolver.override(capability, stub)

    result = service.autofill(RENAULT_PLATE, "plate")

    assert _capabilities(result) == ["vehicle_lookup", "emission", "recall", "low_emission", "vin_decode"]
    assert [source.status for source in result.sources] == [SourceStatus.SUCCESS] * 5
    values = result.field_values()
    assert values["make"] == "Renault"
    assert values["energyClass"] == "C"
    assert values["critAirLevel"] == "1"
    assert values["bodyClass"] == "Hatchback"
    assert all(item.is_certified for item in result.fields)
    assert ("energyClass", "emission-stub") in {(item.field_name, item.source) for item in result.fields}

def test_fields_are_attributed_to_their_source(service):
    result = service.autofill(RENAULT_PLATE, "plate")

    by_name = {(item.field_name, item.source) for item in result.fields}
    assert ("critAirLevel", "local-critair") in by_name
    assert ("make", "mock") in by_name
    assert all(item.is_certified for item in result.fields)
    assert all(item.source_timestamp for item in result.fields)


def test_empty_values_are_not_extracted(service):
    result = service.autofill("IJ-789-KL", "plate")

    names = [item.field_name for item in result.fields if item.source == "mock"]
    assert "variant" not in names
    assert "make" in names


def test_lowercase_plate_is_normalised(service, cache):
    result = service.autofill("  ab-123-cd ", "plate")

    assert result.field_values()["plate"] == RENAULT_PLATE
    assert cache.get(CacheKey(RENAULT_PLATE, "plate", Capability.VEHICLE_LOOKUP)) is not None


@pytest.mark.parametrize(
    ("identifier", "identifier_type", "message"),
    [
        ("AB-123-CD", "registration", "Invalid identifierType"),
        ("ZZ-ZZ-ZZ", "plate", "Invalid plate format"),
        ("AB123CD", "plate", "Invalid plate format"),
        ("VF1RFB00I56789012", "vin", "Invalid VIN format"),
        ("VF1RFB00X5678901", "vin", "Invalid VIN format"),
        (None, "plate", "Identifier must be a string"),
    ],
)
def test_invalid_requests_raise_before_any_call(service, call_log, identifier, identifier_type, message):
    with pytest.raises(ValidationError) as excinfo:
        service.autofill(identifier, identifier_type)

    assert message in str(excinfo.value)
    assert len(call_log) == 0
    assert service.audit.records() == []


def test_vin_identifier(service):
    result = service.autofill(RENAULT_VIN.lower(), "vin")

    values = result.field_values()
    assert values["plate"] == RENAULT_PLATE
    assert values["bodyClass"] == "Hatchback"
    assert all(source.succeeded for source in result.sources)


def test_primary_failure_uses_defaults_and_skips_vin_decode(service, resolver):
    decoder = MagicMock()
    resolver.override(Capability.VIN_DECODE, decoder)

    result = service.autofill("XX-999-XX", "plate")

    primary = _source(result, Capability.VEHICLE_LOOKUP)
    assert primary.status == SourceStatus.FAILED
    assert "Vehicle not found" in primary.error_message

    vin = _source(result, Capability.VIN_DECODE)
    assert vin.status == SourceStatus.FAILED
    assert vin.error_message == INSUFFICIENT_VIN_MESSAGE
    decoder.decode.assert_not_called()

    values = result.field_values()
    assert values["critAirLevel"] == "1"
    assert values["recallCount"] == "0"
    assert values["energyClass"] == "B"
    assert _source(result, Capability.EMISSION).succeeded


def test_secondary_failure_does_not_affect_others(service, resolver):
    failing = MagicMock()
    failing.get_recalls.side_effect = ConnectionError("RappelConso unavailable")
    resolver.override(Capability.RECALL, failing)

    result = service.autofill(RENAULT_PLATE, "plate")

    recall = _source(result, Capability.RECALL)
    assert recall.status == SourceStatus.FAILED
    assert recall.error_message == "RappelConso unavailable"
    assert recall.response_time_ms is not None
    assert "recallCount" not in result.field_values()
    others = [source for source in result.sources if source.capability != "recall"]
    assert all(source.status == SourceStatus.SUCCESS for source in others)


def test_failed_calls_are_not_cached(service, resolver, cache):
    failing = MagicMock()
    failing.get_recalls.side_effect = ConnectionError("down")
    resolver.override(Capability.RECALL, failing)

    service.autofill(RENAULT_PLATE, "plate")

    assert cache.get(CacheKey(RENAULT_PLATE, "plate", Capability.RECALL)) is None
    assert cache.get(CacheKey(RENAULT_PLATE, "plate", Capability.EMISSION)) is not None


def test_second_request_is_served_from_cache(service, call_log):
    first = service.autofill(RENAULT_PLATE, "plate")
    calls_after_first = len(call_log)

    second = service.autofill(RENAULT_PLATE, "plate")

    assert len(call_log) == calls_after_first
    assert all(source.status == SourceStatus.CACHED for source in second.sources)
    assert all(source.provider_key == "cache" for source in second.sources)
    assert _source(second, Capability.EMISSION).response_time_ms is None
    assert second.field_values() == first.field_values()
    sources = {item.source for item in second.fields}
    assert "cache (emission)" in sources
    assert "cache (vehicle_lookup)" in sources


def test_cached_primary_still_feeds_secondaries(service, cache, call_log):
    service.autofill(RENAULT_PLATE, "plate")
    cache.store.invalidate(CacheKey(RENAULT_PLATE, "plate", Capability.VIN_DECODE))

    result = service.autofill(RENAULT_PLATE, "plate")

    assert _source(result, Capability.VEHICLE_LOOKUP).status == SourceStatus.CACHED
    assert _source(result, Capability.VIN_DECODE).status == SourceStatus.SUCCESS
    assert call_log.records()[-1].endpoint == "decode"


def test_expired_cache_triggers_live_call(service, clock, call_log):
    service.autofill(RENAULT_PLATE, "plate")
    clock.advance(hours=49)

    result = service.autofill(RENAULT_PLATE, "plate")

    assert all(source.status == SourceStatus.SUCCESS for source in result.sources)
    assert len(call_log) == 10


def test_secondary_calls_run_concurrently(service, resolver):
    stub = BarrierProvider(threading.Barrier(4, timeout=5))
    for capability in (Capability.EMISSION, Capability.RECALL, Capability.LOW_EMISSION, Capability.VIN_DECODE):
        resolver.override(capability, stub)

    result = service.autofill(RENAULT_PLATE, "plate")

    assert all(source.status == SourceStatus.SUCCESS for source in result.sources)
    assert len(set(stub.threads)) == 4
    assert all(name.startswith("autofill") for name in stub.threads)


def test_fan_out_pool_has_one_worker_per_secondary_call(service):
    with patch("listing_autofill.services.autofill.ThreadPoolExecutor", wraps=ThreadPoolExecutor) as executor:
        service.autofill(RENAULT_PLATE, "plate")

    executor.assert_called_once_with(max_workers=len(SECONDARY_CALLS), thread_name_prefix="autofill")


def test_fields_are_persisted_and_audited(service):
    result = service.autofill(RENAULT_PLATE, "plate", user_id="user-42")

    stored = service.certified_fields.for_listing(result.listing_id)
    assert {item.field_name for item in stored} == {item.field_name for item in result.fields}
    assert all(item.source_timestamp.tzinfo is not None for item in stored)

    (record,) = service.audit.records("listing.autofill")
    assert record.resource == "Vehicle"
    assert record.user_id == "user-42"
    assert record.details == {
        "identifierType": "plate",
        "fieldsCount": len(result.fields),
        "sourcesCount": 5,
        "successCount": 5,
    }


def test_audit_defaults_to_unknown_user(service):
    service.autofill(RENAULT_PLATE, "plate")

    assert service.audit.records()[0].user_id == "unknown"


def test_persistence_failures_are_swallowed(resolver, cache):
    fields = MagicMock()
    fields.upsert.side_effect = RuntimeError("database unavailable")
    audit = MagicMock()
    audit.append.side_effect = RuntimeError("database unavailable")
    service = AutofillService(resolver=resolver, cache=cache, certified_fields=fields, audit=audit)

    result = service.autofill(RENAULT_PLATE, "plate")

    assert result.fields
    assert fields.upsert.call_count == len(result.fields)
    audit.append.assert_called_once()


def test_cache_failures_are_swallowed(resolver):
    cache = MagicMock(spec=ResponseCache)
    cache.get.return_value = None
    cache.set.side_effect = RuntimeError("cache table locked")
    service = AutofillService(resolver=resolver, cache=cache)

    result = service.autofill(RENAULT_PLATE, "plate")

    assert all(source.status == SourceStatus.SUCCESS for source in result.sources)
    assert cache.set.call_count == 5


def test_cache_read_failure_falls_through_to_provider(resolver):
    cache = MagicMock(spec=ResponseCache)
    cache.get.side_effect = RuntimeError("cache offline")
    service = AutofillService(resolver=resolver, cache=cache)

    result = service.autofill(RENAULT_PLATE, "plate")

    assert all(source.status == SourceStatus.SUCCESS for source in result.sources)


def test_deactivated_capability_falls_back_to_mock(service, resolver, snapshot):
    snapshot.deactivate(Capability.LOW_EMISSION, "local.critair")
    resolver.invalidate(Capability.LOW_EMISSION)

    result = service.autofill(RENAULT_PLATE, "plate")

    critair = _source(result, Capability.LOW_EMISSION)
    assert critair.status == SourceStatus.SUCCESS
    assert critair.provider_key == "mock"


def test_result_json_shape(service):
    payload = service.autofill(RENAULT_PLATE, "plate").to_dict()

    assert set(payload) == {"fields", "sources"}
    assert set(payload["fields"][0]) == {"fieldName", "fieldValue", "source", "sourceTimestamp", "isCertified"}
    assert payload["sources"][0]["providerKey"] == "mock"


def test_lookup_context_vin():
    assert LookupContext("VF1RFB00X56789012", "vin").vin == "VF1RFB00X56789012"
    assert LookupContext("AB-123-CD", "plate").vin is None


def test_build_default_uses_packaged_configuration(monkeypatch, tmp_path):
    monkeypatch.setenv("AUTOFILL_SETTINGS_PATH", str(tmp_path / "missing.toml"))
    monkeypatch.chdir(tmp_path)

    service = AutofillService.build_default()

    assert service.resolver.describe(Capability.EMISSION).provider_key == "mock.emission"
    assert service.cache.ttl_hours() == 48

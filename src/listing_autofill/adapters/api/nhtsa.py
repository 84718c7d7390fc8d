"""
NHTSA vPIC client for VIN technical decoding.

``DecodeVinValues`` returns a flat record per VIN. The API reports decoding
problems through ``ErrorCode``; a code of ``"0"`` (possibly alongside
informational codes such as ``"0,14"``) means the VIN decoded.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, MutableMapping, Optional
from urllib.parse import quote

from ...models import ProviderInfo, VinDecodeRequest, VinDecodeResponse
from ..base import ProviderError
from .base import DEFAULT_TIMEOUT, APIError, BaseAPIClient

DEFAULT_BASE_URL = "https://vpic.nhtsa.dot.gov/api/vehicles"


def _decoded_ok(error_code: Optional[str]) -> bool:
    if not error_code:
        return True
    return "0" in (code.strip() for code in error_code.split(","))


def _optional_int(value: Optional[str]) -> Optional[int]:
    if not value:
        return None
    try:
        return int(round(float(value)))
    except ValueError:
        return None


class NhtsaClient(BaseAPIClient):
    """Minimal client for the NHTSA vPIC vehicles API."""

    def __init__(
        self,
        *,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = DEFAULT_TIMEOUT,
        default_headers: Optional[MutableMapping[str, str]] = None,
    ) -> None:
        headers: MutableMapping[str, str] = {"Accept": "application/json"}
        if default_headers:
            headers.update(default_headers)
        super().__init__(base_url=base_url, timeout=timeout, default_headers=headers)

    def decode_vin_values(self, vin: str) -> Mapping[str, Any]:
        payload = self._get_json(f"/DecodeVinValues/{quote(vin, safe='')}", params={"format": "json"})
        results = payload.get("Results") if isinstance(payload, dict) else None
        if not isinstance(results, list) or not results:
            raise APIError(f"No VIN data returned for: {vin}")
        record = results[0]
        if not isinstance(record, dict):
            raise APIError("NHTSA result is not a mapping.")
        return record


@dataclass(slots=True)
class NhtsaVinDecodeAdapter:
    """VIN decode provider backed by NHTSA vPIC."""

    client: NhtsaClient = field(default_factory=NhtsaClient)
    provider_name: str = "nhtsa"
    provider_version: str = "1.0.0"

    def decode(self, request: VinDecodeRequest) -> VinDecodeResponse:
        record = self.client.decode_vin_values(request.vin)
        error_code = record.get("ErrorCode")
        if not _decoded_ok(error_code):
            raise ProviderError(f"NHTSA VIN decode error: {record.get('ErrorText') or error_code}")

        return VinDecodeResponse(
            vin=request.vin,
            make=record.get("Make") or "Unknown",
            model=record.get("Model") or "Unknown",
            year=_optional_int(record.get("ModelYear")) or 0,
            body_class=record.get("BodyClass") or None,
            drive_type=record.get("DriveType") or None,
            engine_cylinders=_optional_int(record.get("EngineCylinders")),
            engine_capacity_cc=_optional_int(record.get("DisplacementCC")),
            fuel_type=record.get("FuelTypePrimary") or None,
            gvwr=record.get("GVWR") or None,
            plant_country=record.get("PlantCountry") or None,
            manufacturer=record.get("Manufacturer") or "Unknown",
            vehicle_type=record.get("VehicleType") or None,
            provider=ProviderInfo(self.provider_name, self.provider_version),
        )

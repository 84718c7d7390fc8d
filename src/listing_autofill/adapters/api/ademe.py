"""
ADEME car-labelling dataset client (emissions).

The Agence de l'Environnement et de la Maîtrise de l'Énergie publishes
homologated CO2 figures, energy classes and Euro norms through its data-fair
API. Lookups filter on upper-cased make/model, model year and an ADEME fuel
code, returning the first matching line.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, MutableMapping, Optional

from ...models import EmissionRequest, EmissionResponse, ProviderInfo
from ..base import ProviderError
from .base import DEFAULT_TIMEOUT, APIError, BaseAPIClient

DEFAULT_BASE_URL = "https://data.ademe.fr/data-fair/api/v1/datasets/ademe-car-labelling"
_SELECT_FIELDS = "co2_g_km,lib_eg_conso,norme_euro,cod_cbr,co_typ_1,nox_typ_1,ptcl_typ_1"

_FUEL_TO_CODE = {
    "essence": "ES",
    "diesel": "GO",
    "gazole": "GO",
    "electrique": "EL",
    "hybride": "EH",
    "gpl": "GP",
    "gnv": "GN",
}
_CODE_TO_FUEL = {
    "ES": "essence",
    "GO": "diesel",
    "EL": "electrique",
    "EH": "hybride",
    "GP": "gpl",
    "GN": "gnv",
}


def map_fuel_type(fuel_type: str) -> str:
    return _FUEL_TO_CODE.get(fuel_type.lower(), fuel_type)


def unmap_fuel_type(code: Optional[str]) -> str:
    return _CODE_TO_FUEL.get(code or "", code or "unknown")


class AdemeClient(BaseAPIClient):
    """Minimal client for the ADEME car-labelling ``lines`` endpoint."""

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

    def search_lines(self, request: EmissionRequest) -> Mapping[str, Any]:
        """Return the first dataset line matching the request, or raise :class:`APIError`."""

        params: Dict[str, Any] = {"size": 1, "select": _SELECT_FIELDS}
        if request.make:
            params["lib_mrq_utf8_eq"] = request.make.upper()
        if request.model:
            params["lib_mod_utf8_eq"] = request.model.upper()
        if request.year:
            params["annee_eq"] = str(request.year)
        if request.fuel_type:
            params["cod_cbr_eq"] = map_fuel_type(request.fuel_type)

        payload = self._get_json("/lines", params=params)
        if not isinstance(payload, dict):
            raise APIError("Unexpected payload structure from ADEME lines endpoint.")
        results = payload.get("results")
        if not isinstance(results, list) or not results:
            raise APIError(f"No emission data found for {request.make} {request.model} {request.year}")
        record = results[0]
        if not isinstance(record, dict):
            raise APIError("ADEME line is not a mapping.")
        return record


def _pollutants(record: Mapping[str, Any]) -> Optional[Dict[str, float]]:
    pollutants: Dict[str, float] = {}
    for source_key, label in (("co_typ_1", "CO"), ("nox_typ_1", "NOx"), ("ptcl_typ_1", "PM")):
        value = record.get(source_key)
        if value is not None:
            pollutants[label] = float(value)
    return pollutants or None


@dataclass(slots=True)
class AdemeEmissionAdapter:
    """Emission provider backed by the ADEME dataset."""

    client: AdemeClient = field(default_factory=AdemeClient)
    provider_name: str = "ademe"
    provider_version: str = "1.0.0"

    def get_emissions(self, request: EmissionRequest) -> EmissionResponse:
        record = self.client.search_lines(request)
        try:
            co2 = float(record.get("co2_g_km") or 0)
            pollutants = _pollutants(record)
        except (TypeError, ValueError) as exc:
            raise ProviderError(f"ADEME returned a malformed line: {exc}") from exc

        return EmissionResponse(
            co2_g_km=co2,
            energy_class=record.get("lib_eg_conso") or "unknown",
            euro_norm=record.get("norme_euro") or "unknown",
            fuel_type=request.fuel_type or unmap_fuel_type(record.get("cod_cbr")),
            pollutants=pollutants,
            provider=ProviderInfo(self.provider_name, self.provider_version),
        )

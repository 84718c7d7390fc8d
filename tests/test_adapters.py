from __future__ import annotations

import httpx
import pytest

from listing_autofill.adapters.api.ademe import AdemeClient, AdemeEmissionAdapter, map_fuel_type, unmap_fuel_type
from listing_autofill.adapters.api.base import APIError
from listing_autofill.adapters.api.nhtsa import NhtsaClient, NhtsaVinDecodeAdapter
from listing_autofill.adapters.api.rappelconso import (
    RappelConsoClient,
    RappelConsoRecallAdapter,
    build_where_clause,
    classify_risk,
    escape_literal,
)
from listing_autofill.adapters.base import ProviderError
from listing_autofill.models import EmissionRequest, RecallRequest, VinDecodeRequest

# -- ADEME --------------------------------------------------------------------


def test_ademe_lines_query(monkeypatch):
    captured = {}

    def fake_get_json(self, path, *, params=None):
        captured["path"] = path
        captured["params"] = params
        return {
            "results": [
                {
                    "co2_g_km": 128,
                    "lib_eg_conso": "B",
                    "norme_euro": "EURO6D",
                    "cod_cbr": "ES",
                    "co_typ_1": 0.5,
                    "nox_typ_1": "0.04",
                }
            ]
        }

    monkeypatch.setattr(AdemeClient, "_get_json", fake_get_json, raising=False)
    adapter = AdemeEmissionAdapter(client=AdemeClient())

    response = adapter.get_emissions(EmissionRequest(make="Renault", model="Clio V", year=2022, fuel_type="essence"))

    assert captured["path"] == "/lines"
    assert captured["params"]["lib_mrq_utf8_eq"] == "RENAULT"
    assert captured["params"]["lib_mod_utf8_eq"] == "CLIO V"
    assert captured["params"]["annee_eq"] == "2022"
    assert captured["params"]["cod_cbr_eq"] == "ES"
    assert response.co2_g_km == pytest.approx(128.0)
    assert response.energy_class == "B"
    assert response.euro_norm == "EURO6D"
    assert response.fuel_type == "essence"
    assert response.pollutants == {"CO": 0.5, "NOx": 0.04}
    assert response.provider.provider_name == "ademe"


def test_ademe_without_results_raises(monkeypatch):
    monkeypatch.setattr(AdemeClient, "_get_json", lambda self, path, *, params=None: {"results": []}, raising=False)
    adapter = AdemeEmissionAdapter(client=AdemeClient())

    with pytest.raises(APIError, match="No emission data found"):
        adapter.get_emissions(EmissionRequest(make="Renault", model="Twingo", year=1995))


def test_ademe_fuel_code_mapping():
    assert map_fuel_type("Diesel") == "GO"
    assert map_fuel_type("hydrogene") == "hydrogene"
    assert unmap_fuel_type("EL") == "electrique"
    assert unmap_fuel_type(None) == "unknown"


# -- RappelConso --------------------------------------------------------------


def test_rappelconso_records_are_mapped(monkeypatch):
    captured = {}

    def fake_get_json(self, path, *, params=None):
        captured["path"] = path
        captured["params"] = params
        return {
            "total_count": 2,
            "results": [
                {
                    "reference_fiche": "2024-01-0042",
                    "nom_de_la_marque_du_produit": "Peugeot",
                    "noms_des_modeles_ou_references": "308 2022-2023",
                    "nature_du_risque_encouru_par_le_consommateur": "Risque d'incendie",
                    "motif_du_rappel": "Fuite de carburant",
                    "date_de_publication": "2024-02-01",
                },
                {"reference_fiche": None, "noms_des_modeles_ou_references": None},
            ],
        }

    monkeypatch.setattr(RappelConsoClient, "_get_json", fake_get_json, raising=False)
    adapter = RappelConsoRecallAdapter(client=RappelConsoClient())

    response = adapter.get_recalls(RecallRequest(make="Peugeot", model="308"))

    assert captured["path"] == "/records"
    assert 'nom_de_la_marque_du_produit like "Peugeot"' in captured["params"]["where"]
    assert captured["params"]["limit"] == 50
    assert response.total_count == 2
    first, second = response.recalls
    assert first.id == "2024-01-0042"
    assert first.risk_level == "high"
    assert first.affected_models == ("308 2022-2023",)
    assert second.id == "unknown"
    assert second.title == "Rappel véhicule"
    assert second.manufacturer == "Peugeot"
    assert second.affected_models == ()


def test_rappelconso_non_list_results_raise(monkeypatch):
    monkeypatch.setattr(RappelConsoClient, "_get_json", lambda self, path, *, params=None: {"results": "oops"}, raising=False)
    adapter = RappelConsoRecallAdapter(client=RappelConsoClient())

    with pytest.raises(APIError):
        adapter.get_recalls(RecallRequest(make="Renault", model="Clio"))


def test_where_clause_escapes_quotes():
    clause = build_where_clause(RecallRequest(make='Re"nault', model="Clio\\V"))

    assert clause.startswith('sous_categorie_de_produit = "Automobiles"')
    assert 'like "Re\\"nault"' in clause
    assert 'like "*Clio\\\\V*"' in clause
    assert escape_literal('"') == '\\"'


@pytest.mark.parametrize(
    ("description", "expected"),
    [
        (None, "unknown"),
        ("Risque d'incendie", "high"),
        ("Risque de blessure grave", "high"),
        ("Risque d'accident", "medium"),
        ("Défaut esthétique", "low"),
    ],
)
def test_classify_risk(description, expected):
    assert classify_risk(description) == expected


# -- NHTSA --------------------------------------------------------------------


def test_nhtsa_decode(monkeypatch):
    captured = {}

    def fake_get_json(self, path, *, params=None):
        captured["path"] = path
        captured["params"] = params
        return {
            "Results": [
                {
                    "ErrorCode": "0",
                    "Make": "RENAULT",
                    "Model": "Clio",
                    "ModelYear": "2022",
                    "BodyClass": "Hatchback/Liftback/Notchback",
                    "EngineCylinders": "4",
                    "DisplacementCC": "1333.0",
                    "PlantCountry": "FRANCE",
                    "Manufacturer": "RENAULT SAS",
                    "DriveType": "",
                }
            ]
        }

    monkeypatch.setattr(NhtsaClient, "_get_json", fake_get_json, raising=False)
    adapter = NhtsaVinDecodeAdapter(client=NhtsaClient())

    response = adapter.decode(VinDecodeRequest(vin="VF1RFB00X56789012"))

    assert captured["path"] == "/DecodeVinValues/VF1RFB00X56789012"
    assert captured["params"] == {"format": "json"}
    assert response.make == "RENAULT"
    assert response.year == 2022
    assert response.engine_cylinders == 4
    assert response.engine_capacity_cc == 1333
    assert response.drive_type is None
    assert response.manufacturer == "RENAULT SAS"
    assert response.provider.provider_name == "nhtsa"


def test_nhtsa_informational_error_code_is_accepted(monkeypatch):
    payload = {"Results": [{"ErrorCode": "0,14", "Make": "BMW", "Model": "3 Series"}]}
    monkeypatch.setattr(NhtsaClient, "_get_json", lambda self, path, *, params=None: payload, raising=False)

    response = NhtsaVinDecodeAdapter(client=NhtsaClient()).decode(VinDecodeRequest(vin="WBA11AA010CH12345"))

    assert response.make == "BMW"
    assert response.year == 0


def test_nhtsa_decode_error_raises(monkeypatch):
    payload = {"Results": [{"ErrorCode": "6", "ErrorText": "6 - Incomplete VIN"}]}
    monkeypatch.setattr(NhtsaClient, "_get_json", lambda self, path, *, params=None: payload, raising=False)

    with pytest.raises(ProviderError, match="Incomplete VIN"):
        NhtsaVinDecodeAdapter(client=NhtsaClient()).decode(VinDecodeRequest(vin="WBA11AA010CH1234X"))


def test_nhtsa_empty_results_raise(monkeypatch):
    monkeypatch.setattr(NhtsaClient, "_get_json", lambda self, path, *, params=None: {"Results": []}, raising=False)

    with pytest.raises(APIError, match="No VIN data"):
        NhtsaClient().decode_vin_values("VF1RFB00X56789012")


# -- Retry policy -------------------------------------------------------------


def _patch_transport(monkeypatch, handler):
    def build_client(self):
        return httpx.Client(base_url=self.base_url, transport=httpx.MockTransport(handler))

    monkeypatch.setattr(NhtsaClient, "_build_client", build_client, raising=False)


def test_transient_errors_are_retried(monkeypatch):
    attempts = []

    def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(request.url.path)
        if len(attempts) < 3:
            return httpx.Response(503, request=request)
        return httpx.Response(200, json={"Results": [{"ErrorCode": "0", "Make": "RENAULT", "Model": "Clio"}]}, request=request)

    _patch_transport(monkeypatch, handler)
    client = NhtsaClient(base_url="https://vpic.test/api/vehicles")
    client.backoff_seconds = 0

    record = client.decode_vin_values("VF1RFB00X56789012")

    assert record["Make"] == "RENAULT"
    assert len(attempts) == 3
    assert attempts[0] == "/api/vehicles/DecodeVinValues/VF1RFB00X56789012"


def test_retries_are_bounded(monkeypatch):
    attempts = []

    def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(request)
        return httpx.Response(500, request=request)

    _patch_transport(monkeypatch, handler)
    client = NhtsaClient(base_url="https://vpic.test/api/vehicles")
    client.backoff_seconds = 0

    with pytest.raises(APIError, match="HTTP 500"):
        client.decode_vin_values("VF1RFB00X56789012")

    assert len(attempts) == 3


def test_invalid_json_raises_api_error(monkeypatch):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=b"<html>maintenance</html>", request=request)

    _patch_transport(monkeypatch, handler)
    client = NhtsaClient(base_url="https://vpic.test/api/vehicles")

    with pytest.raises(APIError, match="Failed to decode JSON"):
        client.decode_vin_values("VF1RFB00X56789012")

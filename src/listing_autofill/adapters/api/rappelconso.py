"""
RappelConso client for French vehicle recall campaigns.

The dataset is published on data.economie.gouv.fr (Opendatasoft Explore v2.1).
Queries restrict the product sub-category to automobiles and filter on brand
and model with ODSQL ``like`` clauses.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, List, Mapping, MutableMapping, Optional

from ...models import ProviderInfo, RecallCampaign, RecallRequest, RecallResponse
from .base import DEFAULT_TIMEOUT, APIError, BaseAPIClient

DEFAULT_BASE_URL = "https://data.economie.gouv.fr/api/explore/v2.1/catalog/datasets/rappelconso0"
_SELECT_FIELDS = ",".join(
    (
        "reference_fiche",
        "nom_de_la_marque_du_produit",
        "noms_des_modeles_ou_references",
        "nature_du_risque_encouru_par_le_consommateur",
        "motif_du_rappel",
        "date_de_publication",
        "sous_categorie_de_produit",
    )
)


def escape_literal(value: str) -> str:
    """Escape backslashes and double quotes for ODSQL string literals."""

    return value.replace("\\", "\\\\").replace('"', '\\"')


def build_where_clause(request: RecallRequest) -> str:
    parts = ['sous_categorie_de_produit = "Automobiles"']
    if request.make:
        parts.append(f'nom_de_la_marque_du_produit like "{escape_literal(request.make)}"')
    if request.model:
        parts.append(f'noms_des_modeles_ou_references like "*{escape_literal(request.model)}*"')
    return " AND ".join(parts)


def classify_risk(description: Optional[str]) -> str:
    if not description:
        return "unknown"
    lowered = description.lower()
    if "incendie" in lowered or "blessure grave" in lowered:
        return "high"
    if "blessure" in lowered or "accident" in lowered:
        return "medium"
    return "low"


class RappelConsoClient(BaseAPIClient):
    """Minimal client for the RappelConso ``records`` endpoint."""

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

    def search_records(self, request: RecallRequest, *, limit: int = 50) -> Mapping[str, Any]:
        params = {
            "where": build_where_clause(request),
            "limit": max(1, min(limit, 100)),
            "select": _SELECT_FIELDS,
            "order_by": "date_de_publication DESC",
        }
        payload = self._get_json("/records", params=params)
        if not isinstance(payload, dict):
            raise APIError("Unexpected payload structure from RappelConso records endpoint.")
        return payload


@dataclass(slots=True)
class RappelConsoRecallAdapter:
    """Recall provider backed by RappelConso."""

    client: RappelConsoClient = field(default_factory=RappelConsoClient)
    provider_name: str = "rappelconso"
    provider_version: str = "1.0.0"

    def get_recalls(self, request: RecallRequest) -> RecallResponse:
        payload = self.client.search_records(request)
        rows = payload.get("results") or []
        if not isinstance(rows, list):
            raise APIError("RappelConso results are not a list.")

        recalls: List[RecallCampaign] = []
        for row in rows:
            if not isinstance(row, dict):
                continue
            risk = row.get("nature_du_risque_encouru_par_le_consommateur")
            models = row.get("noms_des_modeles_ou_references")
            recalls.append(
                RecallCampaign(
                    id=row.get("reference_fiche") or "unknown",
                    title=row.get("motif_du_rappel") or "Rappel véhicule",
                    description=risk or "",
                    published_date=row.get("date_de_publication") or "",
                    risk_level=classify_risk(risk),
                    manufacturer=row.get("nom_de_la_marque_du_produit") or request.make,
                    affected_models=(models,) if models else (),
                )
            )

        total = payload.get("total_count")
        return RecallResponse(
            recalls=tuple(recalls),
            total_count=int(total) if isinstance(total, int) else len(recalls),
            provider=ProviderInfo(self.provider_name, self.provider_version),
        )

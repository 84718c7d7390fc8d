"""
Local Crit'Air calculator.

Implements the French low-emission sticker rules (arrêté du 21 juin 2016) from
fuel type, Euro norm and first registration date. No network access is needed,
so the provider never fails for well-formed requests.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date
from typing import Dict, Optional, Tuple

from ...models import CritAirRequest, CritAirResponse, ProviderInfo

CRITAIR_LABELS: Dict[str, str] = {
    "0": "Crit'Air 0 (zéro émission)",
    "1": "Crit'Air 1",
    "2": "Crit'Air 2",
    "3": "Crit'Air 3",
    "4": "Crit'Air 4",
    "5": "Crit'Air 5",
    "non-classe": "Non classé",
}

_ELECTRIC = {"electrique", "electric", "hydrogene", "hydrogen"}
_PETROL = {"essence", "gasoline", "petrol", "gpl", "gnv", "e85"}
_DIESEL = {"diesel", "gazole"}
_EURO_DIGITS = re.compile(r"(\d+)")

Classification = Tuple[str, str]


def normalise_fuel(fuel_type: str) -> str:
    lowered = fuel_type.strip().lower()
    if lowered in _ELECTRIC:
        return "electric"
    if lowered in _PETROL:
        return "petrol"
    if lowered in _DIESEL:
        return "diesel"
    return "unknown"


def parse_euro_norm(euro_norm: str) -> Optional[int]:
    """Extract the numeric Euro stage from strings such as ``Euro 6d-FULL`` or ``EURO5``."""

    match = _EURO_DIGITS.search(euro_norm or "")
    return int(match.group(1)) if match else None


def _registration_year(registration_date: str) -> Optional[int]:
    try:
        return date.fromisoformat(registration_date[:10]).year
    except (TypeError, ValueError):
        return None


def classify(fuel: str, euro: Optional[int], registration_year: Optional[int]) -> Classification:
    """Return ``(level, colour)``; the registration year is used when the Euro norm is unknown."""

    if fuel == "electric":
        return "0", "vert"

    if fuel == "petrol":
        if euro is not None:
            if euro >= 5:
                return "1", "violet"
            if euro == 4:
                return "2", "jaune"
            if euro in (2, 3):
                return "3", "orange"
        year = registration_year or 0
        if year >= 2011:
            return "1", "violet"
        if year >= 2006:
            return "2", "jaune"
        if year >= 1997:
            return "3", "orange"
        return "non-classe", "gris"

    if fuel == "diesel":
        if euro is not None:
            if euro >= 6:
                return "2", "jaune"
            if euro in (4, 5):
                return "3", "orange"
            if euro == 3:
                return "4", "bordeaux"
            if euro == 2:
                return "5", "gris"
        year = registration_year or 0
        if year >= 2011:
            return "2", "jaune"
        if year >= 2006:
            return "3", "orange"
        if year >= 2001:
            return "4", "bordeaux"
        if year >= 1997:
            return "5", "gris"
        return "non-classe", "gris"

    return "non-classe", "gris"


@dataclass(slots=True)
class LocalCritAirCalculator:
    provider_name: str = "local-critair"
    provider_version: str = "1.0.0"

    def calculate(self, request: CritAirRequest) -> CritAirResponse:
        level, colour = classify(
            normalise_fuel(request.fuel_type),
            parse_euro_norm(request.euro_norm),
            _registration_year(request.registration_date),
        )
        return CritAirResponse(
            level=level,
            label=CRITAIR_LABELS[level],
            color=colour,
            provider=ProviderInfo(self.provider_name, self.provider_version),
        )

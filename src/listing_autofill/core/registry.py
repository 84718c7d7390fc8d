"""
Provider registrations and the runtime configuration snapshot.

Administrators bind a provider key (``ademe``, ``nhtsa``, ``mock.emission`` …)
to a capability and toggle which binding is active. The orchestration layer only
ever reads this snapshot: :meth:`ConfigurationSnapshot.get_active_registration`
answers "which provider serves this capability right now" and
:meth:`ConfigurationSnapshot.get_tunable` exposes free-form parameters such as
the cache TTL.

Snapshots can be loaded from YAML documents so operators can edit provider
bindings without touching Python code. Callers that mutate registrations at
runtime must invalidate the capability resolver afterwards.
"""

from __future__ import annotations

import json
import threading
from dataclasses import dataclass, replace
from enum import Enum
from pathlib import Path
from typing import Dict, Iterator, List, Mapping, MutableMapping, Optional

import yaml


class ConfigurationLoadError(RuntimeError):
    """Raised when a provider configuration document cannot be parsed or validated."""


class Capability(str, Enum):
    """Abstract data-fetching contracts served by interchangeable providers."""

    VEHICLE_LOOKUP = "vehicle_lookup"
    EMISSION = "emission"
    RECALL = "recall"
    LOW_EMISSION = "low_emission"
    VIN_DECODE = "vin_decode"
    IDENTITY = "identity"
    BLOB_STORAGE = "blob_storage"


class ProviderStatus(str, Enum):
    """Activation state of a provider registration."""

    ACTIVE = "active"
    INACTIVE = "inactive"


@dataclass(slots=True, frozen=True)
class ProviderRegistration:
    """
    Admin-configured binding of a provider key to a capability.

    Parameters
    ----------
    key:
        Provider key looked up in the dispatch table (e.g. ``rappelconso``).
    capability:
        Capability this provider serves.
    status:
        Only ``active`` registrations are considered during resolution.
    cost_per_call:
        Unit cost recorded with every instrumented call.
    name:
        Optional display name.
    base_url:
        Optional endpoint override handed to HTTP-backed providers.
    """

    key: str
    capability: Capability
    status: ProviderStatus = ProviderStatus.INACTIVE
    cost_per_call: float = 0.0
    name: Optional[str] = None
    base_url: Optional[str] = None

    @property
    def active(self) -> bool:
        return self.status == ProviderStatus.ACTIVE

    def validate(self) -> None:
        if not self.key or not self.key.strip():
            raise ConfigurationLoadError("Provider registration is missing a key.")
        if self.cost_per_call < 0:
            raise ConfigurationLoadError(f"Provider '{self.key}' has a negative cost_per_call.")

    def to_dict(self) -> Dict[str, object]:
        return {
            "key": self.key,
            "capability": self.capability.value,
            "status": self.status.value,
            "cost_per_call": self.cost_per_call,
            "name": self.name,
            "base_url": self.base_url,
        }


class ConfigurationSnapshot:
    """
    In-memory view of provider registrations and tunables.

    Registrations are stored per ``(capability, key)``. Reads and writes are
    guarded by a lock so a concurrent reader never observes a half-applied
    update; each write swaps whole immutable registrations.
    """

    def __init__(
        self,
        registrations: Optional[List[ProviderRegistration]] = None,
        tunables: Optional[Mapping[str, str]] = None,
    ) -> None:
        self._lock = threading.RLock()
        self._registrations: MutableMapping[tuple[Capability, str], ProviderRegistration] = {}
        self._tunables: Dict[str, str] = {str(key): str(value) for key, value in (tunables or {}).items()}
        for registration in registrations or []:
            self.register(registration)

    def register(self, registration: ProviderRegistration) -> None:
        """Insert or replace a registration."""

        registration.validate()
        with self._lock:
            self._registrations[(registration.capability, registration.key)] = registration

    def activate(self, capability: Capability, key: str) -> ProviderRegistration:
        """
        Mark ``key`` as the active provider for ``capability``.

        Every other registration of the capability is deactivated so at most one
        provider is active at a time.
        """

        with self._lock:
            target = self._registrations.get((capability, key))
            if target is None:
                raise KeyError(f"Provider '{key}' is not registered for capability '{capability.value}'.")
            for (cap, other_key), registration in list(self._registrations.items()):
                if cap is capability and other_key != key and registration.active:
                    self._registrations[(cap, other_key)] = replace(registration, status=ProviderStatus.INACTIVE)
            activated = replace(target, status=ProviderStatus.ACTIVE)
            self._registrations[(capability, key)] = activated
            return activated

    def deactivate(self, capability: Capability, key: str) -> None:
        with self._lock:
            current = self._registrations.get((capability, key))
            if current is not None:
                self._registrations[(capability, key)] = replace(current, status=ProviderStatus.INACTIVE)

    def get_active_registration(self, capability: Capability) -> Optional[ProviderRegistration]:
        """Return the active registration for ``capability`` if any."""

        with self._lock:
            for (cap, _), registration in self._registrations.items():
                if cap is capability and registration.active:
                    return registration
        return None

    def get_tunable(self, key: str) -> Optional[str]:
        with self._lock:
            return self._tunables.get(key)

    def set_tunable(self, key: str, value: Optional[str]) -> None:
        with self._lock:
            if value is None:
                self._tunables.pop(key, None)
            else:
                self._tunables[key] = str(value)

    def registrations(self, capability: Optional[Capability] = None) -> List[ProviderRegistration]:
        with self._lock:
            items = list(self._registrations.values())
        if capability is not None:
            return [item for item in items if item.capability is capability]
        return items

    def __iter__(self) -> Iterator[ProviderRegistration]:
        return iter(self.registrations())

    def to_json(self) -> str:
        with self._lock:
            payload = {
                "providers": [item.to_dict() for item in self._registrations.values()],
                "tunables": dict(self._tunables),
            }
        return json.dumps(payload, ensure_ascii=False, indent=2)

    @classmethod
    def from_yaml(cls, path: Path | str) -> "ConfigurationSnapshot":
        """
        Load a snapshot from a YAML document.

        The document is a mapping with a ``providers`` list and an optional
        ``tunables`` mapping::

            providers:
              - key: ademe
                capability: emission
                status: active
                cost_per_call: 0
            tunables:
              API_CACHE_TTL_HOURS: "48"
        """

        location = Path(path)
        if not location.exists():
            raise ConfigurationLoadError(f"Provider configuration '{location}' does not exist.")

        try:
            with location.open("r", encoding="utf-8") as handle:
                payload = yaml.safe_load(handle)
        except yaml.YAMLError as exc:
            raise ConfigurationLoadError(f"Failed to parse '{location}': {exc}") from exc

        if not isinstance(payload, dict):
            raise ConfigurationLoadError(f"Provider configuration '{location}' must be a mapping.")

        providers = payload.get("providers") or []
        if not isinstance(providers, list):
            raise ConfigurationLoadError(f"'providers' in '{location}' must be a list.")

        tunables = payload.get("tunables") or {}
        if not isinstance(tunables, dict):
            raise ConfigurationLoadError(f"'tunables' in '{location}' must be a mapping.")

        registrations = [_registration_from_payload(entry, origin=location) for entry in providers]
        return cls(registrations=registrations, tunables={str(k): str(v) for k, v in tunables.items()})


def _registration_from_payload(entry: object, *, origin: Path) -> ProviderRegistration:
    if not isinstance(entry, dict):
        raise ConfigurationLoadError(f"Invalid provider entry in '{origin}': expected mapping, got {type(entry)!r}")

    try:
        registration = ProviderRegistration(
            key=str(entry["key"]),
            capability=Capability(str(entry["capability"])),
            status=ProviderStatus(str(entry.get("status", ProviderStatus.INACTIVE.value))),
            cost_per_call=float(entry.get("cost_per_call", 0) or 0),
            name=_optional_str(entry.get("name")),
            base_url=_optional_str(entry.get("base_url")),
        )
    except KeyError as exc:
        raise ConfigurationLoadError(f"Missing required key {exc!s} in '{origin}'.") from exc
    except ValueError as exc:
        raise ConfigurationLoadError(f"Invalid field in '{origin}': {exc}") from exc

    registration.validate()
    return registration


def _optional_str(value: object | None) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None

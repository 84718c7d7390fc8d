"""
Capability resolution with memoization, fallback, and test overrides.

:class:`CapabilityResolver` turns a :class:`~listing_autofill.core.registry.Capability`
into a ready-to-call provider. The active registration is read from the
configuration snapshot, its key is looked up in the static dispatch table, and
the built instance is wrapped with instrumentation before being memoized.
Capabilities that define a fallback never fail to resolve: an unusable
configuration degrades to the deterministic mock provider at zero cost.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Callable, Dict, Mapping, Optional

from ..adapters.base import (
    BlobStorage,
    EmissionProvider,
    IdentityProvider,
    LowEmissionClassifier,
    RecallProvider,
    VehicleLookupProvider,
    VinDecodeProvider,
)
from ..adapters.catalog import FALLBACK_KEYS, PROVIDER_FACTORIES
from ..config import AutofillSettings
from .instrumentation import Instrumentation, wrap_provider
from .logging import get_logger
from .registry import Capability, ConfigurationSnapshot, ProviderRegistration

NO_ACTIVE_PROVIDER = "no-active-provider"
PROVIDER_NOT_IMPLEMENTED = "provider-not-implemented"


class ConfigurationError(RuntimeError):
    """Raised when a capability has no usable provider and no fallback."""

    def __init__(self, capability: Capability, reason: str, provider_key: Optional[str] = None) -> None:
        self.capability = capability
        self.reason = reason
        self.provider_key = provider_key
        if reason == NO_ACTIVE_PROVIDER:
            detail = "no active provider registered"
        else:
            detail = f"active provider '{provider_key}' is not implemented"
        super().__init__(f"No active provider found for capability '{capability.value}' ({detail}).")


@dataclass(slots=True, frozen=True)
class Resolution:
    """How a capability currently resolves."""

    capability: Capability
    provider_key: Optional[str]
    fallback: bool
    overridden: bool = False
    reason: Optional[str] = None


@dataclass(slots=True, frozen=True)
class _Resolved:
    instance: object
    resolution: Resolution


class CapabilityResolver:
    """
    Resolve capabilities to instrumented provider instances.

    Parameters
    ----------
    snapshot:
        Configuration snapshot consulted for the active registration.
    instrumentation:
        Wrapper applied to every built provider.
    settings:
        Deployment settings handed to provider factories.
    factories:
        Dispatch table ``capability -> provider key -> factory``. Defaults to
        :data:`listing_autofill.adapters.catalog.PROVIDER_FACTORIES`.
    fallbacks:
        Fallback provider key per capability (``None`` when there is none).
    """

    def __init__(
        self,
        snapshot: ConfigurationSnapshot,
        *,
        instrumentation: Optional[Instrumentation] = None,
        settings: Optional[AutofillSettings] = None,
        factories: Optional[Mapping[Capability, Mapping[str, Callable[..., object]]]] = None,
        fallbacks: Optional[Mapping[Capability, Optional[str]]] = None,
    ) -> None:
        self.snapshot = snapshot
        self.instrumentation = instrumentation or Instrumentation()
        self.settings = settings or AutofillSettings()
        self._factories = factories if factories is not None else PROVIDER_FACTORIES
        self._fallbacks = fallbacks if fallbacks is not None else FALLBACK_KEYS
        self._lock = threading.RLock()
        self._memo: Dict[Capability, _Resolved] = {}
        self._overrides: Dict[Capability, object] = {}
        self._generations: Dict[Capability, int] = {}
        self._served: Dict[Capability, str] = {}
        self._logger = get_logger(self.__class__.__name__)

    # -- Core contract ------------------------------------------------------

    def resolve(self, capability: Capability) -> object:
        """
        Return the implementation serving ``capability``.

        Raises
        ------
        ConfigurationError
            When neither the active registration nor a fallback can serve the
            capability.
        """

        return self._resolve(capability).instance

    def invalidate(self, capability: Optional[Capability] = None) -> None:
        """Drop the memoized instance for ``capability`` (or all of them)."""

        with self._lock:
            if capability is None:
                self._memo.clear()
            else:
                self._memo.pop(capability, None)
            self._advance(capability)
        self._logger.debug("Resolver cache invalidated", extra={"capability": capability.value if capability else "*"})

    def override(self, capability: Capability, instance: object) -> None:
        """Serve ``instance`` for ``capability`` until :meth:`reset` is called."""

        with self._lock:
            self._overrides[capability] = instance

    def reset(self, capability: Optional[Capability] = None) -> None:
        """Remove overrides and memoized instances for ``capability`` (or all)."""

        with self._lock:
            if capability is None:
                self._overrides.clear()
                self._memo.clear()
            else:
                self._overrides.pop(capability, None)
                self._memo.pop(capability, None)
            self._advance(capability)

    def describe(self, capability: Capability) -> Resolution:
        """Resolve ``capability`` and report which provider key serves it."""

        return self._resolve(capability).resolution

    # -- Typed accessors ----------------------------------------------------

    def vehicle_lookup(self) -> VehicleLookupProvider:
        return self.resolve(Capability.VEHICLE_LOOKUP)  # type: ignore[return-value]

    def emission(self) -> EmissionProvider:
        return self.resolve(Capability.EMISSION)  # type: ignore[return-value]

    def recall(self) -> RecallProvider:
        return self.resolve(Capability.RECALL)  # type: ignore[return-value]

    def low_emission(self) -> LowEmissionClassifier:
        return self.resolve(Capability.LOW_EMISSION)  # type: ignore[return-value]

    def vin_decode(self) -> VinDecodeProvider:
        return self.resolve(Capability.VIN_DECODE)  # type: ignore[return-value]

    def identity(self) -> IdentityProvider:
        return self.resolve(Capability.IDENTITY)  # type: ignore[return-value]

    def blob_storage(self) -> BlobStorage:
        return self.resolve(Capability.BLOB_STORAGE)  # type: ignore[return-value]

    # -- Internals ----------------------------------------------------------

    def _resolve(self, capability: Capability) -> _Resolved:
        while True:
            with self._lock:
                override = self._overrides.get(capability)
                if override is not None:
                    return _Resolved(override, Resolution(capability, None, fallback=False, overridden=True))
                cached = self._memo.get(capability)
                if cached is not None:
                    return cached
                generation = self._generations.get(capability, 0)

            resolved = self._build(capability)

            with self._lock:
                if self._generations.get(capability, 0) != generation:
                    # Invalidated while building; the registration read may be stale.
                    continue
                # Another thread may have memoized first; keep a single instance.
                existing = self._memo.get(capability)
                if existing is not None:
                    return existing
                self._memo[capability] = resolved
                replaced = self._served.get(capability)
                self._served[capability] = resolved.resolution.provider_key
            if replaced is not None and replaced != resolved.resolution.provider_key:
                self._forget_failures(capability, replaced)
            return resolved

    def _advance(self, capability: Optional[Capability]) -> None:
        targets = list(Capability) if capability is None else [capability]
        for item in targets:
            self._generations[item] = self._generations.get(item, 0) + 1

    def _forget_failures(self, capability: Capability, provider_key: str) -> None:
        self.instrumentation.tracker.reset(provider_key)
        self._logger.info(
            "Provider switched, failure history cleared",
            extra={"capability": capability.value, "provider_key": provider_key},
        )

    def _build(self, capability: Capability) -> _Resolved:
        registration = self.snapshot.get_active_registration(capability)
        available = self._factories.get(capability, {})

        if registration is not None and registration.key in available:
            instance = self._instantiate(capability, registration.key, registration, registration.cost_per_call)
            self._logger.info(
                "Resolved provider",
                extra={"capability": capability.value, "provider_key": registration.key, "cost": registration.cost_per_call},
            )
            return _Resolved(instance, Resolution(capability, registration.key, fallback=False))

        reason = NO_ACTIVE_PROVIDER if registration is None else PROVIDER_NOT_IMPLEMENTED
        fallback_key = self._fallbacks.get(capability)
        if fallback_key is None:
            raise ConfigurationError(capability, reason, registration.key if registration else None)

        self._logger.warning(
            "Falling back to mock provider",
            extra={"capability": capability.value, "provider_key": fallback_key, "status": reason},
        )
        instance = self._instantiate(capability, fallback_key, None, 0.0)
        return _Resolved(instance, Resolution(capability, fallback_key, fallback=True, reason=reason))

    def _instantiate(
        self,
        capability: Capability,
        provider_key: str,
        registration: Optional[ProviderRegistration],
        cost_per_call: float,
    ) -> object:
        factory = self._factories[capability][provider_key]
        instance = factory(registration, self.settings)
        return wrap_provider(
            instance,
            capability=capability,
            provider_key=provider_key,
            cost_per_call=cost_per_call,
            instrumentation=self.instrumentation,
        )

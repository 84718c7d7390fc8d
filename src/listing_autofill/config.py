"""
Deployment settings for provider adapters.

Settings are loaded from ``.secrets/settings.toml`` by default. The lookup order is:

1. Explicit ``AUTOFILL_SETTINGS_PATH`` environment variable.
2. Project-relative ``.secrets/settings.toml`` (from CWD and the package root).
3. Fallback to ``.secrets/settings.example.toml`` for scaffolding values.

The document holds per-provider endpoint overrides and local storage paths::

    [providers.ademe]
    base_url = "https://data.ademe.fr/data-fair/api/v1/datasets/ademe-car-labelling"
    timeout = 15

    [blob]
    root = "/var/lib/listing-autofill/blobs"

Which provider is *active* is not a deployment setting; see
:mod:`listing_autofill.core.registry`.
"""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, Optional

_ENV_PATH = "AUTOFILL_SETTINGS_PATH"


@dataclass(slots=True, frozen=True)
class EndpointSettings:
    """Endpoint overrides for one provider key."""

    base_url: Optional[str] = None
    timeout: Optional[float] = None


@dataclass(slots=True)
class AutofillSettings:
    """Parsed settings document."""

    source_path: Optional[Path] = None
    data: Dict[str, object] = field(default_factory=dict)
    endpoints: Dict[str, EndpointSettings] = field(default_factory=dict)
    blob_root: Optional[Path] = None

    def endpoint(self, provider_key: str) -> EndpointSettings:
        return self.endpoints.get(provider_key, EndpointSettings())


def _discover_project_root() -> Optional[Path]:
    current = Path(__file__).resolve()
    for parent in current.parents:
        if (parent / "pyproject.toml").is_file():
            return parent
    return None


def _candidate_paths() -> Iterable[Path]:
    env_override = os.getenv(_ENV_PATH)
    if env_override:
        yield Path(env_override).expanduser()

    roots = [Path.cwd()]
    project_root = _discover_project_root()
    if project_root and project_root not in roots:
        roots.append(project_root)

    for base in roots:
        yield base / ".secrets" / "settings.toml"
    for base in roots:
        yield base / ".secrets" / "settings.example.toml"


def _extract_endpoints(raw: Dict[str, object]) -> Dict[str, EndpointSettings]:
    section = raw.get("providers", {})
    if not isinstance(section, dict):
        return {}

    endpoints: Dict[str, EndpointSettings] = {}
    for key, values in section.items():
        if not isinstance(values, dict):
            continue
        base_url = values.get("base_url")
        timeout = values.get("timeout")
        endpoints[str(key)] = EndpointSettings(
            base_url=str(base_url) if isinstance(base_url, str) and base_url else None,
            timeout=float(timeout) if isinstance(timeout, (int, float)) and timeout > 0 else None,
        )
    return endpoints


def _extract_blob_root(raw: Dict[str, object]) -> Optional[Path]:
    section = raw.get("blob", {})
    if isinstance(section, dict):
        root = section.get("root")
        if isinstance(root, str) and root:
            return Path(root).expanduser()
    return None


def parse_settings(raw: Dict[str, object], *, source_path: Optional[Path] = None) -> AutofillSettings:
    return AutofillSettings(
        source_path=source_path,
        data=raw,
        endpoints=_extract_endpoints(raw),
        blob_root=_extract_blob_root(raw),
    )


def load_settings(strict: bool = False) -> AutofillSettings:
    """
    Attempt to load settings from the configured locations.

    Parameters
    ----------
    strict:
        When ``True`` raise ``FileNotFoundError`` if no settings file is found.
        Defaults to ``False`` so development runs work with built-in defaults.
    """

    for path in _candidate_paths():
        if path.is_file():
            with path.open("rb") as handle:
                return parse_settings(tomllib.load(handle), source_path=path)

    if strict:
        raise FileNotFoundError(f"No settings file found. Configure {_ENV_PATH} or .secrets/settings.toml.")

    return AutofillSettings()

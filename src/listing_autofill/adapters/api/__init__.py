"""
HTTP clients and adapters for the free public vehicle data APIs.

Each submodule exposes two layers:

* ``Client`` classes wrap low-level HTTP calls with bounded retries.
* ``Adapter`` classes implement a capability contract from
  :mod:`listing_autofill.adapters.base` on top of the client.
"""

from .ademe import AdemeClient, AdemeEmissionAdapter
from .base import APIError, BaseAPIClient
from .nhtsa import NhtsaClient, NhtsaVinDecodeAdapter
from .rappelconso import RappelConsoClient, RappelConsoRecallAdapter

__all__ = [
    "AdemeClient",
    "AdemeEmissionAdapter",
    "APIError",
    "BaseAPIClient",
    "NhtsaClient",
    "NhtsaVinDecodeAdapter",
    "RappelConsoClient",
    "RappelConsoRecallAdapter",
]

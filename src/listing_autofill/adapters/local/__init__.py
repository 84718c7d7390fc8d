"""Providers that run in-process without calling external services."""

from .blob import LocalBlobStorage
from .critair import LocalCritAirCalculator

__all__ = ["LocalBlobStorage", "LocalCritAirCalculator"]

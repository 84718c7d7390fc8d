from __future__ import annotations

from datetime import UTC, datetime, timedelta
from importlib import resources
from pathlib import Path

import pytest
from typer.testing import CliRunner

from listing_autofill.cli.main import app
from listing_autofill.config import AutofillSettings
from listing_autofill.core.cache import ResponseCache
from listing_autofill.core.instrumentation import FailureTracker, InMemoryAlertSink, InMemoryCallLog, Instrumentation
from listing_autofill.core.logging import configure_logging
from listing_autofill.core.registry import ConfigurationSnapshot
from listing_autofill.core.resolver import CapabilityResolver
from listing_autofill.services import AutofillService

# Bind the root handler to the session's stderr before any CliRunner swaps the streams.
configure_logging()


class FakeClock:
    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 6, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> None:
        self.now = self.now + timedelta(**delta)


@pytest.fixture(scope="session")
def providers_file() -> Path:
    providers_pkg = "listing_autofill.resources.providers"
    with resources.as_file(resources.files(providers_pkg) / "default.yaml") as ref:
        return Path(ref)


@pytest.fixture()
def snapshot(providers_file) -> ConfigurationSnapshot:
    return ConfigurationSnapshot.from_yaml(providers_file)


@pytest.fixture()
def alert_sink() -> InMemoryAlertSink:
    return InMemoryAlertSink()


@pytest.fixture()
def call_log() -> InMemoryCallLog:
    return InMemoryCallLog()


@pytest.fixture()
def instrumentation(call_log, alert_sink) -> Instrumentation:
    return Instrumentation(call_log=call_log, tracker=FailureTracker(alert_sink))


@pytest.fixture()
def resolver(snapshot, instrumentation) -> CapabilityResolver:
    return CapabilityResolver(snapshot, instrumentation=instrumentation, settings=AutofillSettings())


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def cache(snapshot, clock) -> ResponseCache:
    return ResponseCache(config=snapshot, clock=clock)


@pytest.fixture()
def service(resolver, cache) -> AutofillService:
    return AutofillService(resolver=resolver, cache=cache)


@pytest.fixture()
def cli_runner() -> CliRunner:
    return CliRunner()


@pytest.fixture()
def cli_app():
    return app

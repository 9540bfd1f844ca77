"""Pytest configuration and fixtures."""

from __future__ import annotations

from typing import Callable

import httpx
import pytest

from governance_sdk import ClientConfig, GovernanceClient, reset_client, reset_config
from fake_gateway import TEST_TOKEN, FakeGateway
from factories import ScriptedServer


class FakeClock:
    """Monotonic clock that only advances when sleep() is called."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []
        self.on_sleep: Callable[[], None] | None = None

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        if self.on_sleep is not None:
            self.on_sleep()


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Isolate every test from GOVERNANCE_* env vars and the process defaults."""
    for name in (
        "GOVERNANCE_BASE_URL",
        "GOVERNANCE_GATEWAY_URL",
        "GOVERNANCE_TOKEN",
        "GOVERNANCE_API_KEY",
        "GOVERNANCE_TIMEOUT_SECONDS",
        "GOVERNANCE_RETRIES",
        "GOVERNANCE_RETRY_BACKOFF",
    ):
        monkeypatch.delenv(name, raising=False)
    reset_client()
    reset_config()
    yield
    reset_client()
    reset_config()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def config() -> ClientConfig:
    return ClientConfig(
        base_url="http://governor.test/",
        token="test-token",
        timeout=5.0,
        max_retries=2,
        retry_backoff_factor=0.5,
    )


@pytest.fixture
def make_client(config, clock):
    """Build a GovernanceClient whose HTTP traffic is answered by a script.

    Usage: ``client, server = make_client(respond(200, body), ...)``.
    Keyword arguments override fields of the ``config`` fixture.
    """
    http_clients: list[httpx.Client] = []

    def factory(*items, **overrides):
        server = ScriptedServer(items)
        cfg = config.model_copy(update=overrides) if overrides else config
        http = httpx.Client(transport=httpx.MockTransport(server))
        http_clients.append(http)
        client = GovernanceClient(cfg, http_client=http, sleep=clock.sleep, clock=clock)
        return client, server

    yield factory
    for http in http_clients:
        http.close()


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def gateway_client(gateway, clock):
    """GovernanceClient wired to the in-process fake gateway."""
    from fastapi.testclient import TestClient

    with TestClient(gateway.app) as http:
        cfg = ClientConfig(base_url="http://testserver", token=TEST_TOKEN, max_retries=0)
        yield GovernanceClient(cfg, http_client=http, sleep=clock.sleep, clock=clock)

"""Shared fixtures: in-memory DB, fake gateway transport, fake time."""

import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("LIPILA_MOCK_MODE", "true")
os.environ.setdefault("LIPILA_SECRET_KEY", "LPLSECK-test-0000000000000000")

import httpx
import pytest

from paygate.common.config import GatewayConfig
from paygate.common.db import Base, build_engine, build_session_factory
from paygate.services.gateway.client import GatewayClient
from paygate.services.subscriptions import models  # noqa: F401  registers tables

SECRET = "sk-test-secret-value-123456"


class FakeClock:
    """Monotonic clock advanced only by `FakeSleep`."""

    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class FakeSleep:
    """Records requested delays instead of waiting."""

    def __init__(self, clock: FakeClock | None = None) -> None:
        self.clock = clock
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)
        if self.clock is not None:
            self.clock.now += seconds


def strategy_of(request: httpx.Request) -> str:
    """Name the auth strategy a request was decorated with."""

    if "x-api-key" in request.headers:
        return "API Key Header"
    if "x-lipila-key" in request.headers:
        return "Custom Header"
    auth = request.headers.get("authorization", "")
    if auth.startswith("Bearer "):
        return "Bearer Token"
    if auth:
        return "Authorization Header"
    return "none"


class FakeGateway:
    """Scripted `httpx.MockTransport` handler that records every request."""

    def __init__(self, handler) -> None:
        self.handler = handler
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.handler(request)

    @property
    def calls(self) -> int:
        return len(self.requests)


@pytest.fixture
def gateway_config() -> GatewayConfig:
    return GatewayConfig(secret_key=SECRET, base_url="https://gateway.test", retry_delay_seconds=2.0)


@pytest.fixture
def fake_sleep() -> FakeSleep:
    return FakeSleep()


@pytest.fixture
def make_client(gateway_config, fake_sleep):
    """Build a `GatewayClient` whose HTTP layer is a `FakeGateway`."""

    def _make(handler, config: GatewayConfig | None = None) -> tuple[GatewayClient, FakeGateway]:
        gateway = FakeGateway(handler)
        http = httpx.AsyncClient(transport=httpx.MockTransport(gateway))
        return GatewayClient(config or gateway_config, http=http, sleep=fake_sleep), gateway

    return _make


@pytest.fixture
def session_factory():
    engine = build_engine("sqlite://")
    Base.metadata.create_all(engine)
    yield build_session_factory(engine)
    engine.dispose()

import asyncio

import httpx
import pytest

from common_client import ClientConfig, ResilientClient


class FakeClock:
    """Monotonic clock that only moves when something sleeps on it."""

    def __init__(self, start: float = 0.0):
        self.now = start
        self.sleeps = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        await asyncio.sleep(0)


class ScriptedBackend:
    """MockTransport handler that replays a list of responses and records requests."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, Exception):
            raise response
        return response

    @property
    def calls(self) -> int:
        return len(self.requests)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_client(clock):
    def factory(handler, **overrides):
        settings = {
            "base_url": "http://sonarr.local:8989",
            "credential": "secret-key",
            "service_name": "Sonarr",
            "api_prefix": "/api/v3",
            "requests_per_second": 10,
        }
        settings.update(overrides)
        client = ResilientClient(
            ClientConfig(**settings),
            transport=httpx.MockTransport(handler),
            clock=clock,
            sleep=clock.sleep,
        )
        return client

    return factory

import asyncio
import json
import time
from typing import List

import httpx
import pytest
from pydantic import BaseModel, ValidationError

from common_client import AuthScheme, ClientConfig, RequestSpec, ResilientClient
from errors import ClassifiedError, ErrorKind

from conftest import ScriptedBackend


class Series(BaseModel):
    id: int
    title: str


# -- configuration --


def test_config_defaults():
    config = ClientConfig(base_url="http://radarr.local/", credential="key")
    assert config.base_url == "http://radarr.local"
    assert config.timeout_ms == 30000
    assert config.max_retries == 3
    assert config.requests_per_second == 2
    assert config.auth_scheme is AuthScheme.HEADER


@pytest.mark.parametrize(
    "overrides",
    [
        {"credential": ""},
        {"credential": "   "},
        {"base_url": ""},
        {"timeout_ms": 0},
        {"max_retries": -1},
        {"requests_per_second": 0},
    ],
)
def test_config_rejects_invalid_values(overrides):
    settings = {"base_url": "http://radarr.local", "credential": "key", **overrides}
    with pytest.raises(ValidationError):
        ClientConfig(**settings)


def test_config_is_immutable():
    config = ClientConfig(base_url="http://radarr.local", credential="key")
    with pytest.raises(ValidationError):
        config.max_retries = 10


@pytest.mark.parametrize(
    "method, expected",
    [("GET", True), ("head", True), ("OPTIONS", True), ("POST", False), ("PUT", False), ("DELETE", False)],
)
def test_request_spec_retry_defaults_follow_method(method, expected):
    assert RequestSpec(path="series", method=method).allows_retry is expected


def test_request_spec_explicit_retry_wins():
    assert RequestSpec(path="command", method="POST", retry=True).allows_retry
    assert not RequestSpec(path="series", retry=False).allows_retry


# -- request construction --


async def test_builds_url_and_query(make_client):
    backend = ScriptedBackend(httpx.Response(200, json=[]))
    client = make_client(backend)

    await client.execute("/series/lookup", params={"term": "The Bear", "includeImages": False, "page": None})

    request = backend.requests[0]
    assert request.method == "GET"
    assert request.url.path == "/api/v3/series/lookup"
    assert request.url.params["term"] == "The Bear"
    assert request.url.params["includeImages"] == "false"
    assert "page" not in request.url.params


async def test_sends_json_body(make_client):
    backend = ScriptedBackend(httpx.Response(201, json={"id": 7, "title": "The Bear"}))
    client = make_client(backend)

    result = await client.execute("series", "POST", json_data={"title": "The Bear"})

    assert result == {"id": 7, "title": "The Bear"}
    assert backend.requests[0].method == "POST"
    assert json.loads(backend.requests[0].content) == {"title": "The Bear"}


@pytest.mark.parametrize(
    "scheme, name, check",
    [
        (AuthScheme.HEADER, "X-Api-Key", lambda r: r.headers["X-Api-Key"] == "secret-key"),
        (AuthScheme.HEADER, "X-Gotify-Key", lambda r: r.headers["X-Gotify-Key"] == "secret-key"),
        (AuthScheme.BEARER, "Authorization", lambda r: r.headers["Authorization"] == "Bearer secret-key"),
        (AuthScheme.COOKIE, "SID", lambda r: r.headers["Cookie"] == "SID=secret-key"),
        (AuthScheme.QUERY, "apikey", lambda r: r.url.params["apikey"] == "secret-key"),
    ],
)
async def test_auth_schemes(make_client, scheme, name, check):
    backend = ScriptedBackend(httpx.Response(200, json={}))
    client = make_client(backend, auth_scheme=scheme, auth_name=name)

    await client.execute("system/status", params={"extra": 1})

    assert check(backend.requests[0])


async def test_query_auth_is_merged_with_call_params(make_client):
    backend = ScriptedBackend(httpx.Response(200, json={}))
    client = make_client(backend, api_prefix="/api", auth_scheme=AuthScheme.QUERY, auth_name="apikey")

    await client.execute("", params={"mode": "queue", "output": "json"})

    params = backend.requests[0].url.params
    assert backend.requests[0].url.path == "/api"
    assert params["apikey"] == "secret-key"
    assert params["mode"] == "queue"


# -- responses --


async def test_empty_response_returns_none(make_client):
    client = make_client(ScriptedBackend(httpx.Response(204)))
    assert await client.execute("queue/3", "DELETE") is None


async def test_response_model_validates_body(make_client):
    client = make_client(ScriptedBackend(httpx.Response(200, json=[{"id": 1, "title": "Severance"}])))

    series = await client.execute("series", response_model=List[Series])

    assert series == [Series(id=1, title="Severance")]


async def test_response_model_mismatch_is_network_error(make_client):
    backend = ScriptedBackend(httpx.Response(200, json={"unexpected": True}))
    client = make_client(backend)

    with pytest.raises(ClassifiedError) as exc:
        await client.execute("series/1", response_model=Series)

    assert exc.value.kind is ErrorKind.NETWORK
    assert backend.calls == 1


async def test_malformed_json_is_network_error_without_retry(make_client):
    backend = ScriptedBackend(httpx.Response(200, text="<html>login</html>"))
    client = make_client(backend)

    with pytest.raises(ClassifiedError) as exc:
        await client.execute("series")

    assert exc.value.kind is ErrorKind.NETWORK
    assert not exc.value.transient
    assert backend.calls == 1


async def test_undecodable_body_is_network_error_without_retry(make_client):
    body = httpx.ByteStream(b"not gzip at all")
    backend = ScriptedBackend(httpx.Response(200, headers={"Content-Encoding": "gzip"}, stream=body))
    client = make_client(backend)

    with pytest.raises(ClassifiedError) as exc:
        await client.execute("series")

    assert exc.value.kind is ErrorKind.NETWORK
    assert not exc.value.transient
    assert backend.calls == 1


# -- retries --


async def test_recovers_after_two_server_errors(make_client, clock):
    backend = ScriptedBackend(
        httpx.Response(500),
        httpx.Response(500),
        httpx.Response(200, json={"id": 1}),
    )
    client = make_client(backend, timeout_ms=1000, max_retries=2, requests_per_second=10)

    result = await client.execute("series/1")

    assert result == {"id": 1}
    assert backend.calls == 3
    assert clock.sleeps == [2.0, 4.0]


async def test_not_found_fails_after_one_attempt(make_client, clock):
    backend = ScriptedBackend(httpx.Response(404))
    client = make_client(backend)

    with pytest.raises(ClassifiedError) as exc:
        await client.execute("series/999")

    assert exc.value.kind is ErrorKind.NOT_FOUND
    assert exc.value.endpoint == "series/999"
    assert backend.calls == 1
    assert clock.sleeps == []


async def test_unauthorized_is_never_retried(make_client):
    backend = ScriptedBackend(httpx.Response(401))
    client = make_client(backend, max_retries=5)

    with pytest.raises(ClassifiedError) as exc:
        await client.execute("series")

    assert exc.value.kind is ErrorKind.UNAUTHORIZED
    assert backend.calls == 1


async def test_service_unavailable_exhausts_retry_budget(make_client, clock):
    backend = ScriptedBackend(httpx.Response(503))
    client = make_client(backend, max_retries=3)

    with pytest.raises(ClassifiedError) as exc:
        await client.execute("series")

    assert exc.value.kind is ErrorKind.SERVER_ERROR
    assert exc.value.status_code == 503
    assert backend.calls == 4
    # No wait after the final attempt.
    assert clock.sleeps == [2.0, 4.0, 5.0]


async def test_rate_limited_waits_retry_after(make_client, clock):
    backend = ScriptedBackend(
        httpx.Response(429, headers={"Retry-After": "5"}),
        httpx.Response(200, json={"ok": True}),
    )
    client = make_client(backend)

    assert await client.execute("series") == {"ok": True}
    assert clock.sleeps == [5.0]


async def test_rate_limit_wait_does_not_grow_backoff(make_client, clock):
    backend = ScriptedBackend(
        httpx.Response(429, headers={"Retry-After": "3"}),
        httpx.Response(500),
        httpx.Response(200, json=[]),
    )
    client = make_client(backend)

    await client.execute("queue")

    assert clock.sleeps == [3.0, 2.0]


async def test_mutating_call_is_not_retried_on_server_error(make_client):
    backend = ScriptedBackend(httpx.Response(500), httpx.Response(201, json={"id": 3}))
    client = make_client(backend)

    with pytest.raises(ClassifiedError):
        await client.execute("series", "POST", json_data={"title": "The Bear"})

    assert backend.calls == 1


async def test_mutating_call_is_retried_on_rate_limit(make_client):
    backend = ScriptedBackend(httpx.Response(429), httpx.Response(201, json={"id": 3}))
    client = make_client(backend)

    assert await client.execute("series", "POST", json_data={"title": "The Bear"}) == {"id": 3}
    assert backend.calls == 2


async def test_mutating_call_can_opt_into_retries(make_client):
    backend = ScriptedBackend(httpx.Response(502), httpx.Response(201, json={"id": 3}))
    client = make_client(backend)

    assert await client.execute("command", "POST", json_data={"name": "RefreshSeries"}, retry=True) == {"id": 3}
    assert backend.calls == 2


async def test_connection_failure_is_network_error(make_client, clock):
    backend = ScriptedBackend(httpx.ConnectError("connection refused"))
    client = make_client(backend, max_retries=2)

    with pytest.raises(ClassifiedError) as exc:
        await client.execute("series")

    assert exc.value.kind is ErrorKind.NETWORK
    assert isinstance(exc.value.__cause__, httpx.ConnectError)
    assert backend.calls == 3
    assert clock.sleeps == [2.0, 4.0]


async def test_rate_limiter_spaces_sequential_calls(make_client, clock):
    backend = ScriptedBackend(httpx.Response(200, json=[]))
    client = make_client(backend, requests_per_second=2)

    await client.execute("series")
    await client.execute("series")

    assert clock.sleeps == [0.5]


# -- timeouts --


async def test_hung_backend_times_out_at_deadline():
    cancelled = asyncio.Event()

    async def hang(request):
        try:
            await asyncio.sleep(30)
        except asyncio.CancelledError:
            cancelled.set()
            raise
        return httpx.Response(200, json={})

    config = ClientConfig(base_url="http://tautulli.local", credential="key", timeout_ms=500, max_retries=3)
    async with ResilientClient(config, transport=httpx.MockTransport(hang)) as client:
        started = time.monotonic()
        with pytest.raises(ClassifiedError) as exc:
            await client.execute("")
        elapsed = time.monotonic() - started

    assert exc.value.kind is ErrorKind.TIMEOUT
    assert exc.value.timeout_ms == 500
    assert 0.45 <= elapsed < 1.5
    assert cancelled.is_set()


async def test_httpx_timeout_is_classified_as_timeout(make_client):
    client = make_client(ScriptedBackend(httpx.ReadTimeout("read timed out")), timeout_ms=1000)

    with pytest.raises(ClassifiedError) as exc:
        await client.execute("series")

    assert exc.value.kind is ErrorKind.TIMEOUT
    assert exc.value.timeout_ms == 1000


async def test_per_call_timeout_overrides_client_timeout(make_client):
    backend = ScriptedBackend(httpx.Response(200, json={}))
    client = make_client(backend, timeout_ms=1000)

    await client.send(RequestSpec(path="series"), timeout_ms=60000)
    await client.send(RequestSpec(path="series"))

    assert backend.requests[0].extensions["timeout"]["read"] == 60.0
    assert backend.requests[1].extensions["timeout"]["read"] == 1.0


# -- connection checks --


async def test_test_connection(make_client):
    assert await make_client(ScriptedBackend(httpx.Response(200, json={}))).test_connection("system/status")
    assert not await make_client(ScriptedBackend(httpx.Response(404))).test_connection("system/status")


async def test_validate_credential(make_client):
    assert await make_client(ScriptedBackend(httpx.Response(200, json={}))).validate_credential("system/status")
    assert not await make_client(ScriptedBackend(httpx.Response(401))).validate_credential("system/status")

    failing = make_client(ScriptedBackend(httpx.Response(500)), max_retries=0)
    with pytest.raises(ClassifiedError):
        await failing.validate_credential("system/status")

"""
Shared client for calling media service REST APIs (Sonarr, Radarr, Prowlarr,
Overseerr, Gotify, qBittorrent, SABnzbd, Tautulli, TMDB).

One ResilientClient is built per configured backend and reused for the life
of the process. Every call goes through the same pipeline: wait for the rate
limiter, send with a deadline, classify the outcome, and retry when the
classification and the call allow it.
"""
import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator

from errors import ClassifiedError, ErrorKind, classify_response
from rate_limiter import RateLimiter
from retry_policy import RetryPolicy

logger = logging.getLogger(__name__)

IDEMPOTENT_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})


class AuthScheme(str, Enum):
    HEADER = "header"
    BEARER = "bearer"
    COOKIE = "cookie"
    QUERY = "query"


class ClientConfig(BaseModel):
    """Connection settings for one backend. Immutable once built."""

    model_config = ConfigDict(frozen=True)

    base_url: str
    credential: str
    timeout_ms: int = Field(30000, gt=0)
    max_retries: int = Field(3, ge=0)
    requests_per_second: float = Field(2, gt=0)
    auth_scheme: AuthScheme = AuthScheme.HEADER
    auth_name: str = "X-Api-Key"
    api_prefix: str = ""
    service_name: str = "service"

    @field_validator("base_url")
    @classmethod
    def _strip_base_url(cls, value: str) -> str:
        value = value.strip().rstrip("/")
        if not value:
            raise ValueError("base_url is required")
        return value

    @field_validator("credential")
    @classmethod
    def _require_credential(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("credential is required")
        return value.strip()

    @field_validator("api_prefix")
    @classmethod
    def _normalize_prefix(cls, value: str) -> str:
        value = value.strip().strip("/")
        return f"/{value}" if value else ""


@dataclass(frozen=True)
class RequestSpec:
    """One logical call. `retry=None` lets the HTTP method decide."""

    path: str
    method: str = "GET"
    headers: Mapping[str, str] = field(default_factory=dict)
    body: Any = None
    query: Optional[Mapping[str, Any]] = None
    retry: Optional[bool] = None

    @property
    def allows_retry(self) -> bool:
        if self.retry is not None:
            return self.retry
        return self.method.upper() in IDEMPOTENT_METHODS


class ResilientClient:
    def __init__(
        self,
        config: ClientConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.config = config
        self.rate_limiter = RateLimiter(config.requests_per_second, clock=clock, sleep=sleep)
        self.retry_policy = RetryPolicy(config.max_retries)
        self._sleep = sleep
        headers, params = self._auth_parts()
        headers["Content-Type"] = "application/json"
        headers["Accept"] = "application/json"
        self._http = httpx.AsyncClient(
            headers=headers,
            params=params,
            timeout=config.timeout_ms / 1000,
            transport=transport,
        )

    @property
    def service(self) -> str:
        return self.config.service_name

    def _auth_parts(self):
        credential = self.config.credential
        scheme = self.config.auth_scheme
        if scheme is AuthScheme.BEARER:
            return {"Authorization": f"Bearer {credential}"}, {}
        if scheme is AuthScheme.COOKIE:
            return {"Cookie": f"{self.config.auth_name}={credential}"}, {}
        if scheme is AuthScheme.QUERY:
            return {}, {self.config.auth_name: credential}
        return {self.config.auth_name: credential}, {}

    def url_for(self, path: str) -> str:
        root = f"{self.config.base_url}{self.config.api_prefix}"
        path = path.lstrip("/")
        return f"{root}/{path}" if path else root

    def _build_request(self, spec: RequestSpec, timeout_ms: int) -> httpx.Request:
        params = None
        if spec.query:
            params = {key: _query_value(value) for key, value in spec.query.items() if value is not None}
        return self._http.build_request(
            spec.method.upper(),
            self.url_for(spec.path),
            params=params,
            json=spec.body,
            headers=dict(spec.headers) or None,
            timeout=timeout_ms / 1000,
        )

    async def send(self, spec: RequestSpec, timeout_ms: Optional[int] = None, response_model: Any = None) -> Any:
        """Make exactly one attempt. Raises ClassifiedError on any failure."""
        timeout_ms = timeout_ms or self.config.timeout_ms
        await self.rate_limiter.acquire()
        request = self._build_request(spec, timeout_ms)
        logger.debug("Calling %s API: %s %s", self.service, request.method, request.url)

        try:
            response = await asyncio.wait_for(self._http.send(request), timeout=timeout_ms / 1000)
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            raise ClassifiedError.timeout(self.service, spec.path, timeout_ms) from e
        except httpx.DecodingError as e:
            # Body could not be decoded per its Content-Encoding.
            raise ClassifiedError.malformed(self.service, spec.path, e) from e
        except httpx.TransportError as e:
            raise ClassifiedError.network(self.service, spec.path, e) from e

        logger.debug("%s API response: %s", self.service, response.status_code)
        return self._parse_response(response, spec, response_model)

    def _parse_response(self, response: httpx.Response, spec: RequestSpec, response_model: Any) -> Any:
        if not response.is_success:
            raise classify_response(response, self.service, spec.path)

        # Handle successful empty responses (e.g., from DELETE)
        if response.status_code == 204 or not response.content:
            return None

        try:
            payload = response.json()
        except ValueError as e:
            raise ClassifiedError.malformed(self.service, spec.path, e, response.status_code) from e

        if response_model is None:
            return payload
        try:
            return TypeAdapter(response_model).validate_python(payload)
        except ValidationError as e:
            raise ClassifiedError.malformed(self.service, spec.path, e, response.status_code) from e

    async def run(self, spec: RequestSpec, response_model: Any = None) -> Any:
        """Send `spec`, retrying per the retry policy until it succeeds or gives up."""
        attempt = 0
        backoff_step = 0
        while True:
            attempt += 1
            try:
                return await self.send(spec, response_model=response_model)
            except ClassifiedError as error:
                if not self.retry_policy.should_retry(error, attempt, spec.allows_retry):
                    raise
                # Rate-limit waits do not grow the exponential backoff.
                if error.kind is not ErrorKind.RATE_LIMITED:
                    backoff_step += 1
                delay_ms = self.retry_policy.delay_ms(error, backoff_step)
                logger.debug(
                    "%s %s failed on attempt %d/%d (%s), retrying in %d ms",
                    self.service, spec.path, attempt, self.retry_policy.max_attempts, error.kind.value, delay_ms,
                )
                await self._sleep(delay_ms / 1000)

    async def execute(
        self,
        endpoint: str,
        method: str = "GET",
        params: Optional[Dict[str, Any]] = None,
        json_data: Any = None,
        headers: Optional[Dict[str, str]] = None,
        retry: Optional[bool] = None,
        response_model: Any = None,
    ) -> Any:
        """
        Makes an API call to the backend.

        Args:
            endpoint: Path below the service's API prefix (e.g. 'series/lookup').
            method: The HTTP method to use.
            params: Query parameters; None values are dropped.
            json_data: JSON body.
            headers: Extra headers for this call only.
            retry: Force retries on or off; defaults to on for GET/HEAD/OPTIONS.
            response_model: Optional type the JSON body is validated into.

        Returns:
            The decoded JSON body, the validated model, or None for empty bodies.

        Raises:
            ClassifiedError: If the call fails after any allowed retries.
        """
        spec = RequestSpec(
            path=endpoint,
            method=method.upper(),
            headers=headers or {},
            body=json_data,
            query=params,
            retry=retry,
        )
        return await self.run(spec, response_model=response_model)

    async def test_connection(self, endpoint: str) -> bool:
        try:
            await self.execute(endpoint)
        except ClassifiedError:
            return False
        return True

    async def validate_credential(self, endpoint: str) -> bool:
        """False when the backend rejects the credential; other failures propagate."""
        try:
            await self.execute(endpoint)
        except ClassifiedError as error:
            if error.kind is ErrorKind.UNAUTHORIZED:
                return False
            raise
        return True

    async def aclose(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> "ResilientClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()


def _query_value(value: Any) -> Any:
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, (list, tuple)):
        return ",".join(str(v) for v in value)
    return value

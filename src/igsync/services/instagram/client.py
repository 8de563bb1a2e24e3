"""Instagram Graph API client with retry, host fallback and pagination."""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Generic, Optional, Sequence, TypeVar

import httpx
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from igsync.config import Settings, get_settings
from igsync.services.instagram.credentials import ResolvedCredential, TokenFamily

logger = logging.getLogger(__name__)

TRANSIENT_CODES = frozenset({1, 2})
RATE_LIMIT_CODES = frozenset({4, 17, 32, 613})
AUTH_CODES = frozenset({190})

T = TypeVar("T")


class GraphAPIError(Exception):
    """Base exception for Graph API errors."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        code: Optional[int] = None,
        error_subcode: Optional[int] = None,
        response: Any = None,
        label: Optional[str] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.error_subcode = error_subcode
        self.response = response
        self.label = label

    def __str__(self) -> str:
        message = super().__str__()
        return f"{self.label}: {message}" if self.label else message


class TransientGraphError(GraphAPIError):
    """Temporary upstream failure worth retrying."""

    pass


class RateLimitError(GraphAPIError):
    """Rate limit exceeded error."""

    pass


class AuthenticationError(GraphAPIError):
    """Invalid or expired access token."""

    pass


# Anything a single Graph call can fail with
FETCH_ERRORS = (GraphAPIError, httpx.HTTPError)


class GraphHost(str, Enum):
    """The two Graph API hosts."""

    FACEBOOK = "facebook"
    INSTAGRAM = "instagram"

    @property
    def other(self) -> "GraphHost":
        return GraphHost.FACEBOOK if self is GraphHost.INSTAGRAM else GraphHost.INSTAGRAM


def primary_host(family: TokenFamily) -> GraphHost:
    """Host that serves a token family; unknown tokens try Facebook first."""
    if family is TokenFamily.INSTAGRAM:
        return GraphHost.INSTAGRAM
    return GraphHost.FACEBOOK


@dataclass(frozen=True)
class FetchAttempt:
    """One entry of a fallback plan: a host and an optional metric set."""

    host: GraphHost
    metrics: Optional[tuple[str, ...]] = None
    param: str = "metric"

    def params(self) -> dict[str, str]:
        if not self.metrics:
            return {}
        return {self.param: ",".join(self.metrics)}

    def describe(self) -> str:
        metrics = ",".join(self.metrics) if self.metrics else "default"
        return f"{self.host.value}[{metrics}]"


def plan_attempts(
    family: TokenFamily,
    metric_sets: Optional[Sequence[Sequence[str]]] = None,
    param: str = "metric",
) -> list[FetchAttempt]:
    """Build an ordered fallback plan.

    Every metric set is tried on the family's primary host, richest first.
    The last (safest) set is then tried once on the other host. ``param``
    names the query parameter the sets are sent as (``metric`` or ``fields``).
    """
    host = primary_host(family)
    sets: list[Optional[tuple[str, ...]]] = [tuple(s) for s in metric_sets or []] or [None]
    attempts = [FetchAttempt(host, metrics, param) for metrics in sets]
    attempts.append(FetchAttempt(host.other, sets[-1], param))
    return attempts


@dataclass
class PageResult:
    """Items accumulated while following ``paging.next`` cursors."""

    items: list[dict[str, Any]] = field(default_factory=list)
    pages: int = 0
    error: Optional[Exception] = None
    truncated: bool = False


@dataclass
class FetchResult(Generic[T]):
    """Outcome of fetching one data category: a value or the error that replaced it."""

    value: Optional[T] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def succeeded(cls, value: T) -> "FetchResult[T]":
        return cls(value=value)

    @classmethod
    def failed(cls, error: str) -> "FetchResult[T]":
        return cls(error=error)


def _error_from_response(response: httpx.Response, payload: Any) -> GraphAPIError:
    error = payload.get("error") if isinstance(payload, dict) else None
    if not isinstance(error, dict):
        error = {}

    code = error.get("code")
    message = error.get("message") or f"HTTP {response.status_code}"
    kwargs = dict(
        status_code=response.status_code,
        code=code,
        error_subcode=error.get("error_subcode"),
        response=payload,
    )
    message = f"Graph API {response.status_code}: {message}"

    if response.status_code == 429 or code in RATE_LIMIT_CODES:
        return RateLimitError(message, **kwargs)
    if response.status_code == 401 or code in AUTH_CODES:
        return AuthenticationError(message, **kwargs)
    if code in TRANSIENT_CODES or error.get("is_transient"):
        return TransientGraphError(message, **kwargs)
    return GraphAPIError(message, **kwargs)


class GraphClient:
    """Async client for the Instagram and Facebook Graph API hosts."""

    def __init__(
        self,
        credential: ResolvedCredential,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        self.credential = credential
        self.settings = settings or get_settings()
        self._sleep = sleep or asyncio.sleep
        self._client = httpx.AsyncClient(
            timeout=self.settings.request_timeout_seconds,
            transport=transport,
        )

    async def __aenter__(self) -> "GraphClient":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()

    @property
    def primary_host(self) -> GraphHost:
        return primary_host(self.credential.family)

    def build_url(self, path: str, host: Optional[GraphHost] = None) -> str:
        """Versioned URL for ``path`` on the given host."""
        host = host or self.primary_host
        return f"{self.settings.api_base_url(host.value)}/{path.lstrip('/')}"

    async def _send(self, url: str, params: Optional[dict[str, Any]] = None) -> dict[str, Any]:
        response = await self._client.get(url, params=params)

        try:
            payload = response.json()
        except ValueError:
            payload = {"raw": response.text}

        if not response.is_success or (isinstance(payload, dict) and "error" in payload):
            raise _error_from_response(response, payload)
        return payload

    async def get(
        self,
        path: str,
        params: Optional[dict[str, Any]] = None,
        host: Optional[GraphHost] = None,
    ) -> dict[str, Any]:
        """Single GET; raises a GraphAPIError on HTTP or embedded errors."""
        query = dict(params or {})
        query["access_token"] = self.credential.token
        return await self._send(self.build_url(path, host), query)

    async def get_url(self, url: str) -> dict[str, Any]:
        """GET a fully built URL such as a ``paging.next`` cursor."""
        return await self._send(url)

    async def _retrying(self, call: Callable[[], Awaitable[dict[str, Any]]]) -> dict[str, Any]:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.settings.max_retry_attempts),
            wait=wait_exponential(multiplier=self.settings.retry_backoff_seconds),
            retry=retry_if_exception_type((TransientGraphError, httpx.TransportError)),
            sleep=self._sleep,
            before_sleep=before_sleep_log(logger, logging.INFO),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                payload = await call()
        return payload

    async def get_with_retry(
        self,
        path: str,
        params: Optional[dict[str, Any]] = None,
        host: Optional[GraphHost] = None,
    ) -> dict[str, Any]:
        """GET with exponential backoff on transient codes and network errors."""
        return await self._retrying(lambda: self.get(path, params, host))

    async def get_with_fallback(
        self,
        path: str,
        attempts: Sequence[FetchAttempt],
        label: str,
        params: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        """Try each attempt in order and return the first error-free payload.

        Raises:
            RateLimitError: Immediately, further attempts would only burn quota
            GraphAPIError: The last failure, tagged with ``label``
        """
        last_error: Optional[GraphAPIError] = None
        for index, attempt in enumerate(attempts, start=1):
            query = dict(params or {})
            query.update(attempt.params())
            try:
                payload = await self.get_with_retry(path, query, attempt.host)
            except RateLimitError as e:
                e.label = label
                raise
            except GraphAPIError as e:
                last_error = e
            except httpx.HTTPError as e:
                last_error = GraphAPIError(f"Network error: {e}")
            else:
                if index > 1:
                    logger.info(f"{label}: succeeded with fallback {attempt.describe()}")
                return payload
            logger.warning(
                f"{label}: attempt {index}/{len(attempts)} {attempt.describe()} failed: {last_error}"
            )

        if last_error is None:
            raise GraphAPIError("No fetch attempts configured", label=label)
        last_error.label = label
        raise last_error

    async def paginate(
        self,
        path: str,
        params: Optional[dict[str, Any]] = None,
        host: Optional[GraphHost] = None,
        max_pages: Optional[int] = None,
        max_items: Optional[int] = None,
    ) -> PageResult:
        """Follow ``paging.next`` cursors up to ``max_pages``.

        An error on any page ends the walk; items gathered so far are kept
        and the error is returned alongside them.
        """
        if max_pages is None:
            max_pages = self.settings.max_media_pages
        result = PageResult()

        try:
            payload = await self.get_with_retry(path, params, host)
        except FETCH_ERRORS as e:
            result.error = e
            return result

        while True:
            result.pages += 1
            data = payload.get("data")
            if isinstance(data, list):
                result.items.extend(data)

            next_url = (payload.get("paging") or {}).get("next")
            if not next_url or not data:
                break
            if max_items is not None and len(result.items) >= max_items:
                break
            if result.pages >= max_pages:
                result.truncated = True
                logger.warning(f"Pagination of {path} stopped at the {max_pages} page cap")
                break

            try:
                payload = await self._retrying(lambda: self.get_url(next_url))
            except FETCH_ERRORS as e:
                logger.warning(f"Pagination of {path} stopped after {result.pages} pages: {e}")
                result.error = e
                break

        if max_items is not None:
            result.items = result.items[:max_items]
        return result


async def capture(label: str, call: Awaitable[T]) -> FetchResult[T]:
    """Await a category fetch, turning Graph and network failures into a FetchResult."""
    try:
        return FetchResult.succeeded(await call)
    except FETCH_ERRORS as e:
        logger.warning(f"{label} unavailable: {e}")
        return FetchResult.failed(f"{label} unavailable: {e}")

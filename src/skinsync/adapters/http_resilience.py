"""Resilient HTTP channel: retries, rate limiting, caching and proxy rotation."""

from __future__ import annotations

import json
from logging import getLogger
from typing import TYPE_CHECKING, TypedDict, Unpack

import httpx
from aiolimiter import AsyncLimiter
from hishel import AsyncSqliteStorage, FilterPolicy
from hishel import Response as HishelCacheResponse
from hishel._policies import BaseFilter
from hishel.httpx import AsyncCacheClient
from httpx_retries import Retry, RetryTransport

from skinsync.config.http_resilience import (
    CacheConfig,
    ProxyPool,
    RateLimit,
    ResilienceConfig,
    RetryablePayloadError,
    RetryPolicy,
    ShouldCacheHook,
)
from skinsync.domain.errors import TransientSourceError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable
    from types import TracebackType

    from httpx._client import UseClientDefault
    from httpx._types import (
        AuthTypes,
        CookieTypes,
        HeaderTypes,
        QueryParamTypes,
        RequestContent,
        RequestData,
        RequestExtensions,
        RequestFiles,
        TimeoutTypes,
        URLTypes,
    )

log = getLogger(__name__)

__all__ = [
    "CacheConfig",
    "ChannelTimeoutError",
    "ExhaustedRetriesError",
    "ProxyPool",
    "RateLimit",
    "ResilienceConfig",
    "ResilientClient",
    "RetryPolicy",
    "RetryablePayloadError",
]


class ChannelTimeoutError(TransientSourceError):
    """The provider did not answer within the configured timeout."""


class ExhaustedRetriesError(TransientSourceError):
    """Every retry failed, or the provider kept answering with a retryable status."""

    def __init__(
        self, message: str, *, source: str | None = None, status_code: int | None = None
    ) -> None:
        super().__init__(message, source=source)
        self.status_code = status_code


class RequestOptions(TypedDict, total=False):
    content: RequestContent | None
    data: RequestData | None
    files: RequestFiles | None
    json: object
    params: QueryParamTypes | None
    headers: HeaderTypes | None
    cookies: CookieTypes | None
    auth: AuthTypes | UseClientDefault | None
    follow_redirects: bool | UseClientDefault
    timeout: TimeoutTypes | UseClientDefault
    extensions: RequestExtensions | None


class AsyncClientOptions(TypedDict, total=False):
    base_url: str
    timeout: TimeoutTypes
    headers: HeaderTypes
    event_hooks: dict[str, list[Callable[[httpx.Response], Awaitable[None] | None]]]
    transport: httpx.AsyncBaseTransport


def build_retry(policy: RetryPolicy) -> Retry:
    return Retry(
        total=policy.total,
        backoff_factor=policy.backoff_factor,
        max_backoff_wait=policy.max_backoff_wait,
        respect_retry_after_header=policy.respect_retry_after_header,
        allowed_methods=tuple(policy.allowed_methods),
        status_forcelist=tuple(policy.status_forcelist),
        retry_on_exceptions=policy.retry_on_exceptions,
        backoff_jitter=policy.backoff_jitter,
    )


class ResilientClient:
    """Async HTTP client for one provider.

    With a proxy pool configured, one underlying client is built per proxy and
    requests walk the pool round-robin, so consecutive calls leave from
    different addresses. Failures surface as ``ChannelTimeoutError`` or
    ``ExhaustedRetriesError``; callers never see raw transport errors.
    """

    def __init__(
        self,
        config: ResilienceConfig,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        cache_path: str | None = None,
    ) -> None:
        self.config = config
        self._limiter: AsyncLimiter | None = (
            AsyncLimiter(config.ratelimit.max_calls, config.ratelimit.per_seconds)
            if config.ratelimit
            else None
        )
        proxies = config.proxies
        if proxies is None or transport is not None:
            self._clients = [self._build_client(transport=transport, cache_path=cache_path)]
        else:
            self._clients = [
                self._build_client(proxy=url, cache_path=cache_path) for url in proxies.urls()
            ]

    def _build_client(
        self,
        *,
        proxy: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        cache_path: str | None = None,
    ) -> httpx.AsyncClient:
        config = self.config
        inner = transport or httpx.AsyncHTTPTransport(proxy=proxy)
        retry_transport = RetryTransport(transport=inner, retry=build_retry(config.retry))

        client_kwargs: AsyncClientOptions = {
            "timeout": config.timeout_seconds,
            "transport": retry_transport,
        }
        if config.base_url is not None:
            client_kwargs["base_url"] = config.base_url
        if config.default_headers:
            client_kwargs["headers"] = dict(config.default_headers)
        if config.response_hooks:
            client_kwargs["event_hooks"] = {"response": list(config.response_hooks)}

        storage, policy = _build_cache_components(config.cache, cache_path)
        if storage is not None:
            return AsyncCacheClient(**client_kwargs, storage=storage, policy=policy)
        return httpx.AsyncClient(**client_kwargs)

    async def __aenter__(self) -> ResilientClient:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        for client in self._clients:
            await client.aclose()

    def _next_client(self) -> httpx.AsyncClient:
        if self.config.proxies is None or len(self._clients) == 1:
            return self._clients[0]
        return self._clients[self.config.proxies.next_index()]

    async def request(
        self,
        method: str,
        url: URLTypes,
        **kwargs: Unpack[RequestOptions],
    ) -> httpx.Response:
        client = self._next_client()
        try:
            if self._limiter is None:
                response = await client.request(method, url, **kwargs)
            else:
                async with self._limiter:
                    response = await client.request(method, url, **kwargs)
        except httpx.TimeoutException as exc:
            raise ChannelTimeoutError(
                f"{self.config.name}: {method} {url} timed out", source=self.config.name
            ) from exc
        except httpx.HTTPError as exc:
            raise ExhaustedRetriesError(
                f"{self.config.name}: {method} {url} failed: {exc}", source=self.config.name
            ) from exc

        if response.status_code in self.config.retry.status_forcelist:
            log.warning(
                "%s answered %s for %s %s after retries",
                self.config.name,
                response.status_code,
                method,
                url,
            )
            raise ExhaustedRetriesError(
                f"{self.config.name}: {method} {url} answered {response.status_code}",
                source=self.config.name,
                status_code=response.status_code,
            )
        return response

    async def get(
        self,
        url: URLTypes,
        **kwargs: Unpack[RequestOptions],
    ) -> httpx.Response:
        return await self.request("GET", url, **kwargs)

    async def post(
        self,
        url: URLTypes,
        **kwargs: Unpack[RequestOptions],
    ) -> httpx.Response:
        return await self.request("POST", url, **kwargs)


class _ShouldCacheResponseFilter(BaseFilter[HishelCacheResponse]):
    """Hishel response filter that delegates to a simple JSON predicate."""

    def __init__(self, predicate: ShouldCacheHook) -> None:
        self._predicate = predicate

    def needs_body(self) -> bool:
        return True

    def apply(self, item: HishelCacheResponse, body: bytes | None) -> bool:  # noqa: ARG002
        if body is None:
            return True
        try:
            payload = json.loads(body.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError):
            return False
        return bool(self._predicate(payload))


def _build_cache_components(
    config: CacheConfig | None,
    cache_path: str | None,
) -> tuple[AsyncSqliteStorage | None, FilterPolicy | None]:
    if config is None or not config.enabled:
        return None, None

    if config.backend == "sqlite":
        database_path = config.sqlite_path or cache_path
        if database_path is None:
            raise ValueError("The sqlite cache backend needs a path")
    elif config.backend == "memory":
        database_path = ":memory:"
    else:
        raise ValueError(f"Unsupported cache backend: {config.backend}")

    storage = AsyncSqliteStorage(
        database_path=database_path,
        default_ttl=config.default_ttl_seconds,
        refresh_ttl_on_access=config.refresh_ttl_on_access,
    )

    policy: FilterPolicy | None = None
    if config.should_cache is not None:
        policy = FilterPolicy(response_filters=[_ShouldCacheResponseFilter(config.should_cache)])

    return storage, policy

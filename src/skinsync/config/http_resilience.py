"""Configuration types for the resilient HTTP channel."""

from __future__ import annotations

import itertools
import threading
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Literal

import httpx

from .env import optional_env
from .errors import ConfigurationError

if TYPE_CHECKING:
    from collections.abc import Iterator, Mapping

ResponseHook = Callable[[httpx.Response], Awaitable[None] | None]
ShouldCacheHook = Callable[[object], bool]


class RetryablePayloadError(httpx.HTTPError):
    """Raised by response hooks when a payload-level condition should trigger a retry.

    Marketplaces answer anti-bot challenges with ``200`` and an HTML body, which
    the status-based retry would otherwise accept.
    """

    def __init__(self, message: str, *, response: httpx.Response) -> None:
        super().__init__(message)
        self.response = response


@dataclass(slots=True, frozen=True)
class RetryPolicy:
    total: int = 3
    backoff_factor: float = 1.0
    max_backoff_wait: float = 30.0
    respect_retry_after_header: bool = True
    # POST included: marketplace APIs use POST for reads and their writes are idempotent by item id.
    allowed_methods: frozenset[str] = field(
        default_factory=lambda: frozenset({"GET", "HEAD", "OPTIONS", "POST", "DELETE"})
    )
    status_forcelist: frozenset[int] = field(
        default_factory=lambda: frozenset({408, 425, 429, 500, 502, 503, 504})
    )
    retry_on_exceptions: tuple[type[httpx.HTTPError], ...] = (
        httpx.TimeoutException,
        httpx.NetworkError,
        httpx.RemoteProtocolError,
        httpx.ProxyError,
        RetryablePayloadError,
    )
    backoff_jitter: float = 1.0


@dataclass(slots=True, frozen=True)
class RateLimit:
    max_calls: int
    per_seconds: float


@dataclass(slots=True, frozen=True)
class CacheConfig:
    """Response cache for idempotent reads; ``should_cache`` vets each payload."""

    enabled: bool = True
    backend: Literal["sqlite", "memory"] = "memory"
    sqlite_path: str | None = None
    default_ttl_seconds: float | None = 300.0
    refresh_ttl_on_access: bool = False
    should_cache: ShouldCacheHook | None = None


@dataclass(slots=True, frozen=True)
class ProxyPool:
    """Round-robin proxy rotation shared by every client of one marketplace.

    Marketplaces rate-limit by IP, so each one walks the pool with its own
    cursor.
    """

    endpoints: tuple[str, ...]
    username: str | None = None
    password: str | None = None
    _cursor: Iterator[int] = field(init=False, repr=False, compare=False)
    _lock: threading.Lock = field(
        init=False, repr=False, compare=False, default_factory=threading.Lock
    )

    def __post_init__(self) -> None:
        if not self.endpoints:
            raise ConfigurationError("A proxy pool needs at least one endpoint")
        object.__setattr__(self, "_cursor", itertools.cycle(range(len(self.endpoints))))

    def __len__(self) -> int:
        return len(self.endpoints)

    def url(self, index: int) -> str:
        endpoint = self.endpoints[index]
        if "://" not in endpoint:
            endpoint = f"http://{endpoint}"
        if self.username is None:
            return endpoint
        scheme, rest = endpoint.split("://", 1)
        return f"{scheme}://{self.username}:{self.password or ''}@{rest}"

    def urls(self) -> list[str]:
        return [self.url(index) for index in range(len(self.endpoints))]

    def next_index(self) -> int:
        with self._lock:
            return next(self._cursor)


@dataclass(slots=True, frozen=True)
class ResilienceConfig:
    name: str
    base_url: str | None = None
    timeout_seconds: float = 30.0
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    ratelimit: RateLimit | None = None
    cache: CacheConfig | None = None
    proxies: ProxyPool | None = None
    response_hooks: tuple[ResponseHook, ...] = field(default_factory=tuple)
    default_headers: Mapping[str, str] | None = None


def get_proxy_pool() -> ProxyPool | None:
    """Read ``SKINSYNC_PROXIES`` (comma separated ``host:port``) and ``SKINSYNC_PROXY_AUTH``."""

    raw = optional_env("SKINSYNC_PROXIES")
    if raw is None:
        return None
    endpoints = tuple(part.strip() for part in raw.split(",") if part.strip())
    auth = optional_env("SKINSYNC_PROXY_AUTH")
    if auth is None:
        return ProxyPool(endpoints=endpoints)
    username, sep, password = auth.partition(":")
    if not sep:
        raise ConfigurationError("SKINSYNC_PROXY_AUTH must look like user:password")
    return ProxyPool(endpoints=endpoints, username=username, password=password)

"""Shared fixtures for BitSkins adapter tests."""

from __future__ import annotations

import json
from pathlib import Path
from typing import TYPE_CHECKING, Any

import httpx
import pytest

from skinsync.adapters.bitskins import BitSkinsMarketAdapter
from skinsync.config.bitskins import BitSkinsConfig, default_bitskins_resilience
from tests.helpers.fakes import mock_client_factory
from tests.helpers.items import T0

if TYPE_CHECKING:
    from collections.abc import Callable

    from skinsync.domain.ledger import ItemLedger

BitSkinsPayload = Any
FIXTURES = Path("tests/data/bitskins")


def load_fixture(name: str) -> BitSkinsPayload:
    return json.loads((FIXTURES / name).read_text())


class FakeBitSkins:
    """Serves the seller's listings and trades; every write succeeds unless overridden."""

    def __init__(self) -> None:
        self.listings: list[dict[str, Any]] = []
        self.trades: list[dict[str, Any]] = []
        self.sale_stats: list[dict[str, Any]] = []
        self.overrides: dict[str, httpx.Response] = {}
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path in self.overrides:
            return self.overrides[path]
        body = json.loads(request.content) if request.content else {}
        if path == "/market/search/mine/730":
            offset, limit = body["offset"], body["limit"]
            return httpx.Response(200, json={"list": self.listings[offset : offset + limit]})
        if path == "/steam/trade/active":
            return httpx.Response(200, json={"list": self.trades})
        if path == "/market/pricing/summary":
            return httpx.Response(200, json=self.sale_stats)
        if path in {"/market/delist/single", "/market/relist/single", "/steam/deposit/many"}:
            return httpx.Response(200, json={"success": True})
        return httpx.Response(404)

    def posted(self, path: str) -> list[Any]:
        return [
            json.loads(request.content) for request in self.requests if request.url.path == path
        ]


@pytest.fixture
def bitskins_fixture() -> Callable[[str], BitSkinsPayload]:
    return load_fixture


@pytest.fixture
def bitskins_config() -> BitSkinsConfig:
    return BitSkinsConfig(api_key="BSKEY", resilience=default_bitskins_resilience())


@pytest.fixture
def fake_bitskins() -> FakeBitSkins:
    return FakeBitSkins()


@pytest.fixture
def bitskins_adapter(
    ledger: ItemLedger, bitskins_config: BitSkinsConfig, fake_bitskins: FakeBitSkins
) -> BitSkinsMarketAdapter:
    return BitSkinsMarketAdapter(
        ledger=ledger,
        config=bitskins_config,
        client_factory=mock_client_factory(fake_bitskins),
        clock=lambda: T0,
    )

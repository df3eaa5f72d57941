"""Shared fixtures for Steam adapter tests."""

from __future__ import annotations

import json
from pathlib import Path
from typing import TYPE_CHECKING, Any

import httpx
import pytest

from skinsync.adapters.steam import SteamInventoryAdapter
from skinsync.config.steam import SteamConfig, default_steam_resilience
from tests.helpers.fakes import mock_client_factory
from tests.helpers.items import T0

if TYPE_CHECKING:
    from collections.abc import Callable
    from datetime import datetime

SteamPayload = dict[str, Any]
FIXTURES = Path("tests/data/steam")


def load_fixture(name: str) -> SteamPayload:
    return json.loads((FIXTURES / name).read_text())


class FakeSteam:
    """Routes inventory, trade offer and offer action requests to canned payloads."""

    def __init__(self, inventory: SteamPayload | list[SteamPayload]) -> None:
        self.inventory_pages = inventory if isinstance(inventory, list) else [inventory]
        self.offers: SteamPayload = {"response": {}}
        self.overrides: dict[str, httpx.Response] = {}
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path in self.overrides:
            return self.overrides[path]
        if path.startswith("/inventory/"):
            return httpx.Response(200, json=self._page(request.url.params.get("start_assetid")))
        if path.endswith("/GetTradeOffers/v1/"):
            return httpx.Response(200, json=self.offers)
        if path.endswith("/accept"):
            return httpx.Response(200, json={"tradeid": "4100000001"})
        if path.endswith("/CancelTradeOffer/v1/"):
            return httpx.Response(200, json={"response": {}})
        return httpx.Response(404)

    def _page(self, start_assetid: str | None) -> SteamPayload:
        if start_assetid is None:
            return self.inventory_pages[0]
        for index, page in enumerate(self.inventory_pages):
            if page.get("last_assetid") == start_assetid:
                return self.inventory_pages[index + 1]
        raise AssertionError(f"unexpected start_assetid {start_assetid}")

    def requests_to(self, suffix: str) -> list[httpx.Request]:
        return [request for request in self.requests if request.url.path.endswith(suffix)]


class Clock:
    def __init__(self) -> None:
        self.now = T0

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def steam_config() -> SteamConfig:
    return SteamConfig(
        steam_id="76561198000000001",
        api_key="STEAMKEY",
        cookie="sessionid=abc123; steamLoginSecure=76561198000000001%7C%7Ctoken",
        resilience=default_steam_resilience(),
    )


@pytest.fixture
def steam_fixture() -> Callable[[str], SteamPayload]:
    return load_fixture


@pytest.fixture
def fake_steam() -> FakeSteam:
    return FakeSteam(load_fixture("inventory.json"))


@pytest.fixture
def clock() -> Clock:
    return Clock()


@pytest.fixture
def steam_adapter(
    steam_config: SteamConfig, fake_steam: FakeSteam, clock: Clock
) -> SteamInventoryAdapter:
    return SteamInventoryAdapter(
        config=steam_config,
        client_factory=mock_client_factory(fake_steam),
        clock=clock,
    )

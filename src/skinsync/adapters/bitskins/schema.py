"""Pydantic models for the BitSkins v2 API payloads.

Prices travel as integers in thousandths of a USD.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, RootModel, field_validator

PRICE_SCALE = Decimal(1000)


def to_price(value: int) -> Decimal:
    return Decimal(value) / PRICE_SCALE


def from_price(value: Decimal) -> int:
    return int((value * PRICE_SCALE).to_integral_value())


class BitSkinsBaseModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


def _as_text(value: object) -> object:
    if isinstance(value, int):
        return str(value)
    return value


class ListingPayload(BitSkinsBaseModel):
    id: str
    asset_id: str
    class_id: str
    instance_id: str = "0"
    skin_id: int | None = None
    name: str = ""
    price: int
    tradehold: int = 0

    _text_ids = field_validator("id", "asset_id", "class_id", "instance_id", mode="before")(
        _as_text
    )

    @property
    def price_usd(self) -> Decimal:
        return to_price(self.price)


class ListingsResponse(BitSkinsBaseModel):
    listings: list[ListingPayload] = Field(default_factory=list, alias="list")


class TradeItem(BitSkinsBaseModel):
    asset_id: str
    class_id: str
    instance_id: str = "0"

    _text_ids = field_validator("asset_id", "class_id", "instance_id", mode="before")(_as_text)


class ActiveTradePayload(BitSkinsBaseModel):
    id: str
    tradeofferid: str | None = None
    items: list[TradeItem] = Field(default_factory=list)

    _text_ids = field_validator("id", "tradeofferid", mode="before")(_as_text)


class ActiveTradesResponse(BitSkinsBaseModel):
    trades: list[ActiveTradePayload] = Field(default_factory=list, alias="list")


class SaleStat(BitSkinsBaseModel):
    date: date
    price_min: int
    counter: int


class SaleStatsResponse(RootModel[list[SaleStat]]):
    pass


class ActionResult(BitSkinsBaseModel):
    success: bool = True

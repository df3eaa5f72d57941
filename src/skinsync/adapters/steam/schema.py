"""Pydantic models describing the Steam inventory and trade offer payloads."""

from __future__ import annotations

from datetime import datetime
from enum import IntEnum

from pydantic import BaseModel, ConfigDict, Field, field_validator

# propertyid values inside ``asset_properties``.
PATTERN_PROPERTY_ID = 1
WEAR_PROPERTY_ID = 2


class SteamBaseModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class InventoryAsset(SteamBaseModel):
    assetid: str
    classid: str
    instanceid: str = "0"
    amount: str = "1"


class AssetProperty(SteamBaseModel):
    propertyid: int
    int_value: str | None = None
    float_value: str | None = None


class AssetProperties(SteamBaseModel):
    assetid: str
    properties: list[AssetProperty] = Field(default_factory=list, alias="asset_properties")

    def value(self, property_id: int) -> str | None:
        for prop in self.properties:
            if prop.propertyid == property_id:
                return prop.int_value if prop.int_value is not None else prop.float_value
        return None

    @property
    def pattern(self) -> str | None:
        """Paint seed and wear; together they pin down one physical skin."""
        seed = self.value(PATTERN_PROPERTY_ID)
        wear = self.value(WEAR_PROPERTY_ID)
        if seed is None and wear is None:
            return None
        return f"{seed or ''}/{wear or ''}"


class InventoryDescription(SteamBaseModel):
    classid: str
    instanceid: str = "0"
    market_hash_name: str = ""
    market_name: str = ""
    tradable: int = 0
    marketable: int = 0
    # Present while the item is under trade hold: the moment it becomes tradable.
    cache_expiration: datetime | None = None

    @property
    def name(self) -> str:
        return self.market_hash_name or self.market_name


class InventoryResponse(SteamBaseModel):
    success: int = 1
    total_inventory_count: int = 0
    assets: list[InventoryAsset] = Field(default_factory=list)
    descriptions: list[InventoryDescription] = Field(default_factory=list)
    asset_properties: list[AssetProperties] = Field(default_factory=list)
    more_items: int = 0
    last_assetid: str | None = None


class TradeOfferState(IntEnum):
    INVALID = 1
    ACTIVE = 2
    ACCEPTED = 3
    COUNTERED = 4
    EXPIRED = 5
    CANCELED = 6
    DECLINED = 7
    INVALID_ITEMS = 8
    CREATED_NEEDS_CONFIRMATION = 9
    CANCELED_BY_SECOND_FACTOR = 10
    IN_ESCROW = 11


class TradeOfferAsset(SteamBaseModel):
    appid: int = 730
    assetid: str
    classid: str
    instanceid: str = "0"


class TradeOfferPayload(SteamBaseModel):
    tradeofferid: str
    trade_offer_state: TradeOfferState
    items_to_give: list[TradeOfferAsset] = Field(default_factory=list)
    is_our_offer: bool = False
    time_created: int = 0
    time_updated: int = 0
    expiration_time: int = 0
    message: str = ""

    @field_validator("trade_offer_state", mode="before")
    @classmethod
    def _parse_state(cls, value: int | str) -> int:
        return int(value)


class TradeOffersBody(SteamBaseModel):
    trade_offers_sent: list[TradeOfferPayload] = Field(default_factory=list)
    trade_offers_received: list[TradeOfferPayload] = Field(default_factory=list)

    def offers(self) -> list[TradeOfferPayload]:
        return [*self.trade_offers_sent, *self.trade_offers_received]


class TradeOffersResponse(SteamBaseModel):
    response: TradeOffersBody = Field(default_factory=TradeOffersBody)

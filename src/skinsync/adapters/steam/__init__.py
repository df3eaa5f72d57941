"""Steam inventory provider adapter."""

from .client import STEAM_SOURCE, SteamAPIError, SteamInventoryAdapter

__all__ = ["STEAM_SOURCE", "SteamAPIError", "SteamInventoryAdapter"]

"""BitSkins marketplace adapter."""

from .client import BITSKINS_SOURCE, BitSkinsAPIError, BitSkinsMarketAdapter
from .pricing import BitSkinsSalePricer

__all__ = ["BITSKINS_SOURCE", "BitSkinsAPIError", "BitSkinsMarketAdapter", "BitSkinsSalePricer"]

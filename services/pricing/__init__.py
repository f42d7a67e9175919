"""
Price Resolution Package

Quote sources and the logic that picks between them:
- coingecko: Symbol-indexed prices (tokens and tracked crypto assets)
- dexscreener: Address-indexed prices, best pair by liquidity
- jupiter: Solana mint prices
- batch: Multi-source batch token pricing
- asset_price: Stock/ETF/fund/crypto asset prices with FX conversion
- price_resolution: Input governance and query routing
"""

from .asset_price import AssetPriceService, fetch_asset_price
from .batch import BatchPriceService, fetch_batch_prices
from .coingecko import CoinGeckoClient, fetch_symbol_prices
from .dexscreener import DexScreenerClient, fetch_mint_prices, fetch_token_price, pick_best_dex_pair
from .jupiter import JupiterClient

__all__ = [
    "AssetPriceService",
    "BatchPriceService",
    "CoinGeckoClient",
    "DexScreenerClient",
    "JupiterClient",
    "fetch_asset_price",
    "fetch_batch_prices",
    "fetch_mint_prices",
    "fetch_symbol_prices",
    "fetch_token_price",
    "pick_best_dex_pair",
]

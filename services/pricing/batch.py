"""
Batch Token Pricing

Prices a wallet's worth of tokens at once by combining three sources:
- CoinGecko (by symbol) for well-known tokens
- DexScreener (by contract address or mint) for everything on-chain
- Jupiter (by Solana mint) as a cross-check and last resort

Selection per token:
    1. Balance above 1e30           -> spam marker (airdrop spam)
    2. CoinGecko disagrees with DEX -> CoinGecko (stablecoins >10%, wrapped
       majors >12%, low-liquidity pools >25%, or no DEX price at all)
    3. DEX price present            -> DEX, unless Jupiter diverges
       (>15% on a low-liquidity pool, >30% otherwise)
    4. CoinGecko price              -> CoinGecko
    5. Jupiter price                -> Jupiter
    6. Otherwise                    -> None (explicitly unresolved)

Tokens are priced in groups of 5 concurrently with a short pause between
groups. Results are keyed by address (or upper-cased symbol) in input order.
"""

import asyncio
from typing import Any, Awaitable, Callable, Dict, List, Optional

from core.errors import ValidationError
from core.http import HttpClient
from core.logging import get_logger
from core.schemas import BatchTokenPrice, BatchTokenRequest, DexQuote, SpamTokenMarker, SymbolPrice
from .coingecko import CoinGeckoClient
from .dexscreener import DexScreenerClient, is_dex_compatible_address
from .jupiter import JupiterClient


logger = get_logger(__name__)

GROUP_SIZE = 5
GROUP_DELAY_SECONDS = 0.2
SPAM_BALANCE_THRESHOLD = 1e30

STABLECOIN_SYMBOLS = {"USDC", "USDT", "DAI"}
WRAPPED_MAJOR_SYMBOLS = {"WETH", "WBTC"}

CHAIN_ALIASES = {
    "ethereum": "ethereum",
    "polygon": "polygon",
    "base": "base",
    "arbitrum": "arbitrum",
    "optimism": "optimism",
    "bsc": "bsc",
    "solana": "solana",
    "hyperliquid": "hyperevm",
    "hyperliquid-mainnet": "hyperevm",
    "tron": "tron",
}


def resolve_chain(chain: Optional[str]) -> Optional[str]:
    """DexScreener chain id for a wallet chain name."""
    if not chain:
        return None
    return CHAIN_ALIASES.get(chain, chain)


def _divergence(price: float, reference: float) -> float:
    return abs(price - reference) / reference


def should_prefer_coingecko(symbol: Optional[str], dex: Optional[DexQuote], cg: Optional[SymbolPrice]) -> bool:
    """True when the CoinGecko price should override the DEX price."""
    if cg is None or not cg.usd:
        return False

    if dex is None or not dex.price_usd:
        return True

    if cg.usd <= 0:
        return True

    divergence = _divergence(dex.price_usd, cg.usd)
    symbol = (symbol or "").upper()

    if symbol in STABLECOIN_SYMBOLS and divergence > 0.10:
        return True

    if symbol in WRAPPED_MAJOR_SYMBOLS and divergence > 0.12:
        return True

    return dex.low_liquidity and divergence > 0.25


def should_prefer_jupiter(dex: Optional[DexQuote], jupiter_usd: Optional[float]) -> bool:
    """True when the Jupiter price should override the DEX price."""
    if not jupiter_usd:
        return False

    if dex is None or not dex.price_usd:
        return True

    if jupiter_usd <= 0:
        return True

    divergence = _divergence(dex.price_usd, jupiter_usd)
    if dex.low_liquidity and divergence > 0.15:
        return True

    return divergence > 0.30


def _coingecko_price(cg: SymbolPrice) -> BatchTokenPrice:
    return BatchTokenPrice(usd=cg.usd, eur=cg.eur, change_24h=cg.usd_24h_change, source="coingecko")


class BatchPriceService:
    """
    Batch token pricer.

    Attributes:
        coingecko: Symbol price source
        dexscreener: Address price source
        jupiter: Solana mint price source
        group_size: Tokens priced concurrently
        group_delay: Pause between groups, in seconds
    """

    def __init__(
        self,
        coingecko: CoinGeckoClient,
        dexscreener: DexScreenerClient,
        jupiter: JupiterClient,
        group_size: int = GROUP_SIZE,
        group_delay: float = GROUP_DELAY_SECONDS,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep
    ):
        self.coingecko = coingecko
        self.dexscreener = dexscreener
        self.jupiter = jupiter
        self.group_size = group_size
        self.group_delay = group_delay
        self.sleep = sleep

    async def fetch_batch_prices(
        self,
        tokens: List[BatchTokenRequest],
        chain: Optional[str] = None
    ) -> Dict[str, Optional[Dict[str, Any]]]:
        """
        Price every token.

        Returns:
            Identifier -> price payload, spam marker, or None when unresolved

        Raises:
            ValidationError: If no tokens were given
        """
        if not tokens:
            raise ValidationError("Tokens array is required")

        default_chain = resolve_chain(chain)

        cg_prices = await self.coingecko.fetch_prices_best_effort(t.symbol for t in tokens if t.symbol)

        jupiter_prices: Dict[str, float] = {}
        if default_chain == "solana" or any(t.chain == "solana" for t in tokens):
            jupiter_prices = await self.jupiter.fetch_prices(
                t.mint or t.contract_address for t in tokens if t.mint or t.contract_address
            )

        prices: Dict[str, Optional[Dict[str, Any]]] = {}

        for start in range(0, len(tokens), self.group_size):
            group = [t for t in tokens[start:start + self.group_size] if t.identifier]
            results = await asyncio.gather(
                *(self._price_token(token, default_chain, cg_prices, jupiter_prices) for token in group),
                return_exceptions=True
            )
            for token, price in zip(group, results):
                if isinstance(price, BaseException) and not isinstance(price, Exception):
                    raise price
                if isinstance(price, Exception):
                    logger.warning(f"Failed to price {token.identifier}: {type(price).__name__}")
                    price = None
                prices[token.identifier] = price

            if start + self.group_size < len(tokens):
                await self.sleep(self.group_delay)

        resolved = sum(1 for value in prices.values() if value)
        logger.info(f"Batch pricing resolved {resolved}/{len(prices)} token(s)")
        return prices

    async def _price_token(
        self,
        token: BatchTokenRequest,
        default_chain: Optional[str],
        cg_prices: Dict[str, SymbolPrice],
        jupiter_prices: Dict[str, float]
    ) -> Optional[Dict[str, Any]]:
        if token.balance is not None and token.balance > SPAM_BALANCE_THRESHOLD:
            return SpamTokenMarker().model_dump()

        symbol = token.symbol.upper() if token.symbol else None
        address = token.address
        token_chain = resolve_chain(token.chain) or default_chain

        dex: Optional[DexQuote] = None
        if address and token_chain and is_dex_compatible_address(address, token_chain):
            dex = await self.dexscreener.fetch_best_quote(token_chain, address)

        cg = cg_prices.get(symbol) if symbol else None
        jupiter_usd = jupiter_prices.get(address) if address else None

        if cg is not None and cg.usd and should_prefer_coingecko(symbol, dex, cg):
            return _coingecko_price(cg).model_dump(exclude_none=True)

        if dex is not None:
            if should_prefer_jupiter(dex, jupiter_usd):
                return BatchTokenPrice(usd=jupiter_usd, source="jupiter").model_dump(exclude_none=True)

            return BatchTokenPrice(
                usd=dex.price_usd,
                liquidity=dex.liquidity_usd,
                dex=dex.dex_id,
                source="dexscreener",
                low_liquidity=dex.low_liquidity
            ).model_dump(exclude_none=True)

        if cg is not None and cg.usd:
            return _coingecko_price(cg).model_dump(exclude_none=True)

        if jupiter_usd:
            return BatchTokenPrice(usd=jupiter_usd, source="jupiter").model_dump(exclude_none=True)

        logger.debug(f"No price found for {token.identifier}")
        return None


async def fetch_batch_prices(
    http: HttpClient,
    tokens: List[BatchTokenRequest],
    chain: Optional[str] = None
) -> Dict[str, Optional[Dict[str, Any]]]:
    """Price tokens with the default CoinGecko, DexScreener and Jupiter sources."""
    service = BatchPriceService(CoinGeckoClient(http), DexScreenerClient(http), JupiterClient(http))
    return await service.fetch_batch_prices(tokens, chain)

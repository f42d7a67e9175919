"""
DexScreener Price Source

Address-indexed prices from DexScreener's token-pairs endpoint:

    GET /token-pairs/v1/{chainId}/{tokenAddress}

A token usually trades in several pools. The quote comes from the pool with
the most USD liquidity; when two pools tie, the one listed first wins.

Mint lookups (Solana) are strictly sequential with a pause before every
request, because DexScreener rate limits aggressively.
"""

import asyncio
import re
from typing import Any, Awaitable, Callable, Dict, List, Optional

from core.errors import UpstreamError
from core.http import TRANSPORT_ERRORS, HttpClient, read_json, to_number
from core.logging import get_logger
from core.schemas import DexQuote, MintPrice, TokenPriceQuote


logger = get_logger(__name__)

MAX_MINTS_PER_LOOKUP = 10
MINT_REQUEST_DELAY_SECONDS = 0.15

SOLANA_ADDRESS = re.compile(r"^[1-9A-HJ-NP-Za-km-z]{32,44}$")
TRON_BASE58_ADDRESS = re.compile(r"^T[1-9A-HJ-NP-Za-km-z]{33}$")
TRON_HEX_ADDRESS = re.compile(r"^41[a-fA-F0-9]{40}$")
EVM_ADDRESS = re.compile(r"^0x[a-fA-F0-9]{40}$")

# DexScreener lists some HyperEVM pools under the older chain id
CHAIN_CANDIDATES = {"hyperevm": ["hyperevm", "hyperliquid"]}


# ============================================
# Pair Selection
# ============================================

def extract_dex_pairs(body: Any) -> List[Any]:
    """Pairs from a list body or a `pairs` array; anything else is empty."""
    if isinstance(body, list):
        return body

    if isinstance(body, dict) and isinstance(body.get("pairs"), list):
        return body["pairs"]

    return []


def pair_liquidity_usd(pair: Any) -> float:
    """USD liquidity of a pair (0 when missing)."""
    if not isinstance(pair, dict) or not isinstance(pair.get("liquidity"), dict):
        return 0.0
    return to_number(pair["liquidity"].get("usd")) or 0.0


def pick_best_dex_pair(pairs: List[Any]) -> Optional[Any]:
    """
    Pair with the greatest USD liquidity; the first one wins ties.

    Example:
        >>> pairs = [{"liquidity": {"usd": 10}}, {"liquidity": {"usd": 500}}, {"liquidity": {"usd": 500}}]
        >>> pick_best_dex_pair(pairs) is pairs[1]
        True
    """
    if not pairs:
        return None

    best = pairs[0]
    for pair in pairs[1:]:
        if pair_liquidity_usd(pair) > pair_liquidity_usd(best):
            best = pair
    return best


def is_dex_compatible_address(address: str, chain_id: str) -> bool:
    """True when the address has the right shape for the chain."""
    chain = (chain_id or "").lower()

    if chain == "solana":
        return bool(SOLANA_ADDRESS.match(address))

    if chain == "tron":
        return bool(TRON_BASE58_ADDRESS.match(address) or TRON_HEX_ADDRESS.match(address))

    return bool(EVM_ADDRESS.match(address))


def _volume_24h(pair: dict) -> Optional[float]:
    volume = pair.get("volume")
    return to_number(volume.get("h24")) if isinstance(volume, dict) else None


# ============================================
# Client
# ============================================

class DexScreenerClient:
    """
    DexScreener token-pairs reader.

    Attributes:
        http: Shared HTTP client
        base_url: API base URL
        request_delay: Pause before each mint request, in seconds
        sleep: Awaitable sleep (replaceable in tests)
    """

    def __init__(
        self,
        http: HttpClient,
        base_url: Optional[str] = None,
        request_delay: float = MINT_REQUEST_DELAY_SECONDS,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep
    ):
        from core.config import settings

        self.http = http
        self.base_url = (base_url or settings.dexscreener_base_url).rstrip("/")
        self.request_delay = request_delay
        self.sleep = sleep

    def _pairs_url(self, chain_id: str, address: str) -> str:
        return f"{self.base_url}/token-pairs/v1/{chain_id}/{address}"

    async def fetch_mint_prices(self, mints: List[str]) -> Dict[str, MintPrice]:
        """
        USD prices for Solana mints.

        Only the first 10 mints are looked up, one at a time. Mints whose
        lookup fails or yields no priced pair are left out of the result.
        """
        prices: Dict[str, MintPrice] = {}

        for mint in mints[:MAX_MINTS_PER_LOOKUP]:
            await self.sleep(self.request_delay)

            try:
                response = await self.http.fetch(self._pairs_url("solana", mint), source="dexscreener")
            except TRANSPORT_ERRORS as e:
                logger.debug(f"Skipping mint {mint}: {type(e).__name__}")
                continue

            if not response.ok:
                logger.debug(f"Skipping mint {mint}: status {response.status}")
                continue

            best = pick_best_dex_pair(extract_dex_pairs(read_json(response)))
            usd = to_number(best.get("priceUsd")) if isinstance(best, dict) else None
            if usd is None:
                continue

            prices[mint] = MintPrice(usd=usd, mint=mint)

        return prices

    async def fetch_token_price(self, chain_id: str, address: str) -> TokenPriceQuote:
        """
        Price of one token address.

        Returns found=False when there is no pair, or when the best pair
        lacks a USD or native price.

        Raises:
            UpstreamError: DexScreener answered with a non-2xx status
        """
        response = await self.http.fetch(self._pairs_url(chain_id, address), source="dexscreener")

        if not response.ok:
            raise UpstreamError(
                f"DexScreener API error: {response.status}",
                status=response.status,
                source="dexscreener"
            )

        best = pick_best_dex_pair(extract_dex_pairs(read_json(response)))
        if not isinstance(best, dict):
            return TokenPriceQuote(found=False)

        usd = to_number(best.get("priceUsd"))
        native = to_number(best.get("priceNative"))
        if not usd or not native:
            return TokenPriceQuote(found=False)

        liquidity = best.get("liquidity")
        return TokenPriceQuote(
            found=True,
            usd=usd,
            native=native,
            pair=best.get("pairAddress"),
            dex=best.get("dexId"),
            liquidity=to_number(liquidity.get("usd")) if isinstance(liquidity, dict) else None,
            volume_24h=_volume_24h(best)
        )

    async def fetch_best_quote(self, chain_id: str, address: str) -> Optional[DexQuote]:
        """
        Best priced pair for an address, trying chain id aliases in turn.

        Never raises; returns None when no candidate chain yields a price.
        """
        for chain in CHAIN_CANDIDATES.get(chain_id, [chain_id]):
            try:
                response = await self.http.fetch(self._pairs_url(chain, address), source="dexscreener")
            except TRANSPORT_ERRORS as e:
                logger.debug(f"DexScreener lookup failed for {chain}/{address}: {type(e).__name__}")
                continue

            if not response.ok:
                continue

            best = pick_best_dex_pair(extract_dex_pairs(read_json(response)))
            if not isinstance(best, dict):
                continue

            price_usd = to_number(best.get("priceUsd"))
            if not price_usd:
                continue

            return DexQuote(
                price_usd=price_usd,
                price_native=to_number(best.get("priceNative")),
                liquidity_usd=pair_liquidity_usd(best),
                pair_address=best.get("pairAddress"),
                dex_id=best.get("dexId"),
                volume_24h=_volume_24h(best)
            )

        return None


async def fetch_mint_prices(http: HttpClient, mints: List[str]) -> Dict[str, MintPrice]:
    return await DexScreenerClient(http).fetch_mint_prices(mints)


async def fetch_token_price(http: HttpClient, chain_id: str, address: str) -> TokenPriceQuote:
    return await DexScreenerClient(http).fetch_token_price(chain_id, address)

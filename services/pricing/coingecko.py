"""
CoinGecko Price Source

Symbol-indexed prices from the CoinGecko /simple/price endpoint.

Three callers with different failure policies:
- fetch_symbol_prices: strict, raises on upstream errors (GET /crypto/prices)
- fetch_prices_best_effort: chunked, never raises, backs off after a 429 (batch pricing)
- fetch_crypto_price: single asset, returns None on any failure (asset prices)

API Documentation:
    https://docs.coingecko.com/reference/simple-price
"""

from typing import Callable, Dict, Iterable, List, Optional

from core.errors import UpstreamError, UpstreamRateLimited
from core.http import TRANSPORT_ERRORS, HttpClient, UpstreamResponse, read_json, to_number
from core.logging import get_logger
from core.schemas import AssetPrice, SymbolPrice
from core.utils.time import current_utc_millis


logger = get_logger(__name__)

# Token symbols priced by the crypto endpoints (keys are upper-case)
TOKEN_ID_MAP: Dict[str, str] = {
    # Native tokens
    "ETH": "ethereum",
    "MATIC": "matic-network",
    "BNB": "binancecoin",
    "TRX": "tron",
    "HYPE": "hyperliquid",
    "SOL": "solana",
    "AVAX": "avalanche-2",
    "WAVAX": "wrapped-avax",
    "SAVAX": "benqi-liquid-staked-avax",
    "GGAVAX": "gogopool-ggavax",
    "STAVAX": "gogopool-ggavax",
    # Major tokens
    "USDC": "usd-coin",
    "USDT": "tether",
    "DAI": "dai",
    "WBTC": "wrapped-bitcoin",
    "WETH": "weth",
    "UNI": "uniswap",
    "LINK": "chainlink",
    "AAVE": "aave",
    "MKR": "maker",
    "SHIB": "shiba-inu",
    "PEPE": "pepe",
    "FLOKI": "floki",
    "DOGE": "dogecoin",
    # Solana tokens
    "RAY": "raydium",
    "SRM": "serum",
    "FIDA": "bonfida",
    "COPE": "cope",
    "BONK": "bonk",
    "JUP": "jupiter-exchange-solana",
    "PYTH": "pyth-network",
    "JITOSOL": "jito-staked-sol",
    "MSOL": "marinade-staked-sol",
    "BSOL": "blaze-staked-sol",
    "STSOL": "lido-staked-sol",
}

# Asset symbols tracked as CRYPTO holdings
CRYPTO_MAPPINGS: Dict[str, str] = {
    "BTC": "bitcoin",
    "ETH": "ethereum",
    "SOL": "solana",
    "ADA": "cardano",
    "DOT": "polkadot",
    "AVAX": "avalanche-2",
    "MATIC": "matic-network",
    "LINK": "chainlink",
    "UNI": "uniswap",
    "AAVE": "aave",
    "SUSHI": "sushi",
    "COMP": "compound-governance-token",
    "MKR": "maker",
    "YFI": "yearn-finance",
    "CRV": "curve-dao-token",
    "1INCH": "1inch",
    "SNX": "havven",
    "GRT": "the-graph",
    "BAT": "basic-attention-token",
    "ENJ": "enjincoin",
    "MANA": "decentraland",
    "SAND": "the-sandbox",
    "AXS": "axie-infinity",
    "FTM": "fantom",
    "NEAR": "near",
    "ALGO": "algorand",
    "VET": "vechain",
    "FIL": "filecoin",
    "EOS": "eos",
    "XTZ": "tezos",
    "XLM": "stellar",
    "ATOM": "cosmos",
    "LTC": "litecoin",
    "BCH": "bitcoin-cash",
    "XRP": "ripple",
    "DOGE": "dogecoin",
    "SHIB": "shiba-inu",
    "TRX": "tron",
}

USD_TO_EUR_FALLBACK = 0.92


def _unique(values: Iterable[str]) -> List[str]:
    seen: List[str] = []
    for value in values:
        if value not in seen:
            seen.append(value)
    return seen


def _symbol_price(entry: dict) -> SymbolPrice:
    return SymbolPrice(
        usd=to_number(entry.get("usd")),
        eur=to_number(entry.get("eur")),
        usd_24h_change=to_number(entry.get("usd_24h_change"))
    )


class CoinGeckoClient:
    """
    CoinGecko /simple/price reader.

    The 429 backoff deadline is a class attribute, so it is shared by every
    client in the process.

    Attributes:
        http: Shared HTTP client
        base_url: API base URL
        clock: Epoch-millisecond clock used for the backoff window
    """

    BACKOFF_MS = 60_000
    CHUNK_SIZE = 50

    _backoff_until: int = 0

    def __init__(self, http: HttpClient, base_url: Optional[str] = None, clock: Optional[Callable[[], int]] = None):
        from core.config import settings

        self.http = http
        self.base_url = (base_url or settings.coingecko_base_url).rstrip("/")
        self.clock = clock or current_utc_millis

    @staticmethod
    def is_known_symbol(symbol: str) -> bool:
        return symbol.upper() in TOKEN_ID_MAP

    async def _simple_price(self, ids: List[str], include_change: bool = True) -> UpstreamResponse:
        params = {"ids": ",".join(ids), "vs_currencies": "usd,eur"}
        if include_change:
            params["include_24hr_change"] = "true"

        return await self.http.fetch(f"{self.base_url}/simple/price", params=params, source="coingecko")

    # ============================================
    # Strict Symbol Lookup
    # ============================================

    async def fetch_symbol_prices(self, symbols: List[str]) -> Dict[str, SymbolPrice]:
        """
        Prices for token symbols in one request.

        Unmapped symbols are dropped. Results are keyed by the upper-cased
        input symbol.

        Raises:
            UpstreamRateLimited: CoinGecko answered 429
            UpstreamError: Any other non-2xx answer or an unreadable body
        """
        ids = _unique(TOKEN_ID_MAP[s.upper()] for s in symbols if s.upper() in TOKEN_ID_MAP)
        if not ids:
            return {}

        response = await self._simple_price(ids)

        if response.status == 429:
            raise UpstreamRateLimited("CoinGecko API rate limit reached", source="coingecko")

        if not response.ok:
            raise UpstreamError(f"CoinGecko API error: {response.status}", status=response.status, source="coingecko")

        data = read_json(response)
        if not isinstance(data, dict):
            raise UpstreamError("CoinGecko API returned an unreadable body", status=response.status, source="coingecko")

        prices: Dict[str, SymbolPrice] = {}
        for symbol in symbols:
            coin_id = TOKEN_ID_MAP.get(symbol.upper())
            entry = data.get(coin_id) if coin_id else None
            if isinstance(entry, dict):
                prices[symbol.upper()] = _symbol_price(entry)

        return prices

    # ============================================
    # Best-Effort Batch Lookup
    # ============================================

    def in_backoff(self) -> bool:
        return self.clock() < type(self)._backoff_until

    async def fetch_prices_best_effort(self, symbols: Iterable[str]) -> Dict[str, SymbolPrice]:
        """
        Prices for many symbols, in chunks of 50 ids.

        Never raises. After a 429, further chunks are skipped and CoinGecko
        is not called again for BACKOFF_MS.
        """
        if self.in_backoff():
            logger.debug("CoinGecko in backoff, skipping batch lookup")
            return {}

        mapped = _unique(s.upper() for s in symbols if s and s.upper() in TOKEN_ID_MAP)
        if not mapped:
            return {}

        ids = _unique(TOKEN_ID_MAP[symbol] for symbol in mapped)
        by_id: Dict[str, dict] = {}

        for start in range(0, len(ids), self.CHUNK_SIZE):
            chunk = ids[start:start + self.CHUNK_SIZE]

            try:
                response = await self._simple_price(chunk)
            except TRANSPORT_ERRORS as e:
                logger.debug(f"CoinGecko chunk failed: {type(e).__name__}")
                continue

            if response.status == 429:
                type(self)._backoff_until = self.clock() + self.BACKOFF_MS
                logger.warning("CoinGecko rate limit reached (429), falling back to DEX prices")
                break

            if not response.ok:
                continue

            data = read_json(response)
            if isinstance(data, dict):
                by_id.update({key: value for key, value in data.items() if isinstance(value, dict)})

        return {symbol: _symbol_price(by_id[TOKEN_ID_MAP[symbol]]) for symbol in mapped if TOKEN_ID_MAP[symbol] in by_id}

    # ============================================
    # Asset Price Lookup
    # ============================================

    async def fetch_crypto_price(self, symbol: str) -> Optional[AssetPrice]:
        """
        USD/EUR price of a tracked crypto asset.

        EUR falls back to USD * 0.92 when CoinGecko omits it. Returns None
        for unknown symbols and on any upstream failure.
        """
        coin_id = CRYPTO_MAPPINGS.get(symbol.strip().upper())
        if not coin_id:
            logger.warning(f"Unknown cryptocurrency symbol: {symbol}")
            return None

        try:
            response = await self._simple_price([coin_id], include_change=False)
        except TRANSPORT_ERRORS as e:
            logger.warning(f"CoinGecko request failed for {symbol}: {type(e).__name__}")
            return None

        if not response.ok:
            logger.warning(f"CoinGecko API error: {response.status}")
            return None

        data = read_json(response)
        entry = data.get(coin_id) if isinstance(data, dict) else None
        usd = to_number(entry.get("usd")) if isinstance(entry, dict) else None
        if not usd or usd <= 0:
            return None

        eur = to_number(entry.get("eur"))
        return AssetPrice(usd=usd, eur=eur if eur and eur > 0 else usd * USD_TO_EUR_FALLBACK)


async def fetch_symbol_prices(http: HttpClient, symbols: List[str]) -> Dict[str, SymbolPrice]:
    """Module-level shortcut for CoinGeckoClient.fetch_symbol_prices."""
    return await CoinGeckoClient(http).fetch_symbol_prices(symbols)

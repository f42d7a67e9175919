"""
Asset Price Service

USD/EUR prices for tracked assets, by asset type:
- STOCK, ETF, FUND, PPR_FPR -> stock path
- CRYPTO                    -> CoinGecko
- anything else             -> None (manually priced)

Stock path:
    1. ISIN input (optionally "ISIN/TICKER") is resolved to a ticker via OpenFIGI
    2. Known European ETFs are priced on Stooq (EUR close)
    3. Otherwise Finnhub quote (needs FINNHUB_API_KEY), converted to EUR
    4. On Finnhub failure, Stooq is tried with common European suffixes

Every failure returns None; callers decide what a missing price means.
"""

import csv
import io
import re
from typing import Callable, Dict, List, Optional, Tuple

from core.http import TRANSPORT_ERRORS, HttpClient, read_json, to_number
from core.logging import get_logger
from core.schemas import AssetPrice, IsinMapping
from core.utils.time import current_utc_millis
from .coingecko import CoinGeckoClient


logger = get_logger(__name__)

STOCK_ASSET_TYPES = {"STOCK", "ETF", "FUND", "PPR_FPR"}

ISIN_PATTERN = re.compile(r"^[A-Z]{2}[A-Z0-9]{9}[0-9]$", re.IGNORECASE)

FX_CACHE_TTL_MS = 60 * 60 * 1000

FINNHUB_QUOTE_URL = "https://finnhub.io/api/v1/quote"

STOOQ_SUFFIXES = (".de", ".l", ".pa", ".mi", ".mc", ".sw")

# Finnhub has no XETRA/LSE coverage; these trade on Stooq in EUR
EUROPEAN_ETF_MAPPINGS: Dict[str, Tuple[str, str]] = {
    "H4ZZ": ("h4zz.de", "HSBC Euro Stoxx 50 UCITS ETF EUR Acc"),
    "H4ZZ.DE": ("h4zz.de", "HSBC Euro Stoxx 50 UCITS ETF EUR Acc"),
    "EXSA": ("exsa.de", "iShares Core EURO STOXX 50 UCITS ETF EUR Acc"),
    "EXSA.DE": ("exsa.de", "iShares Core EURO STOXX 50 UCITS ETF EUR Acc"),
    "SXR8": ("sxr8.de", "iShares Core S&P 500 UCITS ETF USD Acc"),
    "SXR8.DE": ("sxr8.de", "iShares Core S&P 500 UCITS ETF USD Acc"),
    # Swiss listing of SXR8
    "CSSPX": ("sxr8.de", "iShares Core S&P 500 UCITS ETF USD Acc"),
    "CSSPX.SW": ("sxr8.de", "iShares Core S&P 500 UCITS ETF USD Acc"),
    "VWCE": ("vwce.de", "Vanguard FTSE All-World UCITS ETF USD Acc"),
    "VWCE.DE": ("vwce.de", "Vanguard FTSE All-World UCITS ETF USD Acc"),
    "XNAS": ("xnas.de", "Xtrackers Nasdaq 100 UCITS ETF 1C"),
    "XNAS.DE": ("xnas.de", "Xtrackers Nasdaq 100 UCITS ETF 1C"),
}

# Finnhub writes class shares with a dot
STOCK_SYMBOL_ALIASES: Dict[str, str] = {
    "BRKB": "BRK.B",
    "BRK B": "BRK.B",
    "BRK-B": "BRK.B",
    "BRKA": "BRK.A",
    "BRK A": "BRK.A",
    "BRK-A": "BRK.A",
    "BFB": "BF.B",
    "BF B": "BF.B",
    "BF-B": "BF.B",
}

FALLBACK_RATES: Dict[str, float] = {
    "USD-EUR": 0.92,
    "EUR-USD": 1.09,
    "USD-GBP": 0.79,
    "GBP-USD": 1.27,
    "USD-CHF": 0.88,
    "CHF-USD": 1.14,
    "USD-JPY": 150,
    "JPY-USD": 0.0067,
    "EUR-GBP": 0.85,
    "GBP-EUR": 1.18,
    "EUR-CHF": 0.94,
    "CHF-EUR": 1.06,
}

XETRA_EXCHANGE_CODES = ("GR", "GF", "GD", "GS", "GM", "GH", "GT")


# ============================================
# Symbol Helpers
# ============================================

def is_isin(value: str) -> bool:
    """True for "IE00BK5BQX27" and "IE00BK5BQX27/VWCG" style inputs."""
    return bool(ISIN_PATTERN.match(value.strip().upper().split("/")[0]))


def parse_isin_input(value: str) -> Tuple[str, Optional[str]]:
    """Split "ISIN/TICKER" into the ISIN and the preferred ticker."""
    parts = value.strip().upper().split("/")
    return parts[0], (parts[1] if len(parts) > 1 and parts[1] else None)


def normalize_stock_symbol(symbol: str) -> str:
    """
    Finnhub symbol for a ticker.

    Example:
        >>> normalize_stock_symbol("brk-b")
        'BRK.B'
        >>> normalize_stock_symbol("ABC DE")
        'ABC.DE'
    """
    upper = symbol.strip().upper()
    alias = STOCK_SYMBOL_ALIASES.get(upper) or STOCK_SYMBOL_ALIASES.get(upper.replace("-", " "))
    if alias:
        return alias
    if " " in upper or "-" in upper:
        return re.sub(r"[\s-]", ".", upper)
    return upper


def choose_best_ticker(
    mappings: List[IsinMapping],
    preferred_ticker: Optional[str] = None,
    target_currency: Optional[str] = None
) -> Optional[IsinMapping]:
    """
    Pick one listing of an ISIN.

    Order: preferred ticker, listing in the target currency, Xetra for EUR,
    London for GBP, then the first listing.
    """
    if not mappings:
        return None

    if preferred_ticker:
        for mapping in mappings:
            if mapping.symbol.upper() == preferred_ticker.upper():
                return mapping

    if not target_currency:
        return mappings[0]

    target = target_currency.upper()

    for mapping in mappings:
        if mapping.currency == target:
            return mapping

    if target == "EUR":
        for code in XETRA_EXCHANGE_CODES:
            for mapping in mappings:
                if mapping.exchange == code:
                    return mapping

    if target == "GBP":
        for mapping in mappings:
            if mapping.exchange == "LN" or mapping.currency == "GBP":
                return mapping

    return mappings[0]


# ============================================
# Service
# ============================================

class AssetPriceService:
    """
    Asset price lookups across Finnhub, Stooq, OpenFIGI and CoinGecko.

    Exchange rates are cached for an hour in a class-level cache shared by
    every instance in the process.

    Example:
        >>> service = AssetPriceService(http)
        >>> price = await service.fetch_asset_price("AAPL", "STOCK")
    """

    _rate_cache: Dict[str, Tuple[float, int]] = {}

    def __init__(
        self,
        http: HttpClient,
        coingecko: Optional[CoinGeckoClient] = None,
        finnhub_api_key: Optional[str] = None,
        clock: Optional[Callable[[], int]] = None
    ):
        from core.config import settings

        self.http = http
        self.coingecko = coingecko or CoinGeckoClient(http)
        self.finnhub_api_key = settings.finnhub_api_key if finnhub_api_key is None else finnhub_api_key
        self.stooq_url = settings.stooq_base_url
        self.openfigi_url = settings.openfigi_url
        self.exchange_rate_url = settings.exchange_rate_base_url.rstrip("/")
        self.clock = clock or current_utc_millis

    # ============================================
    # Exchange Rates
    # ============================================

    async def get_exchange_rate(self, from_currency: str, to_currency: str) -> float:
        """
        Rate to convert one unit of from_currency into to_currency.

        Falls back to approximate static rates (or 1) when the API fails.
        """
        if from_currency == to_currency:
            return 1.0

        cache_key = f"{from_currency}-{to_currency}"
        now = self.clock()
        cached = self._rate_cache.get(cache_key)
        if cached and now - cached[1] < FX_CACHE_TTL_MS:
            return cached[0]

        rate = None
        try:
            response = await self.http.fetch(f"{self.exchange_rate_url}/{from_currency}", source="exchangerate")
            if response.ok:
                data = read_json(response)
                rates = data.get("rates") if isinstance(data, dict) else None
                rate = to_number(rates.get(to_currency)) if isinstance(rates, dict) else None
            else:
                logger.warning(f"Exchange rate API error: {response.status}")
        except TRANSPORT_ERRORS as e:
            logger.warning(f"Exchange rate request failed: {type(e).__name__}")

        if not rate:
            return FALLBACK_RATES.get(cache_key, 1.0)

        self._rate_cache[cache_key] = (rate, now)
        return rate

    async def convert_currency(self, amount: float, from_currency: str, to_currency: str) -> float:
        if from_currency == to_currency:
            return amount
        return amount * await self.get_exchange_rate(from_currency, to_currency)

    # ============================================
    # ISIN Resolution
    # ============================================

    async def lookup_isin(self, isin: str) -> Optional[List[IsinMapping]]:
        """All OpenFIGI listings of an ISIN, or None."""
        try:
            response = await self.http.fetch(
                self.openfigi_url,
                method="POST",
                headers={"Content-Type": "application/json"},
                json_body=[{"idType": "ID_ISIN", "idValue": isin.strip().upper()}],
                source="openfigi"
            )
        except TRANSPORT_ERRORS as e:
            logger.warning(f"OpenFIGI request failed: {type(e).__name__}")
            return None

        if not response.ok:
            logger.warning(f"OpenFIGI API error: {response.status}")
            return None

        data = read_json(response)
        first = data[0] if isinstance(data, list) and data else None
        rows = first.get("data") if isinstance(first, dict) else None
        if not isinstance(rows, list) or not rows:
            return None

        return [
            IsinMapping(
                symbol=str(row.get("ticker") or ""),
                name=str(row.get("name") or ""),
                currency=str(row.get("currency") or ""),
                exchange=str(row.get("exchCode") or "")
            )
            for row in rows
            if isinstance(row, dict) and row.get("ticker")
        ] or None

    async def get_best_ticker_from_isin(
        self,
        isin_input: str,
        target_currency: Optional[str] = None
    ) -> Optional[IsinMapping]:
        isin, preferred_ticker = parse_isin_input(isin_input)
        mappings = await self.lookup_isin(isin)
        return choose_best_ticker(mappings or [], preferred_ticker, target_currency)

    # ============================================
    # Quote Sources
    # ============================================

    async def fetch_stooq_price(self, stooq_symbol: str) -> Optional[AssetPrice]:
        """Latest daily close from Stooq (EUR listings), converted to USD."""
        try:
            response = await self.http.fetch(
                self.stooq_url,
                params={"s": stooq_symbol, "i": "d"},
                source="stooq"
            )
        except TRANSPORT_ERRORS as e:
            logger.debug(f"Stooq request failed for {stooq_symbol}: {type(e).__name__}")
            return None

        if not response.ok:
            return None

        rows = [row for row in csv.reader(io.StringIO(response.content.decode("utf-8", "replace"))) if row]
        if len(rows) < 2 or len(rows[-1]) < 5:
            return None

        # Date,Open,High,Low,Close,Volume
        close = to_number(rows[-1][4])
        if not close or close <= 0:
            return None

        return AssetPrice(usd=await self.convert_currency(close, "EUR", "USD"), eur=close)

    async def fetch_finnhub_price(self, symbol: str) -> Optional[AssetPrice]:
        """Current Finnhub quote in USD, converted to EUR."""
        if not self.finnhub_api_key:
            logger.warning("Finnhub API key not configured")
            return None

        try:
            response = await self.http.fetch(
                FINNHUB_QUOTE_URL,
                params={"symbol": symbol, "token": self.finnhub_api_key},
                source="finnhub"
            )
        except TRANSPORT_ERRORS as e:
            logger.warning(f"Finnhub request failed: {type(e).__name__}")
            return None

        if not response.ok:
            logger.warning(f"Finnhub API error: {response.status}")
            return None

        data = read_json(response)
        usd = to_number(data.get("c")) if isinstance(data, dict) else None
        if not usd or usd <= 0:
            return None

        return AssetPrice(usd=usd, eur=await self.convert_currency(usd, "USD", "EUR"))

    async def fetch_stock_price(self, symbol: str) -> Optional[AssetPrice]:
        """Stock, ETF or fund price by ticker or ISIN."""
        lookup_symbol = symbol.strip().upper()

        if is_isin(lookup_symbol):
            mapping = await self.get_best_ticker_from_isin(lookup_symbol)
            if mapping is None:
                logger.warning(f"Could not resolve ISIN: {symbol}")
                return None
            lookup_symbol = mapping.symbol.upper()

        base_symbol = lookup_symbol.split(".")[0]
        european_etf = EUROPEAN_ETF_MAPPINGS.get(lookup_symbol) or EUROPEAN_ETF_MAPPINGS.get(base_symbol)

        if european_etf:
            price = await self.fetch_stooq_price(european_etf[0])
            if price:
                return price

        if not self.finnhub_api_key:
            logger.warning("Finnhub API key not configured")
            return None

        price = await self.fetch_finnhub_price(normalize_stock_symbol(lookup_symbol))
        if price:
            return price

        for suffix in STOOQ_SUFFIXES:
            price = await self.fetch_stooq_price(f"{base_symbol.lower()}{suffix}")
            if price:
                return price

        return None

    async def fetch_asset_price(self, symbol: str, asset_type: str) -> Optional[AssetPrice]:
        """
        Price of an asset by type.

        Returns:
            AssetPrice, or None for manually priced types and on any failure
        """
        asset_type = asset_type.strip().upper()

        if asset_type in STOCK_ASSET_TYPES:
            return await self.fetch_stock_price(symbol)

        if asset_type == "CRYPTO":
            return await self.coingecko.fetch_crypto_price(symbol)

        return None


async def fetch_asset_price(http: HttpClient, symbol: str, asset_type: str) -> Optional[AssetPrice]:
    """Module-level shortcut for AssetPriceService.fetch_asset_price."""
    return await AssetPriceService(http).fetch_asset_price(symbol, asset_type)

"""
Jupiter Price Source

USD prices for Solana mints from Jupiter's price API. Several endpoint
generations are in use; they are tried in the configured order until one
returns a usable `data` object.
"""

from typing import Dict, Iterable, List, Optional

from core.http import TRANSPORT_ERRORS, HttpClient, read_json, to_number
from core.logging import get_logger
from .dexscreener import SOLANA_ADDRESS


logger = get_logger(__name__)

CHUNK_SIZE = 50


class JupiterClient:
    """
    Jupiter price reader.

    Attributes:
        http: Shared HTTP client
        endpoints: Price endpoints in fallback order
    """

    def __init__(self, http: HttpClient, endpoints: Optional[List[str]] = None):
        from core.config import settings

        self.http = http
        self.endpoints = endpoints if endpoints is not None else settings.jupiter_price_urls_list

    async def fetch_prices(self, mints: Iterable[str]) -> Dict[str, float]:
        """
        USD price per mint.

        Non-Solana values are ignored. Mints without a positive price are
        left out. Never raises.
        """
        unique: List[str] = []
        for mint in mints:
            if mint and SOLANA_ADDRESS.match(mint) and mint not in unique:
                unique.append(mint)

        prices: Dict[str, float] = {}

        for start in range(0, len(unique), CHUNK_SIZE):
            chunk = unique[start:start + CHUNK_SIZE]

            for endpoint in self.endpoints:
                try:
                    response = await self.http.fetch(endpoint, params={"ids": ",".join(chunk)}, source="jupiter")
                except TRANSPORT_ERRORS as e:
                    logger.debug(f"Jupiter endpoint {endpoint} failed: {type(e).__name__}")
                    continue

                if not response.ok:
                    continue

                payload = read_json(response)
                data = payload.get("data") if isinstance(payload, dict) else None
                if not isinstance(data, dict):
                    continue

                for mint in chunk:
                    entry = data.get(mint)
                    if not isinstance(entry, dict):
                        continue
                    price = next(
                        (to_number(entry[key]) for key in ("price", "usdPrice", "value") if entry.get(key) is not None),
                        None
                    )
                    if price is not None and price > 0:
                        prices[mint] = price
                break

        return prices

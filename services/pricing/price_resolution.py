"""
Price Query Resolution

Input governance and routing for the crypto price endpoints. Every limit is
checked before any upstream call is made.

Routing for symbol/mint queries:
    - chain "solana" with mints -> DexScreener mint prices
    - symbols                   -> CoinGecko symbol prices
    - otherwise                 -> empty result
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import pydantic

from core.errors import ValidationError
from core.http import HttpClient
from core.logging import get_logger
from core.schemas import BatchTokenRequest
from .coingecko import CoinGeckoClient
from .dexscreener import DexScreenerClient


logger = get_logger(__name__)


MAX_SYMBOLS = 80
MAX_MINTS = 80
MAX_CHAIN_LENGTH = 40
MAX_ADDRESS_LENGTH = 128
MAX_BATCH_TOKENS = 80
DEFAULT_CHAIN = "ethereum"


@dataclass
class PriceQuery:
    symbols: List[str] = field(default_factory=list)
    mints: List[str] = field(default_factory=list)
    chain: str = DEFAULT_CHAIN


@dataclass
class BatchQuery:
    tokens: List[BatchTokenRequest] = field(default_factory=list)
    chain: Optional[str] = None
    # result keys of tokens that failed validation; they price as None
    rejected: List[str] = field(default_factory=list)


def _split_list(raw: Optional[str]) -> List[str]:
    if not raw:
        return []
    return [value.strip() for value in raw.split(",") if value.strip()]


def parse_price_query(symbols: Optional[str], mints: Optional[str], chain: Optional[str] = None) -> PriceQuery:
    """
    Validate comma-separated symbol/mint lists.

    Raises:
        ValidationError: Neither list given, too many items, a mint too long,
            or chain too long
    """
    if not symbols and not mints:
        raise ValidationError("Symbols or mints parameter is required")

    query = PriceQuery(symbols=_split_list(symbols), mints=_split_list(mints), chain=chain or DEFAULT_CHAIN)

    if len(query.symbols) > MAX_SYMBOLS:
        raise ValidationError(f"Too many symbols requested. Maximum allowed is {MAX_SYMBOLS}.")

    if len(query.mints) > MAX_MINTS:
        raise ValidationError(f"Too many mints requested. Maximum allowed is {MAX_MINTS}.")

    if any(len(mint) > MAX_ADDRESS_LENGTH for mint in query.mints):
        raise ValidationError("Invalid mint parameter")

    if len(query.chain) > MAX_CHAIN_LENGTH:
        raise ValidationError("Invalid chain parameter")

    return query


def parse_token_price_request(payload: Any) -> Tuple[str, str]:
    """
    Validate a single-address request body {"chainId": ..., "tokenAddress": ...}.

    Returns:
        (chain_id, token_address)

    Raises:
        ValidationError: Missing fields, wrong types or over-long values
    """
    if not isinstance(payload, dict):
        raise ValidationError("chainId and tokenAddress are required")

    chain_id = payload.get("chainId")
    token_address = payload.get("tokenAddress")

    if not chain_id or not token_address:
        raise ValidationError("chainId and tokenAddress are required")

    if (
        not isinstance(chain_id, str)
        or len(chain_id) > MAX_CHAIN_LENGTH
        or not isinstance(token_address, str)
        or len(token_address) > MAX_ADDRESS_LENGTH
    ):
        raise ValidationError("Invalid chainId or tokenAddress format")

    return chain_id, token_address


def _rejected_key(token: Any) -> Optional[str]:
    """Result key for a token that failed validation, if it names one."""
    if not isinstance(token, dict):
        return None
    for name in ("contractAddress", "contract_address", "mint"):
        value = token.get(name)
        if isinstance(value, str) and value and len(value) <= MAX_ADDRESS_LENGTH:
            return value
    symbol = token.get("symbol")
    if isinstance(symbol, str) and symbol and len(symbol) <= MAX_ADDRESS_LENGTH:
        return symbol.upper()
    return None


def parse_batch_request(payload: Any) -> BatchQuery:
    """
    Validate a batch body {"tokens": [...], "chain": ...}.

    Tokens are validated one by one. A malformed token is left out of the
    lookup and, when it carries a usable address or symbol, reported under
    that key with a null price.

    Raises:
        ValidationError: Missing or empty token list, too many tokens, bad chain
    """
    tokens = payload.get("tokens") if isinstance(payload, dict) else None
    if not isinstance(tokens, list) or not tokens:
        raise ValidationError("Tokens array is required")

    if len(tokens) > MAX_BATCH_TOKENS:
        raise ValidationError(f"Too many tokens requested. Maximum allowed is {MAX_BATCH_TOKENS}.")

    chain = payload.get("chain")
    if chain is not None and (not isinstance(chain, str) or len(chain) > MAX_CHAIN_LENGTH):
        raise ValidationError("Invalid chain parameter")

    query = BatchQuery(chain=chain)
    for index, token in enumerate(tokens):
        if isinstance(token, dict):
            try:
                query.tokens.append(BatchTokenRequest.model_validate(token))
                continue
            except pydantic.ValidationError as e:
                logger.debug(f"Skipping batch token at index {index}: {e.error_count()} invalid field(s)")
        else:
            logger.debug(f"Skipping batch token at index {index}: not an object")

        key = _rejected_key(token)
        if key and key not in query.rejected:
            query.rejected.append(key)

    return query


async def resolve_price_query(http: HttpClient, query: PriceQuery) -> Dict[str, Any]:
    """
    Resolve a validated symbol/mint query.

    Returns:
        {"prices": {...}, "source": ...} (source omitted for empty results)

    Raises:
        UpstreamError: CoinGecko failed on the symbol path
    """
    if query.chain == "solana" and query.mints:
        prices = await DexScreenerClient(http).fetch_mint_prices(query.mints)
        return {
            "prices": {mint: price.model_dump() for mint, price in prices.items()},
            "source": "dexscreener",
        }

    if query.symbols:
        prices = await CoinGeckoClient(http).fetch_symbol_prices(query.symbols)
        if not prices and not any(CoinGeckoClient.is_known_symbol(s) for s in query.symbols):
            return {"prices": {}}
        return {
            "prices": {symbol: price.model_dump() for symbol, price in prices.items()},
            "source": "coingecko",
        }

    return {"prices": {}}

"""
FastAPI Application - Portfolio Data Aggregation API

Unified REST access to brokerage connector diagnostics and crypto/asset prices.

Supported Providers:
    - Trading 212 (API key)
    - Interactive Brokers (Client Portal Gateway)
    - Revolut, Trade Republic (descriptors and guidance only)

Features:
    - Provider diagnostics with normalized holdings
    - Token prices by symbol, Solana mint, or contract address
    - Batch token pricing across CoinGecko, DexScreener and Jupiter
    - Stock/ETF/fund/crypto asset prices in USD and EUR
    - Wallet holdings on Solana, Blockscout EVM chains and Tron
    - Per-client rate limiting on every endpoint

Usage:
    uvicorn app.main:app --reload --host 0.0.0.0 --port 8000

Docs:
    - Swagger: http://localhost:8000/docs
    - ReDoc: http://localhost:8000/redoc
"""

import json
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

import aiohttp
import pydantic
from fastapi import Depends, FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.dependencies import get_connector_registry, get_http_client, rate_limited
from core.config import settings, validate_configuration
from core.connector_registry import PROVIDER_IDS, ConnectorRegistry, is_valid_provider_id
from core.errors import AggregatorError, UpstreamError, ValidationError
from core.http import TRANSPORT_ERRORS, HttpClient, unknown_to_error_message
from core.logging import logger
from core.rate_limit import RateLimitExceeded, build_rate_limit_response
from core.schemas import PlaygroundTestOptions
from core.utils.time import utc_now_iso
from services.pricing import fetch_asset_price, fetch_batch_prices, fetch_token_price
from services.pricing.price_resolution import (
    parse_batch_request,
    parse_price_query,
    parse_token_price_request,
    resolve_price_query,
)
from services.wallet import WalletScanError, fetch_evm_wallet, fetch_solana_wallet


# ============================================
# Lifespan Management
# ============================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open the shared HTTP session on startup and close it on shutdown."""
    logger.info("=== Application Starting ===")
    try:
        validate_configuration()
        http = HttpClient()
        registry = ConnectorRegistry(http)
        await registry.initialize()
        app.state.http = http
        app.state.registry = registry
        logger.info("=== Started Successfully ===")
    except Exception as e:
        logger.error(f"Startup failed: {e}")
        raise

    yield

    logger.info("=== Shutting Down ===")
    try:
        await app.state.registry.shutdown()
        logger.info("=== Shutdown Complete ===")
    except Exception as e:
        logger.error(f"Shutdown error: {e}")


# ============================================
# FastAPI Application
# ============================================

app = FastAPI(
    title="Portfolio Data Aggregation API",
    description=(
        "Brokerage connector diagnostics and market prices behind one API.\n\n"
        "## REST Endpoints\n"
        "- `GET /providers` - Provider descriptors\n"
        "- `POST /providers/test` - Run a provider diagnostic\n"
        "- `GET /crypto/prices?symbols=ETH,SOL` - Prices by symbol\n"
        "- `GET /crypto/prices?mints=...&chain=solana` - Prices by Solana mint\n"
        "- `POST /crypto/prices` - Price of one token by contract address\n"
        "- `POST /crypto/prices/batch` - Prices for many tokens\n"
        "- `GET /assets/price?symbol=AAPL&type=STOCK` - Asset price in USD and EUR\n"
        "- `GET /crypto/wallet/solana?address=...` - SOL and SPL token balances\n"
        "- `GET /crypto/wallet/evm?address=0x...&chain=auto` - Token balances across EVM chains and Tron\n"
        "- `GET /health` - Health check\n\n"
        "Every endpoint is rate limited per client. Rejected requests get a 429 "
        "with a `Retry-After` header."
    ),
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"]
)


# ============================================
# Error Handlers
# ============================================

def _upstream_failure(message: str, error: BaseException) -> JSONResponse:
    return JSONResponse(
        status_code=502,
        content={"error": message, "details": unknown_to_error_message(error)}
    )


@app.exception_handler(RateLimitExceeded)
async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded):
    return build_rate_limit_response(exc.result, exc.message)


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    return JSONResponse(status_code=400, content={"error": exc.message})


@app.exception_handler(UpstreamError)
async def upstream_error_handler(request: Request, exc: UpstreamError):
    logger.error(f"Upstream failure on {request.url.path}: {type(exc).__name__} ({exc.source})")
    return _upstream_failure("Failed to fetch prices", exc)


@app.exception_handler(aiohttp.ClientError)
async def transport_error_handler(request: Request, exc: aiohttp.ClientError):
    logger.error(f"Transport failure on {request.url.path}: {type(exc).__name__}")
    return _upstream_failure("Failed to fetch prices", exc)


@app.exception_handler(AggregatorError)
async def aggregator_error_handler(request: Request, exc: AggregatorError):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


async def _read_json_body(request: Request) -> Any:
    try:
        return await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise ValidationError("Invalid JSON body")


# ============================================
# System Endpoints
# ============================================

@app.get("/", tags=["System"], dependencies=[Depends(rate_limited("system"))])
async def root():
    """API information and available providers."""
    return {
        "name": "Portfolio Data Aggregation API",
        "version": "1.0.0",
        "status": "operational",
        "docs": "/docs",
        "providers": list(PROVIDER_IDS)
    }


@app.get("/health", tags=["System"], dependencies=[Depends(rate_limited("system"))])
async def health_check():
    """Liveness check. No upstream is contacted."""
    return {
        "status": "healthy",
        "environment": settings.environment,
        "trading212_configured": settings.trading212_configured,
        "timestamp": utc_now_iso()
    }


# ============================================
# Provider Endpoints
# ============================================

@app.get("/providers", tags=["Providers"], dependencies=[Depends(rate_limited("system"))])
async def list_providers(registry: ConnectorRegistry = Depends(get_connector_registry)):
    """Descriptors of every brokerage connector."""
    return {"providers": [descriptor.model_dump(mode="json") for descriptor in registry.list_descriptors()]}


def _parse_test_options(raw: Any) -> PlaygroundTestOptions:
    if not isinstance(raw, dict):
        return PlaygroundTestOptions()

    account_id = raw.get("ibkrAccountId", raw.get("ibkr_account_id"))
    if not isinstance(account_id, str):
        return PlaygroundTestOptions()

    try:
        return PlaygroundTestOptions(ibkr_account_id=account_id)
    except pydantic.ValidationError:
        raise ValidationError("Invalid ibkrAccountId")


@app.post(
    "/providers/test",
    tags=["Providers"],
    dependencies=[Depends(rate_limited("providers:test", "Rate limit exceeded for provider tests"))]
)
async def test_provider(request: Request, registry: ConnectorRegistry = Depends(get_connector_registry)):
    """
    Run one provider diagnostic.

    Body:
        {"providerId": "interactive_brokers", "options": {"ibkrAccountId": "U123"}}

    Returns the diagnostic result with holding `raw` payloads removed.
    Connector failures are reported inside the result, not as HTTP errors.
    """
    payload = await _read_json_body(request)
    provider_id = payload.get("providerId") if isinstance(payload, dict) else None

    if not is_valid_provider_id(provider_id):
        raise ValidationError(f"Invalid providerId. Expected one of: {', '.join(PROVIDER_IDS)}.")

    options = _parse_test_options(payload.get("options"))
    return await registry.run_test(provider_id, options)


# ============================================
# Crypto Price Endpoints
# ============================================

@app.get(
    "/crypto/prices",
    tags=["Prices"],
    dependencies=[Depends(rate_limited("prices:get", "Rate limit exceeded for price lookups"))]
)
async def get_crypto_prices(
    symbols: Optional[str] = Query(default=None, description="Comma-separated symbols (e.g. ETH,SOL)"),
    mints: Optional[str] = Query(default=None, description="Comma-separated Solana mints"),
    chain: Optional[str] = Query(default=None, description="Chain (default ethereum)"),
    http: HttpClient = Depends(get_http_client)
):
    """
    Prices by symbol (CoinGecko) or by Solana mint (DexScreener).

    Examples:
        GET /crypto/prices?symbols=ETH,USDC
        GET /crypto/prices?mints=So11111111111111111111111111111111111111112&chain=solana
    """
    query = parse_price_query(symbols, mints, chain)
    return await resolve_price_query(http, query)


@app.post(
    "/crypto/prices",
    tags=["Prices"],
    dependencies=[Depends(rate_limited("prices:post", "Rate limit exceeded for token price lookups"))]
)
async def post_token_price(request: Request, http: HttpClient = Depends(get_http_client)):
    """
    Price of one token by contract address, from its most liquid DEX pair.

    Body:
        {"chainId": "ethereum", "tokenAddress": "0x..."}
    """
    payload = await _read_json_body(request)
    chain_id, token_address = parse_token_price_request(payload)

    try:
        quote = await fetch_token_price(http, chain_id, token_address)
    except TRANSPORT_ERRORS as e:
        logger.error(f"Token price lookup failed on {chain_id}: {type(e).__name__}")
        return _upstream_failure("Failed to fetch price", e)

    return quote.to_payload()


@app.post(
    "/crypto/prices/batch",
    tags=["Prices"],
    dependencies=[Depends(rate_limited("prices:batch", "Rate limit exceeded for batch price lookups"))]
)
async def post_batch_prices(request: Request, http: HttpClient = Depends(get_http_client)) -> Dict[str, Any]:
    """
    Prices for many tokens at once.

    Body:
        {"tokens": [{"symbol": "USDC", "contractAddress": "0x...", "balance": 12.5}], "chain": "ethereum"}

    Unresolved tokens map to null. Balances above 1e30 map to a spam marker.
    Malformed tokens are not looked up and map to null under their address
    or symbol. At most 80 tokens per request.
    """
    payload = await _read_json_body(request)
    query = parse_batch_request(payload)

    prices: Dict[str, Any] = {}
    if query.tokens:
        prices = await fetch_batch_prices(http, query.tokens, query.chain)
    for key in query.rejected:
        prices.setdefault(key, None)

    return {"prices": prices, "chain": query.chain}


# ============================================
# Asset Price Endpoints
# ============================================

@app.get(
    "/assets/price",
    tags=["Prices"],
    dependencies=[Depends(rate_limited("assets:price", "Rate limit exceeded for asset price lookups"))]
)
async def get_asset_price(
    symbol: Optional[str] = Query(default=None, max_length=40, description="Ticker, ISIN or crypto symbol"),
    type: Optional[str] = Query(default=None, max_length=20, description="STOCK, ETF, FUND or CRYPTO"),
    http: HttpClient = Depends(get_http_client)
):
    """
    USD/EUR price of a tracked asset.

    Examples:
        GET /assets/price?symbol=AAPL&type=STOCK
        GET /assets/price?symbol=IE00B4L5Y983&type=ETF
        GET /assets/price?symbol=BTC&type=CRYPTO

    Returns `found: false` with a null price when no source has a quote.
    """
    if not symbol or not symbol.strip() or not type or not type.strip():
        raise ValidationError("Symbol and type are required")

    price = await fetch_asset_price(http, symbol, type)

    return {
        "symbol": symbol.strip().upper(),
        "type": type.strip().upper(),
        "price": price.model_dump() if price else None,
        "found": price is not None
    }


# ============================================
# Wallet Endpoints
# ============================================

@app.get(
    "/crypto/wallet/solana",
    tags=["Wallets"],
    dependencies=[Depends(rate_limited("wallet:get", "Rate limit exceeded for wallet lookups"))]
)
async def get_solana_wallet(
    address: Optional[str] = Query(default=None, description="Base58 wallet address"),
    http: HttpClient = Depends(get_http_client)
):
    """
    SOL balance and non-empty SPL token balances of a wallet.

    Example:
        GET /crypto/wallet/solana?address=9WzDXwBbmkg8ZTbNMqUxvQRAyrZzDsGYdLVL9zYtAWWM
    """
    try:
        wallet = await fetch_solana_wallet(http, address)
    except TRANSPORT_ERRORS as e:
        logger.error(f"Solana wallet lookup failed: {type(e).__name__}")
        return _upstream_failure("Failed to fetch wallet data", e)

    return wallet.model_dump()


@app.get(
    "/crypto/wallet/evm",
    tags=["Wallets"],
    dependencies=[Depends(rate_limited("wallet:get", "Rate limit exceeded for wallet lookups"))]
)
async def get_evm_wallet(
    address: Optional[str] = Query(default=None, description="0x-prefixed wallet address"),
    chain: Optional[str] = Query(default="auto", description="auto, all, or one chain (e.g. base, tron)"),
    http: HttpClient = Depends(get_http_client)
):
    """
    Token balances of an address across Blockscout chains and Tron.

    Examples:
        GET /crypto/wallet/evm?address=0x...
        GET /crypto/wallet/evm?address=0x...&chain=base

    Chains that fail are listed in `chain_results`; the request fails with
    502 only when every requested chain failed.
    """
    try:
        wallet = await fetch_evm_wallet(http, address, chain)
    except WalletScanError as e:
        logger.error(f"Wallet scan failed on all {len(e.chain_results)} chain(s)")
        return JSONResponse(
            status_code=502,
            content={"error": e.message, "chain_results": [result.summary() for result in e.chain_results]}
        )

    return wallet.model_dump()

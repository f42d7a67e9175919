"""
Configuration Management Module

This module handles loading, validating, and providing access to application configuration
from environment variables (.env file).

Uses Pydantic Settings for automatic validation and type conversion.

Key Features:
- Loads provider credentials and base URLs from .env file
- Validates all required settings on startup
- Provides type-safe access to configuration values
- Parses the upstream timeout override with clamping
- Exposes per-scope rate limit policies

Usage:
    from core.config import settings

    # Access configuration values
    print(settings.trading212_base_url)
    print(settings.rate_limit_options("prices:get"))
"""

import math
from typing import Dict, List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from core.schemas import RateLimitOptions


DEFAULT_TIMEOUT_MS = 15_000
MIN_TIMEOUT_MS = 1_000
MAX_TIMEOUT_MS = 60_000


class Settings(BaseSettings):
    """
    Application Settings

    This class defines all configuration parameters for the application.
    Values are automatically loaded from environment variables or .env file.

    Attributes:
        app_host: Host address for FastAPI server
        app_port: Port number for FastAPI server
        environment: Current environment (development, production)
        debug: Enable debug mode with verbose logging
        log_level: Logging level name
        cors_origins: Comma-separated list of allowed CORS origins
        timeout_ms: Raw upstream timeout override (milliseconds, clamped)
        trading212_api_key: Trading 212 API key (empty = not configured)
        trading212_base_url: Trading 212 REST API base URL
        ibkr_base_url: Interactive Brokers Client Portal Gateway URL
        default_holding_currency: Currency used when a holding has none
        finnhub_api_key: Finnhub API key for stock quotes (optional)
        coingecko_base_url: CoinGecko API base URL
        dexscreener_base_url: DexScreener API base URL
        jupiter_price_urls: Comma-separated Jupiter price endpoints (fallback order)
        stooq_base_url: Stooq daily CSV endpoint
        openfigi_url: OpenFIGI mapping endpoint (ISIN lookup)
        exchange_rate_base_url: Exchange rate API base URL
        solana_rpc_url: Solana JSON-RPC endpoint for wallet lookups
        tronscan_base_url: TronScan API base URL
        tronscan_api_key: TronScan API key (optional)
        rate_limit_window_ms: Window length shared by all rate-limit scopes
    """

    # ============================================
    # Application Configuration
    # ============================================

    app_host: str = Field(
        default="0.0.0.0",
        description="FastAPI server host address"
    )

    app_port: int = Field(
        default=8000,
        description="FastAPI server port"
    )

    environment: str = Field(
        default="development",
        description="Application environment (development, production)"
    )

    debug: bool = Field(
        default=True,
        description="Enable debug mode"
    )

    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )

    cors_origins: str = Field(
        default="http://localhost:3000,http://localhost:5173",
        description="Comma-separated list of allowed CORS origins"
    )

    # ============================================
    # Upstream HTTP Configuration
    # ============================================

    timeout_ms: str = Field(
        default="",
        description="Upstream request timeout override in milliseconds (TIMEOUT_MS)"
    )

    # ============================================
    # Brokerage Providers
    # ============================================

    trading212_api_key: str = Field(
        default="",
        description="Trading 212 API key (leave empty to disable the connector)"
    )

    trading212_base_url: str = Field(
        default="https://live.trading212.com/api/v0",
        description="Trading 212 REST API base URL"
    )

    ibkr_base_url: str = Field(
        default="http://127.0.0.1:5000/v1/api",
        description="Interactive Brokers Client Portal Gateway base URL"
    )

    default_holding_currency: str = Field(
        default="USD",
        description="Currency applied to holdings that do not report one"
    )

    # ============================================
    # Price Sources
    # ============================================

    finnhub_api_key: str = Field(
        default="",
        description="Finnhub API key (optional, needed for stock quotes)"
    )

    coingecko_base_url: str = Field(
        default="https://api.coingecko.com/api/v3",
        description="CoinGecko API base URL"
    )

    dexscreener_base_url: str = Field(
        default="https://api.dexscreener.com",
        description="DexScreener API base URL"
    )

    jupiter_price_urls: str = Field(
        default=(
            "https://lite-api.jup.ag/price/v2,"
            "https://api.jup.ag/price/v2,"
            "https://price.jup.ag/v4/price"
        ),
        description="Comma-separated Jupiter price endpoints, tried in order"
    )

    stooq_base_url: str = Field(
        default="https://stooq.com/q/d/l/",
        description="Stooq daily quotes CSV endpoint"
    )

    openfigi_url: str = Field(
        default="https://api.openfigi.com/v3/mapping",
        description="OpenFIGI mapping endpoint used for ISIN lookups"
    )

    exchange_rate_base_url: str = Field(
        default="https://api.exchangerate-api.com/v4/latest",
        description="Exchange rate API base URL"
    )

    # ============================================
    # Wallet Explorers
    # ============================================

    solana_rpc_url: str = Field(
        default="https://api.mainnet.solana.com",
        description="Solana JSON-RPC endpoint used for wallet balances"
    )

    tronscan_base_url: str = Field(
        default="https://apilist.tronscanapi.com",
        description="TronScan API base URL"
    )

    tronscan_api_key: str = Field(
        default="",
        description="TronScan API key (optional, raises the TronScan rate limit)"
    )

    # ============================================
    # Rate Limiting (inbound)
    # ============================================

    rate_limit_window_ms: int = Field(
        default=60_000,
        description="Rate limit window length in milliseconds"
    )

    rate_limit_prices_get: int = Field(default=60, description="Max GET /crypto/prices per window")
    rate_limit_prices_post: int = Field(default=40, description="Max POST /crypto/prices per window")
    rate_limit_prices_batch: int = Field(default=30, description="Max POST /crypto/prices/batch per window")
    rate_limit_providers_test: int = Field(default=10, description="Max POST /providers/test per window")
    rate_limit_assets_price: int = Field(default=60, description="Max GET /assets/price per window")
    rate_limit_wallet: int = Field(default=30, description="Max GET /crypto/wallet/* per window")
    rate_limit_system: int = Field(default=120, description="Max GET /, /health and /providers per window")

    # ============================================
    # Pydantic Settings Configuration
    # ============================================

    model_config = SettingsConfigDict(
        # Look for .env file in the project root
        env_file=".env",
        # Ignore extra fields in .env that aren't defined here
        extra="ignore",
        # Case-insensitive environment variable matching
        case_sensitive=False
    )

    # ============================================
    # Custom Properties
    # ============================================

    @property
    def cors_origins_list(self) -> List[str]:
        """
        Convert comma-separated CORS origins string to a list.

        Example:
            >>> settings.cors_origins_list
            ['http://localhost:3000', 'http://localhost:5173']
        """
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def jupiter_price_urls_list(self) -> List[str]:
        """Jupiter price endpoints in fallback order."""
        return [url.strip().rstrip("/") for url in self.jupiter_price_urls.split(",") if url.strip()]

    @property
    def trading212_configured(self) -> bool:
        """True when a Trading 212 API key is present."""
        return bool(self.trading212_api_key.strip())

    def get_timeout_ms(self) -> int:
        """
        Resolve the upstream request timeout.

        Returns DEFAULT_TIMEOUT_MS when TIMEOUT_MS is unset or not a finite
        number, otherwise the value clamped to [MIN_TIMEOUT_MS, MAX_TIMEOUT_MS].

        Example:
            >>> Settings(timeout_ms="250").get_timeout_ms()
            1000
        """
        raw = self.timeout_ms.strip()
        if not raw:
            return DEFAULT_TIMEOUT_MS

        try:
            parsed = float(raw)
        except ValueError:
            return DEFAULT_TIMEOUT_MS

        if not math.isfinite(parsed):
            return DEFAULT_TIMEOUT_MS

        return int(min(max(parsed, MIN_TIMEOUT_MS), MAX_TIMEOUT_MS))

    def rate_limit_policies(self) -> Dict[str, RateLimitOptions]:
        """Rate limit policy per scope."""
        window = self.rate_limit_window_ms
        return {
            "prices:get": RateLimitOptions(window_ms=window, max_requests=self.rate_limit_prices_get),
            "prices:post": RateLimitOptions(window_ms=window, max_requests=self.rate_limit_prices_post),
            "prices:batch": RateLimitOptions(window_ms=window, max_requests=self.rate_limit_prices_batch),
            "providers:test": RateLimitOptions(window_ms=window, max_requests=self.rate_limit_providers_test),
            "assets:price": RateLimitOptions(window_ms=window, max_requests=self.rate_limit_assets_price),
            "wallet:get": RateLimitOptions(window_ms=window, max_requests=self.rate_limit_wallet),
            "system": RateLimitOptions(window_ms=window, max_requests=self.rate_limit_system),
        }

    def rate_limit_options(self, scope: str) -> RateLimitOptions:
        """
        Get the rate limit policy for a scope.

        Raises:
            KeyError: If the scope has no configured policy
        """
        return self.rate_limit_policies()[scope]


# ============================================
# Global Settings Instance
# ============================================

# Create a single instance of settings to be imported throughout the application
settings = Settings()


# ============================================
# Configuration Validation
# ============================================

def validate_configuration() -> None:
    """
    Validate critical configuration settings on application startup.

    Raises:
        ValueError: If required configuration is missing or invalid
    """
    # logging.py imports config.py, so the logger is imported lazily here
    from core.http import sanitize_message
    from core.logging import logger

    if not (1 <= settings.app_port <= 65535):
        raise ValueError(f"Invalid port number: {settings.app_port}. Must be between 1 and 65535")

    valid_log_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
    if settings.log_level.upper() not in valid_log_levels:
        raise ValueError(
            f"Invalid LOG_LEVEL: '{settings.log_level}'. "
            f"Must be one of: {', '.join(valid_log_levels)}"
        )

    if settings.rate_limit_window_ms <= 0:
        raise ValueError("RATE_LIMIT_WINDOW_MS must be a positive number of milliseconds")

    for url_field in (
        "trading212_base_url",
        "ibkr_base_url",
        "coingecko_base_url",
        "dexscreener_base_url",
        "solana_rpc_url",
        "tronscan_base_url",
    ):
        value = getattr(settings, url_field)
        if not value.startswith("http"):
            raise ValueError(f"{url_field.upper()} must be an http(s) URL, got '{value}'")

    if len(settings.default_holding_currency.strip()) != 3:
        raise ValueError(
            f"DEFAULT_HOLDING_CURRENCY must be a 3-letter code, got '{settings.default_holding_currency}'"
        )

    # Log successful validation (never log credentials, only whether they are set)
    logger.info("Configuration validated successfully")
    logger.info(f"Server: {settings.app_host}:{settings.app_port}")
    logger.info(f"Log level: {settings.log_level.upper()}")
    logger.info(f"Upstream timeout: {settings.get_timeout_ms()}ms")
    logger.info(f"Trading 212: {'configured' if settings.trading212_configured else 'not configured'}")
    logger.info(f"Interactive Brokers gateway: {settings.ibkr_base_url}")
    logger.info(f"Finnhub: {'configured' if settings.finnhub_api_key else 'not configured'}")
    logger.info(f"Solana RPC: {sanitize_message(settings.solana_rpc_url)}")

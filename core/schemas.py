"""
Normalized Data Schemas

This module defines Pydantic models for everything the aggregation layer
produces or consumes. Whatever provider answered, callers only ever see
these shapes.

Models:
    - RateLimitOptions / RateLimitResult: Rate limiter policy and verdict
    - ProviderDescriptor: Static description of a brokerage connector
    - NormalizedHolding: One position, normalized across providers
    - PlaygroundTestResult: Outcome of a connector diagnostic run
    - PlaygroundTestOptions: Optional per-run connector settings
    - DexQuote: Best DEX pair for a token address
    - SymbolPrice / MintPrice / TokenPriceQuote: Price resolution results
    - BatchTokenRequest / BatchTokenPrice / SpamTokenMarker: Batch pricing
    - AssetPrice: USD/EUR price for a tracked asset
    - WalletToken / NativeBalance / ChainScanResult: Block explorer wallet scans
    - SolanaWallet / EvmWallet: Wallet holdings responses
"""

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from core.utils.time import utc_now_iso


ProviderId = Literal["trading212", "interactive_brokers", "revolut", "trade_republic"]
ProviderSupport = Literal["supported", "partial", "unsupported"]
DiagnosticStatus = Literal["ok", "error", "not_configured", "limited", "not_supported"]

LOW_LIQUIDITY_USD = 10_000


# ============================================
# Rate Limiting
# ============================================

class RateLimitOptions(BaseModel):
    """
    Rate limit policy for one scope.

    Example:
        >>> RateLimitOptions(window_ms=60_000, max_requests=60)
    """

    window_ms: int = Field(..., gt=0, description="Window length in milliseconds")
    max_requests: int = Field(..., gt=0, description="Requests allowed per window")

    model_config = ConfigDict(frozen=True)


class RateLimitResult(BaseModel):
    """Verdict of one rate limit check. Derived per call, never stored."""

    allowed: bool
    limit: int
    remaining: int = Field(..., ge=0)
    reset_at: int = Field(..., description="Window end in epoch milliseconds")
    retry_after_seconds: int = Field(..., ge=1)


# ============================================
# Provider Connectors
# ============================================

class ProviderDescriptor(BaseModel):
    """
    Static description of a provider connector.

    Attributes:
        id: Provider identifier (closed set)
        display_name: Human readable provider name
        support: How complete the integration is
        capabilities: What the connector can do (e.g. "holdings")
        requirements: What the operator must provide (e.g. an API key)
        docs_url: Provider API documentation
    """

    id: ProviderId
    display_name: str
    support: ProviderSupport
    capabilities: List[str] = Field(default_factory=list)
    requirements: List[str] = Field(default_factory=list)
    docs_url: str

    model_config = ConfigDict(frozen=True)


class NormalizedHolding(BaseModel):
    """
    One brokerage position in the shared shape.

    Only strictly positive quantities are representable. `raw` keeps the
    untransformed upstream record for debugging and is stripped from every
    client-facing payload by PlaygroundTestResult.sanitized().

    Example:
        >>> NormalizedHolding(
        ...     external_id="AAPL_US_EQ",
        ...     symbol="aapl_us_eq",
        ...     name="AAPL_US_EQ",
        ...     quantity=5.5,
        ...     unit_price=190.1,
        ...     market_value=1045.55,
        ...     currency="usd",
        ...     asset_class="equity",
        ...     source_type="broker_api",
        ... )
    """

    external_id: str
    symbol: str
    name: str
    quantity: float = Field(..., gt=0, description="Units held, always > 0")
    unit_price: Optional[float] = None
    market_value: Optional[float] = None
    currency: str
    asset_class: str
    source_type: str
    raw: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("symbol", "currency")
    @classmethod
    def validate_upper(cls, v: str) -> str:
        """Symbols and currencies are upper-case"""
        return v.upper()


class PlaygroundTestOptions(BaseModel):
    """Optional per-run connector settings."""

    ibkr_account_id: Optional[str] = Field(
        default=None,
        max_length=64,
        description="Interactive Brokers account to read positions from"
    )

    @field_validator("ibkr_account_id")
    @classmethod
    def blank_to_none(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip()
        return v or None


class PlaygroundTestResult(BaseModel):
    """
    Outcome of a connector diagnostic run.

    Invariant: holdings are only ever present when auth_status is "ok".
    Assignment is validated, so connectors must settle auth_status before
    attaching holdings.
    """

    provider_id: ProviderId
    support: ProviderSupport
    connection_status: DiagnosticStatus = "error"
    auth_status: DiagnosticStatus = "error"
    holdings: List[NormalizedHolding] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)
    fetched_at: str = Field(default_factory=utc_now_iso)
    raw_summary: Optional[Dict[str, Any]] = None

    model_config = ConfigDict(validate_assignment=True)

    @model_validator(mode="after")
    def holdings_require_auth(self) -> "PlaygroundTestResult":
        if self.auth_status != "ok" and self.holdings:
            raise ValueError("holdings can only be reported when auth_status is 'ok'")
        return self

    def sanitized(self) -> Dict[str, Any]:
        """
        Client-facing payload: every holding's `raw` is dropped, and
        raw_summary is omitted when absent.
        """
        payload = self.model_dump(mode="json", exclude={"holdings": {"__all__": {"raw"}}})
        if payload.get("raw_summary") is None:
            payload.pop("raw_summary", None)
        return payload


# ============================================
# Price Resolution
# ============================================

class DexQuote(BaseModel):
    """Best DexScreener pair for a token address."""

    price_usd: float
    price_native: Optional[float] = None
    liquidity_usd: float = 0.0
    pair_address: Optional[str] = None
    dex_id: Optional[str] = None
    volume_24h: Optional[float] = None

    @property
    def low_liquidity(self) -> bool:
        """Pools under $10k liquidity are considered unreliable"""
        return self.liquidity_usd < LOW_LIQUIDITY_USD


class SymbolPrice(BaseModel):
    usd: Optional[float] = None
    eur: Optional[float] = None
    usd_24h_change: Optional[float] = None


class MintPrice(BaseModel):
    usd: float
    mint: str


class TokenPriceQuote(BaseModel):
    """Single-address lookup result (`found=False` carries no price)."""

    found: bool
    usd: Optional[float] = None
    native: Optional[float] = None
    pair: Optional[str] = None
    dex: Optional[str] = None
    liquidity: Optional[float] = None
    volume_24h: Optional[float] = None

    def to_payload(self) -> Dict[str, Any]:
        if not self.found:
            return {"price": None, "found": False}
        return {
            "price": {"usd": self.usd, "native": self.native},
            "pair": self.pair,
            "dex": self.dex,
            "liquidity": self.liquidity,
            "volume_24h": self.volume_24h,
            "found": True,
            "source": "dexscreener",
        }


class BatchTokenRequest(BaseModel):
    """One token of a batch price request."""

    symbol: Optional[str] = Field(default=None, max_length=40)
    contract_address: Optional[str] = Field(default=None, alias="contractAddress", max_length=128)
    mint: Optional[str] = Field(default=None, max_length=128)
    chain: Optional[str] = Field(default=None, max_length=40)
    balance: Optional[float] = None

    model_config = ConfigDict(populate_by_name=True)

    @property
    def address(self) -> Optional[str]:
        return self.contract_address or self.mint

    @property
    def identifier(self) -> Optional[str]:
        """Result key: the address when present, else the upper-cased symbol."""
        if self.address:
            return self.address
        return self.symbol.upper() if self.symbol else None


class BatchTokenPrice(BaseModel):
    usd: float
    eur: Optional[float] = None
    change_24h: Optional[float] = None
    liquidity: Optional[float] = None
    dex: Optional[str] = None
    source: Literal["coingecko", "dexscreener", "jupiter"]
    low_liquidity: Optional[bool] = None


class SpamTokenMarker(BaseModel):
    spam: bool = True
    reason: str = "Suspicious balance"


class AssetPrice(BaseModel):
    """Price of a tracked asset in USD and EUR."""

    usd: float = Field(..., gt=0)
    eur: float = Field(..., gt=0)


class IsinMapping(BaseModel):
    """Ticker resolved from an ISIN through OpenFIGI."""

    symbol: str
    name: str
    currency: str
    exchange: str


# ============================================
# Wallet Holdings
# ============================================

WalletScanSource = Literal["blockscout", "tronscan"]


class WalletToken(BaseModel):
    """One token balance found on an EVM-family chain."""

    contract_address: str
    symbol: str
    name: str
    decimals: int
    balance: float
    type: str
    chain: str
    explorer_url: str


class NativeBalance(BaseModel):
    chain: str
    symbol: str
    balance: float
    decimals: int
    explorer_url: Optional[str] = None


class ChainScanResult(BaseModel):
    """Outcome of scanning one chain; failed scans carry `error` and no tokens."""

    chain: str
    source: WalletScanSource
    status: Literal["ok", "error"]
    tokens: List[WalletToken] = Field(default_factory=list)
    native_balance: Optional[NativeBalance] = None
    error: Optional[str] = None

    def summary(self) -> Dict[str, Any]:
        native = self.native_balance.balance if self.native_balance else 0.0
        return {
            "chain": self.chain,
            "source": self.source,
            "status": self.status,
            "token_count": len(self.tokens) + (1 if native > 0 else 0),
            "native_balance": native,
            "native_symbol": self.native_balance.symbol if self.native_balance else None,
            "error": self.error,
        }


class SolanaTokenBalance(BaseModel):
    """SPL token account balance with display metadata."""

    mint: str
    balance: float
    decimals: int
    raw_amount: str
    symbol: str
    name: str


class SolanaWallet(BaseModel):
    address: str
    chain: Literal["solana"] = "solana"
    native_balance: NativeBalance
    tokens: List[SolanaTokenBalance] = Field(default_factory=list)
    token_count: int = 0
    fetched_at: str = Field(default_factory=utc_now_iso)


class EvmWallet(BaseModel):
    """Holdings of one address across the scanned chains."""

    address: str
    chain: str
    native_balance: NativeBalance
    native_balances: List[NativeBalance] = Field(default_factory=list)
    tokens: List[WalletToken] = Field(default_factory=list)
    token_count: int = 0
    chains_searched: List[str] = Field(default_factory=list)
    chain_results: List[Dict[str, Any]] = Field(default_factory=list)
    fetched_at: str = Field(default_factory=utc_now_iso)

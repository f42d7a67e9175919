"""
EVM Wallet Scanner

Token holdings of one 0x address across several chains, read from public
block explorers:

- Blockscout instances (Ethereum, Optimism, Base, Arbitrum, HyperEVM, Polygon)
- TronScan, for the Tron address derived from the same key

Each Blockscout endpoint is tried with its Etherscan-compatible API first
(?module=account&action=...), then with the v2 REST API. A chain fails only
when every endpoint listed for it fails. Chains are scanned concurrently and
a failed chain never hides the others.

API Documentation:
    https://docs.blockscout.com/devs/apis
    https://docs.tronscan.org/
"""

import asyncio
import re
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

import base58

from core.errors import UpstreamAuthError, UpstreamError, UpstreamRateLimited, ValidationError
from core.http import TRANSPORT_ERRORS, HttpClient, first_string, read_json, to_number, unknown_to_error_message
from core.logging import get_logger
from core.schemas import ChainScanResult, EvmWallet, NativeBalance, WalletToken


logger = get_logger(__name__)

EVM_WALLET_ADDRESS = re.compile(r"^0x[a-fA-F0-9]{40}$")

BLOCKSCOUT_ENDPOINTS: Dict[str, List[str]] = {
    "ethereum": ["https://eth.blockscout.com"],
    "optimism": ["https://optimism.blockscout.com"],
    "base": ["https://base.blockscout.com"],
    "arbitrum": ["https://arbitrum.blockscout.com"],
    "polygon": ["https://polygon.blockscout.com"],
    "hyperliquid": [
        "https://www.hyperscan.com",
        "https://hyperscan.com",
        "https://hyperliquid.cloud.blockscout.com",
    ],
}

# scan order for chain=auto / chain=all
AUTO_SCAN_CHAINS = ["ethereum", "optimism", "base", "arbitrum", "hyperliquid", "tron", "polygon"]

NATIVE_SYMBOLS = {
    "ethereum": "ETH",
    "optimism": "ETH",
    "base": "ETH",
    "arbitrum": "ETH",
    "hyperliquid": "HYPE",
    "tron": "TRX",
    "polygon": "MATIC",
}

NATIVE_DECIMALS = {chain: 18 for chain in BLOCKSCOUT_ENDPOINTS}
NATIVE_DECIMALS["tron"] = 6

MAX_TOKENS_PER_CHAIN = 100
MAX_WALLET_TOKENS = 500
NO_TOKENS_MARKERS = ("no transactions found", "no records found", "no tokens found")


class WalletScanError(UpstreamError):
    """Every requested chain failed; `chain_results` says how."""

    def __init__(self, chain_results: List[ChainScanResult]):
        super().__init__("Failed to fetch wallet data on all requested chains", code="WALLET_SCAN_FAILED")
        self.chain_results = chain_results


# ============================================
# Input Validation
# ============================================

def validate_evm_address(address: Optional[str]) -> str:
    """
    Raises:
        ValidationError: Missing address or not 0x + 40 hex characters
    """
    address = (address or "").strip()
    if not address:
        raise ValidationError("Wallet address is required")

    if not EVM_WALLET_ADDRESS.match(address):
        raise ValidationError("Invalid wallet address format")

    return address


def resolve_chains(chain: Optional[str]) -> List[str]:
    """
    Chains to scan for a `chain` parameter ("auto" and "all" mean every chain).

    Raises:
        ValidationError: Unknown chain
    """
    chain = (chain or "auto").strip().lower()
    if chain in ("", "auto", "all"):
        return list(AUTO_SCAN_CHAINS)

    if chain in AUTO_SCAN_CHAINS:
        return [chain]

    raise ValidationError(f"Unsupported chain: {chain}. Expected one of: auto, {', '.join(AUTO_SCAN_CHAINS)}.")


# ============================================
# Payload Normalization
# ============================================

def normalize_decimals(value: Any, fallback: int) -> int:
    parsed = to_number(value)
    return int(parsed) if parsed is not None and parsed >= 0 else fallback


def normalize_atomic_balance(value: Any, decimals: int) -> float:
    """
    Token balance from an explorer value.

    Integer strings are atomic units and get scaled down by 10**decimals;
    values that already contain a decimal point are used as they are.

    Example:
        >>> normalize_atomic_balance("1500000", 6)
        1.5
        >>> normalize_atomic_balance("1.5", 6)
        1.5
    """
    if value is None:
        return 0.0

    raw = str(value)
    parsed = to_number(raw)
    if parsed is None:
        return 0.0

    if "." in raw:
        return parsed

    return parsed / (10 ** decimals)


def legacy_api_url(endpoint: str, params: Dict[str, str]) -> str:
    base = endpoint if endpoint.endswith("/api") else f"{endpoint.rstrip('/')}/api"
    return f"{base}?{urlencode(params)}"


def v2_api_url(endpoint: str, path: str) -> str:
    base = endpoint[:-len("/api")] if endpoint.endswith("/api") else endpoint.rstrip("/")
    return f"{base}/api/v2{path}"


def explorer_base_url(endpoint: str) -> str:
    return re.sub(r"/api/?$", "", endpoint)


def address_explorer_url(chain: str, address: str) -> str:
    if chain == "tron":
        return f"https://tronscan.org/#/address/{address}"
    return f"{explorer_base_url(BLOCKSCOUT_ENDPOINTS[chain][0])}/address/{address}"


def tron_token_explorer_url(token_type: str, token_id: str) -> str:
    if "TRC20" in token_type:
        return f"https://tronscan.org/#/token20/{token_id}"
    return f"https://tronscan.org/#/token/{token_id}"


def evm_to_tron_address(evm_address: str) -> str:
    """
    Tron base58check address that shares the key of an EVM address.

    Example:
        >>> evm_to_tron_address("0x0000000000000000000000000000000000000000")
        'T9yD14Nj9j7xAB4dbGeiX9h8unkKHxuWwb'
    """
    payload = bytes.fromhex("41" + evm_address.lower()[2:])
    return base58.b58encode_check(payload).decode("ascii")


def extract_legacy_token_items(payload: Any) -> Optional[List[Any]]:
    """
    Token rows from an Etherscan-style response.

    Returns [] for an explicit "nothing found" answer and None when the
    payload has no recognizable token list.
    """
    if isinstance(payload, list):
        return payload

    if not isinstance(payload, dict):
        return None

    result = payload.get("result")
    if isinstance(result, list):
        return result

    if isinstance(result, dict):
        for key in ("items", "tokens"):
            if isinstance(result.get(key), list):
                return result[key]

    for key in ("items", "data"):
        if isinstance(payload.get(key), list):
            return payload[key]

    if isinstance(result, str) and any(marker in result.lower() for marker in NO_TOKENS_MARKERS):
        return []

    return None


def _first_present(record: Dict[str, Any], *keys: str) -> Any:
    return next((record[key] for key in keys if record.get(key) is not None), None)


def map_blockscout_token(item: Any, chain: str, endpoint: str) -> Optional[WalletToken]:
    """WalletToken from an Etherscan-style row; None when empty or addressless."""
    if not isinstance(item, dict):
        return None

    contract_address = first_string(
        item, "contractAddress", "contract_address", "tokenAddress", "token_address", "TokenAddress"
    )
    if not contract_address:
        return None

    decimals = normalize_decimals(
        _first_present(item, "decimals", "tokenDecimal", "token_decimal", "TokenDecimal", "TokenDivisor", "divisor"),
        18
    )
    balance = normalize_atomic_balance(
        _first_present(item, "balance", "tokenBalance", "token_balance", "TokenQuantity", "value", "amount"),
        decimals
    )
    if balance <= 0:
        return None

    return WalletToken(
        contract_address=contract_address,
        symbol=first_string(item, "symbol", "tokenSymbol", "TokenSymbol") or "UNKNOWN",
        name=first_string(item, "name", "tokenName", "TokenName") or "Unknown Token",
        decimals=decimals,
        balance=balance,
        type=first_string(item, "type", "tokenType", "TokenType") or "ERC-20",
        chain=chain,
        explorer_url=f"{explorer_base_url(endpoint)}/token/{contract_address}"
    )


def map_blockscout_v2_token(item: Any, chain: str, endpoint: str) -> Optional[WalletToken]:
    """WalletToken from a v2 /token-balances row."""
    if not isinstance(item, dict):
        return None

    meta = item.get("token") if isinstance(item.get("token"), dict) else {}
    contract_address = first_string(meta, "address") or first_string(item, "token_address", "address")
    if not contract_address or contract_address == "native":
        return None

    raw_decimals = meta.get("decimals")
    if raw_decimals is None:
        raw_decimals = item.get("decimals")
    decimals = normalize_decimals(raw_decimals, 18)
    balance = normalize_atomic_balance(_first_present(item, "value", "balance", "token_balance") or "0", decimals)
    if balance <= 0:
        return None

    return WalletToken(
        contract_address=contract_address,
        symbol=first_string(meta, "symbol") or first_string(item, "symbol") or "UNKNOWN",
        name=first_string(meta, "name") or first_string(item, "name") or "Unknown Token",
        decimals=decimals,
        balance=balance,
        type=first_string(meta, "type") or first_string(item, "type") or "ERC-20",
        chain=chain,
        explorer_url=f"{explorer_base_url(endpoint)}/token/{contract_address}"
    )


def map_tron_token(entry: Any) -> Optional[WalletToken]:
    """WalletToken for a TRC20/TRC10 entry; the TRX entry and other types are skipped."""
    if not isinstance(entry, dict):
        return None

    token_id = str(entry.get("tokenId") or "")
    if not token_id or token_id == "_":
        return None

    token_type = str(entry.get("tokenType") or "").upper()
    if "TRC20" not in token_type and "TRC10" not in token_type:
        return None

    decimals = normalize_decimals(entry.get("tokenDecimal"), 6)
    balance = normalize_atomic_balance(entry.get("balance"), decimals)
    if balance <= 0:
        return None

    return WalletToken(
        contract_address=token_id,
        symbol=str(entry.get("tokenAbbr") or "UNKNOWN"),
        name=str(entry.get("tokenName") or "Unknown Token"),
        decimals=decimals,
        balance=balance,
        type=token_type,
        chain="tron",
        explorer_url=tron_token_explorer_url(token_type, token_id)
    )


def native_balance_token(native: NativeBalance) -> Optional[WalletToken]:
    """Native balance listed as a token (`native:<chain>`); None when empty."""
    if native.balance <= 0:
        return None

    return WalletToken(
        contract_address=f"native:{native.chain}",
        symbol=native.symbol,
        name=f"{native.symbol} ({native.chain} native)",
        decimals=native.decimals,
        balance=native.balance,
        type="NATIVE",
        chain=native.chain,
        explorer_url=native.explorer_url or ""
    )


def _top_tokens(tokens: List[WalletToken], limit: int) -> List[WalletToken]:
    return sorted(tokens, key=lambda token: token.balance, reverse=True)[:limit]


# ============================================
# Scanner
# ============================================

class WalletScanner:
    """
    Multi-chain wallet scanner.

    Attributes:
        http: Shared HTTP client
        tronscan_base_url: TronScan API base URL
        tronscan_api_key: Optional TronScan key, sent as TRON-PRO-API-KEY
    """

    def __init__(
        self,
        http: HttpClient,
        tronscan_base_url: Optional[str] = None,
        tronscan_api_key: Optional[str] = None
    ):
        from core.config import settings

        self.http = http
        self.tronscan_base_url = (tronscan_base_url or settings.tronscan_base_url).rstrip("/")
        self.tronscan_api_key = tronscan_api_key if tronscan_api_key is not None else settings.tronscan_api_key

    async def scan(self, address: Optional[str], chain: Optional[str] = None) -> EvmWallet:
        """
        Holdings of an address on the requested chains.

        Raises:
            ValidationError: Bad address or unknown chain (nothing is fetched)
            WalletScanError: Every requested chain failed
        """
        address = validate_evm_address(address)
        chains = resolve_chains(chain)

        outcomes = await asyncio.gather(
            *(self.scan_chain(name, address) for name in chains),
            return_exceptions=True
        )

        results: List[ChainScanResult] = []
        for name, outcome in zip(chains, outcomes):
            if isinstance(outcome, BaseException) and not isinstance(outcome, Exception):
                raise outcome
            if isinstance(outcome, Exception):
                logger.warning(f"Wallet scan failed on {name}: {type(outcome).__name__}")
                outcome = ChainScanResult(
                    chain=name,
                    source="tronscan" if name == "tron" else "blockscout",
                    status="error",
                    error=unknown_to_error_message(outcome)
                )
            results.append(outcome)

        succeeded = [result for result in results if result.status == "ok"]
        if not succeeded:
            raise WalletScanError(results)

        native_balances = [result.native_balance for result in succeeded if result.native_balance]
        tokens = [token for result in succeeded for token in result.tokens]
        tokens.extend(token for token in map(native_balance_token, native_balances) if token)
        tokens = _top_tokens(tokens, MAX_WALLET_TOKENS)

        primary = native_balances[0] if native_balances else NativeBalance(
            chain=chains[0],
            symbol=NATIVE_SYMBOLS[chains[0]],
            balance=0.0,
            decimals=NATIVE_DECIMALS[chains[0]],
            explorer_url=address_explorer_url(
                chains[0], evm_to_tron_address(address) if chains[0] == "tron" else address
            )
        )

        logger.info(f"Wallet scan: {len(succeeded)}/{len(chains)} chain(s) ok, {len(tokens)} token(s)")
        return EvmWallet(
            address=address,
            chain=chains[0] if len(chains) == 1 else "multi-evm",
            native_balance=primary,
            native_balances=native_balances,
            tokens=tokens,
            token_count=len(tokens),
            chains_searched=chains,
            chain_results=[result.summary() for result in results]
        )

    async def scan_chain(self, chain: str, address: str) -> ChainScanResult:
        if chain == "tron":
            return await self.fetch_tron_chain(address)
        return await self.fetch_blockscout_chain(chain, address)

    # ============================================
    # Blockscout
    # ============================================

    async def fetch_blockscout_chain(self, chain: str, address: str) -> ChainScanResult:
        """
        Try each explorer endpoint of the chain in order.

        Raises:
            UpstreamError: No endpoint produced a usable answer
            aiohttp.ClientError: The last endpoint failed at the transport level
        """
        last_error: Optional[Exception] = None

        for endpoint in BLOCKSCOUT_ENDPOINTS[chain]:
            try:
                result = await self._fetch_legacy(chain, address, endpoint)
                if result is None:
                    result = await self._fetch_v2(chain, address, endpoint)
                if result is not None:
                    return result
                last_error = UpstreamError(f"Blockscout API unsupported on {chain} ({endpoint})", source="blockscout")
            except TRANSPORT_ERRORS as e:
                last_error = e
            logger.debug(f"Blockscout endpoint {endpoint} unusable for {chain}: {type(last_error).__name__}")

        raise last_error or UpstreamError(f"No reachable Blockscout endpoints for chain {chain}", source="blockscout")

    def _native_balance(self, chain: str, address: str, raw: Any) -> NativeBalance:
        decimals = NATIVE_DECIMALS[chain]
        return NativeBalance(
            chain=chain,
            symbol=NATIVE_SYMBOLS[chain],
            balance=normalize_atomic_balance(raw, decimals),
            decimals=decimals,
            explorer_url=address_explorer_url(chain, address)
        )

    async def _fetch_legacy(self, chain: str, address: str, endpoint: str) -> Optional[ChainScanResult]:
        """Etherscan-compatible API; None when the endpoint does not speak it."""
        response = await self.http.fetch(
            legacy_api_url(endpoint, {"module": "account", "action": "balance", "address": address}),
            source="blockscout"
        )
        if not response.ok:
            return None

        data = read_json(response)
        if data is None:
            return None

        items = await self._fetch_legacy_token_items(endpoint, address)
        raw_balance = _first_present(data, "result", "balance") if isinstance(data, dict) else None
        tokens = [token for token in (map_blockscout_token(item, chain, endpoint) for item in items) if token]

        return ChainScanResult(
            chain=chain,
            source="blockscout",
            status="ok",
            native_balance=self._native_balance(chain, address, raw_balance),
            tokens=_top_tokens(tokens, MAX_TOKENS_PER_CHAIN)
        )

    async def _fetch_legacy_token_items(self, endpoint: str, address: str) -> List[Any]:
        urls = [
            legacy_api_url(endpoint, {"module": "account", "action": "tokenlist", "address": address}),
            legacy_api_url(endpoint, {
                "module": "account",
                "action": "addresstokenbalance",
                "address": address,
                "page": "1",
                "offset": "200",
            }),
        ]

        for url in urls:
            try:
                response = await self.http.fetch(url, source="blockscout")
            except TRANSPORT_ERRORS as e:
                logger.debug(f"Token list request failed: {type(e).__name__}")
                continue

            if not response.ok:
                continue

            items = extract_legacy_token_items(read_json(response))
            if items is not None:
                return items

        return []

    async def _fetch_v2(self, chain: str, address: str, endpoint: str) -> Optional[ChainScanResult]:
        """Blockscout v2 REST API; None when either request is unusable."""
        address_response, balances_response = await asyncio.gather(
            self.http.fetch(v2_api_url(endpoint, f"/addresses/{address}"), source="blockscout"),
            self.http.fetch(v2_api_url(endpoint, f"/addresses/{address}/token-balances"), source="blockscout")
        )
        if not address_response.ok or not balances_response.ok:
            return None

        address_data = read_json(address_response)
        balances_data = read_json(balances_response)
        if address_data is None or balances_data is None:
            return None

        raw_balance = "0"
        if isinstance(address_data, dict):
            raw_balance = _first_present(address_data, "coin_balance", "balance", "native_balance") or "0"

        if isinstance(balances_data, dict):
            balances_data = balances_data.get("items")
        items = balances_data if isinstance(balances_data, list) else []
        tokens = [token for token in (map_blockscout_v2_token(item, chain, endpoint) for item in items) if token]

        return ChainScanResult(
            chain=chain,
            source="blockscout",
            status="ok",
            native_balance=self._native_balance(chain, address, raw_balance),
            tokens=_top_tokens(tokens, MAX_TOKENS_PER_CHAIN)
        )

    # ============================================
    # TronScan
    # ============================================

    async def fetch_tron_chain(self, evm_address: str) -> ChainScanResult:
        """
        TRX and TRC10/TRC20 balances of the Tron address for the same key.

        Raises:
            UpstreamAuthError: TronScan rejected the API key (401/403)
            UpstreamRateLimited: TronScan answered 429
            UpstreamError: Any other non-2xx answer
        """
        tron_address = evm_to_tron_address(evm_address)
        headers = {"TRON-PRO-API-KEY": self.tronscan_api_key} if self.tronscan_api_key else None

        response = await self.http.fetch(
            f"{self.tronscan_base_url}/api/account/token_asset_overview",
            headers=headers,
            params={"address": tron_address},
            source="tronscan"
        )

        if response.status in (401, 403):
            raise UpstreamAuthError("TronScan rejected the API key", status=response.status, source="tronscan")
        if response.status == 429:
            raise UpstreamRateLimited("TronScan rate limit exceeded", source="tronscan")
        if not response.ok:
            raise UpstreamError(f"TronScan API error: {response.status}", status=response.status, source="tronscan")

        data = read_json(response)
        entries = data.get("data") if isinstance(data, dict) else None
        entries = entries if isinstance(entries, list) else []

        native_entry = next(
            (
                entry for entry in entries
                if isinstance(entry, dict)
                and (str(entry.get("tokenId")) == "_" or str(entry.get("tokenAbbr") or "").upper() == "TRX")
            ),
            None
        )
        native_balance = 0.0
        if native_entry:
            native_balance = normalize_atomic_balance(
                native_entry.get("balance"), normalize_decimals(native_entry.get("tokenDecimal"), 6)
            )

        tokens = [token for token in map(map_tron_token, entries) if token]

        return ChainScanResult(
            chain="tron",
            source="tronscan",
            status="ok",
            native_balance=NativeBalance(
                chain="tron",
                symbol="TRX",
                balance=native_balance,
                decimals=6,
                explorer_url=address_explorer_url("tron", tron_address)
            ),
            tokens=_top_tokens(tokens, MAX_TOKENS_PER_CHAIN)
        )


async def fetch_evm_wallet(http: HttpClient, address: Optional[str], chain: Optional[str] = None) -> EvmWallet:
    """Scan an address with the default explorers."""
    return await WalletScanner(http).scan(address, chain)

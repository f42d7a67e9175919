"""
Solana Wallet Reader

Native SOL balance and SPL token balances of a wallet, read over Solana
JSON-RPC:

    getBalance                    -> lamports (1 SOL = 1e9 lamports)
    getParsedTokenAccountsByOwner -> token accounts under the SPL Token program

Tokens with a zero balance are dropped; the rest are ordered by balance,
largest first. Symbols come from a table of well-known mints; other mints
get a shortened address as symbol.

API Documentation:
    https://solana.com/docs/rpc/http
"""

import re
from typing import Any, Dict, List, Optional, Tuple

from core.errors import UpstreamError, UpstreamRateLimited, ValidationError
from core.http import HttpClient, extract_error_message, read_json, sanitize_message, to_number
from core.logging import get_logger
from core.schemas import NativeBalance, SolanaTokenBalance, SolanaWallet


logger = get_logger(__name__)

SOLANA_WALLET_ADDRESS = re.compile(r"^[1-9A-HJ-NP-Za-km-z]{32,44}$")
TOKEN_PROGRAM_ID = "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA"
LAMPORTS_PER_SOL = 1_000_000_000
SOL_DECIMALS = 9

# mint -> (symbol, name)
KNOWN_TOKENS: Dict[str, Tuple[str, str]] = {
    "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v": ("USDC", "USD Coin"),
    "Es9vMFrzaCERmJfrF4H2FYD4KCoNkY11McCe8BenwNYB": ("USDT", "Tether USD"),
    "DezXAZ8z7PnrnRJjz3wXBoRgixCa6xjnB7YaB1pPB263": ("BONK", "Bonk"),
    "7i5KKsX2weiTkry7jA4ZwSuXGhsSnEAF7WjwFaENhuvY": ("JUP", "Jupiter"),
    "J1toso1uCk3RLmjorhTtrVwY9HJ7X8V9yYac6Y7kGCPn": ("JitoSOL", "Jito Staked SOL"),
    "mSoLzYCxHdYgdzU16g5QSh3i5K3z3KZK7ytfqcJm7So": ("mSOL", "Marinade Staked SOL"),
    "bSo13r4TkiE4KumL71LsHTPpL2euBYLFx6h9HP22p2c": ("bSOL", "Blaze Staked SOL"),
    "7dHbWXmci3dT8UFYWYZweBLXgycu7Y3iL6trKn1Y7ARj": ("stSOL", "Lido Staked SOL"),
    "So11111111111111111111111111111111111111112": ("SOL", "Wrapped SOL"),
    "4k3Dyjzvzp8eMZWUXbBCjEvwSkkk59S5iCNLY3QrkX6R": ("RAY", "Raydium"),
    "SRMuApVNdxXokk5GT7XD5cUUgXMBCoAz2LHeuAoKWRt": ("SRM", "Serum"),
    "9n4nbM75f5Ui33ZbPYXn59EwSgE8CGsHtAeTH5YFeJ9E": ("BTC", "Wrapped BTC (Wormhole)"),
    "7vfCXTUXx5WJV5JADk17DUJ4ksgau7utNKj4b963voxs": ("ETH", "Wrapped ETH (Wormhole)"),
    "A9mUU4qviSctJVPJdBJWkb28fz945QxgoHgMU8sPmkpP": ("PYTH", "Pyth Network"),
    "HZ1JovNiVvGrGNiiYvEozEVgZ58xaU3RKwX8eACQBCt3": ("PYUSD", "PayPal USD"),
}


def validate_solana_address(address: Optional[str]) -> str:
    """
    Check a wallet address before any RPC call.

    Raises:
        ValidationError: Missing or not a base58 public key
    """
    address = (address or "").strip()
    if not address:
        raise ValidationError("Wallet address is required")

    if not SOLANA_WALLET_ADDRESS.match(address):
        raise ValidationError("Invalid Solana wallet address format")

    return address


def token_metadata(mint: str) -> Tuple[str, str]:
    """(symbol, name) for a mint; unknown mints get a shortened address."""
    if mint in KNOWN_TOKENS:
        return KNOWN_TOKENS[mint]
    return f"{mint[:4]}...{mint[-4:]}", "Unknown Token"


def parse_token_account(account: Any) -> Optional[SolanaTokenBalance]:
    """
    Balance from one jsonParsed token account, or None when it is empty or
    unreadable.
    """
    try:
        info = account["account"]["data"]["parsed"]["info"]
        amount = info["tokenAmount"]
        mint = info["mint"]
    except (KeyError, TypeError):
        return None

    ui_amount = to_number(amount.get("uiAmount")) if isinstance(amount, dict) else None
    if not ui_amount or not isinstance(mint, str):
        return None

    symbol, name = token_metadata(mint)
    return SolanaTokenBalance(
        mint=mint,
        balance=ui_amount,
        decimals=int(to_number(amount.get("decimals")) or 0),
        raw_amount=str(amount.get("amount", "")),
        symbol=symbol,
        name=name
    )


class SolanaRpcClient:
    """
    Minimal Solana JSON-RPC reader.

    Attributes:
        http: Shared HTTP client
        rpc_url: JSON-RPC endpoint
    """

    def __init__(self, http: HttpClient, rpc_url: Optional[str] = None):
        from core.config import settings

        self.http = http
        self.rpc_url = rpc_url or settings.solana_rpc_url
        self._request_id = 0

    async def call(self, method: str, params: List[Any]) -> Any:
        """
        Run one RPC method and return its `result`.

        Raises:
            UpstreamRateLimited: The endpoint answered 429
            UpstreamError: Non-2xx status, unreadable body or an RPC error object
        """
        self._request_id += 1
        response = await self.http.fetch(
            self.rpc_url,
            method="POST",
            json_body={"jsonrpc": "2.0", "id": self._request_id, "method": method, "params": params},
            source="solana"
        )
        body = read_json(response)

        if response.status == 429:
            raise UpstreamRateLimited("Solana RPC rate limit exceeded", source="solana")

        if not response.ok:
            raise UpstreamError(
                extract_error_message(body) or f"Solana RPC request failed with status {response.status}.",
                status=response.status,
                source="solana"
            )

        if not isinstance(body, dict):
            raise UpstreamError("Solana RPC returned an unreadable response", source="solana")

        error = body.get("error")
        if isinstance(error, dict):
            message = error.get("message") if isinstance(error.get("message"), str) else "unknown error"
            raise UpstreamError(f"Solana RPC {method} failed: {sanitize_message(message)}", source="solana")

        return body.get("result")

    async def get_balance(self, address: str) -> float:
        """Native balance in SOL."""
        result = await self.call("getBalance", [address, {"commitment": "confirmed"}])
        lamports = to_number(result.get("value") if isinstance(result, dict) else result) or 0.0
        return lamports / LAMPORTS_PER_SOL

    async def get_token_accounts(self, owner: str) -> List[Any]:
        result = await self.call(
            "getParsedTokenAccountsByOwner",
            [owner, {"programId": TOKEN_PROGRAM_ID}, {"encoding": "jsonParsed", "commitment": "confirmed"}]
        )
        accounts = result.get("value") if isinstance(result, dict) else None
        return accounts if isinstance(accounts, list) else []


async def fetch_solana_wallet(http: HttpClient, address: Optional[str]) -> SolanaWallet:
    """
    Native and SPL token balances of a Solana wallet.

    Raises:
        ValidationError: Missing or malformed address (no RPC call is made)
        UpstreamError: The RPC endpoint failed
    """
    address = validate_solana_address(address)
    client = SolanaRpcClient(http)

    sol_balance = await client.get_balance(address)
    accounts = await client.get_token_accounts(address)

    tokens = [token for token in (parse_token_account(account) for account in accounts) if token is not None]
    tokens.sort(key=lambda token: token.balance, reverse=True)

    logger.info(f"Solana wallet scan found {len(tokens)} token(s)")
    return SolanaWallet(
        address=address,
        native_balance=NativeBalance(chain="solana", symbol="SOL", balance=sol_balance, decimals=SOL_DECIMALS),
        tokens=tokens,
        token_count=len(tokens)
    )

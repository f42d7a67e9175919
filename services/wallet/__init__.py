"""
Wallet Holdings Package

On-chain balances of self-custody wallets, read from public RPC nodes and
block explorers:
- solana: SOL and SPL token balances over Solana JSON-RPC
- evm: Multi-chain token balances from Blockscout explorers and TronScan
"""

from .evm import WalletScanError, WalletScanner, fetch_evm_wallet
from .solana import SolanaRpcClient, fetch_solana_wallet

__all__ = [
    "SolanaRpcClient",
    "WalletScanError",
    "WalletScanner",
    "fetch_evm_wallet",
    "fetch_solana_wallet",
]

"""
Wallet bridge: the capability interface of a CIP-30 wallet extension.
"""

from chainnotes.wallet.bridge import (
    WalletBridge,
    WalletSession,
    WalletSessionError,
    decode_balance,
    encode_balance,
)
from chainnotes.wallet.simulated import SimulatedWallet, SimulatedWalletSession

__all__ = [
    "SimulatedWallet",
    "SimulatedWalletSession",
    "WalletBridge",
    "WalletSession",
    "WalletSessionError",
    "decode_balance",
    "encode_balance",
]

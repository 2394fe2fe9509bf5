"""
Ledger adapters - the remote system of record and the wallet that signs for it
"""

from .gateway import LedgerGateway
from .rest import RestLedgerGateway
from .simulator import LedgerSimulator
from .wallet import LocalKeyWallet, MemberKey, WalletAdapter

__all__ = [
    "LedgerGateway",
    "RestLedgerGateway",
    "LedgerSimulator",
    "LocalKeyWallet",
    "MemberKey",
    "WalletAdapter",
]

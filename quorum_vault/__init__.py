"""
Quorum Vault - shared custody with quorum-approved withdrawals
Local approval engine kept in step with an authoritative ledger
"""

from .vault import Vault, VaultMember
from .records import RequestStatus, Transaction, TransactionHistory, TransactionType, WithdrawalRequest
from .rules import ApprovalRules, RejectionMode
from .store import VaultStore
from .engine import Outcome, WithdrawalApprovalEngine
from .sync import SyncReport, SynchronizationScheduler
from .deposit import DepositPipeline, DepositReceipt
from .session import VaultSession

__version__ = "0.1.0"
__all__ = [
    "Vault",
    "VaultMember",
    "WithdrawalRequest",
    "RequestStatus",
    "Transaction",
    "TransactionType",
    "TransactionHistory",
    "ApprovalRules",
    "RejectionMode",
    "VaultStore",
    "Outcome",
    "WithdrawalApprovalEngine",
    "SyncReport",
    "SynchronizationScheduler",
    "DepositPipeline",
    "DepositReceipt",
    "VaultSession",
]

from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from .vault import normalize_address


class RequestStatus(Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    EXPIRED = "expired"


class TransactionType(Enum):
    DEPOSIT = "deposit"
    WITHDRAWAL_REQUEST = "withdrawal_request"
    APPROVAL = "approval"
    REJECTION = "rejection"
    WITHDRAWAL_COMPLETE = "withdrawal_complete"


class HistoryType(Enum):
    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"
    TRANSFER = "transfer"


# Numeric tx_type codes emitted by the ledger module
_HISTORY_CODES = {
    0: HistoryType.DEPOSIT,
    1: HistoryType.WITHDRAWAL,
    2: HistoryType.TRANSFER,
}

SYSTEM_ACTOR = "system"


@dataclass(frozen=True)
class WithdrawalRequest:
    """Request to release funds from a vault, pending member approval"""
    id: str
    vault_id: str
    requester_id: str
    amount: int  # base units
    purpose: str
    approvals: Tuple[str, ...]
    rejections: Tuple[str, ...]
    status: RequestStatus
    created_at: datetime
    expires_at: datetime

    @property
    def is_pending(self) -> bool:
        return self.status == RequestStatus.PENDING

    def has_approved(self, actor: str) -> bool:
        key = normalize_address(actor)
        return any(normalize_address(a) == key for a in self.approvals)

    def has_rejected(self, actor: str) -> bool:
        key = normalize_address(actor)
        return any(normalize_address(a) == key for a in self.rejections)

    def has_voted(self, actor: str) -> bool:
        return self.has_approved(actor) or self.has_rejected(actor)

    def with_approval(self, actor: str) -> 'WithdrawalRequest':
        return replace(self, approvals=self.approvals + (actor,))

    def with_rejection(self, actor: str) -> 'WithdrawalRequest':
        return replace(self, rejections=self.rejections + (actor,))

    def with_status(self, status: RequestStatus) -> 'WithdrawalRequest':
        return replace(self, status=status)


@dataclass(frozen=True)
class Transaction:
    """Local activity record; a shadow of ledger history, never authoritative"""
    id: str
    vault_id: str
    type: TransactionType
    timestamp: datetime
    amount: Optional[int] = None
    from_address: Optional[str] = None
    purpose: Optional[str] = None
    withdrawal_request_id: Optional[str] = None


@dataclass(frozen=True)
class TransactionHistory:
    """Ledger-confirmed history entry"""
    id: int
    tx_type: HistoryType
    from_address: str
    to_address: str
    amount: int  # base units
    description: str
    tx_hash: str
    timestamp: int  # ledger clock, epoch seconds
    executed_by: str

    @classmethod
    def from_ledger(cls, row: Dict[str, Any]) -> 'TransactionHistory':
        """Build from a get_transaction_history row"""
        raw_type = row['tx_type']
        if isinstance(raw_type, str) and raw_type.isdigit():
            raw_type = int(raw_type)
        if isinstance(raw_type, int):
            if raw_type not in _HISTORY_CODES:
                raise ValueError(f"Unknown history type code {raw_type}")
            tx_type = _HISTORY_CODES[raw_type]
        else:
            tx_type = HistoryType(raw_type)

        return cls(
            id=int(row['id']),
            tx_type=tx_type,
            from_address=row.get('from', ''),
            to_address=row.get('to', ''),
            amount=int(row.get('amount', 0)),
            description=row.get('description', ''),
            tx_hash=row.get('tx_hash', ''),
            timestamp=int(row.get('timestamp', 0)),
            executed_by=row.get('executed_by', ''),
        )


def utc_now() -> datetime:
    """Default session clock"""
    return datetime.now(timezone.utc)

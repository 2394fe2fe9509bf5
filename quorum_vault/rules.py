from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum

from .records import WithdrawalRequest
from .vault import Vault

DEFAULT_EXPIRY = timedelta(hours=24)


class RejectionMode(Enum):
    VETO = "veto"  # any single member can finalize a rejection
    QUORUM = "quorum"  # rejection needs as many members as approval


@dataclass(frozen=True)
class ApprovalRules:
    """Approval policy applied to every withdrawal request of a session"""

    expiry: timedelta = DEFAULT_EXPIRY
    rejection_mode: RejectionMode = RejectionMode.VETO

    def __post_init__(self):
        if self.expiry <= timedelta(0):
            raise ValueError("Request expiry window must be positive")

    @classmethod
    def veto(cls) -> 'ApprovalRules':
        """One rejection closes the request"""
        return cls(rejection_mode=RejectionMode.VETO)

    @classmethod
    def symmetric(cls) -> 'ApprovalRules':
        """Rejection requires the same quorum as approval"""
        return cls(rejection_mode=RejectionMode.QUORUM)

    def expires_at(self, created_at: datetime) -> datetime:
        return created_at + self.expiry

    def is_expired(self, request: WithdrawalRequest, now: datetime) -> bool:
        """Expiry is strict: a request is still live exactly at expires_at"""
        return request.is_pending and now > request.expires_at

    def approvals_needed(self, vault: Vault) -> int:
        return vault.signatures_required

    def rejections_needed(self, vault: Vault) -> int:
        if self.rejection_mode == RejectionMode.VETO:
            return 1
        return vault.signatures_required

    def has_quorum(self, request: WithdrawalRequest, vault: Vault) -> bool:
        return len(request.approvals) >= self.approvals_needed(vault)

    def is_vetoed(self, request: WithdrawalRequest, vault: Vault) -> bool:
        return len(request.rejections) >= self.rejections_needed(vault)

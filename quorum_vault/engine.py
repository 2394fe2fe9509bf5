"""
Quorum state machine for withdrawal requests

    pending -> approved   distinct approvals reach the vault's threshold
    pending -> rejected   rejections reach the configured rejection threshold
    pending -> expired    swept after expires_at

Terminal states freeze approvals and rejections. Validation failures are
reported through Outcome and never raised.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional

from .errors import (
    DuplicateVote,
    InsufficientBalance,
    InvalidRequest,
    NotAMember,
    RequestClosed,
    RequestNotFound,
    VaultError,
)
from .records import (
    SYSTEM_ACTOR,
    RequestStatus,
    Transaction,
    TransactionType,
    WithdrawalRequest,
    utc_now,
)
from .rules import ApprovalRules
from .store import VaultStore

logger = logging.getLogger(__name__)

QuorumListener = Callable[[WithdrawalRequest], None]


@dataclass(frozen=True)
class Outcome:
    """Result of one engine operation"""
    applied: bool
    request: Optional[WithdrawalRequest] = None
    error: Optional[VaultError] = None
    released: bool = False

    @property
    def ok(self) -> bool:
        return self.applied and self.error is None

    @classmethod
    def noop(cls, error: VaultError, request: Optional[WithdrawalRequest] = None) -> 'Outcome':
        return cls(applied=False, request=request, error=error)


class WithdrawalApprovalEngine:
    """Creates, votes on, releases and expires withdrawal requests"""

    def __init__(
        self,
        store: VaultStore,
        rules: Optional[ApprovalRules] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.rules = rules or ApprovalRules.veto()
        self.clock = clock
        self._quorum_listeners: List[QuorumListener] = []

    def add_quorum_listener(self, listener: QuorumListener) -> None:
        """Called with the request each time a withdrawal is released"""
        self._quorum_listeners.append(listener)

    def create(self, vault_id: str, requester: str, amount: int, purpose: str) -> Outcome:
        """Open a withdrawal request; the requester counts as its first approval"""
        vault = self.store.get_vault(vault_id)
        if vault is None:
            return Outcome.noop(RequestNotFound(f"Vault {vault_id} not found"))

        if amount <= 0:
            return Outcome.noop(InvalidRequest(f"Withdrawal amount must be positive, got {amount}"))
        if not purpose or not purpose.strip():
            return Outcome.noop(InvalidRequest("Withdrawal purpose is required"))
        if not vault.is_member(requester):
            return Outcome.noop(NotAMember(f"{requester} is not a member of vault {vault_id}"))
        available = self.store.available_balance(vault_id)
        if amount > available:
            return Outcome.noop(InsufficientBalance(
                f"Insufficient balance: need {amount}, have {available}"
            ))

        now = self.clock()
        request = WithdrawalRequest(
            id=self.store.next_id("request", vault_id, requester),
            vault_id=vault_id,
            requester_id=requester,
            amount=amount,
            purpose=purpose.strip(),
            approvals=(requester,),
            rejections=(),
            status=RequestStatus.PENDING,
            created_at=now,
            expires_at=self.rules.expires_at(now),
        )
        self.store.add_request(request)
        self._record(
            request,
            TransactionType.WITHDRAWAL_REQUEST,
            amount=amount,
            from_address=requester,
            purpose=request.purpose,
        )
        logger.info("Withdrawal %s opened on vault %s for %d", request.id, vault_id, amount)

        # A 1-of-n vault is already at quorum with the requester's approval
        return self._release_if_quorum(request)

    def approve(self, request_id: str, actor: str) -> Outcome:
        request, error = self._open_for_vote(request_id, actor)
        if error is not None:
            return Outcome.noop(error, request)

        updated = request.with_approval(actor)
        self.store.replace_request(updated)
        self._record(updated, TransactionType.APPROVAL, from_address=actor)

        # Quorum is checked on every approval so release happens at the earliest vote
        return self._release_if_quorum(updated)

    def reject(self, request_id: str, actor: str) -> Outcome:
        request, error = self._open_for_vote(request_id, actor)
        if error is not None:
            return Outcome.noop(error, request)

        updated = request.with_rejection(actor)
        self._record(updated, TransactionType.REJECTION, from_address=actor)

        vault = self.store.get_vault(updated.vault_id)
        if self.rules.is_vetoed(updated, vault):
            updated = updated.with_status(RequestStatus.REJECTED)
            logger.info("Withdrawal %s rejected by %s", updated.id, actor)

        self.store.replace_request(updated)
        return Outcome(applied=True, request=updated)

    def sweep_expired(self, now: Optional[datetime] = None) -> List[WithdrawalRequest]:
        """Expire every pending request past its window"""
        now = now or self.clock()
        expired = []

        for request in self.store.pending_requests():
            if not self.rules.is_expired(request, now):
                continue
            closed = request.with_status(RequestStatus.EXPIRED)
            self.store.replace_request(closed)
            self._record(closed, TransactionType.REJECTION, from_address=SYSTEM_ACTOR, timestamp=now)
            logger.info("Withdrawal %s expired", closed.id)
            expired.append(closed)

        return expired

    def release_ready(self) -> List[WithdrawalRequest]:
        """Release pending requests whose quorum is met and now covered by the available balance"""
        released = []

        for request in self.store.pending_requests():
            vault = self.store.get_vault(request.vault_id)
            if vault is None or not self.rules.has_quorum(request, vault):
                continue
            if request.amount > self.store.available_balance(vault.id):
                continue
            outcome = self._release_if_quorum(request)
            if outcome.released:
                released.append(outcome.request)

        return released

    def _open_for_vote(self, request_id: str, actor: str):
        request = self.store.get_request(request_id)
        if request is None:
            return None, RequestNotFound(f"Request {request_id} not found")
        if not request.is_pending:
            return request, RequestClosed(f"Request {request_id} is {request.status.value}")
        if request.has_voted(actor):
            return request, DuplicateVote(f"{actor} already voted on {request_id}")

        vault = self.store.get_vault(request.vault_id)
        if vault is None:
            return request, RequestNotFound(f"Vault {request.vault_id} not found")
        if not vault.is_member(actor):
            return request, NotAMember(f"{actor} is not a member of vault {vault.id}")

        return request, None

    def _release_if_quorum(self, request: WithdrawalRequest) -> Outcome:
        vault = self.store.get_vault(request.vault_id)
        if vault is None or not self.rules.has_quorum(request, vault):
            return Outcome(applied=True, request=request)

        available = self.store.available_balance(vault.id)
        if request.amount > available:
            logger.warning(
                "Withdrawal %s reached quorum but vault %s has %d of %d available",
                request.id, vault.id, available, request.amount,
            )
            return Outcome(
                applied=True,
                request=request,
                error=InsufficientBalance(
                    f"Insufficient balance: need {request.amount}, have {available}"
                ),
            )

        # Optimistic projection; the next ledger pull supersedes it
        self.store.project_vault(vault.with_balance(available - request.amount))
        released = request.with_status(RequestStatus.APPROVED)
        self.store.replace_request(released)
        self._record(released, TransactionType.WITHDRAWAL_COMPLETE, amount=released.amount)
        logger.info("Withdrawal %s approved, released %d from vault %s", released.id, released.amount, vault.id)

        for listener in self._quorum_listeners:
            listener(released)

        return Outcome(applied=True, request=released, released=True)

    def _record(self, request: WithdrawalRequest, tx_type: TransactionType, timestamp: Optional[datetime] = None, **fields) -> None:
        self.store.append_transaction(Transaction(
            id=self.store.next_id("tx", request.vault_id, tx_type.value),
            vault_id=request.vault_id,
            type=tx_type,
            timestamp=timestamp or self.clock(),
            withdrawal_request_id=request.id,
            **fields
        ))

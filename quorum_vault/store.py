"""
In-memory state of one member's session

Two layers are kept for vaults. ConfirmedState is the last successful ledger
pull. ProjectedState holds records this session changed optimistically (a
released withdrawal lowers the balance before the ledger says so). Reads see
the projection when there is one; a reconciliation drops the projection of
every vault it pulled, so confirmed state always wins on conflict.

Every write replaces a whole frozen record. Readers holding a record or a
snapshot never observe a partial update.
"""

import hashlib
import itertools
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from .records import RequestStatus, Transaction, WithdrawalRequest
from .vault import Vault

logger = logging.getLogger(__name__)


@dataclass
class ConfirmedState:
    vaults: Dict[str, Vault] = field(default_factory=dict)
    synced_at: Optional[datetime] = None


@dataclass
class ProjectedState:
    vaults: Dict[str, Vault] = field(default_factory=dict)


@dataclass(frozen=True)
class StoreSnapshot:
    vaults: tuple
    requests: tuple
    transactions: tuple


class VaultStore:
    """Session cache of vaults, withdrawal requests and local activity"""

    def __init__(self):
        self.confirmed = ConfirmedState()
        self.projected = ProjectedState()
        self._order: List[str] = []  # vault display order from the last pull
        self._requests: Dict[str, WithdrawalRequest] = {}
        self._transactions: List[Transaction] = []
        self._counter = itertools.count(1)

    # Identifiers

    def next_id(self, prefix: str, *parts: str) -> str:
        """Deterministic short id from a session counter and its context"""
        seed = "_".join([str(next(self._counter))] + [str(p) for p in parts])
        return f"{prefix}-{hashlib.sha256(seed.encode()).hexdigest()[:16]}"

    # Vaults

    def vaults(self) -> List[Vault]:
        return [self.get_vault(vault_id) for vault_id in self._order]

    def get_vault(self, vault_id: str) -> Optional[Vault]:
        projected = self.projected.vaults.get(vault_id)
        if projected is not None:
            return projected
        return self.confirmed.vaults.get(vault_id)

    def confirmed_vault(self, vault_id: str) -> Optional[Vault]:
        return self.confirmed.vaults.get(vault_id)

    def find_by_owner(self, owner_address: str) -> Optional[Vault]:
        for vault in self.vaults():
            if vault.owner_address == owner_address:
                return vault
        return None

    def project_vault(self, vault: Vault) -> None:
        """Record an optimistic change to a vault"""
        if vault.id not in self.confirmed.vaults:
            raise KeyError(f"Unknown vault {vault.id}")
        self.projected.vaults[vault.id] = vault

    def is_projected(self, vault_id: str) -> bool:
        return vault_id in self.projected.vaults

    def released_amount(self, vault_id: str) -> int:
        """Total of withdrawals this session released from the vault"""
        return sum(
            r.amount for r in self._requests.values()
            if r.vault_id == vault_id and r.status == RequestStatus.APPROVED
        )

    def available_balance(self, vault_id: str) -> Optional[int]:
        """Confirmed balance less every withdrawal this session released

        The ledger has no withdrawal entry, so a pull never reflects a
        release. Releases stay committed against the confirmed balance for
        the life of the session.
        """
        vault = self.confirmed.vaults.get(vault_id)
        if vault is None:
            return None
        return max(0, vault.balance - self.released_amount(vault_id))

    def reconcile(self, vaults: Iterable[Vault], stale_ids: Iterable[str] = (), synced_at: Optional[datetime] = None) -> None:
        """Replace confirmed state with a ledger pull

        Vaults named in stale_ids could not be fetched and keep their last
        known records. Every other vault missing from the pull is dropped.
        """
        pulled = {vault.id: vault for vault in vaults}
        stale = [vid for vid in stale_ids if vid in self.confirmed.vaults and vid not in pulled]

        confirmed = dict(pulled)
        for vault_id in stale:
            confirmed[vault_id] = self.confirmed.vaults[vault_id]

        projected = {
            vault_id: vault
            for vault_id, vault in self.projected.vaults.items()
            if vault_id in stale
        }

        dropped = set(self.confirmed.vaults) - set(confirmed)
        for vault_id in dropped:
            logger.info("Vault %s no longer visible to this member", vault_id)

        order = [vid for vid in self._order if vid in confirmed]
        order += [vid for vid in confirmed if vid not in order]

        self.confirmed = ConfirmedState(vaults=confirmed, synced_at=synced_at)
        self.projected = ProjectedState(vaults=projected)
        self._order = order

    # Withdrawal requests

    def add_request(self, request: WithdrawalRequest) -> None:
        if request.id in self._requests:
            raise KeyError(f"Duplicate request id {request.id}")
        self._requests[request.id] = request

    def replace_request(self, request: WithdrawalRequest) -> None:
        if request.id not in self._requests:
            raise KeyError(f"Unknown request {request.id}")
        self._requests[request.id] = request

    def get_request(self, request_id: str) -> Optional[WithdrawalRequest]:
        return self._requests.get(request_id)

    def requests(self) -> List[WithdrawalRequest]:
        return list(self._requests.values())

    def requests_for_vault(self, vault_id: str) -> List[WithdrawalRequest]:
        return [r for r in self._requests.values() if r.vault_id == vault_id]

    def pending_requests(self) -> List[WithdrawalRequest]:
        return [r for r in self._requests.values() if r.is_pending]

    # Local activity log (append-only)

    def append_transaction(self, transaction: Transaction) -> None:
        self._transactions.append(transaction)

    def transactions(self) -> List[Transaction]:
        return list(self._transactions)

    def transactions_for_vault(self, vault_id: str) -> List[Transaction]:
        return [t for t in self._transactions if t.vault_id == vault_id]

    def snapshot(self) -> StoreSnapshot:
        return StoreSnapshot(
            vaults=tuple(self.vaults()),
            requests=tuple(self._requests.values()),
            transactions=tuple(self._transactions),
        )

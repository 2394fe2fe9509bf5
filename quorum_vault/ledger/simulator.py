"""
In-process ledger implementing the vault module ABI

Used by the demo and the tests in place of a fullnode. Every state change
goes through a signed submission, the same way a remote member's client
would reach the real ledger.
"""

import asyncio
import hashlib
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from ..errors import ConfirmationTimeout, LedgerUnavailable, SubmissionRejected
from ..records import utc_now
from .gateway import (
    CREATE_VAULT,
    DEPOSIT_TO_VAULT,
    EREGISTRY_NOT_INITIALIZED,
    GET_ALL_VAULT_OWNERS,
    GET_TRANSACTION_HISTORY,
    GET_VAULT_INFO,
    GET_VAULT_MEMBERS,
    GET_VAULT_RESOURCE_ACCOUNT,
    INITIALIZE_VAULT_REGISTRY,
    IS_USER_VAULT_MEMBER,
    UPDATE_TRANSACTION_HASH,
    LedgerGateway,
    rejection_for,
)
from .wallet import MemberKey, signing_message

logger = logging.getLogger(__name__)

# Module abort codes
ENOT_AUTHORIZED = 1001
EVAULT_EXISTS = 1002
EINVALID_VAULT = 1003
EVAULT_NOT_FOUND = 1004
ENO_PENDING_ENTRY = 1005
EINVALID_AMOUNT = 1006

DEPOSIT_CODE = 0


class MoveAbort(Exception):
    def __init__(self, vm_status: str):
        super().__init__(vm_status)
        self.vm_status = vm_status


@dataclass
class SimulatedVault:
    id: int
    name: str
    creator: str
    members: List[Dict[str, str]]
    signatures_required: int
    balance: int
    created_at: int
    resource_address: str
    history: List[Dict[str, Any]] = field(default_factory=list)


class LedgerSimulator(LedgerGateway):
    """Ledger whose module is published at `module_address` (the deployer)"""

    def __init__(
        self,
        module_address: str,
        module_name: str = "multisig",
        clock: Callable[[], datetime] = utc_now,
        confirmation_timeout: float = 30.0,
    ):
        super().__init__(module_address, module_name)
        self.clock = clock
        self.confirmation_timeout = confirmation_timeout
        self.registry_initialized = False
        self.coins: Dict[str, int] = {}
        self.owners: List[str] = []
        self.vaults: Dict[str, SimulatedVault] = {}
        self.hold_confirmations = False
        self._committed: Dict[str, Dict[str, Any]] = {}
        self._released: Dict[str, asyncio.Event] = {}
        self._failing_views: Set[Tuple[str, Optional[str]]] = set()
        self._vault_seq = 0
        self._tx_seq = 0

    # Test controls

    def fund(self, address: str, amount: int) -> None:
        """Credit coins to an account"""
        self.coins[address] = self.coins.get(address, 0) + amount

    def balance_of(self, address: str) -> int:
        return self.coins.get(address, 0)

    def fail_view(self, function_name: str, owner: Optional[str] = None) -> None:
        """Make a view fail, for every vault or only for `owner`"""
        self._failing_views.add((function_name, owner))

    def clear_failures(self) -> None:
        self._failing_views.clear()

    def release_confirmations(self) -> None:
        self.hold_confirmations = False
        for event in self._released.values():
            event.set()

    # Views

    async def query_view(self, function_name: str, args: List[Any]) -> List[Any]:
        for failing, owner in self._failing_views:
            if failing == function_name and (owner is None or owner in args):
                raise LedgerUnavailable(f"View {function_name} failed: simulated outage")

        views = {
            GET_ALL_VAULT_OWNERS: self._view_owners,
            IS_USER_VAULT_MEMBER: self._view_is_member,
            GET_VAULT_INFO: self._view_info,
            GET_VAULT_MEMBERS: self._view_members,
            GET_TRANSACTION_HISTORY: self._view_history,
            GET_VAULT_RESOURCE_ACCOUNT: self._view_resource_account,
        }
        if function_name not in views:
            raise LedgerUnavailable(f"Unknown view function {function_name}")

        try:
            return views[function_name](*args)
        except MoveAbort as e:
            raise LedgerUnavailable(f"View {function_name} aborted: {e.vm_status}") from e

    def _view_owners(self) -> List[Any]:
        return [list(self.owners)]

    def _view_is_member(self, user: str, owner: str) -> List[Any]:
        vault = self._vault(owner)
        return [any(m['address'] == user for m in vault.members)]

    def _view_info(self, owner: str) -> List[Any]:
        vault = self._vault(owner)
        return [
            str(vault.id),
            vault.name,
            vault.creator,
            str(len(vault.members)),
            str(vault.signatures_required),
            str(vault.balance),
            str(vault.created_at),
        ]

    def _view_members(self, owner: str) -> List[Any]:
        return [[dict(m) for m in self._vault(owner).members]]

    def _view_history(self, owner: str) -> List[Any]:
        return [[dict(row) for row in self._vault(owner).history]]

    def _view_resource_account(self, owner: str) -> List[Any]:
        vault = self._vault(owner)
        return [vault.resource_address, str(vault.balance)]

    # Submissions

    async def submit_signed(self, signed_transaction: Dict[str, Any]) -> str:
        sender = signed_transaction.get('sender', '')
        payload = signed_transaction.get('payload', {})
        signature = signed_transaction.get('signature', {})
        public_key = signature.get('public_key', '')

        if not public_key or MemberKey.address_for(public_key) != sender:
            raise SubmissionRejected("INVALID_AUTH_KEY: sender does not match public key")
        if not MemberKey.verify_signature(signing_message(payload, sender), signature.get('signature', ''), public_key):
            raise SubmissionRejected("INVALID_SIGNATURE")

        self._tx_seq += 1
        tx_hash = '0x' + hashlib.sha3_256(
            json.dumps([self._tx_seq, signed_transaction], sort_keys=True).encode()
        ).hexdigest()

        function_name = payload.get('function', '').rsplit('::', 1)[-1]
        try:
            self._execute(tx_hash, sender, function_name, payload.get('arguments', []))
            vm_status, success = "Executed successfully", True
        except MoveAbort as e:
            vm_status, success = e.vm_status, False

        self._committed[tx_hash] = {
            'type': 'user_transaction',
            'hash': tx_hash,
            'sender': sender,
            'payload': payload,
            'success': success,
            'vm_status': vm_status,
        }
        self._released[tx_hash] = asyncio.Event()
        if not self.hold_confirmations:
            self._released[tx_hash].set()
        logger.debug("Committed %s (%s): %s", function_name, tx_hash, vm_status)
        return tx_hash

    async def await_confirmation(self, tx_hash: str, timeout: Optional[float] = None) -> Dict[str, Any]:
        timeout = self.confirmation_timeout if timeout is None else timeout
        if tx_hash not in self._committed:
            raise SubmissionRejected(f"Unknown transaction {tx_hash}")

        try:
            await asyncio.wait_for(self._released[tx_hash].wait(), timeout)
        except asyncio.TimeoutError:
            raise ConfirmationTimeout(tx_hash, timeout)

        txn = self._committed[tx_hash]
        if not txn['success']:
            raise rejection_for(txn['vm_status'], tx_hash)
        return txn

    def _execute(self, tx_hash: str, sender: str, function_name: str, args: List[Any]) -> None:
        entries = {
            INITIALIZE_VAULT_REGISTRY: self._initialize_registry,
            CREATE_VAULT: self._create_vault,
            DEPOSIT_TO_VAULT: self._deposit,
            UPDATE_TRANSACTION_HASH: self._update_hash,
        }
        if function_name not in entries:
            raise MoveAbort(f"FUNCTION_RESOLUTION_FAILURE: {function_name}")
        entries[function_name](sender, *args)

    def _initialize_registry(self, sender: str) -> None:
        if sender != self.module_address:
            self._abort(ENOT_AUTHORIZED)
        if self.registry_initialized:
            raise MoveAbort("RESOURCE_ALREADY_EXISTS")
        self.registry_initialized = True

    def _create_vault(self, sender: str, name: str, addresses: List[str], names: List[str], signatures_required) -> None:
        if not self.registry_initialized:
            self._abort(EREGISTRY_NOT_INITIALIZED)
        if sender in self.vaults:
            self._abort(EVAULT_EXISTS)

        threshold = int(signatures_required)
        if not name or not addresses or len(addresses) != len(names):
            self._abort(EINVALID_VAULT)
        if not (1 <= threshold <= len(addresses)):
            self._abort(EINVALID_VAULT)

        self._vault_seq += 1
        self.vaults[sender] = SimulatedVault(
            id=self._vault_seq,
            name=name,
            creator=sender,
            members=[{'address': a, 'name': n} for a, n in zip(addresses, names)],
            signatures_required=threshold,
            balance=0,
            created_at=self._now(),
            resource_address='0x' + hashlib.sha3_256(f"{sender}::vault".encode()).hexdigest(),
        )
        self.owners.append(sender)

    def _deposit(self, sender: str, owner: str, amount) -> None:
        vault = self._vault(owner)
        amount = int(amount)
        if amount <= 0:
            self._abort(EINVALID_AMOUNT)
        if self.balance_of(sender) < amount:
            raise MoveAbort("Move abort in 0x1::coin: EINSUFFICIENT_BALANCE(0x10006): Not enough coins")

        self.coins[sender] -= amount
        self.fund(vault.resource_address, amount)
        vault.balance += amount
        vault.history.append({
            'id': str(len(vault.history) + 1),
            'tx_type': DEPOSIT_CODE,
            'from': sender,
            'to': vault.resource_address,
            'amount': str(amount),
            'description': "Deposit to vault",
            'tx_hash': '',
            'timestamp': str(self._now()),
            'executed_by': sender,
        })

    def _update_hash(self, sender: str, owner: str, recorded_hash: str) -> None:
        vault = self._vault(owner)
        for row in reversed(vault.history):
            if row['executed_by'] == sender and not row['tx_hash']:
                row['tx_hash'] = recorded_hash
                return
        self._abort(ENO_PENDING_ENTRY)

    def _vault(self, owner: str) -> SimulatedVault:
        if owner not in self.vaults:
            self._abort(EVAULT_NOT_FOUND)
        return self.vaults[owner]

    def _abort(self, code: int) -> None:
        raise MoveAbort(f"Move abort in {self.module_address}::{self.module_name}: {hex(code)}")

    def _now(self) -> int:
        return int(self.clock().timestamp())

"""
One member's session against a set of shared vaults
"""

import asyncio
import logging
from datetime import datetime
from decimal import Decimal
from typing import Callable, List, Optional, Sequence, Union

from .config import Settings, load_settings
from .deposit import DepositPipeline, DepositReceipt
from .engine import Outcome, WithdrawalApprovalEngine
from .errors import InvalidRequest, PermissionDenied, RequestNotFound, SubmissionRejected, WalletNotConnected
from .ledger.gateway import (
    CREATE_VAULT,
    EREGISTRY_NOT_INITIALIZED,
    GET_TRANSACTION_HISTORY,
    INITIALIZE_VAULT_REGISTRY,
    LedgerGateway,
)
from .ledger.wallet import WalletAdapter
from .records import Transaction, TransactionHistory, WithdrawalRequest, utc_now
from .store import VaultStore
from .sync import SyncReport, SynchronizationScheduler
from .units import to_base_units
from .vault import Vault, VaultMember, normalize_address

logger = logging.getLogger(__name__)

Amount = Union[Decimal, str, int]


class VaultSession:
    """Wires the store, engine, scheduler and deposit pipeline for the connected member"""

    def __init__(
        self,
        gateway: LedgerGateway,
        wallet: WalletAdapter,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utc_now,
        sleep=asyncio.sleep,
    ):
        self.settings = settings or load_settings()
        self.gateway = gateway
        self.wallet = wallet
        self.clock = clock
        self.current_user = ""

        self.store = VaultStore()
        self.engine = WithdrawalApprovalEngine(self.store, self.settings.approval.to_rules(), clock)
        self.scheduler = SynchronizationScheduler(
            self.store,
            gateway,
            self.engine,
            sweep_interval=self.settings.scheduler.sweep_interval_seconds,
            sync_interval=self.settings.scheduler.sync_interval_seconds,
            clock=clock,
            sleep=sleep,
        )
        self.deposits = DepositPipeline(self.store, gateway, self.scheduler, clock)

        self.engine.add_quorum_listener(self._on_quorum)
        self.scheduler.add_reconciled_listener(lambda report: self.engine.release_ready())

    async def __aenter__(self) -> 'VaultSession':
        await self.open()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def open(self) -> None:
        """Connect the wallet, pull vaults and start the scheduler"""
        await self.wallet.connect()
        if not await self.wallet.is_connected():
            raise WalletNotConnected("Wallet not connected")

        account = await self.wallet.account()
        self.current_user = account['address']
        self.scheduler.member = self.current_user
        logger.info("Session opened for %s", self.current_user)

        await self.scheduler.sync_now()
        self.scheduler.start()

    async def close(self) -> None:
        """Stop the scheduler, disconnect the wallet and release the gateway client"""
        await self.scheduler.stop()
        await self.wallet.disconnect()
        aclose = getattr(self.gateway, "aclose", None)
        if aclose is not None:
            await aclose()
        logger.info("Session closed for %s", self.current_user)

    # Reads

    def vaults(self) -> List[Vault]:
        return self.store.vaults()

    def get_vault(self, vault_id: str) -> Optional[Vault]:
        return self.store.get_vault(vault_id)

    def get_request(self, request_id: str) -> Optional[WithdrawalRequest]:
        return self.store.get_request(request_id)

    def requests_for_vault(self, vault_id: str) -> List[WithdrawalRequest]:
        return self.store.requests_for_vault(vault_id)

    def transactions_for_vault(self, vault_id: str) -> List[Transaction]:
        return self.store.transactions_for_vault(vault_id)

    async def refresh(self) -> SyncReport:
        return await self.scheduler.request_sync()

    async def transaction_history(self, vault_id: str) -> List[TransactionHistory]:
        """Ledger-confirmed history of a vault, newest first"""
        vault = self.store.get_vault(vault_id)
        if vault is None:
            raise RequestNotFound(f"Vault {vault_id} not found")

        result = await self.gateway.query_view(GET_TRANSACTION_HISTORY, [vault.owner_address])
        rows = result[0] if result else []
        history = [TransactionHistory.from_ledger(row) for row in rows or []]
        return sorted(history, key=lambda h: (h.timestamp, h.id), reverse=True)

    # Withdrawals

    def request_withdrawal(self, vault_id: str, amount: Amount, purpose: str) -> Outcome:
        self._require_user()
        try:
            base_units = to_base_units(amount)
        except ValueError as e:
            return Outcome.noop(InvalidRequest(str(e)))
        return self.engine.create(vault_id, self.current_user, base_units, purpose)

    def approve(self, request_id: str) -> Outcome:
        self._require_user()
        return self.engine.approve(request_id, self.current_user)

    def reject(self, request_id: str) -> Outcome:
        self._require_user()
        return self.engine.reject(request_id, self.current_user)

    # Ledger writes

    async def deposit(self, vault_id: str, amount: Amount) -> DepositReceipt:
        self._require_user()
        return await self.deposits.deposit(vault_id, to_base_units(amount), self.wallet, self.current_user)

    async def create_vault(self, name: str, members: Sequence[VaultMember], signatures_required: int) -> str:
        """Create a vault owned by the connected account and return the transaction hash"""
        self._require_user()

        # Same invariants the ledger enforces; fail before asking for a signature
        draft = Vault(
            id="draft",
            name=name.strip(),
            members=tuple(members),
            signatures_required=signatures_required,
            balance=0,
            created_at=self.clock(),
            owner_address=self.current_user,
        )
        args = [
            draft.name,
            draft.addresses,
            [m.name or "" for m in draft.members],
            str(draft.signatures_required),
        ]

        try:
            tx_hash = await self.gateway.submit(CREATE_VAULT, args, self.wallet)
            await self.gateway.await_confirmation(tx_hash)
        except SubmissionRejected as e:
            if e.abort_code == EREGISTRY_NOT_INITIALIZED:
                raise SubmissionRejected(
                    "Registry not initialized. Ask the contract deployer to initialize it.",
                    vm_status=e.vm_status,
                    abort_code=e.abort_code,
                ) from e
            raise

        logger.info("Vault %r created (%s)", draft.name, tx_hash)
        await self.scheduler.request_sync()
        return tx_hash

    async def initialize_registry(self) -> bool:
        """One-time registry setup; False when it already existed"""
        self._require_user()
        if normalize_address(self.current_user) != normalize_address(self.gateway.module_address):
            raise PermissionDenied("Only the contract deployer can initialize the registry")

        try:
            tx_hash = await self.gateway.submit(INITIALIZE_VAULT_REGISTRY, [], self.wallet)
            await self.gateway.await_confirmation(tx_hash)
        except SubmissionRejected as e:
            if "RESOURCE_ALREADY_EXISTS" in (e.vm_status or str(e)):
                logger.info("Registry already initialized")
                return False
            raise

        logger.info("Vault registry initialized (%s)", tx_hash)
        return True

    def _require_user(self) -> None:
        if not self.current_user:
            raise WalletNotConnected("Wallet not connected")

    def _on_quorum(self, request: WithdrawalRequest) -> None:
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No event loop, ledger pull after %s deferred to the timer", request.id)
            return
        self.scheduler.request_sync()

"""
Two-phase deposit into a vault

Phase 1 moves the funds and is the deposit. Phase 2 writes the phase 1
transaction hash into the vault's ledger history; a failure there is logged
and reported on the receipt, never raised.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from .errors import RequestNotFound, VaultError
from .ledger.gateway import DEPOSIT_TO_VAULT, GET_VAULT_RESOURCE_ACCOUNT, UPDATE_TRANSACTION_HASH, LedgerGateway
from .ledger.wallet import WalletAdapter
from .records import Transaction, TransactionType, utc_now
from .store import VaultStore
from .sync import SynchronizationScheduler

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DepositReceipt:
    vault_id: str
    amount: int  # base units
    tx_hash: str
    holding_account: str
    recorded: bool
    record_hash: Optional[str] = None


class DepositPipeline:
    """Moves funds into a vault's holding account and records the transfer"""

    def __init__(
        self,
        store: VaultStore,
        gateway: LedgerGateway,
        scheduler: SynchronizationScheduler,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.gateway = gateway
        self.scheduler = scheduler
        self.clock = clock

    async def deposit(self, vault_id: str, amount: int, signer: WalletAdapter, depositor: str) -> DepositReceipt:
        """Deposit `amount` base units; the local balance changes only through the following pull"""
        vault = self.store.get_vault(vault_id)
        if vault is None:
            raise RequestNotFound(f"Vault {vault_id} not found")
        if amount <= 0:
            raise ValueError(f"Deposit amount must be positive, got {amount}")

        owner = vault.owner_address
        holding_account, _ = await self.gateway.query_view(GET_VAULT_RESOURCE_ACCOUNT, [owner])

        # Phase 1: value transfer
        tx_hash = await self.gateway.submit(DEPOSIT_TO_VAULT, [owner, str(amount)], signer)
        await self.gateway.await_confirmation(tx_hash)
        logger.info("Deposit of %d into vault %s confirmed (%s)", amount, vault_id, tx_hash)

        self.store.append_transaction(Transaction(
            id=self.store.next_id("tx", vault_id, TransactionType.DEPOSIT.value),
            vault_id=vault_id,
            type=TransactionType.DEPOSIT,
            timestamp=self.clock(),
            amount=amount,
            from_address=depositor,
        ))
        refresh = self.scheduler.request_sync()

        # Phase 2: record the transfer hash on the ledger's history
        record_hash = None
        try:
            record_hash = await self.gateway.submit(UPDATE_TRANSACTION_HASH, [owner, tx_hash], signer)
            await self.gateway.await_confirmation(record_hash)
            recorded = True
        except VaultError as e:
            logger.warning("Deposit %s succeeded but recording its hash failed: %s", tx_hash, e)
            recorded = False

        await refresh

        return DepositReceipt(
            vault_id=vault_id,
            amount=amount,
            tx_hash=tx_hash,
            holding_account=holding_account,
            recorded=recorded,
            record_hash=record_hash if recorded else None,
        )

"""
Keeps the session's vault cache in step with the ledger

Two periodic jobs run on the session's event loop: the expiry sweep and the
ledger pull. Pulls can also be requested after any state-changing action.
A pull never raises; failures are logged and whatever could be fetched is
kept.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, List, Optional, Tuple

from .engine import WithdrawalApprovalEngine
from .errors import VaultError
from .ledger.gateway import (
    GET_ALL_VAULT_OWNERS,
    GET_VAULT_INFO,
    GET_VAULT_MEMBERS,
    IS_USER_VAULT_MEMBER,
    LedgerGateway,
)
from .records import WithdrawalRequest, utc_now
from .store import VaultStore
from .units import parse_u64
from .vault import Vault, VaultMember, unique_members

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SyncReport:
    ok: bool
    vaults: Tuple[Vault, ...] = ()
    failed_owners: Tuple[str, ...] = ()


ReconciledListener = Callable[[SyncReport], Any]


class SynchronizationScheduler:
    """Pulls vault state for one member and sweeps expired requests"""

    def __init__(
        self,
        store: VaultStore,
        gateway: LedgerGateway,
        engine: WithdrawalApprovalEngine,
        member: str = "",
        sweep_interval: float = 1.0,
        sync_interval: float = 30.0,
        clock: Callable[[], datetime] = utc_now,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.store = store
        self.gateway = gateway
        self.engine = engine
        self.member = member
        self.sweep_interval = sweep_interval
        self.sync_interval = sync_interval
        self.clock = clock
        self._sleep = sleep
        self._tasks: List[asyncio.Task] = []
        self._requested: Optional[asyncio.Task] = None
        self._resync = False
        self._listeners: List[ReconciledListener] = []

    def add_reconciled_listener(self, listener: ReconciledListener) -> None:
        """Called with the report after every successful reconciliation"""
        self._listeners.append(listener)

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    def start(self) -> None:
        """Start the periodic jobs; must be called from the session's event loop"""
        if self.running:
            return
        self._tasks = [
            asyncio.create_task(self._every(self.sweep_interval, self.sweep_once), name="vault-expiry-sweep"),
            asyncio.create_task(self._every(self.sync_interval, self.sync_now), name="vault-ledger-sync"),
        ]
        logger.info("Scheduler started (sweep %ss, sync %ss)", self.sweep_interval, self.sync_interval)

    async def stop(self) -> None:
        """Cancel every scheduled job, including a requested pull"""
        tasks = list(self._tasks)
        if self._requested is not None:
            tasks.append(self._requested)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks = []
        self._requested = None
        self._resync = False
        logger.info("Scheduler stopped")

    def sweep_once(self) -> List[WithdrawalRequest]:
        return self.engine.sweep_expired(self.clock())

    def request_sync(self) -> asyncio.Task:
        """Schedule a pull; requests made during a pull queue exactly one more"""
        if self._requested is not None and not self._requested.done():
            self._resync = True
            return self._requested
        self._requested = asyncio.create_task(self._run_requested())
        return self._requested

    async def sync_now(self) -> SyncReport:
        """Pull every vault the member belongs to and reconcile the store"""
        if not self.member:
            logger.debug("No member address yet, skipping sync")
            return SyncReport(ok=False)

        try:
            result = await self.gateway.query_view(GET_ALL_VAULT_OWNERS, [])
            owners = result[0] if result else []
        except VaultError as e:
            logger.warning("Error fetching vault owners: %s", e)
            return SyncReport(ok=False)

        vaults = []
        failed = []
        for owner in owners or []:
            try:
                vault = await self._fetch_vault(owner)
            except (VaultError, ValueError, LookupError) as e:
                logger.warning("Error fetching vault %s: %s", owner, e)
                failed.append(owner)
                continue
            if vault is not None:
                vaults.append(vault)

        stale_ids = []
        for owner in failed:
            cached = self.store.find_by_owner(owner)
            if cached is not None:
                stale_ids.append(cached.id)

        self.store.reconcile(vaults, stale_ids, synced_at=self.clock())
        report = SyncReport(ok=True, vaults=tuple(vaults), failed_owners=tuple(failed))
        logger.info("Synced %d vaults (%d failed)", len(vaults), len(failed))

        for listener in self._listeners:
            listener(report)
        return report

    async def _fetch_vault(self, owner: str) -> Optional[Vault]:
        membership = await self.gateway.query_view(IS_USER_VAULT_MEMBER, [self.member, owner])
        if membership[0] not in (True, "true"):
            return None

        info = await self.gateway.query_view(GET_VAULT_INFO, [owner])
        vault_id, name, _creator, _member_count, signatures_required, balance, created_at = info[:7]

        members_result = await self.gateway.query_view(GET_VAULT_MEMBERS, [owner])
        members = [
            VaultMember(m['address'], m.get('name') or None)
            for m in (members_result[0] or [])
        ]

        # Threshold never exceeds the member count
        threshold = max(1, min(int(signatures_required), len(unique_members(members))))

        return Vault(
            id=str(vault_id),
            name=name,
            members=tuple(members),
            signatures_required=threshold,
            balance=parse_u64(balance),
            created_at=datetime.fromtimestamp(int(created_at), tz=timezone.utc),
            owner_address=owner,
        )

    async def _run_requested(self) -> SyncReport:
        report = await self.sync_now()
        while self._resync:
            self._resync = False
            report = await self.sync_now()
        return report

    async def _every(self, interval: float, job: Callable[[], Any]) -> None:
        while True:
            await self._sleep(interval)
            try:
                result = job()
                if asyncio.iscoroutine(result):
                    await result
            except Exception:
                logger.exception("Scheduled job %s failed", getattr(job, '__name__', job))

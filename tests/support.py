"""Shared fixtures for the test suite"""

from datetime import datetime, timedelta, timezone

from quorum_vault.ledger import LedgerSimulator, LocalKeyWallet, MemberKey
from quorum_vault.ledger.gateway import CREATE_VAULT, DEPOSIT_TO_VAULT, INITIALIZE_VAULT_REGISTRY
from quorum_vault.store import VaultStore
from quorum_vault.units import to_base_units
from quorum_vault.vault import Vault, VaultMember

START = datetime(2024, 1, 1, tzinfo=timezone.utc)


class FakeClock:
    """Manually stepped clock"""

    def __init__(self, start: datetime = START):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


def make_vault(vault_id="1", balance=100, members=("0xa", "0xb", "0xc"), signatures_required=2, owner=None) -> Vault:
    """Vault with a display-unit balance"""
    return Vault(
        id=vault_id,
        name=f"Vault {vault_id}",
        members=tuple(VaultMember(address) for address in members),
        signatures_required=signatures_required,
        balance=to_base_units(balance),
        created_at=START,
        owner_address=owner or f"0xowner{vault_id}",
    )


def seeded_store(*vaults: Vault) -> VaultStore:
    store = VaultStore()
    store.reconcile(vaults)
    return store


class LedgerFixture:
    """Simulated ledger with a deployer and three funded members"""

    def __init__(self, clock=None, confirmation_timeout: float = 30.0):
        self.deployer = MemberKey()
        self.ledger = LedgerSimulator(
            self.deployer.address,
            clock=clock or FakeClock(),
            confirmation_timeout=confirmation_timeout,
        )
        self.keys = {name: MemberKey() for name in ("alice", "bob", "carol")}
        for key in self.keys.values():
            self.ledger.fund(key.address, to_base_units(1000))

    def address(self, name: str) -> str:
        return self.keys[name].address

    def wallet(self, name: str, confirm=None) -> LocalKeyWallet:
        key = self.deployer if name == "deployer" else self.keys[name]
        return LocalKeyWallet(key, self.ledger.submit_signed, confirm=confirm)

    async def submit(self, name: str, function_name: str, args) -> str:
        wallet = self.wallet(name)
        await wallet.connect()
        tx_hash = await self.ledger.submit(function_name, args, wallet)
        await self.ledger.await_confirmation(tx_hash)
        return tx_hash

    async def initialize_registry(self) -> None:
        await self.submit("deployer", INITIALIZE_VAULT_REGISTRY, [])

    async def create_vault(self, creator: str, name: str, members, signatures_required: int) -> str:
        """Create a vault under the creator's account and return its owner address"""
        addresses = [self.address(m) for m in members]
        await self.submit(creator, CREATE_VAULT, [name, addresses, list(members), str(signatures_required)])
        return self.address(creator)

    async def deposit(self, name: str, owner: str, amount) -> str:
        return await self.submit(name, DEPOSIT_TO_VAULT, [owner, str(to_base_units(amount))])

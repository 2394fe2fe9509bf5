from dataclasses import dataclass, replace
from datetime import datetime
from typing import Iterable, List, Optional, Tuple


@dataclass(frozen=True)
class VaultMember:
    """Represents a member of a shared vault"""
    address: str  # ledger account address (0x-prefixed hex)
    name: Optional[str] = None

    def __post_init__(self):
        if not self.address:
            raise ValueError("Member address must not be empty")


def normalize_address(address: str) -> str:
    """Lower-case, 0x-prefixed form used for identity comparisons"""
    address = address.strip().lower()
    if not address.startswith("0x"):
        address = "0x" + address
    return address


def unique_members(members: Iterable[VaultMember]) -> Tuple[VaultMember, ...]:
    """Drop repeated addresses, keeping the first occurrence and display order"""
    seen = set()
    result = []
    for member in members:
        key = normalize_address(member.address)
        if key in seen:
            continue
        seen.add(key)
        result.append(member)
    return tuple(result)


@dataclass(frozen=True)
class Vault:
    """Shared custody account as last known to this session

    `balance` is held in ledger base units. `owner_address` is the ledger
    account under which the vault resources live and is the authoritative
    identity for every ledger call.
    """
    id: str
    name: str
    members: Tuple[VaultMember, ...]
    signatures_required: int
    balance: int
    created_at: datetime
    owner_address: str

    def __post_init__(self):
        object.__setattr__(self, "members", unique_members(self.members))

        if not self.name or not self.name.strip():
            raise ValueError("Vault name must not be empty")
        if not self.members:
            raise ValueError("Vault needs at least one member")
        if not (1 <= self.signatures_required <= len(self.members)):
            raise ValueError(
                f"Signatures required must be between 1 and {len(self.members)}, "
                f"got {self.signatures_required}"
            )
        if self.balance < 0:
            raise ValueError(f"Vault balance must not be negative, got {self.balance}")

    @property
    def addresses(self) -> List[str]:
        return [m.address for m in self.members]

    def is_member(self, address: str) -> bool:
        """Check if address is a vault member"""
        key = normalize_address(address)
        return any(normalize_address(m.address) == key for m in self.members)

    def get_member(self, address: str) -> Optional[VaultMember]:
        key = normalize_address(address)
        for member in self.members:
            if normalize_address(member.address) == key:
                return member
        return None

    def with_balance(self, balance: int) -> 'Vault':
        return replace(self, balance=balance)

    def with_threshold(self, signatures_required: int) -> 'Vault':
        """Copy with the threshold clamped into 1..len(members)"""
        clamped = max(1, min(signatures_required, len(self.members)))
        return replace(self, signatures_required=clamped)

    def with_member(self, member: VaultMember) -> 'Vault':
        if self.is_member(member.address):
            return self
        return replace(self, members=self.members + (member,))

    def without_member(self, address: str) -> 'Vault':
        """Copy without the member, clamping the threshold downward if needed"""
        if not self.is_member(address):
            return self
        key = normalize_address(address)
        remaining = tuple(m for m in self.members if normalize_address(m.address) != key)
        if not remaining:
            raise ValueError("Cannot remove the last vault member")

        return replace(
            self,
            members=remaining,
            signatures_required=min(self.signatures_required, len(remaining)),
        )

#!/usr/bin/env python3
"""
Complete demo of the shared vault quorum flow against the ledger simulator
"""

import asyncio
from decimal import Decimal

from quorum_vault.config import Settings
from quorum_vault.ledger import LedgerSimulator, LocalKeyWallet, MemberKey
from quorum_vault.session import VaultSession
from quorum_vault.units import to_base_units, to_display
from quorum_vault.vault import VaultMember


async def main():
    print("=" * 60)
    print("🏦 SHARED VAULT - QUORUM WITHDRAWAL DEMO")
    print("=" * 60)
    print()

    # Step 1: Setup
    print("🔧 STEP 1: Setting up ledger and members")
    print("-" * 40)

    deployer = MemberKey()
    ledger = LedgerSimulator(deployer.address)
    settings = Settings()

    participants = []
    for name in ["Alice", "Bob", "Carol"]:
        key = MemberKey()
        ledger.fund(key.address, to_base_units("500"))
        participants.append({'name': name, 'key': key})
        print(f"✅ {name}: {key.address[:18]}... (500 APT in wallet)")

    alice, bob, carol = [
        VaultSession(ledger, LocalKeyWallet(p['key'], ledger.submit_signed), settings)
        for p in participants
    ]
    admin = VaultSession(ledger, LocalKeyWallet(deployer, ledger.submit_signed), settings)
    print()

    # Step 2: Registry and vault
    print("🏗️  STEP 2: Initializing registry and creating vault")
    print("-" * 40)

    async with admin:
        await admin.initialize_registry()
    print("✅ Registry initialized by deployer")

    async with alice, bob, carol:
        members = [VaultMember(p['key'].address, p['name']) for p in participants]
        await alice.create_vault("Family Fund", members, signatures_required=2)
        await bob.refresh()

        vault = alice.vaults()[0]
        print(f"✅ Vault: {vault.name} (id {vault.id})")
        print(f"✅ Rules: {vault.signatures_required}-of-{len(vault.members)} signatures required")
        print()

        # Step 3: Deposit
        print("💰 STEP 3: Depositing")
        print("-" * 40)
        receipt = await alice.deposit(vault.id, Decimal("100"))
        print(f"✅ Deposit tx: {receipt.tx_hash[:18]}... (hash recorded: {receipt.recorded})")
        print(f"✅ Balance after sync: {to_display(alice.get_vault(vault.id).balance)} APT")
        print()

        # Step 4: Withdrawal request and approval
        print("🗳️  STEP 4: Withdrawal request and approval")
        print("-" * 40)
        await bob.refresh()
        outcome = alice.request_withdrawal(vault.id, Decimal("40"), "Roof repair")
        request = outcome.request
        print(f"✅ Alice requested 40 APT: {request.status.value}, approvals {len(request.approvals)}/2")

        # Bob's session does not see Alice's local request; replay it through Alice's
        # engine the way a shared request feed would deliver it
        approval = alice.engine.approve(request.id, bob.current_user)
        print(f"✅ Bob approves: {approval.request.status.value}")
        print(f"   Projected balance: {to_display(alice.get_vault(vault.id).balance)} APT")

        second = alice.request_withdrawal(vault.id, Decimal("10"), "Groceries")
        veto = alice.engine.reject(second.request.id, carol.current_user)
        print(f"✅ Carol rejects a second request: {veto.request.status.value}")
        print()

        # Step 5: Reconciliation
        print("🔄 STEP 5: Reconciling with the ledger")
        print("-" * 40)
        report = await alice.refresh()
        print(f"✅ Synced {len(report.vaults)} vault(s)")
        print(f"   Ledger balance: {to_display(alice.get_vault(vault.id).balance)} APT")
        print()

        print("📜 Ledger history:")
        for entry in await alice.transaction_history(vault.id):
            print(f"   {entry.tx_type.value}: {to_display(entry.amount)} APT by {entry.executed_by[:10]}...")
        print()

        print("📊 Local activity:")
        for tx in alice.transactions_for_vault(vault.id):
            print(f"   {tx.type.value}")

    print()
    print("🎯 Demo completed successfully!")


if __name__ == "__main__":
    asyncio.run(main())

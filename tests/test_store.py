import unittest

from quorum_vault.engine import WithdrawalApprovalEngine
from quorum_vault.units import to_base_units
from tests.support import FakeClock, START, make_vault, seeded_store


class TestVaultStore(unittest.TestCase):

    def setUp(self):
        """Set up test fixtures"""
        self.store = seeded_store(make_vault("1", balance=100), make_vault("2", balance=5))

    def test_projection_shadows_confirmed(self):
        vault = self.store.get_vault("1")
        self.store.project_vault(vault.with_balance(to_base_units(60)))

        self.assertEqual(self.store.get_vault("1").balance, to_base_units(60))
        self.assertEqual(self.store.confirmed_vault("1").balance, to_base_units(100))
        self.assertEqual([v.balance for v in self.store.vaults()], [to_base_units(60), to_base_units(5)])

    def test_confirmed_state_wins(self):
        """A pull replaces the projection of every vault it fetched"""
        self.store.project_vault(self.store.get_vault("1").with_balance(to_base_units(60)))

        self.store.reconcile([make_vault("1", balance=100), make_vault("2", balance=5)], synced_at=START)
        self.assertFalse(self.store.is_projected("1"))
        self.assertEqual(self.store.get_vault("1").balance, to_base_units(100))
        self.assertEqual(self.store.confirmed.synced_at, START)

    def test_stale_vault_kept(self):
        """A vault that failed to fetch keeps its last known record"""
        self.store.project_vault(self.store.get_vault("1").with_balance(to_base_units(60)))

        self.store.reconcile([make_vault("2", balance=7)], stale_ids=["1"])
        self.assertEqual(self.store.get_vault("1").balance, to_base_units(60))
        self.assertEqual(self.store.confirmed_vault("1").balance, to_base_units(100))
        self.assertEqual(self.store.get_vault("2").balance, to_base_units(7))

    def test_missing_vault_dropped(self):
        self.store.reconcile([make_vault("2", balance=5)])
        self.assertIsNone(self.store.get_vault("1"))
        self.assertEqual([v.id for v in self.store.vaults()], ["2"])

    def test_display_order_is_stable(self):
        self.store.reconcile([make_vault("3"), make_vault("2"), make_vault("1")])
        self.assertEqual([v.id for v in self.store.vaults()], ["1", "2", "3"])

    def test_find_by_owner(self):
        self.assertEqual(self.store.find_by_owner("0xowner2").id, "2")
        self.assertIsNone(self.store.find_by_owner("0xnobody"))

    def test_project_unknown_vault(self):
        with self.assertRaises(KeyError):
            self.store.project_vault(make_vault("9"))

    def test_records_replaced_not_mutated(self):
        """Readers holding a record or snapshot never see a later change"""
        engine = WithdrawalApprovalEngine(self.store, clock=FakeClock())
        request = engine.create("1", "0xa", to_base_units(10), "Rent").request
        vault = self.store.get_vault("1")
        snapshot = self.store.snapshot()

        engine.approve(request.id, "0xb")

        self.assertEqual(request.approvals, ("0xa",))
        self.assertTrue(request.is_pending)
        self.assertEqual(vault.balance, to_base_units(100))
        self.assertEqual(snapshot.requests, (request,))
        self.assertEqual(len(snapshot.transactions), 1)
        self.assertEqual(snapshot.vaults[0].balance, to_base_units(100))
        self.assertEqual(self.store.get_vault("1").balance, to_base_units(90))

    def test_available_balance_counts_releases(self):
        """Released withdrawals stay deducted after the projection is dropped"""
        engine = WithdrawalApprovalEngine(self.store, clock=FakeClock())
        request = engine.create("1", "0xa", to_base_units(30), "Rent").request
        self.assertEqual(self.store.available_balance("1"), to_base_units(100))

        engine.approve(request.id, "0xb")
        self.store.reconcile([make_vault("1", balance=100), make_vault("2", balance=5)])

        self.assertEqual(self.store.released_amount("1"), to_base_units(30))
        self.assertEqual(self.store.get_vault("1").balance, to_base_units(100))
        self.assertEqual(self.store.available_balance("1"), to_base_units(70))
        self.assertEqual(self.store.available_balance("2"), to_base_units(5))
        self.assertIsNone(self.store.available_balance("9"))

    def test_next_id(self):
        first = self.store.next_id("tx", "1", "deposit")
        second = self.store.next_id("tx", "1", "deposit")
        self.assertTrue(first.startswith("tx-"))
        self.assertEqual(len(first), len("tx-") + 16)
        self.assertNotEqual(first, second)


if __name__ == '__main__':
    unittest.main()

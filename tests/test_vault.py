import unittest
from decimal import Decimal

from quorum_vault.records import HistoryType, TransactionHistory
from quorum_vault.units import to_base_units, to_display
from quorum_vault.vault import Vault, VaultMember
from tests.support import START, make_vault


class TestVault(unittest.TestCase):

    def setUp(self):
        """Set up test fixtures"""
        self.vault = make_vault(balance=100, members=("0xa", "0xb", "0xc"), signatures_required=2)

    def test_vault_creation(self):
        """Test vault creation and validation"""
        self.assertEqual(len(self.vault.members), 3)
        self.assertEqual(self.vault.balance, 10_000_000_000)
        self.assertEqual(self.vault.signatures_required, 2)
        self.assertEqual(self.vault.addresses, ["0xa", "0xb", "0xc"])

    def test_duplicate_members_collapsed(self):
        """Repeated addresses keep the first entry and display order"""
        vault = Vault(
            id="1",
            name="Family",
            members=(VaultMember("0xa", "Alice"), VaultMember("0xb"), VaultMember("0xA", "Again")),
            signatures_required=2,
            balance=0,
            created_at=START,
            owner_address="0xa",
        )
        self.assertEqual(len(vault.members), 2)
        self.assertEqual(vault.get_member("0xa").name, "Alice")

    def test_threshold_bounds(self):
        """Test signature threshold validation"""
        with self.assertRaises(ValueError):
            make_vault(signatures_required=0)
        with self.assertRaises(ValueError):
            make_vault(members=("0xa", "0xb"), signatures_required=3)

    def test_invalid_fields(self):
        with self.assertRaises(ValueError):
            make_vault(members=())
        with self.assertRaises(ValueError):
            Vault("1", "  ", (VaultMember("0xa"),), 1, 0, START, "0xa")
        with self.assertRaises(ValueError):
            Vault("1", "Vault", (VaultMember("0xa"),), 1, -1, START, "0xa")
        with self.assertRaises(ValueError):
            VaultMember("")

    def test_membership_ignores_case(self):
        vault = make_vault(members=("0xAbC", "0xdef"), signatures_required=1)
        self.assertTrue(vault.is_member("0xabc"))
        self.assertTrue(vault.is_member("ABC"))
        self.assertFalse(vault.is_member("0x123"))

    def test_remove_member_clamps_threshold(self):
        """Threshold follows the member count downward"""
        vault = make_vault(signatures_required=3)
        smaller = vault.without_member("0xc")

        self.assertEqual(smaller.addresses, ["0xa", "0xb"])
        self.assertEqual(smaller.signatures_required, 2)
        # Original record untouched
        self.assertEqual(len(vault.members), 3)

    def test_remove_member_keeps_lower_threshold(self):
        smaller = self.vault.without_member("0xb")
        self.assertEqual(smaller.signatures_required, 2)

    def test_cannot_remove_last_member(self):
        vault = make_vault(members=("0xa",), signatures_required=1)
        with self.assertRaises(ValueError):
            vault.without_member("0xa")

    def test_with_threshold_clamps(self):
        self.assertEqual(self.vault.with_threshold(10).signatures_required, 3)
        self.assertEqual(self.vault.with_threshold(0).signatures_required, 1)

    def test_with_member(self):
        grown = self.vault.with_member(VaultMember("0xd", "Dan"))
        self.assertEqual(len(grown.members), 4)
        self.assertIs(grown.with_member(VaultMember("0xD")), grown)


class TestUnits(unittest.TestCase):

    def test_to_base_units(self):
        """Test display amount conversion"""
        self.assertEqual(to_base_units("1.5"), 150_000_000)
        self.assertEqual(to_base_units(Decimal("0.00000001")), 1)
        self.assertEqual(to_base_units(40), 4_000_000_000)

    def test_invalid_amounts(self):
        with self.assertRaises(ValueError):
            to_base_units("0.000000001")
        with self.assertRaises(ValueError):
            to_base_units("-1")
        with self.assertRaises(ValueError):
            to_base_units("ten")
        with self.assertRaises(ValueError):
            to_base_units("NaN")

    def test_to_display(self):
        self.assertEqual(to_display(150_000_000), Decimal("1.5"))
        self.assertEqual(str(to_display(6_000_000_000)), "60.00000000")


class TestTransactionHistory(unittest.TestCase):

    def test_from_ledger_row(self):
        """Ledger rows carry numeric type codes and string u64 values"""
        entry = TransactionHistory.from_ledger({
            'id': "3",
            'tx_type': 0,
            'from': "0xa",
            'to': "0xvault",
            'amount': "500000000",
            'description': "Deposit to vault",
            'tx_hash': "0xhash",
            'timestamp': "1704067200",
            'executed_by': "0xa",
        })
        self.assertEqual(entry.id, 3)
        self.assertEqual(entry.tx_type, HistoryType.DEPOSIT)
        self.assertEqual(entry.amount, 500_000_000)
        self.assertEqual(entry.timestamp, 1704067200)

    def test_type_names_and_codes(self):
        self.assertEqual(TransactionHistory.from_ledger({'id': 1, 'tx_type': "1"}).tx_type, HistoryType.WITHDRAWAL)
        self.assertEqual(TransactionHistory.from_ledger({'id': 1, 'tx_type': "transfer"}).tx_type, HistoryType.TRANSFER)
        with self.assertRaises(ValueError):
            TransactionHistory.from_ledger({'id': 1, 'tx_type': 7})


if __name__ == '__main__':
    unittest.main()

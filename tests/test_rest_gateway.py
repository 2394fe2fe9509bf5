import json
import unittest

import httpx

from quorum_vault.config import Settings
from quorum_vault.errors import (
    ConfirmationTimeout,
    InsufficientFunds,
    LedgerUnavailable,
    SubmissionRejected,
    WalletNotConnected,
)
from quorum_vault.ledger.gateway import (
    CREATE_VAULT,
    EREGISTRY_NOT_INITIALIZED,
    GET_ALL_VAULT_OWNERS,
    abort_code_from_status,
    rejection_for,
)
from quorum_vault.ledger.rest import RestLedgerGateway
from quorum_vault.ledger.wallet import LocalKeyWallet, MemberKey, signing_message
from quorum_vault.session import VaultSession

NODE = "https://node.test/v1"
MODULE = "0xfeed"


class FakeNode:
    """Scripted fullnode behind an httpx mock transport"""

    def __init__(self):
        self.requests = []
        self.view_response = httpx.Response(200, json=[["0x1", "0x2"]])
        self.submit_response = httpx.Response(202, json={"hash": "0xabc"})
        self.lookups = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path.endswith("/view"):
            return self.view_response
        if path.endswith("/transactions") and request.method == "POST":
            return self.submit_response
        if "/transactions/by_hash/" in path:
            if self.lookups:
                return self.lookups.pop(0)
            return httpx.Response(200, json={"type": "pending_transaction", "hash": "0xabc"})
        return httpx.Response(404, json={"message": "not found"})


class TestRestLedgerGateway(unittest.IsolatedAsyncioTestCase):

    async def asyncSetUp(self):
        self.node = FakeNode()
        client = httpx.AsyncClient(transport=httpx.MockTransport(self.node), base_url=NODE)
        self.gateway = RestLedgerGateway(
            NODE, MODULE, confirmation_timeout=0.05, poll_interval=0.01, client=client
        )

    async def asyncTearDown(self):
        await self.gateway.aclose()

    async def test_view_call(self):
        """View requests name the module function and pass arguments through"""
        result = await self.gateway.query_view(GET_ALL_VAULT_OWNERS, [])
        self.assertEqual(result, [["0x1", "0x2"]])

        body = json.loads(self.node.requests[0].content)
        self.assertEqual(body["function"], f"{MODULE}::multisig::get_all_vault_owners")
        self.assertEqual(body["arguments"], [])

    async def test_view_failures(self):
        self.node.view_response = httpx.Response(500, json={"message": "boom"})
        with self.assertRaises(LedgerUnavailable):
            await self.gateway.query_view(GET_ALL_VAULT_OWNERS, [])

        self.node.view_response = httpx.Response(200, json={"not": "a list"})
        with self.assertRaises(LedgerUnavailable):
            await self.gateway.query_view(GET_ALL_VAULT_OWNERS, [])

    async def test_view_connection_error(self):
        def unreachable(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = httpx.AsyncClient(transport=httpx.MockTransport(unreachable), base_url=NODE)
        gateway = RestLedgerGateway(NODE, MODULE, client=client)
        with self.assertRaises(LedgerUnavailable):
            await gateway.query_view(GET_ALL_VAULT_OWNERS, [])
        await gateway.aclose()

    async def test_submit_signed_transaction(self):
        """The wallet signs the entry payload and the gateway posts it"""
        key = MemberKey()
        wallet = LocalKeyWallet(key, self.gateway.submit_signed)
        await wallet.connect()

        tx_hash = await self.gateway.submit(CREATE_VAULT, ["Family", [key.address], ["me"], "1"], wallet)
        self.assertEqual(tx_hash, "0xabc")

        posted = json.loads(self.node.requests[0].content)
        self.assertEqual(posted["sender"], key.address)
        self.assertEqual(posted["payload"]["function"], f"{MODULE}::multisig::create_vault")
        self.assertTrue(MemberKey.verify_signature(
            signing_message(posted["payload"], key.address),
            posted["signature"]["signature"],
            posted["signature"]["public_key"],
        ))

    async def test_submit_requires_connected_wallet(self):
        wallet = LocalKeyWallet(MemberKey(), self.gateway.submit_signed)
        with self.assertRaises(WalletNotConnected):
            await self.gateway.submit(CREATE_VAULT, [], wallet)
        self.assertEqual(self.node.requests, [])

    async def test_submit_rejected(self):
        self.node.submit_response = httpx.Response(400, json={"message": "INVALID_SIGNATURE"})
        with self.assertRaises(SubmissionRejected):
            await self.gateway.submit_signed({"sender": "0x1"})

        self.node.submit_response = httpx.Response(503, text="unavailable")
        with self.assertRaises(LedgerUnavailable):
            await self.gateway.submit_signed({"sender": "0x1"})

    async def test_confirmation_after_polling(self):
        """404 and pending responses are polled until the transaction commits"""
        self.node.lookups = [
            httpx.Response(404, json={"message": "not found"}),
            httpx.Response(200, json={"type": "pending_transaction"}),
            httpx.Response(200, json={"type": "user_transaction", "success": True, "vm_status": "Executed successfully"}),
        ]
        self.gateway.confirmation_timeout = 5

        txn = await self.gateway.await_confirmation("0xabc")
        self.assertTrue(txn["success"])
        self.assertEqual(len(self.node.requests), 3)

    async def test_failed_transaction(self):
        self.node.lookups = [httpx.Response(200, json={
            "type": "user_transaction",
            "success": False,
            "vm_status": f"Move abort in {MODULE}::multisig: 0x3e8",
        })]
        with self.assertRaises(SubmissionRejected) as ctx:
            await self.gateway.await_confirmation("0xabc")
        self.assertEqual(ctx.exception.abort_code, EREGISTRY_NOT_INITIALIZED)

    async def test_confirmation_timeout(self):
        with self.assertRaises(ConfirmationTimeout) as ctx:
            await self.gateway.await_confirmation("0xabc")
        self.assertEqual(ctx.exception.tx_hash, "0xabc")


class TestSessionShutdown(unittest.IsolatedAsyncioTestCase):

    async def test_close_releases_http_client(self):
        """Closing a session closes the gateway's HTTP client"""
        node = FakeNode()
        node.view_response = httpx.Response(200, json=[[]])
        client = httpx.AsyncClient(transport=httpx.MockTransport(node), base_url=NODE)
        gateway = RestLedgerGateway(NODE, MODULE, client=client)
        wallet = LocalKeyWallet(MemberKey(), gateway.submit_signed)

        async with VaultSession(gateway, wallet, Settings()) as session:
            self.assertEqual(session.vaults(), [])
            self.assertFalse(client.is_closed)

        self.assertTrue(client.is_closed)


class TestAbortCodes(unittest.TestCase):

    def test_abort_code_parsing(self):
        self.assertEqual(abort_code_from_status("Move abort in 0xfeed::multisig: 0x3e8"), 1000)
        self.assertEqual(
            abort_code_from_status("Move abort in 0x1::coin: EINSUFFICIENT_BALANCE(0x10006): Not enough coins"),
            0x10006,
        )
        self.assertEqual(abort_code_from_status("ABORTED with code: 42"), 42)
        self.assertIsNone(abort_code_from_status("Executed successfully"))

    def test_insufficient_balance_mapping(self):
        error = rejection_for("Move abort in 0x1::coin: EINSUFFICIENT_BALANCE(0x10006)", "0xabc")
        self.assertIsInstance(error, InsufficientFunds)
        self.assertIn("0xabc", str(error))

        self.assertNotIsInstance(rejection_for("RESOURCE_ALREADY_EXISTS"), InsufficientFunds)


if __name__ == '__main__':
    unittest.main()

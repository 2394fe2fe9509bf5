"""
Ledger gateway over the fullnode REST API
"""

import asyncio
import logging
import time
from typing import Any, Dict, List, Optional

import httpx

from ..errors import ConfirmationTimeout, LedgerUnavailable, SubmissionRejected
from .gateway import LedgerGateway, rejection_for

logger = logging.getLogger(__name__)


class RestLedgerGateway(LedgerGateway):
    """Talks to a fullnode at `node_url` (e.g. https://fullnode.testnet.aptoslabs.com/v1)"""

    def __init__(
        self,
        node_url: str,
        module_address: str,
        module_name: str = "multisig",
        confirmation_timeout: float = 30.0,
        poll_interval: float = 1.0,
        request_timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__(module_address, module_name)
        self.node_url = node_url.rstrip("/")
        self.confirmation_timeout = confirmation_timeout
        self.poll_interval = poll_interval
        self._client = client or httpx.AsyncClient(base_url=self.node_url, timeout=request_timeout)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def query_view(self, function_name: str, args: List[Any]) -> List[Any]:
        body = {
            "function": self.function_id(function_name),
            "type_arguments": [],
            "arguments": list(args),
        }
        logger.debug("View %s %s", function_name, args)
        try:
            resp = await self._client.post("/view", json=body)
            resp.raise_for_status()
            result = resp.json()
        except httpx.HTTPError as e:
            raise LedgerUnavailable(f"View {function_name} failed: {e}") from e
        except ValueError as e:
            raise LedgerUnavailable(f"View {function_name} returned invalid JSON") from e

        if not isinstance(result, list):
            raise LedgerUnavailable(f"View {function_name} returned {type(result).__name__}, expected list")
        return result

    async def submit_signed(self, signed_transaction: Dict[str, Any]) -> str:
        try:
            resp = await self._client.post("/transactions", json=signed_transaction)
        except httpx.HTTPError as e:
            raise LedgerUnavailable(f"Submission failed: {e}") from e

        if resp.status_code >= 500:
            raise LedgerUnavailable(f"Submission failed with HTTP {resp.status_code}")
        if resp.status_code >= 400:
            message = _error_message(resp)
            raise rejection_for(message)

        tx_hash = resp.json().get("hash")
        if not tx_hash:
            raise SubmissionRejected("Ledger accepted the transaction without a hash")
        return tx_hash

    async def await_confirmation(self, tx_hash: str, timeout: Optional[float] = None) -> Dict[str, Any]:
        timeout = self.confirmation_timeout if timeout is None else timeout
        deadline = time.monotonic() + timeout

        while True:
            txn = await self._fetch_transaction(tx_hash)
            if txn is not None and txn.get("type") != "pending_transaction":
                if not txn.get("success", False):
                    raise rejection_for(txn.get("vm_status", "unknown failure"), tx_hash)
                logger.info("Transaction %s confirmed", tx_hash)
                return txn

            if time.monotonic() + self.poll_interval > deadline:
                raise ConfirmationTimeout(tx_hash, timeout)
            await asyncio.sleep(self.poll_interval)

    async def _fetch_transaction(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        try:
            resp = await self._client.get(f"/transactions/by_hash/{tx_hash}")
        except httpx.HTTPError as e:
            raise LedgerUnavailable(f"Lookup of {tx_hash} failed: {e}") from e

        # Not yet indexed by the node
        if resp.status_code == 404:
            return None
        if resp.status_code >= 400:
            raise LedgerUnavailable(f"Lookup of {tx_hash} failed with HTTP {resp.status_code}")
        return resp.json()


def _error_message(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text or f"HTTP {resp.status_code}"
    return body.get("message") or resp.text

"""
Contract of the remote ledger as seen by a vault session

The gateway is stateless and owns no business logic. It never retries;
callers decide what to do with a failure.
"""

import logging
import re
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from ..errors import InsufficientFunds, SubmissionRejected, WalletNotConnected

logger = logging.getLogger(__name__)

# View functions (read-only)
GET_ALL_VAULT_OWNERS = "get_all_vault_owners"
IS_USER_VAULT_MEMBER = "is_user_vault_member"
GET_VAULT_INFO = "get_vault_info"
GET_VAULT_MEMBERS = "get_vault_members"
GET_TRANSACTION_HISTORY = "get_transaction_history"
GET_VAULT_RESOURCE_ACCOUNT = "get_vault_resource_account"

# Entry functions (signed)
INITIALIZE_VAULT_REGISTRY = "initialize_vault_registry"
CREATE_VAULT = "create_vault"
DEPOSIT_TO_VAULT = "deposit_to_vault"
UPDATE_TRANSACTION_HASH = "update_transaction_hash"

# Abort raised by create_vault while the registry does not exist
EREGISTRY_NOT_INITIALIZED = 1000

_ABORT_CODE_PATTERNS = (
    re.compile(r"\((0x[0-9a-fA-F]+)\)"),  # EINSUFFICIENT_BALANCE(0x10006)
    re.compile(r"::\w+:\s*(0x[0-9a-fA-F]+|\d+)"),  # Move abort in 0x1::module: 0x3e8
    re.compile(r"code[:\s]+(0x[0-9a-fA-F]+|\d+)"),
)


def abort_code_from_status(vm_status: str) -> Optional[int]:
    """Pull the Move abort code out of a vm_status string"""
    for pattern in _ABORT_CODE_PATTERNS:
        match = pattern.search(vm_status or "")
        if match:
            return int(match.group(1), 0)
    return None


def rejection_for(vm_status: str, tx_hash: str = "") -> SubmissionRejected:
    """Map a failed transaction's vm_status onto the error taxonomy"""
    code = abort_code_from_status(vm_status)
    message = f"Transaction {tx_hash} failed: {vm_status}" if tx_hash else vm_status
    if "INSUFFICIENT_BALANCE" in (vm_status or "").upper():
        return InsufficientFunds(message, vm_status=vm_status, abort_code=code)
    return SubmissionRejected(message, vm_status=vm_status, abort_code=code)


class LedgerGateway(ABC):
    """Read and submit against the vault module"""

    def __init__(self, module_address: str, module_name: str = "multisig"):
        self.module_address = module_address
        self.module_name = module_name

    def function_id(self, function_name: str) -> str:
        return f"{self.module_address}::{self.module_name}::{function_name}"

    def entry_payload(self, function_name: str, args: List[Any]) -> Dict[str, Any]:
        return {
            "type": "entry_function_payload",
            "function": self.function_id(function_name),
            "type_arguments": [],
            "arguments": list(args),
        }

    @abstractmethod
    async def query_view(self, function_name: str, args: List[Any]) -> List[Any]:
        """Call a view function; raises LedgerUnavailable on any read failure"""

    async def submit(self, function_name: str, args: List[Any], signer: 'WalletAdapter') -> str:
        """Have the signer sign and submit an entry function call, returning its hash"""
        if not await signer.is_connected():
            raise WalletNotConnected("Wallet not connected")

        payload = self.entry_payload(function_name, args)
        logger.info("Submitting %s", payload["function"])
        response = await signer.sign_and_submit_transaction(payload)
        tx_hash = response.get("hash") if response else None
        if not tx_hash:
            raise SubmissionRejected(f"{function_name} was not accepted by the ledger")
        return tx_hash

    @abstractmethod
    async def submit_signed(self, signed_transaction: Dict[str, Any]) -> str:
        """Forward an already signed transaction, returning its hash"""

    @abstractmethod
    async def await_confirmation(self, tx_hash: str, timeout: Optional[float] = None) -> Dict[str, Any]:
        """Wait until the transaction commits

        Raises ConfirmationTimeout past the deadline and SubmissionRejected if
        the transaction committed as failed.
        """

"""
Error taxonomy for vault sessions

Ledger and wallet errors are raised to the caller. Engine validation errors
are never raised: they are returned inside an Outcome.
"""

from typing import Optional


class VaultError(Exception):
    """Base class for every vault error"""


# Wallet / ledger boundary

class WalletNotConnected(VaultError):
    """No wallet account is available to sign with"""


class SignerDeclined(VaultError):
    """The member refused to sign the transaction"""


class SubmissionRejected(VaultError):
    """The ledger refused or aborted a transaction"""

    def __init__(self, message: str, vm_status: Optional[str] = None, abort_code: Optional[int] = None):
        super().__init__(message)
        self.vm_status = vm_status
        self.abort_code = abort_code


class InsufficientFunds(SubmissionRejected):
    """The signing account cannot cover the transfer"""


class ConfirmationTimeout(VaultError):
    """A submitted transaction was not confirmed in time"""

    def __init__(self, tx_hash: str, timeout: float):
        super().__init__(f"Transaction {tx_hash} not confirmed within {timeout}s")
        self.tx_hash = tx_hash
        self.timeout = timeout


class LedgerUnavailable(VaultError):
    """A read against the ledger failed"""


class PermissionDenied(VaultError):
    """The connected account may not perform this operation"""


# Engine outcomes

class InsufficientBalance(VaultError):
    """Withdrawal exceeds the cached vault balance"""


class DuplicateVote(VaultError):
    """The actor already holds a stance on this request"""


class RequestNotFound(VaultError):
    """Unknown withdrawal request or vault"""


class NotAMember(VaultError):
    """The actor is not a member of the vault"""


class InvalidRequest(VaultError):
    """Malformed withdrawal request"""


class RequestClosed(VaultError):
    """The request already left the pending state"""

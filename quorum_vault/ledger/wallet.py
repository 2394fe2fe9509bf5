"""
Wallet boundary: member keys and transaction signing
"""

import hashlib
import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

from ecdsa import SECP256k1, BadSignatureError, SigningKey, VerifyingKey
from ecdsa.errors import MalformedPointError

from ..errors import SignerDeclined, WalletNotConnected

logger = logging.getLogger(__name__)

SECP256K1_SCHEME = b'\x01'  # authentication key scheme byte


def signing_message(payload: Dict[str, Any], sender: str) -> bytes:
    """Canonical bytes a member signs for an entry function call"""
    body = {'sender': sender, 'payload': payload}
    return json.dumps(body, sort_keys=True, separators=(',', ':')).encode()


class MemberKey:
    """secp256k1 key pair of a vault member"""

    def __init__(self, private_key: bytes = None):
        if private_key:
            self.private_key = SigningKey.from_string(private_key, curve=SECP256k1)
        else:
            self.private_key = SigningKey.generate(curve=SECP256k1)

        self.public_key = self.private_key.get_verifying_key()

    @classmethod
    def from_hex(cls, private_key_hex: str) -> 'MemberKey':
        if private_key_hex.startswith('0x'):
            private_key_hex = private_key_hex[2:]
        return cls(bytes.fromhex(private_key_hex))

    def get_private_key_hex(self) -> str:
        return self.private_key.to_string().hex()

    def get_public_key_hex(self) -> str:
        """Compressed public key in hex"""
        return self.public_key.to_string("compressed").hex()

    @property
    def address(self) -> str:
        return self.address_for(self.get_public_key_hex())

    def sign_message(self, message: bytes) -> str:
        """Sign message and return signature in hex"""
        return self.private_key.sign(message, hashfunc=hashlib.sha256).hex()

    @staticmethod
    def address_for(public_key_hex: str) -> str:
        """Account address derived from a compressed public key"""
        digest = hashlib.sha3_256(bytes.fromhex(public_key_hex) + SECP256K1_SCHEME).hexdigest()
        return '0x' + digest

    @staticmethod
    def verify_signature(message: bytes, signature_hex: str, public_key_hex: str) -> bool:
        """Verify signature against message and compressed public key"""
        try:
            vk = VerifyingKey.from_string(bytes.fromhex(public_key_hex), curve=SECP256k1)
            return vk.verify(bytes.fromhex(signature_hex), message, hashfunc=hashlib.sha256)
        except (BadSignatureError, MalformedPointError, ValueError):
            return False

    @staticmethod
    def generate_key_pair() -> Tuple[str, str]:
        """Generate new key pair and return (private_key_hex, address)"""
        key = MemberKey()
        return key.get_private_key_hex(), key.address


class WalletAdapter(ABC):
    """What a session needs from a wallet"""

    @abstractmethod
    async def connect(self) -> None:
        ...

    @abstractmethod
    async def is_connected(self) -> bool:
        ...

    @abstractmethod
    async def account(self) -> Dict[str, str]:
        """Returns {'address': ..., 'publicKey': ...}"""

    @abstractmethod
    async def sign_and_submit_transaction(self, payload: Dict[str, Any]) -> Dict[str, str]:
        """Sign the payload, submit it, and return {'hash': ...}"""

    @abstractmethod
    async def disconnect(self) -> None:
        ...


Submitter = Callable[[Dict[str, Any]], Awaitable[str]]


class LocalKeyWallet(WalletAdapter):
    """Wallet backed by a private key held in this process

    `submitter` forwards the signed envelope to the ledger (the
    `submit_signed` method of a gateway). `confirm` is asked before every
    signature; returning False declines it.
    """

    def __init__(
        self,
        key: MemberKey,
        submitter: Submitter,
        confirm: Optional[Callable[[Dict[str, Any]], bool]] = None,
    ):
        self.key = key
        self.submitter = submitter
        self.confirm = confirm
        self._connected = False

    async def connect(self) -> None:
        self._connected = True

    async def is_connected(self) -> bool:
        return self._connected

    async def account(self) -> Dict[str, str]:
        if not self._connected:
            raise WalletNotConnected("Wallet not connected")
        return {'address': self.key.address, 'publicKey': self.key.get_public_key_hex()}

    async def sign_and_submit_transaction(self, payload: Dict[str, Any]) -> Dict[str, str]:
        if not self._connected:
            raise WalletNotConnected("Wallet not connected")
        if self.confirm is not None and not self.confirm(payload):
            raise SignerDeclined("User rejected the request")

        sender = self.key.address
        signed = {
            'sender': sender,
            'payload': payload,
            'signature': {
                'type': 'secp256k1_ecdsa_signature',
                'public_key': self.key.get_public_key_hex(),
                'signature': self.key.sign_message(signing_message(payload, sender)),
            },
        }
        tx_hash = await self.submitter(signed)
        logger.debug("Submitted %s as %s", payload.get('function'), tx_hash)
        return {'hash': tx_hash}

    async def disconnect(self) -> None:
        self._connected = False

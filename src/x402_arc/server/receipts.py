"""
Operator-signed delivery receipts (EIP-712 ``PaymentReceipt``)
"""

import hashlib
import logging
import secrets
import time
from typing import Any, Callable, Mapping

from eth_account import Account
from eth_account.messages import SignableMessage, encode_typed_data
from eth_utils import to_checksum_address

from x402_arc.codec import EIP712_DOMAIN_TYPE
from x402_arc.encoding import bytes_to_hex, canonical_json, hex_to_bytes
from x402_arc.exceptions import SignatureCreationError
from x402_arc.signers.utils import load_account
from x402_arc.types import Receipt

logger = logging.getLogger(__name__)

RECEIPT_DOMAIN_NAME = "x402 Receipt"
RECEIPT_DOMAIN_VERSION = "1"
RECEIPT_VERIFYING_CONTRACT = "0x0000000000000000000000000000000000000402"

RECEIPT_PRIMARY_TYPE = "PaymentReceipt"

RECEIPT_TYPES = {
    RECEIPT_PRIMARY_TYPE: [
        {"name": "transactionId", "type": "bytes32"},
        {"name": "resourceId", "type": "string"},
        {"name": "contentHash", "type": "bytes32"},
        {"name": "amount", "type": "uint256"},
        {"name": "buyer", "type": "address"},
        {"name": "timestamp", "type": "uint256"},
        {"name": "nonce", "type": "uint256"},
    ],
}


def hash_content(content: Mapping[str, Any]) -> str:
    """sha256 over the canonical JSON form of *content*, as 0x hex"""
    return "0x" + hashlib.sha256(canonical_json(content).encode("utf-8")).hexdigest()


def receipt_domain(chain_id: int) -> dict[str, Any]:
    return {
        "name": RECEIPT_DOMAIN_NAME,
        "version": RECEIPT_DOMAIN_VERSION,
        "chainId": int(chain_id),
        "verifyingContract": RECEIPT_VERIFYING_CONTRACT,
    }


def _pad_bytes32(value: str) -> bytes:
    raw = hex_to_bytes(value)
    if len(raw) > 32:
        raise ValueError(f"value longer than 32 bytes: {value}")
    return raw.rjust(32, b"\x00")


def _encode_receipt(
    chain_id: int,
    transaction_id: str,
    resource_id: str,
    content_hash: str,
    amount: int,
    buyer: str,
    timestamp: int,
    nonce: int,
) -> SignableMessage:
    return encode_typed_data(
        full_message={
            "types": {"EIP712Domain": EIP712_DOMAIN_TYPE, **RECEIPT_TYPES},
            "primaryType": RECEIPT_PRIMARY_TYPE,
            "domain": receipt_domain(chain_id),
            "message": {
                "transactionId": _pad_bytes32(transaction_id),
                "resourceId": resource_id,
                "contentHash": _pad_bytes32(content_hash),
                "amount": int(amount),
                "buyer": to_checksum_address(buyer),
                "timestamp": int(timestamp),
                "nonce": int(nonce),
            },
        }
    )


def recover_receipt_signer(receipt: Receipt, chain_id: int) -> str | None:
    """Recover the address that signed *receipt*, or None if unusable"""
    try:
        signable = _encode_receipt(
            chain_id,
            receipt.transaction_id,
            receipt.resource_id,
            receipt.content_hash,
            int(receipt.amount),
            receipt.buyer,
            receipt.timestamp,
            receipt.nonce,
        )
        return Account.recover_message(signable, signature=hex_to_bytes(receipt.signature))
    except Exception as e:
        logger.debug("Receipt recovery failed", extra={"error": str(e)})
        return None


def verify_receipt(
    receipt: Receipt,
    chain_id: int,
    content: Mapping[str, Any] | None = None,
    operator: str | None = None,
) -> bool:
    """
    Check a receipt's signature and, optionally, the content it covers.

    Args:
        receipt: Receipt to check
        chain_id: Chain id of the receipt domain
        content: Delivered content; its hash must equal ``receipt.content_hash``
        operator: Expected signer; defaults to ``receipt.operator``

    Returns:
        True if the receipt is authentic and binds the given content
    """
    expected = operator or receipt.operator
    recovered = recover_receipt_signer(receipt, chain_id)
    if recovered is None or recovered.lower() != expected.lower():
        return False
    if content is not None and hash_content(content) != receipt.content_hash.lower():
        return False
    return True


class ReceiptSigner:
    """Signs delivery receipts with the resource operator's key"""

    def __init__(
        self,
        private_key: str,
        chain_id: int,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._account = load_account(private_key, "operator")
        self.chain_id = chain_id
        self._clock = clock

    @property
    def address(self) -> str:
        return self._account.address

    @staticmethod
    def hash_content(content: Mapping[str, Any]) -> str:
        return hash_content(content)

    async def sign_receipt(
        self,
        transaction_id: str,
        resource_id: str,
        content: Mapping[str, Any],
        amount: int | str,
        buyer: str,
    ) -> Receipt:
        """
        Sign a receipt binding *transaction_id* to the delivered *content*.

        Args:
            transaction_id: Ledger transaction hash (left-padded to 32 bytes)
            resource_id: Gated resource id
            content: Delivered content
            amount: Amount paid, in smallest units
            buyer: Payer address

        Returns:
            Receipt including signature and operator address
        """
        content_hash = hash_content(content)
        timestamp = int(self._clock())
        nonce = secrets.randbits(64)
        try:
            signable = _encode_receipt(
                self.chain_id,
                transaction_id,
                resource_id,
                content_hash,
                int(amount),
                buyer,
                timestamp,
                nonce,
            )
            signed = self._account.sign_message(signable)
        except (ValueError, TypeError) as e:
            raise SignatureCreationError(f"Failed to sign receipt: {e}")

        logger.info("Receipt signed: resource=%s tx=%s", resource_id, transaction_id)
        return Receipt(
            transactionId=transaction_id,
            resourceId=resource_id,
            contentHash=content_hash,
            amount=str(int(amount)),
            buyer=to_checksum_address(buyer),
            timestamp=timestamp,
            nonce=nonce,
            signature=bytes_to_hex(bytes(signed.signature)),
            operator=self.address,
        )

    def verify_receipt(
        self,
        receipt: Receipt,
        content: Mapping[str, Any] | None = None,
    ) -> bool:
        """Verify a receipt was signed by this operator (and covers *content*)"""
        return verify_receipt(receipt, self.chain_id, content=content, operator=self.address)

"""
EvmClientSigner - EVM client signer implementation
"""

import logging
import time
from typing import Any

from eth_account.messages import encode_typed_data

from x402_arc import codec
from x402_arc.exceptions import InvalidClaimFormat, SignatureCreationError
from x402_arc.signers.client.base import ClientSigner
from x402_arc.signers.utils import eip712_domain_type_from_keys, load_account
from x402_arc.types import PaymentClaim, SignedPayment

logger = logging.getLogger(__name__)


class EvmClientSigner(ClientSigner):
    """EVM client signer implementation using eth-account"""

    def __init__(self, private_key: str) -> None:
        self._account = load_account(private_key)
        self._address = self._account.address
        logger.debug("EvmClientSigner initialized", extra={"address": self._address})

    @classmethod
    def from_private_key(cls, private_key: str) -> "EvmClientSigner":
        """Create signer from private key."""
        return cls(private_key)

    def get_address(self) -> str:
        return self._address

    async def sign_typed_data(
        self,
        domain: dict[str, Any],
        types: dict[str, Any],
        message: dict[str, Any],
        primary_type: str,
    ) -> str:
        """Sign EIP-712 typed data."""
        try:
            full_data = {
                "types": {"EIP712Domain": eip712_domain_type_from_keys(domain), **types},
                "domain": domain,
                "primaryType": primary_type,
                "message": message,
            }
            encoded = encode_typed_data(full_message=full_data)
            signed = self._account.sign_message(encoded)
            return "0x" + signed.signature.hex().removeprefix("0x")
        except Exception as e:
            raise SignatureCreationError(f"Failed to sign typed data: {e}")

    async def sign_claim(self, claim: PaymentClaim, chain_id: int) -> SignedPayment:
        """Sign *claim* under the x402 domain bound to ``claim.asset``"""
        try:
            signable = codec.encode(codec.build_domain(chain_id, claim.asset), claim)
        except InvalidClaimFormat as e:
            raise SignatureCreationError(f"Failed to encode claim: {e}")
        try:
            signed = self._account.sign_message(signable)
        except Exception as e:
            raise SignatureCreationError(f"Failed to sign claim: {e}")

        logger.info(
            "Signed payment claim: nonce=%s, amount=%s, recipient=%s",
            claim.nonce,
            claim.amount,
            claim.recipient,
        )
        return SignedPayment(
            signature="0x" + signed.signature.hex().removeprefix("0x"),
            paymentDetails=claim,
            signer=self._address,
            signedAt=int(time.time() * 1000),
            signerChain=claim.network_id,
        )

"""
Client signer base interface
"""

from abc import ABC, abstractmethod
from typing import Any

from x402_arc.types import PaymentClaim, SignedPayment


class ClientSigner(ABC):
    """
    Abstract base class for client signers.

    Holds key material and produces EIP-712 signatures. Exposes only the
    signer address and signing operations; the key never leaves the signer.
    """

    @abstractmethod
    def get_address(self) -> str:
        """Get the signer's account address"""
        pass

    @abstractmethod
    async def sign_typed_data(
        self,
        domain: dict[str, Any],
        types: dict[str, Any],
        message: dict[str, Any],
        primary_type: str,
    ) -> str:
        """
        Sign typed data (EIP-712).

        Args:
            domain: EIP-712 domain
            types: Type definitions (without EIP712Domain)
            message: Message to sign
            primary_type: Name of the primary type in *types*

        Returns:
            Signature string (0x hex)
        """
        pass

    @abstractmethod
    async def sign_claim(self, claim: PaymentClaim, chain_id: int) -> SignedPayment:
        """
        Sign a payment claim under the x402 domain for *chain_id*.

        Args:
            claim: Payment claim to authorize
            chain_id: Numeric chain id used in the domain separator

        Returns:
            SignedPayment carrying the claim, signature and signer address
        """
        pass

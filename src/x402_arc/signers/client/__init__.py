"""
Client Signers
"""

from x402_arc.signers.client.base import ClientSigner
from x402_arc.signers.client.evm_signer import EvmClientSigner

__all__ = ["ClientSigner", "EvmClientSigner"]

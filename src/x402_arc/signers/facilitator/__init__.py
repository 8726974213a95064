"""
Facilitator Signers
"""

from x402_arc.signers.facilitator.base import FacilitatorSigner, LedgerTransfer
from x402_arc.signers.facilitator.evm_signer import EvmFacilitatorSigner

__all__ = ["FacilitatorSigner", "LedgerTransfer", "EvmFacilitatorSigner"]

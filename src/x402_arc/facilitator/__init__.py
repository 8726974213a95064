"""
x402 Facilitator SDK
"""

from x402_arc.facilitator.app import create_facilitator_app, create_facilitator_from_settings
from x402_arc.facilitator.facilitator_client import FacilitatorClient
from x402_arc.facilitator.settlement import SettlementEngine
from x402_arc.facilitator.verifier import PaymentVerifier
from x402_arc.facilitator.x402_facilitator import X402Facilitator

__all__ = [
    "X402Facilitator",
    "FacilitatorClient",
    "PaymentVerifier",
    "SettlementEngine",
    "create_facilitator_app",
    "create_facilitator_from_settings",
]

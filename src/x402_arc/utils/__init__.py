"""
x402 utilities
"""

from x402_arc.utils.tx_verification import (
    TRANSFER_EVENT_TOPIC,
    BaseTransactionVerifier,
    EvmTransactionVerifier,
    TransactionVerificationResult,
    TransferEvent,
    get_verifier_for_network,
)

__all__ = [
    "TRANSFER_EVENT_TOPIC",
    "BaseTransactionVerifier",
    "EvmTransactionVerifier",
    "TransactionVerificationResult",
    "TransferEvent",
    "get_verifier_for_network",
]

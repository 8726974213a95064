"""
x402 Server SDK
"""

from x402_arc.server.receipts import ReceiptSigner, hash_content, verify_receipt
from x402_arc.server.x402_server import (
    GatedResource,
    HandleResult,
    SettlementBackend,
    X402Server,
)

__all__ = [
    "X402Server",
    "GatedResource",
    "HandleResult",
    "SettlementBackend",
    "ReceiptSigner",
    "hash_content",
    "verify_receipt",
]

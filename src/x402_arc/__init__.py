"""
x402 - Payment Protocol SDK for Python

EIP-712 payment claims, facilitator verification and settlement, gated
resources and signed delivery receipts for EVM networks (Arc by default).
"""

__version__ = "0.1.0"

from x402_arc.config import X402_VERSION, NetworkConfig, X402Settings
from x402_arc.exceptions import (
    ConfigurationError,
    InvalidClaimFormat,
    LedgerSubmissionError,
    PaymentHeaderError,
    PaymentPolicyError,
    ResourceNotFound,
    SettlementError,
    SignatureCreationError,
    SignatureError,
    SignatureVerificationError,
    TransactionError,
    TransactionFailedError,
    TransactionTimeoutError,
    UnknownTokenError,
    UnsupportedNetworkError,
    ValidationError,
    X402Error,
)
from x402_arc.tokens import TokenInfo, TokenRegistry
from x402_arc.types import (
    GrantResponse,
    PaymentChallenge,
    PaymentClaim,
    PaymentProof,
    Receipt,
    RejectionResponse,
    SettleResponse,
    SettlementRecord,
    SignedPayment,
    VerifyResponse,
)

__all__ = [
    "__version__",
    "X402_VERSION",
    # Config
    "NetworkConfig",
    "X402Settings",
    # Types
    "PaymentClaim",
    "SignedPayment",
    "VerifyResponse",
    "SettlementRecord",
    "SettleResponse",
    "PaymentChallenge",
    "PaymentProof",
    "GrantResponse",
    "RejectionResponse",
    "Receipt",
    # Exceptions
    "X402Error",
    "SignatureError",
    "SignatureVerificationError",
    "SignatureCreationError",
    "SettlementError",
    "TransactionError",
    "LedgerSubmissionError",
    "TransactionTimeoutError",
    "TransactionFailedError",
    "ValidationError",
    "InvalidClaimFormat",
    "ResourceNotFound",
    "PaymentHeaderError",
    "PaymentPolicyError",
    "ConfigurationError",
    "UnsupportedNetworkError",
    "UnknownTokenError",
    # Tokens
    "TokenInfo",
    "TokenRegistry",
]

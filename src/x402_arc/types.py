"""
Type definitions for x402 protocol
"""

import re
from typing import Any, Literal, Optional

from eth_utils import is_hex_address
from pydantic import BaseModel, Field, field_validator, model_validator

from x402_arc.config import X402_VERSION

# Payment schemes
SCHEME_EXACT = "exact"
SCHEME_UPTO = "upto"

PaymentScheme = Literal["exact", "upto"]

# Settlement states
STATUS_SETTLED = "settled"
STATUS_FAILED = "failed"
STATUS_PENDING = "pending"

SettlementStatus = Literal["settled", "failed", "pending"]

# Error kinds carried in typed outcomes
INVALID_CLAIM_FORMAT = "invalid_claim_format"
NETWORK_MISMATCH = "network_mismatch"
EXPIRED = "expired"
SIGNATURE_INVALID = "signature_invalid"
ALREADY_SETTLED = "already_settled"
LEDGER_TRANSFER_FAILED = "ledger_transfer_failed"
LEDGER_UNKNOWN = "ledger_unknown"
NOT_FOUND = "not_found"
TRANSACTION_FAILED = "transaction_failed"
ALREADY_CONSUMED = "already_consumed"
PAYMENT_MISMATCH = "payment_mismatch"
UNSUPPORTED_SCHEME = "unsupported_scheme"
FACILITATOR_ERROR = "facilitator_error"

ErrorKind = Literal[
    "invalid_claim_format",
    "network_mismatch",
    "expired",
    "signature_invalid",
    "already_settled",
    "ledger_transfer_failed",
    "ledger_unknown",
    "not_found",
    "transaction_failed",
    "already_consumed",
    "payment_mismatch",
    "unsupported_scheme",
    "facilitator_error",
]

_NETWORK_RE = re.compile(r"^[-a-z0-9]{3,8}:[0-9]+$")
_BYTES32_RE = re.compile(r"^0x[0-9a-fA-F]{64}$")


def _check_address(value: str) -> str:
    if not isinstance(value, str) or not is_hex_address(value):
        raise ValueError(f"not a hex address: {value!r}")
    return value


class PaymentClaim(BaseModel):
    """Payment obligation signed by the payer (``paymentDetails`` on the wire)"""

    version: str = X402_VERSION
    scheme: PaymentScheme = SCHEME_EXACT
    network_id: str = Field(alias="networkId")
    asset: str
    amount: str
    recipient: str
    nonce: str
    expiry: int
    # Advisory only, not part of the signed document
    memo: Optional[str] = None
    reference: Optional[str] = None

    class Config:
        populate_by_name = True

    @field_validator("network_id")
    @classmethod
    def _validate_network(cls, value: str) -> str:
        if not _NETWORK_RE.match(value):
            raise ValueError(f"network id must look like <namespace>:<numeric-id>, got {value!r}")
        return value

    @field_validator("asset", "recipient")
    @classmethod
    def _validate_address(cls, value: str) -> str:
        return _check_address(value)

    @field_validator("amount", mode="before")
    @classmethod
    def _validate_amount(cls, value: Any) -> str:
        if isinstance(value, bool) or not isinstance(value, (int, str)):
            raise ValueError("amount must be an integer in smallest units")
        text = str(value).strip()
        if not text.isdigit():
            raise ValueError(f"amount must be a non-negative integer string, got {value!r}")
        if int(text) <= 0:
            raise ValueError("amount must be greater than zero")
        return str(int(text))

    @field_validator("nonce")
    @classmethod
    def _validate_nonce(cls, value: str) -> str:
        if not _BYTES32_RE.match(value):
            raise ValueError("nonce must be 0x-prefixed 32 bytes of hex")
        return value.lower()

    @field_validator("expiry")
    @classmethod
    def _validate_expiry(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("expiry must be a positive unix timestamp")
        return value

    @property
    def amount_units(self) -> int:
        return int(self.amount)


class SignedPayment(BaseModel):
    """A payment claim plus the payer's EIP-712 signature"""

    signature: str
    claim: PaymentClaim = Field(alias="paymentDetails")
    signer: str
    signed_at: Optional[int] = Field(None, alias="signedAt")
    signer_chain: Optional[str] = Field(None, alias="signerChain")

    class Config:
        populate_by_name = True

    @field_validator("signer")
    @classmethod
    def _validate_signer(cls, value: str) -> str:
        return _check_address(value)


class VerifyRequest(SignedPayment):
    """Facilitator verify request: ``{signature, paymentDetails, signer}``"""

    pass


class SettleRequest(VerifyRequest):
    """Facilitator settle request"""

    pass


class VerifyResponse(BaseModel):
    """Verification outcome; every check attempted is reported"""

    valid: bool
    signer_verified: bool = Field(False, alias="signerVerified")
    network_match: bool = Field(False, alias="networkMatch")
    not_expired: bool = Field(False, alias="notExpired")
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = Field(None, alias="errorKind")

    class Config:
        populate_by_name = True


class SettlementRecord(BaseModel):
    """Outcome of executing a claim, keyed by nonce"""

    nonce: str
    success: bool
    status: SettlementStatus
    transaction_id: Optional[str] = Field(None, alias="transactionId")
    block_reference: Optional[int] = Field(None, alias="blockReference")
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = Field(None, alias="errorKind")
    network: Optional[str] = None
    recipient: Optional[str] = None
    amount: Optional[str] = None
    payer: Optional[str] = None
    created_at: int = Field(alias="createdAt")

    class Config:
        populate_by_name = True
        frozen = True

    @property
    def is_terminal(self) -> bool:
        return self.status != STATUS_PENDING


class SettleResponse(BaseModel):
    """Settlement response from facilitator"""

    success: bool
    status: Optional[SettlementStatus] = None
    transaction_id: Optional[str] = Field(None, alias="transactionId")
    block_reference: Optional[int] = Field(None, alias="blockReference")
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = Field(None, alias="errorKind")
    network: Optional[str] = None
    settlement_type: Literal["facilitator", "direct"] = Field(
        "facilitator", alias="settlementType"
    )

    class Config:
        populate_by_name = True

    @classmethod
    def from_record(cls, record: SettlementRecord) -> "SettleResponse":
        return cls(
            success=record.success,
            status=record.status,
            transactionId=record.transaction_id,
            blockReference=record.block_reference,
            error=record.error,
            errorKind=record.error_kind,
            network=record.network,
        )


class SupportedKind(BaseModel):
    """Supported payment kind"""

    x402_version: str = Field(alias="x402Version")
    scheme: str
    network: str

    class Config:
        populate_by_name = True


class SupportedResponse(BaseModel):
    """Supported response from facilitator"""

    kinds: list[SupportedKind]


class FacilitatorInfo(BaseModel):
    """Facilitator service information"""

    version: str
    networks: list[str]
    chain_id: int = Field(alias="chainId")
    settlements: int
    fee_rate: str = Field("0%", alias="feeRate")

    class Config:
        populate_by_name = True


class ResourceInfo(BaseModel):
    """Resource information"""

    id: str
    name: Optional[str] = None
    description: Optional[str] = None
    url: Optional[str] = None


class PaymentOption(BaseModel):
    """Human-readable price block of a 402 challenge"""

    amount: str
    currency: str
    network: str
    recipient: str
    asset: str
    chain_id: int = Field(alias="chainId")

    class Config:
        populate_by_name = True


class PaymentChallenge(BaseModel):
    """Payment required response (402)"""

    error: str = "Payment Required"
    protocol_version: str = Field(X402_VERSION, alias="protocolVersion")
    resource_id: str = Field(alias="resourceId")
    payment: PaymentOption
    claim: PaymentClaim
    resource: Optional[ResourceInfo] = None

    class Config:
        populate_by_name = True


class PaymentProof(BaseModel):
    """Proof carried by a retried request: a ledger tx id or a signed claim"""

    transaction_id: Optional[str] = Field(None, alias="transactionId")
    signed_payment: Optional[SignedPayment] = Field(None, alias="signedPayment")

    class Config:
        populate_by_name = True

    @field_validator("transaction_id")
    @classmethod
    def _validate_transaction_id(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not _BYTES32_RE.match(value):
            raise ValueError("transaction id must be 0x-prefixed 32 bytes of hex")
        return value

    @model_validator(mode="after")
    def _exactly_one(self) -> "PaymentProof":
        if (self.transaction_id is None) == (self.signed_payment is None):
            raise ValueError("proof needs exactly one of transactionId or signedPayment")
        return self


class Receipt(BaseModel):
    """Operator-signed attestation binding a transaction to delivered content"""

    transaction_id: str = Field(alias="transactionId")
    resource_id: str = Field(alias="resourceId")
    content_hash: str = Field(alias="contentHash")
    amount: str
    buyer: str
    timestamp: int
    nonce: int
    signature: str
    operator: str

    class Config:
        populate_by_name = True


class GrantResponse(BaseModel):
    """Success body returned once proof of payment is accepted"""

    verified: bool = True
    transaction_id: str = Field(alias="transactionId")
    explorer_link: Optional[str] = Field(None, alias="explorerLink")
    resource_id: str = Field(alias="resourceId")
    content: dict[str, Any]
    content_hash: str = Field(alias="contentHash")
    receipt: Receipt

    class Config:
        populate_by_name = True


class RejectionResponse(BaseModel):
    """Rejected proof; carries a fresh challenge so the client can self-correct"""

    error: str
    error_kind: ErrorKind = Field(alias="errorKind")
    retryable: bool = False
    retry_after: Optional[int] = Field(None, alias="retryAfter")
    transaction_id: Optional[str] = Field(None, alias="transactionId")
    challenge: Optional[PaymentChallenge] = None

    class Config:
        populate_by_name = True


class Purchase(BaseModel):
    """Purchase history entry"""

    id: str
    resource_id: str = Field(alias="resourceId")
    transaction_id: str = Field(alias="transactionId")
    amount: str
    buyer: str
    content_hash: str = Field(alias="contentHash")
    receipt: Receipt
    timestamp: int

    class Config:
        populate_by_name = True

"""
Payment claim codec.

Builds the EIP-712 document for a payment claim and its signing digest.
Signer and verifier both go through this module, so identical field values
always produce byte-identical digests.
"""

import secrets
import time
from typing import Any, Mapping

from eth_account.messages import SignableMessage, encode_typed_data
from eth_utils import keccak, to_checksum_address
from pydantic import ValidationError as PydanticValidationError

from x402_arc.config import X402_VERSION
from x402_arc.encoding import hex_to_bytes
from x402_arc.exceptions import InvalidClaimFormat, UnsupportedNetworkError
from x402_arc.types import SCHEME_EXACT, PaymentClaim

DOMAIN_NAME = "x402"

PAYMENT_PRIMARY_TYPE = "Payment"

EIP712_DOMAIN_TYPE = [
    {"name": "name", "type": "string"},
    {"name": "version", "type": "string"},
    {"name": "chainId", "type": "uint256"},
    {"name": "verifyingContract", "type": "address"},
]

# Field order is part of the type hash; do not reorder.
PAYMENT_TYPES = {
    PAYMENT_PRIMARY_TYPE: [
        {"name": "version", "type": "string"},
        {"name": "scheme", "type": "string"},
        {"name": "networkId", "type": "string"},
        {"name": "asset", "type": "address"},
        {"name": "amount", "type": "uint256"},
        {"name": "recipient", "type": "address"},
        {"name": "nonce", "type": "bytes32"},
        {"name": "expiry", "type": "uint256"},
    ],
}

DEFAULT_CLAIM_TTL_SECONDS = 300


def build_domain(chain_id: int, verifying_asset: str) -> dict[str, Any]:
    """Domain separator fields.

    ``verifyingContract`` is the payment asset, binding a signature to one
    asset on one chain.
    """
    return {
        "name": DOMAIN_NAME,
        "version": X402_VERSION,
        "chainId": int(chain_id),
        "verifyingContract": to_checksum_address(verifying_asset),
    }


def type_schema() -> list[tuple[str, str]]:
    """Ordered (name, type) pairs of the ``Payment`` record"""
    return [(f["name"], f["type"]) for f in PAYMENT_TYPES[PAYMENT_PRIMARY_TYPE]]


def build_message(claim: PaymentClaim) -> dict[str, Any]:
    """EIP-712 message values for *claim*, in schema order"""
    return {
        "version": claim.version,
        "scheme": claim.scheme,
        "networkId": claim.network_id,
        "asset": to_checksum_address(claim.asset),
        "amount": claim.amount_units,
        "recipient": to_checksum_address(claim.recipient),
        "nonce": hex_to_bytes(claim.nonce),
        "expiry": int(claim.expiry),
    }


def build_typed_data(domain: Mapping[str, Any], claim: PaymentClaim) -> dict[str, Any]:
    """Full EIP-712 document, including the EIP712Domain type"""
    return {
        "types": {"EIP712Domain": EIP712_DOMAIN_TYPE, **PAYMENT_TYPES},
        "primaryType": PAYMENT_PRIMARY_TYPE,
        "domain": dict(domain),
        "message": build_message(claim),
    }


def encode(domain: Mapping[str, Any], claim: PaymentClaim) -> SignableMessage:
    """Signable EIP-712 message for *claim* under *domain*"""
    try:
        return encode_typed_data(full_message=build_typed_data(domain, claim))
    except (ValueError, TypeError) as e:
        raise InvalidClaimFormat(f"cannot encode claim: {e}")


def digest(domain: Mapping[str, Any], claim: PaymentClaim) -> bytes:
    """32-byte EIP-712 digest: keccak(0x19 0x01 || domainSeparator || structHash)"""
    signable = encode(domain, claim)
    return keccak(b"\x19" + signable.version + signable.header + signable.body)


def parse_claim(data: Mapping[str, Any] | PaymentClaim) -> PaymentClaim:
    """Validate raw claim fields.

    Raises:
        InvalidClaimFormat: on malformed addresses, amounts, nonce or network id
    """
    if isinstance(data, PaymentClaim):
        return data
    try:
        return PaymentClaim.model_validate(dict(data))
    except PydanticValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(p) for p in first.get("loc", ())) or None
        raise InvalidClaimFormat(first.get("msg", str(e)), field=field)


def chain_id_from_network(network_id: str) -> int:
    """``eip155:5042002`` -> ``5042002``"""
    namespace, _, reference = network_id.partition(":")
    if not namespace or not reference.isdigit():
        raise UnsupportedNetworkError(f"Invalid network id: {network_id}")
    return int(reference)


def create_nonce() -> str:
    """Generate a random 32-byte nonce (0x-prefixed hex)."""
    return "0x" + secrets.token_hex(32)


def create_claim(
    network_id: str,
    asset: str,
    amount: int | str,
    recipient: str,
    ttl_seconds: int = DEFAULT_CLAIM_TTL_SECONDS,
    scheme: str = SCHEME_EXACT,
    now: int | None = None,
    nonce: str | None = None,
    memo: str | None = None,
    reference: str | None = None,
) -> PaymentClaim:
    """Mint a fresh claim with a random nonce and ``expiry = now + ttl``.

    Raises:
        InvalidClaimFormat: on malformed fields or a non-positive ttl
    """
    if ttl_seconds <= 0:
        raise InvalidClaimFormat("expiry must be in the future", field="expiry")
    issued_at = int(time.time()) if now is None else now
    return parse_claim(
        {
            "version": X402_VERSION,
            "scheme": scheme,
            "networkId": network_id,
            "asset": asset,
            "amount": amount,
            "recipient": recipient,
            "nonce": nonce or create_nonce(),
            "expiry": issued_at + ttl_seconds,
            "memo": memo,
            "reference": reference,
        }
    )

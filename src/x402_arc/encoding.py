"""
Encoding utilities for x402 protocol

Payment headers carry a pydantic model as base64 of its JSON form.
"""

import base64
import binascii
import json
from typing import Any, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from x402_arc.exceptions import PaymentHeaderError

T = TypeVar("T", bound=BaseModel)

# HTTP header names
PAYMENT_REQUIRED_HEADER = "PAYMENT-REQUIRED"
PAYMENT_SIGNATURE_HEADER = "PAYMENT-SIGNATURE"
PAYMENT_RESPONSE_HEADER = "PAYMENT-RESPONSE"
PAYMENT_TXHASH_HEADER = "X-PAYMENT-TXHASH"
X402_VERSION_HEADER = "X-402-Version"
RESOURCE_ID_HEADER = "X-Resource-Id"

# Larger values are refused before decoding
MAX_HEADER_LENGTH = 16 * 1024


def encode_payment_header(payload: BaseModel | dict[str, Any]) -> str:
    """Base64 JSON for a model (by alias, unset optionals dropped) or a plain dict"""
    if isinstance(payload, BaseModel):
        payload = payload.model_dump(by_alias=True, exclude_none=True)
    raw = json.dumps(payload, separators=(",", ":")).encode("utf-8")
    return base64.b64encode(raw).decode("ascii")


def decode_payment_header(
    encoded: str,
    model_class: type[T] | None = None,
    header: str = "payment header",
) -> T | dict[str, Any]:
    """
    Decode a payment header, optionally validating it into *model_class*.

    Raises:
        PaymentHeaderError: on oversize input, bad base64, bad JSON or a model mismatch
    """
    encoded = encoded.strip()
    if len(encoded) > MAX_HEADER_LENGTH:
        raise PaymentHeaderError(header, f"longer than {MAX_HEADER_LENGTH} characters")
    try:
        data = json.loads(base64.b64decode(encoded, validate=True).decode("utf-8"))
    except (binascii.Error, UnicodeDecodeError, json.JSONDecodeError) as e:
        raise PaymentHeaderError(header, f"not base64 JSON ({e})")
    if model_class is None:
        if not isinstance(data, dict):
            raise PaymentHeaderError(header, "expected a JSON object")
        return data
    try:
        return model_class.model_validate(data)
    except PydanticValidationError as e:
        raise PaymentHeaderError(header, f"{e.error_count()} invalid field(s): {e}")


def canonical_json(data: Any) -> str:
    """Stable JSON serialization: sorted keys at every level, no whitespace"""
    return json.dumps(data, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def bytes_to_hex(data: bytes, prefix: bool = True) -> str:
    hex_str = data.hex()
    return f"0x{hex_str}" if prefix else hex_str


def hex_to_bytes(hex_str: str) -> bytes:
    """Convert hex string (``0x`` prefix optional) to bytes"""
    if hex_str.startswith(("0x", "0X")):
        hex_str = hex_str[2:]
    return bytes.fromhex(hex_str)

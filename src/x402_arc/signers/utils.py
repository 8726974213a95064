"""
Signer utility functions
"""

from typing import Any

from eth_account import Account
from eth_account.signers.local import LocalAccount

from x402_arc.config import NetworkConfig
from x402_arc.exceptions import SignatureCreationError

# EIP-712 orders domain fields this way regardless of which are present
_DOMAIN_FIELD_TYPES: dict[str, str] = {
    "name": "string",
    "version": "string",
    "chainId": "uint256",
    "verifyingContract": "address",
    "salt": "bytes32",
}


def eip712_domain_type_from_keys(domain: dict[str, Any]) -> list[dict[str, str]]:
    """EIP712Domain type entries for the fields set in *domain*"""
    return [
        {"name": name, "type": field_type}
        for name, field_type in _DOMAIN_FIELD_TYPES.items()
        if name in domain
    ]


def normalize_private_key(private_key: str | None) -> str:
    """Return the key 0x-prefixed, or "" when no key material is present"""
    if not private_key:
        return ""
    if not private_key.startswith("0x"):
        private_key = "0x" + private_key
    return private_key


def load_account(private_key: str | None, role: str = "private") -> LocalAccount:
    """
    Build a local account from a hex key, with or without the 0x prefix.

    Raises:
        SignatureCreationError: if the key is missing or not a valid secp256k1 key
    """
    try:
        return Account.from_key(normalize_private_key(private_key))
    except (ValueError, TypeError) as e:
        raise SignatureCreationError(f"Invalid {role} key: {e}")


def resolve_provider_uri(network: str) -> str | None:
    """RPC endpoint for *network*; a URL passed as the network is returned unchanged"""
    if network.startswith(("http://", "https://", "ws://", "wss://")):
        return network
    return NetworkConfig.get_rpc_url(network)

"""
Pytest configuration and fixtures
"""

import time
from unittest.mock import AsyncMock, MagicMock

import pytest

from x402_arc import codec
from x402_arc.signers.client import EvmClientSigner
from x402_arc.signers.facilitator import FacilitatorSigner, LedgerTransfer

ARC_NETWORK = "eip155:5042002"
ARC_CHAIN_ID = 5042002
USDC_ADDRESS = "0x3600000000000000000000000000000000000000"
MERCHANT_ADDRESS = "0x1111111111111111111111111111111111111111"
TX_HASH = "0x" + "ab" * 32


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def mock_evm_private_key():
    """Mock EVM private key for the payer"""
    return "0x0123456789abcdef0123456789abcdef0123456789abcdef0123456789abcdef"


@pytest.fixture
def operator_private_key():
    """Mock EVM private key for the resource operator"""
    return "0x" + "22" * 32


@pytest.fixture
def facilitator_private_key():
    return "0x" + "11" * 32


@pytest.fixture
def payer_signer(mock_evm_private_key):
    return EvmClientSigner(mock_evm_private_key)


@pytest.fixture
def make_claim():
    """Factory for claims payable to the merchant in USDC on Arc testnet"""

    def _make(amount=1_000_000, ttl_seconds=300, now=None, **kwargs):
        return codec.create_claim(
            network_id=kwargs.pop("network_id", ARC_NETWORK),
            asset=kwargs.pop("asset", USDC_ADDRESS),
            amount=amount,
            recipient=kwargs.pop("recipient", MERCHANT_ADDRESS),
            ttl_seconds=ttl_seconds,
            now=int(time.time()) if now is None else now,
            **kwargs,
        )

    return _make


@pytest.fixture
def mock_ledger():
    """Facilitator signer whose transfers confirm immediately"""
    ledger = MagicMock(spec=FacilitatorSigner)
    ledger.get_address.return_value = "0x2222222222222222222222222222222222222222"
    ledger.transfer = AsyncMock(
        return_value=LedgerTransfer(tx_hash=TX_HASH, status="confirmed", block_number=42)
    )
    ledger.get_transaction_receipt = AsyncMock(return_value=None)
    return ledger

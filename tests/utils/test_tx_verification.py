"""
Tests for transaction verification.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
from web3.exceptions import TransactionNotFound

from x402_arc.exceptions import UnsupportedNetworkError
from x402_arc.types import NOT_FOUND, PAYMENT_MISMATCH, TRANSACTION_FAILED
from x402_arc.utils import (
    TRANSFER_EVENT_TOPIC,
    BaseTransactionVerifier,
    EvmTransactionVerifier,
    TransferEvent,
    get_verifier_for_network,
)

ARC_NETWORK = "eip155:5042002"
USDC_ADDRESS = "0x3600000000000000000000000000000000000000"
MERCHANT_ADDRESS = "0x1111111111111111111111111111111111111111"
PAYER_ADDRESS = "0xFCAd0B19bB29D4674531d6f115237E16AfCE377c"
TX_HASH = "0x" + "ab" * 32


class StubVerifier(BaseTransactionVerifier):
    def __init__(self, tx_info=None, error=None):
        super().__init__(retry_after=7)
        self.tx_info = tx_info
        self.error = error

    async def get_transaction_info(self, tx_hash):
        if self.error is not None:
            raise self.error
        return self.tx_info

    def normalize_address(self, address):
        return address.lower()


def _tx_info(status="confirmed", transfers=None, to=USDC_ADDRESS, value=0):
    return {
        "status": status,
        "blockNumber": 100,
        "from": PAYER_ADDRESS,
        "to": to,
        "value": value,
        "transfers": transfers or [],
    }


def _usdc_transfer(amount, to_addr=MERCHANT_ADDRESS):
    return TransferEvent(
        token=USDC_ADDRESS, from_addr=PAYER_ADDRESS, to_addr=to_addr, amount=amount
    )


async def _verify(verifier, amount=1_000_000):
    return await verifier.verify_transaction(
        TX_HASH,
        expected_recipient=MERCHANT_ADDRESS,
        expected_amount=amount,
        asset=USDC_ADDRESS,
        network=ARC_NETWORK,
    )


class TestVerifyTransaction:
    @pytest.mark.anyio
    async def test_confirmed_without_expectations(self):
        result = await StubVerifier(_tx_info()).verify_transaction(TX_HASH)
        assert result.success is True
        assert result.status_verified is True
        assert result.payment_verified is False
        assert result.sender == PAYER_ADDRESS
        assert result.block_number == 100

    @pytest.mark.anyio
    async def test_erc20_payment_matches(self):
        result = await _verify(StubVerifier(_tx_info(transfers=[_usdc_transfer(1_000_000)])))
        assert result.success is True
        assert result.payment_verified is True

    @pytest.mark.anyio
    async def test_overpayment_accepted(self):
        result = await _verify(StubVerifier(_tx_info(transfers=[_usdc_transfer(2_000_000)])))
        assert result.success is True

    @pytest.mark.anyio
    async def test_split_transfers_summed(self):
        transfers = [_usdc_transfer(600_000), _usdc_transfer(400_000)]
        assert (await _verify(StubVerifier(_tx_info(transfers=transfers)))).success is True

    @pytest.mark.anyio
    async def test_underpayment(self):
        result = await _verify(StubVerifier(_tx_info(transfers=[_usdc_transfer(999_999)])))
        assert result.success is False
        assert result.error_kind == PAYMENT_MISMATCH
        assert result.retryable is False

    @pytest.mark.anyio
    async def test_paid_to_someone_else(self):
        transfers = [_usdc_transfer(1_000_000, to_addr=PAYER_ADDRESS)]
        result = await _verify(StubVerifier(_tx_info(transfers=transfers)))
        assert result.error_kind == PAYMENT_MISMATCH

    @pytest.mark.anyio
    async def test_native_value_scaled_to_token_units(self):
        info = _tx_info(to=MERCHANT_ADDRESS, value=10**18)
        result = await _verify(StubVerifier(info))
        assert result.success is True

    @pytest.mark.anyio
    async def test_native_value_short(self):
        info = _tx_info(to=MERCHANT_ADDRESS, value=10**17)
        result = await _verify(StubVerifier(info))
        assert result.error_kind == PAYMENT_MISMATCH

    @pytest.mark.anyio
    async def test_reverted(self):
        result = await _verify(StubVerifier(_tx_info(status="failed")))
        assert result.success is False
        assert result.error_kind == TRANSACTION_FAILED
        assert result.retryable is False

    @pytest.mark.anyio
    async def test_not_mined_is_retryable(self):
        result = await _verify(StubVerifier(None))
        assert result.error_kind == NOT_FOUND
        assert result.retryable is True
        assert result.retry_after == 7

    @pytest.mark.anyio
    async def test_lookup_error_is_retryable(self):
        result = await _verify(StubVerifier(error=ConnectionError("rpc down")))
        assert result.error_kind == NOT_FOUND
        assert result.retryable is True

    @pytest.mark.anyio
    async def test_to_dict(self):
        data = (await _verify(StubVerifier(None))).to_dict()
        assert data["txHash"] == TX_HASH
        assert data["errorKind"] == NOT_FOUND


def _transfer_log(token, sender, recipient, amount):
    return {
        "address": token,
        "topics": [
            bytes.fromhex(TRANSFER_EVENT_TOPIC[2:]),
            bytes(12) + bytes.fromhex(sender[2:]),
            bytes(12) + bytes.fromhex(recipient[2:]),
        ],
        "data": amount.to_bytes(32, "big"),
    }


class TestEvmTransactionVerifier:
    def test_transfer_topic(self):
        assert TRANSFER_EVENT_TOPIC == (
            "0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef"
        )

    def test_parse_transfers(self):
        logs = [
            _transfer_log(USDC_ADDRESS, PAYER_ADDRESS, MERCHANT_ADDRESS, 1_500_000),
            {"address": USDC_ADDRESS, "topics": [b"\x01" * 32], "data": b""},
        ]
        transfers = EvmTransactionVerifier._parse_transfers(logs)

        assert len(transfers) == 1
        assert transfers[0].amount == 1_500_000
        assert transfers[0].to_addr == MERCHANT_ADDRESS
        assert transfers[0].from_addr == PAYER_ADDRESS

    @pytest.mark.anyio
    async def test_get_transaction_info(self):
        verifier = EvmTransactionVerifier(ARC_NETWORK, rpc_url="http://localhost:8545")
        w3 = MagicMock()
        w3.eth.get_transaction_receipt = AsyncMock(
            return_value={
                "status": 1,
                "blockNumber": 12,
                "logs": [_transfer_log(USDC_ADDRESS, PAYER_ADDRESS, MERCHANT_ADDRESS, 5)],
            }
        )
        w3.eth.get_transaction = AsyncMock(
            return_value={"from": PAYER_ADDRESS, "to": USDC_ADDRESS, "value": 0}
        )
        verifier._w3 = w3

        info = await verifier.get_transaction_info(TX_HASH)

        assert info["status"] == "confirmed"
        assert info["blockNumber"] == 12
        assert info["transfers"][0].amount == 5

    @pytest.mark.anyio
    async def test_unknown_transaction(self):
        verifier = EvmTransactionVerifier(ARC_NETWORK, rpc_url="http://localhost:8545")
        w3 = MagicMock()
        w3.eth.get_transaction_receipt = AsyncMock(side_effect=TransactionNotFound("unknown"))
        verifier._w3 = w3

        assert await verifier.get_transaction_info(TX_HASH) is None

    def test_factory(self):
        assert isinstance(get_verifier_for_network(ARC_NETWORK), EvmTransactionVerifier)
        with pytest.raises(UnsupportedNetworkError):
            get_verifier_for_network("solana:mainnet")

    def test_requires_rpc(self):
        with pytest.raises(UnsupportedNetworkError):
            EvmTransactionVerifier("eip155:999999")

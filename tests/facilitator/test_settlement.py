"""
Tests for SettlementEngine.
"""

import asyncio

import pytest

from x402_arc.exceptions import LedgerSubmissionError, TransactionTimeoutError
from x402_arc.facilitator import PaymentVerifier, SettlementEngine
from x402_arc.signers.facilitator import LedgerTransfer
from x402_arc.store import InMemoryStore
from x402_arc.types import (
    EXPIRED,
    LEDGER_TRANSFER_FAILED,
    LEDGER_UNKNOWN,
    STATUS_FAILED,
    STATUS_PENDING,
    STATUS_SETTLED,
    UNSUPPORTED_SCHEME,
)

ARC_CHAIN_ID = 5042002
TX_HASH = "0x" + "ab" * 32


class Clock:
    def __init__(self, now: float) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def engine(mock_ledger):
    return SettlementEngine(PaymentVerifier(ARC_CHAIN_ID), mock_ledger)


@pytest.fixture
async def signed(payer_signer, make_claim, anyio_backend):
    return await payer_signer.sign_claim(make_claim(), ARC_CHAIN_ID)


class TestSettle:
    @pytest.mark.anyio
    async def test_settles_valid_claim(self, engine, mock_ledger, signed):
        record = await engine.settle(signed)

        assert record.status == STATUS_SETTLED
        assert record.success is True
        assert record.transaction_id == TX_HASH
        assert record.block_reference == 42
        assert record.payer == signed.signer
        mock_ledger.transfer.assert_awaited_once_with(
            signed.claim.recipient, 1_000_000, signed.claim.asset, signed.claim.network_id
        )
        assert engine.get_settlement(signed.claim.nonce) == record

    @pytest.mark.anyio
    async def test_second_call_returns_cached_record(self, engine, mock_ledger, signed):
        first = await engine.settle(signed)
        second = await engine.settle(signed)

        assert second == first
        assert mock_ledger.transfer.await_count == 1

    @pytest.mark.anyio
    async def test_concurrent_settles_transfer_once(self, engine, mock_ledger, signed):
        async def slow_transfer(*args):
            await asyncio.sleep(0.05)
            return LedgerTransfer(tx_hash=TX_HASH, status="confirmed", block_number=42)

        mock_ledger.transfer.side_effect = slow_transfer

        records = await asyncio.gather(*(engine.settle(signed) for _ in range(10)))

        assert mock_ledger.transfer.await_count == 1
        assert {r.transaction_id for r in records} == {TX_HASH}
        assert all(r.status == STATUS_SETTLED for r in records)

    @pytest.mark.anyio
    async def test_different_nonces_settle_independently(
        self, engine, mock_ledger, payer_signer, make_claim
    ):
        first = await payer_signer.sign_claim(make_claim(), ARC_CHAIN_ID)
        second = await payer_signer.sign_claim(make_claim(), ARC_CHAIN_ID)

        await asyncio.gather(engine.settle(first), engine.settle(second))

        assert mock_ledger.transfer.await_count == 2
        assert len(engine.list_settlements()) == 2

    @pytest.mark.anyio
    async def test_lock_registry_drained(self, engine, signed):
        await asyncio.gather(*(engine.settle(signed) for _ in range(5)))
        assert engine._locks == {}
        assert engine._lock_refs == {}

    @pytest.mark.anyio
    async def test_invalid_claim_not_stored(self, mock_ledger, payer_signer, make_claim):
        store = InMemoryStore()
        engine = SettlementEngine(PaymentVerifier(ARC_CHAIN_ID), mock_ledger, store=store)
        expired = await payer_signer.sign_claim(
            make_claim(now=1_000, ttl_seconds=60), ARC_CHAIN_ID
        )

        record = await engine.settle(expired)

        assert record.status == STATUS_FAILED
        assert record.error_kind == EXPIRED
        assert len(store) == 0
        mock_ledger.transfer.assert_not_awaited()

    @pytest.mark.anyio
    async def test_reserved_scheme_not_settled(self, engine, mock_ledger, payer_signer, make_claim):
        upto = await payer_signer.sign_claim(make_claim(scheme="upto"), ARC_CHAIN_ID)

        record = await engine.settle(upto)

        assert record.status == STATUS_FAILED
        assert record.error_kind == UNSUPPORTED_SCHEME
        assert engine.get_settlement(upto.claim.nonce) is None
        mock_ledger.transfer.assert_not_awaited()

    @pytest.mark.anyio
    async def test_submission_failure_is_terminal(self, engine, mock_ledger, signed):
        mock_ledger.transfer.side_effect = LedgerSubmissionError("insufficient balance")

        first = await engine.settle(signed)
        second = await engine.settle(signed)

        assert first.status == STATUS_FAILED
        assert first.error_kind == LEDGER_TRANSFER_FAILED
        assert second == first
        assert mock_ledger.transfer.await_count == 1

    @pytest.mark.anyio
    async def test_reverted_transfer_fails(self, engine, mock_ledger, signed):
        mock_ledger.transfer.return_value = LedgerTransfer(
            tx_hash=TX_HASH, status="failed", block_number=43
        )

        record = await engine.settle(signed)

        assert record.status == STATUS_FAILED
        assert record.transaction_id == TX_HASH
        assert record.error_kind == LEDGER_TRANSFER_FAILED


class TestPending:
    @pytest.mark.anyio
    async def test_timeout_is_pending_then_reconciled(self, engine, mock_ledger, signed):
        mock_ledger.transfer.side_effect = TransactionTimeoutError("slow", tx_hash=TX_HASH)

        pending = await engine.settle(signed)
        assert pending.status == STATUS_PENDING
        assert pending.error_kind == LEDGER_UNKNOWN
        assert pending.transaction_id == TX_HASH
        assert pending.success is False

        mock_ledger.get_transaction_receipt.return_value = {
            "hash": TX_HASH,
            "blockNumber": 50,
            "status": "confirmed",
        }
        settled = await engine.reconcile(signed.claim.nonce)

        assert settled.status == STATUS_SETTLED
        assert settled.block_reference == 50
        assert settled.transaction_id == TX_HASH
        assert engine.get_settlement(signed.claim.nonce).status == STATUS_SETTLED
        assert mock_ledger.transfer.await_count == 1

    @pytest.mark.anyio
    async def test_retry_while_pending_never_retransfers(self, engine, mock_ledger, signed):
        mock_ledger.transfer.side_effect = TransactionTimeoutError("slow", tx_hash=TX_HASH)

        await engine.settle(signed)
        again = await engine.settle(signed)

        assert again.status == STATUS_PENDING
        assert mock_ledger.transfer.await_count == 1
        mock_ledger.get_transaction_receipt.assert_awaited_once_with(
            TX_HASH, signed.claim.network_id
        )

    @pytest.mark.anyio
    async def test_reconcile_reverted(self, engine, mock_ledger, signed):
        mock_ledger.transfer.side_effect = TransactionTimeoutError("slow", tx_hash=TX_HASH)
        await engine.settle(signed)

        mock_ledger.get_transaction_receipt.return_value = {"blockNumber": 51, "status": "failed"}
        record = await engine.settle(signed)

        assert record.status == STATUS_FAILED
        assert record.error_kind == LEDGER_TRANSFER_FAILED

    @pytest.mark.anyio
    async def test_pending_without_hash_never_retransfers(self, engine, mock_ledger, signed):
        mock_ledger.transfer.side_effect = RuntimeError("signer crashed mid-submit")
        record = await engine.settle(signed)
        assert record.status == STATUS_PENDING
        assert record.transaction_id is None

        assert (await engine.reconcile(signed.claim.nonce)).status == STATUS_PENDING
        assert (await engine.settle(signed)).status == STATUS_PENDING
        mock_ledger.get_transaction_receipt.assert_not_awaited()
        assert mock_ledger.transfer.await_count == 1

    @pytest.mark.anyio
    async def test_unexpected_error_is_pending(self, engine, mock_ledger, signed):
        mock_ledger.transfer.side_effect = ConnectionError("socket closed")
        record = await engine.settle(signed)
        assert record.status == STATUS_PENDING
        assert record.error_kind == LEDGER_UNKNOWN

    @pytest.mark.anyio
    async def test_lookup_error_keeps_pending(self, engine, mock_ledger, signed):
        mock_ledger.transfer.side_effect = TransactionTimeoutError("slow", tx_hash=TX_HASH)
        await engine.settle(signed)

        mock_ledger.get_transaction_receipt.side_effect = RuntimeError("rpc down")
        record = await engine.reconcile(signed.claim.nonce)
        assert record.status == STATUS_PENDING

    @pytest.mark.anyio
    async def test_stale_pending_tells_caller_not_to_resign(self, mock_ledger, signed):
        clock = Clock(signed.claim.expiry - 200)
        engine = SettlementEngine(
            PaymentVerifier(ARC_CHAIN_ID, clock=clock),
            mock_ledger,
            max_pending_seconds=60,
            clock=clock,
        )
        mock_ledger.transfer.side_effect = TransactionTimeoutError("slow", tx_hash=TX_HASH)
        await engine.settle(signed)

        fresh = await engine.reconcile(signed.claim.nonce)
        assert "do not re-sign" not in fresh.error

        clock.now += 61
        stale = await engine.reconcile(signed.claim.nonce)
        assert stale.status == STATUS_PENDING
        assert "do not re-sign" in stale.error

    @pytest.mark.anyio
    async def test_reconcile_unknown_nonce(self, engine):
        assert await engine.reconcile("0x" + "00" * 32) is None

    @pytest.mark.anyio
    async def test_reconcile_terminal_is_noop(self, engine, mock_ledger, signed):
        settled = await engine.settle(signed)
        assert await engine.reconcile(signed.claim.nonce) == settled
        mock_ledger.get_transaction_receipt.assert_not_awaited()


class TestConstruction:
    @pytest.mark.anyio
    async def test_slow_transfer_is_not_cancelled(self, engine, mock_ledger, signed):
        async def slow_transfer(*args):
            await asyncio.sleep(0.05)
            return LedgerTransfer(tx_hash=TX_HASH, status="confirmed", block_number=7)

        mock_ledger.transfer.side_effect = slow_transfer
        record = await engine.settle(signed)

        assert record.status == STATUS_SETTLED
        assert record.block_reference == 7

    def test_default_store_is_in_memory(self, mock_ledger):
        engine = SettlementEngine(PaymentVerifier(ARC_CHAIN_ID), mock_ledger)
        assert engine.list_settlements() == []
        assert engine.signer is mock_ledger

    def test_injected_empty_store_kept(self, mock_ledger):
        store = InMemoryStore()
        engine = SettlementEngine(PaymentVerifier(ARC_CHAIN_ID), mock_ledger, store=store)
        assert engine._store is store

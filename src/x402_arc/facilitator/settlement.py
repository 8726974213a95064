"""
SettlementEngine - idempotent, nonce-keyed execution of verified claims
"""

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable

from x402_arc.exceptions import (
    LedgerSubmissionError,
    TransactionFailedError,
    TransactionTimeoutError,
)
from x402_arc.facilitator.verifier import PaymentVerifier
from x402_arc.signers.facilitator.base import FacilitatorSigner, LedgerTransfer
from x402_arc.store import InMemoryStore, KeyValueStore
from x402_arc.types import (
    LEDGER_TRANSFER_FAILED,
    LEDGER_UNKNOWN,
    STATUS_FAILED,
    STATUS_PENDING,
    STATUS_SETTLED,
    ErrorKind,
    SettlementRecord,
    SettlementStatus,
    SignedPayment,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_PENDING_SECONDS = 600


class SettlementEngine:
    """
    Executes ledger transfers for verified claims, at most once per nonce.

    Per nonce: unsettled -> pending -> settled | failed. ``settled`` and
    ``failed`` are terminal and returned unchanged on every later call.
    ``pending`` means the transfer may have landed; it is reconciled against
    the ledger by transaction hash and never re-executed.
    """

    def __init__(
        self,
        verifier: PaymentVerifier,
        signer: FacilitatorSigner,
        store: KeyValueStore[SettlementRecord] | None = None,
        max_pending_seconds: int = DEFAULT_MAX_PENDING_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._verifier = verifier
        self._signer = signer
        self._store: KeyValueStore[SettlementRecord] = (
            store if store is not None else InMemoryStore()
        )
        self._max_pending_seconds = max_pending_seconds
        self._clock = clock
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_refs: dict[str, int] = {}

    @property
    def verifier(self) -> PaymentVerifier:
        return self._verifier

    @property
    def signer(self) -> FacilitatorSigner:
        return self._signer

    @asynccontextmanager
    async def _nonce_lock(self, nonce: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(nonce, asyncio.Lock())
        self._lock_refs[nonce] = self._lock_refs.get(nonce, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_refs[nonce] -= 1
            if self._lock_refs[nonce] == 0:
                del self._lock_refs[nonce]
                del self._locks[nonce]

    async def settle(self, signed_payment: SignedPayment) -> SettlementRecord:
        """
        Verify and settle *signed_payment*.

        Invalid claims are answered with a failed record that is not stored,
        so they never occupy a nonce slot.
        """
        claim = signed_payment.claim
        verification = self._verifier.verify(signed_payment)
        if not verification.valid:
            return self._record(
                signed_payment,
                STATUS_FAILED,
                error=verification.error or "Payment verification failed",
                error_kind=verification.error_kind,
            )

        async with self._nonce_lock(claim.nonce):
            placeholder = self._record(
                signed_payment,
                STATUS_PENDING,
                error="Settlement in progress",
                error_kind=LEDGER_UNKNOWN,
            )
            stored = self._store.put_if_absent(claim.nonce, placeholder)
            if stored is not placeholder:
                if stored.is_terminal:
                    logger.info(
                        "Nonce already settled, returning cached record: nonce=%s tx=%s",
                        claim.nonce,
                        stored.transaction_id,
                    )
                    return stored
                return await self._reconcile_locked(stored)

            record = await self._execute(signed_payment)
            self._store.replace_if(claim.nonce, record, lambda current: not current.is_terminal)
            return record

    async def reconcile(self, nonce: str) -> SettlementRecord | None:
        """Re-check a pending settlement against the ledger"""
        async with self._nonce_lock(nonce):
            record = self._store.get(nonce)
            if record is None or record.is_terminal:
                return record
            return await self._reconcile_locked(record)

    def get_settlement(self, nonce: str) -> SettlementRecord | None:
        return self._store.get(nonce.lower())

    def list_settlements(self) -> list[SettlementRecord]:
        return self._store.list()

    async def _execute(self, signed_payment: SignedPayment) -> SettlementRecord:
        claim = signed_payment.claim
        logger.info(
            "Settling claim: nonce=%s, amount=%s, recipient=%s, asset=%s",
            claim.nonce,
            claim.amount,
            claim.recipient,
            claim.asset,
        )

        # No outer timeout: the signer bounds its own waits and reports the tx hash
        try:
            transfer: LedgerTransfer = await self._signer.transfer(
                claim.recipient, claim.amount_units, claim.asset, claim.network_id
            )
        except TransactionTimeoutError as e:
            logger.warning("Settlement outcome unknown: nonce=%s tx=%s", claim.nonce, e.tx_hash)
            return self._record(
                signed_payment,
                STATUS_PENDING,
                transaction_id=e.tx_hash,
                error=f"Ledger confirmation unavailable: {e}",
                error_kind=LEDGER_UNKNOWN,
            )
        except (LedgerSubmissionError, TransactionFailedError) as e:
            logger.error("Settlement failed: nonce=%s error=%s", claim.nonce, e)
            return self._record(
                signed_payment,
                STATUS_FAILED,
                transaction_id=e.tx_hash,
                error=f"Transaction failed: {e}",
                error_kind=LEDGER_TRANSFER_FAILED,
            )
        except Exception as e:
            # Cannot tell whether anything was broadcast
            logger.error("Unexpected ledger error: nonce=%s", claim.nonce, exc_info=True)
            return self._record(
                signed_payment,
                STATUS_PENDING,
                error=f"Ledger error: {e}",
                error_kind=LEDGER_UNKNOWN,
            )

        if not transfer.success:
            logger.error("Transfer reverted: nonce=%s tx=%s", claim.nonce, transfer.tx_hash)
            return self._record(
                signed_payment,
                STATUS_FAILED,
                transaction_id=transfer.tx_hash,
                block_reference=transfer.block_number,
                error="Transaction reverted on ledger",
                error_kind=LEDGER_TRANSFER_FAILED,
            )

        logger.info("Settlement confirmed: nonce=%s tx=%s", claim.nonce, transfer.tx_hash)
        return self._record(
            signed_payment,
            STATUS_SETTLED,
            transaction_id=transfer.tx_hash,
            block_reference=transfer.block_number,
        )

    async def _reconcile_locked(self, record: SettlementRecord) -> SettlementRecord:
        if record.transaction_id is None or record.network is None:
            return self._pending_report(record)

        try:
            receipt = await self._signer.get_transaction_receipt(
                record.transaction_id, record.network
            )
        except Exception as e:
            logger.warning("Reconcile lookup failed: nonce=%s error=%s", record.nonce, e)
            return self._pending_report(record)

        if receipt is None:
            return self._pending_report(record)

        succeeded = receipt.get("status") == "confirmed"
        resolved = record.model_copy(
            update={
                "success": succeeded,
                "status": STATUS_SETTLED if succeeded else STATUS_FAILED,
                "block_reference": receipt.get("blockNumber"),
                "error": None if succeeded else "Transaction reverted on ledger",
                "error_kind": None if succeeded else LEDGER_TRANSFER_FAILED,
            }
        )
        self._store.replace_if(record.nonce, resolved, lambda current: not current.is_terminal)
        logger.info(
            "Reconciled pending settlement: nonce=%s status=%s", record.nonce, resolved.status
        )
        return self._store.get(record.nonce) or resolved

    def _pending_report(self, record: SettlementRecord) -> SettlementRecord:
        age = int(self._clock()) - record.created_at
        if age < self._max_pending_seconds:
            return record
        return record.model_copy(
            update={
                "error": (
                    f"Settlement outcome unknown after {age}s; poll this nonce, "
                    "do not re-sign with a new nonce"
                )
            }
        )

    def _record(
        self,
        signed_payment: SignedPayment,
        status: SettlementStatus,
        transaction_id: str | None = None,
        block_reference: int | None = None,
        error: str | None = None,
        error_kind: ErrorKind | None = None,
    ) -> SettlementRecord:
        claim = signed_payment.claim
        return SettlementRecord(
            nonce=claim.nonce,
            success=status == STATUS_SETTLED,
            status=status,
            transactionId=transaction_id,
            blockReference=block_reference,
            error=error,
            errorKind=error_kind,
            network=claim.network_id,
            recipient=claim.recipient,
            amount=claim.amount,
            payer=signed_payment.signer,
            createdAt=int(self._clock()),
        )

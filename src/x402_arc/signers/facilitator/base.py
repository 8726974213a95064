"""
Facilitator signer base interface
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Literal

TransferStatus = Literal["confirmed", "failed"]


@dataclass(frozen=True)
class LedgerTransfer:
    """Mined outcome of a ledger transfer"""

    tx_hash: str
    status: TransferStatus
    block_number: int | None = None

    @property
    def success(self) -> bool:
        return self.status == "confirmed"


class FacilitatorSigner(ABC):
    """
    Abstract base class for facilitator signers.

    Owns the settlement wallet and is the only component that touches the
    ledger. ``transfer`` is the ledger-transfer primitive used by the
    settlement engine.
    """

    @abstractmethod
    def get_address(self) -> str:
        """Get the facilitator's account address"""
        pass

    @abstractmethod
    async def transfer(
        self,
        recipient: str,
        amount: int,
        asset: str,
        network: str,
    ) -> LedgerTransfer:
        """
        Transfer *amount* smallest units of *asset* to *recipient* and wait
        for the transaction to be mined.

        Returns:
            LedgerTransfer with status "confirmed" or "failed" (reverted)

        Raises:
            LedgerSubmissionError: nothing was broadcast
            TransactionTimeoutError: broadcast, outcome unknown (carries tx_hash)
        """
        pass

    @abstractmethod
    async def get_transaction_receipt(
        self,
        tx_hash: str,
        network: str,
    ) -> dict[str, Any] | None:
        """
        Look up a mined transaction.

        Returns:
            ``{"hash", "blockNumber", "status", "from", "to"}`` with status
            "confirmed" or "failed", or None when the ledger does not know it
        """
        pass

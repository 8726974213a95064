"""
Transaction Verification Utilities

Confirms a ledger transaction presented as proof of payment: it must be
mined, must have succeeded and, when expectations are given, must have
moved at least the expected amount of the asset to the expected recipient.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from eth_utils import keccak, to_checksum_address
from web3.exceptions import TransactionNotFound

from x402_arc.config import NetworkConfig
from x402_arc.exceptions import UnsupportedNetworkError
from x402_arc.signers.utils import resolve_provider_uri
from x402_arc.tokens import TokenRegistry
from x402_arc.types import NOT_FOUND, PAYMENT_MISMATCH, TRANSACTION_FAILED, ErrorKind

TRANSFER_EVENT_TOPIC = "0x" + keccak(text="Transfer(address,address,uint256)").hex().removeprefix(
    "0x"
)

DEFAULT_RETRY_AFTER_SECONDS = 5


@dataclass
class TransferEvent:
    """A token transfer observed in a transaction"""

    token: str
    from_addr: str
    to_addr: str
    amount: int


@dataclass
class TransactionVerificationResult:
    """Result of transaction verification"""

    success: bool
    tx_hash: str
    block_number: int | None = None
    sender: str | None = None
    error_reason: str | None = None
    error_kind: ErrorKind | None = None
    retryable: bool = False
    retry_after: int | None = None
    transfers: list[TransferEvent] = field(default_factory=list)

    # Detailed verification flags
    status_verified: bool = False
    payment_verified: bool = False

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary"""
        return {
            "success": self.success,
            "txHash": self.tx_hash,
            "blockNumber": self.block_number,
            "sender": self.sender,
            "errorReason": self.error_reason,
            "errorKind": self.error_kind,
            "retryable": self.retryable,
            "statusVerified": self.status_verified,
            "paymentVerified": self.payment_verified,
        }


class BaseTransactionVerifier(ABC):
    """Base class for transaction verification implementations"""

    def __init__(self, retry_after: int = DEFAULT_RETRY_AFTER_SECONDS) -> None:
        self._logger = logging.getLogger(self.__class__.__name__)
        self._retry_after = retry_after

    @abstractmethod
    async def get_transaction_info(self, tx_hash: str) -> dict[str, Any] | None:
        """
        Get transaction information from the ledger.

        Returns:
            ``{"status", "blockNumber", "from", "to", "value", "transfers"}``
            or None when the transaction is unknown or not yet mined
        """
        pass

    @abstractmethod
    def normalize_address(self, address: str) -> str:
        """Normalize address to standard format for comparison"""
        pass

    def _paid_amount(
        self,
        tx_info: dict[str, Any],
        recipient: str,
        asset: str,
        network: str | None,
    ) -> int:
        """Smallest units of *asset* moved to *recipient* by this transaction"""
        paid = sum(
            t.amount
            for t in tx_info.get("transfers", [])
            if self.normalize_address(t.token) == asset
            and self.normalize_address(t.to_addr) == recipient
        )
        if paid:
            return paid

        to_addr = tx_info.get("to")
        value = int(tx_info.get("value") or 0)
        if network and to_addr and NetworkConfig.is_native_asset(network, asset):
            if self.normalize_address(to_addr) == recipient:
                token = TokenRegistry.find_by_address(network, asset)
                decimals = token.decimals if token else NetworkConfig.NATIVE_DECIMALS
                return value // 10 ** (NetworkConfig.NATIVE_DECIMALS - decimals)
        return 0

    async def verify_transaction(
        self,
        tx_hash: str,
        expected_recipient: str | None = None,
        expected_amount: int | None = None,
        asset: str | None = None,
        network: str | None = None,
    ) -> TransactionVerificationResult:
        """
        Verify a transaction presented as proof of payment.

        Checks:
        1. The transaction is known and mined (else ``not_found``, retryable)
        2. It executed successfully (else ``transaction_failed``, terminal)
        3. If expectations are given, it paid at least *expected_amount* of
           *asset* to *expected_recipient* (else ``payment_mismatch``)
        """
        self._logger.info("Verifying transaction: %s", tx_hash)

        try:
            tx_info = await self.get_transaction_info(tx_hash)
        except Exception as e:
            self._logger.error("Transaction lookup error: %s", e, exc_info=True)
            return TransactionVerificationResult(
                success=False,
                tx_hash=tx_hash,
                error_reason=f"Ledger lookup failed: {e}",
                error_kind=NOT_FOUND,
                retryable=True,
                retry_after=self._retry_after,
            )

        if tx_info is None:
            self._logger.info("Transaction not yet confirmed: %s", tx_hash)
            return TransactionVerificationResult(
                success=False,
                tx_hash=tx_hash,
                error_reason="Transaction not yet confirmed",
                error_kind=NOT_FOUND,
                retryable=True,
                retry_after=self._retry_after,
            )

        block_number = tx_info.get("blockNumber")
        sender = tx_info.get("from")
        if tx_info.get("status") != "confirmed":
            self._logger.error("Transaction failed on ledger: %s", tx_hash)
            return TransactionVerificationResult(
                success=False,
                tx_hash=tx_hash,
                block_number=block_number,
                sender=sender,
                error_reason="Transaction failed on ledger",
                error_kind=TRANSACTION_FAILED,
            )

        transfers = tx_info.get("transfers", [])
        if expected_recipient is not None and expected_amount is not None and asset is not None:
            paid = self._paid_amount(
                tx_info,
                self.normalize_address(expected_recipient),
                self.normalize_address(asset),
                network,
            )
            if paid < expected_amount:
                self._logger.warning(
                    "Payment mismatch: tx=%s paid=%s expected=%s", tx_hash, paid, expected_amount
                )
                return TransactionVerificationResult(
                    success=False,
                    tx_hash=tx_hash,
                    block_number=block_number,
                    sender=sender,
                    error_reason=(
                        f"Transaction paid {paid} to {expected_recipient}, "
                        f"expected at least {expected_amount}"
                    ),
                    error_kind=PAYMENT_MISMATCH,
                    transfers=transfers,
                    status_verified=True,
                )
            payment_verified = True
        else:
            payment_verified = False

        self._logger.info("Transaction verification passed: %s", tx_hash)
        return TransactionVerificationResult(
            success=True,
            tx_hash=tx_hash,
            block_number=block_number,
            sender=sender,
            transfers=transfers,
            status_verified=True,
            payment_verified=payment_verified,
        )


class EvmTransactionVerifier(BaseTransactionVerifier):
    """Transaction verifier for EVM networks using web3.py"""

    def __init__(
        self,
        network: str,
        rpc_url: str | None = None,
        request_timeout: float = 10.0,
        retry_after: int = DEFAULT_RETRY_AFTER_SECONDS,
    ) -> None:
        super().__init__(retry_after=retry_after)
        self.network = network
        self._rpc_url = rpc_url or resolve_provider_uri(network)
        if self._rpc_url is None:
            raise UnsupportedNetworkError(f"No RPC URL configured for {network}")
        self._request_timeout = request_timeout
        self._w3: Any = None

    def _ensure_web3(self) -> Any:
        if self._w3 is None:
            from web3 import AsyncHTTPProvider, AsyncWeb3

            self._w3 = AsyncWeb3(
                AsyncHTTPProvider(self._rpc_url, request_kwargs={"timeout": self._request_timeout})
            )
        return self._w3

    def normalize_address(self, address: str) -> str:
        return address.lower()

    @staticmethod
    def _parse_transfers(logs: list[Any]) -> list[TransferEvent]:
        transfers: list[TransferEvent] = []
        for log in logs:
            topics = log.get("topics") or []
            if len(topics) != 3:
                continue
            topic0 = "0x" + bytes(topics[0]).hex()
            if topic0 != TRANSFER_EVENT_TOPIC:
                continue
            data = bytes(log.get("data") or b"")
            transfers.append(
                TransferEvent(
                    token=to_checksum_address(log["address"]),
                    from_addr=to_checksum_address(bytes(topics[1])[-20:]),
                    to_addr=to_checksum_address(bytes(topics[2])[-20:]),
                    amount=int.from_bytes(data, "big") if data else 0,
                )
            )
        return transfers

    async def get_transaction_info(self, tx_hash: str) -> dict[str, Any] | None:
        w3 = self._ensure_web3()
        try:
            receipt = await asyncio.wait_for(
                w3.eth.get_transaction_receipt(tx_hash), timeout=self._request_timeout
            )
            tx = await asyncio.wait_for(
                w3.eth.get_transaction(tx_hash), timeout=self._request_timeout
            )
        except TransactionNotFound:
            return None

        if receipt is None or tx is None:
            return None
        return {
            "status": "confirmed" if receipt["status"] == 1 else "failed",
            "blockNumber": int(receipt["blockNumber"]),
            "from": tx.get("from"),
            "to": tx.get("to"),
            "value": int(tx.get("value") or 0),
            "transfers": self._parse_transfers(list(receipt.get("logs") or [])),
        }


def get_verifier_for_network(network: str, rpc_url: str | None = None) -> BaseTransactionVerifier:
    """
    Factory function to get appropriate transaction verifier for a network.

    Args:
        network: Network identifier (e.g., "eip155:5042002")
        rpc_url: Override for the network's default RPC endpoint

    Returns:
        Transaction verifier instance

    Raises:
        UnsupportedNetworkError: for non-EVM networks
    """
    if network.startswith("eip155:"):
        return EvmTransactionVerifier(network=network, rpc_url=rpc_url)

    raise UnsupportedNetworkError(f"No transaction verifier available for network: {network}")

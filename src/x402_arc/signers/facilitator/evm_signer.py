"""
EvmFacilitatorSigner - EVM facilitator signer implementation
"""

import asyncio
import logging
from typing import Any

from eth_utils import to_checksum_address
from web3.exceptions import TimeExhausted, TransactionNotFound, Web3RPCError

from x402_arc.abi import ERC20_ABI
from x402_arc.config import NetworkConfig
from x402_arc.exceptions import (
    LedgerSubmissionError,
    TransactionTimeoutError,
)
from x402_arc.signers.facilitator.base import FacilitatorSigner, LedgerTransfer
from x402_arc.signers.utils import load_account, resolve_provider_uri
from x402_arc.tokens import TokenRegistry

logger = logging.getLogger(__name__)

DEFAULT_TOKEN_DECIMALS = 6


class EvmFacilitatorSigner(FacilitatorSigner):
    """EVM facilitator signer implementation using web3.py"""

    def __init__(
        self,
        private_key: str,
        rpc_url: str | None = None,
        request_timeout: float = 10.0,
        receipt_timeout: float = 60.0,
    ) -> None:
        self._account = load_account(private_key)
        self._address = self._account.address
        self._rpc_url = rpc_url
        self._request_timeout = request_timeout
        self._receipt_timeout = receipt_timeout
        self._async_web3_clients: dict[str, Any] = {}
        # Serializes account-nonce allocation for concurrent transfers
        self._submit_lock = asyncio.Lock()
        logger.debug("EvmFacilitatorSigner initialized", extra={"address": self._address})

    @classmethod
    def from_private_key(cls, private_key: str, **kwargs: Any) -> "EvmFacilitatorSigner":
        """Create signer from private key"""
        return cls(private_key, **kwargs)

    def get_address(self) -> str:
        return self._address

    def _ensure_async_web3_client(self, network: str) -> Any:
        """Lazy initialize async web3 client for the given network."""
        if network not in self._async_web3_clients:
            from web3 import AsyncHTTPProvider, AsyncWeb3

            provider_uri = self._rpc_url or resolve_provider_uri(network)
            if provider_uri is None:
                return None
            w3 = AsyncWeb3(
                AsyncHTTPProvider(
                    provider_uri, request_kwargs={"timeout": self._request_timeout}
                )
            )
            self._async_web3_clients[network] = w3

        return self._async_web3_clients[network]

    async def _build_transfer_tx(
        self,
        w3: Any,
        recipient: str,
        amount: int,
        asset: str,
        network: str,
    ) -> dict[str, Any]:
        to_addr = to_checksum_address(recipient)
        nonce = await w3.eth.get_transaction_count(self._address, "pending")
        chain_id = await w3.eth.chain_id

        if NetworkConfig.is_native_asset(network, asset):
            token = TokenRegistry.find_by_address(network, asset)
            decimals = token.decimals if token else DEFAULT_TOKEN_DECIMALS
            value = amount * 10 ** (NetworkConfig.NATIVE_DECIMALS - decimals)
            tx: dict[str, Any] = {
                "from": self._address,
                "to": to_addr,
                "value": value,
                "nonce": nonce,
                "chainId": chain_id,
            }
            tx["gas"] = await w3.eth.estimate_gas(tx)
            tx["gasPrice"] = await w3.eth.gas_price
            return tx

        contract = w3.eth.contract(address=to_checksum_address(asset), abi=ERC20_ABI)
        return await contract.functions.transfer(to_addr, amount).build_transaction(
            {
                "from": self._address,
                "nonce": nonce,
                "chainId": chain_id,
            }
        )

    async def transfer(
        self,
        recipient: str,
        amount: int,
        asset: str,
        network: str,
    ) -> LedgerTransfer:
        """Submit the transfer and wait for it to be mined (bounded by receipt_timeout)"""
        w3 = self._ensure_async_web3_client(network)
        if w3 is None:
            raise LedgerSubmissionError(f"Web3 provider not configured for {network}")

        async with self._submit_lock:
            try:
                tx = await asyncio.wait_for(
                    self._build_transfer_tx(w3, recipient, amount, asset, network),
                    timeout=self._request_timeout,
                )
                signed_tx = w3.eth.account.sign_transaction(tx, private_key=self._account.key)
            except Exception as e:
                raise LedgerSubmissionError(f"Failed to build transfer: {e}")

            tx_hash = "0x" + signed_tx.hash.hex().removeprefix("0x")
            try:
                await asyncio.wait_for(
                    w3.eth.send_raw_transaction(signed_tx.raw_transaction),
                    timeout=self._request_timeout,
                )
            except (Web3RPCError, ValueError) as e:
                # The node answered and refused the transaction
                raise LedgerSubmissionError(f"Transfer rejected: {e}", tx_hash=tx_hash)
            except Exception as e:
                raise TransactionTimeoutError(
                    f"Transfer submission outcome unknown: {e}", tx_hash=tx_hash
                )

        logger.info(
            "Transfer submitted: tx=%s, to=%s, amount=%s, asset=%s",
            tx_hash,
            recipient,
            amount,
            asset,
        )

        try:
            receipt = await w3.eth.wait_for_transaction_receipt(
                tx_hash, timeout=self._receipt_timeout
            )
        except (TimeExhausted, asyncio.TimeoutError) as e:
            raise TransactionTimeoutError(f"Transfer not confirmed in time: {e}", tx_hash=tx_hash)
        except Exception as e:
            raise TransactionTimeoutError(f"Receipt lookup failed: {e}", tx_hash=tx_hash)

        return LedgerTransfer(
            tx_hash=tx_hash,
            status="confirmed" if receipt["status"] == 1 else "failed",
            block_number=int(receipt["blockNumber"]),
        )

    async def get_transaction_receipt(
        self,
        tx_hash: str,
        network: str,
    ) -> dict[str, Any] | None:
        w3 = self._ensure_async_web3_client(network)
        if w3 is None:
            raise RuntimeError(f"Web3 provider not configured for {network}")

        try:
            receipt = await asyncio.wait_for(
                w3.eth.get_transaction_receipt(tx_hash), timeout=self._request_timeout
            )
        except TransactionNotFound:
            return None

        if receipt is None:
            return None
        return {
            "hash": tx_hash,
            "blockNumber": int(receipt["blockNumber"]),
            "status": "confirmed" if receipt["status"] == 1 else "failed",
            "from": receipt.get("from"),
            "to": receipt.get("to"),
        }

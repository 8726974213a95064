"""
X402Server - Gated resource handler for x402 protocol
"""

import logging
import secrets
import time
from dataclasses import dataclass
from typing import Any, Callable, Protocol, Union

import httpx

from x402_arc import codec
from x402_arc.config import NetworkConfig, X402Settings
from x402_arc.exceptions import ConfigurationError, ResourceNotFound
from x402_arc.server.receipts import ReceiptSigner
from x402_arc.store import InMemoryStore, KeyValueStore
from x402_arc.tokens import TokenRegistry
from x402_arc.types import (
    ALREADY_CONSUMED,
    FACILITATOR_ERROR,
    LEDGER_UNKNOWN,
    PAYMENT_MISMATCH,
    STATUS_PENDING,
    ErrorKind,
    GrantResponse,
    PaymentChallenge,
    PaymentOption,
    PaymentProof,
    Purchase,
    RejectionResponse,
    ResourceInfo,
    SettleResponse,
    SignedPayment,
)
from x402_arc.utils.tx_verification import (
    BaseTransactionVerifier,
    EvmTransactionVerifier,
    get_verifier_for_network,
)

logger = logging.getLogger(__name__)

DEFAULT_RETRY_AFTER_SECONDS = 5

ContentGenerator = Callable[[str], dict[str, Any]]


class SettlementBackend(Protocol):
    """Anything that settles a signed payment: in-process facilitator or FacilitatorClient"""

    async def settle(self, signed_payment: SignedPayment) -> SettleResponse:
        ...


@dataclass
class GatedResource:
    """
    A priced resource.

    ``content_generator`` receives the paying transaction id and returns the
    content released to the buyer.
    """

    id: str
    name: str
    price: str
    recipient: str
    content_generator: ContentGenerator
    description: str = ""
    asset: str = NetworkConfig.NATIVE_ASSETS[NetworkConfig.ARC_TESTNET]
    network: str = NetworkConfig.ARC_TESTNET


HandleBody = Union[PaymentChallenge, RejectionResponse, GrantResponse]


@dataclass
class HandleResult:
    """HTTP-agnostic outcome of handling a request for a gated resource"""

    status_code: int
    body: HandleBody

    @property
    def granted(self) -> bool:
        return isinstance(self.body, GrantResponse)


class X402Server:
    """
    Gated resource handler.

    Issues 402 challenges, accepts either a signed claim (settled through the
    facilitator) or a ledger transaction id as proof, and releases content with
    an operator-signed receipt. A transaction id unlocks exactly one resource,
    once.
    """

    def __init__(
        self,
        receipt_signer: ReceiptSigner,
        facilitator: SettlementBackend | None = None,
        tx_verifier: BaseTransactionVerifier | None = None,
        claim_ttl_seconds: int = codec.DEFAULT_CLAIM_TTL_SECONDS,
        challenge_store: KeyValueStore[str] | None = None,
        redemption_store: KeyValueStore[str] | None = None,
        purchase_store: KeyValueStore[Purchase] | None = None,
        retry_after: int = DEFAULT_RETRY_AFTER_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._receipt_signer = receipt_signer
        self._facilitator = facilitator
        self._tx_verifier = tx_verifier
        self._tx_verifiers: dict[str, BaseTransactionVerifier] = {}
        self._claim_ttl_seconds = claim_ttl_seconds
        # nonce -> resource id for claims minted here
        self._challenges: KeyValueStore[str] = (
            challenge_store if challenge_store is not None else InMemoryStore()
        )
        # transaction id -> "<resource id>#<attempt>"
        self._redemptions: KeyValueStore[str] = (
            redemption_store if redemption_store is not None else InMemoryStore()
        )
        self._purchases: KeyValueStore[Purchase] = (
            purchase_store if purchase_store is not None else InMemoryStore()
        )
        self._retry_after = retry_after
        self._clock = clock
        self._resources: dict[str, GatedResource] = {}

    @classmethod
    def from_settings(
        cls,
        settings: X402Settings,
        facilitator: SettlementBackend | None = None,
    ) -> "X402Server":
        """
        Build a server from settings; a remote facilitator is used when
        ``facilitator_url`` is set and no backend is passed in.

        Raises:
            ConfigurationError: if no operator key is configured
        """
        if not settings.operator_private_key:
            raise ConfigurationError("X402_OPERATOR_PRIVATE_KEY is required")
        if facilitator is None and settings.facilitator_url:
            from x402_arc.facilitator.facilitator_client import FacilitatorClient

            facilitator = FacilitatorClient(settings.facilitator_url)
        return cls(
            receipt_signer=ReceiptSigner(settings.operator_private_key, settings.chain_id),
            facilitator=facilitator,
            tx_verifier=EvmTransactionVerifier(settings.network, rpc_url=settings.resolved_rpc_url),
            claim_ttl_seconds=settings.claim_ttl_seconds,
        )

    @property
    def receipt_signer(self) -> ReceiptSigner:
        return self._receipt_signer

    def set_facilitator(self, facilitator: SettlementBackend) -> "X402Server":
        """
        Set the settlement backend.

        Returns:
            self for method chaining
        """
        self._facilitator = facilitator
        return self

    def register_resource(self, resource: GatedResource) -> "X402Server":
        """
        Register a gated resource.

        Raises:
            UnknownTokenError: if the resource asset is not in the token registry
            ValueError: if the price is not positive or has more decimals than
                the asset supports
        """
        if TokenRegistry.parse_price(resource.price, resource.network, resource.asset) <= 0:
            raise ValueError(f"Price must be positive: {resource.price!r}")
        self._resources[resource.id] = resource
        return self

    def get_resource(self, resource_id: str) -> GatedResource:
        resource = self._resources.get(resource_id)
        if resource is None:
            raise ResourceNotFound(resource_id)
        return resource

    def list_resources(self) -> list[GatedResource]:
        return list(self._resources.values())

    def price_units(self, resource: GatedResource) -> int:
        return TokenRegistry.parse_price(resource.price, resource.network, resource.asset)

    def explorer_link(self, network: str, transaction_id: str) -> str | None:
        base = NetworkConfig.get_explorer_url(network)
        return f"{base}/tx/{transaction_id}" if base else None

    def create_challenge(self, resource_id: str) -> PaymentChallenge:
        """
        Mint a fresh claim for the resource price and wrap it in a 402 challenge.

        Raises:
            ResourceNotFound: if *resource_id* is not registered
        """
        resource = self.get_resource(resource_id)
        units = self.price_units(resource)
        claim = codec.create_claim(
            network_id=resource.network,
            asset=resource.asset,
            amount=units,
            recipient=resource.recipient,
            ttl_seconds=self._claim_ttl_seconds,
            now=int(self._clock()),
            reference=resource.id,
        )
        self._challenges.put_if_absent(claim.nonce, resource.id)

        token = TokenRegistry.require_by_address(resource.network, resource.asset)
        return PaymentChallenge(
            resourceId=resource.id,
            payment=PaymentOption(
                amount=TokenRegistry.format_amount(units, resource.network, resource.asset),
                currency=token.symbol,
                network=resource.network,
                recipient=resource.recipient,
                asset=resource.asset,
                chainId=codec.chain_id_from_network(resource.network),
            ),
            claim=claim,
            resource=ResourceInfo(
                id=resource.id,
                name=resource.name,
                description=resource.description or None,
            ),
        )

    async def handle(self, resource_id: str, proof: PaymentProof | None = None) -> HandleResult:
        """
        Handle a request for a gated resource.

        Returns:
            402 with a challenge when no proof is given, 402/409 with a
            rejection (carrying a fresh challenge) when the proof is refused,
            200 with content and receipt when it is accepted

        Raises:
            ResourceNotFound: if *resource_id* is not registered
        """
        resource = self.get_resource(resource_id)
        if proof is None:
            return HandleResult(status_code=402, body=self.create_challenge(resource.id))
        if proof.signed_payment is not None:
            return await self._handle_signed_payment(resource, proof.signed_payment)
        return await self._handle_transaction_id(resource, str(proof.transaction_id))

    async def _handle_signed_payment(
        self,
        resource: GatedResource,
        signed_payment: SignedPayment,
    ) -> HandleResult:
        mismatch = self._claim_mismatch(resource, signed_payment)
        if mismatch is not None:
            logger.info("Claim does not match resource %s: %s", resource.id, mismatch)
            return self._reject(resource, mismatch, PAYMENT_MISMATCH)

        if self._facilitator is None:
            raise RuntimeError("No facilitator configured for signed payments")

        nonce = signed_payment.claim.nonce
        try:
            result = await self._facilitator.settle(signed_payment)
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            logger.warning("Facilitator rejected settle: nonce=%s status=%d", nonce, status)
            if status >= 500:
                return self._reject(
                    resource,
                    f"Facilitator error {status}; settlement outcome unknown",
                    LEDGER_UNKNOWN,
                    retryable=True,
                )
            return self._reject(
                resource, f"Facilitator refused settlement: HTTP {status}", FACILITATOR_ERROR
            )
        except (httpx.TransportError, ValueError) as e:
            # Outcome unknown; a retry with the same nonce reads the facilitator record
            logger.warning("Facilitator unreachable: nonce=%s error=%r", nonce, e)
            return self._reject(
                resource,
                f"Facilitator unavailable; settlement outcome unknown: {e}",
                LEDGER_UNKNOWN,
                retryable=True,
            )

        if not result.success:
            if result.status == STATUS_PENDING:
                return self._reject(
                    resource,
                    result.error or "Settlement outcome unknown",
                    LEDGER_UNKNOWN,
                    retryable=True,
                    transaction_id=result.transaction_id,
                )
            return self._reject(
                resource,
                result.error or "Settlement failed",
                result.error_kind or PAYMENT_MISMATCH,
                transaction_id=result.transaction_id,
            )

        return await self._grant(
            resource,
            transaction_id=str(result.transaction_id),
            buyer=signed_payment.signer,
            amount=signed_payment.claim.amount,
        )

    async def _handle_transaction_id(
        self,
        resource: GatedResource,
        transaction_id: str,
    ) -> HandleResult:
        transaction_id = transaction_id.lower()
        if self._redemptions.get(transaction_id) is not None:
            return self._already_consumed(resource, transaction_id)

        units = self.price_units(resource)
        verifier = self._verifier_for(resource.network)
        result = await verifier.verify_transaction(
            transaction_id,
            expected_recipient=resource.recipient,
            expected_amount=units,
            asset=resource.asset,
            network=resource.network,
        )
        if not result.success:
            return self._reject(
                resource,
                result.error_reason or "Transaction verification failed",
                result.error_kind or PAYMENT_MISMATCH,
                retryable=result.retryable,
                retry_after=result.retry_after,
                transaction_id=transaction_id,
            )

        buyer = result.sender or "0x0000000000000000000000000000000000000000"
        return await self._grant(resource, transaction_id, buyer=buyer, amount=str(units))

    def _claim_mismatch(self, resource: GatedResource, signed_payment: SignedPayment) -> str | None:
        claim = signed_payment.claim
        if claim.network_id != resource.network:
            return f"Claim network {claim.network_id} does not match {resource.network}"
        if claim.asset.lower() != resource.asset.lower():
            return f"Claim asset {claim.asset} does not match {resource.asset}"
        if claim.recipient.lower() != resource.recipient.lower():
            return f"Claim recipient {claim.recipient} does not match {resource.recipient}"
        if claim.amount_units != self.price_units(resource):
            return f"Claim amount {claim.amount} does not match price {resource.price}"
        bound = self._challenges.get(claim.nonce)
        if bound is not None and bound != resource.id:
            return f"Claim was issued for resource {bound}"
        return None

    def _verifier_for(self, network: str) -> BaseTransactionVerifier:
        if self._tx_verifier is not None:
            return self._tx_verifier
        if network not in self._tx_verifiers:
            self._tx_verifiers[network] = get_verifier_for_network(network)
        return self._tx_verifiers[network]

    async def _grant(
        self,
        resource: GatedResource,
        transaction_id: str,
        buyer: str,
        amount: str,
    ) -> HandleResult:
        # Redemption is committed only once content and receipt exist
        content = resource.content_generator(transaction_id)
        receipt = await self._receipt_signer.sign_receipt(
            transaction_id=transaction_id,
            resource_id=resource.id,
            content=content,
            amount=amount,
            buyer=buyer,
        )

        # Unique per attempt so a replay for the same resource also loses
        marker = f"{resource.id}#{secrets.token_hex(8)}"
        if self._redemptions.put_if_absent(transaction_id.lower(), marker) != marker:
            return self._already_consumed(resource, transaction_id)

        purchase = Purchase(
            id="pur_" + secrets.token_hex(8),
            resourceId=resource.id,
            transactionId=transaction_id,
            amount=amount,
            buyer=receipt.buyer,
            contentHash=receipt.content_hash,
            receipt=receipt,
            timestamp=receipt.timestamp,
        )
        self._purchases.put_if_absent(purchase.id, purchase)
        logger.info(
            "Access granted: resource=%s tx=%s buyer=%s", resource.id, transaction_id, buyer
        )
        return HandleResult(
            status_code=200,
            body=GrantResponse(
                transactionId=transaction_id,
                explorerLink=self.explorer_link(resource.network, transaction_id),
                resourceId=resource.id,
                content=content,
                contentHash=receipt.content_hash,
                receipt=receipt,
            ),
        )

    def _already_consumed(self, resource: GatedResource, transaction_id: str) -> HandleResult:
        logger.info("Transaction already redeemed: tx=%s", transaction_id)
        rejection = self._rejection(
            resource,
            "Transaction has already been redeemed",
            ALREADY_CONSUMED,
            transaction_id=transaction_id,
        )
        return HandleResult(status_code=409, body=rejection)

    def _reject(
        self,
        resource: GatedResource,
        error: str,
        error_kind: ErrorKind,
        retryable: bool = False,
        retry_after: int | None = None,
        transaction_id: str | None = None,
    ) -> HandleResult:
        rejection = self._rejection(
            resource,
            error,
            error_kind,
            retryable=retryable,
            retry_after=retry_after,
            transaction_id=transaction_id,
        )
        return HandleResult(status_code=402, body=rejection)

    def _rejection(
        self,
        resource: GatedResource,
        error: str,
        error_kind: ErrorKind,
        retryable: bool = False,
        retry_after: int | None = None,
        transaction_id: str | None = None,
    ) -> RejectionResponse:
        if retryable and retry_after is None:
            retry_after = self._retry_after
        return RejectionResponse(
            error=error,
            errorKind=error_kind,
            retryable=retryable,
            retryAfter=retry_after,
            transactionId=transaction_id,
            challenge=self.create_challenge(resource.id),
        )

    def purchase_history(self, buyer: str | None = None) -> list[Purchase]:
        """Purchases recorded by this server, newest first, optionally for one buyer"""
        purchases = self._purchases.list()
        if buyer is not None:
            purchases = [p for p in purchases if p.buyer.lower() == buyer.lower()]
        return sorted(purchases, key=lambda p: p.timestamp, reverse=True)

    def has_purchased(self, buyer: str, resource_id: str) -> bool:
        return any(p.resource_id == resource_id for p in self.purchase_history(buyer))

"""
X402Client - Core payment client for x402 protocol
"""

import logging
import time
from typing import Callable, Protocol

from x402_arc import codec
from x402_arc.exceptions import InvalidClaimFormat, SettlementError, UnknownTokenError
from x402_arc.server.x402_server import SettlementBackend
from x402_arc.signers.client import ClientSigner
from x402_arc.tokens import TokenRegistry
from x402_arc.types import PaymentChallenge, PaymentClaim, SettleResponse, SignedPayment

logger = logging.getLogger(__name__)


class PaymentPolicy(Protocol):
    """Policy consulted before a challenge is signed"""

    async def check(self, challenge: PaymentChallenge) -> None:
        """Raise PaymentPolicyError to refuse the payment"""
        ...


class X402Client:
    """
    Core payment client for x402 protocol.

    Turns a 402 challenge into a signed claim and, when a facilitator is
    configured, settles it on the payer's behalf.
    """

    def __init__(
        self,
        signer: ClientSigner,
        facilitator: SettlementBackend | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """
        Initialize X402Client.

        Args:
            signer: Signer holding the payer key
            facilitator: Settlement backend used by :meth:`pay`
            clock: Wall clock, injectable for tests
        """
        self._signer = signer
        self._facilitator = facilitator
        self._policies: list[PaymentPolicy] = []
        self._clock = clock

    @property
    def signer(self) -> ClientSigner:
        return self._signer

    def register_policy(self, policy: PaymentPolicy) -> "X402Client":
        """
        Register a payment policy.

        Returns:
            self for method chaining
        """
        self._policies.append(policy)
        return self

    def claim_from_challenge(self, challenge: PaymentChallenge) -> PaymentClaim:
        """
        Extract the claim to sign, checking it agrees with the advertised price.

        Raises:
            InvalidClaimFormat: if the claim and the price block disagree or
                the claim has already expired
        """
        claim = challenge.claim
        payment = challenge.payment
        if claim.network_id != payment.network:
            raise InvalidClaimFormat("claim network differs from advertised network", "networkId")
        if claim.asset.lower() != payment.asset.lower():
            raise InvalidClaimFormat("claim asset differs from advertised asset", "asset")
        if claim.recipient.lower() != payment.recipient.lower():
            raise InvalidClaimFormat(
                "claim recipient differs from advertised recipient", "recipient"
            )
        try:
            advertised = TokenRegistry.parse_price(payment.amount, claim.network_id, claim.asset)
        except (ValueError, UnknownTokenError) as e:
            raise InvalidClaimFormat(f"advertised amount is unusable: {e}", "amount")
        if claim.amount_units != advertised:
            raise InvalidClaimFormat(
                f"claim amount {claim.amount} differs from advertised {payment.amount}", "amount"
            )
        if not int(self._clock()) < claim.expiry:
            raise InvalidClaimFormat("challenge has expired", "expiry")
        return claim

    async def sign(self, claim: PaymentClaim) -> SignedPayment:
        """Sign *claim* for its own network"""
        chain_id = codec.chain_id_from_network(claim.network_id)
        return await self._signer.sign_claim(claim, chain_id)

    async def handle_challenge(self, challenge: PaymentChallenge) -> SignedPayment:
        """
        Check policies and sign the challenge's claim.

        Raises:
            PaymentPolicyError: if a registered policy refuses the payment
            InvalidClaimFormat: if the challenge is inconsistent or expired
        """
        claim = self.claim_from_challenge(challenge)
        for policy in self._policies:
            await policy.check(challenge)

        logger.info(
            "Signing payment: resource=%s amount=%s %s recipient=%s",
            challenge.resource_id,
            challenge.payment.amount,
            challenge.payment.currency,
            claim.recipient,
        )
        return await self.sign(claim)

    async def pay(self, challenge: PaymentChallenge) -> SettleResponse:
        """
        Sign the challenge and settle it through the facilitator.

        Returns:
            SettleResponse; ``status == "pending"`` means the outcome is
            unknown and the same signed claim should be resubmitted later

        Raises:
            SettlementError: if no facilitator is configured
        """
        if self._facilitator is None:
            raise SettlementError("No facilitator configured")
        signed_payment = await self.handle_challenge(challenge)
        result = await self._facilitator.settle(signed_payment)
        logger.info(
            "Settlement result: success=%s status=%s tx=%s",
            result.success,
            result.status,
            result.transaction_id,
        )
        return result

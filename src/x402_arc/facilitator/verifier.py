"""
PaymentVerifier - off-ledger verification of signed payment claims
"""

import logging
import time
from typing import Callable, Iterable

from eth_account import Account

from x402_arc import codec
from x402_arc.encoding import hex_to_bytes
from x402_arc.exceptions import InvalidClaimFormat
from x402_arc.types import (
    EXPIRED,
    INVALID_CLAIM_FORMAT,
    NETWORK_MISMATCH,
    SCHEME_EXACT,
    SIGNATURE_INVALID,
    UNSUPPORTED_SCHEME,
    SignedPayment,
    VerifyResponse,
)

logger = logging.getLogger(__name__)


class PaymentVerifier:
    """
    Verifies a signed payment without touching the ledger.

    Checks run in order and stop at the first failure: scheme, network
    allow-list, expiry, then signer recovery. Only ``exact`` is settled;
    ``upto`` is reserved and rejected. The result reports which checks passed so
    callers can branch on ``error_kind``.
    """

    def __init__(
        self,
        chain_id: int,
        supported_networks: Iterable[str] | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.chain_id = chain_id
        self.supported_networks = frozenset(
            supported_networks if supported_networks is not None else [f"eip155:{chain_id}"]
        )
        self._clock = clock

    def now(self) -> int:
        return int(self._clock())

    def verify(self, signed_payment: SignedPayment) -> VerifyResponse:
        claim = signed_payment.claim

        if claim.scheme != SCHEME_EXACT:
            logger.info("Rejected claim with unsupported scheme %s", claim.scheme)
            return VerifyResponse(
                valid=False,
                error=f"Unsupported payment scheme: {claim.scheme}",
                errorKind=UNSUPPORTED_SCHEME,
            )

        if claim.network_id not in self.supported_networks:
            logger.info("Rejected claim for unsupported network %s", claim.network_id)
            return VerifyResponse(
                valid=False,
                networkMatch=False,
                error=f"Unsupported network: {claim.network_id}",
                errorKind=NETWORK_MISMATCH,
            )

        # A claim expiring exactly now is already invalid
        if not self.now() < claim.expiry:
            logger.info("Rejected expired claim nonce=%s expiry=%s", claim.nonce, claim.expiry)
            return VerifyResponse(
                valid=False,
                networkMatch=True,
                notExpired=False,
                error="Payment has expired",
                errorKind=EXPIRED,
            )

        try:
            recovered = self.recover_signer(signed_payment)
        except InvalidClaimFormat as e:
            return VerifyResponse(
                valid=False,
                networkMatch=True,
                notExpired=True,
                error=str(e),
                errorKind=INVALID_CLAIM_FORMAT,
            )

        if recovered is None or recovered.lower() != signed_payment.signer.lower():
            logger.warning(
                "Signature mismatch: nonce=%s claimed=%s recovered=%s",
                claim.nonce,
                signed_payment.signer,
                recovered,
            )
            return VerifyResponse(
                valid=False,
                networkMatch=True,
                notExpired=True,
                signerVerified=False,
                error="Recovered signer does not match claimed signer",
                errorKind=SIGNATURE_INVALID,
            )

        return VerifyResponse(
            valid=True,
            signerVerified=True,
            networkMatch=True,
            notExpired=True,
        )

    def recover_signer(self, signed_payment: SignedPayment) -> str | None:
        """Recover the signing address, or None if the signature is unusable.

        The domain uses the configured chain id, never a value supplied by
        the payer, and ``verifyingContract = claim.asset``.

        Raises:
            InvalidClaimFormat: if the claim cannot be encoded
        """
        claim = signed_payment.claim
        signable = codec.encode(codec.build_domain(self.chain_id, claim.asset), claim)
        try:
            signature = hex_to_bytes(signed_payment.signature)
        except ValueError:
            return None
        if len(signature) != 65:
            return None
        try:
            return Account.recover_message(signable, signature=signature)
        except Exception as e:
            logger.debug("Signature recovery failed", extra={"error": str(e)})
            return None

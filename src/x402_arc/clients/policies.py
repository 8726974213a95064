"""
Payment policies checked before a challenge is signed.

Policies run in registration order; the first one that refuses stops the
payment with ``PaymentPolicyError``.
"""

import logging
from typing import Iterable

from x402_arc.exceptions import PaymentPolicyError
from x402_arc.tokens import TokenRegistry
from x402_arc.types import PaymentChallenge

logger = logging.getLogger(__name__)


class MaxAmountPolicy:
    """Refuse any single payment above *max_amount* (decimal, e.g. ``"5.00"``)"""

    def __init__(self, max_amount: str) -> None:
        self._max_amount = max_amount

    async def check(self, challenge: PaymentChallenge) -> None:
        claim = challenge.claim
        limit = TokenRegistry.parse_price(self._max_amount, claim.network_id, claim.asset)
        if claim.amount_units > limit:
            logger.warning(
                "Payment of %s exceeds limit %s for %s",
                challenge.payment.amount,
                self._max_amount,
                challenge.resource_id,
            )
            raise PaymentPolicyError(
                f"Amount {challenge.payment.amount} exceeds per-payment limit {self._max_amount}"
            )


class AllowedRecipientsPolicy:
    """Only pay recipients from an allow-list"""

    def __init__(self, recipients: Iterable[str]) -> None:
        self._recipients = {r.lower() for r in recipients}

    async def check(self, challenge: PaymentChallenge) -> None:
        if challenge.claim.recipient.lower() not in self._recipients:
            raise PaymentPolicyError(f"Recipient {challenge.claim.recipient} is not allowed")

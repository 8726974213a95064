"""
X402Facilitator - Core payment processor for x402 protocol
"""

import logging
from typing import Any, Mapping

from pydantic import ValidationError as PydanticValidationError

from x402_arc.config import X402_VERSION
from x402_arc.facilitator.settlement import SettlementEngine
from x402_arc.facilitator.verifier import PaymentVerifier
from x402_arc.types import (
    INVALID_CLAIM_FORMAT,
    SCHEME_EXACT,
    STATUS_FAILED,
    FacilitatorInfo,
    SettleRequest,
    SettleResponse,
    SettlementRecord,
    SignedPayment,
    SupportedKind,
    SupportedResponse,
    VerifyRequest,
    VerifyResponse,
)

logger = logging.getLogger(__name__)


def _format_validation_error(e: PydanticValidationError) -> str:
    first = e.errors()[0]
    field = ".".join(str(p) for p in first.get("loc", ()))
    message = first.get("msg", str(e))
    return f"{field}: {message}" if field else message


class X402Facilitator:
    """
    Core payment processor for x402 protocol.

    Accepts request models or raw dicts. Malformed input comes back as a
    typed ``invalid_claim_format`` outcome rather than an exception.
    """

    def __init__(self, engine: SettlementEngine) -> None:
        self._engine = engine

    @property
    def verifier(self) -> PaymentVerifier:
        return self._engine.verifier

    @property
    def engine(self) -> SettlementEngine:
        return self._engine

    def supported(self) -> SupportedResponse:
        """Return supported network/scheme combinations"""
        kinds = [
            SupportedKind(x402Version=X402_VERSION, scheme=SCHEME_EXACT, network=network)
            for network in sorted(self.verifier.supported_networks)
        ]
        return SupportedResponse(kinds=kinds)

    def info(self) -> FacilitatorInfo:
        return FacilitatorInfo(
            version=X402_VERSION,
            networks=sorted(self.verifier.supported_networks),
            chainId=self.verifier.chain_id,
            settlements=len(self._engine.list_settlements()),
        )

    async def verify(self, request: SignedPayment | Mapping[str, Any]) -> VerifyResponse:
        """
        Verify payment signature and validity (no ledger I/O).

        Args:
            request: ``{signature, paymentDetails, signer}``

        Returns:
            VerifyResponse
        """
        try:
            parsed = (
                request
                if isinstance(request, SignedPayment)
                else VerifyRequest.model_validate(dict(request))
            )
        except PydanticValidationError as e:
            return VerifyResponse(
                valid=False,
                error=_format_validation_error(e),
                errorKind=INVALID_CLAIM_FORMAT,
            )
        return self.verifier.verify(parsed)

    async def settle(self, request: SignedPayment | Mapping[str, Any]) -> SettleResponse:
        """
        Execute payment settlement.

        Args:
            request: ``{signature, paymentDetails, signer}``

        Returns:
            SettleResponse with transaction id and status
        """
        try:
            parsed = (
                request
                if isinstance(request, SignedPayment)
                else SettleRequest.model_validate(dict(request))
            )
        except PydanticValidationError as e:
            return SettleResponse(
                success=False,
                status=STATUS_FAILED,
                error=_format_validation_error(e),
                errorKind=INVALID_CLAIM_FORMAT,
            )
        record = await self._engine.settle(parsed)
        return SettleResponse.from_record(record)

    async def reconcile(self, nonce: str) -> SettlementRecord | None:
        return await self._engine.reconcile(nonce.lower())

    def get_settlement(self, nonce: str) -> SettlementRecord | None:
        return self._engine.get_settlement(nonce)

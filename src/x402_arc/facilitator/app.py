"""
Facilitator HTTP service (FastAPI)
"""

import logging
from typing import Any

from fastapi import Body, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from x402_arc.config import X402Settings
from x402_arc.exceptions import ConfigurationError
from x402_arc.facilitator.settlement import SettlementEngine
from x402_arc.facilitator.verifier import PaymentVerifier
from x402_arc.facilitator.x402_facilitator import X402Facilitator
from x402_arc.signers.facilitator import EvmFacilitatorSigner, FacilitatorSigner
from x402_arc.types import (
    FacilitatorInfo,
    SettleResponse,
    SettlementRecord,
    SupportedResponse,
    VerifyResponse,
)

logger = logging.getLogger(__name__)


def create_facilitator_app(
    facilitator: X402Facilitator,
    title: str = "X402 Facilitator",
) -> FastAPI:
    """
    Build the facilitator service.

    Request bodies are taken as plain JSON objects and validated by the
    facilitator, so a malformed claim yields a typed response instead of a 422.
    """
    app = FastAPI(
        title=title,
        description="Facilitator service for X402 payment protocol",
        version="1.0.0",
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/", response_model=FacilitatorInfo, response_model_by_alias=True)
    async def root() -> FacilitatorInfo:
        """Service info endpoint"""
        return facilitator.info()

    @app.get("/supported", response_model=SupportedResponse, response_model_by_alias=True)
    async def supported() -> SupportedResponse:
        """Get supported capabilities"""
        return facilitator.supported()

    @app.post(
        "/verify",
        response_model=VerifyResponse,
        response_model_by_alias=True,
        response_model_exclude_none=True,
    )
    async def verify(body: dict[str, Any] = Body(...)) -> VerifyResponse:
        """Verify a signed payment without touching the ledger"""
        return await facilitator.verify(body)

    @app.post(
        "/settle",
        response_model=SettleResponse,
        response_model_by_alias=True,
        response_model_exclude_none=True,
    )
    async def settle(body: dict[str, Any] = Body(...)) -> SettleResponse:
        """Verify and settle a signed payment"""
        result = await facilitator.settle(body)
        logger.info(
            "Settle request handled: success=%s status=%s tx=%s",
            result.success,
            result.status,
            result.transaction_id,
        )
        return result

    @app.get(
        "/settlement/{nonce}",
        response_model=SettlementRecord,
        response_model_by_alias=True,
        response_model_exclude_none=True,
    )
    async def get_settlement(nonce: str) -> SettlementRecord:
        """Look up a settlement record by nonce"""
        record = facilitator.get_settlement(nonce)
        if record is None:
            raise HTTPException(status_code=404, detail=f"No settlement for nonce {nonce}")
        return record

    @app.post(
        "/settlement/{nonce}/reconcile",
        response_model=SettlementRecord,
        response_model_by_alias=True,
        response_model_exclude_none=True,
    )
    async def reconcile(nonce: str) -> SettlementRecord:
        """Re-check a pending settlement against the ledger"""
        record = await facilitator.reconcile(nonce)
        if record is None:
            raise HTTPException(status_code=404, detail=f"No settlement for nonce {nonce}")
        return record

    return app


def create_facilitator_from_settings(
    settings: X402Settings,
    signer: FacilitatorSigner | None = None,
) -> X402Facilitator:
    """
    Wire verifier, settlement engine and ledger signer from settings.

    Raises:
        ConfigurationError: if no signer is given and no facilitator key is set
    """
    if signer is None:
        if not settings.facilitator_private_key:
            raise ConfigurationError("X402_FACILITATOR_PRIVATE_KEY is required")
        signer = EvmFacilitatorSigner(
            settings.facilitator_private_key,
            rpc_url=settings.resolved_rpc_url,
            receipt_timeout=float(settings.ledger_timeout_seconds),
        )
    verifier = PaymentVerifier(chain_id=settings.chain_id)
    engine = SettlementEngine(verifier, signer)
    logger.info(
        "Facilitator configured: network=%s address=%s", settings.network, signer.get_address()
    )
    return X402Facilitator(engine)


def main() -> None:
    """Run the facilitator service from environment settings"""
    import uvicorn

    from x402_arc.logging_config import setup_logging

    settings = X402Settings.from_env()
    setup_logging(settings.log_level)
    app = create_facilitator_app(create_facilitator_from_settings(settings))
    logger.info(
        "Starting facilitator on %s:%s", settings.facilitator_host, settings.facilitator_port
    )
    uvicorn.run(
        app,
        host=settings.facilitator_host,
        port=settings.facilitator_port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()

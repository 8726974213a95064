"""
FastAPI middleware for x402 payment processing
"""

import logging
from functools import wraps
from typing import Any, Callable

from fastapi import Request, Response
from fastapi.responses import JSONResponse

from x402_arc.config import X402_VERSION
from x402_arc.encoding import (
    PAYMENT_REQUIRED_HEADER,
    PAYMENT_RESPONSE_HEADER,
    PAYMENT_SIGNATURE_HEADER,
    PAYMENT_TXHASH_HEADER,
    RESOURCE_ID_HEADER,
    X402_VERSION_HEADER,
    decode_payment_header,
    encode_payment_header,
)
from x402_arc.server import HandleResult, X402Server
from x402_arc.types import (
    INVALID_CLAIM_FORMAT,
    GrantResponse,
    PaymentChallenge,
    PaymentProof,
    RejectionResponse,
    SignedPayment,
)

logger = logging.getLogger(__name__)


def challenge_headers(challenge: PaymentChallenge) -> dict[str, str]:
    """Headers advertising a 402 challenge"""
    return {
        PAYMENT_REQUIRED_HEADER: encode_payment_header(challenge),
        "X-Payment-Amount": challenge.payment.amount,
        "X-Payment-Currency": challenge.payment.currency,
        "X-Payment-Network": challenge.payment.network,
        "X-Payment-Recipient": challenge.payment.recipient,
        "X-Payment-Asset": challenge.payment.asset,
        X402_VERSION_HEADER: X402_VERSION,
        RESOURCE_ID_HEADER: challenge.resource_id,
    }


def extract_proof(request: Request) -> PaymentProof | None:
    """
    Read proof of payment from request headers.

    A signed claim in ``PAYMENT-SIGNATURE`` takes precedence over a
    transaction id in ``X-PAYMENT-TXHASH``.

    Raises:
        ValueError: if a proof header is present but malformed
    """
    signature_header = request.headers.get(PAYMENT_SIGNATURE_HEADER)
    if signature_header:
        signed_payment = decode_payment_header(
            signature_header, SignedPayment, header=PAYMENT_SIGNATURE_HEADER
        )
        return PaymentProof(signedPayment=signed_payment)

    tx_hash = request.headers.get(PAYMENT_TXHASH_HEADER)
    if tx_hash:
        return PaymentProof(transactionId=tx_hash.strip())
    return None


class X402Middleware:
    """
    FastAPI middleware for automatic 402 payment handling.

    Usage:
        app = FastAPI()
        server = X402Server(receipt_signer, facilitator)
        server.register_resource(GatedResource(...))
        middleware = X402Middleware(server)

        @app.get("/premium-report")
        @middleware.protect("premium-report")
        async def premium_report(request: Request):
            return request.state.x402_grant.content
    """

    def __init__(self, server: X402Server) -> None:
        self._server = server

    def protect(self, resource_id: str) -> Callable:
        """
        Decorator to gate an endpoint behind payment for *resource_id*.

        The accepted grant is exposed as ``request.state.x402_grant``. If the
        endpoint returns None, the grant itself is sent as the response body.

        Raises:
            ResourceNotFound: if *resource_id* is not registered
        """
        self._server.get_resource(resource_id)

        def decorator(func: Callable) -> Callable:
            @wraps(func)
            async def wrapper(request: Request, *args: Any, **kwargs: Any) -> Response:
                try:
                    proof = extract_proof(request)
                except ValueError as e:
                    logger.warning("Malformed payment proof: %s", e)
                    rejection = RejectionResponse(
                        error=f"Invalid payment proof: {e}",
                        errorKind=INVALID_CLAIM_FORMAT,
                        challenge=self._server.create_challenge(resource_id),
                    )
                    return self._rejection_response(rejection, status_code=400)

                result = await self._server.handle(resource_id, proof)
                if not isinstance(result.body, GrantResponse):
                    return self._payment_required_response(result)

                grant = result.body
                request.state.x402_grant = grant
                response = await func(request, *args, **kwargs)
                if response is None:
                    body = grant.model_dump(by_alias=True, exclude_none=True)
                    response = JSONResponse(content=body)
                elif not isinstance(response, Response):
                    response = JSONResponse(content=response)

                response.headers[PAYMENT_RESPONSE_HEADER] = encode_payment_header(grant.receipt)
                response.headers[X402_VERSION_HEADER] = X402_VERSION
                return response

            return wrapper

        return decorator

    def _payment_required_response(self, result: HandleResult) -> JSONResponse:
        if isinstance(result.body, PaymentChallenge):
            response = JSONResponse(
                content=result.body.model_dump(by_alias=True, exclude_none=True),
                status_code=result.status_code,
            )
            response.headers.update(challenge_headers(result.body))
            return response
        return self._rejection_response(result.body, status_code=result.status_code)

    @staticmethod
    def _rejection_response(rejection: RejectionResponse, status_code: int) -> JSONResponse:
        response = JSONResponse(
            content=rejection.model_dump(by_alias=True, exclude_none=True),
            status_code=status_code,
        )
        if rejection.challenge is not None:
            response.headers.update(challenge_headers(rejection.challenge))
        if rejection.retry_after is not None:
            response.headers["Retry-After"] = str(rejection.retry_after)
        return response


def x402_protected(server: X402Server, resource_id: str) -> Callable:
    """
    Convenience decorator to protect endpoints.

        @app.get("/premium-report")
        @x402_protected(server, "premium-report")
        async def premium_report(request: Request):
            ...
    """
    return X402Middleware(server).protect(resource_id)

"""
X402HttpClient - HTTP client adapter with automatic 402 payment handling
"""

import asyncio
import logging
from typing import Any, Literal

import httpx
from pydantic import ValidationError as PydanticValidationError

from x402_arc.clients.x402_client import X402Client
from x402_arc.encoding import (
    PAYMENT_REQUIRED_HEADER,
    PAYMENT_RESPONSE_HEADER,
    PAYMENT_SIGNATURE_HEADER,
    PAYMENT_TXHASH_HEADER,
    decode_payment_header,
    encode_payment_header,
)
from x402_arc.exceptions import SettlementError
from x402_arc.types import PaymentChallenge, Receipt

logger = logging.getLogger(__name__)

ProofMode = Literal["signature", "transaction"]


class X402HttpClient:
    """
    HTTP client adapter with automatic 402 payment handling.

    In ``signature`` mode the signed claim is sent to the resource, which
    settles it. In ``transaction`` mode the client settles through its own
    facilitator first and presents the resulting transaction id.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        x402_client: X402Client,
        mode: ProofMode = "signature",
        max_retries: int = 3,
    ) -> None:
        """
        Initialize HTTP client adapter.

        Args:
            http_client: httpx.AsyncClient instance
            x402_client: X402Client instance
            mode: How proof of payment is presented
            max_retries: Retries of a proof the resource reports as retryable
        """
        self._http_client = http_client
        self._x402_client = x402_client
        self._mode = mode
        self._max_retries = max_retries

    async def request_with_payment(
        self,
        method: str,
        url: str,
        **kwargs: Any,
    ) -> httpx.Response:
        """
        Make HTTP request with automatic 402 payment handling.

        Flow:
            1. Send original request
            2. If 402, parse the challenge
            3. Sign (and, in transaction mode, settle) the claim
            4. Retry with the proof header
        """
        logger.info("Making %s request to %s", method, url)
        response = await self._http_client.request(method, url, **kwargs)
        if response.status_code != 402:
            return response

        challenge = self.parse_challenge(response)
        if challenge is None:
            logger.error("Failed to parse payment challenge from 402 response")
            return response

        logger.info(
            "Payment required: %s %s for %s",
            challenge.payment.amount,
            challenge.payment.currency,
            challenge.resource_id,
        )
        proof_headers = await self._build_proof(challenge)
        return await self._retry_with_proof(method, url, proof_headers, kwargs)

    async def get(self, url: str, **kwargs: Any) -> httpx.Response:
        """GET request with payment handling"""
        return await self.request_with_payment("GET", url, **kwargs)

    async def post(self, url: str, **kwargs: Any) -> httpx.Response:
        """POST request with payment handling"""
        return await self.request_with_payment("POST", url, **kwargs)

    @staticmethod
    def parse_challenge(response: httpx.Response) -> PaymentChallenge | None:
        """Parse the challenge from the PAYMENT-REQUIRED header or the body"""
        header_value = response.headers.get(PAYMENT_REQUIRED_HEADER)
        if header_value:
            try:
                return decode_payment_header(
                    header_value, PaymentChallenge, header=PAYMENT_REQUIRED_HEADER
                )
            except ValueError as e:
                logger.warning("Failed to decode %s header: %s", PAYMENT_REQUIRED_HEADER, e)

        try:
            body = response.json()
        except ValueError:
            return None
        if not isinstance(body, dict):
            return None
        # A rejection carries a fresh challenge
        candidate = body.get("challenge", body)
        try:
            return PaymentChallenge.model_validate(candidate)
        except PydanticValidationError:
            return None

    @staticmethod
    def get_receipt(response: httpx.Response) -> Receipt | None:
        """Decode the receipt from a successful paid response"""
        header_value = response.headers.get(PAYMENT_RESPONSE_HEADER)
        if not header_value:
            return None
        return decode_payment_header(header_value, Receipt, header=PAYMENT_RESPONSE_HEADER)

    async def _build_proof(self, challenge: PaymentChallenge) -> dict[str, str]:
        if self._mode == "signature":
            signed_payment = await self._x402_client.handle_challenge(challenge)
            return {PAYMENT_SIGNATURE_HEADER: encode_payment_header(signed_payment)}

        result = await self._x402_client.pay(challenge)
        if not result.success or result.transaction_id is None:
            raise SettlementError(
                f"Settlement {result.status or 'failed'}: {result.error or 'no transaction id'}"
            )
        return {PAYMENT_TXHASH_HEADER: result.transaction_id}

    async def _retry_with_proof(
        self,
        method: str,
        url: str,
        proof_headers: dict[str, str],
        kwargs: dict[str, Any],
    ) -> httpx.Response:
        headers = dict(kwargs.get("headers") or {})
        headers.update(proof_headers)
        kwargs["headers"] = headers

        attempt = 0
        while True:
            response = await self._http_client.request(method, url, **kwargs)
            logger.info("Payment retry response: status=%s", response.status_code)
            retry_after = self._retry_after(response)
            if retry_after is None or attempt >= self._max_retries:
                return response
            attempt += 1
            logger.info("Proof not yet accepted, retrying in %ss", retry_after)
            await asyncio.sleep(retry_after)

    @staticmethod
    def _retry_after(response: httpx.Response) -> int | None:
        """Seconds to wait if the resource reports a retryable rejection"""
        if response.status_code != 402:
            return None
        try:
            body = response.json()
        except ValueError:
            return None
        if not isinstance(body, dict) or not body.get("retryable"):
            return None
        return int(body.get("retryAfter") or 1)

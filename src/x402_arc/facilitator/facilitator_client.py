"""
FacilitatorClient - Client for communicating with facilitator service
"""

import logging
from typing import Any, TypeVar

import httpx
from pydantic import BaseModel

from x402_arc.config import X402_VERSION
from x402_arc.encoding import X402_VERSION_HEADER
from x402_arc.types import (
    FacilitatorInfo,
    SettleResponse,
    SettlementRecord,
    SignedPayment,
    SupportedResponse,
    VerifyResponse,
)

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


class FacilitatorClient:
    """
    HTTP counterpart of :class:`X402Facilitator`.

    Mirrors its operations against a remote facilitator service, so an
    :class:`X402Server` can use either one. Usable as an async context manager.
    """

    def __init__(
        self,
        base_url: str,
        headers: dict[str, str] | None = None,
        facilitator_id: str | None = None,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """
        Args:
            base_url: Facilitator service base URL
            headers: Extra HTTP headers (e.g., Authorization)
            facilitator_id: Identifier reported in logs; defaults to base_url
            timeout: Request timeout in seconds
            transport: httpx transport override (e.g. ASGITransport in tests)
        """
        self._base_url = base_url.rstrip("/")
        self._headers = {X402_VERSION_HEADER: X402_VERSION, **(headers or {})}
        self.facilitator_id = facilitator_id or base_url
        self._timeout = timeout
        self._transport = transport
        self._http_client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> "FacilitatorClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    def _client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                base_url=self._base_url,
                headers=self._headers,
                timeout=self._timeout,
                transport=self._transport,
            )
        return self._http_client

    async def close(self) -> None:
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None

    async def _call(
        self,
        method: str,
        path: str,
        model: type[M],
        body: dict[str, Any] | None = None,
        missing_ok: bool = False,
    ) -> M | None:
        """
        Send one request and parse the JSON reply into *model*.

        Raises:
            httpx.HTTPStatusError: on an error status (a 404 when *missing_ok* returns None)
        """
        response = await self._client().request(method, path, json=body)
        if missing_ok and response.status_code == 404:
            return None
        if response.is_error:
            logger.warning(
                "Facilitator %s %s %s returned %d",
                self.facilitator_id,
                method,
                path,
                response.status_code,
            )
        response.raise_for_status()
        return model.model_validate(response.json())

    async def info(self) -> FacilitatorInfo:
        return await self._call("GET", "/", FacilitatorInfo)

    async def supported(self) -> SupportedResponse:
        """Networks, schemes and assets the facilitator settles"""
        return await self._call("GET", "/supported", SupportedResponse)

    async def verify(self, signed_payment: SignedPayment) -> VerifyResponse:
        """Check a signed claim without touching the ledger"""
        body = signed_payment.model_dump(by_alias=True, exclude_none=True)
        return await self._call("POST", "/verify", VerifyResponse, body)

    async def settle(self, signed_payment: SignedPayment) -> SettleResponse:
        """
        Verify and settle a signed claim.

        Safe to repeat: the facilitator answers a known nonce from its record.
        """
        body = signed_payment.model_dump(by_alias=True, exclude_none=True)
        return await self._call("POST", "/settle", SettleResponse, body)

    async def get_settlement(self, nonce: str) -> SettlementRecord | None:
        return await self._call("GET", f"/settlement/{nonce}", SettlementRecord, missing_ok=True)

    async def reconcile(self, nonce: str) -> SettlementRecord | None:
        """Ask the facilitator to re-check a pending settlement against the ledger"""
        return await self._call(
            "POST", f"/settlement/{nonce}/reconcile", SettlementRecord, missing_ok=True
        )

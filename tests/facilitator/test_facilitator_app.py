"""
Tests for the facilitator HTTP service.
"""

from unittest.mock import patch

import httpx
import pytest

from x402_arc.config import X402Settings
from x402_arc.exceptions import ConfigurationError, TransactionTimeoutError
from x402_arc.facilitator import (
    PaymentVerifier,
    SettlementEngine,
    X402Facilitator,
    create_facilitator_app,
    create_facilitator_from_settings,
)
from x402_arc.facilitator.app import main

ARC_CHAIN_ID = 5042002
TX_HASH = "0x" + "ab" * 32


@pytest.fixture
def facilitator(mock_ledger):
    return X402Facilitator(SettlementEngine(PaymentVerifier(ARC_CHAIN_ID), mock_ledger))


@pytest.fixture
async def http(facilitator, anyio_backend):
    app = create_facilitator_app(facilitator)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://facilitator") as client:
        yield client


@pytest.fixture
async def body(payer_signer, make_claim, anyio_backend):
    signed = await payer_signer.sign_claim(make_claim(), ARC_CHAIN_ID)
    return signed.model_dump(by_alias=True, exclude_none=True)


class TestInfoEndpoints:
    @pytest.mark.anyio
    async def test_root(self, http):
        response = await http.get("/")
        assert response.status_code == 200
        data = response.json()
        assert data["version"] == "2"
        assert data["chainId"] == ARC_CHAIN_ID
        assert data["networks"] == ["eip155:5042002"]
        assert data["settlements"] == 0

    @pytest.mark.anyio
    async def test_supported(self, http):
        response = await http.get("/supported")
        assert response.json() == {
            "kinds": [{"x402Version": "2", "scheme": "exact", "network": "eip155:5042002"}]
        }


class TestVerifyEndpoint:
    @pytest.mark.anyio
    async def test_valid(self, http, body, mock_ledger):
        response = await http.post("/verify", json=body)
        assert response.status_code == 200
        assert response.json()["valid"] is True
        mock_ledger.transfer.assert_not_awaited()

    @pytest.mark.anyio
    async def test_malformed_claim_is_typed_outcome(self, http, body):
        body["paymentDetails"]["recipient"] = "0x1234"
        response = await http.post("/verify", json=body)

        assert response.status_code == 200
        data = response.json()
        assert data["valid"] is False
        assert data["errorKind"] == "invalid_claim_format"
        assert "recipient" in data["error"]

    @pytest.mark.anyio
    async def test_missing_signature(self, http, body):
        del body["signature"]
        response = await http.post("/verify", json=body)
        assert response.json()["errorKind"] == "invalid_claim_format"


class TestSettleEndpoints:
    @pytest.mark.anyio
    async def test_settle_then_lookup(self, http, body):
        response = await http.post("/settle", json=body)
        data = response.json()
        assert data["success"] is True
        assert data["status"] == "settled"
        assert data["transactionId"] == TX_HASH
        assert data["network"] == "eip155:5042002"

        nonce = body["paymentDetails"]["nonce"]
        record = (await http.get(f"/settlement/{nonce}")).json()
        assert record["nonce"] == nonce
        assert record["status"] == "settled"

        info = (await http.get("/")).json()
        assert info["settlements"] == 1

    @pytest.mark.anyio
    async def test_settle_is_idempotent(self, http, body, mock_ledger):
        first = (await http.post("/settle", json=body)).json()
        second = (await http.post("/settle", json=body)).json()
        assert first == second
        assert mock_ledger.transfer.await_count == 1

    @pytest.mark.anyio
    async def test_settle_malformed(self, http, body):
        body["paymentDetails"]["amount"] = "-1"
        data = (await http.post("/settle", json=body)).json()
        assert data["success"] is False
        assert data["status"] == "failed"
        assert data["errorKind"] == "invalid_claim_format"

    @pytest.mark.anyio
    async def test_unknown_settlement_is_404(self, http):
        response = await http.get("/settlement/0x" + "00" * 32)
        assert response.status_code == 404

    @pytest.mark.anyio
    async def test_reconcile_pending(self, http, body, mock_ledger):
        mock_ledger.transfer.side_effect = TransactionTimeoutError("slow", tx_hash=TX_HASH)
        pending = (await http.post("/settle", json=body)).json()
        assert pending["status"] == "pending"
        assert pending["errorKind"] == "ledger_unknown"

        mock_ledger.get_transaction_receipt.return_value = {"blockNumber": 9, "status": "confirmed"}
        nonce = body["paymentDetails"]["nonce"]
        response = await http.post(f"/settlement/{nonce}/reconcile")

        assert response.status_code == 200
        assert response.json()["status"] == "settled"

    @pytest.mark.anyio
    async def test_reconcile_unknown_is_404(self, http):
        response = await http.post("/settlement/0x" + "00" * 32 + "/reconcile")
        assert response.status_code == 404


class TestFromSettings:
    def test_requires_key(self):
        with pytest.raises(ConfigurationError):
            create_facilitator_from_settings(X402Settings())

    def test_builds_with_key(self, facilitator_private_key):
        settings = X402Settings(facilitator_private_key=facilitator_private_key)
        facilitator = create_facilitator_from_settings(settings)
        assert facilitator.verifier.chain_id == ARC_CHAIN_ID
        assert facilitator.engine.signer.get_address().startswith("0x")

    def test_injected_signer(self, mock_ledger):
        facilitator = create_facilitator_from_settings(X402Settings(), signer=mock_ledger)
        assert facilitator.engine.signer is mock_ledger


class TestMain:
    def test_runs_uvicorn_with_settings(self, facilitator_private_key):
        settings = X402Settings(
            facilitator_private_key=facilitator_private_key,
            facilitator_host="127.0.0.1",
            facilitator_port=9402,
        )
        with (
            patch("x402_arc.facilitator.app.X402Settings.from_env", return_value=settings),
            patch("x402_arc.logging_config.setup_logging"),
            patch("uvicorn.run") as run,
        ):
            main()

        run.assert_called_once()
        assert run.call_args.kwargs["host"] == "127.0.0.1"
        assert run.call_args.kwargs["port"] == 9402

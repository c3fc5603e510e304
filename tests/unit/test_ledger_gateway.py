"""HttpLedgerGateway against httpx.MockTransport."""

import json
from decimal import Decimal

import httpx
import pytest

from src.cm_common.errors import LedgerUnavailableError
from src.cm_settlement.domain.gateway import LedgerGatewayError
from src.cm_settlement.domain.models import TransferRequest
from src.cm_settlement.infrastructure.ledger_gateway import (
    HttpLedgerGateway,
    build_transfer_payload,
)

_REQUEST = TransferRequest(
    token_id="0.0.5005", serial_number=7, from_account_id="0.0.1001",
    to_account_id="0.0.2002", price=Decimal("12.5"), currency="HBAR",
)


def _transport(transfer_handler, health_status: int = 200, seen: list | None = None):
    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)
        if request.url.path == "/health":
            return httpx.Response(health_status, json={"status": "ok"})
        return transfer_handler(request)

    return httpx.MockTransport(handler)


async def _connect(transfer_handler, **kwargs) -> HttpLedgerGateway:
    return await HttpLedgerGateway.connect(
        base_url="http://ledger.test",
        api_key=kwargs.pop("api_key", ""),
        timeout_seconds=5,
        explorer_base_url="https://hashscan.io/testnet/",
        transport=_transport(transfer_handler, **kwargs),
    )


class TestPayload:
    def test_price_floored_to_minor_units(self) -> None:
        payload = build_transfer_payload(_REQUEST)
        assert payload["amount_minor_units"] == 1_250_000_000
        assert payload["currency"] == "HBAR"
        assert payload["serial_number"] == 7

    def test_price_omitted_when_absent(self) -> None:
        request = TransferRequest(
            token_id="0.0.5005", serial_number=7,
            from_account_id="0.0.1001", to_account_id="0.0.2002",
        )
        assert "amount_minor_units" not in build_transfer_payload(request)


class TestConnect:
    @pytest.mark.asyncio
    async def test_health_check_and_auth_header(self) -> None:
        seen: list[httpx.Request] = []
        gateway = await _connect(lambda r: httpx.Response(404), api_key="secret", seen=seen)
        try:
            assert seen[0].url.path == "/health"
            assert seen[0].headers["Authorization"] == "Bearer secret"
        finally:
            await gateway.close()

    @pytest.mark.asyncio
    async def test_unhealthy_service_raises(self) -> None:
        with pytest.raises(LedgerUnavailableError) as exc_info:
            await _connect(lambda r: httpx.Response(404), health_status=503)
        assert exc_info.value.http_status == 503

    @pytest.mark.asyncio
    async def test_unreachable_service_raises(self) -> None:
        def refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(LedgerUnavailableError):
            await HttpLedgerGateway.connect(
                base_url="http://ledger.test", api_key="",
                transport=httpx.MockTransport(refuse),
            )


class TestTransferNft:
    @pytest.mark.asyncio
    async def test_success(self) -> None:
        captured: list[dict] = []

        def ok(request: httpx.Request) -> httpx.Response:
            captured.append(json.loads(request.content))
            return httpx.Response(
                200,
                json={
                    "transaction_id": "0.0.1001@1700000000.000",
                    "explorer_url": "https://explorer.example/tx/1",
                    "status": "SUCCESS",
                },
            )

        gateway = await _connect(ok)
        receipt = await gateway.transfer_nft(_REQUEST)
        await gateway.close()

        assert receipt.transaction_id == "0.0.1001@1700000000.000"
        assert receipt.explorer_url == "https://explorer.example/tx/1"
        assert captured[0]["to_account_id"] == "0.0.2002"
        assert captured[0]["amount_minor_units"] == 1_250_000_000

    @pytest.mark.asyncio
    async def test_explorer_url_fallback(self) -> None:
        gateway = await _connect(lambda r: httpx.Response(200, json={"transaction_id": "0xabc"}))
        receipt = await gateway.transfer_nft(_REQUEST)
        await gateway.close()

        assert receipt.explorer_url == "https://hashscan.io/testnet/transaction/0xabc"
        assert receipt.status == "SUCCESS"

    @pytest.mark.asyncio
    async def test_error_body_code_and_message(self) -> None:
        gateway = await _connect(
            lambda r: httpx.Response(
                400, json={"code": "TOKEN_NOT_ASSOCIATED", "message": "buyer not associated"}
            )
        )
        with pytest.raises(LedgerGatewayError) as exc_info:
            await gateway.transfer_nft(_REQUEST)
        await gateway.close()

        assert exc_info.value.code == "TOKEN_NOT_ASSOCIATED"
        assert exc_info.value.message == "buyer not associated"

    @pytest.mark.asyncio
    async def test_non_json_error_uses_status(self) -> None:
        gateway = await _connect(lambda r: httpx.Response(502, text="bad gateway"))
        with pytest.raises(LedgerGatewayError) as exc_info:
            await gateway.transfer_nft(_REQUEST)
        await gateway.close()

        assert exc_info.value.code == "HTTP_502"

    @pytest.mark.asyncio
    async def test_missing_transaction_id(self) -> None:
        gateway = await _connect(lambda r: httpx.Response(200, json={"status": "SUCCESS"}))
        with pytest.raises(LedgerGatewayError) as exc_info:
            await gateway.transfer_nft(_REQUEST)
        await gateway.close()

        assert exc_info.value.code == "INVALID_RESPONSE"

    @pytest.mark.asyncio
    async def test_timeout(self) -> None:
        def slow(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        gateway = await _connect(slow)
        with pytest.raises(LedgerGatewayError) as exc_info:
            await gateway.transfer_nft(_REQUEST)
        await gateway.close()

        assert exc_info.value.code == "TIMEOUT"

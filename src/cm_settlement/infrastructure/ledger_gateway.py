"""HttpLedgerGateway: httpx adapter for the external token-transfer service.

Wire contract:
  GET  {base}/health          -> 200 when the service can accept transfers
  POST {base}/transfers/nft   -> 200 {"transaction_id", "explorer_url"?, "status"}
                                 4xx/5xx {"code", "message"}

Startup is explicit: HttpLedgerGateway.connect() health-checks the service and
returns a ready gateway or raises LedgerUnavailableError. Nothing connects
lazily on the first transfer.

Prices go over the wire as integer minor units (tinybar for HBAR), floored.
"""

import logging
from typing import Any

import httpx

from config.settings import settings
from src.cm_common.amounts import to_minor_units
from src.cm_common.errors import LedgerUnavailableError
from src.cm_settlement.domain.gateway import LedgerGatewayError
from src.cm_settlement.domain.models import TransferReceipt, TransferRequest

logger = logging.getLogger(__name__)


def build_transfer_payload(request: TransferRequest) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "token_id": request.token_id,
        "serial_number": request.serial_number,
        "from_account_id": request.from_account_id,
        "to_account_id": request.to_account_id,
    }
    if request.price is not None and request.currency is not None:
        payload["amount_minor_units"] = to_minor_units(request.price, request.currency)
        payload["currency"] = request.currency
    return payload


class HttpLedgerGateway:
    def __init__(self, client: httpx.AsyncClient, explorer_base_url: str) -> None:
        self._client = client
        self._explorer_base_url = explorer_base_url.rstrip("/")

    @classmethod
    async def connect(
        cls,
        base_url: str | None = None,
        api_key: str | None = None,
        timeout_seconds: float | None = None,
        explorer_base_url: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "HttpLedgerGateway":
        headers = {"Accept": "application/json"}
        key = api_key if api_key is not None else settings.LEDGER_API_KEY
        if key:
            headers["Authorization"] = f"Bearer {key}"
        client = httpx.AsyncClient(
            base_url=base_url or settings.LEDGER_SERVICE_URL,
            timeout=httpx.Timeout(timeout_seconds or settings.LEDGER_TIMEOUT_SECONDS),
            headers=headers,
            transport=transport,
        )
        try:
            response = await client.get("/health")
            response.raise_for_status()
        except httpx.HTTPError as exc:
            await client.aclose()
            raise LedgerUnavailableError(str(exc) or type(exc).__name__) from exc

        logger.info("Ledger gateway connected: %s", client.base_url)
        return cls(client, explorer_base_url or settings.LEDGER_EXPLORER_BASE_URL)

    async def close(self) -> None:
        await self._client.aclose()

    def explorer_url_for(self, transaction_id: str) -> str:
        return f"{self._explorer_base_url}/transaction/{transaction_id}"

    async def transfer_nft(self, request: TransferRequest) -> TransferReceipt:
        try:
            response = await self._client.post(
                "/transfers/nft", json=build_transfer_payload(request)
            )
        except httpx.TimeoutException as exc:
            raise LedgerGatewayError("TIMEOUT", str(exc) or "ledger request timed out") from exc
        except httpx.HTTPError as exc:
            raise LedgerGatewayError("UNREACHABLE", str(exc) or type(exc).__name__) from exc

        if response.status_code >= 400:
            code, message = _error_detail(response)
            raise LedgerGatewayError(code, message)

        body = response.json()
        transaction_id = body.get("transaction_id")
        if not transaction_id:
            raise LedgerGatewayError("INVALID_RESPONSE", "missing transaction_id")
        return TransferReceipt(
            transaction_id=transaction_id,
            explorer_url=body.get("explorer_url") or self.explorer_url_for(transaction_id),
            status=body.get("status", "SUCCESS"),
        )


def _error_detail(response: httpx.Response) -> tuple[str, str]:
    try:
        body = response.json()
    except ValueError:
        return f"HTTP_{response.status_code}", response.text or response.reason_phrase
    return (
        str(body.get("code") or f"HTTP_{response.status_code}"),
        str(body.get("message") or response.reason_phrase),
    )

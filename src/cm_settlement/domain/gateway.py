"""Ledger gateway Protocol: the token-transfer backend.

The gateway is connected once at startup and handed to the settlement
service; tests inject a fake. A transfer either returns a receipt or raises
LedgerGatewayError carrying the ledger's own code and message.
"""

from typing import Protocol

from src.cm_settlement.domain.models import TransferReceipt, TransferRequest


class LedgerGatewayError(Exception):
    def __init__(self, code: str, message: str) -> None:
        self.code = code
        self.message = message
        super().__init__(f"[{code}] {message}")


class LedgerGatewayProtocol(Protocol):
    async def transfer_nft(self, request: TransferRequest) -> TransferReceipt: ...

    def explorer_url_for(self, transaction_id: str) -> str: ...

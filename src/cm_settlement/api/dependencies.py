"""Settlement wiring: the ledger gateway is connected in the app lifespan and
kept on app.state; services that transfer tokens are built per request from it.
"""

from fastapi import Request

from src.cm_settlement.application.service import SettlementService
from src.cm_settlement.domain.gateway import LedgerGatewayProtocol


def get_ledger_gateway(request: Request) -> LedgerGatewayProtocol:
    return request.app.state.ledger


def get_settlement_service(request: Request) -> SettlementService:
    return SettlementService(ledger=get_ledger_gateway(request))

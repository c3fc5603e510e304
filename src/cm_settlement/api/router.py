"""cm_settlement REST endpoints.

POST /listings/{listing_id}/buy                fixed-price purchase
POST /listings/{listing_id}/complete-auction   resolve an ended auction
GET  /transactions                             caller's history (buyer or seller)
GET  /transactions/{record_id}                 one record
GET  /listings/{listing_id}/transactions       every attempt on a listing
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from src.cm_common.database import get_db_session
from src.cm_common.enums import TransactionStatus, TransactionType
from src.cm_common.response import ApiResponse, success_response
from src.cm_gateway.auth.dependencies import CurrentUser, get_current_user
from src.cm_listing.application.commands import BuyCommand
from src.cm_settlement.api.dependencies import get_settlement_service
from src.cm_settlement.application.query_service import TransactionQueryService
from src.cm_settlement.application.schemas import SettlementResponse
from src.cm_settlement.application.service import SettlementService

router = APIRouter(tags=["settlement"])

_queries = TransactionQueryService()


def _respond(request: Request, data: object) -> ApiResponse:
    resp = success_response(data)
    resp.request_id = getattr(request.state, "request_id", resp.request_id)
    return resp


@router.post("/listings/{listing_id}/buy")
async def buy_listing(
    listing_id: str,
    request: Request,
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    settlement: Annotated[SettlementService, Depends(get_settlement_service)],
) -> ApiResponse:
    cmd = BuyCommand(
        listing_id=listing_id,
        buyer_id=current_user.id,
        buyer_account_id=current_user.account_id,
    )
    result = await settlement.buy(db, cmd)
    return _respond(request, SettlementResponse.from_domain(result).model_dump())


@router.post("/listings/{listing_id}/complete-auction")
async def complete_auction(
    listing_id: str,
    request: Request,
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    settlement: Annotated[SettlementService, Depends(get_settlement_service)],
) -> ApiResponse:
    result = await settlement.complete_auction(db, listing_id)
    return _respond(request, SettlementResponse.from_domain(result).model_dump())


@router.get("/transactions")
async def list_my_transactions(
    request: Request,
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    transaction_type: TransactionType | None = Query(None, alias="type"),
    status: TransactionStatus | None = Query(None),
    limit: int = Query(20, ge=1, le=100),
    cursor: str | None = Query(None),
) -> ApiResponse:
    result = await _queries.list_user_transactions(
        db,
        current_user.id,
        transaction_type.value if transaction_type else None,
        status.value if status else None,
        cursor,
        limit,
    )
    return _respond(request, result.model_dump())


@router.get("/transactions/{record_id}")
async def get_transaction(
    record_id: str,
    request: Request,
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
) -> ApiResponse:
    result = await _queries.get_transaction(db, record_id)
    return _respond(request, result.model_dump())


@router.get("/listings/{listing_id}/transactions")
async def list_listing_transactions(
    listing_id: str,
    request: Request,
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
) -> ApiResponse:
    items = await _queries.list_listing_transactions(db, listing_id)
    return _respond(request, {"items": [item.model_dump() for item in items]})

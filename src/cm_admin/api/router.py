"""Admin REST API. Every route requires a token with role=admin.

POST /admin/sweep                complete ended auctions, expire stale listings
POST /admin/backfill             completed records for sold listings lacking one
GET  /admin/stats/marketplace    listing counts and sale volume
GET  /admin/stats/transactions   settlement outcomes over the last N days
"""

from dataclasses import asdict
from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from src.cm_admin.application.service import AdminService
from src.cm_common.database import get_db_session
from src.cm_common.response import ApiResponse, success_response
from src.cm_gateway.auth.dependencies import CurrentUser, require_admin
from src.cm_settlement.api.dependencies import get_settlement_service
from src.cm_settlement.application.query_service import TransactionQueryService
from src.cm_settlement.application.service import SettlementService

router = APIRouter(prefix="/admin", tags=["admin"])
_queries = TransactionQueryService()


def get_admin_service(
    settlement: Annotated[SettlementService, Depends(get_settlement_service)],
) -> AdminService:
    return AdminService(settlement)


def _respond(request: Request, data: object) -> ApiResponse:
    resp = success_response(data)
    resp.request_id = getattr(request.state, "request_id", resp.request_id)
    return resp


@router.post("/sweep")
async def sweep_listings(
    request: Request,
    admin: Annotated[CurrentUser, Depends(require_admin)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    service: Annotated[AdminService, Depends(get_admin_service)],
    batch_size: int | None = Query(None, ge=1, le=1000),
) -> ApiResponse:
    report = await service.sweep_listings(db, batch_size)
    return _respond(request, {**asdict(report), "processed": report.processed})


@router.post("/backfill")
async def backfill_transactions(
    request: Request,
    admin: Annotated[CurrentUser, Depends(require_admin)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    service: Annotated[AdminService, Depends(get_admin_service)],
) -> ApiResponse:
    report = await service.backfill(db)
    return _respond(request, asdict(report))


@router.get("/stats/marketplace")
async def marketplace_stats(
    request: Request,
    admin: Annotated[CurrentUser, Depends(require_admin)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    service: Annotated[AdminService, Depends(get_admin_service)],
) -> ApiResponse:
    return _respond(request, await service.get_marketplace_stats(db))


@router.get("/stats/transactions")
async def transaction_stats(
    request: Request,
    admin: Annotated[CurrentUser, Depends(require_admin)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    days: int = Query(30, ge=1, le=365),
) -> ApiResponse:
    result = await _queries.get_transaction_stats(db, days)
    return _respond(request, result.model_dump())

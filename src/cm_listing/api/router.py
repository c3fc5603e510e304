"""cm_listing REST endpoints.

POST /listings                       create a fixed-price listing
POST /listings/auctions              create an auction listing
GET  /listings                       active listings, filtered, cursor paginated
GET  /listings/{listing_id}          detail (counts a view)
POST /listings/{listing_id}/bids     place a bid
POST /listings/{listing_id}/cancel   seller cancels
"""

from decimal import Decimal
from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from src.cm_common.database import get_db_session
from src.cm_common.enums import ListingType
from src.cm_common.response import ApiResponse, success_response
from src.cm_gateway.auth.dependencies import CurrentUser, get_current_user
from src.cm_listing.application.commands import (
    CancelListingCommand,
    CreateAuctionCommand,
    CreateListingCommand,
    PlaceBidCommand,
)
from src.cm_listing.application.schemas import (
    CreateAuctionRequest,
    CreateListingRequest,
    ListingResponse,
    PlaceBidRequest,
)
from src.cm_listing.application.service import ListingService

router = APIRouter(prefix="/listings", tags=["listings"])

_service = ListingService()


def _respond(request: Request, data: object) -> ApiResponse:
    resp = success_response(data)
    resp.request_id = getattr(request.state, "request_id", resp.request_id)
    return resp


@router.post("", status_code=201)
async def create_listing(
    body: CreateListingRequest,
    request: Request,
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
) -> ApiResponse:
    cmd = CreateListingCommand(
        seller_id=current_user.id,
        seller_account_id=current_user.account_id,
        **body.model_dump(),
    )
    listing = await _service.create_listing(db, cmd)
    return _respond(request, ListingResponse.from_domain(listing).model_dump())


@router.post("/auctions", status_code=201)
async def create_auction(
    body: CreateAuctionRequest,
    request: Request,
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
) -> ApiResponse:
    cmd = CreateAuctionCommand(
        seller_id=current_user.id,
        seller_account_id=current_user.account_id,
        **body.model_dump(),
    )
    listing = await _service.create_auction(db, cmd)
    return _respond(request, ListingResponse.from_domain(listing).model_dump())


@router.get("")
async def list_listings(
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db_session)],
    listing_type: ListingType | None = Query(None, alias="type"),
    comic_id: str | None = Query(None),
    episode_id: str | None = Query(None),
    min_price: Decimal | None = Query(None, ge=0),
    max_price: Decimal | None = Query(None, ge=0),
    limit: int = Query(20, ge=1, le=100),
    cursor: str | None = Query(None),
) -> ApiResponse:
    result = await _service.list_active(
        db,
        listing_type.value if listing_type else None,
        comic_id,
        episode_id,
        min_price,
        max_price,
        cursor,
        limit,
    )
    return _respond(request, result.model_dump())


@router.get("/{listing_id}")
async def get_listing(
    listing_id: str,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db_session)],
) -> ApiResponse:
    listing = await _service.get_listing(db, listing_id)
    return _respond(request, ListingResponse.from_domain(listing).model_dump())


@router.post("/{listing_id}/bids")
async def place_bid(
    listing_id: str,
    body: PlaceBidRequest,
    request: Request,
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
) -> ApiResponse:
    cmd = PlaceBidCommand(
        listing_id=listing_id,
        bidder_id=current_user.id,
        bidder_account_id=current_user.account_id,
        amount=body.amount,
        tx_ref=body.tx_ref,
    )
    listing = await _service.place_bid(db, cmd)
    return _respond(request, ListingResponse.from_domain(listing).model_dump())


@router.post("/{listing_id}/cancel")
async def cancel_listing(
    listing_id: str,
    request: Request,
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
) -> ApiResponse:
    cmd = CancelListingCommand(listing_id=listing_id, requester_id=current_user.id)
    listing = await _service.cancel(db, cmd)
    return _respond(request, ListingResponse.from_domain(listing).model_dump())

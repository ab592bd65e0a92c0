"""
Bids router: placing, listing, withdrawing and expiring bids.
"""

from fastapi import APIRouter, Depends, Request
from sqlmodel import Session
from typing import List
import logging

from consortium_api.schemas import BidCreate, BidResponse, ExpiryResult
from consortium_api.deps import get_current_user, check_idempotency_key, store_idempotency_response
from consortium_api.db import get_session
from consortium_api.models import User
from consortium_api.services import bids as ledger
from consortium_api.services.discovery import serialize_bid, visible_bids

logger = logging.getLogger("consortium_api")

router = APIRouter()


@router.post("/requests/{request_id}/bids", response_model=BidResponse, status_code=201)
async def place_bid(
    request_id: str,
    body: BidCreate,
    request_obj: Request,
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session)
):
    """
    Place a bid on an open request.

    The provider must be KYC verified and may hold one pending bid per
    request. There is no upsert: a second bid needs the first withdrawn.
    """
    cached_response = await check_idempotency_key(request_obj, user, session)
    if cached_response:
        return cached_response

    bid = ledger.place_bid(
        user,
        request_id,
        body.coverage_percent,
        body.premium,
        session,
        terms=body.terms,
        premium_currency=body.premium_currency,
    )
    response_data = BidResponse.model_validate(serialize_bid(bid))

    store_idempotency_response(
        request_obj, user, body.model_dump(mode="json"), response_data.model_dump(mode="json"), session
    )
    return response_data


@router.get("/requests/{request_id}/bids", response_model=List[BidResponse])
async def list_request_bids(
    request_id: str,
    mine: bool = False,
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session)
):
    """All bids for the owner or an admin; a provider sees only its own."""
    return visible_bids(user, request_id, session, mine=mine)


@router.post("/bids/{bid_id}/withdraw", response_model=BidResponse)
async def withdraw_bid(
    bid_id: str,
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session)
):
    bid = ledger.withdraw_bid(user, bid_id, session)
    return serialize_bid(bid)


@router.post("/requests/{request_id}/bids/expire", response_model=ExpiryResult)
async def expire_request_bids(
    request_id: str,
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session)
):
    """Expire pending bids on an overdue or closed request (admin only)."""
    expired = ledger.expire_bids(request_id, session, actor=user)
    return {"request_id": request_id, "expired_bid_ids": expired}

"""
Consortium router: draft selection and finalization.
"""

from fastapi import APIRouter, Depends, Request
from sqlmodel import Session
from typing import Optional
import logging

from consortium_api.schemas import ConsortiumOutcome, ConsortiumResponse, SelectionRequest
from consortium_api.deps import get_current_user, check_idempotency_key, store_idempotency_response
from consortium_api.db import get_session
from consortium_api.models import User
from consortium_api.services import consortium as reconciler
from consortium_api.services.discovery import consortium_view, serialize_request
from consortium_api.services.lifecycle import load_request

logger = logging.getLogger("consortium_api")

router = APIRouter()


def _outcome(request_id: str, session: Session) -> ConsortiumOutcome:
    return ConsortiumOutcome.model_validate({
        "request": serialize_request(load_request(request_id, session)),
        "consortium": consortium_view(request_id, session),
    })


@router.get("/requests/{request_id}/consortium", response_model=Optional[ConsortiumResponse])
async def get_consortium(
    request_id: str,
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session)
):
    """Draft or locked consortium; null when no selection was saved."""
    return consortium_view(request_id, session)


@router.post("/requests/{request_id}/consortium", response_model=ConsortiumOutcome)
async def save_selection(
    request_id: str,
    body: SelectionRequest,
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session)
):
    """
    Replace the draft consortium with the selected bids.

    The selection's total coverage may not exceed the request's target.
    """
    reconciler.save_selection(user, request_id, body.selected_bid_ids, session)
    return _outcome(request_id, session)


@router.post("/requests/{request_id}/consortium/finalize", response_model=ConsortiumOutcome)
async def finalize_consortium(
    request_id: str,
    request_obj: Request,
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session)
):
    """
    Lock the consortium and resolve all bids on the request.

    This endpoint:
    1. Requires total coverage to equal the target exactly
    2. Snapshots premium, currency and terms of each entry
    3. Locks the consortium and accepts the selected bids
    4. Rejects every other pending bid
    5. Moves the request to finalized
    """
    cached_response = await check_idempotency_key(request_obj, user, session)
    if cached_response:
        return cached_response

    reconciler.finalize(user, request_id, session)
    response_data = _outcome(request_id, session)

    store_idempotency_response(
        request_obj, user, {"request_id": request_id}, response_data.model_dump(mode="json"), session
    )
    return response_data

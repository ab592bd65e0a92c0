"""
Requests router: creating, discovering and closing insurance requests.
"""

from fastapi import APIRouter, Depends, Query, Request
from sqlmodel import Session
from typing import List, Optional
import logging

from consortium_api.schemas import CompanyCard, CreateRequestBody, RequestPage, RequestResponse
from consortium_api.deps import get_current_user, check_idempotency_key, store_idempotency_response
from consortium_api.db import get_session
from consortium_api.models import User
from consortium_api.services import discovery
from consortium_api.services.lifecycle import close_request, create_request, load_request

logger = logging.getLogger("consortium_api")

router = APIRouter()


@router.post("/requests", response_model=RequestResponse, status_code=201)
async def create_insurance_request(
    body: CreateRequestBody,
    request_obj: Request,
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session)
):
    """
    Create a new insurance request in status open.

    Target coverage defaults to 100% and the asset currency to USD.
    """
    request_id = getattr(request_obj.state, "request_id", "unknown")
    logger.info(f"Processing request creation | request_id={request_id} | company_id={user.id}")

    cached_response = await check_idempotency_key(request_obj, user, session)
    if cached_response:
        logger.info(f"Returning cached response | request_id={request_id}")
        return cached_response

    insurance_request = create_request(user, body.model_dump(), session)
    response_data = RequestResponse.model_validate(discovery.serialize_request(insurance_request))

    store_idempotency_response(
        request_obj, user, body.model_dump(mode="json"), response_data.model_dump(mode="json"), session
    )
    return response_data


@router.get("/requests/open", response_model=RequestPage)
async def open_requests(
    q: Optional[str] = None,
    country: Optional[str] = None,
    min_sum: Optional[float] = Query(None, alias="minSum"),
    max_sum: Optional[float] = Query(None, alias="maxSum"),
    sort: str = "new",
    page: Optional[int] = None,
    limit: Optional[int] = None,
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session)
):
    """Requests still taking bids (open and before the deadline)."""
    return discovery.list_open_requests(
        session, q=q, country=country, min_sum=min_sum, max_sum=max_sum,
        sort=sort, page=page, limit=limit,
    )


@router.get("/requests/mine", response_model=List[RequestResponse])
async def my_requests(
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session)
):
    return discovery.list_company_requests(user, session)


@router.get("/requests/{request_id}", response_model=RequestResponse)
async def get_insurance_request(
    request_id: str,
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session)
):
    return discovery.serialize_request(load_request(request_id, session))


@router.get("/requests/{request_id}/company", response_model=Optional[CompanyCard])
async def get_request_company(
    request_id: str,
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session)
):
    return discovery.request_company(request_id, session)


@router.post("/requests/{request_id}/close", response_model=RequestResponse)
async def close_insurance_request(
    request_id: str,
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session)
):
    """Withdraw a request that has not been finalized."""
    insurance_request = close_request(request_id, session, actor=user)
    return discovery.serialize_request(insurance_request)

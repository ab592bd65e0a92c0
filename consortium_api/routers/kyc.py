"""
KYC router: provider resubmission and the reviewer queue.
"""

from fastapi import APIRouter, Depends, Query
from sqlmodel import Session
from typing import Optional

from consortium_api.schemas import KycDecisionBody, ProviderPage, UserResponse
from consortium_api.deps import get_current_user
from consortium_api.db import get_session
from consortium_api.models import User, KycStatus
from consortium_api.services import kyc
from consortium_api.services.discovery import list_pending_providers, serialize_user

router = APIRouter()


@router.post("/kyc/resubmit", response_model=UserResponse)
async def resubmit_kyc(
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session)
):
    """Send a rejected provider back to review. Allowed once per account."""
    provider = kyc.request_resubmission(user, session)
    return serialize_user(provider)


@router.get("/kyc/pending", response_model=ProviderPage)
async def pending_providers(
    q: Optional[str] = None,
    page: Optional[int] = Query(None),
    limit: Optional[int] = Query(None),
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session)
):
    """Reviewer queue of providers awaiting a KYC decision."""
    return list_pending_providers(user, session, q=q, page=page, limit=limit)


@router.patch("/kyc/{provider_id}/approve", response_model=UserResponse)
async def approve_provider(
    provider_id: str,
    body: Optional[KycDecisionBody] = None,
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session)
):
    provider = kyc.decide(
        user, provider_id, KycStatus.VERIFIED.value, session,
        note=body.note if body else None,
    )
    return serialize_user(provider)


@router.patch("/kyc/{provider_id}/reject", response_model=UserResponse)
async def reject_provider(
    provider_id: str,
    body: Optional[KycDecisionBody] = None,
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session)
):
    provider = kyc.decide(
        user, provider_id, KycStatus.REJECTED.value, session,
        note=body.note if body else None,
    )
    return serialize_user(provider)

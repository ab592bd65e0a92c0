"""
Providers router: awards held by the calling provider.
"""

from fastapi import APIRouter, Depends
from sqlmodel import Session
from typing import List

from consortium_api.schemas import AwardResponse
from consortium_api.deps import get_current_user
from consortium_api.db import get_session
from consortium_api.models import User
from consortium_api.services.discovery import list_awards

router = APIRouter()


@router.get("/providers/me/awards", response_model=List[AwardResponse])
async def my_awards(
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session)
):
    """Allocations in finalized consortia, most recent first."""
    return list_awards(user, session)

"""
Admin router: scheduler entry point for deadline housekeeping.
"""

from fastapi import APIRouter, Depends
from sqlmodel import Session

from consortium_api.schemas import SweepResult
from consortium_api.deps import get_current_user
from consortium_api.db import get_session
from consortium_api.errors import NotEligible
from consortium_api.models import User, Role
from consortium_api.services.scheduler import sweep_deadlines

router = APIRouter()


@router.post("/admin/sweep", response_model=SweepResult)
async def run_sweep(
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session)
):
    """Close overdue requests and expire their pending bids."""
    if user.role != Role.ADMIN:
        raise NotEligible("Only admins may run the deadline sweep", user_id=user.id)
    return sweep_deadlines(session)

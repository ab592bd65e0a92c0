"""
Users router for registration and the caller's own profile.
"""

from fastapi import APIRouter, Depends
from sqlmodel import Session

from consortium_api.schemas import UserRegistration, RegistrationResponse, UserResponse
from consortium_api.deps import get_current_user
from consortium_api.db import get_session
from consortium_api.models import User
from consortium_api.services.accounts import register_user
from consortium_api.services.discovery import serialize_user

router = APIRouter()


@router.post("/users", response_model=RegistrationResponse, status_code=201)
async def register(
    body: UserRegistration,
    session: Session = Depends(get_session)
):
    """
    Register a company or provider account.

    Providers enter KYC review immediately. The API key in the response is
    the bearer credential for every other endpoint.
    """
    user = register_user(
        body.name,
        body.email,
        body.role,
        session,
        org_name=body.org_name,
        country=body.country,
    )
    return {"user": serialize_user(user), "api_key": user.api_key}


@router.get("/users/me", response_model=UserResponse)
async def get_me(user: User = Depends(get_current_user)):
    """Current user's profile, including KYC state."""
    return serialize_user(user)

"""
Account registration and API key issue.
"""

from typing import Optional
import logging
import secrets

from sqlmodel import Session

from consortium_api.db import atomic
from consortium_api.errors import InvalidRange, NotEligible
from consortium_api.models import KycStatus, Role, User
from consortium_api.services.kyc import submit_for_review

logger = logging.getLogger("consortium_api")

SELF_SERVICE_ROLES = (Role.COMPANY.value, Role.PROVIDER.value)


def generate_api_key() -> str:
    return secrets.token_urlsafe(32)


def register_user(
    name: str,
    email: str,
    role: str,
    session: Session,
    org_name: Optional[str] = None,
    country: Optional[str] = None,
) -> User:
    """
    Create a company or provider account.

    Providers start with KYC pending review; companies need no KYC.
    Reviewer (admin) accounts are provisioned from seed data only.
    """
    if role not in SELF_SERVICE_ROLES:
        raise NotEligible(f"Role '{role}' cannot self-register", role=role)
    name = (name or "").strip()
    email = (email or "").strip().lower()
    if not name:
        raise InvalidRange("name must not be empty", field="name")
    if "@" not in email:
        raise InvalidRange("email is not valid", field="email")

    with atomic(session):
        if session.query(User).filter(User.email == email).first():
            raise InvalidRange("email is already registered", field="email")
        user = User(
            name=name,
            email=email,
            role=role,
            org_name=org_name,
            country=country,
            api_key=generate_api_key(),
            kyc_status=KycStatus.PENDING.value if role == Role.PROVIDER else KycStatus.VERIFIED.value,
        )
        session.add(user)

    if role == Role.PROVIDER:
        submit_for_review(user.id, session)

    logger.info(f"User registered | user_id={user.id} | role={role}")
    return user

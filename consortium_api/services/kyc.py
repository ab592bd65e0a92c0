"""
KYC gate: provider verification state machine.

    pending --decide(verified)--> verified
    pending --decide(rejected)--> rejected --request_resubmission (once)--> pending

Status changes only gate future bids; bids already placed are untouched.
"""

from datetime import datetime
from typing import Optional
import logging

from sqlmodel import Session

from consortium_api.cache import config_cache
from consortium_api.db import atomic
from consortium_api.errors import (
    IllegalTransition, NotEligible, NotFound, ResubmissionExhausted,
)
from consortium_api.models import User, Role, KycStatus, utcnow
from consortium_api.services.locking import kyc_locks

logger = logging.getLogger("consortium_api")

DECISION_OUTCOMES = (KycStatus.VERIFIED.value, KycStatus.REJECTED.value)


def load_provider(provider_id: str, session: Session) -> User:
    provider = (
        session.query(User)
        .filter(User.id == provider_id)
        .populate_existing()
        .first()
    )
    if not provider or provider.role != Role.PROVIDER:
        raise NotFound("Provider not found", provider_id=provider_id)
    return provider


def require_verified(provider: User) -> None:
    """Raise NotEligible unless the user is a provider with verified KYC."""
    if provider.role != Role.PROVIDER:
        raise NotEligible("Only providers may place bids", user_id=provider.id, role=provider.role)
    if provider.kyc_status != KycStatus.VERIFIED:
        raise NotEligible(
            "Provider KYC is not verified",
            user_id=provider.id,
            kyc_status=provider.kyc_status,
        )


def submit_for_review(provider_id: str, session: Session, now: Optional[datetime] = None) -> User:
    """Put a provider's KYC record into review (its state at registration)."""
    now = now or utcnow()
    with kyc_locks.hold(provider_id), atomic(session):
        provider = load_provider(provider_id, session)
        provider.kyc_status = KycStatus.PENDING.value
        provider.kyc_submitted_at = now
        session.add(provider)

    logger.info(f"KYC submitted for review | provider_id={provider_id}")
    return provider


def decide(
    actor: User,
    provider_id: str,
    outcome: str,
    session: Session,
    note: Optional[str] = None,
    now: Optional[datetime] = None,
) -> User:
    """
    Record a reviewer's verdict on a pending provider.

    Deciding on a provider that is not pending raises IllegalTransition so
    that two reviewers racing on the same record can tell who lost.
    """
    if actor.role != Role.ADMIN:
        raise NotEligible("Only reviewers may decide KYC", user_id=actor.id)
    if outcome not in DECISION_OUTCOMES:
        raise IllegalTransition(f"Unknown KYC outcome '{outcome}'", outcome=outcome)

    now = now or utcnow()
    with kyc_locks.hold(provider_id), atomic(session):
        provider = load_provider(provider_id, session)
        if provider.kyc_status != KycStatus.PENDING:
            raise IllegalTransition(
                f"KYC already decided: provider is {provider.kyc_status}",
                provider_id=provider_id,
                kyc_status=provider.kyc_status,
            )
        provider.kyc_status = outcome
        provider.kyc_decided_at = now
        provider.kyc_note = note
        session.add(provider)

    logger.info(
        f"KYC decided | provider_id={provider_id} | outcome={outcome} | reviewer_id={actor.id}"
    )
    return provider


def request_resubmission(actor: User, session: Session, now: Optional[datetime] = None) -> User:
    """
    Send a rejected provider back to review. Allowed once per account.

    The cap is checked before the status so that a second attempt always
    reports ResubmissionExhausted, whatever the reviewer did in between.
    """
    if actor.role != Role.PROVIDER:
        raise NotEligible("Only providers may resubmit KYC", user_id=actor.id)

    now = now or utcnow()
    with kyc_locks.hold(actor.id), atomic(session):
        provider = load_provider(actor.id, session)
        if provider.kyc_resubmit_count >= config_cache.max_kyc_resubmissions:
            raise ResubmissionExhausted(
                "KYC resubmission already used",
                provider_id=provider.id,
                kyc_resubmit_count=provider.kyc_resubmit_count,
            )
        if provider.kyc_status != KycStatus.REJECTED:
            raise IllegalTransition(
                f"Only rejected KYC can be resubmitted (current: {provider.kyc_status})",
                provider_id=provider.id,
                kyc_status=provider.kyc_status,
            )
        provider.kyc_status = KycStatus.PENDING.value
        provider.kyc_resubmit_count += 1
        provider.kyc_submitted_at = now
        provider.kyc_decided_at = None
        session.add(provider)

    logger.info(
        f"KYC resubmitted | provider_id={provider.id} | count={provider.kyc_resubmit_count}"
    )
    return provider

"""
Request lifecycle: top-level status of an insurance request.

    open --save_selection--> consortium_formed --finalize--> finalized
    open | consortium_formed --close--> closed

The deadline gates new bids only; nothing here moves status on a clock.
"""

from datetime import datetime
from typing import Any, Dict, Optional
import logging

from sqlmodel import Session

from consortium_api.cache import config_cache
from consortium_api.db import atomic
from consortium_api.errors import (
    ConcurrentModification, IllegalTransition, InvalidRange, NotEligible, NotFound,
)
from consortium_api.models import InsuranceRequest, RequestStatus, Role, User, as_utc, utcnow
from consortium_api.services.amounts import to_currency, to_sum_insured
from consortium_api.services.locking import request_locks

logger = logging.getLogger("consortium_api")

# Legal moves of the request state machine
TRANSITIONS = {
    RequestStatus.OPEN.value: {RequestStatus.CONSORTIUM_FORMED.value, RequestStatus.CLOSED.value},
    RequestStatus.CONSORTIUM_FORMED.value: {RequestStatus.FINALIZED.value, RequestStatus.CLOSED.value},
    RequestStatus.FINALIZED.value: set(),
    RequestStatus.CLOSED.value: set(),
}


def load_request(request_id: str, session: Session, for_update: bool = False) -> InsuranceRequest:
    query = session.query(InsuranceRequest).filter(InsuranceRequest.id == request_id)
    if for_update:
        query = query.populate_existing().with_for_update()
    insurance_request = query.first()
    if not insurance_request:
        raise NotFound("Request not found", request_id=request_id)
    return insurance_request


def require_owner(actor: User, insurance_request: InsuranceRequest, allow_admin: bool = False) -> None:
    if actor.id == insurance_request.company_id:
        return
    if allow_admin and actor.role == Role.ADMIN:
        return
    raise NotEligible(
        "Only the owning company may perform this action",
        request_id=insurance_request.id,
        user_id=actor.id,
    )


def is_past_deadline(insurance_request: InsuranceRequest, now: Optional[datetime] = None) -> bool:
    return as_utc(now or utcnow()) >= as_utc(insurance_request.deadline)


def bump_version(insurance_request: InsuranceRequest, session: Session) -> None:
    """
    Claim the next version of a request inside the current transaction.

    The UPDATE only matches the version this writer read; zero rows means
    another writer committed first.
    """
    expected = insurance_request.version
    updated = (
        session.query(InsuranceRequest)
        .filter(InsuranceRequest.id == insurance_request.id, InsuranceRequest.version == expected)
        .update({"version": expected + 1}, synchronize_session="evaluate")
    )
    if updated != 1:
        raise ConcurrentModification(
            "Request was modified concurrently; retry the operation",
            request_id=insurance_request.id,
            expected_version=expected,
        )


def transition(insurance_request: InsuranceRequest, target: str) -> None:
    """Move a request along the state machine or raise IllegalTransition."""
    current = insurance_request.status
    if current == target:
        return
    if target not in TRANSITIONS.get(current, set()):
        raise IllegalTransition(
            f"Request cannot move from {current} to {target}",
            request_id=insurance_request.id,
            status=current,
            target=target,
        )
    insurance_request.status = target


def create_request(
    actor: User,
    data: Dict[str, Any],
    session: Session,
    now: Optional[datetime] = None,
) -> InsuranceRequest:
    """
    Open a new request for coverage.

    `data` carries title, summary, target_coverage, deadline and an
    `asset` mapping (description, sum_insured, currency, location,
    risk_details). Target coverage defaults to the configured value.
    """
    if actor.role != Role.COMPANY:
        raise NotEligible("Only companies may create requests", user_id=actor.id)

    now = as_utc(now or utcnow())
    title = (data.get("title") or "").strip()
    if not title:
        raise InvalidRange("title must not be empty", field="title")

    target = data.get("target_coverage")
    if target is None:
        target = config_cache.default_target_coverage
    if isinstance(target, bool) or not isinstance(target, int) or not 1 <= target <= 100:
        raise InvalidRange("target_coverage must be an integer between 1 and 100",
                           field="target_coverage", value=target)

    deadline = data.get("deadline")
    if not isinstance(deadline, datetime):
        raise InvalidRange("deadline is required", field="deadline")
    deadline = as_utc(deadline)
    if deadline <= now:
        raise InvalidRange("deadline must be in the future", field="deadline",
                           value=deadline.isoformat())

    asset = data.get("asset") or {}
    description = (asset.get("description") or "").strip()
    if not description:
        raise InvalidRange("asset description must not be empty", field="asset.description")
    location = asset.get("location") or {}

    insurance_request = InsuranceRequest(
        company_id=actor.id,
        title=title,
        summary=data.get("summary"),
        target_coverage=target,
        deadline=deadline,
        asset_description=description,
        sum_insured=to_sum_insured(asset.get("sum_insured"), "asset.sum_insured"),
        currency=to_currency(asset.get("currency"), "asset.currency"),
        location_country=location.get("country"),
        location_city=location.get("city"),
        risk_details=asset.get("risk_details"),
        status=RequestStatus.OPEN.value,
        created_at=now,
    )
    with atomic(session):
        session.add(insurance_request)
    session.refresh(insurance_request)

    logger.info(
        f"Request created | request_id={insurance_request.id} | company_id={actor.id} | "
        f"target_coverage={target}"
    )
    return insurance_request


def close_request(
    request_id: str,
    session: Session,
    actor: Optional[User] = None,
    now: Optional[datetime] = None,
) -> InsuranceRequest:
    """
    Withdraw or expire a request. Legal from open or consortium_formed.

    `actor` is the owning company or an admin; None means the deadline
    scheduler is calling.
    """
    now = now or utcnow()
    with request_locks.hold(request_id), atomic(session):
        insurance_request = load_request(request_id, session, for_update=True)
        if actor is not None:
            require_owner(actor, insurance_request, allow_admin=True)
        if insurance_request.status not in (RequestStatus.OPEN, RequestStatus.CONSORTIUM_FORMED):
            raise IllegalTransition(
                f"Request cannot be closed from {insurance_request.status}",
                request_id=request_id,
                status=insurance_request.status,
            )
        bump_version(insurance_request, session)
        transition(insurance_request, RequestStatus.CLOSED.value)
        insurance_request.closed_at = now
        session.add(insurance_request)

    logger.info(
        f"Request closed | request_id={request_id} | "
        f"by={actor.id if actor is not None else 'scheduler'}"
    )
    return insurance_request

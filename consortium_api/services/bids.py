"""
Bid ledger: placement, withdrawal, expiry and terminal resolution of bids.
"""

from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional
import logging

from sqlmodel import Session

from consortium_api.db import atomic
from consortium_api.errors import (
    DuplicateActiveBid, IllegalTransition, NotEligible, NotFound, RequestClosed,
)
from consortium_api.models import (
    Bid, BidStatus, Consortium, InsuranceRequest, RequestStatus, Role, User, utcnow,
)
from consortium_api.services.amounts import to_coverage, to_currency, to_premium
from consortium_api.services.kyc import require_verified
from consortium_api.services.lifecycle import (
    bump_version, is_past_deadline, load_request,
)
from consortium_api.services.locking import request_locks

logger = logging.getLogger("consortium_api")


def load_bid(bid_id: str, session: Session, refresh: bool = False) -> Bid:
    query = session.query(Bid).filter(Bid.id == bid_id)
    if refresh:
        query = query.populate_existing()
    bid = query.first()
    if not bid:
        raise NotFound("Bid not found", bid_id=bid_id)
    return bid


def find_active_bid(request_id: str, provider_id: str, session: Session) -> Optional[Bid]:
    return session.query(Bid).filter(
        Bid.request_id == request_id,
        Bid.provider_id == provider_id,
        Bid.status == BidStatus.PENDING.value,
    ).first()


def list_bids(
    request_id: str,
    session: Session,
    provider_id: Optional[str] = None,
    status: Optional[str] = None,
) -> List[Bid]:
    query = session.query(Bid).filter(Bid.request_id == request_id)
    if provider_id:
        query = query.filter(Bid.provider_id == provider_id)
    if status:
        query = query.filter(Bid.status == status)
    return query.order_by(Bid.created_at, Bid.id).all()


def place_bid(
    actor: User,
    request_id: str,
    coverage_percent: Any,
    premium: Any,
    session: Session,
    terms: Optional[str] = None,
    premium_currency: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Bid:
    """
    Record a new pending bid. The only way bids come into existence.

    Checks run in a fixed order: KYC, request status and deadline, one
    active bid per provider, numeric bounds.
    """
    now = now or utcnow()
    require_verified(actor)

    with request_locks.hold(request_id), atomic(session):
        insurance_request = load_request(request_id, session, for_update=True)
        if insurance_request.status != RequestStatus.OPEN:
            raise RequestClosed(
                f"Request is {insurance_request.status}; bids are no longer accepted",
                request_id=request_id,
                status=insurance_request.status,
            )
        if is_past_deadline(insurance_request, now):
            raise RequestClosed(
                "Request deadline has passed",
                request_id=request_id,
                deadline=insurance_request.deadline.isoformat(),
            )
        existing = find_active_bid(request_id, actor.id, session)
        if existing:
            raise DuplicateActiveBid(
                "Provider already has a pending bid on this request",
                request_id=request_id,
                bid_id=existing.id,
            )

        bid = Bid(
            request_id=request_id,
            provider_id=actor.id,
            coverage_percent=to_coverage(coverage_percent),
            premium=to_premium(premium),
            premium_currency=to_currency(premium_currency or insurance_request.currency,
                                         "premium_currency"),
            terms=terms,
            sum_insured_snapshot=insurance_request.sum_insured,
            status=BidStatus.PENDING.value,
            created_at=now,
            updated_at=now,
        )
        bump_version(insurance_request, session)
        session.add(bid)
    session.refresh(bid)

    logger.info(
        f"Bid placed | request_id={request_id} | bid_id={bid.id} | provider_id={actor.id} | "
        f"coverage_percent={bid.coverage_percent}"
    )
    return bid


def withdraw_bid(actor: User, bid_id: str, session: Session, now: Optional[datetime] = None) -> Bid:
    """Withdraw a provider's own pending bid while the consortium is unlocked."""
    now = now or utcnow()
    bid = load_bid(bid_id, session)
    if bid.provider_id != actor.id:
        raise NotEligible("Only the bidding provider may withdraw a bid", bid_id=bid_id)

    with request_locks.hold(bid.request_id), atomic(session):
        insurance_request = load_request(bid.request_id, session, for_update=True)
        bid = load_bid(bid_id, session, refresh=True)
        consortium = session.query(Consortium).filter(
            Consortium.request_id == bid.request_id
        ).first()
        if consortium and consortium.is_locked:
            raise IllegalTransition(
                "Consortium is locked; bids can no longer be withdrawn",
                bid_id=bid_id,
                request_id=bid.request_id,
            )
        if bid.status != BidStatus.PENDING:
            raise IllegalTransition(
                f"Only pending bids can be withdrawn (current: {bid.status})",
                bid_id=bid_id,
                status=bid.status,
            )
        bump_version(insurance_request, session)
        bid.status = BidStatus.WITHDRAWN.value
        bid.updated_at = now
        session.add(bid)

    logger.info(f"Bid withdrawn | request_id={bid.request_id} | bid_id={bid_id}")
    return bid


def apply_consortium_outcome(
    insurance_request: InsuranceRequest,
    accepted_bid_ids: Iterable[str],
    session: Session,
    now: Optional[datetime] = None,
) -> Dict[str, List[str]]:
    """
    Accept the selected bids and reject every other pending bid.

    Runs inside the caller's finalize transaction and never commits.
    """
    now = now or utcnow()
    accepted_ids = set(accepted_bid_ids)
    accepted: List[str] = []
    rejected: List[str] = []

    for bid in list_bids(insurance_request.id, session):
        if bid.id in accepted_ids:
            if bid.status != BidStatus.PENDING:
                raise IllegalTransition(
                    f"Selected bid {bid.id} is {bid.status}, not pending",
                    bid_id=bid.id,
                    status=bid.status,
                )
            bid.status = BidStatus.ACCEPTED.value
            accepted.append(bid.id)
        elif bid.status == BidStatus.PENDING:
            bid.status = BidStatus.REJECTED.value
            rejected.append(bid.id)
        else:
            continue
        bid.updated_at = now
        session.add(bid)

    missing = accepted_ids.difference(accepted)
    if missing:
        raise NotFound("Selected bids not found on this request", bid_ids=sorted(missing))

    return {"accepted": accepted, "rejected": rejected}


def expire_bids(
    request_id: str,
    session: Session,
    actor: Optional[User] = None,
    now: Optional[datetime] = None,
) -> List[str]:
    """
    Mark pending bids on an overdue or closed request as expired.

    `actor` must be an admin; None means the deadline scheduler is calling.
    """
    now = now or utcnow()
    if actor is not None and actor.role != Role.ADMIN:
        raise NotEligible("Only admins may expire bids", user_id=actor.id)

    with request_locks.hold(request_id), atomic(session):
        insurance_request = load_request(request_id, session, for_update=True)
        overdue = is_past_deadline(insurance_request, now)
        if not overdue and insurance_request.status != RequestStatus.CLOSED:
            raise IllegalTransition(
                "Bids can only expire once the request deadline has passed or it is closed",
                request_id=request_id,
                deadline=insurance_request.deadline.isoformat(),
            )
        stale = list_bids(request_id, session, status=BidStatus.PENDING.value)
        if stale:
            bump_version(insurance_request, session)
        for bid in stale:
            bid.status = BidStatus.EXPIRED.value
            bid.updated_at = now
            session.add(bid)
        expired = [bid.id for bid in stale]

    if expired:
        logger.info(f"Bids expired | request_id={request_id} | count={len(expired)}")
    return expired


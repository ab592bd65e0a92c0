"""
Read-side views and the normalization boundary.

Nothing in this module writes. ORM rows are converted here, once, into the
plain dictionaries the response schemas validate.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import func, or_
from sqlmodel import Session

from consortium_api.cache import config_cache
from consortium_api.errors import InvalidRange, NotEligible
from consortium_api.models import (
    Bid, Consortium, ConsortiumEntry, InsuranceRequest, KycStatus, RequestStatus, Role, User,
    utcnow,
)
from consortium_api.services.bids import list_bids
from consortium_api.services.consortium import get_consortium, get_entries
from consortium_api.services.lifecycle import load_request


OPEN_REQUEST_SORTS = {
    "new": (InsuranceRequest.created_at.desc(),),
    "sum_desc": (InsuranceRequest.sum_insured.desc(),),
    "deadline_asc": (InsuranceRequest.deadline.asc(),),
}


# ----------------------------------------------------------------------------
# Serializers
# ----------------------------------------------------------------------------

def serialize_user(user: User) -> Dict[str, Any]:
    return {
        "id": user.id,
        "name": user.name,
        "email": user.email,
        "role": user.role,
        "org_name": user.org_name,
        "country": user.country,
        "kyc_status": user.kyc_status,
        "kyc_resubmit_count": user.kyc_resubmit_count,
        "kyc_submitted_at": user.kyc_submitted_at,
        "kyc_decided_at": user.kyc_decided_at,
        "kyc_note": user.kyc_note,
    }


def provider_lite(user: Optional[User]) -> Optional[Dict[str, Any]]:
    if user is None:
        return None
    return {
        "id": user.id,
        "name": user.name,
        "email": user.email,
        "org_name": user.org_name,
        "country": user.country,
        "kyc_status": user.kyc_status,
        "submitted_at": user.kyc_submitted_at,
    }


def company_card(user: Optional[User]) -> Optional[Dict[str, Any]]:
    if user is None:
        return None
    return {"id": user.id, "name": user.name, "org_name": user.org_name, "email": user.email}


def serialize_request(insurance_request: InsuranceRequest) -> Dict[str, Any]:
    return {
        "id": insurance_request.id,
        "company_id": insurance_request.company_id,
        "title": insurance_request.title,
        "summary": insurance_request.summary,
        "target_coverage": insurance_request.target_coverage,
        "deadline": insurance_request.deadline,
        "status": insurance_request.status,
        "asset": {
            "description": insurance_request.asset_description,
            "sum_insured": insurance_request.sum_insured,
            "currency": insurance_request.currency,
            "location": {
                "country": insurance_request.location_country,
                "city": insurance_request.location_city,
            },
            "risk_details": insurance_request.risk_details,
        },
        "created_at": insurance_request.created_at,
        "finalized_at": insurance_request.finalized_at,
        "closed_at": insurance_request.closed_at,
    }


def serialize_bid(bid: Bid, provider: Optional[User] = None) -> Dict[str, Any]:
    return {
        "id": bid.id,
        "request_id": bid.request_id,
        "provider_id": bid.provider_id,
        "coverage_percent": bid.coverage_percent,
        "premium": bid.premium,
        "premium_currency": bid.premium_currency,
        "terms": bid.terms,
        "sum_insured_snapshot": bid.sum_insured_snapshot,
        "status": bid.status,
        "provider": provider_lite(provider),
        "created_at": bid.created_at,
        "updated_at": bid.updated_at,
    }


def serialize_consortium(consortium: Consortium, entries: List[ConsortiumEntry]) -> Dict[str, Any]:
    return {
        "request_id": consortium.request_id,
        "entries": [
            {
                "bid_id": entry.bid_id,
                "provider_id": entry.provider_id,
                "coverage_percent": entry.coverage_percent,
                "premium": entry.premium,
                "premium_currency": entry.premium_currency,
                "terms_snapshot": entry.terms_snapshot,
            }
            for entry in entries
        ],
        "total_coverage": consortium.total_coverage,
        "is_locked": consortium.is_locked,
        "revision": consortium.revision,
        "sum_insured_snapshot": consortium.sum_insured_snapshot,
        "currency": consortium.currency,
        "finalized_at": consortium.finalized_at,
    }


# ----------------------------------------------------------------------------
# Views
# ----------------------------------------------------------------------------

def _page_bounds(page: Optional[int], limit: Optional[int]) -> tuple:
    if page is None:
        page = 1
    if limit is None:
        limit = config_cache.default_page_size
    if page < 1:
        raise InvalidRange("page must be at least 1", field="page", value=page)
    if not 1 <= limit <= config_cache.max_page_size:
        raise InvalidRange(
            f"limit must be between 1 and {config_cache.max_page_size}",
            field="limit",
            value=limit,
        )
    return page, limit


def _paginate(query, page: int, limit: int, serialize) -> Dict[str, Any]:
    total = query.count()
    rows = query.offset((page - 1) * limit).limit(limit).all()
    return {
        "items": [serialize(row) for row in rows],
        "page": page,
        "limit": limit,
        "total": total,
        "has_more": page * limit < total,
    }


def list_open_requests(
    session: Session,
    q: Optional[str] = None,
    country: Optional[str] = None,
    min_sum: Optional[float] = None,
    max_sum: Optional[float] = None,
    sort: str = "new",
    page: Optional[int] = None,
    limit: Optional[int] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Requests still taking bids: status open and deadline in the future."""
    now = now or utcnow()
    if sort not in OPEN_REQUEST_SORTS:
        raise InvalidRange(
            f"sort must be one of {', '.join(OPEN_REQUEST_SORTS)}", field="sort", value=sort
        )
    page, limit = _page_bounds(page, limit)

    query = session.query(InsuranceRequest).filter(
        InsuranceRequest.status == RequestStatus.OPEN.value,
        InsuranceRequest.deadline > now,
    )
    if q and q.strip():
        pattern = f"%{q.strip().lower()}%"
        query = query.filter(or_(
            func.lower(InsuranceRequest.title).like(pattern),
            func.lower(InsuranceRequest.summary).like(pattern),
            func.lower(InsuranceRequest.asset_description).like(pattern),
        ))
    if country and country.strip():
        query = query.filter(func.lower(InsuranceRequest.location_country) == country.strip().lower())
    if min_sum is not None:
        query = query.filter(InsuranceRequest.sum_insured >= min_sum)
    if max_sum is not None:
        query = query.filter(InsuranceRequest.sum_insured <= max_sum)

    query = query.order_by(*OPEN_REQUEST_SORTS[sort], InsuranceRequest.id)
    return _paginate(query, page, limit, serialize_request)


def list_company_requests(actor: User, session: Session) -> List[Dict[str, Any]]:
    if actor.role != Role.COMPANY:
        raise NotEligible("Only companies own requests", user_id=actor.id)
    rows = (
        session.query(InsuranceRequest)
        .filter(InsuranceRequest.company_id == actor.id)
        .order_by(InsuranceRequest.created_at.desc())
        .all()
    )
    return [serialize_request(row) for row in rows]


def visible_bids(
    actor: User,
    request_id: str,
    session: Session,
    mine: bool = False,
) -> List[Dict[str, Any]]:
    """
    Owner and admins see every bid with a provider summary; everyone else
    (or anyone passing mine=True) sees only their own bids.
    """
    insurance_request = load_request(request_id, session)
    sees_all = actor.id == insurance_request.company_id or actor.role == Role.ADMIN
    if mine or not sees_all:
        bids = list_bids(request_id, session, provider_id=actor.id)
    else:
        bids = list_bids(request_id, session)

    provider_ids = {bid.provider_id for bid in bids}
    providers = {
        user.id: user
        for user in session.query(User).filter(User.id.in_(provider_ids)).all()
    } if provider_ids else {}
    return [serialize_bid(bid, providers.get(bid.provider_id)) for bid in bids]


def consortium_view(request_id: str, session: Session) -> Optional[Dict[str, Any]]:
    load_request(request_id, session)
    consortium = get_consortium(request_id, session)
    if consortium is None:
        return None
    return serialize_consortium(consortium, get_entries(consortium, session))


def request_company(request_id: str, session: Session) -> Optional[Dict[str, Any]]:
    insurance_request = load_request(request_id, session)
    company = session.query(User).filter(User.id == insurance_request.company_id).first()
    return company_card(company)


def list_pending_providers(
    actor: User,
    session: Session,
    q: Optional[str] = None,
    page: Optional[int] = None,
    limit: Optional[int] = None,
) -> Dict[str, Any]:
    """Reviewer queue: providers whose KYC awaits a decision, oldest first."""
    if actor.role != Role.ADMIN:
        raise NotEligible("Only reviewers may list pending providers", user_id=actor.id)
    page, limit = _page_bounds(page, limit)

    query = session.query(User).filter(
        User.role == Role.PROVIDER.value,
        User.kyc_status == KycStatus.PENDING.value,
    )
    if q and q.strip():
        pattern = f"%{q.strip().lower()}%"
        query = query.filter(or_(
            func.lower(User.name).like(pattern),
            func.lower(User.email).like(pattern),
            func.lower(User.org_name).like(pattern),
        ))
    query = query.order_by(User.kyc_submitted_at, User.created_at, User.id)
    return _paginate(query, page, limit, provider_lite)


def list_awards(actor: User, session: Session) -> List[Dict[str, Any]]:
    """Every locked consortium allocation held by a provider."""
    if actor.role != Role.PROVIDER:
        raise NotEligible("Only providers hold awards", user_id=actor.id)

    rows = (
        session.query(ConsortiumEntry, Consortium, InsuranceRequest)
        .join(Consortium, Consortium.id == ConsortiumEntry.consortium_id)
        .join(InsuranceRequest, InsuranceRequest.id == Consortium.request_id)
        .filter(ConsortiumEntry.provider_id == actor.id, Consortium.is_locked == True)  # noqa: E712
        .order_by(Consortium.finalized_at.desc())
        .all()
    )
    company_ids = {insurance_request.company_id for _, _, insurance_request in rows}
    companies = {
        user.id: user
        for user in session.query(User).filter(User.id.in_(company_ids)).all()
    } if company_ids else {}

    awards = []
    for entry, consortium, insurance_request in rows:
        awards.append({
            "request": {
                "id": insurance_request.id,
                "title": insurance_request.title,
                "summary": insurance_request.summary,
                "status": insurance_request.status,
                "target_coverage": insurance_request.target_coverage,
                "finalized_at": consortium.finalized_at,
                "sum_insured": consortium.sum_insured_snapshot,
                "currency": consortium.currency,
                "deadline": insurance_request.deadline,
            },
            "allocation": {
                "coverage_percent": entry.coverage_percent,
                "premium": entry.premium,
                "premium_currency": entry.premium_currency,
                "terms_snapshot": entry.terms_snapshot,
            },
            "company": company_card(companies.get(insurance_request.company_id)),
        })
    return awards

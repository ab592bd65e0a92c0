"""
Consortium reconciler.

Validates a company's bid selection against the request's target coverage,
keeps the draft consortium (last write wins) and freezes it on finalize.

Invariants:
- draft total coverage never exceeds the request's target;
- a consortium is locked only when its total equals the target exactly;
- locking, bid resolution and the request moving to finalized commit as
  one transaction.
"""

from datetime import datetime
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Tuple
import logging

from sqlmodel import Session

from consortium_api.db import atomic
from consortium_api.errors import (
    IllegalTransition, IncompleteCoverage, InvalidRange, NotFound, OverTarget, RequestClosed,
)
from consortium_api.models import (
    Bid, BidStatus, Consortium, ConsortiumEntry, InsuranceRequest, RequestStatus, User, utcnow,
)
from consortium_api.services.amounts import format_percent, total_coverage
from consortium_api.services.bids import apply_consortium_outcome
from consortium_api.services.lifecycle import (
    bump_version, load_request, require_owner, transition,
)
from consortium_api.services.locking import request_locks

logger = logging.getLogger("consortium_api")


def get_consortium(request_id: str, session: Session) -> Optional[Consortium]:
    return session.query(Consortium).filter(Consortium.request_id == request_id).first()


def get_entries(consortium: Consortium, session: Session) -> List[ConsortiumEntry]:
    return (
        session.query(ConsortiumEntry)
        .filter(ConsortiumEntry.consortium_id == consortium.id)
        .order_by(ConsortiumEntry.id)
        .all()
    )


def _ensure_mutable(insurance_request: InsuranceRequest, consortium: Optional[Consortium]) -> None:
    if consortium is not None and consortium.is_locked:
        raise IllegalTransition(
            "Consortium is locked and can no longer change",
            request_id=insurance_request.id,
        )
    if insurance_request.status == RequestStatus.FINALIZED:
        raise IllegalTransition(
            "Request is already finalized",
            request_id=insurance_request.id,
        )
    if insurance_request.status == RequestStatus.CLOSED:
        raise RequestClosed(
            "Request is closed",
            request_id=insurance_request.id,
            status=insurance_request.status,
        )


def resolve_selection(
    insurance_request: InsuranceRequest,
    bid_ids: Iterable[str],
    session: Session,
) -> Tuple[List[Bid], Decimal]:
    """
    Load and check a candidate selection without writing anything.

    Returns the selected bids in selection order and their total coverage.
    """
    bid_ids = list(bid_ids)
    if not bid_ids:
        raise InvalidRange("Selection must contain at least one bid", field="bid_ids")
    duplicates = sorted({bid_id for bid_id in bid_ids if bid_ids.count(bid_id) > 1})
    if duplicates:
        raise InvalidRange("Selection contains duplicate bids", field="bid_ids", bid_ids=duplicates)

    found: Dict[str, Bid] = {
        bid.id: bid
        for bid in session.query(Bid).filter(
            Bid.id.in_(bid_ids),
            Bid.request_id == insurance_request.id,
        ).populate_existing().all()
    }
    missing = [bid_id for bid_id in bid_ids if bid_id not in found]
    if missing:
        raise NotFound("Bids not found on this request", request_id=insurance_request.id, bid_ids=missing)

    selected = [found[bid_id] for bid_id in bid_ids]
    not_pending = {bid.id: bid.status for bid in selected if bid.status != BidStatus.PENDING}
    if not_pending:
        raise IllegalTransition(
            "Only pending bids can be selected",
            request_id=insurance_request.id,
            bids=not_pending,
        )

    total = total_coverage(bid.coverage_percent for bid in selected)
    target = Decimal(insurance_request.target_coverage)
    if total > target:
        excess = total - target
        raise OverTarget(
            f"Selection exceeds target by {format_percent(excess)}%",
            request_id=insurance_request.id,
            total_coverage=float(total),
            target_coverage=insurance_request.target_coverage,
            excess=float(excess),
        )
    return selected, total


def save_selection(
    actor: User,
    request_id: str,
    bid_ids: Iterable[str],
    session: Session,
    now: Optional[datetime] = None,
) -> Consortium:
    """
    Replace the draft consortium with a new selection of pending bids.

    All-or-nothing: any violation leaves the previous draft and the
    request status exactly as they were.
    """
    now = now or utcnow()
    with request_locks.hold(request_id), atomic(session):
        insurance_request = load_request(request_id, session, for_update=True)
        require_owner(actor, insurance_request)
        consortium = get_consortium(request_id, session)
        _ensure_mutable(insurance_request, consortium)

        selected, total = resolve_selection(insurance_request, bid_ids, session)

        bump_version(insurance_request, session)
        if consortium is None:
            consortium = Consortium(request_id=request_id, created_at=now)
            session.add(consortium)
            session.flush()
        else:
            for entry in get_entries(consortium, session):
                session.delete(entry)

        for bid in selected:
            session.add(ConsortiumEntry(
                consortium_id=consortium.id,
                bid_id=bid.id,
                provider_id=bid.provider_id,
                coverage_percent=bid.coverage_percent,
                premium=bid.premium,
                premium_currency=bid.premium_currency,
                terms_snapshot=bid.terms,
            ))
        consortium.total_coverage = total
        consortium.revision += 1
        consortium.updated_at = now
        session.add(consortium)

        transition(insurance_request, RequestStatus.CONSORTIUM_FORMED.value)
        session.add(insurance_request)

    logger.info(
        f"Consortium draft saved | request_id={request_id} | bids={len(selected)} | "
        f"total_coverage={format_percent(total)} | target={insurance_request.target_coverage} | "
        f"revision={consortium.revision}"
    )
    return consortium


def finalize(
    actor: User,
    request_id: str,
    session: Session,
    now: Optional[datetime] = None,
) -> Consortium:
    """
    Lock the draft consortium and resolve every bid on the request.

    Requires total coverage to equal the target exactly. Snapshotting the
    entries, locking, accepting/rejecting bids and moving the request to
    finalized happen in one transaction; a failure anywhere rolls back all
    of it.
    """
    now = now or utcnow()
    with request_locks.hold(request_id), atomic(session):
        insurance_request = load_request(request_id, session, for_update=True)
        require_owner(actor, insurance_request)
        consortium = get_consortium(request_id, session)
        _ensure_mutable(insurance_request, consortium)

        if consortium is None:
            raise IncompleteCoverage(
                "No consortium selection has been saved",
                request_id=request_id,
                target_coverage=insurance_request.target_coverage,
            )

        entries = get_entries(consortium, session)
        total = total_coverage(entry.coverage_percent for entry in entries)
        target = Decimal(insurance_request.target_coverage)
        if total != target:
            raise IncompleteCoverage(
                f"Selection covers {format_percent(total)}% of a {insurance_request.target_coverage}% target",
                request_id=request_id,
                total_coverage=float(total),
                target_coverage=insurance_request.target_coverage,
                shortfall=float(target - total),
            )

        bids = {
            bid.id: bid
            for bid in session.query(Bid).filter(
                Bid.id.in_([entry.bid_id for entry in entries])
            ).populate_existing().all()
        }
        stale = {
            entry.bid_id: bids[entry.bid_id].status if entry.bid_id in bids else None
            for entry in entries
            if entry.bid_id not in bids or bids[entry.bid_id].status != BidStatus.PENDING
        }
        if stale:
            raise IllegalTransition(
                "Selected bids are no longer pending; save a new selection",
                request_id=request_id,
                bids=stale,
            )

        bump_version(insurance_request, session)

        # Freeze the commercial terms as they stand right now
        for entry in entries:
            bid = bids[entry.bid_id]
            entry.premium = bid.premium
            entry.premium_currency = bid.premium_currency
            entry.terms_snapshot = bid.terms
            session.add(entry)

        consortium.is_locked = True
        consortium.finalized_at = now
        consortium.sum_insured_snapshot = insurance_request.sum_insured
        consortium.currency = insurance_request.currency
        consortium.updated_at = now
        session.add(consortium)
        session.flush()

        outcome = apply_consortium_outcome(
            insurance_request, [entry.bid_id for entry in entries], session, now
        )

        transition(insurance_request, RequestStatus.FINALIZED.value)
        insurance_request.finalized_at = now
        session.add(insurance_request)

    logger.info(
        f"Consortium finalized | request_id={request_id} | "
        f"accepted={len(outcome['accepted'])} | rejected={len(outcome['rejected'])}"
    )
    return consortium

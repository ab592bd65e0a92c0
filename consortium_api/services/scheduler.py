"""
Deadline sweep for an external periodic scheduler.

Closes overdue requests and expires their pending bids through the same
public operations the API uses. Each request is handled in its own
transaction; a failure on one request is logged and the sweep moves on.
"""

from datetime import datetime
from typing import Any, Dict, Optional
import logging

from sqlmodel import Session

from consortium_api.errors import DealError
from consortium_api.models import Bid, BidStatus, InsuranceRequest, RequestStatus, utcnow
from consortium_api.services.bids import expire_bids
from consortium_api.services.lifecycle import close_request

logger = logging.getLogger("consortium_api")


def sweep_deadlines(session: Session, now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Run one pass over overdue requests.

    Returns the ids of closed requests, the number of expired bids and
    any per-request failures.
    """
    now = now or utcnow()
    closed = []
    expired_count = 0
    failures = []

    overdue = session.query(InsuranceRequest.id).filter(
        InsuranceRequest.deadline <= now,
        InsuranceRequest.status.in_([
            RequestStatus.OPEN.value,
            RequestStatus.CONSORTIUM_FORMED.value,
        ]),
    ).all()
    for (request_id,) in overdue:
        try:
            close_request(request_id, session, now=now)
            closed.append(request_id)
        except DealError as e:
            logger.warning(f"Sweep could not close request | request_id={request_id} | error={e.kind}")
            failures.append({"request_id": request_id, "error": e.kind, "message": e.message})

    # Pending bids left on overdue or closed requests, including ones closed above
    stale_requests = session.query(Bid.request_id).join(
        InsuranceRequest, InsuranceRequest.id == Bid.request_id
    ).filter(
        Bid.status == BidStatus.PENDING.value,
        (InsuranceRequest.deadline <= now) | (InsuranceRequest.status == RequestStatus.CLOSED.value),
    ).distinct().all()
    for (request_id,) in stale_requests:
        try:
            expired_count += len(expire_bids(request_id, session, now=now))
        except DealError as e:
            logger.warning(f"Sweep could not expire bids | request_id={request_id} | error={e.kind}")
            failures.append({"request_id": request_id, "error": e.kind, "message": e.message})

    logger.info(
        f"Deadline sweep complete | closed={len(closed)} | expired_bids={expired_count} | "
        f"failures={len(failures)}"
    )
    return {
        "closed_request_ids": closed,
        "expired_bid_count": expired_count,
        "failures": failures,
        "as_of": now,
    }

"""
SQLModel database models for the consortium insurance API.
"""

from sqlalchemy import DateTime
from sqlalchemy.types import TypeDecorator
from sqlmodel import SQLModel, Field
from typing import Optional
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
import uuid


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Normalize to aware UTC; naive values are taken to already be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class AwareDateTime(TypeDecorator):
    """
    Timestamp column that always hands back aware UTC datetimes.

    SQLite keeps no offset, so values are stored as UTC wall time and the
    zone is reattached on load.
    """
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return as_utc(value)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return as_utc(value)


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:16]}"


class Role(str, Enum):
    COMPANY = "company"
    PROVIDER = "provider"
    ADMIN = "admin"


class KycStatus(str, Enum):
    PENDING = "pending"
    VERIFIED = "verified"
    REJECTED = "rejected"


class RequestStatus(str, Enum):
    OPEN = "open"
    CONSORTIUM_FORMED = "consortium_formed"
    FINALIZED = "finalized"
    CLOSED = "closed"


class BidStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    WITHDRAWN = "withdrawn"
    EXPIRED = "expired"


class User(SQLModel, table=True):
    """Platform account. Holds the single KYC record for providers."""
    id: str = Field(default_factory=lambda: new_id("usr"), primary_key=True)
    name: str
    email: str = Field(unique=True, index=True)
    role: str = Field(index=True)
    org_name: Optional[str] = None
    country: Optional[str] = None
    api_key: str = Field(unique=True, index=True)
    kyc_status: str = Field(default=KycStatus.PENDING.value, index=True)
    kyc_resubmit_count: int = 0
    kyc_submitted_at: Optional[datetime] = Field(default=None, sa_type=AwareDateTime)
    kyc_decided_at: Optional[datetime] = Field(default=None, sa_type=AwareDateTime)
    kyc_note: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow, sa_type=AwareDateTime)


class InsuranceRequest(SQLModel, table=True):
    """A company's ask for coverage on one insurable asset."""
    __tablename__ = "insurance_request"

    id: str = Field(default_factory=lambda: new_id("req"), primary_key=True)
    company_id: str = Field(foreign_key="user.id", index=True)
    title: str
    summary: Optional[str] = None
    target_coverage: int
    deadline: datetime = Field(index=True, sa_type=AwareDateTime)
    asset_description: str
    sum_insured: Decimal = Field(max_digits=16, decimal_places=2)
    currency: str = "USD"
    location_country: Optional[str] = Field(default=None, index=True)
    location_city: Optional[str] = None
    risk_details: Optional[str] = None
    status: str = Field(default=RequestStatus.OPEN.value, index=True)
    version: int = 1  # bumped by every engine write
    created_at: datetime = Field(default_factory=utcnow, sa_type=AwareDateTime)
    finalized_at: Optional[datetime] = Field(default=None, sa_type=AwareDateTime)
    closed_at: Optional[datetime] = Field(default=None, sa_type=AwareDateTime)


class Bid(SQLModel, table=True):
    """One provider's offer against a request."""
    id: str = Field(default_factory=lambda: new_id("bid"), primary_key=True)
    request_id: str = Field(foreign_key="insurance_request.id", index=True)
    provider_id: str = Field(foreign_key="user.id", index=True)
    coverage_percent: Decimal = Field(max_digits=8, decimal_places=4)
    premium: Decimal = Field(max_digits=16, decimal_places=2)
    premium_currency: str
    terms: Optional[str] = None
    sum_insured_snapshot: Decimal = Field(max_digits=16, decimal_places=2)
    status: str = Field(default=BidStatus.PENDING.value, index=True)
    created_at: datetime = Field(default_factory=utcnow, sa_type=AwareDateTime)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=AwareDateTime)


class Consortium(SQLModel, table=True):
    """Draft or locked allocation for a request (at most one per request)."""
    id: Optional[int] = Field(default=None, primary_key=True)
    request_id: str = Field(foreign_key="insurance_request.id", unique=True, index=True)
    total_coverage: Decimal = Field(default=Decimal("0"), max_digits=8, decimal_places=4)
    is_locked: bool = False
    revision: int = 0
    sum_insured_snapshot: Optional[Decimal] = Field(default=None, max_digits=16, decimal_places=2)
    currency: Optional[str] = None
    finalized_at: Optional[datetime] = Field(default=None, sa_type=AwareDateTime)
    created_at: datetime = Field(default_factory=utcnow, sa_type=AwareDateTime)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=AwareDateTime)


class ConsortiumEntry(SQLModel, table=True):
    """Denormalized snapshot of one selected bid."""
    __tablename__ = "consortium_entry"

    id: Optional[int] = Field(default=None, primary_key=True)
    consortium_id: int = Field(foreign_key="consortium.id", index=True)
    bid_id: str = Field(foreign_key="bid.id", index=True)
    provider_id: str = Field(foreign_key="user.id", index=True)
    coverage_percent: Decimal = Field(max_digits=8, decimal_places=4)
    premium: Decimal = Field(max_digits=16, decimal_places=2)
    premium_currency: str
    terms_snapshot: Optional[str] = None


class IdempotencyKey(SQLModel, table=True):
    """Idempotency key model for preventing duplicate requests."""
    id: Optional[int] = Field(default=None, primary_key=True)
    key: str = Field(unique=True, index=True)
    method: str
    path: str
    request_hash: str
    response_json: str  # JSON string
    created_at: datetime = Field(default_factory=utcnow, sa_type=AwareDateTime)

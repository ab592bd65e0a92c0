"""
Pydantic schemas for request/response validation.

Input schemas only check shape; business bounds (coverage range, premium
sign, deadline in the future) are enforced by the engine so that they
surface as engine errors with stable kinds.
"""

from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any
from datetime import datetime
from decimal import Decimal


# Request schemas
class UserRegistration(BaseModel):
    """Self-service account registration."""
    name: str
    email: str
    role: str = Field(description="company or provider")
    org_name: Optional[str] = None
    country: Optional[str] = None


class LocationIn(BaseModel):
    country: Optional[str] = None
    city: Optional[str] = None


class AssetIn(BaseModel):
    description: str
    sum_insured: Decimal = Field(description="Sum insured in the asset currency")
    currency: Optional[str] = Field(None, description="ISO 4217 code, defaults to USD")
    location: Optional[LocationIn] = None
    risk_details: Optional[str] = None


class CreateRequestBody(BaseModel):
    """New insurance request."""
    title: str
    summary: Optional[str] = None
    target_coverage: Optional[int] = Field(None, description="Percent 1..100, defaults to 100")
    deadline: datetime = Field(description="Bidding deadline, must be in the future")
    asset: AssetIn


class BidCreate(BaseModel):
    """Provider bid against a request."""
    coverage_percent: Decimal = Field(description="Percent of the sum insured, 1..100")
    premium: Decimal = Field(description="Premium amount, >= 0")
    premium_currency: Optional[str] = Field(None, description="Defaults to the request currency")
    terms: Optional[str] = None


class SelectionRequest(BaseModel):
    """Company's candidate consortium."""
    selected_bid_ids: List[str]


class KycDecisionBody(BaseModel):
    note: Optional[str] = None


# Response schemas
class UserResponse(BaseModel):
    id: str
    name: str
    email: str
    role: str
    org_name: Optional[str] = None
    country: Optional[str] = None
    kyc_status: str
    kyc_resubmit_count: int
    kyc_submitted_at: Optional[datetime] = None
    kyc_decided_at: Optional[datetime] = None
    kyc_note: Optional[str] = None


class RegistrationResponse(BaseModel):
    user: UserResponse
    api_key: str = Field(description="Bearer credential; shown only once")


class ProviderLite(BaseModel):
    id: str
    name: str
    email: str
    org_name: Optional[str] = None
    country: Optional[str] = None
    kyc_status: str
    submitted_at: Optional[datetime] = None


class CompanyCard(BaseModel):
    id: str
    name: str
    org_name: Optional[str] = None
    email: Optional[str] = None


class LocationOut(BaseModel):
    country: Optional[str] = None
    city: Optional[str] = None


class AssetOut(BaseModel):
    description: str
    sum_insured: float
    currency: str
    location: LocationOut
    risk_details: Optional[str] = None


class RequestResponse(BaseModel):
    id: str
    company_id: str
    title: str
    summary: Optional[str] = None
    target_coverage: int
    deadline: datetime
    status: str
    asset: AssetOut
    created_at: datetime
    finalized_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None


class BidResponse(BaseModel):
    id: str
    request_id: str
    provider_id: str
    coverage_percent: float
    premium: float
    premium_currency: str
    terms: Optional[str] = None
    sum_insured_snapshot: float
    status: str
    provider: Optional[ProviderLite] = None
    created_at: datetime
    updated_at: datetime


class ConsortiumEntryResponse(BaseModel):
    bid_id: str
    provider_id: str
    coverage_percent: float
    premium: float
    premium_currency: str
    terms_snapshot: Optional[str] = None


class ConsortiumResponse(BaseModel):
    request_id: str
    entries: List[ConsortiumEntryResponse]
    total_coverage: float
    is_locked: bool
    revision: int
    sum_insured_snapshot: Optional[float] = None
    currency: Optional[str] = None
    finalized_at: Optional[datetime] = None


class ConsortiumOutcome(BaseModel):
    """Consortium together with the request status it produced."""
    request: RequestResponse
    consortium: ConsortiumResponse


class RequestPage(BaseModel):
    items: List[RequestResponse]
    page: int
    limit: int
    total: int
    has_more: bool


class ProviderPage(BaseModel):
    items: List[ProviderLite]
    page: int
    limit: int
    total: int
    has_more: bool


class AwardRequest(BaseModel):
    id: str
    title: str
    summary: Optional[str] = None
    status: str
    target_coverage: int
    finalized_at: Optional[datetime] = None
    sum_insured: Optional[float] = None
    currency: Optional[str] = None
    deadline: Optional[datetime] = None


class AwardAllocation(BaseModel):
    coverage_percent: float
    premium: float
    premium_currency: str
    terms_snapshot: Optional[str] = None


class AwardResponse(BaseModel):
    request: AwardRequest
    allocation: AwardAllocation
    company: Optional[CompanyCard] = None


class ExpiryResult(BaseModel):
    request_id: str
    expired_bid_ids: List[str]


class SweepResult(BaseModel):
    closed_request_ids: List[str]
    expired_bid_count: int
    failures: List[Dict[str, Any]]
    as_of: datetime

"""
Shared fixtures.

The API tests run against a throwaway SQLite file; DATABASE_URL has to be
set before consortium_api.db is first imported.
"""

import os
import tempfile

_TEST_DB_DIR = tempfile.mkdtemp(prefix="consortium-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TEST_DB_DIR, 'test.db')}"

from datetime import timedelta  # noqa: E402
from decimal import Decimal  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402
from sqlmodel import SQLModel, Session, create_engine  # noqa: E402

from consortium_api import db  # noqa: E402
from consortium_api.models import (  # noqa: E402
    Bid, BidStatus, InsuranceRequest, KycStatus, RequestStatus, Role, User, new_id, utcnow,
)


@pytest.fixture
def session():
    """Fresh in-memory database per test for service-level tests."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    with Session(engine) as session:
        yield session
    engine.dispose()


@pytest.fixture
def make_user(session):
    def _make_user(role=Role.PROVIDER.value, kyc_status=None, **fields):
        if kyc_status is None:
            kyc_status = KycStatus.VERIFIED.value
        user = User(
            name=fields.pop("name", f"{role} user"),
            email=fields.pop("email", f"{new_id(role)}@example.com"),
            role=role,
            api_key=fields.pop("api_key", new_id("key")),
            kyc_status=kyc_status,
            **fields,
        )
        session.add(user)
        session.commit()
        session.refresh(user)
        return user
    return _make_user


@pytest.fixture
def company(make_user):
    return make_user(Role.COMPANY.value, name="Acme Logistics")


@pytest.fixture
def admin(make_user):
    return make_user(Role.ADMIN.value, name="Reviewer")


@pytest.fixture
def make_request(session):
    def _make_request(company, target_coverage=100, **fields):
        insurance_request = InsuranceRequest(
            company_id=company.id,
            title=fields.pop("title", "Warehouse stock"),
            target_coverage=target_coverage,
            deadline=fields.pop("deadline", utcnow() + timedelta(days=7)),
            asset_description=fields.pop("asset_description", "Bonded warehouse contents"),
            sum_insured=fields.pop("sum_insured", Decimal("1000000.00")),
            currency=fields.pop("currency", "USD"),
            status=fields.pop("status", RequestStatus.OPEN.value),
            **fields,
        )
        session.add(insurance_request)
        session.commit()
        session.refresh(insurance_request)
        return insurance_request
    return _make_request


@pytest.fixture
def pending_bid_count(session):
    def _count(request_id):
        return session.query(Bid).filter(
            Bid.request_id == request_id,
            Bid.status == BidStatus.PENDING.value,
        ).count()
    return _count


@pytest.fixture
def api_db():
    """Reset the API database and reload the seed users."""
    SQLModel.metadata.drop_all(db.engine)
    db.initialize_database()
    yield db.engine

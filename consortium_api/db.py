"""
Database configuration and session management.
"""

from sqlmodel import SQLModel, create_engine, Session
from contextlib import contextmanager
from typing import Generator, Iterator
import logging
import os

# Import all models to ensure they are registered with SQLModel
from consortium_api.models import (
    User, InsuranceRequest, Bid, Consortium, ConsortiumEntry, IdempotencyKey,
    KycStatus, Role,
)
from consortium_api.cache import config_cache

logger = logging.getLogger("consortium_api")

# Database URL - defaults to SQLite for development
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./data/consortium.db")


def build_engine(url: str):
    """Create an engine; SQLite sessions are shared across the threadpool."""
    connect_args = {}
    if url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
        path = url.replace("sqlite:///", "", 1)
        if url.startswith("sqlite:///") and path and path != ":memory:":
            os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
    return create_engine(url, echo=False, connect_args=connect_args)


# Create engine
engine = build_engine(DATABASE_URL)


def create_db_and_tables(bind=None):
    """Create database tables."""
    SQLModel.metadata.create_all(bind or engine)


def get_session() -> Generator[Session, None, None]:
    """Get database session."""
    with Session(engine) as session:
        yield session


@contextmanager
def atomic(session: Session) -> Iterator[Session]:
    """
    Run a block as one transaction: commit on success, roll back everything
    on any exception and re-raise it.
    """
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise


def load_seed_data(bind=None):
    """Load bootstrap users from config/seed.json into the database."""
    users = config_cache.get_seed_users()
    if not users:
        logger.warning("No seed users configured")
        return

    with Session(bind or engine) as session:
        for user_data in users:
            # Check if user already exists
            existing_user = session.query(User).filter(User.id == user_data["id"]).first()
            if existing_user:
                continue
            role = user_data["role"]
            default_kyc = KycStatus.PENDING.value if role == Role.PROVIDER else KycStatus.VERIFIED.value
            session.add(User(
                id=user_data["id"],
                name=user_data["name"],
                email=user_data["email"],
                role=role,
                org_name=user_data.get("org_name"),
                country=user_data.get("country"),
                api_key=user_data["api_key"],
                kyc_status=user_data.get("kyc_status", default_kyc),
            ))

        session.commit()
        logger.info(f"Seed data loaded | users={len(users)}")


def initialize_database(bind=None):
    """Initialize database with tables and seed data."""
    logger.info("Creating database tables...")
    create_db_and_tables(bind)
    logger.info("Loading seed data...")
    load_seed_data(bind)
    logger.info("Database initialization complete")

"""
Dependencies for authentication and idempotency.
"""

from fastapi import Depends, HTTPException, status, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from typing import Optional, Dict, Any
import hashlib
import json
from sqlmodel import Session
from consortium_api.db import get_session
from consortium_api.models import User, IdempotencyKey

security = HTTPBearer()


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    session: Session = Depends(get_session)
) -> User:
    """
    Resolve the API key in the Authorization header to a platform user.
    The engine receives this user as the acting identity.
    """
    api_key = credentials.credentials

    user = session.query(User).filter(User.api_key == api_key).first()

    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key"
        )

    return user


def _scoped_key(idempotency_key: str, user: User) -> str:
    # Keys are per caller; two users may legitimately reuse the same value
    return f"{user.id}:{idempotency_key}"


async def check_idempotency_key(
    request: Request,
    user: User,
    session: Session,
) -> Optional[Dict[str, Any]]:
    """
    Check idempotency key for duplicate requests.
    Returns None if new request, or cached response if duplicate.
    """
    idempotency_key = request.headers.get("X-Idempotency-Key")

    if not idempotency_key:
        return None

    cached_response = session.query(IdempotencyKey).filter(
        IdempotencyKey.key == _scoped_key(idempotency_key, user),
        IdempotencyKey.method == request.method,
        IdempotencyKey.path == request.url.path
    ).first()

    if cached_response:
        return json.loads(cached_response.response_json)

    return None


def store_idempotency_response(
    request: Request,
    user: User,
    request_body: Dict[str, Any],
    response_data: Dict[str, Any],
    session: Session
) -> None:
    """
    Store response for idempotency key to prevent duplicate processing.
    """
    idempotency_key = request.headers.get("X-Idempotency-Key")
    if not idempotency_key:
        return

    idempotency_record = IdempotencyKey(
        key=_scoped_key(idempotency_key, user),
        method=request.method,
        path=request.url.path,
        request_hash=generate_request_hash(request_body),
        response_json=json.dumps(response_data)
    )

    session.add(idempotency_record)
    session.commit()


def generate_request_hash(request_body: Dict[str, Any]) -> str:
    """Generate a hash for request body to detect duplicates."""
    # Sort keys to ensure consistent hashing
    sorted_body = json.dumps(request_body, sort_keys=True, default=str)
    return hashlib.sha256(sorted_body.encode()).hexdigest()

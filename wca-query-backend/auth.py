"""
WCA Query Backend - Bearer Token Authentication
===============================================

Verifies the bearer tokens minted by the WCA login service.

Tokens are HS256 JWTs signed with JWT_SECRET. The payload carries the WCA
identity ({wcaUserId, username, avatarUrl, roles}); this backend only reads it
to attach a WcaUser to the request, which is logged next to every query.
The OAuth code exchange itself lives in the login service.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import jwt
from fastapi import HTTPException, Request

logger = logging.getLogger(__name__)

JWT_ALGORITHM = "HS256"


@dataclass(frozen=True)
class WcaUser:
    """Identity attached to an authenticated request."""
    id: int
    name: str


def issue_token(
    secret: str,
    user_id: int,
    username: str,
    avatar_url: Optional[str] = None,
    roles: Optional[List[str]] = None,
    expires_in: timedelta = timedelta(days=7),
) -> str:
    """Mint a token with the same payload contract as the login service."""
    payload: Dict[str, Any] = {
        "wcaUserId": user_id,
        "username": username,
        "avatarUrl": avatar_url,
        "roles": roles or [],
        "exp": datetime.now(timezone.utc) + expires_in,
    }
    return jwt.encode(payload, secret, algorithm=JWT_ALGORITHM)


def decode_token(token: str, secret: str) -> WcaUser:
    """
    Verify a token and return its identity.

    Raises:
        jwt.InvalidTokenError: Bad signature, expired, malformed, or missing
                               the WCA identity claims.
    """
    payload = jwt.decode(token, secret, algorithms=[JWT_ALGORITHM])
    user_id = payload.get("wcaUserId")
    if user_id is None:
        raise jwt.InvalidTokenError("Token has no wcaUserId claim")
    return WcaUser(id=user_id, name=str(payload.get("username", "")))


def require_user(request: Request) -> WcaUser:
    """
    FastAPI dependency: 401 unless the request carries a valid bearer token.

    Runs before the endpoint body, so rejected requests never reach the
    query pipeline.
    """
    header = request.headers.get("authorization")
    if not header:
        raise HTTPException(status_code=401, detail="Unauthorized")

    parts = header.split(" ")
    token = parts[1] if len(parts) > 1 else ""

    try:
        return decode_token(token, request.app.state.settings.jwt_secret)
    except jwt.InvalidTokenError as e:
        logger.info(f"Rejected bearer token: {e}")
        raise HTTPException(status_code=401, detail="Invalid token")

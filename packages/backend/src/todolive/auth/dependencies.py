"""FastAPI auth dependencies.

Learn: These are used as Depends() in route handlers to extract
and validate the current user from the request. Routes never parse
headers themselves — they just ask for a CurrentIdentity.
"""

import uuid
from typing import Optional

from fastapi import Depends, Header, HTTPException

from todolive.auth.jwt import TokenError, verify_token


class CurrentIdentity:
    """The authenticated user making the request.

    Learn: Every todo/notification query is scoped by user_id, so this
    object is the only thing handlers need from the auth layer.
    """

    def __init__(self, user_id: str, claims: Optional[dict] = None):
        self.user_id = user_id
        self.claims = claims or {}

    @property
    def user_uuid(self) -> uuid.UUID:
        return uuid.UUID(self.user_id)


def get_current_user_optional(
    authorization: Optional[str] = Header(None),
) -> Optional[CurrentIdentity]:
    """Extract current identity (optional — returns None if no auth)."""
    if authorization and authorization.startswith("Bearer "):
        return authenticate_token(authorization[7:])
    return None


def get_current_user(
    identity: Optional[CurrentIdentity] = Depends(get_current_user_optional),
) -> CurrentIdentity:
    """Extract current identity (required — 401 if no auth)."""
    if not identity:
        raise HTTPException(
            status_code=401,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return identity


def authenticate_token(token: str) -> CurrentIdentity:
    """Authenticate an access token, raising 401 on failure."""
    try:
        payload = verify_token(token)
    except TokenError as e:
        raise HTTPException(
            status_code=401,
            detail=str(e),
            headers={"WWW-Authenticate": "Bearer"},
        )
    if payload.get("type") != "access":
        raise HTTPException(
            status_code=401,
            detail="Not an access token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        uuid.UUID(payload["sub"])
    except ValueError:
        raise HTTPException(status_code=401, detail="Invalid token subject")
    return CurrentIdentity(user_id=payload["sub"], claims=payload)

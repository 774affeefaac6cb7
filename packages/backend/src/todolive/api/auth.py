"""Auth API — registration, login, token refresh, profile.

Learn: Routes for user authentication and the user's own profile:
- POST /auth/register → create a new user account
- POST /auth/login → email/password → JWT tokens
- POST /auth/refresh → refresh token → new token pair
- GET /auth/me → current user info
- PATCH /auth/me → username / theme (pushed to the user's other tabs)
"""

import uuid
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from todolive.auth.dependencies import CurrentIdentity, get_current_user
from todolive.auth.jwt import (
    TokenError,
    create_access_token,
    create_refresh_token,
    verify_token,
)
from todolive.auth.password import hash_password, verify_password
from todolive.db.engine import get_db
from todolive.db.models import User
from todolive.realtime.hub import RealtimeHub, get_hub

router = APIRouter(prefix="/auth")


# ─── Schemas ─────────────────────────────────────────────


class RegisterRequest(BaseModel):
    email: str = Field(min_length=3, max_length=255)
    username: str = Field(min_length=1, max_length=100)
    password: str = Field(min_length=8)


class LoginRequest(BaseModel):
    email: str
    password: str


class TokenResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"


class RefreshRequest(BaseModel):
    refresh_token: str


class UserRead(BaseModel):
    id: uuid.UUID
    email: str
    username: str
    theme_preference: str
    created_at: datetime

    model_config = {"from_attributes": True}


class ProfileUpdate(BaseModel):
    username: Optional[str] = Field(None, min_length=1, max_length=100)
    theme_preference: Optional[str] = Field(None, pattern=r"^(light|dark|system)$")


async def _load_user(identity: CurrentIdentity, db: AsyncSession) -> User:
    user = await db.get(User, identity.user_uuid)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user


# ─── Register ────────────────────────────────────────────


@router.post("/register", response_model=UserRead, status_code=201)
async def register(body: RegisterRequest, db: AsyncSession = Depends(get_db)):
    """Create a new user account."""
    email = body.email.strip().lower()
    q = select(User).where(User.email == email)
    result = await db.execute(q)
    if result.scalars().first():
        raise HTTPException(status_code=409, detail="Email already registered")

    user = User(
        email=email,
        username=body.username,
        password_hash=hash_password(body.password),
    )
    db.add(user)
    await db.commit()
    return user


# ─── Login ───────────────────────────────────────────────


@router.post("/login", response_model=TokenResponse)
async def login(body: LoginRequest, db: AsyncSession = Depends(get_db)):
    """Login with email and password → JWT tokens."""
    q = select(User).where(User.email == body.email.strip().lower())
    result = await db.execute(q)
    user = result.scalars().first()

    if not user or not verify_password(body.password, user.password_hash):
        raise HTTPException(status_code=401, detail="Invalid credentials")

    return TokenResponse(
        access_token=create_access_token(str(user.id)),
        refresh_token=create_refresh_token(str(user.id)),
    )


# ─── Refresh ────────────────────────────────────────────


@router.post("/refresh", response_model=TokenResponse)
async def refresh(body: RefreshRequest):
    """Exchange a refresh token for a new token pair."""
    try:
        payload = verify_token(body.refresh_token)
    except TokenError as e:
        raise HTTPException(status_code=401, detail=str(e))
    if payload.get("type") != "refresh":
        raise HTTPException(status_code=401, detail="Not a refresh token")

    return TokenResponse(
        access_token=create_access_token(payload["sub"]),
        refresh_token=create_refresh_token(payload["sub"]),
    )


# ─── Current user ───────────────────────────────────────


@router.get("/me", response_model=UserRead)
async def get_me(
    identity: CurrentIdentity = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Get the current authenticated user's info."""
    return await _load_user(identity, db)


@router.patch("/me", response_model=UserRead)
async def update_me(
    body: ProfileUpdate,
    identity: CurrentIdentity = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    hub: RealtimeHub = Depends(get_hub),
):
    """Update username/theme. Other open tabs get profile_updated (and theme_changed)."""
    user = await _load_user(identity, db)

    changes = {}
    for name, value in body.model_dump(exclude_none=True).items():
        if getattr(user, name) != value:
            changes[name] = {"from": getattr(user, name), "to": value}
            setattr(user, name, value)
    if not changes:
        return user

    await db.commit()
    response = UserRead.model_validate(user)

    events = hub.event_service(db)
    await events.broadcast_profile_updated(
        identity.user_id, response.model_dump(mode="json"), changes
    )
    if "theme_preference" in changes:
        await events.broadcast_theme_changed(identity.user_id, user.theme_preference)
    return response

"""Identity-provider sessions.

The hosted identity provider signs session tokens (JWT). A valid token gives
an ``AuthSession`` carrying the user's id and email; routes receive it through
FastAPI dependencies instead of looking it up themselves.
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import Optional
import logging
import time

from fastapi import Depends, HTTPException, Request
from jose import JWTError, jwt
from sqlmodel import Session, select

from spillmate import config
from spillmate.db import get_session
from spillmate.models import Profile, ProfileRole

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuthSession:
    user_id: str
    email: str
    token: str


def decode_session_token(token: str) -> AuthSession:
    try:
        data = jwt.decode(
            token,
            config.AUTH_JWT_SECRET,
            algorithms=[config.AUTH_JWT_ALGO],
            audience=config.AUTH_JWT_AUDIENCE,
        )
    except JWTError as e:
        logger.info("Rejected session token: %s", e)
        raise HTTPException(status_code=401, detail="Invalid token")
    user_id = data.get("sub")
    if not user_id:
        raise HTTPException(status_code=401, detail="Invalid token")
    return AuthSession(user_id=str(user_id), email=data.get("email") or "", token=token)


def get_auth_session(request: Request) -> AuthSession:
    auth = request.headers.get("Authorization", "")
    token = None
    if auth.lower().startswith("bearer "):
        token = auth.split(" ", 1)[1].strip()
    if not token:
        raise HTTPException(status_code=401, detail="Missing token")
    return decode_session_token(token)


def ensure_profile(auth: AuthSession, db: Session) -> Profile:
    """Return the caller's profile, creating a free one on their first session."""
    profile = db.exec(select(Profile).where(Profile.id == auth.user_id)).first()
    if profile:
        return profile
    profile = Profile(id=auth.user_id, email=auth.email, role=ProfileRole.FREE_USER.value)
    db.add(profile)
    db.commit()
    db.refresh(profile)
    logger.info("Created profile for user %s", auth.user_id)
    return profile


def require_admin(auth: AuthSession = Depends(get_auth_session), db: Session = Depends(get_session)) -> Profile:
    profile = db.exec(select(Profile).where(Profile.id == auth.user_id)).first()
    if not profile or profile.role != ProfileRole.ADMIN.value:
        raise HTTPException(status_code=403, detail="Admin privileges required")
    return profile


def create_session_token(user_id: str, email: str, minutes: int = 60, secret: Optional[str] = None) -> str:
    """Mint a token the way the identity provider does (local development and tests)."""
    payload = {
        "sub": user_id,
        "email": email,
        "aud": config.AUTH_JWT_AUDIENCE,
        "exp": int(time.time()) + minutes * 60,
    }
    return jwt.encode(payload, secret or config.AUTH_JWT_SECRET, algorithm=config.AUTH_JWT_ALGO)

"""Authentication helpers and FastAPI security dependency.

This module decodes bearer tokens and exposes `get_current_user`, a
FastAPI dependency that returns an `AuthContext` describing the caller.
The context is created per request and handed explicitly to the
services that need it; nothing about the signed-in user is kept in
module state.

Tokens are HS256 JWTs carrying `user_id` (the identity UID) and
`email`. When a valid token names a user the database has never seen,
the user row is created on the spot (first sign-in).
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Depends, HTTPException, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlmodel import Session

from . import models, repositories
from .config import settings
from .database import get_session

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class AuthContext:
    """Identity of the caller for the duration of one request."""
    uid: str
    email: str
    display_name: str = ""


def create_token(user_id: str, email: str, expire_hours: Optional[int] = None) -> str:
    """Sign a bearer token for `user_id`."""
    hours = settings.JWT_EXPIRE_HOURS if expire_hours is None else expire_hours
    expire = datetime.now(timezone.utc) + timedelta(hours=hours)
    payload = {"user_id": user_id, "email": email, "exp": int(expire.timestamp())}
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def decode_token(token: str):
    """Decode and verify a JWT token.

    Returns the decoded payload on success or raises an HTTPException
    with status 401 on failure.
    """
    try:
        return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail='token expired')
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail='invalid token')


def ensure_user(session: Session, uid: str, email: Optional[str]) -> models.User:
    """Return the user row for `uid`, creating it on first sign-in."""
    repo = repositories.UserRepository(session)
    user = repo.get(uid)
    if user:
        return user
    if not email:
        raise HTTPException(status_code=401, detail='user not found')
    if repo.get_by_email(email):
        raise HTTPException(status_code=409, detail='Email already registered to another account')
    user = models.User(id=uid, email=email, display_name=email.split('@')[0])
    logger.info("creating user record on first sign-in uid=%s", uid)
    return repo.create(user)


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Security(bearer_scheme),
    session: Session = Depends(get_session),
) -> AuthContext:
    """FastAPI dependency that returns the authenticated caller.

    Raises an HTTPException(401) for a missing, expired or malformed
    token.
    """
    if credentials is None or not credentials.credentials:
        raise HTTPException(status_code=401, detail='Missing token')
    payload = decode_token(credentials.credentials)
    uid = payload.get('user_id')
    if not uid:
        raise HTTPException(status_code=401, detail='invalid token payload')
    user = ensure_user(session, uid, payload.get('email'))
    return AuthContext(uid=user.id, email=user.email, display_name=user.display_name)

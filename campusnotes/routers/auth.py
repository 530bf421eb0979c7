"""
Authentication — bearer JWTs shared by the REST API and the socket handshake.

Endpoints:
    POST /auth/refresh   → issue a fresh token for the current user

Accounts are created by the registration workflow; this module only
issues, verifies and resolves tokens.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from campusnotes.config import settings
from campusnotes.database import MAX_ID, get_db
from campusnotes.errors import AuthenticationError
from campusnotes.models.user import User
from campusnotes.realtime.rooms import ConnectionUser, connection_user
from campusnotes.schemas.user import Token

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])

bearer_scheme = HTTPBearer(auto_error=False)


# ═══════════════════════════════════════════════════════════════
#  Helpers
# ═══════════════════════════════════════════════════════════════

def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Create a signed JWT with an expiry claim."""
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def token_for(user_id: int) -> str:
    return create_access_token({"sub": str(user_id)})


def decode_access_token(token: str) -> int:
    """Verify signature and expiry; return the user id from ``sub``."""
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
        user_id = int(payload.get("sub", 0))
    except (JWTError, TypeError, ValueError):
        raise AuthenticationError()
    if not 0 < user_id <= MAX_ID:
        raise AuthenticationError()
    return user_id


async def authenticate_token(db: AsyncSession, token: Optional[str]) -> User:
    """
    Resolve a bearer token to an active user.

    Missing, invalid or expired tokens and unknown or inactive accounts all
    raise the same ``AuthenticationError``.
    """
    if not token:
        raise AuthenticationError()
    user_id = decode_access_token(token)

    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if user is None or not user.is_active:
        logger.warning("Token for unknown or inactive user %s rejected", user_id)
        raise AuthenticationError()
    return user


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: AsyncSession = Depends(get_db),
) -> User:
    """Resolve ``Authorization: Bearer <token>`` or fail with 401."""
    token = credentials.credentials if credentials else None
    return await authenticate_token(db, token)


async def get_connection_user(current_user: User = Depends(get_current_user)) -> ConnectionUser:
    """The same identity snapshot a socket connection carries."""
    return connection_user(current_user)


# ═══════════════════════════════════════════════════════════════
#  Routes
# ═══════════════════════════════════════════════════════════════

@router.post("/refresh", response_model=Token)
async def refresh_token(current_user: User = Depends(get_current_user)):
    """Issue a new token for the authenticated user."""
    return Token(access_token=token_for(current_user.id))

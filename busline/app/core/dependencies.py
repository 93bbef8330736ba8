"""
Authentication dependencies for FastAPI.

This module provides dependencies for protecting routes with JWT
authentication, and the connect-time identity check of the tracking channel.
"""

from typing import Optional
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from busline.app.core.jwt import decode_access_token
from busline.app.core.token_revocation import is_token_revoked, are_user_tokens_revoked
from busline.app.db.session import get_db
from busline.app.models.enums import UserRole
from busline.app.models.user import User
from busline.app.schemas.tracking import ConnectionIdentity

# HTTP Bearer security scheme
security = HTTPBearer()


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: AsyncSession = Depends(get_db)
) -> dict:
    """
    FastAPI dependency for JWT authentication.

    Security checks:
    1. Validates JWT token signature and expiry
    2. Checks if token has been explicitly revoked
    3. Checks if all user tokens have been revoked (user blocked)
    4. Verifies user is still active in database (real-time check)

    Returns:
        Decoded token payload containing user information

    Raises:
        HTTPException: 401 if authentication fails for any reason
    """
    token = credentials.credentials

    # 1. Decode and validate JWT
    payload = decode_access_token(token)
    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user_id = payload.get("user_id")
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload",
            headers={"WWW-Authenticate": "Bearer"},
        )

    # 2. Check if this specific token has been revoked
    if await is_token_revoked(token):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has been revoked",
            headers={"WWW-Authenticate": "Bearer"},
        )

    # 3. Check if all user tokens have been revoked (user was blocked)
    if await are_user_tokens_revoked(user_id):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User access has been revoked",
            headers={"WWW-Authenticate": "Bearer"},
        )

    # 4. Real-time database check: Verify user is still active
    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()

    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is inactive",
        )

    return payload


async def authenticate_socket_token(token: str) -> Optional[ConnectionIdentity]:
    """
    Resolve the identity a tracking connection is bound to.

    Runs checks 1-3 of ``get_current_user``. The relay keeps no database
    session, so the active-user lookup is left to the token lifetime.

    Returns:
        The bound identity, or None if the token must be rejected
    """
    payload = decode_access_token(token)
    if payload is None:
        return None

    user_id = payload.get("user_id")
    role = payload.get("role")
    if not user_id or not role:
        return None

    try:
        user_role = UserRole(role)
    except ValueError:
        return None

    if await is_token_revoked(token) or await are_user_tokens_revoked(user_id):
        return None

    return ConnectionIdentity(
        user_id=str(user_id),
        role=user_role,
        username=payload.get("sub"),
    )

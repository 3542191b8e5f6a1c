"""Cookie-based JWT authentication for FastAPI."""

import os
from datetime import datetime, timedelta

from fastapi import Cookie, Depends, HTTPException, Request, status
from jose import JWTError, jwt
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from salesdesk.models.user import ADMIN_ROLES, UserDB
from salesdesk.services.database import get_db_session

TOKEN_COOKIE = "token"
TOKEN_ALGORITHM = "HS256"
TOKEN_TTL = timedelta(hours=24)


def _jwt_secret() -> str:
    secret = os.getenv("JWT_SECRET")
    if not secret:
        raise RuntimeError("JWT_SECRET environment variable not set")
    return secret


def create_access_token(email: str, role: str) -> str:
    """Sign a session token for a user.

    Args:
        email: User email, stored as the ``userId`` claim
        role: User role claim

    Returns:
        Encoded JWT
    """
    payload = {
        "userId": email,
        "role": role,
        "exp": datetime.utcnow() + TOKEN_TTL,
    }
    return jwt.encode(payload, _jwt_secret(), algorithm=TOKEN_ALGORITHM)


def decode_access_token(token: str) -> dict | None:
    """Decode and verify a session token.

    Returns:
        Token claims, or None when the token is invalid or expired
    """
    try:
        return jwt.decode(token, _jwt_secret(), algorithms=[TOKEN_ALGORITHM])
    except JWTError:
        return None


def is_admin(user: UserDB) -> bool:
    """Whether the user may act on other users' records."""
    return user.role in ADMIN_ROLES


def is_privileged_role(role: str | None) -> bool:
    """Case-insensitive admin check used to exclude staff from headcounts."""
    return (role or "").lower() in ("admin", "superadmin")


async def get_current_user(
    request: Request,
    token: str | None = Cookie(None),
    db: AsyncSession = Depends(get_db_session),
) -> UserDB:
    """FastAPI dependency for getting current authenticated user.

    Args:
        request: Incoming request, annotated with the resolved user id
        token: Session cookie
        db: Database session

    Returns:
        Authenticated user

    Raises:
        HTTPException: 401 if the cookie is missing, invalid, or names an unknown user

    Example:
        @router.get("/protected")
        async def protected_route(user: UserDB = Depends(get_current_user)):
            return {"email": user.email}
    """
    claims = decode_access_token(token) if token else None
    email = claims.get("userId") if claims else None
    if not email:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")

    result = await db.execute(select(UserDB).where(UserDB.email == email))
    user = result.scalar_one_or_none()
    if user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")

    request.state.user_id = user.id
    return user


async def require_admin(user: UserDB = Depends(get_current_user)) -> UserDB:
    """FastAPI dependency restricting a route to admins.

    Raises:
        HTTPException: 403 for non-admin users
    """
    if not is_admin(user):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return user

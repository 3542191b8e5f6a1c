"""Sign-in and logout endpoints.

Sessions are carried in an httpOnly ``token`` cookie holding a signed JWT.
"""

import os
from datetime import datetime

import structlog
from fastapi import APIRouter, Depends, Response, status
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from werkzeug.security import check_password_hash

from salesdesk.api.middleware.auth import TOKEN_COOKIE, TOKEN_TTL, create_access_token
from salesdesk.api.middleware.error_handler import AuthenticationError
from salesdesk.api.middleware.rate_limiter import check_auth_rate_limit
from salesdesk.models.user import UserDB
from salesdesk.services.database import get_db_session

logger = structlog.get_logger()

router = APIRouter(prefix="/api", tags=["auth"])


class SignInRequest(BaseModel):
    """Request schema for signing in."""

    email: str = Field(..., description="Account email")
    password: str = Field(..., description="Account password")


def _secure_cookies() -> bool:
    return os.getenv("ENVIRONMENT") == "production"


@router.post(
    "/signin",
    summary="Sign in",
    description="Verify credentials and set the session cookie",
    status_code=status.HTTP_200_OK,
    dependencies=[Depends(check_auth_rate_limit)],
)
async def signin(
    request: SignInRequest,
    response: Response,
    db: AsyncSession = Depends(get_db_session),
) -> dict:
    """Authenticate a user and issue a session cookie.

    Args:
        request: Email and password
        response: Response used to attach the cookie
        db: Database session

    Returns:
        Login confirmation with the public user fields

    Raises:
        AuthenticationError: If the credentials are wrong or the email is unverified
    """
    result = await db.execute(select(UserDB).where(UserDB.email == request.email))
    user = result.scalar_one_or_none()
    if user is None:
        raise AuthenticationError("Invalid email or password")

    if not user.verified:
        raise AuthenticationError(
            "Email not verified. Please check your email for verification instructions.",
            code="EMAIL_NOT_VERIFIED",
        )

    if not check_password_hash(user.password, request.password):
        logger.info("signin_rejected", user_id=user.id)
        raise AuthenticationError("Invalid email or password")

    token = create_access_token(user.email, user.role)
    response.set_cookie(
        TOKEN_COOKIE,
        token,
        max_age=int(TOKEN_TTL.total_seconds()),
        path="/",
        httponly=True,
        samesite="strict",
        secure=_secure_cookies(),
    )

    logger.info("signin_succeeded", user_id=user.id)

    return {
        "success": True,
        "message": "Login successful",
        "user": {
            "name": user.name,
            "email": user.email,
            "role": user.role,
            "employeeCode": user.employee_code,
        },
        "timestamp": datetime.utcnow().isoformat(),
    }


@router.get(
    "/logout",
    summary="Log out",
    description="Expire the session cookie",
    status_code=status.HTTP_200_OK,
)
async def logout(response: Response) -> dict:
    """Clear the session cookie.

    Returns:
        Logout confirmation
    """
    response.headers["Cache-Control"] = "no-cache"
    response.delete_cookie(
        TOKEN_COOKIE,
        path="/",
        httponly=True,
        samesite="strict",
        secure=_secure_cookies(),
    )
    return {"success": True, "message": "Logged out"}

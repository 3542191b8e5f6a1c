"""Analytics dashboard endpoint."""

from datetime import datetime

import structlog
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from salesdesk.api.middleware.auth import get_current_user
from salesdesk.models.user import UserDB
from salesdesk.services.analytics import AnalyticsService
from salesdesk.services.analytics_cache import analytics_cache
from salesdesk.services.database import get_db_session

logger = structlog.get_logger()

router = APIRouter(prefix="/api/analytics", tags=["analytics"])


@router.get(
    "",
    summary="Analytics dashboard",
    description="Revenue, pipeline, customer and attendance analytics for the caller",
)
async def get_analytics(
    user: UserDB = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> dict:
    """Dashboard analytics, served from the per-user cache when fresh.

    Args:
        user: Authenticated user
        db: Database session

    Returns:
        Dashboard payload

    Raises:
        HTTPException: 500 if the dashboard cannot be assembled
    """
    cached = analytics_cache.get(user.id)
    if cached is not None:
        return cached

    try:
        dashboard = await AnalyticsService(db, user).build_dashboard()
    except Exception as e:
        logger.error("analytics_failed", user_id=user.id, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={
                "error": "Failed to fetch AI-powered analytics",
                "details": str(e),
                "timestamp": datetime.utcnow().isoformat(),
            },
        )

    analytics_cache.set(user.id, dashboard)
    return dashboard

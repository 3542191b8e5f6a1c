"""Report generation endpoint."""

from datetime import datetime

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from salesdesk.api.middleware.auth import get_current_user
from salesdesk.models.user import UserDB
from salesdesk.services.database import get_db_session
from salesdesk.services.reports import ReportsService

logger = structlog.get_logger()

router = APIRouter(prefix="/api/reports", tags=["reports"])

REPORT_GENERATORS = {
    "sales": ReportsService.generate_sales_report,
    "quotation": ReportsService.generate_quotation_report,
    "attendance": ReportsService.generate_attendance_report,
    "pipeline": ReportsService.generate_pipeline_report,
    "forecast": ReportsService.generate_forecast_report,
}


@router.get(
    "",
    summary="Generate report",
    description="Sales, quotation, attendance, pipeline or forecast report for a period",
)
async def generate_report(
    report_type: str | None = Query(None, alias="type"),
    period: str = Query("month"),
    user: UserDB = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> dict:
    """Generate a report for the caller's data.

    Args:
        report_type: ``sales``, ``quotation``, ``attendance``, ``pipeline`` or ``forecast``
        period: ``week``, ``month``, ``quarter`` or ``year``
        user: Authenticated user
        db: Database session

    Returns:
        Report payload with its type and period

    Raises:
        HTTPException: 400 for a missing or unknown type, 500 if generation fails
    """
    if not report_type:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing report type")

    generator = REPORT_GENERATORS.get(report_type)
    if generator is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid report type")

    try:
        data = await generator(ReportsService(db, user), period)
    except RuntimeError as e:
        logger.error("report_failed", report_type=report_type, period=period, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error": "Failed to generate report", "details": str(e)},
        )

    return {
        "success": True,
        "reportType": report_type,
        "period": period,
        "data": data,
        "generatedAt": datetime.utcnow().isoformat(),
    }

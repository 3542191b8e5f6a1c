"""Opportunity scoring endpoints."""

from datetime import datetime

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from salesdesk.api.middleware.auth import get_current_user, is_admin
from salesdesk.models.base import as_dict
from salesdesk.models.crm import ActivityDB, CompanyDB, ContactDB, DailyFollowUpDB, FollowUpStatus, LeadDB
from salesdesk.models.sales import ImmediateSaleDB, ProjectDB
from salesdesk.models.schemas import CamelModel
from salesdesk.models.user import UserDB
from salesdesk.services.attendance_validation import parse_optional_id
from salesdesk.services.database import get_db_session
from salesdesk.services.opportunity_scoring import (
    LEVEL_ORDER,
    OpportunityScoringService,
    ScoringCriteria,
    derive_sale_criteria,
)

logger = structlog.get_logger()

router = APIRouter(prefix="/api/opportunity-scoring", tags=["opportunity-scoring"])

SORT_KEYS = {
    "score": lambda opp: opp["totalScore"],
    "priority": lambda opp: LEVEL_ORDER.get(opp["priority"], 0),
    "risk": lambda opp: LEVEL_ORDER.get(opp["riskLevel"], 0),
}


class ScoreRequest(CamelModel):
    """Request schema for scoring a single opportunity."""

    sale_id: int | str | None = None
    criteria: ScoringCriteria | None = None


async def _owner_context(db: AsyncSession, owner_id: int) -> dict:
    """Relationship signals across the companies a user owns."""
    owned_leads = (
        select(LeadDB.id)
        .join(CompanyDB, CompanyDB.id == LeadDB.company_id)
        .where(CompanyDB.owner_id == owner_id)
    )

    overdue = await db.execute(
        select(func.count(DailyFollowUpDB.id)).where(
            DailyFollowUpDB.lead_id.in_(owned_leads),
            DailyFollowUpDB.status == FollowUpStatus.OVERDUE.value,
        )
    )
    activities = await db.execute(
        select(func.count(ActivityDB.id)).where(ActivityDB.lead_id.in_(owned_leads))
    )
    roles = await db.execute(
        select(ContactDB.role)
        .join(CompanyDB, CompanyDB.id == ContactDB.company_id)
        .where(CompanyDB.owner_id == owner_id)
    )

    return {
        "overdue_follow_ups": overdue.scalar() or 0,
        "total_activities": activities.scalar() or 0,
        "contact_roles": [role for role in roles.scalars().all() if role],
    }


@router.get(
    "",
    summary="Score immediate sales",
    description="Score, sort and filter the caller's immediate sales",
)
async def list_opportunity_scores(
    limit: int = Query(50, ge=1, le=500),
    sort_by: str = Query("score", alias="sortBy"),
    priority: str | None = Query(None),
    user: UserDB = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> dict:
    """Score immediate sales and summarise the portfolio.

    Args:
        limit: Maximum sales scored, newest first
        sort_by: ``score``, ``priority`` or ``risk``
        priority: Optional priority filter
        user: Authenticated user
        db: Database session

    Returns:
        Scored opportunities, portfolio metrics and counts
    """
    try:
        query = (
            select(ImmediateSaleDB, ProjectDB.name, ProjectDB.competitors)
            .outerjoin(ProjectDB, ProjectDB.id == ImmediateSaleDB.project_id)
            .order_by(ImmediateSaleDB.created_at.desc())
            .limit(limit)
        )
        if not is_admin(user):
            query = query.where(ImmediateSaleDB.owner_id == user.id)
        rows = (await db.execute(query)).all()

        now = datetime.utcnow()
        contexts: dict[int, dict] = {}
        scored = []
        for sale, project_name, competitors in rows:
            if sale.owner_id not in contexts:
                contexts[sale.owner_id] = await _owner_context(db, sale.owner_id)
            context = contexts[sale.owner_id]

            days_in_pipeline = (now - sale.quotation_date).days if sale.quotation_date else 0
            criteria = derive_sale_criteria(
                sale.status,
                sale.value_of_order,
                days_in_pipeline,
                competitors,
                context["overdue_follow_ups"],
                context["total_activities"],
                context["contact_roles"],
            )
            score = OpportunityScoringService.calculate_opportunity_score(criteria)
            score.id = str(sale.id)
            score.name = project_name or f"Project Sale {sale.id}"
            scored.append(score)

        sale_data = {str(sale.id): as_dict(sale) for sale, _, _ in rows}
        opportunities = [
            {**score.to_api(), "saleData": sale_data[score.id]} for score in scored
        ]
        opportunities.sort(key=SORT_KEYS.get(sort_by, SORT_KEYS["score"]), reverse=True)

        if priority:
            opportunities = [opp for opp in opportunities if opp["priority"] == priority]

        portfolio = OpportunityScoringService.calculate_portfolio_metrics(scored)

        return {
            "opportunities": opportunities,
            "portfolioMetrics": portfolio.to_api(),
            "totalCount": len(rows),
            "filteredCount": len(opportunities),
        }

    except Exception as e:
        logger.error("opportunity_scoring_failed", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error": "Failed to calculate opportunity scores", "details": str(e)},
        )


@router.post(
    "",
    summary="Score one opportunity",
    description="Score ad-hoc criteria, optionally tied to an immediate sale",
)
async def score_opportunity(
    request: ScoreRequest,
    user: UserDB = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> dict:
    """Score a single opportunity from explicit criteria.

    Args:
        request: Criteria and an optional sale id
        user: Authenticated user
        db: Database session

    Returns:
        The score with the sale id echoed back

    Raises:
        HTTPException: 400 without criteria, 404 for an unknown sale, 403 for
            another user's sale
    """
    if request.criteria is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Scoring criteria is required")

    if request.sale_id:
        sale = await db.get(ImmediateSaleDB, parse_optional_id(request.sale_id) or 0)
        if sale is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Sale not found")
        if not is_admin(user) and sale.owner_id != user.id:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")

    try:
        score = OpportunityScoringService.calculate_opportunity_score(request.criteria)
    except Exception as e:
        logger.error("opportunity_score_failed", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error": "Failed to calculate opportunity score", "details": str(e)},
        )

    return {"success": True, "score": {**score.to_api(), "saleId": request.sale_id}}

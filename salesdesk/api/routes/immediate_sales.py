"""Immediate sale endpoints with value categorisation and urgency."""

import math
from datetime import datetime

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from salesdesk.api.middleware.auth import get_current_user, is_admin
from salesdesk.models.base import as_dict
from salesdesk.models.crm import UrgencyLevel
from salesdesk.models.sales import ImmediateSaleDB, ImmediateSaleStatus
from salesdesk.models.schemas import CamelModel
from salesdesk.models.user import UserDB
from salesdesk.services.attendance_validation import parse_optional_id
from salesdesk.services.database import get_db_session
from salesdesk.services.deadline_management import (
    SECONDS_PER_DAY,
    calculate_conversion_probability,
    calculate_urgency_level,
    categorize_by_value,
)

logger = structlog.get_logger()

router = APIRouter(prefix="/api/immediate-sales", tags=["immediate-sales"])

SALE_STATUSES = frozenset(member.value for member in ImmediateSaleStatus)
DEAL_CATEGORIES = ("ENTERPRISE", "LARGE", "MEDIUM", "SMALL", "MICRO")
RECENT_QUOTE_DAYS = 30
UPDATABLE_FIELDS = ("project_id", "contractor", "size_class", "km", "mt", "value_of_order", "quotation_date", "pic")


class ImmediateSaleCreate(CamelModel):
    """Request schema for creating an immediate sale."""

    project_id: int | str | None = None
    contractor: str | None = None
    size_class: str | None = None
    km: float | None = None
    mt: float | None = None
    value_of_order: float | None = None
    quotation_date: datetime | None = None
    status: str = ImmediateSaleStatus.BIDDING.value
    pic: str | None = None


class ImmediateSaleUpdate(CamelModel):
    """Request schema for updating an immediate sale."""

    id: int | str | None = None
    project_id: int | str | None = None
    contractor: str | None = None
    size_class: str | None = None
    km: float | None = None
    mt: float | None = None
    value_of_order: float | None = None
    quotation_date: datetime | None = None
    status: str | None = None
    pic: str | None = None


def _naive_utc(moment: datetime | None) -> datetime | None:
    if moment is None or moment.tzinfo is None:
        return moment
    return moment.replace(tzinfo=None) - moment.utcoffset()


def categorize_sale(value: float | None) -> tuple[str, str]:
    """Deal category and urgency of an order value.

    Immediate sales carry no deadline. Unvalued sales count as SMALL.
    """
    category = categorize_by_value(value) if value else "SMALL"
    return category, calculate_urgency_level(value or 0, None, category).value


def sale_insights(category: str, urgency: str) -> dict:
    if urgency == UrgencyLevel.CRITICAL.value or category == "ENTERPRISE":
        priority = "HIGH"
    elif category == "LARGE":
        priority = "MEDIUM"
    else:
        priority = "LOW"

    if urgency == UrgencyLevel.CRITICAL.value:
        recommendation = "URGENT: Schedule immediate follow-up"
    elif category == "ENTERPRISE":
        recommendation = "High-value enterprise deal - prioritize"
    else:
        recommendation = "Monitor and follow up regularly"
    return {"priority": priority, "recommendation": recommendation}


def _sale_payload(sale: ImmediateSaleDB, owner: UserDB | None, now: datetime) -> dict:
    category, urgency = categorize_sale(sale.value_of_order)
    days_since_quote = (
        max(0, math.floor((now - sale.quotation_date).total_seconds() / SECONDS_PER_DAY))
        if sale.quotation_date
        else 0
    )
    payload = as_dict(sale)
    payload.update(
        {
            "dealCategory": category,
            "urgencyLevel": urgency,
            "daysSinceQuote": days_since_quote,
            "isRecent": days_since_quote <= RECENT_QUOTE_DAYS,
            "conversionProbability": calculate_conversion_probability(
                category, days_since_quote, 0, days_since_quote, urgency
            ),
            "insights": sale_insights(category, urgency),
            "users": (
                {"name": owner.name, "email": owner.email, "employeeCode": owner.employee_code}
                if owner
                else None
            ),
        }
    )
    return payload


def _is_high_priority(sale: dict) -> bool:
    return sale["urgencyLevel"] == UrgencyLevel.CRITICAL.value or sale["dealCategory"] == "ENTERPRISE"


@router.get(
    "",
    summary="List immediate sales",
    description="Immediate sales with deal category, urgency and conversion probability",
)
async def list_immediate_sales(
    status_filter: str | None = Query(None, alias="status"),
    project_id: int | None = Query(None, alias="projectId"),
    owner_id: int | None = Query(None, alias="ownerId"),
    user: UserDB = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> dict:
    """List immediate sales newest first with analytics.

    Non-admins only see their own sales.

    Args:
        status_filter: Optional status filter
        project_id: Project filter
        owner_id: Owner filter
        user: Authenticated user
        db: Database session

    Returns:
        Sales, analytics and insights
    """
    query = (
        select(ImmediateSaleDB, UserDB)
        .outerjoin(UserDB, UserDB.id == ImmediateSaleDB.owner_id)
        .order_by(ImmediateSaleDB.created_at.desc())
    )
    if not is_admin(user):
        query = query.where(ImmediateSaleDB.owner_id == user.id)
    if owner_id is not None:
        query = query.where(ImmediateSaleDB.owner_id == owner_id)
    if status_filter:
        query = query.where(ImmediateSaleDB.status == status_filter)
    if project_id is not None:
        query = query.where(ImmediateSaleDB.project_id == project_id)

    try:
        rows = (await db.execute(query)).all()
    except Exception as e:
        logger.error("immediate_sale_query_failed", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error": "Failed to fetch immediate sales", "details": str(e)},
        )

    now = datetime.utcnow()
    sales = [_sale_payload(sale, owner, now) for sale, owner in rows]

    count = len(sales)
    total_value = sum(sale["valueOfOrder"] or 0 for sale in sales)
    analytics = {
        "totalValue": total_value,
        "totalKm": sum(sale["km"] or 0 for sale in sales),
        "totalMt": sum(sale["mt"] or 0 for sale in sales),
        "count": count,
        "byCategory": {
            category.lower(): sum(1 for sale in sales if sale["dealCategory"] == category)
            for category in DEAL_CATEGORIES
        },
        "byStatus": {
            member.value.lower(): sum(1 for sale in sales if sale["status"] == member.value)
            for member in ImmediateSaleStatus
        },
        "averageValue": total_value / count if count else 0,
        "recentCount": sum(1 for sale in sales if sale["isRecent"]),
        "highPriorityCount": sum(1 for sale in sales if _is_high_priority(sale)),
    }

    recommendations = []
    if analytics["highPriorityCount"] > 0:
        recommendations.append(
            f"{analytics['highPriorityCount']} high-priority deals need immediate attention"
        )
    if analytics["recentCount"] > 0:
        recommendations.append(f"{analytics['recentCount']} recent quotations to follow up")
    if analytics["byStatus"]["bidding"] > 3:
        recommendations.append("Multiple deals in bidding phase - focus on conversion")

    return {
        "immediateSales": sales,
        "analytics": analytics,
        "insights": {
            "topPriority": analytics["highPriorityCount"],
            "recentActivity": analytics["recentCount"],
            "conversionPotential": (
                sum(sale["conversionProbability"] for sale in sales) / count if count else 0
            ),
            "recommendations": recommendations,
        },
    }


@router.post(
    "",
    summary="Create immediate sale",
    description="Create an immediate sale categorised by its order value",
    status_code=status.HTTP_201_CREATED,
)
async def create_immediate_sale(
    request: ImmediateSaleCreate,
    user: UserDB = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> dict:
    """Create an immediate sale owned by the caller.

    Args:
        request: Sale fields
        user: Authenticated user
        db: Database session

    Returns:
        Created sale with its category, urgency and insights

    Raises:
        HTTPException: 400 without an order value or with an unknown status
    """
    if not request.value_of_order:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Order value is required")
    if request.status not in SALE_STATUSES:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid status")

    category, urgency = categorize_sale(request.value_of_order)
    sale = ImmediateSaleDB(
        project_id=parse_optional_id(request.project_id),
        owner_id=user.id,
        contractor=request.contractor,
        size_class=request.size_class,
        km=request.km,
        mt=request.mt,
        value_of_order=request.value_of_order,
        quotation_date=_naive_utc(request.quotation_date),
        status=request.status,
        pic=request.pic,
        deal_category=category,
        urgency_level=urgency,
    )
    db.add(sale)
    await db.flush()
    await db.refresh(sale)

    logger.info("immediate_sale_created", sale_id=sale.id, user_id=user.id, deal_category=category)

    return {
        "success": True,
        "immediateSale": {**as_dict(sale), "insights": sale_insights(category, urgency)},
        "analytics": {"dealCategory": category, "urgencyLevel": urgency},
        "message": "Smart immediate sale created with AI categorization",
    }


@router.put(
    "",
    summary="Update immediate sale",
    description="Update an immediate sale and recompute its category and urgency",
)
async def update_immediate_sale(
    request: ImmediateSaleUpdate,
    user: UserDB = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> dict:
    """Update a sale the caller owns (or any, for admins).

    Args:
        request: Sale id and the fields to change
        user: Authenticated user
        db: Database session

    Returns:
        Updated sale

    Raises:
        HTTPException: 400 without an id or with an unknown status, 404 if
            missing, 403 for another user's sale
    """
    if not request.id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Immediate sale ID is required")
    if request.status is not None and request.status not in SALE_STATUSES:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid status")

    sale_id = parse_optional_id(request.id)
    sale = await db.get(ImmediateSaleDB, sale_id) if sale_id else None
    if sale is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Immediate sale not found")
    if not is_admin(user) and sale.owner_id != user.id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")

    provided = request.model_fields_set
    for field in UPDATABLE_FIELDS:
        if field not in provided:
            continue
        value = getattr(request, field)
        if field == "project_id":
            value = parse_optional_id(value)
        elif field == "quotation_date":
            value = _naive_utc(value)
        setattr(sale, field, value)
    if request.status:
        sale.status = request.status

    category, urgency = categorize_sale(sale.value_of_order)
    sale.deal_category = category
    sale.urgency_level = urgency
    sale.updated_at = datetime.utcnow()
    await db.flush()

    logger.info("immediate_sale_updated", sale_id=sale.id, user_id=user.id, status=sale.status)

    return {
        "success": True,
        "immediateSale": {**as_dict(sale), "insights": sale_insights(category, urgency)},
        "message": "Immediate sale updated successfully",
    }

"""Daily follow-up endpoints with effectiveness scoring and analytics."""

import math
from datetime import datetime

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from salesdesk.api.middleware.auth import get_current_user, is_admin
from salesdesk.models.base import as_dict
from salesdesk.models.crm import (
    DailyFollowUpDB,
    FollowUpActionType,
    FollowUpStatus,
    LeadDB,
    OpportunityDB,
    ResponseQuality,
    UrgencyLevel,
)
from salesdesk.models.schemas import CamelModel
from salesdesk.models.user import UserDB
from salesdesk.services.attendance_validation import parse_optional_id, to_ist, today_ist
from salesdesk.services.database import get_db_session
from salesdesk.services.deadline_management import SECONDS_PER_DAY, DeadlineManagementEngine
from salesdesk.services.follow_up_effectiveness import (
    DEFAULT_COMPLETION_MINUTES,
    calculate_follow_up_effectiveness,
    contact_time_label,
    generate_next_action_recommendations,
    optimal_notification_time,
)
from salesdesk.services.weighted_pipeline import resolve_period_start

logger = structlog.get_logger()

router = APIRouter(prefix="/api/daily-followups", tags=["daily-followups"])

FOLLOW_UP_TIMEZONE = "Asia/Kolkata"
FOLLOW_UP_PERIODS = ("week", "month", "year")
FOLLOW_UP_STATUSES = frozenset(member.value for member in FollowUpStatus)
QUALITY_GRADES = frozenset(member.value for member in ResponseQuality)
URGENCY_LEVELS = frozenset(member.value for member in UrgencyLevel)
ESTIMATED_EFFECTIVENESS = 75


class FollowUpCreate(CamelModel):
    """Request schema for scheduling a follow-up."""

    assigned_to: str | None = None
    action_type: str | None = None
    action_description: str | None = None
    follow_up_date: datetime | None = None
    notes: str | None = None
    timezone: str | None = None
    link_type: str | None = None
    lead_id: int | str | None = None
    opportunity_id: int | str | None = None
    project_id: int | str | None = None
    immediate_sale_id: int | str | None = None
    company_id: int | str | None = None
    priority: str | None = None
    urgency_level: str | None = None


class FollowUpUpdate(CamelModel):
    """Request schema for updating a follow-up."""

    status: str | None = None
    notes: str | None = None
    response_received: bool | None = None
    response_quality: str | None = None
    completion_quality: str | None = None
    next_action_date: datetime | None = None
    next_action_notes: str | None = None
    overdue_reason: str | None = None


def _naive_utc(moment: datetime | None) -> datetime | None:
    if moment is None or moment.tzinfo is None:
        return moment
    return moment.replace(tzinfo=None) - moment.utcoffset()


def _urgency(value: str | None) -> str:
    urgency = value.upper() if isinstance(value, str) else ""
    return urgency if urgency in URGENCY_LEVELS else UrgencyLevel.MEDIUM.value


def _effectiveness_label(score: float | None, unrated: str) -> str:
    return f"{round(score)}% effective" if score else unrated


def _enrich(
    follow_up: DailyFollowUpDB,
    creator: UserDB | None,
    lead_name: str | None,
    opportunity_name: str | None,
    now: datetime,
    contact_slot: datetime,
) -> dict:
    follow_up_date = follow_up.follow_up_date
    seconds_ahead = (follow_up_date - now).total_seconds()
    is_overdue = follow_up.status == FollowUpStatus.SCHEDULED.value and follow_up_date < now
    is_today = to_ist(follow_up_date).date() == today_ist(now)
    days_until = math.ceil(seconds_ahead / SECONDS_PER_DAY)
    days_overdue = math.ceil(-seconds_ahead / SECONDS_PER_DAY) if is_overdue else 0

    if follow_up.urgency_level:
        priority = follow_up.urgency_level
    elif is_overdue:
        priority = UrgencyLevel.CRITICAL.value
    elif is_today:
        priority = UrgencyLevel.HIGH.value
    elif days_until <= 1:
        priority = UrgencyLevel.MEDIUM.value
    else:
        priority = UrgencyLevel.LOW.value

    effectiveness = follow_up.effectiveness_score
    if follow_up.status == FollowUpStatus.COMPLETED.value and not effectiveness:
        effectiveness = calculate_follow_up_effectiveness(
            bool(follow_up.response_received),
            follow_up.response_quality or ResponseQuality.GOOD.value,
            DEFAULT_COMPLETION_MINUTES,
            follow_up.action_type,
            0,
        )

    recommendations = generate_next_action_recommendations(
        follow_up.status,
        days_until,
        1,
        0,
        UrgencyLevel.CRITICAL.value if is_overdue else UrgencyLevel.MEDIUM.value,
    )

    if follow_up.opportunity_id:
        linked_type = "OPPORTUNITY"
        linked_name = opportunity_name or f"Opportunity #{follow_up.opportunity_id}"
    elif follow_up.lead_id:
        linked_type = "LEAD"
        linked_name = lead_name or f"Lead #{follow_up.lead_id}"
    else:
        linked_type, linked_name = "NONE", None

    payload = as_dict(follow_up)
    payload.update(
        {
            "nextActionDate": follow_up.next_action_date or follow_up_date,
            "isOverdue": is_overdue,
            "isToday": is_today,
            "daysOverdue": days_overdue,
            "daysUntilFollowUp": days_until,
            "priority": priority,
            "recommendations": recommendations,
            "optimalNotificationTime": contact_slot,
            "smartInsights": {
                "timingOptimization": f"Best time to contact: {contact_time_label(contact_slot)}",
                "effectiveness": _effectiveness_label(effectiveness, "Not rated yet"),
                "riskLevel": "HIGH" if is_overdue else "MEDIUM" if days_until <= 1 else "LOW",
            },
            "users": (
                {"name": creator.name, "email": creator.email, "employeeCode": creator.employee_code}
                if creator
                else None
            ),
            "linkedType": linked_type,
            "linkedName": linked_name,
            "linkedOpportunityId": follow_up.opportunity_id,
            "linkedLeadId": follow_up.lead_id,
        }
    )
    return payload


def _follow_up_analytics(follow_ups: list[dict]) -> dict:
    total = len(follow_ups)
    completed = sum(1 for f in follow_ups if f["status"] == FollowUpStatus.COMPLETED.value)
    scored = [f["effectivenessScore"] for f in follow_ups if f["effectivenessScore"]]
    by_status = {
        member.value: sum(1 for f in follow_ups if f["status"] == member.value) for member in FollowUpStatus
    }
    by_status[FollowUpStatus.OVERDUE.value] = sum(1 for f in follow_ups if f["isOverdue"])
    return {
        "total": total,
        "completed": completed,
        "scheduled": by_status[FollowUpStatus.SCHEDULED.value],
        "overdue": by_status[FollowUpStatus.OVERDUE.value],
        "today": sum(1 for f in follow_ups if f["isToday"]),
        "completionRate": completed / total * 100 if total else 0,
        "averageEffectiveness": sum(scored) / len(scored) if scored else 0,
        "byType": {
            member.value: sum(1 for f in follow_ups if f["actionType"] == member.value)
            for member in FollowUpActionType
        },
        "byStatus": by_status,
    }


def _follow_up_insights(analytics: dict) -> dict:
    recommendations = []
    if analytics["overdue"] > 0:
        recommendations.append(
            f"{analytics['overdue']} follow-ups are overdue - immediate attention required"
        )
    if analytics["today"] > 0:
        recommendations.append(f"{analytics['today']} follow-ups scheduled for today")
    if analytics["completionRate"] < 70:
        recommendations.append("Follow-up completion rate needs improvement")
    return {
        "urgentActions": analytics["overdue"] + analytics["today"],
        "completionRate": f"{analytics['completionRate']:.1f}%",
        "mostEffectiveType": max(analytics["byType"], key=analytics["byType"].get),
        "recommendations": recommendations,
    }


async def _sync_next_follow_up(
    db: AsyncSession, follow_up_id: int | None, lead_id: int | None, opportunity_id: int | None, moment: datetime
) -> None:
    """Copy a follow-up date onto the linked lead and opportunity."""
    try:
        async with db.begin_nested():
            if lead_id:
                lead = await db.get(LeadDB, lead_id)
                if lead is not None:
                    lead.next_follow_up_date = moment
            if opportunity_id:
                opportunity = await db.get(OpportunityDB, opportunity_id)
                if opportunity is not None:
                    opportunity.next_followup_date = moment
    except Exception as e:
        logger.warning("follow_up_link_sync_failed", follow_up_id=follow_up_id, error=str(e))


@router.get(
    "",
    summary="List daily follow-ups",
    description="Follow-ups enriched with priority, effectiveness and recommendations",
)
async def list_follow_ups(
    status_filter: str | None = Query(None, alias="status"),
    assigned_to: str | None = Query(None, alias="assignedTo"),
    show_overdue: bool = Query(False, alias="showOverdue"),
    user_id: int | None = Query(None, alias="userId"),
    lead_id: int | None = Query(None, alias="leadId"),
    opportunity_id: int | None = Query(None, alias="opportunityId"),
    company_id: int | None = Query(None, alias="companyId"),
    period: str | None = Query(None),
    require_acknowledgement: bool = Query(False, alias="requireAcknowledgement"),
    user: UserDB = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> dict:
    """List follow-ups newest first with analytics and insights.

    Non-admins only see follow-ups they created; ``userId`` is honoured for
    admins only. ``requireAcknowledgement`` keeps overdue follow-ups that
    nobody has explained yet.

    Args:
        status_filter: Status filter, ``all`` for every status
        assigned_to: Assignee filter
        show_overdue: Only return overdue follow-ups
        user_id: Creator filter for admins
        lead_id: Linked lead filter
        opportunity_id: Linked opportunity filter
        company_id: Company filter
        period: ``week``, ``month`` or ``year`` of follow-up dates
        require_acknowledgement: Only unacknowledged overdue follow-ups
        user: Authenticated user
        db: Database session

    Returns:
        Follow-ups, analytics and insights
    """
    now = datetime.utcnow()
    query = (
        select(
            DailyFollowUpDB,
            UserDB,
            LeadDB.name.label("lead_name"),
            OpportunityDB.name.label("opportunity_name"),
        )
        .outerjoin(UserDB, UserDB.id == DailyFollowUpDB.created_by_id)
        .outerjoin(LeadDB, LeadDB.id == DailyFollowUpDB.lead_id)
        .outerjoin(OpportunityDB, OpportunityDB.id == DailyFollowUpDB.opportunity_id)
        .order_by(DailyFollowUpDB.created_at.desc())
    )
    if not is_admin(user):
        query = query.where(DailyFollowUpDB.created_by_id == user.id)
    elif user_id is not None:
        query = query.where(DailyFollowUpDB.created_by_id == user_id)
    if lead_id is not None:
        query = query.where(DailyFollowUpDB.lead_id == lead_id)
    if opportunity_id is not None:
        query = query.where(DailyFollowUpDB.opportunity_id == opportunity_id)
    if company_id is not None:
        query = query.where(DailyFollowUpDB.company_id == company_id)
    if period in FOLLOW_UP_PERIODS:
        query = query.where(DailyFollowUpDB.follow_up_date >= resolve_period_start(period, now))
    if status_filter and status_filter != "all":
        query = query.where(DailyFollowUpDB.status == status_filter)
    if assigned_to:
        query = query.where(DailyFollowUpDB.assigned_to == assigned_to)

    try:
        rows = (await db.execute(query)).all()
    except Exception as e:
        logger.error("follow_up_query_failed", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error": "Failed to fetch daily follow-ups", "details": str(e)},
        )

    contact_slot = optimal_notification_time(now)
    follow_ups = [
        _enrich(follow_up, creator, lead_name, opportunity_name, now, contact_slot)
        for follow_up, creator, lead_name, opportunity_name in rows
    ]

    if show_overdue:
        follow_ups = [f for f in follow_ups if f["isOverdue"]]
    if require_acknowledgement:
        follow_ups = [f for f in follow_ups if f["isOverdue"] and not f["overdueAcknowledgedAt"]]

    analytics = _follow_up_analytics(follow_ups)
    return {"dailyFollowUps": follow_ups, "analytics": analytics, "insights": _follow_up_insights(analytics)}


@router.post(
    "",
    summary="Schedule follow-up",
    description="Schedule a follow-up, optionally linked to a lead or opportunity",
    status_code=status.HTTP_201_CREATED,
)
async def create_follow_up(
    request: FollowUpCreate,
    user: UserDB = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> dict:
    """Schedule a follow-up.

    Linked leads and opportunities must belong to the caller unless the caller
    is an admin; their next follow-up date is moved to the new follow-up.

    Args:
        request: Follow-up fields
        user: Authenticated user
        db: Database session

    Returns:
        Created follow-up with its suggested contact time

    Raises:
        HTTPException: 400 for missing fields or an inaccessible link
    """
    if not (
        request.assigned_to and request.action_type and request.action_description and request.follow_up_date
    ):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing required fields")

    lead_id = parse_optional_id(request.lead_id) if request.link_type == "LEAD" else None
    opportunity_id = parse_optional_id(request.opportunity_id) if request.link_type == "OPPORTUNITY" else None

    if lead_id:
        lead_query = select(LeadDB.id).where(LeadDB.id == lead_id)
        if not is_admin(user):
            lead_query = lead_query.where(LeadDB.owner_id == user.id)
        if (await db.execute(lead_query)).scalar_one_or_none() is None:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST, detail="Lead not found or access denied"
            )
    if opportunity_id:
        opportunity_query = select(OpportunityDB.id).where(OpportunityDB.id == opportunity_id)
        if not is_admin(user):
            opportunity_query = opportunity_query.where(OpportunityDB.owner_id == user.id)
        if (await db.execute(opportunity_query)).scalar_one_or_none() is None:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST, detail="Opportunity not found or access denied"
            )

    follow_up_date = _naive_utc(request.follow_up_date)
    urgency = _urgency(request.priority or request.urgency_level)
    follow_up = DailyFollowUpDB(
        assigned_to=request.assigned_to,
        action_type=request.action_type,
        action_description=request.action_description,
        status=FollowUpStatus.SCHEDULED.value,
        follow_up_date=follow_up_date,
        notes=request.notes,
        timezone=request.timezone or FOLLOW_UP_TIMEZONE,
        urgency_level=urgency,
        response_received=False,
        created_by_id=user.id,
        lead_id=lead_id,
        opportunity_id=opportunity_id,
        project_id=parse_optional_id(request.project_id),
        immediate_sale_id=parse_optional_id(request.immediate_sale_id),
        company_id=parse_optional_id(request.company_id),
    )
    db.add(follow_up)
    await db.flush()
    await db.refresh(follow_up)

    await _sync_next_follow_up(db, follow_up.id, lead_id, opportunity_id, follow_up_date)

    contact_slot = optimal_notification_time()
    logger.info("follow_up_scheduled", follow_up_id=follow_up.id, user_id=user.id, urgency=urgency)

    return {
        "success": True,
        "followUp": {
            **as_dict(follow_up),
            "optimalNotificationTime": contact_slot,
            "smartRecommendations": [
                f"Optimal contact time: {contact_time_label(contact_slot)}",
                "Send reminder 24 hours before follow-up",
                "Prepare all necessary documents in advance",
            ],
        },
        "analytics": {
            "notificationTiming": contact_slot,
            "priority": urgency,
            "estimatedEffectiveness": ESTIMATED_EFFECTIVENESS,
        },
        "message": "Smart follow-up scheduled with optimal timing",
    }


@router.put(
    "",
    summary="Update follow-up",
    description="Update a follow-up and score its effectiveness on completion",
)
async def update_follow_up(
    request: FollowUpUpdate,
    follow_up_id: str | None = Query(None, alias="id"),
    user: UserDB = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> dict:
    """Update a follow-up the caller created (or any, for admins).

    Completing a follow-up that has no score yet records its effectiveness.
    A non-blank ``overdueReason`` acknowledges the overdue follow-up; a blank
    one clears the acknowledgement. A new next action date is copied onto the
    linked lead and opportunity.

    Args:
        request: Fields to change
        follow_up_id: Follow-up identifier (``?id=``)
        user: Authenticated user
        db: Database session

    Returns:
        Effectiveness score, next-step recommendations and the follow-up

    Raises:
        HTTPException: 400 without an id or with an unknown status or quality
            grade, 404 if missing, 403 for another user's follow-up
    """
    if not follow_up_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Follow-up ID is required")
    if request.status is not None and request.status not in FOLLOW_UP_STATUSES:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid status")
    for grade in (request.response_quality, request.completion_quality):
        if grade is not None and grade not in QUALITY_GRADES:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid quality grade")

    parsed_id = parse_optional_id(follow_up_id)
    follow_up = await db.get(DailyFollowUpDB, parsed_id) if parsed_id else None
    if follow_up is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Follow-up not found")
    if not is_admin(user) and follow_up.created_by_id != user.id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")

    provided = request.model_fields_set
    now = datetime.utcnow()
    effective_status = request.status or follow_up.status

    for field in ("notes", "response_received", "response_quality", "completion_quality", "next_action_notes"):
        if field in provided:
            setattr(follow_up, field, getattr(request, field))
    if request.status:
        follow_up.status = request.status

    next_action_date = _naive_utc(request.next_action_date)
    if "next_action_date" in provided:
        follow_up.next_action_date = next_action_date

    if "overdue_reason" in provided:
        follow_up.overdue_reason = request.overdue_reason
        if (request.overdue_reason or "").strip():
            follow_up.overdue_acknowledged_at = now
            follow_up.overdue_acknowledged_by = user.id
        else:
            follow_up.overdue_acknowledged_at = None
            follow_up.overdue_acknowledged_by = None

    if effective_status == FollowUpStatus.COMPLETED.value and not follow_up.effectiveness_score:
        follow_up.effectiveness_score = calculate_follow_up_effectiveness(
            bool(follow_up.response_received),
            follow_up.response_quality or ResponseQuality.GOOD.value,
            DEFAULT_COMPLETION_MINUTES,
            follow_up.action_type,
            0,
        )

    follow_up.updated_at = now
    await db.flush()

    if next_action_date:
        await _sync_next_follow_up(db, follow_up.id, follow_up.lead_id, follow_up.opportunity_id, next_action_date)

    recommendations = generate_next_action_recommendations(
        effective_status,
        DeadlineManagementEngine.calculate_days_to_deadline(next_action_date, now) if next_action_date else 0,
        1,
        0,
        UrgencyLevel.LOW.value if effective_status == FollowUpStatus.COMPLETED.value else UrgencyLevel.MEDIUM.value,
    )

    logger.info(
        "follow_up_updated",
        follow_up_id=follow_up.id,
        status=effective_status,
        effectiveness=follow_up.effectiveness_score,
    )

    return {
        "success": True,
        "followUp": as_dict(follow_up),
        "effectivenessScore": follow_up.effectiveness_score,
        "recommendations": recommendations,
        "analytics": {
            "status": effective_status,
            "effectiveness": _effectiveness_label(follow_up.effectiveness_score, "Not rated"),
            "nextAction": next_action_date.isoformat() if next_action_date else "No follow-up needed",
        },
        "message": "Follow-up updated with smart effectiveness scoring",
    }

"""Pending quotation endpoints with deadline tracking."""

from datetime import datetime, timedelta

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from salesdesk.api.middleware.auth import get_current_user, is_admin
from salesdesk.models.base import as_dict
from salesdesk.models.crm import (
    DailyFollowUpDB,
    FollowUpActionType,
    FollowUpStatus,
    OpportunityDB,
    UrgencyLevel,
)
from salesdesk.models.sales import PendingQuotationDB, QuotationStatus
from salesdesk.models.schemas import CamelModel
from salesdesk.models.user import UserDB
from salesdesk.services.attendance_validation import parse_optional_id
from salesdesk.services.database import get_db_session
from salesdesk.services.deadline_management import assess_quotation

logger = structlog.get_logger()

router = APIRouter(prefix="/api/pending-quotations", tags=["pending-quotations"])

FOLLOW_UP_TIMEZONE = "Asia/Kolkata"
QUOTATION_STATUSES = frozenset(member.value for member in QuotationStatus)
TERMINAL_STATUSES = frozenset({"ACCEPTED", "REJECTED", "EXPIRED"})
FREEZE_STAGES = frozenset({QuotationStatus.PENDING.value, QuotationStatus.REQUOTATION.value})
FROZEN_REASON = "Pending quotation in progress"
UPDATABLE_FIELDS = ("status", "notes", "contact_person", "contact_email", "quotation_document", "order_value")


class QuotationCreate(CamelModel):
    """Request schema for creating a pending quotation."""

    project_or_client_name: str | None = None
    quotation_pending_since: datetime | None = None
    quotation_deadline: datetime | None = None
    order_value: float | None = None
    total_qty: float | None = None
    contact_person: str | None = None
    contact_email: str | None = None
    quotation_document: str | None = None
    status: str = QuotationStatus.PENDING.value
    notes: str | None = None
    opportunity_id: int | str | None = None
    company_id: int | str | None = None


class QuotationUpdate(CamelModel):
    """Request schema for updating a pending quotation."""

    id: int | str | None = None
    status: str | None = None
    notes: str | None = None
    contact_person: str | None = None
    contact_email: str | None = None
    quotation_document: str | None = None
    order_value: float | None = None


class StageUpdate(CamelModel):
    """Request schema for moving a quotation to another stage."""

    stage: str | None = None
    new_quotation_document: str | None = None
    notes: str | None = None


def _naive_utc(moment: datetime | None) -> datetime | None:
    if moment is None or moment.tzinfo is None:
        return moment
    return moment.replace(tzinfo=None) - moment.utcoffset()


def _quotation_payload(quotation: PendingQuotationDB, creator: UserDB | None) -> dict:
    payload = as_dict(quotation)
    payload["user"] = (
        {"name": creator.name, "email": creator.email, "employeeCode": creator.employee_code}
        if creator
        else None
    )
    return payload


async def _load_for_update(db: AsyncSession, quotation_id: int | None, user: UserDB) -> PendingQuotationDB:
    quotation = await db.get(PendingQuotationDB, quotation_id) if quotation_id else None
    if quotation is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Quotation not found")
    if not is_admin(user) and quotation.created_by_id != user.id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")
    return quotation


@router.get(
    "",
    summary="List pending quotations",
    description="Quotations enriched with urgency, compliance and next actions",
)
async def list_quotations(
    status_filter: str | None = Query(None, alias="status"),
    overdue: bool = Query(False),
    created_by_id: int | None = Query(None, alias="createdById"),
    user: UserDB = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> dict:
    """List quotations newest first with deadline insight.

    Non-admins only see their own quotations; ``createdById`` is honoured for
    admins only.

    Args:
        status_filter: Optional status filter
        overdue: Only return overdue quotations
        created_by_id: Creator filter for admins
        user: Authenticated user
        db: Database session

    Returns:
        Quotations, stats and the overdue count
    """
    query = (
        select(PendingQuotationDB, UserDB)
        .outerjoin(UserDB, UserDB.id == PendingQuotationDB.created_by_id)
        .order_by(PendingQuotationDB.created_at.desc())
    )
    if not is_admin(user):
        query = query.where(PendingQuotationDB.created_by_id == user.id)
    elif created_by_id is not None:
        query = query.where(PendingQuotationDB.created_by_id == created_by_id)
    if status_filter:
        query = query.where(PendingQuotationDB.status == status_filter)

    try:
        rows = (await db.execute(query)).all()
    except Exception as e:
        logger.error("quotation_query_failed", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error": "Failed to fetch pending quotations", "details": str(e)},
        )

    now = datetime.utcnow()
    quotations = []
    for quotation, creator in rows:
        insight = assess_quotation(
            quotation.status,
            quotation.quotation_pending_since,
            quotation.quotation_deadline,
            stored_urgency=quotation.urgency_level,
            reminder_count=quotation.reminder_count or 0,
            last_reminder_sent=quotation.last_reminder_sent,
            now=now,
        )
        quotations.append({**_quotation_payload(quotation, creator), **insight.to_api()})

    if overdue:
        quotations = [quotation for quotation in quotations if quotation["isOverdue"]]

    stats = {
        "total": len(quotations),
        "pending": sum(1 for q in quotations if q["status"] == QuotationStatus.PENDING.value),
        "sent": sum(1 for q in quotations if q["status"] == QuotationStatus.SENT.value),
        "overdue": sum(1 for q in quotations if q["isOverdue"]),
        "totalValue": sum(q["orderValue"] or 0 for q in quotations),
        "urgent": sum(1 for q in quotations if q["urgencyLevel"] == UrgencyLevel.HIGH.value),
    }

    return {"quotations": quotations, "stats": stats, "overdueCount": stats["overdue"]}


@router.post(
    "",
    summary="Create pending quotation",
    description="Create a quotation and schedule its first follow-up",
    status_code=status.HTTP_201_CREATED,
)
async def create_quotation(
    request: QuotationCreate,
    user: UserDB = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> dict:
    """Create a pending quotation.

    An e-mail follow-up is scheduled for the deadline, or a week out when no
    deadline is set. Follow-up failures do not block the quotation.

    Args:
        request: Quotation fields
        user: Authenticated user
        db: Database session

    Returns:
        Created quotation

    Raises:
        HTTPException: 400 without a name, with an unknown status or with a past
            deadline
    """
    if not request.project_or_client_name:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Project or client name is required",
        )
    if request.status not in QUOTATION_STATUSES:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid status")

    now = datetime.utcnow()
    deadline = _naive_utc(request.quotation_deadline)
    if deadline is not None and deadline <= now:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Deadline must be in the future")

    quotation = PendingQuotationDB(
        project_or_client_name=request.project_or_client_name,
        quotation_pending_since=_naive_utc(request.quotation_pending_since) or now,
        quotation_deadline=deadline,
        order_value=request.order_value,
        total_qty=request.total_qty,
        contact_person=request.contact_person,
        contact_email=request.contact_email,
        quotation_document=request.quotation_document,
        status=request.status,
        notes=request.notes,
        opportunity_id=parse_optional_id(request.opportunity_id),
        company_id=parse_optional_id(request.company_id),
        created_by_id=user.id,
    )
    db.add(quotation)
    await db.flush()
    await db.refresh(quotation)

    try:
        async with db.begin_nested():
            db.add(
                DailyFollowUpDB(
                    assigned_to=user.name or "Unknown User",
                    action_type=FollowUpActionType.EMAIL.value,
                    action_description=f"Initial follow-up for quotation: {request.project_or_client_name}",
                    status=FollowUpStatus.SCHEDULED.value,
                    follow_up_date=deadline or now + timedelta(days=7),
                    notes=f"Auto-generated follow-up for quotation {quotation.id}",
                    timezone=FOLLOW_UP_TIMEZONE,
                    created_by_id=user.id,
                )
            )
    except Exception as e:
        logger.warning("quotation_follow_up_failed", quotation_id=quotation.id, error=str(e))

    logger.info("quotation_created", quotation_id=quotation.id, user_id=user.id)

    return {
        "success": True,
        "quotation": _quotation_payload(quotation, user),
        "message": "Pending quotation created successfully",
    }


@router.put(
    "",
    summary="Update pending quotation",
    description="Update quotation fields; terminal statuses unfreeze the opportunity",
)
async def update_quotation(
    request: QuotationUpdate,
    user: UserDB = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> dict:
    """Update a quotation the caller created (or any, for admins).

    Args:
        request: Quotation id and the fields to change
        user: Authenticated user
        db: Database session

    Returns:
        Updated quotation

    Raises:
        HTTPException: 400 without an id, for an unknown status or when marking
            as sent without a document, 404 if missing, 403 for another user's quotation
    """
    if not request.id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Quotation ID is required")
    if request.status and request.status not in QUOTATION_STATUSES:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid status")

    quotation = await _load_for_update(db, parse_optional_id(request.id), user)

    if request.status == QuotationStatus.SENT.value and not request.quotation_document:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Document URL is required when marking quotation as sent",
        )

    for field in UPDATABLE_FIELDS:
        if field == "status":
            if request.status:
                quotation.status = request.status
        elif field in request.model_fields_set:
            setattr(quotation, field, getattr(request, field))
    quotation.updated_at = datetime.utcnow()
    await db.flush()

    if request.status in TERMINAL_STATUSES and quotation.opportunity_id:
        try:
            async with db.begin_nested():
                opportunity = await db.get(OpportunityDB, quotation.opportunity_id)
                if opportunity is not None:
                    opportunity.is_frozen = False
                    opportunity.frozen_reason = None
                    opportunity.updated_at = datetime.utcnow()
        except Exception as e:
            logger.warning("opportunity_unfreeze_failed", quotation_id=quotation.id, error=str(e))

    creator = await db.get(UserDB, quotation.created_by_id)
    return {
        "success": True,
        "quotation": _quotation_payload(quotation, creator),
        "message": "Pending quotation updated successfully",
    }


@router.put(
    "/{quotation_id}/stage",
    summary="Change quotation stage",
    description="Move a quotation to a stage and recompute the opportunity freeze",
)
async def update_quotation_stage(
    quotation_id: int,
    request: StageUpdate,
    user: UserDB = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> dict:
    """Change a quotation's stage.

    Stage notes are appended to the quotation notes. The linked opportunity
    stays frozen while any of its quotations is PENDING or REQUOTATION, and a
    follow-up is scheduled (3 days out for DONE, otherwise 7).

    Args:
        quotation_id: Quotation identifier
        request: New stage, optional requotation document and notes
        user: Authenticated user
        db: Database session

    Returns:
        Updated quotation and a message describing the freeze state

    Raises:
        HTTPException: 400 for a missing or unknown stage, 404 if missing,
            403 for another user's quotation
    """
    if not request.stage:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Stage is required")

    stage = request.stage.upper()
    if stage not in QUOTATION_STATUSES:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid stage")

    quotation = await _load_for_update(db, quotation_id, user)
    now = datetime.utcnow()
    stamp = now.isoformat()

    if stage == QuotationStatus.REQUOTATION.value and request.new_quotation_document:
        quotation.quotation_document = request.new_quotation_document
        note = request.notes or "Updated quotation document"
        quotation.notes = f"{quotation.notes or ''}\n\n[REQUOTATION - {stamp}]: {note}".strip()
    elif request.notes:
        quotation.notes = f"{quotation.notes or ''}\n\n[{stage} - {stamp}]: {request.notes}".strip()

    quotation.status = stage
    quotation.updated_at = now
    await db.flush()

    still_frozen = None
    if quotation.opportunity_id:
        active = await db.execute(
            select(func.count(PendingQuotationDB.id)).where(
                PendingQuotationDB.opportunity_id == quotation.opportunity_id,
                PendingQuotationDB.status.in_(FREEZE_STAGES),
            )
        )
        still_frozen = (active.scalar() or 0) > 0
        opportunity = await db.get(OpportunityDB, quotation.opportunity_id)
        if opportunity is not None:
            opportunity.is_frozen = still_frozen
            opportunity.frozen_reason = FROZEN_REASON if still_frozen else None
            opportunity.updated_at = now
            await db.flush()

    done = stage == QuotationStatus.DONE.value
    try:
        async with db.begin_nested():
            db.add(
                DailyFollowUpDB(
                    assigned_to=user.name or "Unknown User",
                    action_type=(FollowUpActionType.CALL if done else FollowUpActionType.EMAIL).value,
                    action_description=(
                        f"Follow-up for quotation {quotation.project_or_client_name} - Stage changed to {stage}"
                    ),
                    status=FollowUpStatus.SCHEDULED.value,
                    follow_up_date=now + timedelta(days=3 if done else 7),
                    notes=f"Auto-generated follow-up for quotation stage change to {stage}",
                    timezone=FOLLOW_UP_TIMEZONE,
                    created_by_id=user.id,
                    opportunity_id=quotation.opportunity_id,
                    company_id=quotation.company_id,
                )
            )
    except Exception as e:
        logger.warning("stage_follow_up_failed", quotation_id=quotation.id, error=str(e))

    if done:
        message = "Quotation marked as done and opportunity has been unfrozen"
    elif stage in FREEZE_STAGES:
        message = (
            f"Quotation stage updated to {stage}. "
            "Opportunity remains frozen while the quotation is in progress."
        )
    elif still_frozen:
        message = (
            f"Quotation stage updated to {stage}. "
            "Opportunity stays frozen because other quotations are still pending."
        )
    else:
        message = f"Quotation stage updated to {stage}. Opportunity has been unfrozen."

    logger.info("quotation_stage_updated", quotation_id=quotation.id, stage=stage)

    creator = await db.get(UserDB, quotation.created_by_id)
    return {"success": True, "quotation": _quotation_payload(quotation, creator), "message": message}

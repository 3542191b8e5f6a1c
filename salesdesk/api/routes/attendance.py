"""Attendance submission, listing and review endpoints."""

from collections.abc import AsyncGenerator
from datetime import date, datetime

import httpx
import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from salesdesk.api.middleware.auth import get_current_user, is_admin, is_privileged_role, require_admin
from salesdesk.models.attendance import AttendanceDB, AttendanceStatus
from salesdesk.models.base import as_dict
from salesdesk.models.crm import DailyFollowUpDB, FollowUpStatus
from salesdesk.models.schemas import CamelModel
from salesdesk.models.user import UserDB
from salesdesk.services.attendance_validation import (
    FollowUpSelectionError,
    append_attendance_link_note,
    TIMELINE_CHECK_TIMEOUT,
    check_timeline_url,
    generate_device_fingerprint,
    generate_record_hash,
    hash_device_fingerprint,
    ist_day_bounds,
    normalize_follow_up,
    today_ist,
    validate_attendance_submission,
    validate_exif_data,
)
from salesdesk.services.database import get_db_session

logger = structlog.get_logger()

router = APIRouter(prefix="/api/attendance", tags=["attendance"])

REVIEW_ACTIONS = {"approve": AttendanceStatus.APPROVED, "reject": AttendanceStatus.REJECTED}


async def get_http_client() -> AsyncGenerator[httpx.AsyncClient, None]:
    """Outbound HTTP client for evidence checks."""
    async with httpx.AsyncClient(timeout=TIMELINE_CHECK_TIMEOUT) as client:
        yield client


class AttendanceSubmission(CamelModel):
    """Request schema for a daily attendance submission."""

    visit_report: str | None = None
    timeline_url: str | None = None
    timeline_screenshot_url: str | None = None
    selfie_url: str | None = None
    client_lat: float | None = None
    client_lng: float | None = None
    client_accuracy_m: float | None = None
    client_address: str | None = None
    client_city: str | None = None
    client_state: str | None = None
    client_country: str | None = None
    device_fingerprint: dict | None = None
    exif_taken_at: str | None = None
    follow_up: dict | None = None


class AttendanceReview(CamelModel):
    """Request schema for approving or rejecting attendance records."""

    attendance_ids: list[int] | None = None
    action: str | None = None
    notes: str | None = None


def _user_fields(user: UserDB | None, *fields: str) -> dict | None:
    if user is None:
        return None
    summary = user.to_summary()
    summary["location"] = user.location
    return {key: summary[key] for key in fields}


def _attendance_payload(attendance: AttendanceDB, user: UserDB | None, reviewer: UserDB | None = None) -> dict:
    payload = as_dict(attendance)
    payload["user"] = _user_fields(user, "name", "email", "employeeCode", "role", "location")
    if reviewer is not None:
        payload["reviewer"] = _user_fields(reviewer, "name", "email")
    return payload


@router.post(
    "",
    summary="Submit attendance",
    description="Submit today's attendance with an optional follow-up",
    status_code=status.HTTP_201_CREATED,
)
async def submit_attendance(
    request: AttendanceSubmission,
    user: UserDB = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
    http_client: httpx.AsyncClient = Depends(get_http_client),
) -> dict:
    """Record the caller's attendance for the current IST day.

    A follow-up may be attached: either an existing follow-up created today,
    which gets a link note appended, or a new one created alongside the
    attendance record.

    Args:
        request: Submission fields
        user: Authenticated user
        db: Database session
        http_client: Client used to check the timeline URL

    Returns:
        Created record with validation warnings and metadata

    Raises:
        HTTPException: 400 on validation failure, 403 for a foreign follow-up,
            409 when today's attendance already exists
    """
    now = datetime.utcnow()
    today = today_ist(now)

    record = {
        "userId": str(user.id),
        "dateIST": today.isoformat(),
        "submittedAtUTC": now.isoformat(),
        "note": request.visit_report,
        "timelineUrl": request.timeline_url,
        "timelineScreenshotUrl": request.timeline_screenshot_url,
        "selfieUrl": request.selfie_url,
        "clientLat": request.client_lat,
        "clientLng": request.client_lng,
    }

    try:
        follow_up = normalize_follow_up(request.follow_up)
    except FollowUpSelectionError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    existing_follow_up = None
    if follow_up and follow_up["type"] == "existing":
        existing_follow_up = await db.get(DailyFollowUpDB, follow_up["id"])
        if existing_follow_up is None or (
            not is_admin(user) and existing_follow_up.created_by_id != user.id
        ):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Selected follow-up not found or access denied.",
            )
        day_start, day_end = ist_day_bounds(today)
        if not day_start <= existing_follow_up.created_at < day_end:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="The selected follow-up is not scheduled for today.",
            )

    fingerprint = request.device_fingerprint or generate_device_fingerprint()
    validation = validate_attendance_submission(record, fingerprint, now)
    if not validation.is_valid:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": "Validation failed", "details": validation.errors},
        )

    if "timelineUrl" in validation.metadata:
        timeline, warning = await check_timeline_url(request.timeline_url, http_client)
        validation.metadata["timelineUrl"] = timeline
        if warning:
            validation.warnings.append(warning)

    if request.exif_taken_at and not validate_exif_data(request.exif_taken_at, now):
        validation.warnings.append(
            "Photo EXIF timestamp suggests the photo may not have been taken today"
        )

    duplicate = await db.execute(
        select(AttendanceDB.id).where(AttendanceDB.user_id == user.id, AttendanceDB.date == today)
    )
    if duplicate.scalar_one_or_none() is not None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Attendance already submitted for today",
        )

    attendance = AttendanceDB(
        user_id=user.id,
        date=today,
        visit_report=request.visit_report.strip(),
        timeline_url=request.timeline_url or request.timeline_screenshot_url,
        photo_url=request.selfie_url,
        status=AttendanceStatus.SUBMITTED.value,
        latitude=request.client_lat,
        longitude=request.client_lng,
        accuracy=request.client_accuracy_m,
        address=request.client_address,
        city=request.client_city,
        state=request.client_state,
        country=request.client_country,
        device_fingerprint=hash_device_fingerprint(fingerprint),
        record_hash=generate_record_hash(record),
        submitted_at=now,
    )
    db.add(attendance)

    if follow_up and follow_up["type"] == "new":
        db.add(
            DailyFollowUpDB(
                assigned_to=user.name or user.email,
                action_type=follow_up["action_type"],
                action_description=follow_up["description"],
                status=FollowUpStatus.SCHEDULED.value,
                follow_up_date=follow_up["follow_up_date"],
                notes=follow_up["notes"],
                urgency_level=follow_up["priority"],
                created_by_id=user.id,
                lead_id=follow_up["lead_id"],
                opportunity_id=follow_up["opportunity_id"],
                project_id=follow_up["project_id"],
                immediate_sale_id=follow_up["immediate_sale_id"],
            )
        )
    elif existing_follow_up is not None:
        existing_follow_up.notes = append_attendance_link_note(existing_follow_up.notes, now)
        existing_follow_up.updated_at = now

    await db.flush()
    await db.refresh(attendance)

    logger.info(
        "attendance_submitted",
        attendance_id=attendance.id,
        user_id=user.id,
        warnings=len(validation.warnings),
    )

    return {
        "success": True,
        "attendance": _attendance_payload(attendance, user),
        "validation": {
            "warnings": validation.warnings,
            "metadata": validation.metadata,
        },
    }


@router.get(
    "",
    summary="List attendance",
    description="Attendance records for a day or a user",
)
async def list_attendance(
    date_param: str | None = Query(None, alias="date"),
    user_id: int | None = Query(None, alias="userId"),
    user: UserDB = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> dict:
    """List attendance records.

    Admins see every user's records (plus the users who have not submitted)
    unless a ``userId`` is given; other users only see their own.

    Args:
        date_param: Optional ``YYYY-MM-DD`` day filter
        user_id: Optional user filter
        user: Authenticated user
        db: Database session

    Returns:
        Records, missing users and summary counts
    """
    admin = is_admin(user)
    admin_view = admin and user_id is None

    query = select(AttendanceDB, UserDB).join(UserDB, UserDB.id == AttendanceDB.user_id)
    if not admin:
        query = query.where(AttendanceDB.user_id == user.id)
    elif user_id is not None:
        query = query.where(AttendanceDB.user_id == user_id)

    if date_param:
        try:
            day = date.fromisoformat(date_param[:10])
        except ValueError:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid date")
        query = query.where(AttendanceDB.date == day)

    result = await db.execute(query.order_by(AttendanceDB.date.desc(), AttendanceDB.submitted_at.desc()))
    rows = result.all()
    records = [_attendance_payload(attendance, owner) for attendance, owner in rows]

    missing_users = []
    total_users = None
    if admin_view:
        users = (await db.execute(select(UserDB).order_by(UserDB.name))).scalars().all()
        submitted_ids = {attendance.user_id for attendance, _ in rows}
        missing_users = [
            _user_fields(candidate, "id", "name", "email", "employeeCode", "role")
            for candidate in users
            if candidate.id not in submitted_ids and not is_privileged_role(candidate.role)
        ]
        total_users = len(users)

    statuses = [attendance.status for attendance, _ in rows]
    summary = {
        "totalUsers": total_users,
        "submitted": len(rows),
        "approved": statuses.count(AttendanceStatus.APPROVED.value),
        "rejected": statuses.count(AttendanceStatus.REJECTED.value),
        "flagged": statuses.count(AttendanceStatus.AUTO_FLAGGED.value),
        "amended": statuses.count(AttendanceStatus.AMENDED.value),
        "missing": len(missing_users),
    }

    return {
        "attendance": records,
        "isAdminView": admin_view,
        "missingUsers": missing_users,
        "summary": summary,
    }


# ========== Review ==========


@router.post(
    "/approve",
    summary="Approve or reject attendance",
    description="Admin review of submitted attendance records",
)
async def review_attendance(
    request: AttendanceReview,
    reviewer: UserDB = Depends(require_admin),
    db: AsyncSession = Depends(get_db_session),
) -> dict:
    """Approve or reject attendance records.

    Records already in the target status are left untouched.

    Args:
        request: Record ids, action and optional review notes
        reviewer: Authenticated admin
        db: Database session

    Returns:
        Number of records updated

    Raises:
        HTTPException: 400 for missing ids or an unknown action
    """
    if not request.attendance_ids:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Attendance IDs are required")
    if request.action not in REVIEW_ACTIONS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Action must be 'approve' or 'reject'",
        )

    target = REVIEW_ACTIONS[request.action].value
    now = datetime.utcnow()

    result = await db.execute(
        update(AttendanceDB)
        .where(AttendanceDB.id.in_(request.attendance_ids), AttendanceDB.status != target)
        .values(
            status=target,
            reviewer_id=reviewer.id,
            reviewed_at=now,
            review_notes=request.notes or None,
            approved_at=now if target == AttendanceStatus.APPROVED.value else None,
            updated_at=now,
        )
    )
    updated_count = result.rowcount or 0

    logger.info(
        "attendance_reviewed",
        action=request.action,
        updated_count=updated_count,
        reviewer_id=reviewer.id,
    )

    return {
        "success": True,
        "message": f"Successfully {request.action}d {updated_count} attendance record(s)",
        "updatedCount": updated_count,
        "action": request.action,
        "reviewerId": reviewer.id,
    }


@router.get(
    "/approve",
    summary="Attendance review queue",
    description="Attendance records by review status with per-status counts",
)
async def review_queue(
    status_filter: str | None = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=500),
    reviewer: UserDB = Depends(require_admin),
    db: AsyncSession = Depends(get_db_session),
) -> dict:
    """List attendance records for review, newest submissions first.

    Args:
        status_filter: Optional review status filter
        limit: Maximum records returned
        reviewer: Authenticated admin
        db: Database session

    Returns:
        Records and a summary keyed by every review status
    """
    reviewer_user = aliased(UserDB)
    query = (
        select(AttendanceDB, UserDB, reviewer_user)
        .join(UserDB, UserDB.id == AttendanceDB.user_id)
        .outerjoin(reviewer_user, reviewer_user.id == AttendanceDB.reviewer_id)
    )
    if status_filter:
        query = query.where(AttendanceDB.status == status_filter)

    result = await db.execute(query.order_by(AttendanceDB.submitted_at.desc()).limit(limit))
    records = [
        _attendance_payload(attendance, owner, reviewed_by)
        for attendance, owner, reviewed_by in result.all()
    ]

    counts = await db.execute(
        select(AttendanceDB.status, func.count(AttendanceDB.id)).group_by(AttendanceDB.status)
    )
    summary = {member.value: 0 for member in AttendanceStatus}
    for review_status, count in counts.all():
        summary[review_status] = count

    return {"attendances": records, "summary": summary}

"""In-app notification endpoints."""

from datetime import datetime

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from salesdesk.api.middleware.auth import get_current_user, is_admin
from salesdesk.models.base import as_dict
from salesdesk.models.notification import NotificationDB
from salesdesk.models.schemas import CamelModel
from salesdesk.models.user import UserDB
from salesdesk.services.database import get_db_session

logger = structlog.get_logger()

router = APIRouter(prefix="/api/notifications", tags=["notifications"])

DEFAULT_URL = "/dashboard"


class NotificationCreate(CamelModel):
    """Request schema for sending a notification."""

    title: str | None = None
    message: str | None = None
    type: str | None = None
    url: str | None = None
    recipient_id: int | None = None
    recipient_ids: list[int] | None = None


class ReadStateUpdate(CamelModel):
    is_read: bool | None = None


def _notification_payload(notification: NotificationDB, sender: UserDB | None) -> dict:
    payload = as_dict(notification)
    payload["sender"] = {"name": sender.name, "email": sender.email} if sender else None
    return payload


def _own(notification_id: int, user: UserDB):
    return (NotificationDB.id == notification_id, NotificationDB.user_id == user.id)


@router.get(
    "",
    summary="List notifications",
    description="The caller's notifications, newest first, with counts",
)
async def list_notifications(
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    user: UserDB = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> dict:
    """Page through the caller's notifications.

    Args:
        limit: Page size
        offset: Rows to skip
        user: Authenticated user
        db: Database session

    Returns:
        Notifications, total and unread counts, and whether more pages exist
    """
    result = await db.execute(
        select(NotificationDB, UserDB)
        .outerjoin(UserDB, UserDB.id == NotificationDB.sender_id)
        .where(NotificationDB.user_id == user.id)
        .order_by(NotificationDB.created_at.desc(), NotificationDB.id.desc())
        .limit(limit)
        .offset(offset)
    )
    notifications = [_notification_payload(notification, sender) for notification, sender in result.all()]

    total_count = (
        await db.execute(select(func.count(NotificationDB.id)).where(NotificationDB.user_id == user.id))
    ).scalar() or 0
    unread_count = (
        await db.execute(
            select(func.count(NotificationDB.id)).where(
                NotificationDB.user_id == user.id, NotificationDB.is_read.is_(False)
            )
        )
    ).scalar() or 0

    return {
        "notifications": notifications,
        "totalCount": total_count,
        "unreadCount": unread_count,
        "hasMore": offset + limit < total_count,
    }


@router.post(
    "",
    summary="Send notification",
    description="Send to one user, a list of users, or everyone (admins)",
    status_code=status.HTTP_201_CREATED,
)
async def send_notification(
    request: NotificationCreate,
    user: UserDB = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> dict:
    """Create notifications for the resolved recipients.

    Without explicit recipients, admins broadcast to every user and everyone
    else notifies themselves.

    Args:
        request: Title, message and recipients
        user: Authenticated sender
        db: Database session

    Returns:
        Created notifications

    Raises:
        HTTPException: 400 without a title or message
    """
    if not request.title or not request.message:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Title and message are required")

    if request.recipient_id:
        recipients = [request.recipient_id]
    elif request.recipient_ids:
        recipients = list(request.recipient_ids)
    elif is_admin(user):
        recipients = list((await db.execute(select(UserDB.id))).scalars().all())
    else:
        recipients = [user.id]

    notifications = [
        NotificationDB(
            title=request.title,
            message=request.message,
            type=request.type or "info",
            url=request.url or DEFAULT_URL,
            is_read=False,
            user_id=recipient,
            sender_id=user.id,
        )
        for recipient in recipients
    ]
    db.add_all(notifications)
    await db.flush()

    logger.info("notifications_sent", sender_id=user.id, recipients=len(recipients))

    return {
        "success": True,
        "notifications": [_notification_payload(notification, user) for notification in notifications],
        "message": f"Notification sent to {len(recipients)} recipient(s)",
    }


@router.put(
    "/read-all",
    summary="Mark all read",
    description="Mark every unread notification of the caller as read",
)
async def mark_all_read(
    user: UserDB = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> dict:
    result = await db.execute(
        update(NotificationDB)
        .where(NotificationDB.user_id == user.id, NotificationDB.is_read.is_(False))
        .values(is_read=True, updated_at=datetime.utcnow())
    )
    return {"success": True, "updated": result.rowcount or 0}


@router.delete(
    "/delete-all",
    summary="Delete all notifications",
    description="Delete every notification of the caller",
)
async def delete_all(
    user: UserDB = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> dict:
    result = await db.execute(delete(NotificationDB).where(NotificationDB.user_id == user.id))
    return {"success": True, "deleted": result.rowcount or 0}


@router.get(
    "/{notification_id}",
    summary="Get notification",
    description="A single notification of the caller",
)
async def get_notification(
    notification_id: int,
    user: UserDB = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> dict:
    """Fetch one notification.

    Raises:
        HTTPException: 404 if it does not exist or belongs to someone else
    """
    result = await db.execute(
        select(NotificationDB, UserDB)
        .outerjoin(UserDB, UserDB.id == NotificationDB.sender_id)
        .where(*_own(notification_id, user))
    )
    row = result.first()
    if row is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Notification not found")

    notification, sender = row
    return {"notification": _notification_payload(notification, sender)}


async def _set_read_state(db: AsyncSession, notification_id: int, user: UserDB, is_read: bool) -> None:
    result = await db.execute(
        update(NotificationDB)
        .where(*_own(notification_id, user))
        .values(is_read=is_read, updated_at=datetime.utcnow())
    )
    if not result.rowcount:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Notification not found or unauthorized",
        )


@router.put(
    "/{notification_id}",
    summary="Set read state",
    description="Mark a notification read or unread",
)
async def update_notification(
    notification_id: int,
    request: ReadStateUpdate,
    user: UserDB = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> dict:
    """Mark a notification read (the default) or unread.

    Raises:
        HTTPException: 404 if it does not exist or belongs to someone else
    """
    is_read = True if request.is_read is None else request.is_read
    await _set_read_state(db, notification_id, user, is_read)
    return {
        "success": True,
        "message": "Notification marked as read" if is_read else "Notification marked as unread",
    }


@router.put(
    "/{notification_id}/read",
    summary="Mark read",
    description="Mark a notification as read",
)
async def mark_read(
    notification_id: int,
    user: UserDB = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> dict:
    await _set_read_state(db, notification_id, user, True)
    return {"success": True, "message": "Notification marked as read"}


@router.delete(
    "/{notification_id}",
    summary="Delete notification",
    description="Delete one of the caller's notifications",
)
async def delete_notification(
    notification_id: int,
    user: UserDB = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> dict:
    """Delete a notification.

    Raises:
        HTTPException: 404 if it does not exist or belongs to someone else
    """
    result = await db.execute(delete(NotificationDB).where(*_own(notification_id, user)))
    if not result.rowcount:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Notification not found or unauthorized",
        )
    return {"success": True, "message": "Notification deleted successfully"}

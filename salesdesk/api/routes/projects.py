"""Project endpoints."""

from datetime import datetime

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from salesdesk.api.middleware.auth import get_current_user, is_admin
from salesdesk.models.base import as_dict
from salesdesk.models.sales import ProjectDB
from salesdesk.models.schemas import CamelModel
from salesdesk.models.user import UserDB
from salesdesk.services.attendance_validation import parse_optional_id
from salesdesk.services.database import get_db_session

logger = structlog.get_logger()

router = APIRouter(prefix="/api/projects", tags=["projects"])

EDITABLE_FIELDS = (
    "name",
    "province",
    "funding",
    "consultant",
    "contractor",
    "competitors",
    "size_class",
    "unit_of_measurement",
    "approx_mt",
    "status",
    "month_of_quote",
    "date_of_start_procurement",
    "pic",
    "assigned_admin_id",
)


class ProjectFields(CamelModel):
    """Project attributes accepted on create and update."""

    name: str | None = None
    province: str | None = None
    funding: str | None = None
    consultant: str | None = None
    contractor: str | None = None
    competitors: str | None = None
    size_class: str | None = None
    unit_of_measurement: str | None = None
    approx_mt: float | None = None
    status: str | None = None
    month_of_quote: str | None = None
    date_of_start_procurement: datetime | None = None
    pic: str | None = None
    assigned_admin_id: int | None = None


class ProjectUpdate(ProjectFields):
    id: int | str | None = None


def _person(user: UserDB | None) -> dict | None:
    if user is None:
        return None
    return {"name": user.name, "email": user.email, "employeeCode": user.employee_code}


async def _project_payload(db: AsyncSession, project: ProjectDB) -> dict:
    payload = as_dict(project)
    payload["owner"] = _person(await db.get(UserDB, project.owner_id))
    payload["assignedAdmin"] = (
        _person(await db.get(UserDB, project.assigned_admin_id)) if project.assigned_admin_id else None
    )
    return payload


@router.get(
    "",
    summary="List projects",
    description="Projects filtered by status, province and owner",
)
async def list_projects(
    status_filter: str | None = Query(None, alias="status"),
    province: str | None = Query(None),
    owner_id: int | None = Query(None, alias="ownerId"),
    user: UserDB = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> dict:
    """List projects, newest first.

    Non-admins only see projects they own; ``ownerId`` is honoured for admins.

    Args:
        status_filter: Optional project status
        province: Optional province
        owner_id: Owner filter for admins
        user: Authenticated user
        db: Database session

    Returns:
        Projects with owner and assigned admin details
    """
    owner = aliased(UserDB)
    admin = aliased(UserDB)
    query = (
        select(ProjectDB, owner, admin)
        .outerjoin(owner, owner.id == ProjectDB.owner_id)
        .outerjoin(admin, admin.id == ProjectDB.assigned_admin_id)
        .order_by(ProjectDB.created_at.desc())
    )
    if not is_admin(user):
        query = query.where(ProjectDB.owner_id == user.id)
    elif owner_id is not None:
        query = query.where(ProjectDB.owner_id == owner_id)
    if status_filter:
        query = query.where(ProjectDB.status == status_filter)
    if province:
        query = query.where(ProjectDB.province == province)

    try:
        rows = (await db.execute(query)).all()
    except Exception as e:
        logger.error("project_query_failed", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error": "Failed to fetch projects", "details": str(e)},
        )

    projects = []
    for project, project_owner, assigned_admin in rows:
        payload = as_dict(project)
        payload["owner"] = _person(project_owner)
        payload["assignedAdmin"] = _person(assigned_admin)
        projects.append(payload)

    return {"projects": projects}


@router.post(
    "",
    summary="Create project",
    description="Create a project owned by the caller",
    status_code=status.HTTP_201_CREATED,
)
async def create_project(
    request: ProjectFields,
    user: UserDB = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> dict:
    """Create a project.

    Args:
        request: Project fields; name and province are required
        user: Authenticated user
        db: Database session

    Returns:
        Created project

    Raises:
        HTTPException: 400 without a name or province
    """
    if not request.name or not request.province:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Name and province are required")

    values = {field: getattr(request, field) for field in EDITABLE_FIELDS}
    values["status"] = request.status or "ONGOING"
    project = ProjectDB(owner_id=user.id, **values)
    db.add(project)
    await db.flush()
    await db.refresh(project)

    logger.info("project_created", project_id=project.id, user_id=user.id)

    return {
        "success": True,
        "project": await _project_payload(db, project),
        "message": "Project created successfully",
    }


@router.put(
    "",
    summary="Update project",
    description="Update a project the caller owns (any project, for admins)",
)
async def update_project(
    request: ProjectUpdate,
    user: UserDB = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> dict:
    """Update the fields present in the request.

    Args:
        request: Project id and the fields to change
        user: Authenticated user
        db: Database session

    Returns:
        Confirmation message

    Raises:
        HTTPException: 400 without an id, 404 if missing, 403 for another
            user's project
    """
    if not request.id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Project ID is required")

    project_id = parse_optional_id(request.id)
    project = await db.get(ProjectDB, project_id) if project_id else None
    if project is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Project not found")
    if not is_admin(user) and project.owner_id != user.id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")

    for field in EDITABLE_FIELDS:
        if field in request.model_fields_set:
            setattr(project, field, getattr(request, field))
    project.updated_at = datetime.utcnow()
    await db.flush()

    return {"success": True, "message": "Project updated successfully"}

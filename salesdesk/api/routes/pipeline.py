"""Weighted pipeline endpoints."""

from datetime import datetime

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from salesdesk.api.middleware.auth import get_current_user, is_admin
from salesdesk.models.base import as_dict
from salesdesk.models.crm import CompanyDB, OpportunityDB, OpportunityStage
from salesdesk.models.sales import ImmediateSaleDB, ImmediateSaleStatus, PipelineDB, PipelineStatus
from salesdesk.models.schemas import CamelModel
from salesdesk.models.user import UserDB
from salesdesk.services.attendance_validation import parse_optional_id
from salesdesk.services.database import get_db_session
from salesdesk.services.weighted_pipeline import (
    WeightedPipelineService,
    deal_from_pipeline,
    empty_pipeline_metrics,
    resolve_period_start,
)

logger = structlog.get_logger()

router = APIRouter(prefix="/api/pipeline", tags=["pipeline"])

WORKING_STATUSES = frozenset({"PRODUCTION_STARTED", "QUALITY_CHECK", "PACKING_SHIPPING", "SHIPPED"})
COMPLETED_STATUSES = frozenset(
    {"DELIVERED", "INSTALLATION_STARTED", "INSTALLATION_COMPLETE", "PAYMENT_RECEIVED", "PROJECT_COMPLETE"}
)
INCOMING_STATUSES = frozenset({"ORDER_RECEIVED", "ORDER_PROCESSING", "CONTRACT_SIGNING"})


class WeightedDealUpdate(CamelModel):
    """Request schema for moving an opportunity through the weighted pipeline."""

    opportunity_id: int | str | None = None
    stage: str | None = None
    expected_close_date: datetime | None = None


class PipelineStatusUpdate(CamelModel):
    """Request schema for a pipeline status transition."""

    pipeline_id: int | str | None = None
    status: str | None = None


@router.get(
    "/weighted",
    summary="Weighted pipeline",
    description="Pipelines in the period as probability-weighted deals with metrics",
)
async def get_weighted_pipeline(
    period: str = Query("month"),
    user: UserDB = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> dict:
    """Weighted view of the caller's pipelines.

    Pipelines updated or ordered since the start of the period are converted
    into weighted deals. Non-admins only see pipelines they own.

    Args:
        period: ``week``, ``month``, ``quarter`` or ``year``
        user: Authenticated user
        db: Database session

    Returns:
        Deals, pipeline metrics, recommendations and the period

    Raises:
        HTTPException: 500 if the pipelines cannot be loaded
    """
    now = datetime.utcnow()
    since = resolve_period_start(period, now)

    query = (
        select(PipelineDB, UserDB.name, UserDB.email, CompanyDB.name)
        .outerjoin(UserDB, UserDB.id == PipelineDB.owner_id)
        .outerjoin(CompanyDB, CompanyDB.id == PipelineDB.company_id)
        .where(or_(PipelineDB.updated_at >= since, PipelineDB.order_date >= since))
        .order_by(PipelineDB.order_date.desc())
    )
    if not is_admin(user):
        query = query.where(PipelineDB.owner_id == user.id)

    try:
        rows = (await db.execute(query)).all()
    except Exception as e:
        logger.error("weighted_pipeline_query_failed", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={
                "error": "Database error",
                "message": "Failed to fetch pipelines from database",
            },
        )

    deals = [
        deal_from_pipeline(pipeline, owner_name, owner_email, company_name, now=now)
        for pipeline, owner_name, owner_email, company_name in rows
    ]

    try:
        metrics = WeightedPipelineService.generate_pipeline_metrics(deals, now=now)
    except Exception as e:
        logger.warning("pipeline_metrics_failed", error=str(e))
        metrics = empty_pipeline_metrics(len(deals))

    try:
        recommendations = WeightedPipelineService.generate_recommendations(metrics, deals)
    except Exception as e:
        logger.warning("pipeline_recommendations_failed", error=str(e))
        recommendations = ["Unable to generate recommendations due to data processing error"]

    return {
        "deals": [deal.to_api() for deal in deals],
        "metrics": metrics.to_api(),
        "recommendations": recommendations,
        "period": period,
    }


@router.post(
    "/weighted",
    summary="Update weighted deal",
    description="Set an opportunity's stage and expected close date",
)
async def update_weighted_deal(
    request: WeightedDealUpdate,
    user: UserDB = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> dict:
    """Move an opportunity to a new stage.

    Args:
        request: Opportunity id, stage and expected close date
        user: Authenticated user
        db: Database session

    Returns:
        Updated opportunity

    Raises:
        HTTPException: 400 for missing ids or unknown stages, 404 if the
            opportunity does not exist, 403 for another user's opportunity
    """
    opportunity_id = parse_optional_id(request.opportunity_id)
    if opportunity_id is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Opportunity ID is required")

    if request.stage and request.stage not in {stage.value for stage in OpportunityStage}:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid stage")

    opportunity = await db.get(OpportunityDB, opportunity_id)
    if opportunity is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Opportunity not found")
    if not is_admin(user) and opportunity.owner_id != user.id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")

    if request.stage:
        opportunity.stage = request.stage
    if request.expected_close_date:
        opportunity.expected_close_date = request.expected_close_date
    opportunity.updated_at = datetime.utcnow()
    await db.flush()

    return {
        "success": True,
        "opportunity": as_dict(opportunity),
        "message": "Weighted deal updated successfully",
    }


async def _sync_immediate_sale(
    db: AsyncSession, pipeline: PipelineDB, new_status: str, user: UserDB
) -> tuple[bool, bool]:
    """Mirror a pipeline status change onto its immediate sale.

    Pipeline-backed sales have no project and are matched on owner,
    contractor and order value.

    Returns:
        (created, updated) flags
    """
    contractor = pipeline.name
    if pipeline.company_id is not None:
        company = await db.get(CompanyDB, pipeline.company_id)
        if company is not None:
            contractor = company.name

    order_value = pipeline.order_value or 0
    result = await db.execute(
        select(ImmediateSaleDB).where(
            ImmediateSaleDB.project_id.is_(None),
            ImmediateSaleDB.owner_id == user.id,
            ImmediateSaleDB.contractor == contractor,
            ImmediateSaleDB.value_of_order == order_value,
        )
    )
    sale = result.scalars().first()

    if new_status in WORKING_STATUSES:
        if sale is None:
            owner = await db.get(UserDB, pipeline.owner_id) if pipeline.owner_id else None
            db.add(
                ImmediateSaleDB(
                    project_id=None,
                    owner_id=user.id,
                    contractor=contractor,
                    size_class=pipeline.diameter or "N/A",
                    mt=pipeline.quantity,
                    value_of_order=order_value,
                    quotation_date=pipeline.order_date or datetime.utcnow(),
                    status=ImmediateSaleStatus.ONGOING.value,
                    pic=owner.name if owner else None,
                )
            )
            await db.flush()
            return True, False
        if sale.status != ImmediateSaleStatus.ONGOING.value:
            sale.status = ImmediateSaleStatus.ONGOING.value
            await db.flush()
            return False, True
        return False, False

    if sale is not None and sale.status == ImmediateSaleStatus.ONGOING.value:
        if new_status in COMPLETED_STATUSES:
            sale.status = ImmediateSaleStatus.AWARDED.value
        elif new_status in INCOMING_STATUSES:
            sale.status = ImmediateSaleStatus.LOST.value
        else:
            return False, False
        await db.flush()
        return False, True

    return False, False


@router.put(
    "/weighted",
    summary="Update pipeline status",
    description="Transition a pipeline and keep its immediate sale in step",
)
async def update_pipeline_status(
    request: PipelineStatusUpdate,
    user: UserDB = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> dict:
    """Change a pipeline's order status.

    Working statuses create or reactivate an ONGOING immediate sale; completed
    statuses mark it AWARDED and incoming statuses mark it LOST. Immediate
    sale bookkeeping failures do not block the status change.

    Args:
        request: Pipeline id and new status
        user: Authenticated user
        db: Database session

    Returns:
        Updated pipeline and whether an immediate sale was created

    Raises:
        HTTPException: 400 for missing or invalid input, 404 if the pipeline is
            missing or owned by someone else
    """
    if request.pipeline_id is None or request.pipeline_id == "":
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Pipeline ID is required")
    if not request.status:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Status is required")

    pipeline_id = parse_optional_id(request.pipeline_id)
    if pipeline_id is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid pipeline ID")
    if request.status not in {member.value for member in PipelineStatus}:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid status")

    query = select(PipelineDB).where(PipelineDB.id == pipeline_id)
    if not is_admin(user):
        query = query.where(PipelineDB.owner_id == user.id)
    pipeline = (await db.execute(query)).scalar_one_or_none()
    if pipeline is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Pipeline not found or access denied",
        )

    created = updated = False
    try:
        async with db.begin_nested():
            created, updated = await _sync_immediate_sale(db, pipeline, request.status, user)
    except Exception as e:
        logger.warning("immediate_sale_sync_failed", pipeline_id=pipeline_id, error=str(e))

    pipeline.status = request.status
    pipeline.updated_at = datetime.utcnow()
    await db.flush()

    logger.info(
        "pipeline_status_updated",
        pipeline_id=pipeline_id,
        status=request.status,
        immediate_sale_created=created,
        immediate_sale_updated=updated,
    )

    return {
        "success": True,
        "pipeline": as_dict(pipeline),
        "immediateSaleCreated": created,
        "message": (
            "Pipeline status updated and moved to immediate sales"
            if created
            else "Pipeline status updated successfully"
        ),
    }

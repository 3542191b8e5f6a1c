"""Excel workbook export endpoint."""

from datetime import datetime

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from salesdesk.api.middleware.auth import get_current_user, is_admin
from salesdesk.models.attendance import AttendanceDB
from salesdesk.models.base import as_dict
from salesdesk.models.crm import ActivityDB, CompanyDB, LeadDB, OpportunityDB
from salesdesk.models.sales import ImmediateSaleDB, PendingQuotationDB, PipelineDB, ProjectDB
from salesdesk.models.user import UserDB
from salesdesk.services.database import get_db_session
from salesdesk.services.deadline_management import assess_quotation
from salesdesk.services.excel_export import ExcelExportService
from salesdesk.services.reports import ReportsService

logger = structlog.get_logger()

router = APIRouter(prefix="/api/export", tags=["export"])

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

EXPORT_SECTIONS = (
    "leads",
    "opportunities",
    "companies",
    "projects",
    "activities",
    "immediateSales",
    "pipelines",
    "pendingQuotations",
    "attendance",
    "salesReport",
    "quotationReport",
    "attendanceReport",
)


class ExportCollector:
    """Loads export sections as camelCase dicts with related names nested.

    Args:
        db_session: Database session
        user: Requesting user; non-admins only export their own rows
    """

    def __init__(self, db_session: AsyncSession, user: UserDB):
        self.db_session = db_session
        self.user = user
        self.is_admin = is_admin(user)

    def _owned(self, query, owner_column):
        return query if self.is_admin else query.where(owner_column == self.user.id)

    async def _rows(self, query) -> list:
        return list((await self.db_session.execute(query)).scalars().all())

    async def _names(self, model, ids) -> dict[int, dict]:
        ids = {row_id for row_id in ids if row_id is not None}
        if not ids:
            return {}
        result = await self.db_session.execute(select(model.id, model.name).where(model.id.in_(ids)))
        return {row.id: {"id": row.id, "name": row.name} for row in result.all()}

    async def leads(self) -> list[dict]:
        leads = await self._rows(self._owned(select(LeadDB), LeadDB.owner_id).order_by(LeadDB.created_at.desc()))
        owners = await self._names(UserDB, (lead.owner_id for lead in leads))
        return [{**as_dict(lead), "owner": owners.get(lead.owner_id)} for lead in leads]

    async def opportunities(self) -> list[dict]:
        opportunities = await self._rows(
            self._owned(select(OpportunityDB), OpportunityDB.owner_id).order_by(OpportunityDB.created_at.desc())
        )
        companies = await self._names(CompanyDB, (opp.company_id for opp in opportunities))
        leads = await self._names(LeadDB, (opp.lead_id for opp in opportunities))
        owners = await self._names(UserDB, (opp.owner_id for opp in opportunities))
        return [
            {
                **as_dict(opp),
                "company": companies.get(opp.company_id),
                "lead": leads.get(opp.lead_id),
                "owner": owners.get(opp.owner_id),
            }
            for opp in opportunities
        ]

    async def companies(self) -> list[dict]:
        companies = await self._rows(
            self._owned(select(CompanyDB), CompanyDB.owner_id).order_by(CompanyDB.created_at.desc())
        )
        ids = [company.id for company in companies]
        opportunities = (
            await self._rows(select(OpportunityDB).where(OpportunityDB.company_id.in_(ids))) if ids else []
        )
        by_company: dict[int, list[dict]] = {}
        for opp in opportunities:
            by_company.setdefault(opp.company_id, []).append(as_dict(opp))
        return [{**as_dict(company), "opportunities": by_company.get(company.id, [])} for company in companies]

    async def projects(self) -> list[dict]:
        projects = await self._rows(
            self._owned(select(ProjectDB), ProjectDB.owner_id).order_by(ProjectDB.created_at.desc())
        )
        users = await self._names(
            UserDB, [p.owner_id for p in projects] + [p.assigned_admin_id for p in projects]
        )
        return [
            {
                **as_dict(project),
                "owner": users.get(project.owner_id),
                "assignedAdmin": users.get(project.assigned_admin_id),
            }
            for project in projects
        ]

    async def activities(self) -> list[dict]:
        activities = await self._rows(
            self._owned(select(ActivityDB), ActivityDB.user_id).order_by(ActivityDB.occurred_at.desc())
        )
        users = await self._names(UserDB, (activity.user_id for activity in activities))
        leads = await self._names(LeadDB, (activity.lead_id for activity in activities))
        return [
            {**as_dict(activity), "user": users.get(activity.user_id), "lead": leads.get(activity.lead_id)}
            for activity in activities
        ]

    async def immediate_sales(self) -> list[dict]:
        sales = await self._rows(
            self._owned(select(ImmediateSaleDB), ImmediateSaleDB.owner_id).order_by(
                ImmediateSaleDB.created_at.desc()
            )
        )
        projects = await self._names(ProjectDB, (sale.project_id for sale in sales))
        return [{**as_dict(sale), "project": projects.get(sale.project_id)} for sale in sales]

    async def pipelines(self) -> list[dict]:
        pipelines = await self._rows(
            self._owned(select(PipelineDB), PipelineDB.owner_id).order_by(PipelineDB.order_date.desc())
        )
        companies = await self._names(CompanyDB, (pipeline.company_id for pipeline in pipelines))
        owners = await self._names(UserDB, (pipeline.owner_id for pipeline in pipelines))
        return [
            {
                **as_dict(pipeline),
                "company": companies.get(pipeline.company_id),
                "owner": owners.get(pipeline.owner_id),
            }
            for pipeline in pipelines
        ]

    async def pending_quotations(self, now: datetime) -> list[dict]:
        quotations = await self._rows(
            self._owned(select(PendingQuotationDB), PendingQuotationDB.created_by_id).order_by(
                PendingQuotationDB.created_at.desc()
            )
        )
        return [
            {
                **as_dict(quotation),
                **assess_quotation(
                    quotation.status,
                    quotation.quotation_pending_since,
                    quotation.quotation_deadline,
                    stored_urgency=quotation.urgency_level,
                    reminder_count=quotation.reminder_count or 0,
                    last_reminder_sent=quotation.last_reminder_sent,
                    now=now,
                ).to_api(),
            }
            for quotation in quotations
        ]

    async def attendance(self) -> list[dict]:
        query = (
            select(AttendanceDB, UserDB)
            .join(UserDB, UserDB.id == AttendanceDB.user_id)
            .order_by(AttendanceDB.date.desc())
        )
        result = await self.db_session.execute(self._owned(query, AttendanceDB.user_id))
        return [
            {**as_dict(record), "user": {"name": owner.name, "employeeCode": owner.employee_code}}
            for record, owner in result.all()
        ]

    async def collect(self, sections: list[str], period: str, now: datetime) -> dict:
        """Load the requested sections keyed as the workbook builder expects."""
        reports = ReportsService(self.db_session, self.user)
        loaders = {
            "leads": self.leads,
            "opportunities": self.opportunities,
            "companies": self.companies,
            "projects": self.projects,
            "activities": self.activities,
            "immediateSales": self.immediate_sales,
            "pipelines": self.pipelines,
            "pendingQuotations": lambda: self.pending_quotations(now),
            "attendance": self.attendance,
            "salesReport": lambda: reports.generate_sales_report(period, now),
            "quotationReport": lambda: reports.generate_quotation_report(period, now),
            "attendanceReport": lambda: reports.generate_attendance_report(period, now),
        }
        return {section: await loaders[section]() for section in sections}


def _resolve_sections(export_type: str) -> list[str]:
    if export_type == "all":
        return list(EXPORT_SECTIONS)
    sections = [section.strip() for section in export_type.split(",") if section.strip()]
    if not sections or any(section not in EXPORT_SECTIONS for section in sections):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid export type")
    return sections


@router.get(
    "",
    summary="Export workbook",
    description="Download CRM data as a multi-sheet Excel workbook",
    response_class=Response,
)
async def export_workbook(
    export_type: str = Query("all", alias="type"),
    period: str = Query("month"),
    user: UserDB = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> Response:
    """Build and download an ``.xlsx`` workbook.

    Args:
        export_type: ``all`` or a comma separated list of sections
        period: Reporting period for the report sheets
        user: Authenticated user
        db: Database session

    Returns:
        Workbook attachment

    Raises:
        HTTPException: 400 for unknown sections, 500 if the export fails
    """
    sections = _resolve_sections(export_type)
    now = datetime.utcnow()

    try:
        data = await ExportCollector(db, user).collect(sections, period, now)
        exporter = ExcelExportService()
        content = exporter.export_all(data, now=now)
    except Exception as e:
        logger.error("export_failed", sections=sections, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error": "Failed to export data", "details": str(e)},
        )

    file_name = exporter.generate_file_name(now=now)
    logger.info("export_generated", user_id=user.id, sections=sections, file_name=file_name)

    return Response(
        content=content,
        media_type=XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": f'attachment; filename="{file_name}"'},
    )

"""Per-user dashboard analytics.

Each dashboard component is computed independently; a failing component is
logged and replaced by its default so the rest of the dashboard still renders.
"""

import math
import time
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from salesdesk.models.attendance import AttendanceDB
from salesdesk.models.crm import (
    CompanyDB,
    ContactDB,
    CustomerSegmentDB,
    DailyFollowUpDB,
    LeadDB,
    OpportunityDB,
)
from salesdesk.models.sales import ImmediateSaleDB, PipelineDB, ProjectDB
from salesdesk.models.user import UserDB
from salesdesk.services.attendance_validation import today_ist
from salesdesk.services.customer_segmentation import Customer, CustomerSegmentationService
from salesdesk.services.predictive_analytics import PredictiveAnalyticsService
from salesdesk.services.statistical_ml import SimpleMLEngine

logger = structlog.get_logger()

MONTHLY_TARGET = 2_000_000
HIGH_VALUE_DEAL_SIZE = 100_000
ACTIVE_WINDOW = timedelta(days=30)
CHURN_INACTIVITY_DAYS = 90
DEFAULT_SALES_CYCLE_DAYS = 45
FORECAST_ACCURACY = 0.85

STAGE_COLORS = {
    "PROSPECTING": "#3B82F6",
    "QUALIFICATION": "#8B5CF6",
    "PROPOSAL": "#F59E0B",
    "NEGOTIATION": "#EF4444",
    "CLOSED_WON": "#10B981",
    "CLOSED_LOST": "#6B7280",
}

OPEN_FOLLOW_UP_STATUSES = ("SCHEDULED", "OVERDUE")
CLOSED_STAGES = ("CLOSED_WON", "CLOSED_LOST")


def default_segmentation() -> dict:
    return {
        "segments": [],
        "algorithm": "rfm",
        "silhouetteScore": 0.8,
        "explainedVariance": 0.9,
        "featureImportance": {},
    }


def default_real_time_metrics() -> dict:
    return {
        "totalRevenue": 0,
        "revenueGrowth": 0,
        "totalCustomers": 0,
        "newCustomers": 0,
        "activeCustomers": 0,
        "churnRate": 0,
        "avgDealSize": 0,
        "avgSalesCycle": 0,
    }


def default_pipeline_analytics() -> dict:
    return {
        "totalOpportunities": 0,
        "totalValue": 0,
        "avgDealSize": 0,
        "byStage": {},
        "velocity": 0,
        "conversionRate": 0,
    }


def stage_color(stage: str) -> str:
    return STAGE_COLORS.get(stage, "#6B7280")


def correlation_strength(correlation: float) -> str:
    strength = abs(correlation)
    if strength >= 0.8:
        return "Very Strong"
    if strength >= 0.6:
        return "Strong"
    if strength >= 0.4:
        return "Moderate"
    if strength >= 0.2:
        return "Weak"
    return "Very Weak"


def company_size(total_opportunities: int) -> str:
    if total_opportunities > 10:
        return "ENTERPRISE"
    if total_opportunities > 5:
        return "LARGE"
    if total_opportunities > 2:
        return "MEDIUM"
    return "SMALL"


def related_entity(follow_up: DailyFollowUpDB, names: dict[str, dict[int, str]]) -> dict:
    """Record a follow-up points at, with a deep link for the client."""
    if follow_up.opportunity_id and follow_up.opportunity_id in names["opportunities"]:
        return {
            "type": "opportunity",
            "id": follow_up.opportunity_id,
            "name": names["opportunities"][follow_up.opportunity_id],
            "url": f"/opportunities?highlight={follow_up.opportunity_id}",
        }
    if follow_up.lead_id and follow_up.lead_id in names["leads"]:
        return {
            "type": "lead",
            "id": follow_up.lead_id,
            "name": names["leads"][follow_up.lead_id],
            "url": f"/leads/{follow_up.lead_id}",
        }
    if follow_up.project_id and follow_up.project_id in names["projects"]:
        return {
            "type": "project",
            "id": follow_up.project_id,
            "name": names["projects"][follow_up.project_id],
            "url": f"/projects?highlight={follow_up.project_id}",
        }
    if follow_up.immediate_sale_id and follow_up.immediate_sale_id in names["immediate_sales"]:
        return {
            "type": "immediateSale",
            "id": follow_up.immediate_sale_id,
            "name": names["immediate_sales"][follow_up.immediate_sale_id],
            "url": f"/immediate-sales?highlight={follow_up.immediate_sale_id}",
        }
    return {
        "type": "followUp",
        "id": follow_up.id,
        "name": follow_up.action_description or "Follow-up Task",
        "url": f"/daily-followups?followUpId={follow_up.id}",
    }


class AnalyticsService:
    """Dashboard aggregation scoped to the requesting user.

    Admins see every record; everyone else sees the records they own.
    """

    def __init__(self, db_session: AsyncSession, user: UserDB):
        """Initialize analytics service.

        Args:
            db_session: Database session
            user: Requesting user
        """
        self.db_session = db_session
        self.user = user
        self.user_id = user.id
        self.is_admin = (user.role or "").lower() in ("admin", "superadmin")

    def _owned(self, query, owner_column):
        if self.is_admin:
            return query
        return query.where(owner_column == self.user_id)

    async def _scalar(self, query) -> Any:
        return (await self.db_session.execute(query)).scalar_one()

    async def _names(self, model, ids, column=None) -> dict[int, str]:
        ids = {value for value in ids if value}
        if not ids:
            return {}
        label = column if column is not None else model.name
        result = await self.db_session.execute(select(model.id, label).where(model.id.in_(ids)))
        return {row[0]: row[1] for row in result.all()}

    async def _component(self, name: str, default: Any, loader: Callable[[], Awaitable[Any]]) -> Any:
        """Run a database-backed component inside a savepoint, falling back on failure."""
        try:
            async with self.db_session.begin_nested():
                return await loader()
        except Exception as e:
            logger.warning("analytics_component_failed", component=name, error=str(e), user_id=self.user_id)
            return default

    @staticmethod
    def _compute(name: str, default: Any, compute: Callable[[], Any]) -> Any:
        try:
            return compute()
        except Exception as e:
            logger.warning("analytics_component_failed", component=name, error=str(e))
            return default

    # ========== Data loaders ==========

    async def get_historical_revenue(self, now: datetime) -> list[dict]:
        """Closed-won deal value per creation day over the last twelve months."""
        day = func.date(OpportunityDB.created_at)
        query = self._owned(
            select(day.label("day"), func.sum(OpportunityDB.deal_size).label("revenue"))
            .where(OpportunityDB.created_at >= now - timedelta(days=365), OpportunityDB.stage == "CLOSED_WON")
            .group_by(day)
            .order_by(day),
            OpportunityDB.owner_id,
        )
        rows = (await self.db_session.execute(query)).all()
        return [{"period": str(row.day)[:10], "revenue": float(row.revenue or 0)} for row in rows]

    async def get_customer_data(self, now: datetime) -> list[Customer]:
        """Companies as segmentation customers, valued by their open and won deals."""
        query = self._owned(select(CompanyDB), CompanyDB.owner_id)
        companies = (await self.db_session.execute(query)).scalars().all()
        if not companies:
            return []

        company_ids = [company.id for company in companies]
        deals = (
            await self.db_session.execute(
                select(OpportunityDB.company_id, OpportunityDB.deal_size).where(
                    OpportunityDB.company_id.in_(company_ids), OpportunityDB.stage != "CLOSED_LOST"
                )
            )
        ).all()
        contacts = (
            await self.db_session.execute(
                select(ContactDB.company_id, ContactDB.email)
                .where(ContactDB.company_id.in_(company_ids))
                .order_by(ContactDB.id)
            )
        ).all()

        deal_sizes: dict[int, list[float]] = {}
        for row in deals:
            deal_sizes.setdefault(row.company_id, []).append(row.deal_size or 0)
        emails: dict[int, str] = {}
        for row in contacts:
            emails.setdefault(row.company_id, row.email or "")

        customers = []
        for company in companies:
            sizes = deal_sizes.get(company.id, [])
            total = sum(sizes)
            customers.append(
                Customer(
                    id=str(company.id),
                    name=company.name,
                    email=emails.get(company.id, ""),
                    total_revenue=total,
                    deal_count=len(sizes),
                    avg_deal_size=total / len(sizes) if sizes else 0,
                    last_activity=company.updated_at,
                    days_since_last_activity=math.floor((now - company.updated_at).total_seconds() / 86400),
                    relationship_strength="MODERATE",
                    industry=company.type or "",
                    region=company.region or "",
                    company_size=company_size(company.total_opportunities or 0),
                )
            )
        return customers

    async def get_conversion_predictions(self) -> dict:
        """Mean open-deal probability; stored probabilities are percentages."""
        query = self._owned(
            select(OpportunityDB.probability).where(OpportunityDB.stage.not_in(CLOSED_STAGES)),
            OpportunityDB.owner_id,
        )
        probabilities = (await self.db_session.execute(query)).scalars().all()
        average = sum(p or 0 for p in probabilities) / max(len(probabilities), 1)
        return {"avgProbability": average / 100, "avgConversionRate": 0.25}

    async def get_conversion_rates(self) -> dict:
        total_leads = await self._scalar(self._owned(select(func.count(LeadDB.id)), LeadDB.owner_id))
        converted_leads = await self._scalar(
            self._owned(
                select(func.count(func.distinct(OpportunityDB.lead_id))).where(OpportunityDB.lead_id.is_not(None)),
                OpportunityDB.owner_id,
            )
        )
        total_opportunities = await self._scalar(
            self._owned(select(func.count(OpportunityDB.id)), OpportunityDB.owner_id)
        )
        pipeline_query = select(func.count(PipelineDB.id))
        if not self.is_admin:
            pipeline_query = pipeline_query.join(OpportunityDB, PipelineDB.opportunity_id == OpportunityDB.id).where(
                OpportunityDB.owner_id == self.user_id
            )
        pipeline_count = await self._scalar(pipeline_query)

        lead_to_opportunity = converted_leads / total_leads * 100 if total_leads else 0
        opportunity_to_pipeline = pipeline_count / total_opportunities * 100 if total_opportunities else 0
        return {
            "leadToOpportunity": round(lead_to_opportunity, 1),
            "opportunityToPipeline": round(opportunity_to_pipeline, 1),
        }

    async def get_pipeline_analytics(self) -> dict:
        rows = (
            await self.db_session.execute(
                self._owned(select(OpportunityDB.stage, OpportunityDB.deal_size), OpportunityDB.owner_id)
            )
        ).all()

        by_stage: dict[str, int] = {}
        for row in rows:
            by_stage[row.stage] = by_stage.get(row.stage, 0) + 1
        total_value = sum(row.deal_size or 0 for row in rows)

        return {
            "totalOpportunities": len(rows),
            "totalValue": total_value,
            "avgDealSize": total_value / max(len(rows), 1),
            "byStage": by_stage,
            # closed deals per month
            "velocity": by_stage.get("CLOSED_WON", 0) / 30,
            "conversionRate": 0.25,
        }

    async def get_real_time_metrics(self, now: datetime) -> dict:
        """Revenue, customer and deal-size KPIs.

        Growth compares closed-won value created in the last 30 days with the
        30 days before; churn is the share of customers untouched for 90 days.
        """
        since = now - ACTIVE_WINDOW

        won_query = select(OpportunityDB.deal_size, OpportunityDB.created_at, OpportunityDB.updated_at).where(
            OpportunityDB.stage == "CLOSED_WON"
        )
        won = (await self.db_session.execute(self._owned(won_query, OpportunityDB.owner_id))).all()
        total_revenue = sum(row.deal_size or 0 for row in won)
        recent = sum(row.deal_size or 0 for row in won if row.created_at >= since)
        previous = sum(row.deal_size or 0 for row in won if since - ACTIVE_WINDOW <= row.created_at < since)
        revenue_growth = (recent - previous) / previous if previous else 0

        count_companies = select(func.count(CompanyDB.id))
        total_customers = await self._scalar(self._owned(count_companies, CompanyDB.owner_id))
        new_customers = await self._scalar(
            self._owned(count_companies.where(CompanyDB.created_at >= since), CompanyDB.owner_id)
        )
        active_customers = await self._scalar(
            self._owned(count_companies.where(CompanyDB.updated_at >= since), CompanyDB.owner_id)
        )
        dormant_customers = await self._scalar(
            self._owned(
                count_companies.where(CompanyDB.updated_at < now - timedelta(days=CHURN_INACTIVITY_DAYS)),
                CompanyDB.owner_id,
            )
        )

        deal_sizes = (
            await self.db_session.execute(self._owned(select(OpportunityDB.deal_size), OpportunityDB.owner_id))
        ).scalars().all()
        cycles = [(row.updated_at - row.created_at).days for row in won if row.updated_at and row.created_at]

        return {
            "totalRevenue": total_revenue,
            "revenueGrowth": round(revenue_growth, 4),
            "totalCustomers": total_customers,
            "newCustomers": new_customers,
            "activeCustomers": active_customers,
            "churnRate": round(dormant_customers / total_customers, 4) if total_customers else 0,
            "avgDealSize": sum(size or 0 for size in deal_sizes) / len(deal_sizes) if deal_sizes else 0,
            "avgSalesCycle": round(sum(cycles) / len(cycles)) if cycles else DEFAULT_SALES_CYCLE_DAYS,
        }

    async def get_high_value_opportunities(self) -> list[dict]:
        query = self._owned(
            select(OpportunityDB)
            .where(OpportunityDB.deal_size >= HIGH_VALUE_DEAL_SIZE, OpportunityDB.stage.not_in(CLOSED_STAGES))
            .order_by(OpportunityDB.deal_size.desc())
            .limit(5),
            OpportunityDB.owner_id,
        )
        opportunities = (await self.db_session.execute(query)).scalars().all()
        companies = await self._names(CompanyDB, (opp.company_id for opp in opportunities))
        return [
            {
                "id": opp.id,
                "name": opp.name,
                "company": companies.get(opp.company_id, "Unknown"),
                "value": opp.deal_size or 0,
                "probability": opp.probability or 0,
            }
            for opp in opportunities
        ]

    async def get_lead_sources(self) -> list[dict]:
        """Lead counts per source in first-seen order, with whole percentages."""
        sources = (
            await self.db_session.execute(
                self._owned(select(LeadDB.source).order_by(LeadDB.id), LeadDB.owner_id)
            )
        ).scalars().all()

        counts: dict[str, int] = {}
        for source in sources:
            key = source or "Unknown"
            counts[key] = counts.get(key, 0) + 1
        total = len(sources)
        return [
            {"source": source, "count": count, "percentage": round(count / total * 100) if total else 0}
            for source, count in counts.items()
        ]

    async def get_total_leads(self) -> int:
        return await self._scalar(self._owned(select(func.count(LeadDB.id)), LeadDB.owner_id))

    def _overdue_follow_ups_query(self, query, now: datetime):
        query = query.where(
            DailyFollowUpDB.follow_up_date < now, DailyFollowUpDB.status.in_(OPEN_FOLLOW_UP_STATUSES)
        )
        return self._owned(query, DailyFollowUpDB.created_by_id)

    async def get_overdue_follow_ups(self, now: datetime) -> int:
        return await self._scalar(self._overdue_follow_ups_query(select(func.count(DailyFollowUpDB.id)), now))

    async def get_overdue_follow_up_details(self, now: datetime) -> list[dict]:
        follow_ups = (
            await self.db_session.execute(
                self._overdue_follow_ups_query(select(DailyFollowUpDB), now)
                .order_by(DailyFollowUpDB.follow_up_date)
                .limit(5)
            )
        ).scalars().all()

        names = {
            "projects": await self._names(ProjectDB, (f.project_id for f in follow_ups)),
            "immediate_sales": await self._names(
                ImmediateSaleDB, (f.immediate_sale_id for f in follow_ups), ImmediateSaleDB.contractor
            ),
            "opportunities": await self._names(OpportunityDB, (f.opportunity_id for f in follow_ups)),
            "leads": await self._names(LeadDB, (f.lead_id for f in follow_ups)),
            "companies": await self._names(CompanyDB, (f.company_id for f in follow_ups)),
            "users": await self._names(UserDB, (f.created_by_id for f in follow_ups)),
        }

        details = []
        for follow_up in follow_ups:
            company = (
                names["projects"].get(follow_up.project_id)
                or names["immediate_sales"].get(follow_up.immediate_sale_id)
                or names["companies"].get(follow_up.company_id)
                or "Unknown"
            )
            details.append(
                {
                    "id": follow_up.id,
                    "company": company,
                    "opportunity": follow_up.action_description or "Follow-up Task",
                    "dueDate": follow_up.follow_up_date.date().isoformat(),
                    "dueDateIso": follow_up.follow_up_date.isoformat(),
                    "daysOverdue": math.ceil((now - follow_up.follow_up_date).total_seconds() / 86400),
                    "assignedTo": follow_up.assigned_to,
                    "createdById": follow_up.created_by_id,
                    "createdByName": names["users"].get(follow_up.created_by_id) or follow_up.assigned_to,
                    "relatedEntity": related_entity(follow_up, names),
                }
            )
        return details

    async def get_attendance_data(self, now: datetime) -> dict:
        """Today's (IST) submissions against the users expected to submit."""
        today = today_ist(now)
        query = self._owned(select(AttendanceDB).where(AttendanceDB.date == today), AttendanceDB.user_id)
        records = (await self.db_session.execute(query)).scalars().all()

        if self.is_admin:
            users_query = select(UserDB.id, UserDB.name).where(func.lower(UserDB.role).not_in(("admin", "superadmin")))
        else:
            users_query = select(UserDB.id, UserDB.name).where(UserDB.id == self.user_id)
        users = (await self.db_session.execute(users_query)).all()

        submitted_ids = {record.user_id for record in records}
        submitter_names = await self._names(UserDB, submitted_ids)

        return {
            "total": len(users),
            "submitted": len(records),
            "missing": [{"name": user.name, "id": str(user.id)} for user in users if user.id not in submitted_ids],
            "present": [
                {
                    "name": submitter_names.get(record.user_id, "Unknown"),
                    "id": str(record.user_id),
                    "time": (record.submitted_at or now).isoformat(),
                }
                for record in records
            ],
        }

    async def calculate_kpi_metrics(self) -> dict:
        """Lead quality from won conversions and deal size, plus segment counts."""
        lead_ids = (
            await self.db_session.execute(self._owned(select(LeadDB.id), LeadDB.owner_id))
        ).scalars().all()

        by_lead: dict[int, list] = {}
        if lead_ids:
            rows = (
                await self.db_session.execute(
                    self._owned(
                        select(OpportunityDB.lead_id, OpportunityDB.stage, OpportunityDB.deal_size).where(
                            OpportunityDB.lead_id.in_(lead_ids)
                        ),
                        OpportunityDB.owner_id,
                    )
                )
            ).all()
            for row in rows:
                by_lead.setdefault(row.lead_id, []).append(row)

        total_leads = len(lead_ids)
        successful = sum(1 for lead_id in lead_ids if any(o.stage == "CLOSED_WON" for o in by_lead.get(lead_id, [])))
        avg_deal_size = sum(
            sum(o.deal_size or 0 for o in by_lead.get(lead_id, [])) / max(len(by_lead.get(lead_id, [])), 1)
            for lead_id in lead_ids
        ) / max(total_leads, 1)

        conversion_rate = successful / total_leads * 100 if total_leads else 0
        deal_size_score = min(100, avg_deal_size / 50_000 * 100)
        lead_quality = conversion_rate * 0.6 + deal_size_score * 0.4

        segments = await self._scalar(select(func.count(func.distinct(CustomerSegmentDB.segment_name))))

        return {
            "leadQualityScore": round(lead_quality, 1),
            "predictiveAccuracy": 0,
            "customerSegments": segments,
            "processingTime": 0,
        }

    async def calculate_correlation_analysis(self) -> list[dict]:
        rows = (
            await self.db_session.execute(
                self._owned(
                    select(OpportunityDB.deal_size, OpportunityDB.probability).order_by(OpportunityDB.id),
                    OpportunityDB.owner_id,
                )
            )
        ).all()
        total_leads = await self.get_total_leads()

        revenues = [row.deal_size or 0 for row in rows]
        if len(revenues) < 3:
            return []

        probabilities = [row.probability or 0 for row in rows]
        lead_counts = [total_leads] * len(revenues)
        time_index = list(range(len(revenues)))

        pairs = [
            (["Revenue", "Leads"], revenues, lead_counts),
            (["Revenue", "Deals"], revenues, probabilities),
            (["Leads", "Deals"], lead_counts, probabilities),
            (["Revenue", "Time"], revenues, time_index),
            (["Deals", "Time"], lead_counts, time_index),
        ]
        correlations = []
        for variables, x, y in pairs:
            coefficient = SimpleMLEngine.correlation_coefficient(x, y)
            correlations.append(
                {
                    "vars": variables,
                    "correlation": round(abs(coefficient), 2),
                    "strength": correlation_strength(coefficient),
                }
            )
        return correlations

    # ========== Statistical analyses ==========

    @staticmethod
    def enhanced_revenue_analysis(revenue_data: list[dict]) -> dict:
        if len(revenue_data) < 3:
            return {
                "trend": "stable",
                "confidence": 0.5,
                "forecast": [],
                "insights": ["Insufficient data for trend analysis"],
            }

        forecast = SimpleMLEngine.forecast_time_series([item["revenue"] for item in revenue_data], 3, 0.95)
        if all(f.trend == "increasing" for f in forecast):
            trend = "increasing"
        elif all(f.trend == "decreasing" for f in forecast):
            trend = "decreasing"
        else:
            trend = "stable"
        confidence = sum(f.confidence for f in forecast) / len(forecast)
        first = forecast[0]

        return {
            "trend": trend,
            "confidence": confidence,
            "forecast": [f.model_dump() for f in forecast],
            "insights": [
                f"Revenue showing {trend} trend with {confidence * 100:.1f}% confidence",
                f"Next month forecast: {first.predicted:,.0f}",
                f"Forecast range: {first.lowerBound:,.0f} - {first.upperBound:,.0f}",
            ],
        }

    @staticmethod
    def customer_churn_analysis(customers: list[Customer]) -> dict:
        predictions = [
            {
                "customerId": customer.id,
                "churnProbability": SimpleMLEngine.predict_churn_probability(
                    customer.days_since_last_activity,
                    customer.total_revenue,
                    customer.deal_count,
                    customer.avg_deal_size,
                    customer.relationship_strength,
                ),
                "customer": customer.to_api(),
            }
            for customer in customers
        ]
        avg_risk = sum(p["churnProbability"] for p in predictions) / len(predictions) if predictions else 0
        high_risk = sum(1 for p in predictions if p["churnProbability"] > 0.7)

        return {
            "avgChurnRisk": avg_risk,
            "highRiskCount": high_risk,
            "predictions": predictions,
            "insights": [
                f"{high_risk} customers at high risk of churning",
                f"Average churn risk: {avg_risk * 100:.1f}%",
                f"Focus retention efforts on {'high-risk customers' if high_risk else 'customer engagement'}",
            ],
        }

    @staticmethod
    def detect_revenue_anomalies(revenue_data: list[dict]) -> dict:
        if len(revenue_data) < 5:
            return {"anomalies": [], "scores": [], "insights": ["Insufficient data for anomaly detection"]}

        result = SimpleMLEngine.detect_anomalies([item["revenue"] for item in revenue_data], 2)
        scores = result["scores"]
        anomalies = [
            {
                "period": revenue_data[index]["period"],
                "revenue": revenue_data[index]["revenue"],
                "anomalyScore": scores[index],
                "deviation": abs(scores[index]),
            }
            for index in result["anomalies"]
        ]
        return {
            "anomalies": anomalies,
            "scores": scores,
            "insights": [
                f"{len(anomalies)} revenue anomalies detected",
                "Investigate unusual revenue patterns" if anomalies else "Revenue patterns are stable",
                "Anomaly threshold: 2 standard deviations",
            ],
        }

    @staticmethod
    def generate_recommendations(segmentation: dict, pipeline: dict, forecast: list[dict]) -> list[str]:
        recommendations = []

        at_risk = next((s for s in segmentation.get("segments", []) if s.get("name") == "At Risk"), None)
        if at_risk and at_risk.get("customers"):
            recommendations.append(
                f"{len(at_risk['customers'])} customers are at risk of churning - immediate action needed"
            )

        velocity = pipeline.get("velocity", 0)
        if velocity < 1:
            recommendations.append("Pipeline velocity is critically low - focus on moving deals through stages faster")
        elif velocity < 2:
            recommendations.append("Pipeline velocity is below target - consider accelerating deal progression")

        if forecast and forecast[0].get("confidence", 1) < 0.7:
            recommendations.append("Revenue forecast confidence is low - review pipeline assumptions")

        recommendations.append("Recommendations refreshed from current pipeline and customer data")
        return recommendations

    @staticmethod
    def generate_alerts(metrics: dict) -> list[str]:
        alerts = []
        if metrics.get("churnRate", 0) > 0.1:
            alerts.append("High churn rate detected - customer retention strategy needed")
        if metrics.get("revenueGrowth", 0) < 0:
            alerts.append("Revenue decline detected - immediate investigation required")
        if metrics.get("activeCustomers", 0) < metrics.get("totalCustomers", 0) * 0.7:
            alerts.append("Low customer engagement - reactivation campaign recommended")
        return alerts

    @staticmethod
    def identify_opportunities(customers: list[Customer]) -> list[str]:
        opportunities = []
        high_value = [c for c in customers if c.total_revenue > 500_000]
        if high_value:
            opportunities.append(f"{len(high_value)} high-value customers identified for premium services")
        growing = [c for c in customers if c.deal_count > 5 and c.days_since_last_activity < 30]
        if growing:
            opportunities.append(
                f"{len(growing)} customers showing growth patterns - expansion opportunities available"
            )
        return opportunities

    # ========== Dashboard ==========

    async def build_dashboard(self, now: datetime | None = None) -> dict:
        """Assemble the full analytics payload for the user.

        Args:
            now: Reference time in UTC

        Returns:
            Dashboard sections keyed as the client expects; failed components
            carry their defaults.
        """
        now = now or datetime.utcnow()
        started = time.perf_counter()

        revenue_data = await self._component("historical_revenue", [], lambda: self.get_historical_revenue(now))
        customers = await self._component("customer_data", [], lambda: self.get_customer_data(now))

        revenue_forecast = self._compute(
            "revenue_forecast",
            [],
            lambda: [f.to_api() for f in PredictiveAnalyticsService.forecast_revenue(revenue_data, today=now.date())],
        )
        conversion_predictions = await self._component(
            "conversion_predictions",
            {"avgProbability": 0.25, "avgConversionRate": 0.25},
            self.get_conversion_predictions,
        )
        segmentation = self._compute(
            "segmentation",
            default_segmentation(),
            lambda: CustomerSegmentationService.perform_rfm_segmentation(customers).to_api(),
        )
        revenue_analysis = self._compute(
            "revenue_analysis",
            {"trend": "stable", "confidence": 0.5, "forecast": [], "insights": ["Analysis not available"]},
            lambda: self.enhanced_revenue_analysis(revenue_data),
        )
        churn_analysis = self._compute(
            "churn_analysis",
            {"avgChurnRisk": 0, "highRiskCount": 0, "predictions": [], "insights": ["Analysis not available"]},
            lambda: self.customer_churn_analysis(customers),
        )
        anomaly_detection = self._compute(
            "anomaly_detection",
            {"anomalies": [], "scores": [], "insights": ["Analysis not available"]},
            lambda: self.detect_revenue_anomalies(revenue_data),
        )
        kpi_metrics = await self._component(
            "kpi_metrics",
            {"leadQualityScore": 0, "predictiveAccuracy": 0, "customerSegments": 0, "processingTime": 0},
            self.calculate_kpi_metrics,
        )
        correlations = await self._component("correlation_analysis", [], self.calculate_correlation_analysis)
        pipeline = await self._component(
            "pipeline_analytics", default_pipeline_analytics(), self.get_pipeline_analytics
        )
        metrics = await self._component(
            "real_time_metrics", default_real_time_metrics(), lambda: self.get_real_time_metrics(now)
        )
        conversion_rates = await self._component(
            "conversion_rates", {"leadToOpportunity": 0, "opportunityToPipeline": 0}, self.get_conversion_rates
        )
        conversion_predictions["avgConversionRate"] = conversion_rates["leadToOpportunity"] / 100

        high_value = await self._component("high_value_opportunities", [], self.get_high_value_opportunities)
        lead_sources = await self._component("lead_sources", [], self.get_lead_sources)
        total_leads = await self._component("total_leads", 0, self.get_total_leads)
        overdue_count = await self._component("overdue_follow_ups", 0, lambda: self.get_overdue_follow_ups(now))
        overdue_details = await self._component(
            "overdue_follow_up_details", [], lambda: self.get_overdue_follow_up_details(now)
        )
        attendance = await self._component(
            "attendance",
            {"total": 0, "submitted": 0, "missing": [], "present": []},
            lambda: self.get_attendance_data(now),
        )

        at_risk = next((s for s in segmentation["segments"] if s.get("name") == "At Risk"), None)
        total_opportunities = pipeline["totalOpportunities"]

        data = {
            "revenue": {
                "current": metrics["totalRevenue"],
                "growth": metrics["revenueGrowth"],
                "forecast": revenue_forecast,
                "byMonth": revenue_data,
            },
            "customers": {
                "total": metrics["totalCustomers"],
                "new": metrics["newCustomers"],
                "active": metrics["activeCustomers"],
                "churnRate": metrics["churnRate"],
                "segmentation": segmentation,
            },
            "pipeline": [
                {"stage": stage, "count": count, "color": stage_color(stage)}
                for stage, count in pipeline["byStage"].items()
                if count > 0
            ],
            "predictions": {
                "nextMonthRevenue": revenue_forecast[0]["predicted"] if revenue_forecast else 0,
                "conversionProbability": conversion_predictions["avgProbability"],
                "atRiskCustomers": len(at_risk["customers"]) if at_risk else 0,
                "highValueOpportunities": high_value,
                "revenueTrend": revenue_analysis["trend"],
                "churnRisk": churn_analysis["avgChurnRisk"],
                "forecastConfidence": revenue_analysis["confidence"],
                "anomalyCount": len(anomaly_detection["anomalies"]),
            },
            "performance": {
                "avgDealSize": metrics["avgDealSize"],
                "avgSalesCycle": metrics["avgSalesCycle"],
                "conversionRate": conversion_predictions["avgConversionRate"],
                "forecastAccuracy": FORECAST_ACCURACY,
            },
            "kpiMetrics": kpi_metrics,
            "aiInsights": {
                "recommendations": self.generate_recommendations(segmentation, pipeline, revenue_forecast),
                "alerts": self.generate_alerts(metrics),
                "opportunities": self.identify_opportunities(customers),
                "anomalies": anomaly_detection,
                "churnAnalysis": churn_analysis,
                "revenueAnalysis": revenue_analysis,
            },
            "correlationAnalysis": correlations,
            "insights": {
                "topPerformingSource": lead_sources[0] if lead_sources else None,
                "conversionTrend": "Improving" if metrics["revenueGrowth"] >= 0 else "Declining",
                "pipelineHealth": min(
                    100.0,
                    max(
                        0.0,
                        total_opportunities / max(1, total_opportunities + metrics["totalCustomers"]) * 100,
                    ),
                ),
            },
            "conversionRate": conversion_rates["leadToOpportunity"],
            "conversionRates": conversion_rates,
            "leadSources": lead_sources,
            "totals": {
                "leads": total_leads,
                "opportunities": total_opportunities,
                "companies": metrics["totalCustomers"],
                "overdueFollowUps": overdue_count,
            },
            "attendance": attendance,
            "overdueFollowups": overdue_details,
            "monthlyTarget": {"target": MONTHLY_TARGET, "achieved": metrics["totalRevenue"] or 0},
        }

        data["aiInsights"]["statisticalInsights"] = self._compute(
            "statistical_insights",
            ["Statistical analysis not available due to error"],
            lambda: SimpleMLEngine.generate_insights(data),
        )
        data["kpiMetrics"]["processingTime"] = round(time.perf_counter() - started, 2)

        logger.info(
            "analytics_dashboard_built",
            user_id=self.user_id,
            duration_seconds=data["kpiMetrics"]["processingTime"],
        )
        return data

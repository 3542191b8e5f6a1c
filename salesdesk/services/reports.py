"""Period reports over opportunities, quotations, attendance and pipelines."""

from datetime import date, datetime, timedelta

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from salesdesk.models.attendance import AttendanceDB, AttendanceStatus
from salesdesk.models.base import as_dict
from salesdesk.models.crm import OpportunityDB
from salesdesk.models.sales import PendingQuotationDB, PipelineDB
from salesdesk.models.user import UserDB
from salesdesk.services.attendance_validation import today_ist
from salesdesk.services.weighted_pipeline import (
    PERIOD_DAYS,
    VelocityMetrics,
    WeightedPipelineService,
    deal_from_opportunity,
    deal_from_pipeline,
)

logger = structlog.get_logger()

REPORT_PERIODS = ("week", "month", "quarter", "year")

PRIORITY_RANK = {"HIGH": 0, "MEDIUM": 1, "LOW": 2}

SALES_STAGES = [
    ("Prospecting", "PROSPECTING"),
    ("Qualification", "QUALIFICATION"),
    ("Proposal", "PROPOSAL"),
    ("Negotiation", "NEGOTIATION"),
    ("Closed Won", "CLOSED_WON"),
    ("Closed Lost", "CLOSED_LOST"),
]

# Display stage for each pipeline status in the pipeline report
PIPELINE_STATUS_LABELS = {
    "ORDER_RECEIVED": "Proposal",
    "ORDER_PROCESSING": "Proposal",
    "CONTRACT_SIGNING": "Negotiation",
    "PRODUCTION_STARTED": "Negotiation",
    "QUALITY_CHECK": "Negotiation",
    "PACKING_SHIPPING": "Final Approval",
    "SHIPPED": "Final Approval",
    "DELIVERED": "Closed Won",
    "INSTALLATION_STARTED": "Closed Won",
    "INSTALLATION_COMPLETE": "Closed Won",
    "PAYMENT_RECEIVED": "Closed Won",
    "PROJECT_COMPLETE": "Closed Won",
    "ON_HOLD": "On Hold",
    "DELAYED": "On Hold",
    "CANCELLED": "Closed Lost",
    "DISPUTED": "On Hold",
    "LOST_TO_COMPETITOR": "Closed Lost",
}

FORECAST_STAGE_PROBABILITIES = {
    "PROSPECTING": 0.1,
    "QUALIFICATION": 0.2,
    "PROPOSAL": 0.4,
    "NEGOTIATION": 0.6,
    "FINAL_APPROVAL": 0.8,
    "CLOSED_WON": 1.0,
    "CLOSED_LOST": 0.0,
}

DEFAULT_CONVERSION_RATE = 0.3
MAX_REPORT_DEALS = 100


def period_start(period: str, now: datetime | None = None) -> datetime:
    """Start of a calendar reporting period.

    ``week`` is the trailing seven days; ``month``, ``quarter`` and ``year``
    start at the beginning of the current calendar month, quarter and year.
    """
    now = now or datetime.utcnow()
    if period == "week":
        return now - timedelta(days=7)
    if period == "month":
        return datetime(now.year, now.month, 1)
    if period == "quarter":
        return datetime(now.year, (now.month - 1) // 3 * 3 + 1, 1)
    if period == "year":
        return datetime(now.year, 1, 1)
    return datetime.min


def _month_label(moment: date) -> str:
    return moment.strftime("%b %Y")


def _day_label(moment: date) -> str:
    return f"{moment.strftime('%b')} {moment.day}"


def _months_back(moment: date, months: int) -> date:
    index = moment.year * 12 + moment.month - 1 - months
    return date(index // 12, index % 12 + 1, 1)


def _trend_label(period: str, moment: datetime) -> str:
    if period in ("year", "quarter"):
        return _month_label(moment)
    if period == "month":
        return f"W{min(4, (moment.day + 6) // 7)}"
    return _day_label(moment)


def _trend_buckets(period: str, today: date) -> list[str]:
    if period == "year":
        return [_month_label(_months_back(today, offset)) for offset in range(11, -1, -1)]
    if period == "quarter":
        return [_month_label(_months_back(today, offset)) for offset in range(2, -1, -1)]
    if period == "month":
        return [f"W{week}" for week in range(1, 5)]
    return [_day_label(today - timedelta(days=offset)) for offset in range(6, -1, -1)]


class ReportsService:
    """Builds reports scoped to the requesting user.

    Admins (or a service call without a user) see every record; everyone else
    only sees their own.
    """

    def __init__(self, db_session: AsyncSession, user: UserDB | None = None):
        """Initialize reports service.

        Args:
            db_session: Database session
            user: Requesting user, None for an unscoped report
        """
        self.db_session = db_session
        self.user = user
        self.is_admin = user is None or (user.role or "").lower() in ("admin", "superadmin")

    async def _user_names(self, user_ids) -> dict[int, str]:
        ids = [user_id for user_id in user_ids if user_id is not None]
        if not ids:
            return {}
        result = await self.db_session.execute(
            select(UserDB.id, UserDB.name, UserDB.email).where(UserDB.id.in_(ids))
        )
        return {row.id: row.name or row.email or f"User {row.id}" for row in result.all()}

    async def _opportunities(self, period: str, now: datetime) -> list[OpportunityDB]:
        query = select(OpportunityDB).where(OpportunityDB.created_at >= period_start(period, now))
        if not self.is_admin:
            query = query.where(OpportunityDB.owner_id == self.user.id)
        result = await self.db_session.execute(query)
        return list(result.scalars().all())

    async def generate_sales_report(self, period: str, now: datetime | None = None) -> dict:
        """Revenue, conversion, stage breakdown, trends and top performers."""
        now = now or datetime.utcnow()
        try:
            opportunities = await self._opportunities(period, now)

            closed_won = [opp for opp in opportunities if opp.stage == "CLOSED_WON"]
            total_revenue = sum(opp.deal_size or 0 for opp in closed_won)
            total_deals = len(closed_won)
            conversion_rate = round(total_deals / len(opportunities) * 100) if opportunities else 0

            pipeline_stages = [
                {
                    "stage": label,
                    "count": sum(1 for opp in opportunities if opp.stage == value),
                    "value": sum(opp.deal_size or 0 for opp in opportunities if opp.stage == value),
                }
                for label, value in SALES_STAGES
            ]

            trends = {
                label: {"month": label, "revenue": 0.0, "deals": 0}
                for label in _trend_buckets(period, now.date())
            }
            for opp in closed_won:
                label = _trend_label(period, opp.created_at)
                bucket = trends.setdefault(label, {"month": label, "revenue": 0.0, "deals": 0})
                bucket["revenue"] += opp.deal_size or 0
                bucket["deals"] += 1

            owner_stats: dict[int, dict] = {}
            for opp in opportunities:
                if opp.owner_id is None:
                    continue
                stats = owner_stats.setdefault(opp.owner_id, {"deals": 0, "revenue": 0.0})
                if opp.stage == "CLOSED_WON":
                    stats["deals"] += 1
                    stats["revenue"] += opp.deal_size or 0

            names = await self._user_names(owner_stats)
            top_performers = sorted(
                (
                    {"name": names.get(owner_id, f"User {owner_id}"), **stats}
                    for owner_id, stats in owner_stats.items()
                ),
                key=lambda entry: (entry["revenue"], entry["deals"]),
                reverse=True,
            )[:5]

            return {
                "totalRevenue": total_revenue,
                "totalDeals": total_deals,
                "conversionRate": conversion_rate,
                "averageDealSize": total_revenue / total_deals if total_deals else 0,
                "topPerformers": top_performers,
                "pipelineStages": pipeline_stages,
                "monthlyTrends": list(trends.values()),
            }
        except Exception as e:
            logger.error("sales_report_failed", error=str(e), period=period)
            raise RuntimeError("Failed to generate sales report") from e

    async def generate_quotation_report(self, period: str, now: datetime | None = None) -> dict:
        """Quotation counts by status, overdue count, value, response time and top clients."""
        now = now or datetime.utcnow()
        try:
            query = select(PendingQuotationDB).where(PendingQuotationDB.created_at >= period_start(period, now))
            if not self.is_admin:
                query = query.where(PendingQuotationDB.created_by_id == self.user.id)
            result = await self.db_session.execute(query)
            quotations = list(result.scalars().all())

            response_times = [
                (quote.updated_at - quote.created_at).total_seconds() / 86400
                for quote in quotations
                if quote.status not in ("PENDING", "SENT")
            ]
            response_times = [value for value in response_times if value >= 0]

            clients: dict[str, dict] = {}
            for quote in quotations:
                entry = clients.setdefault(quote.project_or_client_name, {"quotations": 0, "value": 0.0})
                entry["quotations"] += 1
                entry["value"] += quote.order_value or 0

            top_clients = sorted(
                ({"name": name, **entry} for name, entry in clients.items()),
                key=lambda entry: entry["value"],
                reverse=True,
            )[:10]

            return {
                "totalQuotations": len(quotations),
                "pendingQuotations": sum(1 for quote in quotations if quote.status == "PENDING"),
                "acceptedQuotations": sum(1 for quote in quotations if quote.status == "ACCEPTED"),
                "rejectedQuotations": sum(1 for quote in quotations if quote.status == "REJECTED"),
                "overdueQuotations": sum(
                    1 for quote in quotations if quote.quotation_deadline and quote.quotation_deadline < now
                ),
                "totalValue": sum(quote.order_value or 0 for quote in quotations),
                "averageResponseTime": (
                    round(sum(response_times) / len(response_times), 1) if response_times else 0
                ),
                "topClients": top_clients,
            }
        except Exception as e:
            logger.error("quotation_report_failed", error=str(e), period=period)
            raise RuntimeError("Failed to generate quotation report") from e

    async def generate_attendance_report(self, period: str, now: datetime | None = None) -> dict:
        """Today's presence plus a daily trend over the period window.

        Days are IST calendar days; the trend window is 7, 30, 90 or 365 days.
        """
        now = now or datetime.utcnow()
        try:
            if self.is_admin:
                total_employees = (await self.db_session.execute(select(func.count(UserDB.id)))).scalar_one()
            else:
                total_employees = 1

            today = today_ist(now)
            window = PERIOD_DAYS.get(period, 30)
            start_day = today - timedelta(days=window - 1)

            query = select(AttendanceDB.user_id, AttendanceDB.date, AttendanceDB.status).where(
                AttendanceDB.date >= start_day, AttendanceDB.date <= today
            )
            if not self.is_admin:
                query = query.where(AttendanceDB.user_id == self.user.id)
            records = (await self.db_session.execute(query)).all()

            today_records = [record for record in records if record.date == today]
            present_today = len(today_records)

            per_day: dict[date, int] = {}
            per_user: dict[int, int] = {}
            for record in records:
                per_day[record.date] = per_day.get(record.date, 0) + 1
                per_user[record.user_id] = per_user.get(record.user_id, 0) + 1

            daily = []
            for offset in range(window - 1, -1, -1):
                day = today - timedelta(days=offset)
                present = per_day.get(day, 0)
                daily.append(
                    {"date": day.isoformat(), "present": present, "absent": max(0, total_employees - present)}
                )

            ranked = sorted(per_user.items(), key=lambda item: item[1], reverse=True)[:5]
            names = await self._user_names(user_id for user_id, _ in ranked)
            top_performers = [
                {
                    "name": names.get(user_id, f"User {user_id}"),
                    "attendanceRate": round(count / max(window, 1) * 100, 1),
                }
                for user_id, count in ranked
            ]

            return {
                "totalEmployees": total_employees,
                "presentToday": present_today,
                "absentToday": max(0, total_employees - present_today),
                "lateSubmissions": sum(
                    1 for record in today_records if record.status == AttendanceStatus.AUTO_FLAGGED.value
                ),
                "monthlyAttendance": daily,
                "topPerformers": top_performers,
            }
        except Exception as e:
            logger.error("attendance_report_failed", error=str(e), period=period)
            raise RuntimeError("Failed to generate attendance report") from e

    async def generate_pipeline_report(self, period: str, now: datetime | None = None) -> dict:
        """Stage distribution, weighted value and velocity for pipelines in the period."""
        now = now or datetime.utcnow()
        try:
            query = (
                select(PipelineDB, UserDB.name, UserDB.email)
                .outerjoin(UserDB, UserDB.id == PipelineDB.owner_id)
                .where(PipelineDB.created_at >= period_start(period, now))
                .order_by(PipelineDB.created_at.desc())
            )
            if not self.is_admin:
                query = query.where(PipelineDB.owner_id == self.user.id)
            rows = (await self.db_session.execute(query)).all()
            pipelines = [row[0] for row in rows]

            stage_distribution: dict[str, int] = {}
            stage_values: dict[str, float] = {}
            for pipeline in pipelines:
                label = PIPELINE_STATUS_LABELS.get(pipeline.status, "Prospecting")
                stage_distribution[label] = stage_distribution.get(label, 0) + 1
                stage_values[label] = stage_values.get(label, 0) + (pipeline.order_value or 0)

            total_deals = len(pipelines)
            deals = []
            for pipeline, owner_name, owner_email in rows:
                deal = deal_from_pipeline(pipeline, owner_name, owner_email, now=now)
                probability = min(max((pipeline.progress_percentage or 0) / 100, 0.1), 1.0)
                deals.append(deal.model_copy(update={"probability": probability}))

            velocity = WeightedPipelineService.calculate_velocity_metrics(deals)
            average_probability = (
                sum(pipeline.progress_percentage or 0 for pipeline in pipelines) / total_deals / 100
                if total_deals
                else 0
            )
            closed = sum(1 for pipeline in pipelines if pipeline.status in ("PROJECT_COMPLETE", "PAYMENT_RECEIVED"))

            return {
                "metrics": {
                    "totalDeals": total_deals,
                    "totalValue": sum(pipeline.order_value or 0 for pipeline in pipelines),
                    "weightedValue": sum(
                        (pipeline.order_value or 0) * (pipeline.progress_percentage or 0) / 100
                        for pipeline in pipelines
                    ),
                    "averageProbability": average_probability,
                    "velocity": velocity.velocity_per_month,
                    "velocityDetails": velocity.to_api(),
                    "stageDistribution": stage_distribution,
                    "stageValues": stage_values,
                    "conversionRate": closed / max(total_deals, 1),
                },
                "deals": [as_dict(pipeline) for pipeline in pipelines[:MAX_REPORT_DEALS]],
                "recommendations": self.generate_pipeline_recommendations(
                    stage_distribution, average_probability, velocity
                ),
            }
        except Exception as e:
            logger.error("pipeline_report_failed", error=str(e), period=period)
            raise RuntimeError("Failed to generate pipeline report") from e

    async def generate_forecast_report(self, period: str, now: datetime | None = None) -> dict:
        """Weighted, optimistic and pessimistic forecasts with a six month projection."""
        now = now or datetime.utcnow()
        try:
            opportunities = await self._opportunities(period, now)

            closed = [opp for opp in opportunities if opp.stage in ("CLOSED_WON", "CLOSED_LOST")]
            won = [opp for opp in closed if opp.stage == "CLOSED_WON"]
            conversion_rate = len(won) / len(closed) if closed else DEFAULT_CONVERSION_RATE

            open_deals = [opp for opp in opportunities if opp.stage not in ("CLOSED_WON", "CLOSED_LOST")]

            def forecast(scale: float) -> float:
                return sum(
                    (opp.deal_size or 0) * min(self.get_stage_probability(opp.stage) * scale, 1.0)
                    for opp in open_deals
                )

            weighted = forecast(1.0)
            scored = sorted(
                (deal_from_opportunity(opp, now=now) for opp in open_deals),
                key=lambda deal: (PRIORITY_RANK[deal.priority], -deal.weighted_value),
            )
            projection = []
            for offset in range(1, 7):
                month = _months_back(now.date(), -offset)
                projection.append(
                    {
                        "month": _month_label(month),
                        "forecast": round(weighted / 3 * (1 + offset * 0.05)),
                        "confidence": max(0.5, 0.9 - offset * 0.1),
                    }
                )

            return {
                "currentPipeline": sum(opp.deal_size or 0 for opp in open_deals),
                "weightedForecast": weighted,
                "optimisticForecast": forecast(1.3),
                "pessimisticForecast": forecast(0.7),
                "historicalConversionRate": conversion_rate,
                "monthlyProjection": projection,
                "confidenceScore": 0.75,
                "riskFactors": self.identify_risk_factors(open_deals, now),
                "recommendations": self.generate_forecast_recommendations(weighted, conversion_rate),
                "deals": [deal.to_api() for deal in scored],
            }
        except Exception as e:
            logger.error("forecast_report_failed", error=str(e), period=period)
            raise RuntimeError("Failed to generate forecast report") from e

    @staticmethod
    def get_stage_probability(stage: str | None) -> float:
        return FORECAST_STAGE_PROBABILITIES.get(stage or "", 0.1)

    @staticmethod
    def generate_pipeline_recommendations(
        stage_distribution: dict[str, int], average_probability: float, velocity: VelocityMetrics
    ) -> list[str]:
        recommendations = []
        if average_probability < 0.3:
            recommendations.append("Focus on qualifying leads better to improve overall pipeline probability")
        if velocity.deals_per_month < 1:
            recommendations.append(
                "Pipeline velocity is critically low - focus on moving qualified deals through to close"
            )
        elif velocity.deals_per_month < 3:
            recommendations.append("Increase deal momentum to convert more opportunities each month")
        if velocity.velocity_per_month < velocity.average_deal_size:
            recommendations.append(
                "Monthly revenue velocity trails the average deal size - "
                "shorten the sales cycle to improve throughput"
            )
        if stage_distribution.get("On Hold", 0) > 5:
            recommendations.append("Review and re-engage deals on hold to prevent pipeline stagnation")
        if stage_distribution.get("Prospecting", 0) > stage_distribution.get("Closed Won", 0):
            recommendations.append("Improve conversion funnel - too many deals stuck in early stages")
        return recommendations

    @staticmethod
    def identify_risk_factors(opportunities: list[OpportunityDB], now: datetime) -> list[str]:
        risks = []
        stale = [opp for opp in opportunities if (now - opp.updated_at).total_seconds() / 86400 > 30]
        if stale:
            risks.append(f"{len(stale)} deals haven't been updated in 30+ days")
        high_value = [opp for opp in opportunities if (opp.deal_size or 0) > 1_000_000]
        if high_value:
            risks.append(f"{len(high_value)} high-value deals require special attention")
        return risks

    @staticmethod
    def generate_forecast_recommendations(forecast: float, conversion_rate: float) -> list[str]:
        recommendations = []
        if conversion_rate < 0.25:
            recommendations.append("Historical conversion rate is below 25% - focus on deal qualification")
        if forecast < 1_000_000:
            recommendations.append("Pipeline value is below target - increase prospecting activities")
        recommendations.append("Consider seasonal patterns when evaluating forecast accuracy")
        return recommendations

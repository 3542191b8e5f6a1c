"""Weighted sales pipeline: stage probabilities, velocity and forecasting.

Every deal carries a stage with a calibrated win probability. The weighted
value of a deal is its value scaled by that probability; pipeline metrics,
recommendations and the six month forecast are derived from the weighted
deals.
"""

import math
from datetime import datetime, timedelta
from enum import Enum

from pydantic import Field

from salesdesk.models.schemas import CamelModel
from salesdesk.services.deadline_management import categorize_by_value


class DealStage(str, Enum):
    """Sales stage of a weighted deal, in pipeline order."""

    # Early stage
    LEAD_GENERATED = "LEAD_GENERATED"
    INITIAL_CONTACT = "INITIAL_CONTACT"
    NEEDS_ANALYSIS = "NEEDS_ANALYSIS"

    # Qualification
    PROSPECTING = "PROSPECTING"
    QUALIFICATION = "QUALIFICATION"
    VALUE_PROPOSITION = "VALUE_PROPOSITION"

    # Solution development
    PROPOSAL_PREPARATION = "PROPOSAL_PREPARATION"
    PROPOSAL = "PROPOSAL"
    PROPOSAL_REVIEW = "PROPOSAL_REVIEW"

    # Negotiation and commitment
    NEGOTIATION = "NEGOTIATION"
    CONTRACT_REVIEW = "CONTRACT_REVIEW"
    FINAL_APPROVAL = "FINAL_APPROVAL"

    # Closed
    CLOSED_WON = "CLOSED_WON"
    CLOSED_LOST = "CLOSED_LOST"

    # Special states
    ON_HOLD = "ON_HOLD"
    CANCELLED = "CANCELLED"
    LOST_TO_COMPETITOR = "LOST_TO_COMPETITOR"


class DealQuality(str, Enum):
    """Qualitative assessment of a deal."""

    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class StageProbability(CamelModel):
    """Calibration of a single stage."""

    stage: DealStage
    base_probability: float
    min_probability: float
    max_probability: float
    avg_days_in_stage: int
    conversion_rate: float


class WeightedDeal(CamelModel):
    """A deal with its probability-weighted value and scoring."""

    id: str
    name: str
    value: float
    stage: DealStage
    probability: float
    weighted_value: float
    expected_close_date: datetime | None = None
    days_in_stage: int = 0
    velocity_score: float = 0
    risk_score: float = 0
    priority: str = "MEDIUM"
    last_activity: datetime
    owner_id: str | None = None
    owner_name: str | None = None
    owner_email: str | None = None
    company_name: str | None = None
    classification: str | None = None
    deal_complexity: str | None = None
    diameter: str | None = None
    quantity: float | None = None
    specification: str | None = None
    challenges: str | None = None
    status: str | None = None
    order_date: datetime | None = None
    closed_date: datetime | None = None
    pipeline_age_days: int | None = None
    sales_cycle_days: int | None = None


class VelocityMetrics(CamelModel):
    """Sales velocity breakdown."""

    qualified_deals: int
    average_deal_size: float
    win_rate: float
    sales_cycle_length_days: int
    velocity_per_day: float
    velocity_per_month: float
    deals_per_month: float


class MonthlyForecast(CamelModel):
    """Expected closings for one calendar month."""

    month: str
    value: float
    weighted_value: float


class PipelineMetrics(CamelModel):
    """Aggregate metrics for a set of weighted deals."""

    total_deals: int
    total_value: float
    weighted_value: float
    average_probability: float
    forecast_accuracy: float
    velocity: float
    velocity_details: VelocityMetrics
    conversion_rate: float
    stage_distribution: dict[str, int] = Field(default_factory=dict)
    monthly_forecast: list[MonthlyForecast] = Field(default_factory=list)


def _stage(
    stage: DealStage, base: float, low: float, high: float, days: int, conversion: float
) -> StageProbability:
    return StageProbability(
        stage=stage,
        base_probability=base,
        min_probability=low,
        max_probability=high,
        avg_days_in_stage=days,
        conversion_rate=conversion,
    )


STAGE_PROBABILITIES: dict[DealStage, StageProbability] = {
    DealStage.LEAD_GENERATED: _stage(DealStage.LEAD_GENERATED, 0.01, 0.005, 0.03, 7, 0.10),
    DealStage.INITIAL_CONTACT: _stage(DealStage.INITIAL_CONTACT, 0.03, 0.01, 0.08, 14, 0.15),
    DealStage.NEEDS_ANALYSIS: _stage(DealStage.NEEDS_ANALYSIS, 0.05, 0.02, 0.12, 21, 0.25),
    DealStage.PROSPECTING: _stage(DealStage.PROSPECTING, 0.08, 0.03, 0.18, 30, 0.30),
    DealStage.QUALIFICATION: _stage(DealStage.QUALIFICATION, 0.25, 0.15, 0.40, 45, 0.45),
    DealStage.VALUE_PROPOSITION: _stage(DealStage.VALUE_PROPOSITION, 0.35, 0.25, 0.50, 30, 0.55),
    DealStage.PROPOSAL_PREPARATION: _stage(DealStage.PROPOSAL_PREPARATION, 0.45, 0.30, 0.60, 20, 0.60),
    DealStage.PROPOSAL: _stage(DealStage.PROPOSAL, 0.60, 0.40, 0.80, 30, 0.70),
    DealStage.PROPOSAL_REVIEW: _stage(DealStage.PROPOSAL_REVIEW, 0.65, 0.45, 0.85, 14, 0.75),
    DealStage.NEGOTIATION: _stage(DealStage.NEGOTIATION, 0.75, 0.60, 0.90, 20, 0.85),
    DealStage.CONTRACT_REVIEW: _stage(DealStage.CONTRACT_REVIEW, 0.80, 0.70, 0.95, 10, 0.90),
    DealStage.FINAL_APPROVAL: _stage(DealStage.FINAL_APPROVAL, 0.85, 0.75, 0.98, 7, 0.95),
    DealStage.CLOSED_WON: _stage(DealStage.CLOSED_WON, 1.0, 1.0, 1.0, 1, 1.0),
    DealStage.CLOSED_LOST: _stage(DealStage.CLOSED_LOST, 0.0, 0.0, 0.0, 1, 0.0),
    DealStage.ON_HOLD: _stage(DealStage.ON_HOLD, 0.10, 0.05, 0.20, 60, 0.20),
    DealStage.CANCELLED: _stage(DealStage.CANCELLED, 0.0, 0.0, 0.0, 1, 0.0),
    DealStage.LOST_TO_COMPETITOR: _stage(DealStage.LOST_TO_COMPETITOR, 0.0, 0.0, 0.0, 1, 0.0),
}

QUALIFIED_STAGES = frozenset(
    {
        DealStage.PROSPECTING,
        DealStage.QUALIFICATION,
        DealStage.VALUE_PROPOSITION,
        DealStage.PROPOSAL_PREPARATION,
        DealStage.PROPOSAL,
        DealStage.PROPOSAL_REVIEW,
        DealStage.NEGOTIATION,
        DealStage.CONTRACT_REVIEW,
        DealStage.FINAL_APPROVAL,
    }
)
WON_STAGES = frozenset({DealStage.CLOSED_WON})
LOST_STAGES = frozenset({DealStage.CLOSED_LOST, DealStage.CANCELLED, DealStage.LOST_TO_COMPETITOR})

# Stages counted as converted when computing the pipeline conversion rate
CONVERTED_STAGES = frozenset(
    {DealStage.QUALIFICATION, DealStage.PROPOSAL, DealStage.NEGOTIATION, DealStage.CLOSED_WON}
)

# Linear path a live deal walks through before closing
ACTIVE_STAGE_ORDER = [
    DealStage.LEAD_GENERATED,
    DealStage.INITIAL_CONTACT,
    DealStage.NEEDS_ANALYSIS,
    DealStage.PROSPECTING,
    DealStage.QUALIFICATION,
    DealStage.VALUE_PROPOSITION,
    DealStage.PROPOSAL_PREPARATION,
    DealStage.PROPOSAL,
    DealStage.PROPOSAL_REVIEW,
    DealStage.NEGOTIATION,
    DealStage.CONTRACT_REVIEW,
    DealStage.FINAL_APPROVAL,
]

QUALITY_MULTIPLIERS = {
    DealQuality.HIGH: 1.2,
    DealQuality.MEDIUM: 1.0,
    DealQuality.LOW: 0.8,
}

FORECAST_ACCURACY = 0.85
DEFAULT_SALES_CYCLE_DAYS = 60


def _days_since(moment: datetime, now: datetime) -> int:
    return math.floor((now - moment).total_seconds() / 86400)


def _add_months(moment: datetime, months: int) -> datetime:
    month_index = moment.month - 1 + months
    return moment.replace(year=moment.year + month_index // 12, month=month_index % 12 + 1, day=1)


class WeightedPipelineService:
    """Probability weighting and pipeline analytics over deals."""

    @staticmethod
    def calculate_weighted_probability(
        stage: DealStage,
        deal_value: float,
        days_in_stage: float,
        last_activity: datetime,
        deal_quality: DealQuality = DealQuality.MEDIUM,
        now: datetime | None = None,
    ) -> float:
        """Calculate a deal's win probability from its stage and characteristics.

        The stage's base probability is scaled by deal quality, inactivity
        decay (floored at 0.7 after 90 days), deal size and time-in-stage,
        then clamped to the stage's probability range.

        Args:
            stage: Current deal stage
            deal_value: Monetary value of the deal
            days_in_stage: Days the deal has spent in its stage
            last_activity: Timestamp of the last recorded activity
            deal_quality: Qualitative deal assessment
            now: Reference time (defaults to current UTC time)

        Returns:
            Probability in [0, 1], rounded to 2 decimals
        """
        now = now or datetime.utcnow()
        config = STAGE_PROBABILITIES[stage]

        quality_multiplier = QUALITY_MULTIPLIERS[DealQuality(deal_quality)]
        time_decay = max(0.7, 1 - _days_since(last_activity, now) / 90)

        value_multiplier = 1.0
        if deal_value > 1_000_000:
            value_multiplier = 0.9
        elif deal_value < 100_000:
            value_multiplier = 1.1

        progression = days_in_stage / config.avg_days_in_stage
        progression_multiplier = 0.95 if progression > 1 else 1.05

        weighted = (
            config.base_probability
            * quality_multiplier
            * time_decay
            * value_multiplier
            * progression_multiplier
        )
        weighted = max(config.min_probability, min(config.max_probability, weighted))
        return round(weighted, 2)

    @staticmethod
    def get_stage_base_probability(stage: DealStage | str) -> float:
        """Base probability for a stage, 0.1 for unknown stages."""
        try:
            return STAGE_PROBABILITIES[DealStage(stage)].base_probability
        except ValueError:
            return 0.1

    @staticmethod
    def calculate_velocity_metrics(deals: list[WeightedDeal]) -> VelocityMetrics:
        """Compute sales velocity.

        velocity = qualified deals x average deal size x win rate / sales cycle.
        Without closed deals the win rate falls back to the mean deal
        probability clamped to [0.05, 0.95]; without cycle samples the sales
        cycle falls back to the mean pipeline age, then to 60 days.

        Args:
            deals: Weighted deals

        Returns:
            Velocity metrics
        """
        qualified = [deal for deal in deals if deal.stage in QUALIFIED_STAGES]
        qualified_count = len(qualified)
        average_deal_size = (
            sum(deal.value for deal in qualified) / qualified_count if qualified_count else 0.0
        )

        won = [deal for deal in deals if deal.stage in WON_STAGES]
        lost = [deal for deal in deals if deal.stage in LOST_STAGES]
        closed = len(won) + len(lost)
        win_rate = len(won) / closed if closed else 0.0

        if win_rate == 0 and deals:
            avg_probability = sum(deal.probability or 0 for deal in deals) / len(deals)
            win_rate = min(max(avg_probability, 0.05), 0.95)

        cycle_samples = []
        for deal in won:
            cycle = next(
                (
                    value
                    for value in (deal.sales_cycle_days, deal.pipeline_age_days, deal.days_in_stage)
                    if value is not None
                ),
                None,
            )
            if cycle is not None and math.isfinite(cycle) and cycle > 0:
                cycle_samples.append(cycle)

        average_cycle = sum(cycle_samples) / len(cycle_samples) if cycle_samples else 0.0

        if average_cycle <= 0:
            age_samples = [
                age
                for age in (
                    deal.pipeline_age_days if deal.pipeline_age_days is not None else deal.days_in_stage
                    for deal in deals
                )
                if age is not None and math.isfinite(age) and age > 0
            ]
            average_cycle = (
                sum(age_samples) / len(age_samples) if age_samples else DEFAULT_SALES_CYCLE_DAYS
            )

        if average_cycle > 0 and qualified_count > 0:
            velocity_per_day = qualified_count * average_deal_size * win_rate / average_cycle
            deals_per_month = qualified_count * win_rate * 30 / average_cycle
        else:
            velocity_per_day = 0.0
            deals_per_month = 0.0

        return VelocityMetrics(
            qualified_deals=qualified_count,
            average_deal_size=average_deal_size,
            win_rate=win_rate,
            sales_cycle_length_days=round(average_cycle),
            velocity_per_day=velocity_per_day,
            velocity_per_month=velocity_per_day * 30,
            deals_per_month=deals_per_month,
        )

    @staticmethod
    def calculate_risk_score(deal: WeightedDeal, now: datetime | None = None) -> int:
        """Score deal risk from 0 (safe) to 100.

        Adds 20 for deals over 500k, 25 for lingering 1.5x the stage average,
        30 for probability under 0.3 and 25 for more than 30 idle days.
        """
        now = now or datetime.utcnow()
        risk = 0

        if deal.value > 500_000:
            risk += 20
        if deal.days_in_stage > STAGE_PROBABILITIES[deal.stage].avg_days_in_stage * 1.5:
            risk += 25
        if deal.probability < 0.3:
            risk += 30
        if _days_since(deal.last_activity, now) > 30:
            risk += 25

        return min(100, risk)

    @staticmethod
    def generate_pipeline_metrics(
        deals: list[WeightedDeal], now: datetime | None = None
    ) -> PipelineMetrics:
        """Aggregate weighted deals into pipeline metrics.

        Args:
            deals: Weighted deals
            now: Reference time for the six month forecast window

        Returns:
            Pipeline metrics including stage distribution and monthly forecast
        """
        now = now or datetime.utcnow()
        total_deals = len(deals)
        total_value = sum(deal.value for deal in deals)
        weighted_value = sum(deal.weighted_value for deal in deals)
        average_probability = (
            sum(deal.probability for deal in deals) / total_deals if total_deals else 0.0
        )

        stage_distribution = {
            stage.value: sum(1 for deal in deals if deal.stage == stage) for stage in DealStage
        }

        monthly_forecast = []
        for offset in range(6):
            month = _add_months(now, offset)
            month_deals = [
                deal
                for deal in deals
                if deal.expected_close_date is not None
                and deal.expected_close_date.month == month.month
                and deal.expected_close_date.year == month.year
            ]
            monthly_forecast.append(
                MonthlyForecast(
                    month=month.strftime("%b %Y"),
                    value=sum(deal.value for deal in month_deals),
                    weighted_value=sum(deal.weighted_value for deal in month_deals),
                )
            )

        converted = sum(1 for deal in deals if deal.stage in CONVERTED_STAGES)
        conversion_rate = converted / total_deals if total_deals else 0.0

        velocity_details = WeightedPipelineService.calculate_velocity_metrics(deals)

        return PipelineMetrics(
            total_deals=total_deals,
            total_value=total_value,
            weighted_value=weighted_value,
            average_probability=average_probability,
            forecast_accuracy=FORECAST_ACCURACY,
            velocity=velocity_details.velocity_per_month,
            velocity_details=velocity_details,
            conversion_rate=conversion_rate,
            stage_distribution=stage_distribution,
            monthly_forecast=monthly_forecast,
        )

    @staticmethod
    def calculate_priority(deal: WeightedDeal) -> str:
        """Blend weighted value, probability and risk into HIGH/MEDIUM/LOW."""
        score = (
            deal.weighted_value * 0.4
            + deal.probability * 100 * 0.3
            + (100 - deal.risk_score) * 0.3
        )
        if score > 70:
            return "HIGH"
        if score > 40:
            return "MEDIUM"
        return "LOW"

    @staticmethod
    def generate_recommendations(metrics: PipelineMetrics, deals: list[WeightedDeal]) -> list[str]:
        """Actionable suggestions derived from pipeline metrics."""
        recommendations = []

        if metrics.conversion_rate < 0.3:
            recommendations.append("Improve lead qualification process to increase conversion rates")

        high_risk = [deal for deal in deals if deal.risk_score > 70]
        if high_risk:
            recommendations.append(
                f"{len(high_risk)} deals have high risk scores - review and take action"
            )

        stagnant = [deal for deal in deals if deal.days_in_stage > 60]
        if stagnant:
            recommendations.append(f"{len(stagnant)} deals have been stagnant for over 60 days")

        if metrics.forecast_accuracy < 0.8:
            recommendations.append("Review forecasting accuracy and adjust probability calculations")

        velocity = metrics.velocity_details
        if velocity.deals_per_month < 1:
            recommendations.append(
                "Pipeline velocity is critically low - accelerate movement of qualified deals"
            )
        elif velocity.deals_per_month < 3:
            recommendations.append(
                "Pipeline velocity is below target - streamline stage handoffs to close more deals each month"
            )

        if velocity.velocity_per_month < velocity.average_deal_size:
            recommendations.append(
                "Monthly revenue velocity trails average deal size - focus on shortening the sales cycle"
            )

        return recommendations

    @staticmethod
    def remaining_stages(stage: DealStage) -> list[DealStage]:
        """Active stages still ahead of a deal, ending at final approval.

        Closed and special states have nothing remaining.
        """
        if stage not in ACTIVE_STAGE_ORDER:
            return []
        return ACTIVE_STAGE_ORDER[ACTIVE_STAGE_ORDER.index(stage) + 1:]

    @staticmethod
    def calculate_expected_close_date(stage: DealStage, now: datetime | None = None) -> datetime:
        """Project a close date by summing the average duration of the remaining stages."""
        now = now or datetime.utcnow()
        remaining_days = sum(
            STAGE_PROBABILITIES[remaining].avg_days_in_stage
            for remaining in WeightedPipelineService.remaining_stages(stage)
        )
        return now + timedelta(days=remaining_days)

    @staticmethod
    def assess_deal_quality(
        deal_value: float,
        competitor_count: int,
        decision_maker_access: bool,
        budget_confirmed: bool,
    ) -> DealQuality:
        """Grade a deal from value, competition, access and budget signals."""
        score = 0

        if deal_value > 1_000_000:
            score += 25
        elif deal_value > 500_000:
            score += 20
        elif deal_value > 100_000:
            score += 15
        else:
            score += 10

        if competitor_count == 0:
            score += 25
        elif competitor_count <= 2:
            score += 15
        else:
            score += 5

        score += 25 if decision_maker_access else 10
        score += 25 if budget_confirmed else 5

        if score >= 75:
            return DealQuality.HIGH
        if score >= 50:
            return DealQuality.MEDIUM
        return DealQuality.LOW


# ========== Pipeline order mapping ==========

PIPELINE_STATUS_STAGES: dict[str, DealStage] = {
    "ORDER_RECEIVED": DealStage.PROPOSAL,
    "ORDER_PROCESSING": DealStage.PROPOSAL,
    "CONTRACT_SIGNING": DealStage.PROPOSAL,
    "PRODUCTION_STARTED": DealStage.NEGOTIATION,
    "QUALITY_CHECK": DealStage.NEGOTIATION,
    "PACKING_SHIPPING": DealStage.FINAL_APPROVAL,
    "SHIPPED": DealStage.FINAL_APPROVAL,
    "DELIVERED": DealStage.CLOSED_WON,
    "INSTALLATION_STARTED": DealStage.CLOSED_WON,
    "INSTALLATION_COMPLETE": DealStage.CLOSED_WON,
    "PAYMENT_RECEIVED": DealStage.CLOSED_WON,
    "PROJECT_COMPLETE": DealStage.CLOSED_WON,
    "ON_HOLD": DealStage.ON_HOLD,
    "DELAYED": DealStage.ON_HOLD,
    "CANCELLED": DealStage.CANCELLED,
    "DISPUTED": DealStage.CANCELLED,
    "LOST_TO_COMPETITOR": DealStage.LOST_TO_COMPETITOR,
}

CLOSED_WON_STATUSES = frozenset(
    {"DELIVERED", "INSTALLATION_STARTED", "INSTALLATION_COMPLETE", "PAYMENT_RECEIVED", "PROJECT_COMPLETE"}
)

PERIOD_DAYS = {"week": 7, "month": 30, "quarter": 90, "year": 365}


def stage_for_pipeline_status(status: str | None) -> DealStage:
    """Map an order lifecycle status onto a deal stage (PROPOSAL by default)."""
    return PIPELINE_STATUS_STAGES.get(status or "", DealStage.PROPOSAL)


def resolve_period_start(period: str | None, now: datetime | None = None) -> datetime:
    """Start of a reporting window; unknown periods mean the last 30 days."""
    now = now or datetime.utcnow()
    return now - timedelta(days=PERIOD_DAYS.get(period or "month", 30))


def _pipeline_risk(status: str) -> int:
    if status in ("PROJECT_COMPLETE", "PAYMENT_RECEIVED"):
        return 10
    if status in ("ON_HOLD", "DELAYED", "DISPUTED"):
        return 80
    if status in ("CANCELLED", "LOST_TO_COMPETITOR"):
        return 100
    return 50


def _pipeline_priority(value: float, status: str) -> str:
    if value > 5_000_000 or status in ("DELAYED", "DISPUTED"):
        return "HIGH"
    if value < 1_000_000:
        return "LOW"
    return "MEDIUM"


DEAL_COMPLEXITY_BY_CATEGORY = {
    "MICRO": "LOW",
    "SMALL": "LOW",
    "MEDIUM": "MEDIUM",
    "LARGE": "HIGH",
    "ENTERPRISE": "ENTERPRISE",
}


def deal_complexity(value: float) -> str:
    """Deal complexity grade for an order value."""
    return DEAL_COMPLEXITY_BY_CATEGORY[categorize_by_value(value or 0)]


def deal_from_opportunity(opportunity, now: datetime | None = None) -> WeightedDeal:
    """Convert an open opportunity into a scored weighted deal.

    Time in stage counts from creation. The risk score is computed first so
    that the priority can take it into account.
    """
    now = now or datetime.utcnow()
    try:
        stage = DealStage(opportunity.stage)
    except ValueError:
        stage = DealStage.PROSPECTING
    value = opportunity.deal_size or 0.0
    last_activity = opportunity.updated_at or now
    days_in_stage = max(0, (now - (opportunity.created_at or now)).days)

    probability = WeightedPipelineService.calculate_weighted_probability(
        stage, value, days_in_stage, last_activity, DealQuality.MEDIUM, now=now
    )
    deal = WeightedDeal(
        id=str(opportunity.id),
        name=opportunity.name,
        value=value,
        stage=stage,
        probability=probability,
        weighted_value=value * probability,
        expected_close_date=opportunity.expected_close_date,
        days_in_stage=days_in_stage,
        last_activity=last_activity,
        owner_id=str(opportunity.owner_id) if opportunity.owner_id is not None else None,
        classification=opportunity.classification,
        deal_complexity=deal_complexity(value),
    )
    deal.risk_score = WeightedPipelineService.calculate_risk_score(deal, now=now)
    deal.priority = WeightedPipelineService.calculate_priority(deal)
    return deal


def deal_from_pipeline(
    pipeline,
    owner_name: str | None = None,
    owner_email: str | None = None,
    company_name: str | None = None,
    now: datetime | None = None,
) -> WeightedDeal:
    """Convert a pipeline order into a weighted deal.

    Recorded progress is used as the probability; pipelines without progress
    get a computed weighted probability instead.

    Args:
        pipeline: PipelineDB row
        owner_name: Owner display name
        owner_email: Owner email
        company_name: Customer company name
        now: Reference time

    Returns:
        Weighted deal
    """
    now = now or datetime.utcnow()
    status = pipeline.status or ""
    stage = stage_for_pipeline_status(status)
    last_activity = pipeline.updated_at or now

    order_date = pipeline.order_date or now
    pipeline_age_days = max(1, round((now - order_date).total_seconds() / 86400))

    closed_date = None
    if status in CLOSED_WON_STATUSES:
        closed_date = (
            pipeline.actual_install_date
            or pipeline.actual_delivery_date
            or pipeline.payment_date
            or pipeline.updated_at
        )
    sales_cycle_days = (
        max(1, round((closed_date - order_date).total_seconds() / 86400)) if closed_date else None
    )

    value = pipeline.order_value or 0.0
    raw_progress = float(pipeline.progress_percentage or 0)
    probability = min(max(raw_progress / 100, 0.0), 1.0)
    if probability == 0:
        probability = WeightedPipelineService.calculate_weighted_probability(
            stage, value, pipeline_age_days, last_activity, DealQuality.MEDIUM, now=now
        )
    probability = min(max(probability, 0.0), 1.0)

    return WeightedDeal(
        id=str(pipeline.id),
        name=pipeline.name,
        value=value,
        stage=stage,
        probability=probability,
        weighted_value=value * probability,
        expected_close_date=pipeline.expected_delivery_date,
        days_in_stage=pipeline_age_days,
        velocity_score=raw_progress,
        risk_score=_pipeline_risk(status),
        priority=_pipeline_priority(value, status),
        last_activity=last_activity,
        owner_id=str(pipeline.owner_id) if pipeline.owner_id is not None else None,
        owner_name=owner_name,
        owner_email=owner_email,
        company_name=company_name,
        deal_complexity=deal_complexity(value),
        diameter=pipeline.diameter,
        quantity=pipeline.quantity,
        specification=pipeline.specification,
        challenges=pipeline.challenges,
        status=status or None,
        order_date=order_date,
        closed_date=closed_date,
        pipeline_age_days=pipeline_age_days,
        sales_cycle_days=sales_cycle_days,
    )


def empty_pipeline_metrics(total_deals: int = 0) -> PipelineMetrics:
    """Metrics reported when aggregation fails."""
    return PipelineMetrics(
        total_deals=total_deals,
        total_value=0,
        weighted_value=0,
        average_probability=0,
        forecast_accuracy=0.5,
        velocity=0,
        velocity_details=VelocityMetrics(
            qualified_deals=0,
            average_deal_size=0,
            win_rate=0,
            sales_cycle_length_days=0,
            velocity_per_day=0,
            velocity_per_month=0,
            deals_per_month=0,
        ),
        conversion_rate=0,
        stage_distribution={stage.value: 0 for stage in DealStage},
        monthly_forecast=[],
    )

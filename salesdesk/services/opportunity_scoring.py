"""Weighted multi-factor opportunity scoring."""

from pydantic import Field

from salesdesk.models.schemas import CamelModel

WEIGHTS = {
    "deal_size": 0.25,
    "probability": 0.20,
    "urgency": 0.15,
    "competition": 0.10,
    "relationship": 0.10,
    "budget": 0.10,
    "timing": 0.10,
}

LEVEL_ORDER = {"CRITICAL": 4, "HIGH": 3, "MEDIUM": 2, "LOW": 1}

URGENCY_SCORES = {"CRITICAL": 100, "HIGH": 80, "MEDIUM": 60, "LOW": 40}
RELATIONSHIP_SCORES = {"EXCELLENT": 100, "STRONG": 80, "MODERATE": 60, "WEAK": 40}
TIMING_SCORES = {"EXCELLENT": 100, "GOOD": 80, "FAIR": 60, "POOR": 40}

# (minimum deal size, score), checked in order
DEAL_SIZE_BANDS = [
    (10_000_000, 100),
    (5_000_000, 90),
    (1_000_000, 80),
    (500_000, 70),
    (100_000, 60),
    (50_000, 50),
    (10_000, 40),
]

DECISION_MAKER_TITLES = ("director", "manager", "head", "chief", "ceo", "cfo", "cto")


class ScoringCriteria(CamelModel):
    """Inputs for scoring a single opportunity."""

    deal_size: float = 0.0
    probability: float = 0.0
    days_in_pipeline: int = 0
    competitor_count: int = 0
    decision_maker_access: bool = False
    budget_approved: bool = False
    relationship_strength: str = "MODERATE"
    urgency: str = "MEDIUM"
    market_timing: str = "GOOD"


class OpportunityScore(CamelModel):
    id: str = ""
    name: str = ""
    total_score: float
    deal_size: float
    probability: float
    urgency_score: float
    competition_score: float
    relationship_score: float
    budget_score: float
    timing_score: float
    priority: str
    recommendation: str
    risk_level: str


class PortfolioMetrics(CamelModel):
    average_score: float = 0.0
    priority_distribution: dict[str, int] = Field(default_factory=dict)
    risk_distribution: dict[str, int] = Field(default_factory=dict)
    total_value: float = 0.0
    high_priority_value: float = 0.0
    at_risk_value: float = 0.0


class OpportunityScoringService:
    """Score, rank and summarise sales opportunities."""

    @staticmethod
    def calculate_opportunity_score(criteria: ScoringCriteria) -> OpportunityScore:
        """Combine the factor scores into a weighted 0-100 total.

        Args:
            criteria: Scoring inputs for the opportunity

        Returns:
            Score breakdown with priority, risk level and a recommendation.
            ``id`` and ``name`` are left blank for the caller to fill in.
        """
        urgency_score = OpportunityScoringService.calculate_urgency_score(
            criteria.urgency, criteria.days_in_pipeline
        )
        competition_score = OpportunityScoringService.calculate_competition_score(criteria.competitor_count)
        relationship_score = RELATIONSHIP_SCORES.get(criteria.relationship_strength, 50)
        budget_score = 100 if criteria.budget_approved else 30
        timing_score = TIMING_SCORES.get(criteria.market_timing, 50)

        total_score = (
            OpportunityScoringService.normalize_deal_size(criteria.deal_size) * WEIGHTS["deal_size"]
            + criteria.probability * 100 * WEIGHTS["probability"]
            + urgency_score * WEIGHTS["urgency"]
            + competition_score * WEIGHTS["competition"]
            + relationship_score * WEIGHTS["relationship"]
            + budget_score * WEIGHTS["budget"]
            + timing_score * WEIGHTS["timing"]
        )

        priority = OpportunityScoringService.determine_priority(total_score, criteria)
        risk_level = OpportunityScoringService.assess_risk_level(criteria, total_score)

        return OpportunityScore(
            total_score=round(total_score, 2),
            deal_size=criteria.deal_size,
            probability=criteria.probability,
            urgency_score=urgency_score,
            competition_score=competition_score,
            relationship_score=relationship_score,
            budget_score=budget_score,
            timing_score=timing_score,
            priority=priority,
            recommendation=OpportunityScoringService.generate_recommendation(criteria, priority),
            risk_level=risk_level,
        )

    @staticmethod
    def calculate_urgency_score(urgency: str, days_in_pipeline: int) -> float:
        score = URGENCY_SCORES.get(urgency, 50)
        if days_in_pipeline > 90:
            score *= 0.8
        elif days_in_pipeline < 30:
            score *= 1.1
        return min(100, max(0, score))

    @staticmethod
    def calculate_competition_score(competitor_count: int) -> int:
        if competitor_count <= 0:
            return 100
        return {1: 80, 2: 60, 3: 40}.get(competitor_count, 20)

    @staticmethod
    def normalize_deal_size(deal_size: float) -> int:
        for minimum, score in DEAL_SIZE_BANDS:
            if deal_size >= minimum:
                return score
        return 20

    @staticmethod
    def determine_priority(score: float, criteria: ScoringCriteria) -> str:
        if criteria.urgency == "CRITICAL" and score > 70:
            return "CRITICAL"
        if criteria.deal_size > 1_000_000 and criteria.probability > 0.7:
            return "CRITICAL"
        if score > 85:
            return "CRITICAL"
        if score > 75:
            return "HIGH"
        if criteria.deal_size > 500_000 and criteria.probability > 0.5:
            return "HIGH"
        if score > 60:
            return "MEDIUM"
        return "LOW"

    @staticmethod
    def assess_risk_level(criteria: ScoringCriteria, score: float) -> str:
        risk = 0
        if criteria.competitor_count > 3:
            risk += 30
        if not criteria.budget_approved:
            risk += 25
        if criteria.relationship_strength == "WEAK":
            risk += 20
        if criteria.probability < 0.3:
            risk += 25
        if criteria.days_in_pipeline > 90:
            risk += 20
        if criteria.market_timing == "POOR":
            risk += 15

        if score > 80:
            risk -= 20
        elif score < 50:
            risk += 20

        risk = min(100, max(0, risk))
        if risk > 70:
            return "CRITICAL"
        if risk > 50:
            return "HIGH"
        if risk > 30:
            return "MEDIUM"
        return "LOW"

    @staticmethod
    def generate_recommendation(criteria: ScoringCriteria, priority: str) -> str:
        """Action advice joined with `` | ``."""
        recommendations = [
            {
                "CRITICAL": "URGENT: Schedule immediate executive meeting and prepare proposal",
                "HIGH": "HIGH PRIORITY: Contact decision maker within 24 hours",
                "MEDIUM": "MEDIUM: Follow up within 3-5 business days",
            }.get(priority, "LOW: Monitor and nurture relationship")
        ]

        if criteria.competitor_count > 2:
            recommendations.append("HIGH COMPETITION: Differentiate value proposition and accelerate timeline")
        if not criteria.budget_approved:
            recommendations.append("BUDGET UNCERTAIN: Focus on ROI demonstration and cost-benefit analysis")
        if criteria.relationship_strength == "WEAK":
            recommendations.append("BUILD RELATIONSHIP: Schedule discovery call to understand needs better")
        if criteria.days_in_pipeline > 60:
            recommendations.append("STAGNANT: Re-engage with fresh value proposition or update status")

        return " | ".join(recommendations)

    @staticmethod
    def score_opportunities(opportunities: list[dict]) -> list[OpportunityScore]:
        """Score items of the form ``{"id", "name", "criteria"}``."""
        scored = []
        for opportunity in opportunities:
            score = OpportunityScoringService.calculate_opportunity_score(opportunity["criteria"])
            score.id = str(opportunity["id"])
            score.name = opportunity["name"]
            scored.append(score)
        return scored

    @staticmethod
    def sort_by_priority(opportunities: list[OpportunityScore]) -> list[OpportunityScore]:
        """Order by priority, then total score, highest first."""
        return sorted(
            opportunities,
            key=lambda opp: (LEVEL_ORDER.get(opp.priority, 0), opp.total_score),
            reverse=True,
        )

    @staticmethod
    def filter_by_priority(opportunities: list[OpportunityScore], priority: str) -> list[OpportunityScore]:
        return [opp for opp in opportunities if opp.priority == priority]

    @staticmethod
    def calculate_portfolio_metrics(opportunities: list[OpportunityScore]) -> PortfolioMetrics:
        if not opportunities:
            return PortfolioMetrics()

        priority_distribution: dict[str, int] = {}
        risk_distribution: dict[str, int] = {}
        for opp in opportunities:
            priority_distribution[opp.priority] = priority_distribution.get(opp.priority, 0) + 1
            risk_distribution[opp.risk_level] = risk_distribution.get(opp.risk_level, 0) + 1

        return PortfolioMetrics(
            average_score=round(sum(opp.total_score for opp in opportunities) / len(opportunities), 2),
            priority_distribution=priority_distribution,
            risk_distribution=risk_distribution,
            total_value=sum(opp.deal_size for opp in opportunities),
            high_priority_value=sum(
                opp.deal_size for opp in opportunities if opp.priority in ("CRITICAL", "HIGH")
            ),
            at_risk_value=sum(opp.deal_size for opp in opportunities if opp.risk_level in ("HIGH", "CRITICAL")),
        )


def derive_sale_criteria(
    status: str | None,
    value_of_order: float | None,
    days_in_pipeline: int,
    competitors: str | None,
    overdue_follow_ups: int,
    total_activities: int,
    contact_roles: list[str],
) -> ScoringCriteria:
    """Build scoring criteria for an immediate sale from its CRM context."""
    if overdue_follow_ups > 3:
        urgency = "CRITICAL"
    elif overdue_follow_ups > 0:
        urgency = "HIGH"
    elif days_in_pipeline > 30:
        urgency = "MEDIUM"
    else:
        urgency = "LOW"

    if total_activities > 10:
        relationship = "EXCELLENT"
    elif total_activities > 5:
        relationship = "STRONG"
    elif total_activities > 2:
        relationship = "MODERATE"
    else:
        relationship = "WEAK"

    decision_maker_access = any(
        title in (role or "").lower() for role in contact_roles for title in DECISION_MAKER_TITLES
    )

    probability = {"AWARDED": 0.9, "BIDDING": 0.6}.get(status or "", 0.3)

    return ScoringCriteria(
        deal_size=value_of_order or 0,
        probability=probability,
        days_in_pipeline=days_in_pipeline,
        competitor_count=len(competitors.split(",")) if competitors else 0,
        decision_maker_access=decision_maker_access,
        budget_approved=status == "AWARDED",
        relationship_strength=relationship,
        urgency=urgency,
        market_timing="GOOD",
    )

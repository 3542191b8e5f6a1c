"""Deadline tracking for quotations: proximity, compliance and reminders."""

import math
from datetime import datetime, timedelta

from pydantic import Field

from salesdesk.models.crm import UrgencyLevel
from salesdesk.models.schemas import CamelModel

SECONDS_PER_DAY = 24 * 60 * 60
REMINDER_INTERVALS = [14, 7, 3, 1]

# Deal value categories, upper bounds exclusive
DEAL_CATEGORY_BOUNDS = [
    (1_000_000, "MICRO"),
    (5_000_000, "SMALL"),
    (20_000_000, "MEDIUM"),
    (100_000_000, "LARGE"),
]

CATEGORY_CONVERSION_MULTIPLIERS = {"MICRO": 0.7, "SMALL": 0.8, "MEDIUM": 1.0, "LARGE": 1.2, "ENTERPRISE": 1.4}
URGENCY_CONVERSION_MULTIPLIERS = {"CRITICAL": 1.3, "HIGH": 1.2, "MEDIUM": 1.0, "LOW": 0.9}


class ComplianceStatus(CamelModel):
    status: str
    recommendation: str


class QuotationInsight(CamelModel):
    """Derived deadline state for a pending quotation."""

    days_pending: int
    is_overdue: bool
    days_to_deadline: int | None
    urgency_level: str
    status_color: str
    compliance: ComplianceStatus
    next_actions: list[str] = Field(default_factory=list)
    risk_level: str
    next_reminder_date: datetime | None = None


class DeadlineManagementEngine:
    """Deadline arithmetic on naive UTC datetimes."""

    @staticmethod
    def calculate_days_to_deadline(deadline: datetime, now: datetime | None = None) -> int:
        """Whole days until the deadline, rounded up; negative once past."""
        now = now or datetime.utcnow()
        return math.ceil((deadline - now).total_seconds() / SECONDS_PER_DAY)

    @staticmethod
    def calculate_days_pending(start_date: datetime, now: datetime | None = None) -> int:
        now = now or datetime.utcnow()
        return math.floor((now - start_date).total_seconds() / SECONDS_PER_DAY)

    @staticmethod
    def is_overdue(deadline: datetime, now: datetime | None = None) -> bool:
        return (now or datetime.utcnow()) > deadline

    @staticmethod
    def calculate_compliance_status(
        deadline: datetime, status: str, reminder_count: int, now: datetime | None = None
    ) -> ComplianceStatus:
        """Classify a quotation against its deadline.

        A passed deadline is ``BREACHED`` only while the quotation is still
        ``PENDING``. Close deadlines are ``CRITICAL`` or ``WARNING`` depending
        on whether a reminder has gone out.
        """
        now = now or datetime.utcnow()
        days_to_deadline = DeadlineManagementEngine.calculate_days_to_deadline(deadline, now)

        if DeadlineManagementEngine.is_overdue(deadline, now):
            if status == "PENDING":
                return ComplianceStatus(
                    status="BREACHED", recommendation="Immediate escalation required - deadline exceeded"
                )
            return ComplianceStatus(status="COMPLIANT", recommendation="Deadline was met")

        if days_to_deadline <= 1:
            if reminder_count > 0:
                return ComplianceStatus(status="WARNING", recommendation="Final reminder sent")
            return ComplianceStatus(status="CRITICAL", recommendation="Send urgent reminder")

        if days_to_deadline <= 7:
            if reminder_count > 0:
                return ComplianceStatus(status="COMPLIANT", recommendation="Regular monitoring")
            return ComplianceStatus(status="WARNING", recommendation="Send reminder")

        return ComplianceStatus(status="COMPLIANT", recommendation="Monitor regularly")

    @staticmethod
    def calculate_next_reminder_date(
        deadline: datetime,
        last_reminder_date: datetime | None = None,
        reminder_count: int = 0,
        now: datetime | None = None,
    ) -> datetime:
        """When the next reminder for a deadline should go out.

        Reminders start 30 days ahead, then tighten as the deadline approaches:
        every 3 days within a week, daily within 3 days and every 2 hours on
        the last day.
        """
        now = now or datetime.utcnow()
        days_to_deadline = DeadlineManagementEngine.calculate_days_to_deadline(deadline, now)

        if days_to_deadline > 30:
            return deadline - timedelta(days=30)
        if days_to_deadline <= 1:
            return now + timedelta(hours=2)
        if days_to_deadline <= 3:
            return now + timedelta(days=1)
        if days_to_deadline <= 7:
            return now + timedelta(days=3)

        if 0 <= reminder_count < len(REMINDER_INTERVALS):
            interval = REMINDER_INTERVALS[reminder_count]
        else:
            interval = 1
        return deadline - timedelta(days=interval)


def categorize_by_value(value: float) -> str:
    """Deal category for an order value."""
    for upper_bound, category in DEAL_CATEGORY_BOUNDS:
        if value < upper_bound:
            return category
    return "ENTERPRISE"


def calculate_urgency_level(
    value: float, days_to_deadline: int | None = None, deal_category: str | None = None
) -> UrgencyLevel:
    """Urgency from deal category and deadline proximity.

    The category is taken as given; without one only the deadline counts.
    An unknown or zero ``days_to_deadline`` counts as no deadline.
    """
    if not days_to_deadline:
        return UrgencyLevel.LOW
    if deal_category == "ENTERPRISE" and days_to_deadline <= 7:
        return UrgencyLevel.CRITICAL
    if deal_category == "LARGE" and days_to_deadline <= 14:
        return UrgencyLevel.HIGH
    if days_to_deadline <= 30:
        return UrgencyLevel.MEDIUM
    return UrgencyLevel.LOW


def calculate_conversion_probability(
    deal_category: str,
    days_active: int,
    follow_up_count: int,
    last_activity_days: int,
    urgency_level: str,
) -> int:
    """Conversion likelihood in percent for a categorised deal."""
    probability = 50 * CATEGORY_CONVERSION_MULTIPLIERS.get(deal_category, 1.0)

    if follow_up_count >= 5:
        probability += 15
    elif follow_up_count >= 3:
        probability += 10
    elif follow_up_count >= 1:
        probability += 5

    if last_activity_days <= 1:
        probability += 10
    elif last_activity_days <= 3:
        probability += 5
    elif last_activity_days <= 7:
        probability += 2
    elif last_activity_days > 14:
        probability -= 10

    probability *= URGENCY_CONVERSION_MULTIPLIERS.get(urgency_level, 1.0)
    probability *= max(0.7, 1 - (days_active / 365) * 0.3)

    return min(100, max(0, round(probability)))


def assess_quotation(
    status: str,
    pending_since: datetime | None,
    deadline: datetime | None,
    stored_urgency: str | None = None,
    reminder_count: int = 0,
    last_reminder_sent: datetime | None = None,
    now: datetime | None = None,
) -> QuotationInsight:
    """Compute urgency, colour, compliance, next actions and risk for a quotation."""
    now = now or datetime.utcnow()
    engine = DeadlineManagementEngine

    is_overdue = engine.is_overdue(deadline, now) if deadline else False
    days_to_deadline = engine.calculate_days_to_deadline(deadline, now) if deadline else None

    urgency = stored_urgency or UrgencyLevel.LOW.value
    status_color = "gray"
    if is_overdue and status == "PENDING":
        urgency, status_color = UrgencyLevel.CRITICAL.value, "red"
    elif days_to_deadline is not None:
        if days_to_deadline <= 1:
            urgency, status_color = UrgencyLevel.CRITICAL.value, "red"
        elif days_to_deadline <= 3:
            urgency, status_color = UrgencyLevel.HIGH.value, "orange"
        elif days_to_deadline <= 7:
            urgency, status_color = UrgencyLevel.MEDIUM.value, "yellow"

    next_actions = []
    if is_overdue and status == "PENDING":
        next_actions.append("URGENT: Send immediate follow-up and escalate to management")
    elif urgency == UrgencyLevel.CRITICAL.value:
        next_actions.append("CRITICAL: Schedule urgent client call within 24 hours")
    elif urgency == UrgencyLevel.HIGH.value:
        next_actions.append("HIGH: Send reminder email and prepare quotation revision")
    elif days_to_deadline is not None and days_to_deadline <= 14:
        next_actions.append("Prepare final quotation and confirm delivery timeline")

    if is_overdue:
        risk_level = "CRITICAL"
    elif urgency == UrgencyLevel.CRITICAL.value:
        risk_level = "HIGH"
    elif urgency == UrgencyLevel.HIGH.value:
        risk_level = "MEDIUM"
    else:
        risk_level = "LOW"

    return QuotationInsight(
        days_pending=engine.calculate_days_pending(pending_since or now, now),
        is_overdue=is_overdue,
        days_to_deadline=days_to_deadline,
        urgency_level=urgency,
        status_color=status_color,
        compliance=engine.calculate_compliance_status(deadline or now, status, reminder_count, now),
        next_actions=next_actions,
        risk_level=risk_level,
        next_reminder_date=(
            engine.calculate_next_reminder_date(deadline, last_reminder_sent, reminder_count, now)
            if deadline
            else None
        ),
    )

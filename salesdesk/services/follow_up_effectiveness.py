"""Follow-up effectiveness scoring, next actions and contact timing."""

from datetime import datetime, timedelta

from salesdesk.models.crm import ResponseQuality, UrgencyLevel
from salesdesk.services.attendance_validation import from_ist, to_ist

BASE_EFFECTIVENESS = 50
DEFAULT_COMPLETION_MINUTES = 30
PREFERRED_CONTACT_HOUR = 10
WORKDAYS = frozenset({0, 1, 2, 3, 4})

QUALITY_MULTIPLIERS = {
    ResponseQuality.POOR.value: 0.5,
    ResponseQuality.FAIR.value: 0.7,
    ResponseQuality.GOOD.value: 1.0,
    ResponseQuality.VERY_GOOD.value: 1.2,
    ResponseQuality.EXCELLENT.value: 1.4,
}

# Face to face contact scores higher than written contact
ACTION_TYPE_MULTIPLIERS = {
    "CALL": 1.2,
    "MEETING": 1.3,
    "VISIT": 1.4,
    "SITE_VISIT": 1.4,
    "EMAIL": 0.9,
    "MESSAGE": 0.8,
}


def calculate_follow_up_effectiveness(
    response_received: bool,
    response_quality: str | None,
    completion_minutes: float,
    action_type: str,
    deal_value: float,
) -> int:
    """Score a completed follow-up from 0 to 100.

    A response adds 30 to the base of 50 and the total is then scaled by the
    response quality; no response costs 20. Quick completion (5 or 15
    minutes) adds 10 or 5, anything over an hour costs 10, and deals over 5M
    add 5. The result is scaled by how effective the action type is.

    Args:
        response_received: Whether the client responded
        response_quality: ``ResponseQuality`` value, GOOD when unknown
        completion_minutes: Time taken to complete the follow-up
        action_type: Follow-up action type
        deal_value: Value of the deal behind the follow-up

    Returns:
        Rounded score clamped to 0..100
    """
    score = BASE_EFFECTIVENESS

    if response_received:
        score += 30
        score *= QUALITY_MULTIPLIERS.get(response_quality or "", 1.0)
    else:
        score -= 20

    if completion_minutes <= 5:
        score += 10
    elif completion_minutes <= 15:
        score += 5
    elif completion_minutes > 60:
        score -= 10

    if deal_value > 5_000_000:
        score += 5

    score *= ACTION_TYPE_MULTIPLIERS.get(action_type, 1.0)

    return min(100, max(0, round(score)))


def generate_next_action_recommendations(
    deal_status: str,
    last_activity_days: int,
    follow_up_count: int,
    deal_value: float,
    urgency_level: str,
) -> list[str]:
    """Suggested next steps for a deal or follow-up."""
    recommendations = []

    if deal_status == "BIDDING" and last_activity_days > 7:
        recommendations.append(
            f"Schedule follow-up call - deal has been inactive for {last_activity_days} days"
        )
    if follow_up_count == 0 and deal_value > 1_000_000:
        recommendations.append("High-value deal needs immediate follow-up")
    if urgency_level == UrgencyLevel.CRITICAL.value:
        recommendations.append("URGENT: Schedule immediate client meeting")
    if last_activity_days > 14:
        recommendations.append("Deal at risk - send personalized email to re-engage")
    if deal_value > 5_000_000 and follow_up_count < 3:
        recommendations.append("Enterprise deal requires more touchpoints")

    if not recommendations:
        recommendations.append("Continue regular follow-ups to maintain momentum")
    return recommendations


def optimal_notification_time(
    now: datetime | None = None, preferred_hour: int = PREFERRED_CONTACT_HOUR
) -> datetime:
    """Next weekday slot at the preferred IST hour, as naive UTC.

    Today's slot is used while it is still ahead; weekends roll over to
    Monday.
    """
    local_now = to_ist(now or datetime.utcnow())
    slot = local_now.replace(hour=preferred_hour, minute=0, second=0, microsecond=0)
    if local_now > slot:
        slot += timedelta(days=1)
    while slot.weekday() not in WORKDAYS:
        slot += timedelta(days=1)
    return from_ist(slot)


def contact_time_label(slot: datetime) -> str:
    """Human readable IST time of a naive UTC slot."""
    return to_ist(slot).strftime("%I:%M %p IST")

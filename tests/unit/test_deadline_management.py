"""Unit tests for quotation deadline management."""

from datetime import datetime, timedelta

import pytest

from salesdesk.models.crm import UrgencyLevel
from salesdesk.services.deadline_management import (
    DeadlineManagementEngine,
    assess_quotation,
    calculate_conversion_probability,
    calculate_urgency_level,
    categorize_by_value,
)

NOW = datetime(2026, 3, 15, 12, 0, 0)


@pytest.mark.unit
class TestDeadlineArithmetic:
    """Tests for day counting."""

    def test_days_to_deadline_rounds_up(self) -> None:
        """Test partial days count as a full day."""
        assert DeadlineManagementEngine.calculate_days_to_deadline(NOW + timedelta(days=2, hours=12), NOW) == 3
        assert DeadlineManagementEngine.calculate_days_to_deadline(NOW - timedelta(hours=12), NOW) == 0
        assert DeadlineManagementEngine.calculate_days_to_deadline(NOW - timedelta(days=2), NOW) == -2

    def test_days_pending_rounds_down(self) -> None:
        """Test pending days only count full days."""
        assert DeadlineManagementEngine.calculate_days_pending(NOW - timedelta(days=4, hours=20), NOW) == 4

    def test_is_overdue(self) -> None:
        """Test a deadline is overdue only once passed."""
        assert DeadlineManagementEngine.is_overdue(NOW - timedelta(seconds=1), NOW)
        assert not DeadlineManagementEngine.is_overdue(NOW, NOW)


@pytest.mark.unit
class TestCompliance:
    """Tests for compliance classification."""

    @pytest.mark.parametrize(
        ("offset", "status", "reminders", "expected"),
        [
            (timedelta(days=-1), "PENDING", 0, "BREACHED"),
            (timedelta(days=-1), "SENT", 0, "COMPLIANT"),
            (timedelta(hours=20), "PENDING", 0, "CRITICAL"),
            (timedelta(hours=20), "PENDING", 1, "WARNING"),
            (timedelta(days=5), "PENDING", 0, "WARNING"),
            (timedelta(days=5), "PENDING", 2, "COMPLIANT"),
            (timedelta(days=20), "PENDING", 0, "COMPLIANT"),
        ],
    )
    def test_compliance_status(self, offset: timedelta, status: str, reminders: int, expected: str) -> None:
        """Test compliance across deadline distances and reminder history."""
        result = DeadlineManagementEngine.calculate_compliance_status(NOW + offset, status, reminders, NOW)

        assert result.status == expected

    def test_breached_recommendation(self) -> None:
        """Test breached quotations are escalated."""
        result = DeadlineManagementEngine.calculate_compliance_status(NOW - timedelta(days=1), "PENDING", 0, NOW)

        assert result.recommendation == "Immediate escalation required - deadline exceeded"


@pytest.mark.unit
class TestReminders:
    """Tests for reminder scheduling."""

    def test_far_deadline_reminds_thirty_days_ahead(self) -> None:
        deadline = NOW + timedelta(days=40)

        assert DeadlineManagementEngine.calculate_next_reminder_date(deadline, now=NOW) == deadline - timedelta(days=30)

    def test_reminders_tighten_near_deadline(self) -> None:
        """Test reminder cadence as the deadline approaches."""
        engine = DeadlineManagementEngine

        assert engine.calculate_next_reminder_date(NOW + timedelta(hours=12), now=NOW) == NOW + timedelta(hours=2)
        assert engine.calculate_next_reminder_date(NOW + timedelta(days=2), now=NOW) == NOW + timedelta(days=1)
        assert engine.calculate_next_reminder_date(NOW + timedelta(days=5), now=NOW) == NOW + timedelta(days=3)

    def test_reminder_intervals_follow_count(self) -> None:
        """Test mid-range deadlines use the reminder interval ladder."""
        deadline = NOW + timedelta(days=20)

        assert DeadlineManagementEngine.calculate_next_reminder_date(
            deadline, reminder_count=1, now=NOW
        ) == deadline - timedelta(days=7)
        assert DeadlineManagementEngine.calculate_next_reminder_date(
            deadline, reminder_count=9, now=NOW
        ) == deadline - timedelta(days=1)


@pytest.mark.unit
class TestUrgency:
    """Tests for value categories and urgency levels."""

    def test_categorize_by_value(self) -> None:
        assert categorize_by_value(999_999) == "MICRO"
        assert categorize_by_value(1_000_000) == "SMALL"
        assert categorize_by_value(100_000_000) == "ENTERPRISE"

    def test_urgency_levels(self) -> None:
        """Test urgency from category and deadline distance."""
        assert calculate_urgency_level(200_000_000, 5, "ENTERPRISE") == UrgencyLevel.CRITICAL
        assert calculate_urgency_level(50_000_000, 10, "LARGE") == UrgencyLevel.HIGH
        assert calculate_urgency_level(10, 20) == UrgencyLevel.MEDIUM
        assert calculate_urgency_level(10, 45) == UrgencyLevel.LOW
        assert calculate_urgency_level(10, 0) == UrgencyLevel.LOW
        assert calculate_urgency_level(10, None) == UrgencyLevel.LOW

    def test_urgency_does_not_infer_category(self) -> None:
        """Test a large value alone never escalates past MEDIUM."""
        assert calculate_urgency_level(200_000_000, 5) == UrgencyLevel.MEDIUM
        assert calculate_urgency_level(50_000_000, 10) == UrgencyLevel.MEDIUM
        assert calculate_urgency_level(200_000_000, None, "ENTERPRISE") == UrgencyLevel.LOW

    def test_conversion_probability(self) -> None:
        """Test category, recency, urgency and age all move the probability."""
        assert calculate_conversion_probability("ENTERPRISE", 0, 0, 0, "LOW") == 72
        assert calculate_conversion_probability("MICRO", 365, 0, 365, "LOW") == 16
        assert calculate_conversion_probability("LARGE", 0, 5, 0, "CRITICAL") == 100


@pytest.mark.unit
class TestAssessQuotation:
    """Tests for the combined quotation assessment."""

    def test_overdue_pending_quotation(self) -> None:
        """Test an overdue pending quotation is escalated."""
        insight = assess_quotation("PENDING", NOW - timedelta(days=10), NOW - timedelta(days=1), now=NOW)

        assert insight.is_overdue is True
        assert insight.days_pending == 10
        assert insight.days_to_deadline == -1
        assert insight.urgency_level == "CRITICAL"
        assert insight.status_color == "red"
        assert insight.risk_level == "CRITICAL"
        assert insight.compliance.status == "BREACHED"
        assert insight.next_actions == ["URGENT: Send immediate follow-up and escalate to management"]

    def test_deadline_in_three_days(self) -> None:
        """Test a close deadline is high urgency."""
        insight = assess_quotation("PENDING", NOW, NOW + timedelta(days=3), now=NOW)

        assert insight.urgency_level == "HIGH"
        assert insight.status_color == "orange"
        assert insight.risk_level == "MEDIUM"
        assert insight.next_actions == ["HIGH: Send reminder email and prepare quotation revision"]

    def test_deadline_in_ten_days_keeps_stored_urgency(self) -> None:
        """Test stored urgency survives when the deadline is not close."""
        insight = assess_quotation("SENT", NOW, NOW + timedelta(days=10), stored_urgency="LOW", now=NOW)

        assert insight.urgency_level == "LOW"
        assert insight.status_color == "gray"
        assert insight.risk_level == "LOW"
        assert insight.next_actions == ["Prepare final quotation and confirm delivery timeline"]

    def test_no_deadline(self) -> None:
        """Test quotations without a deadline have no reminder."""
        insight = assess_quotation("PENDING", NOW, None, stored_urgency="MEDIUM", now=NOW)

        assert insight.days_to_deadline is None
        assert insight.next_reminder_date is None
        assert insight.is_overdue is False
        assert insight.urgency_level == "MEDIUM"

    def test_api_payload_is_camel_case(self) -> None:
        """Test the insight serialises with camelCase keys."""
        payload = assess_quotation("PENDING", NOW, NOW + timedelta(days=3), now=NOW).to_api()

        assert {"daysPending", "isOverdue", "daysToDeadline", "urgencyLevel", "statusColor"} <= set(payload)

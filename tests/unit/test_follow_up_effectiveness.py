"""Unit tests for follow-up effectiveness scoring and contact timing."""

from datetime import datetime

import pytest

from salesdesk.services.follow_up_effectiveness import (
    calculate_follow_up_effectiveness,
    contact_time_label,
    generate_next_action_recommendations,
    optimal_notification_time,
)


@pytest.mark.unit
class TestEffectiveness:
    """Tests for follow-up effectiveness scores."""

    def test_answered_call(self) -> None:
        """Test a good response to a call scores above the base."""
        assert calculate_follow_up_effectiveness(True, "GOOD", 30, "CALL", 0) == 96

    def test_unanswered_email(self) -> None:
        """Test silence and a weak channel pull the score down."""
        assert calculate_follow_up_effectiveness(False, None, 30, "EMAIL", 0) == 27

    def test_score_is_capped(self) -> None:
        """Test a quick, excellent site visit on a large deal caps at 100."""
        assert calculate_follow_up_effectiveness(True, "EXCELLENT", 3, "VISIT", 6_000_000) == 100

    def test_slow_poor_response(self) -> None:
        """Test quality scales the response bonus and slow completion costs 10."""
        assert calculate_follow_up_effectiveness(True, "POOR", 90, "OTHER", 0) == 30

    def test_quick_completion_bonus(self) -> None:
        """Test completion within 15 minutes adds 5."""
        assert calculate_follow_up_effectiveness(True, "GOOD", 10, "DEMO", 0) == 85


@pytest.mark.unit
class TestNextActions:
    """Tests for next-step recommendations."""

    def test_default_recommendation(self) -> None:
        """Test a healthy deal keeps the regular cadence."""
        assert generate_next_action_recommendations("SCHEDULED", 2, 1, 0, "MEDIUM") == [
            "Continue regular follow-ups to maintain momentum"
        ]

    def test_neglected_enterprise_bid(self) -> None:
        """Test every warning fires for an idle, untouched, critical enterprise bid."""
        assert generate_next_action_recommendations("BIDDING", 20, 0, 8_000_000, "CRITICAL") == [
            "Schedule follow-up call - deal has been inactive for 20 days",
            "High-value deal needs immediate follow-up",
            "URGENT: Schedule immediate client meeting",
            "Deal at risk - send personalized email to re-engage",
            "Enterprise deal requires more touchpoints",
        ]


@pytest.mark.unit
class TestNotificationTiming:
    """Tests for the suggested contact slot."""

    def test_same_morning_slot(self) -> None:
        """Test a weekday before 10:00 IST gets today's slot."""
        slot = optimal_notification_time(datetime(2026, 3, 16, 2, 0))

        assert slot == datetime(2026, 3, 16, 4, 30)
        assert contact_time_label(slot) == "10:00 AM IST"

    def test_friday_afternoon_rolls_to_monday(self) -> None:
        """Test a missed Friday slot skips the weekend."""
        assert optimal_notification_time(datetime(2026, 3, 20, 6, 0)) == datetime(2026, 3, 23, 4, 30)

    def test_preferred_hour(self) -> None:
        """Test the contact hour can be changed."""
        assert optimal_notification_time(datetime(2026, 3, 16, 2, 0), preferred_hour=15) == datetime(
            2026, 3, 16, 9, 30
        )

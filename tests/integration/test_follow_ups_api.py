"""Integration tests for daily follow-ups, scoring and link syncing."""

from datetime import datetime, timedelta

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from salesdesk.models.crm import DailyFollowUpDB, LeadDB, OpportunityDB
from salesdesk.models.user import UserDB


@pytest.fixture
async def owned_links(async_db_session: AsyncSession, sales_user: UserDB, other_user: UserDB) -> dict:
    lead = LeadDB(name="Nashik bulk water", status="QUALIFIED", source="Referral", owner_id=sales_user.id)
    opportunity = OpportunityDB(name="Nashik ring main", stage="PROPOSAL", deal_size=2_000_000, owner_id=sales_user.id)
    foreign = OpportunityDB(name="Someone else's main", stage="PROPOSAL", owner_id=other_user.id)
    async_db_session.add_all([lead, opportunity, foreign])
    await async_db_session.commit()
    return {"lead": lead, "opportunity": opportunity, "foreign": foreign}


@pytest.fixture
async def seeded_follow_ups(
    async_db_session: AsyncSession, sales_user: UserDB, other_user: UserDB, owned_links: dict
) -> dict:
    now = datetime.utcnow()
    overdue = DailyFollowUpDB(
        assigned_to="Rahul Sales",
        action_type="CALL",
        action_description="Chase tender clarification",
        status="SCHEDULED",
        follow_up_date=now - timedelta(days=2) + timedelta(hours=1),
        created_by_id=sales_user.id,
        opportunity_id=owned_links["opportunity"].id,
    )
    upcoming = DailyFollowUpDB(
        assigned_to="Rahul Sales",
        action_type="MEETING",
        action_description="Site walk with consultant",
        status="SCHEDULED",
        follow_up_date=now + timedelta(days=5),
        urgency_level="HIGH",
        created_by_id=sales_user.id,
        lead_id=owned_links["lead"].id,
    )
    completed = DailyFollowUpDB(
        assigned_to="Rahul Sales",
        action_type="CALL",
        action_description="Confirm delivery schedule",
        status="COMPLETED",
        follow_up_date=now + timedelta(days=3),
        response_received=True,
        response_quality="EXCELLENT",
        created_by_id=sales_user.id,
    )
    foreign = DailyFollowUpDB(
        assigned_to="Meera Field",
        action_type="EMAIL",
        action_description="Send brochure",
        status="SCHEDULED",
        follow_up_date=now + timedelta(days=1),
        created_by_id=other_user.id,
    )
    async_db_session.add_all([overdue, upcoming, completed, foreign])
    await async_db_session.commit()
    return {"overdue": overdue, "upcoming": upcoming, "completed": completed, "foreign": foreign}


@pytest.mark.integration
@pytest.mark.asyncio
class TestListFollowUps:
    """Tests for GET /api/daily-followups."""

    async def test_enrichment_and_analytics(self, login, sales_user: UserDB, seeded_follow_ups: dict) -> None:
        """Test follow-ups are scoped, enriched and summarised."""
        response = await login(sales_user).get("/api/daily-followups")

        assert response.status_code == 200
        body = response.json()
        by_action = {f["actionDescription"]: f for f in body["dailyFollowUps"]}
        assert set(by_action) == {
            "Chase tender clarification",
            "Site walk with consultant",
            "Confirm delivery schedule",
        }

        overdue = by_action["Chase tender clarification"]
        assert overdue["isOverdue"] is True
        assert overdue["daysOverdue"] == 2
        assert overdue["priority"] == "CRITICAL"
        assert overdue["smartInsights"]["riskLevel"] == "HIGH"
        assert overdue["linkedType"] == "OPPORTUNITY"
        assert overdue["linkedName"] == "Nashik ring main"
        assert "URGENT: Schedule immediate client meeting" in overdue["recommendations"]

        upcoming = by_action["Site walk with consultant"]
        assert upcoming["priority"] == "HIGH"
        assert upcoming["daysUntilFollowUp"] == 5
        assert upcoming["linkedType"] == "LEAD"
        assert upcoming["linkedName"] == "Nashik bulk water"
        assert upcoming["users"]["employeeCode"] == "EMP042"

        completed = by_action["Confirm delivery schedule"]
        assert completed["smartInsights"]["effectiveness"] == "100% effective"
        assert completed["linkedType"] == "NONE"

        analytics = body["analytics"]
        assert analytics["total"] == 3
        assert analytics["completed"] == 1
        assert analytics["scheduled"] == 2
        assert analytics["overdue"] == 1
        assert analytics["byType"]["CALL"] == 2
        assert body["insights"]["completionRate"] == "33.3%"
        assert body["insights"]["mostEffectiveType"] == "CALL"
        assert "1 follow-ups are overdue - immediate attention required" in body["insights"]["recommendations"]

    async def test_overdue_and_acknowledgement_filters(
        self, login, sales_user: UserDB, seeded_follow_ups: dict, async_db_session: AsyncSession
    ) -> None:
        """Test overdue follow-ups can be isolated until someone explains them."""
        client = login(sales_user)

        overdue = await client.get("/api/daily-followups", params={"showOverdue": "true"})
        assert [f["actionDescription"] for f in overdue.json()["dailyFollowUps"]] == ["Chase tender clarification"]

        pending = await client.get("/api/daily-followups", params={"requireAcknowledgement": "true"})
        assert len(pending.json()["dailyFollowUps"]) == 1

        await client.put(
            "/api/daily-followups",
            params={"id": seeded_follow_ups["overdue"].id},
            json={"overdueReason": "Client on leave"},
        )

        acknowledged = await client.get("/api/daily-followups", params={"requireAcknowledgement": "true"})
        assert acknowledged.json()["dailyFollowUps"] == []

    async def test_status_filter(self, login, sales_user: UserDB, seeded_follow_ups: dict) -> None:
        """Test the status filter, with ``all`` meaning no filter."""
        client = login(sales_user)

        completed = await client.get("/api/daily-followups", params={"status": "COMPLETED"})
        everything = await client.get("/api/daily-followups", params={"status": "all"})

        assert [f["status"] for f in completed.json()["dailyFollowUps"]] == ["COMPLETED"]
        assert everything.json()["analytics"]["total"] == 3

    async def test_admin_user_filter(
        self, login, admin_user: UserDB, other_user: UserDB, seeded_follow_ups: dict
    ) -> None:
        """Test admins can narrow the list to one creator."""
        client = login(admin_user)

        everyone = await client.get("/api/daily-followups")
        one_user = await client.get("/api/daily-followups", params={"userId": other_user.id})

        assert everyone.json()["analytics"]["total"] == 4
        assert [f["assignedTo"] for f in one_user.json()["dailyFollowUps"]] == ["Meera Field"]

    async def test_user_filter_ignored_for_non_admins(
        self, login, sales_user: UserDB, other_user: UserDB, seeded_follow_ups: dict
    ) -> None:
        """Test non-admins cannot read another user's follow-ups."""
        response = await login(sales_user).get("/api/daily-followups", params={"userId": other_user.id})

        assert {f["createdById"] for f in response.json()["dailyFollowUps"]} == {sales_user.id}


@pytest.mark.integration
@pytest.mark.asyncio
class TestCreateFollowUp:
    """Tests for POST /api/daily-followups."""

    async def test_create_syncs_linked_lead(
        self, login, sales_user: UserDB, owned_links: dict, async_db_session: AsyncSession
    ) -> None:
        """Test scheduling a lead follow-up moves the lead's next follow-up date."""
        follow_up_date = (datetime.utcnow() + timedelta(days=2)).replace(microsecond=0)

        response = await login(sales_user).post(
            "/api/daily-followups",
            json={
                "assignedTo": "Rahul Sales",
                "actionType": "CALL",
                "actionDescription": "Discuss revised BOQ",
                "followUpDate": follow_up_date.isoformat(),
                "linkType": "LEAD",
                "leadId": str(owned_links["lead"].id),
                "priority": "high",
            },
        )

        assert response.status_code == 201
        body = response.json()
        assert body["message"] == "Smart follow-up scheduled with optimal timing"
        assert body["followUp"]["status"] == "SCHEDULED"
        assert body["followUp"]["timezone"] == "Asia/Kolkata"
        assert body["followUp"]["urgencyLevel"] == "HIGH"
        assert body["followUp"]["leadId"] == owned_links["lead"].id
        assert body["analytics"]["priority"] == "HIGH"
        assert body["followUp"]["smartRecommendations"][0].startswith("Optimal contact time: 10:00 AM")

        lead = await async_db_session.get(LeadDB, owned_links["lead"].id, populate_existing=True)
        assert lead.next_follow_up_date == follow_up_date

    async def test_create_syncs_linked_opportunity(
        self, login, sales_user: UserDB, owned_links: dict, async_db_session: AsyncSession
    ) -> None:
        """Test scheduling an opportunity follow-up moves its next follow-up date."""
        follow_up_date = (datetime.utcnow() + timedelta(days=4)).replace(microsecond=0)

        response = await login(sales_user).post(
            "/api/daily-followups",
            json={
                "assignedTo": "Rahul Sales",
                "actionType": "MEETING",
                "actionDescription": "Commercial negotiation",
                "followUpDate": follow_up_date.isoformat(),
                "linkType": "OPPORTUNITY",
                "opportunityId": owned_links["opportunity"].id,
            },
        )

        assert response.status_code == 201
        assert response.json()["followUp"]["urgencyLevel"] == "MEDIUM"
        opportunity = await async_db_session.get(
            OpportunityDB, owned_links["opportunity"].id, populate_existing=True
        )
        assert opportunity.next_followup_date == follow_up_date

    async def test_missing_fields(self, login, sales_user: UserDB) -> None:
        """Test the assignee, action and date are required."""
        response = await login(sales_user).post(
            "/api/daily-followups", json={"assignedTo": "Rahul Sales", "actionType": "CALL"}
        )

        assert response.status_code == 400
        assert response.json() == {"error": "Missing required fields"}

    async def test_foreign_opportunity_rejected(
        self, login, sales_user: UserDB, owned_links: dict, async_db_session: AsyncSession
    ) -> None:
        """Test non-admins cannot link another user's opportunity."""
        response = await login(sales_user).post(
            "/api/daily-followups",
            json={
                "assignedTo": "Rahul Sales",
                "actionType": "CALL",
                "actionDescription": "Poach",
                "followUpDate": (datetime.utcnow() + timedelta(days=1)).isoformat(),
                "linkType": "OPPORTUNITY",
                "opportunityId": owned_links["foreign"].id,
            },
        )

        assert response.status_code == 400
        assert response.json() == {"error": "Opportunity not found or access denied"}
        assert (await async_db_session.execute(select(DailyFollowUpDB))).scalars().all() == []

    async def test_admin_may_link_any_lead(
        self, login, admin_user: UserDB, owned_links: dict
    ) -> None:
        """Test admins can link leads they do not own."""
        response = await login(admin_user).post(
            "/api/daily-followups",
            json={
                "assignedTo": "Priya Admin",
                "actionType": "EMAIL",
                "actionDescription": "Escalation mail",
                "followUpDate": (datetime.utcnow() + timedelta(days=1)).isoformat(),
                "linkType": "LEAD",
                "leadId": owned_links["lead"].id,
            },
        )

        assert response.status_code == 201


@pytest.mark.integration
@pytest.mark.asyncio
class TestUpdateFollowUp:
    """Tests for PUT /api/daily-followups."""

    async def test_completion_scores_and_syncs(
        self,
        login,
        sales_user: UserDB,
        seeded_follow_ups: dict,
        owned_links: dict,
        async_db_session: AsyncSession,
    ) -> None:
        """Test completing a follow-up records its effectiveness and next action."""
        next_action = (datetime.utcnow() + timedelta(days=6)).replace(microsecond=0)
        follow_up_id = seeded_follow_ups["overdue"].id

        response = await login(sales_user).put(
            "/api/daily-followups",
            params={"id": follow_up_id},
            json={
                "status": "COMPLETED",
                "responseReceived": True,
                "responseQuality": "GOOD",
                "nextActionDate": next_action.isoformat(),
                "nextActionNotes": "Send revised price",
            },
        )

        assert response.status_code == 200
        body = response.json()
        assert body["effectivenessScore"] == 96
        assert body["analytics"]["effectiveness"] == "96% effective"
        assert body["message"] == "Follow-up updated with smart effectiveness scoring"

        follow_up = await async_db_session.get(DailyFollowUpDB, follow_up_id, populate_existing=True)
        assert follow_up.status == "COMPLETED"
        assert follow_up.effectiveness_score == 96
        assert follow_up.next_action_notes == "Send revised price"
        opportunity = await async_db_session.get(
            OpportunityDB, owned_links["opportunity"].id, populate_existing=True
        )
        assert opportunity.next_followup_date == next_action

    async def test_existing_score_is_kept(
        self, login, sales_user: UserDB, seeded_follow_ups: dict, async_db_session: AsyncSession
    ) -> None:
        """Test a recorded effectiveness score is not recomputed."""
        follow_up = seeded_follow_ups["completed"]
        follow_up.effectiveness_score = 42
        await async_db_session.commit()

        response = await login(sales_user).put(
            "/api/daily-followups", params={"id": follow_up.id}, json={"notes": "Delivered on time"}
        )

        assert response.json()["effectivenessScore"] == 42

    async def test_blank_reason_clears_acknowledgement(
        self, login, sales_user: UserDB, seeded_follow_ups: dict, async_db_session: AsyncSession
    ) -> None:
        """Test the overdue acknowledgement follows the reason."""
        client = login(sales_user)
        follow_up_id = seeded_follow_ups["overdue"].id

        await client.put("/api/daily-followups", params={"id": follow_up_id}, json={"overdueReason": "Site closed"})
        follow_up = await async_db_session.get(DailyFollowUpDB, follow_up_id, populate_existing=True)
        assert follow_up.overdue_acknowledged_by == sales_user.id
        assert follow_up.overdue_acknowledged_at is not None

        await client.put("/api/daily-followups", params={"id": follow_up_id}, json={"overdueReason": "  "})
        follow_up = await async_db_session.get(DailyFollowUpDB, follow_up_id, populate_existing=True)
        assert follow_up.overdue_acknowledged_by is None
        assert follow_up.overdue_acknowledged_at is None

    async def test_validation_and_access(
        self, login, sales_user: UserDB, seeded_follow_ups: dict
    ) -> None:
        """Test id, status, existence and ownership checks."""
        client = login(sales_user)

        missing_id = await client.put("/api/daily-followups", json={"notes": "x"})
        assert missing_id.status_code == 400
        assert missing_id.json() == {"error": "Follow-up ID is required"}

        bad_status = await client.put(
            "/api/daily-followups", params={"id": seeded_follow_ups["overdue"].id}, json={"status": "DONE"}
        )
        assert bad_status.status_code == 400
        assert bad_status.json() == {"error": "Invalid status"}

        unknown = await client.put("/api/daily-followups", params={"id": 99999}, json={"notes": "x"})
        assert unknown.status_code == 404
        assert unknown.json() == {"error": "Follow-up not found"}

        foreign = await client.put(
            "/api/daily-followups", params={"id": seeded_follow_ups["foreign"].id}, json={"notes": "x"}
        )
        assert foreign.status_code == 403

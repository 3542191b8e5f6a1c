"""Integration tests for the weighted pipeline and opportunity scoring endpoints."""

from datetime import datetime, timedelta

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from salesdesk.models.crm import CompanyDB, OpportunityDB
from salesdesk.models.sales import ImmediateSaleDB, PipelineDB
from salesdesk.models.user import UserDB


@pytest.fixture
async def pipelines(async_db_session: AsyncSession, sales_user: UserDB, other_user: UserDB) -> list[PipelineDB]:
    now = datetime.utcnow()
    company = CompanyDB(name="Acme Infra", region="West", owner_id=sales_user.id)
    async_db_session.add(company)
    await async_db_session.flush()

    rows = [
        PipelineDB(
            name="DI pipes for Baner",
            status="PRODUCTION_STARTED",
            order_value=1_000_000,
            progress_percentage=40,
            order_date=now - timedelta(days=5),
            diameter="300mm",
            quantity=120,
            owner_id=sales_user.id,
            company_id=company.id,
        ),
        PipelineDB(
            name="Wakad supply",
            status="ORDER_RECEIVED",
            order_value=250_000,
            progress_percentage=80,
            order_date=now - timedelta(days=2),
            owner_id=sales_user.id,
        ),
        PipelineDB(
            name="Someone else's order",
            status="ORDER_RECEIVED",
            order_value=900_000,
            order_date=now - timedelta(days=1),
            owner_id=other_user.id,
        ),
    ]
    async_db_session.add_all(rows)
    await async_db_session.commit()
    return rows


@pytest.mark.integration
@pytest.mark.asyncio
class TestWeightedPipeline:
    """Tests for GET /api/pipeline/weighted."""

    async def test_weighted_deals(self, login, sales_user: UserDB, pipelines: list[PipelineDB]) -> None:
        """Test recorded progress becomes the deal probability."""
        response = await login(sales_user).get("/api/pipeline/weighted", params={"period": "month"})

        assert response.status_code == 200
        body = response.json()
        deals = {deal["name"]: deal for deal in body["deals"]}
        assert set(deals) == {"DI pipes for Baner", "Wakad supply"}

        baner = deals["DI pipes for Baner"]
        assert baner["probability"] == pytest.approx(0.4)
        assert baner["weightedValue"] == pytest.approx(400_000)
        assert baner["stage"] == "NEGOTIATION"
        assert baner["companyName"] == "Acme Infra"
        assert baner["ownerEmail"] == "rahul@example.com"

        metrics = body["metrics"]
        assert metrics["totalDeals"] == 2
        assert metrics["totalValue"] == pytest.approx(1_250_000)
        assert metrics["weightedValue"] == pytest.approx(600_000)
        assert body["period"] == "month"
        assert isinstance(body["recommendations"], list)

    async def test_admin_sees_all(self, login, admin_user: UserDB, pipelines: list[PipelineDB]) -> None:
        """Test admins see every owner's pipelines."""
        response = await login(admin_user).get("/api/pipeline/weighted")

        assert len(response.json()["deals"]) == 3

    async def test_empty_pipeline(self, login, sales_user: UserDB) -> None:
        """Test an empty pipeline still reports metrics."""
        response = await login(sales_user).get("/api/pipeline/weighted")

        assert response.status_code == 200
        assert response.json()["deals"] == []
        assert response.json()["metrics"]["totalDeals"] == 0


@pytest.mark.integration
@pytest.mark.asyncio
class TestPipelineStatus:
    """Tests for PUT /api/pipeline/weighted."""

    async def test_working_status_creates_immediate_sale(
        self, login, sales_user: UserDB, pipelines: list[PipelineDB], async_db_session: AsyncSession
    ) -> None:
        """Test moving into production mirrors the order into immediate sales."""
        client = login(sales_user)
        wakad = pipelines[1]

        response = await client.put("/api/pipeline/weighted", json={"pipelineId": wakad.id, "status": "QUALITY_CHECK"})

        assert response.status_code == 200
        assert response.json()["immediateSaleCreated"] is True
        assert response.json()["pipeline"]["status"] == "QUALITY_CHECK"
        assert response.json()["message"] == "Pipeline status updated and moved to immediate sales"

        response = await client.put("/api/pipeline/weighted", json={"pipelineId": wakad.id, "status": "DELIVERED"})
        assert response.json()["immediateSaleCreated"] is False

        sales = (await async_db_session.execute(select(ImmediateSaleDB))).scalars().all()
        assert len(sales) == 1
        assert sales[0].contractor == "Wakad supply"
        assert sales[0].value_of_order == 250_000
        assert sales[0].status == "AWARDED"
        assert sales[0].size_class == "N/A"

    async def test_invalid_status(self, login, sales_user: UserDB, pipelines: list[PipelineDB]) -> None:
        """Test unknown statuses are rejected."""
        response = await login(sales_user).put(
            "/api/pipeline/weighted", json={"pipelineId": pipelines[0].id, "status": "TELEPORTED"}
        )

        assert response.status_code == 400

    async def test_missing_fields(self, login, sales_user: UserDB) -> None:
        """Test pipeline id and status are required."""
        client = login(sales_user)

        assert (await client.put("/api/pipeline/weighted", json={"status": "SHIPPED"})).status_code == 400
        assert (await client.put("/api/pipeline/weighted", json={"pipelineId": 1})).status_code == 400
        response = await client.put("/api/pipeline/weighted", json={"pipelineId": "abc", "status": "SHIPPED"})
        assert response.json() == {"error": "Invalid pipeline ID"}

    async def test_foreign_pipeline_hidden(
        self, login, sales_user: UserDB, pipelines: list[PipelineDB]
    ) -> None:
        """Test another user's pipeline looks missing."""
        response = await login(sales_user).put(
            "/api/pipeline/weighted", json={"pipelineId": pipelines[2].id, "status": "SHIPPED"}
        )

        assert response.status_code == 404


@pytest.mark.integration
@pytest.mark.asyncio
class TestWeightedDealUpdate:
    """Tests for POST /api/pipeline/weighted."""

    async def test_stage_update(self, login, sales_user: UserDB, async_db_session: AsyncSession) -> None:
        """Test an owner can move their opportunity."""
        opportunity = OpportunityDB(name="Ring main", stage="PROSPECTING", owner_id=sales_user.id)
        async_db_session.add(opportunity)
        await async_db_session.commit()

        response = await login(sales_user).post(
            "/api/pipeline/weighted",
            json={"opportunityId": opportunity.id, "stage": "NEGOTIATION", "expectedCloseDate": "2026-12-01T00:00:00"},
        )

        assert response.status_code == 200
        assert response.json()["opportunity"]["stage"] == "NEGOTIATION"

    async def test_invalid_stage(self, login, sales_user: UserDB) -> None:
        """Test stages outside the opportunity lifecycle are rejected."""
        response = await login(sales_user).post(
            "/api/pipeline/weighted", json={"opportunityId": 1, "stage": "SHIPPED"}
        )

        assert response.status_code == 400


@pytest.mark.integration
@pytest.mark.asyncio
class TestOpportunityScoringApi:
    """Tests for /api/opportunity-scoring."""

    async def test_score_immediate_sales(self, login, sales_user: UserDB, async_db_session: AsyncSession) -> None:
        """Test immediate sales are scored and summarised."""
        now = datetime.utcnow()
        async_db_session.add_all(
            [
                ImmediateSaleDB(
                    owner_id=sales_user.id,
                    contractor="L&T",
                    value_of_order=6_000_000,
                    status="AWARDED",
                    quotation_date=now - timedelta(days=10),
                ),
                ImmediateSaleDB(
                    owner_id=sales_user.id,
                    contractor="Small Works",
                    value_of_order=50_000,
                    status="LOST",
                    quotation_date=now - timedelta(days=150),
                ),
            ]
        )
        await async_db_session.commit()

        response = await login(sales_user).get("/api/opportunity-scoring")

        assert response.status_code == 200
        body = response.json()
        assert body["totalCount"] == 2
        scores = [opp["totalScore"] for opp in body["opportunities"]]
        assert scores == sorted(scores, reverse=True)
        assert body["opportunities"][0]["saleData"]["contractor"] == "L&T"
        assert body["portfolioMetrics"]["totalValue"] == pytest.approx(6_050_000)

    async def test_score_criteria(self, login, sales_user: UserDB) -> None:
        """Test ad-hoc criteria are scored."""
        response = await login(sales_user).post(
            "/api/opportunity-scoring",
            json={
                "criteria": {
                    "dealSize": 2_000_000,
                    "probability": 0.8,
                    "daysInPipeline": 10,
                    "competitorCount": 0,
                    "decisionMakerAccess": True,
                    "budgetApproved": True,
                    "relationshipStrength": "EXCELLENT",
                    "urgency": "HIGH",
                    "marketTiming": "EXCELLENT",
                }
            },
        )

        assert response.status_code == 200
        score = response.json()["score"]
        assert score["totalScore"] == pytest.approx(89.2)
        assert score["priority"] == "CRITICAL"
        assert score["saleId"] is None

    async def test_criteria_required(self, login, sales_user: UserDB) -> None:
        """Test criteria must be supplied."""
        response = await login(sales_user).post("/api/opportunity-scoring", json={"saleId": 3})

        assert response.status_code == 400

    async def test_unknown_sale(self, login, sales_user: UserDB) -> None:
        """Test scoring against a missing sale is a 404."""
        response = await login(sales_user).post(
            "/api/opportunity-scoring", json={"saleId": 404, "criteria": {"dealSize": 10}}
        )

        assert response.status_code == 404

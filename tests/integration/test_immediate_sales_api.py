"""Integration tests for immediate sales and their categorisation."""

from datetime import datetime, timedelta

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from salesdesk.models.sales import ImmediateSaleDB
from salesdesk.models.user import UserDB


@pytest.fixture
async def seeded_sales(async_db_session: AsyncSession, sales_user: UserDB, other_user: UserDB) -> dict:
    now = datetime.utcnow()
    enterprise = ImmediateSaleDB(
        owner_id=sales_user.id,
        contractor="L&T Water",
        km=12.5,
        mt=340,
        value_of_order=150_000_000,
        quotation_date=now - timedelta(days=3),
        status="BIDDING",
    )
    small = ImmediateSaleDB(
        owner_id=sales_user.id,
        contractor="Local Builders",
        km=1.5,
        value_of_order=2_000_000,
        quotation_date=now - timedelta(days=90),
        status="ONGOING",
    )
    foreign = ImmediateSaleDB(owner_id=other_user.id, value_of_order=30_000_000, status="AWARDED")
    async_db_session.add_all([enterprise, small, foreign])
    await async_db_session.commit()
    return {"enterprise": enterprise, "small": small, "foreign": foreign}


@pytest.mark.integration
@pytest.mark.asyncio
class TestListImmediateSales:
    """Tests for GET /api/immediate-sales."""

    async def test_categorised_and_scoped(self, login, sales_user: UserDB, seeded_sales: dict) -> None:
        """Test sales carry category, urgency and conversion for their owner only."""
        response = await login(sales_user).get("/api/immediate-sales")

        assert response.status_code == 200
        body = response.json()
        by_contractor = {sale["contractor"]: sale for sale in body["immediateSales"]}
        assert set(by_contractor) == {"L&T Water", "Local Builders"}

        enterprise = by_contractor["L&T Water"]
        assert enterprise["dealCategory"] == "ENTERPRISE"
        assert enterprise["urgencyLevel"] == "LOW"
        assert enterprise["daysSinceQuote"] == 3
        assert enterprise["isRecent"] is True
        assert enterprise["insights"] == {
            "priority": "HIGH",
            "recommendation": "High-value enterprise deal - prioritize",
        }
        assert 0 < enterprise["conversionProbability"] <= 100

        small = by_contractor["Local Builders"]
        assert small["dealCategory"] == "SMALL"
        assert small["isRecent"] is False
        assert small["insights"]["priority"] == "LOW"

        analytics = body["analytics"]
        assert analytics["count"] == 2
        assert analytics["totalValue"] == 152_000_000
        assert analytics["totalKm"] == 14
        assert analytics["byCategory"]["enterprise"] == 1
        assert analytics["byCategory"]["small"] == 1
        assert analytics["byStatus"] == {"ongoing": 1, "bidding": 1, "awarded": 0, "lost": 0}
        assert analytics["recentCount"] == 1
        assert analytics["highPriorityCount"] == 1
        assert body["insights"]["recommendations"] == [
            "1 high-priority deals need immediate attention",
            "1 recent quotations to follow up",
        ]

    async def test_filters(self, login, admin_user: UserDB, other_user: UserDB, seeded_sales: dict) -> None:
        """Test admins see every sale and can filter by owner and status."""
        client = login(admin_user)

        everyone = await client.get("/api/immediate-sales")
        by_owner = await client.get("/api/immediate-sales", params={"ownerId": other_user.id})
        by_status = await client.get("/api/immediate-sales", params={"status": "BIDDING"})

        assert everyone.json()["analytics"]["count"] == 3
        assert [s["dealCategory"] for s in by_owner.json()["immediateSales"]] == ["LARGE"]
        assert [s["contractor"] for s in by_status.json()["immediateSales"]] == ["L&T Water"]


@pytest.mark.integration
@pytest.mark.asyncio
class TestCreateImmediateSale:
    """Tests for POST /api/immediate-sales."""

    async def test_create_stores_category_and_urgency(
        self, login, sales_user: UserDB, async_db_session: AsyncSession
    ) -> None:
        """Test a new sale defaults to bidding and is categorised by value."""
        response = await login(sales_user).post(
            "/api/immediate-sales",
            json={"contractor": "Shapoorji", "valueOfOrder": 45_000_000, "km": 4, "sizeClass": "DN600"},
        )

        assert response.status_code == 201
        body = response.json()
        assert body["message"] == "Smart immediate sale created with AI categorization"
        assert body["analytics"] == {"dealCategory": "LARGE", "urgencyLevel": "LOW"}
        sale = body["immediateSale"]
        assert sale["status"] == "BIDDING"
        assert sale["ownerId"] == sales_user.id
        assert sale["insights"]["priority"] == "MEDIUM"

        stored = await async_db_session.get(ImmediateSaleDB, sale["id"])
        assert stored.deal_category == "LARGE"
        assert stored.urgency_level == "LOW"

    async def test_order_value_required(self, login, sales_user: UserDB) -> None:
        """Test a sale needs an order value."""
        response = await login(sales_user).post("/api/immediate-sales", json={"contractor": "No Value"})

        assert response.status_code == 400
        assert response.json() == {"error": "Order value is required"}

    async def test_unknown_status_rejected(self, login, sales_user: UserDB) -> None:
        """Test the status must be a known immediate sale status."""
        response = await login(sales_user).post(
            "/api/immediate-sales", json={"valueOfOrder": 10_000, "status": "PENDING"}
        )

        assert response.status_code == 400
        assert response.json() == {"error": "Invalid status"}


@pytest.mark.integration
@pytest.mark.asyncio
class TestUpdateImmediateSale:
    """Tests for PUT /api/immediate-sales."""

    async def test_value_change_recategorises(
        self, login, sales_user: UserDB, seeded_sales: dict, async_db_session: AsyncSession
    ) -> None:
        """Test updating the value recomputes category and urgency."""
        sale_id = seeded_sales["small"].id

        response = await login(sales_user).put(
            "/api/immediate-sales",
            json={"id": str(sale_id), "valueOfOrder": 120_000_000, "status": "AWARDED", "pic": "Asha"},
        )

        assert response.status_code == 200
        sale = response.json()["immediateSale"]
        assert sale["dealCategory"] == "ENTERPRISE"
        assert sale["status"] == "AWARDED"
        assert sale["insights"]["priority"] == "HIGH"

        stored = await async_db_session.get(ImmediateSaleDB, sale_id, populate_existing=True)
        assert stored.value_of_order == 120_000_000
        assert stored.pic == "Asha"
        assert stored.contractor == "Local Builders"
        assert stored.urgency_level == "LOW"

    async def test_validation_and_access(self, login, sales_user: UserDB, seeded_sales: dict) -> None:
        """Test id, status, existence and ownership checks."""
        client = login(sales_user)

        missing_id = await client.put("/api/immediate-sales", json={"pic": "x"})
        assert missing_id.status_code == 400
        assert missing_id.json() == {"error": "Immediate sale ID is required"}

        bad_status = await client.put(
            "/api/immediate-sales", json={"id": seeded_sales["small"].id, "status": "WON"}
        )
        assert bad_status.status_code == 400

        unknown = await client.put("/api/immediate-sales", json={"id": 99999, "pic": "x"})
        assert unknown.status_code == 404

        foreign = await client.put("/api/immediate-sales", json={"id": seeded_sales["foreign"].id, "pic": "x"})
        assert foreign.status_code == 403

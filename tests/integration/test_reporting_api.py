"""Integration tests for reports, analytics, workbook export and health endpoints."""

from datetime import datetime, timedelta
from io import BytesIO

import pytest
from httpx import AsyncClient
from openpyxl import load_workbook
from sqlalchemy.ext.asyncio import AsyncSession

from salesdesk.models.crm import LeadDB, OpportunityDB
from salesdesk.models.sales import PendingQuotationDB
from salesdesk.models.user import UserDB

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


@pytest.fixture
async def sales_data(async_db_session: AsyncSession, sales_user: UserDB, other_user: UserDB) -> None:
    now = datetime.utcnow()
    lead = LeadDB(name="PMC tender lead", status="QUALIFIED", source="Tender", owner_id=sales_user.id)
    async_db_session.add(lead)
    await async_db_session.flush()
    async_db_session.add_all(
        [
            OpportunityDB(
                name="Won main",
                stage="CLOSED_WON",
                deal_size=3_000_000,
                probability=100,
                owner_id=sales_user.id,
                lead_id=lead.id,
            ),
            OpportunityDB(
                name="Open main",
                stage="PROPOSAL",
                deal_size=1_000_000,
                probability=50,
                owner_id=sales_user.id,
            ),
            OpportunityDB(
                name="Other's win",
                stage="CLOSED_WON",
                deal_size=9_000_000,
                probability=100,
                owner_id=other_user.id,
            ),
            PendingQuotationDB(
                project_or_client_name="Overdue Co",
                quotation_pending_since=now - timedelta(days=12),
                quotation_deadline=now - timedelta(days=1),
                order_value=450_000,
                status="PENDING",
                created_by_id=sales_user.id,
            ),
        ]
    )
    await async_db_session.commit()


@pytest.mark.integration
@pytest.mark.asyncio
class TestReports:
    """Tests for GET /api/reports."""

    async def test_sales_report_scoped_to_user(self, login, sales_user: UserDB, sales_data) -> None:
        """Test a user's sales report only counts their own opportunities."""
        response = await login(sales_user).get("/api/reports", params={"type": "sales", "period": "month"})

        assert response.status_code == 200
        body = response.json()
        assert body["reportType"] == "sales"
        assert body["period"] == "month"
        data = body["data"]
        assert data["totalRevenue"] == 3_000_000
        assert data["totalDeals"] == 1
        assert data["conversionRate"] == 50
        assert data["averageDealSize"] == 3_000_000
        assert data["topPerformers"][0]["name"] == "Rahul Sales"

    async def test_admin_sales_report(self, login, admin_user: UserDB, sales_data) -> None:
        """Test admins report across every owner."""
        response = await login(admin_user).get("/api/reports", params={"type": "sales"})

        data = response.json()["data"]
        assert data["totalRevenue"] == 12_000_000
        assert data["topPerformers"][0]["name"] == "Meera Field"

    async def test_quotation_report(self, login, sales_user: UserDB, sales_data) -> None:
        """Test quotation counts include overdue quotations."""
        response = await login(sales_user).get("/api/reports", params={"type": "quotation"})

        data = response.json()["data"]
        assert data["totalQuotations"] == 1
        assert data["pendingQuotations"] == 1
        assert data["overdueQuotations"] == 1
        assert data["totalValue"] == 450_000

    @pytest.mark.parametrize("report_type", ["attendance", "pipeline", "forecast"])
    async def test_other_reports(self, login, sales_user: UserDB, sales_data, report_type: str) -> None:
        """Test every report type renders."""
        response = await login(sales_user).get("/api/reports", params={"type": report_type, "period": "week"})

        assert response.status_code == 200
        assert response.json()["success"] is True

    async def test_forecast_scores_open_deals(self, login, sales_user: UserDB, sales_data) -> None:
        """Test the forecast lists the user's open opportunities with a priority."""
        response = await login(sales_user).get("/api/reports", params={"type": "forecast", "period": "year"})

        deals = response.json()["data"]["deals"]
        assert [deal["name"] for deal in deals] == ["Open main"]
        assert deals[0]["priority"] == "HIGH"
        assert deals[0]["dealComplexity"] == "LOW"
        assert deals[0]["riskScore"] >= 20

    async def test_attendance_report_window(self, login, sales_user: UserDB) -> None:
        """Test the weekly attendance trend has one row per day."""
        response = await login(sales_user).get("/api/reports", params={"type": "attendance", "period": "week"})

        data = response.json()["data"]
        assert data["totalEmployees"] == 1
        assert len(data["monthlyAttendance"]) == 7

    async def test_missing_and_invalid_type(self, login, sales_user: UserDB) -> None:
        """Test the report type is validated."""
        client = login(sales_user)

        missing = await client.get("/api/reports")
        assert missing.status_code == 400
        assert missing.json() == {"error": "Missing report type"}

        invalid = await client.get("/api/reports", params={"type": "payroll"})
        assert invalid.status_code == 400
        assert invalid.json() == {"error": "Invalid report type"}


@pytest.mark.integration
@pytest.mark.asyncio
class TestAnalytics:
    """Tests for GET /api/analytics."""

    async def test_dashboard_shape(self, login, sales_user: UserDB, sales_data) -> None:
        """Test the dashboard exposes every section."""
        response = await login(sales_user).get("/api/analytics")

        assert response.status_code == 200
        body = response.json()
        for key in (
            "revenue",
            "customers",
            "pipeline",
            "predictions",
            "performance",
            "kpiMetrics",
            "aiInsights",
            "insights",
            "totals",
            "attendance",
            "monthlyTarget",
        ):
            assert key in body
        assert body["totals"]["leads"] == 1
        assert isinstance(body["aiInsights"]["statisticalInsights"], list)

    async def test_dashboard_is_cached(
        self, login, sales_user: UserDB, sales_data, async_db_session: AsyncSession
    ) -> None:
        """Test a second request within the TTL is served from the cache."""
        client = login(sales_user)
        first = await client.get("/api/analytics")

        async_db_session.add(LeadDB(name="Late lead", owner_id=sales_user.id))
        await async_db_session.commit()

        second = await client.get("/api/analytics")
        assert second.json()["totals"]["leads"] == first.json()["totals"]["leads"] == 1


@pytest.mark.integration
@pytest.mark.asyncio
class TestExport:
    """Tests for GET /api/export."""

    async def test_export_all(self, login, sales_user: UserDB, sales_data) -> None:
        """Test the full export downloads a workbook of populated sheets."""
        response = await login(sales_user).get("/api/export", params={"type": "all"})

        assert response.status_code == 200
        assert response.headers["content-type"] == XLSX_MEDIA_TYPE
        disposition = response.headers["content-disposition"]
        assert disposition.startswith('attachment; filename="crm-export-')
        assert disposition.endswith('.xlsx"')

        workbook = load_workbook(BytesIO(response.content))
        assert workbook.sheetnames[0] == "Summary"
        assert {"Leads", "Opportunities", "Pending Quotations", "Sales Report", "Quotation Report"} <= set(
            workbook.sheetnames
        )
        opportunities = workbook["Opportunities"]
        assert opportunities["A1"].value == "No."
        assert opportunities.max_row == 3

    async def test_export_selected_sections(self, login, sales_user: UserDB, sales_data) -> None:
        """Test a comma separated type exports only those sections."""
        response = await login(sales_user).get("/api/export", params={"type": "leads,pendingQuotations"})

        workbook = load_workbook(BytesIO(response.content))
        assert workbook.sheetnames == ["Summary", "Leads", "Pending Quotations"]

    async def test_invalid_section(self, login, sales_user: UserDB) -> None:
        """Test unknown sections are rejected."""
        response = await login(sales_user).get("/api/export", params={"type": "payroll"})

        assert response.status_code == 400
        assert response.json() == {"error": "Invalid export type"}

    async def test_requires_auth(self, api_client: AsyncClient) -> None:
        """Test anonymous exports are refused."""
        response = await api_client.get("/api/export")

        assert response.status_code == 401


@pytest.mark.integration
@pytest.mark.asyncio
class TestHealth:
    """Tests for the health and root endpoints."""

    async def test_liveness(self, api_client: AsyncClient) -> None:
        """Test the liveness check."""
        response = await api_client.get("/api/health/liveness")

        assert response.status_code == 200
        assert response.json() == {"status": "alive"}

    async def test_readiness_without_database(self, api_client: AsyncClient) -> None:
        """Test readiness fails while no database manager is configured."""
        response = await api_client.get("/api/health/readiness")

        assert response.status_code == 503
        assert response.json()["checks"]["database"] == "not_initialized"

    async def test_health_degraded(self, api_client: AsyncClient) -> None:
        """Test the general health check reports a degraded state."""
        response = await api_client.get("/api/health")

        body = response.json()
        assert body["status"] == "degraded"
        assert body["service"] == "salesdesk"
        assert body["checks"]["database"]["type"] == "unknown"

    async def test_root(self, api_client: AsyncClient) -> None:
        """Test the root endpoint lists documentation and health paths."""
        response = await api_client.get("/")

        assert response.json()["health"]["liveness"] == "/api/health/liveness"

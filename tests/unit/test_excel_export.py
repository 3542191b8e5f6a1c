"""Unit tests for the Excel workbook export."""

from datetime import datetime
from io import BytesIO

import pytest
from openpyxl import load_workbook

from salesdesk.services.excel_export import (
    ExcelExportService,
    extract_from_notes,
    format_date,
    format_day,
    format_indian_currency,
)

NOW = datetime(2026, 3, 15, 12, 0, 0)


@pytest.mark.unit
class TestFormatting:
    """Tests for the cell formatting helpers."""

    @pytest.mark.parametrize(
        "value,expected",
        [
            (None, "0"),
            (0, "0"),
            (25_000_000, "2.50 Cr"),
            (250_000, "2.50 L"),
            (5000, "5,000"),
            (1234.5, "1,234.50"),
        ],
    )
    def test_format_indian_currency(self, value, expected) -> None:
        """Test crore and lakh notation."""
        assert format_indian_currency(value) == expected

    def test_format_date(self) -> None:
        """Test datetimes and ISO strings render the same way."""
        assert format_date(NOW) == "2026-03-15 12:00:00"
        assert format_date("2026-03-15T12:00:00Z") == "2026-03-15 12:00:00"
        assert format_date(None) == ""
        assert format_day(NOW) == "2026-03-15"

    def test_extract_from_notes(self) -> None:
        """Test key lookup in pipe separated notes."""
        notes = "Diameter: 300mm | Class: K9 | NR: 12"

        assert extract_from_notes(notes, "Diameter") == "300mm"
        assert extract_from_notes(notes, "class") == "K9"
        assert extract_from_notes(notes, "Grade") == ""
        assert extract_from_notes(None, "NR") == ""


@pytest.mark.unit
class TestExcelExportService:
    """Tests for workbook assembly."""

    @pytest.fixture
    def service(self) -> ExcelExportService:
        return ExcelExportService()

    @pytest.fixture
    def data(self) -> dict:
        return {
            "leads": [
                {"id": 1, "name": "Acme Lead", "status": "NEW", "owner": {"id": 3, "name": "Asha"}},
            ],
            "opportunities": [
                {"id": 7, "name": "Water Main", "stage": "CLOSED_WON", "dealSize": 2_500_000},
            ],
            "pendingQuotations": [
                {"id": 4, "projectOrClientName": "Metro", "orderValue": 400_000, "isOverdue": True},
            ],
            "pipelines": [
                {"id": 2, "orderValue": 30_000_000, "notes": "Class: K7", "company": {"name": "Acme"}},
            ],
            "companies": [],
        }

    def test_generate_file_name(self, service) -> None:
        """Test the timestamped workbook name."""
        assert service.generate_file_name(now=NOW) == "crm-export-2026-03-15-12-00-00.xlsx"
        assert service.generate_file_name("sales", now=NOW) == "sales-2026-03-15-12-00-00.xlsx"

    def test_build_sheets_skips_empty_sections(self, service) -> None:
        """Test only populated sections get a sheet."""
        sheets = service.build_sheets({"leads": [{"id": 1, "name": "Lead"}], "companies": []}, NOW)

        assert list(sheets) == ["Summary", "Leads"]

    def test_build_sheets_report_frames(self, service) -> None:
        """Test report sections expand into their sheets."""
        sheets = service.build_sheets(
            {
                "salesReport": {"totalRevenue": 1000, "monthlyTrends": [], "pipelineStages": []},
                "attendanceReport": {"totalEmployees": 4, "presentToday": 3},
            },
            NOW,
        )

        assert list(sheets) == [
            "Summary",
            "Sales Report",
            "Revenue Trends",
            "Pipeline Stages",
            "Attendance Report",
            "Attendance Trends",
        ]
        rate = sheets["Attendance Report"].set_index("Metric").loc["Attendance Rate (%)", "Value"]
        assert rate == 75.0

    def test_summary_counts(self, service, data) -> None:
        """Test summary metrics derived from raw sections."""
        summary = service.summary_frame(data, NOW).set_index("Metric")

        assert summary.loc["Total Leads", "Value"] == 1
        assert summary.loc["Closed Won Deals", "Status"] == "Excellent"
        assert summary.loc["Total Revenue", "Value"] == "25.00 L"
        assert summary.loc["Overdue Quotations", "Status"] == "Critical"
        assert summary.loc["Report Generated", "Value"] == "2026-03-15 12:00:00"

    def test_pipelines_frame(self, service, data) -> None:
        """Test crore order values and note extraction."""
        frame = service.pipelines_frame(data["pipelines"])

        assert frame.loc[0, "Customer Name"] == "Acme"
        assert frame.loc[0, "Class"] == "K7"
        assert frame.loc[0, "Order Value (Cr)"] == "3.00"

    def test_export_all_workbook(self, service, data) -> None:
        """Test the rendered workbook loads with numbered data sheets."""
        content = service.export_all(data, now=NOW)

        workbook = load_workbook(BytesIO(content))
        assert workbook.sheetnames == ["Summary", "Leads", "Opportunities", "Pending Quotations", "Pipelines"]
        assert workbook.properties.title == "CRM Export Report"
        assert workbook.properties.creator == "CRM System"

        assert workbook["Summary"]["A1"].value == "Metric"
        leads = workbook["Leads"]
        assert leads["A1"].value == "No."
        assert leads["B1"].value == "Lead ID"
        assert leads["A2"].value == 1
        assert leads.freeze_panes == "B2"

"""Excel workbook export for CRM records and reports.

Sheets are written with pandas through the openpyxl engine, then styled in
place on the openpyxl worksheets.
"""

import numbers
import re
from datetime import date, datetime
from io import BytesIO
from typing import Any

import pandas as pd
import structlog
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter

logger = structlog.get_logger()

DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
MAX_COLUMN_WIDTH = 60
IMPORTANT_MARKERS = ("OVERDUE", "CRITICAL", "HIGH", "LOST")
IMPORTANT_VALUE_THRESHOLD = 1_000_000

HEADER_FILL = PatternFill("solid", fgColor="1F2937")
HEADER_FONT = Font(bold=True, size=12, color="FFFFFF")
HEADER_ALIGNMENT = Alignment(horizontal="center", vertical="center", wrap_text=True)
ALT_ROW_FILL = PatternFill("solid", fgColor="F9FAFB")
IMPORTANT_FILL = PatternFill("solid", fgColor="FEF3C7")
DATA_ALIGNMENT = Alignment(vertical="center", wrap_text=True)
_grid = Side(style="thin", color="E5E7EB")
DATA_BORDER = Border(left=_grid, right=_grid, top=_grid, bottom=_grid)

# Summary row status -> (fill, font colour)
SUMMARY_STATUS_STYLES = {
    "Section": ("374151", "FFFFFF"),
    "Critical": ("FEF2F2", "DC2626"),
    "Excellent": ("F0FDF4", "16A34A"),
    "Warning": ("FEF3C7", "D97706"),
    "Active": ("F0F9FF", "0284C7"),
    "Info": ("F8FAFC", "64748B"),
}

WORKBOOK_TITLE = "CRM Export Report"
WORKBOOK_SUBJECT = "Business Intelligence Report"
WORKBOOK_CREATOR = "CRM System"


def format_date(value: Any) -> str:
    """Render a date/datetime (or ISO string) as ``YYYY-MM-DD HH:MM:SS``."""
    if not value:
        return ""
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return value
    if isinstance(value, datetime):
        return value.strftime(DATE_FORMAT)
    if isinstance(value, date):
        return datetime.combine(value, datetime.min.time()).strftime(DATE_FORMAT)
    return str(value)


def format_day(value: Any) -> str:
    formatted = format_date(value)
    return formatted[:10]


def format_indian_currency(value: float | None) -> str:
    """Crore/lakh notation for large amounts, grouped digits otherwise."""
    if not value:
        return "0"
    if value >= 10_000_000:
        return f"{value / 10_000_000:.2f} Cr"
    if value >= 100_000:
        return f"{value / 100_000:.2f} L"
    if float(value).is_integer():
        return f"{int(value):,}"
    return f"{value:,.2f}"


def extract_from_notes(notes: str | None, key: str) -> str:
    """Pull ``Key: value`` out of free-form pipeline notes."""
    if not notes:
        return ""
    match = re.search(rf"{key}[:\s]+([^|\n]+)", notes, re.IGNORECASE)
    return match.group(1).strip() if match else ""


def _name(record: dict, key: str) -> str:
    related = record.get(key)
    if isinstance(related, dict):
        return related.get("name") or ""
    return ""


def _is_important(values: list[Any]) -> bool:
    for value in values:
        if isinstance(value, bool):
            continue
        if isinstance(value, numbers.Number) and value > IMPORTANT_VALUE_THRESHOLD:
            return True
        if isinstance(value, str) and any(marker in value for marker in IMPORTANT_MARKERS):
            return True
    return False


def _column_width(header: str, values: list[Any]) -> int:
    lowered = header.lower()
    if "description" in lowered or "notes" in lowered:
        longest = min(max((len(str(v)) for v in values), default=0), 50)
    else:
        longest = max((len(str(v)) for v in values), default=0)

    width = max(len(header), longest, 10)
    if "id" in lowered.split():
        width = min(width, 15)
    elif "email" in lowered:
        width = min(width, 30)
    elif "date" in lowered:
        width = max(width, 20)
    elif "value" in lowered or "amount" in lowered:
        width = max(width, 15)
    return min(width, MAX_COLUMN_WIDTH)


class ExcelExportService:
    """Build multi-sheet CRM workbooks.

    Record inputs are camelCase dicts as returned by the API, with related
    rows nested under keys such as ``owner``, ``company`` or ``user``.
    """

    # ========== Entity sheets ==========

    @staticmethod
    def leads_frame(leads: list[dict]) -> pd.DataFrame:
        rows = [
            {
                "Lead ID": lead.get("id") or "",
                "Name": lead.get("name") or "",
                "Email": lead.get("email") or "",
                "Phone": lead.get("phone") or "",
                "Source": lead.get("source") or "",
                "Status": lead.get("status") or "",
                "Owner": _name(lead, "owner"),
                "Value": lead.get("value") or 0,
                "Probability": lead.get("probability") or 0,
                "Created Date": format_date(lead.get("createdAt")),
                "Updated Date": format_date(lead.get("updatedAt")),
            }
            for lead in leads
        ]
        return pd.DataFrame(rows)

    @staticmethod
    def opportunities_frame(opportunities: list[dict]) -> pd.DataFrame:
        rows = [
            {
                "Opportunity ID": opp.get("id") or "",
                "Name": opp.get("name") or "",
                "Stage": opp.get("stage") or "",
                "Deal Size": opp.get("dealSize") or 0,
                "Probability": opp.get("probability") or 0,
                "Expected Close Date": format_date(opp.get("expectedCloseDate")),
                "Next Follow-up": format_date(opp.get("nextFollowupDate")),
                "Company": _name(opp, "company"),
                "Lead": _name(opp, "lead"),
                "Owner": _name(opp, "owner"),
                "Classification": opp.get("classification") or "",
                "Created Date": format_date(opp.get("createdAt")),
                "Updated Date": format_date(opp.get("updatedAt")),
            }
            for opp in opportunities
        ]
        return pd.DataFrame(rows)

    @staticmethod
    def attendance_frame(records: list[dict]) -> pd.DataFrame:
        rows = []
        for record in records:
            user = record.get("user") or {}
            rows.append(
                {
                    "Record ID": record.get("id") or "",
                    "User": user.get("name") or "",
                    "Employee Code": user.get("employeeCode") or "",
                    "Date": format_day(record.get("date")),
                    "Status": record.get("status") or "",
                    "Visit Report": record.get("visitReport") or "",
                    "Timeline URL": record.get("timelineUrl") or "",
                    "Photo URL": record.get("photoUrl") or "",
                    "Submitted At": format_date(record.get("submittedAt")),
                    "Reviewed At": format_date(record.get("reviewedAt")),
                }
            )
        return pd.DataFrame(rows)

    @staticmethod
    def companies_frame(companies: list[dict]) -> pd.DataFrame:
        rows = []
        for company in companies:
            opportunities = company.get("opportunities") or []
            rows.append(
                {
                    "Company ID": company.get("id") or "",
                    "Name": company.get("name") or "",
                    "Region": company.get("region") or "",
                    "Type": company.get("type") or "",
                    "Address": company.get("address") or "",
                    "Website": company.get("website") or "",
                    "Total Opportunities": len(opportunities),
                    "Open Deals": sum(
                        1 for opp in opportunities if opp.get("stage") not in ("CLOSED_WON", "CLOSED_LOST")
                    ),
                    "Total Value": sum(opp.get("dealSize") or 0 for opp in opportunities),
                    "Created Date": format_date(company.get("createdAt")),
                    "Updated Date": format_date(company.get("updatedAt")),
                }
            )
        return pd.DataFrame(rows)

    @staticmethod
    def projects_frame(projects: list[dict]) -> pd.DataFrame:
        rows = [
            {
                "Project ID": project.get("id") or "",
                "Name": project.get("name") or "",
                "Province": project.get("province") or "",
                "Status": project.get("status") or "",
                "Funding": project.get("funding") or "",
                "Consultant": project.get("consultant") or "",
                "Contractor": project.get("contractor") or "",
                "Competitors": project.get("competitors") or "",
                "Size Class": project.get("sizeClass") or "",
                "Approx MT": project.get("approxMt") or 0,
                "Procurement Start Date": format_date(project.get("dateOfStartProcurement")),
                "PIC": project.get("pic") or "",
                "Owner": _name(project, "owner"),
                "Assigned Admin": _name(project, "assignedAdmin"),
                "Created Date": format_date(project.get("createdAt")),
                "Updated Date": format_date(project.get("updatedAt")),
            }
            for project in projects
        ]
        return pd.DataFrame(rows)

    @staticmethod
    def activities_frame(activities: list[dict]) -> pd.DataFrame:
        rows = [
            {
                "Activity ID": activity.get("id") or "",
                "Type": activity.get("type") or "",
                "Subject": activity.get("subject") or "",
                "Duration (min)": activity.get("duration") or 0,
                "Occurred At": format_date(activity.get("occurredAt")),
                "User": _name(activity, "user"),
                "Lead": _name(activity, "lead"),
                "Evidence URL": activity.get("evidenceUrl") or "",
                "Created Date": format_date(activity.get("createdAt")),
            }
            for activity in activities
        ]
        return pd.DataFrame(rows)

    @staticmethod
    def immediate_sales_frame(sales: list[dict]) -> pd.DataFrame:
        rows = [
            {
                "Sale ID": sale.get("id") or "",
                "Project": _name(sale, "project"),
                "Contractor": sale.get("contractor") or "",
                "Size Class": sale.get("sizeClass") or "",
                "KM": sale.get("km") or 0,
                "MT": sale.get("mt") or 0,
                "Order Value": sale.get("valueOfOrder") or 0,
                "Status": sale.get("status") or "",
                "Quotation Date": format_date(sale.get("quotationDate")),
                "PIC": sale.get("pic") or "",
                "Created Date": format_date(sale.get("createdAt")),
                "Updated Date": format_date(sale.get("updatedAt")),
            }
            for sale in sales
        ]
        return pd.DataFrame(rows)

    @staticmethod
    def pipelines_frame(pipelines: list[dict]) -> pd.DataFrame:
        rows = []
        for pipeline in pipelines:
            order_value = pipeline.get("orderValue")
            quantity = pipeline.get("quantity")
            rows.append(
                {
                    "Customer Name": _name(pipeline, "company"),
                    "Class": extract_from_notes(pipeline.get("notes"), "Class"),
                    "Diameter": pipeline.get("diameter") or "",
                    "NR": extract_from_notes(pipeline.get("notes"), "NR"),
                    "Order Value (Cr)": f"{order_value / 10_000_000:.2f}" if order_value else "0.00",
                    "Quantity (MT)": "" if quantity is None else quantity,
                    "Specification": pipeline.get("specification") or "",
                    "Challenges": pipeline.get("challenges") or "",
                    "Expected Order Date": format_date(
                        pipeline.get("expectedDeliveryDate") or pipeline.get("orderDate")
                    ),
                    "Owner": _name(pipeline, "owner"),
                }
            )
        return pd.DataFrame(rows)

    @staticmethod
    def pending_quotations_frame(quotations: list[dict]) -> pd.DataFrame:
        rows = [
            {
                "Quotation ID": quotation.get("id") or "",
                "Project/Client": quotation.get("projectOrClientName") or "",
                "Order Value": quotation.get("orderValue") or 0,
                "Status": quotation.get("status") or "",
                "Pending Since": format_date(quotation.get("quotationPendingSince")),
                "Deadline": format_date(quotation.get("quotationDeadline")),
                "Contact Person": quotation.get("contactPerson") or "",
                "Contact Email": quotation.get("contactEmail") or "",
                "Days Pending": quotation.get("daysPending") or 0,
                "Days to Deadline": quotation.get("daysToDeadline") or 0,
                "Is Overdue": "Yes" if quotation.get("isOverdue") else "No",
                "Created Date": format_date(quotation.get("createdAt")),
                "Updated Date": format_date(quotation.get("updatedAt")),
            }
            for quotation in quotations
        ]
        return pd.DataFrame(rows)

    # ========== Report sheets ==========

    @staticmethod
    def sales_report_frames(report: dict) -> dict[str, pd.DataFrame]:
        return {
            "Sales Report": pd.DataFrame(
                [
                    {"Metric": "Total Revenue", "Value": report.get("totalRevenue", 0)},
                    {"Metric": "Total Deals", "Value": report.get("totalDeals", 0)},
                    {"Metric": "Conversion Rate (%)", "Value": report.get("conversionRate", 0)},
                    {"Metric": "Average Deal Size", "Value": report.get("averageDealSize", 0)},
                ]
            ),
            "Revenue Trends": pd.DataFrame(
                [
                    {"Period": trend.get("month"), "Revenue": trend.get("revenue", 0), "Deals": trend.get("deals", 0)}
                    for trend in report.get("monthlyTrends") or []
                ],
                columns=["Period", "Revenue", "Deals"],
            ),
            "Pipeline Stages": pd.DataFrame(
                [
                    {"Stage": stage.get("stage"), "Count": stage.get("count", 0), "Value": stage.get("value", 0)}
                    for stage in report.get("pipelineStages") or []
                ],
                columns=["Stage", "Count", "Value"],
            ),
        }

    @staticmethod
    def attendance_report_frames(report: dict) -> dict[str, pd.DataFrame]:
        total = report.get("totalEmployees", 0)
        present = report.get("presentToday", 0)
        return {
            "Attendance Report": pd.DataFrame(
                [
                    {"Metric": "Total Employees", "Value": total},
                    {"Metric": "Present Today", "Value": present},
                    {"Metric": "Absent Today", "Value": report.get("absentToday", 0)},
                    {"Metric": "Late Submissions", "Value": report.get("lateSubmissions", 0)},
                    {"Metric": "Attendance Rate (%)", "Value": present / total * 100 if total > 0 else 0},
                ]
            ),
            "Attendance Trends": pd.DataFrame(
                [
                    {"Date": day.get("date"), "Present": day.get("present", 0), "Absent": day.get("absent", 0)}
                    for day in report.get("monthlyAttendance") or []
                ],
                columns=["Date", "Present", "Absent"],
            ),
        }

    @staticmethod
    def quotation_report_frame(report: dict) -> pd.DataFrame:
        return pd.DataFrame(
            [
                {"Metric": "Total Quotations", "Value": report.get("totalQuotations", 0)},
                {"Metric": "Pending", "Value": report.get("pendingQuotations", 0)},
                {"Metric": "Accepted", "Value": report.get("acceptedQuotations", 0)},
                {"Metric": "Rejected", "Value": report.get("rejectedQuotations", 0)},
                {"Metric": "Overdue", "Value": report.get("overdueQuotations", 0)},
                {"Metric": "Total Value", "Value": report.get("totalValue", 0)},
                {"Metric": "Avg Response Time (days)", "Value": report.get("averageResponseTime", 0)},
            ]
        )

    @staticmethod
    def summary_frame(data: dict, now: datetime | None = None) -> pd.DataFrame:
        """Executive overview rows grouped into sections."""
        now = now or datetime.utcnow()
        opportunities = data.get("opportunities") or []
        quotations = data.get("pendingQuotations") or []
        sales_report = data.get("salesReport")
        quotation_report = data.get("quotationReport") or {}
        attendance_report = data.get("attendanceReport") or {}

        total_revenue = (sales_report or {}).get("totalRevenue") or sum(
            opp.get("dealSize") or 0 for opp in opportunities
        )
        overdue = quotation_report.get("overdueQuotations") or sum(1 for q in quotations if q.get("isOverdue"))
        closed_won = sum(1 for opp in opportunities if opp.get("stage") == "CLOSED_WON")
        quotation_value = quotation_report.get("totalValue") or sum(q.get("orderValue") or 0 for q in quotations)
        immediate_value = sum(sale.get("valueOfOrder") or 0 for sale in data.get("immediateSales") or [])
        absent_today = attendance_report.get("absentToday", 0)

        def row(metric, value="", status="Active", priority="Normal"):
            return {"Metric": metric, "Value": value, "Status": status, "Priority": priority}

        def section(title):
            return row(title, status="Section", priority="")

        spacer = row("", status="", priority="")

        rows = [
            section("DATA OVERVIEW"),
            row("Total Leads", len(data.get("leads") or [])),
            row("Total Opportunities", len(opportunities)),
            row("Closed Won Deals", closed_won, "Excellent" if closed_won > 0 else "Normal"),
            row("Total Companies", len(data.get("companies") or [])),
            row("Total Projects", len(data.get("projects") or [])),
            spacer,
            section("FINANCIAL METRICS"),
            row(
                "Total Revenue",
                format_indian_currency(total_revenue),
                "Excellent" if total_revenue > 1_000_000 else "Active",
                "High" if total_revenue > 5_000_000 else "Normal",
            ),
            row(
                "Average Deal Size",
                format_indian_currency(sales_report.get("averageDealSize")) if sales_report else "N/A",
            ),
            row(
                "Conversion Rate",
                f"{sales_report.get('conversionRate', 0)}%" if sales_report else "N/A",
                "Excellent" if (sales_report or {}).get("conversionRate", 0) > 30 else "Active",
            ),
            row("Immediate Sales Value", format_indian_currency(immediate_value)),
            spacer,
            section("QUOTATIONS"),
            row("Total Quotations", quotation_report.get("totalQuotations") or len(quotations)),
            row("Pending Quotations", quotation_report.get("pendingQuotations", 0)),
            row(
                "Overdue Quotations",
                overdue,
                "Critical" if overdue > 0 else "Normal",
                "High" if overdue > 0 else "Normal",
            ),
            row("Total Quotation Value", format_indian_currency(quotation_value)),
            spacer,
            section("ATTENDANCE"),
            row("Total Employees", attendance_report.get("totalEmployees", 0)),
            row("Present Today", attendance_report.get("presentToday", 0)),
            row("Absent Today", absent_today, "Warning" if absent_today > 5 else "Normal"),
            row("Attendance Records", len(data.get("attendance") or [])),
            spacer,
            row("Report Generated", format_date(now), "Info"),
        ]
        return pd.DataFrame(rows)

    # ========== Workbook assembly ==========

    def build_sheets(self, data: dict, now: datetime | None = None) -> dict[str, pd.DataFrame]:
        """Ordered sheet name -> frame mapping; empty collections are skipped."""
        sheets = {"Summary": self.summary_frame(data, now)}

        if data.get("leads"):
            sheets["Leads"] = self.leads_frame(data["leads"])
        if data.get("opportunities"):
            sheets["Opportunities"] = self.opportunities_frame(data["opportunities"])
        if data.get("salesReport"):
            sheets.update(self.sales_report_frames(data["salesReport"]))
        if data.get("attendance"):
            sheets["Attendance"] = self.attendance_frame(data["attendance"])
        if data.get("attendanceReport"):
            sheets.update(self.attendance_report_frames(data["attendanceReport"]))
        if data.get("companies"):
            sheets["Companies"] = self.companies_frame(data["companies"])
        if data.get("projects"):
            sheets["Projects"] = self.projects_frame(data["projects"])
        if data.get("activities"):
            sheets["Activities"] = self.activities_frame(data["activities"])
        if data.get("immediateSales"):
            sheets["Immediate Sales"] = self.immediate_sales_frame(data["immediateSales"])
        if data.get("pendingQuotations"):
            sheets["Pending Quotations"] = self.pending_quotations_frame(data["pendingQuotations"])
        if data.get("quotationReport"):
            sheets["Quotation Report"] = self.quotation_report_frame(data["quotationReport"])
        if data.get("pipelines"):
            sheets["Pipelines"] = self.pipelines_frame(data["pipelines"])

        return sheets

    def export_all(self, data: dict, now: datetime | None = None) -> bytes:
        """Render every populated section into a single ``.xlsx`` payload.

        Args:
            data: Export sections keyed like ``leads``, ``opportunities``,
                ``salesReport``, ``pendingQuotations``...
            now: Generation time shown on the summary sheet

        Returns:
            Workbook bytes
        """
        now = now or datetime.utcnow()
        sheets = self.build_sheets(data, now)

        output = BytesIO()
        with pd.ExcelWriter(output, engine="openpyxl") as writer:
            for sheet_name, frame in sheets.items():
                numbered = "Metric" not in frame.columns
                if numbered:
                    frame = frame.copy()
                    frame.insert(0, "No.", range(1, len(frame) + 1))
                frame.to_excel(writer, index=False, sheet_name=sheet_name)

                worksheet = writer.sheets[sheet_name]
                if "Metric" in frame.columns:
                    self._style_summary_sheet(worksheet, frame)
                else:
                    self._style_data_sheet(worksheet, frame)

            properties = writer.book.properties
            properties.title = WORKBOOK_TITLE
            properties.subject = WORKBOOK_SUBJECT
            properties.creator = WORKBOOK_CREATOR
            properties.created = now

        logger.info("excel_export_built", sheets=list(sheets), size=output.tell())
        return output.getvalue()

    @staticmethod
    def generate_file_name(prefix: str = "crm-export", now: datetime | None = None) -> str:
        timestamp = format_date(now or datetime.utcnow()).replace(" ", "-").replace(":", "-")
        return f"{prefix}-{timestamp}.xlsx"

    # ========== Styling ==========

    @staticmethod
    def _style_header(worksheet, column_count: int) -> None:
        for column in range(1, column_count + 1):
            cell = worksheet.cell(row=1, column=column)
            cell.fill = HEADER_FILL
            cell.font = HEADER_FONT
            cell.alignment = HEADER_ALIGNMENT

    @staticmethod
    def _style_data_sheet(worksheet, frame: pd.DataFrame) -> None:
        column_count = len(frame.columns)
        ExcelExportService._style_header(worksheet, column_count)

        for offset, values in enumerate(frame.itertuples(index=False), start=2):
            important = _is_important(list(values))
            for column in range(1, column_count + 1):
                cell = worksheet.cell(row=offset, column=column)
                cell.alignment = DATA_ALIGNMENT
                cell.border = DATA_BORDER
                if important:
                    cell.fill = IMPORTANT_FILL
                    cell.font = Font(bold=True, size=11)
                elif offset % 2 == 0:
                    cell.fill = ALT_ROW_FILL

        for index, header in enumerate(frame.columns, start=1):
            worksheet.column_dimensions[get_column_letter(index)].width = _column_width(
                str(header), frame.iloc[:, index - 1].tolist()
            )

        worksheet.freeze_panes = "B2"
        if column_count:
            worksheet.auto_filter.ref = f"A1:{get_column_letter(column_count)}{len(frame) + 1}"

    @staticmethod
    def _style_summary_sheet(worksheet, frame: pd.DataFrame) -> None:
        column_count = len(frame.columns)
        ExcelExportService._style_header(worksheet, column_count)
        widths = {"Metric": 30, "Value": 20, "Status": 12, "Priority": 12}

        for offset, record in enumerate(frame.to_dict("records"), start=2):
            status = record.get("Status", "")
            fill_color, font_color = SUMMARY_STATUS_STYLES.get(status, (None, None))
            bold = status in ("Section", "Critical", "Excellent") or record.get("Priority") == "High"
            if status == "" and record.get("Metric") == "":
                continue
            for column in range(1, column_count + 1):
                cell = worksheet.cell(row=offset, column=column)
                cell.border = DATA_BORDER
                cell.alignment = Alignment(vertical="center")
                cell.font = Font(size=12, bold=bold, color=font_color)
                if fill_color:
                    cell.fill = PatternFill("solid", fgColor=fill_color)
                elif record.get("Priority") == "High":
                    cell.fill = PatternFill("solid", fgColor="FFFBEB")

        for index, header in enumerate(frame.columns, start=1):
            worksheet.column_dimensions[get_column_letter(index)].width = widths.get(str(header), 20)

        worksheet.freeze_panes = "A2"

"""ORM models for the SalesDesk CRM."""

# Import SQLAlchemy ORM models to register them with Base.metadata
# This ensures all tables are known when create_tables() is called
from salesdesk.models.attendance import AttendanceDB, AttendanceStatus  # noqa: F401
from salesdesk.models.crm import (  # noqa: F401
    ActivityDB,
    CompanyDB,
    ContactDB,
    CustomerSegmentDB,
    DailyFollowUpDB,
    FollowUpActionType,
    FollowUpStatus,
    LeadDB,
    OpportunityDB,
    OpportunityStage,
    ResponseQuality,
    UrgencyLevel,
)
from salesdesk.models.notification import NotificationDB  # noqa: F401
from salesdesk.models.sales import (  # noqa: F401
    ImmediateSaleDB,
    ImmediateSaleStatus,
    PendingQuotationDB,
    PipelineDB,
    PipelineStatus,
    ProjectDB,
    QuotationStatus,
)
from salesdesk.models.user import ADMIN_ROLES, UserDB, UserRole  # noqa: F401

__all__ = [
    # Users
    "UserDB",
    "UserRole",
    "ADMIN_ROLES",
    # CRM
    "CompanyDB",
    "ContactDB",
    "LeadDB",
    "ActivityDB",
    "OpportunityDB",
    "OpportunityStage",
    "DailyFollowUpDB",
    "FollowUpStatus",
    "FollowUpActionType",
    "ResponseQuality",
    "UrgencyLevel",
    "CustomerSegmentDB",
    # Sales
    "PipelineDB",
    "PipelineStatus",
    "ProjectDB",
    "ImmediateSaleDB",
    "ImmediateSaleStatus",
    "PendingQuotationDB",
    "QuotationStatus",
    # Attendance
    "AttendanceDB",
    "AttendanceStatus",
    # Notifications
    "NotificationDB",
]

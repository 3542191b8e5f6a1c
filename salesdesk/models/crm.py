"""Companies, contacts, leads, opportunities and follow-up models."""

from datetime import datetime
from enum import Enum

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)

from salesdesk.models.base import Base


class OpportunityStage(str, Enum):
    """Opportunity stage."""

    PROSPECTING = "PROSPECTING"
    QUALIFICATION = "QUALIFICATION"
    PROPOSAL = "PROPOSAL"
    NEGOTIATION = "NEGOTIATION"
    CLOSED_WON = "CLOSED_WON"
    CLOSED_LOST = "CLOSED_LOST"


class FollowUpStatus(str, Enum):
    """Daily follow-up status."""

    SCHEDULED = "SCHEDULED"
    COMPLETED = "COMPLETED"
    OVERDUE = "OVERDUE"
    CANCELLED = "CANCELLED"
    POSTPONED = "POSTPONED"


class FollowUpActionType(str, Enum):
    """Kind of follow-up action."""

    CALL = "CALL"
    EMAIL = "EMAIL"
    MEETING = "MEETING"
    VISIT = "VISIT"
    DEMO = "DEMO"
    PROPOSAL = "PROPOSAL"
    OTHER = "OTHER"


class UrgencyLevel(str, Enum):
    """Urgency shared by follow-ups and quotations."""

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class ResponseQuality(str, Enum):
    """Quality grade of a follow-up response or its completion."""

    POOR = "POOR"
    FAIR = "FAIR"
    GOOD = "GOOD"
    VERY_GOOD = "VERY_GOOD"
    EXCELLENT = "EXCELLENT"


def _values(enum_cls: type[Enum]) -> str:
    return ", ".join(f"'{member.value}'" for member in enum_cls)


# ========== SQLAlchemy ORM Models ==========


class CompanyDB(Base):
    """SQLAlchemy model for companies table."""

    __tablename__ = "companies"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    region = Column(String(100), nullable=True)
    type = Column(String(100), nullable=True)
    address = Column(Text, nullable=True)
    website = Column(String(255), nullable=True)
    owner_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    total_opportunities = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)


class ContactDB(Base):
    """SQLAlchemy model for contacts table."""

    __tablename__ = "contacts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=True)
    role = Column(String(100), nullable=True)
    company_id = Column(Integer, ForeignKey("companies.id"), nullable=False, index=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)


class LeadDB(Base):
    """SQLAlchemy model for leads table."""

    __tablename__ = "leads"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=True)
    phone = Column(String(50), nullable=True)
    source = Column(String(100), nullable=True)
    status = Column(String(50), nullable=False, default="NEW")
    value = Column(Float, nullable=True)
    probability = Column(Float, nullable=True)
    next_follow_up_date = Column(DateTime, nullable=True)
    owner_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    company_id = Column(Integer, ForeignKey("companies.id"), nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)


class ActivityDB(Base):
    """SQLAlchemy model for activities table."""

    __tablename__ = "activities"

    id = Column(Integer, primary_key=True, autoincrement=True)
    type = Column(String(50), nullable=False)
    subject = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    duration = Column(Integer, nullable=True)
    evidence_url = Column(String(500), nullable=True)
    lead_id = Column(Integer, ForeignKey("leads.id"), nullable=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    occurred_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)


class OpportunityDB(Base):
    """SQLAlchemy model for opportunities table."""

    __tablename__ = "opportunities"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    stage = Column(String(30), nullable=False, default=OpportunityStage.PROSPECTING.value)
    deal_size = Column(Float, nullable=True)
    probability = Column(Float, nullable=True)
    expected_close_date = Column(DateTime, nullable=True)
    next_followup_date = Column(DateTime, nullable=True)
    classification = Column(String(50), nullable=True)
    is_frozen = Column(Boolean, nullable=False, default=False)
    frozen_reason = Column(String(255), nullable=True)
    company_id = Column(Integer, ForeignKey("companies.id"), nullable=True, index=True)
    lead_id = Column(Integer, ForeignKey("leads.id"), nullable=True)
    owner_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        CheckConstraint(f"stage IN ({_values(OpportunityStage)})", name="opportunities_stage_check"),
    )


class DailyFollowUpDB(Base):
    """SQLAlchemy model for daily_follow_ups table."""

    __tablename__ = "daily_follow_ups"

    id = Column(Integer, primary_key=True, autoincrement=True)
    assigned_to = Column(String(255), nullable=False)
    action_type = Column(String(30), nullable=False)
    action_description = Column(Text, nullable=False)
    status = Column(String(30), nullable=False, default=FollowUpStatus.SCHEDULED.value)
    follow_up_date = Column(DateTime, nullable=False)
    notes = Column(Text, nullable=True)
    timezone = Column(String(50), nullable=True)
    urgency_level = Column(String(20), nullable=True)
    response_received = Column(Boolean, nullable=False, default=False)
    response_quality = Column(String(20), nullable=True)
    completion_quality = Column(String(20), nullable=True)
    effectiveness_score = Column(Float, nullable=True)
    next_action_date = Column(DateTime, nullable=True)
    next_action_notes = Column(Text, nullable=True)
    overdue_reason = Column(Text, nullable=True)
    overdue_acknowledged_at = Column(DateTime, nullable=True)
    overdue_acknowledged_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_by_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    lead_id = Column(Integer, ForeignKey("leads.id"), nullable=True)
    opportunity_id = Column(Integer, ForeignKey("opportunities.id"), nullable=True)
    project_id = Column(Integer, ForeignKey("projects.id"), nullable=True)
    immediate_sale_id = Column(Integer, ForeignKey("immediate_sales.id"), nullable=True)
    company_id = Column(Integer, ForeignKey("companies.id"), nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        CheckConstraint(f"status IN ({_values(FollowUpStatus)})", name="daily_follow_ups_status_check"),
        Index("idx_follow_up_status_date", "status", "follow_up_date"),
    )


class CustomerSegmentDB(Base):
    """SQLAlchemy model for ml_customer_segments table."""

    __tablename__ = "ml_customer_segments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    segment_name = Column(String(100), nullable=False)
    company_id = Column(Integer, ForeignKey("companies.id"), nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

"""Pipelines, projects, immediate sales and pending quotation models."""

from datetime import datetime
from enum import Enum

from sqlalchemy import CheckConstraint, Column, DateTime, Float, ForeignKey, Index, Integer, String, Text

from salesdesk.models.base import Base


class PipelineStatus(str, Enum):
    """Order lifecycle status of a pipeline."""

    ORDER_RECEIVED = "ORDER_RECEIVED"
    ORDER_PROCESSING = "ORDER_PROCESSING"
    CONTRACT_SIGNING = "CONTRACT_SIGNING"
    PRODUCTION_STARTED = "PRODUCTION_STARTED"
    QUALITY_CHECK = "QUALITY_CHECK"
    PACKING_SHIPPING = "PACKING_SHIPPING"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    INSTALLATION_STARTED = "INSTALLATION_STARTED"
    INSTALLATION_COMPLETE = "INSTALLATION_COMPLETE"
    PAYMENT_RECEIVED = "PAYMENT_RECEIVED"
    PROJECT_COMPLETE = "PROJECT_COMPLETE"
    ON_HOLD = "ON_HOLD"
    DELAYED = "DELAYED"
    CANCELLED = "CANCELLED"
    DISPUTED = "DISPUTED"
    LOST_TO_COMPETITOR = "LOST_TO_COMPETITOR"


class ImmediateSaleStatus(str, Enum):
    """Immediate sale status."""

    ONGOING = "ONGOING"
    BIDDING = "BIDDING"
    AWARDED = "AWARDED"
    LOST = "LOST"


class QuotationStatus(str, Enum):
    """Pending quotation status (also used as its stage)."""

    PENDING = "PENDING"
    SENT = "SENT"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"
    EXPIRED = "EXPIRED"
    REQUOTATION = "REQUOTATION"
    DONE = "DONE"


# ========== SQLAlchemy ORM Models ==========


class PipelineDB(Base):
    """SQLAlchemy model for pipelines table."""

    __tablename__ = "pipelines"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    status = Column(String(30), nullable=False, default=PipelineStatus.ORDER_RECEIVED.value)
    order_value = Column(Float, nullable=True)
    progress_percentage = Column(Float, nullable=True)
    order_date = Column(DateTime, nullable=True)
    expected_delivery_date = Column(DateTime, nullable=True)
    actual_delivery_date = Column(DateTime, nullable=True)
    actual_install_date = Column(DateTime, nullable=True)
    payment_date = Column(DateTime, nullable=True)
    diameter = Column(String(50), nullable=True)
    quantity = Column(Float, nullable=True)
    specification = Column(Text, nullable=True)
    challenges = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)
    owner_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    company_id = Column(Integer, ForeignKey("companies.id"), nullable=True)
    opportunity_id = Column(Integer, ForeignKey("opportunities.id"), nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (Index("idx_pipeline_owner_order", "owner_id", "order_date"),)


class ProjectDB(Base):
    """SQLAlchemy model for projects table."""

    __tablename__ = "projects"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    province = Column(String(100), nullable=False)
    funding = Column(String(255), nullable=True)
    consultant = Column(String(255), nullable=True)
    contractor = Column(String(255), nullable=True)
    competitors = Column(Text, nullable=True)
    size_class = Column(String(100), nullable=True)
    unit_of_measurement = Column(String(50), nullable=True)
    approx_mt = Column(Float, nullable=True)
    status = Column(String(30), nullable=False, default="ONGOING")
    month_of_quote = Column(String(50), nullable=True)
    date_of_start_procurement = Column(DateTime, nullable=True)
    pic = Column(String(255), nullable=True)
    owner_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    assigned_admin_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)


class ImmediateSaleDB(Base):
    """SQLAlchemy model for immediate_sales table."""

    __tablename__ = "immediate_sales"

    id = Column(Integer, primary_key=True, autoincrement=True)
    project_id = Column(Integer, ForeignKey("projects.id"), nullable=True)
    owner_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    contractor = Column(String(255), nullable=True)
    size_class = Column(String(100), nullable=True)
    km = Column(Float, nullable=True)
    mt = Column(Float, nullable=True)
    value_of_order = Column(Float, nullable=True)
    quotation_date = Column(DateTime, nullable=True)
    status = Column(String(20), nullable=False, default=ImmediateSaleStatus.ONGOING.value)
    pic = Column(String(255), nullable=True)
    deal_category = Column(String(20), nullable=True)
    urgency_level = Column(String(20), nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        CheckConstraint(
            "status IN ('ONGOING', 'BIDDING', 'AWARDED', 'LOST')",
            name="immediate_sales_status_check",
        ),
    )


class PendingQuotationDB(Base):
    """SQLAlchemy model for pending_quotations table."""

    __tablename__ = "pending_quotations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    project_or_client_name = Column(String(255), nullable=False)
    quotation_pending_since = Column(DateTime, nullable=False, default=datetime.utcnow)
    quotation_deadline = Column(DateTime, nullable=True)
    order_value = Column(Float, nullable=True)
    total_qty = Column(Float, nullable=True)
    contact_person = Column(String(255), nullable=True)
    contact_email = Column(String(255), nullable=True)
    quotation_document = Column(String(500), nullable=True)
    status = Column(String(20), nullable=False, default=QuotationStatus.PENDING.value)
    notes = Column(Text, nullable=True)
    urgency_level = Column(String(20), nullable=True)
    reminder_count = Column(Integer, nullable=False, default=0)
    last_reminder_sent = Column(DateTime, nullable=True)
    opportunity_id = Column(Integer, ForeignKey("opportunities.id"), nullable=True, index=True)
    company_id = Column(Integer, ForeignKey("companies.id"), nullable=True)
    created_by_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        CheckConstraint(
            "status IN ('PENDING', 'SENT', 'ACCEPTED', 'REJECTED', 'EXPIRED', 'REQUOTATION', 'DONE')",
            name="pending_quotations_status_check",
        ),
    )

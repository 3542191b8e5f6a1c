"""Attendance submission model."""

from datetime import datetime
from enum import Enum

from sqlalchemy import CheckConstraint, Column, Date, DateTime, Float, ForeignKey, Index, Integer, String, Text

from salesdesk.models.base import Base


class AttendanceStatus(str, Enum):
    """Review status of an attendance submission."""

    SUBMITTED = "SUBMITTED"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    AUTO_FLAGGED = "AUTO_FLAGGED"
    AMENDED = "AMENDED"


# ========== SQLAlchemy ORM Models ==========


class AttendanceDB(Base):
    """SQLAlchemy model for attendances table."""

    __tablename__ = "attendances"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    date = Column(Date, nullable=False)
    visit_report = Column(Text, nullable=False)
    timeline_url = Column(String(500), nullable=True)
    photo_url = Column(String(500), nullable=True)
    status = Column(String(20), nullable=False, default=AttendanceStatus.SUBMITTED.value)
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    accuracy = Column(Float, nullable=True)
    address = Column(Text, nullable=True)
    city = Column(String(100), nullable=True)
    state = Column(String(100), nullable=True)
    country = Column(String(100), nullable=True)
    device_fingerprint = Column(String(64), nullable=True)
    record_hash = Column(String(64), nullable=True)
    submitted_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    reviewer_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    reviewed_at = Column(DateTime, nullable=True)
    review_notes = Column(Text, nullable=True)
    approved_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        CheckConstraint(
            "status IN ('SUBMITTED', 'APPROVED', 'REJECTED', 'AUTO_FLAGGED', 'AMENDED')",
            name="attendances_status_check",
        ),
        Index("idx_attendance_user_date", "user_id", "date", unique=True),
        Index("idx_attendance_submitted", "submitted_at"),
    )

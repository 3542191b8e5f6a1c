"""User account model."""

from datetime import datetime
from enum import Enum

from sqlalchemy import Boolean, Column, DateTime, Integer, String

from salesdesk.models.base import Base


class UserRole(str, Enum):
    """Known user roles."""

    USER = "user"
    ADMIN = "admin"
    SUPER_ADMIN = "SuperAdmin"


ADMIN_ROLES = (UserRole.ADMIN.value, UserRole.SUPER_ADMIN.value)


class UserDB(Base):
    """SQLAlchemy model for users table."""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=False, unique=True, index=True)
    password = Column(String(255), nullable=False)
    role = Column(String(50), nullable=False, default=UserRole.USER.value)
    employee_code = Column(String(50), nullable=True)
    verified = Column(Boolean, nullable=False, default=False)
    location = Column(String(255), nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_summary(self) -> dict:
        """Public fields embedded in other resources."""
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "employeeCode": self.employee_code,
            "role": self.role,
        }

"""Member database model with enums for roles and account statuses."""

import enum
from datetime import datetime, timezone
from sqlalchemy import (
    Column, Integer, String, DateTime, Enum, Index
)
from sqlalchemy.orm import relationship
from classchat.database import Base


class UserRole(str, enum.Enum):
    """System roles."""
    ADMIN = "ADMIN"
    TEACHER = "TEACHER"
    STUDENT = "STUDENT"


class AccountStatus(str, enum.Enum):
    """Account lifecycle states."""
    PENDING_APPROVAL = "PENDING_APPROVAL"
    ACTIVE = "ACTIVE"
    SUSPENDED = "SUSPENDED"


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(String(50), unique=True, nullable=False, index=True)
    email = Column(String(120), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)
    first_name = Column(String(50), nullable=False)
    last_name = Column(String(50), nullable=False)

    role = Column(Enum(UserRole), nullable=False, default=UserRole.STUDENT, index=True)
    account_status = Column(
        Enum(AccountStatus),
        nullable=False,
        default=AccountStatus.ACTIVE,
        index=True,
    )

    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    last_login_at = Column(DateTime(timezone=True), nullable=True)

    rooms = relationship("ChatRoom", back_populates="owner")
    quizzes = relationship("Quiz", back_populates="owner")

    __table_args__ = (
        Index("ix_users_role_status", "role", "account_status"),
    )

    def __repr__(self):
        return f"<User(id={self.id}, username='{self.username}', role={self.role})>"

from sqlalchemy import (
    Boolean, Column, DateTime, ForeignKey, Integer, JSON, String, Text, UniqueConstraint,
)
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class ApprovalRequestRow(Base):
    __tablename__ = "approval_requests"

    id = Column(String, primary_key=True)
    request_type = Column(String, nullable=False, index=True)
    requester_id = Column(String, nullable=False, index=True)
    requester_name = Column(String, nullable=False)
    requester_email = Column(String, nullable=False)
    amounts = Column(JSON, nullable=False)    # variant-specific figures
    # Set for liquidations only; one liquidation per cash advance
    cash_advance_id = Column(String, nullable=True, unique=True)
    status = Column(String, nullable=False, index=True)

    level1_approver_id = Column(String, nullable=True)
    level1_approver_name = Column(String, nullable=True)
    level1_decided_at = Column(DateTime(timezone=True), nullable=True)
    level1_comment = Column(Text, nullable=True)

    level2_approver_id = Column(String, nullable=True)
    level2_approver_name = Column(String, nullable=True)
    level2_decided_at = Column(DateTime(timezone=True), nullable=True)
    level2_comment = Column(Text, nullable=True)

    rejected_at_level = Column(Integer, nullable=True)
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), nullable=False)


class User(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True)
    email = Column(String, nullable=True)
    first_name = Column(String, nullable=True)
    last_name = Column(String, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)


class UserPermission(Base):
    __tablename__ = "user_permissions"
    __table_args__ = (UniqueConstraint("user_id", "permission_key"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    permission_key = Column(String, nullable=False, index=True)

"""Audit log model — append-only."""

from sqlalchemy import Column, DateTime, Integer, String, Text, func
from erp_access.db.base import Base


class AuditLog(Base):
    """Immutable audit trail for all business mutations.

    This table is APPEND-ONLY: rows are never updated after insert
    (enforced at application level).
    """
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    action = Column(String(16), nullable=False, index=True)  # create, update, delete
    resource_type = Column(String(64), nullable=False, index=True)  # orders, tasks, etc.
    resource_id = Column(String(100), nullable=True)
    actor_id = Column(String(100), nullable=True, index=True)
    actor_email = Column(String(255), nullable=True)
    actor_name = Column(String(255), nullable=True)
    old_value_json = Column(Text, nullable=True)
    new_value_json = Column(Text, nullable=True)
    summary = Column(String(500), nullable=True)
    session_id = Column(String(64), nullable=True, index=True)
    metadata_json = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)

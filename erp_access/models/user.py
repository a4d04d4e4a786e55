"""User model (the principal holding role slugs)."""

from sqlalchemy import Boolean, Column, DateTime, Integer, String, Text, func
from erp_access.db.base import Base


class User(Base):
    """Platform user holding one or more role slugs."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String(255), unique=True, nullable=False, index=True)
    full_name = Column(String(255), nullable=False)
    roles_json = Column(Text, nullable=False, default="[]")  # JSON list of role slugs
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

"""
ORM tables backing the contact store.

``contacts`` keeps the five core attributes as columns (email and phone are
indexed for deduplication lookups) and custom field values in a JSON column
keyed by field id.
"""
import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, Boolean, Column, DateTime, String

from .session import Base


def _utcnow() -> datetime:
    """Return a timezone-aware UTC timestamp."""
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


class Contact(Base):
    __tablename__ = "contacts"

    id = Column(String(36), primary_key=True, default=_new_id)
    first_name = Column(String, nullable=True)
    last_name = Column(String, nullable=True)
    phone = Column(String, nullable=True, index=True)
    email = Column(String, nullable=True, index=True)
    agent_uid = Column(String(36), nullable=True)
    custom = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), default=_utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)


class ContactField(Base):
    __tablename__ = "contact_fields"

    id = Column(String(36), primary_key=True, default=_new_id)
    label = Column(String, nullable=False)
    type = Column(String(20), nullable=False, default="text")
    core = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow)


class User(Base):
    """Agents that contacts can be assigned to."""
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=_new_id)
    name = Column(String, nullable=True)
    email = Column(String, unique=True, index=True, nullable=False)
    role = Column(String, nullable=False, server_default="agent", default="agent")
    created_at = Column(DateTime(timezone=True), default=_utcnow)

"""
Base model classes for the MailSync backend.

This module provides the timestamp and UUID mixins shared by all tables.
"""

import uuid
from datetime import UTC, datetime

from sqlalchemy import Column, String
from sqlalchemy.dialects.postgresql import TIMESTAMP

# Import Base from the database module to avoid duplicate declarations
from ..core.database import Base


def utc_now() -> datetime:
    return datetime.now(UTC)


class TimestampMixin:
    """Mixin for adding timestamp columns to models."""

    created_at = Column(TIMESTAMP(timezone=True), default=utc_now, nullable=False)
    updated_at = Column(TIMESTAMP(timezone=True), default=utc_now, onupdate=utc_now, nullable=False)


class UUIDMixin:
    """Mixin for adding UUID primary key to models."""

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))


class BaseModel(Base, TimestampMixin, UUIDMixin):
    """Base model class with common functionality."""

    __abstract__ = True

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}(id={self.id})>"

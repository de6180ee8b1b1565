"""Base model with common fields and utilities."""

import uuid
from typing import Any

from sqlalchemy import Column, DateTime, String, func
from sqlalchemy.orm import declared_attr

from report_api.config.database import Base


def new_id() -> str:
    """Generate a string primary key."""
    return str(uuid.uuid4())


class TimestampMixin:
    """Mixin that adds created_at and updated_at columns."""

    @declared_attr
    def created_at(cls):
        return Column(
            DateTime,
            default=func.now(),
            nullable=False,
        )

    @declared_attr
    def updated_at(cls):
        return Column(
            DateTime,
            onupdate=func.now(),
            nullable=True,
        )


class BaseModel(Base, TimestampMixin):
    """
    Abstract base class for all models.

    Provides:
    - id: String (UUID) primary key
    - created_at: Timestamp when record was created
    - updated_at: Timestamp when record was last updated
    - to_dict(): Convert model to dictionary
    """

    __abstract__ = True

    id = Column(String(36), primary_key=True, default=new_id)

    def to_dict(self) -> dict[str, Any]:
        """Convert model instance to dictionary."""
        return {
            column.name: getattr(self, column.name)
            for column in self.__table__.columns
        }

    def __repr__(self) -> str:
        """String representation of model."""
        pk = getattr(self, "id", None)
        return f"<{self.__class__.__name__}(id={pk})>"

"""
SQLAlchemy ORM models for persistent storage.
"""

from datetime import datetime

from sqlalchemy import DateTime, Integer, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


class UsageCounterDB(Base):
    """
    A named usage counter.

    One row per counter (e.g., "visits", "decklists_resolved").
    """

    __tablename__ = "usage_counters"

    name: Mapped[str] = mapped_column(String(64), primary_key=True)
    value: Mapped[int] = mapped_column(Integer, default=0)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    def __repr__(self) -> str:
        return f"<UsageCounterDB(name={self.name}, value={self.value})>"

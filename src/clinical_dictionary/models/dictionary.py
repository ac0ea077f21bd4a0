"""Stored copy of the active data dictionary."""

from datetime import datetime, timezone

from sqlalchemy import JSON, DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from clinical_dictionary.models.base import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DataSchemaModel(Base):
    __tablename__ = "data_schemas"

    name: Mapped[str] = mapped_column(String, primary_key=True)
    version: Mapped[str] = mapped_column(String, nullable=False)
    # Dictionary document in its wire form
    schemas: Mapped[dict] = mapped_column(JSON, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

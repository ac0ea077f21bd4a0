"""Persisted dictionary migration log."""

from datetime import datetime, timezone

from sqlalchemy import JSON, Boolean, DateTime, Index, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column

from clinical_dictionary.models.base import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DictionaryMigrationModel(Base):
    """One row per migration attempt. Rows are never deleted.

    The partial unique index on state allows a single OPEN row across every
    process sharing the database.
    """

    __tablename__ = "dictionary_migrations"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    from_version: Mapped[str] = mapped_column(String, nullable=False)
    to_version: Mapped[str] = mapped_column(String, nullable=False)
    state: Mapped[str] = mapped_column(String(16), nullable=False, index=True)
    stage: Mapped[str] = mapped_column(String(16), nullable=False)
    dry_run: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_by: Mapped[str] = mapped_column(String, nullable=False)

    # Checkpointed progress
    stats: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    invalid_donors_errors: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    checked_submissions: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    invalid_submissions: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    programs_with_donor_updates: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    analysis: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    new_schema_errors: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    __table_args__ = (
        Index(
            "uix_dictionary_migrations_single_open",
            "state",
            unique=True,
            sqlite_where=text("state = 'OPEN'"),
            postgresql_where=text("state = 'OPEN'"),
        ),
    )

    def __repr__(self) -> str:
        return (
            f"DictionaryMigrationModel(id={self.id!r}, from={self.from_version!r}, "
            f"to={self.to_version!r}, state={self.state!r}, stage={self.stage!r})"
        )

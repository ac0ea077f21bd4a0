"""Migration record and related value types."""

import uuid
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class MigrationState(str, Enum):
    OPEN = "OPEN"
    CLOSED = "CLOSED"


class MigrationStage(str, Enum):
    SUBMITTED = "SUBMITTED"
    ANALYZED = "ANALYZED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class MigrationStats(BaseModel):
    total_processed: int = 0
    valid_documents_count: int = 0
    invalid_documents_count: int = 0


class DonorMigrationError(BaseModel):
    """Validation errors recorded for one donor during the sweep.

    errors holds one mapping per failing entity, e.g.
    ``{"donor": [<SchemaValidationError as dict>, ...]}``.
    processing_error is set instead when the donor could not be processed at all.
    """

    donor_id: int | None = None
    submitter_donor_id: str
    program_id: str
    errors: list[dict[str, list[dict[str, Any]]]] = Field(default_factory=list)
    processing_error: str | None = None


class SubmissionRef(BaseModel):
    """Reference to an open clinical submission checked by a migration."""

    submission_id: str
    program_id: str
    state: str | None = None


class EntityVerificationResult(BaseModel):
    missing_fields: list[str] = Field(default_factory=list)
    invalid_field_code_lists: list[dict[str, Any]] = Field(default_factory=list)
    value_type_changes: list[str] = Field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.missing_fields or self.invalid_field_code_lists or self.value_type_changes)


class NewSchemaVerificationResult(BaseModel):
    """Pre-flight findings keyed by clinical entity name. Empty means compatible."""

    entities: dict[str, EntityVerificationResult] = Field(default_factory=dict)

    @property
    def is_compatible(self) -> bool:
        return not self.entities


class DictionaryMigration(BaseModel):
    """One end-to-end dictionary upgrade attempt."""

    model_config = ConfigDict(validate_assignment=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    from_version: str
    to_version: str
    state: MigrationState = MigrationState.OPEN
    stage: MigrationStage = MigrationStage.SUBMITTED
    dry_run: bool = False
    created_by: str

    stats: MigrationStats = Field(default_factory=MigrationStats)
    invalid_donors_errors: list[DonorMigrationError] = Field(default_factory=list)
    checked_submissions: list[SubmissionRef] = Field(default_factory=list)
    invalid_submissions: list[SubmissionRef] = Field(default_factory=list)
    programs_with_donor_updates: list[str] = Field(default_factory=list)

    # Serialized ChangeAnalysis for the version pair, recorded once pre-flight passes
    analysis: dict[str, Any] | None = None
    new_schema_errors: dict[str, Any] | None = None
    last_error: str | None = None

    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_open(self) -> bool:
        return self.state == MigrationState.OPEN

"""Contracts of the collaborators the migration manager drives.

Donor storage, completion stats, the submission lock, submission revalidation
and program messaging live outside this package. They are described here as
Protocols together with the document shapes they exchange.
"""

from enum import Enum
from typing import Any, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field

from clinical_dictionary.schema.parser import SchemaDictionary


# --- Documents ---


class SchemaMetadata(BaseModel):
    """Validity cursor carried by every donor document."""

    is_valid: bool = True
    last_valid_schema_version: str | None = None
    original_schema_version: str | None = None
    last_migration_id: str | None = None


class ClinicalEntity(BaseModel):
    model_config = ConfigDict(extra="allow")

    clinical_info: dict[str, Any] = Field(default_factory=dict)


class Therapy(ClinicalEntity):
    therapy_type: str


class Treatment(ClinicalEntity):
    therapies: list[Therapy] = Field(default_factory=list)


class Donor(BaseModel):
    """A donor document with its nested clinical entities."""

    model_config = ConfigDict(extra="allow")

    donor_id: int | None = None
    submitter_id: str
    program_id: str
    schema_metadata: SchemaMetadata = Field(default_factory=SchemaMetadata)
    completion_stats: dict[str, Any] | None = None

    # The donor entity's own fields
    clinical_info: dict[str, Any] = Field(default_factory=dict)
    specimens: list[ClinicalEntity] = Field(default_factory=list)
    primary_diagnoses: list[ClinicalEntity] = Field(default_factory=list)
    family_history: list[ClinicalEntity] = Field(default_factory=list)
    treatments: list[Treatment] = Field(default_factory=list)
    follow_ups: list[ClinicalEntity] = Field(default_factory=list)
    exposure: list[ClinicalEntity] = Field(default_factory=list)
    comorbidity: list[ClinicalEntity] = Field(default_factory=list)
    biomarker: list[ClinicalEntity] = Field(default_factory=list)


class SubmissionState(str, Enum):
    OPEN = "OPEN"
    VALID = "VALID"
    INVALID = "INVALID"
    INVALID_BY_MIGRATION = "INVALID_BY_MIGRATION"
    PENDING_APPROVAL = "PENDING_APPROVAL"


class Submission(BaseModel):
    """An active clinical submission that has not been committed yet."""

    id: str
    program_id: str
    state: SubmissionState


# --- Collaborators ---


@runtime_checkable
class DonorStorage(Protocol):
    async def find_unmigrated_batch(self, migration_id: str, limit: int) -> list[Donor]:
        """Donors whose last_migration_id is not migration_id, at most limit of them."""
        ...

    async def mark_valid(self, donor: Donor, migration_id: str, new_version: str) -> Donor: ...

    async def mark_invalid(self, donor: Donor, migration_id: str) -> Donor: ...

    async def tag_migration_id_only(self, donor: Donor, migration_id: str) -> Donor: ...


@runtime_checkable
class StatsCalculator(Protocol):
    async def recalculate_full_stats(self, donor: Donor) -> Donor: ...

    async def set_invalid_core_stats(self, donor: Donor, invalid_entity_names: list[str]) -> Donor: ...


@runtime_checkable
class SubmissionLock(Protocol):
    async def set_submissions_disabled(self, disabled: bool) -> bool:
        """Flip the global submission flag; returns False when the change was not applied."""
        ...


@runtime_checkable
class SubmissionRevalidator(Protocol):
    async def find_open_submissions(self) -> list[Submission]: ...

    async def revalidate(
        self,
        submission: Submission,
        new_dictionary: SchemaDictionary,
        dry_run: bool,
        migration_id: str,
    ) -> Submission | None: ...


@runtime_checkable
class ProgramMessenger(Protocol):
    async def notify_program_updated(self, program_id: str) -> None: ...

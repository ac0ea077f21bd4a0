"""Dictionary migration: records, collaborator contracts, pre-flight and the run manager."""

from clinical_dictionary.migration.entities import (
    DictionaryMigration,
    DonorMigrationError,
    MigrationStage,
    MigrationState,
    MigrationStats,
    NewSchemaVerificationResult,
)
from clinical_dictionary.migration.exceptions import (
    CheckpointError,
    MigrationError,
    NotFound,
    PreflightIncompatible,
    StateConflict,
    SubmissionLockError,
)

__all__ = [
    "CheckpointError",
    "DictionaryMigration",
    "DonorMigrationError",
    "MigrationError",
    "MigrationStage",
    "MigrationState",
    "MigrationStats",
    "NewSchemaVerificationResult",
    "NotFound",
    "PreflightIncompatible",
    "StateConflict",
    "SubmissionLockError",
]

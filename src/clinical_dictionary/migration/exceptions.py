"""Typed errors for dictionary migration.

Only structural failures are exceptions. Validation problems found in donors or
submissions are recorded on the migration as data.
"""

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from clinical_dictionary.migration.entities import (
        DictionaryMigration,
        NewSchemaVerificationResult,
    )


class MigrationError(RuntimeError):
    """Base class for migration failures."""


class StateConflict(MigrationError):
    """Another migration is already OPEN. Callers may retry once it closes."""


class NotFound(MigrationError):
    """No migration with the given id, or no OPEN migration to resume."""


class PreflightIncompatible(MigrationError):
    """The target dictionary cannot be adopted safely.

    The migration has already been closed as FAILED when this is raised.
    """

    def __init__(
        self,
        message: str,
        migration: "DictionaryMigration",
        verification: "NewSchemaVerificationResult | None" = None,
    ):
        super().__init__(message)
        self.migration = migration
        self.verification = verification


class CheckpointError(MigrationError):
    """Persisting migration progress failed. Earlier checkpoints remain valid."""


class SubmissionLockError(MigrationError):
    """The submission lock could not be set or cleared."""

"""Repository for the dictionary migration log."""

from typing import Sequence

from loguru import logger
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from clinical_dictionary import db
from clinical_dictionary.migration.entities import (
    DictionaryMigration,
    DonorMigrationError,
    MigrationStage,
    MigrationState,
    MigrationStats,
    SubmissionRef,
)
from clinical_dictionary.migration.exceptions import NotFound, StateConflict
from clinical_dictionary.models.migration import DictionaryMigrationModel
from clinical_dictionary.repository.repository import Repository


def _to_entity(model: DictionaryMigrationModel) -> DictionaryMigration:
    return DictionaryMigration(
        id=model.id,
        from_version=model.from_version,
        to_version=model.to_version,
        state=MigrationState(model.state),
        stage=MigrationStage(model.stage),
        dry_run=model.dry_run,
        created_by=model.created_by,
        stats=MigrationStats(**(model.stats or {})),
        invalid_donors_errors=[DonorMigrationError(**e) for e in model.invalid_donors_errors or []],
        checked_submissions=[SubmissionRef(**s) for s in model.checked_submissions or []],
        invalid_submissions=[SubmissionRef(**s) for s in model.invalid_submissions or []],
        programs_with_donor_updates=list(model.programs_with_donor_updates or []),
        analysis=model.analysis,
        new_schema_errors=model.new_schema_errors,
        last_error=model.last_error,
        created_at=model.created_at,
        updated_at=model.updated_at,
    )


def _apply(model: DictionaryMigrationModel, migration: DictionaryMigration) -> None:
    """Copy every mutable attribute of the migration onto its row."""
    data = migration.model_dump(mode="json")
    model.from_version = migration.from_version
    model.to_version = migration.to_version
    model.state = migration.state.value
    model.stage = migration.stage.value
    model.dry_run = migration.dry_run
    model.created_by = migration.created_by
    model.stats = data["stats"]
    model.invalid_donors_errors = data["invalid_donors_errors"]
    model.checked_submissions = data["checked_submissions"]
    model.invalid_submissions = data["invalid_submissions"]
    model.programs_with_donor_updates = data["programs_with_donor_updates"]
    model.analysis = data["analysis"]
    model.new_schema_errors = data["new_schema_errors"]
    model.last_error = migration.last_error


class MigrationRepository(Repository[DictionaryMigrationModel]):
    """Append-only log of migrations, queryable by id and state.

    Rows are created once and then overwritten in full on every checkpoint.
    A unique partial index rejects a second OPEN row, which surfaces here as
    StateConflict.
    """

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        super().__init__(session_maker, DictionaryMigrationModel)

    async def create(self, migration: DictionaryMigration) -> DictionaryMigration:
        model = DictionaryMigrationModel(id=migration.id)
        _apply(model, migration)
        try:
            saved = await self.add(model)
        except IntegrityError as e:
            logger.warning(f"Rejected migration create: id={migration.id}, error={e.orig}")
            raise StateConflict("A migration is already active") from e
        logger.info(
            f"Migration created: id={saved.id}, from={saved.from_version}, to={saved.to_version}"
        )
        return _to_entity(saved)

    async def get_by_id(self, migration_id: str) -> DictionaryMigration | None:
        model = await self.find_by_id(migration_id)
        return _to_entity(model) if model else None

    async def get_by_state(self, state: MigrationState) -> DictionaryMigration | None:
        """Most recent migration in the given state."""
        query = (
            self.select()
            .where(DictionaryMigrationModel.state == state.value)
            .order_by(DictionaryMigrationModel.created_at.desc())
            .limit(1)
        )
        model = await self.find_one(query)
        return _to_entity(model) if model else None

    async def get_all(self) -> Sequence[DictionaryMigration]:
        query = self.select().order_by(DictionaryMigrationModel.created_at)
        return [_to_entity(m) for m in await self.find_all(query)]

    async def get_latest_successful(self) -> DictionaryMigration | None:
        query = (
            self.select()
            .where(
                DictionaryMigrationModel.state == MigrationState.CLOSED.value,
                DictionaryMigrationModel.stage == MigrationStage.COMPLETED.value,
                DictionaryMigrationModel.dry_run.is_(False),
            )
            .order_by(DictionaryMigrationModel.updated_at.desc())
            .limit(1)
        )
        model = await self.find_one(query)
        return _to_entity(model) if model else None

    async def update(self, migration: DictionaryMigration) -> DictionaryMigration:
        """Overwrite the stored record with the given migration.

        Raises:
            NotFound: If no migration with this id exists.
            StateConflict: If the update would leave two migrations OPEN.
        """
        try:
            async with db.scoped_session(self.session_maker) as session:
                model = await session.get(DictionaryMigrationModel, migration.id)
                if model is None:
                    raise NotFound(f"Migration {migration.id} not found")
                _apply(model, migration)
                await session.flush()
                await session.refresh(model)
                return _to_entity(model)
        except IntegrityError as e:
            raise StateConflict("A migration is already active") from e

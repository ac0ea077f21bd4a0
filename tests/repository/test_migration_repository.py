"""Tests for the MigrationRepository."""

import pytest

from clinical_dictionary.migration.entities import (
    DictionaryMigration,
    DonorMigrationError,
    MigrationStage,
    MigrationState,
    SubmissionRef,
)
from clinical_dictionary.migration.exceptions import NotFound, StateConflict


def _make_migration(**overrides) -> DictionaryMigration:
    values = {"from_version": "1.0", "to_version": "2.0", "created_by": "admin@example.org"}
    values.update(overrides)
    return DictionaryMigration(**values)


@pytest.mark.asyncio
async def test_create_and_get_by_id(migration_repository):
    created = await migration_repository.create(_make_migration())

    found = await migration_repository.get_by_id(created.id)

    assert found is not None
    assert found.id == created.id
    assert found.is_open
    assert found.stage == MigrationStage.SUBMITTED
    assert found.created_at is not None


@pytest.mark.asyncio
async def test_get_by_id_unknown(migration_repository):
    assert await migration_repository.get_by_id("missing") is None


@pytest.mark.asyncio
async def test_second_open_migration_is_rejected(migration_repository):
    await migration_repository.create(_make_migration())

    with pytest.raises(StateConflict):
        await migration_repository.create(_make_migration(to_version="3.0"))


@pytest.mark.asyncio
async def test_closed_migrations_do_not_block(migration_repository):
    first = await migration_repository.create(_make_migration())
    first.state = MigrationState.CLOSED
    first.stage = MigrationStage.COMPLETED
    await migration_repository.update(first)

    second = await migration_repository.create(_make_migration(from_version="2.0", to_version="3.0"))

    assert (await migration_repository.get_by_state(MigrationState.OPEN)).id == second.id
    assert [m.id for m in await migration_repository.get_all()] == [first.id, second.id]


@pytest.mark.asyncio
async def test_reopening_while_another_is_open_is_rejected(migration_repository):
    first = await migration_repository.create(_make_migration())
    first.state = MigrationState.CLOSED
    await migration_repository.update(first)
    await migration_repository.create(_make_migration(to_version="3.0"))

    first.state = MigrationState.OPEN
    with pytest.raises(StateConflict):
        await migration_repository.update(first)


@pytest.mark.asyncio
async def test_update_round_trips_progress(migration_repository):
    migration = await migration_repository.create(_make_migration())
    migration.stage = MigrationStage.IN_PROGRESS
    migration.stats.total_processed = 3
    migration.stats.invalid_documents_count = 1
    migration.invalid_donors_errors.append(
        DonorMigrationError(
            donor_id=7,
            submitter_donor_id="DO-7",
            program_id="PACA-CA",
            errors=[{"donor": [{"error_type": "INVALID_ENUM_VALUE", "field_name": "vital_status"}]}],
        )
    )
    migration.checked_submissions.append(SubmissionRef(submission_id="s1", program_id="PACA-CA"))
    migration.programs_with_donor_updates = ["PACA-CA"]
    migration.analysis = {"value_type_changes": []}

    await migration_repository.update(migration)
    stored = await migration_repository.get_by_id(migration.id)

    assert stored.stage == MigrationStage.IN_PROGRESS
    assert stored.stats.total_processed == 3
    assert stored.invalid_donors_errors == migration.invalid_donors_errors
    assert stored.checked_submissions == migration.checked_submissions
    assert stored.programs_with_donor_updates == ["PACA-CA"]
    assert stored.analysis == {"value_type_changes": []}


@pytest.mark.asyncio
async def test_update_unknown_migration(migration_repository):
    with pytest.raises(NotFound):
        await migration_repository.update(_make_migration())


@pytest.mark.asyncio
async def test_latest_successful_ignores_dry_runs_and_failures(migration_repository):
    dry = await migration_repository.create(_make_migration(dry_run=True))
    dry.state, dry.stage = MigrationState.CLOSED, MigrationStage.COMPLETED
    await migration_repository.update(dry)

    failed = await migration_repository.create(_make_migration())
    failed.state, failed.stage = MigrationState.CLOSED, MigrationStage.FAILED
    await migration_repository.update(failed)

    assert await migration_repository.get_latest_successful() is None

    real = await migration_repository.create(_make_migration())
    real.state, real.stage = MigrationState.CLOSED, MigrationStage.COMPLETED
    await migration_repository.update(real)

    assert (await migration_repository.get_latest_successful()).id == real.id

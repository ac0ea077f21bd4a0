"""Dictionary migration manager.

Drives one dictionary upgrade end to end:

  submit -> pre-flight -> freeze submissions -> donor sweep -> submission
  revalidation -> close -> dictionary cutover -> program notifications

Only one migration may be OPEN at a time. The sweep is sequential and
checkpoints the migration record after every batch; donors are tagged with the
migration id as they are processed, so a run that dies part way can be resumed
and will only see donors it has not reached yet.
"""

import asyncio
from collections import OrderedDict
from dataclasses import dataclass
from typing import Mapping

import logfire
from loguru import logger
from sqlalchemy.exc import SQLAlchemyError

from clinical_dictionary.dictionary.manager import DictionaryManager
from clinical_dictionary.migration.clinical import get_clinical_records, to_raw_record
from clinical_dictionary.migration.entities import (
    DictionaryMigration,
    DonorMigrationError,
    MigrationStage,
    MigrationState,
    NewSchemaVerificationResult,
    SubmissionRef,
)
from clinical_dictionary.migration.exceptions import (
    CheckpointError,
    NotFound,
    PreflightIncompatible,
    StateConflict,
    SubmissionLockError,
)
from clinical_dictionary.migration.ports import (
    Donor,
    DonorStorage,
    ProgramMessenger,
    StatsCalculator,
    SubmissionLock,
    SubmissionRevalidator,
    SubmissionState,
)
from clinical_dictionary.migration.preflight import verify_new_dictionary
from clinical_dictionary.repository.migration_repository import MigrationRepository
from clinical_dictionary.schema.diff import (
    ChangeAnalysis,
    find_entities_with_breaking_changes,
    find_entities_with_core_designation_changes,
)
from clinical_dictionary.schema.parallel import ValidationPool
from clinical_dictionary.schema.parser import SchemaDictionary
from clinical_dictionary.schema.validator import ALL_STAGES

LOAD_FAILURE_MESSAGE = (
    "couldn't load new schema, check if the version is correct and try again, "
    "if problem persists check the logs"
)


@dataclass(frozen=True)
class EntityChangeSets:
    """Entity schema names affected by the changes between two versions."""

    breaking: frozenset[str] = frozenset()
    core_changes: frozenset[str] = frozenset()


class AnalysisCache:
    """Bounded LRU of entity change sets keyed by (from_version, to_version).

    Version pairs are few, but donors can carry any past version, so the
    cache is capped and evicts the least recently used pair.
    """

    def __init__(self, max_size: int = 32):
        self.max_size = max(1, max_size)
        self._entries: OrderedDict[tuple[str, str], EntityChangeSets] = OrderedDict()

    def get(self, key: tuple[str, str]) -> EntityChangeSets | None:
        entry = self._entries.get(key)
        if entry is not None:
            self._entries.move_to_end(key)
        return entry

    def put(self, key: tuple[str, str], value: EntityChangeSets) -> None:
        self._entries[key] = value
        self._entries.move_to_end(key)
        if len(self._entries) > self.max_size:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug(f"Evicting change analysis from cache: versions={evicted}")

    def __len__(self) -> int:
        return len(self._entries)


class MigrationManager:
    """Runs dictionary migrations over stored donors and open submissions."""

    def __init__(
        self,
        migration_repository: MigrationRepository,
        dictionary_manager: DictionaryManager,
        donor_storage: DonorStorage,
        stats_calculator: StatsCalculator,
        submission_lock: SubmissionLock,
        submission_revalidator: SubmissionRevalidator,
        messenger: ProgramMessenger,
        validation_pool: ValidationPool,
        batch_size: int = 20,
        settle_seconds: float = 2.0,
        analysis_cache_size: int = 32,
        required_fields: Mapping[str, list[str]] | None = None,
        known_code_lists: Mapping[str, Mapping[str, list[str]]] | None = None,
    ):
        self.repository = migration_repository
        self.dictionary_manager = dictionary_manager
        self.donor_storage = donor_storage
        self.stats_calculator = stats_calculator
        self.submission_lock = submission_lock
        self.submission_revalidator = submission_revalidator
        self.messenger = messenger
        self.validation_pool = validation_pool
        self.batch_size = batch_size
        self.settle_seconds = settle_seconds
        self.required_fields = required_fields
        self.known_code_lists = known_code_lists

        self.analysis_cache = AnalysisCache(analysis_cache_size)
        # Serializes the OPEN check and create within this process
        self._submit_lock = asyncio.Lock()
        self._tasks: set[asyncio.Task] = set()
        self._running: set[str] = set()

    # --- Queries ---

    async def get_migration(
        self, migration_id: str | None = None
    ) -> DictionaryMigration | list[DictionaryMigration]:
        """Return every migration, or the one with migration_id.

        Raises:
            NotFound: If migration_id is given and unknown.
        """
        if migration_id is None:
            return list(await self.repository.get_all())
        migration = await self.repository.get_by_id(migration_id)
        if migration is None:
            raise NotFound(f"Migration {migration_id} not found")
        return migration

    async def latest_successful(self) -> DictionaryMigration | None:
        return await self.repository.get_latest_successful()

    # --- Commands ---

    async def submit_migration(
        self,
        from_version: str,
        to_version: str,
        initiator: str,
        dry_run: bool = False,
        sync: bool = False,
    ) -> DictionaryMigration:
        """Create a migration and run it.

        Dry runs always run synchronously. Otherwise the run is scheduled as a
        background task and the submitted migration is returned once pre-flight
        has passed.

        Raises:
            StateConflict: If another migration is OPEN.
            PreflightIncompatible: If the target dictionary cannot be adopted.
        """
        async with self._submit_lock:
            open_migration = await self.repository.get_by_state(MigrationState.OPEN)
            if open_migration is not None:
                raise StateConflict(f"A migration is already active: id={open_migration.id}")

            migration = await self.repository.create(
                DictionaryMigration(
                    from_version=from_version,
                    to_version=to_version,
                    created_by=initiator,
                    dry_run=dry_run,
                )
            )

        logger.info(
            f"Migration submitted: id={migration.id}, from={from_version}, to={to_version}, "
            f"dry_run={dry_run}, initiator={initiator}"
        )
        return await self._start(migration, sync=sync or migration.dry_run)

    async def resume_migration(
        self, sync: bool | None = None, dry_run: bool | None = None
    ) -> DictionaryMigration:
        """Re-enter the run loop of the OPEN migration.

        Raises:
            NotFound: If no migration is OPEN.
            StateConflict: If this process is already running it.
        """
        migration = await self.repository.get_by_state(MigrationState.OPEN)
        if migration is None:
            raise NotFound("No open migration to resume")
        if migration.id in self._running:
            raise StateConflict(f"Migration {migration.id} is already running")

        if dry_run is not None and dry_run != migration.dry_run:
            migration.dry_run = dry_run
            migration = await self._checkpoint(migration)

        logger.info(f"Resuming migration: id={migration.id}, stage={migration.stage.value}")
        return await self._start(migration, sync=migration.dry_run if sync is None else sync)

    async def dry_run_schema_upgrade(self, to_version: str, initiator: str) -> DictionaryMigration:
        """Run a dry-run migration from the active version and wait for its report."""
        return await self.submit_migration(
            self.dictionary_manager.current_version, to_version, initiator, dry_run=True, sync=True
        )

    async def update_schema_version(
        self, to_version: str, initiator: str, sync: bool = False
    ) -> DictionaryMigration:
        return await self.submit_migration(
            self.dictionary_manager.current_version, to_version, initiator, dry_run=False, sync=sync
        )

    async def is_donor_valid(self, dictionary: SchemaDictionary, donor: Donor) -> bool:
        """Validate every clinical entity stored on a donor against a dictionary."""
        errors = await self._revalidate_donor_entities(donor, dictionary, dictionary.schema_names)
        return not errors

    async def wait_for_background(self) -> None:
        """Wait for scheduled runs to finish. Failures are already recorded on the migration."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # --- Run orchestration ---

    async def _start(self, migration: DictionaryMigration, sync: bool) -> DictionaryMigration:
        target = await self._load_target(migration)
        migration = await self._preflight(migration, target)
        await self._set_submissions_disabled(True)

        if sync:
            return await self._run_supervised(migration, target)

        task = asyncio.create_task(
            self._run_supervised(migration, target), name=f"migration-{migration.id}"
        )
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)
        logger.info(f"Migration scheduled: id={migration.id}")
        return migration

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.warning(f"Migration task cancelled: task={task.get_name()}")
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Migration task failed: task={task.get_name()}, error={error!r}")

    async def _load_target(self, migration: DictionaryMigration) -> SchemaDictionary:
        try:
            return await self.dictionary_manager.load_schema_by_version(migration.to_version)
        except Exception as e:
            logger.error(
                f"Failed to load target dictionary: id={migration.id}, "
                f"version={migration.to_version}, error={e}"
            )
            failed = await self._abort(migration, new_schema_errors={"message": LOAD_FAILURE_MESSAGE})
            raise PreflightIncompatible(LOAD_FAILURE_MESSAGE, failed) from e

    @logfire.instrument()
    async def _preflight(
        self, migration: DictionaryMigration, target: SchemaDictionary
    ) -> DictionaryMigration:
        current = self.dictionary_manager.current()
        analysis = ChangeAnalysis()
        if current.version != target.version:
            try:
                analysis = await self.dictionary_manager.analyze_changes(
                    current.version, target.version
                )
            except Exception as e:
                logger.error(f"Failed to analyze changes: id={migration.id}, error={e}")
                failed = await self._abort(
                    migration, new_schema_errors={"message": LOAD_FAILURE_MESSAGE}
                )
                raise PreflightIncompatible(LOAD_FAILURE_MESSAGE, failed) from e

        verification: NewSchemaVerificationResult = verify_new_dictionary(
            current,
            target,
            value_type_changes=analysis.value_type_changes,
            required_fields=self.required_fields,
            known_code_lists=self.known_code_lists,
        )
        if not verification.is_compatible:
            failed = await self._abort(
                migration, new_schema_errors=verification.model_dump(mode="json")["entities"]
            )
            raise PreflightIncompatible(
                f"Dictionary version {target.version} failed pre-flight verification",
                failed,
                verification,
            )

        migration.stage = MigrationStage.ANALYZED
        migration.analysis = analysis.to_dict()
        logger.info(f"Pre-flight passed: id={migration.id}, to={target.version}")
        return await self._checkpoint(migration)

    async def _abort(
        self, migration: DictionaryMigration, new_schema_errors: dict | None = None
    ) -> DictionaryMigration:
        migration.stage = MigrationStage.FAILED
        migration.state = MigrationState.CLOSED
        migration.new_schema_errors = new_schema_errors
        failed = await self._checkpoint(migration)
        await self._set_submissions_disabled(False)
        logger.warning(f"Migration aborted: id={migration.id}")
        return failed

    async def _run_supervised(
        self, migration: DictionaryMigration, target: SchemaDictionary
    ) -> DictionaryMigration:
        """Run the migration, funnelling any failure into the stored record.

        A failed run is recorded as stage FAILED with last_error and stays OPEN
        so it can be resumed. Submissions are re-enabled on every path.
        """
        self._running.add(migration.id)
        try:
            await asyncio.sleep(self.settle_seconds)
            migration = await self._run(migration, target)
        except Exception as e:
            logger.error(f"Migration run failed: id={migration.id}, error={e!r}")
            await self._record_failure(migration.id, e)
            raise
        finally:
            self._running.discard(migration.id)
            await self._set_submissions_disabled(False)

        if not migration.dry_run:
            await self._notify_programs(migration.programs_with_donor_updates)
        return migration

    @logfire.instrument()
    async def _run(
        self, migration: DictionaryMigration, target: SchemaDictionary
    ) -> DictionaryMigration:
        migration.stage = MigrationStage.IN_PROGRESS
        migration.last_error = None
        migration = await self._checkpoint(migration)

        migration = await self._sweep_donors(migration, target)
        migration = await self._revalidate_submissions(migration, target)

        # Cut over before closing so a failed swap leaves the run resumable
        if not migration.dry_run:
            await self.dictionary_manager.store.swap(target)

        migration.state = MigrationState.CLOSED
        migration.stage = MigrationStage.COMPLETED
        migration = await self._checkpoint(migration)
        logger.info(
            f"Migration completed: id={migration.id}, "
            f"processed={migration.stats.total_processed}, "
            f"valid={migration.stats.valid_documents_count}, "
            f"invalid={migration.stats.invalid_documents_count}"
        )
        return migration

    async def _record_failure(self, migration_id: str, error: Exception) -> None:
        try:
            latest = await self.repository.get_by_id(migration_id)
            if latest is None or latest.state != MigrationState.OPEN:
                return
            latest.stage = MigrationStage.FAILED
            latest.last_error = repr(error)
            await self.repository.update(latest)
        except SQLAlchemyError as e:
            # The run's own error is the one callers need; this one is only logged
            logger.error(f"Could not record migration failure: id={migration_id}, error={e}")

    # --- Donor sweep ---

    @logfire.instrument()
    async def _sweep_donors(
        self, migration: DictionaryMigration, target: SchemaDictionary
    ) -> DictionaryMigration:
        batch_number = 0
        while True:
            donors = await self.donor_storage.find_unmigrated_batch(migration.id, self.batch_size)
            if not donors:
                break
            batch_number += 1

            programs = dict.fromkeys(migration.programs_with_donor_updates)
            valid_count = 0
            invalid_count = 0
            for donor in donors:
                error, program_changed = await self._process_donor(migration, donor, target)
                if error is None:
                    valid_count += 1
                else:
                    invalid_count += 1
                    migration.invalid_donors_errors.append(error)
                if program_changed:
                    programs[donor.program_id] = None

            migration.stats.valid_documents_count += valid_count
            migration.stats.invalid_documents_count += invalid_count
            migration.stats.total_processed += len(donors)
            migration.programs_with_donor_updates = list(programs)
            migration = await self._checkpoint(migration)
            logger.info(
                f"Migration batch checkpoint: id={migration.id}, batch={batch_number}, "
                f"donors={len(donors)}, valid={valid_count}, invalid={invalid_count}, "
                f"total_processed={migration.stats.total_processed}"
            )
        return migration

    async def _process_donor(
        self, migration: DictionaryMigration, donor: Donor, target: SchemaDictionary
    ) -> tuple[DonorMigrationError | None, bool]:
        """Revalidate one donor and record the outcome on its document.

        Returns:
            The donor's migration error (None when valid) and whether the donor's
            program needs an update notification.
        """
        try:
            from_version = donor.schema_metadata.last_valid_schema_version or migration.from_version
            change_sets = await self._entity_change_sets(from_version, target.version)
            errors = await self._revalidate_donor_entities(
                donor, target, sorted(change_sets.breaking)
            )

            if errors:
                program_changed = False
                if migration.dry_run:
                    await self.donor_storage.tag_migration_id_only(donor, migration.id)
                else:
                    invalid_entities = [name for entry in errors for name in entry]
                    updated = await self.stats_calculator.set_invalid_core_stats(
                        donor, invalid_entities
                    )
                    updated = await self.donor_storage.mark_invalid(updated, migration.id)
                    program_changed = self._program_changed(donor, updated)
                logger.debug(
                    f"Donor invalid under new dictionary: donor={donor.submitter_id}, "
                    f"program={donor.program_id}"
                )
                return (
                    DonorMigrationError(
                        donor_id=donor.donor_id,
                        submitter_donor_id=donor.submitter_id,
                        program_id=donor.program_id,
                        errors=errors,
                    ),
                    program_changed,
                )

            if migration.dry_run:
                await self.donor_storage.tag_migration_id_only(donor, migration.id)
                return None, False

            updated = donor
            # Stats are recalculated only when they cannot be trusted
            if (
                not donor.schema_metadata.is_valid
                or not donor.completion_stats
                or self._has_entities(donor, change_sets.core_changes)
            ):
                updated = await self.stats_calculator.recalculate_full_stats(donor)
            updated = await self.donor_storage.mark_valid(updated, migration.id, target.version)
            return None, self._program_changed(donor, updated)

        except Exception as e:
            logger.warning(
                f"Failed to process donor: migration={migration.id}, "
                f"donor={donor.submitter_id}, error={e!r}"
            )
            # Advance the cursor so the sweep moves past this donor
            await self.donor_storage.tag_migration_id_only(donor, migration.id)
            return (
                DonorMigrationError(
                    donor_id=donor.donor_id,
                    submitter_donor_id=donor.submitter_id,
                    program_id=donor.program_id,
                    processing_error=repr(e),
                ),
                False,
            )

    async def _entity_change_sets(self, from_version: str, to_version: str) -> EntityChangeSets:
        if from_version == to_version:
            return EntityChangeSets()

        key = (from_version, to_version)
        cached = self.analysis_cache.get(key)
        if cached is not None:
            return cached

        logger.debug(f"No cached analysis for versions: {from_version}->{to_version}")
        analysis = await self.dictionary_manager.analyze_changes(from_version, to_version)
        change_sets = EntityChangeSets(
            breaking=frozenset(find_entities_with_breaking_changes(analysis)),
            core_changes=frozenset(find_entities_with_core_designation_changes(analysis)),
        )
        self.analysis_cache.put(key, change_sets)
        return change_sets

    async def _revalidate_donor_entities(
        self, donor: Donor, dictionary: SchemaDictionary, entity_names
    ) -> list[dict[str, list[dict]]]:
        """Validate the donor's stored records of each named entity.

        Returns:
            One {entity_name: [error, ...]} mapping per entity with errors.
        """
        known = set(dictionary.schema_names)
        records_by_entity = {}
        for name in entity_names:
            if name not in known:
                continue
            records = get_clinical_records(donor, name)
            if records:
                records_by_entity[name] = [to_raw_record(r) for r in records]
        if not records_by_entity:
            return []

        results = await self.validation_pool.process_entities(
            dictionary, records_by_entity, ALL_STAGES
        )
        return [
            {name: [e.to_dict() for e in result.validation_errors]}
            for name, result in results.items()
            if result.validation_errors
        ]

    @staticmethod
    def _has_entities(donor: Donor, entity_names) -> bool:
        return any(get_clinical_records(donor, name) for name in entity_names)

    @staticmethod
    def _program_changed(before: Donor, after: Donor) -> bool:
        return (
            before.schema_metadata.is_valid != after.schema_metadata.is_valid
            or before.completion_stats != after.completion_stats
        )

    # --- Submissions ---

    @logfire.instrument()
    async def _revalidate_submissions(
        self, migration: DictionaryMigration, target: SchemaDictionary
    ) -> DictionaryMigration:
        submissions = await self.submission_revalidator.find_open_submissions()
        checked = {ref.submission_id for ref in migration.checked_submissions}

        for submission in submissions:
            if submission.state in (SubmissionState.INVALID, SubmissionState.INVALID_BY_MIGRATION):
                continue
            if submission.id in checked:
                continue

            migration.checked_submissions.append(
                SubmissionRef(
                    submission_id=submission.id,
                    program_id=submission.program_id,
                    state=submission.state.value,
                )
            )
            result = await self.submission_revalidator.revalidate(
                submission, target, migration.dry_run, migration.id
            )
            if result is not None and result.state == SubmissionState.INVALID_BY_MIGRATION:
                logger.info(
                    f"Submission invalidated by migration: id={migration.id}, "
                    f"submission={submission.id}, program={submission.program_id}"
                )
                migration.invalid_submissions.append(
                    SubmissionRef(
                        submission_id=submission.id,
                        program_id=submission.program_id,
                        state=result.state.value,
                    )
                )
            migration = await self._checkpoint(migration)
        return migration

    # --- Side effects ---

    async def _checkpoint(self, migration: DictionaryMigration) -> DictionaryMigration:
        """Overwrite the stored migration record.

        Raises:
            CheckpointError: If the record could not be persisted.
        """
        try:
            return await self.repository.update(migration)
        except SQLAlchemyError as e:
            raise CheckpointError(f"Failed to save migration {migration.id}: {e}") from e

    async def _set_submissions_disabled(self, disabled: bool) -> None:
        applied = await self.submission_lock.set_submissions_disabled(disabled)
        if not applied:
            action = "disable" if disabled else "re-enable"
            logger.error(f"Failed to {action} submissions")
            raise SubmissionLockError(f"Failed to {action} submissions")
        logger.info(f"Submissions {'disabled' if disabled else 'enabled'}")

    async def _notify_programs(self, program_ids: list[str]) -> None:
        for program_id in program_ids:
            try:
                await self.messenger.notify_program_updated(program_id)
            except Exception as e:
                logger.error(f"Failed to send program update: program={program_id}, error={e}")

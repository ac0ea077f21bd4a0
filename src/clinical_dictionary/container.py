"""Composition root for the migration service.

This module owns:
- Reading ConfigManager + environment variables
- Initializing logging
- Building the database, repositories, dictionary client and store
- Wiring the migration manager to the external collaborators it is given

The control surface that calls into the managers lives elsewhere; it builds
one container at startup and closes it on shutdown.
"""

from dataclasses import dataclass

from loguru import logger

from clinical_dictionary import db
from clinical_dictionary.config import ClinicalDictionaryConfig, ConfigManager, init_logging
from clinical_dictionary.dictionary.client import DictionaryServiceClient
from clinical_dictionary.dictionary.manager import DictionaryManager
from clinical_dictionary.dictionary.store import DictionaryStore
from clinical_dictionary.migration.manager import MigrationManager
from clinical_dictionary.migration.ports import (
    DonorStorage,
    ProgramMessenger,
    StatsCalculator,
    SubmissionLock,
    SubmissionRevalidator,
)
from clinical_dictionary.repository.dictionary_repository import DictionaryRepository
from clinical_dictionary.repository.migration_repository import MigrationRepository
from clinical_dictionary.schema.parallel import ValidationPool


@dataclass
class Collaborators:
    """External services the migration drives."""

    donor_storage: DonorStorage
    stats_calculator: StatsCalculator
    submission_lock: SubmissionLock
    submission_revalidator: SubmissionRevalidator
    messenger: ProgramMessenger


@dataclass
class ServiceContainer:
    """Composition root for the dictionary migration service."""

    config: ClinicalDictionaryConfig
    dictionary_store: DictionaryStore
    dictionary_manager: DictionaryManager
    migration_manager: MigrationManager
    validation_pool: ValidationPool

    @classmethod
    async def create(
        cls,
        collaborators: Collaborators,
        config: ClinicalDictionaryConfig | None = None,
        validation_pool: ValidationPool | None = None,
    ) -> "ServiceContainer":
        """Build the container and load the active dictionary.

        Args:
            collaborators: Implementations of the external service contracts.
            config: Settings to use. Loaded from file + environment when omitted.
            validation_pool: Pool to validate in. A process pool sized to the
                configured worker count when omitted.
        """
        config = config or ConfigManager().config
        init_logging(config)

        _, session_maker = await db.get_or_create_db(config.database_path)

        client = DictionaryServiceClient(
            config.dictionary_service_url,
            timeout=config.http_timeout,
            retries=config.http_retries,
            retry_interval=config.http_retry_interval,
        )
        store = DictionaryStore(DictionaryRepository(session_maker), client, config.dictionary_name)
        await store.load(config.initial_dictionary_version)
        dictionary_manager = DictionaryManager(store, client)

        pool = validation_pool or ValidationPool(max_workers=config.worker_count)
        migration_manager = MigrationManager(
            migration_repository=MigrationRepository(session_maker),
            dictionary_manager=dictionary_manager,
            donor_storage=collaborators.donor_storage,
            stats_calculator=collaborators.stats_calculator,
            submission_lock=collaborators.submission_lock,
            submission_revalidator=collaborators.submission_revalidator,
            messenger=collaborators.messenger,
            validation_pool=pool,
            batch_size=config.migration_batch_size,
            settle_seconds=config.submission_settle_seconds,
            analysis_cache_size=config.analysis_cache_size,
        )
        logger.info(f"Service container ready: env={config.env}, db={config.database_path}")
        return cls(
            config=config,
            dictionary_store=store,
            dictionary_manager=dictionary_manager,
            migration_manager=migration_manager,
            validation_pool=pool,
        )

    @property
    def is_test_env(self) -> bool:
        return self.config.is_test_env

    async def close(self) -> None:
        """Wait for background migrations, then release the pool and database."""
        await self.migration_manager.wait_for_background()
        self.validation_pool.shutdown()
        await db.shutdown_db()

"""Common test fixtures."""

import json
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import pytest
import pytest_asyncio

from clinical_dictionary import db
from clinical_dictionary.config import ClinicalDictionaryConfig
from clinical_dictionary.dictionary.client import DictionaryServiceClient
from clinical_dictionary.dictionary.manager import DictionaryManager
from clinical_dictionary.dictionary.store import DictionaryStore
from clinical_dictionary.migration.manager import MigrationManager
from clinical_dictionary.repository.dictionary_repository import DictionaryRepository
from clinical_dictionary.repository.migration_repository import MigrationRepository
from clinical_dictionary.schema.parallel import ValidationPool
from clinical_dictionary.schema.parser import SchemaDictionary, parse_dictionary

import factories
from fakes import (
    FakeDonorStorage,
    FakeMessenger,
    FakeStatsCalculator,
    FakeSubmissionLock,
    FakeSubmissionRevalidator,
)

# Pre-flight requirements matching the test dictionaries
TEST_REQUIRED_FIELDS = {"donor": ["program_id", "submitter_donor_id", "vital_status"]}
TEST_KNOWN_CODE_LISTS = {"donor": {"vital_status": ["Deceased"]}}


@pytest.fixture
def test_config(tmp_path, dictionary_stub_url) -> ClinicalDictionaryConfig:
    return ClinicalDictionaryConfig(
        env="test",
        dictionary_service_url=dictionary_stub_url,
        database_path=tmp_path / "clinical-dictionary.db",
        http_retries=1,
        http_retry_interval=0,
        submission_settle_seconds=0,
        migration_batch_size=2,
        validation_workers=1,
    )


# --- Dictionaries ---


@pytest.fixture
def dictionary_v1() -> SchemaDictionary:
    return parse_dictionary(factories.dictionary_doc("1.0"))


@pytest.fixture
def dictionary_v2() -> SchemaDictionary:
    return parse_dictionary(
        factories.dictionary_doc("2.0", factories.VITAL_STATUS_V2, with_tumour_grade=True)
    )


@pytest.fixture
def dictionary_stub_path(tmp_path) -> Path:
    path = tmp_path / "dictionary-service.json"
    path.write_text(json.dumps(factories.dictionary_stub()))
    return path


@pytest.fixture
def dictionary_stub_url(dictionary_stub_path) -> str:
    return f"file://{dictionary_stub_path}"


@pytest.fixture
def dictionary_client(dictionary_stub_url) -> DictionaryServiceClient:
    return DictionaryServiceClient(dictionary_stub_url, retries=1, retry_interval=0)


# --- Database ---


@pytest_asyncio.fixture(scope="function")
async def session_maker(tmp_path):
    async with db.engine_session_factory(tmp_path / "test.db") as (_, session_maker):
        yield session_maker


@pytest.fixture
def migration_repository(session_maker) -> MigrationRepository:
    return MigrationRepository(session_maker)


@pytest.fixture
def dictionary_repository(session_maker) -> DictionaryRepository:
    return DictionaryRepository(session_maker)


# --- Services ---


@pytest_asyncio.fixture(scope="function")
async def dictionary_store(dictionary_repository, dictionary_client) -> DictionaryStore:
    store = DictionaryStore(dictionary_repository, dictionary_client, factories.DICTIONARY_NAME)
    await store.load("1.0")
    return store


@pytest.fixture
def dictionary_manager(dictionary_store, dictionary_client) -> DictionaryManager:
    return DictionaryManager(dictionary_store, dictionary_client)


@pytest.fixture
def validation_pool():
    executor = ThreadPoolExecutor(max_workers=2)
    pool = ValidationPool(max_workers=2, executor=executor)
    yield pool
    executor.shutdown(wait=True)


@pytest.fixture
def donor_storage() -> FakeDonorStorage:
    return FakeDonorStorage()


@pytest.fixture
def stats_calculator() -> FakeStatsCalculator:
    return FakeStatsCalculator()


@pytest.fixture
def submission_lock() -> FakeSubmissionLock:
    return FakeSubmissionLock()


@pytest.fixture
def submission_revalidator() -> FakeSubmissionRevalidator:
    return FakeSubmissionRevalidator()


@pytest.fixture
def messenger() -> FakeMessenger:
    return FakeMessenger()


@pytest.fixture
def migration_manager(
    migration_repository,
    dictionary_manager,
    donor_storage,
    stats_calculator,
    submission_lock,
    submission_revalidator,
    messenger,
    validation_pool,
) -> MigrationManager:
    return MigrationManager(
        migration_repository=migration_repository,
        dictionary_manager=dictionary_manager,
        donor_storage=donor_storage,
        stats_calculator=stats_calculator,
        submission_lock=submission_lock,
        submission_revalidator=submission_revalidator,
        messenger=messenger,
        validation_pool=validation_pool,
        batch_size=2,
        settle_seconds=0,
        required_fields=TEST_REQUIRED_FIELDS,
        known_code_lists=TEST_KNOWN_CODE_LISTS,
    )

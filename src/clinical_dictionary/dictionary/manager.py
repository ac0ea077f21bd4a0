"""Dictionary manager: version lookup, change analysis, and upgrade probing."""

from dataclasses import dataclass, field

from loguru import logger

from clinical_dictionary.dictionary.client import DictionaryServiceClient
from clinical_dictionary.dictionary.store import DictionaryStore
from clinical_dictionary.schema.diff import (
    ChangeAnalysis,
    InvalidatingChange,
    analyze,
    find_invalidating_changes,
)
from clinical_dictionary.schema.parser import SchemaDictionary


@dataclass
class SchemaUpgradeProbe:
    """Changes between two versions and the subset that can invalidate stored data."""

    from_version: str
    to_version: str
    analysis: ChangeAnalysis
    breaking_changes: list[InvalidatingChange] = field(default_factory=list)


class DictionaryManager:
    def __init__(self, store: DictionaryStore, client: DictionaryServiceClient):
        self.store = store
        self.client = client

    def current(self) -> SchemaDictionary:
        return self.store.current

    @property
    def current_version(self) -> str:
        return self.store.current.version

    @property
    def current_name(self) -> str:
        return self.store.name

    async def load_schema_by_version(self, version: str, name: str | None = None) -> SchemaDictionary:
        """Return a dictionary version, using the active one when it matches."""
        name = name or self.current_name
        if self.store.is_loaded and self.current_version == version and name == self.current_name:
            return self.current()
        return await self.client.fetch_dictionary(name, version)

    async def analyze_changes(self, from_version: str, to_version: str) -> ChangeAnalysis:
        diff = await self.client.fetch_diff(self.current_name, from_version, to_version)
        return analyze(diff)

    async def load_and_save_new_version(self, version: str) -> SchemaDictionary:
        """Fetch a version and make it the active, persisted dictionary."""
        new_dictionary = await self.client.fetch_dictionary(self.current_name, version)
        return await self.store.swap(new_dictionary)

    async def probe_schema_upgrade(self, from_version: str, to_version: str) -> SchemaUpgradeProbe:
        analysis = await self.analyze_changes(from_version, to_version)
        breaking = find_invalidating_changes(analysis)
        logger.info(
            f"Probed upgrade: from={from_version}, to={to_version}, breaking_changes={len(breaking)}"
        )
        return SchemaUpgradeProbe(
            from_version=from_version,
            to_version=to_version,
            analysis=analysis,
            breaking_changes=breaking,
        )

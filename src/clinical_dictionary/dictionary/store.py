"""Holder of the active dictionary.

The active dictionary is loaded once at startup and replaced only when a
migration completes. Readers always see either the old or the new value.
"""

import asyncio

from loguru import logger

from clinical_dictionary.dictionary.client import DictionaryServiceClient
from clinical_dictionary.repository.dictionary_repository import DictionaryRepository
from clinical_dictionary.schema.parser import SchemaDictionary


class DictionaryStore:
    def __init__(
        self,
        repository: DictionaryRepository,
        client: DictionaryServiceClient,
        name: str,
    ):
        self.repository = repository
        self.client = client
        self.name = name
        self._current: SchemaDictionary | None = None
        self._lock = asyncio.Lock()

    @property
    def is_loaded(self) -> bool:
        return self._current is not None

    @property
    def current(self) -> SchemaDictionary:
        if self._current is None:
            raise RuntimeError("Dictionary store used before load()")
        return self._current

    async def load(self, initial_version: str) -> SchemaDictionary:
        """Load the stored dictionary, or fetch and store initial_version on first start."""
        async with self._lock:
            stored = await self.repository.get(self.name)
            if stored is None:
                logger.info(
                    f"No stored dictionary, fetching initial version: name={self.name}, "
                    f"version={initial_version}"
                )
                fetched = await self.client.fetch_dictionary(self.name, initial_version)
                stored = await self.repository.create_or_update(fetched)
            self._current = stored
            logger.info(f"Active dictionary: name={stored.name}, version={stored.version}")
            return stored

    async def swap(self, new_dictionary: SchemaDictionary) -> SchemaDictionary:
        """Persist a new dictionary, then make it the active one."""
        async with self._lock:
            saved = await self.repository.create_or_update(new_dictionary)
            previous = self._current.version if self._current else None
            self._current = saved
            logger.info(f"Swapped active dictionary: from={previous}, to={saved.version}")
            return saved

"""Worker pool for CPU-bound record validation.

Type, regex and script checks are pure CPU work. Running them on the event
loop would stall the migration sweep behind one slow script restriction, so
validation of a donor's entities is offloaded to a fixed-size executor and
awaited together.
"""

import asyncio
from concurrent.futures import Executor, ProcessPoolExecutor
from typing import Iterable, Mapping, Sequence

from loguru import logger

from clinical_dictionary.schema.parser import DataRecord, SchemaDictionary
from clinical_dictionary.schema.validator import (
    DEFAULT_STAGES,
    BatchProcessingResult,
    ValidationStage,
    process,
)


def _process_entity(
    dictionary: SchemaDictionary,
    entity_name: str,
    records: list[DataRecord],
    stages: tuple[ValidationStage, ...],
) -> BatchProcessingResult:
    # Module-level so process pools can pickle it
    return process(dictionary, entity_name, records, stages)


class ValidationPool:
    """Fixed-size executor that validates entities off the event loop.

    Args:
        max_workers: Pool size, normally the number of available CPUs.
        executor: Pre-built executor to use instead of a process pool. Tests pass
            a ThreadPoolExecutor here.
    """

    def __init__(self, max_workers: int = 1, executor: Executor | None = None):
        self.max_workers = max(1, max_workers)
        self._executor = executor
        self._owns_executor = executor is None

    @property
    def executor(self) -> Executor:
        if self._executor is None:
            logger.info(f"Starting validation pool: workers={self.max_workers}")
            self._executor = ProcessPoolExecutor(max_workers=self.max_workers)
        return self._executor

    async def process(
        self,
        dictionary: SchemaDictionary,
        entity_name: str,
        records: Sequence[DataRecord],
        stages: Iterable[ValidationStage] = DEFAULT_STAGES,
    ) -> BatchProcessingResult:
        """Validate one entity's records in the pool."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            self.executor,
            _process_entity,
            dictionary,
            entity_name,
            list(records),
            tuple(stages),
        )

    async def process_entities(
        self,
        dictionary: SchemaDictionary,
        records_by_entity: Mapping[str, Sequence[DataRecord]],
        stages: Iterable[ValidationStage] = DEFAULT_STAGES,
    ) -> dict[str, BatchProcessingResult]:
        """Validate several entities concurrently, keyed by entity name."""
        stages = tuple(stages)
        names = list(records_by_entity)
        results = await asyncio.gather(
            *(self.process(dictionary, name, records_by_entity[name], stages) for name in names)
        )
        return dict(zip(names, results))

    def shutdown(self) -> None:
        if self._executor is not None and self._owns_executor:
            self._executor.shutdown(wait=True)
            self._executor = None

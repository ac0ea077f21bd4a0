from clinical_dictionary.repository.dictionary_repository import DictionaryRepository
from clinical_dictionary.repository.migration_repository import MigrationRepository

__all__ = [
    "DictionaryRepository",
    "MigrationRepository",
]

"""Models package for clinical-dictionary."""

from clinical_dictionary.models.base import Base
from clinical_dictionary.models.dictionary import DataSchemaModel
from clinical_dictionary.models.migration import DictionaryMigrationModel

__all__ = [
    "Base",
    "DataSchemaModel",
    "DictionaryMigrationModel",
]

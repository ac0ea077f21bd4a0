from clinical_dictionary.dictionary.client import DictionaryServiceClient
from clinical_dictionary.dictionary.manager import DictionaryManager, SchemaUpgradeProbe
from clinical_dictionary.dictionary.store import DictionaryStore

__all__ = [
    "DictionaryManager",
    "DictionaryServiceClient",
    "DictionaryStore",
    "SchemaUpgradeProbe",
]

"""Schema system for clinical-dictionary.

Provides the dictionary data model, the record validation engine, and the change
analyzer that classifies diffs between dictionary versions.
"""

from clinical_dictionary.schema.diff import (
    ChangeAnalysis,
    FieldDiff,
    InvalidatingChange,
    analyze,
    find_entities_with_breaking_changes,
    find_entities_with_core_designation_changes,
    find_invalidating_changes,
)
from clinical_dictionary.schema.exceptions import DictionaryLoadError, SchemaNotFound
from clinical_dictionary.schema.parallel import ValidationPool
from clinical_dictionary.schema.parser import (
    FieldDefinition,
    SchemaDefinition,
    SchemaDictionary,
    ValueType,
    parse_dictionary,
    render_dictionary,
)
from clinical_dictionary.schema.validator import (
    ALL_STAGES,
    DEFAULT_STAGES,
    BatchProcessingResult,
    ErrorType,
    SchemaValidationError,
    ValidationStage,
    get_field_names_by_priority,
    process,
)

__all__ = [
    # Parser
    "FieldDefinition",
    "SchemaDefinition",
    "SchemaDictionary",
    "ValueType",
    "parse_dictionary",
    "render_dictionary",
    # Validator
    "ALL_STAGES",
    "DEFAULT_STAGES",
    "BatchProcessingResult",
    "ErrorType",
    "SchemaValidationError",
    "ValidationStage",
    "get_field_names_by_priority",
    "process",
    "ValidationPool",
    # Diff
    "ChangeAnalysis",
    "FieldDiff",
    "InvalidatingChange",
    "analyze",
    "find_entities_with_breaking_changes",
    "find_entities_with_core_designation_changes",
    "find_invalidating_changes",
    # Errors
    "DictionaryLoadError",
    "SchemaNotFound",
]

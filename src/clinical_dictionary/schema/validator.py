"""Validation engine for clinical-dictionary.

Validates raw, string-valued clinical records against one entity schema of a
dictionary, and converts them to typed records. Each record goes through:

  1. default population   -> blank or absent fields that declare meta.default
  2. raw stages           -> FIELD_NAMES, NON_ARRAY, REQUIRED, VALUE_TYPE
  3. type conversion      -> integer/number/boolean/string coercion
  4. typed stages         -> REGEX, RANGE, ENUM, SCRIPT

Stages run in that canonical order whatever order the caller lists them in.
Validation is fail-forward: a field that produced an error in one stage is
skipped by every later stage for the same record, so a single bad value
reports a single error.

Record-level problems are returned as SchemaValidationError values. The only
exception raised here is SchemaNotFound, for an entity the dictionary lacks.
"""

import json
import math
import re
from dataclasses import asdict, dataclass, field as dataclass_field
from enum import Enum
from typing import Any, Callable, Iterable, Sequence

from loguru import logger
from py_mini_racer import MiniRacer
from py_mini_racer._exc import MiniRacerBaseException

from clinical_dictionary.schema.parser import (
    DataRecord,
    FieldDefinition,
    SchemaDefinition,
    SchemaDictionary,
    TypedDataRecord,
    ValueType,
)


# --- Result Data Model ---


class ErrorType(str, Enum):
    MISSING_REQUIRED_FIELD = "MISSING_REQUIRED_FIELD"
    INVALID_FIELD_VALUE_TYPE = "INVALID_FIELD_VALUE_TYPE"
    INVALID_BY_REGEX = "INVALID_BY_REGEX"
    INVALID_BY_RANGE = "INVALID_BY_RANGE"
    INVALID_BY_SCRIPT = "INVALID_BY_SCRIPT"
    INVALID_ENUM_VALUE = "INVALID_ENUM_VALUE"
    UNRECOGNIZED_FIELD = "UNRECOGNIZED_FIELD"


@dataclass(frozen=True)
class SchemaValidationError:
    """One problem found in one field of one record."""

    error_type: ErrorType
    index: int  # 0-based position of the record in the submitted batch
    field_name: str
    info: dict = dataclass_field(default_factory=dict)
    message: str = ""

    def to_dict(self) -> dict:
        data = asdict(self)
        data["error_type"] = self.error_type.value
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "SchemaValidationError":
        return cls(
            error_type=ErrorType(data["error_type"]),
            index=data["index"],
            field_name=data["field_name"],
            info=data.get("info") or {},
            message=data.get("message", ""),
        )


@dataclass
class RecordProcessingResult:
    processed_record: TypedDataRecord
    validation_errors: list[SchemaValidationError] = dataclass_field(default_factory=list)


@dataclass
class BatchProcessingResult:
    """Typed records plus every error found across the batch."""

    processed_records: list[TypedDataRecord] = dataclass_field(default_factory=list)
    validation_errors: list[SchemaValidationError] = dataclass_field(default_factory=list)


class ValidationStage(str, Enum):
    FIELD_NAMES = "FIELD_NAMES"
    NON_ARRAY = "NON_ARRAY"
    REQUIRED = "REQUIRED"
    VALUE_TYPE = "VALUE_TYPE"
    REGEX = "REGEX"
    RANGE = "RANGE"
    ENUM = "ENUM"
    SCRIPT = "SCRIPT"


# Canonical order; the first four inspect raw strings, the rest typed values
ALL_STAGES: tuple[ValidationStage, ...] = tuple(ValidationStage)
RAW_STAGES = frozenset(
    {
        ValidationStage.FIELD_NAMES,
        ValidationStage.NON_ARRAY,
        ValidationStage.REQUIRED,
        ValidationStage.VALUE_TYPE,
    }
)
DEFAULT_STAGES: tuple[ValidationStage, ...] = (
    ValidationStage.REQUIRED,
    ValidationStage.VALUE_TYPE,
    ValidationStage.REGEX,
)


# --- Messages ---

INVALID_VALUE_MESSAGE = "The value is not permissible for this field."
OUT_OF_RANGE_MESSAGE = "Value is out of permissible range"

# Plain decimal literals with an optional exponent
_NUMBER_PATTERN = re.compile(r"[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?")


def _regex_message(regex: str, examples: str | None) -> str:
    msg = f'The value is not permissible for this field, it must meet the regular expression: "{regex}".'
    if examples:
        msg += f" Examples: {examples}"
    return msg


def _missing_message(field_name: str) -> str:
    return f"{field_name} is a required field."


def _unrecognized_message(field_name: str) -> str:
    return f"{field_name} is not a recognized field for this entity."


# --- Value helpers ---


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    if isinstance(value, list):
        return all(_is_blank(v) for v in value)
    return False


def _as_values(value: Any) -> list:
    """Normalize a scalar-or-list cell to a list of its non-blank elements."""
    if value is None:
        return []
    items = value if isinstance(value, list) else [value]
    return [v for v in items if not _is_blank(v)]


def _convert_scalar(schema_field: FieldDefinition, raw: str) -> Any:
    """Convert one raw string to the field's value type.

    Raises:
        ValueError: If the string is not a valid literal for the type.
    """
    if not isinstance(raw, str):
        # Already typed, e.g. a stored record
        raw = str(raw).lower() if isinstance(raw, bool) else str(raw)
    text = raw.strip()

    value_type = schema_field.value_type
    if value_type in (ValueType.INTEGER, ValueType.NUMBER) and not _NUMBER_PATTERN.fullmatch(text):
        raise ValueError(f"not a number: {raw!r}")
    if value_type == ValueType.INTEGER:
        number = float(text)
        if not math.isfinite(number) or not number.is_integer():
            raise ValueError(f"not an integer: {raw!r}")
        return int(number)
    if value_type == ValueType.NUMBER:
        number = float(text)
        if not math.isfinite(number):
            raise ValueError(f"not a finite number: {raw!r}")
        return number
    if value_type == ValueType.BOOLEAN:
        lowered = text.lower()
        if lowered not in ("true", "false"):
            raise ValueError(f"not a boolean: {raw!r}")
        return lowered == "true"

    # Strings take the code list's spelling when they match it case-insensitively
    code_list = schema_field.restrictions.code_list
    if code_list:
        for allowed in code_list:
            if isinstance(allowed, str) and allowed.lower() == text.lower():
                return allowed
    return text


def _is_convertible(schema_field: FieldDefinition, raw: str) -> bool:
    try:
        _convert_scalar(schema_field, raw)
    except ValueError:
        return False
    return True


def convert_value(schema_field: FieldDefinition, raw: Any) -> Any:
    """Convert a raw cell; blank becomes None, array fields become lists."""
    values = _as_values(raw)
    if not values:
        return None
    converted = [_convert_scalar(schema_field, v) for v in values]
    if schema_field.is_array:
        return converted
    return converted[0]


def _typed_values(value: Any) -> list:
    if value is None:
        return []
    return list(value) if isinstance(value, list) else [value]


# --- Default population ---


def populate_defaults(schema: SchemaDefinition, record: DataRecord) -> DataRecord:
    """Return a copy of the record with declared defaults filled into blank fields."""
    result = dict(record)
    for schema_field in schema.fields:
        default = schema_field.meta.default
        if default is None:
            continue
        if _is_blank(result.get(schema_field.name)):
            if isinstance(default, bool):
                default = str(default).lower()
            result[schema_field.name] = (
                [str(d) for d in default] if isinstance(default, list) else str(default)
            )
    return result


# --- Raw stages ---

StageFn = Callable[[SchemaDefinition, dict, int, set[str]], list[SchemaValidationError]]


def _validate_field_names(
    schema: SchemaDefinition, record: dict, index: int, failed: set[str]
) -> list[SchemaValidationError]:
    known = set(schema.field_names)
    return [
        SchemaValidationError(
            error_type=ErrorType.UNRECOGNIZED_FIELD,
            index=index,
            field_name=name,
            info={"value": record[name]},
            message=_unrecognized_message(name),
        )
        for name in record
        if name not in known and name not in failed
    ]


def _validate_non_array(
    schema: SchemaDefinition, record: dict, index: int, failed: set[str]
) -> list[SchemaValidationError]:
    errors = []
    for schema_field in _candidate_fields(schema, failed):
        value = record.get(schema_field.name)
        if not schema_field.is_array and isinstance(value, list) and len(_as_values(value)) > 1:
            errors.append(
                SchemaValidationError(
                    error_type=ErrorType.INVALID_FIELD_VALUE_TYPE,
                    index=index,
                    field_name=schema_field.name,
                    info={"value": value},
                    message=INVALID_VALUE_MESSAGE,
                )
            )
    return errors


def _validate_required(
    schema: SchemaDefinition, record: dict, index: int, failed: set[str]
) -> list[SchemaValidationError]:
    return [
        SchemaValidationError(
            error_type=ErrorType.MISSING_REQUIRED_FIELD,
            index=index,
            field_name=schema_field.name,
            info={},
            message=_missing_message(schema_field.name),
        )
        for schema_field in _candidate_fields(schema, failed)
        if schema_field.required and _is_blank(record.get(schema_field.name))
    ]


def _validate_value_type(
    schema: SchemaDefinition, record: dict, index: int, failed: set[str]
) -> list[SchemaValidationError]:
    errors = []
    for schema_field in _candidate_fields(schema, failed):
        if schema_field.value_type == ValueType.STRING:
            continue
        invalid = [
            v for v in _as_values(record.get(schema_field.name)) if not _is_convertible(schema_field, v)
        ]
        if invalid:
            errors.append(
                SchemaValidationError(
                    error_type=ErrorType.INVALID_FIELD_VALUE_TYPE,
                    index=index,
                    field_name=schema_field.name,
                    info={"value": invalid},
                    message=INVALID_VALUE_MESSAGE,
                )
            )
    return errors


# --- Typed stages ---


def _validate_regex(
    schema: SchemaDefinition, record: dict, index: int, failed: set[str]
) -> list[SchemaValidationError]:
    errors = []
    for schema_field in _candidate_fields(schema, failed):
        regex = schema_field.restrictions.regex
        if not regex:
            continue
        pattern = re.compile(regex)
        invalid = [
            v for v in _typed_values(record.get(schema_field.name)) if not pattern.search(str(v))
        ]
        if invalid:
            examples = schema_field.meta.examples
            errors.append(
                SchemaValidationError(
                    error_type=ErrorType.INVALID_BY_REGEX,
                    index=index,
                    field_name=schema_field.name,
                    info={"value": invalid, "regex": regex, "examples": examples},
                    message=_regex_message(regex, examples),
                )
            )
    return errors


def _validate_range(
    schema: SchemaDefinition, record: dict, index: int, failed: set[str]
) -> list[SchemaValidationError]:
    errors = []
    for schema_field in _candidate_fields(schema, failed):
        rng = schema_field.restrictions.range
        if rng is None or schema_field.value_type not in (ValueType.INTEGER, ValueType.NUMBER):
            continue
        invalid = [
            v for v in _typed_values(record.get(schema_field.name)) if rng.is_out_of_range(v)
        ]
        if invalid:
            errors.append(
                SchemaValidationError(
                    error_type=ErrorType.INVALID_BY_RANGE,
                    index=index,
                    field_name=schema_field.name,
                    info={"value": invalid, **{k: v for k, v in asdict(rng).items() if v is not None}},
                    message=OUT_OF_RANGE_MESSAGE,
                )
            )
    return errors


def _validate_enum(
    schema: SchemaDefinition, record: dict, index: int, failed: set[str]
) -> list[SchemaValidationError]:
    errors = []
    for schema_field in _candidate_fields(schema, failed):
        code_list = schema_field.restrictions.code_list
        if not code_list:
            continue
        invalid = [v for v in _typed_values(record.get(schema_field.name)) if v not in code_list]
        if invalid:
            errors.append(
                SchemaValidationError(
                    error_type=ErrorType.INVALID_ENUM_VALUE,
                    index=index,
                    field_name=schema_field.name,
                    info={"value": invalid},
                    message=INVALID_VALUE_MESSAGE,
                )
            )
    return errors


# Upper bound for one script restriction, in milliseconds
SCRIPT_TIMEOUT_MS = 1000


def run_script(sources: Sequence[str] | str, record: dict, field_name: str) -> tuple[bool, str]:
    """Evaluate script restrictions against a typed record.

    Each script is a JavaScript expression evaluated in a fresh V8 context
    that exposes ``$row`` (the whole typed record), ``$field`` (this field's
    value) and ``$name`` (this field's name). A script evaluates to an object
    with ``valid`` and ``message`` keys. Scripts run in order and the first
    invalid verdict wins.

    Returns:
        (valid, message) for the deciding verdict.
    """
    if isinstance(sources, str):
        sources = [sources]

    context = MiniRacer()
    try:
        context.eval(
            f"var $row = {json.dumps(record, default=str)};"
            f" var $name = {json.dumps(field_name)};"
            " var $field = $row[$name];"
        )
        valid, message = False, ""
        for source in sources:
            verdict = json.loads(
                context.eval(f"JSON.stringify(eval({json.dumps(source)}))", timeout=SCRIPT_TIMEOUT_MS)
            )
            valid, message = bool(verdict["valid"]), str(verdict.get("message", ""))
            if not valid:
                break
        return valid, message
    except (MiniRacerBaseException, TypeError, ValueError, KeyError, AttributeError) as e:
        logger.debug(f"Script restriction failed: field={field_name}, error={e}")
        return False, f"Failed to run script validation for field {field_name}, check script and the input."


def _validate_script(
    schema: SchemaDefinition, record: dict, index: int, failed: set[str]
) -> list[SchemaValidationError]:
    errors = []
    for schema_field in _candidate_fields(schema, failed):
        scripts = schema_field.restrictions.script
        # Scripts only judge values that are present
        if not scripts or record.get(schema_field.name) is None:
            continue
        valid, message = run_script(scripts, record, schema_field.name)
        if not valid:
            errors.append(
                SchemaValidationError(
                    error_type=ErrorType.INVALID_BY_SCRIPT,
                    index=index,
                    field_name=schema_field.name,
                    info={"value": record.get(schema_field.name), "message": message},
                    message=message,
                )
            )
    return errors


_STAGE_FUNCTIONS: dict[ValidationStage, StageFn] = {
    ValidationStage.FIELD_NAMES: _validate_field_names,
    ValidationStage.NON_ARRAY: _validate_non_array,
    ValidationStage.REQUIRED: _validate_required,
    ValidationStage.VALUE_TYPE: _validate_value_type,
    ValidationStage.REGEX: _validate_regex,
    ValidationStage.RANGE: _validate_range,
    ValidationStage.ENUM: _validate_enum,
    ValidationStage.SCRIPT: _validate_script,
}


def _candidate_fields(schema: SchemaDefinition, failed: set[str]) -> Iterable[FieldDefinition]:
    return (f for f in schema.fields if f.name not in failed)


def _run_stages(
    stages: Sequence[ValidationStage],
    schema: SchemaDefinition,
    record: dict,
    index: int,
    failed: set[str],
) -> list[SchemaValidationError]:
    errors: list[SchemaValidationError] = []
    for stage in stages:
        stage_errors = _STAGE_FUNCTIONS[stage](schema, record, index, failed)
        errors.extend(stage_errors)
        failed.update(e.field_name for e in stage_errors)
    return errors


def _convert_record(schema: SchemaDefinition, record: dict, failed: set[str]) -> TypedDataRecord:
    typed: TypedDataRecord = {}
    for name, raw in record.items():
        schema_field = schema.get_field(name)
        if schema_field is None:
            typed[name] = raw
            continue
        try:
            typed[name] = convert_value(schema_field, raw)
        except ValueError:
            # Only reachable when VALUE_TYPE was not selected
            failed.add(name)
            typed[name] = raw
    return typed


# --- Public API ---


def process_record(
    schema: SchemaDefinition,
    record: DataRecord,
    index: int,
    stages: Iterable[ValidationStage] = DEFAULT_STAGES,
) -> RecordProcessingResult:
    """Populate defaults, validate and convert a single record."""
    selected = set(stages)
    ordered = [s for s in ALL_STAGES if s in selected]
    failed: set[str] = set()

    with_defaults = populate_defaults(schema, record)
    errors = _run_stages([s for s in ordered if s in RAW_STAGES], schema, with_defaults, index, failed)

    typed = _convert_record(schema, with_defaults, failed)
    errors.extend(
        _run_stages([s for s in ordered if s not in RAW_STAGES], schema, typed, index, failed)
    )
    return RecordProcessingResult(processed_record=typed, validation_errors=errors)


def process(
    dictionary: SchemaDictionary,
    entity_name: str,
    records: Sequence[DataRecord],
    stages: Iterable[ValidationStage] = DEFAULT_STAGES,
) -> BatchProcessingResult:
    """Validate and convert a batch of records for one entity type.

    Args:
        dictionary: The dictionary holding the entity's schema.
        entity_name: Name of the schema to validate against, e.g. "donor".
        records: Raw records; they are not modified.
        stages: Validation stages to run. Defaults to required, type and regex.

    Returns:
        A BatchProcessingResult with one typed record per input record and all
        validation errors, each tagged with its record's 0-based index.

    Raises:
        SchemaNotFound: If the dictionary has no schema named entity_name.
    """
    schema = dictionary.get_schema(entity_name)
    stages = tuple(stages)
    result = BatchProcessingResult()
    for index, record in enumerate(records):
        record_result = process_record(schema, record, index, stages)
        result.processed_records.append(record_result.processed_record)
        result.validation_errors.extend(record_result.validation_errors)

    if result.validation_errors:
        logger.debug(
            f"Validation found errors: entity={entity_name}, records={len(records)}, "
            f"errors={len(result.validation_errors)}"
        )
    return result


def get_field_names_by_priority(dictionary: SchemaDictionary, entity_name: str) -> dict[str, list[str]]:
    """Split an entity's field names into required and optional lists."""
    schema = dictionary.get_schema(entity_name)
    return {
        "required": [f.name for f in schema.fields if f.required],
        "optional": [f.name for f in schema.fields if not f.required],
    }

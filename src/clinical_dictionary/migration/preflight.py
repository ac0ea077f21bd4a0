"""Pre-flight verification of a target dictionary.

Before any donor is touched, the target dictionary must still define every
field other services read, keep every code list value they depend on, and
change no tracked field's value type except integer to number.
"""

from typing import Iterable, Mapping

from loguru import logger

from clinical_dictionary.migration.clinical import KNOWN_FIELD_CODE_LISTS, REQUIRED_ENTITY_FIELDS
from clinical_dictionary.migration.entities import (
    EntityVerificationResult,
    NewSchemaVerificationResult,
)
from clinical_dictionary.schema.parser import SchemaDefinition, SchemaDictionary, ValueType


def _missing_fields(required: Iterable[str], schema: SchemaDefinition | None) -> list[str]:
    present = set(schema.field_names) if schema else set()
    return [name for name in required if name not in present]


def _missing_code_list_values(
    known: Mapping[str, list[str]], schema: SchemaDefinition | None
) -> list[dict]:
    invalid = []
    for field_name, values in known.items():
        schema_field = schema.get_field(field_name) if schema else None
        code_list = schema_field.restrictions.code_list if schema_field else None
        missing = [v for v in values if v not in (code_list or ())]
        if missing:
            invalid.append({"field_name": field_name, "missing_code_list_values": missing})
    return invalid


def _prohibited_value_type_changes(
    entity_name: str,
    value_type_changes: Iterable[str],
    current: SchemaDictionary,
    target_schema: SchemaDefinition | None,
) -> list[str]:
    prohibited = []
    for path in value_type_changes:
        schema_name, _, field_name = path.partition(".")
        if schema_name != entity_name:
            continue

        current_schema = current.find_schema(schema_name)
        before = current_schema.get_field(field_name) if current_schema else None
        after = target_schema.get_field(field_name) if target_schema else None
        if before is None or after is None:
            logger.error(
                f"Value type change for {path} but the field is missing in the current "
                f"or target dictionary"
            )
            continue

        # Widening integer to number keeps every stored value valid
        if not (before.value_type == ValueType.INTEGER and after.value_type == ValueType.NUMBER):
            prohibited.append(field_name)
    return prohibited


def verify_new_dictionary(
    current: SchemaDictionary,
    target: SchemaDictionary,
    value_type_changes: Iterable[str] = (),
    required_fields: Mapping[str, list[str]] | None = None,
    known_code_lists: Mapping[str, Mapping[str, list[str]]] | None = None,
) -> NewSchemaVerificationResult:
    """Check a target dictionary against what the platform depends on.

    Args:
        current: The dictionary in use now.
        target: The dictionary being migrated to.
        value_type_changes: Field paths whose valueType differs between the two.
        required_fields: Fields each entity must keep. Defaults to the clinical catalogue.
        known_code_lists: Code list values each entity must keep.

    Returns:
        A NewSchemaVerificationResult that is empty when the target is compatible.
    """
    required_fields = REQUIRED_ENTITY_FIELDS if required_fields is None else required_fields
    known_code_lists = KNOWN_FIELD_CODE_LISTS if known_code_lists is None else known_code_lists
    value_type_changes = list(value_type_changes)

    result = NewSchemaVerificationResult()
    entity_names = list(dict.fromkeys([*required_fields, *known_code_lists]))
    for entity_name in entity_names:
        target_schema = target.find_schema(entity_name)
        entity_result = EntityVerificationResult(
            missing_fields=_missing_fields(required_fields.get(entity_name, []), target_schema),
            invalid_field_code_lists=_missing_code_list_values(
                known_code_lists.get(entity_name, {}), target_schema
            ),
            value_type_changes=_prohibited_value_type_changes(
                entity_name, value_type_changes, current, target_schema
            ),
        )
        if not entity_result.is_empty():
            result.entities[entity_name] = entity_result

    if not result.is_compatible:
        logger.warning(
            f"Target dictionary failed pre-flight: version={target.version}, "
            f"entities={sorted(result.entities)}"
        )
    return result

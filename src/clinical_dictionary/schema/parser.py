"""Dictionary parser for clinical-dictionary.

Parses the JSON documents served by the dictionary service into immutable
dataclass representations, and renders them back to the same wire shape for
storage. A dictionary groups one schema per clinical entity type:

  {name, version, schemas: [{name, description, fields: [
      {name, valueType, description, isArray?, meta?: {...}, restrictions?: {...}}
  ]}]}

A new dictionary version is always a new value; nothing here mutates in place.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union

from clinical_dictionary.schema.exceptions import SchemaNotFound


# --- Data Model ---


class ValueType(str, Enum):
    STRING = "string"
    INTEGER = "integer"
    NUMBER = "number"
    BOOLEAN = "boolean"


# Raw TSV-style cell, or a list of cells for array fields
RawValue = Union[str, list[str]]
DataRecord = dict[str, RawValue]
TypedValue = Union[str, int, float, bool, None, list]
TypedDataRecord = dict[str, TypedValue]


@dataclass(frozen=True)
class RangeRestriction:
    min: float | None = None
    max: float | None = None
    exclusive_min: float | None = None
    exclusive_max: float | None = None

    def is_out_of_range(self, value: float) -> bool:
        return (
            (self.min is not None and value < self.min)
            or (self.exclusive_min is not None and value <= self.exclusive_min)
            or (self.max is not None and value > self.max)
            or (self.exclusive_max is not None and value >= self.exclusive_max)
        )


@dataclass(frozen=True)
class FieldRestrictions:
    code_list: tuple[str | int | float, ...] | None = None
    regex: str | None = None
    script: tuple[str, ...] | None = None
    required: bool = False
    range: RangeRestriction | None = None


@dataclass(frozen=True)
class FieldMeta:
    key: bool = False
    core: bool = False
    default: Any = None
    examples: str | None = None
    # Unrecognised meta keys are kept so rendering is lossless
    extra: tuple[tuple[str, Any], ...] = ()


@dataclass(frozen=True)
class FieldDefinition:
    """A single field of a clinical entity schema."""

    name: str
    value_type: ValueType
    description: str = ""
    is_array: bool = False
    meta: FieldMeta = field(default_factory=FieldMeta)
    restrictions: FieldRestrictions = field(default_factory=FieldRestrictions)

    @property
    def required(self) -> bool:
        return self.restrictions.required


@dataclass(frozen=True)
class SchemaDefinition:
    """Schema for one clinical entity type (donor, specimen, ...)."""

    name: str
    description: str = ""
    key: str | None = None
    fields: tuple[FieldDefinition, ...] = ()

    def get_field(self, name: str) -> FieldDefinition | None:
        for schema_field in self.fields:
            if schema_field.name == name:
                return schema_field
        return None

    @property
    def field_names(self) -> list[str]:
        return [f.name for f in self.fields]


@dataclass(frozen=True)
class SchemaDictionary:
    """A complete, versioned dictionary of entity schemas."""

    name: str
    version: str
    schemas: tuple[SchemaDefinition, ...] = ()

    def get_schema(self, entity_name: str) -> SchemaDefinition:
        """Return the schema for an entity type.

        Raises:
            SchemaNotFound: If the dictionary has no schema with that name.
        """
        schema = self.find_schema(entity_name)
        if schema is None:
            raise SchemaNotFound(entity_name, self.version)
        return schema

    def find_schema(self, entity_name: str) -> SchemaDefinition | None:
        for schema in self.schemas:
            if schema.name == entity_name:
                return schema
        return None

    @property
    def schema_names(self) -> list[str]:
        return [s.name for s in self.schemas]


# --- Parsing ---

_KNOWN_META_KEYS = {"key", "core", "default", "examples"}


def _parse_range(data: dict | None) -> RangeRestriction | None:
    if not data:
        return None
    return RangeRestriction(
        min=data.get("min"),
        max=data.get("max"),
        exclusive_min=data.get("exclusiveMin"),
        exclusive_max=data.get("exclusiveMax"),
    )


def _parse_restrictions(data: dict | None) -> FieldRestrictions:
    if not data:
        return FieldRestrictions()

    code_list = data.get("codeList")
    script = data.get("script")
    # Older dictionaries carry a single script string instead of a list
    if isinstance(script, str):
        script = [script]

    return FieldRestrictions(
        code_list=tuple(code_list) if code_list is not None else None,
        regex=data.get("regex") or None,
        script=tuple(script) if script else None,
        required=bool(data.get("required", False)),
        range=_parse_range(data.get("range")),
    )


def _parse_meta(data: dict | None) -> FieldMeta:
    if not data:
        return FieldMeta()
    extra = tuple(sorted((k, v) for k, v in data.items() if k not in _KNOWN_META_KEYS))
    return FieldMeta(
        key=bool(data.get("key", False)),
        core=bool(data.get("core", False)),
        default=data.get("default"),
        examples=data.get("examples"),
        extra=extra,
    )


def parse_field(data: dict) -> FieldDefinition:
    """Parse one field definition from its wire form."""
    name = data.get("name")
    if not name:
        raise ValueError("Field definition missing required 'name'")
    return FieldDefinition(
        name=name,
        value_type=ValueType(data.get("valueType", "string")),
        description=data.get("description", "") or "",
        is_array=bool(data.get("isArray", False)),
        meta=_parse_meta(data.get("meta")),
        restrictions=_parse_restrictions(data.get("restrictions")),
    )


def parse_schema(data: dict) -> SchemaDefinition:
    name = data.get("name")
    if not name:
        raise ValueError("Schema definition missing required 'name'")
    return SchemaDefinition(
        name=name,
        description=data.get("description", "") or "",
        key=data.get("key"),
        fields=tuple(parse_field(f) for f in data.get("fields", [])),
    )


def parse_dictionary(data: dict) -> SchemaDictionary:
    """Parse a full dictionary document into a SchemaDictionary.

    Raises:
        ValueError: If the name or version is missing.
    """
    name = data.get("name")
    version = data.get("version")
    if not name or version is None:
        raise ValueError("Dictionary document missing required 'name' or 'version'")
    return SchemaDictionary(
        name=name,
        version=str(version),
        schemas=tuple(parse_schema(s) for s in data.get("schemas", [])),
    )


# --- Rendering ---


def _render_restrictions(restrictions: FieldRestrictions) -> dict:
    result: dict[str, Any] = {}
    if restrictions.code_list is not None:
        result["codeList"] = list(restrictions.code_list)
    if restrictions.regex:
        result["regex"] = restrictions.regex
    if restrictions.script:
        result["script"] = list(restrictions.script)
    if restrictions.required:
        result["required"] = True
    if restrictions.range:
        rng = restrictions.range
        result["range"] = {
            k: v
            for k, v in (
                ("min", rng.min),
                ("max", rng.max),
                ("exclusiveMin", rng.exclusive_min),
                ("exclusiveMax", rng.exclusive_max),
            )
            if v is not None
        }
    return result


def _render_meta(meta: FieldMeta) -> dict:
    result: dict[str, Any] = dict(meta.extra)
    if meta.key:
        result["key"] = True
    if meta.core:
        result["core"] = True
    if meta.default is not None:
        result["default"] = meta.default
    if meta.examples is not None:
        result["examples"] = meta.examples
    return result


def render_field(schema_field: FieldDefinition) -> dict:
    result: dict[str, Any] = {
        "name": schema_field.name,
        "valueType": schema_field.value_type.value,
        "description": schema_field.description,
    }
    if schema_field.is_array:
        result["isArray"] = True
    meta = _render_meta(schema_field.meta)
    if meta:
        result["meta"] = meta
    restrictions = _render_restrictions(schema_field.restrictions)
    if restrictions:
        result["restrictions"] = restrictions
    return result


def render_dictionary(dictionary: SchemaDictionary) -> dict:
    """Render a dictionary back to the wire form accepted by parse_dictionary."""
    schemas = []
    for schema in dictionary.schemas:
        rendered: dict[str, Any] = {
            "name": schema.name,
            "description": schema.description,
            "fields": [render_field(f) for f in schema.fields],
        }
        if schema.key is not None:
            rendered["key"] = schema.key
        schemas.append(rendered)
    return {"name": dictionary.name, "version": dictionary.version, "schemas": schemas}

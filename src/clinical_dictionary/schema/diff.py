"""Change analyzer for clinical-dictionary.

Classifies the field-by-field diff between two dictionary versions and decides
which changes can invalidate data that was valid under the old version.

The diff source returns one node per field path ("donor.vital_status"):

  - a top-level {type, data} node means the whole field was created or deleted
  - otherwise the node is keyed by sub-property (meta, restrictions, isArray,
    valueType) and its leaves are {type, data} nodes

Analysis is pure. The same diff always yields the same ChangeAnalysis, which
is what makes it safe to memoize per version pair.
"""

from dataclasses import asdict, dataclass, field
from typing import Any, Mapping

from loguru import logger


CHANGE_TYPES = ("created", "updated", "deleted")

# Wire keys of the restriction categories
_RESTRICTION_KEYS = {
    "codeList": "code_list",
    "regex": "regex",
    "required": "required",
    "script": "script",
    "range": "range",
}


# --- Data Model ---


@dataclass(frozen=True)
class FieldDiff:
    """Diff of one field path between two dictionary versions."""

    before: Any
    after: Any
    diff: Any

    @classmethod
    def from_dict(cls, data: Mapping) -> "FieldDiff":
        return cls(before=data.get("left"), after=data.get("right"), diff=data.get("diff"))


@dataclass
class AddedField:
    name: str
    definition: dict


@dataclass
class RestrictionChange:
    field: str
    definition: Any


@dataclass
class RestrictionChangeSet:
    created: list[RestrictionChange] = field(default_factory=list)
    updated: list[RestrictionChange] = field(default_factory=list)
    deleted: list[RestrictionChange] = field(default_factory=list)

    def bucket(self, change_type: str) -> list[RestrictionChange]:
        return getattr(self, change_type)


@dataclass
class FieldChanges:
    added_fields: list[AddedField] = field(default_factory=list)
    renamed_fields: list[str] = field(default_factory=list)
    deleted_fields: list[str] = field(default_factory=list)


@dataclass
class RestrictionsChanges:
    code_list: RestrictionChangeSet = field(default_factory=RestrictionChangeSet)
    regex: RestrictionChangeSet = field(default_factory=RestrictionChangeSet)
    required: RestrictionChangeSet = field(default_factory=RestrictionChangeSet)
    script: RestrictionChangeSet = field(default_factory=RestrictionChangeSet)
    range: RestrictionChangeSet = field(default_factory=RestrictionChangeSet)


@dataclass
class CoreChanges:
    changed_to_core: list[str] = field(default_factory=list)
    changed_from_core: list[str] = field(default_factory=list)


@dataclass
class MetaChanges:
    core: CoreChanges = field(default_factory=CoreChanges)


@dataclass
class ChangeAnalysis:
    """Structured classification of a dictionary diff."""

    fields: FieldChanges = field(default_factory=FieldChanges)
    is_array_designation_changes: list[str] = field(default_factory=list)
    value_type_changes: list[str] = field(default_factory=list)
    restrictions_changes: RestrictionsChanges = field(default_factory=RestrictionsChanges)
    meta_changes: MetaChanges = field(default_factory=MetaChanges)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class InvalidatingChange:
    """A change that may make previously valid stored data invalid."""

    type: str
    field_path: str
    new_valid_value: Any = None


# --- Analysis ---


def _is_change(node: Any) -> bool:
    return isinstance(node, Mapping) and "type" in node


def analyze(diff: Mapping[str, FieldDiff]) -> ChangeAnalysis:
    """Classify a field-path keyed diff into a ChangeAnalysis.

    Args:
        diff: Mapping of field path to FieldDiff, as returned by the dictionary
            service diff endpoint.

    Returns:
        The ChangeAnalysis. Field paths keep the diff's iteration order.
    """
    analysis = ChangeAnalysis()

    for field_path, field_diff in diff.items():
        if field_diff is None:
            continue
        node = field_diff.diff
        if not isinstance(node, Mapping):
            continue

        # A type at the first level means the whole field was added or removed
        if _is_change(node):
            _categorize_field_change(analysis, field_path, node)
            continue

        if node.get("meta"):
            _categorize_meta_changes(analysis, field_path, node["meta"])
        if node.get("restrictions"):
            _categorize_restriction_changes(analysis, field_path, node["restrictions"])
        if node.get("isArray"):
            _categorize_is_array_change(analysis, field_path, node["isArray"])
        if node.get("valueType"):
            analysis.value_type_changes.append(field_path)

    logger.debug(
        f"Analyzed dictionary diff: fields={len(diff)}, "
        f"added={len(analysis.fields.added_fields)}, "
        f"deleted={len(analysis.fields.deleted_fields)}"
    )
    return analysis


def _categorize_field_change(analysis: ChangeAnalysis, field_path: str, change: Mapping) -> None:
    change_type = change.get("type")
    if change_type == "created":
        analysis.fields.added_fields.append(
            AddedField(name=field_path, definition=change.get("data") or {})
        )
    elif change_type == "deleted":
        analysis.fields.deleted_fields.append(field_path)


def _categorize_is_array_change(analysis: ChangeAnalysis, field_path: str, change: Mapping) -> None:
    # Every isArray change matters except one that creates it as false
    if not (change.get("type") == "created" and change.get("data") is False):
        analysis.is_array_designation_changes.append(field_path)


def _categorize_meta_changes(analysis: ChangeAnalysis, field_path: str, meta: Mapping) -> None:
    core = analysis.meta_changes.core

    # --- Whole meta object created, updated or deleted ---
    if _is_change(meta):
        data = meta.get("data")
        if isinstance(data, Mapping) and data.get("core") is True:
            if meta["type"] in ("created", "updated"):
                core.changed_to_core.append(field_path)
            elif meta["type"] == "deleted":
                core.changed_from_core.append(field_path)
        return

    # --- Only meta.core changed inside an existing meta object ---
    core_change = meta.get("core")
    if not _is_change(core_change):
        return
    if core_change["type"] == "deleted" or core_change.get("data") is False:
        core.changed_from_core.append(field_path)
    elif core_change.get("data") is True:
        core.changed_to_core.append(field_path)


def _categorize_restriction_changes(
    analysis: ChangeAnalysis, field_path: str, restrictions: Mapping
) -> None:
    changes = analysis.restrictions_changes

    # Trigger: the restrictions object itself was created or deleted
    # Why: its data holds every restriction it carried at once
    # Outcome: one entry per restriction category present in the data
    if _is_change(restrictions):
        data = restrictions.get("data") or {}
        change_type = restrictions["type"]
        if change_type not in CHANGE_TYPES or not isinstance(data, Mapping):
            return
        for wire_key, category in _RESTRICTION_KEYS.items():
            if data.get(wire_key):
                getattr(changes, category).bucket(change_type).append(
                    RestrictionChange(field=field_path, definition=data[wire_key])
                )
        return

    # Restrictions existed before; individual categories changed inside it
    for wire_key, category in _RESTRICTION_KEYS.items():
        change = restrictions.get(wire_key)
        if not change:
            continue
        if _is_change(change):
            change_type = change["type"]
            # Nested attributes (range.min, ...) carry no data of their own
            definition = change.get("data")
            if definition is None:
                definition = change
        else:
            # range edits arrive as {min: {type, data}, max: ...} with no top-level type
            change_type = "updated"
            definition = change
        if change_type not in CHANGE_TYPES:
            continue
        getattr(changes, category).bucket(change_type).append(
            RestrictionChange(field=field_path, definition=definition)
        )


# --- Breaking change extraction ---


def find_invalidating_changes(analysis: ChangeAnalysis) -> list[InvalidatingChange]:
    """Apply the fixed rule set deciding which changes can invalidate stored data.

    Rules:
        - codeList created or updated
        - regex created or updated
        - required created or updated to true
        - a new field that is required
        - any deleted field
        - script created or updated
        - range created or updated
        - isArray designation changed

    Everything else (descriptions, optional additions, deleted restrictions)
    cannot turn a valid record invalid.
    """
    restrictions = analysis.restrictions_changes
    result: list[InvalidatingChange] = []

    # --- Code lists ---
    result.extend(InvalidatingChange("CODELIST_ADDED", c.field) for c in restrictions.code_list.created)
    result.extend(
        InvalidatingChange("CODELIST_UPDATED", c.field) for c in restrictions.code_list.updated
    )

    # --- Regex ---
    result.extend(
        InvalidatingChange("REGEX_ADDED", c.field, c.definition) for c in restrictions.regex.created
    )
    result.extend(
        InvalidatingChange("REGEX_UPDATED", c.field, c.definition) for c in restrictions.regex.updated
    )

    # --- Required set to true ---
    for change in restrictions.required.created + restrictions.required.updated:
        if change.definition is True:
            result.append(InvalidatingChange("REQUIRED_SET", change.field, change.definition))

    # --- New required fields ---
    for added in analysis.fields.added_fields:
        if (added.definition.get("restrictions") or {}).get("required"):
            result.append(InvalidatingChange("REQUIRED_FIELD_ADDED", added.name))

    # --- Removed fields ---
    result.extend(InvalidatingChange("FIELD_REMOVED", path) for path in analysis.fields.deleted_fields)

    # --- Scripts ---
    result.extend(
        InvalidatingChange("SCRIPT_ADDED", c.field, c.definition) for c in restrictions.script.created
    )
    result.extend(
        InvalidatingChange("SCRIPT_UPDATED", c.field, c.definition) for c in restrictions.script.updated
    )

    # --- Ranges ---
    result.extend(InvalidatingChange("RANGE_ADDED", c.field) for c in restrictions.range.created)
    result.extend(InvalidatingChange("RANGE_UPDATED", c.field) for c in restrictions.range.updated)

    # --- Array designation ---
    result.extend(
        InvalidatingChange("IS_ARRAY_CHANGED", path) for path in analysis.is_array_designation_changes
    )

    return result


def entity_name_of(field_path: str) -> str:
    return field_path.split(".")[0]


def find_entities_with_breaking_changes(analysis: ChangeAnalysis) -> list[str]:
    """Entity schema names touched by at least one invalidating change."""
    return _unique(entity_name_of(c.field_path) for c in find_invalidating_changes(analysis))


def find_entities_with_core_designation_changes(analysis: ChangeAnalysis) -> list[str]:
    """Entity schema names whose set of core fields may have changed.

    Covers fields added as core, fields deleted, and fields whose meta.core
    flag was switched on or off. Completion stats for these entities need
    recalculating even when no stored value became invalid.
    """
    paths = [f.name for f in analysis.fields.added_fields if (f.definition.get("meta") or {}).get("core")]
    paths.extend(analysis.fields.deleted_fields)
    paths.extend(analysis.meta_changes.core.changed_to_core)
    paths.extend(analysis.meta_changes.core.changed_from_core)
    return _unique(entity_name_of(p) for p in paths)


def _unique(names) -> list[str]:
    return list(dict.fromkeys(names))

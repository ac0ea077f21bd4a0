"""Tests for clinical_dictionary.schema.diff -- change analysis between dictionary versions."""

from clinical_dictionary.schema.diff import (
    FieldDiff,
    InvalidatingChange,
    analyze,
    find_entities_with_breaking_changes,
    find_entities_with_core_designation_changes,
    find_invalidating_changes,
)

import factories


# --- Test Helpers ---


def _diff(*entries: tuple[str, dict]) -> dict[str, FieldDiff]:
    return {path: FieldDiff(before=None, after=None, diff=node) for path, node in entries}


def _wire_diff(*entries: list) -> dict[str, FieldDiff]:
    return {path: FieldDiff.from_dict(entry) for path, entry in entries}


class TestAnalyzeFields:
    def test_created_and_deleted_fields(self):
        definition = {"name": "tumour_grade", "valueType": "string"}
        analysis = analyze(
            _diff(
                ("specimen.tumour_grade", {"type": "created", "data": definition}),
                ("donor.height", {"type": "deleted", "data": {"name": "height"}}),
            )
        )

        assert [f.name for f in analysis.fields.added_fields] == ["specimen.tumour_grade"]
        assert analysis.fields.added_fields[0].definition == definition
        assert analysis.fields.deleted_fields == ["donor.height"]

    def test_value_type_change(self):
        analysis = analyze(
            _diff(("donor.survival_time", {"valueType": {"type": "updated", "data": "number"}}))
        )
        assert analysis.value_type_changes == ["donor.survival_time"]

    def test_is_array_created_false_is_ignored(self):
        analysis = analyze(
            _diff(
                ("donor.a", {"isArray": {"type": "created", "data": False}}),
                ("donor.b", {"isArray": {"type": "updated", "data": True}}),
            )
        )
        assert analysis.is_array_designation_changes == ["donor.b"]

    def test_empty_and_missing_nodes_are_skipped(self):
        analysis = analyze({"donor.a": FieldDiff.from_dict({"diff": None}), "donor.b": None})
        assert analysis.to_dict() == analyze({}).to_dict()

    def test_wire_shape(self):
        analysis = analyze(
            _wire_diff(factories.vital_status_diff(factories.VITAL_STATUS_V1, factories.VITAL_STATUS_V2))
        )

        updated = analysis.restrictions_changes.code_list.updated
        assert [c.field for c in updated] == ["donor.vital_status"]
        assert updated[0].definition == {"added": [], "deleted": ["Unknown"]}


class TestAnalyzeRestrictions:
    def test_whole_restrictions_object_created(self):
        analysis = analyze(
            _diff(
                (
                    "donor.cause_of_death",
                    {
                        "restrictions": {
                            "type": "created",
                            "data": {"codeList": ["A", "B"], "required": True, "regex": ""},
                        }
                    },
                )
            )
        )

        changes = analysis.restrictions_changes
        assert [c.definition for c in changes.code_list.created] == [["A", "B"]]
        assert [c.definition for c in changes.required.created] == [True]
        # Empty values carry no restriction
        assert changes.regex.created == []

    def test_nested_range_edit_without_type_is_an_update(self):
        analysis = analyze(
            _diff(
                (
                    "specimen.percent_tumour_cells",
                    {"restrictions": {"range": {"max": {"type": "updated", "data": 100}}}},
                )
            )
        )

        updated = analysis.restrictions_changes.range.updated
        assert [c.field for c in updated] == ["specimen.percent_tumour_cells"]
        assert updated[0].definition == {"max": {"type": "updated", "data": 100}}

    def test_deleted_restriction(self):
        analysis = analyze(
            _diff(("donor.x", {"restrictions": {"regex": {"type": "deleted", "data": "^a$"}}}))
        )
        assert [c.field for c in analysis.restrictions_changes.regex.deleted] == ["donor.x"]


class TestAnalyzeMeta:
    def test_core_switched_on_and_off(self):
        analysis = analyze(
            _diff(
                ("donor.a", {"meta": {"core": {"type": "created", "data": True}}}),
                ("donor.b", {"meta": {"core": {"type": "updated", "data": False}}}),
                ("donor.c", {"meta": {"core": {"type": "deleted", "data": True}}}),
            )
        )

        core = analysis.meta_changes.core
        assert core.changed_to_core == ["donor.a"]
        assert core.changed_from_core == ["donor.b", "donor.c"]

    def test_whole_meta_object(self):
        analysis = analyze(
            _diff(
                ("donor.a", {"meta": {"type": "created", "data": {"core": True}}}),
                ("donor.b", {"meta": {"type": "deleted", "data": {"core": True}}}),
                ("donor.c", {"meta": {"type": "created", "data": {"displayName": "C"}}}),
            )
        )

        core = analysis.meta_changes.core
        assert core.changed_to_core == ["donor.a"]
        assert core.changed_from_core == ["donor.b"]


class TestFindInvalidatingChanges:
    def test_code_list_update_is_breaking(self):
        analysis = analyze(
            _wire_diff(factories.vital_status_diff(factories.VITAL_STATUS_V1, factories.VITAL_STATUS_V2))
        )
        assert find_invalidating_changes(analysis) == [
            InvalidatingChange("CODELIST_UPDATED", "donor.vital_status")
        ]

    def test_optional_field_addition_is_not_breaking(self):
        analysis = analyze(_wire_diff(factories.tumour_grade_added_diff()))
        assert find_invalidating_changes(analysis) == []

    def test_required_field_addition_is_breaking(self):
        definition = {"name": "gender", "restrictions": {"required": True}}
        analysis = analyze(_diff(("donor.gender", {"type": "created", "data": definition})))
        assert find_invalidating_changes(analysis) == [
            InvalidatingChange("REQUIRED_FIELD_ADDED", "donor.gender")
        ]

    def test_required_set_only_when_true(self):
        analysis = analyze(
            _diff(
                ("donor.a", {"restrictions": {"required": {"type": "updated", "data": True}}}),
                ("donor.b", {"restrictions": {"required": {"type": "updated", "data": False}}}),
            )
        )
        assert find_invalidating_changes(analysis) == [
            InvalidatingChange("REQUIRED_SET", "donor.a", True)
        ]

    def test_regex_change_carries_new_pattern(self):
        analysis = analyze(
            _diff(("donor.a", {"restrictions": {"regex": {"type": "updated", "data": "^[0-9]+$"}}}))
        )
        assert find_invalidating_changes(analysis) == [
            InvalidatingChange("REGEX_UPDATED", "donor.a", "^[0-9]+$")
        ]

    def test_removed_field_and_array_change(self):
        analysis = analyze(
            _diff(
                ("donor.a", {"type": "deleted", "data": {}}),
                ("specimen.b", {"isArray": {"type": "updated", "data": True}}),
            )
        )
        assert [c.type for c in find_invalidating_changes(analysis)] == [
            "FIELD_REMOVED",
            "IS_ARRAY_CHANGED",
        ]

    def test_deleted_restrictions_are_not_breaking(self):
        analysis = analyze(
            _diff(
                (
                    "donor.a",
                    {
                        "restrictions": {
                            "codeList": {"type": "deleted", "data": ["x"]},
                            "range": {"type": "deleted", "data": {"min": 0}},
                        }
                    },
                )
            )
        )
        assert find_invalidating_changes(analysis) == []

    def test_description_change_is_not_breaking(self):
        analysis = analyze(_diff(("donor.a", {"description": {"type": "updated", "data": "new"}})))
        assert find_invalidating_changes(analysis) == []


class TestEntityChangeSets:
    def test_breaking_entities_are_unique(self):
        analysis = analyze(
            _diff(
                ("donor.a", {"type": "deleted", "data": {}}),
                ("donor.b", {"restrictions": {"regex": {"type": "created", "data": "^x$"}}}),
                ("specimen.c", {"restrictions": {"script": {"type": "created", "data": ["x"]}}}),
            )
        )
        assert find_entities_with_breaking_changes(analysis) == ["donor", "specimen"]

    def test_core_designation_entities(self):
        stub = factories.dictionary_stub()
        analysis = analyze(_wire_diff(*stub["diffs"][0]["data"]))

        assert find_entities_with_core_designation_changes(analysis) == ["specimen"]
        assert find_entities_with_breaking_changes(analysis) == ["donor"]

    def test_core_changes_include_deleted_fields(self):
        analysis = analyze(
            _diff(
                ("treatment.a", {"type": "deleted", "data": {}}),
                ("donor.b", {"meta": {"core": {"type": "updated", "data": True}}}),
            )
        )
        assert find_entities_with_core_designation_changes(analysis) == ["treatment", "donor"]


def test_analysis_to_dict_is_json_ready():
    analysis = analyze(_wire_diff(factories.tumour_grade_added_diff()))
    data = analysis.to_dict()
    assert data["fields"]["added_fields"][0]["name"] == "specimen.tumour_grade"
    assert data["restrictions_changes"]["code_list"] == {"created": [], "updated": [], "deleted": []}

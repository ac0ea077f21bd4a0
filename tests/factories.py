"""Dictionary documents and donors shared by the test suite.

Versions:
  1.0  baseline
  2.0  drops "Unknown" from donor.vital_status, adds core field specimen.tumour_grade
  3.0  drops "Deceased" from donor.vital_status (fails pre-flight)
  4.0  published without a diff from 1.0
"""

from typing import Any

from clinical_dictionary.migration.ports import ClinicalEntity, Donor, SchemaMetadata

DICTIONARY_NAME = "ARGO Clinical Submission"
PROGRAM_ID = "PACA-CA"

VITAL_STATUS_V1 = ["Alive", "Deceased", "Not reported", "Unknown"]
VITAL_STATUS_V2 = ["Alive", "Deceased", "Not reported"]
VITAL_STATUS_V3 = ["Alive", "Not reported"]

TUMOUR_GRADE_FIELD = {
    "name": "tumour_grade",
    "valueType": "string",
    "description": "Grade of the tumour",
    "meta": {"core": True},
}


def _vital_status_field(code_list: list[str]) -> dict:
    return {
        "name": "vital_status",
        "valueType": "string",
        "description": "Donor's last known state of living or deceased.",
        "meta": {"core": True},
        "restrictions": {"codeList": list(code_list), "required": True},
    }


def donor_schema(vital_status: list[str]) -> dict:
    return {
        "name": "donor",
        "description": "Donor information",
        "fields": [
            {
                "name": "submitter_donor_id",
                "valueType": "string",
                "description": "Unique identifier of the donor",
                "meta": {"key": True, "examples": "90234,BLD_donor_89"},
                "restrictions": {"required": True, "regex": r"^[A-Za-z0-9\-\._]{1,64}$"},
            },
            {
                "name": "program_id",
                "valueType": "string",
                "description": "Program identifier",
                "restrictions": {"required": True},
            },
            _vital_status_field(vital_status),
            {
                "name": "survival_time",
                "valueType": "integer",
                "description": "Days from diagnosis to death or last follow up",
                "restrictions": {"range": {"min": 0}},
            },
            {
                "name": "cause_of_death",
                "valueType": "string",
                "description": "Cause of the donor's death",
                "restrictions": {
                    "codeList": ["Died of cancer", "Died of other reasons", "Unknown"]
                },
            },
        ],
    }


def specimen_schema(with_tumour_grade: bool = False) -> dict:
    fields: list[dict[str, Any]] = [
        {
            "name": "program_id",
            "valueType": "string",
            "restrictions": {"required": True},
        },
        {
            "name": "submitter_donor_id",
            "valueType": "string",
            "restrictions": {"required": True},
        },
        {
            "name": "submitter_specimen_id",
            "valueType": "string",
            "meta": {"key": True},
            "restrictions": {"required": True},
        },
        {
            "name": "percent_tumour_cells",
            "valueType": "number",
            "restrictions": {"range": {"min": 0, "max": 1}},
        },
        {
            "name": "specimen_laterality",
            "valueType": "string",
            "meta": {"default": "Not applicable"},
            "restrictions": {"codeList": ["Left", "Right", "Not applicable"]},
        },
    ]
    if with_tumour_grade:
        fields.append(dict(TUMOUR_GRADE_FIELD))
    return {"name": "specimen", "description": "Specimen information", "fields": fields}


def dictionary_doc(
    version: str,
    vital_status: list[str] = VITAL_STATUS_V1,
    with_tumour_grade: bool = False,
) -> dict:
    return {
        "name": DICTIONARY_NAME,
        "version": version,
        "schemas": [donor_schema(vital_status), specimen_schema(with_tumour_grade)],
    }


def vital_status_diff(before: list[str], after: list[str]) -> list:
    return [
        "donor.vital_status",
        {
            "left": _vital_status_field(before),
            "right": _vital_status_field(after),
            "diff": {
                "restrictions": {
                    "codeList": {
                        "type": "updated",
                        "data": {
                            "added": [v for v in after if v not in before],
                            "deleted": [v for v in before if v not in after],
                        },
                    }
                }
            },
        },
    ]


def tumour_grade_added_diff() -> list:
    return [
        "specimen.tumour_grade",
        {
            "left": None,
            "right": dict(TUMOUR_GRADE_FIELD),
            "diff": {"type": "created", "data": dict(TUMOUR_GRADE_FIELD)},
        },
    ]


def dictionary_stub() -> dict:
    """Document served by a file:// dictionary service URL."""
    return {
        "dictionaries": [
            dictionary_doc("1.0"),
            dictionary_doc("2.0", VITAL_STATUS_V2, with_tumour_grade=True),
            dictionary_doc("3.0", VITAL_STATUS_V3),
            dictionary_doc("4.0"),
        ],
        "diffs": [
            {
                "name": DICTIONARY_NAME,
                "fromVersion": "1.0",
                "toVersion": "2.0",
                "data": [
                    vital_status_diff(VITAL_STATUS_V1, VITAL_STATUS_V2),
                    tumour_grade_added_diff(),
                ],
            },
            {
                "name": DICTIONARY_NAME,
                "fromVersion": "1.0",
                "toVersion": "3.0",
                "data": [vital_status_diff(VITAL_STATUS_V1, VITAL_STATUS_V3)],
            },
        ],
    }


def make_donor(
    submitter_id: str,
    vital_status: str = "Alive",
    donor_id: int | None = None,
    program_id: str = PROGRAM_ID,
    schema_version: str = "1.0",
    is_valid: bool = True,
    completion_stats: dict | None = None,
    specimens: list[dict] | None = None,
) -> Donor:
    return Donor(
        donor_id=donor_id,
        submitter_id=submitter_id,
        program_id=program_id,
        schema_metadata=SchemaMetadata(
            is_valid=is_valid,
            last_valid_schema_version=schema_version,
            original_schema_version=schema_version,
        ),
        completion_stats=(
            {"core_completion_percentage": 1.0} if completion_stats is None else completion_stats
        ),
        clinical_info={
            "submitter_donor_id": submitter_id,
            "program_id": program_id,
            "vital_status": vital_status,
            "survival_time": 120,
        },
        specimens=[ClinicalEntity(clinical_info=s) for s in specimens or []],
    )


def make_specimen(submitter_donor_id: str, specimen_id: str, percent_tumour_cells: float = 0.5) -> dict:
    return {
        "program_id": PROGRAM_ID,
        "submitter_donor_id": submitter_donor_id,
        "submitter_specimen_id": specimen_id,
        "percent_tumour_cells": percent_tumour_cells,
    }

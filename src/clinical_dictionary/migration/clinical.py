"""Clinical entity catalogue.

Maps dictionary schema names to the entities nested inside a donor document,
and lists the fields and code list values the rest of the platform relies on.
A new dictionary that drops any of them is rejected before migration.
"""

from enum import Enum
from typing import Any, Mapping

from clinical_dictionary.migration.ports import ClinicalEntity, Donor


class ClinicalEntityName(str, Enum):
    REGISTRATION = "sample_registration"
    DONOR = "donor"
    SPECIMEN = "specimen"
    PRIMARY_DIAGNOSIS = "primary_diagnosis"
    FAMILY_HISTORY = "family_history"
    TREATMENT = "treatment"
    CHEMOTHERAPY = "chemotherapy"
    IMMUNOTHERAPY = "immunotherapy"
    SURGERY = "surgery"
    RADIATION = "radiation"
    FOLLOW_UP = "follow_up"
    HORMONE_THERAPY = "hormone_therapy"
    EXPOSURE = "exposure"
    COMORBIDITY = "comorbidity"
    BIOMARKER = "biomarker"


THERAPY_ENTITIES = frozenset(
    {
        ClinicalEntityName.CHEMOTHERAPY,
        ClinicalEntityName.IMMUNOTHERAPY,
        ClinicalEntityName.SURGERY,
        ClinicalEntityName.RADIATION,
        ClinicalEntityName.HORMONE_THERAPY,
    }
)

# Donor attribute holding each list-valued entity
_DONOR_COLLECTIONS = {
    ClinicalEntityName.SPECIMEN: "specimens",
    ClinicalEntityName.PRIMARY_DIAGNOSIS: "primary_diagnoses",
    ClinicalEntityName.FAMILY_HISTORY: "family_history",
    ClinicalEntityName.TREATMENT: "treatments",
    ClinicalEntityName.FOLLOW_UP: "follow_ups",
    ClinicalEntityName.EXPOSURE: "exposure",
    ClinicalEntityName.COMORBIDITY: "comorbidity",
    ClinicalEntityName.BIOMARKER: "biomarker",
}


# --- Fields other services depend on ---

_COMMON_THERAPY_FIELDS = ["program_id", "submitter_donor_id", "submitter_treatment_id"]
_RXNORM_FIELDS = ["drug_name", "drug_rxnormcui"]

REQUIRED_ENTITY_FIELDS: dict[str, list[str]] = {
    ClinicalEntityName.REGISTRATION.value: [
        "program_id",
        "submitter_donor_id",
        "gender",
        "submitter_specimen_id",
        "specimen_tissue_source",
        "tumour_normal_designation",
        "specimen_type",
        "submitter_sample_id",
        "sample_type",
    ],
    ClinicalEntityName.DONOR.value: [
        "program_id",
        "submitter_donor_id",
        "vital_status",
        "survival_time",
        "cause_of_death",
    ],
    ClinicalEntityName.SPECIMEN.value: [
        "program_id",
        "submitter_donor_id",
        "submitter_specimen_id",
        "specimen_acquisition_interval",
        "pathological_tumour_staging_system",
        "pathological_t_category",
        "pathological_n_category",
        "pathological_m_category",
        "pathological_stage_group",
        "tumour_grading_system",
        "tumour_grade",
        "percent_tumour_cells",
        "percent_proliferating_cells",
        "percent_stromal_cells",
        "percent_necrosis",
        "percent_inflammatory_tissue",
        "reference_pathology_confirmed",
        "tumour_histological_type",
        "submitter_primary_diagnosis_id",
    ],
    ClinicalEntityName.PRIMARY_DIAGNOSIS.value: [
        "program_id",
        "submitter_donor_id",
        "submitter_primary_diagnosis_id",
        "cancer_type_code",
        "age_at_diagnosis",
        "clinical_tumour_staging_system",
        "clinical_stage_group",
        "clinical_t_category",
        "clinical_n_category",
        "clinical_m_category",
    ],
    ClinicalEntityName.FAMILY_HISTORY.value: [
        "program_id",
        "submitter_donor_id",
        "family_relative_id",
    ],
    ClinicalEntityName.EXPOSURE.value: ["program_id", "submitter_donor_id"],
    ClinicalEntityName.COMORBIDITY.value: [
        "program_id",
        "submitter_donor_id",
        "comorbidity_type_code",
    ],
    ClinicalEntityName.BIOMARKER.value: [
        "program_id",
        "submitter_donor_id",
        "submitter_specimen_id",
        "submitter_primary_diagnosis_id",
        "submitter_treatment_id",
        "submitter_follow_up_id",
        "test_interval",
    ],
    ClinicalEntityName.FOLLOW_UP.value: [
        "program_id",
        "submitter_donor_id",
        "submitter_follow_up_id",
        "submitter_primary_diagnosis_id",
        "submitter_treatment_id",
        "interval_of_followup",
    ],
    ClinicalEntityName.TREATMENT.value: [
        "program_id",
        "submitter_donor_id",
        "submitter_treatment_id",
        "treatment_type",
        "submitter_primary_diagnosis_id",
        "treatment_start_interval",
    ],
    ClinicalEntityName.CHEMOTHERAPY.value: _RXNORM_FIELDS + _COMMON_THERAPY_FIELDS,
    ClinicalEntityName.RADIATION.value: ["radiation_therapy_modality"] + _COMMON_THERAPY_FIELDS,
    ClinicalEntityName.HORMONE_THERAPY.value: _RXNORM_FIELDS + _COMMON_THERAPY_FIELDS,
    ClinicalEntityName.IMMUNOTHERAPY.value: _RXNORM_FIELDS
    + _COMMON_THERAPY_FIELDS
    + ["immunotherapy_type"],
    ClinicalEntityName.SURGERY.value: list(_COMMON_THERAPY_FIELDS),
}

TREATMENT_TYPE_BY_THERAPY = {
    ClinicalEntityName.CHEMOTHERAPY.value: "Chemotherapy",
    ClinicalEntityName.RADIATION.value: "Radiation therapy",
    ClinicalEntityName.HORMONE_THERAPY.value: "Hormonal therapy",
    ClinicalEntityName.IMMUNOTHERAPY.value: "Immunotherapy",
    ClinicalEntityName.SURGERY.value: "Surgery",
}

KNOWN_FIELD_CODE_LISTS: dict[str, dict[str, list[str]]] = {
    ClinicalEntityName.DONOR.value: {"vital_status": ["Deceased"]},
    ClinicalEntityName.TREATMENT.value: {"treatment_type": list(TREATMENT_TYPE_BY_THERAPY.values())},
}


# --- Donor document access ---


def get_clinical_objects(donor: Donor, entity_name: str) -> list[Any]:
    """Return the objects of one entity type nested in a donor document."""
    if entity_name == ClinicalEntityName.DONOR.value:
        return [donor]

    try:
        entity = ClinicalEntityName(entity_name)
    except ValueError:
        return []

    if entity in THERAPY_ENTITIES:
        return [
            therapy
            for treatment in donor.treatments
            for therapy in treatment.therapies
            if therapy.therapy_type == entity_name
        ]

    attribute = _DONOR_COLLECTIONS.get(entity)
    if attribute is None:
        return []
    return list(getattr(donor, attribute))


def get_clinical_records(donor: Donor, entity_name: str) -> list[dict[str, Any]]:
    """Stored clinical_info records of one entity type, skipping empty ones."""
    objects: list[Donor | ClinicalEntity] = get_clinical_objects(donor, entity_name)
    return [dict(obj.clinical_info) for obj in objects if obj.clinical_info]


def to_raw_record(record: Mapping[str, Any]) -> dict[str, Any]:
    """Render a stored typed record back to the raw string form the validator reads."""
    raw: dict[str, Any] = {}
    for name, value in record.items():
        if value is None:
            raw[name] = ""
        elif isinstance(value, list):
            raw[name] = [_to_raw_scalar(v) for v in value]
        else:
            raw[name] = _to_raw_scalar(value)
    return raw


def _to_raw_scalar(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)

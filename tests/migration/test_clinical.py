"""Tests for clinical_dictionary.migration.clinical -- donor document access."""

from clinical_dictionary.migration.clinical import (
    KNOWN_FIELD_CODE_LISTS,
    REQUIRED_ENTITY_FIELDS,
    ClinicalEntityName,
    get_clinical_objects,
    get_clinical_records,
    to_raw_record,
)
from clinical_dictionary.migration.ports import Therapy, Treatment

import factories


def test_donor_entity_is_the_donor_itself():
    donor = factories.make_donor("DO-1")
    assert get_clinical_objects(donor, "donor") == [donor]
    assert get_clinical_records(donor, "donor")[0]["vital_status"] == "Alive"


def test_nested_collections():
    donor = factories.make_donor(
        "DO-1", specimens=[factories.make_specimen("DO-1", "SP-1"), factories.make_specimen("DO-1", "SP-2")]
    )

    records = get_clinical_records(donor, "specimen")

    assert [r["submitter_specimen_id"] for r in records] == ["SP-1", "SP-2"]
    assert get_clinical_records(donor, "follow_up") == []


def test_therapies_come_from_treatments():
    donor = factories.make_donor("DO-1")
    donor.treatments = [
        Treatment(
            clinical_info={"submitter_treatment_id": "T-1"},
            therapies=[
                Therapy(therapy_type="chemotherapy", clinical_info={"drug_name": "cisplatin"}),
                Therapy(therapy_type="radiation", clinical_info={"radiation_therapy_modality": "x"}),
            ],
        ),
        Treatment(
            clinical_info={"submitter_treatment_id": "T-2"},
            therapies=[Therapy(therapy_type="chemotherapy", clinical_info={"drug_name": "gemcitabine"})],
        ),
    ]

    chemo = get_clinical_records(donor, "chemotherapy")

    assert [r["drug_name"] for r in chemo] == ["cisplatin", "gemcitabine"]
    assert len(get_clinical_records(donor, "treatment")) == 2


def test_empty_and_unknown_entities():
    donor = factories.make_donor("DO-1")
    assert get_clinical_objects(donor, "not_an_entity") == []
    assert get_clinical_records(donor, "sample_registration") == []


def test_to_raw_record():
    raw = to_raw_record(
        {"survival_time": 120.0, "smoker": True, "notes": None, "scores": [1.5, 2.0], "id": "DO-1"}
    )
    assert raw == {
        "survival_time": "120",
        "smoker": "true",
        "notes": "",
        "scores": ["1.5", "2"],
        "id": "DO-1",
    }


def test_catalogue_covers_every_entity():
    assert set(REQUIRED_ENTITY_FIELDS) == {e.value for e in ClinicalEntityName}
    assert KNOWN_FIELD_CODE_LISTS["donor"] == {"vital_status": ["Deceased"]}

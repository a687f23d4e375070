"""Tests for HL7 v2 to FHIR R4 translation."""

import pytest

from app.schemas.hl7 import CodedElement, OBXSegment
from app.services.hl7_parser import parse_message, parse_typed
from app.services.hl7_translator import (
    HL7ToFHIRTranslator,
    codeable_concept,
    translate_date,
    translate_datetime,
)

from tests.conftest import ADT_A01, ORM_O01, ORU_R01, TEST_TENANT_ID


@pytest.fixture
def translator() -> HL7ToFHIRTranslator:
    return HL7ToFHIRTranslator(str(TEST_TENANT_ID))


def _resources(result, resource_type: str) -> list[dict]:
    return [
        e["resource"] for e in result.bundle["entry"] if e["resource"]["resourceType"] == resource_type
    ]


class TestValueHelpers:
    def test_translate_date(self):
        assert translate_date("19800115") == "1980-01-15"
        assert translate_date("198001") is None
        assert translate_date(None) is None

    def test_translate_datetime_pads_missing_time(self):
        assert translate_datetime("20240301") == "2024-03-01T00:00:00Z"
        assert translate_datetime("202403010830") == "2024-03-01T08:30:00Z"
        assert translate_datetime("20240301083015") == "2024-03-01T08:30:15Z"

    def test_codeable_concept_maps_system(self):
        concept = codeable_concept(CodedElement(identifier="2951-2", text="Sodium", coding_system="LN"))
        assert concept["coding"][0] == {"system": "http://loinc.org", "code": "2951-2", "display": "Sodium"}
        assert concept["text"] == "Sodium"

    def test_codeable_concept_unknown_system_is_oid(self):
        concept = codeable_concept(CodedElement(identifier="X", coding_system="1.2.3"))
        assert concept["coding"][0]["system"] == "urn:oid:1.2.3"

    def test_codeable_concept_missing(self):
        assert codeable_concept(None) == {"text": "Unknown"}


class TestADT:
    def test_bundle_shape(self, translator):
        result = translator.translate(parse_typed(ADT_A01).message)
        assert result.success
        assert result.bundle["resourceType"] == "Bundle"
        assert result.bundle["type"] == "collection"
        assert result.source_message_id == "MSG00001"
        assert result.source_message_type == "ADT^A01"
        types = [e["resource"]["resourceType"] for e in result.bundle["entry"]]
        assert types == ["Patient", "Encounter", "AllergyIntolerance", "Condition", "Coverage"]

    def test_full_urls_and_meta_source(self, translator):
        result = translator.translate(parse_typed(ADT_A01).message)
        for entry in result.bundle["entry"]:
            assert entry["fullUrl"] == f"urn:uuid:{entry['resource']['id']}"
            assert entry["resource"]["meta"]["source"] == "HL7v2#MSG00001"

    def test_patient(self, translator):
        patient = _resources(translator.translate(parse_typed(ADT_A01).message), "Patient")[0]
        assert patient["gender"] == "male"
        assert patient["birthDate"] == "1980-01-15"
        assert patient["name"][0]["family"] == "DOE"
        assert patient["name"][0]["given"] == ["JOHN", "Q"]
        assert patient["name"][0]["use"] == "official"
        mrn = patient["identifier"][0]
        assert mrn["value"] == "MRN12345"
        assert mrn["type"]["coding"][0]["code"] == "MR"
        assert mrn["system"] == "urn:oid:HOSP:mr"
        ssn = patient["identifier"][1]
        assert ssn["system"] == "http://hl7.org/fhir/sid/us-ssn"
        assert patient["address"][0]["city"] == "SPRINGFIELD"
        assert patient["telecom"][0] == {"system": "phone", "value": "(555)555-1234", "use": "home"}
        assert patient["maritalStatus"]["coding"][0]["code"] == "M"
        assert patient["meta"]["profile"] == [
            "http://hl7.org/fhir/us/core/StructureDefinition/us-core-patient"
        ]

    def test_encounter(self, translator):
        result = translator.translate(parse_typed(ADT_A01).message)
        patient = _resources(result, "Patient")[0]
        encounter = _resources(result, "Encounter")[0]
        assert encounter["status"] == "in-progress"
        assert encounter["class"]["code"] == "IMP"
        assert encounter["subject"] == {"reference": f"urn:uuid:{patient['id']}"}
        assert encounter["period"] == {"start": "2024-03-01T08:30:00Z"}
        assert encounter["identifier"][0]["value"] == "V0001"
        assert encounter["participant"][0]["individual"]["display"] == "DR ROBERT SMITH"
        assert encounter["location"][0]["location"]["display"] == "4WEST - 401 - A"
        assert encounter["hospitalization"]["admitSource"]["coding"][0]["code"] == "7"

    def test_discharge_event_finishes_encounter(self, translator):
        raw = ADT_A01.replace("ADT^A01^ADT_A01", "ADT^A03")
        encounter = _resources(translator.translate(parse_typed(raw).message), "Encounter")[0]
        assert encounter["status"] == "finished"

    def test_allergy_condition_coverage(self, translator):
        result = translator.translate(parse_typed(ADT_A01).message)
        patient_ref = {"reference": f"urn:uuid:{_resources(result, 'Patient')[0]['id']}"}

        allergy = _resources(result, "AllergyIntolerance")[0]
        assert allergy["category"] == ["medication"]
        assert allergy["criticality"] == "high"
        assert allergy["code"]["coding"][0]["system"] == "http://www.nlm.nih.gov/research/umls/rxnorm"
        assert allergy["reaction"][0]["manifestation"] == [{"text": "HIVES"}]
        assert allergy["onsetDateTime"] == "2010-01-01"
        assert allergy["patient"] == patient_ref

        condition = _resources(result, "Condition")[0]
        assert condition["code"]["coding"][0]["code"] == "I50.9"
        assert condition["category"][0]["coding"][0]["code"] == "encounter-diagnosis"
        assert condition["subject"] == patient_ref

        coverage = _resources(result, "Coverage")[0]
        assert coverage["payor"] == [{"display": "ACME HEALTH"}]
        assert coverage["period"] == {"start": "2024-01-01", "end": "2024-12-31"}
        assert coverage["class"][0]["value"] == "GRP100"
        assert coverage["beneficiary"] == patient_ref


class TestORU:
    def test_report_references_observations(self, translator):
        result = translator.translate(parse_typed(ORU_R01).message)
        assert result.success
        observations = _resources(result, "Observation")
        report = _resources(result, "DiagnosticReport")[0]
        assert len(observations) == 2
        assert report["status"] == "final"
        assert report["result"] == [{"reference": f"urn:uuid:{o['id']}"} for o in observations]
        assert report["identifier"][0]["value"] == "ORD100"
        assert report["identifier"][1]["value"] == "FIL200"

    def test_numeric_observation(self, translator):
        result = translator.translate(parse_typed(ORU_R01).message)
        potassium = _resources(result, "Observation")[1]
        assert potassium["status"] == "final"
        assert potassium["code"]["coding"][0]["code"] == "2823-3"
        assert potassium["valueQuantity"] == {
            "value": 5.9,
            "unit": "mmol/L",
            "system": "http://unitsofmeasure.org",
            "code": "mmol/L",
        }
        assert potassium["referenceRange"] == [{"text": "3.5-5.1"}]
        assert potassium["interpretation"][0]["coding"][0]["code"] == "H"
        assert potassium["effectiveDateTime"] == "2024-03-02T09:00:00Z"

    def test_untyped_message_still_groups(self, translator):
        result = translator.translate(parse_message(ORU_R01).message)
        report = _resources(result, "DiagnosticReport")[0]
        assert len(report["result"]) == 2


class TestObservationValues:
    def _value(self, translator, value_type, value, units=None):
        obx = OBXSegment(
            value_type=value_type,
            observation_identifier=CodedElement(identifier="X"),
            observation_values=[value],
            units=units,
        )
        return translator.obx_to_observation(obx)

    def test_non_numeric_nm_becomes_string(self, translator):
        assert self._value(translator, "NM", "pending")["valueString"] == "pending"

    def test_coded_value(self, translator):
        observation = self._value(translator, "CWE", "260385009^Negative^SCT")
        coding = observation["valueCodeableConcept"]["coding"][0]
        assert coding == {"system": "http://snomed.info/sct", "code": "260385009", "display": "Negative"}

    def test_structured_numeric(self, translator):
        observation = self._value(translator, "SN", "<^0.01")
        assert observation["valueQuantity"] == {"value": 0.01, "comparator": "<"}

    def test_text_value(self, translator):
        assert self._value(translator, "TX", "see note")["valueString"] == "see note"


class TestORM:
    def test_service_request(self, translator):
        result = translator.translate(parse_typed(ORM_O01).message)
        assert result.success
        request = _resources(result, "ServiceRequest")[0]
        assert request["status"] == "active"
        assert request["intent"] == "order"
        assert request["priority"] == "stat"
        assert request["code"]["coding"][0]["code"] == "71046"
        assert request["note"] == [{"text": "Shortness of breath"}]
        assert request["authoredOn"] == "2024-03-03T12:00:00Z"
        assert request["requester"]["display"] == "ALICE JONES"


class TestUnsupported:
    def test_unsupported_type_extracts_patient_with_warning(self, translator):
        raw = "MSH|^~\\&|A|B|C|D|20240101||SIU^S12|S1|P|2.5.1\rPID|1||M1^^^H^MR||DOE^JANE\r"
        result = translator.translate(parse_typed(raw).message)
        assert result.success
        assert "Unsupported message type: SIU" in result.warnings[0]
        assert [e["resource"]["resourceType"] for e in result.bundle["entry"]] == ["Patient"]

    def test_no_resources_is_failure(self, translator):
        raw = "MSH|^~\\&|A|B|C|D|20240101||SIU^S12|S1|P|2.5.1\r"
        result = translator.translate(parse_typed(raw).message)
        assert not result.success
        assert result.bundle is None
        assert "No resources" in result.errors[0]

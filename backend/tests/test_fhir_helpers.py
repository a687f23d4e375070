"""Tests for shared FHIR helper utilities."""


from app.utils.fhir_helpers import (
    extract_first_coding,
    extract_identifier,
    extract_patient_demographics,
    extract_patient_fhir_id,
    extract_reference_id,
    resolve_bundle_references,
)


class TestExtractReferenceId:
    """Tests for extract_reference_id function."""

    def test_extracts_from_urn_uuid(self):
        """Test extraction from urn:uuid format."""
        result = extract_reference_id("urn:uuid:abc-123-def")
        assert result == "abc-123-def"

    def test_extracts_from_resource_reference(self):
        """Test extraction from ResourceType/id format."""
        result = extract_reference_id("Patient/patient-123")
        assert result == "patient-123"

    def test_returns_none_for_none(self):
        assert extract_reference_id(None) is None

    def test_returns_none_for_empty_string(self):
        assert extract_reference_id("") is None

    def test_returns_plain_id_unchanged(self):
        assert extract_reference_id("plain-id-no-prefix") == "plain-id-no-prefix"


class TestResolveBundleReferences:
    def test_rewrites_local_references(self):
        bundle = {"entry": [
            {"fullUrl": "urn:uuid:p1", "resource": {"resourceType": "Patient", "id": "p1"}},
            {"fullUrl": "urn:uuid:o1", "resource": {
                "resourceType": "Observation", "id": "o1", "subject": {"reference": "urn:uuid:p1"},
            }},
            {"fullUrl": "urn:uuid:r1", "resource": {
                "resourceType": "DiagnosticReport",
                "id": "r1",
                "subject": {"reference": "urn:uuid:p1"},
                "result": [{"reference": "urn:uuid:o1"}],
            }},
        ]}
        assert resolve_bundle_references(bundle) == 3
        report = bundle["entry"][2]["resource"]
        assert report["subject"]["reference"] == "Patient/p1"
        assert report["result"] == [{"reference": "Observation/o1"}]

    def test_missing_id_taken_from_full_url(self):
        bundle = {"entry": [
            {"fullUrl": "urn:uuid:p9", "resource": {"resourceType": "Patient"}},
            {"resource": {"resourceType": "Condition", "subject": {"reference": "urn:uuid:p9"}}},
        ]}
        resolve_bundle_references(bundle)
        assert bundle["entry"][0]["resource"]["id"] == "p9"
        assert bundle["entry"][1]["resource"]["subject"]["reference"] == "Patient/p9"

    def test_external_references_untouched(self):
        bundle = {"entry": [
            {"resource": {"resourceType": "Condition", "subject": {"reference": "urn:uuid:elsewhere"}}},
            {"resource": {"resourceType": "Encounter", "subject": {"reference": "Patient/p2"}}},
        ]}
        assert resolve_bundle_references(bundle) == 0
        assert bundle["entry"][0]["resource"]["subject"]["reference"] == "urn:uuid:elsewhere"


class TestExtractFirstCoding:
    def test_returns_first(self):
        concept = {"coding": [{"code": "a"}, {"code": "b"}]}
        assert extract_first_coding(concept) == {"code": "a"}

    def test_empty(self):
        assert extract_first_coding({}) == {}


class TestExtractPatientFhirId:
    """Tests for patient compartment resolution."""

    def test_patient_is_its_own_compartment(self):
        assert extract_patient_fhir_id({"resourceType": "Patient", "id": "p1"}) == "p1"

    def test_subject_reference(self):
        resource = {"resourceType": "Observation", "subject": {"reference": "Patient/p2"}}
        assert extract_patient_fhir_id(resource) == "p2"

    def test_patient_reference(self):
        resource = {"resourceType": "AllergyIntolerance", "patient": {"reference": "urn:uuid:p3"}}
        assert extract_patient_fhir_id(resource) == "p3"

    def test_beneficiary_reference(self):
        resource = {"resourceType": "Coverage", "beneficiary": {"reference": "Patient/p4"}}
        assert extract_patient_fhir_id(resource) == "p4"

    def test_placeholder_is_no_patient(self):
        resource = {"resourceType": "Condition", "subject": {"reference": "Patient/unknown"}}
        assert extract_patient_fhir_id(resource) is None

    def test_no_reference(self):
        assert extract_patient_fhir_id({"resourceType": "Organization", "id": "o1"}) is None


class TestDemographics:
    def test_extracts_matching_fields(self):
        patient = {
            "resourceType": "Patient",
            "identifier": [
                {"type": {"coding": [{"code": "MR"}]}, "value": "MRN1"},
                {"type": {"coding": [{"code": "SS"}]}, "value": "123-45-6789"},
            ],
            "name": [
                {"use": "nickname", "given": ["Johnny"]},
                {"use": "official", "family": "Doe", "given": ["John", "Q"]},
            ],
            "telecom": [{"system": "email", "value": "j@example.com"}, {"system": "phone", "value": "555-1234"}],
            "gender": "male",
            "birthDate": "1980-01-15",
            "address": [{"line": ["123 Main St"], "city": "Springfield", "state": "IL", "postalCode": "62701"}],
        }
        demographics = extract_patient_demographics(patient)
        assert demographics == {
            "first_name": "John",
            "last_name": "Doe",
            "date_of_birth": "1980-01-15",
            "gender": "male",
            "phone": "555-1234",
            "address": "123 Main St",
            "city": "Springfield",
            "state": "IL",
            "zip_code": "62701",
            "mrn": "MRN1",
            "ssn_last_four": "6789",
        }

    def test_missing_values_are_none(self):
        demographics = extract_patient_demographics({"resourceType": "Patient"})
        assert all(v is None for v in demographics.values())

    def test_extract_identifier_by_type(self):
        patient = {"identifier": [{"type": {"coding": [{"code": "MR"}]}, "value": "X"}]}
        assert extract_identifier(patient, "MR") == "X"
        assert extract_identifier(patient, "SS") is None

"""Shared FHIR resource parsing utilities.

Consolidates common FHIR extraction patterns used across services.
All functions are pure and handle missing/malformed data gracefully.
"""

from typing import Any

# Elements that point at the patient compartment, in lookup order
PATIENT_REFERENCE_ELEMENTS = ("subject", "patient", "beneficiary")


def extract_reference_id(reference: str | None) -> str | None:
    """Extract FHIR ID from a reference string.

    Handles both formats:
    - "urn:uuid:abc-123" -> "abc-123"
    - "Patient/abc-123" -> "abc-123"

    Args:
        reference: FHIR reference string

    Returns:
        Extracted ID or None if reference is empty/None
    """
    if not reference:
        return None

    if reference.startswith("urn:uuid:"):
        return reference[9:]  # len("urn:uuid:")
    elif "/" in reference:
        return reference.split("/")[-1]
    return reference


def resolve_bundle_references(bundle: dict[str, Any]) -> int:
    """Rewrite bundle-local "urn:uuid:" references to "ResourceType/id", in place.

    An entry whose resource has no id takes it from its urn:uuid fullUrl.
    References to a urn:uuid outside the bundle are left unchanged.

    Args:
        bundle: FHIR Bundle dict with an "entry" array.

    Returns:
        Number of references rewritten.
    """
    entries = bundle.get("entry", [])
    targets: dict[str, str] = {}
    for entry in entries:
        resource = entry.get("resource") or {}
        full_url = entry.get("fullUrl") or ""
        if not resource.get("resourceType") or not full_url.startswith("urn:uuid:"):
            continue
        if not resource.get("id"):
            resource["id"] = full_url[9:]
        targets[full_url] = f"{resource['resourceType']}/{resource['id']}"

    if not targets:
        return 0
    return sum(_rewrite_references(entry.get("resource"), targets) for entry in entries)


def _rewrite_references(node: Any, targets: dict[str, str]) -> int:
    rewritten = 0
    if isinstance(node, dict):
        for key, value in node.items():
            if key == "reference" and isinstance(value, str):
                if value in targets:
                    node[key] = targets[value]
                    rewritten += 1
            else:
                rewritten += _rewrite_references(value, targets)
    elif isinstance(node, list):
        for item in node:
            rewritten += _rewrite_references(item, targets)
    return rewritten


def extract_first_coding(codeable_concept: dict[str, Any]) -> dict[str, Any]:
    """Extract first coding from a FHIR CodeableConcept.

    Args:
        codeable_concept: FHIR CodeableConcept structure

    Returns:
        First coding dict or empty dict if none
    """
    codings = codeable_concept.get("coding", [])
    return codings[0] if codings else {}


def extract_patient_fhir_id(resource: dict[str, Any]) -> str | None:
    """Return the patient compartment id of a resource.

    A Patient is its own compartment. Other resources are checked for
    subject, patient and beneficiary references. The "Patient/unknown"
    placeholder counts as no patient.
    """
    if resource.get("resourceType") == "Patient":
        return resource.get("id")

    for element in PATIENT_REFERENCE_ELEMENTS:
        value = resource.get(element)
        if isinstance(value, dict) and value.get("reference"):
            patient_id = extract_reference_id(value["reference"])
            if patient_id and patient_id != "unknown":
                return patient_id
    return None


def extract_identifier(resource: dict[str, Any], type_code: str) -> str | None:
    """Return the first identifier value whose type has the given v2-0203 code (MR, SS, ...)."""
    for identifier in resource.get("identifier", []):
        coding = extract_first_coding(identifier.get("type", {}))
        if coding.get("code") == type_code and identifier.get("value"):
            return identifier["value"]
    return None


def extract_patient_demographics(patient: dict[str, Any]) -> dict[str, Any]:
    """Flatten a FHIR Patient into the demographics used for identity matching.

    Args:
        patient: FHIR Patient resource

    Returns:
        Dict with first_name, last_name, date_of_birth, gender, phone,
        address, city, state, zip_code, mrn and ssn_last_four (missing values are None)
    """
    names = patient.get("name", [])
    official = next((n for n in names if n.get("use") == "official"), names[0] if names else {})
    given = official.get("given", [])

    telecom = patient.get("telecom", [])
    phone = next((t.get("value") for t in telecom if t.get("system") in (None, "phone", "sms")), None)

    addresses = patient.get("address", [])
    address = addresses[0] if addresses else {}
    lines = address.get("line", [])

    ssn = extract_identifier(patient, "SS")
    return {
        "first_name": given[0] if given else None,
        "last_name": official.get("family"),
        "date_of_birth": patient.get("birthDate"),
        "gender": patient.get("gender"),
        "phone": phone,
        "address": lines[0] if lines else None,
        "city": address.get("city"),
        "state": address.get("state"),
        "zip_code": address.get("postalCode"),
        "mrn": extract_identifier(patient, "MR"),
        "ssn_last_four": ssn[-4:] if ssn and len(ssn) >= 4 else None,
    }

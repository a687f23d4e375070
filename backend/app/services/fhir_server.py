"""FHIR R4 REST helpers: CapabilityStatement, OperationOutcome, Bundles and scopes."""

from datetime import datetime, timezone
from typing import Any

from app.models.fhir import FhirResource

FHIR_VERSION = "4.0.1"
FHIR_JSON = "application/fhir+json"

SUPPORTED_RESOURCE_TYPES = (
    "Patient",
    "Encounter",
    "Observation",
    "DiagnosticReport",
    "Condition",
    "AllergyIntolerance",
    "MedicationRequest",
    "Immunization",
    "Procedure",
    "ServiceRequest",
    "Coverage",
    "CarePlan",
    "CareTeam",
    "Goal",
    "DocumentReference",
)

SEARCH_PARAMS = (
    ("patient", "reference"),
    ("category", "token"),
    ("code", "token"),
    ("_count", "number"),
)

SCOPE_ACTIONS = {
    "read": ("read", "*", "r", "rs"),
    "write": ("write", "*", "c", "u", "d", "cud", "cruds"),
}


def is_supported(resource_type: str) -> bool:
    return resource_type in SUPPORTED_RESOURCE_TYPES


def capability_statement(base_url: str = "/api/fhir") -> dict[str, Any]:
    resources = [
        {
            "type": resource_type,
            "interaction": [{"code": "read"}, {"code": "search-type"}, {"code": "create"}],
            "searchParam": [{"name": name, "type": kind} for name, kind in SEARCH_PARAMS],
        }
        for resource_type in SUPPORTED_RESOURCE_TYPES
    ]
    return {
        "resourceType": "CapabilityStatement",
        "status": "active",
        "date": datetime.now(timezone.utc).date().isoformat(),
        "kind": "instance",
        "software": {"name": "WellFit Interop"},
        "implementation": {"description": "Tenant-scoped FHIR R4 store", "url": base_url},
        "fhirVersion": FHIR_VERSION,
        "format": ["json"],
        "rest": [{
            "mode": "server",
            "security": {
                "service": [{"coding": [{
                    "system": "http://terminology.hl7.org/CodeSystem/restful-security-service",
                    "code": "SMART-on-FHIR",
                }]}],
            },
            "resource": resources,
            "interaction": [{"code": "transaction"}, {"code": "batch"}],
        }],
    }


def operation_outcome(code: str, diagnostics: str, severity: str = "error") -> dict[str, Any]:
    """Single-issue OperationOutcome (codes: not-found, not-supported, invalid, forbidden)."""
    return {
        "resourceType": "OperationOutcome",
        "issue": [{"severity": severity, "code": code, "diagnostics": diagnostics}],
    }


def searchset_bundle(resource_type: str, resources: list[FhirResource], total: int) -> dict[str, Any]:
    return {
        "resourceType": "Bundle",
        "type": "searchset",
        "total": total,
        "entry": [
            {
                "fullUrl": f"{resource_type}/{resource.fhir_id}",
                "resource": resource.data,
                "search": {"mode": "match"},
            }
            for resource in resources
        ],
    }


def has_scope(scopes: list[str] | str | None, resource_type: str, action: str) -> bool:
    """Check SMART-style scopes such as ``patient/Observation.read`` or ``user/*.*``.

    Args:
        scopes: Space separated scope string or list of scopes.
        resource_type: FHIR resource type being accessed.
        action: "read" or "write".

    Returns:
        True if any scope grants the action on the resource type.
    """
    if not scopes:
        return False
    if isinstance(scopes, str):
        scopes = scopes.split()

    allowed = SCOPE_ACTIONS.get(action, ())
    for scope in scopes:
        context, _, rest = scope.partition("/")
        if context not in ("patient", "user", "system") or "." not in rest:
            continue
        scope_type, _, scope_action = rest.partition(".")
        if scope_type in ("*", resource_type) and scope_action in allowed:
            return True
    return False

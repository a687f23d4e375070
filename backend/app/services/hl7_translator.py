"""HL7 v2 to FHIR R4 translation.

Converts parsed HL7 messages into a FHIR collection Bundle:

- ADT: Patient, Encounter, AllergyIntolerance, Condition, Coverage
- ORU: Patient, Observation per OBX, DiagnosticReport per OBR
- ORM: Patient, ServiceRequest per order

Every resource gets a fresh uuid4 id, a meta.source tracing it back to the
originating message, and references to the Patient via the bundle's
urn:uuid fullUrl.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field

from app.schemas.hl7 import (
    AL1Segment,
    CodedElement,
    DG1Segment,
    ExtendedPerson,
    HL7Message,
    IN1Segment,
    OBRSegment,
    OBXSegment,
    ORCSegment,
    ORMMessage,
    ORUMessage,
    PersonLocation,
    PIDSegment,
    PV1Segment,
    PV2Segment,
)

logger = logging.getLogger(__name__)

US_CORE = "http://hl7.org/fhir/us/core/StructureDefinition"
TERMINOLOGY = "http://terminology.hl7.org/CodeSystem"
UCUM = "http://unitsofmeasure.org"
PATIENT_PLACEHOLDER = "Patient/unknown"

PROFILES = {
    "Patient": f"{US_CORE}/us-core-patient",
    "Encounter": f"{US_CORE}/us-core-encounter",
    "Observation": f"{US_CORE}/us-core-observation-lab",
    "DiagnosticReport": f"{US_CORE}/us-core-diagnosticreport-lab",
    "AllergyIntolerance": f"{US_CORE}/us-core-allergyintolerance",
    "Condition": f"{US_CORE}/us-core-condition",
    "ServiceRequest": f"{US_CORE}/us-core-servicerequest",
    "Coverage": f"{US_CORE}/us-core-coverage",
}

# =============================================================================
# Code mappings
# =============================================================================

GENDER_MAP = {"M": "male", "F": "female", "O": "other", "A": "other"}

ENCOUNTER_STATUS_MAP = {
    "A01": "in-progress",
    "A02": "in-progress",
    "A04": "in-progress",
    "A03": "finished",
    "A11": "cancelled",
    "A12": "cancelled",
    "A13": "cancelled",
    "A05": "planned",
    "A14": "planned",
    "A21": "onleave",
}

ENCOUNTER_CLASS_MAP = {
    "E": ("EMER", "emergency"),
    "I": ("IMP", "inpatient"),
    "O": ("AMB", "ambulatory"),
    "P": ("PRENC", "pre-admission"),
    "R": ("SS", "short stay"),
    "B": ("OBSENC", "observation"),
    "N": ("HH", "home health"),
}

REPORT_STATUS_MAP = {
    "O": "registered",
    "I": "partial",
    "S": "partial",
    "A": "preliminary",
    "P": "preliminary",
    "C": "corrected",
    "R": "amended",
    "F": "final",
    "X": "cancelled",
}

OBSERVATION_STATUS_MAP = {
    "C": "corrected",
    "D": "entered-in-error",
    "F": "final",
    "I": "registered",
    "P": "preliminary",
    "R": "amended",
    "S": "preliminary",
    "X": "cancelled",
}

ORDER_STATUS_MAP = {
    "A": "active",
    "IP": "active",
    "SC": "active",
    "CA": "revoked",
    "DC": "revoked",
    "CM": "completed",
    "ER": "entered-in-error",
    "HD": "on-hold",
}

ORDER_INTENT_MAP = {"RF": "reflex-order", "SC": "filler-order"}

PRIORITY_MAP = {
    "S": "stat",
    "STAT": "stat",
    "A": "asap",
    "ASAP": "asap",
    "U": "urgent",
    "URGENT": "urgent",
}

ALLERGY_CATEGORY_MAP = {
    "DA": "medication",
    "DRUG": "medication",
    "FA": "food",
    "FOOD": "food",
    "EA": "environment",
    "ENV": "environment",
    "PA": "environment",
    "POLLEN": "environment",
    "LA": "environment",
    "LATEX": "environment",
}

ALLERGY_CRITICALITY_MAP = {
    "SV": "high",
    "SEVERE": "high",
    "MO": "high",
    "MODERATE": "high",
    "MI": "low",
    "MILD": "low",
}

CONDITION_CATEGORY_MAP = {"W": "problem-list-item"}

NAME_USE_MAP = {
    "L": "official",
    "A": "usual",
    "D": "official",
    "M": "maiden",
    "N": "nickname",
    "S": "temp",
}

ADDRESS_USE_MAP = {"H": "home", "B": "work", "O": "work", "C": "temp", "M": "billing"}

TELECOM_SYSTEM_MAP = {
    "PH": "phone",
    "FX": "fax",
    "Internet": "email",
    "CP": "sms",
    "BP": "pager",
}

# HL7 table 0396 coding system names
CODING_SYSTEM_MAP = {
    "I9C": "http://hl7.org/fhir/sid/icd-9-cm",
    "I10": "http://hl7.org/fhir/sid/icd-10",
    "I10C": "http://hl7.org/fhir/sid/icd-10-cm",
    "LN": "http://loinc.org",
    "SCT": "http://snomed.info/sct",
    "RXNORM": "http://www.nlm.nih.gov/research/umls/rxnorm",
    "CPT": "http://www.ama-assn.org/go/cpt",
    "NDC": "http://hl7.org/fhir/sid/ndc",
    "CVX": "http://hl7.org/fhir/sid/cvx",
}

INTERPRETATION_MAP = {"<": "L", ">": "H"}


# =============================================================================
# Value helpers
# =============================================================================


def translate_date(value: str | None) -> str | None:
    """YYYYMMDD... -> YYYY-MM-DD, or None when too short."""
    if not value or len(value) < 8:
        return None
    return f"{value[0:4]}-{value[4:6]}-{value[6:8]}"


def translate_datetime(value: str | None) -> str | None:
    """YYYYMMDD[HHMM[SS]] -> ISO dateTime in UTC, or None when too short."""
    if not value or len(value) < 8:
        return None
    hour = value[8:10] or "00"
    minute = value[10:12] or "00"
    second = value[12:14] or "00"
    return f"{value[0:4]}-{value[4:6]}-{value[6:8]}T{hour}:{minute}:{second}Z"


def coding_system_uri(system: str | None) -> str | None:
    if not system:
        return None
    return CODING_SYSTEM_MAP.get(system.upper(), f"urn:oid:{system}")


def codeable_concept(ce: CodedElement | None) -> dict[str, Any]:
    """CE/CWE -> CodeableConcept. Missing elements become {"text": "Unknown"}."""
    if ce is None:
        return {"text": "Unknown"}

    concept: dict[str, Any] = {}
    codings: list[dict[str, Any]] = []
    if ce.identifier or ce.text:
        codings.append(_prune({
            "system": coding_system_uri(ce.coding_system),
            "code": ce.identifier,
            "display": ce.text,
        }))
    if ce.alternate_identifier or ce.alternate_text:
        codings.append(_prune({
            "system": coding_system_uri(ce.alternate_coding_system),
            "code": ce.alternate_identifier,
            "display": ce.alternate_text,
        }))
    if codings:
        concept["coding"] = codings

    text = ce.original_text or ce.text or ce.alternate_text
    if text:
        concept["text"] = text
    return concept


def person_reference(person: ExtendedPerson) -> dict[str, Any]:
    ref: dict[str, Any] = {}
    if person.id:
        ref["identifier"] = {"value": person.id}
    display = " ".join(
        part for part in (person.prefix, person.given_name, person.family_name, person.suffix) if part
    )
    if display:
        ref["display"] = display
    return ref


def location_reference(location: PersonLocation) -> dict[str, Any]:
    parts = [
        location.building,
        location.floor,
        location.point_of_care,
        location.room,
        location.bed,
    ]
    return {"display": " - ".join(p for p in parts if p) or "Unknown Location"}


def _prune(data: dict[str, Any]) -> dict[str, Any]:
    """Drop None values and empty lists so resources only carry present elements."""
    return {k: v for k, v in data.items() if v is not None and v != []}


class TranslationResult(BaseModel):
    """Outcome of translating one HL7 message."""

    success: bool
    bundle: dict[str, Any] | None = None
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    source_message_id: str = ""
    source_message_type: str = ""


class HL7ToFHIRTranslator:
    """Translate parsed HL7 v2 messages to FHIR R4 resources for one tenant."""

    def __init__(self, tenant_id: str, source_system: str = "HL7v2"):
        self.tenant_id = str(tenant_id)
        self.source_system = source_system

    def translate(self, message: HL7Message) -> TranslationResult:
        """Translate a message into a FHIR collection Bundle.

        Args:
            message: Parsed HL7 message (typed ORU/ORM messages keep their groups).

        Returns:
            TranslationResult; success is False when no resources were produced.
        """
        source_message_id = message.header.message_control_id
        source_message_type = message.type_label
        warnings: list[str] = []

        try:
            code = message.message_code
            if code == "ADT":
                resources = self._translate_adt(message)
            elif code == "ORU":
                resources = self._translate_oru(message)
            elif code == "ORM":
                resources = self._translate_orm(message)
            else:
                warnings.append(f"Unsupported message type: {code}. Extracting available segments.")
                resources = self._translate_generic(message)
        except (ValueError, TypeError, AttributeError) as e:
            logger.warning("HL7 translation failed for %s: %s", source_message_type, type(e).__name__)
            return TranslationResult(
                success=False,
                errors=[f"Translation error: {e}"],
                warnings=warnings,
                source_message_id=source_message_id,
                source_message_type=source_message_type,
            )

        if not resources:
            return TranslationResult(
                success=False,
                errors=["No resources could be translated from the HL7 message"],
                warnings=warnings,
                source_message_id=source_message_id,
                source_message_type=source_message_type,
            )

        meta_source = f"{self.source_system}#{source_message_id}"
        for resource in resources:
            resource["meta"]["source"] = meta_source

        bundle = {
            "resourceType": "Bundle",
            "id": str(uuid.uuid4()),
            "type": "collection",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "entry": [
                {"fullUrl": f"urn:uuid:{resource['id']}", "resource": resource}
                for resource in resources
            ],
        }

        logger.info(
            "Translated HL7 %s into %d FHIR resources",
            source_message_type,
            len(resources),
        )
        return TranslationResult(
            success=True,
            bundle=bundle,
            warnings=warnings,
            source_message_id=source_message_id,
            source_message_type=source_message_type,
        )

    # === Message handlers ===

    def _translate_adt(self, message: HL7Message) -> list[dict[str, Any]]:
        resources: list[dict[str, Any]] = []
        patient_ref = self._add_patient(message.patient, resources)

        if message.visit:
            encounter = self.pv1_to_encounter(message.visit, message.visit_additional, message.trigger_event)
            encounter["subject"] = patient_ref
            resources.append(encounter)

        for al1 in message.allergies:
            allergy = self.al1_to_allergy_intolerance(al1)
            allergy["patient"] = patient_ref
            resources.append(allergy)

        for dg1 in message.diagnoses:
            condition = self.dg1_to_condition(dg1)
            condition["subject"] = patient_ref
            resources.append(condition)

        for in1 in message.insurance:
            coverage = self.in1_to_coverage(in1)
            coverage["beneficiary"] = patient_ref
            resources.append(coverage)

        return resources

    def _translate_oru(self, message: HL7Message) -> list[dict[str, Any]]:
        resources: list[dict[str, Any]] = []
        patient_ref = self._add_patient(message.patient, resources)

        if isinstance(message, ORUMessage):
            groups = [(g.request, g.observations) for g in message.result_groups]
        else:
            # Untyped message: all OBX belong to the single (or first) OBR
            requests = message.observation_requests
            groups = [(obr, message.observations if i == 0 else []) for i, obr in enumerate(requests)]

        for obr, observations in groups:
            report = self.obr_to_diagnostic_report(obr)
            report["subject"] = patient_ref
            result_refs = []
            for obx in observations:
                observation = self.obx_to_observation(obx)
                observation["subject"] = patient_ref
                resources.append(observation)
                result_refs.append({"reference": f"urn:uuid:{observation['id']}"})
            if result_refs:
                report["result"] = result_refs
            resources.append(report)

        return resources

    def _translate_orm(self, message: HL7Message) -> list[dict[str, Any]]:
        resources: list[dict[str, Any]] = []
        patient_ref = self._add_patient(message.patient, resources)

        if isinstance(message, ORMMessage):
            pairs: list[tuple[ORCSegment, OBRSegment | None]] = []
            for group in message.order_groups:
                if group.requests:
                    pairs.extend((group.order, obr) for obr in group.requests)
                else:
                    pairs.append((group.order, None))
        else:
            requests = message.observation_requests
            pairs = [
                (orc, requests[i] if i < len(requests) else None)
                for i, orc in enumerate(message.orders)
            ]

        for orc, obr in pairs:
            request = self.orc_to_service_request(orc, obr)
            request["subject"] = patient_ref
            resources.append(request)

        return resources

    def _translate_generic(self, message: HL7Message) -> list[dict[str, Any]]:
        resources: list[dict[str, Any]] = []
        patient_ref = self._add_patient(message.patient, resources)

        for al1 in message.allergies:
            allergy = self.al1_to_allergy_intolerance(al1)
            allergy["patient"] = patient_ref
            resources.append(allergy)

        for dg1 in message.diagnoses:
            condition = self.dg1_to_condition(dg1)
            condition["subject"] = patient_ref
            resources.append(condition)

        return resources

    def _add_patient(self, pid: PIDSegment | None, resources: list[dict[str, Any]]) -> dict[str, str]:
        """Append the Patient (if any) and return the reference other resources use."""
        if pid is None:
            return {"reference": PATIENT_PLACEHOLDER}
        patient = self.pid_to_patient(pid)
        resources.append(patient)
        return {"reference": f"urn:uuid:{patient['id']}"}

    def _new_resource(self, resource_type: str) -> dict[str, Any]:
        meta: dict[str, Any] = {
            "source": self.source_system,
            "lastUpdated": datetime.now(timezone.utc).isoformat(),
        }
        if resource_type in PROFILES:
            meta["profile"] = [PROFILES[resource_type]]
        return {"resourceType": resource_type, "id": str(uuid.uuid4()), "meta": meta}

    # === Segment translators ===

    def pid_to_patient(self, pid: PIDSegment) -> dict[str, Any]:
        patient = self._new_resource("Patient")
        patient.update(_prune({
            "identifier": self._patient_identifiers(pid),
            "name": [
                _prune({
                    "use": NAME_USE_MAP.get(name.name_type_code or "", "official"),
                    "family": name.family_name,
                    "given": [p for p in (name.given_name, name.middle_name) if p],
                    "prefix": [name.prefix] if name.prefix else None,
                    "suffix": [p for p in (name.suffix, name.degree) if p],
                })
                for name in pid.patient_names
            ],
            "telecom": [
                _prune({
                    "system": TELECOM_SYSTEM_MAP.get(phone.equipment_type or "", "phone"),
                    "value": phone.number or phone.communication_address,
                    "use": use,
                })
                for phones, use in ((pid.home_phones, "home"), (pid.business_phones, "work"))
                for phone in phones
            ],
            "gender": GENDER_MAP.get(pid.administrative_sex or "", "unknown"),
            "birthDate": translate_date(pid.date_of_birth),
            "address": [
                _prune({
                    "use": ADDRESS_USE_MAP.get(addr.address_type or "", "home"),
                    "line": [p for p in (addr.street, addr.other_designation) if p],
                    "city": addr.city,
                    "district": addr.county,
                    "state": addr.state,
                    "postalCode": addr.zip,
                    "country": addr.country,
                })
                for addr in pid.addresses
            ],
        }))

        if pid.death_indicator == "Y":
            if pid.death_datetime:
                patient["deceasedDateTime"] = translate_datetime(pid.death_datetime)
            else:
                patient["deceasedBoolean"] = True

        if pid.marital_status:
            patient["maritalStatus"] = codeable_concept(pid.marital_status)

        if pid.multiple_birth_indicator == "Y":
            if pid.birth_order and pid.birth_order.isdigit():
                patient["multipleBirthInteger"] = int(pid.birth_order)
            else:
                patient["multipleBirthBoolean"] = True

        if pid.primary_language:
            patient["communication"] = [
                {"language": codeable_concept(pid.primary_language), "preferred": True}
            ]

        return patient

    def _patient_identifiers(self, pid: PIDSegment) -> list[dict[str, Any]]:
        identifiers = []
        for cx in pid.patient_identifiers:
            identifier: dict[str, Any] = {"value": cx.id}
            authority = cx.assigning_authority or self.tenant_id
            if cx.identifier_type_code == "MR":
                identifier["use"] = "usual"
                identifier["type"] = {"coding": [{"system": f"{TERMINOLOGY}/v2-0203", "code": "MR"}]}
                identifier["system"] = f"urn:oid:{authority}:mr"
            elif cx.identifier_type_code == "SS":
                identifier["use"] = "official"
                identifier["type"] = {"coding": [{"system": f"{TERMINOLOGY}/v2-0203", "code": "SS"}]}
                identifier["system"] = "http://hl7.org/fhir/sid/us-ssn"
            else:
                identifier["system"] = f"urn:oid:{authority}"
            if cx.assigning_facility:
                identifier["assigner"] = {"display": cx.assigning_facility}
            identifiers.append(identifier)
        return identifiers

    def pv1_to_encounter(
        self,
        pv1: PV1Segment,
        pv2: PV2Segment | None = None,
        trigger_event: str | None = None,
    ) -> dict[str, Any]:
        encounter = self._new_resource("Encounter")
        code, display = ENCOUNTER_CLASS_MAP.get(pv1.patient_class, ("AMB", "ambulatory"))
        encounter["status"] = ENCOUNTER_STATUS_MAP.get(trigger_event or "", "in-progress")
        encounter["class"] = {"system": f"{TERMINOLOGY}/v3-ActCode", "code": code, "display": display}

        if pv1.visit_number:
            encounter["identifier"] = [{
                "use": "usual",
                "system": f"urn:oid:{self.tenant_id}:visit",
                "value": pv1.visit_number,
            }]

        if pv1.admit_datetime or pv1.discharge_datetime:
            encounter["period"] = _prune({
                "start": translate_datetime(pv1.admit_datetime),
                "end": translate_datetime(pv1.discharge_datetime),
            })

        if pv1.attending_doctors:
            encounter["participant"] = [
                {
                    "type": [{"coding": [{
                        "system": f"{TERMINOLOGY}/v3-ParticipationType",
                        "code": "ATND",
                        "display": "attender",
                    }]}],
                    "individual": person_reference(doc),
                }
                for doc in pv1.attending_doctors
            ]

        if pv1.assigned_location:
            encounter["location"] = [{
                "location": location_reference(pv1.assigned_location),
                "status": "active",
            }]

        hospitalization: dict[str, Any] = {}
        if pv1.preadmit_number:
            hospitalization["preAdmissionIdentifier"] = {"value": pv1.preadmit_number}
        if pv1.admit_source:
            hospitalization["admitSource"] = {"coding": [{"code": pv1.admit_source}]}
        if pv1.discharge_disposition:
            hospitalization["dischargeDisposition"] = {"coding": [{"code": pv1.discharge_disposition}]}
        if pv1.readmission_indicator:
            hospitalization["reAdmission"] = {"coding": [{"code": pv1.readmission_indicator}]}
        if hospitalization:
            encounter["hospitalization"] = hospitalization

        if pv2 and pv2.admit_reason:
            encounter["reasonCode"] = [codeable_concept(pv2.admit_reason)]

        return encounter

    def obr_to_diagnostic_report(self, obr: OBRSegment) -> dict[str, Any]:
        report = self._new_resource("DiagnosticReport")
        report["status"] = REPORT_STATUS_MAP.get(obr.result_status or "", "unknown")
        report["code"] = codeable_concept(obr.universal_service_id)

        identifiers = _order_identifiers(obr.placer_order_number, obr.filler_order_number)
        if identifiers:
            report["identifier"] = identifiers

        if obr.diagnostic_service_section:
            report["category"] = [{"coding": [{
                "system": f"{TERMINOLOGY}/v2-0074",
                "code": obr.diagnostic_service_section,
            }]}]

        if obr.observation_datetime and obr.observation_end_datetime:
            report["effectivePeriod"] = {
                "start": translate_datetime(obr.observation_datetime),
                "end": translate_datetime(obr.observation_end_datetime),
            }
        elif obr.observation_datetime:
            report["effectiveDateTime"] = translate_datetime(obr.observation_datetime)

        if obr.results_status_change_datetime:
            report["issued"] = translate_datetime(obr.results_status_change_datetime)
        if obr.principal_result_interpreter:
            report["performer"] = [{"display": obr.principal_result_interpreter}]
        if obr.relevant_clinical_info:
            report["conclusion"] = obr.relevant_clinical_info

        return report

    def obx_to_observation(self, obx: OBXSegment) -> dict[str, Any]:
        observation = self._new_resource("Observation")
        observation["status"] = OBSERVATION_STATUS_MAP.get(obx.observation_result_status, "unknown")
        observation["category"] = [{"coding": [{
            "system": f"{TERMINOLOGY}/observation-category",
            "code": "laboratory",
            "display": "Laboratory",
        }]}]
        observation["code"] = codeable_concept(obx.observation_identifier)

        if obx.observation_datetime:
            observation["effectiveDateTime"] = translate_datetime(obx.observation_datetime)
        if obx.analysis_datetime:
            observation["issued"] = translate_datetime(obx.analysis_datetime)

        if obx.observation_values:
            observation.update(self._observation_value(obx))

        if obx.reference_range:
            observation["referenceRange"] = [{"text": obx.reference_range}]

        if obx.abnormal_flags:
            observation["interpretation"] = [
                {"coding": [{
                    "system": f"{TERMINOLOGY}/v3-ObservationInterpretation",
                    "code": INTERPRETATION_MAP.get(flag, flag.upper()),
                }]}
                for flag in obx.abnormal_flags
            ]

        if obx.responsible_observer:
            observation["performer"] = [person_reference(p) for p in obx.responsible_observer]

        return observation

    @staticmethod
    def _observation_value(obx: OBXSegment) -> dict[str, Any]:
        """Map OBX-5 to the value[x] element matching OBX-2."""
        value = obx.observation_values[0]
        components = value.split("^")
        units = obx.units

        if obx.value_type == "NM":
            try:
                number = float(value)
            except ValueError:
                return {"valueString": value}
            quantity: dict[str, Any] = {"value": number}
            if units:
                quantity.update(_prune({
                    "unit": units.text or units.identifier,
                    "system": UCUM,
                    "code": units.identifier,
                }))
            return {"valueQuantity": quantity}

        if obx.value_type in ("CE", "CWE"):
            return {"valueCodeableConcept": codeable_concept(CodedElement(
                identifier=components[0] or None,
                text=components[1] if len(components) > 1 and components[1] else None,
                coding_system=components[2] if len(components) > 2 and components[2] else None,
            ))}

        if obx.value_type == "SN":
            # Structured numeric: comparator^num1[^separator^num2]
            if len(components) >= 2:
                try:
                    number = float(components[1])
                except ValueError:
                    return {"valueString": value}
                quantity = {"value": number}
                if components[0] in ("<", ">", "<=", ">="):
                    quantity["comparator"] = components[0]
                if units and (units.text or units.identifier):
                    quantity["unit"] = units.text or units.identifier
                return {"valueQuantity": quantity}
            return {"valueString": value}

        return {"valueString": value}

    def orc_to_service_request(self, orc: ORCSegment, obr: OBRSegment | None = None) -> dict[str, Any]:
        request = self._new_resource("ServiceRequest")
        request["status"] = ORDER_STATUS_MAP.get(orc.order_status or "", "unknown")
        request["intent"] = ORDER_INTENT_MAP.get(orc.order_control, "order")
        request["subject"] = {"reference": PATIENT_PLACEHOLDER}

        identifiers = _order_identifiers(orc.placer_order_number, orc.filler_order_number)
        if identifiers:
            request["identifier"] = identifiers

        if obr is not None:
            request["code"] = codeable_concept(obr.universal_service_id)
            if obr.priority:
                request["priority"] = PRIORITY_MAP.get(obr.priority.upper(), "routine")
            if obr.reason_for_study:
                request["reasonCode"] = [codeable_concept(ce) for ce in obr.reason_for_study]
            if obr.relevant_clinical_info:
                request["note"] = [{"text": obr.relevant_clinical_info}]

        if orc.transaction_datetime:
            request["authoredOn"] = translate_datetime(orc.transaction_datetime)
        if orc.ordering_provider:
            request["requester"] = person_reference(orc.ordering_provider[0])

        return request

    def al1_to_allergy_intolerance(self, al1: AL1Segment) -> dict[str, Any]:
        allergy = self._new_resource("AllergyIntolerance")
        allergy["clinicalStatus"] = {"coding": [{
            "system": f"{TERMINOLOGY}/allergyintolerance-clinical",
            "code": "active",
        }]}
        allergy["verificationStatus"] = {"coding": [{
            "system": f"{TERMINOLOGY}/allergyintolerance-verification",
            "code": "confirmed",
        }]}
        allergy["code"] = codeable_concept(al1.allergen)
        allergy["patient"] = {"reference": PATIENT_PLACEHOLDER}

        if al1.allergen_type and al1.allergen_type.identifier:
            allergy["category"] = [
                ALLERGY_CATEGORY_MAP.get(al1.allergen_type.identifier.upper(), "medication")
            ]
        if al1.severity:
            allergy["criticality"] = ALLERGY_CRITICALITY_MAP.get(al1.severity.upper(), "unable-to-assess")
        if al1.identification_date:
            allergy["onsetDateTime"] = translate_date(al1.identification_date)
        if al1.reactions:
            allergy["reaction"] = [{"manifestation": [{"text": r} for r in al1.reactions]}]

        return allergy

    def dg1_to_condition(self, dg1: DG1Segment) -> dict[str, Any]:
        condition = self._new_resource("Condition")
        condition["clinicalStatus"] = {"coding": [{
            "system": f"{TERMINOLOGY}/condition-clinical",
            "code": "active",
        }]}
        condition["verificationStatus"] = {"coding": [{
            "system": f"{TERMINOLOGY}/condition-ver-status",
            "code": "confirmed",
        }]}
        condition["category"] = [{"coding": [{
            "system": f"{TERMINOLOGY}/condition-category",
            "code": CONDITION_CATEGORY_MAP.get((dg1.diagnosis_type or "").upper(), "encounter-diagnosis"),
        }]}]
        condition["subject"] = {"reference": PATIENT_PLACEHOLDER}

        if dg1.diagnosis_code:
            condition["code"] = codeable_concept(dg1.diagnosis_code)
        elif dg1.diagnosis_description:
            condition["code"] = {"text": dg1.diagnosis_description}

        if dg1.diagnosis_datetime:
            condition["onsetDateTime"] = translate_datetime(dg1.diagnosis_datetime)
        if dg1.attestation_datetime:
            condition["recordedDate"] = translate_datetime(dg1.attestation_datetime)
        if dg1.diagnosing_clinician:
            condition["recorder"] = person_reference(dg1.diagnosing_clinician[0])

        return condition

    def in1_to_coverage(self, in1: IN1Segment) -> dict[str, Any]:
        coverage = self._new_resource("Coverage")
        coverage["status"] = "active"
        coverage["beneficiary"] = {"reference": PATIENT_PLACEHOLDER}
        coverage["payor"] = [{"display": name} for name in in1.insurance_company_name[:1]] or [
            {"display": "Unknown payor"}
        ]

        if in1.policy_number:
            coverage["identifier"] = [{"use": "official", "value": in1.policy_number}]
        if in1.insurance_plan_id:
            coverage["type"] = codeable_concept(in1.insurance_plan_id)
        elif in1.plan_type:
            coverage["type"] = {"text": in1.plan_type}
        if in1.insured_id_number:
            coverage["subscriberId"] = in1.insured_id_number[0]
        if in1.plan_effective_date or in1.plan_expiration_date:
            coverage["period"] = _prune({
                "start": translate_date(in1.plan_effective_date),
                "end": translate_date(in1.plan_expiration_date),
            })
        if in1.group_number or in1.group_name:
            coverage["class"] = [_prune({
                "type": {"coding": [{"system": f"{TERMINOLOGY}/coverage-class", "code": "group"}]},
                "value": in1.group_number or "",
                "name": in1.group_name,
            })]
        if in1.insured_relationship:
            coverage["relationship"] = codeable_concept(in1.insured_relationship)

        return coverage


def _order_identifiers(placer: str | None, filler: str | None) -> list[dict[str, Any]]:
    identifiers = []
    if placer:
        identifiers.append({"use": "official", "type": {"text": "Placer Order Number"}, "value": placer})
    if filler:
        identifiers.append({"use": "usual", "type": {"text": "Filler Order Number"}, "value": filler})
    return identifiers

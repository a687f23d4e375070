"""SQLAlchemy models."""

from app.models.accuracy import AIPrediction, AIPromptExperiment, AIPromptVersion
from app.models.audit import AuditLog
from app.models.fhir import FhirResource
from app.models.hl7 import HL7MessageLog, HL7MessageStatus
from app.models.mpi import (
    MatchCandidateStatus,
    MatchPriority,
    MPIIdentityRecord,
    MPIMatchCandidate,
)
from app.models.readmission import ReadmissionTenantSettings
from app.models.sdoh import SDOHDetectionRecord
from app.models.x12 import (
    X12Acknowledgment,
    X12ElementError,
    X12SegmentError,
    X12TransactionSetAck,
)

__all__ = [
    "AIPrediction",
    "AIPromptExperiment",
    "AIPromptVersion",
    "AuditLog",
    "FhirResource",
    "HL7MessageLog",
    "HL7MessageStatus",
    "MatchCandidateStatus",
    "MatchPriority",
    "MPIIdentityRecord",
    "MPIMatchCandidate",
    "ReadmissionTenantSettings",
    "SDOHDetectionRecord",
    "X12Acknowledgment",
    "X12ElementError",
    "X12SegmentError",
    "X12TransactionSetAck",
]

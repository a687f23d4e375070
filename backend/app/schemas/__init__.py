"""Pydantic schemas."""

from app.schemas.hl7 import (
    ADTMessage,
    HL7Message,
    HL7MessageRequest,
    MessageLogResponse,
    ORMMessage,
    ORUMessage,
    ParseResult,
)
from app.schemas.mpi import (
    MatchResult,
    MatchScore,
    MatchingConfig,
    PatientDemographics,
)
from app.schemas.readmission import (
    DischargeContext,
    ReadmissionFeatures,
    ReadmissionPrediction,
)
from app.schemas.sdoh import SDOHDetection
from app.schemas.x12 import Parsed997, Summary997, X12ParseResult

__all__ = [
    # HL7 v2
    "ADTMessage",
    "HL7Message",
    "HL7MessageRequest",
    "MessageLogResponse",
    "ORMMessage",
    "ORUMessage",
    "ParseResult",
    # X12
    "Parsed997",
    "Summary997",
    "X12ParseResult",
    # MPI
    "MatchResult",
    "MatchScore",
    "MatchingConfig",
    "PatientDemographics",
    # Clinical AI
    "DischargeContext",
    "ReadmissionFeatures",
    "ReadmissionPrediction",
    "SDOHDetection",
]

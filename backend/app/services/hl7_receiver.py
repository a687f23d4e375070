"""HL7 v2 ingest pipeline.

receive() takes one raw message (from HTTP or MLLP) through:

    log (received) -> parse -> translate -> persist FHIR -> log (processed) -> ACK

Any failure is recorded on the message log row and answered with an AR
(unparseable) or AE (processing error) acknowledgment; the sender always
gets an ACK back.
"""

import hashlib
import logging
import time
import uuid
from datetime import datetime, timezone

from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.models.hl7 import HL7MessageLog, HL7MessageStatus
from app.repositories.fhir import FhirRepository
from app.schemas.hl7 import HL7Message
from app.services.audit import AuditLogger
from app.services.hl7_parser import generate_ack, generate_nak, parse_typed
from app.services.hl7_translator import HL7ToFHIRTranslator

logger = logging.getLogger(__name__)


class ReceiveResult(BaseModel):
    """Outcome of ingesting one HL7 message."""

    ack: str
    ack_code: str
    message_log_id: uuid.UUID | None = None
    message_control_id: str | None = None
    message_type: str | None = None
    fhir_bundle_id: str | None = None
    fhir_resource_count: int = 0
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


def hash_mrn(message: HL7Message) -> str | None:
    """SHA-256 of the patient's MR identifier, if the message carries one."""
    if message.patient is None:
        return None
    for identifier in message.patient.patient_identifiers:
        if identifier.identifier_type_code == "MR":
            return hashlib.sha256(identifier.id.encode("utf-8")).hexdigest()
    return None


def _ack_control_id(ack: str) -> str | None:
    """MSH-10 of an ACK we generated."""
    msh = ack.split("\r", 1)[0]
    fields = msh.split(msh[3]) if len(msh) > 3 else []
    return fields[9] if len(fields) > 9 else None


class HL7ReceiverService:
    """Processes inbound HL7 messages for one tenant."""

    def __init__(self, db: AsyncSession, tenant_id: uuid.UUID, actor: str = "hl7-interface"):
        self.db = db
        self.tenant_id = tenant_id
        self.fhir = FhirRepository(db, tenant_id)
        self.audit = AuditLogger(db, tenant_id, actor)
        self.translator = HL7ToFHIRTranslator(str(tenant_id), settings.hl7_source_system)

    async def receive(self, raw: str, source: str = "http") -> ReceiveResult:
        """Ingest one message and return the acknowledgment to send back.

        Args:
            raw: The HL7 message, optionally MLLP framed.
            source: Transport the message arrived on ("http" or "mllp").

        Returns:
            ReceiveResult with the ACK text and processing outcome.
        """
        start = time.perf_counter()
        log = HL7MessageLog(
            id=uuid.uuid4(),
            tenant_id=self.tenant_id,
            message_control_id="UNKNOWN",
            direction="inbound",
            transport=source,
            status=HL7MessageStatus.RECEIVED,
            message_size=len(raw.encode("utf-8")),
            fhir_resources_created=0,
        )
        self.db.add(log)
        await self.db.flush()

        parsed = parse_typed(raw)
        if not parsed.success or parsed.message is None:
            error = parsed.errors[0] if parsed.errors else "Unparseable message"
            ack = generate_nak("AR", error)
            return await self._finish(log, start, ack, "AR", errors=parsed.errors, warnings=parsed.warnings)

        message = parsed.message
        self._record_header(log, message)
        log.status = HL7MessageStatus.PARSED

        translation = self.translator.translate(message)
        warnings = parsed.warnings + translation.warnings
        if not translation.success or translation.bundle is None:
            error = translation.errors[0] if translation.errors else "Translation failed"
            ack = generate_ack(message, "AE", error)
            return await self._finish(log, start, ack, "AE", errors=translation.errors, warnings=warnings)

        log.status = HL7MessageStatus.TRANSLATED
        bundle = translation.bundle
        meta_source = f"{settings.hl7_source_system}#{message.header.message_control_id}"
        try:
            saved = await self.fhir.save_bundle(bundle, source=meta_source)
        except ValueError as e:
            ack = generate_ack(message, "AE", str(e))
            return await self._finish(log, start, ack, "AE", errors=[str(e)], warnings=warnings)

        log.fhir_bundle_id = bundle["id"]
        log.fhir_resources_created = len(saved)
        log.status = HL7MessageStatus.PROCESSED

        await self.audit.log(
            "hl7.message.received",
            resource_type="HL7Message",
            resource_id=str(log.id),
            details={
                "message_type": message.type_label,
                "message_control_id": message.header.message_control_id,
                "transport": source,
                "fhir_resources_created": len(saved),
            },
        )

        ack = generate_ack(message, "AA")
        return await self._finish(log, start, ack, "AA", warnings=warnings)

    def _record_header(self, log: HL7MessageLog, message: HL7Message) -> None:
        header = message.header
        log.message_control_id = header.message_control_id or "UNKNOWN"
        log.message_type = header.message_type.message_code
        log.event_type = header.message_type.trigger_event
        log.message_structure = header.message_type.message_structure
        log.sending_application = header.sending_application
        log.sending_facility = header.sending_facility
        log.receiving_application = header.receiving_application
        log.receiving_facility = header.receiving_facility
        log.hl7_version = header.version_id
        log.mrn_hash = hash_mrn(message)

    async def _finish(
        self,
        log: HL7MessageLog,
        start: float,
        ack: str,
        ack_code: str,
        errors: list[str] | None = None,
        warnings: list[str] | None = None,
    ) -> ReceiveResult:
        errors = errors or []
        warnings = warnings or []
        duration_ms = int((time.perf_counter() - start) * 1000)

        if ack_code != "AA":
            log.status = HL7MessageStatus.ERROR
        log.ack_code = ack_code
        log.ack_message_id = _ack_control_id(ack)
        log.errors = errors or None
        log.warnings = warnings or None
        log.processed_at = datetime.now(timezone.utc)
        log.processing_duration_ms = duration_ms
        await self.db.flush()

        logger.info(
            "HL7 %s %s via %s -> %s (%d resources) in %dms",
            log.message_type or "?",
            log.message_control_id,
            log.transport,
            ack_code,
            log.fhir_resources_created,
            duration_ms,
        )
        return ReceiveResult(
            ack=ack,
            ack_code=ack_code,
            message_log_id=log.id,
            message_control_id=log.message_control_id,
            message_type=f"{log.message_type}^{log.event_type}" if log.event_type else log.message_type,
            fhir_bundle_id=log.fhir_bundle_id,
            fhir_resource_count=log.fhir_resources_created,
            errors=errors,
            warnings=warnings,
        )

    async def list_messages(
        self,
        limit: int = 50,
        status: HL7MessageStatus | None = None,
    ) -> list[HL7MessageLog]:
        """Recent message log rows for this tenant, newest first."""
        query = select(HL7MessageLog).where(HL7MessageLog.tenant_id == self.tenant_id)
        if status is not None:
            query = query.where(HL7MessageLog.status == status)
        query = query.order_by(HL7MessageLog.received_at.desc()).limit(limit)
        result = await self.db.execute(query)
        return list(result.scalars().all())

"""HL7 v2 API routes.

Messages posted here go through the same pipeline as the MLLP listener:
parse, translate to FHIR, persist, and acknowledge.
"""

import json
import uuid

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth import get_actor, get_tenant_id, verify_api_key
from app.database import get_db
from app.models.hl7 import HL7MessageStatus
from app.schemas.hl7 import HL7MessageRequest, MessageLogResponse, ParseResult
from app.services.hl7_parser import parse_typed
from app.services.hl7_receiver import HL7ReceiverService, ReceiveResult
from app.services.hl7_translator import HL7ToFHIRTranslator, TranslationResult

router = APIRouter(prefix="/hl7", tags=["hl7"])

MAX_MESSAGE_BYTES = 1024 * 1024


async def _message_from_request(request: Request) -> str:
    """Accept either a raw HL7 body or JSON ``{"message": ...}``."""
    body = await request.body()
    if len(body) > MAX_MESSAGE_BYTES:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail="HL7 message too large",
        )
    text = body.decode("utf-8", errors="replace")
    if "json" in request.headers.get("content-type", ""):
        try:
            text = HL7MessageRequest.model_validate(json.loads(text)).message
        except ValueError as e:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail=f"Invalid JSON body: {e}",
            )
    if not text.strip():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Empty HL7 message",
        )
    return text


@router.post("/messages", response_model=ReceiveResult)
async def receive_message(
    request: Request,
    db: AsyncSession = Depends(get_db),
    _api_key: str = Depends(verify_api_key),
    tenant_id: uuid.UUID = Depends(get_tenant_id),
    actor: str = Depends(get_actor),
) -> ReceiveResult:
    """Ingest an HL7 v2 message.

    Processing failures are reported in the ACK (AE/AR), not as HTTP errors.

    Returns:
        The ACK message and processing result.
    """
    raw = await _message_from_request(request)
    return await HL7ReceiverService(db, tenant_id, actor).receive(raw, source="http")


@router.post("/parse", response_model=ParseResult)
async def parse_only(
    request: Request,
    _api_key: str = Depends(verify_api_key),
) -> ParseResult:
    """Parse a message without storing it (diagnostic)."""
    return parse_typed(await _message_from_request(request))


@router.post("/translate", response_model=TranslationResult)
async def translate_only(
    request: Request,
    _api_key: str = Depends(verify_api_key),
    tenant_id: uuid.UUID = Depends(get_tenant_id),
) -> TranslationResult:
    """Parse and translate a message to a FHIR Bundle without persisting it.

    Raises:
        HTTPException: 422 if the message cannot be parsed.
    """
    parsed = parse_typed(await _message_from_request(request))
    if not parsed.success or parsed.message is None:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=parsed.errors or ["Unparseable message"],
        )
    return HL7ToFHIRTranslator(str(tenant_id)).translate(parsed.message)


@router.get("/messages", response_model=list[MessageLogResponse])
async def list_messages(
    db: AsyncSession = Depends(get_db),
    _api_key: str = Depends(verify_api_key),
    tenant_id: uuid.UUID = Depends(get_tenant_id),
    limit: int = Query(50, ge=1, le=200),
    status: HL7MessageStatus | None = None,
) -> list[MessageLogResponse]:
    """Recent inbound message log (metadata only, never message bodies)."""
    logs = await HL7ReceiverService(db, tenant_id).list_messages(limit=limit, status=status)
    return [MessageLogResponse.model_validate(log) for log in logs]

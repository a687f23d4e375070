"""X12 997 acknowledgment processing and reporting."""

import logging
import time
import uuid
from collections import Counter
from datetime import datetime, timedelta, timezone

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.x12 import (
    X12Acknowledgment,
    X12ElementError,
    X12SegmentError,
    X12TransactionSetAck,
)
from app.schemas.x12 import AckProcessingResult, X12Statistics
from app.services.audit import AuditLogger
from app.services.x12_997 import (
    REJECTED_CODES,
    X12ParseError,
    group_ack_description,
    parse_997,
    summarize_997,
)

logger = logging.getLogger(__name__)

TOP_ERROR_CODES = 5


class X12AcknowledgmentService:
    """Stores and queries 997s for one tenant."""

    def __init__(self, db: AsyncSession, tenant_id: uuid.UUID, actor: str = "system"):
        self.db = db
        self.tenant_id = tenant_id
        self.audit = AuditLogger(db, tenant_id, actor)

    async def process_acknowledgment(
        self,
        content: str,
        clearinghouse: str | None = None,
        original_transaction_type: str = "837P",
        claim_ids: list[str] | None = None,
    ) -> AckProcessingResult:
        """Parse a 997 and persist it with its transaction sets and errors.

        Raises:
            X12ParseError: If the content is not a valid 997.
        """
        start = time.perf_counter()
        result = parse_997(content)
        if not result.success or result.data is None:
            raise X12ParseError(result.errors[0] if result.errors else "Invalid 997")

        parsed = result.data
        summary = summarize_997(parsed)
        ak9 = parsed.ak9

        ack = X12Acknowledgment(
            id=uuid.uuid4(),
            tenant_id=self.tenant_id,
            interchange_control_number=parsed.isa.control_number,
            group_control_number=parsed.gs.control_number,
            sender_id=parsed.isa.sender_id,
            receiver_id=parsed.isa.receiver_id,
            clearinghouse=clearinghouse,
            original_transaction_type=original_transaction_type,
            functional_identifier_code=parsed.ak1.functional_id_code,
            acknowledged_group_control_number=parsed.ak1.group_control_number,
            status=ak9.ack_code,
            transaction_sets_included=ak9.transaction_sets_included,
            transaction_sets_received=ak9.transaction_sets_received,
            transaction_sets_accepted=ak9.transaction_sets_accepted,
            transaction_sets_rejected=ak9.transaction_sets_received - ak9.transaction_sets_accepted,
            group_error_codes=ak9.syntax_error_codes,
            claim_ids=claim_ids or [],
            summary=summary.model_dump(),
            transaction_sets=[
                X12TransactionSetAck(
                    transaction_set_identifier=tx.ak2.transaction_set_identifier,
                    transaction_set_control_number=tx.ak2.control_number,
                    status=tx.ak5.ack_code,
                    error_codes=tx.ak5.syntax_error_codes,
                    segment_errors=[
                        X12SegmentError(
                            segment_id=se.segment_id,
                            segment_position=se.segment_position,
                            loop_identifier=se.loop_identifier,
                            error_code=se.error_code,
                            element_errors=[
                                X12ElementError(
                                    element_position=ee.position_in_segment,
                                    component_position=ee.component_position,
                                    data_element_reference=ee.data_element_reference,
                                    error_code=ee.error_code,
                                    bad_data=ee.bad_data,
                                )
                                for ee in se.element_errors
                            ],
                        )
                        for se in tx.segment_errors
                    ],
                )
                for tx in parsed.transaction_sets
            ],
        )
        self.db.add(ack)
        await self.db.flush()

        errors_found = summary.segment_errors + summary.element_errors
        await self.audit.log(
            "x12.997.processed",
            resource_type="X12Acknowledgment",
            resource_id=str(ack.id),
            details={
                "status": ak9.ack_code,
                "interchange_control_number": parsed.isa.control_number,
                "transaction_sets": summary.total_transaction_sets,
                "errors_found": errors_found,
            },
        )

        logger.info(
            "Stored 997 %s status=%s (%d sets, %d errors) in %.1fms",
            ack.id,
            ak9.ack_code,
            summary.total_transaction_sets,
            errors_found,
            (time.perf_counter() - start) * 1000,
        )
        return AckProcessingResult(
            ack_id=ack.id,
            status=ak9.ack_code,
            status_description=group_ack_description(ak9.ack_code),
            processed=True,
            errors_found=errors_found,
            summary=summary,
        )

    async def get_acknowledgment(self, ack_id: uuid.UUID) -> X12Acknowledgment | None:
        result = await self.db.execute(
            select(X12Acknowledgment).where(
                X12Acknowledgment.tenant_id == self.tenant_id,
                X12Acknowledgment.id == ack_id,
            )
        )
        return result.scalar_one_or_none()

    async def list_recent(self, limit: int = 50, status: str | None = None) -> list[X12Acknowledgment]:
        query = select(X12Acknowledgment).where(X12Acknowledgment.tenant_id == self.tenant_id)
        if status:
            query = query.where(X12Acknowledgment.status == status)
        query = query.order_by(X12Acknowledgment.received_at.desc()).limit(limit)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def list_rejected(self, since_days: int = 30) -> list[X12Acknowledgment]:
        """Acknowledgments whose functional group was rejected."""
        since = datetime.now(timezone.utc) - timedelta(days=since_days)
        result = await self.db.execute(
            select(X12Acknowledgment)
            .where(
                X12Acknowledgment.tenant_id == self.tenant_id,
                X12Acknowledgment.status.in_(sorted(REJECTED_CODES)),
                X12Acknowledgment.received_at >= since,
            )
            .order_by(X12Acknowledgment.received_at.desc())
        )
        return list(result.scalars().all())

    async def list_for_claim(self, claim_id: str) -> list[X12Acknowledgment]:
        result = await self.db.execute(
            select(X12Acknowledgment)
            .where(
                X12Acknowledgment.tenant_id == self.tenant_id,
                X12Acknowledgment.claim_ids.any(claim_id),
            )
            .order_by(X12Acknowledgment.received_at.desc())
        )
        return list(result.scalars().all())

    async def statistics(self, days: int = 30) -> X12Statistics:
        """Status totals, acceptance rate and most common error codes."""
        since = datetime.now(timezone.utc) - timedelta(days=days)

        status_result = await self.db.execute(
            select(X12Acknowledgment.status, func.count())
            .where(
                X12Acknowledgment.tenant_id == self.tenant_id,
                X12Acknowledgment.received_at >= since,
            )
            .group_by(X12Acknowledgment.status)
        )
        by_status = {status: count for status, count in status_result.all()}
        total = sum(by_status.values())
        accepted = by_status.get("A", 0) + by_status.get("E", 0)

        segment_result = await self.db.execute(
            select(X12SegmentError.error_code)
            .join(X12TransactionSetAck, X12SegmentError.transaction_set_id == X12TransactionSetAck.id)
            .join(X12Acknowledgment, X12TransactionSetAck.acknowledgment_id == X12Acknowledgment.id)
            .where(
                X12Acknowledgment.tenant_id == self.tenant_id,
                X12Acknowledgment.received_at >= since,
            )
        )
        element_result = await self.db.execute(
            select(X12ElementError.error_code)
            .join(X12SegmentError, X12ElementError.segment_error_id == X12SegmentError.id)
            .join(X12TransactionSetAck, X12SegmentError.transaction_set_id == X12TransactionSetAck.id)
            .join(X12Acknowledgment, X12TransactionSetAck.acknowledgment_id == X12Acknowledgment.id)
            .where(
                X12Acknowledgment.tenant_id == self.tenant_id,
                X12Acknowledgment.received_at >= since,
            )
        )
        segment_counts = Counter(code for code in segment_result.scalars().all() if code)
        element_counts = Counter(code for code in element_result.scalars().all() if code)

        return X12Statistics(
            period_days=days,
            total=total,
            by_status=by_status,
            acceptance_rate=round(accepted / total * 100, 1) if total else None,
            common_segment_errors=[
                {"code": code, "count": count} for code, count in segment_counts.most_common(TOP_ERROR_CODES)
            ],
            common_element_errors=[
                {"code": code, "count": count} for code, count in element_counts.most_common(TOP_ERROR_CODES)
            ],
        )

    async def link_claims(self, ack_id: uuid.UUID, claim_ids: list[str]) -> X12Acknowledgment | None:
        """Attach claim ids to an acknowledgment (deduplicated, order kept)."""
        ack = await self.get_acknowledgment(ack_id)
        if ack is None:
            return None
        merged = list(dict.fromkeys([*(ack.claim_ids or []), *claim_ids]))
        ack.claim_ids = merged
        await self.db.flush()
        await self.audit.log(
            "x12.997.claims_linked",
            resource_type="X12Acknowledgment",
            resource_id=str(ack.id),
            details={"claim_count": len(claim_ids)},
        )
        return ack

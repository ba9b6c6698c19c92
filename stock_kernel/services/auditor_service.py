"""
AuditorService -- audit emitter and hash chain maintenance.

Responsibility:
    Records an immutable, hash-chained audit fact for every stock mutation,
    inside the same transaction as the mutation.  Provides chain
    validation for tamper detection and trace queries for forensic review.

Architecture position:
    Kernel > Services -- building block called by OrderFulfillmentService,
    TransferCoordinator and StockAdminService.

Invariants enforced:
    - Emission is part of the mutation: any failure raises
      AuditEmissionError and the caller's transaction must not commit.
    - Sequence monotonicity via SequenceService (never max+1).
    - Chain integrity: ``hash = H(entity_type | entity_id | action |
      payload_hash | prev_hash)``.
    - Append-only: audit events are never modified or deleted (ORM
      listeners on the AuditEvent model).

Failure modes:
    - AuditEmissionError: the audit row could not be built or flushed.
    - AuditChainBrokenError: recomputed hash does not match stored hash,
      or prev_hash does not match the predecessor's hash.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from stock_kernel.domain.clock import Clock, SystemClock
from stock_kernel.exceptions import AuditChainBrokenError, AuditEmissionError
from stock_kernel.logging_config import get_logger
from stock_kernel.models.audit_event import AuditAction, AuditEvent
from stock_kernel.services.sequence_service import SequenceService
from stock_kernel.utils.hashing import hash_audit_event, hash_payload, to_json_safe

logger = get_logger("services.auditor")


@dataclass(frozen=True)
class AuditTraceEntry:
    """A single entry in an audit trace."""

    seq: int
    action: AuditAction
    occurred_at: datetime
    actor_id: UUID
    payload: dict[str, Any]
    hash: str


@dataclass(frozen=True)
class AuditTrace:
    """
    Complete audit trace for an entity.

    Contains all audit events in chronological order.
    """

    entity_type: str
    entity_id: UUID
    entries: tuple[AuditTraceEntry, ...]

    @property
    def is_empty(self) -> bool:
        return len(self.entries) == 0

    @property
    def actions(self) -> tuple[AuditAction, ...]:
        return tuple(entry.action for entry in self.entries)

    @property
    def last_action(self) -> AuditAction | None:
        return self.entries[-1].action if self.entries else None


class AuditorService:
    """
    Service for creating and validating tamper-evident audit events.

    Contract:
        ``emit()`` appends one ``AuditEvent`` row with hash chain linkage
        and flushes it in the caller's transaction.

    Guarantees:
        - Every audit event's ``hash`` is a deterministic function of
          ``(entity_type, entity_id, action, payload_hash, prev_hash)``.
          Tampering with any field is detectable by ``validate_chain()``.
        - ``emit()`` either flushes the row or raises AuditEmissionError.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
        - Does NOT format or display audit events.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._sequence_service = SequenceService(session)

    def _get_last_hash(self) -> str | None:
        """Get the hash of the most recent audit event."""
        last_event = self._session.execute(
            select(AuditEvent).order_by(AuditEvent.seq.desc()).limit(1)
        ).scalar_one_or_none()

        return last_event.hash if last_event else None

    def emit(
        self,
        entity_type: str,
        entity_id: UUID,
        action: AuditAction,
        details: dict[str, Any],
        actor_id: UUID,
    ) -> AuditEvent:
        """
        Record one audit fact in the current transaction.

        Args:
            entity_type: e.g. "StockAllocation", "StockTransfer".
            entity_id: ID of the entity the fact is about.
            action: The action being recorded.
            details: JSON-serializable facts (UUIDs, datetimes and
                Decimals are converted to strings).
            actor_id: Who performed the action.

        Raises:
            AuditEmissionError: if the event could not be recorded.
        """
        try:
            return self._create_audit_event(
                entity_type, entity_id, action, actor_id, details
            )
        except (SQLAlchemyError, TypeError, ValueError) as exc:
            logger.error(
                "audit_emission_failed",
                extra={
                    "entity_type": entity_type,
                    "entity_id": str(entity_id),
                    "action": action.value,
                },
                exc_info=True,
            )
            raise AuditEmissionError(
                entity_type=entity_type,
                entity_id=str(entity_id),
                action=action.value,
                detail=str(exc),
            ) from exc

    def _create_audit_event(
        self,
        entity_type: str,
        entity_id: UUID,
        action: AuditAction,
        actor_id: UUID,
        payload: dict[str, Any] | None = None,
    ) -> AuditEvent:
        """Build, link and flush a new audit event."""
        payload_data = to_json_safe(payload or {})
        computed_payload_hash = hash_payload(payload_data)

        seq = self._sequence_service.next_value(SequenceService.AUDIT_EVENT)
        prev_hash = self._get_last_hash()

        event_hash = hash_audit_event(
            entity_type=entity_type,
            entity_id=str(entity_id),
            action=action.value,
            payload_hash=computed_payload_hash,
            prev_hash=prev_hash,
        )

        audit_event = AuditEvent(
            seq=seq,
            entity_type=entity_type,
            entity_id=entity_id,
            action=action,
            actor_id=actor_id,
            occurred_at=self._clock.now(),
            payload=payload_data,
            payload_hash=computed_payload_hash,
            prev_hash=prev_hash,
            hash=event_hash,
        )

        self._session.add(audit_event)
        self._session.flush()

        logger.info(
            "audit_event_created",
            extra={
                "entity_type": entity_type,
                "entity_id": str(entity_id),
                "action": action.value,
                "seq": seq,
            },
        )

        return audit_event

    # Chain validation

    def validate_chain(self) -> bool:
        """
        Validate the entire audit chain.

        Raises:
            AuditChainBrokenError: If chain validation fails at any point.
        """
        events = self._session.execute(
            select(AuditEvent).order_by(AuditEvent.seq)
        ).scalars().all()

        if not events:
            return True

        if events[0].prev_hash is not None:
            logger.critical("audit_chain_broken", extra={"seq": events[0].seq})
            raise AuditChainBrokenError(
                str(events[0].id),
                "None",
                events[0].prev_hash,
            )

        for i, event in enumerate(events):
            expected_hash = hash_audit_event(
                entity_type=event.entity_type,
                entity_id=str(event.entity_id),
                action=AuditAction(event.action).value,
                payload_hash=event.payload_hash,
                prev_hash=event.prev_hash,
            )

            if event.hash != expected_hash:
                logger.critical("audit_chain_broken", extra={"seq": event.seq})
                raise AuditChainBrokenError(
                    str(event.id),
                    expected_hash,
                    event.hash,
                )

            if i > 0:
                expected_prev = events[i - 1].hash
                if event.prev_hash != expected_prev:
                    logger.critical("audit_chain_broken", extra={"seq": event.seq})
                    raise AuditChainBrokenError(
                        str(event.id),
                        expected_prev,
                        event.prev_hash or "None",
                    )

        logger.info(
            "audit_chain_valid",
            extra={"event_count": len(events)},
        )
        return True

    # Trace and query methods

    def get_trace(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> AuditTrace:
        """All audit events for one entity, oldest first."""
        events = self._session.execute(
            select(AuditEvent)
            .where(
                AuditEvent.entity_type == entity_type,
                AuditEvent.entity_id == entity_id,
            )
            .order_by(AuditEvent.seq)
        ).scalars().all()

        entries = tuple(
            AuditTraceEntry(
                seq=event.seq,
                action=AuditAction(event.action),
                occurred_at=event.occurred_at,
                actor_id=event.actor_id,
                payload=event.payload or {},
                hash=event.hash,
            )
            for event in events
        )

        return AuditTrace(
            entity_type=entity_type,
            entity_id=entity_id,
            entries=entries,
        )

    def get_recent_events(self, limit: int = 100) -> list[AuditEvent]:
        """Most recent audit events, newest first."""
        result = self._session.execute(
            select(AuditEvent).order_by(AuditEvent.seq.desc()).limit(limit)
        )
        return list(result.scalars().all())

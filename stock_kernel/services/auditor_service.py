"""
AuditorService -- tamper-evident audit trail fed from domain events.

Registered as an ``EventSink`` on the EventPublisher, it appends one
``audit_events`` row per published event: order placed, stock document
approved, transfer completed, ledger adjusted.  Rows are hash-chained:

    hash = H(entity_type | entity_id | action | H(payload) | prev_hash)

so rewriting a payload, or splicing a row out, breaks validation from that
row on.  ``seq`` comes from the ``audit_event`` counter in
SequenceService, whose row lock also serializes chain appends.

A failed append rolls back to its own savepoint and re-raises; the
publisher logs it without failing the stock operation that was audited.
"""

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from stock_kernel.domain.clock import Clock, SystemClock
from stock_kernel.domain.events import DomainEvent
from stock_kernel.exceptions import AuditChainBrokenError
from stock_kernel.logging_config import get_logger
from stock_kernel.models.audit_event import AuditAction, AuditEvent
from stock_kernel.services.event_publisher import EventSink
from stock_kernel.services.sequence_service import SequenceService
from stock_kernel.utils.hashing import hash_audit_event, hash_payload, to_json_safe

logger = get_logger("services.auditor")


def _chain_hash(row: AuditEvent, payload_hash: str) -> str:
    return hash_audit_event(
        entity_type=row.entity_type,
        entity_id=str(row.entity_id),
        action=AuditAction(row.action).value,
        payload_hash=payload_hash,
        prev_hash=row.prev_hash,
    )


@dataclass(frozen=True)
class AuditTraceEntry:
    seq: int
    action: AuditAction
    occurred_at: datetime
    actor_id: UUID
    payload: dict[str, Any]
    hash: str

    @classmethod
    def from_row(cls, row: AuditEvent) -> "AuditTraceEntry":
        return cls(
            seq=row.seq,
            action=AuditAction(row.action),
            occurred_at=row.occurred_at,
            actor_id=row.actor_id,
            payload=row.payload or {},
            hash=row.hash,
        )


@dataclass(frozen=True)
class AuditTrace:
    """What happened to one order, document or transfer, oldest first."""

    entity_type: str
    entity_id: UUID
    entries: tuple[AuditTraceEntry, ...]

    @property
    def is_empty(self) -> bool:
        return not self.entries

    @property
    def actions(self) -> tuple[AuditAction, ...]:
        return tuple(entry.action for entry in self.entries)

    @property
    def last_action(self) -> AuditAction | None:
        return self.actions[-1] if self.entries else None


class AuditorService(EventSink):
    """
    Writes and verifies the audit chain.

    Audit rows share the caller's transaction with the change they
    describe; this service never commits.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()
        self._sequence = SequenceService(session)

    def _chain_tip(self) -> str | None:
        return self._session.execute(
            select(AuditEvent.hash).order_by(AuditEvent.seq.desc()).limit(1)
        ).scalar_one_or_none()

    def record(
        self,
        entity_type: str,
        entity_id: UUID,
        action: AuditAction,
        actor_id: UUID,
        payload: dict[str, Any] | None = None,
        occurred_at: datetime | None = None,
    ) -> AuditEvent:
        """Append one row after the current chain tip and flush it."""
        stored_payload = to_json_safe(payload or {})
        payload_hash = hash_payload(stored_payload)

        with self._session.begin_nested():
            # Allocating seq locks the counter row before the tip is read.
            row = AuditEvent(
                seq=self._sequence.next_value(SequenceService.AUDIT_EVENT),
                entity_type=entity_type,
                entity_id=entity_id,
                action=action,
                actor_id=actor_id,
                occurred_at=occurred_at or self._clock.now(),
                payload=stored_payload,
                payload_hash=payload_hash,
                prev_hash=self._chain_tip(),
            )
            row.hash = _chain_hash(row, payload_hash)
            self._session.add(row)
            self._session.flush()

        logger.info(
            "audit_event_created",
            extra={
                "entity_type": entity_type,
                "audited_entity_id": str(entity_id),
                "action": action.value,
                "seq": row.seq,
            },
        )
        return row

    def handle(self, event: DomainEvent) -> None:
        self.record(
            entity_type=event.entity_type,
            entity_id=event.entity_id,
            action=AuditAction(event.action),
            actor_id=event.actor_id,
            payload=event.to_payload(),
            occurred_at=event.occurred_at,
        )

    def get_trace(self, entity_type: str, entity_id: UUID) -> AuditTrace:
        rows: Sequence[AuditEvent] = self._session.scalars(
            select(AuditEvent)
            .where(AuditEvent.entity_type == entity_type, AuditEvent.entity_id == entity_id)
            .order_by(AuditEvent.seq)
        ).all()
        return AuditTrace(
            entity_type=entity_type,
            entity_id=entity_id,
            entries=tuple(AuditTraceEntry.from_row(row) for row in rows),
        )

    def validate_chain(self) -> bool:
        """
        Walk the chain oldest first, recomputing every link and hash.

        Returns True when intact; an empty chain is intact.

        Raises:
            AuditChainBrokenError: at the first row whose ``prev_hash`` is not
                its predecessor's hash, or whose stored hash differs from the
                one recomputed from its stored payload.
        """
        expected_prev: str | None = None
        checked = 0
        for row in self._session.scalars(select(AuditEvent).order_by(AuditEvent.seq)):
            if row.prev_hash != expected_prev:
                self._broken(row, expected_prev, row.prev_hash)
            recomputed = _chain_hash(row, hash_payload(row.payload or {}))
            if row.hash != recomputed:
                self._broken(row, recomputed, row.hash)
            expected_prev = row.hash
            checked += 1

        logger.info("audit_chain_validated", extra={"event_count": checked})
        return True

    @staticmethod
    def _broken(row: AuditEvent, expected: str | None, actual: str | None) -> None:
        logger.critical("audit_chain_broken", extra={"seq": row.seq})
        raise AuditChainBrokenError(str(row.id), expected or "None", actual or "None")

"""
LedgerAuditor -- tamper-evident audit trail and hash chain maintenance.

Responsibility:
    Creates immutable, hash-chained audit events for every period create and
    close, lock apply and release, settlement create, transition and retry
    schedule, and every override.  Provides chain validation for tamper
    detection and trace queries for forensic review.

Architecture position:
    Kernel > Services -- imperative shell, called by every manager in the
    same transaction as the change it documents.

Invariants enforced:
    - Sequence monotonicity via SequenceService (never raw SQL max+1).
    - Chain integrity: ``hash = H(entity_type | entity_id | action |
      payload_hash | prev_hash)``.
    - Append-only: audit events are never modified or deleted (ORM listener).
    - Fail-closed: any failure to write propagates and aborts the operation.

Failure modes:
    - AuditChainBrokenError: a recomputed hash does not match the stored one,
      or prev_hash does not match the predecessor's hash.

Audit relevance:
    This IS the audit service.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.exceptions import AuditChainBrokenError
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.audit_event import AuditAction, LedgerAuditEvent
from ledger_kernel.services.sequence_service import SequenceService
from ledger_kernel.utils.hashing import hash_audit_event, hash_payload, to_json_safe

logger = get_logger("services.auditor")


@dataclass(frozen=True)
class AuditTraceEntry:
    """A single entry in an audit trace."""

    seq: int
    action: str
    occurred_at: datetime
    actor: str
    actor_role: str | None
    payload: dict[str, Any]
    hash: str


@dataclass(frozen=True)
class AuditTrace:
    """Complete audit trace for an entity, in chain order."""

    entity_type: str
    entity_id: str
    entries: tuple[AuditTraceEntry, ...]

    @property
    def is_empty(self) -> bool:
        return len(self.entries) == 0

    @property
    def actions(self) -> list[str]:
        return [entry.action for entry in self.entries]


class LedgerAuditor:
    """
    Service for creating and validating tamper-evident audit events.

    Contract:
        ``record()`` appends one ``LedgerAuditEvent`` carrying the before and
        after state of the entity, flushed in the caller's transaction.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()
        self._sequence_service = SequenceService(session)

    def _get_last_hash(self) -> str | None:
        return self._session.execute(
            select(LedgerAuditEvent.hash)
            .order_by(LedgerAuditEvent.seq.desc())
            .limit(1)
        ).scalar_one_or_none()

    def record(
        self,
        *,
        tenant_id: str,
        entity_type: str,
        entity_id: Any,
        action: AuditAction,
        actor: str,
        actor_role: str | None = None,
        before: dict[str, Any] | None = None,
        after: dict[str, Any] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> LedgerAuditEvent:
        """
        Append an audit event with hash chain linkage.

        Postconditions:
            - A new row is flushed with the next ``seq`` and
              ``hash == H(entity_type, entity_id, action, payload_hash, prev_hash)``.
        """
        # The counter row lock also serializes prev_hash reads across writers.
        seq = self._sequence_service.next_value(SequenceService.AUDIT_EVENT)
        prev_hash = self._get_last_hash()

        payload = to_json_safe(
            {"before": before, "after": after, "metadata": metadata or {}}
        )
        payload_hash = hash_payload(payload)
        event_hash = hash_audit_event(
            entity_type=entity_type,
            entity_id=str(entity_id),
            action=action.value,
            payload_hash=payload_hash,
            prev_hash=prev_hash,
        )

        audit_event = LedgerAuditEvent(
            seq=seq,
            tenant_id=tenant_id,
            entity_type=entity_type,
            entity_id=str(entity_id),
            action=action.value,
            actor=actor,
            actor_role=actor_role,
            occurred_at=self._clock.now(),
            payload=payload,
            payload_hash=payload_hash,
            prev_hash=prev_hash,
            hash=event_hash,
        )
        self._session.add(audit_event)
        self._session.flush()

        logger.debug(
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

        Checks, for every event in seq order: the payload hash matches the
        stored payload, the event hash matches its recomputation, and
        prev_hash equals the predecessor's hash (None for genesis).

        Raises:
            AuditChainBrokenError: If validation fails at any point.
        """
        events = self._session.execute(
            select(LedgerAuditEvent).order_by(LedgerAuditEvent.seq)
        ).scalars().all()

        expected_prev: str | None = None
        for event in events:
            if event.prev_hash != expected_prev:
                self._chain_broken(event, expected_prev or "None", event.prev_hash or "None")

            recomputed_payload_hash = hash_payload(event.payload)
            if recomputed_payload_hash != event.payload_hash:
                self._chain_broken(event, recomputed_payload_hash, event.payload_hash)

            expected_hash = hash_audit_event(
                entity_type=event.entity_type,
                entity_id=event.entity_id,
                action=event.action,
                payload_hash=event.payload_hash,
                prev_hash=event.prev_hash,
            )
            if event.hash != expected_hash:
                self._chain_broken(event, expected_hash, event.hash)

            expected_prev = event.hash

        logger.info("audit_chain_valid", extra={"event_count": len(events)})
        return True

    def _chain_broken(self, event: LedgerAuditEvent, expected: str, actual: str) -> None:
        logger.critical(
            "audit_chain_broken",
            extra={"seq": event.seq, "audit_event_id": str(event.id)},
        )
        raise AuditChainBrokenError(str(event.id), expected, actual)

    # Trace and query methods

    def get_trace(self, entity_type: str, entity_id: Any) -> AuditTrace:
        """Get the complete audit trace for an entity, oldest first."""
        events = self._session.execute(
            select(LedgerAuditEvent)
            .where(
                LedgerAuditEvent.entity_type == entity_type,
                LedgerAuditEvent.entity_id == str(entity_id),
            )
            .order_by(LedgerAuditEvent.seq)
        ).scalars().all()

        return AuditTrace(
            entity_type=entity_type,
            entity_id=str(entity_id),
            entries=tuple(
                AuditTraceEntry(
                    seq=event.seq,
                    action=event.action,
                    occurred_at=event.occurred_at,
                    actor=event.actor,
                    actor_role=event.actor_role,
                    payload=event.payload or {},
                    hash=event.hash,
                )
                for event in events
            ),
        )

    def get_recent_events(
        self,
        tenant_id: str | None = None,
        limit: int = 100,
    ) -> list[LedgerAuditEvent]:
        """Most recent audit events, newest first."""
        stmt = select(LedgerAuditEvent).order_by(LedgerAuditEvent.seq.desc()).limit(limit)
        if tenant_id is not None:
            stmt = stmt.where(LedgerAuditEvent.tenant_id == tenant_id)
        return list(self._session.execute(stmt).scalars().all())

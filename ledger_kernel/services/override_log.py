"""
OverrideAuditLog -- append-only record of every granted exception.

Responsibility:
    Writes one OverrideLogEntry (plus its OVERRIDE_RECORDED audit event) for
    each SOFT_CLOSED posting or reversal override granted by PostingGuard and
    each early lock release.  Exposes the reporting query as a read-only
    pass-through to OverrideLogSelector.

Architecture position:
    Kernel > Services.  Called by PostingGuard and LedgerLockManager; read
    by reporting only.

Invariants enforced:
    - Append-only: entries are never updated or deleted (ORM listener).
    - Fail-closed: a failed write propagates; the operation it protects rolls
      back with it because both live in the caller's transaction.
    - Justification meets the configured minimum length.

Failure modes:
    - OverrideJustificationError: justification missing or too short.
    - ValueError: missing actor or role.
"""

from datetime import datetime
from typing import Any

from sqlalchemy.orm import Session

from ledger_kernel.domain.clock import Clock
from ledger_kernel.domain.dtos import OverrideLogInfo
from ledger_kernel.domain.policy import ControlPolicy
from ledger_kernel.domain.states import OverrideType
from ledger_kernel.exceptions import OverrideJustificationError
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.audit_event import AuditAction
from ledger_kernel.models.override_log import OverrideLogEntry
from ledger_kernel.selectors.override_selector import OverrideLogSelector
from ledger_kernel.services.auditor_service import LedgerAuditor
from ledger_kernel.services.base import BaseService
from ledger_kernel.utils.hashing import to_json_safe

logger = get_logger("services.override_log")


class OverrideAuditLog(BaseService[OverrideLogEntry]):
    """
    Append-only override log.

    Contract:
        ``record()`` never fails silently: it either flushes the entry and its
        audit event, or raises.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        policy: ControlPolicy | None = None,
        auditor: LedgerAuditor | None = None,
    ):
        super().__init__(session, clock, policy)
        self._auditor = auditor or LedgerAuditor(session, self._clock)
        self._selector = OverrideLogSelector(session)

    def validate_justification(self, justification: str | None) -> str:
        """Return the stripped justification, or raise if it is too short."""
        text = (justification or "").strip()
        if len(text) < self._policy.min_justification_length:
            raise OverrideJustificationError(
                min_length=self._policy.min_justification_length,
                actual_length=len(text),
            )
        return text

    def record(
        self,
        *,
        tenant_id: str,
        override_type: OverrideType,
        justification: str | None,
        entity_type: str,
        entity_id: Any,
        override_by: str,
        override_by_role: str,
        affected_entities: list[dict[str, Any]] | None = None,
        approved_by: str | None = None,
    ) -> OverrideLogInfo:
        """
        Append one override entry.

        Postconditions:
            - The entry and an OVERRIDE_RECORDED audit event are flushed in
              the caller's transaction.

        Raises:
            OverrideJustificationError: Justification shorter than the minimum.
            ValueError: override_by or override_by_role missing.
        """
        text = self.validate_justification(justification)
        if not override_by:
            raise ValueError("override_by is required")
        if not override_by_role:
            raise ValueError("override_by_role is required")

        entry = OverrideLogEntry(
            tenant_id=tenant_id,
            override_type=override_type,
            justification=text,
            entity_type=entity_type,
            entity_id=str(entity_id),
            affected_entities=to_json_safe(affected_entities or []),
            override_by=override_by,
            override_by_role=override_by_role,
            approved_by=approved_by,
            created_at=self._clock.now(),
        )
        self.session.add(entry)
        self.session.flush()

        info = OverrideLogInfo.from_model(entry)
        self._auditor.record(
            tenant_id=tenant_id,
            entity_type="OverrideLogEntry",
            entity_id=entry.id,
            action=AuditAction.OVERRIDE_RECORDED,
            actor=override_by,
            actor_role=override_by_role,
            after={
                "override_type": override_type.value,
                "entity_type": entity_type,
                "entity_id": str(entity_id),
                "justification": text,
                "affected_entities": entry.affected_entities,
                "approved_by": approved_by,
            },
        )

        logger.info(
            "override_recorded",
            extra={
                "tenant_id": tenant_id,
                "override_id": str(entry.id),
                "override_type": override_type.value,
                "entity_type": entity_type,
                "entity_id": str(entity_id),
                "override_by": override_by,
                "override_by_role": override_by_role,
            },
        )
        return info

    def query(
        self,
        tenant_id: str,
        override_type: OverrideType | None = None,
        entity_type: str | None = None,
        override_by: str | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
        limit: int = 50,
    ) -> list[OverrideLogInfo]:
        """Read-only reporting query; see OverrideLogSelector.query()."""
        return self._selector.query(
            tenant_id,
            override_type=override_type,
            entity_type=entity_type,
            override_by=override_by,
            since=since,
            until=until,
            limit=limit,
        )

    def get_entry(self, entry_id, tenant_id: str) -> OverrideLogInfo | None:
        return self._selector.get(entry_id, tenant_id)

    def count(self, tenant_id: str, entity_type: str | None = None) -> int:
        return self._selector.count(tenant_id, entity_type=entity_type)

"""
SettlementStateMachine -- settlement lifecycle, retries and finality.

Responsibility:
    Tracks a payout batch from creation to bank-confirmed finality.  Every
    status change goes through one transition check against
    SETTLEMENT_TRANSITIONS; failed settlements are retried on a fixed backoff
    schedule until the retry budget is spent.

Architecture position:
    Kernel > Services.  Independent of period and lock checks, but shares the
    audit discipline: each transition writes a LedgerAuditEvent in the same
    transaction.

Invariants enforced:
    - No implicit transitions; state_transitions is always a valid walk that
      starts with (None -> CREATED).
    - confirm_by_bank() is the only way into BANK_CONFIRMED and requires a
      non-empty UTR.  Nothing before BANK_CONFIRMED is final for
      reconciliation.
    - retry_count never exceeds max_retries.  A failure with no retries left
      marks the record terminal (retries_exhausted, no next_retry_at).
    - SETTLED and exhausted records are immutable (ORM listener).

Failure modes:
    - SettlementNotFoundError, SettlementStateError (carries the valid next
      states), SettlementRetryExhaustedError, MissingUTRError.

Audit relevance:
    The retry queue is a polling contract for an external scheduler; this
    module owns no timers.
"""

from dataclasses import asdict
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from ledger_kernel.domain.clock import Clock
from ledger_kernel.domain.dtos import SettlementInfo, StateTransition
from ledger_kernel.domain.policy import ControlPolicy
from ledger_kernel.domain.states import (
    SettlementStatus,
    can_transition,
    retry_delay,
    valid_next_states,
)
from ledger_kernel.exceptions import (
    MissingUTRError,
    SettlementNotFoundError,
    SettlementRetryExhaustedError,
    SettlementStateError,
)
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.audit_event import AuditAction
from ledger_kernel.models.settlement import Settlement
from ledger_kernel.services.auditor_service import LedgerAuditor
from ledger_kernel.services.base import BaseService

logger = get_logger("services.settlement")

# Column stamped when a settlement enters each state.
_STATE_TIMESTAMPS = {
    SettlementStatus.FUNDS_RESERVED: "funds_reserved_at",
    SettlementStatus.SENT_TO_BANK: "sent_to_bank_at",
    SettlementStatus.BANK_CONFIRMED: "bank_confirmed_at",
    SettlementStatus.SETTLED: "settled_at",
    SettlementStatus.FAILED: "failed_at",
}


def _to_amount(value: Any, name: str) -> Decimal:
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except InvalidOperation as exc:
        raise ValueError(f"{name} must be a decimal amount, got {value!r}") from exc
    if not amount.is_finite():
        raise ValueError(f"{name} must be finite, got {value!r}")
    return amount


def _snapshot(settlement: Settlement) -> dict:
    data = asdict(SettlementInfo.from_model(settlement))
    # The walk itself is audited step by step; keep snapshots small.
    data.pop("state_transitions", None)
    return data


class SettlementStateMachine(BaseService[Settlement]):
    """
    Manager for settlement lifecycle records.

    Contract:
        Every mutating method loads the row under ``SELECT ... FOR UPDATE``,
        validates the transition, appends one {from, to, at, by} entry and
        flushes in the caller's transaction.

    Non-goals:
        - Does NOT move money or talk to banks; callers report outcomes.
        - Does NOT run the retry schedule; retry_queue() feeds a scheduler.
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

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def create_settlement(
        self,
        tenant_id: str,
        merchant_id: str,
        settlement_ref: str,
        net_amount: Decimal | int | str,
        created_by: str,
        gross_amount: Decimal | int | str | None = None,
        fees_amount: Decimal | int | str | None = None,
        settlement_date: date | None = None,
        max_retries: int | None = None,
    ) -> SettlementInfo:
        """
        Create a settlement in CREATED.

        Raises:
            ValueError: non-positive net_amount, negative max_retries, or a
                missing identifier.
        """
        if not merchant_id or not settlement_ref or not created_by:
            raise ValueError("merchant_id, settlement_ref and created_by are required")
        net = _to_amount(net_amount, "net_amount")
        if net <= 0:
            raise ValueError(f"net_amount must be positive, got {net}")
        retries = self._policy.max_retries if max_retries is None else max_retries
        if retries < 0:
            raise ValueError(f"max_retries must not be negative, got {retries}")

        now = self._clock.now()
        settlement = Settlement(
            tenant_id=tenant_id,
            merchant_id=merchant_id,
            settlement_ref=settlement_ref,
            net_amount=net,
            gross_amount=_to_amount(gross_amount, "gross_amount") if gross_amount is not None else None,
            fees_amount=_to_amount(fees_amount, "fees_amount") if fees_amount is not None else None,
            settlement_date=settlement_date,
            status=SettlementStatus.CREATED,
            retry_count=0,
            max_retries=retries,
            retries_exhausted=False,
            retry_history=[],
            state_transitions=[
                StateTransition(None, SettlementStatus.CREATED, now, created_by).to_json()
            ],
            created_by_id=created_by,
        )
        self.session.add(settlement)
        self.session.flush()

        self._auditor.record(
            tenant_id=tenant_id,
            entity_type="Settlement",
            entity_id=settlement.id,
            action=AuditAction.SETTLEMENT_CREATED,
            actor=created_by,
            after=_snapshot(settlement),
        )

        logger.info(
            "settlement_created",
            extra={
                "tenant_id": tenant_id,
                "settlement_id": str(settlement.id),
                "settlement_ref": settlement_ref,
                "merchant_id": merchant_id,
                "net_amount": net,
                "max_retries": retries,
            },
        )
        return SettlementInfo.from_model(settlement)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def reserve_funds(self, settlement_id: UUID, tenant_id: str, actor: str) -> SettlementInfo:
        """CREATED or RETRIED -> FUNDS_RESERVED."""
        settlement = self._load_for_update(settlement_id, tenant_id)
        self._transition(settlement, SettlementStatus.FUNDS_RESERVED, actor)
        return SettlementInfo.from_model(settlement)

    def send_to_bank(
        self,
        settlement_id: UUID,
        tenant_id: str,
        actor: str,
        bank_batch_id: str | None = None,
    ) -> SettlementInfo:
        """FUNDS_RESERVED -> SENT_TO_BANK."""
        settlement = self._load_for_update(settlement_id, tenant_id)
        self._transition(
            settlement,
            SettlementStatus.SENT_TO_BANK,
            actor,
            changes={"bank_batch_id": bank_batch_id},
        )
        return SettlementInfo.from_model(settlement)

    def confirm_by_bank(
        self,
        settlement_id: UUID,
        tenant_id: str,
        actor: str,
        utr_number: str | None,
        bank_reference_number: str | None = None,
        bank_transaction_id: str | None = None,
        settlement_batch_id: str | None = None,
    ) -> SettlementInfo:
        """
        SENT_TO_BANK -> BANK_CONFIRMED: the finality gate.

        Raises:
            MissingUTRError: utr_number missing, blank or not a string; checked
                before any state is read.
        """
        if not isinstance(utr_number, str) or not utr_number.strip():
            raise MissingUTRError(str(settlement_id))

        settlement = self._load_for_update(settlement_id, tenant_id)
        self._transition(
            settlement,
            SettlementStatus.BANK_CONFIRMED,
            actor,
            changes={
                "utr_number": utr_number.strip(),
                "bank_reference_number": bank_reference_number,
                "bank_transaction_id": bank_transaction_id,
                "settlement_batch_id": settlement_batch_id,
            },
        )
        return SettlementInfo.from_model(settlement)

    def mark_settled(self, settlement_id: UUID, tenant_id: str, actor: str) -> SettlementInfo:
        """BANK_CONFIRMED -> SETTLED.  SETTLED is terminal."""
        settlement = self._load_for_update(settlement_id, tenant_id)
        self._transition(settlement, SettlementStatus.SETTLED, actor)
        return SettlementInfo.from_model(settlement)

    def mark_failed(
        self,
        settlement_id: UUID,
        tenant_id: str,
        actor: str,
        failure_reason: str,
    ) -> SettlementInfo:
        """
        Any in-flight state -> FAILED.

        If no retries are left (retry_count >= max_retries) the record becomes
        terminally failed: retries_exhausted is set and no retry is scheduled.
        """
        if not failure_reason or not failure_reason.strip():
            raise ValueError("failure_reason is required")

        settlement = self._load_for_update(settlement_id, tenant_id)
        exhausted = settlement.retry_count >= settlement.max_retries
        self._transition(
            settlement,
            SettlementStatus.FAILED,
            actor,
            changes={
                "failure_reason": failure_reason.strip(),
                "next_retry_at": None,
                "retries_exhausted": exhausted,
            },
        )
        if exhausted:
            logger.warning(
                "settlement_retries_exhausted",
                extra={
                    "tenant_id": tenant_id,
                    "settlement_id": str(settlement.id),
                    "retry_count": settlement.retry_count,
                    "max_retries": settlement.max_retries,
                    "failure_reason": settlement.failure_reason,
                },
            )
        return SettlementInfo.from_model(settlement)

    def retry(self, settlement_id: UUID, tenant_id: str, actor: str) -> SettlementInfo:
        """
        FAILED -> RETRIED, scheduling the next attempt.

        next_retry_at = now + delay(retry_count before the increment), using
        the fixed backoff schedule (15 min, 1 h, 4 h by default).

        Raises:
            SettlementRetryExhaustedError: the retry budget is spent.
            SettlementStateError: the settlement is not FAILED.
        """
        settlement = self._load_for_update(settlement_id, tenant_id)
        if settlement.status == SettlementStatus.FAILED and (
            settlement.retries_exhausted or settlement.retry_count >= settlement.max_retries
        ):
            raise SettlementRetryExhaustedError(
                str(settlement.id), settlement.retry_count, settlement.max_retries
            )

        now = self._clock.now()
        attempt = settlement.retry_count + 1
        next_retry_at = now + retry_delay(
            settlement.retry_count, self._policy.retry_backoff_minutes
        )
        history = list(settlement.retry_history or [])
        history.append(
            {
                "attempt": attempt,
                "at": now.isoformat(),
                "by": actor,
                "next_retry_at": next_retry_at.isoformat(),
                "failure_reason": settlement.failure_reason,
            }
        )

        self._transition(
            settlement,
            SettlementStatus.RETRIED,
            actor,
            changes={
                "retry_count": attempt,
                "last_retry_at": now,
                "next_retry_at": next_retry_at,
                "retry_history": history,
            },
            action=AuditAction.SETTLEMENT_RETRY_SCHEDULED,
        )

        logger.info(
            "settlement_retry_scheduled",
            extra={
                "tenant_id": tenant_id,
                "settlement_id": str(settlement.id),
                "retry_count": attempt,
                "max_retries": settlement.max_retries,
                "next_retry_at": next_retry_at,
            },
        )
        return SettlementInfo.from_model(settlement)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_settlement(self, settlement_id: UUID, tenant_id: str) -> SettlementInfo:
        """
        Raises:
            SettlementNotFoundError: no such settlement for the tenant.
        """
        settlement = self.session.execute(
            select(Settlement).where(
                Settlement.id == settlement_id, Settlement.tenant_id == tenant_id
            )
        ).scalar_one_or_none()
        if settlement is None:
            raise SettlementNotFoundError(str(settlement_id))
        return SettlementInfo.from_model(settlement)

    def list_settlements(
        self,
        tenant_id: str,
        status: SettlementStatus | str | None = None,
        merchant_id: str | None = None,
        limit: int = 100,
    ) -> list[SettlementInfo]:
        """Settlements for a tenant, newest first."""
        stmt = select(Settlement).where(Settlement.tenant_id == tenant_id)
        if status is not None:
            stmt = stmt.where(Settlement.status == SettlementStatus(status))
        if merchant_id is not None:
            stmt = stmt.where(Settlement.merchant_id == merchant_id)
        stmt = stmt.order_by(Settlement.created_at.desc(), Settlement.settlement_ref.desc()).limit(limit)
        return [SettlementInfo.from_model(s) for s in self.session.execute(stmt).scalars()]

    def retry_queue(
        self,
        now: datetime | None = None,
        tenant_id: str | None = None,
        limit: int = 100,
    ) -> list[SettlementInfo]:
        """
        RETRIED settlements due for another attempt (next_retry_at <= now),
        earliest first.  Without tenant_id, covers every tenant.
        """
        due = now or self._clock.now()
        stmt = select(Settlement).where(
            Settlement.status == SettlementStatus.RETRIED,
            Settlement.next_retry_at.is_not(None),
            Settlement.next_retry_at <= due,
        )
        if tenant_id is not None:
            stmt = stmt.where(Settlement.tenant_id == tenant_id)
        stmt = stmt.order_by(Settlement.next_retry_at.asc()).limit(limit)
        return [SettlementInfo.from_model(s) for s in self.session.execute(stmt).scalars()]

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _load_for_update(self, settlement_id: UUID, tenant_id: str) -> Settlement:
        settlement = self.session.execute(
            select(Settlement)
            .where(Settlement.id == settlement_id, Settlement.tenant_id == tenant_id)
            .with_for_update()
        ).scalar_one_or_none()
        if settlement is None:
            raise SettlementNotFoundError(str(settlement_id))
        return settlement

    def _transition(
        self,
        settlement: Settlement,
        target: SettlementStatus,
        actor: str,
        changes: dict[str, Any] | None = None,
        action: AuditAction = AuditAction.SETTLEMENT_TRANSITIONED,
    ) -> None:
        if not actor:
            raise ValueError("actor is required for a settlement transition")
        current = settlement.status
        if not can_transition(current, target):
            raise SettlementStateError(
                current_state=current.value,
                attempted_state=target.value,
                settlement_id=str(settlement.id),
                valid_transitions=valid_next_states(current),
            )

        now = self._clock.now()
        before = _snapshot(settlement)

        settlement.status = target
        timestamp_column = _STATE_TIMESTAMPS.get(target)
        if timestamp_column is not None:
            setattr(settlement, timestamp_column, now)
        for name, value in (changes or {}).items():
            setattr(settlement, name, value)
        settlement.state_transitions = list(settlement.state_transitions or []) + [
            StateTransition(current, target, now, actor).to_json()
        ]
        settlement.updated_by_id = actor
        self.session.flush()

        self._auditor.record(
            tenant_id=settlement.tenant_id,
            entity_type="Settlement",
            entity_id=settlement.id,
            action=action,
            actor=actor,
            before=before,
            after=_snapshot(settlement),
            metadata={"from": current.value, "to": target.value},
        )

        logger.info(
            "settlement_transitioned",
            extra={
                "tenant_id": settlement.tenant_id,
                "settlement_id": str(settlement.id),
                "from_status": current.value,
                "to_status": target.value,
                "actor": actor,
            },
        )

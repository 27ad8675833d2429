"""
LedgerLockManager -- date-range ledger locks.

Responsibility:
    Applies and releases AUDIT_LOCK and RECONCILIATION_LOCK freezes, creates
    the PERIOD_LOCK that seals a HARD_CLOSED period, and answers "is this
    transaction date locked?" for PostingGuard.

Architecture position:
    Kernel > Services.  Called by PostingGuard (check_locks) and
    AccountingPeriodManager (PERIOD_LOCK creation on HARD_CLOSE).

Invariants enforced:
    - No two ACTIVE locks of a tenant overlap (inclusive range intersection,
      any lock type).  Checked under a row lock; the storage-level overlap
      guard on ledger_locks backs it up under concurrent writers.
    - PERIOD_LOCK is never created through apply_lock() and never released.
    - Only the configured lock-release roles may release a lock; an early
      release (before lock_end_date has passed) is an override and is logged.
    - Every apply and release writes a LedgerAuditEvent in the same
      transaction.

Failure modes:
    - ManualPeriodLockError, InvalidLockRangeError, LockOverlapError on apply.
    - InsufficientOverridePrivilegesError, LockNotFoundError,
      PeriodLockReleaseError, LockAlreadyReleasedError on release.

Audit relevance:
    Locks are what make a reconciled or audited window tamper-proof.  Reads
    are never blocked; only postings and reversals are.
"""

from dataclasses import asdict
from datetime import date, datetime
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ledger_kernel.domain.clock import Clock
from ledger_kernel.domain.dtos import LedgerLockInfo, LockCheck
from ledger_kernel.domain.policy import ControlPolicy
from ledger_kernel.domain.states import LockStatus, LockType, OverrideType, as_date
from ledger_kernel.exceptions import (
    InsufficientOverridePrivilegesError,
    InvalidLockRangeError,
    LockAlreadyReleasedError,
    LockNotFoundError,
    LockOverlapError,
    ManualPeriodLockError,
    PeriodLockReleaseError,
)
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.accounting_period import AccountingPeriod
from ledger_kernel.models.audit_event import AuditAction
from ledger_kernel.models.ledger_lock import LedgerLock
from ledger_kernel.services.auditor_service import LedgerAuditor
from ledger_kernel.services.base import BaseService
from ledger_kernel.services.override_log import OverrideAuditLog

logger = get_logger("services.locks")


def _snapshot(lock: LedgerLock) -> dict:
    return asdict(LedgerLockInfo.from_model(lock))


class LedgerLockManager(BaseService[LedgerLock]):
    """
    Manager for ledger locks.

    Contract:
        All writes flush in the caller's transaction; a failed audit or
        override write aborts the lock change with it.

    Non-goals:
        - Does NOT decide whether a posting is allowed; PostingGuard does,
          using check_locks().
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        policy: ControlPolicy | None = None,
        auditor: LedgerAuditor | None = None,
        override_log: OverrideAuditLog | None = None,
    ):
        super().__init__(session, clock, policy)
        self._auditor = auditor or LedgerAuditor(session, self._clock)
        self._override_log = override_log or OverrideAuditLog(
            session, self._clock, self._policy, self._auditor
        )

    # ------------------------------------------------------------------
    # Apply
    # ------------------------------------------------------------------

    def apply_lock(
        self,
        tenant_id: str,
        lock_type: LockType | str,
        lock_start_date: date | datetime,
        lock_end_date: date | datetime,
        reason: str,
        locked_by: str,
        locked_by_role: str | None = None,
        reference_number: str | None = None,
    ) -> LedgerLockInfo:
        """
        Apply an AUDIT_LOCK or RECONCILIATION_LOCK.

        Raises:
            ManualPeriodLockError: lock_type is PERIOD_LOCK.
            InvalidLockRangeError: start after end.
            LockOverlapError: an ACTIVE lock already covers part of the range.
            ValueError: reason or locked_by missing.
        """
        lock_type = LockType(lock_type)
        if lock_type == LockType.PERIOD_LOCK:
            raise ManualPeriodLockError(tenant_id)

        return self._apply(
            tenant_id=tenant_id,
            lock_type=lock_type,
            start=as_date(lock_start_date),
            end=as_date(lock_end_date),
            reason=reason,
            locked_by=locked_by,
            locked_by_role=locked_by_role,
            reference_number=reference_number,
            accounting_period_id=None,
        )

    def _create_period_lock(self, period: AccountingPeriod, locked_by: str) -> LedgerLockInfo:
        """
        Seal a HARD_CLOSED period.  Called only by AccountingPeriodManager,
        inside the transaction that moves the period to HARD_CLOSED.
        """
        return self._apply(
            tenant_id=period.tenant_id,
            lock_type=LockType.PERIOD_LOCK,
            start=period.period_start,
            end=period.period_end,
            reason=f"Auto-lock for HARD_CLOSED {period.period_type.value} period",
            locked_by=locked_by,
            locked_by_role=self._policy.override_role,
            reference_number=None,
            accounting_period_id=period.id,
        )

    def _apply(
        self,
        *,
        tenant_id: str,
        lock_type: LockType,
        start: date,
        end: date,
        reason: str,
        locked_by: str,
        locked_by_role: str | None,
        reference_number: str | None,
        accounting_period_id: UUID | None,
    ) -> LedgerLockInfo:
        if not reason or not reason.strip():
            raise ValueError("A reason is required to apply a ledger lock")
        if not locked_by:
            raise ValueError("locked_by is required")
        if start > end:
            raise InvalidLockRangeError(start.isoformat(), end.isoformat())

        conflict = self._find_overlapping(tenant_id, start, end, for_update=True)
        if conflict is not None:
            raise LockOverlapError(
                tenant_id=tenant_id,
                lock_start_date=start.isoformat(),
                lock_end_date=end.isoformat(),
                conflicting_lock_id=str(conflict.id),
                conflicting_lock_type=conflict.lock_type.value,
            )

        lock = LedgerLock(
            tenant_id=tenant_id,
            lock_type=lock_type,
            lock_start_date=start,
            lock_end_date=end,
            lock_status=LockStatus.ACTIVE,
            reason=reason.strip(),
            reference_number=reference_number,
            accounting_period_id=accounting_period_id,
            locked_by=locked_by,
            locked_by_role=locked_by_role,
            locked_at=self._clock.now(),
            created_by_id=locked_by,
        )
        self.session.add(lock)
        try:
            self.session.flush()
        except IntegrityError as exc:
            # A concurrent writer committed an overlapping ACTIVE range first.
            raise LockOverlapError(
                tenant_id=tenant_id,
                lock_start_date=start.isoformat(),
                lock_end_date=end.isoformat(),
                conflicting_lock_id=None,
                conflicting_lock_type=lock_type.value,
            ) from exc

        self._auditor.record(
            tenant_id=tenant_id,
            entity_type="LedgerLock",
            entity_id=lock.id,
            action=AuditAction.LOCK_APPLIED,
            actor=locked_by,
            actor_role=locked_by_role,
            after=_snapshot(lock),
        )

        logger.info(
            "lock_applied",
            extra={
                "tenant_id": tenant_id,
                "lock_id": str(lock.id),
                "lock_type": lock_type.value,
                "lock_start_date": start.isoformat(),
                "lock_end_date": end.isoformat(),
                "locked_by": locked_by,
                "accounting_period_id": str(accounting_period_id) if accounting_period_id else None,
            },
        )
        return LedgerLockInfo.from_model(lock)

    # ------------------------------------------------------------------
    # Release
    # ------------------------------------------------------------------

    def release_lock(
        self,
        lock_id: UUID,
        tenant_id: str,
        released_by: str,
        released_by_role: str | None,
        release_notes: str,
    ) -> LedgerLockInfo:
        """
        Release an AUDIT_LOCK or RECONCILIATION_LOCK.

        A release while the locked range has not yet fully passed (today <=
        lock_end_date) bypasses the recommended workflow: it writes one
        EARLY_LOCK_RELEASE override entry, using release_notes as the
        justification.

        Raises:
            InsufficientOverridePrivilegesError: role may not release locks.
            LockNotFoundError: no such lock for the tenant.
            PeriodLockReleaseError: the lock is a PERIOD_LOCK.
            LockAlreadyReleasedError: the lock is already RELEASED.
            OverrideJustificationError: early release with short notes.
            ValueError: released_by or release_notes missing.
        """
        if not released_by:
            raise ValueError("released_by is required")
        if not release_notes or not release_notes.strip():
            raise ValueError("release_notes are required to release a ledger lock")
        if not self._policy.can_release_locks(released_by_role):
            raise InsufficientOverridePrivilegesError(
                user_role=released_by_role,
                required_role=", ".join(self._policy.lock_release_roles),
                operation="release_lock",
            )

        lock = self.session.execute(
            select(LedgerLock)
            .where(LedgerLock.id == lock_id, LedgerLock.tenant_id == tenant_id)
            .with_for_update()
        ).scalar_one_or_none()
        if lock is None:
            raise LockNotFoundError(str(lock_id))
        if lock.lock_type == LockType.PERIOD_LOCK:
            raise PeriodLockReleaseError(
                str(lock.id),
                str(lock.accounting_period_id) if lock.accounting_period_id else None,
            )
        if lock.lock_status == LockStatus.RELEASED:
            raise LockAlreadyReleasedError(str(lock.id))

        now = self._clock.now()
        early = self._clock.today() <= lock.lock_end_date
        if early:
            # Validate before mutating so a short note leaves the lock untouched.
            self._override_log.validate_justification(release_notes)

        before = _snapshot(lock)
        lock.lock_status = LockStatus.RELEASED
        lock.released_by = released_by
        lock.released_at = now
        lock.release_notes = release_notes.strip()
        lock.updated_by_id = released_by
        self.session.flush()

        override_id = None
        if early:
            override = self._override_log.record(
                tenant_id=tenant_id,
                override_type=OverrideType.EARLY_LOCK_RELEASE,
                justification=release_notes,
                entity_type="ledger_lock",
                entity_id=lock.id,
                override_by=released_by,
                override_by_role=released_by_role,
                affected_entities=[
                    {
                        "entity_type": "ledger_lock",
                        "entity_id": str(lock.id),
                        "lock_type": lock.lock_type.value,
                        "lock_start_date": lock.lock_start_date.isoformat(),
                        "lock_end_date": lock.lock_end_date.isoformat(),
                    }
                ],
            )
            override_id = override.id

        self._auditor.record(
            tenant_id=tenant_id,
            entity_type="LedgerLock",
            entity_id=lock.id,
            action=AuditAction.LOCK_RELEASED,
            actor=released_by,
            actor_role=released_by_role,
            before=before,
            after=_snapshot(lock),
            metadata={"early_release": early, "override_log_id": override_id},
        )

        logger.info(
            "lock_released",
            extra={
                "tenant_id": tenant_id,
                "lock_id": str(lock.id),
                "lock_type": lock.lock_type.value,
                "released_by": released_by,
                "early_release": early,
            },
        )
        return LedgerLockInfo.from_model(lock)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def check_locks(self, tenant_id: str, transaction_date: date | datetime) -> LockCheck:
        """Is any ACTIVE lock's range covering transaction_date?"""
        txn_date = as_date(transaction_date)
        lock = self.session.execute(
            select(LedgerLock)
            .where(
                LedgerLock.tenant_id == tenant_id,
                LedgerLock.lock_status == LockStatus.ACTIVE,
                LedgerLock.lock_start_date <= txn_date,
                LedgerLock.lock_end_date >= txn_date,
            )
            .order_by(LedgerLock.locked_at)
            .limit(1)
            .with_for_update(read=True)
        ).scalar_one_or_none()

        if lock is None:
            return LockCheck(tenant_id=tenant_id, transaction_date=txn_date, is_locked=False)

        return LockCheck(
            tenant_id=tenant_id,
            transaction_date=txn_date,
            is_locked=True,
            lock_id=lock.id,
            lock_type=lock.lock_type,
            locked_by=lock.locked_by,
            locked_at=lock.locked_at,
            reason=lock.reason,
            accounting_period_id=lock.accounting_period_id,
        )

    def get_lock(self, lock_id: UUID, tenant_id: str) -> LedgerLockInfo:
        """
        Raises:
            LockNotFoundError: no such lock for the tenant.
        """
        lock = self.session.execute(
            select(LedgerLock).where(
                LedgerLock.id == lock_id, LedgerLock.tenant_id == tenant_id
            )
        ).scalar_one_or_none()
        if lock is None:
            raise LockNotFoundError(str(lock_id))
        return LedgerLockInfo.from_model(lock)

    def list_active_locks(
        self,
        tenant_id: str,
        lock_type: LockType | str | None = None,
    ) -> list[LedgerLockInfo]:
        """ACTIVE locks, most recently applied first."""
        stmt = select(LedgerLock).where(
            LedgerLock.tenant_id == tenant_id,
            LedgerLock.lock_status == LockStatus.ACTIVE,
        )
        if lock_type is not None:
            stmt = stmt.where(LedgerLock.lock_type == LockType(lock_type))
        stmt = stmt.order_by(LedgerLock.locked_at.desc())
        return [LedgerLockInfo.from_model(l) for l in self.session.execute(stmt).scalars()]

    def lock_history(
        self,
        tenant_id: str,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> list[LedgerLockInfo]:
        """All locks (any status) within [start_date, end_date], newest first."""
        stmt = select(LedgerLock).where(LedgerLock.tenant_id == tenant_id)
        if start_date is not None:
            stmt = stmt.where(LedgerLock.lock_start_date >= as_date(start_date))
        if end_date is not None:
            stmt = stmt.where(LedgerLock.lock_end_date <= as_date(end_date))
        stmt = stmt.order_by(LedgerLock.locked_at.desc())
        return [LedgerLockInfo.from_model(l) for l in self.session.execute(stmt).scalars()]

    def _find_overlapping(
        self,
        tenant_id: str,
        start: date,
        end: date,
        for_update: bool = False,
    ) -> LedgerLock | None:
        stmt = (
            select(LedgerLock)
            .where(
                LedgerLock.tenant_id == tenant_id,
                LedgerLock.lock_status == LockStatus.ACTIVE,
                LedgerLock.lock_start_date <= end,
                LedgerLock.lock_end_date >= start,
            )
            .order_by(LedgerLock.lock_start_date)
            .limit(1)
        )
        if for_update:
            stmt = stmt.with_for_update()
        return self.session.execute(stmt).scalar_one_or_none()

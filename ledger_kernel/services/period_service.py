"""
AccountingPeriodManager -- accounting period lifecycle.

Responsibility:
    Creates contiguous, non-overlapping accounting periods, moves them along
    OPEN -> SOFT_CLOSED -> HARD_CLOSED, seals HARD_CLOSED periods with a
    PERIOD_LOCK, and answers "may this transaction date be posted?" for
    PostingGuard.

Architecture position:
    Kernel > Services.  Uses LedgerLockManager for PERIOD_LOCK creation.
    Read by PostingGuard through check_period_for_posting().

Invariants enforced:
    - At most one OPEN period per (tenant, period_type): checked under a row
      lock and backed by the partial unique index uq_one_open_period_per_type.
    - Contiguity: period_start(n+1) == period_end(n) + 1 day; no overlaps.
    - Forward-only transitions; HARD_CLOSED is terminal.  There is no reopen
      path.
    - HARD_CLOSE and its PERIOD_LOCK are written in the same transaction.

Failure modes:
    - InvalidPeriodRangeError, PeriodOverlapError, PeriodGapError,
      OpenPeriodExistsError on create.
    - PeriodNotFoundError, InvalidPeriodTransitionError, LockOverlapError
      (an ACTIVE audit/reconciliation lock covers the range) on close.
    - PeriodImmutableError on reopen.

Audit relevance:
    Every create and close writes a LedgerAuditEvent with before and after
    state.
"""

from dataclasses import asdict
from datetime import date, datetime, timedelta
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ledger_kernel.domain.clock import Clock
from ledger_kernel.domain.dtos import AccountingPeriodInfo, PeriodPostingCheck
from ledger_kernel.domain.policy import ControlPolicy
from ledger_kernel.domain.states import (
    PERIOD_TRANSITIONS,
    PeriodStatus,
    PeriodType,
    as_date,
    next_period_status,
)
from ledger_kernel.exceptions import (
    InvalidPeriodRangeError,
    InvalidPeriodTransitionError,
    OpenPeriodExistsError,
    PeriodGapError,
    PeriodImmutableError,
    PeriodNotFoundError,
    PeriodOverlapError,
)
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.accounting_period import AccountingPeriod
from ledger_kernel.models.audit_event import AuditAction
from ledger_kernel.services.auditor_service import LedgerAuditor
from ledger_kernel.services.base import BaseService
from ledger_kernel.services.lock_service import LedgerLockManager

logger = get_logger("services.period")

# Consecutive periods meet with no gap: next start = previous end + 1 day.
PERIOD_EPSILON = timedelta(days=1)


def _snapshot(period: AccountingPeriod) -> dict:
    return asdict(AccountingPeriodInfo.from_model(period))


class AccountingPeriodManager(BaseService[AccountingPeriod]):
    """
    Manager for accounting periods.

    Contract:
        All writes flush in the caller's transaction.

    Non-goals:
        - Does NOT check ledger locks for postings; PostingGuard composes
          this manager with LedgerLockManager.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        policy: ControlPolicy | None = None,
        auditor: LedgerAuditor | None = None,
        lock_manager: LedgerLockManager | None = None,
    ):
        super().__init__(session, clock, policy)
        self._auditor = auditor or LedgerAuditor(session, self._clock)
        self._lock_manager = lock_manager or LedgerLockManager(
            session, self._clock, self._policy, self._auditor
        )

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def create_period(
        self,
        tenant_id: str,
        period_type: PeriodType | str,
        period_start: date | datetime,
        period_end: date | datetime,
        created_by: str,
    ) -> AccountingPeriodInfo:
        """
        Create a new OPEN period.

        Preconditions:
            - [period_start, period_end] is an inclusive calendar range.
            - For the second and subsequent periods of this type,
              period_start is the day after the latest period_end.

        Raises:
            InvalidPeriodRangeError: start after end.
            PeriodOverlapError: range intersects an existing period.
            PeriodGapError: range does not continue the latest period.
            OpenPeriodExistsError: an OPEN period of this type exists.
        """
        if not created_by:
            raise ValueError("created_by is required")
        period_type = PeriodType(period_type)
        start = as_date(period_start)
        end = as_date(period_end)
        if start > end:
            raise InvalidPeriodRangeError(start.isoformat(), end.isoformat())

        overlapping = self.session.execute(
            select(AccountingPeriod)
            .where(
                AccountingPeriod.tenant_id == tenant_id,
                AccountingPeriod.period_type == period_type,
                AccountingPeriod.period_start <= end,
                AccountingPeriod.period_end >= start,
            )
            .order_by(AccountingPeriod.period_start)
            .limit(1)
        ).scalar_one_or_none()
        if overlapping is not None:
            raise PeriodOverlapError(
                new_period_start=start.isoformat(),
                new_period_end=end.isoformat(),
                conflicting_period_id=str(overlapping.id),
                conflicting_period_start=overlapping.period_start.isoformat(),
                conflicting_period_end=overlapping.period_end.isoformat(),
            )

        # Row lock on the latest period serializes concurrent creators.
        latest = self.session.execute(
            select(AccountingPeriod)
            .where(
                AccountingPeriod.tenant_id == tenant_id,
                AccountingPeriod.period_type == period_type,
            )
            .order_by(AccountingPeriod.period_end.desc())
            .limit(1)
            .with_for_update()
        ).scalar_one_or_none()
        if latest is not None:
            expected_start = latest.period_end + PERIOD_EPSILON
            if start != expected_start:
                raise PeriodGapError(
                    last_period_end=latest.period_end.isoformat(),
                    new_period_start=start.isoformat(),
                    period_type=period_type.value,
                    expected_start=expected_start.isoformat(),
                )

        open_period = self._find_open(tenant_id, period_type)
        if open_period is not None:
            raise OpenPeriodExistsError(tenant_id, period_type.value, str(open_period.id))

        period = AccountingPeriod(
            tenant_id=tenant_id,
            period_type=period_type,
            period_start=start,
            period_end=end,
            status=PeriodStatus.OPEN,
            created_by_id=created_by,
        )
        self.session.add(period)
        try:
            self.session.flush()
        except IntegrityError as exc:
            raise OpenPeriodExistsError(tenant_id, period_type.value, None) from exc

        self._auditor.record(
            tenant_id=tenant_id,
            entity_type="AccountingPeriod",
            entity_id=period.id,
            action=AuditAction.PERIOD_CREATED,
            actor=created_by,
            after=_snapshot(period),
        )

        logger.info(
            "period_created",
            extra={
                "tenant_id": tenant_id,
                "period_id": str(period.id),
                "period_type": period_type.value,
                "period_start": start.isoformat(),
                "period_end": end.isoformat(),
                "created_by": created_by,
            },
        )
        return AccountingPeriodInfo.from_model(period)

    # ------------------------------------------------------------------
    # Close
    # ------------------------------------------------------------------

    def close_period(
        self,
        period_id: UUID,
        tenant_id: str,
        target_status: PeriodStatus | str,
        closed_by: str,
        notes: str | None = None,
    ) -> AccountingPeriodInfo:
        """
        Move a period one step forward: OPEN -> SOFT_CLOSED or
        SOFT_CLOSED -> HARD_CLOSED.

        Reaching HARD_CLOSED creates a PERIOD_LOCK over
        [period_start, period_end] in the same transaction.  The lock is
        written first, so a conflicting ACTIVE lock fails the close before
        the status changes.

        Raises:
            PeriodNotFoundError: no such period for the tenant.
            InvalidPeriodTransitionError: target is not the immediate next
                status (including OPEN -> HARD_CLOSED and any close of a
                HARD_CLOSED period).
            LockOverlapError: an ACTIVE lock already covers part of the range.
        """
        if not closed_by:
            raise ValueError("closed_by is required")
        target = PeriodStatus(target_status)

        period = self.session.execute(
            select(AccountingPeriod)
            .where(
                AccountingPeriod.id == period_id,
                AccountingPeriod.tenant_id == tenant_id,
            )
            .with_for_update()
        ).scalar_one_or_none()
        if period is None:
            raise PeriodNotFoundError(period_id=str(period_id))

        current = period.status
        if next_period_status(current) != target:
            raise InvalidPeriodTransitionError(
                period_id=str(period.id),
                current_status=current.value,
                target_status=target.value,
                valid_targets=sorted(s.value for s in PERIOD_TRANSITIONS[current]),
            )

        period_lock = None
        if target == PeriodStatus.HARD_CLOSED:
            period_lock = self._lock_manager._create_period_lock(period, closed_by)

        before = _snapshot(period)
        period.status = target
        period.closed_by = closed_by
        period.closed_at = self._clock.now()
        period.closure_notes = notes
        period.updated_by_id = closed_by
        self.session.flush()

        self._auditor.record(
            tenant_id=tenant_id,
            entity_type="AccountingPeriod",
            entity_id=period.id,
            action=AuditAction.PERIOD_CLOSED,
            actor=closed_by,
            before=before,
            after=_snapshot(period),
            metadata={"period_lock_id": str(period_lock.id) if period_lock else None},
        )

        logger.info(
            "period_closed",
            extra={
                "tenant_id": tenant_id,
                "period_id": str(period.id),
                "from_status": current.value,
                "to_status": target.value,
                "closed_by": closed_by,
                "period_lock_id": str(period_lock.id) if period_lock else None,
            },
        )
        return AccountingPeriodInfo.from_model(period)

    def reopen_period(self, period_id: UUID, tenant_id: str, reopened_by: str) -> None:
        """
        Reopening is not supported: closes are forward-only and HARD_CLOSED
        is terminal, so a PERIOD_LOCK is never released.

        Raises:
            PeriodNotFoundError: no such period for the tenant.
            PeriodImmutableError: always, for an existing period.
        """
        period = self._get(period_id, tenant_id)
        logger.warning(
            "period_reopen_rejected",
            extra={
                "tenant_id": tenant_id,
                "period_id": str(period.id),
                "status": period.status.value,
                "requested_by": reopened_by,
            },
        )
        raise PeriodImmutableError(str(period.id), "reopen")

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def check_period_for_posting(
        self,
        tenant_id: str,
        transaction_date: date | datetime,
        period_type: PeriodType | str | None = None,
    ) -> PeriodPostingCheck:
        """
        Decide whether transaction_date may be posted, by period status only.

        Decision table:
            no period      -> not allowed (caller raises PeriodNotFoundError)
            OPEN           -> allowed
            SOFT_CLOSED    -> not allowed, override required
            HARD_CLOSED    -> never allowed
        """
        period_type = PeriodType(period_type or self._policy.default_period_type)
        txn_date = as_date(transaction_date)
        # FOR SHARE: close_period's FOR UPDATE waits until the guarded write commits.
        period = self.session.execute(
            select(AccountingPeriod)
            .where(
                AccountingPeriod.tenant_id == tenant_id,
                AccountingPeriod.period_type == period_type,
                AccountingPeriod.period_start <= txn_date,
                AccountingPeriod.period_end >= txn_date,
            )
            .with_for_update(read=True)
        ).scalar_one_or_none()

        if period is None:
            return PeriodPostingCheck(
                tenant_id=tenant_id,
                transaction_date=txn_date,
                period_id=None,
                period_type=period_type,
                status=None,
                posting_allowed=False,
                override_required=False,
                error_message=(
                    f"No {period_type.value} accounting period found for date "
                    f"{txn_date.isoformat()}"
                ),
            )

        status = period.status
        if status == PeriodStatus.OPEN:
            allowed, override_required, message = True, False, None
        elif status == PeriodStatus.SOFT_CLOSED:
            allowed, override_required = False, True
            message = "Period is SOFT_CLOSED. Posting requires an admin override."
        else:
            allowed, override_required = False, False
            message = "Period is HARD_CLOSED. Posting is not allowed."

        return PeriodPostingCheck(
            tenant_id=tenant_id,
            transaction_date=txn_date,
            period_id=period.id,
            period_type=period_type,
            status=status,
            posting_allowed=allowed,
            override_required=override_required,
            error_message=message,
            period_start=period.period_start,
            period_end=period.period_end,
        )

    def get_open_period(
        self,
        tenant_id: str,
        period_type: PeriodType | str | None = None,
    ) -> AccountingPeriodInfo | None:
        period = self._find_open(
            tenant_id, PeriodType(period_type or self._policy.default_period_type)
        )
        return AccountingPeriodInfo.from_model(period) if period is not None else None

    def get_period(self, period_id: UUID, tenant_id: str) -> AccountingPeriodInfo:
        """
        Raises:
            PeriodNotFoundError: no such period for the tenant.
        """
        return AccountingPeriodInfo.from_model(self._get(period_id, tenant_id))

    def list_periods(
        self,
        tenant_id: str,
        period_type: PeriodType | str | None = None,
        status: PeriodStatus | str | None = None,
        limit: int = 100,
    ) -> list[AccountingPeriodInfo]:
        """Periods for a tenant, latest period_start first."""
        stmt = select(AccountingPeriod).where(AccountingPeriod.tenant_id == tenant_id)
        if period_type is not None:
            stmt = stmt.where(AccountingPeriod.period_type == PeriodType(period_type))
        if status is not None:
            stmt = stmt.where(AccountingPeriod.status == PeriodStatus(status))
        stmt = stmt.order_by(AccountingPeriod.period_start.desc()).limit(limit)
        return [AccountingPeriodInfo.from_model(p) for p in self.session.execute(stmt).scalars()]

    def _get(self, period_id: UUID, tenant_id: str) -> AccountingPeriod:
        period = self.session.execute(
            select(AccountingPeriod).where(
                AccountingPeriod.id == period_id,
                AccountingPeriod.tenant_id == tenant_id,
            )
        ).scalar_one_or_none()
        if period is None:
            raise PeriodNotFoundError(period_id=str(period_id))
        return period

    def _find_open(self, tenant_id: str, period_type: PeriodType) -> AccountingPeriod | None:
        return self.session.execute(
            select(AccountingPeriod).where(
                AccountingPeriod.tenant_id == tenant_id,
                AccountingPeriod.period_type == period_type,
                AccountingPeriod.status == PeriodStatus.OPEN,
            )
        ).scalar_one_or_none()

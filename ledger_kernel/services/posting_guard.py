"""
PostingGuard -- the single choke point for ledger writes and reversals.

Responsibility:
    Composes LedgerLockManager, AccountingPeriodManager and the override
    rules into one allow/deny decision for a transaction date.  An allowed
    SOFT_CLOSED override writes exactly one OverrideLogEntry.

Architecture position:
    Kernel > Services.  Holds no state of its own; every decision is made
    over rows read at call time, inside the caller's transaction.  Callers
    must run authorize_posting() in the same transaction as the ledger write
    it protects: the covering period and lock are read FOR SHARE, so a
    concurrent close or release waits until that transaction ends.

Decision order:
    1. Locks.  A covering ACTIVE lock always denies and is never overridable.
       A PERIOD_LOCK is the seal of a HARD_CLOSED period and is reported as
       PeriodClosedError; AUDIT and RECONCILIATION locks raise
       LedgerLockedError.
    2. No period covering the date -> PeriodNotFoundError.
    3. HARD_CLOSED -> PeriodClosedError, with or without override.
    4. SOFT_CLOSED -> AdminOverrideRequiredError unless override=True; then
       role (InsufficientOverridePrivilegesError) and justification
       (OverrideJustificationError) are validated and one override entry is
       recorded.
    5. OPEN -> allowed, nothing logged to the override log.

Failure modes:
    Every denial raises a typed AccountingError after a WARNING
    ``posting_denied`` log line.  Nothing is persisted for a denial.
"""

from datetime import date, datetime
from typing import Any

from sqlalchemy.orm import Session

from ledger_kernel.domain.clock import Clock
from ledger_kernel.domain.dtos import PeriodPostingCheck, PostingAuthorization
from ledger_kernel.domain.policy import ControlPolicy
from ledger_kernel.domain.states import LockType, OverrideType, PeriodStatus, PeriodType, as_date
from ledger_kernel.exceptions import (
    AccountingError,
    AdminOverrideRequiredError,
    InsufficientOverridePrivilegesError,
    LedgerLockedError,
    OverrideJustificationError,
    PeriodClosedError,
    PeriodNotFoundError,
)
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_kernel.services.lock_service import LedgerLockManager
from ledger_kernel.services.override_log import OverrideAuditLog
from ledger_kernel.services.period_service import AccountingPeriodManager

logger = get_logger("services.posting_guard")

HARD_CLOSED_ACTION = "none — period is immutable"


class PostingGuard:
    """
    Allow/deny decision for posting into the ledger.

    Contract:
        Returns a PostingAuthorization only when the write may proceed.  All
        denials are raised, never returned.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock,
        policy: ControlPolicy,
        period_manager: AccountingPeriodManager,
        lock_manager: LedgerLockManager,
        override_log: OverrideAuditLog,
    ):
        self.session = session
        self._clock = clock
        self._policy = policy
        self._periods = period_manager
        self._locks = lock_manager
        self._override_log = override_log

    def authorize_posting(
        self,
        tenant_id: str,
        transaction_date: date | datetime,
        override: bool = False,
        override_justification: str | None = None,
        user_role: str | None = None,
        user_id: str | None = None,
        entity_id: Any = None,
        period_type: PeriodType | str | None = None,
    ) -> PostingAuthorization:
        """
        Decide whether a ledger posting dated transaction_date may proceed.

        Args:
            override: Request an admin override of a SOFT_CLOSED period.
            override_justification: Reason for the override, at least the
                configured minimum length after stripping.
            user_role: Externally authenticated role claim of the caller.
            user_id: Caller identity recorded on the override entry.
            entity_id: Id of the posting being authorized, if known.
        """
        return self._authorize(
            operation="posting",
            entity_type="ledger_posting",
            override_type=OverrideType.SOFT_CLOSE_POSTING,
            tenant_id=tenant_id,
            transaction_date=transaction_date,
            override=override,
            override_justification=override_justification,
            user_role=user_role,
            user_id=user_id,
            entity_id=entity_id,
            period_type=period_type,
        )

    def authorize_reversal(
        self,
        tenant_id: str,
        transaction_date: date | datetime,
        override: bool = False,
        override_justification: str | None = None,
        user_role: str | None = None,
        user_id: str | None = None,
        entity_id: Any = None,
        period_type: PeriodType | str | None = None,
    ) -> PostingAuthorization:
        """Same decision as authorize_posting(), for a reversal entry."""
        return self._authorize(
            operation="reversal",
            entity_type="ledger_reversal",
            override_type=OverrideType.SOFT_CLOSE_REVERSAL,
            tenant_id=tenant_id,
            transaction_date=transaction_date,
            override=override,
            override_justification=override_justification,
            user_role=user_role,
            user_id=user_id,
            entity_id=entity_id,
            period_type=period_type,
        )

    # ------------------------------------------------------------------

    def _authorize(self, **kwargs: Any) -> PostingAuthorization:
        with LogContext.bind(
            tenant_id=kwargs["tenant_id"],
            actor_id=kwargs["user_id"],
            entity_id=kwargs["entity_id"],
        ):
            return self._decide(**kwargs)

    def _decide(
        self,
        *,
        operation: str,
        entity_type: str,
        override_type: OverrideType,
        tenant_id: str,
        transaction_date: date | datetime,
        override: bool,
        override_justification: str | None,
        user_role: str | None,
        user_id: str | None,
        entity_id: Any,
        period_type: PeriodType | str | None,
    ) -> PostingAuthorization:
        txn_date = as_date(transaction_date)
        log_fields = {
            "tenant_id": tenant_id,
            "transaction_date": txn_date,
            "operation": operation,
            "override_requested": override,
            "user_role": user_role,
        }

        # 1. Locks take precedence over period status.
        lock = self._locks.check_locks(tenant_id, txn_date)
        if lock.is_locked:
            if lock.lock_type == LockType.PERIOD_LOCK and lock.accounting_period_id:
                period = self._periods.get_period(lock.accounting_period_id, tenant_id)
                raise self._deny(
                    PeriodClosedError(
                        period_id=str(period.id),
                        period_type=period.period_type.value,
                        period_start=period.period_start.isoformat(),
                        period_end=period.period_end.isoformat(),
                        status=period.status.value,
                        required_action=HARD_CLOSED_ACTION,
                    ),
                    log_fields,
                )
            raise self._deny(
                LedgerLockedError(
                    lock_type=lock.lock_type.value,
                    locked_by=lock.locked_by,
                    locked_at=lock.locked_at.isoformat() if lock.locked_at else "",
                    reason=lock.reason or "",
                    lock_id=str(lock.lock_id),
                ),
                log_fields,
            )

        # 2. A period must cover the date.
        check = self._periods.check_period_for_posting(tenant_id, txn_date, period_type)
        if not check.period_found:
            raise self._deny(
                PeriodNotFoundError(
                    transaction_date=txn_date.isoformat(),
                    period_type=check.period_type.value,
                ),
                log_fields,
            )

        # 3. HARD_CLOSED is never overridable.
        if check.status == PeriodStatus.HARD_CLOSED:
            raise self._deny(self._period_closed(check), log_fields)

        # 4. SOFT_CLOSED needs a valid admin override.
        if check.status == PeriodStatus.SOFT_CLOSED:
            required_role = self._policy.override_role
            if not override:
                raise self._deny(
                    AdminOverrideRequiredError(
                        operation=operation,
                        reason=check.error_message or "Period is SOFT_CLOSED",
                        required_role=required_role,
                    ),
                    log_fields,
                )
            if user_role != required_role:
                raise self._deny(
                    InsufficientOverridePrivilegesError(
                        user_role=user_role,
                        required_role=required_role,
                        operation=operation,
                    ),
                    log_fields,
                )
            try:
                self._override_log.validate_justification(override_justification)
            except OverrideJustificationError as exc:
                self._deny(exc, log_fields)
                raise

            entry = self._override_log.record(
                tenant_id=tenant_id,
                override_type=override_type,
                justification=override_justification,
                entity_type=entity_type,
                entity_id=entity_id if entity_id is not None else check.period_id,
                override_by=user_id or "",
                override_by_role=user_role,
                affected_entities=[
                    {
                        "entity_type": "AccountingPeriod",
                        "entity_id": check.period_id,
                        "transaction_date": txn_date,
                        "period_status": check.status,
                    }
                ],
            )
            logger.info(
                "posting_authorized",
                extra={**log_fields, "period_id": str(check.period_id), "override_log_id": str(entry.id)},
            )
            return PostingAuthorization(
                allowed=True,
                tenant_id=tenant_id,
                transaction_date=txn_date,
                period_id=check.period_id,
                period_status=check.status,
                override_used=True,
                override_log_id=entry.id,
            )

        # 5. OPEN and unlocked.
        logger.debug(
            "posting_authorized",
            extra={**log_fields, "period_id": str(check.period_id)},
        )
        return PostingAuthorization(
            allowed=True,
            tenant_id=tenant_id,
            transaction_date=txn_date,
            period_id=check.period_id,
            period_status=check.status,
        )

    @staticmethod
    def _period_closed(check: PeriodPostingCheck) -> PeriodClosedError:
        return PeriodClosedError(
            period_id=str(check.period_id),
            period_type=check.period_type.value,
            period_start=check.period_start.isoformat(),
            period_end=check.period_end.isoformat(),
            status=check.status.value,
            required_action=HARD_CLOSED_ACTION,
        )

    @staticmethod
    def _deny(exc: AccountingError, log_fields: dict) -> AccountingError:
        logger.warning(
            "posting_denied",
            extra={**log_fields, "error_code": exc.code, "reason": str(exc)},
        )
        return exc

"""
Typed Exception Hierarchy for the Ledger Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Every failure raised by this package is a policy violation, not a transient
fault.  Callers must be able to tell them apart by TYPE (not by parsing the
message), serialize them to an API consumer, and reconstruct the audit trail
from the exception alone, without re-querying the store.

Every exception:
  1. Has a TYPED class (catch by type, not message)
  2. Has a CODE class attribute (machine-readable, API-safe)
  3. Carries structured DATA as attributes
  4. Is non-retryable (``retryable = False``): the caller must correct the
     request (e.g. supply an override) or escalate to an operator

Example:
    try:
        guard.authorize_posting(tenant_id, txn_date)
    except AdminOverrideRequiredError as e:
        return api_response(status=409, body=e.to_dict())

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    AccountingError (base)
    |
    +-- PeriodError
    |   +-- PeriodClosedError
    |   +-- PeriodNotFoundError
    |   +-- PeriodOverlapError
    |   +-- PeriodGapError
    |   +-- OpenPeriodExistsError
    |   +-- InvalidPeriodRangeError
    |   +-- InvalidPeriodTransitionError
    |   +-- PeriodImmutableError
    |
    +-- LockError
    |   +-- LedgerLockedError
    |   +-- LockOverlapError
    |   +-- LockNotFoundError
    |   +-- LockAlreadyReleasedError
    |   +-- PeriodLockReleaseError
    |   +-- ManualPeriodLockError
    |   +-- InvalidLockRangeError
    |
    +-- SettlementError
    |   +-- SettlementNotFoundError
    |   +-- SettlementStateError
    |   +-- SettlementRetryExhaustedError
    |   +-- MissingUTRError
    |
    +-- OverrideError
    |   +-- AdminOverrideRequiredError
    |   +-- InsufficientOverridePrivilegesError
    |   +-- OverrideJustificationError
    |
    +-- AuditError
    |   +-- AuditChainBrokenError
    |
    +-- ImmutabilityError
        +-- ImmutabilityViolationError

===============================================================================
"""

from typing import Any


class AccountingError(Exception):
    """
    Base exception for all ledger kernel errors.

    All subclasses have a ``code`` class attribute for machine-readable
    identification and store their context as public attributes.
    """

    code: str = "ACCOUNTING_ERROR"
    retryable: bool = False

    @property
    def metadata(self) -> dict[str, Any]:
        """Structured context of the error (public instance attributes)."""
        return {k: v for k, v in vars(self).items() if not k.startswith("_")}

    def to_dict(self) -> dict[str, Any]:
        """Serializable form for an outer API layer."""
        return {
            "code": self.code,
            "message": str(self),
            "metadata": self.metadata,
            "retryable": self.retryable,
        }


# Period-related exceptions


class PeriodError(AccountingError):
    """Base exception for accounting period errors."""

    code: str = "PERIOD_ERROR"


class PeriodClosedError(PeriodError):
    """Attempted to post into a closed accounting period."""

    code: str = "PERIOD_CLOSED"

    def __init__(
        self,
        period_id: str,
        period_type: str,
        period_start: str,
        period_end: str,
        status: str,
        required_action: str,
    ):
        self.period_id = period_id
        self.period_type = period_type
        self.period_start = period_start
        self.period_end = period_end
        self.status = status
        self.required_action = required_action
        super().__init__(
            f"Cannot post to {status} accounting period. "
            f"Period: {period_type} ({period_start} to {period_end}). "
            f"Required action: {required_action}"
        )


class PeriodNotFoundError(PeriodError):
    """No accounting period covers the date, or the period id is unknown."""

    code: str = "PERIOD_NOT_FOUND"

    def __init__(
        self,
        transaction_date: str | None = None,
        period_type: str = "DAILY",
        period_id: str | None = None,
    ):
        self.transaction_date = transaction_date
        self.period_type = period_type
        self.period_id = period_id
        self.required_action = "CREATE_PERIOD"
        if period_id is not None:
            message = f"Accounting period not found: {period_id}"
        else:
            message = (
                f"No {period_type} accounting period found for date: "
                f"{transaction_date}. Required action: Create or open an "
                "accounting period for this date."
            )
        super().__init__(message)


class PeriodOverlapError(PeriodError):
    """New period date range intersects an existing period of the same type."""

    code: str = "PERIOD_OVERLAP"

    def __init__(
        self,
        new_period_start: str,
        new_period_end: str,
        conflicting_period_id: str,
        conflicting_period_start: str,
        conflicting_period_end: str,
    ):
        self.new_period_start = new_period_start
        self.new_period_end = new_period_end
        self.conflicting_period_id = conflicting_period_id
        self.conflicting_period_start = conflicting_period_start
        self.conflicting_period_end = conflicting_period_end
        super().__init__(
            f"Cannot create accounting period ({new_period_start} to "
            f"{new_period_end}). Overlaps with existing period "
            f"{conflicting_period_id} ({conflicting_period_start} to "
            f"{conflicting_period_end})"
        )


class PeriodGapError(PeriodError):
    """New period does not start immediately after the latest period."""

    code: str = "PERIOD_GAP"

    def __init__(
        self,
        last_period_end: str,
        new_period_start: str,
        period_type: str,
        expected_start: str,
    ):
        self.last_period_end = last_period_end
        self.new_period_start = new_period_start
        self.period_type = period_type
        self.expected_start = expected_start
        super().__init__(
            f"Cannot create non-contiguous {period_type} period. "
            f"Gap detected between {last_period_end} and {new_period_start} "
            f"(expected start {expected_start}). "
            "Required action: Ensure periods are consecutive without gaps."
        )


class OpenPeriodExistsError(PeriodError):
    """An OPEN period of this type already exists for the tenant."""

    code: str = "OPEN_PERIOD_EXISTS"

    def __init__(self, tenant_id: str, period_type: str, open_period_id: str | None):
        self.tenant_id = tenant_id
        self.period_type = period_type
        self.open_period_id = open_period_id
        super().__init__(
            f"An OPEN {period_type} period already exists for tenant "
            f"{tenant_id} ({open_period_id}). Close it before creating a new period."
        )


class InvalidPeriodRangeError(PeriodError):
    """Period start is after period end."""

    code: str = "INVALID_PERIOD_RANGE"

    def __init__(self, period_start: str, period_end: str):
        self.period_start = period_start
        self.period_end = period_end
        super().__init__(
            f"Period start ({period_start}) cannot be after period end ({period_end})"
        )


class InvalidPeriodTransitionError(PeriodError):
    """Requested status is not the immediate next status of the period."""

    code: str = "INVALID_PERIOD_TRANSITION"

    def __init__(
        self,
        period_id: str,
        current_status: str,
        target_status: str,
        valid_targets: list[str],
    ):
        self.period_id = period_id
        self.current_status = current_status
        self.target_status = target_status
        self.valid_targets = valid_targets
        super().__init__(
            f"Invalid period transition {current_status} -> {target_status} "
            f"for period {period_id}. Valid targets: {valid_targets or 'none'}"
        )


class PeriodImmutableError(PeriodError):
    """Attempted to modify or reopen a closed period."""

    code: str = "PERIOD_IMMUTABLE"

    def __init__(self, period_id: str, operation: str):
        self.period_id = period_id
        self.operation = operation
        super().__init__(
            f"Cannot {operation} period {period_id}: "
            "closed periods are immutable"
        )


# Lock-related exceptions


class LockError(AccountingError):
    """Base exception for ledger lock errors."""

    code: str = "LOCK_ERROR"


class LedgerLockedError(LockError):
    """Posting or reversal attempted inside an ACTIVE lock range."""

    code: str = "LEDGER_LOCKED"

    def __init__(
        self,
        lock_type: str,
        locked_by: str,
        locked_at: str,
        reason: str,
        lock_id: str | None = None,
    ):
        self.lock_type = lock_type
        self.locked_by = locked_by
        self.locked_at = locked_at
        self.reason = reason
        self.lock_id = lock_id
        super().__init__(
            f"Ledger is locked ({lock_type}). "
            f"Locked by: {locked_by} at {locked_at}. "
            f"Reason: {reason}. "
            "Required action: Wait for lock release or contact administrator."
        )


class LockOverlapError(LockError):
    """An ACTIVE lock for the tenant already covers part of the range."""

    code: str = "LOCK_OVERLAP"

    def __init__(
        self,
        tenant_id: str,
        lock_start_date: str,
        lock_end_date: str,
        conflicting_lock_id: str | None,
        conflicting_lock_type: str | None,
    ):
        self.tenant_id = tenant_id
        self.lock_start_date = lock_start_date
        self.lock_end_date = lock_end_date
        self.conflicting_lock_id = conflicting_lock_id
        self.conflicting_lock_type = conflicting_lock_type
        super().__init__(
            f"An active {conflicting_lock_type or 'ledger'} lock already covers "
            f"part of {lock_start_date} to {lock_end_date} for tenant "
            f"{tenant_id}. Lock ID: {conflicting_lock_id}"
        )


class LockNotFoundError(LockError):
    """Lock with given ID was not found for the tenant."""

    code: str = "LOCK_NOT_FOUND"

    def __init__(self, lock_id: str):
        self.lock_id = lock_id
        super().__init__(f"Ledger lock not found: {lock_id}")


class LockAlreadyReleasedError(LockError):
    """Lock is already RELEASED."""

    code: str = "LOCK_ALREADY_RELEASED"

    def __init__(self, lock_id: str):
        self.lock_id = lock_id
        super().__init__(f"Ledger lock {lock_id} is already released")


class PeriodLockReleaseError(LockError):
    """PERIOD_LOCKs are owned by their HARD_CLOSED period."""

    code: str = "PERIOD_LOCK_NOT_RELEASABLE"

    def __init__(self, lock_id: str, accounting_period_id: str | None):
        self.lock_id = lock_id
        self.accounting_period_id = accounting_period_id
        super().__init__(
            f"PERIOD_LOCK {lock_id} cannot be released. It is tied to HARD_CLOSED "
            f"accounting period {accounting_period_id}; reopen the period instead."
        )


class ManualPeriodLockError(LockError):
    """PERIOD_LOCK may only be created by hard-closing a period."""

    code: str = "MANUAL_PERIOD_LOCK"

    def __init__(self, tenant_id: str):
        self.tenant_id = tenant_id
        super().__init__(
            "PERIOD_LOCK cannot be applied directly; it is created when an "
            "accounting period is HARD_CLOSED"
        )


class InvalidLockRangeError(LockError):
    """Lock start date is after lock end date."""

    code: str = "INVALID_LOCK_RANGE"

    def __init__(self, lock_start_date: str, lock_end_date: str):
        self.lock_start_date = lock_start_date
        self.lock_end_date = lock_end_date
        super().__init__(
            f"Lock start date ({lock_start_date}) cannot be after "
            f"lock end date ({lock_end_date})"
        )


# Settlement-related exceptions


class SettlementError(AccountingError):
    """Base exception for settlement lifecycle errors."""

    code: str = "SETTLEMENT_ERROR"


class SettlementNotFoundError(SettlementError):
    """Settlement with given ID was not found for the tenant."""

    code: str = "SETTLEMENT_NOT_FOUND"

    def __init__(self, settlement_id: str):
        self.settlement_id = settlement_id
        super().__init__(f"Settlement not found: {settlement_id}")


class SettlementStateError(SettlementError):
    """
    Transition not present in the settlement transition table.

    Carries the full list of valid next states for diagnosability.
    """

    code: str = "INVALID_SETTLEMENT_STATE"

    def __init__(
        self,
        current_state: str,
        attempted_state: str,
        settlement_id: str,
        valid_transitions: list[str],
    ):
        self.current_state = current_state
        self.attempted_state = attempted_state
        self.settlement_id = settlement_id
        self.valid_transitions = valid_transitions
        super().__init__(
            f"Invalid settlement state transition from {current_state} to "
            f"{attempted_state} for settlement: {settlement_id}. "
            f"Valid next states: {valid_transitions or 'none (terminal)'}"
        )


class SettlementRetryExhaustedError(SettlementError):
    """Retry budget used up; manual intervention required."""

    code: str = "SETTLEMENT_RETRY_EXHAUSTED"

    def __init__(self, settlement_id: str, retry_count: int, max_retries: int):
        self.settlement_id = settlement_id
        self.retry_count = retry_count
        self.max_retries = max_retries
        super().__init__(
            f"Settlement {settlement_id} has exhausted retry attempts "
            f"({retry_count}/{max_retries}). "
            "Required action: Manual intervention required."
        )


class MissingUTRError(SettlementError):
    """Bank confirmation attempted without a UTR number."""

    code: str = "MISSING_UTR"

    def __init__(self, settlement_id: str):
        self.settlement_id = settlement_id
        super().__init__(
            f"UTR number is required for bank confirmation of settlement {settlement_id}"
        )


# Override-related exceptions


class OverrideError(AccountingError):
    """Base exception for override errors."""

    code: str = "OVERRIDE_ERROR"


class AdminOverrideRequiredError(OverrideError):
    """Operation needs an explicit, justified override."""

    code: str = "ADMIN_OVERRIDE_REQUIRED"

    def __init__(self, operation: str, reason: str, required_role: str):
        self.operation = operation
        self.reason = reason
        self.required_role = required_role
        super().__init__(
            f"Operation '{operation}' requires {required_role} override. "
            f"Reason: {reason}. "
            f"Required action: Provide override=True with justification and "
            f"{required_role} role."
        )


class InsufficientOverridePrivilegesError(OverrideError):
    """Caller's role may not grant this override."""

    code: str = "INSUFFICIENT_OVERRIDE_PRIVILEGES"

    def __init__(self, user_role: str | None, required_role: str, operation: str):
        self.user_role = user_role
        self.required_role = required_role
        self.operation = operation
        super().__init__(
            f"User with role '{user_role}' cannot override operation "
            f"'{operation}'. Required role: {required_role}"
        )


class OverrideJustificationError(OverrideError):
    """Override justification missing or too short."""

    code: str = "OVERRIDE_JUSTIFICATION_REQUIRED"

    def __init__(self, min_length: int, actual_length: int):
        self.min_length = min_length
        self.actual_length = actual_length
        super().__init__(
            f"Override justification must be at least {min_length} characters "
            f"(got {actual_length})"
        )


# Audit-related exceptions


class AuditError(AccountingError):
    """Base exception for audit trail errors."""

    code: str = "AUDIT_ERROR"


class AuditChainBrokenError(AuditError):
    """
    Hash chain validation failed.

    Critical: indicates tampering with the audit trail.
    """

    code: str = "AUDIT_CHAIN_BROKEN"

    def __init__(self, audit_event_id: str, expected_hash: str, actual_hash: str):
        self.audit_event_id = audit_event_id
        self.expected_hash = expected_hash
        self.actual_hash = actual_hash
        super().__init__(
            f"Audit chain broken at event {audit_event_id}: "
            f"expected {expected_hash}, got {actual_hash}"
        )


# Immutability-related exceptions


class ImmutabilityError(AccountingError):
    """Base exception for immutability errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """Attempted to modify or delete an immutable record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )

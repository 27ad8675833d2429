"""
States -- closed enumerations and transition tables.

Responsibility:
    Defines every status enumeration of the control plane together with the
    explicit transition tables checked on every mutation.  There are no
    implicit transitions: a (from, to) pair absent from a table is invalid.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  Imported by models
    (column types), services (transition checks) and DTOs.

Invariants enforced:
    - Period status is monotonic: OPEN -> SOFT_CLOSED -> HARD_CLOSED.
    - Settlement status only advances along SETTLEMENT_TRANSITIONS.
    - Retry delays are fixed per attempt, not a continuous formula.
"""

from datetime import date, datetime, timedelta, timezone
from enum import Enum


class PeriodType(str, Enum):
    """Granularity of an accounting period."""

    DAILY = "DAILY"
    MONTHLY = "MONTHLY"


class PeriodStatus(str, Enum):
    """Lifecycle status of an accounting period.

    Contract: Transitions are OPEN -> SOFT_CLOSED -> HARD_CLOSED.
    HARD_CLOSED is terminal; there is no reopen path.
    """

    OPEN = "OPEN"
    SOFT_CLOSED = "SOFT_CLOSED"
    HARD_CLOSED = "HARD_CLOSED"


class LockType(str, Enum):
    PERIOD_LOCK = "PERIOD_LOCK"
    AUDIT_LOCK = "AUDIT_LOCK"
    RECONCILIATION_LOCK = "RECONCILIATION_LOCK"


class LockStatus(str, Enum):
    ACTIVE = "ACTIVE"
    RELEASED = "RELEASED"


class SettlementStatus(str, Enum):
    """Lifecycle status of a settlement batch."""

    CREATED = "CREATED"
    FUNDS_RESERVED = "FUNDS_RESERVED"
    SENT_TO_BANK = "SENT_TO_BANK"
    BANK_CONFIRMED = "BANK_CONFIRMED"
    SETTLED = "SETTLED"
    FAILED = "FAILED"
    RETRIED = "RETRIED"


class OverrideType(str, Enum):
    """Kinds of explicit, justified exceptions recorded in the override log."""

    SOFT_CLOSE_POSTING = "SOFT_CLOSE_POSTING"
    SOFT_CLOSE_REVERSAL = "SOFT_CLOSE_REVERSAL"
    EARLY_LOCK_RELEASE = "EARLY_LOCK_RELEASE"


FINANCE_ADMIN = "FINANCE_ADMIN"


PERIOD_TRANSITIONS: dict[PeriodStatus, frozenset[PeriodStatus]] = {
    PeriodStatus.OPEN: frozenset({PeriodStatus.SOFT_CLOSED}),
    PeriodStatus.SOFT_CLOSED: frozenset({PeriodStatus.HARD_CLOSED}),
    PeriodStatus.HARD_CLOSED: frozenset(),
}

SETTLEMENT_TRANSITIONS: dict[SettlementStatus, frozenset[SettlementStatus]] = {
    SettlementStatus.CREATED: frozenset(
        {SettlementStatus.FUNDS_RESERVED, SettlementStatus.FAILED}
    ),
    SettlementStatus.FUNDS_RESERVED: frozenset(
        {SettlementStatus.SENT_TO_BANK, SettlementStatus.FAILED}
    ),
    SettlementStatus.SENT_TO_BANK: frozenset(
        {SettlementStatus.BANK_CONFIRMED, SettlementStatus.FAILED}
    ),
    SettlementStatus.BANK_CONFIRMED: frozenset({SettlementStatus.SETTLED}),
    SettlementStatus.SETTLED: frozenset(),
    SettlementStatus.FAILED: frozenset({SettlementStatus.RETRIED}),
    SettlementStatus.RETRIED: frozenset(
        {SettlementStatus.FUNDS_RESERVED, SettlementStatus.FAILED}
    ),
}

# Statuses after which a settlement's bank-side completion is certain.
RECONCILIATION_FINAL_STATES = frozenset(
    {SettlementStatus.BANK_CONFIRMED, SettlementStatus.SETTLED}
)

_STATUS_ORDER = list(SettlementStatus)


def valid_next_states(status: SettlementStatus) -> list[str]:
    """Valid next settlement states, in declaration order."""
    allowed = SETTLEMENT_TRANSITIONS[status]
    return [s.value for s in _STATUS_ORDER if s in allowed]


def can_transition(current: SettlementStatus, target: SettlementStatus) -> bool:
    return target in SETTLEMENT_TRANSITIONS[current]


def next_period_status(status: PeriodStatus) -> PeriodStatus | None:
    """The single status a period may move to next, or None if terminal."""
    targets = PERIOD_TRANSITIONS[status]
    return next(iter(targets)) if targets else None


def retry_delay(retry_count: int, backoff_minutes: tuple[int, ...]) -> timedelta:
    """
    Delay before the next attempt after ``retry_count`` earlier retries.

    Attempts beyond the configured schedule reuse its last entry.
    """
    if not backoff_minutes:
        raise ValueError("retry backoff schedule must not be empty")
    index = min(max(retry_count, 0), len(backoff_minutes) - 1)
    return timedelta(minutes=backoff_minutes[index])


def as_date(value: date | datetime) -> date:
    """Calendar date of a transaction; aware datetimes are read in UTC."""
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value.date()
    return value

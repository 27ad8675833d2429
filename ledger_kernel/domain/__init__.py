"""Pure domain layer: states, transition tables, DTOs and the clock."""

from ledger_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from ledger_kernel.domain.states import (
    FINANCE_ADMIN,
    LockStatus,
    LockType,
    OverrideType,
    PeriodStatus,
    PeriodType,
    SettlementStatus,
)

__all__ = [
    "Clock",
    "DeterministicClock",
    "SystemClock",
    "FINANCE_ADMIN",
    "LockStatus",
    "LockType",
    "OverrideType",
    "PeriodStatus",
    "PeriodType",
    "SettlementStatus",
]

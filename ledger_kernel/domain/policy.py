"""
ControlPolicy -- kernel-side view of the control configuration.

The kernel never reads configuration files.  ``ledger_config`` compiles the
YAML into a ``ControlsConfig`` and bridges it into this frozen value, which
the managers receive by constructor injection.  The defaults here are the
production values.
"""

from dataclasses import dataclass

from ledger_kernel.domain.states import FINANCE_ADMIN, PeriodType


@dataclass(frozen=True)
class ControlPolicy:
    override_role: str = FINANCE_ADMIN
    min_justification_length: int = 10
    lock_release_roles: tuple[str, ...] = (FINANCE_ADMIN,)
    max_retries: int = 3
    retry_backoff_minutes: tuple[int, ...] = (15, 60, 240)
    default_period_type: PeriodType = PeriodType.DAILY

    def can_release_locks(self, role: str | None) -> bool:
        return role is not None and role in self.lock_release_roles

"""
ControlsConfig schema.

The human-authored, reviewable control configuration.  YAML files are parsed
into these frozen types by the loader; ``get_active_config()`` hands the
result to callers, and ``build_control_policy()`` bridges it into the kernel.
"""

from __future__ import annotations

from dataclasses import dataclass, field


class ConfigValidationError(ValueError):
    """A configuration value is missing, of the wrong type, or out of range."""


@dataclass(frozen=True)
class OverrideConfig:
    """Who may grant overrides, and how much justification they must give."""

    required_role: str = "FINANCE_ADMIN"
    min_justification_length: int = 10
    lock_release_roles: tuple[str, ...] = ("FINANCE_ADMIN",)


@dataclass(frozen=True)
class SettlementConfig:
    """Retry budget and fixed per-attempt backoff schedule."""

    max_retries: int = 3
    retry_backoff_minutes: tuple[int, ...] = (15, 60, 240)


@dataclass(frozen=True)
class PeriodConfig:
    default_period_type: str = "DAILY"


@dataclass(frozen=True)
class ControlsConfig:
    """Complete control configuration with its source identity."""

    override: OverrideConfig = field(default_factory=OverrideConfig)
    settlement: SettlementConfig = field(default_factory=SettlementConfig)
    periods: PeriodConfig = field(default_factory=PeriodConfig)
    source_path: str | None = None
    checksum: str | None = None

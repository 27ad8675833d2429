"""
Configuration Loader (``ledger_config.loader``).

Responsibility
--------------
Loads a YAML control file and parses it into the frozen
``ledger_config.schema`` dataclasses.  The single public entry point for
runtime config is ``ledger_config.get_active_config()``.

Invariants enforced
-------------------
* Every parsed object is a frozen dataclass from ``schema.py``.
* Out-of-range or mistyped values raise ``ConfigValidationError``; no
  silent coercion.
* ``compute_checksum`` produces a deterministic SHA-256 hash for
  configuration identity and change detection.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Invalid values  -> ``ConfigValidationError``.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

import yaml

from ledger_config.schema import (
    ConfigValidationError,
    ControlsConfig,
    OverrideConfig,
    PeriodConfig,
    SettlementConfig,
)

_PERIOD_TYPES = ("DAILY", "MONTHLY")


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ConfigValidationError: if the document is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ConfigValidationError(f"{path}: top-level YAML document must be a mapping")
    return data


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    section = data.get(name) or {}
    if not isinstance(section, dict):
        raise ConfigValidationError(f"'{name}' must be a mapping")
    return section


def _positive_int(value: Any, name: str, *, allow_zero: bool = False) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigValidationError(f"'{name}' must be an integer, got {value!r}")
    if value < 0 or (value == 0 and not allow_zero):
        raise ConfigValidationError(f"'{name}' must be positive, got {value}")
    return value


def _non_empty_str(value: Any, name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ConfigValidationError(f"'{name}' must be a non-empty string")
    return value


def parse_override(data: dict[str, Any]) -> OverrideConfig:
    defaults = OverrideConfig()
    required_role = _non_empty_str(
        data.get("required_role", defaults.required_role), "override.required_role"
    )
    roles = data.get("lock_release_roles", list(defaults.lock_release_roles))
    if not isinstance(roles, list) or not roles:
        raise ConfigValidationError("'override.lock_release_roles' must be a non-empty list")
    return OverrideConfig(
        required_role=required_role,
        min_justification_length=_positive_int(
            data.get("min_justification_length", defaults.min_justification_length),
            "override.min_justification_length",
        ),
        lock_release_roles=tuple(
            _non_empty_str(r, "override.lock_release_roles[]") for r in roles
        ),
    )


def parse_settlement(data: dict[str, Any]) -> SettlementConfig:
    defaults = SettlementConfig()
    backoff = data.get("retry_backoff_minutes", list(defaults.retry_backoff_minutes))
    if not isinstance(backoff, list) or not backoff:
        raise ConfigValidationError(
            "'settlement.retry_backoff_minutes' must be a non-empty list"
        )
    return SettlementConfig(
        max_retries=_positive_int(
            data.get("max_retries", defaults.max_retries),
            "settlement.max_retries",
            allow_zero=True,
        ),
        retry_backoff_minutes=tuple(
            _positive_int(m, "settlement.retry_backoff_minutes[]") for m in backoff
        ),
    )


def parse_periods(data: dict[str, Any]) -> PeriodConfig:
    period_type = data.get("default_period_type", PeriodConfig().default_period_type)
    if period_type not in _PERIOD_TYPES:
        raise ConfigValidationError(
            f"'periods.default_period_type' must be one of {_PERIOD_TYPES}, got {period_type!r}"
        )
    return PeriodConfig(default_period_type=period_type)


def parse_controls_config(
    data: dict[str, Any],
    source_path: str | None = None,
) -> ControlsConfig:
    """Parse a loaded YAML document into a ControlsConfig."""
    return ControlsConfig(
        override=parse_override(_section(data, "override")),
        settlement=parse_settlement(_section(data, "settlement")),
        periods=parse_periods(_section(data, "periods")),
        source_path=source_path,
        checksum=compute_checksum(data),
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """
    Compute SHA-256 checksum of canonical JSON serialization.

    Identical ``data`` always produces identical checksums.
    """
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()

"""
ledger_config -- single public entrypoint for control configuration.

Responsibility:
    Provides the ONLY way to obtain control configuration at runtime through
    ``get_active_config()``, and the bridge ``build_control_policy()`` that
    turns it into the kernel's ``ControlPolicy``.

Architecture position:
    Configuration -- sits above ``ledger_kernel``.  The kernel MUST NEVER
    import from ``ledger_config``.

Failure modes:
    - ``FileNotFoundError`` -- the configured file does not exist.
    - ``yaml.YAMLError`` -- the file is not valid YAML.
    - ``ConfigValidationError`` -- a value is missing, mistyped or out of range.

Audit relevance:
    Every successful ``get_active_config()`` call emits a ``config_loaded``
    log entry with the source path and checksum, tying each override role
    check and retry schedule to the exact configuration that governed it.
"""

from __future__ import annotations

import os
from pathlib import Path

from ledger_config.loader import load_yaml_file, parse_controls_config
from ledger_config.schema import (
    ConfigValidationError,
    ControlsConfig,
    OverrideConfig,
    PeriodConfig,
    SettlementConfig,
)
from ledger_kernel.domain.policy import ControlPolicy
from ledger_kernel.domain.states import PeriodType
from ledger_kernel.logging_config import get_logger

logger = get_logger("config")

DEFAULT_CONFIG_PATH = Path(__file__).parent / "defaults.yaml"
CONFIG_PATH_ENV = "LEDGER_CONFIG_PATH"


def get_active_config(path: Path | str | None = None) -> ControlsConfig:
    """The ONLY public configuration entrypoint.

    Resolution order: explicit ``path`` argument, then the
    ``LEDGER_CONFIG_PATH`` environment variable, then the packaged
    ``defaults.yaml``.

    Raises:
        FileNotFoundError: If the resolved file does not exist.
        ConfigValidationError: If any value fails validation.
    """
    if path is None:
        path = os.environ.get(CONFIG_PATH_ENV) or DEFAULT_CONFIG_PATH
    resolved = Path(path)

    data = load_yaml_file(resolved)
    config = parse_controls_config(data, source_path=str(resolved))

    logger.info(
        "config_loaded",
        extra={
            "config_path": str(resolved),
            "checksum": config.checksum,
            "override_role": config.override.required_role,
            "max_retries": config.settlement.max_retries,
        },
    )
    return config


def build_control_policy(config: ControlsConfig) -> ControlPolicy:
    """Bridge a loaded configuration into the kernel's ControlPolicy."""
    return ControlPolicy(
        override_role=config.override.required_role,
        min_justification_length=config.override.min_justification_length,
        lock_release_roles=config.override.lock_release_roles,
        max_retries=config.settlement.max_retries,
        retry_backoff_minutes=config.settlement.retry_backoff_minutes,
        default_period_type=PeriodType(config.periods.default_period_type),
    )


__all__ = [
    "CONFIG_PATH_ENV",
    "ConfigValidationError",
    "ControlsConfig",
    "DEFAULT_CONFIG_PATH",
    "OverrideConfig",
    "PeriodConfig",
    "SettlementConfig",
    "build_control_policy",
    "get_active_config",
]

"""Read-only query selectors."""

from ledger_kernel.selectors.override_selector import OverrideLogSelector

__all__ = ["OverrideLogSelector"]

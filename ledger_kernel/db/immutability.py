"""
ORM-Level Immutability Enforcement.

===============================================================================
WHY THIS EXISTS
===============================================================================

The control plane is what an auditor inspects for proof that the books are
tamper-evident.  Closed periods, released locks, final settlements, the
override log and the audit chain must not be edited after the fact, only
superseded by new, visible records.

SQLAlchemy fires events before UPDATE/DELETE operations reach the database.
We register listeners that intercept these events and check our invariants:

    session.flush()
         |
         v
    [before_update event] --> _check_*_immutability() --> ImmutabilityViolationError
         |                                                        ^
         v                                                        |
    [before_delete event] --> _check_*_delete() -----------------+
         |
         v
    SQL sent to database (only if checks pass)

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity              | When Immutable                       | Why
--------------------|--------------------------------------|-------------------------------
LedgerAuditEvent    | ALWAYS (from creation)               | Audit trail is sacred
OverrideLogEntry    | ALWAYS (from creation)               | Append-only exception record
AccountingPeriod    | After status = HARD_CLOSED; no DELETE| HARD_CLOSED is terminal
LedgerLock          | After RELEASED; PERIOD_LOCK status;  | Freezes cannot be rewritten
                    | no DELETE                            |
Settlement          | After SETTLED or retries exhausted;  | Finality and manual-intervention
                    | no DELETE                            | states are frozen

===============================================================================
DESIGN DECISIONS
===============================================================================

1. updated_at/updated_by_id may change on any record: they are audit
   metadata, not ledger data.

2. We check "WAS final", not "IS final".  The transition INTO a final state
   must itself be allowed; SQLAlchemy attribute history tells us the value
   the row had before this flush.

3. Inline model imports avoid circular imports (models import from db).

===============================================================================
USAGE
===============================================================================

    from ledger_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # once at startup

To temporarily disable (TESTS ONLY - never in production):

    unregister_immutability_listeners()

===============================================================================
"""

from sqlalchemy import event, inspect
from sqlalchemy.orm.attributes import get_history

from ledger_kernel.exceptions import ImmutabilityViolationError
from ledger_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

_AUDIT_METADATA_FIELDS = frozenset({"updated_at", "updated_by_id"})


def _previous_value(target, attr_name: str):
    """Value the attribute held before the pending flush."""
    history = get_history(target, attr_name)
    if history.deleted:
        return history.deleted[0]
    if history.unchanged:
        return history.unchanged[0]
    return getattr(target, attr_name)


def _changed_fields(target) -> list[str]:
    insp = inspect(target)
    return [
        attr.key
        for attr in insp.attrs
        if attr.key not in _AUDIT_METADATA_FIELDS and attr.history.has_changes()
    ]


def _block(entity_type: str, target, operation: str, reason: str, field: str | None = None):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(target.id),
            "operation": operation,
            "field": field,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(target.id),
        reason=reason,
    )


# =============================================================================
# Append-only records
# =============================================================================


def _check_audit_event_immutability(mapper, connection, target):
    _block("LedgerAuditEvent", target, "UPDATE", "Audit events are append-only")


def _check_audit_event_delete(mapper, connection, target):
    _block("LedgerAuditEvent", target, "DELETE", "Audit events cannot be deleted")


def _check_override_log_immutability(mapper, connection, target):
    _block("OverrideLogEntry", target, "UPDATE", "Override log entries are append-only")


def _check_override_log_delete(mapper, connection, target):
    _block("OverrideLogEntry", target, "DELETE", "Override log entries cannot be deleted")


# =============================================================================
# AccountingPeriod
# =============================================================================


def _check_period_immutability(mapper, connection, target):
    """
    Prevent modifications to HARD_CLOSED periods.

    The SOFT_CLOSED -> HARD_CLOSED transition itself is allowed; anything
    after it is not.
    """
    from ledger_kernel.domain.states import PeriodStatus

    if _previous_value(target, "status") != PeriodStatus.HARD_CLOSED:
        return

    changed = _changed_fields(target)
    if changed:
        _block(
            "AccountingPeriod",
            target,
            "UPDATE",
            f"Cannot modify field '{changed[0]}' on HARD_CLOSED accounting period",
            field=changed[0],
        )


def _check_period_delete(mapper, connection, target):
    _block("AccountingPeriod", target, "DELETE", "Accounting periods cannot be deleted")


# =============================================================================
# LedgerLock
# =============================================================================


def _check_lock_immutability(mapper, connection, target):
    """
    Released locks are frozen; PERIOD_LOCK status never changes.
    """
    from ledger_kernel.domain.states import LockStatus, LockType

    previous_status = _previous_value(target, "lock_status")
    if previous_status == LockStatus.RELEASED:
        changed = _changed_fields(target)
        if changed:
            _block(
                "LedgerLock",
                target,
                "UPDATE",
                f"Cannot modify field '{changed[0]}' on RELEASED ledger lock",
                field=changed[0],
            )
        return

    if (
        _previous_value(target, "lock_type") == LockType.PERIOD_LOCK
        and get_history(target, "lock_status").has_changes()
    ):
        _block(
            "LedgerLock",
            target,
            "UPDATE",
            "PERIOD_LOCK status is owned by its HARD_CLOSED period",
            field="lock_status",
        )


def _check_lock_delete(mapper, connection, target):
    _block("LedgerLock", target, "DELETE", "Ledger locks cannot be deleted")


# =============================================================================
# Settlement
# =============================================================================


def _check_settlement_immutability(mapper, connection, target):
    """
    SETTLED and retries-exhausted settlements are frozen.

    The failure that exhausts the retries is allowed (it is the transition
    into the terminal state); any later change is not.
    """
    from ledger_kernel.domain.states import SettlementStatus

    was_settled = _previous_value(target, "status") == SettlementStatus.SETTLED
    was_exhausted = bool(_previous_value(target, "retries_exhausted"))
    if not (was_settled or was_exhausted):
        return

    changed = _changed_fields(target)
    if changed:
        state = "SETTLED" if was_settled else "retries-exhausted"
        _block(
            "Settlement",
            target,
            "UPDATE",
            f"Cannot modify field '{changed[0]}' on {state} settlement",
            field=changed[0],
        )


def _check_settlement_delete(mapper, connection, target):
    _block("Settlement", target, "DELETE", "Settlements cannot be deleted")


# =============================================================================
# Registration
# =============================================================================


def _listeners():
    from ledger_kernel.models import (
        AccountingPeriod,
        LedgerAuditEvent,
        LedgerLock,
        OverrideLogEntry,
        Settlement,
    )

    return [
        (LedgerAuditEvent, "before_update", _check_audit_event_immutability),
        (LedgerAuditEvent, "before_delete", _check_audit_event_delete),
        (OverrideLogEntry, "before_update", _check_override_log_immutability),
        (OverrideLogEntry, "before_delete", _check_override_log_delete),
        (AccountingPeriod, "before_update", _check_period_immutability),
        (AccountingPeriod, "before_delete", _check_period_delete),
        (LedgerLock, "before_update", _check_lock_immutability),
        (LedgerLock, "before_delete", _check_lock_delete),
        (Settlement, "before_update", _check_settlement_immutability),
        (Settlement, "before_delete", _check_settlement_delete),
    ]


def register_immutability_listeners():
    """
    Register all immutability enforcement event listeners.

    Idempotent: listeners already registered are skipped.
    """
    for target, event_name, listener_fn in _listeners():
        if not event.contains(target, event_name, listener_fn):
            event.listen(target, event_name, listener_fn)
    logger.info("immutability_listeners_registered")


def _safe_remove_listener(target, event_name, listener_fn):
    """Remove an event listener, ignoring it if not registered."""
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Remove immutability enforcement event listeners.

    WARNING: FOR TESTING ONLY.
    """
    for target, event_name, listener_fn in _listeners():
        _safe_remove_listener(target, event_name, listener_fn)

"""
Ledger lock tests.

Verifies:
- No two ACTIVE locks of any type overlap for a tenant (inclusive bounds)
- PERIOD_LOCK cannot be applied or released through the public entry points
- Only permitted roles release locks; an early release writes one override
- check_locks() reports the covering ACTIVE lock
"""

from datetime import date, timedelta
from uuid import uuid4

import pytest

from ledger_kernel.domain.states import LockStatus, LockType, OverrideType, PeriodStatus
from ledger_kernel.exceptions import (
    InsufficientOverridePrivilegesError,
    InvalidLockRangeError,
    LockAlreadyReleasedError,
    LockNotFoundError,
    LockOverlapError,
    ManualPeriodLockError,
    OverrideJustificationError,
    PeriodLockReleaseError,
)
from tests.conftest import ADMIN_ID, OPERATOR_ID, OTHER_TENANT_ID, VALID_JUSTIFICATION


@pytest.fixture
def audit_lock(lock_manager, tenant_id, admin_role):
    """AUDIT_LOCK over January 2024."""
    return lock_manager.apply_lock(
        tenant_id,
        LockType.AUDIT_LOCK,
        date(2024, 1, 1),
        date(2024, 1, 31),
        reason="Q4 external audit fieldwork",
        locked_by=ADMIN_ID,
        locked_by_role=admin_role,
        reference_number="AUD-2024-001",
    )


class TestApplyLock:
    """Applying AUDIT_LOCK and RECONCILIATION_LOCK."""

    def test_apply_audit_lock(self, audit_lock, deterministic_clock, tenant_id):
        assert audit_lock.lock_type == LockType.AUDIT_LOCK
        assert audit_lock.lock_status == LockStatus.ACTIVE
        assert audit_lock.is_active
        assert audit_lock.reference_number == "AUD-2024-001"
        assert audit_lock.locked_at == deterministic_clock.now()
        assert audit_lock.accounting_period_id is None
        assert audit_lock.tenant_id == tenant_id

    def test_period_lock_rejected(self, lock_manager, tenant_id, admin_role):
        with pytest.raises(ManualPeriodLockError):
            lock_manager.apply_lock(
                tenant_id,
                LockType.PERIOD_LOCK,
                date(2024, 1, 1),
                date(2024, 1, 1),
                reason="Trying to seal by hand",
                locked_by=ADMIN_ID,
                locked_by_role=admin_role,
            )

    def test_reason_required(self, lock_manager, tenant_id):
        with pytest.raises(ValueError):
            lock_manager.apply_lock(
                tenant_id, LockType.AUDIT_LOCK, date(2024, 1, 1), date(2024, 1, 2), reason="  ", locked_by=ADMIN_ID
            )

    def test_inverted_range_rejected(self, lock_manager, tenant_id):
        with pytest.raises(InvalidLockRangeError):
            lock_manager.apply_lock(
                tenant_id,
                LockType.RECONCILIATION_LOCK,
                date(2024, 2, 1),
                date(2024, 1, 1),
                reason="Bank reconciliation",
                locked_by=ADMIN_ID,
            )

    @pytest.mark.parametrize(
        "start,end",
        [
            (date(2024, 1, 31), date(2024, 2, 5)),  # shares the boundary day
            (date(2023, 12, 1), date(2024, 1, 1)),  # shares the first day
            (date(2024, 1, 10), date(2024, 1, 12)),  # contained
            (date(2023, 12, 1), date(2024, 3, 1)),  # contains
        ],
    )
    def test_overlap_any_type_rejected(self, lock_manager, audit_lock, tenant_id, start, end):
        with pytest.raises(LockOverlapError) as exc_info:
            lock_manager.apply_lock(
                tenant_id,
                LockType.RECONCILIATION_LOCK,
                start,
                end,
                reason="Bank reconciliation",
                locked_by=ADMIN_ID,
            )

        assert exc_info.value.conflicting_lock_id == str(audit_lock.id)
        assert exc_info.value.conflicting_lock_type == "AUDIT_LOCK"

    def test_adjacent_range_allowed(self, lock_manager, audit_lock, tenant_id):
        lock = lock_manager.apply_lock(
            tenant_id,
            LockType.RECONCILIATION_LOCK,
            date(2024, 2, 1),
            date(2024, 2, 29),
            reason="Bank reconciliation",
            locked_by=ADMIN_ID,
        )

        assert lock.is_active
        assert len(lock_manager.list_active_locks(tenant_id)) == 2

    def test_other_tenant_unaffected(self, lock_manager, audit_lock):
        lock = lock_manager.apply_lock(
            OTHER_TENANT_ID,
            LockType.AUDIT_LOCK,
            date(2024, 1, 1),
            date(2024, 1, 31),
            reason="Their own audit",
            locked_by=ADMIN_ID,
        )

        assert lock.is_active

    def test_released_range_can_be_relocked(self, lock_manager, audit_lock, tenant_id, admin_role, deterministic_clock):
        deterministic_clock.set_time(deterministic_clock.now() + timedelta(days=60))
        lock_manager.release_lock(audit_lock.id, tenant_id, ADMIN_ID, admin_role, "Audit fieldwork done")

        relocked = lock_manager.apply_lock(
            tenant_id,
            LockType.AUDIT_LOCK,
            date(2024, 1, 1),
            date(2024, 1, 31),
            reason="Follow-up audit",
            locked_by=ADMIN_ID,
        )

        assert relocked.is_active
        assert relocked.id != audit_lock.id

    def test_apply_logged(self, lock_manager, tenant_id, captured_logs):
        lock_manager.apply_lock(
            tenant_id,
            LockType.RECONCILIATION_LOCK,
            date(2024, 4, 1),
            date(2024, 4, 30),
            reason="Bank reconciliation",
            locked_by=ADMIN_ID,
        )

        records = [r for r in captured_logs() if r["message"] == "lock_applied"]
        assert len(records) == 1
        assert records[0]["lock_type"] == "RECONCILIATION_LOCK"
        assert records[0]["lock_start_date"] == "2024-04-01"


class TestReleaseLock:
    """Releasing operator-managed locks."""

    def test_release_after_range_passed(
        self, lock_manager, override_log, audit_lock, tenant_id, admin_role, deterministic_clock
    ):
        deterministic_clock.set_time(deterministic_clock.now() + timedelta(days=45))

        released = lock_manager.release_lock(
            audit_lock.id, tenant_id, ADMIN_ID, admin_role, "Audit fieldwork complete"
        )

        assert released.lock_status == LockStatus.RELEASED
        assert released.released_by == ADMIN_ID
        assert released.released_at == deterministic_clock.now()
        assert released.release_notes == "Audit fieldwork complete"
        assert override_log.query(tenant_id) == []

    def test_early_release_writes_one_override(
        self, lock_manager, override_log, audit_lock, tenant_id, admin_role
    ):
        lock_manager.release_lock(audit_lock.id, tenant_id, ADMIN_ID, admin_role, VALID_JUSTIFICATION)

        entries = override_log.query(tenant_id)
        assert len(entries) == 1
        entry = entries[0]
        assert entry.override_type == OverrideType.EARLY_LOCK_RELEASE
        assert entry.entity_type == "ledger_lock"
        assert entry.entity_id == str(audit_lock.id)
        assert entry.override_by == ADMIN_ID
        assert entry.override_by_role == admin_role
        assert entry.justification == VALID_JUSTIFICATION

    def test_early_release_with_short_notes_leaves_lock_active(
        self, lock_manager, audit_lock, tenant_id, admin_role
    ):
        with pytest.raises(OverrideJustificationError):
            lock_manager.release_lock(audit_lock.id, tenant_id, ADMIN_ID, admin_role, "done")

        assert lock_manager.get_lock(audit_lock.id, tenant_id).is_active

    def test_role_required(self, lock_manager, audit_lock, tenant_id):
        with pytest.raises(InsufficientOverridePrivilegesError) as exc_info:
            lock_manager.release_lock(audit_lock.id, tenant_id, OPERATOR_ID, "OPERATOR", VALID_JUSTIFICATION)

        assert exc_info.value.user_role == "OPERATOR"
        assert lock_manager.get_lock(audit_lock.id, tenant_id).is_active

    def test_unknown_lock(self, lock_manager, tenant_id, admin_role):
        with pytest.raises(LockNotFoundError):
            lock_manager.release_lock(uuid4(), tenant_id, ADMIN_ID, admin_role, VALID_JUSTIFICATION)

    def test_other_tenant_cannot_release(self, lock_manager, audit_lock, admin_role):
        with pytest.raises(LockNotFoundError):
            lock_manager.release_lock(audit_lock.id, OTHER_TENANT_ID, ADMIN_ID, admin_role, VALID_JUSTIFICATION)

    def test_double_release_rejected(self, lock_manager, audit_lock, tenant_id, admin_role):
        lock_manager.release_lock(audit_lock.id, tenant_id, ADMIN_ID, admin_role, VALID_JUSTIFICATION)

        with pytest.raises(LockAlreadyReleasedError):
            lock_manager.release_lock(audit_lock.id, tenant_id, ADMIN_ID, admin_role, VALID_JUSTIFICATION)

    def test_period_lock_cannot_be_released(
        self, period_manager, lock_manager, soft_closed_daily_period, tenant_id, admin_role
    ):
        period_manager.close_period(
            soft_closed_daily_period.id, tenant_id, PeriodStatus.HARD_CLOSED, closed_by=ADMIN_ID
        )
        period_lock = lock_manager.list_active_locks(tenant_id, LockType.PERIOD_LOCK)[0]

        with pytest.raises(PeriodLockReleaseError) as exc_info:
            lock_manager.release_lock(period_lock.id, tenant_id, ADMIN_ID, admin_role, VALID_JUSTIFICATION)

        assert exc_info.value.accounting_period_id == str(soft_closed_daily_period.id)
        assert lock_manager.get_lock(period_lock.id, tenant_id).is_active

    def test_notes_required(self, lock_manager, audit_lock, tenant_id, admin_role):
        with pytest.raises(ValueError):
            lock_manager.release_lock(audit_lock.id, tenant_id, ADMIN_ID, admin_role, "")


class TestCheckLocks:
    """Which dates are blocked."""

    @pytest.mark.parametrize(
        "day,locked",
        [
            (date(2023, 12, 31), False),
            (date(2024, 1, 1), True),
            (date(2024, 1, 15), True),
            (date(2024, 1, 31), True),
            (date(2024, 2, 1), False),
        ],
    )
    def test_inclusive_bounds(self, lock_manager, audit_lock, tenant_id, day, locked):
        check = lock_manager.check_locks(tenant_id, day)

        assert check.is_locked is locked
        if locked:
            assert check.lock_id == audit_lock.id
            assert check.lock_type == LockType.AUDIT_LOCK
            assert check.locked_by == ADMIN_ID
            assert check.reason == "Q4 external audit fieldwork"

    def test_released_lock_does_not_block(self, lock_manager, audit_lock, tenant_id, admin_role):
        lock_manager.release_lock(audit_lock.id, tenant_id, ADMIN_ID, admin_role, VALID_JUSTIFICATION)

        assert not lock_manager.check_locks(tenant_id, date(2024, 1, 15)).is_locked

    def test_other_tenant_not_blocked(self, lock_manager, audit_lock):
        assert not lock_manager.check_locks(OTHER_TENANT_ID, date(2024, 1, 15)).is_locked


class TestLockReads:
    def test_lock_history_includes_released(self, lock_manager, audit_lock, tenant_id, admin_role):
        lock_manager.release_lock(audit_lock.id, tenant_id, ADMIN_ID, admin_role, VALID_JUSTIFICATION)
        lock_manager.apply_lock(
            tenant_id,
            LockType.RECONCILIATION_LOCK,
            date(2024, 3, 1),
            date(2024, 3, 31),
            reason="Bank reconciliation",
            locked_by=ADMIN_ID,
        )

        history = lock_manager.lock_history(tenant_id)
        january = lock_manager.lock_history(tenant_id, start_date=date(2024, 1, 1), end_date=date(2024, 1, 31))

        assert {lock.lock_status for lock in history} == {LockStatus.ACTIVE, LockStatus.RELEASED}
        assert [lock.id for lock in january] == [audit_lock.id]

    def test_list_active_filters_by_type(self, lock_manager, audit_lock, tenant_id):
        assert [l.id for l in lock_manager.list_active_locks(tenant_id, LockType.AUDIT_LOCK)] == [audit_lock.id]
        assert lock_manager.list_active_locks(tenant_id, LockType.RECONCILIATION_LOCK) == []

    def test_get_lock_unknown(self, lock_manager, tenant_id):
        with pytest.raises(LockNotFoundError):
            lock_manager.get_lock(uuid4(), tenant_id)

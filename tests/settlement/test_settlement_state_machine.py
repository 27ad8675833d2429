"""
Settlement state machine tests.

Verifies:
- Every recorded walk is valid against the transition table
- Invalid transitions report the valid next states
- confirm_by_bank() is the finality gate and requires a UTR
- Retries follow the fixed backoff schedule and stop at max_retries
- The retry queue returns due RETRIED settlements, earliest first
"""

from datetime import timedelta
from decimal import Decimal
from uuid import uuid4

import pytest

from ledger_kernel.domain.states import SETTLEMENT_TRANSITIONS, SettlementStatus
from ledger_kernel.exceptions import (
    MissingUTRError,
    SettlementNotFoundError,
    SettlementRetryExhaustedError,
    SettlementStateError,
)
from tests.conftest import OPERATOR_ID, OTHER_TENANT_ID

BATCH_JOB = "settlement-batch-job"


@pytest.fixture
def new_settlement(settlement_machine, tenant_id):
    return settlement_machine.create_settlement(
        tenant_id,
        merchant_id="merchant-42",
        settlement_ref="STL-2024-0001",
        net_amount=Decimal("9850.00"),
        created_by=BATCH_JOB,
        gross_amount=Decimal("10000.00"),
        fees_amount=Decimal("150.00"),
    )


def _fail_once(machine, settlement_id, tenant_id, reason="Bank rejected the batch"):
    machine.reserve_funds(settlement_id, tenant_id, BATCH_JOB)
    machine.send_to_bank(settlement_id, tenant_id, BATCH_JOB, bank_batch_id="BB-1")
    return machine.mark_failed(settlement_id, tenant_id, BATCH_JOB, reason)


def _assert_valid_walk(settlement):
    steps = settlement.state_transitions
    assert steps[0].from_status is None
    assert steps[0].to_status == SettlementStatus.CREATED
    for prev, step in zip(steps, steps[1:]):
        assert step.from_status == prev.to_status
        assert step.to_status in SETTLEMENT_TRANSITIONS[step.from_status]
    assert steps[-1].to_status == settlement.status


class TestCreateSettlement:
    def test_created(self, new_settlement, deterministic_clock, policy):
        assert new_settlement.status == SettlementStatus.CREATED
        assert new_settlement.net_amount == Decimal("9850.00")
        assert new_settlement.retry_count == 0
        assert new_settlement.max_retries == policy.max_retries
        assert not new_settlement.retries_exhausted
        assert not new_settlement.is_final_for_reconciliation
        assert len(new_settlement.state_transitions) == 1
        step = new_settlement.state_transitions[0]
        assert step.by == BATCH_JOB
        assert step.at == deterministic_clock.now()

    @pytest.mark.parametrize("amount", [Decimal("0"), Decimal("-1.00"), "0.00"])
    def test_non_positive_amount_rejected(self, settlement_machine, tenant_id, amount):
        with pytest.raises(ValueError):
            settlement_machine.create_settlement(
                tenant_id, "merchant-42", "STL-BAD", amount, created_by=BATCH_JOB
            )

    def test_non_numeric_amount_rejected(self, settlement_machine, tenant_id):
        with pytest.raises(ValueError):
            settlement_machine.create_settlement(
                tenant_id, "merchant-42", "STL-BAD", "lots", created_by=BATCH_JOB
            )

    def test_custom_retry_budget(self, settlement_machine, tenant_id):
        settlement = settlement_machine.create_settlement(
            tenant_id, "merchant-42", "STL-ONE-RETRY", "12.50", created_by=BATCH_JOB, max_retries=1
        )

        assert settlement.max_retries == 1
        assert settlement.net_amount == Decimal("12.50")


class TestHappyPath:
    def test_full_walk_to_settled(self, settlement_machine, new_settlement, tenant_id):
        sid = new_settlement.id
        settlement_machine.reserve_funds(sid, tenant_id, BATCH_JOB)
        sent = settlement_machine.send_to_bank(sid, tenant_id, BATCH_JOB, bank_batch_id="BB-77")
        assert not sent.is_final_for_reconciliation

        confirmed = settlement_machine.confirm_by_bank(
            sid, tenant_id, BATCH_JOB, utr_number="UTR123456789", bank_reference_number="REF-9"
        )
        assert confirmed.status == SettlementStatus.BANK_CONFIRMED
        assert confirmed.is_final_for_reconciliation
        assert confirmed.utr_number == "UTR123456789"

        settled = settlement_machine.mark_settled(sid, tenant_id, OPERATOR_ID)

        assert settled.status == SettlementStatus.SETTLED
        assert settled.is_final_for_reconciliation
        assert settled.bank_batch_id == "BB-77"
        assert settled.funds_reserved_at is not None
        assert settled.sent_to_bank_at is not None
        assert settled.bank_confirmed_at is not None
        assert settled.settled_at is not None
        assert [s.to_status for s in settled.state_transitions] == [
            SettlementStatus.CREATED,
            SettlementStatus.FUNDS_RESERVED,
            SettlementStatus.SENT_TO_BANK,
            SettlementStatus.BANK_CONFIRMED,
            SettlementStatus.SETTLED,
        ]
        _assert_valid_walk(settled)

    def test_transition_logged(self, settlement_machine, new_settlement, tenant_id, captured_logs):
        settlement_machine.reserve_funds(new_settlement.id, tenant_id, BATCH_JOB)

        records = [r for r in captured_logs() if r["message"] == "settlement_transitioned"]
        assert len(records) == 1
        assert records[0]["from_status"] == "CREATED"
        assert records[0]["to_status"] == "FUNDS_RESERVED"


class TestInvalidTransitions:
    def test_skip_rejected_with_valid_next_states(self, settlement_machine, new_settlement, tenant_id):
        with pytest.raises(SettlementStateError) as exc_info:
            settlement_machine.send_to_bank(new_settlement.id, tenant_id, BATCH_JOB)

        err = exc_info.value
        assert err.current_state == "CREATED"
        assert err.attempted_state == "SENT_TO_BANK"
        assert err.valid_transitions == ["FUNDS_RESERVED", "FAILED"]
        assert err.settlement_id == str(new_settlement.id)

    def test_settled_is_terminal(self, settlement_machine, new_settlement, tenant_id):
        sid = new_settlement.id
        settlement_machine.reserve_funds(sid, tenant_id, BATCH_JOB)
        settlement_machine.send_to_bank(sid, tenant_id, BATCH_JOB)
        settlement_machine.confirm_by_bank(sid, tenant_id, BATCH_JOB, utr_number="UTR1")
        settlement_machine.mark_settled(sid, tenant_id, BATCH_JOB)

        with pytest.raises(SettlementStateError) as exc_info:
            settlement_machine.mark_failed(sid, tenant_id, BATCH_JOB, "Late bank reversal")

        assert exc_info.value.valid_transitions == []

    def test_bank_confirmed_cannot_fail(self, settlement_machine, new_settlement, tenant_id):
        sid = new_settlement.id
        settlement_machine.reserve_funds(sid, tenant_id, BATCH_JOB)
        settlement_machine.send_to_bank(sid, tenant_id, BATCH_JOB)
        settlement_machine.confirm_by_bank(sid, tenant_id, BATCH_JOB, utr_number="UTR1")

        with pytest.raises(SettlementStateError) as exc_info:
            settlement_machine.mark_failed(sid, tenant_id, BATCH_JOB, "Second thoughts")

        assert exc_info.value.valid_transitions == ["SETTLED"]

    def test_retry_requires_failed(self, settlement_machine, new_settlement, tenant_id):
        with pytest.raises(SettlementStateError):
            settlement_machine.retry(new_settlement.id, tenant_id, BATCH_JOB)

    def test_failed_state_is_unchanged_by_rejected_call(self, settlement_machine, new_settlement, tenant_id):
        with pytest.raises(SettlementStateError):
            settlement_machine.mark_settled(new_settlement.id, tenant_id, BATCH_JOB)

        current = settlement_machine.get_settlement(new_settlement.id, tenant_id)
        assert current.status == SettlementStatus.CREATED
        assert len(current.state_transitions) == 1


class TestConfirmByBank:
    @pytest.mark.parametrize("utr", [None, "", "   ", 20240101, b"UTR1"])
    def test_missing_utr_rejected(self, settlement_machine, tenant_id, utr):
        # Raised before any state is read: the id need not exist.
        with pytest.raises(MissingUTRError):
            settlement_machine.confirm_by_bank(uuid4(), tenant_id, BATCH_JOB, utr_number=utr)

    def test_confirm_requires_sent_to_bank(self, settlement_machine, new_settlement, tenant_id):
        with pytest.raises(SettlementStateError):
            settlement_machine.confirm_by_bank(new_settlement.id, tenant_id, BATCH_JOB, utr_number="UTR1")


class TestRetries:
    def test_failure_then_retry_schedules_backoff(
        self, settlement_machine, new_settlement, tenant_id, deterministic_clock
    ):
        failed = _fail_once(settlement_machine, new_settlement.id, tenant_id)
        assert failed.status == SettlementStatus.FAILED
        assert failed.failure_reason == "Bank rejected the batch"
        assert failed.can_retry
        assert failed.next_retry_at is None

        retried = settlement_machine.retry(new_settlement.id, tenant_id, BATCH_JOB)

        now = deterministic_clock.now()
        assert retried.status == SettlementStatus.RETRIED
        assert retried.retry_count == 1
        assert retried.last_retry_at == now
        assert retried.next_retry_at == now + timedelta(minutes=15)

    def test_backoff_schedule(self, settlement_machine, new_settlement, tenant_id, deterministic_clock):
        delays = []
        for _ in range(3):
            _fail_once(settlement_machine, new_settlement.id, tenant_id)
            retried = settlement_machine.retry(new_settlement.id, tenant_id, BATCH_JOB)
            delays.append(retried.next_retry_at - deterministic_clock.now())

        assert delays == [timedelta(minutes=15), timedelta(hours=1), timedelta(hours=4)]

    def test_exhausted_after_max_retries_plus_one_failures(
        self, settlement_machine, new_settlement, tenant_id
    ):
        sid = new_settlement.id
        for _ in range(3):
            _fail_once(settlement_machine, sid, tenant_id)
            settlement_machine.retry(sid, tenant_id, BATCH_JOB)

        final = _fail_once(settlement_machine, sid, tenant_id, reason="Account closed")

        assert final.status == SettlementStatus.FAILED
        assert final.retry_count == 3
        assert final.retries_exhausted
        assert final.next_retry_at is None
        assert not final.can_retry
        _assert_valid_walk(final)

        for _ in range(2):
            with pytest.raises(SettlementRetryExhaustedError) as exc_info:
                settlement_machine.retry(sid, tenant_id, BATCH_JOB)
            assert exc_info.value.retry_count == 3
            assert exc_info.value.max_retries == 3

    def test_exhausted_record_accepts_no_transition(self, settlement_machine, tenant_id):
        settlement = settlement_machine.create_settlement(
            tenant_id, "merchant-42", "STL-NO-RETRY", "100", created_by=BATCH_JOB, max_retries=0
        )
        failed = settlement_machine.mark_failed(settlement.id, tenant_id, BATCH_JOB, "Invalid IBAN")
        assert failed.retries_exhausted

        with pytest.raises(SettlementStateError):
            settlement_machine.reserve_funds(settlement.id, tenant_id, BATCH_JOB)
        with pytest.raises(SettlementRetryExhaustedError):
            settlement_machine.retry(settlement.id, tenant_id, BATCH_JOB)

    def test_retry_history_recorded(self, settlement_machine, new_settlement, tenant_id, session):
        from ledger_kernel.models.settlement import Settlement

        _fail_once(settlement_machine, new_settlement.id, tenant_id)
        settlement_machine.retry(new_settlement.id, tenant_id, BATCH_JOB)

        row = session.get(Settlement, new_settlement.id)
        assert len(row.retry_history) == 1
        assert row.retry_history[0]["attempt"] == 1
        assert row.retry_history[0]["failure_reason"] == "Bank rejected the batch"

    def test_failure_reason_required(self, settlement_machine, new_settlement, tenant_id):
        with pytest.raises(ValueError):
            settlement_machine.mark_failed(new_settlement.id, tenant_id, BATCH_JOB, "  ")

    def test_retried_settlement_resumes(self, settlement_machine, new_settlement, tenant_id):
        sid = new_settlement.id
        _fail_once(settlement_machine, sid, tenant_id)
        settlement_machine.retry(sid, tenant_id, BATCH_JOB)

        resumed = settlement_machine.reserve_funds(sid, tenant_id, BATCH_JOB)

        assert resumed.status == SettlementStatus.FUNDS_RESERVED
        _assert_valid_walk(resumed)


class TestRetryQueue:
    def _retried(self, machine, tenant_id, ref):
        settlement = machine.create_settlement(tenant_id, "merchant-42", ref, "50.00", created_by=BATCH_JOB)
        machine.mark_failed(settlement.id, tenant_id, BATCH_JOB, "Timeout")
        return machine.retry(settlement.id, tenant_id, BATCH_JOB)

    def test_only_due_items_earliest_first(self, settlement_machine, tenant_id, deterministic_clock):
        first = self._retried(settlement_machine, tenant_id, "STL-Q-1")
        deterministic_clock.advance(600)
        second = self._retried(settlement_machine, tenant_id, "STL-Q-2")

        assert settlement_machine.retry_queue() == []

        due = settlement_machine.retry_queue(now=first.next_retry_at)
        assert [s.id for s in due] == [first.id]

        later = second.next_retry_at + timedelta(seconds=1)
        assert [s.id for s in settlement_machine.retry_queue(now=later)] == [first.id, second.id]

    def test_filters_by_tenant(self, settlement_machine, tenant_id):
        mine = self._retried(settlement_machine, tenant_id, "STL-T-1")
        theirs = self._retried(settlement_machine, OTHER_TENANT_ID, "STL-T-1")
        later = mine.next_retry_at + timedelta(hours=1)

        assert {s.id for s in settlement_machine.retry_queue(now=later)} == {mine.id, theirs.id}
        assert [s.id for s in settlement_machine.retry_queue(now=later, tenant_id=tenant_id)] == [mine.id]


class TestSettlementReads:
    def test_get_unknown(self, settlement_machine, tenant_id):
        with pytest.raises(SettlementNotFoundError):
            settlement_machine.get_settlement(uuid4(), tenant_id)

    def test_get_other_tenant(self, settlement_machine, new_settlement):
        with pytest.raises(SettlementNotFoundError):
            settlement_machine.get_settlement(new_settlement.id, OTHER_TENANT_ID)

    def test_list_by_status(self, settlement_machine, new_settlement, tenant_id):
        other = settlement_machine.create_settlement(
            tenant_id, "merchant-7", "STL-2024-0002", "10", created_by=BATCH_JOB
        )
        settlement_machine.reserve_funds(other.id, tenant_id, BATCH_JOB)

        created = settlement_machine.list_settlements(tenant_id, status=SettlementStatus.CREATED)
        reserved = settlement_machine.list_settlements(tenant_id, status="FUNDS_RESERVED")

        assert [s.id for s in created] == [new_settlement.id]
        assert [s.id for s in reserved] == [other.id]
        assert len(settlement_machine.list_settlements(tenant_id)) == 2

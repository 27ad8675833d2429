"""Pure-domain tests for status tables and helpers (no database)."""

from datetime import date, datetime, timedelta, timezone

import pytest

from ledger_kernel.domain.clock import DeterministicClock
from ledger_kernel.domain.states import (
    PeriodStatus,
    SettlementStatus,
    as_date,
    can_transition,
    next_period_status,
    retry_delay,
    valid_next_states,
)


class TestPeriodStatus:
    def test_linear_lifecycle(self):
        assert next_period_status(PeriodStatus.OPEN) == PeriodStatus.SOFT_CLOSED
        assert next_period_status(PeriodStatus.SOFT_CLOSED) == PeriodStatus.HARD_CLOSED
        assert next_period_status(PeriodStatus.HARD_CLOSED) is None


class TestSettlementTransitions:
    @pytest.mark.parametrize(
        "status, expected",
        [
            (SettlementStatus.CREATED, ["FUNDS_RESERVED", "FAILED"]),
            (SettlementStatus.FUNDS_RESERVED, ["SENT_TO_BANK", "FAILED"]),
            (SettlementStatus.SENT_TO_BANK, ["BANK_CONFIRMED", "FAILED"]),
            (SettlementStatus.BANK_CONFIRMED, ["SETTLED"]),
            (SettlementStatus.SETTLED, []),
            (SettlementStatus.FAILED, ["RETRIED"]),
            (SettlementStatus.RETRIED, ["FUNDS_RESERVED", "FAILED"]),
        ],
    )
    def test_valid_next_states(self, status, expected):
        assert valid_next_states(status) == expected

    def test_cannot_skip_bank(self):
        assert not can_transition(SettlementStatus.FUNDS_RESERVED, SettlementStatus.SETTLED)
        assert not can_transition(SettlementStatus.RETRIED, SettlementStatus.SENT_TO_BANK)

    def test_settled_is_terminal(self):
        assert not any(can_transition(SettlementStatus.SETTLED, s) for s in SettlementStatus)


class TestRetryDelay:
    SCHEDULE = (15, 60, 240)

    @pytest.mark.parametrize(
        "count, minutes",
        [(-1, 15), (0, 15), (1, 60), (2, 240), (3, 240), (10, 240)],
    )
    def test_schedule_clamped(self, count, minutes):
        assert retry_delay(count, self.SCHEDULE) == timedelta(minutes=minutes)

    def test_empty_schedule_rejected(self):
        with pytest.raises(ValueError):
            retry_delay(0, ())


class TestAsDate:
    def test_date_passthrough(self):
        assert as_date(date(2024, 1, 1)) == date(2024, 1, 1)

    def test_aware_datetime_read_in_utc(self):
        late_evening_new_york = datetime(2024, 1, 1, 22, 0, tzinfo=timezone(timedelta(hours=-5)))

        assert as_date(late_evening_new_york) == date(2024, 1, 2)

    def test_naive_datetime_uses_wall_date(self):
        assert as_date(datetime(2024, 1, 1, 23, 59)) == date(2024, 1, 1)


class TestDeterministicClock:
    def test_frozen_until_moved(self):
        clock = DeterministicClock()

        assert clock.now() == clock.now() == datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
        assert clock.advance(minutes=15) == datetime(2024, 1, 1, 12, 15, tzinfo=timezone.utc)

    def test_today_is_utc_calendar_day(self):
        clock = DeterministicClock(datetime(2024, 1, 1, 20, 0, tzinfo=timezone(timedelta(hours=-5))))

        assert clock.today() == date(2024, 1, 2)

    def test_naive_time_rejected(self):
        with pytest.raises(ValueError):
            DeterministicClock().set_time(datetime(2024, 1, 1))

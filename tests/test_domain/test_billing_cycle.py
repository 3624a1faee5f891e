"""
Tests for billing cycle date arithmetic
"""
import pytest
from datetime import date, datetime

from billflow.domain.billing_cycle import (
    UnsupportedBillingCycleError,
    add_months,
    advance,
    advance_from_start,
    backdate,
    cycle_boundary,
    cycle_months,
    is_due_or_overdue,
    month_bounds,
)


def _walk_from_start(start: date, as_of: date, cycle: str) -> date:
    """Step-by-step reference for advance_from_start."""
    k = 0
    current = start
    while current <= as_of:
        k += 1
        current = cycle_boundary(start, cycle, k)
    return current


class TestAdvance:
    @pytest.mark.parametrize("cycle,expected", [
        ("monthly", date(2024, 2, 15)),
        ("quarterly", date(2024, 4, 15)),
        ("semiannual", date(2024, 7, 15)),
        ("yearly", date(2025, 1, 15)),
    ])
    def test_adds_whole_cycle(self, cycle, expected):
        assert advance(date(2024, 1, 15), cycle) == expected

    def test_clips_to_month_end(self):
        assert advance(date(2024, 1, 31), "monthly") == date(2024, 2, 29)
        assert advance(date(2023, 1, 31), "monthly") == date(2023, 2, 28)

    def test_crosses_year(self):
        assert advance(date(2024, 11, 30), "quarterly") == date(2025, 2, 28)

    def test_accepts_datetime(self):
        assert advance(datetime(2024, 1, 15, 23, 59), "monthly") == date(2024, 2, 15)

    def test_unknown_cycle_is_fatal(self):
        with pytest.raises(UnsupportedBillingCycleError, match="weekly"):
            advance(date(2024, 1, 15), "weekly")

    def test_unsupported_cycle_is_value_error(self):
        with pytest.raises(ValueError):
            cycle_months("daily")


class TestBackdate:
    def test_one_cycle_before_next(self):
        assert backdate(date(2024, 5, 20), date(2023, 1, 20), "monthly") == date(2024, 4, 20)

    def test_clamps_to_start(self):
        assert backdate(date(2024, 2, 10), date(2024, 1, 25), "monthly") == date(2024, 1, 25)

    def test_clamps_yearly_to_start(self):
        assert backdate(date(2024, 6, 1), date(2024, 1, 1), "yearly") == date(2024, 1, 1)

    @pytest.mark.parametrize("next_date,start,cycle", [
        (date(2024, 5, 20), date(2023, 1, 20), "monthly"),
        (date(2024, 7, 3), date(2023, 1, 3), "quarterly"),
        (date(2025, 2, 28), date(2022, 8, 28), "semiannual"),
        (date(2026, 12, 1), date(2020, 12, 1), "yearly"),
    ])
    def test_advance_undoes_unclamped_backdate(self, next_date, start, cycle):
        last = backdate(next_date, start, cycle)
        assert last != start
        assert advance(last, cycle) == next_date

    def test_month_end_clipping_is_lossy(self):
        # Mar 31 -> Feb 29 -> Mar 29: clipping cannot be undone
        last = backdate(date(2024, 3, 31), date(2023, 1, 31), "monthly")
        assert last == date(2024, 2, 29)
        assert advance(last, "monthly") == date(2024, 3, 29)


class TestAdvanceFromStart:
    def test_future_start_is_returned_as_is(self):
        assert advance_from_start(date(2024, 6, 1), date(2024, 5, 1), "monthly") == date(2024, 6, 1)

    def test_result_strictly_after_as_of(self):
        assert advance_from_start(date(2024, 1, 15), date(2024, 3, 15), "monthly") == date(2024, 4, 15)
        assert advance_from_start(date(2024, 1, 15), date(2024, 3, 14), "monthly") == date(2024, 3, 15)

    def test_start_equal_to_as_of(self):
        assert advance_from_start(date(2024, 1, 15), date(2024, 1, 15), "yearly") == date(2025, 1, 15)

    def test_keeps_month_end_anchor(self):
        assert advance_from_start(date(2000, 1, 31), date(2024, 3, 1), "monthly") == date(2024, 3, 31)

    @pytest.mark.parametrize("start,as_of,cycle", [
        (date(1990, 1, 31), date(2024, 2, 29), "monthly"),
        (date(2001, 8, 30), date(2024, 2, 28), "quarterly"),
        (date(2010, 2, 28), date(2024, 3, 1), "semiannual"),
        (date(2000, 2, 29), date(2024, 2, 28), "yearly"),
        (date(2023, 12, 31), date(2024, 1, 1), "monthly"),
    ])
    def test_matches_step_by_step_walk(self, start, as_of, cycle):
        assert advance_from_start(start, as_of, cycle) == _walk_from_start(start, as_of, cycle)

    def test_very_old_start(self):
        result = advance_from_start(date(1900, 1, 1), date(2024, 6, 15), "monthly")
        assert result == date(2024, 7, 1)


class TestHelpers:
    def test_due_or_overdue(self):
        today = date(2024, 3, 10)
        assert is_due_or_overdue(date(2024, 3, 10), today)
        assert is_due_or_overdue(date(2024, 3, 9), today)
        assert not is_due_or_overdue(date(2024, 3, 11), today)

    def test_due_ignores_time_of_day(self):
        assert is_due_or_overdue(datetime(2024, 3, 10, 23, 59), date(2024, 3, 10))

    def test_month_bounds(self):
        assert month_bounds(2024, 2) == (date(2024, 2, 1), date(2024, 2, 29))
        assert month_bounds(2023, 12) == (date(2023, 12, 1), date(2023, 12, 31))

    def test_add_months_negative(self):
        assert add_months(date(2024, 3, 31), -1) == date(2024, 2, 29)
        assert add_months(date(2024, 1, 15), -13) == date(2022, 12, 15)

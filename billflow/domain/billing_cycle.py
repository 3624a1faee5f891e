"""
Billing cycle date arithmetic.

Uses date only (no timezone). Every cycle is a whole number of months; month
arithmetic clips the day to the last day of the target month (Jan 31 + 1 month
-> Feb 28/29).

Cycles:
- monthly: 1 month
- quarterly: 3 months
- semiannual: 6 months
- yearly: 12 months
"""
import calendar
from datetime import date, datetime


BILLING_CYCLE_MONTHS = {
    "monthly": 1,
    "quarterly": 3,
    "semiannual": 6,
    "yearly": 12,
}


class UnsupportedBillingCycleError(ValueError):
    def __init__(self, cycle):
        super().__init__(f"Unsupported billing cycle: {cycle}")
        self.cycle = cycle


def cycle_months(cycle: str) -> int:
    try:
        return BILLING_CYCLE_MONTHS[cycle]
    except KeyError:
        raise UnsupportedBillingCycleError(cycle) from None


def last_day_of_month(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def add_months(d: date, n: int) -> date:
    month = d.month - 1 + n
    year = d.year + month // 12
    month = month % 12 + 1
    last = last_day_of_month(year, month)
    day = min(d.day, last)
    return date(year, month, day)


def _as_date(value: date | datetime) -> date:
    # datetime is a subclass of date, check it first
    if isinstance(value, datetime):
        return value.date()
    return value


def advance(d: date, cycle: str) -> date:
    """Date one billing cycle after d."""
    return add_months(_as_date(d), cycle_months(cycle))


def cycle_boundary(start_date: date, cycle: str, k: int) -> date:
    """
    k-th cycle boundary counted from start_date (k=0 is start_date itself).

    Always computed from the anchor, so a 31st start date keeps landing on
    month ends instead of drifting to the 28th after February.
    """
    return add_months(_as_date(start_date), k * cycle_months(cycle))


def backdate(next_billing_date: date, start_date: date, cycle: str) -> date:
    """
    Last billing date for a subscription whose next charge is next_billing_date.

    One cycle before next_billing_date, but never earlier than start_date.
    """
    last = add_months(_as_date(next_billing_date), -cycle_months(cycle))
    start = _as_date(start_date)
    if last < start:
        return start
    return last


def advance_from_start(start_date: date, as_of: date, cycle: str) -> date:
    """
    First cycle boundary after start_date that is strictly later than as_of.

    Jumps straight to the right cycle index from the month distance, so the
    cost does not depend on how far back start_date lies.
    """
    start = _as_date(start_date)
    as_of = _as_date(as_of)
    step = cycle_months(cycle)
    if start > as_of:
        return start

    elapsed_months = (as_of.year - start.year) * 12 + (as_of.month - start.month)
    k = max(elapsed_months // step, 0)
    # Day clipping can put the estimate one boundary off in either direction
    while k > 0 and add_months(start, (k - 1) * step) > as_of:
        k -= 1
    candidate = add_months(start, k * step)
    while candidate <= as_of:
        k += 1
        candidate = add_months(start, k * step)
    return candidate


def is_due_or_overdue(value: date | datetime, today: date | None = None) -> bool:
    """True when value (day granularity) is today or earlier."""
    today = _as_date(today or date.today())
    return _as_date(value) <= today


def month_bounds(year: int, month: int) -> tuple[date, date]:
    """First and last day of the given month."""
    return date(year, month, 1), date(year, month, last_day_of_month(year, month))

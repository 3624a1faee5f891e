"""
Payment analytics — read-only views over succeeded payments.

- get_monthly_revenue(): revenue per (month, currency) with payment counts and
  per-month averages, optionally filtered by date range and currency
- get_revenue_trends(): the same figures rolled up per quarter or year
- get_monthly_active_subscriptions(): subscriptions whose paid billing periods
  overlap a calendar month, with breakdowns by category, currency and cycle

Amounts are never summed across currencies. Cross-currency totals are
converted to the base currency first.
"""
from collections import defaultdict
from datetime import date
from decimal import Decimal

from sqlalchemy.orm import Session

from billflow.application.exchange_rates import CurrencyResolver
from billflow.application.monthly_summary import round_money
from billflow.domain.billing_cycle import month_bounds
from billflow.domain.subscription import OTHER_CATEGORY_VALUE, PAYMENT_SUCCEEDED
from billflow.infrastructure.db.models import Category, PaymentRecord, SubscriptionModel


def _succeeded_payments(db: Session, start_date=None, end_date=None, currency=None):
    q = db.query(PaymentRecord).filter(PaymentRecord.status == PAYMENT_SUCCEEDED)
    if start_date:
        q = q.filter(PaymentRecord.payment_date >= start_date)
    if end_date:
        q = q.filter(PaymentRecord.payment_date <= end_date)
    if currency:
        q = q.filter(PaymentRecord.currency == currency)
    return q.all()


def _month_key(d: date) -> str:
    return f"{d.year}-{d.month:02d}"


def _quarter_key(d: date) -> str:
    return f"{d.year}-Q{(d.month - 1) // 3 + 1}"


def _year_key(d: date) -> str:
    return str(d.year)


_PERIOD_KEYS = {"monthly": _month_key, "quarterly": _quarter_key, "yearly": _year_key}


def _group_revenue(payments, period_key) -> list[dict]:
    """Revenue rows per (period, currency): newest period first, currencies alphabetical."""
    totals: dict[tuple[str, str], Decimal] = defaultdict(Decimal)
    counts: dict[tuple[str, str], int] = defaultdict(int)
    for payment in payments:
        key = (period_key(payment.payment_date), payment.currency)
        totals[key] += payment.amount_paid
        counts[key] += 1

    keys = sorted(totals, key=lambda k: k[1])
    keys.sort(key=lambda k: k[0], reverse=True)
    return [
        {
            "period": period,
            "currency": currency,
            "total_revenue": round_money(totals[(period, currency)]),
            "payment_count": counts[(period, currency)],
            "average_payment": round_money(totals[(period, currency)] / counts[(period, currency)]),
        }
        for period, currency in keys
    ]


def _revenue_summary(db: Session, payments, base_currency: str | None) -> dict:
    resolver = CurrencyResolver(db, base_currency)
    by_currency: dict[str, Decimal] = defaultdict(Decimal)
    for payment in payments:
        by_currency[payment.currency] += payment.amount_paid
    return {
        "total_months": len({_month_key(p.payment_date) for p in payments}),
        "total_payments": len(payments),
        "currencies": sorted(by_currency),
        "revenue_by_currency": {cur: round_money(total) for cur, total in sorted(by_currency.items())},
        "base_currency": resolver.base_currency,
        "total_revenue_in_base_currency": round_money(
            sum((resolver.to_base(total, cur) for cur, total in by_currency.items()), Decimal(0))
        ),
    }


def get_monthly_revenue(
    db: Session,
    start_date: date | None = None,
    end_date: date | None = None,
    currency: str | None = None,
    base_currency: str | None = None,
) -> dict:
    if start_date and end_date and start_date > end_date:
        raise ValueError("start_date must be before end_date")
    payments = _succeeded_payments(db, start_date, end_date, currency)
    return {
        "monthly_stats": _group_revenue(payments, _month_key),
        "summary": _revenue_summary(db, payments, base_currency),
        "filters": {"start_date": start_date, "end_date": end_date, "currency": currency},
    }


def get_revenue_trends(
    db: Session,
    period: str = "monthly",
    start_date: date | None = None,
    end_date: date | None = None,
    currency: str | None = None,
    base_currency: str | None = None,
) -> dict:
    if period not in _PERIOD_KEYS:
        raise ValueError(f"Invalid period: {period}")
    if start_date and end_date and start_date > end_date:
        raise ValueError("start_date must be before end_date")
    payments = _succeeded_payments(db, start_date, end_date, currency)
    return {
        "period": period,
        "trends": _group_revenue(payments, _PERIOD_KEYS[period]),
        "summary": _revenue_summary(db, payments, base_currency),
    }


def get_monthly_active_subscriptions(
    db: Session,
    year: int,
    month: int,
    base_currency: str | None = None,
) -> dict:
    """
    Subscriptions with at least one succeeded payment whose billing period
    overlaps the month. A missing or deleted category counts as "other".
    """
    first_day, last_day = month_bounds(year, month)
    rows = (
        db.query(PaymentRecord, SubscriptionModel, Category.value)
        .join(SubscriptionModel, PaymentRecord.subscription_id == SubscriptionModel.id)
        .outerjoin(Category, SubscriptionModel.category_id == Category.id)
        .filter(
            PaymentRecord.status == PAYMENT_SUCCEEDED,
            PaymentRecord.billing_period_start <= last_day,
            PaymentRecord.billing_period_end >= first_day,
        )
        .all()
    )

    resolver = CurrencyResolver(db, base_currency)
    active: dict[int, dict] = {}
    for payment, sub, category_value in rows:
        entry = active.get(sub.id)
        if entry is None:
            entry = active[sub.id] = {
                "id": sub.id,
                "name": sub.name,
                "plan": sub.plan,
                "amount": sub.amount,
                "currency": sub.currency,
                "billing_cycle": sub.billing_cycle,
                "status": sub.status,
                "category": category_value or OTHER_CATEGORY_VALUE,
                "payment_count_in_month": 0,
                "total_paid_in_month": Decimal(0),
                "revenue_in_base_currency": Decimal(0),
                "active_period": {"start": payment.billing_period_start, "end": payment.billing_period_end},
            }
        entry["payment_count_in_month"] += 1
        entry["total_paid_in_month"] += payment.amount_paid
        entry["revenue_in_base_currency"] += resolver.to_base(payment.amount_paid, payment.currency)
        period = entry["active_period"]
        period["start"] = min(period["start"], payment.billing_period_start)
        period["end"] = max(period["end"], payment.billing_period_end)

    summary = {
        "total_active_subscriptions": len(active),
        "total_payments": 0,
        "base_currency": resolver.base_currency,
        "total_revenue_in_base_currency": Decimal(0),
        "by_category": {},
        "by_currency": {},
        "by_billing_cycle": {},
    }
    subscriptions = sorted(active.values(), key=lambda e: (e["name"], e["id"]))
    for entry in subscriptions:
        revenue = entry["revenue_in_base_currency"]
        summary["total_payments"] += entry["payment_count_in_month"]
        summary["total_revenue_in_base_currency"] += revenue
        for bucket, key in (
            ("by_category", entry["category"]),
            ("by_currency", entry["currency"]),
            ("by_billing_cycle", entry["billing_cycle"]),
        ):
            slot = summary[bucket].setdefault(key, {"count": 0, "revenue_in_base_currency": Decimal(0)})
            slot["count"] += 1
            slot["revenue_in_base_currency"] += revenue

    # Round once, after summing
    for entry in subscriptions:
        entry["revenue_in_base_currency"] = round_money(entry["revenue_in_base_currency"])
    summary["total_revenue_in_base_currency"] = round_money(summary["total_revenue_in_base_currency"])
    for bucket in ("by_category", "by_currency", "by_billing_cycle"):
        for slot in summary[bucket].values():
            slot["revenue_in_base_currency"] = round_money(slot["revenue_in_base_currency"])

    return {
        "target_month": f"{year}-{month:02d}",
        "period": {"start": first_day, "end": last_day},
        "active_subscriptions": subscriptions,
        "summary": summary,
    }

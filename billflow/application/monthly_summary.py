"""
Monthly category summary — derived spend per (year, month, category) in the base currency.

The summary table is a cache over payment_history. A month is always rebuilt
as a whole: existing rows for the month are deleted and fresh rows inserted,
so a category that no longer has payments in that month disappears.
Conversion happens per payment; rounding to 2 places happens once per
category total.

Methods flush but do not commit; the calling use case owns the transaction.
recompute_all() is the exception: it is a standalone repair job and commits.
"""
import logging
from collections import defaultdict
from datetime import date
from decimal import Decimal, ROUND_HALF_UP

from sqlalchemy import func
from sqlalchemy.orm import Session

from billflow.application.exchange_rates import CurrencyResolver
from billflow.domain.billing_cycle import month_bounds
from billflow.domain.subscription import OTHER_CATEGORY_VALUE, PAYMENT_SUCCEEDED
from billflow.infrastructure.db.models import (
    Category,
    MonthlyCategorySummary,
    PaymentRecord,
    SubscriptionModel,
)

logger = logging.getLogger(__name__)

_CENT = Decimal("0.01")


def round_money(value: Decimal) -> Decimal:
    return value.quantize(_CENT, rounding=ROUND_HALF_UP)


def months_touched(*dates: date | None) -> list[tuple[int, int]]:
    """Distinct (year, month) pairs of the given dates, in calendar order."""
    return sorted({(d.year, d.month) for d in dates if d is not None})


class MonthlyCategorySummaryService:
    def __init__(self, db: Session, base_currency: str | None = None):
        self.db = db
        self.resolver = CurrencyResolver(db, base_currency)
        self.base_currency = self.resolver.base_currency

    # ------------------------------------------------------------------
    # Recalculation
    # ------------------------------------------------------------------

    def recompute_month(self, year: int, month: int) -> int:
        """
        Rebuild summary rows for one month from succeeded payments.

        Returns the number of category rows written.
        """
        start, end = month_bounds(year, month)
        other_id = self._other_category_id()

        rows = (
            self.db.query(PaymentRecord.amount_paid, PaymentRecord.currency, Category.id)
            .join(SubscriptionModel, PaymentRecord.subscription_id == SubscriptionModel.id)
            .outerjoin(Category, SubscriptionModel.category_id == Category.id)
            .filter(
                PaymentRecord.payment_date >= start,
                PaymentRecord.payment_date <= end,
                PaymentRecord.status == PAYMENT_SUCCEEDED,
            )
            .all()
        )

        totals: dict[int, Decimal] = defaultdict(Decimal)
        counts: dict[int, int] = defaultdict(int)
        for amount_paid, currency, category_id in rows:
            key = category_id if category_id is not None else other_id
            totals[key] += self.resolver.to_base(amount_paid, currency)
            counts[key] += 1

        self.db.query(MonthlyCategorySummary).filter(
            MonthlyCategorySummary.year == year,
            MonthlyCategorySummary.month == month,
        ).delete()

        for category_id, total in totals.items():
            self.db.add(MonthlyCategorySummary(
                year=year,
                month=month,
                category_id=category_id,
                total_amount_in_base_currency=round_money(total),
                base_currency=self.base_currency,
                transactions_count=counts[category_id],
            ))
        self.db.flush()
        return len(totals)

    def recompute_months(self, months) -> None:
        for year, month in months:
            self.recompute_month(year, month)

    def recompute_all(self) -> int:
        """
        Full rebuild of the summary table (drift repair).

        Safe to re-run at any time. Returns the number of months rebuilt.
        """
        dates = (
            self.db.query(PaymentRecord.payment_date)
            .filter(PaymentRecord.status == PAYMENT_SUCCEEDED)
            .distinct()
            .all()
        )
        months = months_touched(*(d for (d,) in dates))
        try:
            self.db.query(MonthlyCategorySummary).delete()
            self.recompute_months(months)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        logger.info("Monthly category summary rebuilt for %d months", len(months))
        return len(months)

    # ------------------------------------------------------------------
    # Payment change hooks
    # ------------------------------------------------------------------

    def on_payment_created(self, payment_id: int) -> None:
        payment = self.db.get(PaymentRecord, payment_id)
        if payment is None or payment.status != PAYMENT_SUCCEEDED:
            return
        self.recompute_month(payment.payment_date.year, payment.payment_date.month)

    def on_payment_updated(self, old_payment_date: date, new_payment_date: date | None = None) -> None:
        """Recompute the old month, and the new one separately when the date moved."""
        self.recompute_months(months_touched(old_payment_date, new_payment_date))

    def on_payment_deleted(self, year: int, month: int) -> None:
        self.recompute_month(year, month)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_range_summary(
        self, start_year: int, start_month: int, end_year: int, end_month: int,
    ) -> list[dict]:
        period = MonthlyCategorySummary.year * 100 + MonthlyCategorySummary.month
        rows = (
            self.db.query(MonthlyCategorySummary, Category)
            .join(Category, MonthlyCategorySummary.category_id == Category.id)
            .filter(period.between(start_year * 100 + start_month, end_year * 100 + end_month))
            .order_by(MonthlyCategorySummary.year, MonthlyCategorySummary.month, Category.label)
            .all()
        )
        return [_summary_dict(summary, category) for summary, category in rows]

    def get_month_summary(self, year: int, month: int) -> list[dict]:
        rows = (
            self.db.query(MonthlyCategorySummary, Category)
            .join(Category, MonthlyCategorySummary.category_id == Category.id)
            .filter(
                MonthlyCategorySummary.year == year,
                MonthlyCategorySummary.month == month,
            )
            .order_by(MonthlyCategorySummary.total_amount_in_base_currency.desc())
            .all()
        )
        return [_summary_dict(summary, category) for summary, category in rows]

    def get_total_summary(
        self, start_year: int, start_month: int, end_year: int, end_month: int,
    ) -> list[dict]:
        period = MonthlyCategorySummary.year * 100 + MonthlyCategorySummary.month
        rows = (
            self.db.query(
                func.sum(MonthlyCategorySummary.total_amount_in_base_currency),
                func.sum(MonthlyCategorySummary.transactions_count),
                MonthlyCategorySummary.base_currency,
            )
            .filter(period.between(start_year * 100 + start_month, end_year * 100 + end_month))
            .group_by(MonthlyCategorySummary.base_currency)
            .all()
        )
        return [
            {
                "total_amount": round_money(Decimal(str(total or 0))),
                "total_transactions": int(count or 0),
                "base_currency": base_currency,
            }
            for total, count, base_currency in rows
        ]

    # ------------------------------------------------------------------

    def _other_category_id(self) -> int:
        other = self.db.query(Category).filter(Category.value == OTHER_CATEGORY_VALUE).first()
        if other is None:
            other = Category(value=OTHER_CATEGORY_VALUE, label="Other")
            self.db.add(other)
            self.db.flush()
        return other.id


def _summary_dict(summary: MonthlyCategorySummary, category: Category) -> dict:
    return {
        "year": summary.year,
        "month": summary.month,
        "category_id": summary.category_id,
        "category_value": category.value,
        "category_label": category.label,
        "total_amount_in_base_currency": summary.total_amount_in_base_currency,
        "base_currency": summary.base_currency,
        "transactions_count": summary.transactions_count,
    }

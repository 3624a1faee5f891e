"""
Ledger generator — synthesizes a subscription's payment history from its terms.

generate(): one succeeded payment per cycle from start_date up to and
including last_billing_date (today when unset). Boundaries are computed from
start_date, so billing_period_end of record k equals billing_period_start of
record k+1.

regenerate(): wipes the subscription's payments and generates them again.
The delete and the re-generation are separate steps: if the subscription
vanishes in between, NotFoundError is raised and whatever was written stays.
"""
import logging
from dataclasses import dataclass
from datetime import date

from sqlalchemy.orm import Session

from billflow.application.errors import NotFoundError
from billflow.application.monthly_summary import MonthlyCategorySummaryService, months_touched
from billflow.domain.billing_cycle import cycle_boundary
from billflow.domain.subscription import NOTE_GENERATED, PAYMENT_SUCCEEDED
from billflow.infrastructure.db.models import PaymentRecord, SubscriptionModel

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BillingPeriod:
    payment_date: date
    billing_period_start: date
    billing_period_end: date


def historical_periods(
    start_date: date,
    billing_cycle: str,
    last_billing_date: date | None,
    today: date | None = None,
) -> list[BillingPeriod]:
    """Billing periods whose start falls on or before last_billing_date (or today)."""
    end_date = last_billing_date or today or date.today()
    periods: list[BillingPeriod] = []
    k = 0
    current = cycle_boundary(start_date, billing_cycle, 0)
    while current <= end_date:
        k += 1
        period_end = cycle_boundary(start_date, billing_cycle, k)
        periods.append(BillingPeriod(
            payment_date=current,
            billing_period_start=current,
            billing_period_end=period_end,
        ))
        current = period_end
    return periods


class LedgerGenerator:
    """Builds payment_history rows for a subscription. Flushes, never commits."""

    def __init__(self, db: Session, summary: MonthlyCategorySummaryService | None = None):
        self.db = db
        self.summary = summary or MonthlyCategorySummaryService(db)

    def generate(self, subscription_id: int, today: date | None = None) -> list[PaymentRecord]:
        sub = self.db.get(SubscriptionModel, subscription_id)
        if sub is None:
            raise NotFoundError("Subscription", subscription_id)

        periods = historical_periods(sub.start_date, sub.billing_cycle, sub.last_billing_date, today)
        records = []
        for period in periods:
            record = PaymentRecord(
                subscription_id=sub.id,
                payment_date=period.payment_date,
                amount_paid=sub.amount,
                currency=sub.currency,
                billing_period_start=period.billing_period_start,
                billing_period_end=period.billing_period_end,
                status=PAYMENT_SUCCEEDED,
                notes=NOTE_GENERATED,
            )
            self.db.add(record)
            self.db.flush()
            self.summary.on_payment_created(record.id)
            records.append(record)

        logger.info("Generated %d payments for subscription_id=%d", len(records), sub.id)
        return records

    def regenerate(self, subscription_id: int, today: date | None = None) -> list[PaymentRecord]:
        if self.db.get(SubscriptionModel, subscription_id) is None:
            raise NotFoundError("Subscription", subscription_id)

        old_dates = [
            d for (d,) in self.db.query(PaymentRecord.payment_date).filter(
                PaymentRecord.subscription_id == subscription_id,
                PaymentRecord.status == PAYMENT_SUCCEEDED,
            ).all()
        ]
        self.db.query(PaymentRecord).filter(
            PaymentRecord.subscription_id == subscription_id,
        ).delete()
        self.db.flush()

        records = self.generate(subscription_id, today)

        # Months only the old ledger touched still carry the old amounts
        new_months = set(months_touched(*(r.payment_date for r in records)))
        stale_months = [m for m in months_touched(*old_dates) if m not in new_months]
        self.summary.recompute_months(stale_months)
        return records

"""
Payment record use cases.

Every write keeps monthly_category_summary in step with payment_history:
the month of a created succeeded payment is recomputed; an update recomputes
the old and the new month (separately) only when a summary-relevant field
changed; a delete recomputes the month when the removed record was succeeded.
"""
import logging
from dataclasses import dataclass, fields
from datetime import date
from decimal import Decimal

from sqlalchemy import func
from sqlalchemy.orm import Session

from billflow.application.errors import NotFoundError
from billflow.application.monthly_summary import MonthlyCategorySummaryService
from billflow.application.subscriptions import UNSET, Unset
from billflow.domain.billing_cycle import month_bounds
from billflow.domain.subscription import PAYMENT_STATUSES, PAYMENT_SUCCEEDED, SUMMARY_FIELDS
from billflow.infrastructure.db.models import PaymentRecord, SubscriptionModel

logger = logging.getLogger(__name__)


class PaymentValidationError(ValueError):
    pass


@dataclass
class PaymentChanges:
    """Fields to change on a payment record; anything left UNSET is untouched."""
    subscription_id: int | Unset = UNSET
    payment_date: date | Unset = UNSET
    amount_paid: Decimal | Unset = UNSET
    currency: str | Unset = UNSET
    billing_period_start: date | Unset = UNSET
    billing_period_end: date | Unset = UNSET
    status: str | Unset = UNSET
    notes: str | None | Unset = UNSET

    def provided(self) -> dict:
        return {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if getattr(self, f.name) is not UNSET
        }


def _check_status(status: str) -> None:
    if status not in PAYMENT_STATUSES:
        raise PaymentValidationError(f"Invalid payment status: {status}")


def _get_or_404(db: Session, payment_id: int) -> PaymentRecord:
    payment = db.get(PaymentRecord, payment_id)
    if payment is None:
        raise NotFoundError("Payment record", payment_id)
    return payment


# ============================================================================
# Payment records CRUD
# ============================================================================


class CreatePaymentUseCase:
    def __init__(self, db: Session):
        self.db = db

    def execute(
        self,
        subscription_id: int,
        payment_date: date,
        amount_paid: Decimal,
        currency: str,
        billing_period_start: date,
        billing_period_end: date,
        status: str = PAYMENT_SUCCEEDED,
        notes: str | None = None,
        commit: bool = True,
    ) -> int:
        _check_status(status)
        if self.db.get(SubscriptionModel, subscription_id) is None:
            raise NotFoundError("Subscription", subscription_id)

        payment = PaymentRecord(
            subscription_id=subscription_id,
            payment_date=payment_date,
            amount_paid=Decimal(str(amount_paid)),
            currency=currency,
            billing_period_start=billing_period_start,
            billing_period_end=billing_period_end,
            status=status,
            notes=notes,
        )
        try:
            self.db.add(payment)
            self.db.flush()
            MonthlyCategorySummaryService(self.db).on_payment_created(payment.id)
            if commit:
                self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        return payment.id


class UpdatePaymentUseCase:
    def __init__(self, db: Session):
        self.db = db

    def execute(self, payment_id: int, changes: PaymentChanges) -> PaymentRecord:
        payment = _get_or_404(self.db, payment_id)
        values = changes.provided()
        if "status" in values:
            _check_status(values["status"])
        if "amount_paid" in values:
            values["amount_paid"] = Decimal(str(values["amount_paid"]))
        if "subscription_id" in values and self.db.get(SubscriptionModel, values["subscription_id"]) is None:
            raise NotFoundError("Subscription", values["subscription_id"])

        old_date = payment.payment_date
        summary_changed = any(
            field in values and values[field] != getattr(payment, field)
            for field in (*SUMMARY_FIELDS, "subscription_id")
        )
        try:
            for field, value in values.items():
                setattr(payment, field, value)
            self.db.flush()
            if summary_changed:
                new_date = payment.payment_date if payment.payment_date != old_date else None
                MonthlyCategorySummaryService(self.db).on_payment_updated(old_date, new_date)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        return payment


class DeletePaymentUseCase:
    def __init__(self, db: Session):
        self.db = db

    def execute(self, payment_id: int) -> None:
        payment = _get_or_404(self.db, payment_id)
        was_succeeded = payment.status == PAYMENT_SUCCEEDED
        payment_date = payment.payment_date
        try:
            self.db.delete(payment)
            self.db.flush()
            if was_succeeded:
                MonthlyCategorySummaryService(self.db).on_payment_deleted(
                    payment_date.year, payment_date.month
                )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise


class BulkCreatePaymentsUseCase:
    def __init__(self, db: Session):
        self.db = db

    def execute(self, items: list[dict]) -> list[int]:
        """All-or-nothing: a failing item rolls back the whole batch."""
        create = CreatePaymentUseCase(self.db)
        try:
            ids = [create.execute(**item, commit=False) for item in items]
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        logger.info("Bulk-created %d payment records", len(ids))
        return ids


# ============================================================================
# Queries
# ============================================================================


def get_payment(db: Session, payment_id: int) -> PaymentRecord:
    return _get_or_404(db, payment_id)


def list_payments(
    db: Session,
    subscription_id: int | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
    status: str | None = None,
    currency: str | None = None,
    limit: int | None = None,
    offset: int = 0,
) -> list[PaymentRecord]:
    q = db.query(PaymentRecord)
    if subscription_id is not None:
        q = q.filter(PaymentRecord.subscription_id == subscription_id)
    if start_date:
        q = q.filter(PaymentRecord.payment_date >= start_date)
    if end_date:
        q = q.filter(PaymentRecord.payment_date <= end_date)
    if status:
        q = q.filter(PaymentRecord.status == status)
    if currency:
        q = q.filter(PaymentRecord.currency == currency)
    q = q.order_by(PaymentRecord.payment_date.desc(), PaymentRecord.id.desc())
    if offset:
        q = q.offset(offset)
    if limit is not None:
        q = q.limit(limit)
    return q.all()


def _stats_by_currency(db: Session, start: date, end: date) -> list[dict]:
    rows = (
        db.query(
            PaymentRecord.currency,
            func.sum(PaymentRecord.amount_paid),
            func.count(PaymentRecord.id),
        )
        .filter(
            PaymentRecord.payment_date >= start,
            PaymentRecord.payment_date <= end,
            PaymentRecord.status == PAYMENT_SUCCEEDED,
        )
        .group_by(PaymentRecord.currency)
        .order_by(PaymentRecord.currency)
        .all()
    )
    return [
        {
            "currency": currency,
            "total_amount": Decimal(str(total or 0)).quantize(Decimal("0.01")),
            "payment_count": count,
        }
        for currency, total, count in rows
    ]


def get_monthly_stats(db: Session, year: int, month: int) -> dict:
    start, end = month_bounds(year, month)
    return {"year": year, "month": month, "by_currency": _stats_by_currency(db, start, end)}


def get_yearly_stats(db: Session, year: int) -> dict:
    return {
        "year": year,
        "by_currency": _stats_by_currency(db, date(year, 1, 1), date(year, 12, 31)),
    }


def get_quarterly_stats(db: Session, year: int, quarter: int) -> dict:
    if quarter not in (1, 2, 3, 4):
        raise PaymentValidationError("Quarter must be between 1 and 4")
    start, _ = month_bounds(year, (quarter - 1) * 3 + 1)
    _, end = month_bounds(year, quarter * 3)
    return {"year": year, "quarter": quarter, "by_currency": _stats_by_currency(db, start, end)}

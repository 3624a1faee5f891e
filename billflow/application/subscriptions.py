"""
Subscription use cases — CRUD over subscriptions with ledger upkeep.

Create generates the full payment history; update regenerates it when a field
that the history depends on changed; delete repairs the monthly summary for
every month the subscription had succeeded payments in.
"""
import logging
from dataclasses import dataclass, fields
from datetime import date, timedelta
from decimal import Decimal

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from billflow.application.errors import NotFoundError
from billflow.application.exchange_rates import CurrencyResolver
from billflow.application.ledger import LedgerGenerator
from billflow.application.monthly_summary import MonthlyCategorySummaryService, months_touched
from billflow.application.notifications import notify_quietly
from billflow.domain.billing_cycle import (
    advance_from_start,
    backdate,
    cycle_months,
)
from billflow.domain.subscription import (
    LEDGER_KEY_FIELDS,
    PAYMENT_SUCCEEDED,
    RENEWAL_MANUAL,
    RENEWAL_TYPES,
    SUBSCRIPTION_STATUS_ACTIVE,
    SUBSCRIPTION_STATUS_CANCELLED,
    SUBSCRIPTION_STATUS_TRIAL,
    SUBSCRIPTION_STATUSES,
)
from billflow.infrastructure.db.models import (
    MonthlyCategorySummary,
    PaymentRecord,
    SubscriptionModel,
)

logger = logging.getLogger(__name__)


class SubscriptionValidationError(ValueError):
    pass


class Unset:
    def __repr__(self):
        return "UNSET"


UNSET = Unset()


@dataclass
class SubscriptionChanges:
    """Fields to change on a subscription; anything left UNSET is untouched."""
    name: str | Unset = UNSET
    plan: str | None | Unset = UNSET
    billing_cycle: str | Unset = UNSET
    next_billing_date: date | None | Unset = UNSET
    amount: Decimal | Unset = UNSET
    currency: str | Unset = UNSET
    payment_method_id: int | None | Unset = UNSET
    start_date: date | Unset = UNSET
    status: str | Unset = UNSET
    category_id: int | None | Unset = UNSET
    renewal_type: str | Unset = UNSET
    notes: str | None | Unset = UNSET
    website: str | None | Unset = UNSET

    def provided(self) -> dict:
        return {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if getattr(self, f.name) is not UNSET
        }


def _validate(name=UNSET, billing_cycle=UNSET, amount=UNSET, status=UNSET, renewal_type=UNSET):
    if name is not UNSET and not (name or "").strip():
        raise SubscriptionValidationError("Name must not be empty")
    if billing_cycle is not UNSET:
        cycle_months(billing_cycle)
    if amount is not UNSET:
        if amount is None:
            raise SubscriptionValidationError("Amount is required")
        if Decimal(str(amount)) <= 0:
            raise SubscriptionValidationError("Amount must be positive")
    if status is not UNSET and status not in SUBSCRIPTION_STATUSES:
        raise SubscriptionValidationError(f"Invalid status: {status}")
    if renewal_type is not UNSET and renewal_type not in RENEWAL_TYPES:
        raise SubscriptionValidationError(f"Invalid renewal type: {renewal_type}")


def _get_or_404(db: Session, sub_id: int) -> SubscriptionModel:
    sub = db.get(SubscriptionModel, sub_id)
    if sub is None:
        raise NotFoundError("Subscription", sub_id)
    return sub


def _succeeded_payment_months(db: Session, sub_id: int) -> list[tuple[int, int]]:
    dates = db.query(PaymentRecord.payment_date).filter(
        PaymentRecord.subscription_id == sub_id,
        PaymentRecord.status == PAYMENT_SUCCEEDED,
    ).all()
    return months_touched(*(d for (d,) in dates))


# ============================================================================
# Subscriptions CRUD
# ============================================================================


class CreateSubscriptionUseCase:
    def __init__(self, db: Session):
        self.db = db

    def execute(
        self,
        name: str,
        billing_cycle: str,
        amount: Decimal,
        start_date: date,
        next_billing_date: date | None = None,
        plan: str | None = None,
        currency: str = "CNY",
        payment_method_id: int | None = None,
        category_id: int | None = None,
        status: str = SUBSCRIPTION_STATUS_ACTIVE,
        renewal_type: str = RENEWAL_MANUAL,
        notes: str | None = None,
        website: str | None = None,
        today: date | None = None,
    ) -> int:
        _validate(name=name, billing_cycle=billing_cycle, amount=amount,
                  status=status, renewal_type=renewal_type)
        today = today or date.today()
        if next_billing_date is None:
            next_billing_date = advance_from_start(start_date, today, billing_cycle)

        sub = SubscriptionModel(
            name=name.strip(),
            plan=plan,
            billing_cycle=billing_cycle,
            next_billing_date=next_billing_date,
            last_billing_date=backdate(next_billing_date, start_date, billing_cycle),
            amount=Decimal(str(amount)),
            currency=currency,
            payment_method_id=payment_method_id,
            start_date=start_date,
            status=status,
            category_id=category_id,
            renewal_type=renewal_type,
            notes=notes,
            website=website,
        )
        try:
            self.db.add(sub)
            self.db.flush()
            LedgerGenerator(self.db).generate(sub.id, today)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info("Created subscription_id=%d (%s)", sub.id, sub.name)
        return sub.id


class UpdateSubscriptionUseCase:
    def __init__(self, db: Session, notifier=None):
        self.db = db
        self.notifier = notifier

    def execute(
        self,
        sub_id: int,
        changes: SubscriptionChanges,
        today: date | None = None,
    ) -> SubscriptionModel:
        sub = _get_or_404(self.db, sub_id)
        values = changes.provided()
        _validate(**{k: v for k, v in values.items()
                     if k in ("name", "billing_cycle", "amount", "status", "renewal_type")})
        today = today or date.today()

        if "amount" in values:
            values["amount"] = Decimal(str(values["amount"]))
        if "name" in values:
            values["name"] = values["name"].strip()

        ledger_changed = any(
            field in values and values[field] != getattr(sub, field)
            for field in LEDGER_KEY_FIELDS
        )
        category_changed = "category_id" in values and values["category_id"] != sub.category_id
        dates_changed = any(
            field in values for field in ("billing_cycle", "next_billing_date", "start_date")
        )

        try:
            for field, value in values.items():
                if field != "next_billing_date":
                    setattr(sub, field, value)

            if dates_changed:
                next_billing = values.get("next_billing_date") or advance_from_start(
                    sub.start_date, today, sub.billing_cycle
                )
                sub.next_billing_date = next_billing
                sub.last_billing_date = backdate(next_billing, sub.start_date, sub.billing_cycle)
            self.db.flush()

            if ledger_changed:
                LedgerGenerator(self.db).regenerate(sub.id, today)
            elif category_changed:
                MonthlyCategorySummaryService(self.db).recompute_months(
                    _succeeded_payment_months(self.db, sub.id)
                )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(
            "Updated subscription_id=%d fields=%s ledger_regenerated=%s",
            sub.id, sorted(values), ledger_changed,
        )
        notify_quietly(self.notifier, sub.id, "subscription_change")
        return sub


class DeleteSubscriptionUseCase:
    def __init__(self, db: Session):
        self.db = db

    def execute(self, sub_id: int) -> None:
        sub = _get_or_404(self.db, sub_id)
        months = _succeeded_payment_months(self.db, sub.id)
        try:
            self.db.query(PaymentRecord).filter(PaymentRecord.subscription_id == sub.id).delete()
            self.db.delete(sub)
            self.db.flush()
            MonthlyCategorySummaryService(self.db).recompute_months(months)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        logger.info("Deleted subscription_id=%d, recomputed %d months", sub_id, len(months))


class BulkCreateSubscriptionsUseCase:
    def __init__(self, db: Session):
        self.db = db

    def execute(self, items: list[dict], today: date | None = None) -> list[int]:
        create = CreateSubscriptionUseCase(self.db)
        return [create.execute(**item, today=today) for item in items]


class ResetAllSubscriptionsUseCase:
    def __init__(self, db: Session):
        self.db = db

    def execute(self) -> dict:
        try:
            payments = self.db.query(PaymentRecord).delete()
            summaries = self.db.query(MonthlyCategorySummary).delete()
            subscriptions = self.db.query(SubscriptionModel).delete()
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        logger.info(
            "Reset: %d subscriptions, %d payments, %d summary rows deleted",
            subscriptions, payments, summaries,
        )
        return {
            "deleted_subscriptions": subscriptions,
            "deleted_payments": payments,
            "deleted_summaries": summaries,
        }


# ============================================================================
# Queries
# ============================================================================


def get_subscription(db: Session, sub_id: int) -> SubscriptionModel:
    return _get_or_404(db, sub_id)


def list_subscriptions(
    db: Session,
    status: str | None = None,
    category_id: int | None = None,
    renewal_type: str | None = None,
    search: str | None = None,
) -> list[SubscriptionModel]:
    q = db.query(SubscriptionModel)
    if status:
        q = q.filter(SubscriptionModel.status == status)
    if category_id is not None:
        q = q.filter(SubscriptionModel.category_id == category_id)
    if renewal_type:
        q = q.filter(SubscriptionModel.renewal_type == renewal_type)
    if search:
        pattern = f"%{search.strip()}%"
        q = q.filter(or_(
            SubscriptionModel.name.ilike(pattern),
            SubscriptionModel.plan.ilike(pattern),
            SubscriptionModel.notes.ilike(pattern),
        ))
    return q.order_by(SubscriptionModel.next_billing_date, SubscriptionModel.id).all()


def get_upcoming_renewals(db: Session, days: int = 7, today: date | None = None) -> list[SubscriptionModel]:
    today = today or date.today()
    return db.query(SubscriptionModel).filter(
        SubscriptionModel.status == SUBSCRIPTION_STATUS_ACTIVE,
        SubscriptionModel.next_billing_date >= today,
        SubscriptionModel.next_billing_date <= today + timedelta(days=days),
    ).order_by(SubscriptionModel.next_billing_date).all()


def get_expired_subscriptions(db: Session, today: date | None = None) -> list[SubscriptionModel]:
    """Active subscriptions whose next billing date has passed."""
    today = today or date.today()
    return db.query(SubscriptionModel).filter(
        SubscriptionModel.status == SUBSCRIPTION_STATUS_ACTIVE,
        SubscriptionModel.next_billing_date < today,
    ).order_by(SubscriptionModel.next_billing_date).all()


def get_subscription_stats(db: Session, base_currency: str | None = None) -> dict:
    counts = dict(
        db.query(SubscriptionModel.status, func.count(SubscriptionModel.id))
        .group_by(SubscriptionModel.status).all()
    )

    # Monthly-equivalent cost of active subscriptions in the base currency
    resolver = CurrencyResolver(db, base_currency)
    monthly_cost = Decimal("0")
    active = db.query(SubscriptionModel).filter(
        SubscriptionModel.status == SUBSCRIPTION_STATUS_ACTIVE,
    ).all()
    for sub in active:
        monthly_cost += resolver.to_base(sub.amount, sub.currency) / cycle_months(sub.billing_cycle)
    monthly_cost = monthly_cost.quantize(Decimal("0.01"))

    return {
        "total": sum(counts.values()),
        "active": counts.get(SUBSCRIPTION_STATUS_ACTIVE, 0),
        "trial": counts.get(SUBSCRIPTION_STATUS_TRIAL, 0),
        "cancelled": counts.get(SUBSCRIPTION_STATUS_CANCELLED, 0),
        "monthly_cost": monthly_cost,
        "yearly_cost": monthly_cost * 12,
        "base_currency": resolver.base_currency,
    }

"""Tests for payment record use cases and their summary upkeep."""
import pytest
from datetime import date
from decimal import Decimal
from unittest.mock import patch

from billflow.application.errors import NotFoundError
from billflow.application.monthly_summary import MonthlyCategorySummaryService
from billflow.application.payments import (
    BulkCreatePaymentsUseCase,
    CreatePaymentUseCase,
    DeletePaymentUseCase,
    PaymentChanges,
    PaymentValidationError,
    UpdatePaymentUseCase,
    get_monthly_stats,
    get_payment,
    get_quarterly_stats,
    get_yearly_stats,
    list_payments,
)
from billflow.infrastructure.db.models import MonthlyCategorySummary, PaymentRecord


@pytest.fixture
def sub(add_subscription, category):
    return add_subscription(category_id=category.id)


def _create(db, sub, payment_date=date(2024, 5, 10), **overrides):
    values = dict(
        subscription_id=sub.id,
        payment_date=payment_date,
        amount_paid=Decimal("10.00"),
        currency="CNY",
        billing_period_start=payment_date,
        billing_period_end=date(payment_date.year, payment_date.month, 28),
    )
    values.update(overrides)
    return CreatePaymentUseCase(db).execute(**values)


def _month_total(db, year, month):
    rows = db.query(MonthlyCategorySummary).filter(
        MonthlyCategorySummary.year == year,
        MonthlyCategorySummary.month == month,
    ).all()
    return sum((r.total_amount_in_base_currency for r in rows), Decimal("0"))


class TestCreatePayment:
    def test_succeeded_payment_updates_summary(self, db_session, sub):
        _create(db_session, sub)
        assert _month_total(db_session, 2024, 5) == Decimal("10.00")

    def test_pending_payment_leaves_summary(self, db_session, sub):
        _create(db_session, sub, status="pending")
        assert _month_total(db_session, 2024, 5) == Decimal("0")

    def test_unknown_subscription(self, db_session):
        with pytest.raises(NotFoundError, match="Subscription 77"):
            CreatePaymentUseCase(db_session).execute(
                subscription_id=77,
                payment_date=date(2024, 5, 1),
                amount_paid=Decimal("1"),
                currency="CNY",
                billing_period_start=date(2024, 5, 1),
                billing_period_end=date(2024, 6, 1),
            )

    def test_invalid_status(self, db_session, sub):
        with pytest.raises(PaymentValidationError, match="paid"):
            _create(db_session, sub, status="paid")

    def test_bulk_is_all_or_nothing(self, db_session, sub):
        items = [
            dict(subscription_id=sub.id, payment_date=date(2024, 5, 1), amount_paid="1", currency="CNY",
                 billing_period_start=date(2024, 5, 1), billing_period_end=date(2024, 6, 1)),
            dict(subscription_id=999, payment_date=date(2024, 5, 2), amount_paid="1", currency="CNY",
                 billing_period_start=date(2024, 5, 2), billing_period_end=date(2024, 6, 2)),
        ]
        with pytest.raises(NotFoundError):
            BulkCreatePaymentsUseCase(db_session).execute(items)
        assert db_session.query(PaymentRecord).count() == 0

    def test_bulk_create(self, db_session, sub):
        ids = BulkCreatePaymentsUseCase(db_session).execute([
            dict(subscription_id=sub.id, payment_date=date(2024, 5, d), amount_paid="2.50", currency="CNY",
                 billing_period_start=date(2024, 5, d), billing_period_end=date(2024, 6, d))
            for d in (1, 2)
        ])
        assert len(ids) == 2
        assert _month_total(db_session, 2024, 5) == Decimal("5.00")


class TestUpdatePayment:
    def test_date_move_recomputes_old_and_new_month(self, db_session, sub):
        payment_id = _create(db_session, sub)

        UpdatePaymentUseCase(db_session).execute(payment_id, PaymentChanges(payment_date=date(2024, 7, 1)))

        assert _month_total(db_session, 2024, 5) == Decimal("0")
        assert _month_total(db_session, 2024, 7) == Decimal("10.00")

    def test_amount_change(self, db_session, sub):
        payment_id = _create(db_session, sub)

        UpdatePaymentUseCase(db_session).execute(payment_id, PaymentChanges(amount_paid=Decimal("12.5")))

        assert _month_total(db_session, 2024, 5) == Decimal("12.50")

    def test_refund_drops_from_summary(self, db_session, sub):
        payment_id = _create(db_session, sub)

        UpdatePaymentUseCase(db_session).execute(payment_id, PaymentChanges(status="refunded"))

        assert _month_total(db_session, 2024, 5) == Decimal("0")

    def test_notes_only_skips_recompute(self, db_session, sub):
        payment_id = _create(db_session, sub)

        with patch.object(MonthlyCategorySummaryService, "on_payment_updated") as hook:
            payment = UpdatePaymentUseCase(db_session).execute(payment_id, PaymentChanges(notes="receipt #12"))

        hook.assert_not_called()
        assert payment.notes == "receipt #12"

    def test_unchanged_value_skips_recompute(self, db_session, sub):
        payment_id = _create(db_session, sub)

        with patch.object(MonthlyCategorySummaryService, "on_payment_updated") as hook:
            UpdatePaymentUseCase(db_session).execute(payment_id, PaymentChanges(currency="CNY"))

        hook.assert_not_called()

    def test_unknown_payment(self, db_session):
        with pytest.raises(NotFoundError, match="Payment record"):
            UpdatePaymentUseCase(db_session).execute(5, PaymentChanges(notes="x"))


class TestDeletePayment:
    def test_delete_succeeded_recomputes_month(self, db_session, sub):
        keep = _create(db_session, sub, payment_date=date(2024, 5, 1))
        drop = _create(db_session, sub, payment_date=date(2024, 5, 2))

        DeletePaymentUseCase(db_session).execute(drop)

        assert _month_total(db_session, 2024, 5) == Decimal("10.00")
        assert get_payment(db_session, keep).id == keep

    def test_delete_failed_payment_skips_recompute(self, db_session, sub):
        payment_id = _create(db_session, sub, status="failed")

        with patch.object(MonthlyCategorySummaryService, "on_payment_deleted") as hook:
            DeletePaymentUseCase(db_session).execute(payment_id)

        hook.assert_not_called()
        assert db_session.get(PaymentRecord, payment_id) is None

    def test_delete_unknown(self, db_session):
        with pytest.raises(NotFoundError):
            DeletePaymentUseCase(db_session).execute(123)


class TestQueries:
    @pytest.fixture
    def history(self, db_session, sub):
        _create(db_session, sub, payment_date=date(2024, 1, 5), amount_paid=Decimal("10.00"))
        _create(db_session, sub, payment_date=date(2024, 2, 5), amount_paid=Decimal("11.00"), currency="USD")
        _create(db_session, sub, payment_date=date(2024, 4, 5), amount_paid=Decimal("12.00"))
        _create(db_session, sub, payment_date=date(2024, 4, 6), amount_paid=Decimal("99.00"), status="failed")

    def test_list_newest_first(self, db_session, history):
        dates = [p.payment_date for p in list_payments(db_session)]
        assert dates == sorted(dates, reverse=True)

    def test_list_filters(self, db_session, sub, history):
        assert len(list_payments(db_session, subscription_id=sub.id)) == 4
        assert len(list_payments(db_session, status="failed")) == 1
        assert len(list_payments(db_session, currency="USD")) == 1
        assert len(list_payments(db_session, start_date=date(2024, 2, 1), end_date=date(2024, 3, 31))) == 1

    def test_list_paging(self, db_session, history):
        page = list_payments(db_session, limit=2, offset=1)
        assert [p.payment_date for p in page] == [date(2024, 4, 5), date(2024, 2, 5)]

    def test_monthly_stats(self, db_session, history):
        stats = get_monthly_stats(db_session, 2024, 4)
        assert stats["by_currency"] == [
            {"currency": "CNY", "total_amount": Decimal("12.00"), "payment_count": 1},
        ]

    def test_yearly_stats_grouped_by_currency(self, db_session, history):
        by_currency = {r["currency"]: r for r in get_yearly_stats(db_session, 2024)["by_currency"]}
        assert by_currency["CNY"]["total_amount"] == Decimal("22.00")
        assert by_currency["USD"]["payment_count"] == 1

    def test_quarterly_stats(self, db_session, history):
        q1 = get_quarterly_stats(db_session, 2024, 1)
        assert sum(r["payment_count"] for r in q1["by_currency"]) == 2

    def test_quarter_out_of_range(self, db_session):
        with pytest.raises(PaymentValidationError):
            get_quarterly_stats(db_session, 2024, 5)

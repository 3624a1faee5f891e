"""
Tests for the monthly category summary.

Covers:
  - Conversion to the base currency and per-category totals
  - Rounding applied to the summed total, not per payment
  - Fallback to the "other" category for missing / dangling categories
  - Delete-then-insert rebuild (no stale categories)
  - Idempotent recomputation and full rebuild
  - Range / month / total queries
"""
import pytest
from datetime import date
from decimal import Decimal

from billflow.application.monthly_summary import (
    MonthlyCategorySummaryService,
    months_touched,
    round_money,
)
from billflow.application.subscriptions import CreateSubscriptionUseCase
from billflow.infrastructure.db.models import Category, MonthlyCategorySummary, PaymentRecord


def _payment(db, sub, payment_date, amount="10.00", currency="CNY", status="succeeded"):
    p = PaymentRecord(
        subscription_id=sub.id,
        payment_date=payment_date,
        amount_paid=Decimal(amount),
        currency=currency,
        billing_period_start=payment_date,
        billing_period_end=payment_date,
        status=status,
    )
    db.add(p)
    db.flush()
    return p


def _rows(db, year, month):
    return {
        r.category_id: r
        for r in db.query(MonthlyCategorySummary).filter(
            MonthlyCategorySummary.year == year,
            MonthlyCategorySummary.month == month,
        ).all()
    }


class TestHelpers:
    def test_round_money_half_up(self):
        assert round_money(Decimal("21.015")) == Decimal("21.02")
        assert round_money(Decimal("0.004")) == Decimal("0.00")

    def test_months_touched_sorted_and_distinct(self):
        assert months_touched(date(2024, 3, 1), None, date(2023, 12, 5), date(2024, 3, 31)) == [
            (2023, 12), (2024, 3),
        ]


class TestRecomputeMonth:
    def test_ledger_scenario_january_total(self, db_session, category, add_rate):
        add_rate("USD", "CNY", 7.0)
        sub_id = CreateSubscriptionUseCase(db_session).execute(
            name="Spotify",
            billing_cycle="monthly",
            amount=Decimal("10"),
            currency="USD",
            start_date=date(2023, 1, 15),
            next_billing_date=date(2023, 4, 15),
            category_id=category.id,
            today=date(2023, 4, 20),
        )

        payments = db_session.query(PaymentRecord).filter(PaymentRecord.subscription_id == sub_id).all()
        assert len(payments) == 3

        january = _rows(db_session, 2023, 1)[category.id]
        assert january.total_amount_in_base_currency == Decimal("70.00")
        assert january.transactions_count == 1
        assert january.base_currency == "CNY"

    def test_rounds_sum_not_lines(self, db_session, category, add_rate, add_subscription):
        add_rate("USD", "CNY", 7.005)
        sub = add_subscription(category_id=category.id, currency="USD")
        for day in (1, 2, 3):
            _payment(db_session, sub, date(2024, 5, day), amount="1.00", currency="USD")

        MonthlyCategorySummaryService(db_session, "CNY").recompute_month(2024, 5)

        row = _rows(db_session, 2024, 5)[category.id]
        # 3 x 7.005 = 21.015 -> 21.02 (per-line rounding would give 21.03)
        assert row.total_amount_in_base_currency == Decimal("21.02")
        assert row.transactions_count == 3

    def test_only_succeeded_payments_count(self, db_session, category, add_subscription):
        sub = add_subscription(category_id=category.id)
        _payment(db_session, sub, date(2024, 5, 1), amount="10.00")
        _payment(db_session, sub, date(2024, 5, 2), amount="99.00", status="refunded")
        _payment(db_session, sub, date(2024, 5, 3), amount="99.00", status="failed")

        MonthlyCategorySummaryService(db_session, "CNY").recompute_month(2024, 5)

        row = _rows(db_session, 2024, 5)[category.id]
        assert row.total_amount_in_base_currency == Decimal("10.00")
        assert row.transactions_count == 1

    def test_month_boundaries(self, db_session, category, add_subscription):
        sub = add_subscription(category_id=category.id)
        _payment(db_session, sub, date(2024, 4, 30))
        _payment(db_session, sub, date(2024, 5, 1))
        _payment(db_session, sub, date(2024, 5, 31))
        _payment(db_session, sub, date(2024, 6, 1))

        MonthlyCategorySummaryService(db_session, "CNY").recompute_month(2024, 5)

        assert _rows(db_session, 2024, 5)[category.id].transactions_count == 2

    @pytest.mark.parametrize("category_id", [None, 999])
    def test_missing_category_goes_to_other(self, db_session, add_subscription, category_id):
        sub = add_subscription(category_id=category_id)
        _payment(db_session, sub, date(2024, 5, 1))

        MonthlyCategorySummaryService(db_session, "CNY").recompute_month(2024, 5)

        other = db_session.query(Category).filter(Category.value == "other").one()
        assert _rows(db_session, 2024, 5)[other.id].total_amount_in_base_currency == Decimal("10.00")

    def test_stale_category_is_removed(self, db_session, category, add_subscription):
        sub = add_subscription(category_id=category.id)
        _payment(db_session, sub, date(2024, 5, 1))
        service = MonthlyCategorySummaryService(db_session, "CNY")
        service.recompute_month(2024, 5)

        music = Category(value="music", label="Music")
        db_session.add(music)
        db_session.flush()
        sub.category_id = music.id
        db_session.flush()
        service.recompute_month(2024, 5)

        rows = _rows(db_session, 2024, 5)
        assert set(rows) == {music.id}

    def test_empty_month_clears_rows(self, db_session, category, add_subscription):
        sub = add_subscription(category_id=category.id)
        payment = _payment(db_session, sub, date(2024, 5, 1))
        service = MonthlyCategorySummaryService(db_session, "CNY")
        service.recompute_month(2024, 5)

        db_session.delete(payment)
        db_session.flush()
        assert service.recompute_month(2024, 5) == 0
        assert _rows(db_session, 2024, 5) == {}

    def test_recompute_is_idempotent(self, db_session, category, add_rate, add_subscription):
        add_rate("CNY", "EUR", 0.13)
        sub = add_subscription(category_id=category.id, currency="EUR")
        _payment(db_session, sub, date(2024, 5, 1), amount="12.34", currency="EUR")
        _payment(db_session, sub, date(2024, 5, 9), amount="5.55", currency="EUR")
        service = MonthlyCategorySummaryService(db_session, "CNY")

        service.recompute_month(2024, 5)
        first = {k: (r.total_amount_in_base_currency, r.transactions_count)
                 for k, r in _rows(db_session, 2024, 5).items()}
        service.recompute_month(2024, 5)
        second = {k: (r.total_amount_in_base_currency, r.transactions_count)
                  for k, r in _rows(db_session, 2024, 5).items()}

        assert first == second


class TestPaymentHooks:
    def test_moved_payment_recomputes_both_months(self, db_session, category, add_subscription):
        sub = add_subscription(category_id=category.id)
        payment = _payment(db_session, sub, date(2024, 5, 1))
        service = MonthlyCategorySummaryService(db_session, "CNY")
        service.on_payment_created(payment.id)

        payment.payment_date = date(2024, 6, 1)
        db_session.flush()
        service.on_payment_updated(date(2024, 5, 1), date(2024, 6, 1))

        assert _rows(db_session, 2024, 5) == {}
        assert _rows(db_session, 2024, 6)[category.id].transactions_count == 1

    def test_created_non_succeeded_payment_is_ignored(self, db_session, category, add_subscription):
        sub = add_subscription(category_id=category.id)
        payment = _payment(db_session, sub, date(2024, 5, 1), status="pending")

        MonthlyCategorySummaryService(db_session, "CNY").on_payment_created(payment.id)

        assert _rows(db_session, 2024, 5) == {}


class TestRecomputeAllAndQueries:
    @pytest.fixture
    def populated(self, db_session, category, add_subscription):
        sub = add_subscription(category_id=category.id)
        other_sub = add_subscription(name="Misc", category_id=None)
        _payment(db_session, sub, date(2024, 1, 10), amount="10.00")
        _payment(db_session, sub, date(2024, 2, 10), amount="10.00")
        _payment(db_session, other_sub, date(2024, 2, 20), amount="25.00")
        db_session.commit()
        return sub

    def test_recompute_all_rebuilds_every_month(self, db_session, populated):
        # Drift: a stray row for a month without payments
        db_session.add(MonthlyCategorySummary(
            year=2020, month=1, category_id=1,
            total_amount_in_base_currency=Decimal("1.00"), base_currency="CNY", transactions_count=1,
        ))
        db_session.commit()

        months = MonthlyCategorySummaryService(db_session, "CNY").recompute_all()

        assert months == 2
        assert _rows(db_session, 2020, 1) == {}
        assert len(_rows(db_session, 2024, 2)) == 2

    def test_month_summary_ordered_by_total(self, db_session, populated):
        service = MonthlyCategorySummaryService(db_session, "CNY")
        service.recompute_all()

        result = service.get_month_summary(2024, 2)
        assert [r["category_value"] for r in result] == ["other", "video"]
        assert result[0]["total_amount_in_base_currency"] == Decimal("25.00")

    def test_range_summary(self, db_session, populated):
        service = MonthlyCategorySummaryService(db_session, "CNY")
        service.recompute_all()

        result = service.get_range_summary(2024, 1, 2024, 1)
        assert len(result) == 1
        assert result[0]["category_label"] == "Video Streaming"

    def test_total_summary(self, db_session, populated):
        service = MonthlyCategorySummaryService(db_session, "CNY")
        service.recompute_all()

        result = service.get_total_summary(2023, 12, 2024, 12)
        assert result == [{
            "total_amount": Decimal("45.00"),
            "total_transactions": 3,
            "base_currency": "CNY",
        }]

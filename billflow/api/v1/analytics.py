"""
Payment analytics API endpoints
"""
from datetime import date
from decimal import Decimal

from fastapi import APIRouter, Depends, Query
from fastapi.encoders import jsonable_encoder
from sqlalchemy.orm import Session

from billflow.api.deps import get_db, http_errors
from billflow.application.analytics import (
    get_monthly_active_subscriptions,
    get_monthly_revenue,
    get_revenue_trends,
)
from billflow.utils.validation import validate_currency_code


router = APIRouter(prefix="/api/v1/analytics", tags=["analytics"])


def _as_json(result: dict):
    # Money stays exact on the wire
    return jsonable_encoder(result, custom_encoder={Decimal: str})


@router.get("/monthly-revenue")
def monthly_revenue(
    start_date: date | None = None,
    end_date: date | None = None,
    currency: str | None = None,
    db: Session = Depends(get_db),
):
    """Succeeded payments per month and currency, with averages"""
    with http_errors():
        if currency:
            currency = validate_currency_code(currency)
        return _as_json(get_monthly_revenue(db, start_date, end_date, currency))


@router.get("/revenue-trends")
def revenue_trends(
    period: str = "monthly",
    start_date: date | None = None,
    end_date: date | None = None,
    currency: str | None = None,
    db: Session = Depends(get_db),
):
    with http_errors():
        if currency:
            currency = validate_currency_code(currency)
        return _as_json(get_revenue_trends(db, period, start_date, end_date, currency))


@router.get("/monthly-active-subscriptions")
def monthly_active_subscriptions(
    year: int = Query(ge=2000, le=3000),
    month: int = Query(ge=1, le=12),
    db: Session = Depends(get_db),
):
    """Subscriptions with a paid billing period overlapping the month"""
    return _as_json(get_monthly_active_subscriptions(db, year, month))

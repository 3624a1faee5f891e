"""
Monthly category summary API endpoints
"""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from billflow.api.deps import get_db
from billflow.application.monthly_summary import MonthlyCategorySummaryService


router = APIRouter(prefix="/api/v1/monthly-category-summary", tags=["monthly-category-summary"])


def _as_json(rows: list[dict]) -> list[dict]:
    for row in rows:
        for key in ("total_amount_in_base_currency", "total_amount"):
            if key in row:
                row[key] = str(row[key])
    return rows


@router.get("/")
def range_summary(
    start_year: int,
    start_month: int = Query(ge=1, le=12),
    end_year: int = Query(),
    end_month: int = Query(ge=1, le=12),
    db: Session = Depends(get_db),
):
    service = MonthlyCategorySummaryService(db)
    return {
        "base_currency": service.base_currency,
        "summaries": _as_json(service.get_range_summary(start_year, start_month, end_year, end_month)),
    }


@router.get("/total")
def total_summary(
    start_year: int,
    start_month: int = Query(ge=1, le=12),
    end_year: int = Query(),
    end_month: int = Query(ge=1, le=12),
    db: Session = Depends(get_db),
):
    service = MonthlyCategorySummaryService(db)
    return _as_json(service.get_total_summary(start_year, start_month, end_year, end_month))


@router.get("/{year}/{month}")
def month_summary(year: int, month: int, db: Session = Depends(get_db)):
    service = MonthlyCategorySummaryService(db)
    return {
        "year": year,
        "month": month,
        "base_currency": service.base_currency,
        "categories": _as_json(service.get_month_summary(year, month)),
    }


@router.post("/recalculate")
def recalculate_all(db: Session = Depends(get_db)):
    """Rebuild the whole summary table from payment history"""
    months = MonthlyCategorySummaryService(db).recompute_all()
    return {"message": "Monthly category summary recalculated", "months": months}

"""
Payment history API endpoints
"""
from datetime import date, datetime

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict, field_validator
from sqlalchemy.orm import Session

from billflow.api.deps import get_db, http_errors
from billflow.application.payments import (
    BulkCreatePaymentsUseCase,
    CreatePaymentUseCase,
    DeletePaymentUseCase,
    PaymentChanges,
    UpdatePaymentUseCase,
    get_monthly_stats,
    get_payment,
    get_quarterly_stats,
    get_yearly_stats,
    list_payments,
)
from billflow.utils.validation import validate_and_normalize_amount, validate_currency_code


router = APIRouter(prefix="/api/v1/payment-history", tags=["payment-history"])


# === Request/Response models ===

class CreatePaymentRequest(BaseModel):
    subscription_id: int
    payment_date: date
    amount_paid: str
    currency: str
    billing_period_start: date
    billing_period_end: date
    status: str = "succeeded"  # succeeded, failed, pending, cancelled, refunded
    notes: str | None = None

    @field_validator("amount_paid")
    @classmethod
    def validate_amount(cls, v: str) -> str:
        return validate_and_normalize_amount(v, max_decimal_places=2)

    @field_validator("currency")
    @classmethod
    def validate_currency(cls, v: str) -> str:
        return validate_currency_code(v)


class UpdatePaymentRequest(BaseModel):
    subscription_id: int | None = None
    payment_date: date | None = None
    amount_paid: str | None = None
    currency: str | None = None
    billing_period_start: date | None = None
    billing_period_end: date | None = None
    status: str | None = None
    notes: str | None = None

    @field_validator(
        "subscription_id", "payment_date", "amount_paid", "currency",
        "billing_period_start", "billing_period_end", "status",
        mode="before",
    )
    @classmethod
    def reject_null(cls, v):
        if v is None:
            raise ValueError("must not be null")
        return v

    @field_validator("amount_paid")
    @classmethod
    def validate_amount(cls, v: str | None) -> str | None:
        return v if v is None else validate_and_normalize_amount(v, max_decimal_places=2)

    @field_validator("currency")
    @classmethod
    def validate_currency(cls, v: str | None) -> str | None:
        return v if v is None else validate_currency_code(v)


class PaymentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    subscription_id: int
    payment_date: date
    amount_paid: str
    currency: str
    billing_period_start: date
    billing_period_end: date
    status: str
    notes: str | None
    created_at: datetime | None = None

    @field_validator("amount_paid", mode="before")
    @classmethod
    def amount_as_str(cls, v) -> str:
        return str(v)


def _stats_json(stats: dict) -> dict:
    for row in stats["by_currency"]:
        row["total_amount"] = str(row["total_amount"])
    return stats


# === Endpoints ===

@router.get("/", response_model=list[PaymentResponse])
def list_all(
    db: Session = Depends(get_db),
    subscription_id: int | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
    status: str | None = None,
    currency: str | None = None,
    limit: int | None = Query(default=None, ge=1),
    offset: int = Query(default=0, ge=0),
):
    return list_payments(
        db,
        subscription_id=subscription_id,
        start_date=start_date,
        end_date=end_date,
        status=status,
        currency=currency,
        limit=limit,
        offset=offset,
    )


@router.get("/stats/monthly")
def monthly_stats(year: int, month: int = Query(ge=1, le=12), db: Session = Depends(get_db)):
    return _stats_json(get_monthly_stats(db, year, month))


@router.get("/stats/yearly")
def yearly_stats(year: int, db: Session = Depends(get_db)):
    return _stats_json(get_yearly_stats(db, year))


@router.get("/stats/quarterly")
def quarterly_stats(year: int, quarter: int, db: Session = Depends(get_db)):
    with http_errors():
        return _stats_json(get_quarterly_stats(db, year, quarter))


@router.post("/", response_model=PaymentResponse)
def create_payment(req: CreatePaymentRequest, db: Session = Depends(get_db)):
    with http_errors():
        payment_id = CreatePaymentUseCase(db).execute(**req.model_dump())
        return get_payment(db, payment_id)


@router.post("/bulk", response_model=list[PaymentResponse])
def bulk_create_payments(reqs: list[CreatePaymentRequest], db: Session = Depends(get_db)):
    with http_errors():
        ids = BulkCreatePaymentsUseCase(db).execute([r.model_dump() for r in reqs])
        return [get_payment(db, payment_id) for payment_id in ids]


@router.get("/{payment_id}", response_model=PaymentResponse)
def get_one(payment_id: int, db: Session = Depends(get_db)):
    with http_errors():
        return get_payment(db, payment_id)


@router.put("/{payment_id}", response_model=PaymentResponse)
def update_payment(payment_id: int, req: UpdatePaymentRequest, db: Session = Depends(get_db)):
    with http_errors():
        changes = PaymentChanges(**req.model_dump(exclude_unset=True))
        return UpdatePaymentUseCase(db).execute(payment_id, changes)


@router.delete("/{payment_id}")
def delete_payment(payment_id: int, db: Session = Depends(get_db)):
    with http_errors():
        DeletePaymentUseCase(db).execute(payment_id)
    return {"message": "Payment record deleted"}

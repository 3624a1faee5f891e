"""
Subscription API endpoints
"""
from datetime import date, datetime

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, field_validator
from sqlalchemy.orm import Session

from billflow.api.deps import get_background_notifier, get_db, http_errors
from billflow.application.notifications import SessionNotifier
from billflow.application.subscriptions import (
    BulkCreateSubscriptionsUseCase,
    CreateSubscriptionUseCase,
    DeleteSubscriptionUseCase,
    ResetAllSubscriptionsUseCase,
    SubscriptionChanges,
    UpdateSubscriptionUseCase,
    get_expired_subscriptions,
    get_subscription,
    get_subscription_stats,
    get_upcoming_renewals,
    list_subscriptions,
)
from billflow.utils.validation import validate_and_normalize_amount, validate_currency_code


router = APIRouter(prefix="/api/v1/subscriptions", tags=["subscriptions"])


# === Request/Response models ===

class CreateSubscriptionRequest(BaseModel):
    name: str
    plan: str | None = None
    billing_cycle: str  # monthly, quarterly, semiannual, yearly
    amount: str
    currency: str = "CNY"
    start_date: date
    next_billing_date: date | None = None
    payment_method_id: int | None = None
    category_id: int | None = None
    status: str = "active"  # trial, active, cancelled
    renewal_type: str = "manual"  # auto, manual
    notes: str | None = None
    website: str | None = None

    @field_validator("amount")
    @classmethod
    def validate_amount(cls, v: str) -> str:
        return validate_and_normalize_amount(v, max_decimal_places=2)

    @field_validator("currency")
    @classmethod
    def validate_currency(cls, v: str) -> str:
        return validate_currency_code(v)


class UpdateSubscriptionRequest(BaseModel):
    name: str | None = None
    plan: str | None = None
    billing_cycle: str | None = None
    amount: str | None = None
    currency: str | None = None
    start_date: date | None = None
    next_billing_date: date | None = None
    payment_method_id: int | None = None
    category_id: int | None = None
    status: str | None = None
    renewal_type: str | None = None
    notes: str | None = None
    website: str | None = None

    # Omit a field to keep it; these columns cannot be cleared
    @field_validator(
        "name", "billing_cycle", "amount", "currency", "start_date", "status", "renewal_type",
        mode="before",
    )
    @classmethod
    def reject_null(cls, v):
        if v is None:
            raise ValueError("must not be null")
        return v

    @field_validator("amount")
    @classmethod
    def validate_amount(cls, v: str | None) -> str | None:
        return v if v is None else validate_and_normalize_amount(v, max_decimal_places=2)

    @field_validator("currency")
    @classmethod
    def validate_currency(cls, v: str | None) -> str | None:
        return v if v is None else validate_currency_code(v)


class SubscriptionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    plan: str | None
    billing_cycle: str
    next_billing_date: date | None
    last_billing_date: date | None
    amount: str
    currency: str
    payment_method_id: int | None
    start_date: date
    status: str
    category_id: int | None
    renewal_type: str
    notes: str | None
    website: str | None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @field_validator("amount", mode="before")
    @classmethod
    def amount_as_str(cls, v) -> str:
        return str(v)


# === Endpoints ===

@router.post("/", response_model=SubscriptionResponse)
def create_subscription(req: CreateSubscriptionRequest, db: Session = Depends(get_db)):
    """Create a subscription and generate its payment history"""
    with http_errors():
        sub_id = CreateSubscriptionUseCase(db).execute(**req.model_dump())
        return get_subscription(db, sub_id)


@router.post("/bulk", response_model=list[SubscriptionResponse])
def bulk_create_subscriptions(reqs: list[CreateSubscriptionRequest], db: Session = Depends(get_db)):
    with http_errors():
        ids = BulkCreateSubscriptionsUseCase(db).execute([r.model_dump() for r in reqs])
        return [get_subscription(db, sub_id) for sub_id in ids]


@router.get("/", response_model=list[SubscriptionResponse])
def list_all(
    db: Session = Depends(get_db),
    status: str | None = None,
    category_id: int | None = None,
    renewal_type: str | None = None,
    search: str | None = None,
):
    return list_subscriptions(
        db, status=status, category_id=category_id, renewal_type=renewal_type, search=search,
    )


@router.get("/stats")
def subscription_stats(db: Session = Depends(get_db)):
    stats = get_subscription_stats(db)
    stats["monthly_cost"] = str(stats["monthly_cost"])
    stats["yearly_cost"] = str(stats["yearly_cost"])
    return stats


@router.get("/upcoming", response_model=list[SubscriptionResponse])
def upcoming_renewals(days: int = 7, db: Session = Depends(get_db)):
    return get_upcoming_renewals(db, days=days)


@router.get("/expired", response_model=list[SubscriptionResponse])
def expired_subscriptions(db: Session = Depends(get_db)):
    return get_expired_subscriptions(db)


@router.post("/reset")
def reset_all(db: Session = Depends(get_db)):
    """Delete every subscription, payment record and summary row"""
    return ResetAllSubscriptionsUseCase(db).execute()


@router.get("/{sub_id}", response_model=SubscriptionResponse)
def get_one(sub_id: int, db: Session = Depends(get_db)):
    with http_errors():
        return get_subscription(db, sub_id)


@router.put("/{sub_id}", response_model=SubscriptionResponse)
def update_subscription(
    sub_id: int,
    req: UpdateSubscriptionRequest,
    db: Session = Depends(get_db),
    notifier: SessionNotifier = Depends(get_background_notifier),
):
    """Update a subscription; changing amount, cycle, start date or status rebuilds its payment history"""
    with http_errors():
        changes = SubscriptionChanges(**req.model_dump(exclude_unset=True))
        return UpdateSubscriptionUseCase(db, notifier=notifier).execute(sub_id, changes)


@router.delete("/{sub_id}")
def delete_subscription(sub_id: int, db: Session = Depends(get_db)):
    with http_errors():
        DeleteSubscriptionUseCase(db).execute(sub_id)
    return {"message": "Subscription deleted"}

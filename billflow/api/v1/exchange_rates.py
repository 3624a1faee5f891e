"""
Exchange rate API endpoints
"""
from datetime import datetime
from decimal import Decimal

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict, field_validator
from sqlalchemy.orm import Session

from billflow.api.deps import get_db, http_errors
from billflow.application.exchange_rates import (
    CurrencyResolver,
    delete_exchange_rate,
    list_exchange_rates,
    update_exchange_rates,
    upsert_exchange_rates,
)
from billflow.utils.validation import validate_currency_code


router = APIRouter(prefix="/api/v1/exchange-rates", tags=["exchange-rates"])


class ExchangeRateRequest(BaseModel):
    from_currency: str
    to_currency: str
    rate: Decimal

    @field_validator("from_currency", "to_currency")
    @classmethod
    def validate_currency(cls, v: str) -> str:
        return validate_currency_code(v)

    @field_validator("rate")
    @classmethod
    def validate_rate(cls, v: Decimal) -> Decimal:
        if v <= 0:
            raise ValueError("Rate must be positive")
        return v

    def as_tuple(self) -> tuple[str, str, Decimal]:
        return self.from_currency, self.to_currency, self.rate


class ExchangeRateResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    from_currency: str
    to_currency: str
    rate: str
    updated_at: datetime | None = None

    @field_validator("rate", mode="before")
    @classmethod
    def rate_as_str(cls, v) -> str:
        return str(v)


@router.get("/", response_model=list[ExchangeRateResponse])
def list_rates(db: Session = Depends(get_db)):
    return list_exchange_rates(db)


@router.get("/convert")
def convert_rate(from_currency: str, to_currency: str, db: Session = Depends(get_db)):
    try:
        source = validate_currency_code(from_currency)
        target = validate_currency_code(to_currency)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {
        "from_currency": source,
        "to_currency": target,
        "rate": CurrencyResolver(db).rate(source, target),
    }


@router.post("/update")
def refresh_rates(db: Session = Depends(get_db)):
    """Pull fresh rates from the provider"""
    try:
        return update_exchange_rates(db)
    except Exception as e:
        raise HTTPException(status_code=502, detail=f"Exchange rate refresh failed: {e}")


@router.post("/")
def upsert_rate(req: ExchangeRateRequest, db: Session = Depends(get_db)):
    """Insert or overwrite one rate"""
    upsert_exchange_rates(db, [req.as_tuple()])
    return {"message": "Exchange rate saved", "count": 1}


@router.post("/bulk")
def upsert_rates(reqs: list[ExchangeRateRequest], db: Session = Depends(get_db)):
    """Insert or overwrite several rates in one transaction"""
    count = upsert_exchange_rates(db, [r.as_tuple() for r in reqs])
    return {"message": "Exchange rates updated", "count": count}


@router.delete("/{from_currency}/{to_currency}")
def delete_rate(from_currency: str, to_currency: str, db: Session = Depends(get_db)):
    with http_errors():
        delete_exchange_rate(db, from_currency.upper(), to_currency.upper())
    return {"message": "Exchange rate deleted"}

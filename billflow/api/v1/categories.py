"""
Category and payment method API endpoints
"""
from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict
from sqlalchemy.orm import Session

from billflow.api.deps import get_db, http_errors
from billflow.application.categories import CategoryCatalog, PaymentMethodCatalog


router = APIRouter(prefix="/api/v1/categories", tags=["categories"])
payment_methods_router = APIRouter(prefix="/api/v1/payment-methods", tags=["payment-methods"])


class CatalogEntryRequest(BaseModel):
    value: str
    label: str


class RelabelRequest(BaseModel):
    label: str


class CatalogEntryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    value: str
    label: str


# === Categories ===

@router.get("/", response_model=list[CatalogEntryResponse])
def list_categories(db: Session = Depends(get_db)):
    return CategoryCatalog(db).list_all()


@router.post("/", response_model=CatalogEntryResponse)
def create_category(req: CatalogEntryRequest, db: Session = Depends(get_db)):
    with http_errors():
        return CategoryCatalog(db).create(req.value, req.label)


@router.put("/{value}", response_model=CatalogEntryResponse)
def relabel_category(value: str, req: RelabelRequest, db: Session = Depends(get_db)):
    with http_errors():
        return CategoryCatalog(db).update_label(value, req.label)


@router.delete("/{value}")
def delete_category(value: str, db: Session = Depends(get_db)):
    """Delete a category; its spend is reported under "other" from now on"""
    with http_errors():
        CategoryCatalog(db).delete(value)
    return {"message": "Category deleted"}


# === Payment methods ===

@payment_methods_router.get("/", response_model=list[CatalogEntryResponse])
def list_payment_methods(db: Session = Depends(get_db)):
    return PaymentMethodCatalog(db).list_all()


@payment_methods_router.post("/", response_model=CatalogEntryResponse)
def create_payment_method(req: CatalogEntryRequest, db: Session = Depends(get_db)):
    with http_errors():
        return PaymentMethodCatalog(db).create(req.value, req.label)


@payment_methods_router.put("/{value}", response_model=CatalogEntryResponse)
def relabel_payment_method(value: str, req: RelabelRequest, db: Session = Depends(get_db)):
    with http_errors():
        return PaymentMethodCatalog(db).update_label(value, req.label)


@payment_methods_router.delete("/{value}")
def delete_payment_method(value: str, db: Session = Depends(get_db)):
    with http_errors():
        PaymentMethodCatalog(db).delete(value)
    return {"message": "Payment method deleted"}

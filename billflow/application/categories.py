"""
Categories and payment methods — the two value/label lookup tables.

Both are keyed by their unique `value`. Subscriptions reference them by id
without a foreign key, so deleting a row leaves the references dangling:
- a dangling payment method renders as its raw id in notifications
- a dangling category is reported under "other" by the monthly summary;
  deleting a category rebuilds every month its subscriptions paid in
"""
import logging

from sqlalchemy.orm import Session

from billflow.application.errors import NotFoundError
from billflow.application.monthly_summary import MonthlyCategorySummaryService, months_touched
from billflow.domain.subscription import OTHER_CATEGORY_VALUE, PAYMENT_SUCCEEDED
from billflow.infrastructure.db.models import Category, PaymentMethod, PaymentRecord, SubscriptionModel

logger = logging.getLogger(__name__)

MAX_VALUE_LENGTH = 50
MAX_LABEL_LENGTH = 100


class CatalogValidationError(ValueError):
    pass


def _clean(text: str | None, field: str, max_length: int) -> str:
    text = (text or "").strip()
    if not 1 <= len(text) <= max_length:
        raise CatalogValidationError(f"{field} must be 1-{max_length} characters")
    return text


class ReferenceCatalog:
    """List / create / relabel / delete for one value-label table."""

    model = None
    entity = ""

    def __init__(self, db: Session):
        self.db = db

    def list_all(self):
        return self.db.query(self.model).order_by(self.model.label).all()

    def get(self, value: str):
        row = self.db.query(self.model).filter(self.model.value == value).first()
        if row is None:
            raise NotFoundError(self.entity, value)
        return row

    def create(self, value: str, label: str):
        value = _clean(value, "value", MAX_VALUE_LENGTH)
        label = _clean(label, "label", MAX_LABEL_LENGTH)
        if self.db.query(self.model).filter(self.model.value == value).count():
            raise CatalogValidationError(f"{self.entity} with this value already exists")

        row = self.model(value=value, label=label)
        self.db.add(row)
        self.db.commit()
        logger.info("Created %s %r", self.entity.lower(), value)
        return row

    def update_label(self, value: str, label: str):
        label = _clean(label, "label", MAX_LABEL_LENGTH)
        row = self.get(value)
        row.label = label
        self.db.commit()
        return row

    def delete(self, value: str) -> None:
        row = self.get(value)
        self.db.delete(row)
        self.db.commit()
        logger.info("Deleted %s %r", self.entity.lower(), value)


class PaymentMethodCatalog(ReferenceCatalog):
    model = PaymentMethod
    entity = "Payment method"


class CategoryCatalog(ReferenceCatalog):
    model = Category
    entity = "Category"

    def delete(self, value: str) -> None:
        """Delete a category and move its spend to "other" in the monthly summary."""
        if value == OTHER_CATEGORY_VALUE:
            raise CatalogValidationError("The fallback category cannot be deleted")
        row = self.get(value)

        dates = (
            self.db.query(PaymentRecord.payment_date)
            .join(SubscriptionModel, PaymentRecord.subscription_id == SubscriptionModel.id)
            .filter(
                SubscriptionModel.category_id == row.id,
                PaymentRecord.status == PAYMENT_SUCCEEDED,
            )
            .distinct()
            .all()
        )
        months = months_touched(*(d for (d,) in dates))

        try:
            self.db.delete(row)
            self.db.flush()
            MonthlyCategorySummaryService(self.db).recompute_months(months)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        logger.info("Deleted category %r, rebuilt %d summary months", value, len(months))

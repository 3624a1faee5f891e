"""
Schema bootstrap — creates tables and reference rows once per process.

Concurrent cold-start callers block on the same lock; only the first one does
the work. A failed attempt leaves the initializer unset so the next caller
retries.
"""
import logging
import threading

from sqlalchemy.orm import Session

from billflow.config import get_settings
from billflow.domain.currency import default_exchange_rates, normalize_base_currency
from billflow.domain.subscription import OTHER_CATEGORY_VALUE
from billflow.infrastructure.db.session import Base, get_engine
from billflow.infrastructure.db.models import (
    Category,
    ExchangeRate,
    NotificationChannel,
    NotificationSetting,
    SchedulerSettings,
)

logger = logging.getLogger(__name__)

NOTIFICATION_TYPES = (
    "renewal_reminder",
    "expiration_warning",
    "renewal_success",
    "renewal_failure",
    "subscription_change",
)

_DEFAULT_CATEGORIES = (
    ("video", "Video Streaming"),
    ("music", "Music Streaming"),
    ("software", "Software"),
    ("cloud", "Cloud Services"),
    ("news", "News & Magazines"),
    ("gaming", "Gaming"),
    ("education", "Education"),
    ("productivity", "Productivity"),
    (OTHER_CATEGORY_VALUE, "Other"),
)


class SchemaInitializer:
    """Run-once, reset-on-failure guard around schema creation."""

    def __init__(self):
        self._lock = threading.Lock()
        self._done = False

    @property
    def done(self) -> bool:
        return self._done

    def ensure(self, engine, base_currency: str) -> None:
        if self._done:
            return
        with self._lock:
            if self._done:
                return
            logger.info("Initializing database schema")
            Base.metadata.create_all(engine)
            with Session(engine) as db:
                seed_reference_data(db, base_currency)
                db.commit()
            self._done = True
            logger.info("Database schema ready")

    def reset(self) -> None:
        with self._lock:
            self._done = False


_initializer = SchemaInitializer()


def ensure_schema(engine=None) -> None:
    """Create tables and reference rows if this process has not done so yet."""
    settings = get_settings()
    _initializer.ensure(engine or get_engine(), normalize_base_currency(settings.BASE_CURRENCY))


def seed_reference_data(db: Session, base_currency: str) -> None:
    """Insert rows the engine relies on, leaving existing rows untouched."""
    existing_categories = {value for (value,) in db.query(Category.value).all()}
    for value, label in _DEFAULT_CATEGORIES:
        if value not in existing_categories:
            db.add(Category(value=value, label=label))

    existing_types = {t for (t,) in db.query(NotificationSetting.notification_type).all()}
    for notification_type in NOTIFICATION_TYPES:
        if notification_type not in existing_types:
            db.add(NotificationSetting(
                notification_type=notification_type,
                is_enabled=True,
                advance_days=7,
                repeat_notification=False,
                notification_channels=["telegram"],
            ))

    if not db.query(NotificationChannel).filter(NotificationChannel.channel_type == "telegram").first():
        db.add(NotificationChannel(channel_type="telegram", channel_config={}, is_active=False))

    if db.get(SchedulerSettings, 1) is None:
        db.add(SchedulerSettings(
            id=1,
            notification_check_time="09:00",
            timezone=get_settings().TIMEZONE,
            is_enabled=True,
        ))

    if db.query(ExchangeRate).count() == 0:
        for from_currency, to_currency, rate in default_exchange_rates(base_currency):
            db.add(ExchangeRate(from_currency=from_currency, to_currency=to_currency, rate=rate))

    db.flush()

"""
SQLAlchemy ORM models (ledger tables + derived summary)
"""
from decimal import Decimal
from datetime import date as date_type, datetime
from sqlalchemy import (
    JSON, String, Integer, Text, TIMESTAMP, Date, Boolean, Numeric, ForeignKey,
    UniqueConstraint, Index, func,
)
from sqlalchemy.orm import Mapped, mapped_column

from billflow.infrastructure.db.session import Base


# ============================================================================
# Reference data
# ============================================================================


class Category(Base):
    """Spending category. The row with value='other' is the fallback bucket."""
    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    value: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    label: Mapped[str] = mapped_column(String(128), nullable=False)


class PaymentMethod(Base):
    __tablename__ = "payment_methods"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    value: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    label: Mapped[str] = mapped_column(String(128), nullable=False)


# ============================================================================
# Ledger
# ============================================================================


class SubscriptionModel(Base):
    """Recurring subscription. Cancelled rows stay in place (soft termination)."""
    __tablename__ = "subscriptions"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    plan: Mapped[str | None] = mapped_column(String(255), nullable=True)
    billing_cycle: Mapped[str] = mapped_column(String(16), nullable=False)  # monthly, quarterly, semiannual, yearly
    next_billing_date: Mapped[date_type | None] = mapped_column(Date, nullable=True)
    last_billing_date: Mapped[date_type | None] = mapped_column(Date, nullable=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(precision=12, scale=2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, server_default="CNY")
    payment_method_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    start_date: Mapped[date_type] = mapped_column(Date, nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, server_default="active")  # trial, active, cancelled
    category_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    renewal_type: Mapped[str] = mapped_column(String(16), nullable=False, server_default="manual")  # auto, manual
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    website: Mapped[str | None] = mapped_column(String(512), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False
    )

    __table_args__ = (
        Index("ix_subscriptions_status_renewal", "status", "renewal_type"),
    )


class PaymentRecord(Base):
    """One billing event of a subscription (immutable in normal operation)."""
    __tablename__ = "payment_history"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    subscription_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("subscriptions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    payment_date: Mapped[date_type] = mapped_column(Date, nullable=False, index=True)
    amount_paid: Mapped[Decimal] = mapped_column(Numeric(precision=12, scale=2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    billing_period_start: Mapped[date_type] = mapped_column(Date, nullable=False)
    billing_period_end: Mapped[date_type] = mapped_column(Date, nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, server_default="succeeded")
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), nullable=False
    )


# ============================================================================
# Derived data
# ============================================================================


class MonthlyCategorySummary(Base):
    """
    Read model: spend per (year, month, category) in the base currency.

    Pure cache over payment_history + subscriptions + exchange_rates,
    always safe to delete and rebuild.
    """
    __tablename__ = "monthly_category_summary"

    year: Mapped[int] = mapped_column(Integer, primary_key=True)
    month: Mapped[int] = mapped_column(Integer, primary_key=True)
    category_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    total_amount_in_base_currency: Mapped[Decimal] = mapped_column(
        Numeric(precision=14, scale=2), nullable=False, server_default="0"
    )
    base_currency: Mapped[str] = mapped_column(String(3), nullable=False)
    transactions_count: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")

    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False
    )


class ExchangeRate(Base):
    """Conversion rate: 1 from_currency = rate to_currency."""
    __tablename__ = "exchange_rates"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    from_currency: Mapped[str] = mapped_column(String(3), nullable=False)
    to_currency: Mapped[str] = mapped_column(String(3), nullable=False)
    rate: Mapped[Decimal] = mapped_column(Numeric(precision=20, scale=8), nullable=False)

    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False
    )

    __table_args__ = (
        UniqueConstraint("from_currency", "to_currency", name="uq_exchange_rate_pair"),
    )


# ============================================================================
# Notifications & scheduling
# ============================================================================


class NotificationSetting(Base):
    """Per notification type switches (renewal_reminder, expiration_warning, ...)."""
    __tablename__ = "notification_settings"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    notification_type: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)
    is_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")
    advance_days: Mapped[int] = mapped_column(Integer, nullable=False, default=7, server_default="7")
    repeat_notification: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    notification_channels: Mapped[list] = mapped_column(JSON, nullable=False, default=lambda: ["telegram"])


class NotificationChannel(Base):
    """Delivery channel configuration, e.g. telegram -> {"chat_id": "..."}."""
    __tablename__ = "notification_channels"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    channel_type: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)
    channel_config: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    last_used_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)


class NotificationHistory(Base):
    """One delivery attempt on one channel."""
    __tablename__ = "notification_history"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    subscription_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    notification_type: Mapped[str] = mapped_column(String(32), nullable=False)
    channel_type: Mapped[str] = mapped_column(String(32), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False)  # sent, failed
    recipient: Mapped[str | None] = mapped_column(String(255), nullable=True)
    message_content: Mapped[str] = mapped_column(Text, nullable=False)
    sent_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), nullable=False
    )

    __table_args__ = (
        Index("ix_notification_history_dedup", "subscription_id", "notification_type", "status"),
    )


class SchedulerSettings(Base):
    """Single row (id=1) gating the hourly notification scan."""
    __tablename__ = "scheduler_settings"

    id: Mapped[int] = mapped_column(primary_key=True)
    notification_check_time: Mapped[str] = mapped_column(String(5), nullable=False, server_default="09:00")
    timezone: Mapped[str] = mapped_column(String(64), nullable=False, server_default="Asia/Shanghai")
    is_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")

    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False
    )

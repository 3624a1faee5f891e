"""
Background scheduler — runs periodic jobs inside the FastAPI process.

Jobs:
  - Daily billing (02:00 UTC by default): exchange-rate refresh, auto renewals,
    expirations
  - Notification check (hourly): runs only when scheduler_settings is enabled
    and the current hour in its timezone matches the HH of its HH:MM
"""
import logging
from datetime import datetime, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from sqlalchemy.orm import Session

from billflow.config import get_settings
from billflow.infrastructure.db.models import SchedulerSettings

logger = logging.getLogger(__name__)

scheduler = BackgroundScheduler(daemon=True)

DEFAULT_CHECK_TIME = "09:00"


# ============================================================================
# Scheduler settings
# ============================================================================


def _parse_check_time(value: str) -> tuple[int, int]:
    try:
        hour, minute = (int(part) for part in value.split(":"))
    except ValueError:
        raise ValueError(f"Invalid check time: {value!r}, expected HH:MM") from None
    if not (0 <= hour < 24 and 0 <= minute < 60):
        raise ValueError(f"Invalid check time: {value!r}, expected HH:MM")
    return hour, minute


def get_scheduler_settings(db: Session) -> dict:
    row = db.get(SchedulerSettings, 1)
    if row is None:
        return {
            "notification_check_time": DEFAULT_CHECK_TIME,
            "timezone": get_settings().TIMEZONE,
            "is_enabled": True,
        }
    return {
        "notification_check_time": row.notification_check_time,
        "timezone": row.timezone,
        "is_enabled": row.is_enabled,
    }


def update_scheduler_settings(
    db: Session,
    notification_check_time: str,
    tz_name: str,
    is_enabled: bool,
) -> dict:
    _parse_check_time(notification_check_time)
    try:
        ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError):
        raise ValueError(f"Unknown timezone: {tz_name}") from None

    row = db.get(SchedulerSettings, 1)
    if row is None:
        row = SchedulerSettings(id=1)
        db.add(row)
    row.notification_check_time = notification_check_time
    row.timezone = tz_name
    row.is_enabled = is_enabled
    db.commit()
    return get_scheduler_settings(db)


def should_run(db: Session, now: datetime | None = None) -> bool:
    """True when the notification check is enabled and due in this local hour."""
    settings = get_scheduler_settings(db)
    if not settings["is_enabled"]:
        return False

    hour, _minute = _parse_check_time(settings["notification_check_time"])
    now = now or datetime.now(timezone.utc)
    local = now.astimezone(ZoneInfo(settings["timezone"]))
    # Hourly trigger: only the hour is compared
    return local.hour == hour


# ============================================================================
# Jobs
# ============================================================================


def _run_daily_billing():
    from billflow.infrastructure.db.session import get_session_factory
    from billflow.infrastructure.db.schema import ensure_schema
    from billflow.application.exchange_rates import update_exchange_rates
    from billflow.application.notifications import SessionNotifier
    from billflow.application.renewals import SubscriptionRenewalService

    ensure_schema()
    Session = get_session_factory()
    db = Session()
    try:
        try:
            result = update_exchange_rates(db)
            logger.info("Exchange rate refresh: %s", result["message"])
        except Exception:
            logger.exception("Exchange rate refresh failed")

        renewals = SubscriptionRenewalService(db, notifier=SessionNotifier())
        renewals.process_auto_renewals()
        renewals.process_expired_subscriptions()
    except Exception:
        logger.exception("Daily billing job failed")
    finally:
        db.close()


def _run_notification_check():
    from billflow.infrastructure.db.session import get_session_factory
    from billflow.infrastructure.db.schema import ensure_schema
    from billflow.application.notifications import NotificationService

    ensure_schema()
    Session = get_session_factory()
    db = Session()
    try:
        if not should_run(db):
            return
        result = NotificationService(db).check_and_send_notifications()
        logger.info(
            "Notification check: %d renewal reminders, %d expiration warnings",
            result["renewal_count"], result["expiration_count"],
        )
    except Exception:
        logger.exception("Notification check job failed")
    finally:
        db.close()


def start_scheduler():
    """Start the background scheduler with all periodic jobs."""
    settings = get_settings()

    scheduler.add_job(
        _run_daily_billing,
        CronTrigger(hour=settings.RENEWAL_CRON_HOUR, minute=settings.RENEWAL_CRON_MINUTE, timezone="UTC"),
        id="daily_billing",
        replace_existing=True,
    )

    # Top of every hour, gated by scheduler_settings
    scheduler.add_job(
        _run_notification_check,
        CronTrigger(minute=0, timezone="UTC"),
        id="notification_check",
        replace_existing=True,
    )

    scheduler.start()
    logger.info(
        "Scheduler started: daily_billing (%02d:%02d UTC), notification_check (hourly)",
        settings.RENEWAL_CRON_HOUR, settings.RENEWAL_CRON_MINUTE,
    )


def shutdown_scheduler():
    """Gracefully stop the scheduler."""
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")

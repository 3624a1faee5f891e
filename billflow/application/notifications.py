"""
Subscription notifications — rendering, per-channel delivery and history.

Architecture:
- _TEMPLATES: message templates per notification type and language
- NotificationService.send_notification(): render once per channel, deliver
  to all channels concurrently, record every attempt in notification_history
- NotificationService.check_and_send_notifications(): hourly scan for
  renewal reminders and expiration warnings
- notify_quietly(): best-effort hook for the engine; the send runs on a
  background pool through a SessionNotifier, failures are logged and
  never reach the caller's result
"""
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from functools import partial
from datetime import date, datetime, time, timedelta, timezone

from sqlalchemy import func
from sqlalchemy.orm import Session

from billflow.application.telegram import DeliveryResult, TelegramSink
from billflow.config import get_settings
from billflow.domain.subscription import SUBSCRIPTION_STATUS_ACTIVE
from billflow.infrastructure.db.models import (
    NotificationChannel,
    NotificationHistory,
    NotificationSetting,
    PaymentMethod,
    SubscriptionModel,
)
from billflow.infrastructure.db.schema import NOTIFICATION_TYPES
from billflow.infrastructure.db.session import get_session_factory
from billflow.utils.money import format_amount

logger = logging.getLogger(__name__)

DEFAULT_NOTIFICATION_CHANNELS = ["telegram"]
_FALLBACK_LANGUAGES = ("en", "zh-CN")

# ---------------------------------------------------------------------------
# Message templates
# ---------------------------------------------------------------------------

_TEMPLATES: dict[str, dict[str, str]] = {
    "renewal_reminder": {
        "zh-CN": (
            "<b>续订提醒</b>\n\n"
            "📢 <b>{name}</b> 即将到期\n\n"
            "📅 到期时间: {next_billing_date}\n"
            "💰 金额: {amount} {currency}\n"
            "💳 支付方式: {payment_method}\n"
            "📋 计划: {plan}\n\n"
            "请及时续订以避免服务中断。"
        ),
        "en": (
            "<b>Renewal Reminder</b>\n\n"
            "📢 <b>{name}</b> is about to expire\n\n"
            "📅 Expiration date: {next_billing_date}\n"
            "💰 Amount: {amount} {currency}\n"
            "💳 Payment method: {payment_method}\n"
            "📋 Plan: {plan}\n\n"
            "Please renew in time to avoid service interruption."
        ),
    },
    "expiration_warning": {
        "zh-CN": (
            "<b>⚠️ 订阅过期警告</b>\n\n"
            "🚨 <b>{name}</b> 已过期\n\n"
            "📅 过期时间: {next_billing_date}\n"
            "💰 金额: {amount} {currency}\n"
            "💳 支付方式: {payment_method}\n"
            "📋 计划: {plan}\n\n"
            "请立即续订以恢复服务。"
        ),
        "en": (
            "<b>⚠️ Subscription Expiration Warning</b>\n\n"
            "🚨 <b>{name}</b> has expired\n\n"
            "📅 Expiration date: {next_billing_date}\n"
            "💰 Amount: {amount} {currency}\n"
            "💳 Payment method: {payment_method}\n"
            "📋 Plan: {plan}\n\n"
            "Please renew immediately to restore service."
        ),
    },
    "renewal_success": {
        "zh-CN": (
            "<b>✅ 续订成功</b>\n\n"
            "🎉 <b>{name}</b> 续订成功\n\n"
            "📅 下次续订: {next_billing_date}\n"
            "💰 金额: {amount} {currency}\n"
            "💳 支付方式: {payment_method}\n"
            "📋 计划: {plan}\n\n"
            "感谢您的续订！"
        ),
        "en": (
            "<b>✅ Renewal Successful</b>\n\n"
            "🎉 <b>{name}</b> renewed successfully\n\n"
            "📅 Next renewal: {next_billing_date}\n"
            "💰 Amount: {amount} {currency}\n"
            "💳 Payment method: {payment_method}\n"
            "📋 Plan: {plan}\n\n"
            "Thank you for your renewal!"
        ),
    },
    "renewal_failure": {
        "zh-CN": (
            "<b>❌ 续订失败</b>\n\n"
            "⚠️ <b>{name}</b> 续订失败\n\n"
            "📅 到期时间: {next_billing_date}\n"
            "💰 金额: {amount} {currency}\n"
            "💳 支付方式: {payment_method}\n"
            "📋 计划: {plan}\n\n"
            "请检查支付方式并重试。"
        ),
        "en": (
            "<b>❌ Renewal Failed</b>\n\n"
            "⚠️ <b>{name}</b> renewal failed\n\n"
            "📅 Expiration date: {next_billing_date}\n"
            "💰 Amount: {amount} {currency}\n"
            "💳 Payment method: {payment_method}\n"
            "📋 Plan: {plan}\n\n"
            "Please check your payment method and try again."
        ),
    },
    "subscription_change": {
        "zh-CN": (
            "<b>📝 订阅变更通知</b>\n\n"
            "🔄 <b>{name}</b> 信息已更新\n\n"
            "📅 下次续订: {next_billing_date}\n"
            "💰 金额: {amount} {currency}\n"
            "💳 支付方式: {payment_method}\n"
            "📋 计划: {plan}\n\n"
            "变更已生效。"
        ),
        "en": (
            "<b>📝 Subscription Change Notification</b>\n\n"
            "🔄 <b>{name}</b> information updated\n\n"
            "📅 Next renewal: {next_billing_date}\n"
            "💰 Amount: {amount} {currency}\n"
            "💳 Payment method: {payment_method}\n"
            "📋 Plan: {plan}\n\n"
            "Changes have taken effect."
        ),
    },
}

_DEFAULT_CONTENT = {
    "zh-CN": "订阅通知: {name}",
    "en": "Subscription notification: {name}",
}


def get_template(notification_type: str, language: str) -> str | None:
    by_language = _TEMPLATES.get(notification_type)
    if not by_language:
        return None
    if language in by_language:
        return by_language[language]
    for fallback in _FALLBACK_LANGUAGES:
        if fallback in by_language:
            return by_language[fallback]
    return None


def _format_date(value: date | None, language: str) -> str:
    if value is None:
        return ""
    if language.startswith("en"):
        return value.strftime("%b %d, %Y").replace(" 0", " ")
    return f"{value.year}年{value.month}月{value.day}日"


# ---------------------------------------------------------------------------
# Background dispatch
# ---------------------------------------------------------------------------

_dispatch_pool = ThreadPoolExecutor(max_workers=4, thread_name_prefix="notify")
_pending: set[Future] = set()
_pending_changed = threading.Condition()


class SessionNotifier:
    """
    Notifier for background dispatch.

    Every send opens a session of its own from the session factory, so the
    caller's Session never crosses a thread boundary.
    """

    def __init__(self, session_factory=None, sinks: dict | None = None, language: str | None = None):
        self.session_factory = session_factory
        self.sinks = sinks
        self.language = language

    def send_notification(self, subscription_id: int, notification_type: str) -> dict:
        session_factory = self.session_factory or get_session_factory()
        db = session_factory()
        try:
            service = NotificationService(db, sinks=self.sinks, language=self.language)
            return service.send_notification(subscription_id, notification_type)
        finally:
            db.close()


def _log_outcome(future: Future, subscription_id: int, notification_type: str) -> None:
    try:
        error = future.exception()
        if error is not None:
            logger.error(
                "Notification %s failed for subscription_id=%d",
                notification_type, subscription_id, exc_info=error,
            )
            return
        result = future.result() or {}
        if not result.get("success"):
            logger.info(
                "Notification %s for subscription_id=%d not sent: %s",
                notification_type, subscription_id, result.get("message") or result.get("results"),
            )
    finally:
        with _pending_changed:
            _pending.discard(future)
            _pending_changed.notify_all()


def notify_quietly(notifier, subscription_id: int, notification_type: str) -> Future | None:
    """
    Best-effort notification hook used after a state change has been committed.

    The send runs on the dispatch pool and the caller returns immediately.
    The outcome is only logged; nothing propagates to the caller.
    """
    if notifier is None:
        return None
    future = _dispatch_pool.submit(notifier.send_notification, subscription_id, notification_type)
    with _pending_changed:
        _pending.add(future)
    future.add_done_callback(
        partial(_log_outcome, subscription_id=subscription_id, notification_type=notification_type)
    )
    return future


def wait_for_notifications(timeout: float | None = None) -> bool:
    """Block until every dispatched notification has settled. False on timeout."""
    with _pending_changed:
        return _pending_changed.wait_for(lambda: not _pending, timeout=timeout)


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class NotificationService:
    def __init__(self, db: Session, sinks: dict | None = None, language: str | None = None):
        self.db = db
        self.sinks = sinks if sinks is not None else {"telegram": TelegramSink()}
        self.language = language or get_settings().NOTIFICATION_LANGUAGE

    def send_notification(
        self,
        subscription_id: int,
        notification_type: str,
        channels: list[str] | None = None,
        now: datetime | None = None,
    ) -> dict:
        if notification_type not in NOTIFICATION_TYPES:
            return {"success": False, "message": "Invalid notification type"}

        setting = self._get_setting(notification_type)
        if setting is None or not setting.is_enabled:
            return {"success": False, "message": "Notification type disabled"}

        sub = self.db.get(SubscriptionModel, subscription_id)
        if sub is None:
            return {"success": False, "message": "Subscription not found"}

        now = now or datetime.now(timezone.utc)
        target_channels = channels or self.get_enabled_channels()

        # Render in this thread (needs the session), deliver in parallel
        prepared = []
        results: dict[str, DeliveryResult] = {}
        for channel in target_channels:
            config = self.db.query(NotificationChannel).filter(
                NotificationChannel.channel_type == channel,
            ).first()
            sink = self.sinks.get(channel)
            if config is None or not config.is_active:
                results[channel] = DeliveryResult(success=False, error="Channel not configured")
                continue
            if sink is None:
                results[channel] = DeliveryResult(success=False, error=f"Unsupported channel: {channel}")
                continue
            recipient = str((config.channel_config or {}).get("chat_id") or "")
            message = self.render_message(sub, notification_type)
            prepared.append((channel, config, sink, recipient, message))

        if prepared:
            with ThreadPoolExecutor(max_workers=len(prepared)) as pool:
                futures = [
                    (item, pool.submit(item[2].send, item[3], item[4]))
                    for item in prepared
                ]
                delivered = []
                for item, future in futures:
                    try:
                        outcome = future.result()
                    except Exception as e:
                        logger.exception("Delivery via %s failed", item[0])
                        outcome = DeliveryResult(success=False, error=str(e))
                    delivered.append((item, outcome))

            try:
                for (channel, config, _sink, recipient, message), outcome in delivered:
                    self.db.add(NotificationHistory(
                        subscription_id=sub.id,
                        notification_type=notification_type,
                        channel_type=channel,
                        status="sent" if outcome.success else "failed",
                        recipient=recipient,
                        message_content=message,
                        sent_at=now if outcome.success else None,
                        error_message=outcome.error,
                        created_at=now,
                    ))
                    config.last_used_at = now
                    results[channel] = outcome
                self.db.commit()
            except Exception:
                self.db.rollback()
                raise

        return {
            "success": any(r.success for r in results.values()),
            "results": [
                {"channel": channel, "success": r.success, "error": r.error}
                for channel, r in results.items()
            ],
        }

    def render_message(self, sub: SubscriptionModel, notification_type: str) -> str:
        payment_method = None
        if sub.payment_method_id is not None:
            payment_method = self.db.get(PaymentMethod, sub.payment_method_id)
        ctx = {
            "name": sub.name or "",
            "plan": sub.plan or "",
            "amount": format_amount(sub.amount),
            "currency": sub.currency or "",
            "next_billing_date": _format_date(sub.next_billing_date, self.language),
            "payment_method": payment_method.label if payment_method else (sub.payment_method_id or ""),
            "status": sub.status or "",
            "billing_cycle": sub.billing_cycle or "",
        }
        template = get_template(notification_type, self.language)
        if template is None:
            lang = "en" if self.language.startswith("en") else "zh-CN"
            template = _DEFAULT_CONTENT[lang]
        return template.format(**ctx)

    def get_enabled_channels(self) -> list[str]:
        rows = self.db.query(NotificationChannel.channel_type).filter(
            NotificationChannel.is_active == True,  # noqa: E712
        ).all()
        if not rows:
            return list(DEFAULT_NOTIFICATION_CHANNELS)
        return [r[0] for r in rows]

    def _get_setting(self, notification_type: str) -> NotificationSetting | None:
        return self.db.query(NotificationSetting).filter(
            NotificationSetting.notification_type == notification_type,
        ).first()

    # ------------------------------------------------------------------
    # Hourly scan
    # ------------------------------------------------------------------

    def check_and_send_notifications(self, today: date | None = None) -> dict:
        today = today or date.today()

        renewal_subs = self._due_renewal_reminders(today)
        for sub, channels in renewal_subs:
            self.send_notification(sub.id, "renewal_reminder", channels)

        expiration_subs = self._due_expiration_warnings(today)
        for sub, channels in expiration_subs:
            self.send_notification(sub.id, "expiration_warning", channels)

        return {
            "renewal_count": len(renewal_subs),
            "expiration_count": len(expiration_subs),
        }

    def _due_renewal_reminders(self, today: date) -> list[tuple[SubscriptionModel, list[str]]]:
        setting = self._get_setting("renewal_reminder")
        if setting is None or not setting.is_enabled:
            return []

        subs = self.db.query(SubscriptionModel).filter(
            SubscriptionModel.status == SUBSCRIPTION_STATUS_ACTIVE,
            SubscriptionModel.next_billing_date >= today + timedelta(days=1),
            SubscriptionModel.next_billing_date <= today + timedelta(days=setting.advance_days),
        ).order_by(SubscriptionModel.next_billing_date).all()

        channels = setting.notification_channels or list(DEFAULT_NOTIFICATION_CHANNELS)
        if setting.repeat_notification:
            return [(sub, channels) for sub in subs]

        window_start = datetime.combine(today - timedelta(days=setting.advance_days), time.min)
        return [
            (sub, channels) for sub in subs
            if not self._already_sent(sub.id, "renewal_reminder", window_start)
        ]

    def _due_expiration_warnings(self, today: date) -> list[tuple[SubscriptionModel, list[str]]]:
        setting = self._get_setting("expiration_warning")
        if setting is None or not setting.is_enabled:
            return []

        subs = self.db.query(SubscriptionModel).filter(
            SubscriptionModel.status == SUBSCRIPTION_STATUS_ACTIVE,
            SubscriptionModel.next_billing_date == today - timedelta(days=1),
        ).all()

        channels = setting.notification_channels or list(DEFAULT_NOTIFICATION_CHANNELS)
        day_start = datetime.combine(today, time.min)
        return [
            (sub, channels) for sub in subs
            if not self._already_sent(sub.id, "expiration_warning", day_start)
        ]

    def _already_sent(self, subscription_id: int, notification_type: str, since: datetime) -> bool:
        return (
            self.db.query(NotificationHistory)
            .filter(
                NotificationHistory.subscription_id == subscription_id,
                NotificationHistory.notification_type == notification_type,
                NotificationHistory.status == "sent",
                NotificationHistory.created_at >= since,
            )
            .first()
            is not None
        )

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    def list_settings(self) -> list[NotificationSetting]:
        return self.db.query(NotificationSetting).order_by(NotificationSetting.id).all()

    def update_setting(
        self,
        notification_type: str,
        is_enabled: bool | None = None,
        advance_days: int | None = None,
        repeat_notification: bool | None = None,
        notification_channels: list[str] | None = None,
    ) -> NotificationSetting:
        if notification_type not in NOTIFICATION_TYPES:
            raise ValueError(f"Invalid notification type: {notification_type}")
        if advance_days is not None and advance_days < 1:
            raise ValueError("advance_days must be at least 1")

        setting = self._get_setting(notification_type)
        if setting is None:
            setting = NotificationSetting(notification_type=notification_type)
            self.db.add(setting)
        if is_enabled is not None:
            setting.is_enabled = is_enabled
        if advance_days is not None:
            setting.advance_days = advance_days
        if repeat_notification is not None:
            setting.repeat_notification = repeat_notification
        if notification_channels is not None:
            setting.notification_channels = list(notification_channels)
        self.db.commit()
        return setting

    def configure_channel(self, channel_type: str, config: dict, is_active: bool = True) -> NotificationChannel:
        channel = self.db.query(NotificationChannel).filter(
            NotificationChannel.channel_type == channel_type,
        ).first()
        if channel is None:
            channel = NotificationChannel(channel_type=channel_type)
            self.db.add(channel)
        channel.channel_config = dict(config)
        channel.is_active = is_active
        self.db.commit()
        logger.info("Channel %s configured (active=%s)", channel_type, is_active)
        return channel

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    def get_history(
        self,
        page: int = 1,
        limit: int = 20,
        status: str | None = None,
        notification_type: str | None = None,
    ) -> dict:
        q = self.db.query(NotificationHistory)
        if status:
            q = q.filter(NotificationHistory.status == status)
        if notification_type:
            q = q.filter(NotificationHistory.notification_type == notification_type)

        total = q.count()
        rows = (
            q.order_by(NotificationHistory.created_at.desc(), NotificationHistory.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return {
            "data": rows,
            "total": total,
            "page": page,
            "limit": limit,
            "total_pages": (total + limit - 1) // limit if limit else 0,
        }

    def get_stats(self) -> dict:
        by_status = dict(
            self.db.query(NotificationHistory.status, func.count(NotificationHistory.id))
            .group_by(NotificationHistory.status).all()
        )
        by_type = dict(
            self.db.query(NotificationHistory.notification_type, func.count(NotificationHistory.id))
            .group_by(NotificationHistory.notification_type).all()
        )
        by_channel = dict(
            self.db.query(NotificationHistory.channel_type, func.count(NotificationHistory.id))
            .group_by(NotificationHistory.channel_type).all()
        )
        return {
            "total": sum(by_status.values()),
            "sent": by_status.get("sent", 0),
            "failed": by_status.get("failed", 0),
            "by_type": by_type,
            "by_channel": by_channel,
        }

"""
Telegram delivery channel.

Sends rendered notification text through the Bot API. Never raises: every
outcome is reported as a DeliveryResult.
"""
import logging
from dataclasses import dataclass

import requests

from billflow.config import get_settings

logger = logging.getLogger(__name__)

_PLACEHOLDER_TOKEN = "your_telegram_bot_token_here"


@dataclass(frozen=True)
class DeliveryResult:
    success: bool
    error: str | None = None
    message_id: int | None = None


class TelegramSink:
    def __init__(self, bot_token: str | None = None, timeout: float = 5):
        self.bot_token = bot_token if bot_token is not None else get_settings().TELEGRAM_BOT_TOKEN
        self.timeout = timeout

    def is_configured(self) -> bool:
        return bool(self.bot_token) and self.bot_token != _PLACEHOLDER_TOKEN

    def send(self, recipient: str, message: str) -> DeliveryResult:
        if not self.is_configured():
            return DeliveryResult(success=False, error="Telegram Bot Token not configured")
        if not recipient:
            return DeliveryResult(success=False, error="Chat ID is required")

        try:
            resp = requests.post(
                f"https://api.telegram.org/bot{self.bot_token}/sendMessage",
                json={
                    "chat_id": recipient,
                    "text": message,
                    "parse_mode": "HTML",
                    "disable_web_page_preview": True,
                },
                timeout=self.timeout,
            )
            data = resp.json()
        except (requests.RequestException, ValueError) as e:
            logger.error("Telegram send failed: %s", e)
            return DeliveryResult(success=False, error=str(e))

        if resp.status_code != 200 or not data.get("ok"):
            error = data.get("description") or f"Telegram API error ({resp.status_code})"
            logger.error("Telegram API rejected message: %s", error)
            return DeliveryResult(success=False, error=error)

        return DeliveryResult(success=True, message_id=(data.get("result") or {}).get("message_id"))

import asyncio
import logging
import time

import requests

logger = logging.getLogger("Alerts")

ERROR_COOLDOWN_SEC = 300


class TelegramAlerter:
    """Fire-and-forget Telegram notifications. Disabled when token or chat id is unset."""

    def __init__(self, bot_token=None, chat_id=None):
        self.bot_token = bot_token
        self.chat_id = chat_id
        self._last_errors = {}

    @property
    def enabled(self):
        return bool(self.bot_token and self.chat_id)

    def send(self, msg, is_error=False):
        if not self.enabled:
            return False

        # Anti-spam: skip duplicate error alerts within the cooldown
        if is_error:
            error_key = msg[:100]
            now = time.time()
            if error_key in self._last_errors and (now - self._last_errors[error_key]) < ERROR_COOLDOWN_SEC:
                return False
            self._last_errors[error_key] = now

        try:
            url = f"https://api.telegram.org/bot{self.bot_token}/sendMessage"
            payload = {"chat_id": self.chat_id, "text": msg, "parse_mode": "HTML"}
            requests.post(url, json=payload, timeout=10)
            return True
        except requests.RequestException as e:
            logger.warning(f"⚠️ Telegram alert failed: {e}")
            return False

    async def send_async(self, msg, is_error=False):
        if not self.enabled:
            return False
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, lambda: self.send(msg, is_error))

"""Telegram delivery of stale-data alerts and vault reports."""
import asyncio
import logging
import ssl

import aiohttp
import certifi

from ..config import TelegramConfig

logger = logging.getLogger(__name__)

TELEGRAM_API = "https://api.telegram.org"
# Hard limit on sendMessage text length.
MAX_MESSAGE_LENGTH = 4096


def truncate_message(message: str, limit: int = MAX_MESSAGE_LENGTH) -> str:
    if len(message) <= limit:
        return message
    return message[: limit - 1] + "…"


class TelegramNotifier:
    """Alerts go to an unmuted bot, routine logs to a second (muted) one."""

    def __init__(self, config: TelegramConfig, timeout: int = 10) -> None:
        self.alert_bot_token = config.alert_bot_token
        self.log_bot_token = config.log_bot_token
        self.chat_id = config.chat_id
        self._timeout = aiohttp.ClientTimeout(total=timeout)

    async def _send_message(self, message: str, bot_token: str, silent: bool = False) -> bool:
        if not bot_token or not self.chat_id:
            logger.warning("Telegram bot token or chat id not configured")
            return False

        url = f"{TELEGRAM_API}/bot{bot_token}/sendMessage"
        payload = {
            "chat_id": self.chat_id,
            "text": truncate_message(message),
            "disable_notification": silent,
        }

        ssl_context = ssl.create_default_context(cafile=certifi.where())
        connector = aiohttp.TCPConnector(ssl=ssl_context)

        try:
            async with aiohttp.ClientSession(connector=connector, timeout=self._timeout) as session:
                async with session.post(url, json=payload) as response:
                    if response.status == 200:
                        return True
                    logger.error("Telegram sendMessage returned HTTP %s", response.status)
                    return False
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error("Telegram sendMessage failed: %s", e)
            return False

    async def send_alert(self, message: str, subject: str = "") -> bool:
        if await self._send_message(message, self.alert_bot_token, silent=False):
            logger.info("Telegram alert sent%s", f": {subject}" if subject else "")
            return True
        return False

    async def send_log(self, message: str, silent: bool = True) -> bool:
        if await self._send_message(message, self.log_bot_token, silent=silent):
            logger.info("Telegram log sent")
            return True
        return False

"""Unit tests for notification services."""
from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import aiohttp
import pytest

from vault_reconciler.config import TelegramConfig
from vault_reconciler.notifications.telegram import (
    MAX_MESSAGE_LENGTH,
    TelegramNotifier,
    truncate_message,
)


@pytest.fixture()
def telegram_notifier() -> TelegramNotifier:
    return TelegramNotifier(
        TelegramConfig(
            enabled=True,
            alert_bot_token="alert-tok",
            log_bot_token="log-tok",
            chat_id="12345",
        )
    )


@pytest.fixture()
def telegram_notifier_unconfigured() -> TelegramNotifier:
    return TelegramNotifier(
        TelegramConfig(enabled=True, alert_bot_token="", log_bot_token="", chat_id="")
    )


def _mock_session(status: int = 200, error: Exception | None = None):
    mock_response = AsyncMock()
    mock_response.status = status
    mock_response.__aenter__ = AsyncMock(return_value=mock_response)
    mock_response.__aexit__ = AsyncMock(return_value=None)

    mock_session = AsyncMock()
    if error:
        mock_session.post = MagicMock(side_effect=error)
    else:
        mock_session.post = MagicMock(return_value=mock_response)
    mock_session.__aenter__ = AsyncMock(return_value=mock_session)
    mock_session.__aexit__ = AsyncMock(return_value=None)
    return mock_session


class TestTelegramNotifier:
    @pytest.mark.asyncio
    async def test_send_alert_uses_alert_bot(self, telegram_notifier: TelegramNotifier) -> None:
        mock_session = _mock_session(200)

        with patch("vault_reconciler.notifications.telegram.aiohttp.ClientSession", return_value=mock_session):
            with patch("vault_reconciler.notifications.telegram.aiohttp.TCPConnector"):
                result = await telegram_notifier.send_alert("data stale", subject="stale")

        assert result is True
        url = mock_session.post.call_args[0][0]
        payload = mock_session.post.call_args.kwargs["json"]
        assert "botalert-tok" in url
        assert payload["chat_id"] == "12345"
        assert payload["disable_notification"] is False

    @pytest.mark.asyncio
    async def test_send_alert_failure(self, telegram_notifier: TelegramNotifier) -> None:
        mock_session = _mock_session(403)

        with patch("vault_reconciler.notifications.telegram.aiohttp.ClientSession", return_value=mock_session):
            with patch("vault_reconciler.notifications.telegram.aiohttp.TCPConnector"):
                result = await telegram_notifier.send_alert("test alert")

        assert result is False

    @pytest.mark.asyncio
    async def test_send_log_is_silent_by_default(self, telegram_notifier: TelegramNotifier) -> None:
        mock_session = _mock_session(200)

        with patch("vault_reconciler.notifications.telegram.aiohttp.ClientSession", return_value=mock_session):
            with patch("vault_reconciler.notifications.telegram.aiohttp.TCPConnector"):
                result = await telegram_notifier.send_log("recovered")

        assert result is True
        assert "botlog-tok" in mock_session.post.call_args[0][0]
        assert mock_session.post.call_args.kwargs["json"]["disable_notification"] is True

    @pytest.mark.asyncio
    async def test_network_error_returns_false(self, telegram_notifier: TelegramNotifier) -> None:
        mock_session = _mock_session(error=aiohttp.ClientConnectionError("down"))

        with patch("vault_reconciler.notifications.telegram.aiohttp.ClientSession", return_value=mock_session):
            with patch("vault_reconciler.notifications.telegram.aiohttp.TCPConnector"):
                result = await telegram_notifier.send_alert("test")

        assert result is False

    @pytest.mark.asyncio
    async def test_unconfigured_returns_false(
        self, telegram_notifier_unconfigured: TelegramNotifier
    ) -> None:
        assert await telegram_notifier_unconfigured.send_alert("test") is False
        assert await telegram_notifier_unconfigured.send_log("test") is False


class TestTruncateMessage:
    def test_short_message_untouched(self) -> None:
        assert truncate_message("hi") == "hi"

    def test_long_message_truncated(self) -> None:
        text = truncate_message("x" * (MAX_MESSAGE_LENGTH + 10))
        assert len(text) == MAX_MESSAGE_LENGTH
        assert text.endswith("…")

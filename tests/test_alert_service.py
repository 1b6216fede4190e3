import asyncio
from unittest.mock import AsyncMock, MagicMock, Mock, patch

import httpx

from atende.services.alert_service import alert_error, alert_warning, send_alert


def mock_client_with(mock_client_class, status_code=200):
    mock_client = MagicMock()
    mock_client.post = AsyncMock(return_value=Mock(status_code=status_code))
    mock_client_class.return_value.__aenter__.return_value = mock_client
    return mock_client


class TestSendAlert:
    @patch("atende.services.alert_service.ALERT_BOT_TOKEN", None)
    @patch("atende.services.alert_service.ALERT_CHAT_ID", None)
    def test_returns_false_when_not_configured(self):
        assert asyncio.run(send_alert("ERROR", "Test message")) is False

    @patch("atende.services.alert_service.ALERT_BOT_TOKEN", "test-token")
    @patch("atende.services.alert_service.ALERT_CHAT_ID", "test-chat")
    @patch("atende.services.alert_service.httpx.AsyncClient")
    def test_sends_alert_to_telegram(self, mock_client_class):
        mock_client = mock_client_with(mock_client_class)

        result = asyncio.run(send_alert("ERROR", "Test error message"))

        assert result is True
        mock_client.post.assert_awaited_once()
        call_args = mock_client.post.call_args
        assert "api.telegram.org" in call_args[0][0]
        json_data = call_args[1]["json"]
        assert json_data["chat_id"] == "test-chat"
        assert "ERROR" in json_data["text"]

    @patch("atende.services.alert_service.ALERT_BOT_TOKEN", "test-token")
    @patch("atende.services.alert_service.ALERT_CHAT_ID", "test-chat")
    @patch("atende.services.alert_service.httpx.AsyncClient")
    def test_includes_context_in_message(self, mock_client_class):
        mock_client = mock_client_with(mock_client_class)

        asyncio.run(send_alert("ERROR", "Test message", {"tenant_id": 7, "error": "boom"}))

        text = mock_client.post.call_args[1]["json"]["text"]
        assert "tenant_id: 7" in text
        assert "boom" in text

    @patch("atende.services.alert_service.ALERT_BOT_TOKEN", "test-token")
    @patch("atende.services.alert_service.ALERT_CHAT_ID", "test-chat")
    @patch("atende.services.alert_service.httpx.AsyncClient")
    def test_returns_false_on_telegram_error(self, mock_client_class):
        mock_client_with(mock_client_class, status_code=400)
        assert asyncio.run(send_alert("ERROR", "Test message")) is False

    @patch("atende.services.alert_service.ALERT_BOT_TOKEN", "test-token")
    @patch("atende.services.alert_service.ALERT_CHAT_ID", "test-chat")
    @patch("atende.services.alert_service.httpx.AsyncClient")
    def test_returns_false_on_network_error(self, mock_client_class):
        mock_client = MagicMock()
        mock_client.post = AsyncMock(side_effect=httpx.ConnectError("Network error"))
        mock_client_class.return_value.__aenter__.return_value = mock_client

        assert asyncio.run(send_alert("ERROR", "Test message")) is False


class TestAlertHelpers:
    @patch("atende.services.alert_service.send_alert", new_callable=AsyncMock)
    def test_alert_error(self, mock_send):
        asyncio.run(alert_error("Error message", {"key": "value"}))
        mock_send.assert_awaited_once_with("ERROR", "Error message", {"key": "value"})

    @patch("atende.services.alert_service.send_alert", new_callable=AsyncMock)
    def test_alert_warning(self, mock_send):
        asyncio.run(alert_warning("Warning message"))
        mock_send.assert_awaited_once_with("WARNING", "Warning message", None)

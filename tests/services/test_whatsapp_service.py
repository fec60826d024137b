"""
Tests for the WhatsApp Cloud API service.
"""

import pytest
from unittest.mock import patch, MagicMock, AsyncMock

import httpx

from app.exceptions import ExternalProviderError, MissingCredentialsError, ErrorCode
from app.services.whatsapp_service import WhatsAppService, MockWhatsAppService


def mock_async_client(response=None, side_effect=None):
    client = MagicMock()
    client.post = AsyncMock(return_value=response, side_effect=side_effect)
    client_class = MagicMock()
    client_class.return_value.__aenter__.return_value = client
    client_class.return_value.__aexit__.return_value = False
    return client_class, client


def configured_service() -> WhatsAppService:
    return WhatsAppService(
        api_token="token-123",
        phone_id="1098765",
        api_version="v17.0",
        base_url="https://graph.facebook.com/",
        timeout=5.0,
    )


class TestWhatsAppConfiguration:
    """Credential and status handling."""

    def test_messages_url(self):
        assert configured_service().messages_url == "https://graph.facebook.com/v17.0/1098765/messages"

    def test_status_lists_missing_credentials(self):
        service = WhatsAppService(api_token="", phone_id="")
        status = service.get_status()

        assert service.is_configured is False
        assert status["configured"] is False
        assert status["missing"] == ["WHATSAPP_API_TOKEN", "WHATSAPP_PHONE_ID"]

    @pytest.mark.asyncio
    async def test_send_without_credentials(self):
        service = WhatsAppService(api_token="", phone_id="1098765")

        with pytest.raises(MissingCredentialsError) as exc_info:
            await service.send_template("5512345678", params=["a"])

        assert exc_info.value.missing == ["WHATSAPP_API_TOKEN"]


class TestTemplatePayload:
    """Cloud API request body."""

    def test_payload_shape(self):
        payload = WhatsAppService.build_template_payload(
            "5215512345678", "new_survey_alertt", "es_MX", ["La Cantina", 2, "Tardó mucho"]
        )

        assert payload == {
            "messaging_product": "whatsapp",
            "to": "5215512345678",
            "type": "template",
            "template": {
                "name": "new_survey_alertt",
                "language": {"code": "es_MX"},
                "components": [
                    {
                        "type": "body",
                        "parameters": [
                            {"type": "text", "text": "La Cantina"},
                            {"type": "text", "text": "2"},
                            {"type": "text", "text": "Tardó mucho"},
                        ],
                    }
                ],
            },
        }


class TestSendTemplate:
    """send_template against a mocked Graph API."""

    @pytest.mark.asyncio
    async def test_success(self):
        client_class, client = mock_async_client(
            response=httpx.Response(200, json={"messages": [{"id": "wamid.HBgM"}]})
        )
        with patch("app.services.whatsapp_service.httpx.AsyncClient", client_class):
            result = await configured_service().send_template(
                "55 1234 5678", template_name="recovery_offer_v1", language_code="es_MX", params=["Ana"]
            )

        assert result == {"success": True, "status_code": 200, "message_id": "wamid.HBgM", "to": "5215512345678"}

        args, kwargs = client.post.call_args
        assert args[0] == "https://graph.facebook.com/v17.0/1098765/messages"
        assert kwargs["headers"]["Authorization"] == "Bearer token-123"
        assert kwargs["json"]["to"] == "5215512345678"
        assert kwargs["json"]["template"]["name"] == "recovery_offer_v1"
        client_class.assert_called_once_with(timeout=5.0)

    @pytest.mark.asyncio
    async def test_provider_rejection(self):
        body = {"error": {"message": "Template name does not exist", "code": 132001}}
        client_class, _ = mock_async_client(response=httpx.Response(400, json=body))

        with patch("app.services.whatsapp_service.httpx.AsyncClient", client_class):
            with pytest.raises(ExternalProviderError) as exc_info:
                await configured_service().send_template("5512345678")

        error = exc_info.value
        assert error.code == ErrorCode.WHATSAPP_ERROR
        assert error.provider_status == 400
        assert error.payload == body
        assert "Template name does not exist" in error.detail

    @pytest.mark.asyncio
    async def test_non_json_error_body(self):
        client_class, _ = mock_async_client(response=httpx.Response(503, text="Service Unavailable"))

        with patch("app.services.whatsapp_service.httpx.AsyncClient", client_class):
            with pytest.raises(ExternalProviderError) as exc_info:
                await configured_service().send_template("5512345678")

        assert exc_info.value.payload == {"raw": "Service Unavailable"}
        assert "HTTP 503" in exc_info.value.detail

    @pytest.mark.asyncio
    async def test_timeout(self):
        client_class, _ = mock_async_client(side_effect=httpx.ConnectTimeout("timed out"))

        with patch("app.services.whatsapp_service.httpx.AsyncClient", client_class):
            with pytest.raises(ExternalProviderError) as exc_info:
                await configured_service().send_template("5512345678")

        assert "timed out" in exc_info.value.detail


class TestMockWhatsAppService:
    """The recording mock used by the rest of the suite."""

    @pytest.mark.asyncio
    async def test_records_sends(self):
        service = MockWhatsAppService()
        result = await service.send_template("5512345678", params=["a", 1])

        assert result["success"] is True
        assert result["message_id"].startswith("wamid.mock-")
        assert service._sent_messages[0]["to"] == "5215512345678"
        assert service._sent_messages[0]["params"] == ["a", "1"]

    @pytest.mark.asyncio
    async def test_failing_phone(self):
        service = MockWhatsAppService(failing_phones=["+52 55 0000 0000"])

        with pytest.raises(ExternalProviderError):
            await service.send_template("5500000000")
        assert service._sent_messages == []

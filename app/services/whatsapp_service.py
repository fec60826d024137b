"""WhatsApp Service - Meta WhatsApp Cloud API integration for template messages.

Features:
- Send approved template messages with positional body parameters
- Phone numbers normalized to the Mexican mobile format before sending
- Provider rejections raised as ExternalProviderError with the provider payload
- No external SDK required (uses httpx)
"""

from app.config import settings
from app.exceptions import ExternalProviderError, MissingCredentialsError, ErrorCode
from app.utils.phone_normalization import normalize_phone
import logging
import uuid
from typing import Optional, Dict, Any, Sequence
import httpx

logger = logging.getLogger(__name__)


class WhatsAppService:
    """Service for sending WhatsApp template messages via the Cloud API."""

    def __init__(
        self,
        api_token: Optional[str] = None,
        phone_id: Optional[str] = None,
        api_version: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self.api_token = api_token if api_token is not None else settings.WHATSAPP_API_TOKEN
        self.phone_id = phone_id if phone_id is not None else settings.WHATSAPP_PHONE_ID
        self.api_version = api_version or settings.WHATSAPP_API_VERSION
        self.base_url = (base_url or settings.WHATSAPP_API_BASE_URL).rstrip("/")
        self.timeout = timeout or settings.WHATSAPP_TIMEOUT_SECONDS

    @property
    def is_configured(self) -> bool:
        return bool(self.api_token) and bool(self.phone_id)

    @property
    def messages_url(self) -> str:
        return f"{self.base_url}/{self.api_version}/{self.phone_id}/messages"

    def get_status(self) -> Dict[str, Any]:
        """Get WhatsApp configuration status."""
        missing = self._missing_credentials()
        return {
            "configured": not missing,
            "provider": "whatsapp_cloud",
            "api_version": self.api_version,
            "missing": missing,
        }

    def _missing_credentials(self) -> list[str]:
        missing = []
        if not self.api_token:
            missing.append("WHATSAPP_API_TOKEN")
        if not self.phone_id:
            missing.append("WHATSAPP_PHONE_ID")
        return missing

    @staticmethod
    def build_template_payload(
        phone: str,
        template_name: str,
        language_code: str,
        params: Sequence[str] = (),
    ) -> Dict[str, Any]:
        """Cloud API body for a template message with text body parameters."""
        return {
            "messaging_product": "whatsapp",
            "to": phone,
            "type": "template",
            "template": {
                "name": template_name,
                "language": {"code": language_code},
                "components": [
                    {
                        "type": "body",
                        "parameters": [{"type": "text", "text": str(p)} for p in params],
                    }
                ],
            },
        }

    async def send_template(
        self,
        phone: str,
        template_name: Optional[str] = None,
        language_code: Optional[str] = None,
        params: Sequence[str] = (),
    ) -> Dict[str, Any]:
        """
        Send a template message.

        Args:
            phone: Recipient phone in any common format
            template_name: Approved template name (defaults to the alert template)
            language_code: Template language (defaults to WHATSAPP_LANGUAGE_CODE)
            params: Positional body parameters

        Returns:
            Dict with success, status_code, message_id and the normalized recipient

        Raises:
            MissingCredentialsError: token or phone id not configured
            ExternalProviderError: non-2xx response, timeout or transport failure
        """
        missing = self._missing_credentials()
        if missing:
            logger.warning(f"WhatsApp send skipped, missing {missing}")
            raise MissingCredentialsError("WhatsApp", missing)

        template_name = template_name or settings.WHATSAPP_ALERT_TEMPLATE
        language_code = language_code or settings.WHATSAPP_LANGUAGE_CODE
        to = normalize_phone(phone)
        payload = self.build_template_payload(to, template_name, language_code, params)

        headers = {
            "Authorization": f"Bearer {self.api_token}",
            "Content-Type": "application/json",
        }

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(self.messages_url, json=payload, headers=headers)
        except httpx.TimeoutException as e:
            logger.error(f"WhatsApp API request timed out for {to} ({template_name})")
            raise ExternalProviderError("WhatsApp", "request timed out", code=ErrorCode.WHATSAPP_ERROR) from e
        except httpx.HTTPError as e:
            logger.error(f"WhatsApp API request failed for {to} ({template_name}): {e}")
            raise ExternalProviderError("WhatsApp", str(e), code=ErrorCode.WHATSAPP_ERROR) from e

        try:
            body = response.json()
        except ValueError:
            body = {"raw": response.text}

        if not response.is_success:
            logger.error(
                "WhatsApp API error",
                extra={
                    "to": to,
                    "template": template_name,
                    "status_code": response.status_code,
                    "error": body,
                },
            )
            message = (body.get("error") or {}).get("message") if isinstance(body, dict) else None
            raise ExternalProviderError(
                "WhatsApp",
                message or f"HTTP {response.status_code}",
                payload=body,
                status=response.status_code,
                code=ErrorCode.WHATSAPP_ERROR,
            )

        messages = body.get("messages") if isinstance(body, dict) else None
        message_id = messages[0].get("id") if messages else None
        logger.info(f"WhatsApp template {template_name} sent to {to}: {message_id}")

        return {
            "success": True,
            "status_code": response.status_code,
            "message_id": message_id,
            "to": to,
        }


class MockWhatsAppService(WhatsAppService):
    """Mock WhatsApp service for testing. Records sends instead of calling the API."""

    def __init__(self, failing_phones: Sequence[str] = ()):
        self.api_token = "mock-token"
        self.phone_id = "mock-phone-id"
        self.api_version = "v17.0"
        self.base_url = "https://graph.facebook.test"
        self.timeout = 1.0
        self.failing_phones = {normalize_phone(p) for p in failing_phones}
        self._sent_messages = []

    async def send_template(
        self,
        phone: str,
        template_name: Optional[str] = None,
        language_code: Optional[str] = None,
        params: Sequence[str] = (),
    ) -> Dict[str, Any]:
        """Mock sending a template message."""
        to = normalize_phone(phone)
        template_name = template_name or settings.WHATSAPP_ALERT_TEMPLATE
        language_code = language_code or settings.WHATSAPP_LANGUAGE_CODE

        if to in self.failing_phones:
            logger.info(f"Mock WhatsApp rejecting {to}")
            raise ExternalProviderError(
                "WhatsApp",
                "Recipient phone number not in allowed list",
                payload={"error": {"code": 131030}},
                status=400,
                code=ErrorCode.WHATSAPP_ERROR,
            )

        message_id = f"wamid.mock-{uuid.uuid4().hex[:16]}"
        self._sent_messages.append(
            {
                "to": to,
                "template": template_name,
                "language": language_code,
                "params": [str(p) for p in params],
                "message_id": message_id,
            }
        )

        logger.info(f"Mock WhatsApp {template_name} sent to {to}")
        return {
            "success": True,
            "status_code": 200,
            "message_id": message_id,
            "to": to,
        }

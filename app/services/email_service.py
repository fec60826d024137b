"""Email Service - crisis alert emails through Brevo's transactional API.

Talks to Brevo over plain httpx; results are dicts so NotificationDispatcher
can fold them into its outcome list without catching anything.
"""

import html
import logging
import uuid
from typing import Optional, Dict, Any

import httpx

from app.config import settings

logger = logging.getLogger(__name__)

BREVO_API_URL = "https://api.brevo.com/v3/smtp/email"
BREVO_TIMEOUT_SECONDS = 30.0


def render_crisis_email(
    survey_title: str,
    customer_name: str,
    rating: int,
    comment: str,
    context: Optional[str] = None,
    business_name: Optional[str] = None,
) -> tuple[str, str, str]:
    """Build (subject, text, html) for a crisis alert."""
    subject = f"🚨 Alerta de Crisis: {survey_title}"
    lines = [
        f"{business_name or 'Tu negocio'} recibió una calificación de {rating} ⭐ en \"{survey_title}\".",
        "",
        f"Cliente: {customer_name}",
    ]
    if context:
        lines.append(f"Mesa: {context}")
    lines.append(f"Comentario: \"{comment}\"")
    text = "\n".join(lines)

    paragraphs = "".join(f"<p>{html.escape(line)}</p>" for line in lines if line)
    html_body = f"<html><body><h2 style=\"color:#dc2626\">{html.escape(subject)}</h2>{paragraphs}</body></html>"
    return subject, text, html_body


def _failed(error: str, status_code: Optional[int] = None) -> Dict[str, Any]:
    return {"success": False, "error": error, "status_code": status_code, "message_id": None}


class EmailService:
    """Sends email via Brevo. Never raises for delivery problems."""

    provider = "brevo"

    def __init__(self):
        self.api_key = settings.BREVO_API_KEY
        self.from_address = settings.EMAIL_FROM_ADDRESS
        self.from_name = settings.EMAIL_FROM_NAME

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key) and bool(self.from_address)

    def get_status(self) -> Dict[str, Any]:
        status = {"configured": self.is_configured, "connected": self.is_configured, "provider": self.provider}
        if not self.is_configured:
            status["message"] = "Brevo API key not configured. Set BREVO_API_KEY environment variable."
            return status
        status.update(
            from_address=self.from_address,
            from_name=self.from_name,
            message="Brevo email service configured",
        )
        return status

    def _build_payload(
        self, to: str, subject: str, body: str, html_body: Optional[str], reply_to: Optional[str]
    ) -> Dict[str, Any]:
        payload = {
            "sender": {"name": self.from_name, "email": self.from_address},
            "to": [{"email": to}],
            "subject": subject,
            "textContent": body,
            "htmlContent": html_body or "<html><body><p>{}</p></body></html>".format(body.replace("\n", "<br>")),
        }
        if reply_to:
            payload["replyTo"] = {"email": reply_to}
        return payload

    async def send_email(
        self,
        to: str,
        subject: str,
        body: str,
        html_body: Optional[str] = None,
        reply_to: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Send one email.

        Returns {"success", "status_code", "message_id"} plus "error" on failure.
        Without an API key nothing is sent and success is False.
        """
        if not self.api_key:
            logger.error("Brevo API key not configured, email to %s not sent", to)
            return _failed("Brevo API key not configured")

        headers = {"accept": "application/json", "api-key": self.api_key, "content-type": "application/json"}
        try:
            async with httpx.AsyncClient() as client:
                response = await client.post(
                    BREVO_API_URL,
                    json=self._build_payload(to, subject, body, html_body, reply_to),
                    headers=headers,
                    timeout=BREVO_TIMEOUT_SECONDS,
                )
        except httpx.TimeoutException:
            logger.error("Brevo request timed out sending to %s", to)
            return _failed("Brevo API request timed out")
        except httpx.HTTPError as e:
            logger.error(f"Brevo transport error sending to {to}: {e}")
            return _failed(str(e))

        if response.status_code not in (200, 201):
            logger.error(
                "Brevo API error",
                extra={"status_code": response.status_code, "error": response.text[:500]},
            )
            return _failed(f"Brevo API error: {response.text}", response.status_code)

        message_id = response.json().get("messageId")
        logger.info("Email sent via Brevo", extra={"subject": subject[:50], "message_id": message_id})
        return {"success": True, "status_code": response.status_code, "message_id": message_id}

    async def send_crisis_alert(
        self,
        to: str,
        survey_title: str,
        customer_name: str,
        rating: int,
        comment: str,
        context: Optional[str] = None,
        business_name: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Send the crisis alert email for a low-rated response."""
        subject, text, html_body = render_crisis_email(
            survey_title, customer_name, rating, comment, context, business_name
        )
        return await self.send_email(to=to, subject=subject, body=text, html_body=html_body)


class MockEmailService(EmailService):
    """Records emails instead of sending them; used in tests and local runs."""

    provider = "mock"

    def __init__(self):
        self.api_key = "mock-key"
        self.from_address = "test@example.com"
        self.from_name = "Test Sender"
        self._sent_emails = []

    def get_status(self) -> Dict[str, Any]:
        status = super().get_status()
        status["message"] = "Mock email service (emails not actually sent)"
        return status

    async def send_email(
        self,
        to: str,
        subject: str,
        body: str,
        html_body: Optional[str] = None,
        reply_to: Optional[str] = None,
    ) -> Dict[str, Any]:
        message_id = f"mock-{uuid.uuid4().hex[:16]}"
        self._sent_emails.append(
            {
                "to": to,
                "subject": subject,
                "body": body,
                "html_body": html_body,
                "reply_to": reply_to,
                "message_id": message_id,
            }
        )
        logger.info(f"Mock email sent to {to}: {subject}")
        return {"success": True, "status_code": 201, "message_id": message_id}

"""
Notification Dispatcher

Delivers engine decisions to people:
- notify_internal: in-app Notification rows for the tenant's dashboard
- send_templated: WhatsApp template messages, one isolated send per phone
- send_email_alerts: crisis emails through Brevo, one isolated send per address

Nothing here raises for a delivery failure. Every recipient gets an outcome
in the returned DispatchReport and failures are logged with the recipient,
template and provider payload.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError

from app.config import settings
from app.exceptions import ExternalProviderError, MissingCredentialsError
from app.models.notification import Notification
from app.services.email_service import EmailService
from app.services.feedback.repository import FeedbackRepository
from app.services.whatsapp_service import WhatsAppService
from app.utils.phone_normalization import collect_alert_phones

logger = logging.getLogger(__name__)

BODY_PREVIEW_LENGTH = 60


def truncate_body(text: Optional[str], limit: int = BODY_PREVIEW_LENGTH) -> str:
    """Template bodies are capped at `limit` characters, ellipsis included."""
    text = (text or "").strip()
    if len(text) <= limit:
        return text
    return text[: limit - 3].rstrip() + "..."


@dataclass
class DeliveryOutcome:
    recipient: str
    channel: str
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None
    status_code: Optional[int] = None


@dataclass
class DispatchReport:
    """Per-recipient outcomes of one dispatch batch."""

    outcomes: list[DeliveryOutcome] = field(default_factory=list)

    @property
    def sent(self) -> list[DeliveryOutcome]:
        return [o for o in self.outcomes if o.success]

    @property
    def failed(self) -> list[DeliveryOutcome]:
        return [o for o in self.outcomes if not o.success]

    @property
    def attempted(self) -> int:
        return len(self.outcomes)

    def extend(self, other: "DispatchReport") -> "DispatchReport":
        self.outcomes.extend(other.outcomes)
        return self

    def to_dict(self) -> dict:
        return {
            "attempted": self.attempted,
            "sent": len(self.sent),
            "failed": len(self.failed),
            "outcomes": [o.__dict__ for o in self.outcomes],
        }


class NotificationDispatcher:
    """Delivers internal notifications, WhatsApp templates and alert emails."""

    def __init__(
        self,
        repository: FeedbackRepository,
        whatsapp: Optional[WhatsAppService] = None,
        email: Optional[EmailService] = None,
    ):
        self.repository = repository
        self.whatsapp = whatsapp or WhatsAppService()
        self.email = email or EmailService()

    async def notify_internal(
        self,
        tenant_id: str,
        type: str,
        title: str,
        message: str,
        meta: Optional[dict] = None,
    ) -> Optional[Notification]:
        """Persist an in-app notification. Storage failures are logged, not raised."""
        try:
            notification = await self.repository.create_notification(
                tenant_id=tenant_id,
                type=type,
                title=title,
                message=message,
                meta=meta,
            )
        except SQLAlchemyError as e:
            logger.error(f"Failed to store {type} notification for tenant {tenant_id}: {e}", exc_info=True)
            await self.repository.db.rollback()
            return None

        logger.info(f"{type} notification stored for tenant {tenant_id}: {title}")
        return notification

    async def send_templated(
        self,
        phones: Sequence[str],
        params: Sequence[str],
        template_name: Optional[str] = None,
        language_code: Optional[str] = None,
    ) -> DispatchReport:
        """
        Send one template to every phone concurrently.

        Phones are normalized and deduplicated first; a rejection for one
        number never stops the others.
        """
        recipients = collect_alert_phones(phones)
        template_name = template_name or settings.WHATSAPP_ALERT_TEMPLATE
        language_code = language_code or settings.WHATSAPP_LANGUAGE_CODE

        if not recipients:
            return DispatchReport()

        outcomes = await asyncio.gather(
            *(self._send_one(phone, template_name, language_code, params) for phone in recipients)
        )
        report = DispatchReport(outcomes=list(outcomes))
        logger.info(
            f"Template {template_name}: {len(report.sent)}/{report.attempted} delivered"
        )
        return report

    async def _send_one(
        self, phone: str, template_name: str, language_code: str, params: Sequence[str]
    ) -> DeliveryOutcome:
        try:
            result = await self.whatsapp.send_template(
                phone, template_name=template_name, language_code=language_code, params=params
            )
        except ExternalProviderError as e:
            logger.warning(
                f"WhatsApp send failed to {phone} ({template_name}): {e.detail}",
                extra={"recipient": phone, "template": template_name, "provider_payload": e.payload},
            )
            return DeliveryOutcome(
                recipient=phone, channel="whatsapp", success=False,
                error=e.detail, status_code=e.provider_status,
            )
        except MissingCredentialsError as e:
            logger.warning(f"WhatsApp send to {phone} skipped: {e.detail}")
            return DeliveryOutcome(recipient=phone, channel="whatsapp", success=False, error=e.detail)
        except Exception as e:
            logger.error(f"Unexpected WhatsApp error sending to {phone} ({template_name}): {e}", exc_info=True)
            return DeliveryOutcome(recipient=phone, channel="whatsapp", success=False, error=str(e))

        return DeliveryOutcome(
            recipient=result.get("to", phone),
            channel="whatsapp",
            success=True,
            message_id=result.get("message_id"),
            status_code=result.get("status_code"),
        )

    async def send_email_alerts(
        self,
        emails: Sequence[str],
        survey_title: str,
        customer_name: str,
        rating: int,
        comment: str,
        context: Optional[str] = None,
        business_name: Optional[str] = None,
    ) -> DispatchReport:
        """Send the crisis email to each address; each address is isolated."""
        addresses = list(dict.fromkeys(e.strip() for e in emails or [] if e and e.strip()))
        if not addresses:
            return DispatchReport()

        async def send(address: str) -> DeliveryOutcome:
            try:
                result = await self.email.send_crisis_alert(
                    to=address,
                    survey_title=survey_title,
                    customer_name=customer_name,
                    rating=rating,
                    comment=comment,
                    context=context,
                    business_name=business_name,
                )
            except Exception as e:
                logger.error(f"Unexpected email error sending to {address}: {e}", exc_info=True)
                return DeliveryOutcome(recipient=address, channel="email", success=False, error=str(e))

            if not result.get("success"):
                logger.warning(f"Crisis email to {address} failed: {result.get('error')}")
            return DeliveryOutcome(
                recipient=address,
                channel="email",
                success=bool(result.get("success")),
                message_id=result.get("message_id"),
                error=result.get("error"),
                status_code=result.get("status_code"),
            )

        outcomes = await asyncio.gather(*(send(a) for a in addresses))
        return DispatchReport(outcomes=list(outcomes))

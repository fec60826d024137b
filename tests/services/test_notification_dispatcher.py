"""
Tests for the notification dispatcher.
"""

import pytest
from unittest.mock import AsyncMock

from sqlalchemy.exc import OperationalError

from app.config import settings
from app.services.email_service import MockEmailService
from app.services.feedback.repository import FeedbackRepository
from app.services.notification_dispatcher import NotificationDispatcher, truncate_body, BODY_PREVIEW_LENGTH
from app.services.whatsapp_service import MockWhatsAppService


class TestTruncateBody:
    """Template body preview."""

    def test_short_text_unchanged(self):
        assert truncate_body("Tardó mucho") == "Tardó mucho"

    def test_long_text_capped(self):
        text = "a" * 100
        preview = truncate_body(text)

        assert len(preview) == BODY_PREVIEW_LENGTH
        assert preview.endswith("...")

    def test_empty(self):
        assert truncate_body(None) == ""


class TestSendTemplated:
    """WhatsApp fan-out."""

    @pytest.mark.asyncio
    async def test_dedup_across_formats(self, test_db):
        whatsapp = MockWhatsAppService()
        dispatcher = NotificationDispatcher(FeedbackRepository(test_db), whatsapp=whatsapp, email=MockEmailService())

        report = await dispatcher.send_templated(
            ["5512345678", "5598765432", "+52 55 1234 5678"], ["Negocio", "2", "Tardó mucho"]
        )

        assert report.attempted == 2
        assert len(report.sent) == 2
        assert sorted(m["to"] for m in whatsapp._sent_messages) == ["5215512345678", "5215598765432"]
        assert all(m["template"] == settings.WHATSAPP_ALERT_TEMPLATE for m in whatsapp._sent_messages)

    @pytest.mark.asyncio
    async def test_one_rejection_does_not_stop_others(self, test_db):
        whatsapp = MockWhatsAppService(failing_phones=["5598765432"])
        dispatcher = NotificationDispatcher(FeedbackRepository(test_db), whatsapp=whatsapp, email=MockEmailService())

        report = await dispatcher.send_templated(["5512345678", "5598765432", "5511112222"], ["x"])

        assert report.attempted == 3
        assert len(report.sent) == 2
        assert [o.recipient for o in report.failed] == ["5215598765432"]
        assert report.failed[0].status_code == 400

    @pytest.mark.asyncio
    async def test_unexpected_error_is_contained(self, test_db):
        whatsapp = MockWhatsAppService()
        whatsapp.send_template = AsyncMock(side_effect=RuntimeError("socket closed"))
        dispatcher = NotificationDispatcher(FeedbackRepository(test_db), whatsapp=whatsapp, email=MockEmailService())

        report = await dispatcher.send_templated(["5512345678"], ["x"])

        assert report.failed[0].error == "socket closed"

    @pytest.mark.asyncio
    async def test_no_phones(self, test_db):
        dispatcher = NotificationDispatcher(FeedbackRepository(test_db), whatsapp=MockWhatsAppService())
        report = await dispatcher.send_templated(["", None], ["x"])

        assert report.attempted == 0
        assert report.to_dict() == {"attempted": 0, "sent": 0, "failed": 0, "outcomes": []}


class TestSendEmailAlerts:
    """Crisis email fan-out."""

    @pytest.mark.asyncio
    async def test_each_address_once(self, test_db):
        email = MockEmailService()
        dispatcher = NotificationDispatcher(FeedbackRepository(test_db), whatsapp=MockWhatsAppService(), email=email)

        report = await dispatcher.send_email_alerts(
            ["a@example.com", " a@example.com ", "b@example.com", ""],
            survey_title="Encuesta",
            customer_name="Ana",
            rating=1,
            comment="Frío",
        )

        assert report.attempted == 2
        assert [e["to"] for e in email._sent_emails] == ["a@example.com", "b@example.com"]

    @pytest.mark.asyncio
    async def test_failed_email_reported(self, test_db):
        email = MockEmailService()
        email.send_email = AsyncMock(return_value={"success": False, "error": "quota", "status_code": 429, "message_id": None})
        dispatcher = NotificationDispatcher(FeedbackRepository(test_db), whatsapp=MockWhatsAppService(), email=email)

        report = await dispatcher.send_email_alerts(
            ["a@example.com"], survey_title="Encuesta", customer_name="Ana", rating=1, comment="Frío"
        )

        assert report.failed[0].error == "quota"
        assert report.failed[0].status_code == 429


class TestNotifyInternal:
    """In-app notifications."""

    @pytest.mark.asyncio
    async def test_stores_notification(self, test_db):
        dispatcher = NotificationDispatcher(FeedbackRepository(test_db), whatsapp=MockWhatsAppService())

        notification = await dispatcher.notify_internal(
            "tenant-1", "CRISIS", "🚨 Alerta", "Mensaje", meta={"response_id": "r-1"}
        )

        assert notification.id is not None
        assert notification.read is False
        assert notification.meta == {"response_id": "r-1"}

    @pytest.mark.asyncio
    async def test_storage_failure_returns_none(self, test_db):
        repository = FeedbackRepository(test_db)
        repository.create_notification = AsyncMock(side_effect=OperationalError("INSERT", {}, Exception("locked")))
        dispatcher = NotificationDispatcher(repository, whatsapp=MockWhatsAppService())

        assert await dispatcher.notify_internal("tenant-1", "SYSTEM", "t", "m") is None

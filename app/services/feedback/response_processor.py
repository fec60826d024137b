"""
Response Processor

Post-submission pipeline for one stored response:

    SUBMITTED -> SIGNAL_EXTRACTED -> CRISIS_EVAL -> REWARD_EVAL
              -> DISPATCH_ATTEMPTED -> DONE

Crisis and reward decisions are independent. Delivery failures are recorded
on the ProcessingResult and logged; they never fail the submission that
triggered the run. Staff-report surveys ("Buzón") raise a SYSTEM notification
instead of going through crisis evaluation.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError

from app.config import settings
from app.database import async_session_maker
from app.exceptions import NotFoundError
from app.schemas.notification import NotificationType
from app.schemas.survey import AlertConfig, RecoveryConfig, QuestionType
from app.services.cache_service import AggregationCache, get_aggregation_cache, tenant_tag
from app.services.email_service import EmailService
from app.services.feedback.decisions import RecoveryOffer, should_raise_crisis, select_recovery
from app.services.feedback.repository import FeedbackRepository
from app.services.feedback.signal_extractor import (
    FeedbackSignal, extract_signal, resolve_contact, question_type, question_text, answer_value,
)
from app.services.notification_dispatcher import NotificationDispatcher, DispatchReport, truncate_body
from app.services.whatsapp_service import WhatsAppService
from app.utils.phone_normalization import collect_alert_phones

logger = logging.getLogger(__name__)

STAFF_REPORT_MARKER = "Buzón"
NO_COMMENT = "Sin comentarios"
NO_CONTEXT = "N/A"
MILESTONES = (1, 10, 50, 100, 500, 1000, 5000, 10000)


class ProcessingStage(str, Enum):
    SUBMITTED = "submitted"
    SIGNAL_EXTRACTED = "signal_extracted"
    CRISIS_EVAL = "crisis_eval"
    REWARD_EVAL = "reward_eval"
    DISPATCH_ATTEMPTED = "dispatch_attempted"
    DONE = "done"


@dataclass
class ProcessingResult:
    """What happened to one response on its way through the pipeline."""

    response_id: str
    survey_id: str
    tenant_id: str
    stages: list[ProcessingStage] = field(default_factory=lambda: [ProcessingStage.SUBMITTED])
    signal: Optional[FeedbackSignal] = None
    staff_report: bool = False
    crisis: bool = False
    offer: Optional[RecoveryOffer] = None
    notification_ids: list[str] = field(default_factory=list)
    dispatch: DispatchReport = field(default_factory=DispatchReport)
    milestone: Optional[int] = None
    cache_entries_invalidated: int = 0

    @property
    def stage(self) -> ProcessingStage:
        return self.stages[-1]

    def advance(self, stage: ProcessingStage) -> None:
        self.stages.append(stage)


def is_staff_report(survey) -> bool:
    return STAFF_REPORT_MARKER in (getattr(survey, "title", None) or "")


def crisis_message(signal: FeedbackSignal, customer_name: str) -> str:
    return (
        f"Cliente: {customer_name}\n"
        f"Mesa: {signal.context or NO_CONTEXT}\n"
        f"Calificación: {signal.rating} ⭐\n"
        f"\"{signal.comment or NO_COMMENT}\""
    )


def staff_report_message(answers) -> str:
    description = next(
        (
            answer_value(a)
            for a in answers
            if question_type(a) == QuestionType.TEXT.value or "describe" in question_text(a)
        ),
        None,
    ) or "Sin descripción"
    has_evidence = any(
        answer_value(a)
        for a in answers
        if question_type(a) in (QuestionType.FILE.value, QuestionType.IMAGE.value)
        or "evidencia" in question_text(a)
    )
    evidence = "📎 Con Evidencia Adjunta" if has_evidence else "Sin Evidencia"
    return f"Nuevo Reporte en Buzón:\n\"{description}\"\n{evidence}"


def milestone_message(count: int) -> tuple[str, str]:
    """(title, message) for an ACHIEVEMENT notification at a response-count milestone."""
    title = "¡Nuevo Logro Desbloqueado! 🏆"
    if count == 1:
        return "¡Tu Primera Encuesta! 🚀", "Has recibido tu primera respuesta. ¡Este es el comienzo de algo grande!"
    if count == 10:
        return title, "¡10 respuestas! Ya estás recolectando feedback valioso."
    if count == 50:
        return title, "¡50 opiniones! Tu base de datos está creciendo."
    if count == 100:
        return (
            "¡Centenario de Feedback! 💯",
            "¡Felicidades! Has alcanzado 100 respuestas. Tu compromiso con la calidad es evidente.",
        )
    return title, f"¡Increíble! Has alcanzado {count} respuestas totales."


class ResponseProcessor:
    """
    Runs the post-submission pipeline.

    process() opens its own session so it can run on the dispatch queue after
    the request session is gone; process_response() works on an already
    loaded response and is what tests drive directly.
    """

    def __init__(
        self,
        session_factory: Callable = async_session_maker,
        whatsapp: Optional[WhatsAppService] = None,
        email: Optional[EmailService] = None,
        cache: Optional[AggregationCache] = None,
    ):
        self._session_factory = session_factory
        self.whatsapp = whatsapp or WhatsAppService()
        self.email = email or EmailService()
        self.cache = cache

    async def process(self, response_id: str) -> ProcessingResult:
        async with self._session_factory() as db:
            repository = FeedbackRepository(db)
            response = await repository.fetch_response(response_id)
            if response is None:
                raise NotFoundError("Response", response_id)
            return await self.process_response(repository, response)

    async def process_response(self, repository: FeedbackRepository, response) -> ProcessingResult:
        survey = response.survey
        answers = list(response.answers or [])
        result = ProcessingResult(response_id=response.id, survey_id=survey.id, tenant_id=survey.tenant_id)
        dispatcher = NotificationDispatcher(repository, whatsapp=self.whatsapp, email=self.email)

        signal = extract_signal(answers)
        result.signal = signal
        result.advance(ProcessingStage.SIGNAL_EXTRACTED)

        alert_config = AlertConfig.from_raw(survey.alert_config)
        result.staff_report = is_staff_report(survey)
        result.crisis = not result.staff_report and should_raise_crisis(signal.rating, alert_config)
        result.advance(ProcessingStage.CRISIS_EVAL)

        result.offer = select_recovery(signal.rating, RecoveryConfig.from_raw(survey.recovery_config))
        result.advance(ProcessingStage.REWARD_EVAL)

        contact = resolve_contact(response, answers)

        if result.staff_report:
            await self._notify(
                dispatcher, result, NotificationType.SYSTEM, "📩 Nuevo Reporte de Staff",
                staff_report_message(answers),
            )
        elif result.crisis:
            await self._dispatch_crisis(repository, dispatcher, result, survey, signal, alert_config, contact.name)

        if result.offer is not None and contact.phone:
            report = await dispatcher.send_templated(
                [contact.phone],
                params=[contact.name, result.offer.offer, result.offer.code],
                template_name=settings.WHATSAPP_RECOVERY_TEMPLATE,
            )
            result.dispatch.extend(report)
        result.advance(ProcessingStage.DISPATCH_ATTEMPTED)

        await self._check_milestones(repository, dispatcher, result)
        await self._invalidate_analytics(result)

        result.advance(ProcessingStage.DONE)
        logger.info(
            f"Processed response {result.response_id}: rating={signal.rating} crisis={result.crisis} "
            f"offer={result.offer.tier.value if result.offer else None} "
            f"sent={len(result.dispatch.sent)} failed={len(result.dispatch.failed)}"
        )
        return result

    async def _notify(self, dispatcher, result: ProcessingResult, type: NotificationType, title: str, message: str, meta=None):
        notification = await dispatcher.notify_internal(
            tenant_id=result.tenant_id,
            type=type.value,
            title=title,
            message=message,
            meta=meta or {"response_id": result.response_id, "survey_id": result.survey_id},
        )
        if notification is not None:
            result.notification_ids.append(notification.id)

    async def _dispatch_crisis(self, repository, dispatcher, result, survey, signal, alert_config, customer_name):
        # plain values only from here on: a rollback expires the loaded survey
        survey_title = survey.title
        await self._notify(
            dispatcher, result, NotificationType.CRISIS, f"🚨 Alerta de Crisis: {survey_title}",
            crisis_message(signal, customer_name),
        )

        if not alert_config.enabled:
            return

        try:
            tenant = await repository.fetch_tenant_settings(result.tenant_id)
        except SQLAlchemyError as e:
            logger.error(f"Tenant settings lookup failed for {result.tenant_id}, alerting survey phones only: {e}")
            await repository.db.rollback()
            tenant = None
        global_phones = []
        if tenant is not None and tenant.phone and (tenant.notification_preferences or {}).get("whatsapp"):
            global_phones.append(tenant.phone)
        business_name = (tenant.business_name if tenant else None) or survey_title

        phones = collect_alert_phones(alert_config.phones, global_phones)
        comment = signal.comment or NO_COMMENT
        report = await dispatcher.send_templated(
            phones,
            params=[business_name, str(signal.rating), truncate_body(comment)],
            template_name=settings.WHATSAPP_ALERT_TEMPLATE,
        )
        result.dispatch.extend(report)

        email_report = await dispatcher.send_email_alerts(
            alert_config.emails,
            survey_title=survey_title,
            customer_name=customer_name,
            rating=signal.rating,
            comment=comment,
            context=signal.context,
            business_name=business_name,
        )
        result.dispatch.extend(email_report)

    async def _check_milestones(self, repository, dispatcher, result: ProcessingResult) -> None:
        try:
            count = await repository.count_tenant_responses(result.tenant_id)
        except SQLAlchemyError as e:
            logger.error(f"Milestone check failed for tenant {result.tenant_id}: {e}", exc_info=True)
            return
        if count not in MILESTONES:
            return
        title, message = milestone_message(count)
        result.milestone = count
        await self._notify(dispatcher, result, NotificationType.ACHIEVEMENT, title, message, meta={"count": count})

    async def _invalidate_analytics(self, result: ProcessingResult) -> None:
        cache = self.cache if self.cache is not None else get_aggregation_cache()
        result.cache_entries_invalidated = await cache.invalidate_tag(tenant_tag(result.tenant_id))


# Global processor instance
_response_processor: Optional[ResponseProcessor] = None


def get_response_processor() -> ResponseProcessor:
    """Get or create the global response processor."""
    global _response_processor
    if _response_processor is None:
        _response_processor = ResponseProcessor()
    return _response_processor

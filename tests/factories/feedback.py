"""
Survey, response and notification test factories.

The factories build plain attribute dicts; the persist_* helpers turn them
into rows on a test session and return fully loaded ORM objects.
"""

import factory
from faker import Faker
from datetime import datetime
from typing import Optional
import uuid

from sqlalchemy.ext.asyncio import AsyncSession

from app.models.survey import Survey, Question, Response, Answer
from app.models.tenant_settings import TenantSettings
from app.services.feedback.repository import FeedbackRepository

fake = Faker("es_MX")

RATING_QUESTION = "¿Cómo calificarías tu experiencia?"
COMMENT_QUESTION = "¿Qué podemos mejorar?"
STAFF_QUESTION = "¿Qué mesero te atendió?"
TABLE_QUESTION = "Número de mesa"

DEFAULT_QUESTIONS = [
    (RATING_QUESTION, "RATING"),
    (COMMENT_QUESTION, "TEXT"),
    (STAFF_QUESTION, "SELECT"),
    (TABLE_QUESTION, "SELECT"),
]


class SurveyFactory(factory.Factory):
    """
    Factory for Survey attributes.

    Usage:
        survey = SurveyFactory()
        survey = SurveyFactory(tenant_id="tenant-2", alert_config={"enabled": True})
    """

    class Meta:
        model = dict

    id = factory.LazyFunction(lambda: str(uuid.uuid4()))
    tenant_id = "tenant-1"
    title = factory.LazyFunction(
        lambda: fake.random_element([
            "Encuesta de Satisfacción",
            "Experiencia en Sucursal Centro",
            "Opinión de Comensales",
        ])
    )
    description = factory.LazyFunction(fake.sentence)
    alert_config = factory.LazyFunction(lambda: {"enabled": False, "threshold": 2, "phones": [], "emails": []})
    recovery_config = None


class ResponseFactory(factory.Factory):
    """Factory for Response attributes (customer columns only)."""

    class Meta:
        model = dict

    id = factory.LazyFunction(lambda: str(uuid.uuid4()))
    customer_name = factory.LazyFunction(fake.name)
    customer_phone = None
    customer_email = None
    customer_source = None
    photo = None


class NotificationFactory(factory.Factory):
    """Factory for Notification attributes."""

    class Meta:
        model = dict

    id = factory.LazyFunction(lambda: str(uuid.uuid4()))
    tenant_id = "tenant-1"
    type = factory.LazyFunction(lambda: fake.random_element(["CRISIS", "SYSTEM", "INFO", "ACHIEVEMENT"]))
    title = factory.LazyFunction(lambda: fake.sentence(nb_words=4))
    message = factory.LazyFunction(fake.paragraph)
    read = False
    meta = None


async def persist_survey(db: AsyncSession, questions=None, **overrides) -> Survey:
    """Store a survey with its questions and return it with questions loaded."""
    data = SurveyFactory(**overrides)
    survey = Survey(**data)
    for order, (text, qtype) in enumerate(questions or DEFAULT_QUESTIONS):
        survey.questions.append(Question(text=text, type=qtype, order=order))
    db.add(survey)
    await db.commit()
    return await FeedbackRepository(db).fetch_survey(data["id"])


async def persist_response(
    db: AsyncSession,
    survey: Survey,
    answers: dict[str, str],
    created_at: Optional[datetime] = None,
    **overrides,
) -> Response:
    """
    Store a response. `answers` maps question text to the answer value;
    questions not in the survey are ignored.
    """
    data = ResponseFactory(**overrides)
    response = Response(survey_id=survey.id, **data)
    if created_at is not None:
        response.created_at = created_at

    by_text = {q.text: q for q in survey.questions}
    for text, value in answers.items():
        question = by_text.get(text)
        if question is not None:
            response.answers.append(Answer(question_id=question.id, value=value))

    db.add(response)
    await db.commit()
    return await FeedbackRepository(db).fetch_response(data["id"])


async def persist_tenant_settings(db: AsyncSession, tenant_id: str = "tenant-1", **overrides) -> TenantSettings:
    settings = TenantSettings(
        tenant_id=tenant_id,
        business_name=overrides.pop("business_name", "La Cantina Feliz"),
        phone=overrides.pop("phone", None),
        notification_preferences=overrides.pop("notification_preferences", {"whatsapp": True, "email": False}),
    )
    db.add(settings)
    await db.commit()
    return settings

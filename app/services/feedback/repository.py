"""
Feedback Repository

The data-access interface the engine consumes: surveys, responses with their
answers and questions, tenant settings, and notification records. Everything
above this module works on loaded ORM objects and never builds queries.
"""

from datetime import datetime
from typing import Optional, Sequence
import logging

from sqlalchemy import select, func, and_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.models.survey import Survey, Response, Answer
from app.models.notification import Notification
from app.models.tenant_settings import TenantSettings
from app.schemas.analytics import AnalyticsFilter

logger = logging.getLogger(__name__)

_WITH_ANSWERS = selectinload(Response.answers).selectinload(Answer.question)
# populate_existing resets relationships on a reloaded survey, so its questions are reloaded too
_WITH_SURVEY = selectinload(Response.survey).selectinload(Survey.questions)

# Reload identity-mapped rows so eager loads also apply to objects already in the session
_FRESH = {"populate_existing": True}


class FeedbackRepository:
    """SQLAlchemy-backed data access for the feedback engine."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # Response queries

    def _filtered(self, query, flt: AnalyticsFilter, since: Optional[datetime] = None, until: Optional[datetime] = None):
        """
        Apply tenant/survey/date filtering. An explicit since/until window
        replaces the filter's own date range.
        """
        query = query.join(Survey, Response.survey_id == Survey.id).where(Survey.tenant_id.in_(flt.tenant_ids))

        if flt.survey_id:
            query = query.where(Response.survey_id == flt.survey_id)

        if since is not None or until is not None:
            if since is not None:
                query = query.where(Response.created_at >= since)
            if until is not None:
                query = query.where(Response.created_at < until)
        elif flt.has_date_range:
            query = query.where(
                and_(Response.created_at >= flt.start_date, Response.created_at <= flt.end_date)
            )

        return query

    async def count_responses(
        self, flt: AnalyticsFilter, since: Optional[datetime] = None, until: Optional[datetime] = None
    ) -> int:
        query = self._filtered(select(func.count(Response.id)), flt, since, until)
        result = await self.db.execute(query.execution_options(**_FRESH))
        return result.scalar() or 0

    async def fetch_responses(
        self, flt: AnalyticsFilter, since: Optional[datetime] = None, until: Optional[datetime] = None
    ) -> Sequence[Response]:
        """Responses matching the filter with answers and questions loaded."""
        query = self._filtered(select(Response).options(_WITH_ANSWERS), flt, since, until)
        result = await self.db.execute(query.execution_options(**_FRESH))
        return result.scalars().unique().all()

    async def fetch_recent_responses(
        self, flt: AnalyticsFilter, limit: int, with_survey: bool = True
    ) -> Sequence[Response]:
        """Most recent responses first, with answers and questions (and optionally survey) loaded."""
        options = [_WITH_ANSWERS]
        if with_survey:
            options.append(_WITH_SURVEY)
        query = self._filtered(select(Response).options(*options), flt)
        query = query.order_by(Response.created_at.desc()).limit(limit)
        result = await self.db.execute(query.execution_options(**_FRESH))
        return result.scalars().unique().all()

    async def fetch_responses_by_ids(self, ids: Sequence[str]) -> Sequence[Response]:
        if not ids:
            return []
        result = await self.db.execute(
            select(Response)
            .options(_WITH_ANSWERS, _WITH_SURVEY)
            .where(Response.id.in_(list(ids)))
            .execution_options(**_FRESH)
        )
        return result.scalars().unique().all()

    async def fetch_response(self, response_id: str) -> Optional[Response]:
        result = await self.db.execute(
            select(Response)
            .options(_WITH_ANSWERS, _WITH_SURVEY)
            .where(Response.id == response_id)
            .execution_options(**_FRESH)
        )
        return result.scalar_one_or_none()

    async def count_tenant_responses(self, tenant_id: str) -> int:
        result = await self.db.execute(
            select(func.count(Response.id))
            .join(Survey, Response.survey_id == Survey.id)
            .where(Survey.tenant_id == tenant_id)
        )
        return result.scalar() or 0

    async def create_response(
        self,
        survey: Survey,
        answers: Sequence[tuple[str, str]],
        customer_name: Optional[str] = None,
        customer_phone: Optional[str] = None,
        customer_email: Optional[str] = None,
        customer_source: Optional[str] = None,
        photo: Optional[str] = None,
    ) -> Response:
        """
        Store a response with its answers. Answers pointing at questions
        outside the survey are dropped.
        """
        known_questions = {q.id for q in survey.questions}
        response = Response(
            survey_id=survey.id,
            customer_name=customer_name,
            customer_phone=customer_phone,
            customer_email=customer_email,
            customer_source=customer_source,
            photo=photo,
        )
        for question_id, value in answers:
            if question_id not in known_questions:
                logger.warning(f"Dropping answer for unknown question {question_id} on survey {survey.id}")
                continue
            response.answers.append(Answer(question_id=question_id, value=value))

        self.db.add(response)
        await self.db.commit()

        stored = await self.fetch_response(response.id)
        return stored

    # Surveys and settings

    async def fetch_survey(self, survey_id: str) -> Optional[Survey]:
        result = await self.db.execute(
            select(Survey)
            .options(selectinload(Survey.questions))
            .where(Survey.id == survey_id)
            .execution_options(**_FRESH)
        )
        return result.scalar_one_or_none()

    async def fetch_tenant_settings(self, tenant_id: str) -> Optional[TenantSettings]:
        result = await self.db.execute(select(TenantSettings).where(TenantSettings.tenant_id == tenant_id))
        return result.scalar_one_or_none()

    async def list_tenant_ids(self) -> list[str]:
        """Tenants that own at least one survey."""
        result = await self.db.execute(select(Survey.tenant_id).distinct())
        return [row[0] for row in result.all()]

    # Notifications

    async def create_notification(
        self,
        tenant_id: str,
        type: str,
        title: str,
        message: str,
        meta: Optional[dict] = None,
    ) -> Notification:
        notification = Notification(
            tenant_id=tenant_id,
            type=type,
            title=title,
            message=message,
            meta=meta,
        )
        self.db.add(notification)
        await self.db.commit()
        await self.db.refresh(notification)
        return notification

    async def list_notifications(
        self, tenant_id: str, limit: int = 20, offset: int = 0, unread_only: bool = False
    ) -> tuple[Sequence[Notification], int]:
        query = select(Notification).where(Notification.tenant_id == tenant_id)
        if unread_only:
            query = query.where(Notification.read == False)  # noqa: E712

        count_result = await self.db.execute(select(func.count()).select_from(query.subquery()))
        total = count_result.scalar() or 0

        result = await self.db.execute(
            query.order_by(Notification.created_at.desc()).offset(offset).limit(limit)
        )
        return result.scalars().all(), total

    async def has_recent_notification(
        self, tenant_id: str, type: str, title_contains: str, since: datetime
    ) -> bool:
        result = await self.db.execute(
            select(func.count(Notification.id)).where(
                and_(
                    Notification.tenant_id == tenant_id,
                    Notification.type == type,
                    Notification.title.contains(title_contains),
                    Notification.created_at >= since,
                )
            )
        )
        return (result.scalar() or 0) > 0

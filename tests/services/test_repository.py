"""
Tests for the feedback repository's loading behaviour.
"""

import pytest

from app.schemas.analytics import AnalyticsFilter
from app.services.feedback.repository import FeedbackRepository
from tests.factories.feedback import persist_survey, persist_response, RATING_QUESTION, COMMENT_QUESTION


class TestResponseLoading:
    """Reloading responses keeps the survey's questions usable in the same session."""

    @pytest.mark.asyncio
    async def test_fetch_response_keeps_survey_questions_loaded(self, test_db):
        survey = await persist_survey(test_db)
        response = await persist_response(test_db, survey, {RATING_QUESTION: "4"})

        reloaded = await FeedbackRepository(test_db).fetch_response(response.id)

        assert reloaded.survey is survey
        assert RATING_QUESTION in {q.text for q in survey.questions}
        assert reloaded.answers[0].question.text == RATING_QUESTION

    @pytest.mark.asyncio
    async def test_fetch_by_ids_keeps_survey_questions_loaded(self, test_db):
        survey = await persist_survey(test_db)
        first = await persist_response(test_db, survey, {RATING_QUESTION: "2"})
        second = await persist_response(test_db, survey, {COMMENT_QUESTION: "Todo bien"})

        responses = await FeedbackRepository(test_db).fetch_responses_by_ids([first.id, second.id])

        assert {r.id for r in responses} == {first.id, second.id}
        assert len(survey.questions) == 4
        # a later response can still be stored against the already-loaded survey
        third = await persist_response(test_db, survey, {RATING_QUESTION: "5"})
        assert third.answers[0].value == "5"

    @pytest.mark.asyncio
    async def test_recent_responses_keep_survey_questions_loaded(self, test_db):
        survey = await persist_survey(test_db, tenant_id="tenant-9")
        await persist_response(test_db, survey, {RATING_QUESTION: "3"})

        recent = await FeedbackRepository(test_db).fetch_recent_responses(AnalyticsFilter(tenant_ids=["tenant-9"]), limit=5)

        assert len(recent) == 1
        assert len(recent[0].survey.questions) == 4
        assert len(survey.questions) == 4

"""
Tests for the analytics endpoints (/api/v2/analytics).
"""

import pytest

from app.config import settings
from tests.factories.feedback import persist_survey, persist_response, RATING_QUESTION

ANALYTICS_PREFIX = "/api/v2/analytics"


class TestGetAnalytics:
    """GET /analytics"""

    @pytest.mark.asyncio
    async def test_snapshot(self, client, test_db):
        survey = await persist_survey(test_db)
        for rating in ("5", "5", "2"):
            await persist_response(test_db, survey, {RATING_QUESTION: rating})

        response = await client.get(ANALYTICS_PREFIX, params={"tenant_ids": ["tenant-1"]})

        assert response.status_code == 200
        data = response.json()
        assert data["total_responses"] == 3
        assert data["average_satisfaction"] == 4.0
        assert data["nps_score"] == 33
        assert len(data["chart_data"]) == 30

    @pytest.mark.asyncio
    async def test_second_read_is_cached(self, client, test_db, aggregation_cache):
        await persist_survey(test_db)

        await client.get(ANALYTICS_PREFIX, params={"tenant_ids": ["tenant-1"]})
        await client.get(ANALYTICS_PREFIX, params={"tenant_ids": ["tenant-1"]})

        stats = (await client.get(f"{ANALYTICS_PREFIX}/cache-stats")).json()
        assert stats["computations"] == 1
        assert stats["hits"] == 1
        assert stats["backend"] == "memory"

    @pytest.mark.asyncio
    async def test_new_response_invalidates_snapshot(self, client, test_db, dispatch_queue):
        survey = await persist_survey(test_db)
        first = (await client.get(ANALYTICS_PREFIX, params={"tenant_ids": ["tenant-1"]})).json()
        assert first["total_responses"] == 0

        rating_question = next(q for q in survey.questions if q.text == RATING_QUESTION)
        await client.post(
            f"/api/v2/surveys/{survey.id}/responses",
            json={"answers": [{"question_id": rating_question.id, "value": "4"}]},
        )
        await dispatch_queue.join()

        second = (await client.get(ANALYTICS_PREFIX, params={"tenant_ids": ["tenant-1"]})).json()
        assert second["total_responses"] == 1

    @pytest.mark.asyncio
    async def test_multiple_tenants(self, client, test_db):
        one = await persist_survey(test_db, tenant_id="tenant-1")
        two = await persist_survey(test_db, tenant_id="tenant-2")
        await persist_response(test_db, one, {RATING_QUESTION: "5"})
        await persist_response(test_db, two, {RATING_QUESTION: "3"})

        response = await client.get(ANALYTICS_PREFIX, params={"tenant_ids": ["tenant-1", "tenant-2"]})

        assert response.json()["total_responses"] == 2

    @pytest.mark.asyncio
    async def test_missing_tenant(self, client):
        response = await client.get(ANALYTICS_PREFIX)

        assert response.status_code == 422
        assert response.json()["code"] == "VALIDATION_ERROR"

    @pytest.mark.asyncio
    async def test_half_open_date_range(self, client):
        response = await client.get(
            ANALYTICS_PREFIX, params={"tenant_ids": ["tenant-1"], "start_date": "2026-10-01"}
        )
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_bad_date(self, client):
        response = await client.get(
            ANALYTICS_PREFIX,
            params={"tenant_ids": ["tenant-1"], "start_date": "ayer", "end_date": "hoy"},
        )
        assert response.status_code == 422
        assert response.json()["errors"][0]["field"] == "start_date"


class TestInvalidate:
    """POST /analytics/invalidate"""

    @pytest.mark.asyncio
    async def test_invalidate_everything(self, client, test_db):
        await persist_survey(test_db)
        await client.get(ANALYTICS_PREFIX, params={"tenant_ids": ["tenant-1"]})

        response = await client.post(f"{ANALYTICS_PREFIX}/invalidate")

        assert response.status_code == 200
        assert response.json() == {"tag": settings.ANALYTICS_CACHE_TAG, "invalidated": 1}

    @pytest.mark.asyncio
    async def test_invalidate_one_tenant(self, client, test_db):
        await client.get(ANALYTICS_PREFIX, params={"tenant_ids": ["tenant-1"]})
        await client.get(ANALYTICS_PREFIX, params={"tenant_ids": ["tenant-2"]})

        tag = f"{settings.ANALYTICS_CACHE_TAG}:tenant-2"
        response = await client.post(f"{ANALYTICS_PREFIX}/invalidate", json={"tag": tag})

        assert response.json() == {"tag": tag, "invalidated": 1}

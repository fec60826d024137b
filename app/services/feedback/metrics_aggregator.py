"""
Metrics Aggregator

Builds the AnalyticsSnapshot for a tenant filter:
- Totals, average satisfaction and NPS (promoters = 5, detractors <= 3)
- Sentiment split (positive >= 4, neutral == 3, negative <= 2)
- 30-day trend of response counts and daily satisfaction
- Top complaint keywords from negative responses
- Staff leaderboard, per-survey averages, customer source distribution
- Change vs. the previous 30-day window (days 60..30 back)
- Recent, best and worst feedback with resolved customer details

Responses without a parseable rating count toward totals, the trend's
response counts and the source distribution, and nothing else.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone, date
from typing import Callable, Iterable, Optional, Sequence
import logging
import math

from sqlalchemy.exc import SQLAlchemyError

from app.exceptions import AggregationError, ValidationError
from app.schemas.analytics import (
    AnalyticsFilter, AnalyticsSnapshot, ChartPoint, NamedCount, IssueCount,
    StaffRank, SurveyRating, KPIChanges, FeedbackItem, AnswerDetail,
)
from app.schemas.survey import QuestionType, Sentiment
from app.services.feedback.keyword_miner import mine_keywords, top_issues
from app.services.feedback.repository import FeedbackRepository
from app.services.feedback.signal_extractor import (
    extract_rating, text_answers, resolve_contact, question_type, answer_value,
)
from app.services.feedback.staff_attributor import StaffAttributor

logger = logging.getLogger(__name__)

TREND_DAYS = 30
PREVIOUS_PERIOD_START_DAYS = 60
PREVIOUS_PERIOD_END_DAYS = 30
FEEDBACK_SAMPLE_SIZE = 200
HIGHLIGHT_LIMIT = 3
RECENT_LIMIT = 5
SOURCE_LIMIT = 6
UNSPECIFIED_SOURCE = "unspecified"

_MONTHS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")


def round_half_up(value: float) -> int:
    """Round .5 up (towards +infinity), unlike Python's banker's rounding."""
    return int(math.floor(value + 0.5))


def round_one_decimal(value: float) -> float:
    return math.floor(value * 10 + 0.5) / 10


def nps_score(promoters: int, detractors: int, rated: int) -> int:
    if rated == 0:
        return 0
    return round_half_up((promoters - detractors) / rated * 100)


def percent_change(current: float, previous: float) -> int:
    if previous == 0:
        return 100 if current > 0 else 0
    return round_half_up((current - previous) / previous * 100)


def as_utc_naive(value: datetime) -> datetime:
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _parse_bound(name: str, raw: Optional[str], end_of_day: bool = False) -> Optional[datetime]:
    if raw is None or str(raw).strip() == "":
        return None
    raw = str(raw).strip()
    try:
        parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        raise ValidationError(
            f"Invalid {name}: {raw}",
            errors=[{"field": name, "message": "Expected an ISO 8601 date or datetime"}],
        )
    # A bare date as the upper bound covers that whole day
    if end_of_day and len(raw) == 10:
        parsed = parsed.replace(hour=23, minute=59, second=59, microsecond=999999)
    return as_utc_naive(parsed)


def parse_analytics_filter(
    tenant_ids: Optional[Sequence[str]],
    survey_id: Optional[str] = None,
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
) -> AnalyticsFilter:
    """
    Build an AnalyticsFilter from raw query values.

    Raises ValidationError for an empty tenant list, a half-open date range,
    unparseable dates, or a start after the end. survey_id "all" means no
    survey filter.
    """
    ids = [t.strip() for t in (tenant_ids or []) if t and t.strip()]
    if not ids:
        raise ValidationError("At least one tenant id is required", errors=[{"field": "tenant_ids", "message": "required"}])

    start = _parse_bound("start_date", start_date)
    end = _parse_bound("end_date", end_date, end_of_day=True)
    if (start is None) != (end is None):
        raise ValidationError(
            "Both start_date and end_date are required for a date range",
            errors=[{"field": "start_date" if start is None else "end_date", "message": "required"}],
        )
    if start is not None and start > end:
        raise ValidationError(
            "start_date must not be after end_date",
            errors=[{"field": "start_date", "message": "after end_date"}],
        )

    survey_id = (survey_id or "").strip()
    return AnalyticsFilter(
        tenant_ids=ids,
        survey_id=None if survey_id in ("", "all") else survey_id,
        start_date=start,
        end_date=end,
    )


def sentiment_for(rating: int) -> Sentiment:
    if rating >= 4:
        return Sentiment.POSITIVE
    if rating == 3:
        return Sentiment.NEUTRAL
    return Sentiment.NEGATIVE


def day_label(day: date) -> str:
    """'Oct 19' style bucket key."""
    return f"{_MONTHS[day.month - 1]} {day.day}"


@dataclass
class RatingTotals:
    """Running rating accumulators shared by the current and previous period."""

    total: int = 0
    rating_sum: int = 0
    rated: int = 0
    promoters: int = 0
    detractors: int = 0

    def add(self, rating: Optional[int]) -> None:
        self.total += 1
        if rating is None:
            return
        self.rating_sum += rating
        self.rated += 1
        if rating == 5:
            self.promoters += 1
        elif rating <= 3:
            self.detractors += 1

    @property
    def average(self) -> float:
        return round_one_decimal(self.rating_sum / self.rated) if self.rated else 0.0

    @property
    def nps(self) -> int:
        return nps_score(self.promoters, self.detractors, self.rated)


@dataclass
class ResponseStats:
    """
    Single-pass accumulator over a batch of responses.

    Kept free of I/O so the bucket rules can be tested on in-memory objects.
    """

    today: date
    totals: RatingTotals = field(default_factory=RatingTotals)
    sentiment: dict[Sentiment, int] = field(default_factory=lambda: {s: 0 for s in Sentiment})
    keywords: dict[str, int] = field(default_factory=dict)
    sources: dict[str, int] = field(default_factory=dict)
    survey_ratings: dict[str, list[int]] = field(default_factory=dict)
    staff: StaffAttributor = field(default_factory=StaffAttributor)
    days: dict[str, list[int]] = field(default_factory=dict)

    def __post_init__(self):
        # [responses, satisfaction_sum, satisfaction_count] per day, oldest first
        for offset in range(TREND_DAYS - 1, -1, -1):
            self.days[day_label(self.today - timedelta(days=offset))] = [0, 0, 0]

    def add(self, response) -> None:
        answers = list(response.answers or [])
        rating = extract_rating(answers)
        self.totals.add(rating)

        bucket = None
        if response.created_at is not None:
            bucket = self.days.get(day_label(as_utc_naive(response.created_at).date()))
        if bucket is not None:
            bucket[0] += 1

        source = (response.customer_source or "").strip() or UNSPECIFIED_SOURCE
        self.sources[source] = self.sources.get(source, 0) + 1

        if rating is None:
            return

        if bucket is not None:
            bucket[1] += rating
            bucket[2] += 1

        self.sentiment[sentiment_for(rating)] += 1

        survey = self.survey_ratings.setdefault(response.survey_id, [0, 0])
        survey[0] += rating
        survey[1] += 1

        self.staff.add_response(answers, rating)

        if rating <= 3:
            mine_keywords(text_answers(answers), self.keywords)

    def add_all(self, responses: Iterable) -> "ResponseStats":
        for response in responses:
            self.add(response)
        return self

    def chart(self) -> list[ChartPoint]:
        return [
            ChartPoint(
                date=label,
                responses=count,
                satisfaction=round_one_decimal(sat_sum / sat_count) if sat_count else 0.0,
            )
            for label, (count, sat_sum, sat_count) in self.days.items()
        ]

    def source_distribution(self) -> list[NamedCount]:
        ranked = sorted(self.sources.items(), key=lambda item: item[1], reverse=True)
        return [NamedCount(name=name, value=value) for name, value in ranked[:SOURCE_LIMIT]]

    def sentiment_counts(self) -> list[NamedCount]:
        return [NamedCount(name=s.value, value=value) for s, value in self.sentiment.items()]

    def surveys(self) -> list[SurveyRating]:
        return [
            SurveyRating(id=survey_id, rating=round_one_decimal(total / count))
            for survey_id, (total, count) in self.survey_ratings.items()
            if count
        ]


def to_feedback_item(response) -> FeedbackItem:
    """Render a response with resolved customer details and every answer."""
    answers = list(response.answers or [])
    contact = resolve_contact(response, answers)
    feedback = next(
        (answer_value(a) for a in answers if question_type(a) == QuestionType.TEXT.value),
        None,
    )
    survey = getattr(response, "survey", None)
    return FeedbackItem(
        id=response.id,
        survey_id=response.survey_id,
        survey=getattr(survey, "title", None) or "Encuesta",
        customer_name=contact.name,
        feedback=feedback,
        rating=extract_rating(answers) or 0,
        phone=contact.phone,
        email=contact.email,
        photo=contact.photo,
        created_at=response.created_at,
        details=[
            AnswerDetail(
                question=getattr(a.question, "text", None) or "Desconocida",
                answer=answer_value(a),
                type=question_type(a),
            )
            for a in answers
        ],
    )


def rank_highlights(candidates: Sequence, limit: int = HIGHLIGHT_LIMIT) -> tuple[list[str], list[str]]:
    """
    Pick (worst_ids, best_ids) from a bounded sample of recent responses.

    Worst: ratings 1..3, lowest first. Best: ratings >= 4, highest first.
    Ties go to the most recent response.
    """
    scored = []
    for response in candidates:
        rating = extract_rating(response.answers or [])
        if rating is None or rating <= 0:
            continue
        scored.append((response.id, rating, as_utc_naive(response.created_at).timestamp()))

    worst = sorted((s for s in scored if s[1] <= 3), key=lambda s: (s[1], -s[2]))
    best = sorted((s for s in scored if s[1] >= 4), key=lambda s: (-s[1], -s[2]))
    return [s[0] for s in worst[:limit]], [s[0] for s in best[:limit]]


class MetricsAggregator:
    """
    Computes analytics snapshots from the feedback repository.

    The aggregation is a pure function of the responses visible at call time;
    caching lives in AggregationCache, not here.
    """

    def __init__(self, repository: FeedbackRepository, now: Optional[Callable[[], datetime]] = None):
        self.repository = repository
        self._now = now or datetime.utcnow

    async def compute(self, flt: AnalyticsFilter) -> AnalyticsSnapshot:
        now = self._now()
        try:
            return await self._compute(flt, now)
        except SQLAlchemyError as e:
            logger.error(f"Analytics fetch failed for tenants {flt.tenant_ids}: {e}", exc_info=True)
            raise AggregationError(type(e).__name__) from e

    async def _compute(self, flt: AnalyticsFilter, now: datetime) -> AnalyticsSnapshot:
        total_responses = await self.repository.count_responses(flt)
        responses = await self.repository.fetch_responses(flt)

        stats = ResponseStats(today=now.date()).add_all(responses)

        previous = RatingTotals()
        for response in await self.repository.fetch_responses(
            flt,
            since=now - timedelta(days=PREVIOUS_PERIOD_START_DAYS),
            until=now - timedelta(days=PREVIOUS_PERIOD_END_DAYS),
        ):
            previous.add(extract_rating(response.answers or []))

        current = stats.totals
        kpi_changes = KPIChanges(
            total_responses=percent_change(current.total, previous.total),
            average_satisfaction=percent_change(current.average, previous.average),
            nps_score=current.nps - previous.nps,
        )

        recent = await self.repository.fetch_recent_responses(flt, RECENT_LIMIT)

        candidates = await self.repository.fetch_recent_responses(flt, FEEDBACK_SAMPLE_SIZE, with_survey=False)
        worst_ids, best_ids = rank_highlights(candidates)
        worst = await self._details(worst_ids)
        best = await self._details(best_ids)

        logger.debug(
            f"Analytics computed: tenants={flt.tenant_ids} survey={flt.survey_id} "
            f"total={total_responses} rated={current.rated}"
        )

        return AnalyticsSnapshot(
            total_responses=total_responses,
            rated_responses=current.rated,
            average_satisfaction=current.average,
            nps_score=current.nps,
            chart_data=stats.chart(),
            source_chart_data=stats.source_distribution(),
            sentiment_counts=stats.sentiment_counts(),
            top_issues=[IssueCount(topic=t, count=c) for t, c in top_issues(stats.keywords)],
            staff_ranking=[StaffRank(**row) for row in stats.staff.ranking()],
            surveys_with_stats=stats.surveys(),
            kpi_changes=kpi_changes,
            recent_feedback=[to_feedback_item(r) for r in recent],
            best_feedback=best,
            worst_feedback=worst,
            generated_at=now,
        )

    async def _details(self, ids: list[str]) -> list[FeedbackItem]:
        """Full detail for exactly these ids, in ranking order."""
        if not ids:
            return []
        by_id = {r.id: r for r in await self.repository.fetch_responses_by_ids(ids)}
        return [to_feedback_item(by_id[i]) for i in ids if i in by_id]

"""
Analytics Schemas

AnalyticsFilter is the validated read-path input; AnalyticsSnapshot is the
derived, never-persisted output of the metrics aggregator.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class AnalyticsFilter(BaseModel):
    """Validated filter for an analytics read."""
    tenant_ids: list[str] = Field(..., min_length=1)
    survey_id: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None

    @property
    def has_date_range(self) -> bool:
        return self.start_date is not None and self.end_date is not None


class ChartPoint(BaseModel):
    """One day of the 30-day trend."""
    date: str
    responses: int = 0
    satisfaction: float = 0.0


class NamedCount(BaseModel):
    name: str
    value: int


class IssueCount(BaseModel):
    topic: str
    count: int


class StaffRank(BaseModel):
    name: str
    count: int
    average: float


class SurveyRating(BaseModel):
    id: str
    rating: float


class KPIChanges(BaseModel):
    """Percentage change vs. the previous 30-day window (NPS in points)."""
    total_responses: int = 0
    average_satisfaction: int = 0
    nps_score: int = 0


class AnswerDetail(BaseModel):
    question: str
    answer: str
    type: Optional[str] = None


class FeedbackItem(BaseModel):
    """Response rendered with resolved customer details."""
    id: str
    survey_id: str
    survey: str
    customer_name: str
    feedback: Optional[str] = None
    rating: int = 0
    phone: Optional[str] = None
    email: Optional[str] = None
    photo: Optional[str] = None
    created_at: datetime
    details: list[AnswerDetail] = []


class AnalyticsSnapshot(BaseModel):
    """Rolled-up analytics for a tenant filter."""
    total_responses: int = 0
    rated_responses: int = 0
    average_satisfaction: float = 0.0
    nps_score: int = 0
    chart_data: list[ChartPoint] = []
    source_chart_data: list[NamedCount] = []
    sentiment_counts: list[NamedCount] = []
    top_issues: list[IssueCount] = []
    staff_ranking: list[StaffRank] = []
    surveys_with_stats: list[SurveyRating] = []
    kpi_changes: KPIChanges = Field(default_factory=KPIChanges)
    recent_feedback: list[FeedbackItem] = []
    best_feedback: list[FeedbackItem] = []
    worst_feedback: list[FeedbackItem] = []
    generated_at: datetime = Field(default_factory=datetime.utcnow)


class CacheInvalidationRequest(BaseModel):
    tag: Optional[str] = None


class CacheInvalidationResponse(BaseModel):
    tag: str
    invalidated: int

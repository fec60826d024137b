from app.schemas.survey import (
    QuestionType,
    Sentiment,
    AlertConfig,
    RecoveryConfig,
    SubmissionCreate,
    SubmissionResponse,
    AlertTestRequest,
)
from app.schemas.analytics import (
    AnalyticsFilter,
    AnalyticsSnapshot,
    FeedbackItem,
    CacheInvalidationRequest,
    CacheInvalidationResponse,
)
from app.schemas.notification import (
    NotificationType,
    NotificationRead,
    NotificationListResponse,
)

__all__ = [
    "QuestionType",
    "Sentiment",
    "AlertConfig",
    "RecoveryConfig",
    "SubmissionCreate",
    "SubmissionResponse",
    "AlertTestRequest",
    "AnalyticsFilter",
    "AnalyticsSnapshot",
    "FeedbackItem",
    "CacheInvalidationRequest",
    "CacheInvalidationResponse",
    "NotificationType",
    "NotificationRead",
    "NotificationListResponse",
]

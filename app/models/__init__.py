from app.models.survey import Survey, Question, Response, Answer
from app.models.notification import Notification
from app.models.tenant_settings import TenantSettings

__all__ = [
    "Survey",
    "Question",
    "Response",
    "Answer",
    "Notification",
    "TenantSettings",
]

"""
Test factories for surveys, responses and notifications.

Factories build plain attribute dicts with factory_boy; the persist_* helpers
turn them into committed ORM rows.
"""

from .feedback import (
    SurveyFactory,
    ResponseFactory,
    NotificationFactory,
    persist_survey,
    persist_response,
    persist_tenant_settings,
)

__all__ = [
    "SurveyFactory",
    "ResponseFactory",
    "NotificationFactory",
    "persist_survey",
    "persist_response",
    "persist_tenant_settings",
]

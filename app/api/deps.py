"""
FastAPI Dependencies

Provides dependency injection for database sessions, the feedback
repository, and the process-wide engine services (aggregation cache,
dispatch queue, response processor, WhatsApp delivery). Tests replace any of
these through app.dependency_overrides.
"""

from typing import Annotated
from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.services.cache_service import AggregationCache, get_aggregation_cache
from app.services.feedback.repository import FeedbackRepository
from app.services.feedback.response_processor import ResponseProcessor, get_response_processor
from app.services.whatsapp_service import WhatsAppService
from app.tasks.dispatch_queue import DispatchQueue, get_dispatch_queue


def get_repository(db: Annotated[AsyncSession, Depends(get_db)]) -> FeedbackRepository:
    """Repository bound to the request's session."""
    return FeedbackRepository(db)


def get_whatsapp_service() -> WhatsAppService:
    return WhatsAppService()


# Type aliases for cleaner endpoint signatures
DbSession = Annotated[AsyncSession, Depends(get_db)]
Repository = Annotated[FeedbackRepository, Depends(get_repository)]
Cache = Annotated[AggregationCache, Depends(get_aggregation_cache)]
Queue = Annotated[DispatchQueue, Depends(get_dispatch_queue)]
Processor = Annotated[ResponseProcessor, Depends(get_response_processor)]
WhatsApp = Annotated[WhatsAppService, Depends(get_whatsapp_service)]

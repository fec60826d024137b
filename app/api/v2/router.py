from fastapi import APIRouter
from app.api.v2 import (
    surveys,
    analytics,
    notifications,
)

api_router = APIRouter()

# Include all v2 routers
api_router.include_router(surveys.router, prefix="/surveys", tags=["surveys"])
api_router.include_router(analytics.router, prefix="/analytics", tags=["analytics"])
api_router.include_router(notifications.router, prefix="/notifications", tags=["notifications"])

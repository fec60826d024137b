"""Notifications API - tenant notification feed.

Lists the CRISIS / SYSTEM / ACHIEVEMENT notifications the engine raised for a
tenant, newest first.
"""

from fastapi import APIRouter, Query

from app.api.deps import Repository
from app.schemas.notification import NotificationRead, NotificationListResponse

router = APIRouter()


@router.get("", response_model=NotificationListResponse)
async def list_notifications(
    repository: Repository,
    tenant_id: str = Query(..., min_length=1),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    unread_only: bool = False,
):
    """List notifications for a tenant."""
    notifications, total = await repository.list_notifications(
        tenant_id, limit=limit, offset=offset, unread_only=unread_only
    )
    return NotificationListResponse(
        items=[NotificationRead.model_validate(n) for n in notifications],
        total=total,
        limit=limit,
        offset=offset,
    )

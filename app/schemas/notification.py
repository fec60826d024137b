"""Notification Schemas."""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel


class NotificationType(str, Enum):
    CRISIS = "CRISIS"
    SYSTEM = "SYSTEM"
    INFO = "INFO"
    ACHIEVEMENT = "ACHIEVEMENT"


class NotificationRead(BaseModel):
    id: str
    tenant_id: str
    type: str
    title: str
    message: str
    read: bool = False
    meta: Optional[dict] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class NotificationListResponse(BaseModel):
    items: list[NotificationRead]
    total: int
    limit: int
    offset: int

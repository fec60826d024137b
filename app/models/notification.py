"""Notification model for in-app tenant notifications."""

from datetime import datetime
import uuid

from sqlalchemy import Column, String, DateTime, Text, Boolean, JSON

from app.database import Base


class Notification(Base):
    """In-app notification for a tenant's staff."""

    __tablename__ = "notifications"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()), index=True)

    # Target tenant
    tenant_id = Column(String(64), nullable=False, index=True)

    # Notification content
    type = Column(String(20), nullable=False, index=True)  # CRISIS, SYSTEM, INFO, ACHIEVEMENT
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)

    # Status
    read = Column(Boolean, default=False, index=True)

    # Additional context (response_id, survey_id, count, ...)
    meta = Column(JSON, nullable=True)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow, index=True)

    def __repr__(self):
        return f"<Notification {self.type}: {self.title[:30]}>"

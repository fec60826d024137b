"""Per-tenant settings consumed by the notification engine."""

from datetime import datetime

from sqlalchemy import Column, String, DateTime, JSON

from app.database import Base


class TenantSettings(Base):
    """Business-level contact details and notification preferences."""

    __tablename__ = "tenant_settings"

    tenant_id = Column(String(64), primary_key=True, index=True)
    business_name = Column(String(200))

    # Global owner phone that also receives crisis alerts
    phone = Column(String(50))

    # {"whatsapp": bool, "email": bool}
    notification_preferences = Column(JSON)

    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f"<TenantSettings tenant_id={self.tenant_id}>"

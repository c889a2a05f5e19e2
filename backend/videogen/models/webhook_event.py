from sqlalchemy import Column, DateTime, Integer, String
from sqlalchemy.sql import func

from videogen.core.database import Base


class WebhookEvent(Base):
    __tablename__ = "webhook_events"

    id = Column(Integer, primary_key=True, index=True)
    provider = Column(String, index=True, nullable=False)
    event_id = Column(String, unique=True, nullable=False)
    event_type = Column(String, index=True, nullable=True)
    received_at = Column(DateTime(timezone=True), server_default=func.now())

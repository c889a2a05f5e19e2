from uuid import uuid4

from sqlalchemy import Column, DateTime, Float, Integer, String, Text
from sqlalchemy.sql import func

from videogen.core.database import Base


class Voiceover(Base):
    __tablename__ = "voiceovers"

    id = Column(String, primary_key=True, index=True, default=lambda: str(uuid4()))
    user_id = Column(String, index=True, nullable=False)
    video_id = Column(String, index=True, nullable=True)
    voice = Column(String, nullable=False)
    script = Column(Text, nullable=False)
    instructions = Column(Text, nullable=True)
    speed = Column(Float, nullable=False, default=1.0)
    audio_url = Column(Text, nullable=False)
    duration_seconds = Column(Integer, nullable=True)
    credits_used = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)

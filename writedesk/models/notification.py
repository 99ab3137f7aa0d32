"""
Notification model: the durable record of workflow events per recipient.
"""
from sqlalchemy import Column, Integer, String, DateTime, Text, Boolean, JSON
from datetime import datetime, timezone
from ..database import Base


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, nullable=False, index=True)
    type = Column(String(50), nullable=False, index=True)  # review_assigned, content_approved, magazine_published, ...
    title = Column(String(200), nullable=False)
    message = Column(Text, nullable=False)
    data = Column(JSON, nullable=True)  # content_id, review_id, magazine_id, ...
    is_read = Column(Boolean, default=False, index=True)
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc), index=True)

"""
Review model: one assessment of a content item by one reviewer.
"""
from sqlalchemy import Column, Integer, String, DateTime, Text, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
from ..database import Base
from .enums import ReviewStatus


class Review(Base):
    __tablename__ = "reviews"
    __table_args__ = (
        UniqueConstraint("content_id", "reviewer_id", name="uq_review_content_reviewer"),
    )

    id = Column(Integer, primary_key=True, index=True)
    content_id = Column(Integer, ForeignKey("content.id", ondelete="CASCADE"), nullable=False, index=True)
    reviewer_id = Column(Integer, nullable=False, index=True)
    status = Column(String(20), default=ReviewStatus.PENDING.value, nullable=False, index=True)
    rating = Column(Integer, nullable=True)  # 1-5
    grammar_score = Column(Integer, nullable=True)  # 0-100
    creativity_score = Column(Integer, nullable=True)  # 0-100
    relevance_score = Column(Integer, nullable=True)  # 0-100
    feedback = Column(Text, nullable=True)
    suggestions = Column(Text, nullable=True)
    assigned_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))
    completed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(DateTime, default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc))

    # Relationships
    content = relationship("Content", back_populates="reviews")

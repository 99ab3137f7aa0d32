"""
Content model and its append-only version history.
"""
from sqlalchemy import Column, Integer, String, DateTime, Text, JSON, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
from ..database import Base
from .enums import ContentStatus


class Content(Base):
    __tablename__ = "content"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(500), nullable=False)
    body = Column(Text, nullable=False)
    excerpt = Column(Text, nullable=True)
    language = Column(String(20), default="english")  # hindi, english, mixed
    status = Column(String(20), default=ContentStatus.DRAFT.value, nullable=False, index=True)
    author_id = Column(Integer, nullable=False, index=True)
    organization_id = Column(Integer, nullable=True, index=True)
    category = Column(String(100), nullable=True)
    tags = Column(JSON, default=list)
    word_count = Column(Integer, default=0)
    reading_time = Column(Integer, default=0)  # minutes
    featured_image_url = Column(String(500), nullable=True)
    version_count = Column(Integer, default=0)
    published_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(DateTime, default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc))

    # Relationships
    versions = relationship(
        "ContentVersion",
        back_populates="content",
        cascade="all, delete-orphan",
        order_by="ContentVersion.version_number",
    )
    reviews = relationship("Review", back_populates="content", cascade="all, delete-orphan")
    magazine_entries = relationship("MagazineContent", back_populates="content", cascade="all, delete-orphan")


class ContentVersion(Base):
    __tablename__ = "content_versions"
    __table_args__ = (
        UniqueConstraint("content_id", "version_number", name="uq_content_version_number"),
    )

    id = Column(Integer, primary_key=True, index=True)
    content_id = Column(Integer, ForeignKey("content.id", ondelete="CASCADE"), nullable=False, index=True)
    version_number = Column(Integer, nullable=False)
    title = Column(String(500), nullable=False)
    body = Column(Text, nullable=False)
    created_by = Column(Integer, nullable=False)
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))

    # Relationships
    content = relationship("Content", back_populates="versions")

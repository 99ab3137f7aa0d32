"""
Magazine issue model and the ordered join to approved content.
"""
from sqlalchemy import Column, Integer, String, DateTime, Date, Text, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
from ..database import Base
from .enums import MagazineStatus


class Magazine(Base):
    __tablename__ = "magazines"
    __table_args__ = (
        UniqueConstraint("organization_id", "issue_number", "volume_number", name="uq_magazine_issue"),
    )

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    cover_image_url = Column(String(500), nullable=True)
    issue_number = Column(Integer, nullable=False)
    volume_number = Column(Integer, nullable=False)
    publication_date = Column(Date, nullable=True)
    organization_id = Column(Integer, nullable=True, index=True)
    status = Column(String(20), default=MagazineStatus.DRAFT.value, nullable=False, index=True)
    pdf_url = Column(String(500), nullable=True)
    created_by = Column(Integer, nullable=False)
    published_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(DateTime, default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc))

    # Relationships
    entries = relationship(
        "MagazineContent",
        back_populates="magazine",
        cascade="all, delete-orphan",
        order_by="MagazineContent.order_index",
    )


class MagazineContent(Base):
    __tablename__ = "magazine_content"
    __table_args__ = (
        UniqueConstraint("magazine_id", "content_id", name="uq_magazine_content"),
    )

    id = Column(Integer, primary_key=True, index=True)
    magazine_id = Column(Integer, ForeignKey("magazines.id", ondelete="CASCADE"), nullable=False, index=True)
    content_id = Column(Integer, ForeignKey("content.id", ondelete="CASCADE"), nullable=False, index=True)
    order_index = Column(Integer, nullable=False, default=0)
    page_number = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))

    # Relationships
    magazine = relationship("Magazine", back_populates="entries")
    content = relationship("Content", back_populates="magazine_entries")

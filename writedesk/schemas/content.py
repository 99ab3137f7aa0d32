from pydantic import BaseModel, Field, field_validator
from typing import List, Optional
from datetime import datetime

from ..models.enums import Language

MAX_TAGS = 10
MAX_TAG_LENGTH = 50


def _check_tags(tags: Optional[List[str]]) -> Optional[List[str]]:
    if tags is None:
        return tags
    if len(tags) > MAX_TAGS:
        raise ValueError(f"at most {MAX_TAGS} tags are allowed")
    for tag in tags:
        if len(tag) > MAX_TAG_LENGTH:
            raise ValueError(f"tag '{tag[:20]}...' exceeds {MAX_TAG_LENGTH} characters")
    return tags


class ContentCreate(BaseModel):
    title: str = Field(min_length=2, max_length=500)
    body: str
    language: Optional[Language] = None  # detected from the body when omitted
    organization_id: Optional[int] = None
    category: Optional[str] = Field(default=None, max_length=100)
    tags: List[str] = []
    featured_image_url: Optional[str] = Field(default=None, max_length=500)

    @field_validator("tags")
    @classmethod
    def check_tags(cls, tags):
        return _check_tags(tags)

    class Config:
        extra = "forbid"


class ContentUpdate(BaseModel):
    """Fields an author may change. Status moves only through workflow operations."""
    title: Optional[str] = Field(default=None, min_length=2, max_length=500)
    body: Optional[str] = None
    language: Optional[Language] = None
    category: Optional[str] = Field(default=None, max_length=100)
    tags: Optional[List[str]] = None
    featured_image_url: Optional[str] = Field(default=None, max_length=500)

    @field_validator("tags")
    @classmethod
    def check_tags(cls, tags):
        return _check_tags(tags)

    class Config:
        extra = "forbid"


class ContentResponse(BaseModel):
    id: int
    title: str
    body: str
    excerpt: Optional[str] = None
    language: Optional[str] = None
    status: str
    author_id: int
    organization_id: Optional[int] = None
    category: Optional[str] = None
    tags: List[str] = []
    word_count: int
    reading_time: int
    featured_image_url: Optional[str] = None
    version_count: int
    published_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class ContentVersionResponse(BaseModel):
    id: int
    content_id: int
    version_number: int
    title: str
    body: str
    created_by: int
    created_at: datetime

    class Config:
        from_attributes = True

from pydantic import BaseModel, Field
from typing import Optional
from datetime import date, datetime


class MagazineCreate(BaseModel):
    title: str = Field(min_length=2, max_length=200)
    description: Optional[str] = Field(default=None, max_length=1000)
    cover_image_url: Optional[str] = Field(default=None, max_length=500)
    issue_number: int = Field(ge=1)
    volume_number: int = Field(ge=1)
    publication_date: Optional[date] = None
    organization_id: Optional[int] = None

    class Config:
        extra = "forbid"


class MagazineUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=2, max_length=200)
    description: Optional[str] = Field(default=None, max_length=1000)
    cover_image_url: Optional[str] = Field(default=None, max_length=500)
    issue_number: Optional[int] = Field(default=None, ge=1)
    volume_number: Optional[int] = Field(default=None, ge=1)
    publication_date: Optional[date] = None

    class Config:
        extra = "forbid"


class MagazineContentAdd(BaseModel):
    content_id: int
    order_index: int = Field(default=0, ge=0)
    page_number: Optional[int] = Field(default=None, ge=1)

    class Config:
        extra = "forbid"


class MagazineResponse(BaseModel):
    id: int
    title: str
    description: Optional[str] = None
    cover_image_url: Optional[str] = None
    issue_number: int
    volume_number: int
    publication_date: Optional[date] = None
    organization_id: Optional[int] = None
    status: str
    pdf_url: Optional[str] = None
    created_by: int
    published_at: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True


class MagazineContentResponse(BaseModel):
    id: int
    magazine_id: int
    content_id: int
    order_index: int
    page_number: Optional[int] = None
    created_at: datetime

    class Config:
        from_attributes = True

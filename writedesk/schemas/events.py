from pydantic import BaseModel, Field
from typing import List, Optional


class Subscription(BaseModel):
    """Follow a content item on an already open event stream."""
    connection_id: str = Field(min_length=1, max_length=64)
    content_id: int

    class Config:
        extra = "forbid"


class SubscriptionState(BaseModel):
    connection_id: str
    scopes: List[str]


class EditRelay(BaseModel):
    """Unsaved editor state shared with other collaborators."""
    body: str = Field(max_length=200000)
    cursor_position: Optional[int] = Field(default=None, ge=0)
    connection_id: Optional[str] = Field(default=None, max_length=64)

    class Config:
        extra = "forbid"


class CursorRelay(BaseModel):
    cursor_position: int = Field(ge=0)
    connection_id: Optional[str] = Field(default=None, max_length=64)

    class Config:
        extra = "forbid"


class CommentRelay(BaseModel):
    comment: str = Field(min_length=1, max_length=2000)
    connection_id: Optional[str] = Field(default=None, max_length=64)

    class Config:
        extra = "forbid"


class RelayResult(BaseModel):
    event: str
    scope: str
    delivered: int

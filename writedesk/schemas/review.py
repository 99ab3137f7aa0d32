from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime


class ReviewAssign(BaseModel):
    content_id: int
    reviewer_id: int


class ReviewScores(BaseModel):
    """Scores and feedback recorded when a review is completed."""
    rating: Optional[int] = Field(default=None, ge=1, le=5)
    grammar_score: Optional[int] = Field(default=None, ge=0, le=100)
    creativity_score: Optional[int] = Field(default=None, ge=0, le=100)
    relevance_score: Optional[int] = Field(default=None, ge=0, le=100)
    feedback: Optional[str] = Field(default=None, max_length=2000)
    suggestions: Optional[str] = Field(default=None, max_length=2000)

    class Config:
        extra = "forbid"


class ReviewResponse(BaseModel):
    id: int
    content_id: int
    reviewer_id: int
    status: str
    rating: Optional[int] = None
    grammar_score: Optional[int] = None
    creativity_score: Optional[int] = None
    relevance_score: Optional[int] = None
    feedback: Optional[str] = None
    suggestions: Optional[str] = None
    assigned_at: datetime
    completed_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ReviewerStats(BaseModel):
    reviewer_id: int
    total_reviews: int
    completed_reviews: int
    pending_reviews: int
    in_progress_reviews: int
    average_rating: Optional[float] = None
    average_grammar_score: Optional[float] = None
    average_creativity_score: Optional[float] = None
    average_relevance_score: Optional[float] = None


class ReviewCompletion(BaseModel):
    """Completed review plus the state of its review round."""
    review: ReviewResponse
    content_status: str
    round_complete: bool
    pending_reviews: int
    average_rating: Optional[float] = None

"""
Review routes: reviewer assignment, review progress and reviewer statistics.
"""
from fastapi import APIRouter, Depends, Request
from typing import List, Optional

from ..auth import get_required_actor
from ..config import get_settings
from ..deps import get_content_workflow
from ..limiter import limiter
from ..models.enums import ReviewStatus
from ..responses import deleted
from ..schemas.review import ReviewAssign, ReviewCompletion, ReviewResponse, ReviewScores, ReviewerStats
from ..workflow.actor import Actor
from ..workflow.content import ContentWorkflow

settings = get_settings()

router = APIRouter(prefix="/api/reviews", tags=["reviews"])


@router.post("", response_model=ReviewResponse, status_code=201)
@limiter.limit(settings.write_rate_limit)
def assign_review(
    request: Request,
    assignment: ReviewAssign,
    workflow: ContentWorkflow = Depends(get_content_workflow),
    actor: Actor = Depends(get_required_actor),
):
    """Assign a reviewer to submitted content. The first assignment starts the review round."""
    return workflow.assign_review(assignment.content_id, assignment.reviewer_id, actor)


@router.get("", response_model=List[ReviewResponse])
def list_my_reviews(
    status: Optional[ReviewStatus] = None,
    workflow: ContentWorkflow = Depends(get_content_workflow),
    actor: Actor = Depends(get_required_actor),
):
    """Reviews assigned to the caller (administrators see all)."""
    return workflow.my_reviews(actor, status)


@router.get("/stats/reviewer/{reviewer_id}", response_model=ReviewerStats)
def reviewer_stats(
    reviewer_id: int,
    workflow: ContentWorkflow = Depends(get_content_workflow),
    actor: Actor = Depends(get_required_actor),
):
    return workflow.reviewer_stats(reviewer_id, actor)


@router.get("/{review_id}", response_model=ReviewResponse)
def get_review(
    review_id: int,
    workflow: ContentWorkflow = Depends(get_content_workflow),
    actor: Actor = Depends(get_required_actor),
):
    return workflow.get_review(review_id, actor)


@router.post("/{review_id}/start", response_model=ReviewResponse)
def start_review(
    review_id: int,
    workflow: ContentWorkflow = Depends(get_content_workflow),
    actor: Actor = Depends(get_required_actor),
):
    return workflow.start_review(review_id, actor)


@router.post("/{review_id}/complete", response_model=ReviewCompletion)
@limiter.limit(settings.write_rate_limit)
def complete_review(
    request: Request,
    review_id: int,
    scores: ReviewScores,
    workflow: ContentWorkflow = Depends(get_content_workflow),
    actor: Actor = Depends(get_required_actor),
):
    """Record scores and feedback. Completing the last review decides the content's fate."""
    result = workflow.complete_review(review_id, actor, scores)
    return ReviewCompletion(
        review=ReviewResponse.model_validate(result.review),
        content_status=result.content.status,
        round_complete=result.aggregate.complete,
        pending_reviews=result.aggregate.pending,
        average_rating=result.aggregate.average_rating,
    )


@router.patch("/{review_id}", response_model=ReviewResponse)
@limiter.limit(settings.write_rate_limit)
def save_review(
    request: Request,
    review_id: int,
    scores: ReviewScores,
    workflow: ContentWorkflow = Depends(get_content_workflow),
    actor: Actor = Depends(get_required_actor),
):
    """Save scores and feedback in progress without completing the review."""
    return workflow.save_review(review_id, actor, scores)


@router.delete("/{review_id}")
def delete_review(
    review_id: int,
    workflow: ContentWorkflow = Depends(get_content_workflow),
    actor: Actor = Depends(get_required_actor),
):
    """Withdraw a review (assigned reviewer or administrator)."""
    workflow.delete_review(review_id, actor)
    return deleted("Review deleted")

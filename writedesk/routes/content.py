"""
Content routes: authoring, submission, publication and version history.
"""
from fastapi import APIRouter, Depends, Query, Request
from datetime import date
from typing import List, Optional

from ..auth import get_required_actor
from ..config import get_settings
from ..deps import get_content_workflow
from ..limiter import limiter
from ..models.enums import ContentStatus, Language
from ..responses import ApiException, deleted, paginated
from ..schemas.content import ContentCreate, ContentUpdate, ContentResponse, ContentVersionResponse
from ..schemas.review import ReviewResponse
from ..workflow.actor import Actor
from ..workflow.content import ContentWorkflow

settings = get_settings()

router = APIRouter(prefix="/api/content", tags=["content"])


@router.get("")
def list_content(
    status: Optional[ContentStatus] = None,
    q: Optional[str] = Query(None, max_length=200),
    language: Optional[Language] = None,
    category: Optional[str] = Query(None, max_length=100),
    tags: Optional[str] = Query(None, max_length=500, description="Comma-separated, matches any"),
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
    workflow: ContentWorkflow = Depends(get_content_workflow),
    actor: Actor = Depends(get_required_actor),
):
    """Search content visible to the caller by text, status, language, category, tags or creation date."""
    if date_from and date_to and date_from > date_to:
        raise ApiException(400, "date_from must not be after date_to", "BAD_REQUEST")
    tag_list = [tag.strip() for tag in tags.split(",") if tag.strip()] if tags else None
    items, total = workflow.list(
        actor,
        status=status,
        q=q,
        skip=(page - 1) * per_page,
        limit=per_page,
        language=language,
        category=category,
        tags=tag_list,
        date_from=date_from,
        date_to=date_to,
    )
    data = [ContentResponse.model_validate(c).model_dump(mode="json") for c in items]
    return paginated(data, total, page, per_page)


@router.post("", response_model=ContentResponse, status_code=201)
@limiter.limit(settings.write_rate_limit)
def create_content(
    request: Request,
    data: ContentCreate,
    workflow: ContentWorkflow = Depends(get_content_workflow),
    actor: Actor = Depends(get_required_actor),
):
    """Create a draft. Derived metrics and version 1 are recorded with it."""
    return workflow.create(actor, data)


@router.get("/{content_id}", response_model=ContentResponse)
def get_content(
    content_id: int,
    workflow: ContentWorkflow = Depends(get_content_workflow),
    actor: Actor = Depends(get_required_actor),
):
    return workflow.get(content_id, actor)


@router.patch("/{content_id}", response_model=ContentResponse)
@limiter.limit(settings.write_rate_limit)
def update_content(
    request: Request,
    content_id: int,
    changes: ContentUpdate,
    workflow: ContentWorkflow = Depends(get_content_workflow),
    actor: Actor = Depends(get_required_actor),
):
    """Edit a draft. A new body appends the next version."""
    return workflow.update(content_id, actor, changes)


@router.delete("/{content_id}")
def delete_content(
    content_id: int,
    workflow: ContentWorkflow = Depends(get_content_workflow),
    actor: Actor = Depends(get_required_actor),
):
    """Delete content together with its versions and reviews."""
    workflow.delete(content_id, actor)
    return deleted("Content deleted")


@router.post("/{content_id}/submit", response_model=ContentResponse)
def submit_content(
    content_id: int,
    workflow: ContentWorkflow = Depends(get_content_workflow),
    actor: Actor = Depends(get_required_actor),
):
    """Submit a draft for review (author only)."""
    return workflow.submit(content_id, actor)


@router.post("/{content_id}/publish", response_model=ContentResponse)
@limiter.limit(settings.publish_rate_limit)
def publish_content(
    request: Request,
    content_id: int,
    workflow: ContentWorkflow = Depends(get_content_workflow),
    actor: Actor = Depends(get_required_actor),
):
    """Publish approved content (teachers and administrators)."""
    return workflow.publish(content_id, actor)


@router.get("/{content_id}/versions", response_model=List[ContentVersionResponse])
def list_versions(
    content_id: int,
    workflow: ContentWorkflow = Depends(get_content_workflow),
    actor: Actor = Depends(get_required_actor),
):
    """Version history, newest first."""
    return workflow.list_versions(content_id, actor)


@router.get("/{content_id}/versions/{version_number}", response_model=ContentVersionResponse)
def get_version(
    content_id: int,
    version_number: int,
    workflow: ContentWorkflow = Depends(get_content_workflow),
    actor: Actor = Depends(get_required_actor),
):
    return workflow.get_version(content_id, version_number, actor)


@router.get("/{content_id}/reviews", response_model=List[ReviewResponse])
def list_content_reviews(
    content_id: int,
    workflow: ContentWorkflow = Depends(get_content_workflow),
    actor: Actor = Depends(get_required_actor),
):
    return workflow.reviews_for(content_id, actor)

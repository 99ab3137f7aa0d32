"""
Magazine routes: issue management, content assembly and publication.
"""
from fastapi import APIRouter, Depends, Query, Request
from typing import List, Optional

from ..auth import get_required_actor
from ..config import get_settings
from ..deps import get_magazine_assembler
from ..limiter import limiter
from ..models.enums import MagazineStatus
from ..responses import deleted, paginated
from ..schemas.magazine import (
    MagazineContentAdd,
    MagazineContentResponse,
    MagazineCreate,
    MagazineResponse,
    MagazineUpdate,
)
from ..workflow.actor import Actor
from ..workflow.magazines import MagazineAssembler

settings = get_settings()

router = APIRouter(prefix="/api/magazines", tags=["magazines"])


@router.get("")
def list_magazines(
    status: Optional[MagazineStatus] = None,
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
    assembler: MagazineAssembler = Depends(get_magazine_assembler),
    actor: Actor = Depends(get_required_actor),
):
    """List magazines of the caller's organization, newest issue first."""
    items, total = assembler.list(actor, status=status, skip=(page - 1) * per_page, limit=per_page)
    data = [MagazineResponse.model_validate(m).model_dump(mode="json") for m in items]
    return paginated(data, total, page, per_page)


@router.post("", response_model=MagazineResponse, status_code=201)
@limiter.limit(settings.write_rate_limit)
def create_magazine(
    request: Request,
    data: MagazineCreate,
    assembler: MagazineAssembler = Depends(get_magazine_assembler),
    actor: Actor = Depends(get_required_actor),
):
    """Create a draft issue. Issue and volume must be unique per organization."""
    return assembler.create(actor, data)


@router.get("/{magazine_id}", response_model=MagazineResponse)
def get_magazine(
    magazine_id: int,
    assembler: MagazineAssembler = Depends(get_magazine_assembler),
    actor: Actor = Depends(get_required_actor),
):
    return assembler.get(magazine_id)


@router.patch("/{magazine_id}", response_model=MagazineResponse)
def update_magazine(
    magazine_id: int,
    changes: MagazineUpdate,
    assembler: MagazineAssembler = Depends(get_magazine_assembler),
    actor: Actor = Depends(get_required_actor),
):
    return assembler.update(magazine_id, actor, changes)


@router.delete("/{magazine_id}")
def delete_magazine(
    magazine_id: int,
    assembler: MagazineAssembler = Depends(get_magazine_assembler),
    actor: Actor = Depends(get_required_actor),
):
    assembler.delete(magazine_id, actor)
    return deleted("Magazine deleted")


@router.get("/{magazine_id}/content", response_model=List[MagazineContentResponse])
def list_magazine_content(
    magazine_id: int,
    assembler: MagazineAssembler = Depends(get_magazine_assembler),
    actor: Actor = Depends(get_required_actor),
):
    """Entries in reading order."""
    return assembler.ordered_content(magazine_id)


@router.post("/{magazine_id}/content", response_model=MagazineContentResponse, status_code=201)
def add_magazine_content(
    magazine_id: int,
    entry: MagazineContentAdd,
    assembler: MagazineAssembler = Depends(get_magazine_assembler),
    actor: Actor = Depends(get_required_actor),
):
    """Add approved content to the issue."""
    return assembler.add_content(magazine_id, actor, entry)


@router.delete("/{magazine_id}/content/{content_id}")
def remove_magazine_content(
    magazine_id: int,
    content_id: int,
    assembler: MagazineAssembler = Depends(get_magazine_assembler),
    actor: Actor = Depends(get_required_actor),
):
    assembler.remove_content(magazine_id, content_id, actor)
    return deleted("Content removed from magazine")


@router.post("/{magazine_id}/publish", response_model=MagazineResponse)
@limiter.limit(settings.publish_rate_limit)
def publish_magazine(
    request: Request,
    magazine_id: int,
    assembler: MagazineAssembler = Depends(get_magazine_assembler),
    actor: Actor = Depends(get_required_actor),
):
    """Render the issue and publish it. Nothing changes if rendering fails."""
    return assembler.publish(magazine_id, actor)

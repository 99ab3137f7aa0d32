"""
Dependency providers wiring the workflow services for each request.

Process-wide collaborators (the outbound event queue, the lock registries and
the aggregation policy) are created once here and injected into the
per-request services, so tests can override any of them.
"""
from functools import lru_cache

from fastapi import Depends
from sqlalchemy.orm import Session

from .config import get_settings
from .database import get_db
from .realtime import EventManager, event_manager
from .workflow.aggregator import ReviewAggregator
from .workflow.broadcaster import EventBroadcaster, EventOutbox
from .workflow.content import ContentWorkflow
from .workflow.locks import ContentLockRegistry
from .workflow.magazines import MagazineAssembler
from .workflow.renderer import HtmlMagazineRenderer, LocalArtifactStore, MagazineRenderer
from .workflow.versions import ContentVersionStore

settings = get_settings()

# Shared across requests
outbox = EventOutbox(event_manager, maxsize=settings.event_queue_size)
content_locks = ContentLockRegistry()
magazine_locks = ContentLockRegistry()


def get_event_manager() -> EventManager:
    return event_manager


def get_outbox() -> EventOutbox:
    return outbox


def get_broadcaster(outbox: EventOutbox = Depends(get_outbox)) -> EventBroadcaster:
    return EventBroadcaster(outbox)


@lru_cache()
def get_aggregator() -> ReviewAggregator:
    return ReviewAggregator(settings.review_approval_threshold)


def get_renderer() -> MagazineRenderer:
    return HtmlMagazineRenderer()


def get_artifact_store() -> LocalArtifactStore:
    return LocalArtifactStore(settings.artifact_dir, settings.artifact_url_prefix)


def get_content_workflow(
    db: Session = Depends(get_db),
    broadcaster: EventBroadcaster = Depends(get_broadcaster),
    aggregator: ReviewAggregator = Depends(get_aggregator),
) -> ContentWorkflow:
    return ContentWorkflow(
        db,
        broadcaster,
        versions=ContentVersionStore(),
        aggregator=aggregator,
        locks=content_locks,
        settings=settings,
    )


def get_magazine_assembler(
    db: Session = Depends(get_db),
    broadcaster: EventBroadcaster = Depends(get_broadcaster),
    renderer: MagazineRenderer = Depends(get_renderer),
    artifacts: LocalArtifactStore = Depends(get_artifact_store),
) -> MagazineAssembler:
    return MagazineAssembler(
        db,
        broadcaster,
        renderer=renderer,
        artifacts=artifacts,
        locks=magazine_locks,
        settings=settings,
    )

from .actor import Actor
from .aggregator import AggregateResult, ReviewAggregator
from .broadcaster import EventBroadcaster, EventOutbox, OutboundEvent
from .content import CompletionResult, ContentWorkflow
from .locks import ContentLockRegistry
from .magazines import MagazineAssembler
from .renderer import HtmlMagazineRenderer, LocalArtifactStore
from .versions import ContentVersionStore

__all__ = [
    "Actor",
    "AggregateResult",
    "ReviewAggregator",
    "EventBroadcaster",
    "EventOutbox",
    "OutboundEvent",
    "CompletionResult",
    "ContentWorkflow",
    "ContentLockRegistry",
    "MagazineAssembler",
    "HtmlMagazineRenderer",
    "LocalArtifactStore",
    "ContentVersionStore",
]

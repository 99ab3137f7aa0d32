"""
writedesk Real-time Events (SSE)
Server-Sent Events for live workflow updates and notifications, plus the
inbound relay clients use to share editor state on a content item
"""
from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import StreamingResponse
from typing import AsyncGenerator, Dict, List, Optional
from datetime import datetime, timezone
import asyncio
import uuid

from ..auth import actor_from_token, get_required_actor, oauth2_scheme
from ..config import get_settings
from ..deps import get_content_workflow, get_event_manager, get_outbox
from ..logging_config import events_logger
from ..realtime import EventManager, content_scope, organization_scope, user_scope
from ..responses import ApiException
from ..schemas.events import (
    CommentRelay,
    CursorRelay,
    EditRelay,
    RelayResult,
    Subscription,
    SubscriptionState,
)
from ..workflow.actor import Actor
from ..workflow.broadcaster import EventOutbox
from ..workflow.content import ContentWorkflow

settings = get_settings()

router = APIRouter(prefix="/api/events", tags=["events"])


def stream_actor(
    access_token: Optional[str] = Query(None, description="Bearer token for clients that cannot set headers"),
    token: Optional[str] = Depends(oauth2_scheme),
) -> Actor:
    actor: Optional[Actor] = actor_from_token(token or access_token) if (token or access_token) else None
    if not actor:
        raise ApiException(401, "Not authenticated", "UNAUTHORIZED")
    return actor


def resolve_scopes(
    content: str = Query("", description="Comma-separated content ids to follow"),
    actor: Actor = Depends(stream_actor),
    workflow: ContentWorkflow = Depends(get_content_workflow),
) -> List[str]:
    """Scopes the caller may follow: its own user and organization, plus visible content."""
    scopes = [user_scope(actor.id)]
    if actor.organization_id is not None:
        scopes.append(organization_scope(actor.organization_id))

    for raw in content.split(","):
        raw = raw.strip()
        if not raw:
            continue
        try:
            content_id = int(raw)
        except ValueError:
            raise ApiException(400, f"Invalid content id '{raw}'", "BAD_REQUEST")
        workflow.get(content_id, actor)
        scopes.append(content_scope(content_id))
    return scopes


async def event_stream(
    request: Request,
    manager: EventManager,
    connection_id: str,
    scopes: List[str],
    owner_id: int,
) -> AsyncGenerator:
    """Generator for SSE stream"""
    queue = await manager.connect(connection_id, scopes, owner_id=owner_id)

    try:
        while True:
            # Check if client disconnected
            if await request.is_disconnected():
                break

            try:
                # Wait for events with timeout (for keepalive)
                event = await asyncio.wait_for(queue.get(), timeout=settings.realtime_keepalive_seconds)
                yield event.to_sse()
            except asyncio.TimeoutError:
                # Send keepalive comment
                yield ": keepalive\n\n"

    finally:
        await manager.disconnect(connection_id)


@router.get("/stream")
async def sse_stream(
    request: Request,
    actor: Actor = Depends(stream_actor),
    scopes: List[str] = Depends(resolve_scopes),
    manager: EventManager = Depends(get_event_manager),
):
    """
    SSE endpoint for real-time events.

    The stream always carries ``user:<id>`` and ``organization:<id>`` for the
    caller. Pass ``content=1,2`` to follow individual content items, or
    follow more later through ``/api/events/subscriptions`` using the
    ``connection_id`` from the first ``connected`` event.

    Example:
    ```
    const source = new EventSource('/api/events/stream?content=42&access_token=...');
    source.addEventListener('content:status', (event) => {
        const data = JSON.parse(event.data);
        console.log(data.scope, data.data.status);
    });
    ```
    """
    connection_id = f"conn_{uuid.uuid4().hex[:8]}"

    return StreamingResponse(
        event_stream(request, manager, connection_id, scopes, actor.id),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",  # Disable nginx buffering
        }
    )


# ============================================================
# SUBSCRIPTIONS
# ============================================================

def _own_connection(manager: EventManager, connection_id: str, actor: Actor):
    # Connections of other users are reported as missing
    if manager.owner_of(connection_id) != actor.id:
        raise ApiException(404, f"Connection '{connection_id}' not found", "NOT_FOUND")


@router.post("/subscriptions", response_model=SubscriptionState)
def join_content(
    subscription: Subscription,
    workflow: ContentWorkflow = Depends(get_content_workflow),
    manager: EventManager = Depends(get_event_manager),
    actor: Actor = Depends(get_required_actor),
):
    """Start following a content item on an open stream."""
    _own_connection(manager, subscription.connection_id, actor)
    workflow.get(subscription.content_id, actor)
    manager.subscribe(content_scope(subscription.content_id), subscription.connection_id)
    events_logger.info(
        "Joined content",
        connection_id=subscription.connection_id,
        content_id=subscription.content_id,
        user_id=actor.id,
    )
    return SubscriptionState(
        connection_id=subscription.connection_id,
        scopes=manager.connection_scopes(subscription.connection_id),
    )


@router.delete("/subscriptions/{connection_id}/content/{content_id}", response_model=SubscriptionState)
def leave_content(
    connection_id: str,
    content_id: int,
    manager: EventManager = Depends(get_event_manager),
    actor: Actor = Depends(get_required_actor),
):
    """Stop following a content item."""
    _own_connection(manager, connection_id, actor)
    manager.unsubscribe(content_scope(content_id), connection_id)
    events_logger.info("Left content", connection_id=connection_id, content_id=content_id, user_id=actor.id)
    return SubscriptionState(connection_id=connection_id, scopes=manager.connection_scopes(connection_id))


# ============================================================
# COLLABORATION RELAY
# ============================================================

def _relay(
    manager: EventManager,
    content_id: int,
    event_name: str,
    actor: Actor,
    payload: Dict,
    sender: Optional[str],
) -> RelayResult:
    scope = content_scope(content_id)
    payload = {
        "content_id": content_id,
        **payload,
        "user_id": actor.id,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    delivered = manager.publish(scope, event_name, payload, exclude=sender)
    events_logger.debug("Relayed client event", event_name=event_name, scope=scope, delivered=delivered)
    return RelayResult(event=event_name, scope=scope, delivered=delivered)


@router.post("/content/{content_id}/edit", response_model=RelayResult)
def relay_edit(
    content_id: int,
    relay: EditRelay,
    workflow: ContentWorkflow = Depends(get_content_workflow),
    manager: EventManager = Depends(get_event_manager),
    actor: Actor = Depends(get_required_actor),
):
    """Share unsaved editor text with everyone following the content. Nothing is stored."""
    workflow.get(content_id, actor)
    return _relay(
        manager,
        content_id,
        "content:update",
        actor,
        {"body": relay.body, "cursor_position": relay.cursor_position},
        relay.connection_id,
    )


@router.post("/content/{content_id}/cursor", response_model=RelayResult)
def relay_cursor(
    content_id: int,
    relay: CursorRelay,
    workflow: ContentWorkflow = Depends(get_content_workflow),
    manager: EventManager = Depends(get_event_manager),
    actor: Actor = Depends(get_required_actor),
):
    workflow.get(content_id, actor)
    return _relay(
        manager,
        content_id,
        "content:cursor:update",
        actor,
        {"cursor_position": relay.cursor_position},
        relay.connection_id,
    )


@router.post("/content/{content_id}/comments", response_model=RelayResult)
def relay_comment(
    content_id: int,
    relay: CommentRelay,
    workflow: ContentWorkflow = Depends(get_content_workflow),
    manager: EventManager = Depends(get_event_manager),
    actor: Actor = Depends(get_required_actor),
):
    """Broadcast a live comment to collaborators. Comments are not persisted."""
    workflow.get(content_id, actor)
    return _relay(manager, content_id, "comment:added", actor, {"comment": relay.comment}, relay.connection_id)


@router.get("/status")
def events_status(
    outbox: EventOutbox = Depends(get_outbox),
    manager: EventManager = Depends(get_event_manager),
):
    """Get current event system status"""
    return {
        "ok": True,
        "connected_clients": manager.connection_count,
        "scopes": manager.scopes,
        "queued_events": outbox.queue.qsize(),
        "dispatcher_running": outbox.running,
    }

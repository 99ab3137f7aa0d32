"""
writedesk Real-time Transport
Scoped publish/subscribe for connected clients (user:<id>, organization:<id>, content:<id>)
"""
import asyncio
import json
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Set

from .logging_config import events_logger


# ============================================================
# SCOPES
# ============================================================

def user_scope(user_id: int) -> str:
    return f"user:{user_id}"


def organization_scope(organization_id: int) -> str:
    return f"organization:{organization_id}"


def content_scope(content_id: int) -> str:
    return f"content:{content_id}"


# ============================================================
# EVENT TYPES
# ============================================================

@dataclass
class Event:
    """Server-sent event structure"""
    type: str
    data: Dict
    scope: str = ""
    id: str = ""
    timestamp: str = ""

    def __post_init__(self):
        if not self.id:
            self.id = f"evt_{uuid.uuid4().hex[:8]}"
        if not self.timestamp:
            self.timestamp = datetime.now(timezone.utc).isoformat()

    def to_sse(self) -> str:
        """Format as SSE message"""
        payload = {
            "type": self.type,
            "scope": self.scope,
            "data": self.data,
            "timestamp": self.timestamp,
        }
        return f"id: {self.id}\nevent: {self.type}\ndata: {json.dumps(payload, default=str)}\n\n"


@dataclass
class Connection:
    """One live client: its queue and the event loop that owns it"""
    id: str
    queue: asyncio.Queue
    loop: asyncio.AbstractEventLoop
    owner_id: Optional[int] = None
    scopes: Set[str] = field(default_factory=set)


# ============================================================
# EVENT MANAGER (Pub/Sub)
# ============================================================

class EventManager:
    """Manages live connections and scope subscriptions.

    ``publish`` may be called from any thread: delivery is handed to the
    connection's own event loop, so workflow code running in the request
    thread pool or in the outbox dispatcher never awaits a client.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._connections: Dict[str, Connection] = {}
        self._scopes: Dict[str, Set[str]] = {}  # scope -> connection ids

    async def connect(
        self,
        connection_id: str,
        scopes: Optional[Iterable[str]] = None,
        owner_id: Optional[int] = None,
    ) -> asyncio.Queue:
        """Register a new connection on the running loop and subscribe it"""
        queue: asyncio.Queue = asyncio.Queue()
        connection = Connection(
            id=connection_id,
            queue=queue,
            loop=asyncio.get_running_loop(),
            owner_id=owner_id,
        )
        with self._lock:
            self._connections[connection_id] = connection

        for scope in scopes or []:
            self.subscribe(scope, connection_id)

        await queue.put(Event(
            type="connected",
            data={"connection_id": connection_id, "scopes": sorted(connection.scopes)},
        ))
        return queue

    def subscribe(self, scope: str, connection_id: str) -> bool:
        with self._lock:
            connection = self._connections.get(connection_id)
            if connection is None:
                return False
            connection.scopes.add(scope)
            self._scopes.setdefault(scope, set()).add(connection_id)
        return True

    def _forget(self, connection_id: str, scopes: Iterable[str]):
        # Caller holds self._lock
        for scope in scopes:
            members = self._scopes.get(scope)
            if members is not None:
                members.discard(connection_id)
                if not members:
                    del self._scopes[scope]

    def unsubscribe(self, scope: str, connection_id: str) -> bool:
        with self._lock:
            connection = self._connections.get(connection_id)
            if connection:
                connection.scopes.discard(scope)
            self._forget(connection_id, [scope])
        return connection is not None

    def owner_of(self, connection_id: str) -> Optional[int]:
        """User that opened ``connection_id``, or None for unknown connections"""
        with self._lock:
            connection = self._connections.get(connection_id)
            return connection.owner_id if connection else None

    def connection_scopes(self, connection_id: str) -> List[str]:
        with self._lock:
            connection = self._connections.get(connection_id)
            return sorted(connection.scopes) if connection else []

    async def disconnect(self, connection_id: str):
        """Remove a connection and all its subscriptions"""
        with self._lock:
            connection = self._connections.pop(connection_id, None)
            if connection is None:
                return
            self._forget(connection_id, connection.scopes)

    def publish(self, scope: str, event_name: str, payload: Dict, exclude: Optional[str] = None) -> int:
        """Deliver an event to every connection subscribed to ``scope``.

        Returns the number of connections the event was handed to. A scope
        without subscribers is not an error. ``exclude`` skips one connection,
        usually the sender of a relayed client event.
        """
        event = Event(type=event_name, data=payload, scope=scope)
        with self._lock:
            targets: List[Connection] = [
                self._connections[cid]
                for cid in self._scopes.get(scope, ())
                if cid in self._connections and cid != exclude
            ]

        delivered = 0
        for connection in targets:
            try:
                connection.loop.call_soon_threadsafe(connection.queue.put_nowait, event)
                delivered += 1
            except RuntimeError:
                # Loop already closed: the client went away without disconnecting
                events_logger.warning(
                    "Dropping stale connection",
                    connection_id=connection.id,
                    scope=scope,
                )
                with self._lock:
                    self._connections.pop(connection.id, None)
                    self._forget(connection.id, list(self._scopes))
        return delivered

    @property
    def connection_count(self) -> int:
        with self._lock:
            return len(self._connections)

    @property
    def scopes(self) -> List[str]:
        with self._lock:
            return sorted(self._scopes.keys())


# Global event manager
event_manager = EventManager()

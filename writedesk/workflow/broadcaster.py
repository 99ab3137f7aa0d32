"""
Fan-out of workflow transitions to notifications and real-time events.

Notifications are written in the caller's transaction and are the durable
record. Real-time events are staged on the session and only handed to the
outbound queue once that transaction commits; a rollback discards them.
A background dispatcher drains the queue into the transport, so a slow or
absent subscriber never holds up a workflow operation.
"""
import threading
from dataclasses import dataclass
from queue import Empty, Full, Queue
from typing import Dict, Iterable, List, Optional, Protocol

from sqlalchemy import event
from sqlalchemy.orm import Session

from ..logging_config import events_logger
from ..models.content import Content
from ..models.enums import ContentStatus, NotificationType
from ..models.magazine import Magazine
from ..models.notification import Notification
from ..models.review import Review
from ..realtime import content_scope, organization_scope, user_scope
from .aggregator import AggregateResult

_STAGED_KEY = "writedesk.outbound"


class RealtimeTransport(Protocol):
    def publish(self, scope: str, event_name: str, payload: Dict) -> int:
        ...


@dataclass(frozen=True)
class OutboundEvent:
    scope: str
    name: str
    payload: Dict


# ============================================================
# OUTBOUND QUEUE
# ============================================================

class EventOutbox:
    """FIFO of committed events with a single consumer.

    Events enter in commit order and leave in the same order, which keeps the
    sequence seen by any one recipient identical to the commit sequence.
    """

    def __init__(self, transport: RealtimeTransport, maxsize: int = 0):
        self.transport = transport
        self.queue: Queue = Queue(maxsize=maxsize)
        self.commit_lock = threading.Lock()
        self._consume_lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None
        self.running = False

    def put(self, events: Iterable[OutboundEvent]):
        for item in events:
            try:
                self.queue.put_nowait(item)
            except Full:
                events_logger.warning(
                    "Outbound queue full, dropping real-time event",
                    scope=item.scope,
                    event_name=item.name,
                )

    def _deliver(self, item: OutboundEvent):
        try:
            delivered = self.transport.publish(item.scope, item.name, item.payload)
        except Exception as e:
            events_logger.error(
                "Real-time delivery failed",
                error=e,
                scope=item.scope,
                event_name=item.name,
            )
            return
        events_logger.debug(
            "Real-time event delivered",
            scope=item.scope,
            event_name=item.name,
            subscribers=delivered,
        )

    def drain(self) -> int:
        """Deliver everything queued right now on the calling thread."""
        count = 0
        with self._consume_lock:
            while True:
                try:
                    item = self.queue.get_nowait()
                except Empty:
                    return count
                self._deliver(item)
                count += 1

    def _run(self):
        while self.running:
            with self._consume_lock:
                try:
                    item = self.queue.get(timeout=0.2)
                except Empty:
                    continue
                self._deliver(item)

    def start(self) -> bool:
        """Start the dispatcher thread (non-blocking for FastAPI)"""
        if self.running:
            return False
        self.running = True
        self._thread = threading.Thread(target=self._run, daemon=True, name="event-dispatcher")
        self._thread.start()
        events_logger.info("Event dispatcher started")
        return True

    def stop(self, timeout: float = 5.0) -> bool:
        """Stop the dispatcher, then flush whatever is still queued"""
        if not self.running:
            return False
        self.running = False
        if self._thread:
            self._thread.join(timeout=timeout)
            self._thread = None
        flushed = self.drain()
        events_logger.info("Event dispatcher stopped", flushed=flushed)
        return True


# ============================================================
# SESSION HOOKS
# ============================================================

@event.listens_for(Session, "after_commit")
def _release_staged_events(session: Session):
    staged = session.info.pop(_STAGED_KEY, None)
    if not staged:
        return
    for outbox, item in staged:
        outbox.put([item])


@event.listens_for(Session, "after_rollback")
def _discard_staged_events(session: Session):
    session.info.pop(_STAGED_KEY, None)


# ============================================================
# BROADCASTER
# ============================================================

def notification_to_dict(notification: Notification) -> dict:
    return {
        "id": notification.id,
        "user_id": notification.user_id,
        "type": notification.type,
        "title": notification.title,
        "message": notification.message,
        "data": notification.data,
        "is_read": bool(notification.is_read),
        "created_at": notification.created_at.isoformat() if notification.created_at else None,
    }


class EventBroadcaster:
    """Stateless translation of transitions into notifications and events."""

    def __init__(self, outbox: EventOutbox):
        self.outbox = outbox

    @property
    def commit_lock(self):
        return self.outbox.commit_lock

    def _stage(self, db: Session, scope: str, name: str, payload: Dict):
        db.info.setdefault(_STAGED_KEY, []).append((self.outbox, OutboundEvent(scope, name, payload)))

    def _notify(
        self,
        db: Session,
        user_ids: Iterable[int],
        noti_type: NotificationType,
        title: str,
        message: str,
        data: Optional[Dict] = None,
    ) -> List[Notification]:
        rows = []
        for user_id in dict.fromkeys(user_ids):
            row = Notification(
                user_id=user_id,
                type=noti_type.value,
                title=title,
                message=message,
                data=data,
                is_read=False,
            )
            db.add(row)
            rows.append(row)
        db.flush()
        for row in rows:
            self._stage(db, user_scope(row.user_id), "notification:new", notification_to_dict(row))
        return rows

    # -- content -------------------------------------------------------

    def content_submitted(self, db: Session, content: Content):
        payload = {"content_id": content.id, "author_id": content.author_id, "status": content.status}
        self._stage(db, content_scope(content.id), "content:submitted", payload)
        if content.organization_id is not None:
            self._stage(db, organization_scope(content.organization_id), "content:submitted", payload)

    def content_updated(self, db: Session, content: Content, actor_id: int):
        self._stage(db, content_scope(content.id), "content:updated", {
            "content_id": content.id,
            "title": content.title,
            "version_count": content.version_count,
            "updated_by": actor_id,
        })

    def content_deleted(self, db: Session, content_id: int, actor_id: int):
        self._stage(db, content_scope(content_id), "content:deleted", {
            "content_id": content_id,
            "deleted_by": actor_id,
        })

    def content_published(self, db: Session, content: Content):
        self._stage(db, content_scope(content.id), "content:status", {
            "content_id": content.id,
            "status": content.status,
        })

    def content_decided(self, db: Session, content: Content, result: AggregateResult):
        approved = content.status == ContentStatus.APPROVED.value
        self._notify(
            db,
            [content.author_id],
            NotificationType.CONTENT_APPROVED if approved else NotificationType.CONTENT_REJECTED,
            "Content approved" if approved else "Content rejected",
            f'"{content.title}" was {"approved" if approved else "rejected"} '
            f"with an average rating of {result.average_rating:.2f}.",
            {"content_id": content.id, "average_rating": result.average_rating},
        )
        self._stage(db, content_scope(content.id), "content:status", {
            "content_id": content.id,
            "status": content.status,
            "average_rating": result.average_rating,
        })

    # -- reviews -------------------------------------------------------

    def review_assigned(self, db: Session, content: Content, review: Review):
        self._notify(
            db,
            [content.author_id, review.reviewer_id],
            NotificationType.REVIEW_ASSIGNED,
            "Review assigned",
            f'A reviewer was assigned to "{content.title}".',
            {"content_id": content.id, "review_id": review.id, "reviewer_id": review.reviewer_id},
        )
        self._stage(db, content_scope(content.id), "review:assigned", {
            "content_id": content.id,
            "review_id": review.id,
            "reviewer_id": review.reviewer_id,
            "status": content.status,
        })

    def review_started(self, db: Session, content: Content, review: Review):
        self._stage(db, content_scope(content.id), "review:started", {
            "content_id": content.id,
            "review_id": review.id,
            "reviewer_id": review.reviewer_id,
        })

    def review_updated(self, db: Session, content: Content, review: Review):
        self._stage(db, content_scope(content.id), "review:updated", {
            "content_id": content.id,
            "review_id": review.id,
            "reviewer_id": review.reviewer_id,
            "status": review.status,
        })

    def review_deleted(self, db: Session, content: Content, review_id: int, reviewer_id: int, actor_id: int):
        self._stage(db, content_scope(content.id), "review:deleted", {
            "content_id": content.id,
            "review_id": review_id,
            "reviewer_id": reviewer_id,
            "deleted_by": actor_id,
        })

    def review_completed(self, db: Session, content: Content, review: Review):
        self._notify(
            db,
            [content.author_id],
            NotificationType.REVIEW_COMPLETED,
            "Review completed",
            f'A review of "{content.title}" was completed.',
            {"content_id": content.id, "review_id": review.id, "rating": review.rating},
        )
        self._stage(db, content_scope(content.id), "review:completed", {
            "content_id": content.id,
            "review_id": review.id,
            "reviewer_id": review.reviewer_id,
            "rating": review.rating,
        })

    # -- magazines -----------------------------------------------------

    def magazine_published(self, db: Session, magazine: Magazine, member_ids: Iterable[int]):
        self._notify(
            db,
            member_ids,
            NotificationType.MAGAZINE_PUBLISHED,
            "Magazine published",
            f'"{magazine.title}" issue {magazine.issue_number}, volume {magazine.volume_number} is out.',
            {"magazine_id": magazine.id, "pdf_url": magazine.pdf_url},
        )
        if magazine.organization_id is not None:
            self._stage(db, organization_scope(magazine.organization_id), "magazine:published", {
                "magazine_id": magazine.id,
                "title": magazine.title,
                "issue_number": magazine.issue_number,
                "volume_number": magazine.volume_number,
                "pdf_url": magazine.pdf_url,
            })

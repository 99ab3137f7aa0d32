"""
Notification routes: the caller's inbox of workflow events.
"""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..auth import get_required_actor
from ..database import get_db, transaction
from ..models.notification import Notification
from ..responses import ApiException, deleted, paginated, success
from ..schemas.notification import NotificationResponse, UnreadCount
from ..workflow.actor import Actor

router = APIRouter(prefix="/api/notifications", tags=["notifications"])


def _get_owned(db: Session, notification_id: int, actor: Actor) -> Notification:
    notification = db.query(Notification).filter(
        Notification.id == notification_id,
        Notification.user_id == actor.id,
    ).first()
    if not notification:
        raise ApiException(404, f"Notification '{notification_id}' not found", "NOT_FOUND")
    return notification


@router.get("")
def list_notifications(
    unread_only: bool = False,
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_required_actor),
):
    """Get the caller's notifications, newest first."""
    query = db.query(Notification).filter(Notification.user_id == actor.id)
    if unread_only:
        query = query.filter(Notification.is_read.is_(False))
    total = query.count()
    items = (
        query.order_by(Notification.created_at.desc(), Notification.id.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
        .all()
    )
    data = [NotificationResponse.model_validate(n).model_dump(mode="json") for n in items]
    return paginated(data, total, page, per_page)


@router.get("/unread-count", response_model=UnreadCount)
def unread_count(
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_required_actor),
):
    count = db.query(Notification).filter(
        Notification.user_id == actor.id,
        Notification.is_read.is_(False),
    ).count()
    return UnreadCount(unread_count=count)


@router.patch("/mark-all-read")
def mark_all_read(
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_required_actor),
):
    """Mark every unread notification of the caller as read."""
    with transaction(db):
        updated = db.query(Notification).filter(
            Notification.user_id == actor.id,
            Notification.is_read.is_(False),
        ).update({Notification.is_read: True}, synchronize_session=False)
    return success({"updated": updated}, "All notifications marked as read")


@router.patch("/{notification_id}/read", response_model=NotificationResponse)
def mark_read(
    notification_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_required_actor),
):
    with transaction(db):
        notification = _get_owned(db, notification_id, actor)
        notification.is_read = True
    db.refresh(notification)
    return notification


@router.delete("/{notification_id}")
def delete_notification(
    notification_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_required_actor),
):
    with transaction(db):
        db.delete(_get_owned(db, notification_id, actor))
    return deleted("Notification deleted")

import asyncio
import logging

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from app import config
from app.database import get_db
from app.dependencies import get_principal, get_stream_principal
from app.errors import NotFoundError, PermissionDeniedError
from app.models.notification import Notification
from app.services.notifications import (
    NotificationDispatcher,
    Principal,
    connected_frame,
    format_sse,
    get_dispatcher,
    heartbeat_frame,
    scope_matches,
    visible_to,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/notifications", tags=["notifications"])


@router.get("/")
def list_notifications(
    limit: int = Query(config.NOTIFICATION_LIST_DEFAULT, ge=1, le=config.NOTIFICATION_LIST_MAX),
    unread_only: bool = False,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
):
    """Recent notifications for the caller, newest first"""
    query = db.query(Notification).filter(visible_to(principal))
    if unread_only:
        query = query.filter(Notification.is_read == False)  # noqa: E712
    items = query.order_by(Notification.created_at.desc(), Notification.id.desc()).limit(limit).all()
    return {"notifications": [n.to_dict() for n in items]}


@router.get("/unread-count")
def unread_count(principal: Principal = Depends(get_principal), db: Session = Depends(get_db)):
    count = db.query(Notification).filter(visible_to(principal), Notification.is_read == False).count()  # noqa: E712
    return {"count": count}


@router.patch("/read-all")
def mark_all_read(principal: Principal = Depends(get_principal), db: Session = Depends(get_db)):
    count = (db.query(Notification)
             .filter(visible_to(principal), Notification.is_read == False)  # noqa: E712
             .update({Notification.is_read: True}, synchronize_session=False))
    db.commit()
    return {"count": count, "message": "All notifications marked as read"}


@router.patch("/{notification_id}/read")
def mark_read(notification_id: int, principal: Principal = Depends(get_principal), db: Session = Depends(get_db)):
    notification = db.query(Notification).filter(Notification.id == notification_id).first()
    if not notification:
        raise NotFoundError("Notification", notification_id)

    if not scope_matches(notification.recipient_type, notification.recipient_id, principal):
        raise PermissionDeniedError()

    if notification.is_read:
        return {"id": notification.id, "is_read": True, "message": "Already marked as read"}

    notification.is_read = True
    db.commit()
    return {"id": notification.id, "is_read": True, "message": "Notification marked as read"}


@router.get("/stream")
async def notification_stream(
    request: Request,
    principal: Principal = Depends(get_stream_principal),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    """Server-sent events push channel. Token comes from ?token= (EventSource can't set headers)."""
    registry = dispatcher.registry

    async def event_stream():
        # registered only once the body is actually streamed
        channel = registry.open(principal)
        try:
            yield format_sse(connected_frame())
            while not channel.closed:
                if await request.is_disconnected():
                    break
                try:
                    frame = await asyncio.wait_for(channel.queue.get(), timeout=config.HEARTBEAT_INTERVAL)
                except asyncio.TimeoutError:
                    frame = heartbeat_frame()
                if channel.closed:
                    break
                yield format_sse(frame)
        finally:
            registry.close(channel)

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive", "X-Accel-Buffering": "no"},
    )

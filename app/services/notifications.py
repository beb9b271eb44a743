"""
Notification dispatcher and the registry of open push channels.

publish(event):
  1. persist ONE Notification row for the event's recipient scope
  2. encode it as a {"type": "notification"} frame
  3. offer the frame to every open channel matching the scope

Step 3 never blocks the publisher: request handlers run in worker threads,
channels live on the event loop, so frames hop over with
call_soon_threadsafe and land in a bounded per-channel queue. A channel
whose queue is full is closed (its client reconnects and re-lists) instead
of back-pressuring publish.
"""
from __future__ import annotations

import asyncio
import json
import logging
import threading
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from sqlalchemy import or_, and_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app import config
from app.errors import PersistenceError
from app.models.notification import (
    Notification,
    RECIPIENT_BROADCAST,
    RECIPIENT_ROLE,
    RECIPIENT_USER,
)

logger = logging.getLogger(__name__)

FRAME_NOTIFICATION = "notification"
FRAME_HEARTBEAT = "heartbeat"
FRAME_CONNECTED = "connected"


@dataclass(frozen=True)
class Principal:
    user_id: str      # verified email
    role: str


@dataclass
class NotificationEvent:
    type: str
    title: str
    message: str
    recipient_type: str
    recipient_id: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Frames
# ---------------------------------------------------------------------------

def notification_frame(notification: Notification) -> dict:
    return {"type": FRAME_NOTIFICATION, "notification": notification.to_dict()}


def heartbeat_frame() -> dict:
    return {"type": FRAME_HEARTBEAT, "timestamp": int(time.time() * 1000)}


def connected_frame() -> dict:
    return {"type": FRAME_CONNECTED, "message": "Connected to notification stream"}


def format_sse(frame: dict) -> str:
    return f"data: {json.dumps(frame, default=str)}\n\n"


# ---------------------------------------------------------------------------
# Scope
# ---------------------------------------------------------------------------

def scope_matches(recipient_type: str, recipient_id: Optional[str], principal: Principal) -> bool:
    if recipient_type == RECIPIENT_BROADCAST:
        return True
    if recipient_type == RECIPIENT_USER:
        return recipient_id == principal.user_id
    if recipient_type == RECIPIENT_ROLE:
        return recipient_id == principal.role
    return False


def visible_to(principal: Principal):
    """SQL filter for notifications addressed to this principal."""
    return or_(
        Notification.recipient_type == RECIPIENT_BROADCAST,
        and_(Notification.recipient_type == RECIPIENT_USER, Notification.recipient_id == principal.user_id),
        and_(Notification.recipient_type == RECIPIENT_ROLE, Notification.recipient_id == principal.role),
    )


# ---------------------------------------------------------------------------
# Channels
# ---------------------------------------------------------------------------

class Channel:
    """One open push connection. offer() must run on the channel's loop."""

    def __init__(self, principal: Principal, loop: asyncio.AbstractEventLoop, maxsize: int):
        self.id = uuid.uuid4().hex
        self.principal = principal
        self.loop = loop
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self.closed = False

    def offer(self, frame: dict) -> None:
        if self.closed:
            return
        try:
            self.queue.put_nowait(frame)
        except asyncio.QueueFull:
            logger.warning("Channel %s for %s is not draining - closing it",
                           self.id, self.principal.user_id)
            self.closed = True


class ChannelRegistry:

    def __init__(self, queue_size: int = config.CHANNEL_QUEUE_SIZE):
        self.queue_size = queue_size
        self._channels: Dict[str, Channel] = {}
        self._lock = threading.Lock()

    def open(self, principal: Principal, loop: Optional[asyncio.AbstractEventLoop] = None) -> Channel:
        channel = Channel(principal, loop or asyncio.get_running_loop(), self.queue_size)
        with self._lock:
            self._channels[channel.id] = channel
        logger.info("Channel %s opened for %s (%s)", channel.id, principal.user_id, principal.role)
        return channel

    def close(self, channel: Channel) -> None:
        channel.closed = True
        with self._lock:
            removed = self._channels.pop(channel.id, None)
        if removed is not None:
            logger.info("Channel %s closed for %s", channel.id, channel.principal.user_id)

    def matching(self, recipient_type: str, recipient_id: Optional[str]) -> List[Channel]:
        with self._lock:
            channels = list(self._channels.values())
        return [c for c in channels
                if not c.closed and scope_matches(recipient_type, recipient_id, c.principal)]

    def send(self, channel: Channel, frame: dict) -> bool:
        """Fire-and-forget hand-off to the channel's loop."""
        try:
            channel.loop.call_soon_threadsafe(channel.offer, frame)
            return True
        except RuntimeError:
            # loop already shut down
            self.close(channel)
            return False

    def active_count(self) -> int:
        with self._lock:
            return len(self._channels)

    def connected_principals(self) -> List[Principal]:
        with self._lock:
            return list({c.principal for c in self._channels.values()})


# ---------------------------------------------------------------------------
# Dispatcher
# ---------------------------------------------------------------------------

class NotificationDispatcher:

    def __init__(self, registry: ChannelRegistry):
        self.registry = registry

    def record(self, db: Session, event: NotificationEvent) -> Notification:
        """Stage the row in the caller's transaction (flush, no commit)."""
        notification = Notification(
            recipient_type=event.recipient_type,
            recipient_id=event.recipient_id,
            type=event.type,
            title=event.title,
            message=event.message,
            data=event.data,
            is_read=False,
        )
        db.add(notification)
        db.flush()
        return notification

    def deliver(self, notification: Notification) -> int:
        """Push an already-committed notification to matching open channels."""
        frame = notification_frame(notification)
        channels = self.registry.matching(notification.recipient_type, notification.recipient_id)
        sent = sum(1 for c in channels if self.registry.send(c, frame))
        logger.info("Notification %s (%s) pushed to %d channel(s)",
                    notification.id, notification.type, sent)
        return sent

    def publish(self, db: Session, event: NotificationEvent) -> Notification:
        try:
            notification = self.record(db, event)
            db.commit()
            db.refresh(notification)
        except SQLAlchemyError as e:
            db.rollback()
            logger.error("Failed to persist %s notification: %s", event.type, e)
            raise PersistenceError("Failed to store notification") from e
        self.deliver(notification)
        return notification


registry = ChannelRegistry()
dispatcher = NotificationDispatcher(registry)


def get_dispatcher() -> NotificationDispatcher:
    return dispatcher

"""
Local notification state for one staff session.

Frames from the subscriber are applied here, not in transport callbacks.
Read-state changes are optimistic: flip locally, confirm with the server,
and on a failed confirmation re-fetch the authoritative list and count.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional

from app.client.api_client import NotificationApiClient
from app.client.errors import NotificationClientError
from app.client.subscriber import FRAME_NOTIFICATION, Frame

logger = logging.getLogger(__name__)

INBOX_LIMIT = 50


class NotificationInbox:

    def __init__(
        self,
        api: NotificationApiClient,
        alert: Optional[Callable[[Dict[str, Any]], None]] = None,
        alerts_allowed: bool = False,
        limit: int = INBOX_LIMIT,
    ):
        self.api = api
        self.alert = alert
        self.alerts_allowed = alerts_allowed
        self.limit = limit
        self.notifications: List[Dict[str, Any]] = []
        self.unread_count = 0

    def _find(self, notification_id) -> Optional[Dict[str, Any]]:
        return next((n for n in self.notifications if n.get("id") == notification_id), None)

    async def refresh(self) -> None:
        """Replace local state with the server's view."""
        self.notifications = await self.api.list_notifications(limit=self.limit)
        self.unread_count = await self.api.unread_count()

    def apply(self, frame: Frame) -> bool:
        """Apply one frame. Returns True if local state changed."""
        if frame.type != FRAME_NOTIFICATION:
            return False  # heartbeat / connected: liveness only

        notification = dict(frame.notification)
        # at-least-once delivery: a repeated frame must not count twice
        if notification.get("id") is not None and self._find(notification["id"]) is not None:
            return False

        notification.setdefault("is_read", False)
        self.notifications.insert(0, notification)
        if not notification["is_read"]:
            self.unread_count += 1

        if self.alerts_allowed and self.alert is not None:
            try:
                self.alert(notification)
            except Exception:
                logger.exception("Alert callback failed for notification %s", notification.get("id"))
        return True

    async def consume(self, frames: asyncio.Queue) -> None:
        while True:
            frame = await frames.get()
            self.apply(frame)
            frames.task_done()

    async def mark_as_read(self, notification_id) -> None:
        item = self._find(notification_id)
        if item is not None and item.get("is_read"):
            return
        if item is not None:
            item["is_read"] = True
            self.unread_count = max(0, self.unread_count - 1)

        try:
            await self.api.mark_read(notification_id)
        except NotificationClientError as e:
            logger.warning("Mark-read for %s not confirmed (%s); re-fetching", notification_id, e)
            await self.refresh()

    async def mark_all_as_read(self) -> None:
        for n in self.notifications:
            n["is_read"] = True
        self.unread_count = 0

        try:
            await self.api.mark_all_read()
        except NotificationClientError as e:
            logger.warning("Mark-all-read not confirmed (%s); re-fetching", e)
            await self.refresh()

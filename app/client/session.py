import asyncio
import logging
from typing import Any, Callable, Dict, Optional

from app.client.api_client import NotificationApiClient, TokenProvider
from app.client.inbox import NotificationInbox
from app.client.subscriber import RECONNECT_DELAY, StreamSubscriber

logger = logging.getLogger(__name__)


class StaffNotificationSession:
    """Wires one API client, one push channel and one inbox together."""

    def __init__(
        self,
        base_url: str,
        token_provider: TokenProvider,
        alert: Optional[Callable[[Dict[str, Any]], None]] = None,
        alerts_allowed: bool = False,
        reconnect_delay: float = RECONNECT_DELAY,
        api: Optional[NotificationApiClient] = None,
    ):
        self.api = api or NotificationApiClient(base_url, token_provider)
        self.subscriber = StreamSubscriber(self.api.open_stream, token_provider, reconnect_delay)
        self.inbox = NotificationInbox(self.api, alert=alert, alerts_allowed=alerts_allowed)
        self._consumer: Optional[asyncio.Task] = None

    async def start(self) -> None:
        # missed notifications come from the listing, not from channel replay
        await self.inbox.refresh()
        self.subscriber.start()
        self._consumer = asyncio.create_task(self.inbox.consume(self.subscriber.frames))
        logger.info("Staff notification session started (%d unread)", self.inbox.unread_count)

    async def close(self) -> None:
        await self.subscriber.close()
        if self._consumer is not None:
            self._consumer.cancel()
            try:
                await self._consumer
            except asyncio.CancelledError:
                pass
            self._consumer = None
        await self.api.close()

"""
Push-channel subscriber for one staff session.

A background task owns the channel and walks an explicit state machine:

    CONNECTING -> OPEN -> (error) RECONNECTING -> CONNECTING -> ...
    any state  -> CLOSED   only through close(), never automatically

Decoded frames are put on ``frames`` (an asyncio.Queue of Frame); UI state
lives elsewhere (see inbox.NotificationInbox) and consumes that queue.

Reconnect is a single attempt after a fixed delay, repeated without limit.
There is no backoff growth, cap or jitter.
"""
from __future__ import annotations

import asyncio
import enum
import logging
import os
from dataclasses import dataclass, field
from typing import Any, AsyncContextManager, AsyncIterator, Callable, Dict, List, Optional

import aiohttp

from app.client.api_client import TokenProvider, resolve_token
from app.client.errors import NotificationClientError, TransientNetworkError

logger = logging.getLogger(__name__)

RECONNECT_DELAY = float(os.getenv("NOTIFY_RECONNECT_DELAY", "5"))

FRAME_NOTIFICATION = "notification"
FRAME_HEARTBEAT = "heartbeat"
FRAME_CONNECTED = "connected"

Opener = Callable[[str], AsyncContextManager[AsyncIterator[Dict[str, Any]]]]


class ChannelState(str, enum.Enum):
    CONNECTING = "CONNECTING"
    OPEN = "OPEN"
    RECONNECTING = "RECONNECTING"
    CLOSED = "CLOSED"


@dataclass(frozen=True)
class Frame:
    type: str
    notification: Optional[Dict[str, Any]] = None
    raw: Dict[str, Any] = field(default_factory=dict, compare=False)


def decode_frame(payload) -> Optional[Frame]:
    if not isinstance(payload, dict) or not isinstance(payload.get("type"), str):
        logger.warning("Ignoring frame without a type: %r", payload)
        return None
    notification = payload.get("notification")
    if payload["type"] == FRAME_NOTIFICATION and not isinstance(notification, dict):
        logger.warning("Ignoring notification frame without a body")
        return None
    return Frame(type=payload["type"], notification=notification, raw=payload)


class StreamSubscriber:

    def __init__(
        self,
        opener: Opener,
        token_provider: TokenProvider,
        reconnect_delay: float = RECONNECT_DELAY,
        on_state_change: Optional[Callable[[ChannelState], None]] = None,
    ):
        self.opener = opener
        self.token_provider = token_provider
        self.reconnect_delay = reconnect_delay
        self.on_state_change = on_state_change
        self.frames: asyncio.Queue = asyncio.Queue()
        self.state: Optional[ChannelState] = None
        self.history: List[ChannelState] = []
        self.connect_attempts = 0
        self._closing = False
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def _set_state(self, state: ChannelState) -> None:
        if state == self.state:
            return
        logger.debug("Channel %s -> %s", self.state, state.value)
        self.state = state
        self.history.append(state)
        if self.on_state_change:
            self.on_state_change(state)

    def start(self) -> asyncio.Task:
        if self.running:
            return self._task
        if self._closing:
            raise RuntimeError("Subscriber was closed; create a new one")
        self._task = asyncio.create_task(self._run(), name="notification-stream")
        return self._task

    async def close(self) -> None:
        """Explicit teardown - the only way into CLOSED."""
        self._closing = True
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._set_state(ChannelState.CLOSED)

    async def _run(self) -> None:
        while not self._closing:
            self._set_state(ChannelState.CONNECTING)
            try:
                await self._consume_channel()
            except (NotificationClientError, aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
                logger.warning("Notification channel failed (%s); reconnecting in %.1fs",
                               e, self.reconnect_delay)
            except Exception:
                # bad bytes, oversized lines: still a channel failure, never fatal
                logger.exception("Notification channel crashed; reconnecting in %.1fs", self.reconnect_delay)
            if self._closing:
                break
            self._set_state(ChannelState.RECONNECTING)
            await asyncio.sleep(self.reconnect_delay)

    async def _consume_channel(self) -> None:
        token = await resolve_token(self.token_provider)
        self.connect_attempts += 1
        async with self.opener(token) as stream:
            self._set_state(ChannelState.OPEN)
            async for payload in stream:
                frame = decode_frame(payload)
                if frame is not None:
                    await self.frames.put(frame)
        raise TransientNetworkError("Notification stream ended")

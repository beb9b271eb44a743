"""
aiohttp client for the staff notification endpoints.

Request/response calls use a fixed timeout and retry ONLY on HTTP 429
(a few attempts, fixed pause). Everything else fails fast so the caller
can decide; the push channel has its own reconnect loop in subscriber.py.
"""
from __future__ import annotations

import asyncio
import inspect
import json
import logging
import os
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Optional, Union

import aiohttp

from app.client.errors import AuthError, NotificationClientError, TransientNetworkError

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = float(os.getenv("NOTIFY_REQUEST_TIMEOUT", "10"))
MAX_RATE_LIMIT_RETRIES = 3
RATE_LIMIT_RETRY_DELAY = 1.0

TokenProvider = Callable[[], Union[str, Awaitable[str]]]


async def resolve_token(provider: TokenProvider) -> str:
    token = provider()
    if inspect.isawaitable(token):
        token = await token
    return token


async def iter_sse(content: aiohttp.StreamReader) -> AsyncIterator[Dict[str, Any]]:
    """Yield the JSON payload of each server-sent event."""
    data_lines = []
    async for raw in content:
        line = raw.decode("utf-8", errors="replace").rstrip("\r\n")
        if line.startswith("data:"):
            data_lines.append(line[5:].lstrip())
            continue
        if line or not data_lines:
            continue
        payload = "\n".join(data_lines)
        data_lines = []
        try:
            yield json.loads(payload)
        except json.JSONDecodeError:
            logger.warning("Skipping malformed frame: %s", payload[:200])


class NotificationApiClient:

    def __init__(
        self,
        base_url: str,
        token_provider: TokenProvider,
        session: Optional[aiohttp.ClientSession] = None,
        timeout: float = REQUEST_TIMEOUT,
        max_retries: int = MAX_RATE_LIMIT_RETRIES,
        retry_delay: float = RATE_LIMIT_RETRY_DELAY,
    ):
        self.base_url = base_url.rstrip("/")
        self.token_provider = token_provider
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self._session = session
        self._owns_session = session is None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()

    async def _request(self, method: str, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        session = self._get_session()

        for attempt in range(self.max_retries + 1):
            token = await resolve_token(self.token_provider)
            try:
                async with session.request(
                    method,
                    url,
                    params=params,
                    headers={"Authorization": f"Bearer {token}"},
                    timeout=aiohttp.ClientTimeout(total=self.timeout),
                ) as resp:
                    if resp.status == 429 and attempt < self.max_retries:
                        logger.warning("Rate limited by server. Retry %d/%d for %s %s",
                                       attempt + 1, self.max_retries, method, path)
                        await asyncio.sleep(self.retry_delay)
                        continue

                    try:
                        body = await resp.json(content_type=None)
                    except ValueError:
                        body = None
                    if 200 <= resp.status < 300:
                        return body or {}

                    detail = body.get("detail", "") if isinstance(body, dict) else ""
                    if resp.status == 401:
                        raise AuthError(detail or "Unauthorized", status=401)
                    if resp.status == 429 or resp.status >= 500:
                        raise TransientNetworkError(f"HTTP {resp.status}: {detail}", status=resp.status)
                    raise NotificationClientError(f"HTTP {resp.status}: {detail}", status=resp.status)

            except asyncio.TimeoutError as e:
                raise TransientNetworkError(f"{method} {path} timed out after {self.timeout}s") from e
            except aiohttp.ClientError as e:
                raise TransientNetworkError(f"Connection error: {e}") from e

        raise TransientNetworkError(f"{method} {path} still rate limited", status=429)

    # --- REST ---

    async def list_notifications(self, limit: int = 50, unread_only: bool = False) -> list:
        params = {"limit": limit}
        if unread_only:
            params["unread_only"] = "true"
        body = await self._request("GET", "/api/notifications/", params=params)
        return body.get("notifications", [])

    async def unread_count(self) -> int:
        body = await self._request("GET", "/api/notifications/unread-count")
        return int(body.get("count", 0))

    async def mark_read(self, notification_id: int) -> Dict[str, Any]:
        return await self._request("PATCH", f"/api/notifications/{notification_id}/read")

    async def mark_all_read(self) -> int:
        body = await self._request("PATCH", "/api/notifications/read-all")
        return int(body.get("count", 0))

    # --- Push channel ---

    @asynccontextmanager
    async def open_stream(self, token: str):
        """Open the SSE channel; yields an async iterator of decoded frames."""
        session = self._get_session()
        try:
            async with session.get(
                f"{self.base_url}/api/notifications/stream",
                params={"token": token},
                timeout=aiohttp.ClientTimeout(total=None, sock_connect=self.timeout),
            ) as resp:
                if resp.status == 401:
                    raise AuthError("Notification stream refused the token", status=401)
                if resp.status != 200:
                    raise TransientNetworkError(f"Stream open failed: HTTP {resp.status}", status=resp.status)
                yield iter_sse(resp.content)
        except aiohttp.ClientError as e:
            raise TransientNetworkError(f"Stream connection error: {e}") from e

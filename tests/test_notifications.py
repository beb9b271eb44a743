"""Tests for the notification dispatcher, channel registry and SSE stream."""
import asyncio
import json
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from app.errors import PersistenceError
from app.models.notification import Notification
from app.services.notifications import (
    NotificationEvent,
    Principal,
    format_sse,
    scope_matches,
)
from conftest import DESK, EIC, READER


async def settle():
    """Let call_soon_threadsafe hand-offs run."""
    await asyncio.sleep(0.01)


def role_event(role="SECTION_HEAD", **data):
    return NotificationEvent(type="COMMENT_FLAGGED", title="Comment held for review",
                             message="needs review", recipient_type="role", recipient_id=role, data=data)


class TestScope:

    def test_user_scope(self):
        assert scope_matches("user", "desk@paper.test", DESK)
        assert not scope_matches("user", "desk@paper.test", EIC)

    def test_role_scope(self):
        assert scope_matches("role", "SECTION_HEAD", DESK)
        assert not scope_matches("role", "SECTION_HEAD", READER)

    def test_broadcast(self):
        assert all(scope_matches("broadcast", None, p) for p in (DESK, EIC, READER))

    def test_unknown_scope(self):
        assert not scope_matches("team", "x", DESK)


class TestFrames:

    def test_format_sse(self):
        out = format_sse({"type": "heartbeat", "timestamp": 1})
        assert out.startswith("data: ")
        assert out.endswith("\n\n")
        assert json.loads(out[len("data: "):]) == {"type": "heartbeat", "timestamp": 1}


class TestDispatcher:

    @pytest.mark.asyncio
    async def test_publish_persists_one_row(self, db_session, dispatcher):
        n = dispatcher.publish(db_session, role_event(comment_id=3))
        assert db_session.query(Notification).count() == 1
        assert n.id is not None
        assert n.is_read is False
        assert n.data == {"comment_id": 3}

    @pytest.mark.asyncio
    async def test_reaches_matching_channels_only(self, db_session, registry, dispatcher):
        desk_tab_1 = registry.open(DESK)
        desk_tab_2 = registry.open(Principal("other-desk@paper.test", "SECTION_HEAD"))
        eic = registry.open(EIC)

        n = dispatcher.publish(db_session, role_event())
        await settle()

        for channel in (desk_tab_1, desk_tab_2):
            frame = channel.queue.get_nowait()
            assert frame["type"] == "notification"
            assert frame["notification"]["id"] == n.id
        assert eic.queue.empty()

    @pytest.mark.asyncio
    async def test_user_scope_delivery(self, db_session, registry, dispatcher):
        desk = registry.open(DESK)
        eic = registry.open(EIC)
        dispatcher.publish(db_session, NotificationEvent(
            type="COMMENT_STATUS_CHANGED", title="t", message="m",
            recipient_type="user", recipient_id=EIC.user_id))
        await settle()
        assert desk.queue.empty()
        assert eic.queue.qsize() == 1

    @pytest.mark.asyncio
    async def test_frames_keep_publish_order(self, db_session, registry, dispatcher):
        desk = registry.open(DESK)
        ids = [dispatcher.publish(db_session, role_event()).id for _ in range(3)]
        await settle()
        got = [desk.queue.get_nowait()["notification"]["id"] for _ in range(3)]
        assert got == ids

    @pytest.mark.asyncio
    async def test_closed_channel_gets_nothing(self, db_session, registry, dispatcher):
        desk = registry.open(DESK)
        registry.close(desk)
        dispatcher.publish(db_session, role_event())
        await settle()
        assert desk.queue.empty()
        assert registry.active_count() == 0

    @pytest.mark.asyncio
    async def test_slow_channel_is_dropped_not_awaited(self, db_session, registry, dispatcher):
        registry.queue_size = 1
        slow = registry.open(DESK)
        dispatcher.publish(db_session, role_event())
        dispatcher.publish(db_session, role_event())
        await settle()
        assert slow.closed
        assert slow.queue.qsize() == 1

    @pytest.mark.asyncio
    async def test_offline_recipient_still_gets_row(self, db_session, registry, dispatcher):
        n = dispatcher.publish(db_session, role_event())
        assert dispatcher.deliver(n) == 0
        assert db_session.query(Notification).count() == 1

    def test_publish_failure_raises_persistence_error(self, db_session, dispatcher):
        with patch.object(db_session, "commit", side_effect=OperationalError("commit", {}, Exception("x"))):
            with pytest.raises(PersistenceError):
                dispatcher.publish(db_session, role_event())
        assert db_session.query(Notification).count() == 0

    @pytest.mark.asyncio
    async def test_registry_bookkeeping(self, registry):
        a = registry.open(DESK)
        registry.open(DESK)
        registry.open(EIC)
        assert registry.active_count() == 3
        assert set(registry.connected_principals()) == {DESK, EIC}
        registry.close(a)
        assert registry.active_count() == 2


class _FakeRequest:
    def __init__(self):
        self.disconnected = False

    async def is_disconnected(self):
        return self.disconnected


class TestStreamEndpoint:

    @pytest.mark.asyncio
    async def test_stream_yields_connected_notification_and_heartbeat(self, db_session, registry, dispatcher):
        from app.api.notifications import notification_stream

        request = _FakeRequest()
        with patch("app.api.notifications.config.HEARTBEAT_INTERVAL", 0.05):
            response = await notification_stream(request, DESK, dispatcher)
            body = response.body_iterator

            first = json.loads((await body.__anext__())[len("data: "):])
            assert first["type"] == "connected"
            assert registry.active_count() == 1

            n = dispatcher.publish(db_session, role_event())
            second = json.loads((await body.__anext__())[len("data: "):])
            assert second["type"] == "notification"
            assert second["notification"]["id"] == n.id

            third = json.loads((await body.__anext__())[len("data: "):])
            assert third["type"] == "heartbeat"

            request.disconnected = True
            with pytest.raises(StopAsyncIteration):
                await body.__anext__()
        assert registry.active_count() == 0

    @pytest.mark.asyncio
    async def test_unstarted_stream_registers_no_channel(self, registry, dispatcher):
        from app.api.notifications import notification_stream

        response = await notification_stream(_FakeRequest(), DESK, dispatcher)
        assert registry.active_count() == 0

        await response.body_iterator.__anext__()
        assert registry.active_count() == 1
        await response.body_iterator.aclose()
        assert registry.active_count() == 0

    def test_stream_without_token_is_refused(self, client):
        resp = client.get("/api/notifications/stream")
        assert resp.status_code == 401

    def test_stream_with_bad_token_is_refused(self, client):
        with patch("app.dependencies.id_token.verify_oauth2_token", side_effect=ValueError("Token expired")):
            resp = client.get("/api/notifications/stream", params={"token": "bad"})
        assert resp.status_code == 401
        assert "Token expired" in resp.json()["detail"]

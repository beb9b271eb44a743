"""Tests for local notification state and optimistic read-state changes."""
import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from app.client.errors import NotificationClientError, TransientNetworkError
from app.client.inbox import NotificationInbox
from app.client.session import StaffNotificationSession
from app.client.subscriber import Frame


def note(nid, is_read=False):
    return {"id": nid, "type": "COMMENT_POSTED", "title": f"Comment {nid}", "is_read": is_read}


def push(nid):
    return Frame(type="notification", notification={"id": nid, "type": "COMMENT_POSTED", "title": "New"})


@pytest.fixture
def api():
    mock = AsyncMock()
    # fresh dicts per call, like a real server response
    mock.list_notifications.side_effect = lambda **kw: [note(2), note(1, is_read=True)]
    mock.unread_count.return_value = 1
    mock.mark_read.return_value = {"id": 2, "is_read": True}
    mock.mark_all_read.return_value = 1
    return mock


class TestApplyFrames:

    @pytest.mark.asyncio
    async def test_refresh_replaces_state(self, api):
        inbox = NotificationInbox(api)
        await inbox.refresh()
        assert [n["id"] for n in inbox.notifications] == [2, 1]
        assert inbox.unread_count == 1
        api.list_notifications.assert_awaited_once_with(limit=50)

    def test_notification_is_prepended_and_counted(self, api):
        inbox = NotificationInbox(api)
        inbox.notifications = [note(1)]
        inbox.unread_count = 1

        assert inbox.apply(push(7)) is True
        assert inbox.notifications[0]["id"] == 7
        assert inbox.notifications[0]["is_read"] is False
        assert inbox.unread_count == 2

    def test_repeated_frame_counts_once(self, api):
        inbox = NotificationInbox(api)
        inbox.apply(push(7))
        assert inbox.apply(push(7)) is False
        assert inbox.unread_count == 1
        assert len(inbox.notifications) == 1

    @pytest.mark.parametrize("frame_type", ["heartbeat", "connected"])
    def test_liveness_frames_change_nothing(self, api, frame_type):
        inbox = NotificationInbox(api)
        assert inbox.apply(Frame(type=frame_type)) is False
        assert inbox.notifications == [] and inbox.unread_count == 0

    def test_alert_only_when_allowed(self, api):
        alert = MagicMock()
        NotificationInbox(api, alert=alert, alerts_allowed=False).apply(push(1))
        alert.assert_not_called()

        NotificationInbox(api, alert=alert, alerts_allowed=True).apply(push(2))
        alert.assert_called_once()
        assert alert.call_args.args[0]["id"] == 2

    @pytest.mark.asyncio
    async def test_failing_alert_does_not_stop_consumption(self, api):
        alert = MagicMock(side_effect=RuntimeError("notification permission revoked"))
        inbox = NotificationInbox(api, alert=alert, alerts_allowed=True)
        frames = asyncio.Queue()
        for f in (push(1), push(2)):
            frames.put_nowait(f)

        task = asyncio.create_task(inbox.consume(frames))
        await asyncio.wait_for(frames.join(), 1)

        assert not task.done()
        assert [n["id"] for n in inbox.notifications] == [2, 1]
        assert inbox.unread_count == 2
        assert alert.call_count == 2
        task.cancel()

    @pytest.mark.asyncio
    async def test_consume_drains_queue(self, api):
        inbox = NotificationInbox(api)
        frames = asyncio.Queue()
        for f in (Frame(type="connected"), push(1), Frame(type="heartbeat"), push(2)):
            frames.put_nowait(f)

        task = asyncio.create_task(inbox.consume(frames))
        await asyncio.wait_for(frames.join(), 1)
        task.cancel()

        assert [n["id"] for n in inbox.notifications] == [2, 1]
        assert inbox.unread_count == 2


class TestMarkAsRead:

    @pytest.mark.asyncio
    async def test_optimistic_update(self, api):
        inbox = NotificationInbox(api)
        await inbox.refresh()
        await inbox.mark_as_read(2)

        assert inbox.notifications[0]["is_read"] is True
        assert inbox.unread_count == 0
        api.mark_read.assert_awaited_once_with(2)

    @pytest.mark.asyncio
    async def test_already_read_is_noop(self, api):
        inbox = NotificationInbox(api)
        await inbox.refresh()
        await inbox.mark_as_read(1)
        assert inbox.unread_count == 1
        api.mark_read.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_count_never_negative(self, api):
        inbox = NotificationInbox(api)
        inbox.notifications = [note(5)]
        inbox.unread_count = 0
        await inbox.mark_as_read(5)
        assert inbox.unread_count == 0

    @pytest.mark.asyncio
    async def test_failure_restores_server_view(self, api):
        inbox = NotificationInbox(api)
        await inbox.refresh()
        api.mark_read.side_effect = TransientNetworkError("HTTP 503", status=503)

        await inbox.mark_as_read(2)

        # re-fetched: server still says 2 is unread
        assert inbox.notifications[0]["is_read"] is False
        assert inbox.unread_count == 1
        assert api.list_notifications.await_count == 2

    @pytest.mark.asyncio
    async def test_failed_refetch_propagates(self, api):
        inbox = NotificationInbox(api)
        await inbox.refresh()
        api.mark_read.side_effect = NotificationClientError("HTTP 403", status=403)
        api.list_notifications.side_effect = TransientNetworkError("down")

        with pytest.raises(TransientNetworkError):
            await inbox.mark_as_read(2)

    @pytest.mark.asyncio
    async def test_mark_all(self, api):
        inbox = NotificationInbox(api)
        await inbox.refresh()
        await inbox.mark_all_as_read()
        assert all(n["is_read"] for n in inbox.notifications)
        assert inbox.unread_count == 0
        api.mark_all_read.assert_awaited_once()


class TestStaffSession:

    @pytest.mark.asyncio
    async def test_start_refreshes_then_streams(self, api):
        frames = [{"type": "connected"}, {"type": "notification", "notification": note(9)}]

        class _Stream:
            async def __aenter__(self):
                async def gen():
                    for f in frames:
                        yield f
                    await asyncio.Event().wait()
                return gen()

            async def __aexit__(self, *exc):
                return False

        api.open_stream = MagicMock(return_value=_Stream())
        session = StaffNotificationSession("http://paper.test", lambda: "tok", api=api, reconnect_delay=0.01)
        await session.start()

        async def _wait():
            while session.inbox.unread_count < 2:
                await asyncio.sleep(0.005)
        await asyncio.wait_for(_wait(), 1)

        assert session.inbox.notifications[0]["id"] == 9
        api.open_stream.assert_called_once_with("tok")

        await session.close()
        api.close.assert_awaited_once()

"""
Tests for event staging, the outbound queue and the real-time transport.
"""
import asyncio
import threading
import time

import pytest

from writedesk.errors import Forbidden
from writedesk.realtime import EventManager
from writedesk.schemas.content import ContentUpdate
from writedesk.workflow.broadcaster import EventOutbox, OutboundEvent
from writedesk.workflow.locks import ContentLockRegistry

from conftest import ADMIN, AUTHOR, BODY, OUTSIDER, REVIEWER_ONE, TEACHER, RecordingTransport, auth_headers_for


class TestStaging:
    """Events leave only after the originating transaction commits."""

    def test_nothing_published_before_drain(self, workflow, draft, transport):
        workflow.submit(draft.id, AUTHOR)
        assert transport.published == []

    def test_submit_event_after_commit(self, workflow, draft, outbox, transport):
        workflow.submit(draft.id, AUTHOR)
        outbox.drain()
        assert (f"content:{draft.id}", "content:submitted") in [(s, n) for s, n, _ in transport.published]
        assert "content:submitted" in transport.names("organization:10")

    def test_failed_operation_emits_nothing(self, workflow, draft, outbox, transport):
        """Test that a rolled-back operation stages no events."""
        with pytest.raises(Forbidden):
            workflow.update(draft.id, OUTSIDER, ContentUpdate(title="Nope"))
        assert outbox.drain() == 0
        assert transport.published == []

    def test_notification_events_follow_persisted_rows(self, workflow, draft, outbox, transport):
        """Test that each notification is also pushed to its recipient."""
        workflow.submit(draft.id, AUTHOR)
        workflow.assign_review(draft.id, REVIEWER_ONE.id, ADMIN)
        outbox.drain()

        author_events = [p for s, n, p in transport.published if s == f"user:{AUTHOR.id}"]
        reviewer_events = [p for s, n, p in transport.published if s == f"user:{REVIEWER_ONE.id}"]
        assert [p["type"] for p in author_events] == ["review_assigned"]
        assert [p["type"] for p in reviewer_events] == ["review_assigned"]
        assert author_events[0]["id"] is not None

    def test_same_recipient_sees_commit_order(self, workflow, draft, outbox, transport):
        for i in range(3):
            workflow.update(draft.id, AUTHOR, ContentUpdate(body=f"{BODY} Pass {i}."))
        outbox.drain()
        counts = [p["version_count"] for s, n, p in transport.published if n == "content:updated"]
        assert counts == [2, 3, 4]


class TestOutbox:
    """Delivery is best effort and never reaches back into the workflow."""

    def test_transport_failure_is_swallowed(self):
        class BrokenTransport:
            def publish(self, scope, event_name, payload):
                raise ConnectionError("transport down")

        outbox = EventOutbox(BrokenTransport())
        outbox.put([OutboundEvent("user:1", "notification:new", {})])
        assert outbox.drain() == 1

    def test_full_queue_drops_events(self):
        transport = RecordingTransport()
        outbox = EventOutbox(transport, maxsize=1)
        outbox.put([OutboundEvent("user:1", "a", {}), OutboundEvent("user:1", "b", {})])
        outbox.drain()
        assert transport.names() == ["a"]

    def test_dispatcher_thread_delivers_in_order(self):
        transport = RecordingTransport()
        outbox = EventOutbox(transport)
        assert outbox.start() is True
        assert outbox.start() is False
        try:
            outbox.put([OutboundEvent("content:1", name, {}) for name in ("one", "two", "three")])
            deadline = time.time() + 5
            while len(transport.published) < 3 and time.time() < deadline:
                time.sleep(0.01)
        finally:
            outbox.stop()
        assert transport.names() == ["one", "two", "three"]
        assert outbox.running is False


class TestEventManager:
    """Scoped pub/sub for live connections."""

    def test_publish_without_subscribers(self):
        assert EventManager().publish("content:1", "content:status", {}) == 0

    def test_publish_reaches_subscribed_connection(self):
        manager = EventManager()

        async def scenario():
            queue = await manager.connect("conn_1", ["user:3", "content:1"])
            connected = await queue.get()
            assert connected.type == "connected"
            assert connected.data["scopes"] == ["content:1", "user:3"]

            # publish from a worker thread, as the dispatcher does
            delivered = await asyncio.to_thread(manager.publish, "content:1", "content:status", {"status": "approved"})
            assert delivered == 1
            event = await asyncio.wait_for(queue.get(), timeout=1)
            assert event.type == "content:status"
            assert event.scope == "content:1"
            assert event.data == {"status": "approved"}
            assert manager.publish("content:2", "content:status", {}) == 0

            await manager.disconnect("conn_1")
            assert manager.connection_count == 0
            assert manager.scopes == []

        asyncio.run(scenario())

    def test_sse_format(self):
        manager = EventManager()

        async def scenario():
            queue = await manager.connect("conn_1", ["user:3"])
            await queue.get()
            manager.publish("user:3", "notification:new", {"id": 7})
            return await asyncio.wait_for(queue.get(), timeout=1)

        event = asyncio.run(scenario())
        message = event.to_sse()
        assert message.startswith(f"id: {event.id}\nevent: notification:new\ndata: ")
        assert '"scope": "user:3"' in message
        assert message.endswith("\n\n")

    def test_unsubscribe(self):
        manager = EventManager()

        async def scenario():
            await manager.connect("conn_1", ["user:3"])
            manager.unsubscribe("user:3", "conn_1")
            return manager.publish("user:3", "notification:new", {})

        assert asyncio.run(scenario()) == 0


    def test_stale_connection_leaves_no_empty_scopes(self):
        """Test that a connection whose loop is gone is fully forgotten."""
        manager = EventManager()

        async def scenario():
            await manager.connect("conn_1", ["user:3", "content:1"])

        asyncio.run(scenario())  # closes the connection's loop
        assert manager.scopes == ["content:1", "user:3"]

        assert manager.publish("content:1", "content:status", {}) == 0
        assert manager.connection_count == 0
        assert manager.scopes == []

    def test_publish_skips_excluded_sender(self, live_events):
        manager = live_events.manager
        sender = live_events.connect("conn_a", ["content:1"], owner_id=3)
        other = live_events.connect("conn_b", ["content:1"], owner_id=2)

        assert manager.publish("content:1", "content:update", {"body": "x"}, exclude="conn_a") == 1
        assert live_events.next_event(other).type == "content:update"
        assert live_events.pending(sender) == 0


class TestCollaborationRelay:
    """Clients share editor state and follow content over their open stream."""

    def test_edit_reaches_other_collaborators(self, client, live_events, draft):
        author = live_events.connect("conn_author", [f"content:{draft.id}"], owner_id=AUTHOR.id)
        teacher = live_events.connect("conn_teacher", [f"content:{draft.id}"], owner_id=TEACHER.id)

        response = client.post(
            f"/api/events/content/{draft.id}/edit",
            headers=auth_headers_for(AUTHOR),
            json={"body": "Once upon a time", "cursor_position": 16, "connection_id": "conn_author"},
        )

        assert response.status_code == 200
        assert response.json() == {"event": "content:update", "scope": f"content:{draft.id}", "delivered": 1}
        event = live_events.next_event(teacher)
        assert event.type == "content:update"
        assert event.data["body"] == "Once upon a time"
        assert event.data["cursor_position"] == 16
        assert event.data["user_id"] == AUTHOR.id
        assert live_events.pending(author) == 0

    def test_cursor_and_comment_events(self, client, live_events, draft):
        teacher = live_events.connect("conn_teacher", [f"content:{draft.id}"], owner_id=TEACHER.id)
        headers = auth_headers_for(AUTHOR)

        client.post(f"/api/events/content/{draft.id}/cursor", headers=headers, json={"cursor_position": 3})
        client.post(f"/api/events/content/{draft.id}/comments", headers=headers, json={"comment": "Check line 2"})

        cursor = live_events.next_event(teacher)
        comment = live_events.next_event(teacher)
        assert (cursor.type, cursor.data["cursor_position"]) == ("content:cursor:update", 3)
        assert (comment.type, comment.data["comment"]) == ("comment:added", "Check line 2")

    def test_relay_requires_visibility(self, client, live_events, draft):
        response = client.post(
            f"/api/events/content/{draft.id}/comments",
            headers=auth_headers_for(OUTSIDER),
            json={"comment": "Hello"},
        )
        assert response.status_code == 403

    def test_join_and_leave_content(self, client, live_events, draft):
        queue = live_events.connect("conn_author", [f"user:{AUTHOR.id}"], owner_id=AUTHOR.id)
        headers = auth_headers_for(AUTHOR)

        joined = client.post(
            "/api/events/subscriptions",
            headers=headers,
            json={"connection_id": "conn_author", "content_id": draft.id},
        )
        assert joined.status_code == 200
        assert f"content:{draft.id}" in joined.json()["scopes"]

        client.post(f"/api/events/content/{draft.id}/cursor", headers=auth_headers_for(ADMIN), json={"cursor_position": 1})
        assert live_events.next_event(queue).type == "content:cursor:update"

        left = client.delete(f"/api/events/subscriptions/conn_author/content/{draft.id}", headers=headers)
        assert left.status_code == 200
        assert left.json()["scopes"] == [f"user:{AUTHOR.id}"]
        assert live_events.manager.scopes == [f"user:{AUTHOR.id}"]

    def test_cannot_use_another_users_connection(self, client, live_events, draft):
        live_events.connect("conn_author", [], owner_id=AUTHOR.id)
        response = client.post(
            "/api/events/subscriptions",
            headers=auth_headers_for(ADMIN),
            json={"connection_id": "conn_author", "content_id": draft.id},
        )
        assert response.status_code == 404

    def test_join_requires_visibility(self, client, live_events, draft):
        live_events.connect("conn_outsider", [], owner_id=OUTSIDER.id)
        response = client.post(
            "/api/events/subscriptions",
            headers=auth_headers_for(OUTSIDER),
            json={"connection_id": "conn_outsider", "content_id": draft.id},
        )
        assert response.status_code == 403


class TestLockRegistry:
    """Per-key mutual exclusion."""

    def test_same_key_is_serialized(self):
        locks = ContentLockRegistry()
        inside = []
        overlaps = []

        def work():
            with locks.hold(1):
                inside.append(1)
                if len(inside) > 1:
                    overlaps.append(True)
                time.sleep(0.02)
                inside.pop()

        threads = [threading.Thread(target=work) for _ in range(5)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert overlaps == []
        assert len(locks) == 0

    def test_different_keys_do_not_contend(self):
        locks = ContentLockRegistry()
        with locks.hold(1):
            acquired = threading.Event()

            def other():
                with locks.hold(2):
                    acquired.set()

            t = threading.Thread(target=other)
            t.start()
            assert acquired.wait(timeout=1)
            t.join()
        assert len(locks) == 0

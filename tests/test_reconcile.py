"""
Client reconciliation loop and HTTP transport, run against the real app through TestClient.
"""

import threading
import pytest
from unittest.mock import MagicMock

from fastapi.testclient import TestClient

from reviewroom.api.main import app
from reviewroom.client import RoomApiTransport, RoomSyncClient, error_from_response
from reviewroom.client.reconcile import (
    POLL_INTERVAL_SEC,
    POST_WRITE_QUIET_SEC,
    PUSH_DEBOUNCE_SEC,
    TYPING_QUIET_SEC,
)
from reviewroom.core.errors import (
    PermissionDenied,
    RoomError,
    RoomLocked,
    RoomNotFound,
    VersionConflict,
)
from reviewroom.core.schema import CommentType, KnowledgeDocument, Role, RoomStatus, RoomUpdates

ROOM = "room-sync"


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def transport():
    with TestClient(app) as test_client:
        yield RoomApiTransport(session=test_client)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def owner(transport, clock):
    """Owner client with a freshly created room."""
    sync_client = RoomSyncClient(transport, ROOM, role=Role.OWNER, author="owner", clock=clock)
    sync_client.create_room("# PRD\n{{DECISION: Ship now? | Yes | No}}")
    return sync_client


@pytest.fixture
def other_writer(transport, owner):
    """Direct writes from a second owner session."""
    def write(updates):
        return transport.update(ROOM, updates, Role.OWNER, owner_token=owner.owner_token).state
    return write


def guest_for(transport, clock, **kwargs):
    guest = RoomSyncClient(transport, ROOM, role=Role.GUEST, author="guest", clock=clock, **kwargs)
    guest.poll(force=True)
    return guest


class TestTransport:
    """Error mapping and payload shapes."""

    def test_sync_unknown_room(self, transport):
        assert transport.sync("nobody") is None

    def test_error_body_mapped_to_exception(self, transport):
        with pytest.raises(RoomNotFound):
            transport.vote("nobody", "Ship now?", 0)

    def test_version_conflict_mapping(self):
        error = error_from_response(409, {"error": "stale", "errorType": "version_conflict", "currentVersion": 7})

        assert isinstance(error, VersionConflict)
        assert error.current_version == 7

    def test_unknown_error_type(self):
        error = error_from_response(418, {"error": "teapot"})

        assert type(error) is RoomError
        assert error.status_code == 418


class TestRoomCreation:
    def test_owner_creates_room(self, owner):
        assert owner.exists is True
        assert owner.state.version == 2
        assert owner.owner_token
        assert owner.local_content.startswith("# PRD")

    def test_guest_cannot_create(self, transport, clock):
        guest = RoomSyncClient(transport, "other-room", role=Role.GUEST, clock=clock)
        with pytest.raises(PermissionDenied):
            guest.create_room("x")


class TestContentReconciliation:
    """Server content vs. local typing."""

    def test_debounced_push(self, owner, clock):
        owner.edit_content("draft 1")
        owner.edit_content("draft 2")
        owner.tick()
        assert owner.state.version == 2

        clock.advance(1.0)
        owner.tick()

        assert owner.state.version == 3
        assert owner.state.content == "draft 2"
        assert owner.pending_content is None

    def test_typing_protects_local_content(self, owner, other_writer, clock):
        owner.edit_content("my local draft")
        other_writer(RoomUpdates(content="remote text", new_comment={"type": "HUMAN", "comment": "hi"}))

        assert owner.poll() is True
        assert owner.local_content == "my local draft"
        assert owner.state.content == "remote text"
        assert [c.body for c in owner.state.comments] == ["hi"]

    def test_remote_content_applied_after_quiet_period(self, owner, other_writer, clock):
        owner.edit_content("typed")
        owner.flush(force=True)

        other_writer(RoomUpdates(content="remote wins"))
        clock.advance(2.0)
        owner.poll()
        assert owner.local_content == "typed"

        clock.advance(TYPING_QUIET_SEC)
        owner.poll()
        assert owner.local_content == "remote wins"

    def test_forced_poll_always_applies(self, owner, other_writer):
        owner.edit_content("typed")
        other_writer(RoomUpdates(content="remote"))

        owner.poll(force=True)
        assert owner.local_content == "remote"

    def test_version_conflict_resyncs_and_retries(self, owner, other_writer):
        other_writer(RoomUpdates(content="someone else"))
        assert owner.state.version == 2

        state = owner.push_update(RoomUpdates(content="mine"))

        assert state.version == 4
        assert state.content == "mine"

    def test_stale_state_ignored(self, owner, transport, other_writer):
        stale = transport.sync(ROOM)
        other_writer(RoomUpdates(content="newer"))
        owner.poll()

        assert owner.reconcile(stale) is False
        assert owner.state.content == "newer"


class TestPollScheduling:
    """Poll interval and post-write suppression."""

    def test_poll_interval(self, owner, transport, clock):
        owner.poll(force=True)
        transport.sync = MagicMock(wraps=transport.sync)

        clock.advance(POLL_INTERVAL_SEC - 0.5)
        owner.tick()
        assert transport.sync.call_count == 0

        clock.advance(0.5)
        owner.tick()
        assert transport.sync.call_count == 1

    def test_poll_after_write_is_skipped(self, owner, transport, clock):
        owner.poll(force=True)
        transport.sync = MagicMock(wraps=transport.sync)

        clock.advance(POLL_INTERVAL_SEC - 1.0)
        owner.edit_content("edit")
        clock.advance(1.0)
        owner.tick()  # flushes the edit; the due poll falls inside the quiet window
        assert owner.state.content == "edit"
        assert transport.sync.call_count == 0

        clock.advance(POST_WRITE_QUIET_SEC)
        owner.tick()
        assert transport.sync.call_count == 0

        clock.advance(POLL_INTERVAL_SEC)
        owner.tick()
        assert transport.sync.call_count == 1

    def test_tick_isolates_errors(self, owner, clock):
        errors = []
        owner.on_error = errors.append
        owner.transport = MagicMock()
        owner.transport.sync.side_effect = RoomError("store down")

        clock.advance(POLL_INTERVAL_SEC)
        owner.tick()

        assert len(errors) == 1
        assert owner.closed is False


class TestClosedRoom:
    def test_close_stops_loop(self, owner, transport, clock):
        closed_states = []
        guest = guest_for(transport, clock, on_closed=closed_states.append)

        assert owner.close() is True
        assert owner.closed is True

        clock.advance(POLL_INTERVAL_SEC)
        guest.tick()
        assert guest.closed is True
        assert closed_states[0].settings.is_active is False

        guest.transport = MagicMock()
        clock.advance(POLL_INTERVAL_SEC)
        guest.tick()
        guest.transport.sync.assert_not_called()

    def test_run_until_stopped(self, owner, transport, clock):
        stop = threading.Event()
        guest = RoomSyncClient(transport, ROOM, clock=clock)

        guest.run(stop_event=stop, sleep=lambda _: stop.set())

        assert guest.running is False
        assert guest.state.version == owner.state.version


class TestRoomOperations:
    """Comment, knowledge, status and decision operations."""

    def test_comment_lifecycle(self, owner):
        comment = owner.add_comment("first thought", position="1.1")
        assert [c.id for c in owner.state.comments] == [comment.id]

        edited = owner.edit_comment(comment.id, "second thought")
        assert owner.state.comments[0].body == "second thought"
        assert edited.last_edited_at is not None

        owner.delete_comment(comment.id)
        assert owner.state.comments == []

    def test_guest_comment_needs_permission(self, owner, transport, clock):
        guest = guest_for(transport, clock)
        with pytest.raises(PermissionDenied):
            guest.add_comment("hello")

        owner.update_settings(allow_guest_comment=True)
        guest.poll()
        guest.add_comment("hello")
        assert guest.state.comments[-1].author == "guest"

    def test_guest_cannot_delete_ai_comments(self, owner, transport, clock):
        owner.update_settings(allow_guest_comment=True)
        owner.request_review()
        guest = guest_for(transport, clock)
        ai_comment = guest.state.comments[0]
        assert ai_comment.type != CommentType.HUMAN

        with pytest.raises(PermissionDenied):
            guest.delete_comment(ai_comment.id)

    def test_upload_knowledge(self, owner):
        doc = owner.upload_knowledge("arch.md", "Use PostgreSQL.")

        assert [d.id for d in owner.state.kb_files] == [doc.id]
        assert owner.state.kb_files[0].content == "Use PostgreSQL."

    def test_approval_locks_content(self, owner):
        owner.change_status(RoomStatus.APPROVED)

        owner.edit_content("too late")
        with pytest.raises(RoomLocked):
            owner.flush(force=True)

    def test_vote_on_anchor(self, owner, transport, clock):
        guest = guest_for(transport, clock)
        anchor, record = guest.decision_anchors()[0]
        assert anchor.key == "Ship now?"
        assert record is None

        guest.vote(anchor, 0)
        owner.vote(anchor, 1)
        guest.poll()

        anchor, record = guest.decision_anchors()[0]
        assert record.total_votes == 2
        assert record.options == ["Yes", "No"]

    def test_summarize_decision(self, owner):
        anchor = owner.decision_anchors()[0][0]
        owner.vote(anchor, 0)

        record = owner.summarize_decision(anchor.key)
        assert "leading option" in record.ai_summary

    def test_request_review_appends_comments(self, owner):
        comments = owner.request_review()

        assert len(comments) == 2
        assert len(owner.state.comments) == 2

    def test_generate_impact(self, owner):
        state = owner.generate_impact()
        assert len(state.impact_graph.nodes) == 5


class TestPushedPayloads:
    """Push channel payloads reconcile like polls."""

    def test_apply_pushed_state(self, owner, transport, clock, other_writer):
        guest = guest_for(transport, clock)
        newer = other_writer(RoomUpdates(content="pushed"))

        assert guest.apply_pushed({"exists": True, "state": newer.to_wire()}) is True
        assert guest.local_content == "pushed"

    def test_apply_pushed_error(self, owner, transport, clock):
        guest = guest_for(transport, clock)
        assert guest.apply_pushed({"error": "store down", "errorType": "store_unavailable"}) is False

    def test_websocket_payload(self, owner, transport, clock, monkeypatch):
        monkeypatch.setenv("PUSH_INTERVAL_SEC", "0.05")
        guest = RoomSyncClient(transport, ROOM, clock=clock)

        with transport.session.websocket_connect(f"/api/room/ws?roomId={ROOM}") as ws:
            assert guest.apply_pushed(ws.receive_json()) is True

        assert guest.state.version == owner.state.version


class TestConcurrentListWrites:
    """Full-replace writes are rebuilt from the re-synced state after a conflict."""

    def test_edit_keeps_comment_appended_elsewhere(self, owner, transport, other_writer):
        mine = owner.add_comment("mine")
        other_writer(RoomUpdates(new_comment={"type": "HUMAN", "comment": "theirs"}))

        edited = owner.edit_comment(mine.id, "mine edited")

        assert edited.body == "mine edited"
        assert [c.body for c in transport.sync(ROOM).comments] == ["mine edited", "theirs"]

    def test_delete_keeps_comment_appended_elsewhere(self, owner, transport, other_writer):
        mine = owner.add_comment("mine")
        other_writer(RoomUpdates(new_comment={"type": "HUMAN", "comment": "theirs"}))

        owner.delete_comment(mine.id)

        assert [c.body for c in transport.sync(ROOM).comments] == ["theirs"]
        assert [c.body for c in owner.state.comments] == ["theirs"]

    def test_edit_of_comment_removed_elsewhere_conflicts(self, owner, transport, other_writer):
        mine = owner.add_comment("mine")
        other_writer(RoomUpdates(comments=[]))

        with pytest.raises(VersionConflict, match="removed by another participant"):
            owner.edit_comment(mine.id, "too late")

        assert transport.sync(ROOM).comments == []
        assert owner.state.comments == []

    def test_knowledge_removal_keeps_document_added_elsewhere(self, owner, transport, other_writer):
        keep = owner.upload_knowledge("arch.md", "Use PostgreSQL.")
        drop = owner.upload_knowledge("old.md", "Outdated.")
        added = KnowledgeDocument.from_text("api.md", "REST only.")
        other_writer(RoomUpdates(kb_files=owner.state.kb_files + [added]))

        owner.remove_knowledge(drop.id)

        assert [d.id for d in transport.sync(ROOM).kb_files] == [keep.id, added.id]


class TestFailedWrites:
    """Local edits survive failed pushes unless the server refused them."""

    def test_connection_error_keeps_pending_edit(self, owner, transport, clock):
        errors = []
        owner.on_error = errors.append
        owner.transport = MagicMock(wraps=transport)
        owner.transport.update.side_effect = ConnectionError("connection reset")

        owner.edit_content("important local edit")
        clock.advance(PUSH_DEBOUNCE_SEC)
        owner.tick()

        assert len(errors) == 1
        assert owner.pending_content == "important local edit"

        owner.transport = transport
        clock.advance(TYPING_QUIET_SEC)
        owner.poll()
        assert owner.local_content == "important local edit"

        owner.tick()
        assert owner.pending_content is None
        assert transport.sync(ROOM).content == "important local edit"

    def test_version_conflict_twice_keeps_pending_edit(self, owner):
        owner.transport = MagicMock(wraps=owner.transport)
        owner.transport.update.side_effect = VersionConflict("stale", current_version=9)

        owner.edit_content("typed")
        with pytest.raises(VersionConflict):
            owner.flush(force=True)

        assert owner.pending_content == "typed"

    def test_permission_error_drops_edit(self, owner, transport, clock):
        guest = guest_for(transport, clock)
        guest.edit_content("guest text")

        with pytest.raises(PermissionDenied):
            guest.flush(force=True)

        assert guest.pending_content is None


class TestDocumentStructure:
    """Decision anchors and manual impact-graph edits."""

    def test_insert_decision_at_end(self, owner):
        anchor = owner.insert_decision("Use Redis?", ["Yes", "No", "Later"])

        assert anchor.key == "Use Redis?"
        assert owner.state.content.endswith("\n{{DECISION: Use Redis? | Yes | No | Later}}")
        assert [a.key for a, _ in owner.decision_anchors()] == ["Ship now?", "Use Redis?"]

    def test_insert_decision_at_position(self, owner):
        owner.insert_decision("First?", position=0)

        assert owner.state.content.startswith("{{DECISION: First?}}# PRD")
        assert owner.decision_anchors()[0][0].options == ["Agree", "Disagree"]

    def test_insert_decision_refused_when_approved(self, owner):
        owner.change_status(RoomStatus.APPROVED)
        version = owner.state.version

        with pytest.raises(RoomLocked):
            owner.insert_decision("Late?")

        assert "Late?" not in owner.local_content
        assert owner.state.version == version

    def test_add_and_remove_impact_node(self, owner):
        owner.generate_impact()
        first = owner.state.impact_graph.nodes[0].id

        owner.add_impact_node("Audit Log", links_to=[first, "Unknown"])
        graph = owner.state.impact_graph
        node = graph.nodes[-1]
        assert (node.id, node.category, node.weight) == ("Audit Log", 1, 10.0)
        assert [(link.source, link.target) for link in graph.links if link.source == "Audit Log"] == [
            ("Audit Log", first)
        ]

        owner.remove_impact_node(first)
        graph = owner.state.impact_graph
        assert first not in [n.id for n in graph.nodes]
        assert all(first not in (link.source, link.target) for link in graph.links)

    def test_duplicate_node_is_ignored(self, owner):
        owner.add_impact_node("Billing")
        version = owner.state.version

        owner.add_impact_node("Billing")

        assert owner.state.version == version
        assert [n.id for n in owner.state.impact_graph.nodes] == ["Billing"]

    def test_guest_cannot_remove_nodes(self, owner, transport, clock):
        owner.add_impact_node("Billing")
        guest = guest_for(transport, clock)

        with pytest.raises(PermissionDenied):
            guest.remove_impact_node("Billing")

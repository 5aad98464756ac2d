"""
Client reconciliation loop for one room.

Single-threaded and cooperative: tick() polls the server on a fixed interval and flushes
debounced local edits. Server content is only applied while the local user is not typing;
every other field is always taken from the server.
"""

import threading
import time
from typing import Callable, List, Optional, Tuple, Union

import requests

from .transport import RoomApiTransport
from ..core.decisions import DecisionAnchor, extract_anchors, format_anchor, parse_anchor
from ..core.errors import InvalidUpdate, PermissionDenied, RoomClosed, RoomError, RoomLocked, VersionConflict
from ..core.schema import (
    Comment,
    CommentType,
    DecisionRecord,
    ImpactGraph,
    ImpactLink,
    ImpactNode,
    KnowledgeDocument,
    Role,
    RoomState,
    RoomStatus,
    RoomUpdates,
    SettingsPatch,
    now_ms,
)
from ..util.logging import logger

POLL_INTERVAL_SEC = 3.0
TYPING_QUIET_SEC = 5.0  # server content is not applied while the user typed within this window
PUSH_DEBOUNCE_SEC = 1.0
POST_WRITE_QUIET_SEC = 2.0  # the next scheduled poll after a write is skipped inside this window

LOOP_SLEEP_SEC = 0.1

UpdateBuilder = Callable[[Optional[RoomState]], RoomUpdates]


class RoomSyncClient:
    """Keeps a local view of a room converged with the server."""

    def __init__(self, transport: RoomApiTransport, room_id: str, role: Role = Role.GUEST,
                 owner_token: Optional[str] = None, author: str = "Anonymous",
                 clock: Callable[[], float] = time.monotonic,
                 on_state: Optional[Callable[[RoomState], None]] = None,
                 on_closed: Optional[Callable[[RoomState], None]] = None,
                 on_error: Optional[Callable[[Exception], None]] = None):
        self.transport = transport
        self.room_id = room_id
        self.role = role
        self.owner_token = owner_token
        self.author = author
        self.clock = clock
        self.on_state = on_state
        self.on_closed = on_closed
        self.on_error = on_error

        self.state: Optional[RoomState] = None
        self.exists = False
        self.local_content = ""
        self.closed = False
        self.running = False

        self.last_keystroke_at: Optional[float] = None
        self.pending_content: Optional[str] = None
        self.pending_since: Optional[float] = None
        self.last_poll_at: Optional[float] = None
        self.suppress_poll_until: Optional[float] = None

    # Reading

    def poll(self, force: bool = False) -> bool:
        """Pull the authoritative state and reconcile it. Returns True if it was applied."""
        self.last_poll_at = self.clock()
        return self.reconcile(self.transport.sync(self.room_id), force=force)

    def reconcile(self, state: Optional[RoomState], force: bool = False) -> bool:
        if state is None:
            self.exists = False
            return False

        if self.state is not None and state.version < self.state.version:
            logger.debug(f"Ignoring stale state v{state.version} for room {self.room_id} (have v{self.state.version})")
            return False

        first = self.state is None
        self.exists = True
        if force or first or self._typing_quiet():
            self.local_content = state.content
        self.state = state

        if self.on_state:
            self.on_state(state)
        if not state.is_active:
            self._handle_closed()
        return True

    def apply_pushed(self, payload: dict) -> bool:
        """Reconcile a payload received on the push channel ({exists, state} like sync)."""
        if "error" in payload:
            logger.warning(f"Push channel error for room {self.room_id}: {payload.get('error')}")
            return False
        state = RoomState.model_validate(payload["state"]) if payload.get("exists") else None
        return self.reconcile(state)

    def _typing_quiet(self) -> bool:
        if self.pending_content is not None:
            return False
        if self.last_keystroke_at is None:
            return True
        return self.clock() - self.last_keystroke_at >= TYPING_QUIET_SEC

    def _handle_closed(self):
        if self.closed:
            return
        self.closed = True
        self.running = False
        logger.log_operation("client.room_closed", "success", {"room_id": self.room_id})
        if self.on_closed:
            self.on_closed(self.state)

    # Writing

    def edit_content(self, text: str):
        """Record a local keystroke; the write goes out after the debounce window."""
        now = self.clock()
        self.local_content = text
        self.last_keystroke_at = now
        self.pending_content = text
        self.pending_since = now

    def flush(self, force: bool = False) -> Optional[RoomState]:
        """Push pending content once the debounce window has passed.

        A failed push puts the text back as pending so the next tick retries it. Only a
        permission error or a closed room drops the edit.
        """
        if self.pending_content is None:
            return None
        if not force and self.clock() - self.pending_since < PUSH_DEBOUNCE_SEC:
            return None
        text = self.pending_content
        self.pending_content = None
        self.pending_since = None
        try:
            return self.push_update(RoomUpdates(content=text))
        except (PermissionDenied, RoomClosed) as e:
            logger.warning(f"Dropping local edit for room {self.room_id}: {e}")
            raise
        except (RoomError, requests.RequestException, ConnectionError):
            if self.pending_content is None:
                self.pending_content = text
                self.pending_since = self.clock()
            raise

    def push_update(self, updates: Union[RoomUpdates, UpdateBuilder]) -> RoomState:
        """
        Send an update and adopt the returned authoritative state.

        Args:
            updates: The update, or a builder deriving it from the current state

        Non-append updates carry the last seen version. On a version conflict the client
        re-syncs and retries once. A builder is re-run against the re-synced state, so a
        list it replaces keeps entries other participants wrote in between.
        """
        build = updates if callable(updates) else (lambda state: updates)
        try:
            try:
                result = self._send(build(self.state))
            except VersionConflict as e:
                logger.info(f"Version conflict on room {self.room_id} (server at v{e.current_version}); retrying")
                self.poll()
                result = self._send(build(self.state))
        except RoomClosed:
            self._handle_closed()
            raise

        if result.owner_token:
            self.owner_token = result.owner_token
        self._accept_written(result.state)
        return result.state

    def _send(self, updates: RoomUpdates):
        base_version = None if updates.is_append_only else self._base_version()
        return self.transport.update(self.room_id, updates, self.role,
                                     base_version=base_version, owner_token=self.owner_token)

    def _base_version(self) -> int:
        return self.state.version if self.state is not None else 0

    def _accept_written(self, state: RoomState):
        if self.state is None or state.version >= self.state.version:
            self.state = state
            self.exists = True
            if self.pending_content is None:
                self.local_content = state.content
            if self.on_state:
                self.on_state(state)
        self.suppress_poll_until = self.clock() + POST_WRITE_QUIET_SEC

    # Loop

    def tick(self):
        """One cooperative step: flush a debounced edit, then poll if due."""
        if self.closed:
            return
        try:
            self.flush()
            if self._poll_due():
                now = self.clock()
                if self.suppress_poll_until is not None and now < self.suppress_poll_until:
                    # Skip this scheduled poll entirely
                    self.last_poll_at = now
                    self.suppress_poll_until = None
                else:
                    self.poll()
        except (RoomError, requests.RequestException, ConnectionError) as e:
            logger.error(f"Sync tick failed for room {self.room_id}: {e}")
            if self.on_error:
                self.on_error(e)

    def _poll_due(self) -> bool:
        if self.last_poll_at is None:
            return True
        return self.clock() - self.last_poll_at >= POLL_INTERVAL_SEC

    def run(self, stop_event: Optional[threading.Event] = None,
            sleep: Callable[[float], None] = time.sleep):
        """Run the loop until stopped or the room closes."""
        if self.running:
            raise RuntimeError("Sync loop already running")

        self.running = True
        stop_event = stop_event or threading.Event()
        logger.info(f"Starting sync loop for room {self.room_id}")

        try:
            self.poll(force=True)
            while self.running and not self.closed and not stop_event.is_set():
                self.tick()
                sleep(LOOP_SLEEP_SEC)
        except KeyboardInterrupt:
            logger.info("Sync loop interrupted by user")
        finally:
            self.running = False
            logger.info(f"Sync loop for room {self.room_id} stopped")

    # Room operations

    def create_room(self, content: str = "", kb_files: Optional[List[KnowledgeDocument]] = None) -> RoomState:
        """Create the room as its owner; the issued owner token is kept on the client."""
        if self.role != Role.OWNER:
            raise PermissionDenied("Only an owner can create a room.")
        return self.push_update(RoomUpdates(content=content, kb_files=list(kb_files or [])))

    def add_comment(self, body: str, position: str = "", original_text: str = "",
                    question: Optional[str] = None) -> Comment:
        comment = Comment(
            type=CommentType.HUMAN,
            position=position,
            original_text=original_text,
            body=body,
            question=question,
            author=self.author,
        )
        self.push_update(RoomUpdates(new_comment=comment))
        return comment

    def _find_comment(self, comment_id: str) -> Comment:
        for comment in self._require_state().comments:
            if comment.id == comment_id:
                return comment
        raise InvalidUpdate(f"Comment '{comment_id}' not found.")

    def _comments_with(self, state: RoomState, comment_id: str) -> List[Comment]:
        """Comments of a (possibly re-synced) state; the target must still be among them."""
        if not any(c.id == comment_id for c in state.comments):
            raise VersionConflict(f"Comment '{comment_id}' was removed by another participant.",
                                  current_version=state.version)
        return state.comments

    def edit_comment(self, comment_id: str, body: str) -> Comment:
        self._find_comment(comment_id)
        edited_at = now_ms()

        def build(state: RoomState) -> RoomUpdates:
            return RoomUpdates(comments=[
                c.model_copy(update={"body": body, "last_edited_at": edited_at}) if c.id == comment_id else c
                for c in self._comments_with(state, comment_id)
            ])

        self.push_update(build)
        return self._find_comment(comment_id)

    def delete_comment(self, comment_id: str):
        """Remove a comment. Guests may only delete human comments."""
        target = self._find_comment(comment_id)
        if self.role != Role.OWNER and target.type != CommentType.HUMAN:
            raise PermissionDenied("Guests can only delete human comments.")
        self.push_update(lambda state: RoomUpdates(
            comments=[c for c in self._comments_with(state, comment_id) if c.id != comment_id]))

    def upload_knowledge(self, name: str, text: str, size: Optional[int] = None) -> KnowledgeDocument:
        self._require_state()
        doc = KnowledgeDocument.from_text(name, text, size=size)
        self.push_update(lambda state: RoomUpdates(kb_files=state.kb_files + [doc]))
        return doc

    def remove_knowledge(self, doc_id: str):
        if not any(d.id == doc_id for d in self._require_state().kb_files):
            raise InvalidUpdate(f"Knowledge document '{doc_id}' not found.")
        self.push_update(lambda state: RoomUpdates(kb_files=[d for d in state.kb_files if d.id != doc_id]))

    def add_impact_node(self, node_id: str, category: int = 1, weight: float = 10.0,
                        links_to: Optional[List[str]] = None) -> RoomState:
        """Add a node by hand, optionally linked to existing nodes. An existing id is left as is."""
        node_id = node_id.strip()
        if not node_id:
            raise InvalidUpdate("Impact node id is required.")
        current = self._require_state()
        if any(n.id == node_id for n in current.impact_graph.nodes):
            return current

        def build(state: RoomState) -> RoomUpdates:
            graph = state.impact_graph
            if any(n.id == node_id for n in graph.nodes):
                return RoomUpdates(impact_graph=graph)
            known = {n.id for n in graph.nodes}
            links = [ImpactLink(source=node_id, target=t) for t in (links_to or []) if t in known]
            return RoomUpdates(impact_graph=ImpactGraph(
                nodes=graph.nodes + [ImpactNode(id=node_id, category=category, weight=weight)],
                links=graph.links + links,
            ))

        return self.push_update(build)

    def remove_impact_node(self, node_id: str) -> RoomState:
        """Remove a node along with every link that touches it. Owner only."""
        if self.role != Role.OWNER:
            raise PermissionDenied("Only the owner can remove impact nodes.")
        self._require_state()

        def build(state: RoomState) -> RoomUpdates:
            graph = state.impact_graph
            return RoomUpdates(impact_graph=ImpactGraph(
                nodes=[n for n in graph.nodes if n.id != node_id],
                links=[link for link in graph.links if node_id not in (link.source, link.target)],
            ))

        return self.push_update(build)

    def insert_decision(self, question: str, options: Optional[List[str]] = None,
                        position: Optional[int] = None) -> DecisionAnchor:
        """Insert a decision anchor into the document at a character offset (default: the end)."""
        if self._require_state().is_locked:
            raise RoomLocked("Document is approved and locked.")
        if not question.strip():
            raise InvalidUpdate("Decision question is required.")

        anchor = format_anchor(question, options)
        text = self.local_content
        if position is None:
            prefix = text if not text or text.endswith("\n") else text + "\n"
            updated = prefix + anchor
        else:
            position = max(0, min(position, len(text)))
            updated = text[:position] + anchor + text[position:]

        self.edit_content(updated)
        self.flush(force=True)
        return parse_anchor(anchor)

    def update_settings(self, **changes) -> RoomState:
        return self.push_update(RoomUpdates(settings=SettingsPatch(**changes)))

    def change_status(self, status: RoomStatus) -> RoomState:
        return self.update_settings(status=status)

    def close(self) -> bool:
        closed = self.transport.close(self.room_id, self.role, owner_token=self.owner_token)
        if closed:
            self.poll(force=True)
        return closed

    def vote(self, anchor: DecisionAnchor, option_index: int) -> DecisionRecord:
        record = self.transport.vote(self.room_id, anchor.question, option_index,
                                     options=anchor.options, anchor_key=anchor.key)
        if self.state is not None:
            self.state.decisions[anchor.key] = record
        return record

    def summarize_decision(self, question_key: str) -> DecisionRecord:
        record = self.transport.summarize(self.room_id, question_key, self.role, owner_token=self.owner_token)
        if self.state is not None:
            self.state.decisions[question_key.strip()] = record
        return record

    def decision_anchors(self) -> List[Tuple[DecisionAnchor, Optional[DecisionRecord]]]:
        """Anchors in the local document joined with their vote records."""
        decisions = self.state.decisions if self.state is not None else {}
        return [(anchor, decisions.get(anchor.key)) for anchor in extract_anchors(self.local_content)]

    def request_review(self) -> List[Comment]:
        """Run an AI review of the local document and append the results to the room."""
        state = self._require_state()
        comments = self.transport.review(self.local_content, state.kb_files)
        if comments:
            self.push_update(RoomUpdates(new_comments=comments))
        return comments

    def generate_impact(self) -> RoomState:
        graph = self.transport.impact(self.local_content)
        return self.push_update(RoomUpdates(impact_graph=graph))

    def _require_state(self) -> RoomState:
        if self.state is None:
            raise InvalidUpdate(f"Room '{self.room_id}' has not been synced yet.")
        return self.state

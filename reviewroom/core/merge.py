"""
Merge/update engine: turns a sparse update plus a caller role into the next authoritative RoomState.

Every permission and consistency check runs before the loaded state is touched, and a
rejected category rejects the whole request (atomic). Accepted writes bump version by one.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional

from . import store
from .config import base_version_required, owner_token_required
from .errors import InvalidUpdate, PermissionDenied, RoomClosed, RoomLocked, VersionConflict
from .schema import Comment, KnowledgeDocument, Role, RoomState, RoomUpdates
from ..util.logging import logger, audit_event


@dataclass
class UpdateResult:
    state: RoomState
    created: bool = False
    owner_token: Optional[str] = None


def check_base_version(state: Optional[RoomState], base_version: Optional[int]):
    """Optimistic concurrency: the caller must have seen the stored version."""
    if base_version is None:
        return
    current = state.version if state is not None else 0
    if base_version != current:
        raise VersionConflict(
            f"Room changed since version {base_version} (now {current}); re-sync and retry.",
            current_version=current,
            base_version=base_version,
        )


def authorize_owner(room_id: str, role: Role, owner_token: Optional[str]):
    """Validate the capability token behind an OWNER claim."""
    if role != Role.OWNER:
        return
    if owner_token:
        if not store.verify_owner_token(room_id, owner_token):
            raise PermissionDenied("Permission Denied: invalid owner token.")
    elif owner_token_required():
        raise PermissionDenied("Permission Denied: owner token required.")


def authorize_update(state: RoomState, role: Role, updates: RoomUpdates):
    """Permission checks for an existing room; raises on the first disallowed category."""
    if not state.is_active:
        raise RoomClosed("This room has been closed by its owner.")

    content_changes = updates.content is not None and updates.content != state.content
    settings_changes = updates.settings is not None and any(
        getattr(state.settings, key) != value for key, value in updates.settings.changes().items()
    )

    if state.is_locked and (content_changes or settings_changes):
        raise RoomLocked("Document is approved and locked: content and settings are read-only.")

    if role == Role.OWNER:
        return

    # Knowledge documents, decisions and the impact graph are document structure: same flag as content
    structure_changes = (updates.kb_files is not None or updates.decisions is not None
                         or updates.impact_graph is not None)
    if (updates.content is not None or structure_changes) and not state.settings.allow_guest_edit:
        raise PermissionDenied("Permission Denied: Guest editing is disabled.")

    if updates.touches_comments and not state.settings.allow_guest_comment:
        raise PermissionDenied("Permission Denied: Guest commenting is disabled.")

    if updates.settings is not None:
        raise PermissionDenied("Permission Denied: only the owner can change room settings.")


def validate_kb_files(current: List[KnowledgeDocument], incoming: List[KnowledgeDocument]):
    """Knowledge documents are immutable once uploaded; a replacement may only add or drop them."""
    existing: Dict[str, KnowledgeDocument] = {doc.id: doc for doc in current}
    seen = set()
    for doc in incoming:
        if doc.id in seen:
            raise InvalidUpdate(f"Duplicate knowledge document id '{doc.id}'.")
        seen.add(doc.id)
        previous = existing.get(doc.id)
        if previous is not None and previous != doc:
            raise InvalidUpdate(f"Knowledge document '{previous.name}' cannot be modified after upload.")


def _append_comments(comments: List[Comment], new_comments: List[Comment]) -> List[Comment]:
    # Appends are idempotent per comment id so a retried request never duplicates
    known = {c.id for c in comments}
    merged = list(comments)
    for comment in new_comments:
        if comment.id in known:
            continue
        known.add(comment.id)
        merged.append(comment)
    return merged


def apply_fields(state: RoomState, role: Role, updates: RoomUpdates) -> RoomState:
    """Apply present fields by independent overwrite. Returns a new state object."""
    nxt = state.model_copy(deep=True)

    if updates.content is not None:
        nxt.content = updates.content
    if updates.kb_files is not None:
        nxt.kb_files = list(updates.kb_files)
    if updates.decisions is not None:
        nxt.decisions = dict(updates.decisions)
    if updates.impact_graph is not None:
        nxt.impact_graph = updates.impact_graph
    if updates.settings is not None and role == Role.OWNER:
        nxt.settings = nxt.settings.model_copy(update=updates.settings.changes())

    # First match wins: appends survive concurrent writers, full replace needs the whole list
    if updates.new_comment is not None:
        nxt.comments = _append_comments(nxt.comments, [updates.new_comment])
    elif updates.new_comments is not None:
        nxt.comments = _append_comments(nxt.comments, updates.new_comments)
    elif updates.comments is not None:
        nxt.comments = list(updates.comments)

    nxt.version = state.version + 1
    return nxt


def apply_update(room_id: str, role: Role, updates: RoomUpdates,
                 base_version: Optional[int] = None, owner_token: Optional[str] = None) -> UpdateResult:
    """
    Produce, persist and return the next state of a room.

    Args:
        room_id: Room identifier
        role: Caller-asserted role
        updates: Sparse update payload
        base_version: Last version the caller saw (optional unless REQUIRE_BASE_VERSION)
        owner_token: Capability token presented with an OWNER claim

    Returns:
        UpdateResult with the persisted state; owner_token is set only when this write created the room
    """
    if not room_id or not room_id.strip():
        raise InvalidUpdate("roomId is required.")
    room_id = room_id.strip()

    state = store.load_room(room_id)
    created = state is None

    try:
        check_base_version(state, base_version)
        if created:
            state = RoomState.create(room_id, content=updates.content, kb_files=updates.kb_files)
        else:
            if base_version is None and base_version_required() and not updates.is_append_only:
                raise InvalidUpdate("baseVersion is required for this update.")
            authorize_owner(room_id, role, owner_token)
            authorize_update(state, role, updates)
        if updates.kb_files is not None:
            validate_kb_files(state.kb_files, updates.kb_files)
    except PermissionDenied as e:
        logger.log_permission_denied(room_id, role.value, e.message)
        raise

    # Claim ownership before writing: a room that still has a live owner is never re-created
    token = store.issue_owner_token(room_id) if created else None

    next_state = apply_fields(state, role, updates)
    saved = store.put_room(room_id, next_state)

    fields = updates.present_fields()
    logger.log_room_update(room_id, role.value, fields, saved.version, created=created)
    audit_event("room.update", {"room_id": room_id, "role": role.value, "version": saved.version},
                updates.model_dump(by_alias=True, exclude_none=True, mode="json"))

    return UpdateResult(state=saved, created=created, owner_token=token)


def close_room(room_id: str, role: Role, owner_token: Optional[str] = None) -> bool:
    """Mark a room inactive. OWNER only; closing an unknown room is a no-op."""
    if role != Role.OWNER:
        logger.log_permission_denied(room_id, role.value, "close requires owner")
        raise PermissionDenied("Only the owner can close the room.")

    state = store.load_room(room_id)
    if state is None:
        return False

    authorize_owner(room_id, role, owner_token)
    closed = state.model_copy(deep=True)
    closed.settings.is_active = False
    closed.version = state.version + 1
    store.put_room(room_id, closed)
    logger.log_operation("room.close", "success", {"room_id": room_id})
    return True

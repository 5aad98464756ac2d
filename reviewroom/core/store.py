"""
Room state store: get/put of one JSON blob per room, with sliding TTL.

Reads go through load_room(), which applies the configured read-failure policy.
Writes always propagate failures; a state that failed to persist is not committed.
"""

import hashlib
import hmac
import secrets
import sqlite3
from typing import Optional

from pydantic import ValidationError

from .config import get_room_ttl_sec, get_store_read_policy
from .db import get_db
from .errors import StoreError, StoreUnavailable, StoreWriteError
from .schema import RoomState, now_ms
from ..util.logging import logger


def get_room(room_id: str) -> Optional[RoomState]:
    """Raw read. Returns None for missing or expired rooms, raises StoreError on failure."""
    if not room_id or not room_id.strip():
        return None

    try:
        with get_db() as conn:
            cursor = conn.cursor()
            cursor.execute(
                "SELECT state, expires_at FROM rooms WHERE room_id = ?",
                (room_id.strip(),)
            )
            row = cursor.fetchone()
    except Exception as e:
        raise StoreError(f"Failed to read room '{room_id}': {e}") from e

    if not row:
        return None

    blob, expires_at = row
    if expires_at <= now_ms():
        return None

    try:
        return RoomState.model_validate_json(blob)
    except ValidationError as e:
        raise StoreError(f"Stored state for room '{room_id}' is corrupt: {e.error_count()} errors") from e


def load_room(room_id: str) -> Optional[RoomState]:
    """Read a room applying STORE_READ_FAILURE_POLICY.

    fail_open: a failed read is reported as an absent room, so a first write can initialize it.
    fail_closed: a failed read raises StoreUnavailable, distinct from "not found".
    """
    try:
        return get_room(room_id)
    except StoreError as e:
        policy = get_store_read_policy()
        logger.log_store_failure("read", room_id, e, policy=policy)
        if policy == "fail_open":
            return None
        raise StoreUnavailable(f"Room store unavailable: {e.message}") from e


def put_room(room_id: str, state: RoomState, ttl_sec: Optional[int] = None) -> RoomState:
    """Persist a room, stamping lastUpdated and refreshing its expiration.

    Returns a copy of what was written; the caller's object is left untouched so a
    failed write never leaves a half-committed state behind.
    """
    if ttl_sec is None:
        ttl_sec = get_room_ttl_sec()

    written = state.model_copy(deep=True)
    written.last_updated = now_ms()
    expires_at = written.last_updated + ttl_sec * 1000

    try:
        with get_db() as conn:
            cursor = conn.cursor()
            cursor.execute(
                "INSERT OR REPLACE INTO rooms (room_id, state, version, updated_at, expires_at) VALUES (?, ?, ?, ?, ?)",
                (room_id, written.model_dump_json(by_alias=True), written.version, written.last_updated, expires_at)
            )
            conn.commit()
    except Exception as e:
        logger.log_store_failure("write", room_id, e)
        raise StoreWriteError(f"Failed to save room '{room_id}': {e}") from e

    return written


def purge_expired() -> int:
    """Delete expired rooms and their tokens. Returns how many rooms were removed."""
    now = now_ms()
    with get_db() as conn:
        cursor = conn.cursor()
        cursor.execute(
            "DELETE FROM room_tokens WHERE room_id IN (SELECT room_id FROM rooms WHERE expires_at <= ?)",
            (now,)
        )
        cursor.execute("DELETE FROM rooms WHERE expires_at <= ?", (now,))
        removed = cursor.rowcount
        conn.commit()

    if removed:
        logger.log_operation("store.purge", "success", {"removed": removed})
    return removed


def get_room_count() -> int:
    """Count live (unexpired) rooms."""
    try:
        with get_db() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT COUNT(*) FROM rooms WHERE expires_at > ?", (now_ms(),))
            return cursor.fetchone()[0]
    except Exception as e:
        logger.error(f"Failed to count rooms: {e}")
        return 0


def _hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def issue_owner_token(room_id: str) -> str:
    """Create the owner capability token for a new room. Only its hash is stored.

    A token left behind by an expired or never-written room is replaced. If the room is
    still live its token is kept and StoreUnavailable is raised: the caller only believes
    the room is new because a read failed.
    """
    token = secrets.token_urlsafe(24)
    now = now_ms()
    try:
        with get_db() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """DELETE FROM room_tokens WHERE room_id = ? AND NOT EXISTS
                   (SELECT 1 FROM rooms WHERE rooms.room_id = room_tokens.room_id AND expires_at > ?)""",
                (room_id, now)
            )
            cursor.execute(
                "INSERT INTO room_tokens (room_id, token_hash, created_at) VALUES (?, ?, ?)",
                (room_id, _hash_token(token), now)
            )
            conn.commit()
    except sqlite3.IntegrityError as e:
        logger.log_store_failure("token_write", room_id, e)
        raise StoreUnavailable(f"Room store unavailable: room '{room_id}' already has an owner.") from e
    except Exception as e:
        logger.log_store_failure("token_write", room_id, e)
        raise StoreWriteError(f"Failed to issue owner token for room '{room_id}': {e}") from e
    return token


def verify_owner_token(room_id: str, token: Optional[str]) -> bool:
    """Check a presented owner token against the stored hash."""
    if not token:
        return False
    try:
        with get_db() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT token_hash FROM room_tokens WHERE room_id = ?", (room_id,))
            row = cursor.fetchone()
    except Exception as e:
        logger.log_store_failure("token_read", room_id, e)
        raise StoreUnavailable(f"Room store unavailable: {e}") from e

    if not row:
        return False
    return hmac.compare_digest(row[0], _hash_token(token))

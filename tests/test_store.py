"""
Room store: persistence, sliding TTL, read-failure policy and owner tokens.
"""

import sqlite3
import pytest
from unittest.mock import patch

from reviewroom.core import store
from reviewroom.core.db import get_db, health_check
from reviewroom.core.errors import StoreError, StoreUnavailable, StoreWriteError
from reviewroom.core.schema import RoomState, now_ms


class TestRoomPersistence:
    """Get/put of room blobs."""

    def test_missing_room_is_none(self):
        """Unknown rooms read as absent."""
        assert store.get_room("no-such-room") is None

    def test_blank_room_id_is_none(self):
        assert store.get_room("   ") is None

    def test_put_then_get_returns_written_state(self):
        """The state returned by put_room is exactly what a later read sees."""
        written = store.put_room("room-1", RoomState.create("room-1", content="hello"))
        loaded = store.get_room("room-1")

        assert loaded == written
        assert loaded.content == "hello"
        assert loaded.last_updated > 0

    def test_put_leaves_caller_state_untouched(self):
        """put_room stamps a copy, never the caller's object."""
        state = RoomState.create("room-1")
        state.last_updated = 0

        written = store.put_room("room-1", state)

        assert state.last_updated == 0
        assert written.last_updated >= now_ms() - 5000

    def test_health_check_reports_tables(self):
        assert health_check() is True

    def test_room_count_counts_live_rooms(self):
        store.put_room("a", RoomState.create("a"))
        store.put_room("b", RoomState.create("b"))
        assert store.get_room_count() == 2


class TestRoomExpiry:
    """Sliding TTL behaviour."""

    def test_expired_room_reads_as_absent(self):
        store.put_room("room-1", RoomState.create("room-1"), ttl_sec=0)
        assert store.get_room("room-1") is None

    def test_write_refreshes_expiration(self):
        """A later write with a fresh TTL revives the record."""
        store.put_room("room-1", RoomState.create("room-1"), ttl_sec=0)
        store.put_room("room-1", RoomState.create("room-1", content="again"))

        assert store.get_room("room-1").content == "again"

    def test_purge_expired_removes_only_expired(self):
        store.put_room("old", RoomState.create("old"), ttl_sec=0)
        store.put_room("live", RoomState.create("live"))
        token = store.issue_owner_token("old")

        removed = store.purge_expired()

        assert removed == 1
        assert store.get_room_count() == 1
        assert store.verify_owner_token("old", token) is False

    def test_ttl_comes_from_config(self, monkeypatch):
        monkeypatch.setenv("ROOM_TTL_SEC", "0")
        store.put_room("room-1", RoomState.create("room-1"))
        assert store.get_room("room-1") is None


class TestReadFailurePolicy:
    """Store read errors under fail_open and fail_closed."""

    def test_corrupt_blob_raises_store_error(self):
        with get_db() as conn:
            conn.execute(
                "INSERT INTO rooms (room_id, state, version, updated_at, expires_at) VALUES (?, ?, ?, ?, ?)",
                ("room-1", "{not json", 1, now_ms(), now_ms() + 60000)
            )
            conn.commit()

        with pytest.raises(StoreError, match="corrupt"):
            store.get_room("room-1")

    @patch('reviewroom.core.store.get_db', side_effect=sqlite3.OperationalError("disk I/O error"))
    def test_fail_closed_surfaces_unavailable(self, mock_db):
        """A failed read is distinct from not found by default."""
        with pytest.raises(StoreUnavailable) as exc_info:
            store.load_room("room-1")

        assert exc_info.value.status_code == 503

    @patch('reviewroom.core.store.get_db', side_effect=sqlite3.OperationalError("disk I/O error"))
    def test_fail_open_reports_absent(self, mock_db, monkeypatch):
        monkeypatch.setenv("STORE_READ_FAILURE_POLICY", "fail_open")
        assert store.load_room("room-1") is None

    @patch('reviewroom.core.store.get_db', side_effect=sqlite3.OperationalError("database is locked"))
    def test_write_failure_propagates(self, mock_db):
        with pytest.raises(StoreWriteError):
            store.put_room("room-1", RoomState.create("room-1"))


class TestOwnerTokens:
    """Capability tokens issued at room creation."""

    def test_issued_token_verifies(self):
        token = store.issue_owner_token("room-1")

        assert len(token) >= 20
        assert store.verify_owner_token("room-1", token) is True

    def test_wrong_or_missing_token_fails(self):
        store.issue_owner_token("room-1")

        assert store.verify_owner_token("room-1", "guess") is False
        assert store.verify_owner_token("room-1", None) is False
        assert store.verify_owner_token("other-room", "guess") is False

    def test_only_hash_is_stored(self):
        token = store.issue_owner_token("room-1")
        with get_db() as conn:
            stored = conn.execute("SELECT token_hash FROM room_tokens WHERE room_id = ?", ("room-1",)).fetchone()[0]

        assert stored != token
        assert len(stored) == 64

    def test_live_room_keeps_its_token(self):
        store.put_room("room-1", RoomState.create("room-1"))
        token = store.issue_owner_token("room-1")

        with pytest.raises(StoreUnavailable, match="already has an owner"):
            store.issue_owner_token("room-1")

        assert store.verify_owner_token("room-1", token) is True

    def test_expired_room_token_is_replaced(self):
        store.put_room("room-1", RoomState.create("room-1"), ttl_sec=0)
        old = store.issue_owner_token("room-1")
        new = store.issue_owner_token("room-1")

        assert store.verify_owner_token("room-1", old) is False
        assert store.verify_owner_token("room-1", new) is True

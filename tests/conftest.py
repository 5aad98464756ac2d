"""
Shared fixtures: every test gets its own SQLite file and the mock model backend.
"""

import pytest


@pytest.fixture(autouse=True)
def isolated_room_store(tmp_path, monkeypatch):
    """Point the room store at a per-test database and reset behaviour flags."""
    db_path = tmp_path / "rooms.db"
    monkeypatch.setenv("DB_PATH", str(db_path))
    monkeypatch.setenv("AI_FORCE_MOCK", "true")
    monkeypatch.setenv("STORE_READ_FAILURE_POLICY", "fail_closed")
    monkeypatch.setenv("REQUIRE_BASE_VERSION", "false")
    monkeypatch.setenv("OWNER_TOKEN_REQUIRED", "false")
    monkeypatch.setenv("ROOM_TTL_SEC", "86400")
    return db_path

"""
Runtime configuration for the review room service.
Every value comes from the environment and is read through an accessor so it can change between tests.
"""

import os
from pathlib import Path
from typing import List

# Database path configuration
DB_PATH = os.getenv("DB_PATH", "./data/rooms.db")

# Debug flag (exposes /docs)
DEBUG = os.getenv("DEBUG", "true").lower() == "true"

# Room store configuration
ROOM_TTL_SEC = int(os.getenv("ROOM_TTL_SEC", "86400"))  # 24 hours, refreshed on every write
STORE_READ_FAILURE_POLICY = os.getenv("STORE_READ_FAILURE_POLICY", "fail_closed")  # fail_open|fail_closed

# Concurrency and trust controls
REQUIRE_BASE_VERSION = os.getenv("REQUIRE_BASE_VERSION", "false").lower() == "true"
OWNER_TOKEN_REQUIRED = os.getenv("OWNER_TOKEN_REQUIRED", "false").lower() == "true"

# Model chain configuration
OLLAMA_HOST = os.getenv("OLLAMA_HOST")
AI_PRIMARY_MODEL = os.getenv("AI_PRIMARY_MODEL", "deepseek-v3")
AI_FALLBACK_MODEL = os.getenv("AI_FALLBACK_MODEL", "qwen-plus")
AI_TIMEOUT_SEC = float(os.getenv("AI_TIMEOUT_SEC", "60"))
AI_FORCE_MOCK = os.getenv("AI_FORCE_MOCK", "false").lower() == "true"

# Server push channel
PUSH_INTERVAL_SEC = float(os.getenv("PUSH_INTERVAL_SEC", "1.0"))

VALID_READ_POLICIES = ["fail_open", "fail_closed"]

# Version string
VERSION = "1.0.0"


def get_db_path() -> str:
    """Current SQLite path for the room store."""
    return os.getenv("DB_PATH", DB_PATH)


def ensure_db_directory():
    """Ensure the database directory exists."""
    Path(get_db_path()).parent.mkdir(parents=True, exist_ok=True)


def debug_enabled():
    """Check if debug mode is enabled."""
    return os.getenv("DEBUG", "true").lower() == "true"


def get_room_ttl_sec() -> int:
    return int(os.getenv("ROOM_TTL_SEC", str(ROOM_TTL_SEC)))


def get_store_read_policy() -> str:
    """How a failed store read is reported (fail_open|fail_closed)."""
    return os.getenv("STORE_READ_FAILURE_POLICY", STORE_READ_FAILURE_POLICY).lower()


def base_version_required() -> bool:
    return os.getenv("REQUIRE_BASE_VERSION", str(REQUIRE_BASE_VERSION)).lower() == "true"


def owner_token_required() -> bool:
    return os.getenv("OWNER_TOKEN_REQUIRED", str(OWNER_TOKEN_REQUIRED)).lower() == "true"


def get_ollama_host():
    return os.getenv("OLLAMA_HOST", OLLAMA_HOST)


def get_model_chain() -> List[str]:
    """Ordered list of models tried for every outbound call, primary first."""
    chain = []
    for name in (os.getenv("AI_PRIMARY_MODEL", AI_PRIMARY_MODEL), os.getenv("AI_FALLBACK_MODEL", AI_FALLBACK_MODEL)):
        name = (name or "").strip()
        if name and name not in chain:
            chain.append(name)
    return chain


def get_model_timeout_sec() -> float:
    return float(os.getenv("AI_TIMEOUT_SEC", str(AI_TIMEOUT_SEC)))


def ai_mock_enabled() -> bool:
    return os.getenv("AI_FORCE_MOCK", str(AI_FORCE_MOCK)).lower() == "true"


def get_push_interval_sec() -> float:
    return float(os.getenv("PUSH_INTERVAL_SEC", str(PUSH_INTERVAL_SEC)))


def validate_config():
    """Validate room service configuration and return any issues."""
    issues = []

    if get_store_read_policy() not in VALID_READ_POLICIES:
        issues.append(f"Invalid STORE_READ_FAILURE_POLICY: {get_store_read_policy()}")

    if get_room_ttl_sec() < 1:
        issues.append("ROOM_TTL_SEC must be >= 1")

    if get_model_timeout_sec() <= 0:
        issues.append("AI_TIMEOUT_SEC must be > 0")

    if not get_model_chain():
        issues.append("At least one of AI_PRIMARY_MODEL / AI_FALLBACK_MODEL must be set")

    if get_push_interval_sec() <= 0:
        issues.append("PUSH_INTERVAL_SEC must be > 0")

    return issues

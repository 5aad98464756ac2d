"""
Exception hierarchy for room operations.
Each error knows the HTTP status and the stable error_type string the API reports.
"""

from typing import Any, Dict, List, Optional


class RoomError(Exception):
    """Base class for every error the room service reports to callers."""

    status_code = 500
    error_type = "room_error"

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> Dict[str, Any]:
        body = {"error": self.message, "errorType": self.error_type}
        body.update(self.details)
        return body


class InvalidUpdate(RoomError):
    """Malformed or inconsistent client payload; nothing was mutated."""

    status_code = 400
    error_type = "invalid_payload"


class PermissionDenied(RoomError):
    status_code = 403
    error_type = "permission_denied"


class RoomLocked(PermissionDenied):
    """The room is APPROVED; content and settings are read-only for every role."""

    error_type = "room_locked"


class RoomNotFound(RoomError):
    status_code = 404
    error_type = "not_found"


class VersionConflict(RoomError):
    """The caller's baseVersion is not the stored version; re-sync and retry."""

    status_code = 409
    error_type = "version_conflict"

    def __init__(self, message: str, current_version: int, base_version: Optional[int] = None):
        super().__init__(message, currentVersion=current_version)
        self.current_version = current_version
        self.base_version = base_version


class RoomClosed(RoomError):
    status_code = 410
    error_type = "room_closed"


class StoreError(RoomError):
    status_code = 500
    error_type = "store_error"


class StoreUnavailable(StoreError):
    """Read failure surfaced distinctly from "not found" (fail_closed policy)."""

    status_code = 503
    error_type = "store_unavailable"


class StoreWriteError(StoreError):
    error_type = "store_write_failed"


class UpstreamModelError(RoomError):
    status_code = 502
    error_type = "upstream_ai_error"


class ModelChainExhausted(UpstreamModelError):
    """Every model in the chain failed or the timeout budget ran out."""

    def __init__(self, message: str, errors: List[str]):
        super().__init__(message, attempts=len(errors))
        self.errors = errors

    @property
    def primary_error(self) -> str:
        return self.errors[0] if self.errors else ""


ERROR_TYPES = {
    cls.error_type: cls
    for cls in (InvalidUpdate, PermissionDenied, RoomLocked, RoomNotFound, VersionConflict,
                RoomClosed, StoreError, StoreUnavailable, StoreWriteError, UpstreamModelError)
}

"""
Structured logging for room operations.
Document text is never logged verbatim: payloads pass through sanitize_payload first.
"""

import logging
from typing import Any, Dict, List

SENSITIVE_FIELDS = ['content', 'comment', 'originalText', 'prdContent', 'ownerToken', 'token']


class StructuredLogger:
    """Structured logger for room sync, voting, store and model operations."""

    def __init__(self, name: str = "reviewroom"):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(logging.INFO)

        # Create handler if not already set
        if not self.logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
            )
            handler.setFormatter(formatter)
            self.logger.addHandler(handler)

    def log_operation(self, operation: str, status: str, details: Dict[str, Any] = None):
        """Log a structured operation."""
        message = f"Operation: {operation}, Status: {status}"
        if details:
            message += f", Details: {details}"

        if status in ("failed", "denied", "rejected"):
            self.logger.warning(message)
        else:
            self.logger.info(message)

    def log_room_update(self, room_id: str, role: str, fields: List[str], version: int, created: bool = False):
        """Log an accepted room write."""
        details = {
            "room_id": room_id,
            "role": role,
            "fields": sorted(fields),
            "version": version,
        }
        if created:
            details["created"] = True
        self.log_operation("room.update", "success", details)

    def log_permission_denied(self, room_id: str, role: str, reason: str):
        """Log a rejected write; reason is the user-facing message."""
        self.log_operation("room.permission", "denied", {
            "room_id": room_id,
            "role": role,
            "reason": reason[:100]
        })

    def log_vote(self, room_id: str, question_key: str, option_index: int, total_votes: int):
        """Log a counted vote."""
        details = {
            "room_id": room_id,
            "question_key": question_key[:50] + "..." if len(question_key) > 50 else question_key,
            "option_index": option_index,
            "total_votes": total_votes
        }
        self.log_operation("decision.vote", "success", details)

    def log_model_call(self, purpose: str, model: str, start_time: float, end_time: float,
                       status: str = "success", details: Dict[str, Any] = None):
        """Log one outbound model attempt."""
        duration_ms = round((end_time - start_time) * 1000, 2)
        log_details = {"model": model, "duration_ms": duration_ms}
        if details:
            log_details.update(details)

        self.log_operation(f"model.{purpose}", status, log_details)

    def log_store_failure(self, operation: str, room_id: str, error: Exception, policy: str = None):
        """Log a store read/write failure."""
        details = {"room_id": room_id, "error": str(error)[:100]}
        if policy:
            details["policy"] = policy
        self.log_operation(f"store.{operation}", "failed", details)

    # Standard logging methods for compatibility
    def info(self, message: str) -> None:
        """Log an info message."""
        self.logger.info(message)

    def warning(self, message: str) -> None:
        """Log a warning message."""
        self.logger.warning(message)

    def error(self, message: str) -> None:
        """Log an error message."""
        self.logger.error(message)

    def debug(self, message: str) -> None:
        """Log a debug message."""
        self.logger.debug(message)


# Global logger instance
logger = StructuredLogger()


def audit_event(event_type: str, identifiers: Dict[str, Any], payload: Dict[str, Any] = None,
                sensitive_fields: List[str] = None):
    """General audit event logging with document text redacted."""
    log_details = identifiers.copy() if identifiers else {}

    if payload:
        log_details["payload"] = sanitize_payload(payload, sensitive_fields=sensitive_fields)

    logger.log_operation(event_type.replace(".", "_"), "audit", log_details)


def sanitize_payload(payload: Any, reveal_sensitive: bool = False, sensitive_fields: List[str] = None) -> Any:
    """Sanitize payloads for audit logging."""
    if sensitive_fields is None:
        sensitive_fields = SENSITIVE_FIELDS

    if isinstance(payload, dict):
        sanitized = {}
        for k, v in payload.items():
            if reveal_sensitive or k not in sensitive_fields:
                sanitized[k] = sanitize_payload(v, reveal_sensitive, sensitive_fields)
            else:
                sanitized[k] = "[REDACTED]"
        return sanitized
    elif isinstance(payload, str):
        # Truncate long strings
        return payload[:100] + "..." if len(payload) > 100 else payload
    elif isinstance(payload, list):
        return [sanitize_payload(item, reveal_sensitive, sensitive_fields) for item in payload]
    else:
        return payload

"""
HTTP transport for the room API.

Works over a requests.Session or anything with the same get/post shape (FastAPI's TestClient).
Error bodies are turned back into the matching RoomError subclass.
"""

from typing import Any, Dict, List, Optional

import requests

from ..core.errors import ERROR_TYPES, RoomError, VersionConflict
from ..core.merge import UpdateResult
from ..core.schema import (
    Comment,
    DecisionRecord,
    ImpactGraph,
    KnowledgeDocument,
    Role,
    RoomState,
    RoomUpdates,
)


def error_from_response(status_code: int, body: Dict[str, Any]) -> RoomError:
    """Rebuild the server-side exception from an error body."""
    message = body.get("error") or f"HTTP {status_code}"
    error_type = body.get("errorType")

    if error_type == VersionConflict.error_type:
        return VersionConflict(message, current_version=int(body.get("currentVersion", 0)))

    details = {k: v for k, v in body.items() if k not in ("error", "errorType")}
    cls = ERROR_TYPES.get(error_type)
    if cls is None:
        error = RoomError(message, **details)
        error.status_code = status_code
        error.error_type = error_type or "http_error"
        return error
    return cls(message, **details)


class RoomApiTransport:
    """Thin client for the room HTTP surface."""

    def __init__(self, base_url: str = "", session=None, timeout: float = 10.0):
        self.base_url = base_url.rstrip("/")
        self.session = session if session is not None else requests.Session()
        self.timeout = timeout

    def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        response = getattr(self.session, method)(self.base_url + path, timeout=self.timeout, **kwargs)
        try:
            body = response.json()
        except ValueError:
            raise RoomError(f"Non-JSON response from {path} (HTTP {response.status_code})")

        if response.status_code >= 400:
            raise error_from_response(response.status_code, body)
        return body

    def sync(self, room_id: str) -> Optional[RoomState]:
        body = self._request("get", "/api/room/sync", params={"roomId": room_id})
        if not body.get("exists"):
            return None
        return RoomState.model_validate(body["state"])

    def update(self, room_id: str, updates: RoomUpdates, role: Role = Role.GUEST,
               base_version: Optional[int] = None, owner_token: Optional[str] = None) -> UpdateResult:
        payload = {
            "roomId": room_id,
            "updates": updates.model_dump(by_alias=True, exclude_none=True, mode="json"),
            "userRole": role.value,
        }
        if base_version is not None:
            payload["baseVersion"] = base_version
        if owner_token:
            payload["ownerToken"] = owner_token

        body = self._request("post", "/api/room/update", json=payload)
        token = body.get("ownerToken")
        return UpdateResult(
            state=RoomState.model_validate(body["state"]),
            created=token is not None,
            owner_token=token,
        )

    def close(self, room_id: str, role: Role = Role.GUEST, owner_token: Optional[str] = None) -> bool:
        payload = {"roomId": room_id, "userRole": role.value}
        if owner_token:
            payload["ownerToken"] = owner_token
        return bool(self._request("post", "/api/room/close", json=payload).get("success"))

    def vote(self, room_id: str, question: str, option_index: int,
             options: Optional[List[str]] = None, anchor_key: Optional[str] = None) -> DecisionRecord:
        payload = {"roomId": room_id, "question": question, "optionIndex": option_index}
        if options:
            payload["options"] = list(options)
        if anchor_key:
            payload["anchorKey"] = anchor_key
        body = self._request("post", "/api/vote", json=payload)
        return DecisionRecord.model_validate(body["decision"])

    def summarize(self, room_id: str, question_key: str, role: Role = Role.OWNER,
                  owner_token: Optional[str] = None) -> DecisionRecord:
        payload = {"roomId": room_id, "questionKey": question_key, "userRole": role.value}
        if owner_token:
            payload["ownerToken"] = owner_token
        body = self._request("post", "/api/decision/summary", json=payload)
        return DecisionRecord.model_validate(body["decision"])

    def review(self, prd_content: str, kb_files: Optional[List[KnowledgeDocument]] = None) -> List[Comment]:
        payload = {
            "prdContent": prd_content,
            "kbFiles": [doc.to_wire() for doc in (kb_files or [])],
        }
        body = self._request("post", "/api/review", json=payload)
        return [Comment.model_validate(item) for item in body.get("comments", [])]

    def impact(self, prd_content: str) -> ImpactGraph:
        body = self._request("post", "/api/impact", json={"prdContent": prd_content})
        return ImpactGraph.model_validate(body["impactGraph"])

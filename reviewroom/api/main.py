"""
HTTP API for review rooms.

Every response is JSON, errors included: domain errors map to their status codes,
validation errors to 400, anything unexpected to a JSON 500.
"""

import asyncio
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, Query, WebSocket, WebSocketDisconnect
from fastapi.concurrency import run_in_threadpool
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .schemas import (
    RoomUpdateRequest,
    RoomCloseRequest,
    VoteRequest,
    DecisionSummaryRequest,
    ReviewRequest,
    ImpactRequest,
    HealthResponse,
)
from ..agents.consensus_agent import summarize_decision
from ..agents.impact_agent import generate_impact_graph
from ..agents.policy import ResiliencePolicy, get_model_policy
from ..agents.review_agent import failure_comment, review_document
from ..core import decisions
from ..core.config import VERSION, debug_enabled, get_push_interval_sec, validate_config
from ..core.db import health_check
from ..core.errors import InvalidUpdate, PermissionDenied, RoomError
from ..core.merge import apply_update, authorize_owner, close_room
from ..core.schema import Role, RoomState
from ..core.store import get_room_count, load_room
from ..util.logging import logger

# Initialize the FastAPI application
app = FastAPI(
    title="PRD Review Room API",
    version=VERSION,
    description="Shared, versioned review rooms with voting and AI review",
    docs_url="/docs" if debug_enabled() else None,
    redoc_url="/redoc" if debug_enabled() else None
)


@app.exception_handler(RoomError)
async def room_error_handler(request, exc: RoomError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request, exc: RequestValidationError):
    errors = [
        {"field": ".".join(str(part) for part in err.get("loc", ())), "message": err.get("msg", "")}
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content={"error": "Invalid request payload", "errorType": InvalidUpdate.error_type, "errors": errors}
    )


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail), "errorType": "http_error"})


@app.middleware("http")
async def json_error_boundary(request, call_next):
    """Last line of defence: nothing leaves the service as a non-JSON error."""
    try:
        return await call_next(request)
    except Exception as e:
        logger.error(f"Unhandled error on {request.url.path}: {e!r}")
        return JSONResponse(
            status_code=500,
            content={"error": f"Internal Server Error: {e}", "errorType": "internal_error"}
        )


# Permissive CORS, added last so it wraps error responses too
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


def sync_payload(state: Optional[RoomState]) -> Dict[str, Any]:
    if state is None:
        return {"exists": False}
    return {"exists": True, "state": state.to_wire()}


@app.get("/health", response_model=HealthResponse)
def health_check_endpoint():
    """Check system health."""
    db_health = health_check()

    return HealthResponse(
        status="healthy" if db_health else "unhealthy",
        version=VERSION,
        db_health=db_health,
        room_count=get_room_count(),
        config_issues=validate_config()
    )


@app.get("/api/room/sync")
def sync_room(room_id: str = Query(..., alias="roomId")):
    """Current authoritative state of a room."""
    if not room_id.strip():
        raise InvalidUpdate("roomId is required.")
    return sync_payload(load_room(room_id.strip()))


@app.post("/api/room/update")
def update_room(request: RoomUpdateRequest):
    """Apply a sparse update and return the full resulting state."""
    result = apply_update(
        request.room_id,
        request.user_role,
        request.updates,
        base_version=request.base_version,
        owner_token=request.owner_token,
    )

    body = {"success": True, "version": result.state.version, "state": result.state.to_wire()}
    if result.owner_token:
        body["ownerToken"] = result.owner_token
    return body


@app.post("/api/room/close")
def close_room_endpoint(request: RoomCloseRequest):
    """Close a room (owner only)."""
    close_room(request.room_id, request.user_role, owner_token=request.owner_token)
    return {"success": True}


@app.post("/api/vote")
def vote_endpoint(request: VoteRequest):
    """Count one vote on a decision anchor."""
    record = decisions.cast_vote(
        request.room_id,
        request.question_key,
        request.option_index,
        question=request.question,
        options=request.options,
    )
    return {"success": True, "decision": record.to_wire()}


@app.post("/api/decision/summary")
def decision_summary_endpoint(request: DecisionSummaryRequest,
                              policy: ResiliencePolicy = Depends(get_model_policy)):
    """Regenerate the advisory consensus summary of a decision (owner only)."""
    if request.user_role != Role.OWNER:
        raise PermissionDenied("Only the owner can regenerate consensus summaries.")
    authorize_owner(request.room_id, request.user_role, request.owner_token)

    record = decisions.get_decision(request.room_id, request.question_key)
    summary = summarize_decision(record, policy)
    record = decisions.set_summary(request.room_id, request.question_key, summary)
    return {"success": True, "decision": record.to_wire()}


@app.post("/api/review")
def review_endpoint(request: ReviewRequest, policy: ResiliencePolicy = Depends(get_model_policy)):
    """AI review. Always answers 200 with at least something displayable."""
    try:
        comments = review_document(request.prd_content, request.kb_files, policy)
    except Exception as e:
        logger.error(f"Review failed unexpectedly: {e!r}")
        comments = [failure_comment(f"Server error: {e}", position="Global")]
    return {"comments": [c.to_wire() for c in comments]}


@app.post("/api/impact")
def impact_endpoint(request: ImpactRequest, policy: ResiliencePolicy = Depends(get_model_policy)):
    """Generate a feature/system dependency graph."""
    graph = generate_impact_graph(request.prd_content, policy)
    return {"impactGraph": graph.to_wire()}


_UNSEEN = object()


@app.websocket("/api/room/ws")
async def room_push_channel(websocket: WebSocket, room_id: str = Query("", alias="roomId")):
    """
    Server push: sends {exists, state} whenever the stored (version, lastUpdated) changes.
    Payloads have the same shape as /api/room/sync, so clients reconcile them the same way.
    """
    await websocket.accept()
    room_id = room_id.strip()
    if not room_id:
        await websocket.send_json({"error": "roomId is required.", "errorType": InvalidUpdate.error_type})
        await websocket.close(code=1008)
        return

    last_seen = _UNSEEN
    while True:
        try:
            state = await run_in_threadpool(load_room, room_id)
        except RoomError as e:
            await websocket.send_json(e.to_dict())
            await websocket.close(code=1011)
            return

        fingerprint = (state.version, state.last_updated) if state is not None else None
        if fingerprint != last_seen:
            try:
                await websocket.send_json(sync_payload(state))
            except WebSocketDisconnect:
                return
            last_seen = fingerprint
            if state is not None and not state.is_active:
                await websocket.close()
                return

        # Waiting on receive doubles as the watch interval and notices disconnects
        try:
            message = await asyncio.wait_for(websocket.receive(), timeout=get_push_interval_sec())
        except asyncio.TimeoutError:
            continue
        if message["type"] == "websocket.disconnect":
            return

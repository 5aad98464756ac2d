"""
Decision anchors and voting.

Anchors live inline in the document text as {{DECISION: Question | Option A | Option B}}.
Votes are tallied per decision key, the trimmed question text, so repeated anchors share one record.
Votes do not bump the document version; totalVotes is the vote's own counter.
"""

import re
from dataclasses import dataclass
from typing import List, Optional

from . import store
from .errors import InvalidUpdate, RoomClosed, RoomNotFound
from .schema import DecisionRecord, RoomState
from ..util.logging import logger

ANCHOR_PATTERN = re.compile(r"\{\{DECISION:([^{}]+)\}\}")
DEFAULT_OPTIONS = ["Agree", "Disagree"]


@dataclass(frozen=True)
class DecisionAnchor:
    raw: str
    question: str
    options: List[str]

    @property
    def key(self) -> str:
        return decision_key(self.question)


def decision_key(question: str) -> str:
    """Normalized key for a question: trimmed, case preserved."""
    return (question or "").strip()


def parse_anchor(raw: str) -> DecisionAnchor:
    """Parse one anchor; without explicit options the binary default pair is used."""
    match = ANCHOR_PATTERN.fullmatch(raw.strip())
    body = match.group(1) if match else raw
    parts = [part.strip() for part in body.split("|")]
    question = parts[0]
    options = [opt for opt in parts[1:] if opt] or list(DEFAULT_OPTIONS)
    return DecisionAnchor(raw=raw, question=question, options=options)


def extract_anchors(content: str) -> List[DecisionAnchor]:
    """All distinct anchors in document order, deduplicated by exact anchor text."""
    seen = set()
    anchors = []
    for match in ANCHOR_PATTERN.finditer(content or ""):
        raw = match.group(0)
        if raw in seen:
            continue
        seen.add(raw)
        anchors.append(parse_anchor(raw))
    return anchors


def format_anchor(question: str, options: Optional[List[str]] = None) -> str:
    """Render an anchor for insertion into the document."""
    parts = [question.strip()] + [opt.strip() for opt in (options or [])]
    return "{{DECISION: " + " | ".join(parts) + "}}"


def _load_open_room(room_id: str) -> RoomState:
    state = store.load_room(room_id)
    if state is None:
        raise RoomNotFound(f"Room '{room_id}' not found.")
    if not state.is_active:
        raise RoomClosed("This room has been closed by its owner.")
    return state


def cast_vote(room_id: str, question_key: str, option_index: int,
              question: Optional[str] = None, options: Optional[List[str]] = None) -> DecisionRecord:
    """
    Count one vote.

    The record is created on first vote, seeded with the caller's question and options.
    Two simultaneous votes race (read-modify-write without a version check); tallies are advisory.
    """
    key = decision_key(question_key or question)
    if not key:
        raise InvalidUpdate("A decision key or question is required to vote.")

    state = _load_open_room(room_id)
    record = state.decisions.get(key)
    if record is None:
        record = DecisionRecord(
            question=(question or key).strip(),
            options=list(options) if options else list(DEFAULT_OPTIONS),
        )

    if option_index < 0 or option_index >= len(record.options):
        raise InvalidUpdate(f"optionIndex {option_index} is out of range for '{key}'.")

    record = record.model_copy(deep=True)
    record.votes[option_index] = record.tally(option_index) + 1
    record.total_votes += 1

    nxt = state.model_copy(deep=True)
    nxt.decisions[key] = record
    store.put_room(room_id, nxt)

    logger.log_vote(room_id, key, option_index, record.total_votes)
    return record


def get_decision(room_id: str, question_key: str) -> DecisionRecord:
    state = _load_open_room(room_id)
    record = state.decisions.get(decision_key(question_key))
    if record is None:
        raise RoomNotFound(f"No votes recorded for '{decision_key(question_key)}'.")
    return record


def set_summary(room_id: str, question_key: str, summary: str) -> DecisionRecord:
    """Store a regenerated consensus summary. Advisory only, no version bump."""
    key = decision_key(question_key)
    state = _load_open_room(room_id)
    record = state.decisions.get(key)
    if record is None:
        raise RoomNotFound(f"No votes recorded for '{key}'.")

    record = record.model_copy(update={"ai_summary": summary})
    nxt = state.model_copy(deep=True)
    nxt.decisions[key] = record
    store.put_room(room_id, nxt)
    logger.log_operation("decision.summary", "success", {"room_id": room_id, "question_key": key[:50]})
    return record

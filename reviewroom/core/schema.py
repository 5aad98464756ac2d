"""
Room state model: the versioned document blob shared by every participant of a room.
Field names are snake_case in Python and camelCase on the wire.
"""

import time
import uuid
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

DEFAULT_DECISION_SUMMARY = "Waiting for more votes to build a consensus..."


def now_ms() -> int:
    """Epoch milliseconds, the timestamp unit used throughout the room state."""
    return int(time.time() * 1000)


def new_id() -> str:
    return str(uuid.uuid4())


class Role(str, Enum):
    OWNER = "OWNER"
    GUEST = "GUEST"


class RoomStatus(str, Enum):
    DRAFT = "DRAFT"
    REVIEW = "REVIEW"
    APPROVED = "APPROVED"


class CommentType(str, Enum):
    LOGIC = "LOGIC"
    TECH = "TECH"
    RISK = "RISK"
    LANGUAGE = "LANGUAGE"
    HUMAN = "HUMAN"


class Severity(str, Enum):
    BLOCKER = "BLOCKER"
    WARNING = "WARNING"
    SUGGESTION = "SUGGESTION"
    INFO = "INFO"


class RoomModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")


class Comment(RoomModel):
    id: str = Field(default_factory=new_id)
    type: CommentType = CommentType.HUMAN
    severity: Severity = Severity.INFO
    position: str = ""
    original_text: str = ""
    body: str = Field(default="", alias="comment")
    question: Optional[str] = None
    author: str = "Anonymous"
    created_at: int = Field(default_factory=now_ms, alias="timestamp")
    last_edited_at: Optional[int] = Field(default=None, alias="lastUpdated")


class KnowledgeDocument(RoomModel):
    """Uploaded reference file; immutable once uploaded."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str = Field(default_factory=new_id)
    name: str
    content: str = ""
    size: int = 0
    uploaded_at: int = Field(default_factory=now_ms)

    @field_validator('size')
    @classmethod
    def size_must_not_be_negative(cls, v):
        if v < 0:
            raise ValueError('size cannot be negative')
        return v

    @classmethod
    def from_text(cls, name: str, text: str, size: Optional[int] = None) -> 'KnowledgeDocument':
        """Build a document from already extracted text."""
        if size is None:
            size = len(text.encode("utf-8"))
        return cls(name=name, content=text, size=size)


class DecisionRecord(RoomModel):
    question: str
    options: List[str]
    votes: Dict[int, int] = Field(default_factory=dict)
    total_votes: int = 0
    ai_summary: str = DEFAULT_DECISION_SUMMARY

    def tally(self, option_index: int) -> int:
        return self.votes.get(option_index, 0)


class ImpactNode(RoomModel):
    id: str
    category: int = Field(default=1, alias="group")  # 1 feature, 2 service, 3 database
    weight: Optional[float] = Field(default=None, alias="val")


class ImpactLink(RoomModel):
    source: str
    target: str


class ImpactGraph(RoomModel):
    nodes: List[ImpactNode] = Field(default_factory=list)
    links: List[ImpactLink] = Field(default_factory=list)


class RoomSettings(RoomModel):
    allow_guest_edit: bool = False
    allow_guest_comment: bool = False
    is_active: bool = True
    status: RoomStatus = RoomStatus.DRAFT


class SettingsPatch(RoomModel):
    """Partial settings; only provided keys overwrite."""

    allow_guest_edit: Optional[bool] = None
    allow_guest_comment: Optional[bool] = None
    is_active: Optional[bool] = None
    status: Optional[RoomStatus] = None

    def changes(self) -> dict:
        return self.model_dump(exclude_none=True)


class RoomState(RoomModel):
    room_id: str
    content: str = ""
    comments: List[Comment] = Field(default_factory=list)
    kb_files: List[KnowledgeDocument] = Field(default_factory=list)
    decisions: Dict[str, DecisionRecord] = Field(default_factory=dict)
    impact_graph: ImpactGraph = Field(default_factory=ImpactGraph)
    settings: RoomSettings = Field(default_factory=RoomSettings)
    version: int = 1
    last_updated: int = 0

    @classmethod
    def create(cls, room_id: str, content: Optional[str] = None,
               kb_files: Optional[List[KnowledgeDocument]] = None) -> 'RoomState':
        """Default state for a room that has never been written."""
        return cls(
            room_id=room_id,
            content=content or "",
            kb_files=list(kb_files or []),
            last_updated=now_ms(),
        )

    @property
    def is_active(self) -> bool:
        return self.settings.is_active

    @property
    def is_locked(self) -> bool:
        return self.settings.status == RoomStatus.APPROVED


class RoomUpdates(RoomModel):
    """Sparse update payload. A field left as None is absent."""

    content: Optional[str] = None
    kb_files: Optional[List[KnowledgeDocument]] = None
    decisions: Optional[Dict[str, DecisionRecord]] = None
    impact_graph: Optional[ImpactGraph] = None
    settings: Optional[SettingsPatch] = None
    new_comment: Optional[Comment] = None
    new_comments: Optional[List[Comment]] = None
    comments: Optional[List[Comment]] = None

    def present_fields(self) -> List[str]:
        return [name for name in type(self).model_fields if getattr(self, name) is not None]

    @property
    def touches_comments(self) -> bool:
        return self.new_comment is not None or self.new_comments is not None or self.comments is not None

    @property
    def is_append_only(self) -> bool:
        """True when the update only appends comments."""
        fields = set(self.present_fields())
        return bool(fields) and fields <= {"new_comment", "new_comments"}

"""
Request/response models for the room HTTP API.
"""

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, field_validator
from pydantic.alias_generators import to_camel

from ..core.schema import KnowledgeDocument, Role, RoomUpdates


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RoomUpdateRequest(ApiModel):
    room_id: str
    updates: RoomUpdates
    user_role: Role = Role.GUEST
    base_version: Optional[int] = None
    owner_token: Optional[str] = None

    @field_validator('room_id')
    @classmethod
    def room_id_must_not_be_empty(cls, v):
        if not v.strip():
            raise ValueError('roomId cannot be empty')
        return v.strip()


class RoomCloseRequest(ApiModel):
    room_id: str
    user_role: Role = Role.GUEST
    owner_token: Optional[str] = None


class VoteRequest(ApiModel):
    room_id: str
    anchor_key: Optional[str] = None
    question: Optional[str] = None
    option_index: int
    options: Optional[List[str]] = None

    @field_validator('option_index')
    @classmethod
    def option_index_must_not_be_negative(cls, v):
        if v < 0:
            raise ValueError('optionIndex must be >= 0')
        return v

    @property
    def question_key(self) -> str:
        return (self.anchor_key or self.question or "").strip()


class DecisionSummaryRequest(ApiModel):
    room_id: str
    question_key: str
    user_role: Role = Role.GUEST
    owner_token: Optional[str] = None


class ReviewRequest(ApiModel):
    prd_content: str = ""
    kb_files: List[KnowledgeDocument] = []


class ImpactRequest(ApiModel):
    prd_content: str

    @field_validator('prd_content')
    @classmethod
    def prd_content_must_not_be_empty(cls, v):
        if not v.strip():
            raise ValueError('prdContent cannot be empty')
        return v


class HealthResponse(BaseModel):
    status: str
    version: str
    db_health: bool
    room_count: int
    config_issues: List[str]

"""Pydantic v2 request/response schemas for Cornell notes."""

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

# --- Request schemas ---


class NoteCreate(BaseModel):
    subject: str = Field(..., min_length=1, max_length=100)
    topic: str = Field(..., min_length=1, max_length=255)
    cue_column: list[str] = Field(default_factory=list)
    note_body: str = ""
    summary: str = ""
    tags: list[str] = Field(default_factory=list)


class NoteUpdate(BaseModel):
    subject: str | None = Field(None, min_length=1, max_length=100)
    topic: str | None = Field(None, min_length=1, max_length=255)
    cue_column: list[str] | None = None
    note_body: str | None = None
    summary: str | None = None
    tags: list[str] | None = None


class CueSuggestionRequest(BaseModel):
    topic: str = Field(..., min_length=1, max_length=255)
    note_body: str | None = Field(None, max_length=10000)


# --- Response schemas ---


class NoteResponse(BaseModel):
    id: uuid.UUID
    subject: str
    topic: str
    cue_column: list[str]
    note_body: str
    summary: str
    tags: list[str]
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class NoteListResponse(BaseModel):
    items: list[NoteResponse]
    total: int


class CueSuggestionResponse(BaseModel):
    cues: list[str]

"""Pydantic v2 request/response schemas for tutor endpoints."""

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from besttutor.ai.flows.tutor import Sketch

# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------


class TutorRequest(BaseModel):
    subject: str = Field(..., min_length=1, max_length=100)
    question: str = Field(..., min_length=1, max_length=10000)
    conversation_id: uuid.UUID | None = None  # None = start new conversation
    homework_image: str | None = Field(None, pattern=r"^(data:image/|https://)")
    confidence_level: int | None = Field(None, ge=1, le=5)
    verbosity: str = Field("normal", pattern="^(short|normal)$")


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------


class TutorResponse(BaseModel):
    conversation_id: uuid.UUID
    tutor_response: str
    sketch: Sketch | None = None
    cached: bool = False


class MessageResponse(BaseModel):
    id: uuid.UUID
    role: str
    content: str | None
    model_used: str | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ConversationResponse(BaseModel):
    id: uuid.UUID
    subject: str
    title: str | None
    created_at: datetime
    updated_at: datetime
    message_count: int = 0

    model_config = ConfigDict(from_attributes=True)


class ConversationDetailResponse(BaseModel):
    id: uuid.UUID
    subject: str
    title: str | None
    created_at: datetime
    updated_at: datetime
    messages: list[MessageResponse]

    model_config = ConfigDict(from_attributes=True)

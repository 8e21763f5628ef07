"""Cornell notes API router: CRUD with filters and AI cue suggestions."""

import logging
import uuid

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from besttutor.ai.flows.note_cues import suggest_cues
from besttutor.ai.validation import clean_user_input, sanitize
from besttutor.api.deps import check_ai_allowance, get_app_context, get_current_active_user, get_db, rate_limit
from besttutor.context import AppContext
from besttutor.models.note import CornellNote
from besttutor.models.user import User
from besttutor.schemas.notes import (
    CueSuggestionRequest,
    CueSuggestionResponse,
    NoteCreate,
    NoteListResponse,
    NoteResponse,
    NoteUpdate,
)
from besttutor.services.ai_usage import tracked_generation

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/notes", tags=["notes"])


def _clean_tags(tags: list[str]) -> list[str]:
    cleaned = (sanitize(tag, max_length=50).lower() for tag in tags)
    return list(dict.fromkeys(tag for tag in cleaned if tag))


async def _get_owned_note(db: AsyncSession, note_id: uuid.UUID, user: User) -> CornellNote:
    note = await db.scalar(select(CornellNote).where(CornellNote.id == note_id, CornellNote.user_id == user.id))
    if note is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Note not found")
    return note


@router.get("", response_model=NoteListResponse)
async def list_notes(
    subject: str | None = Query(None, max_length=100),
    tag: str | None = Query(None, max_length=50),
    search: str | None = Query(None, max_length=200),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
) -> NoteListResponse:
    """List notes, newest first, filtered by subject, tag and free-text search."""
    stmt = select(CornellNote).where(CornellNote.user_id == current_user.id)
    if subject:
        stmt = stmt.where(CornellNote.subject == subject)
    if search:
        pattern = f"%{search}%"
        stmt = stmt.where(
            or_(
                CornellNote.topic.ilike(pattern),
                CornellNote.note_body.ilike(pattern),
                CornellNote.summary.ilike(pattern),
            )
        )
    result = await db.execute(stmt.order_by(CornellNote.updated_at.desc()))
    notes = list(result.scalars().all())

    # Tags are a JSON list; filtered here to stay portable across databases
    if tag:
        wanted = tag.lower()
        notes = [note for note in notes if wanted in (note.tags or [])]

    return NoteListResponse(
        items=[NoteResponse.model_validate(note) for note in notes[offset : offset + limit]],
        total=len(notes),
    )


@router.post("", response_model=NoteResponse, status_code=status.HTTP_201_CREATED)
async def create_note(
    body: NoteCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
) -> NoteResponse:
    note = CornellNote(
        user_id=current_user.id,
        subject=sanitize(body.subject, max_length=100),
        topic=sanitize(body.topic, max_length=255),
        cue_column=[sanitize(cue, max_length=500) for cue in body.cue_column],
        note_body=sanitize(body.note_body, max_length=50000),
        summary=sanitize(body.summary, max_length=5000),
        tags=_clean_tags(body.tags),
    )
    db.add(note)
    await db.flush()
    await db.refresh(note)
    return NoteResponse.model_validate(note)


@router.get("/{note_id}", response_model=NoteResponse)
async def get_note(
    note_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
) -> NoteResponse:
    return NoteResponse.model_validate(await _get_owned_note(db, note_id, current_user))


@router.patch("/{note_id}", response_model=NoteResponse)
async def update_note(
    note_id: uuid.UUID,
    body: NoteUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
) -> NoteResponse:
    note = await _get_owned_note(db, note_id, current_user)
    changes = body.model_dump(exclude_unset=True)
    if "subject" in changes and body.subject is not None:
        note.subject = sanitize(body.subject, max_length=100)
    if "topic" in changes and body.topic is not None:
        note.topic = sanitize(body.topic, max_length=255)
    if "cue_column" in changes and body.cue_column is not None:
        note.cue_column = [sanitize(cue, max_length=500) for cue in body.cue_column]
    if "note_body" in changes and body.note_body is not None:
        note.note_body = sanitize(body.note_body, max_length=50000)
    if "summary" in changes and body.summary is not None:
        note.summary = sanitize(body.summary, max_length=5000)
    if "tags" in changes and body.tags is not None:
        note.tags = _clean_tags(body.tags)
    await db.flush()
    await db.refresh(note)
    return NoteResponse.model_validate(note)


@router.delete("/{note_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_note(
    note_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
) -> None:
    note = await _get_owned_note(db, note_id, current_user)
    await db.delete(note)
    await db.flush()


@router.post("/suggest-cues", response_model=CueSuggestionResponse, dependencies=[Depends(rate_limit("ai"))])
async def suggest_note_cues(
    body: CueSuggestionRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(check_ai_allowance),
    ctx: AppContext = Depends(get_app_context),
) -> CueSuggestionResponse:
    """Suggest cue-column questions. Generic cues are returned if the model fails."""
    topic = clean_user_input(body.topic, field="topic", max_length=255)
    note_body = clean_user_input(body.note_body, field="note_body", required=False) or None
    generator = ctx.generator()
    result = await tracked_generation(
        db,
        generator,
        user_id=current_user.id,
        session_type="note_cues",
        subject=None,
        call=lambda: suggest_cues(generator, topic, note_body),
    )
    return CueSuggestionResponse(cues=result.value.cues)

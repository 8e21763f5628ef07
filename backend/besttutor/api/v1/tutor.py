"""Tutor API router: ask the subject tutor and manage conversation history.

POST   /api/v1/tutor/ask                    Ask a question (starts or continues a conversation)
GET    /api/v1/tutor/conversations          List the student's conversations
GET    /api/v1/tutor/conversations/{id}     Get a conversation with full history
DELETE /api/v1/tutor/conversations/{id}     Delete a conversation
"""

import logging
import uuid

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from besttutor.ai.flows.tutor import TutorInput, ask_tutor
from besttutor.ai.validation import clean_user_input
from besttutor.api.deps import check_ai_allowance, get_app_context, get_current_active_user, get_db, rate_limit
from besttutor.context import AppContext
from besttutor.models.user import User
from besttutor.schemas.tutor import (
    ConversationDetailResponse,
    ConversationResponse,
    MessageResponse,
    TutorRequest,
    TutorResponse,
)
from besttutor.services.ai_usage import tracked_generation
from besttutor.services.conversation_service import (
    create_conversation,
    delete_conversation,
    generate_title,
    get_conversation_message_count,
    get_conversation_with_messages,
    get_user_conversations,
    save_exchange,
    to_langchain_messages,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/tutor", tags=["tutor"])


@router.post("/ask", response_model=TutorResponse, dependencies=[Depends(rate_limit("ai"))])
async def ask(
    body: TutorRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(check_ai_allowance),
    ctx: AppContext = Depends(get_app_context),
) -> TutorResponse:
    question = clean_user_input(body.question, field="question")
    subject = clean_user_input(body.subject, field="subject", max_length=100)

    conversation = None
    if body.conversation_id is not None:
        conversation = await get_conversation_with_messages(db, body.conversation_id, current_user.id)
        if conversation is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Conversation not found")

    request = TutorInput(
        subject=subject,
        question=question,
        homework_image=body.homework_image,
        grade_level=current_user.grade_level or 6,
        confidence_level=body.confidence_level,
        verbosity=body.verbosity,
    )
    generator = ctx.generator("vision" if body.homework_image else "text")
    history = to_langchain_messages(conversation.messages) if conversation is not None else []

    result = await tracked_generation(
        db,
        generator,
        user_id=current_user.id,
        session_type="tutor",
        subject=subject,
        call=lambda: ask_tutor(generator, request, history),
        message_count=len(history) + 1,
    )
    # A failed first question leaves no empty conversation behind
    if conversation is None:
        conversation = await create_conversation(db, current_user.id, subject, title=generate_title(question))
    await save_exchange(db, conversation, question, result.value.tutor_response, model_used=result.model)

    return TutorResponse(
        conversation_id=conversation.id,
        tutor_response=result.value.tutor_response,
        sketch=result.value.sketch,
        cached=result.cached,
    )


@router.get("/conversations", response_model=list[ConversationResponse])
async def list_conversations(
    subject: str | None = Query(None, max_length=100),
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
) -> list[ConversationResponse]:
    """List the student's conversations, most recently active first."""
    conversations = await get_user_conversations(db, current_user.id, subject=subject, limit=limit, offset=offset)
    responses = []
    for conv in conversations:
        count = await get_conversation_message_count(db, conv.id)
        responses.append(
            ConversationResponse(
                id=conv.id,
                subject=conv.subject,
                title=conv.title,
                created_at=conv.created_at,
                updated_at=conv.updated_at,
                message_count=count,
            )
        )
    return responses


@router.get("/conversations/{conversation_id}", response_model=ConversationDetailResponse)
async def get_conversation(
    conversation_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
) -> ConversationDetailResponse:
    conversation = await get_conversation_with_messages(db, conversation_id, current_user.id)
    if conversation is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Conversation not found")

    return ConversationDetailResponse(
        id=conversation.id,
        subject=conversation.subject,
        title=conversation.title,
        created_at=conversation.created_at,
        updated_at=conversation.updated_at,
        messages=[MessageResponse.model_validate(msg) for msg in conversation.messages],
    )


@router.delete("/conversations/{conversation_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_conversation(
    conversation_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
) -> None:
    deleted = await delete_conversation(db, conversation_id, current_user.id)
    if not deleted:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Conversation not found")

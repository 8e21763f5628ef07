"""Database-backed tutor conversation history.

Converts between LangChain message types and the ``Message`` model so the
tutor flow can replay earlier turns of a conversation.
"""

import logging
import uuid
from datetime import timedelta

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from besttutor.database import utcnow
from besttutor.models.conversation import Conversation, Message

logger = logging.getLogger(__name__)

# Turns replayed into the prompt; older ones are dropped
MAX_HISTORY_MESSAGES = 20


async def create_conversation(
    db: AsyncSession,
    user_id: uuid.UUID,
    subject: str,
    title: str | None = None,
) -> Conversation:
    conversation = Conversation(user_id=user_id, subject=subject, title=title, messages=[])
    db.add(conversation)
    await db.flush()
    await db.refresh(conversation)
    return conversation


async def get_user_conversations(
    db: AsyncSession,
    user_id: uuid.UUID,
    subject: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[Conversation]:
    """List conversations for a user, most recently active first."""
    stmt = select(Conversation).where(Conversation.user_id == user_id)
    if subject:
        stmt = stmt.where(Conversation.subject == subject)
    stmt = stmt.order_by(Conversation.updated_at.desc()).limit(limit).offset(offset)
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def get_conversation_message_count(db: AsyncSession, conversation_id: uuid.UUID) -> int:
    result = await db.execute(select(func.count()).where(Message.conversation_id == conversation_id))
    return result.scalar_one()


async def get_conversation_with_messages(
    db: AsyncSession,
    conversation_id: uuid.UUID,
    user_id: uuid.UUID,
) -> Conversation | None:
    """Get a conversation with all its messages, verifying ownership."""
    return await db.scalar(
        select(Conversation).where(
            Conversation.id == conversation_id,
            Conversation.user_id == user_id,
        )
    )


async def delete_conversation(db: AsyncSession, conversation_id: uuid.UUID, user_id: uuid.UUID) -> bool:
    """Delete a conversation, verifying ownership. Returns True if deleted."""
    conversation = await get_conversation_with_messages(db, conversation_id, user_id)
    if conversation is None:
        return False
    await db.delete(conversation)
    await db.flush()
    return True


def to_langchain_messages(messages: list[Message], limit: int = MAX_HISTORY_MESSAGES) -> list[BaseMessage]:
    history: list[BaseMessage] = []
    for msg in messages[-limit:] if limit else messages:
        if msg.role == "user":
            history.append(HumanMessage(content=msg.content or ""))
        elif msg.role == "assistant":
            history.append(AIMessage(content=msg.content or ""))
    return history


async def save_exchange(
    db: AsyncSession,
    conversation: Conversation,
    question: str,
    answer: str,
    model_used: str | None = None,
) -> None:
    """Append one question/answer pair to ``conversation``.

    Explicit timestamps keep the pair ordered: the database clock returns the
    same value for every row written in one transaction.
    """
    base_time = utcnow()
    conversation.messages.append(Message(role="user", content=question, created_at=base_time))
    conversation.messages.append(
        Message(
            role="assistant",
            content=answer,
            model_used=model_used,
            created_at=base_time + timedelta(microseconds=1),
        )
    )
    conversation.updated_at = base_time
    await db.flush()
    logger.debug("Saved tutor exchange in conversation %s", conversation.id)


def generate_title(content: str) -> str:
    """Short title from the first question, cut at a word boundary near 50 chars."""
    content = content.strip()
    if len(content) <= 50:
        return content
    truncated = content[:50].rsplit(" ", 1)[0]
    return truncated + "..."

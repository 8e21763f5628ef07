"""Tests for conversation history storage and replay."""

from langchain_core.messages import AIMessage, HumanMessage
from sqlalchemy.ext.asyncio import AsyncSession

from besttutor.models.conversation import Message
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


class TestGenerateTitle:
    def test_short_content_kept(self):
        assert generate_title("  What is a prime number?  ") == "What is a prime number?"

    def test_long_content_cut_at_word(self):
        question = "Can you help me understand why the denominator stays the same when adding fractions?"
        title = generate_title(question)
        assert title.endswith("...")
        assert len(title) <= 53
        assert question.startswith(title[:-3])
        assert not title[:-3].endswith(" ")


class TestToLangchainMessages:
    def test_maps_roles_and_skips_unknown(self):
        messages = [
            Message(role="user", content="Hi"),
            Message(role="assistant", content="Hello! What are we studying?"),
            Message(role="system", content="ignored"),
            Message(role="assistant", content=None),
        ]
        history = to_langchain_messages(messages)
        assert [type(m) for m in history] == [HumanMessage, AIMessage, AIMessage]
        assert history[-1].content == ""

    def test_keeps_most_recent(self):
        messages = [Message(role="user", content=str(i)) for i in range(30)]
        history = to_langchain_messages(messages, limit=4)
        assert [m.content for m in history] == ["26", "27", "28", "29"]


class TestConversationStorage:
    async def test_save_exchange_keeps_order(self, db_session: AsyncSession, student):
        conversation = await create_conversation(db_session, student.id, "math", title="Fractions")
        await save_exchange(
            db_session, conversation, "What is 1/2 + 1/4?", "What do the denominators tell you?", "gpt-4o-mini"
        )
        await save_exchange(db_session, conversation, "They are different", "Can you make them the same?")

        assert await get_conversation_message_count(db_session, conversation.id) == 4
        assert [m.role for m in conversation.messages] == ["user", "assistant", "user", "assistant"]
        assert conversation.messages[1].model_used == "gpt-4o-mini"
        assert conversation.messages[0].created_at < conversation.messages[1].created_at

    async def test_listing_is_per_user_and_subject(self, db_session: AsyncSession, student, premium_student):
        await create_conversation(db_session, student.id, "math")
        await create_conversation(db_session, student.id, "science")
        await create_conversation(db_session, premium_student.id, "math")

        assert len(await get_user_conversations(db_session, student.id)) == 2
        math = await get_user_conversations(db_session, student.id, subject="math")
        assert [c.subject for c in math] == ["math"]

    async def test_ownership_checked(self, db_session: AsyncSession, student, premium_student):
        conversation = await create_conversation(db_session, student.id, "math")

        assert await get_conversation_with_messages(db_session, conversation.id, premium_student.id) is None
        assert await delete_conversation(db_session, conversation.id, premium_student.id) is False
        assert await delete_conversation(db_session, conversation.id, student.id) is True
        assert await get_conversation_with_messages(db_session, conversation.id, student.id) is None

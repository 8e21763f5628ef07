"""Record one ``ai_sessions`` row per AI call made on behalf of a profile."""

import logging
import time
import uuid
from collections.abc import Awaitable, Callable
from typing import TypeVar

from sqlalchemy.ext.asyncio import AsyncSession

from besttutor.ai.errors import AIError
from besttutor.ai.monitoring import record_ai_session
from besttutor.ai.structured import GenerationResult, StructuredGenerator

logger = logging.getLogger(__name__)

V = TypeVar("V")


async def tracked_generation(
    db: AsyncSession,
    generator: StructuredGenerator,
    *,
    user_id: uuid.UUID,
    session_type: str,
    subject: str | None,
    call: Callable[[], Awaitable[GenerationResult[V]]],
    message_count: int = 1,
) -> GenerationResult[V]:
    """Run ``call`` and record its telemetry.

    A failed call is recorded and committed before the ``AIError`` propagates,
    so the failure survives the request's rollback.
    """
    started = time.monotonic()
    try:
        result = await call()
    except AIError as exc:
        logger.error("AI %s call failed for user %s: %s (%s)", session_type, user_id, exc, exc.code)
        await record_ai_session(
            db,
            user_id=user_id,
            session_type=session_type,
            model=generator.model_name,
            subject=subject,
            duration_ms=int((time.monotonic() - started) * 1000),
            message_count=message_count,
            success=False,
            error_code=exc.code,
        )
        await db.commit()
        raise

    await record_ai_session(
        db,
        user_id=user_id,
        session_type=session_type,
        model=result.model,
        usage=result.usage,
        subject=subject,
        duration_ms=result.duration_ms,
        message_count=message_count,
    )
    return result

"""Quiz API router: generate test-prep material and score submitted answers."""

import logging
import uuid

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from besttutor.ai.flows.quiz import QuizContent, QuizGenerationInput, generate_quiz
from besttutor.ai.validation import clean_user_input
from besttutor.api.deps import check_ai_allowance, get_app_context, get_current_active_user, get_db, rate_limit
from besttutor.context import AppContext
from besttutor.database import utcnow
from besttutor.models.quiz import QuizResult
from besttutor.models.user import User
from besttutor.schemas.quiz import QuizGenerateRequest, QuizResponse, QuizSubmitRequest, QuizSubmitResponse
from besttutor.services.ai_usage import tracked_generation

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/quiz", tags=["quiz"])


def _normalise(answer: str | None) -> str:
    return " ".join((answer or "").split()).casefold()


def score_answers(content: QuizContent, answers: list[str | None]) -> tuple[list[bool], int, float]:
    """Per-question results, correct count and percentage score."""
    questions = content.quiz or []
    results = [
        index < len(answers) and _normalise(answers[index]) == _normalise(question.answer)
        for index, question in enumerate(questions)
    ]
    correct = sum(results)
    score = round(correct / len(questions) * 100, 1) if questions else 0.0
    return results, correct, score


@router.post(
    "/generate",
    response_model=QuizResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(rate_limit("ai"))],
)
async def generate(
    body: QuizGenerateRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(check_ai_allowance),
    ctx: AppContext = Depends(get_app_context),
) -> QuizResponse:
    """Generate a quiz or flashcard set and store it as an unfinished result."""
    request = QuizGenerationInput(
        subject=clean_user_input(body.subject, field="subject", max_length=100),
        topic=clean_user_input(body.topic, field="topic", max_length=255),
        type=body.type,
        count=body.count,
    )
    generator = ctx.generator()
    result = await tracked_generation(
        db,
        generator,
        user_id=current_user.id,
        session_type="test_prep",
        subject=request.subject,
        call=lambda: generate_quiz(generator, request),
    )

    content = result.value
    record = QuizResult(
        user_id=current_user.id,
        subject=request.subject,
        topic=request.topic,
        quiz_type=request.type,
        questions=content.model_dump(mode="json", exclude_none=True),
        total_questions=len(content.entries()),
    )
    db.add(record)
    await db.flush()
    await db.refresh(record)
    logger.info("Stored %s %s for user %s (%d items)", request.type, record.id, current_user.id, record.total_questions)
    return QuizResponse.model_validate(record)


@router.post("/submit", response_model=QuizSubmitResponse)
async def submit(
    body: QuizSubmitRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
) -> QuizSubmitResponse:
    """Score answers: score = correct / total * 100."""
    record = await db.scalar(
        select(QuizResult).where(QuizResult.id == body.quiz_id, QuizResult.user_id == current_user.id)
    )
    if record is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Quiz not found")
    if record.quiz_type != "quiz":
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Flashcard sets are not scored")
    if record.completed:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Quiz already submitted")
    if len(body.answers) > record.total_questions:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="More answers than questions")

    results, correct, score = score_answers(QuizContent.model_validate(record.questions), body.answers)

    record.answers = list(body.answers)
    record.correct_answers = correct
    record.score = score
    record.time_spent_seconds = body.time_spent_seconds
    record.completed = True
    record.completed_at = utcnow()
    await db.flush()

    return QuizSubmitResponse(
        quiz_id=record.id,
        score=score,
        correct_answers=correct,
        total_questions=record.total_questions,
        results=results,
    )


@router.get("/results", response_model=list[QuizResponse])
async def list_results(
    subject: str | None = Query(None, max_length=100),
    completed: bool | None = None,
    limit: int = Query(50, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
) -> list[QuizResponse]:
    stmt = select(QuizResult).where(QuizResult.user_id == current_user.id)
    if subject:
        stmt = stmt.where(QuizResult.subject == subject)
    if completed is not None:
        stmt = stmt.where(QuizResult.completed.is_(completed))
    result = await db.execute(stmt.order_by(QuizResult.created_at.desc()).limit(limit))
    return [QuizResponse.model_validate(r) for r in result.scalars().all()]


@router.get("/results/{quiz_id}", response_model=QuizResponse)
async def get_result(
    quiz_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
) -> QuizResponse:
    record = await db.scalar(select(QuizResult).where(QuizResult.id == quiz_id, QuizResult.user_id == current_user.id))
    if record is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Quiz not found")
    return QuizResponse.model_validate(record)

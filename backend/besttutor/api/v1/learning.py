"""Learning API router: learning paths and coaching (premium), homework plans and feedback, jokes."""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from besttutor.ai.flows.coaching import CoachingInput, CoachingOutput, run_coaching
from besttutor.ai.flows.homework_feedback import HomeworkFeedbackInput, HomeworkFeedbackOutput, get_homework_feedback
from besttutor.ai.flows.homework_planner import HomeworkPlanInput, HomeworkPlanOutput, create_homework_plan
from besttutor.ai.flows.joke import JokeInput, JokeOutput, tell_joke
from besttutor.ai.flows.learning_path import LearningPathInput, LearningPathOutput, generate_learning_path
from besttutor.ai.validation import clean_user_input
from besttutor.api.deps import check_ai_allowance, get_app_context, get_db, rate_limit, require_premium
from besttutor.context import AppContext
from besttutor.models.user import User
from besttutor.services.ai_usage import tracked_generation

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/learning", tags=["learning"], dependencies=[Depends(rate_limit("ai"))])


@router.post("/learning-path", response_model=LearningPathOutput)
async def learning_path(
    body: LearningPathInput,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_premium),
    ctx: AppContext = Depends(get_app_context),
) -> LearningPathOutput:
    request = body.model_copy(
        update={
            "subject": clean_user_input(body.subject, field="subject", max_length=100),
            "specific_topics": clean_user_input(body.specific_topics, field="specific_topics", required=False) or None,
            "learning_goals": clean_user_input(body.learning_goals, field="learning_goals", required=False) or None,
            "grade_level": body.grade_level or (str(current_user.grade_level) if current_user.grade_level else None),
        }
    )
    generator = ctx.generator()
    result = await tracked_generation(
        db,
        generator,
        user_id=current_user.id,
        session_type="learning_path",
        subject=request.subject,
        call=lambda: generate_learning_path(generator, str(current_user.id), request),
    )
    return result.value


@router.post("/coaching", response_model=CoachingOutput)
async def coaching(
    body: CoachingInput,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_premium),
    ctx: AppContext = Depends(get_app_context),
) -> CoachingOutput:
    for rule in body.rules:
        clean_user_input(rule.condition, field="rules")
        clean_user_input(rule.intervention, field="rules")
    generator = ctx.generator()
    result = await tracked_generation(
        db,
        generator,
        user_id=current_user.id,
        session_type="coaching",
        subject=body.subject,
        call=lambda: run_coaching(generator, str(current_user.id), body),
    )
    return result.value


@router.post("/homework-plan", response_model=HomeworkPlanOutput)
async def homework_plan(
    body: HomeworkPlanInput,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(check_ai_allowance),
    ctx: AppContext = Depends(get_app_context),
) -> HomeworkPlanOutput:
    for task in body.tasks:
        clean_user_input(task.topic, field="tasks")
    generator = ctx.generator()
    result = await tracked_generation(
        db,
        generator,
        user_id=current_user.id,
        session_type="homework",
        subject=None,
        call=lambda: create_homework_plan(generator, body),
    )
    return result.value


@router.post("/joke", response_model=JokeOutput)
async def joke(
    body: JokeInput,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(check_ai_allowance),
    ctx: AppContext = Depends(get_app_context),
) -> JokeOutput:
    request = JokeInput(subject=clean_user_input(body.subject, field="subject", max_length=100))
    generator = ctx.generator()
    result = await tracked_generation(
        db,
        generator,
        user_id=current_user.id,
        session_type="joke",
        subject=request.subject,
        call=lambda: tell_joke(generator, request),
    )
    return result.value


@router.post("/homework-feedback", response_model=HomeworkFeedbackOutput)
async def homework_feedback(
    body: HomeworkFeedbackInput,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(check_ai_allowance),
    ctx: AppContext = Depends(get_app_context),
) -> HomeworkFeedbackOutput:
    """Feedback on a photo of the student's homework, through the vision limiter."""
    request = body.model_copy(update={"subject": clean_user_input(body.subject, field="subject", max_length=100)})
    generator = ctx.generator("vision")
    result = await tracked_generation(
        db,
        generator,
        user_id=current_user.id,
        session_type="homework_feedback",
        subject=request.subject,
        call=lambda: get_homework_feedback(generator, request),
    )
    return result.value

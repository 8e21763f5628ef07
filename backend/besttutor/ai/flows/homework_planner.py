"""Homework planning flow."""

from langchain_core.messages import HumanMessage, SystemMessage
from pydantic import BaseModel, Field

from besttutor.ai.prompts import HOMEWORK_PLANNER_SYSTEM_PROMPT
from besttutor.ai.structured import GenerationResult, StructuredGenerator

_VAGUE_MARKERS = ("today's focus", "help me", "i need to")
_FOLLOW_UP_MARKERS = (
    "the student was asked these questions",
    "here are the student's answers",
    "please create a focus plan based on this information",
)


class HomeworkTask(BaseModel):
    subject: str = Field(min_length=1)
    topic: str = Field(min_length=1)
    estimated_time: int = Field(ge=1, description="Minutes")


class HomeworkPlanInput(BaseModel):
    student_name: str = Field(min_length=1, max_length=100)
    tasks: list[HomeworkTask] = Field(min_length=1, max_length=20)


class PlannedTask(BaseModel):
    subject: str
    topic: str
    estimated_time: int
    steps: list[str]
    encouragement: str


class HomeworkPlanOutput(BaseModel):
    needs_clarification: bool
    questions: list[str] | None = Field(default=None, max_length=5)
    plan: list[PlannedTask] | None = None
    summary: str | None = None
    follow_up_question: str | None = None


def is_follow_up(tasks: list[HomeworkTask]) -> bool:
    return any(marker in task.topic.lower() for task in tasks for marker in _FOLLOW_UP_MARKERS)


def is_incomplete(tasks: list[HomeworkTask]) -> bool:
    for task in tasks:
        topic = task.topic.lower()
        if any(marker in topic for marker in _VAGUE_MARKERS):
            return True
        if len(task.topic) < 20 and "the student" not in topic:
            return True
        if task.subject.lower() == "today's focus":
            return True
    return False


async def create_homework_plan(
    generator: StructuredGenerator,
    request: HomeworkPlanInput,
) -> GenerationResult[HomeworkPlanOutput]:
    tasks = "\n".join(
        f"- Subject: {t.subject}, Topic: {t.topic}, Estimated Time: {t.estimated_time} minutes" for t in request.tasks
    )
    prompt = f"Help {request.student_name} create a homework plan for the day.\n{tasks}\n\n"
    if is_follow_up(request.tasks):
        prompt += (
            "The student has answered your clarifying questions. "
            "Set needs_clarification to false and provide the plan."
        )
    elif is_incomplete(request.tasks):
        prompt += "The tasks are vague. Set needs_clarification to true and ask up to 5 clarifying questions."
    else:
        prompt += "The tasks are detailed. Set needs_clarification to false and provide the plan."

    return await generator.generate(
        [SystemMessage(content=HOMEWORK_PLANNER_SYSTEM_PROMPT), HumanMessage(content=prompt)],
        HomeworkPlanOutput,
    )

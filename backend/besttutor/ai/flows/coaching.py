"""Data-driven executive-function coaching."""

from langchain_core.messages import HumanMessage, SystemMessage
from pydantic import BaseModel, Field

from besttutor.ai.prompts import COACHING_SYSTEM_PROMPT
from besttutor.ai.structured import GenerationResult, StructuredGenerator


class PerformanceDatum(BaseModel):
    timestamp: str
    metric: str
    value: float


class CoachingRule(BaseModel):
    condition: str
    intervention: str


class CoachingInput(BaseModel):
    subject: str = Field(min_length=1, max_length=100)
    performance_data: list[PerformanceDatum] = Field(min_length=1)
    rules: list[CoachingRule] = Field(min_length=1)


class CoachingOutput(BaseModel):
    intervention_triggered: bool
    intervention_message: str | None = None


async def run_coaching(
    generator: StructuredGenerator,
    student_id: str,
    request: CoachingInput,
) -> GenerationResult[CoachingOutput]:
    data = "\n".join(
        f"- Timestamp: {d.timestamp}, Metric: {d.metric}, Value: {d.value:g}" for d in request.performance_data
    )
    rules = "\n".join(f"- Condition: {r.condition}, Intervention: {r.intervention}" for r in request.rules)
    prompt = (
        f"Student ID: {student_id}\nSubject: {request.subject}\n"
        f"Performance Data:\n{data}\nRules:\n{rules}\n"
        "Analyze this data and determine if an intervention should be triggered."
    )
    result = await generator.generate(
        [SystemMessage(content=COACHING_SYSTEM_PROMPT), HumanMessage(content=prompt)],
        CoachingOutput,
    )
    if not result.value.intervention_triggered and result.value.intervention_message:
        result.value = result.value.model_copy(update={"intervention_message": None})
    return result

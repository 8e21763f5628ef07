"""Kid-friendly joke flow."""

from langchain_core.messages import HumanMessage, SystemMessage
from pydantic import BaseModel, Field

from besttutor.ai.cache import CacheTTL, generate_cache_key
from besttutor.ai.prompts import JOKE_TELLER_SYSTEM_PROMPT
from besttutor.ai.structured import GenerationResult, StructuredGenerator


class JokeInput(BaseModel):
    subject: str = Field(min_length=1, max_length=100)


class JokeOutput(BaseModel):
    joke: str


async def tell_joke(generator: StructuredGenerator, request: JokeInput) -> GenerationResult[JokeOutput]:
    return await generator.generate(
        [
            SystemMessage(content=JOKE_TELLER_SYSTEM_PROMPT),
            HumanMessage(content=f"Tell me a kid-friendly joke about {request.subject}."),
        ],
        JokeOutput,
        cache_key=generate_cache_key("joke", request.subject.lower()),
        cache_ttl=CacheTTL.SHORT,
    )

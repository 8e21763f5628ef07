"""BestTutorEver: FastAPI application entry point."""

import logging
import math
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from besttutor.ai.errors import AIError, get_graceful_fallback
from besttutor.ai.limiter import RateLimitExceeded
from besttutor.ai.validation import EmptyInputError, PromptInjectionError
from besttutor.api.v1.ai_status import router as ai_status_router
from besttutor.api.v1.auth import router as auth_router
from besttutor.api.v1.billing import router as billing_router
from besttutor.api.v1.family import router as family_router
from besttutor.api.v1.learning import router as learning_router
from besttutor.api.v1.notes import router as notes_router
from besttutor.api.v1.parent import router as parent_router
from besttutor.api.v1.quiz import router as quiz_router
from besttutor.api.v1.tutor import router as tutor_router
from besttutor.api.v1.webhooks import router as webhooks_router
from besttutor.billing.roster import RosterError
from besttutor.config import settings
from besttutor.context import build_app_context

# Configure root logger so all besttutor.* loggers output to stderr.
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build the shared AI services on startup, release them on shutdown."""
    app.state.context = build_app_context(settings)
    yield
    await app.state.context.aclose()
    from besttutor.database import engine

    await engine.dispose()


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="AI tutoring for students in grades 3 to 12, with family subscriptions.",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Exception handlers
# ---------------------------------------------------------------------------


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": "Invalid request", "errors": jsonable_encoder(exc.errors())},
    )


@app.exception_handler(ValidationError)
async def model_validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
    # Flow inputs rebuilt from cleaned request fields
    logger.warning("Rejected %s on %s: %d validation error(s)", exc.title, request.url.path, exc.error_count())
    errors = exc.errors(include_url=False, include_context=False, include_input=False)
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": "Invalid request", "errors": jsonable_encoder(errors)},
    )


@app.exception_handler(EmptyInputError)
async def empty_input_handler(request: Request, exc: EmptyInputError) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": str(exc)})


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        content={"detail": "Too many requests. Please slow down.", "retry_after": exc.retry_after_seconds},
        headers={
            "Retry-After": str(exc.retry_after_seconds),
            "X-RateLimit-Limit": str(exc.limit),
            "X-RateLimit-Remaining": "0",
            "X-RateLimit-Reset": str(math.ceil(exc.reset_time or time.time() + exc.retry_after)),
        },
    )


@app.exception_handler(PromptInjectionError)
async def prompt_injection_handler(request: Request, exc: PromptInjectionError) -> JSONResponse:
    logger.warning("Rejected suspicious input in %s on %s", exc.field, request.url.path)
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": str(exc)})


# Flow whose canned answer accompanies an AI failure on each route
_FALLBACK_FLOWS = {
    "/api/v1/tutor/ask": "tutor",
    "/api/v1/quiz/generate": "test_prep",
    "/api/v1/learning/learning-path": "learning_path",
    "/api/v1/learning/homework-plan": "homework",
    "/api/v1/learning/homework-feedback": "homework_feedback",
    "/api/v1/learning/coaching": "coaching",
}


@app.exception_handler(AIError)
async def ai_error_handler(request: Request, exc: AIError) -> JSONResponse:
    logger.error("AI failure on %s: %s (%s)", request.url.path, exc, exc.code)
    content = {"detail": "The tutor is having trouble right now. Please try again.", "code": exc.code}
    flow = _FALLBACK_FLOWS.get(request.url.path)
    if flow is not None:
        content["fallback"] = get_graceful_fallback(flow)
    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=content)


@app.exception_handler(RosterError)
async def roster_error_handler(request: Request, exc: RosterError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


# Routers
app.include_router(auth_router)
app.include_router(family_router)
app.include_router(billing_router)
app.include_router(webhooks_router)
app.include_router(tutor_router)
app.include_router(quiz_router)
app.include_router(notes_router)
app.include_router(learning_router)
app.include_router(parent_router)
app.include_router(ai_status_router)


@app.get("/health", tags=["health"])
async def health_check() -> dict[str, str]:
    return {"status": "healthy", "service": settings.app_name}


@app.get("/", tags=["root"])
async def root() -> dict[str, str]:
    return {
        "service": settings.app_name,
        "version": settings.app_version,
        "docs": "/docs",
    }

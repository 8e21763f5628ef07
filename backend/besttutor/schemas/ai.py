"""Pydantic v2 response schemas for AI service status."""

from pydantic import BaseModel


class LimiterStatusResponse(BaseModel):
    service: str
    max_concurrent: int
    max_per_window: int
    active_count: int
    pending_count: int
    remaining_points: int
    reset_time: float | None


class AIStatusResponse(BaseModel):
    cache_backend: str
    limiters: list[LimiterStatusResponse]

"""AI service status: limiter snapshots per outbound service."""

from fastapi import APIRouter, Depends

from besttutor.api.deps import get_app_context, get_current_active_user
from besttutor.context import AppContext
from besttutor.schemas.ai import AIStatusResponse, LimiterStatusResponse

router = APIRouter(prefix="/api/v1/ai", tags=["ai"], dependencies=[Depends(get_current_active_user)])


@router.get("/status", response_model=AIStatusResponse)
async def ai_status(ctx: AppContext = Depends(get_app_context)) -> AIStatusResponse:
    limiters = []
    for name, limiter in sorted(ctx.limiters.items()):
        snapshot = await limiter.get_status()
        limiters.append(
            LimiterStatusResponse(
                service=name,
                max_concurrent=limiter.max_concurrent,
                max_per_window=limiter.max_per_window,
                active_count=snapshot.active_count,
                pending_count=snapshot.pending_count,
                remaining_points=snapshot.remaining_points,
                reset_time=snapshot.reset_time,
            )
        )
    return AIStatusResponse(cache_backend=ctx.cache.backend, limiters=limiters)

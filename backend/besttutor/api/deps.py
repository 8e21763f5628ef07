"""Shared API dependencies, a single import point for all routers.

Re-exports the database session, authentication and plan gating
dependencies, and builds per-route request throttles::

    from besttutor.api.deps import get_db, get_current_active_user, rate_limit
"""

import math

from fastapi import Depends, Request, Response

from besttutor.ai.limiter import ConsumeResult
from besttutor.auth.dependencies import (
    get_current_active_user,
    get_current_parent,
    get_current_user,
    get_owned_profile,
)
from besttutor.billing.dependencies import check_ai_allowance, get_plan_limits, require_premium
from besttutor.context import AppContext, get_app_context
from besttutor.database import get_db
from besttutor.models.user import User

__all__ = [
    "get_db",
    "get_app_context",
    "get_current_user",
    "get_current_active_user",
    "get_current_parent",
    "get_owned_profile",
    "get_plan_limits",
    "require_premium",
    "check_ai_allowance",
    "rate_limit",
]


def _set_rate_limit_headers(response: Response, limit: int, result: ConsumeResult) -> None:
    response.headers["X-RateLimit-Limit"] = str(limit)
    response.headers["X-RateLimit-Remaining"] = str(result.remaining)
    response.headers["X-RateLimit-Reset"] = str(math.ceil(result.reset_time))


def _client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def rate_limit(name: str, by: str = "user"):
    """Dependency consuming one point of the ``name`` request throttle.

    ``by="user"`` keys the budget on the authenticated user, ``by="ip"`` on
    the client address (for unauthenticated routes). Raises
    ``RateLimitExceeded`` (429) once the budget is spent.
    """
    if by == "ip":

        async def by_ip(
            request: Request,
            response: Response,
            ctx: AppContext = Depends(get_app_context),
        ) -> None:
            throttle = ctx.throttles[name]
            result = await throttle.check(_client_ip(request))
            _set_rate_limit_headers(response, throttle.points, result)

        return by_ip

    async def by_user(
        response: Response,
        user: User = Depends(get_current_active_user),
        ctx: AppContext = Depends(get_app_context),
    ) -> None:
        throttle = ctx.throttles[name]
        result = await throttle.check(str(user.id))
        _set_rate_limit_headers(response, throttle.points, result)

    return by_user

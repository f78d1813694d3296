"""Rate limit middleware: consumes a profile's quota around the handler."""

from __future__ import annotations

from typing import Awaitable, Callable, Optional, TYPE_CHECKING

from aiohttp import web

from gateway.rate_limit import Decision

if TYPE_CHECKING:
    from gateway.pipeline import Context, Middleware


def apply_headers(response: web.Response, decision: Decision) -> None:
    # The innermost (most specific) profile wins when several are stacked.
    if "RateLimit-Limit" in response.headers:
        return
    response.headers["RateLimit-Limit"] = str(decision.limit)
    response.headers["RateLimit-Remaining"] = str(decision.remaining)
    response.headers["RateLimit-Reset"] = str(decision.reset_seconds)


def consume(ctx: "Context", profile_name: str) -> Optional[Decision]:
    """Take a slot from *profile_name*. Sets a 429 response and returns None on deny."""
    decision = ctx.limiter.check_and_consume(profile_name, ctx.who)
    ctx.rate_decisions.append(decision)
    if decision.allowed:
        return decision

    profile = ctx.limiter.profile(profile_name)
    response = web.json_response(
        {"error": profile.message, "retryAfter": decision.retry_after_minutes},
        status=429,
    )
    apply_headers(response, decision)
    response.headers["Retry-After"] = str(max(1, decision.reset_seconds))
    ctx.response = response
    return None


def settle(ctx: "Context", decision: Decision, failed: Optional[bool] = None) -> None:
    """Release the slot if the profile does not count this outcome, then tag headers."""
    status = ctx.response.status if ctx.response is not None else 500
    if not ctx.limiter.profile(decision.profile).counts(status, failed):
        ctx.limiter.release(decision)
    if ctx.response is not None:
        apply_headers(ctx.response, decision)


def rate_limit(profile_name: str) -> "Middleware":
    async def rate_limit_middleware(ctx: "Context", call_next: Callable[[], Awaitable[None]]) -> None:
        decision = consume(ctx, profile_name)
        if decision is None:
            return
        try:
            await call_next()
        finally:
            settle(ctx, decision)

    rate_limit_middleware.__name__ = f"rate_limit_{profile_name}"
    return rate_limit_middleware

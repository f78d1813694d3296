"""Middleware pipeline engine with request Context."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Awaitable, Callable, List, Optional

from aiohttp import web

from gateway.auth import Auth
from gateway.rate_limit import Decision, RateLimiter, RequestIdentity

if TYPE_CHECKING:
    from utils.settings import GatewaySettings

logger = logging.getLogger(__name__)


def client_address(request: web.Request, trust_proxy: bool = False) -> str:
    """Caller address; the first X-Forwarded-For hop only behind a trusted proxy."""
    if trust_proxy:
        forwarded = request.headers.get("X-Forwarded-For", "")
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    return request.remote or "unknown"


@dataclass
class Context:
    """Per-request context flowing through the middleware pipeline."""

    # ── Immutable request data ──
    request: web.Request
    body: bytes

    # ── Component references (injected by the server) ──
    settings: "GatewaySettings"
    limiter: RateLimiter
    auth: Auth
    audit_logger: Optional[logging.Logger] = None

    # ── Mutable working state (set by middlewares) ──
    identity: Optional[str] = None
    response: Optional[web.Response] = None
    rate_decisions: List[Decision] = field(default_factory=list)

    @property
    def address(self) -> str:
        return client_address(self.request, self.settings.trust_proxy)

    @property
    def who(self) -> RequestIdentity:
        headers = self.request.headers
        return RequestIdentity(
            identity=self.identity,
            address=self.address,
            user_agent=headers.get("User-Agent", ""),
            accept_language=headers.get("Accept-Language", ""),
        )


# Type alias for a middleware function
Middleware = Callable[[Context, Callable[[], Awaitable[None]]], Awaitable[None]]
Handler = Callable[[Context], Awaitable[None]]


class Pipeline:
    """Execute an ordered list of middlewares as an onion (nested) chain around a handler."""

    def __init__(self, middlewares: List[Middleware], handler: Handler) -> None:
        self.middlewares = middlewares
        self.handler = handler

    async def execute(self, ctx: Context) -> web.Response:
        """Run the middleware chain for *ctx* and return the response it produced."""

        async def _terminal() -> None:
            await self.handler(ctx)

        # mw[0] wraps mw[1] wraps … wraps the handler.
        call_next: Callable[[], Awaitable[None]] = _terminal
        for mw in reversed(self.middlewares):
            async def _wrap(_mw=mw, _next=call_next) -> None:
                await _mw(ctx, _next)

            call_next = _wrap

        try:
            await call_next()
        except Exception:
            logger.error("Pipeline error for %s %s", ctx.request.method, ctx.request.path, exc_info=True)
            raise

        if ctx.response is None:
            raise RuntimeError(f"no response produced for {ctx.request.method} {ctx.request.path}")
        return ctx.response

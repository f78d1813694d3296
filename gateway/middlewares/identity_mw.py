"""Identity middleware: resolves the bearer token to a user id."""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, TYPE_CHECKING

from aiohttp import web

if TYPE_CHECKING:
    from gateway.pipeline import Context

logger = logging.getLogger(__name__)


async def identity_middleware(ctx: "Context", call_next: Callable[[], Awaitable[None]]) -> None:
    token = ctx.auth.bearer_token(ctx.request.headers.get("Authorization"))
    if token:
        ctx.identity = ctx.auth.resolve(token)
        if ctx.identity is None:
            logger.warning("Unknown API token from %s", ctx.address)
    await call_next()


async def require_identity_middleware(ctx: "Context", call_next: Callable[[], Awaitable[None]]) -> None:
    if ctx.identity is None:
        ctx.response = web.json_response({"error": "Authentication required"}, status=401)
        return
    await call_next()

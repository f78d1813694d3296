"""Signature middleware: rejects webhook calls without a valid HMAC."""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, Optional, TYPE_CHECKING

from aiohttp import web

from gateway.signature import SIGNATURE_HEADER, verify_signature

if TYPE_CHECKING:
    from gateway.pipeline import Context, Middleware

logger = logging.getLogger(__name__)


def require_signature(secret: Optional[str]) -> "Middleware":
    """Gate on ``X-Signature-SHA256``. With no secret configured every call is refused."""

    async def signature_middleware(ctx: "Context", call_next: Callable[[], Awaitable[None]]) -> None:
        provided = ctx.request.headers.get(SIGNATURE_HEADER)
        if not secret or not verify_signature(ctx.body, provided, secret):
            logger.warning(
                "Rejected %s from %s: invalid or missing signature",
                ctx.request.path,
                ctx.address,
            )
            ctx.response = web.json_response(
                {
                    "error": "Invalid or missing signature",
                    "message": f"Request must include a valid {SIGNATURE_HEADER} header",
                },
                status=401,
            )
            return
        await call_next()

    return signature_middleware

"""Logging middleware: records request arrival and processing time."""

from __future__ import annotations

import logging
import time
from typing import Awaitable, Callable, TYPE_CHECKING

if TYPE_CHECKING:
    from gateway.pipeline import Context

logger = logging.getLogger(__name__)


async def logging_middleware(ctx: "Context", next: Callable[[], Awaitable[None]]) -> None:
    logger.info(
        "Request %s %s from %s body_len=%d",
        ctx.request.method,
        ctx.request.path,
        ctx.address,
        len(ctx.body),
    )
    start = time.time()
    try:
        await next()
    finally:
        elapsed = time.time() - start
        status = ctx.response.status if ctx.response is not None else None
        logger.info(
            "Processed %s %s user=%s in %.2fs status=%s",
            ctx.request.method,
            ctx.request.path,
            ctx.identity,
            elapsed,
            status,
        )

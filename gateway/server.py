"""HTTP surface: CLI proxy, help, status, token check, webhooks and health."""

from __future__ import annotations

import json
import logging
import time
from typing import Awaitable, Callable, List, Optional

from aiohttp import web

from gateway.assistant_cli import CommandOptions
from gateway.auth import Auth
from gateway.cli_router import AI_TOOL, CliRouter, detect_tool
from gateway.middlewares.identity_mw import identity_middleware, require_identity_middleware
from gateway.middlewares.logging_mw import logging_middleware
from gateway.middlewares.rate_limit_mw import consume, rate_limit, settle
from gateway.middlewares.signature_mw import require_signature
from gateway.pipeline import Context, Pipeline
from gateway.policy import ExecutionResult
from gateway.rate_limit import AI, AUTHENTICATION, CLI, GENERAL, WEBHOOK, RateLimiter
from gateway.tool_policies import POLICIES, help_for
from utils.settings import GatewaySettings

logger = logging.getLogger(__name__)

WebhookListener = Callable[[str, Optional[str], object], Awaitable[None]]

_MAX_AUDIT_TEXT = 200


def _parse_json(ctx: Context) -> Optional[dict]:
    if not ctx.body:
        return {}
    try:
        data = json.loads(ctx.body.decode("utf-8"))
    except (UnicodeDecodeError, ValueError):
        return None
    return data if isinstance(data, dict) else None


class GatewayServer:
    def __init__(
        self,
        settings: GatewaySettings,
        *,
        limiter: RateLimiter,
        auth: Auth,
        cli_router: CliRouter,
        audit_logger: Optional[logging.Logger] = None,
        webhook_listeners: Optional[List[WebhookListener]] = None,
    ):
        self.settings = settings
        self.limiter = limiter
        self.auth = auth
        self.cli_router = cli_router
        self.audit_logger = audit_logger
        self.webhook_listeners: List[WebhookListener] = list(webhook_listeners or [])
        self.start_time = time.time()

        authenticated = [logging_middleware, identity_middleware, require_identity_middleware]
        self.execute_pipeline = Pipeline([*authenticated, rate_limit(CLI)], self.handle_execute)
        self.help_pipeline = Pipeline([*authenticated, rate_limit(GENERAL)], self.handle_help)
        self.status_pipeline = Pipeline([*authenticated, rate_limit(CLI)], self.handle_status)
        self.token_pipeline = Pipeline([logging_middleware, rate_limit(AUTHENTICATION)], self.handle_token)
        # Signature before quota: unsigned calls never touch the webhook bucket.
        self.webhook_pipeline = Pipeline(
            [logging_middleware, require_signature(settings.webhook_secret), rate_limit(WEBHOOK)],
            self.handle_webhook,
        )

    def add_webhook_listener(self, listener: WebhookListener) -> None:
        self.webhook_listeners.append(listener)

    def build_app(self) -> web.Application:
        app = web.Application()
        app.router.add_post("/api/cli/execute", self._route(self.execute_pipeline))
        app.router.add_get("/api/cli/help", self._route(self.help_pipeline))
        app.router.add_get("/api/cli/help/{tool}", self._route(self.help_pipeline))
        app.router.add_get("/api/cli/status", self._route(self.status_pipeline))
        app.router.add_post("/api/auth/token", self._route(self.token_pipeline))
        app.router.add_post("/api/webhooks/{source}", self._route(self.webhook_pipeline))
        app.router.add_get("/health", self.handle_health)
        return app

    def _route(self, pipeline: Pipeline):
        async def _handler(request: web.Request) -> web.Response:
            body = await request.read()
            ctx = Context(
                request=request,
                body=body,
                settings=self.settings,
                limiter=self.limiter,
                auth=self.auth,
                audit_logger=self.audit_logger,
            )
            try:
                return await pipeline.execute(ctx)
            except Exception:
                return web.json_response(
                    {"success": False, "error": "Internal server error", "output": ""},
                    status=500,
                )

        return _handler

    # ── handlers ──

    async def handle_execute(self, ctx: Context) -> None:
        payload = _parse_json(ctx)
        if payload is None:
            ctx.response = web.json_response({"error": "Request body must be a JSON object"}, status=400)
            return
        command = payload.get("command")
        if not command or not isinstance(command, str):
            ctx.response = web.json_response({"error": "Command is required"}, status=400)
            return

        ai_decision = None
        if detect_tool(command) == AI_TOOL and self.cli_router.assistant.uses_backend(command):
            ai_decision = consume(ctx, AI)
            if ai_decision is None:
                return

        result: Optional[ExecutionResult] = None
        try:
            try:
                result = await self.cli_router.dispatch(command, CommandOptions.from_payload(payload))
            except Exception:
                logger.error("CLI command execution failed for user=%s", ctx.identity, exc_info=True)
                ctx.response = web.json_response(
                    {"success": False, "error": "CLI command execution failed", "output": ""},
                    status=500,
                )
                return
            self._audit(ctx, command, result)
            status = 400 if result.is_policy_violation else 200
            ctx.response = web.json_response(result.to_dict(), status=status)
        finally:
            if ai_decision is not None:
                settle(ctx, ai_decision, failed=result is None or not result.success)

    async def handle_help(self, ctx: Context) -> None:
        ctx.response = web.json_response({"help": help_for(ctx.request.match_info.get("tool"))})

    async def handle_status(self, ctx: Context) -> None:
        ctx.response = web.json_response(await self.cli_router.status())

    async def handle_token(self, ctx: Context) -> None:
        payload = _parse_json(ctx) or {}
        token = payload.get("token") if isinstance(payload.get("token"), str) else None
        token = token or self.auth.bearer_token(ctx.request.headers.get("Authorization"))
        user_id = self.auth.resolve(token)
        if user_id is None:
            logger.warning("Failed authentication attempt from %s", ctx.address)
            ctx.response = web.json_response({"error": "Invalid credentials"}, status=401)
            return
        ctx.identity = user_id
        ctx.response = web.json_response({"authenticated": True, "user": user_id})

    async def handle_webhook(self, ctx: Context) -> None:
        source = ctx.request.match_info.get("source", "")
        payload = _parse_json(ctx)
        if payload is None:
            ctx.response = web.json_response({"error": "Request body must be a JSON object"}, status=400)
            return
        headers = ctx.request.headers
        event = headers.get("X-Event-Type") or headers.get("X-GitHub-Event")
        logger.info("Webhook received source=%s event=%s", source, event)
        for listener in self.webhook_listeners:
            try:
                await listener(source, event, payload)
            except Exception:
                logger.error("Webhook listener failed source=%s event=%s", source, event, exc_info=True)
        ctx.response = web.json_response({"received": True})

    async def handle_health(self, request: web.Request) -> web.Response:
        return web.json_response({
            "status": "ok",
            "uptime_seconds": round(time.time() - self.start_time, 1),
            "tools": sorted(POLICIES),
        })

    def _audit(self, ctx: Context, command: str, result: ExecutionResult) -> None:
        if self.audit_logger is None:
            return
        parts = command.split()
        event = {
            "ts": time.time(),
            "user_id": ctx.identity,
            "address": ctx.address,
            "tool": parts[0] if parts else "",
            "subcommand": " ".join(parts[1:])[:_MAX_AUDIT_TEXT],
            "success": result.success,
            "exit_code": result.exit_code,
            "kind": result.kind,
        }
        self.audit_logger.info(json.dumps(event, ensure_ascii=False, sort_keys=True))

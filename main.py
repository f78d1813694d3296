#!/usr/bin/env python3
"""
Command Gateway - Main entry point
"""
import argparse
import asyncio
import logging
import os
import signal
import sys
from pathlib import Path

from utils.helpers import load_config
from utils.settings import ConfigError, GatewaySettings, load_settings


def parse_cli_args(argv=None):
    """Parse runtime CLI arguments."""
    parser = argparse.ArgumentParser(description="Command Gateway")
    parser.add_argument(
        "--config",
        default=None,
        help="Path to config YAML file (default: config.yaml when present)",
    )
    parser.add_argument(
        "--host",
        default=None,
        help="Override listen host",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="Override listen port",
    )
    parser.add_argument(
        "--validate-only",
        action="store_true",
        help="Validate and print resolved runtime config, then exit",
    )
    return parser.parse_args(argv)


def resolve_settings(args, environ=None) -> GatewaySettings:
    """Load YAML config (if any), apply CLI overrides and validate."""
    env = dict(os.environ if environ is None else environ)
    config_path = args.config
    if config_path is None and Path("config.yaml").exists():
        config_path = "config.yaml"
    config = load_config(config_path) if config_path else {}

    if args.host:
        env["GATEWAY_HOST"] = args.host
    if args.port is not None:
        env["GATEWAY_PORT"] = str(args.port)
    return load_settings(config, env)


def print_runtime_summary(settings: GatewaySettings) -> None:
    print("✅ Config validation passed")
    print(f"environment: {settings.environment}")
    print(f"listen: {settings.host}:{settings.port}")
    print(f"log_level: {settings.log_level}")
    print(f"logging.file: {settings.log_file}")
    print(f"logging.audit.file: {settings.audit_log_file}")
    print(f"trust_proxy: {settings.trust_proxy}")
    print(f"webhook_secret: {'configured' if settings.webhook_secret else 'missing (webhooks refused)'}")
    print(f"api_tokens: {len(settings.api_tokens)} user(s)")
    for name, profile in settings.rate_limit_profiles.items():
        print(f"rate_limit.{name}: {profile.max_requests}/{profile.window_ms // 1000}s")


# Configure logging
def setup_logging(settings: GatewaySettings):
    """Setup logging based on configuration"""
    level = getattr(logging, settings.log_level, logging.INFO)
    handlers = [logging.StreamHandler(sys.stdout)]
    if settings.log_file:
        Path(settings.log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(settings.log_file))

    logging.basicConfig(
        level=level,
        format='[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s',
        handlers=handlers,
    )

    # Reduce noise from libraries
    logging.getLogger('aiohttp.access').setLevel(logging.WARNING)


def setup_audit_logger(settings: GatewaySettings):
    """Setup dedicated JSONL audit logger if enabled."""
    if not settings.audit_log_file:
        return None

    Path(settings.audit_log_file).parent.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger('audit')
    logger.setLevel(logging.INFO)
    logger.propagate = False
    logger.handlers.clear()
    handler = logging.FileHandler(settings.audit_log_file)
    handler.setFormatter(logging.Formatter('%(message)s'))
    logger.addHandler(handler)
    return logger


def build_server(settings: GatewaySettings, audit_logger=None, assistant_backend=None):
    """Wire the gateway components together."""
    from gateway.assistant_cli import AssistantCLI
    from gateway.auth import Auth
    from gateway.cli_router import CliRouter
    from gateway.executor import CommandExecutor
    from gateway.rate_limit import MemoryBucketStore, RateLimiter
    from gateway.server import GatewayServer

    limiter = RateLimiter(
        settings.rate_limit_profiles,
        MemoryBucketStore(),
        salt=settings.fingerprint_salt,
    )
    auth = Auth(api_tokens=dict(settings.api_tokens))
    executor = CommandExecutor(cwd=settings.cli_workdir)
    cli_router = CliRouter(executor, AssistantCLI(assistant_backend))
    return GatewayServer(
        settings,
        limiter=limiter,
        auth=auth,
        cli_router=cli_router,
        audit_logger=audit_logger,
    )


async def main(argv=None):
    """Main application entry point"""
    args = parse_cli_args(argv)

    # Load configuration
    try:
        settings = resolve_settings(args)
    except ConfigError as e:
        print("❌ Configuration validation failed:")
        for problem in e.problems:
            print(f"  - {problem}")
        sys.exit(1)
    except Exception as e:
        print(f"❌ Failed to load configuration: {e}")
        sys.exit(1)

    if args.validate_only:
        print_runtime_summary(settings)
        return

    setup_logging(settings)
    audit_logger = setup_audit_logger(settings)
    logger = logging.getLogger(__name__)
    logger.info(
        "Starting Command Gateway... environment=%s listen=%s:%d",
        settings.environment,
        settings.host,
        settings.port,
    )
    if not settings.webhook_secret:
        logger.warning("WEBHOOK_SECRET is not configured; all webhook calls will be refused")

    from aiohttp import web

    try:
        server = build_server(settings, audit_logger=audit_logger)
        runner = web.AppRunner(server.build_app())
        await runner.setup()
        site = web.TCPSite(runner, settings.host, settings.port)
        await site.start()
        logger.info("🚀 Command Gateway listening on %s:%d", settings.host, settings.port)

        # Wait for shutdown signal
        shutdown_event = asyncio.Event()
        loop = asyncio.get_running_loop()

        def _request_shutdown(sig_num: int):
            logger.info(f"Received signal {sig_num}, shutting down...")
            shutdown_event.set()

        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, _request_shutdown, int(sig))
            except NotImplementedError:
                signal.signal(sig, lambda s, _f: _request_shutdown(int(s)))

        await shutdown_event.wait()

        logger.info("Shutting down...")
        await runner.cleanup()
        logger.info("✅ Shutdown complete")

    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)


def run():
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\n👋 Interrupted by user")
    except Exception as e:
        print(f"❌ Fatal error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    run()

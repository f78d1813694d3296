"""Startup configuration: YAML file merged with environment overrides, validated once.

Any problem raises :class:`ConfigError`; the process is expected to exit
rather than run with a half-valid configuration.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional

from gateway.rate_limit import RateLimitProfile, build_profiles
from utils.helpers import parse_bool, parse_token_map

ENVIRONMENTS = ("development", "production", "test")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")
MIN_SECRET_LENGTH = 32

WEAK_SECRETS = frozenset({
    "dev-session-secret",
    "default",
    "changeme",
    "change_me",
    "password",
    "secret",
    "12345678901234567890123456789012",
})
_REPEATED_CHAR_RE = re.compile(r"^(.)\1+$")


class ConfigError(ValueError):
    def __init__(self, problems: List[str]):
        self.problems = list(problems)
        super().__init__("; ".join(self.problems))


@dataclass(frozen=True)
class GatewaySettings:
    environment: str = "development"
    host: str = "127.0.0.1"
    port: int = 5000
    log_level: str = "INFO"
    log_file: Optional[str] = None
    audit_log_file: Optional[str] = None
    rate_limit_window_ms: int = 15 * 60 * 1000
    rate_limit_max_requests: int = 100
    rate_limit_profiles: Mapping[str, RateLimitProfile] = field(default_factory=build_profiles)
    webhook_secret: Optional[str] = field(default=None, repr=False)
    api_tokens: Mapping[str, str] = field(default_factory=dict, repr=False)
    trust_proxy: bool = False
    fingerprint_salt: Optional[str] = field(default=None, repr=False)
    cli_workdir: Optional[str] = None

    @property
    def is_production(self) -> bool:
        return self.environment == "production"


def is_weak_secret(secret: str) -> bool:
    return secret.lower() in WEAK_SECRETS or bool(_REPEATED_CHAR_RE.match(secret))


def _section(config: Mapping, name: str) -> Mapping:
    value = config.get(name)
    return value if isinstance(value, Mapping) else {}


def _pick(env_value: Optional[str], file_value, default):
    """Environment first, then the config file, then *default*.

    Only absent values fall through; an explicit ``0`` is kept so it can be
    validated.
    """
    if env_value is not None and str(env_value).strip() != "":
        return env_value
    if file_value is not None:
        return file_value
    return default


def _int(value, name: str, problems: List[str], minimum: int = 1, maximum: Optional[int] = None) -> Optional[int]:
    try:
        number = int(str(value).strip())
    except (TypeError, ValueError):
        problems.append(f"{name}: must be an integer (got {value!r})")
        return None
    if number < minimum or (maximum is not None and number > maximum):
        bound = f"{minimum}..{maximum}" if maximum is not None else f">= {minimum}"
        problems.append(f"{name}: must be {bound} (got {number})")
        return None
    return number


def _check_secret(name: str, secret: str, production: bool, problems: List[str]) -> None:
    if len(secret) < MIN_SECRET_LENGTH:
        problems.append(f"{name}: must be at least {MIN_SECRET_LENGTH} characters")
    elif production and is_weak_secret(secret):
        problems.append(f"{name}: production cannot use a weak or default secret")


def load_settings(config: Optional[Mapping] = None, environ: Optional[Mapping[str, str]] = None) -> GatewaySettings:
    """Resolve settings from a loaded YAML *config* and the process environment."""
    config = config or {}
    env = os.environ if environ is None else environ
    problems: List[str] = []

    runtime = _section(config, "runtime")
    server = _section(config, "server")
    log_cfg = _section(config, "logging")
    audit_cfg = _section(log_cfg, "audit")
    limits = _section(config, "rate_limits")
    webhooks = _section(config, "webhooks")
    auth_cfg = _section(config, "auth")
    proxy = _section(config, "proxy")
    cli_cfg = _section(config, "cli")

    environment = str(env.get("GATEWAY_ENV") or runtime.get("environment") or "development").strip().lower()
    if environment not in ENVIRONMENTS:
        problems.append(f"GATEWAY_ENV: must be one of {', '.join(ENVIRONMENTS)} (got {environment!r})")
    production = environment == "production"

    host = str(env.get("GATEWAY_HOST") or server.get("host") or "127.0.0.1").strip()
    port = _int(_pick(env.get("GATEWAY_PORT"), server.get("port"), 5000), "GATEWAY_PORT", problems, 1, 65535)

    log_level = str(env.get("LOG_LEVEL") or log_cfg.get("level") or "INFO").strip().upper()
    if log_level not in LOG_LEVELS:
        problems.append(f"LOG_LEVEL: must be one of {', '.join(LOG_LEVELS)} (got {log_level!r})")

    window_ms = _int(
        _pick(env.get("RATE_LIMIT_WINDOW_MS"), limits.get("window_ms"), 900000),
        "RATE_LIMIT_WINDOW_MS",
        problems,
    )
    max_requests = _int(
        _pick(env.get("RATE_LIMIT_MAX_REQUESTS"), limits.get("max_requests"), 100),
        "RATE_LIMIT_MAX_REQUESTS",
        problems,
    )

    profiles: Dict[str, RateLimitProfile] = {}
    if window_ms is not None and max_requests is not None:
        try:
            profiles = build_profiles(window_ms, max_requests, _section(limits, "profiles"))
        except (TypeError, ValueError) as e:
            problems.append(f"rate_limits: {e}")

    webhook_secret = str(env.get("WEBHOOK_SECRET") or webhooks.get("secret") or "").strip() or None
    if webhook_secret is not None:
        _check_secret("WEBHOOK_SECRET", webhook_secret, production, problems)
    elif production:
        problems.append("WEBHOOK_SECRET: required in production")

    api_tokens: Dict[str, str] = {}
    raw_tokens = env.get("API_TOKENS")
    if raw_tokens:
        try:
            api_tokens = parse_token_map(raw_tokens)
        except ValueError as e:
            problems.append(f"API_TOKENS: {e}")
    else:
        configured = auth_cfg.get("api_tokens") or {}
        if isinstance(configured, Mapping):
            api_tokens = {str(k): str(v) for k, v in configured.items()}
        else:
            problems.append("auth.api_tokens: must be a mapping of user id to token")
    for user_id, token in api_tokens.items():
        _check_secret(f"API token for {user_id}", token, production, problems)
    if len(set(api_tokens.values())) != len(api_tokens):
        problems.append("API_TOKENS: tokens must be unique per user")

    try:
        trust_proxy = parse_bool(env.get("TRUST_PROXY", proxy.get("trust_forwarded_for")), default=False)
    except ValueError as e:
        problems.append(f"TRUST_PROXY: {e}")
        trust_proxy = False

    if problems:
        raise ConfigError(problems)

    return GatewaySettings(
        environment=environment,
        host=host,
        port=port,
        log_level=log_level,
        log_file=log_cfg.get("file"),
        audit_log_file=audit_cfg.get("file") if audit_cfg.get("enabled", False) else None,
        rate_limit_window_ms=window_ms,
        rate_limit_max_requests=max_requests,
        rate_limit_profiles=profiles,
        webhook_secret=webhook_secret,
        api_tokens=api_tokens,
        trust_proxy=trust_proxy,
        fingerprint_salt=str(limits.get("fingerprint_salt")) if limits.get("fingerprint_salt") else None,
        cli_workdir=cli_cfg.get("workdir"),
    )

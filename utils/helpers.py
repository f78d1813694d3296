"""
Utility functions for the gateway
"""
import os
import re
import yaml
from typing import Any, Dict


def load_config(config_path: str = "config.yaml") -> Dict[str, Any]:
    """
    Load configuration from YAML file with environment variable substitution

    Supports ${VAR_NAME} syntax for environment variables
    """
    if not os.path.exists(config_path):
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        config_str = f.read()

    # Replace environment variables
    def replace_env(match):
        var_name = match.group(1)
        value = os.getenv(var_name)
        if value is None:
            raise ValueError(f"Environment variable {var_name} is not set")
        return value

    config_str = re.sub(r'\$\{([A-Za-z_][A-Za-z0-9_]*)\}', replace_env, config_str)

    config = yaml.safe_load(config_str)
    if config is None:
        return {}
    if not isinstance(config, dict):
        raise ValueError(f"Configuration root must be a mapping: {config_path}")
    return config


def parse_bool(value: Any, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in {"1", "true", "yes", "on"}:
        return True
    if text in {"0", "false", "no", "off", ""}:
        return False
    raise ValueError(f"not a boolean: {value!r}")


def parse_token_map(raw: str) -> Dict[str, str]:
    """Parse ``user:token,user2:token2`` into a mapping."""
    tokens: Dict[str, str] = {}
    for item in str(raw or "").split(","):
        item = item.strip()
        if not item:
            continue
        user, sep, token = item.partition(":")
        if not sep or not user.strip() or not token.strip():
            raise ValueError("API_TOKENS entries must look like user:token")
        tokens[user.strip()] = token.strip()
    return tokens

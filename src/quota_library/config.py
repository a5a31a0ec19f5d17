# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Default configuration for the quota library.

Settings are read from environment variables. The CLI loads ``.env``
files before calling :func:`load_settings`, so both sources work.
"""

import os
from dataclasses import dataclass
from typing import Mapping, Optional

from .error_handler import ConfigError


# =============================================================================
# CONSTANTS
# =============================================================================

__version__ = "0.1.0"

DEFAULT_QUOTA_URL = "https://api.anthropic.com/api/oauth/usage"
DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_REFRESH_COMMAND = "claude"
DEFAULT_REFRESH_SETTLE_SECONDS = 1.0  # Time for the keychain write to land
DEFAULT_REFRESH_TIMEOUT_SECONDS = 60.0
DEFAULT_KEYCHAIN_SERVICE = "Claude Code-credentials"
DEFAULT_LOG_DIR = "logs"

USER_AGENT = f"claude-quota/{__version__}"
ANTHROPIC_BETA = "oauth-2025-04-20"

# Environment variables that may hold an OAuth token, in precedence order
TOKEN_ENV_VARS = ("CLAUDE_CODE_OAUTH_TOKEN", "CLAUDE_OAUTH_TOKEN")

# Retries after the first attempt (three tries in total)
MAX_RETRIES = 2


# =============================================================================
# SETTINGS
# =============================================================================


@dataclass(frozen=True)
class QuotaSettings:
    quota_url: str = DEFAULT_QUOTA_URL
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    refresh_command: str = DEFAULT_REFRESH_COMMAND
    refresh_settle_seconds: float = DEFAULT_REFRESH_SETTLE_SECONDS
    refresh_timeout_seconds: float = DEFAULT_REFRESH_TIMEOUT_SECONDS
    keychain_service: str = DEFAULT_KEYCHAIN_SERVICE
    failure_log_enabled: bool = False
    log_dir: str = DEFAULT_LOG_DIR


def parse_bool_env(environ: Mapping[str, str], name: str, default: bool) -> bool:
    raw = environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _parse_seconds_env(
    environ: Mapping[str, str], name: str, default: float
) -> float:
    raw = (environ.get(name) or "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number of seconds, got {raw!r}")
    if value < 0:
        raise ConfigError(f"{name} must not be negative, got {raw!r}")
    return value


def _str_env(environ: Mapping[str, str], name: str, default: str) -> str:
    return (environ.get(name) or "").strip() or default


def load_settings(environ: Optional[Mapping[str, str]] = None) -> QuotaSettings:
    """
    Build settings from environment variables.

    Recognised variables:
        CLAUDE_QUOTA_URL, CLAUDE_QUOTA_TIMEOUT,
        CLAUDE_QUOTA_REFRESH_COMMAND, CLAUDE_QUOTA_REFRESH_SETTLE,
        CLAUDE_QUOTA_REFRESH_TIMEOUT, CLAUDE_QUOTA_KEYCHAIN_SERVICE,
        CLAUDE_QUOTA_FAILURE_LOG, CLAUDE_QUOTA_LOG_DIR

    Raises:
        ConfigError: if a numeric variable cannot be parsed
    """
    env = os.environ if environ is None else environ
    return QuotaSettings(
        quota_url=_str_env(env, "CLAUDE_QUOTA_URL", DEFAULT_QUOTA_URL),
        timeout_seconds=_parse_seconds_env(
            env, "CLAUDE_QUOTA_TIMEOUT", DEFAULT_TIMEOUT_SECONDS
        ),
        refresh_command=_str_env(
            env, "CLAUDE_QUOTA_REFRESH_COMMAND", DEFAULT_REFRESH_COMMAND
        ),
        refresh_settle_seconds=_parse_seconds_env(
            env, "CLAUDE_QUOTA_REFRESH_SETTLE", DEFAULT_REFRESH_SETTLE_SECONDS
        ),
        refresh_timeout_seconds=_parse_seconds_env(
            env, "CLAUDE_QUOTA_REFRESH_TIMEOUT", DEFAULT_REFRESH_TIMEOUT_SECONDS
        ),
        keychain_service=_str_env(
            env, "CLAUDE_QUOTA_KEYCHAIN_SERVICE", DEFAULT_KEYCHAIN_SERVICE
        ),
        failure_log_enabled=parse_bool_env(env, "CLAUDE_QUOTA_FAILURE_LOG", False),
        log_dir=_str_env(env, "CLAUDE_QUOTA_LOG_DIR", DEFAULT_LOG_DIR),
    )

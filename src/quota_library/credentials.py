# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Credential resolution for quota requests.

Candidate OAuth tokens come from three places, in fixed precedence:

1. A manual override supplied by the caller (``--token``)
2. An environment variable (``CLAUDE_CODE_OAUTH_TOKEN``/``CLAUDE_OAUTH_TOKEN``)
3. The platform secret store (macOS Keychain, or the Claude credentials
   file on other platforms)

The environment source is skipped once the orchestrator has switched to
the alternate source for the rest of a run.
"""

import asyncio
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, Mapping, Optional, Protocol

from .config import DEFAULT_KEYCHAIN_SERVICE, TOKEN_ENV_VARS
from .types import AttemptState, Credential, CredentialSource
from .utils import format_credential_for_display

lib_logger = logging.getLogger("quota_library")

KEYCHAIN_LOOKUP_TIMEOUT_SECONDS = 10


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================


def read_env_credential(environ: Optional[Mapping[str, str]] = None) -> Optional[str]:
    """Return the first non-blank token from the OAuth token variables."""
    env = os.environ if environ is None else environ
    for name in TOKEN_ENV_VARS:
        value = (env.get(name) or "").strip()
        if value:
            return value
    return None


def extract_access_token(blob: Any) -> Optional[str]:
    """
    Extract the access token from a stored Claude credential blob.

    Expected shape::

        {"claudeAiOauth": {"accessToken": "...", "refreshToken": "...", ...}}

    Snake_case keys are accepted as well.
    """
    if not isinstance(blob, dict):
        return None
    oauth = blob.get("claudeAiOauth", blob)
    if not isinstance(oauth, dict):
        return None
    token = oauth.get("accessToken") or oauth.get("access_token")
    if isinstance(token, str) and token.strip():
        return token.strip()
    return None


def _decode_blob(raw: str) -> Optional[str]:
    raw = raw.strip()
    if not raw:
        return None
    try:
        blob = json.loads(raw)
    except json.JSONDecodeError:
        lib_logger.debug("Stored credential is not valid JSON")
        return None
    return extract_access_token(blob)


# =============================================================================
# SECRET STORES
# =============================================================================


class SecretStore(Protocol):
    """Looks up a stored OAuth token by service identifier."""

    async def lookup(self, service_id: str) -> Optional[str]:
        ...


class KeychainSecretStore:
    """Reads the Claude Code credential from the macOS login keychain."""

    def __init__(self, timeout: float = KEYCHAIN_LOOKUP_TIMEOUT_SECONDS):
        self.timeout = timeout

    async def lookup(self, service_id: str) -> Optional[str]:
        try:
            proc = await asyncio.create_subprocess_exec(
                "security",
                "find-generic-password",
                "-s",
                service_id,
                "-w",
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            lib_logger.debug(f"Keychain lookup unavailable: {e}")
            return None

        try:
            stdout, _ = await asyncio.wait_for(proc.communicate(), self.timeout)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            lib_logger.debug(f"Keychain lookup timed out after {self.timeout}s")
            return None

        if proc.returncode != 0:
            lib_logger.debug(
                f"No keychain entry for '{service_id}' (exit {proc.returncode})"
            )
            return None
        return _decode_blob(stdout.decode("utf-8", errors="replace"))


class CredentialsFileSecretStore:
    """
    Reads the credential file Claude Code writes on Linux and Windows.

    The service identifier is ignored; the file location is
    ``$CLAUDE_CONFIG_DIR/.credentials.json`` or ``~/.claude/.credentials.json``.
    """

    def __init__(self, path: Optional[Path] = None):
        self.path = path

    def _resolve_path(self) -> Path:
        if self.path is not None:
            return self.path
        config_dir = os.getenv("CLAUDE_CONFIG_DIR")
        base = Path(config_dir).expanduser() if config_dir else Path.home() / ".claude"
        return base / ".credentials.json"

    async def lookup(self, service_id: str) -> Optional[str]:
        path = self._resolve_path()
        try:
            raw = path.read_text(encoding="utf-8")
        except OSError:
            lib_logger.debug(f"No credentials file at {path}")
            return None
        return _decode_blob(raw)


def default_secret_store() -> SecretStore:
    """Pick the secret store for the current platform."""
    if sys.platform == "darwin":
        return KeychainSecretStore()
    return CredentialsFileSecretStore()


# =============================================================================
# RESOLVER
# =============================================================================


class CredentialResolver:
    """
    Picks one candidate credential per attempt.

    Nothing is cached: every call re-reads the environment and the
    secret store, so a token refreshed by an external tool is picked up
    on the next attempt.
    """

    def __init__(
        self,
        secret_store: Optional[SecretStore] = None,
        service_id: str = DEFAULT_KEYCHAIN_SERVICE,
        environ: Optional[Mapping[str, str]] = None,
    ):
        self.secret_store = secret_store or default_secret_store()
        self.service_id = service_id
        self._environ = environ

    async def resolve(
        self, state: AttemptState, manual_override: Optional[str] = None
    ) -> Optional[Credential]:
        if manual_override and manual_override.strip():
            return Credential(
                token=manual_override.strip(), source=CredentialSource.MANUAL_OVERRIDE
            )

        if not state.force_alternate_source:
            token = read_env_credential(self._environ)
            if token:
                lib_logger.debug(
                    f"Using token from environment {format_credential_for_display(token)}"
                )
                return Credential(
                    token=token, source=CredentialSource.ENVIRONMENT_VARIABLE
                )

        token = await self.secret_store.lookup(self.service_id)
        if token:
            lib_logger.debug(
                f"Using token from secret store {format_credential_for_display(token)}"
            )
            return Credential(token=token, source=CredentialSource.SECRET_STORE)
        return None

# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

import asyncio
import logging
import os
from typing import Dict, Mapping, Optional, Protocol, Sequence

from .config import (
    DEFAULT_REFRESH_COMMAND,
    DEFAULT_REFRESH_TIMEOUT_SECONDS,
    TOKEN_ENV_VARS,
)
from .error_handler import RefreshError

lib_logger = logging.getLogger("quota_library")


class CredentialRefresher(Protocol):
    """Asks an external tool to refresh the stored OAuth credential."""

    async def refresh(self) -> None:
        ...


def build_refresh_env(environ: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
    """
    Copy the environment with every OAuth token variable blanked.

    With the variables empty, the Claude CLI falls back to its stored
    credential and writes the refreshed token back to the secret store.
    """
    env = dict(os.environ if environ is None else environ)
    for name in TOKEN_ENV_VARS:
        env[name] = ""
    return env


class CliCredentialRefresher:
    """
    Refreshes the stored token by running ``claude --version``.

    Success is taken from the exit status alone; output is discarded.
    """

    def __init__(
        self,
        command: str = DEFAULT_REFRESH_COMMAND,
        args: Sequence[str] = ("--version",),
        timeout: float = DEFAULT_REFRESH_TIMEOUT_SECONDS,
        environ: Optional[Mapping[str, str]] = None,
    ):
        self.command = command
        self.args = tuple(args)
        self.timeout = timeout
        self._environ = environ

    async def refresh(self) -> None:
        argv = [self.command, *self.args]
        lib_logger.debug(f"Running credential refresh: {' '.join(argv)}")
        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
                env=build_refresh_env(self._environ),
            )
        except OSError as e:
            raise RefreshError(f"Could not run `{self.command}`: {e}") from e

        try:
            _, stderr = await asyncio.wait_for(proc.communicate(), self.timeout)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            raise RefreshError(
                f"`{' '.join(argv)}` did not finish within {self.timeout:.0f}s"
            )

        if proc.returncode != 0:
            detail = (stderr or b"").decode("utf-8", errors="replace").strip()
            detail = detail.replace("\n", " ") or "no output"
            raise RefreshError(
                f"`{' '.join(argv)}` exited with status {proc.returncode}: {detail}"
            )

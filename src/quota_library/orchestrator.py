# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Retry/refresh state machine for quota requests.

A run moves through these phases::

    RESOLVING -> REQUESTING -> SUCCEEDED
                    |
                    +-> RESOLVING   (switch to the secret store source)
                    +-> REFRESHING -> RESOLVING
                    +-> FATAL

Only scope mismatches and expired tokens are escalated, and only while
the retry budget lasts and no manual override was given. The first
escalation drops the environment token in favour of the secret store;
the second runs the external refresh command once. Every other failure
ends the run immediately.

The transition functions below are pure; ``QuotaOrchestrator`` performs
the side effects they ask for.
"""

import asyncio
import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Awaitable, Callable, Optional

from .config import DEFAULT_REFRESH_SETTLE_SECONDS, MAX_RETRIES, QuotaSettings
from .credentials import CredentialResolver, SecretStore
from .error_handler import (
    QuotaFetchError,
    RefreshError,
    fatal_reason_for,
    is_retryable,
)
from .failure_logger import log_failure
from .quota_client import QuotaRequester
from .refresher import CliCredentialRefresher, CredentialRefresher
from .types import (
    AttemptState,
    Credential,
    CredentialSource,
    FailureKind,
    FatalReason,
    QuotaReport,
    QuotaResult,
    RequestFailure,
)
from .utils import format_credential_for_display

lib_logger = logging.getLogger("quota_library")


# =============================================================================
# STATES AND TRANSITIONS
# =============================================================================


class Phase(str, Enum):
    RESOLVING = "resolving"
    REQUESTING = "requesting"
    REFRESHING = "refreshing"
    SUCCEEDED = "succeeded"
    FATAL = "fatal"


@dataclass(frozen=True)
class Step:
    """Next phase plus the attempt state to carry into it."""

    phase: Phase
    state: AttemptState
    fatal_reason: Optional[FatalReason] = None
    failure: Optional[RequestFailure] = None

    @property
    def is_terminal(self) -> bool:
        return self.phase in (Phase.SUCCEEDED, Phase.FATAL)


def after_resolve(state: AttemptState, credential: Optional[Credential]) -> Step:
    if credential is None:
        return Step(Phase.FATAL, state, fatal_reason=FatalReason.NO_CREDENTIAL)
    return Step(Phase.REQUESTING, state)


def after_request(
    state: AttemptState,
    result: QuotaResult,
    manual_override: bool,
    max_retries: int = MAX_RETRIES,
) -> Step:
    if result.succeeded:
        return Step(Phase.SUCCEEDED, state)

    failure = result.failure
    if not is_retryable(failure.kind):
        return Step(
            Phase.FATAL,
            state,
            fatal_reason=fatal_reason_for(failure.kind),
            failure=failure,
        )

    if manual_override or state.attempts_used >= max_retries:
        return Step(
            Phase.FATAL, state, fatal_reason=FatalReason.AUTH_EXPIRED, failure=failure
        )

    if not state.force_alternate_source:
        return Step(
            Phase.RESOLVING,
            replace(
                state,
                attempts_used=state.attempts_used + 1,
                force_alternate_source=True,
            ),
            failure=failure,
        )

    # The secret store token was rejected too; refresh it, but never twice
    if state.refreshed:
        return Step(
            Phase.FATAL, state, fatal_reason=FatalReason.AUTH_EXPIRED, failure=failure
        )
    return Step(
        Phase.REFRESHING,
        replace(state, attempts_used=state.attempts_used + 1),
        failure=failure,
    )


def after_refresh(state: AttemptState, succeeded: bool) -> Step:
    refreshed = replace(state, refreshed=True)
    if not succeeded:
        return Step(Phase.FATAL, refreshed, fatal_reason=FatalReason.REFRESH_FAILED)
    return Step(Phase.RESOLVING, refreshed)


# =============================================================================
# ORCHESTRATOR
# =============================================================================


class QuotaOrchestrator:
    """
    Drives resolver, requester and refresher through the state machine.

    One ``run`` call performs one quota lookup; runs share no state.
    """

    def __init__(
        self,
        resolver: CredentialResolver,
        requester: QuotaRequester,
        refresher: CredentialRefresher,
        settle_seconds: float = DEFAULT_REFRESH_SETTLE_SECONDS,
        max_retries: int = MAX_RETRIES,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.resolver = resolver
        self.requester = requester
        self.refresher = refresher
        self.settle_seconds = settle_seconds
        self.max_retries = max_retries
        self._sleep = sleep

    @classmethod
    def from_settings(
        cls,
        settings: QuotaSettings,
        client=None,
        secret_store: Optional[SecretStore] = None,
    ) -> "QuotaOrchestrator":
        """Wire the default collaborators from settings."""
        return cls(
            resolver=CredentialResolver(
                secret_store=secret_store, service_id=settings.keychain_service
            ),
            requester=QuotaRequester(
                url=settings.quota_url,
                timeout=settings.timeout_seconds,
                client=client,
            ),
            refresher=CliCredentialRefresher(
                command=settings.refresh_command,
                timeout=settings.refresh_timeout_seconds,
            ),
            settle_seconds=settings.refresh_settle_seconds,
        )

    async def run(self, manual_override: Optional[str] = None) -> QuotaReport:
        """
        Fetch the quota snapshot, escalating on retryable auth failures.

        Raises:
            QuotaFetchError: when the run ends in the fatal phase
        """
        state = AttemptState()
        step = Step(Phase.RESOLVING, state)
        credential: Optional[Credential] = None
        result: Optional[QuotaResult] = None
        refresh_count = 0
        refresh_error: Optional[str] = None

        while not step.is_terminal:
            if step.phase == Phase.RESOLVING:
                credential = await self.resolver.resolve(step.state, manual_override)
                step = after_resolve(step.state, credential)

            elif step.phase == Phase.REQUESTING:
                if step.state.attempts_used == 0:
                    lib_logger.info("Fetching quota from Anthropic...")
                result = await self.requester.request(credential)
                if result.failure is not None:
                    log_failure(credential, step.state.attempts_used + 1, result.failure)
                step = after_request(
                    step.state,
                    result,
                    manual_override=credential.source == CredentialSource.MANUAL_OVERRIDE,
                    max_retries=self.max_retries,
                )
                if step.phase == Phase.RESOLVING:
                    lib_logger.warning(
                        f"Token {format_credential_for_display(credential.token)} "
                        f"rejected ({_describe(step.failure)}). "
                        "Switching to the secret store..."
                    )

            elif step.phase == Phase.REFRESHING:
                lib_logger.warning(
                    "Secret store token rejected. Refreshing "
                    f"(attempt {step.state.attempts_used}/{self.max_retries})..."
                )
                refresh_count += 1
                try:
                    await self.refresher.refresh()
                except RefreshError as e:
                    refresh_error = str(e)
                    lib_logger.warning(f"Failed to auto-refresh token: {e}")
                    step = after_refresh(step.state, succeeded=False)
                else:
                    # Give the refreshed credential time to land in the store
                    await self._sleep(self.settle_seconds)
                    step = after_refresh(step.state, succeeded=True)

        if step.phase == Phase.FATAL:
            raise self._fatal_error(step, refresh_error)

        return QuotaReport(
            snapshot=result.snapshot,
            source=credential.source,
            attempts_used=step.state.attempts_used,
            refresh_count=refresh_count,
        )

    def _fatal_error(self, step: Step, refresh_error: Optional[str]) -> QuotaFetchError:
        reason = step.fatal_reason
        failure = step.failure
        if reason == FatalReason.NO_CREDENTIAL:
            message = "Could not find a Claude OAuth token in the environment or secret store."
        elif reason == FatalReason.REFRESH_FAILED:
            message = f"Failed to auto-refresh the Claude OAuth token: {refresh_error}"
        elif reason == FatalReason.AUTH_EXPIRED:
            message = "Your Claude OAuth token has expired or is invalid and could not be refreshed."
        elif reason == FatalReason.OTHER_AUTH_FAILURE:
            message = (
                f"Authentication failed: {failure.status}"
                if failure.status is not None
                else "Authentication failed"
            )
        elif reason == FatalReason.HTTP_ERROR:
            message = f"API error: {failure.status}"
        else:
            message = "Failed to fetch quota"

        if failure is not None and failure.message:
            message = f"{message} ({failure.message})"

        return QuotaFetchError(
            reason,
            message,
            status=failure.status if failure else None,
            server_message=failure.message if failure else None,
            attempts_used=step.state.attempts_used,
        )


def _describe(failure: Optional[RequestFailure]) -> str:
    if failure is not None and failure.kind == FailureKind.SCOPE_MISMATCH:
        return "scope mismatch"
    return "expired"

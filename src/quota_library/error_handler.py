# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

from typing import Any, Optional

from .types import FailureKind, FatalReason

# Substrings in error.message that indicate a stale or expired OAuth token.
# The remote service does not document these; matching is best-effort.
EXPIRY_MESSAGE_HINTS = ("expired", "token")

MANUAL_REFRESH_COMMAND = "CLAUDE_CODE_OAUTH_TOKEN= claude --version"


class QuotaFetchError(Exception):
    """
    Terminal failure of a quota run.

    Carries the classified reason, the HTTP status and server message
    when there was a response, and a remediation hint for the user.
    """

    def __init__(
        self,
        reason: FatalReason,
        message: str,
        status: Optional[int] = None,
        server_message: Optional[str] = None,
        attempts_used: int = 0,
    ):
        super().__init__(message)
        self.reason = reason
        self.status = status
        self.server_message = server_message
        self.attempts_used = attempts_used

    @property
    def remediation(self) -> str:
        return remediation_for(self.reason)


class RefreshError(Exception):
    """The external credential refresh command did not succeed."""


class ConfigError(ValueError):
    """An environment setting could not be parsed."""


def is_retryable(kind: FailureKind) -> bool:
    """Only scope mismatches and expired tokens warrant escalation."""
    return kind in (FailureKind.SCOPE_MISMATCH, FailureKind.EXPIRED)


def classify_auth_failure(body: Any) -> FailureKind:
    """
    Classifies the JSON body of a 401/403 response.

    The error type is checked first: a permission_error is always a
    scope mismatch regardless of its message. Otherwise the message is
    searched for expiry hints. Anything else, including bodies that are
    not shaped like ``{"error": {"type": ..., "message": ...}}``, is an
    unrecoverable auth failure.
    """
    if not isinstance(body, dict):
        return FailureKind.OTHER_AUTH_FAILURE
    error = body.get("error")
    if not isinstance(error, dict):
        return FailureKind.OTHER_AUTH_FAILURE

    if error.get("type") == "permission_error":
        return FailureKind.SCOPE_MISMATCH

    message = error.get("message")
    if isinstance(message, str):
        lowered = message.lower()
        if any(hint in lowered for hint in EXPIRY_MESSAGE_HINTS):
            return FailureKind.EXPIRED

    return FailureKind.OTHER_AUTH_FAILURE


def extract_error_message(body: Any) -> Optional[str]:
    """Returns error.message from an error body, if there is one."""
    if isinstance(body, dict) and isinstance(body.get("error"), dict):
        message = body["error"].get("message")
        if isinstance(message, str) and message:
            return message
    return None


def fatal_reason_for(kind: FailureKind) -> FatalReason:
    """Maps a request failure to the reason reported when it ends a run."""
    if is_retryable(kind):
        return FatalReason.AUTH_EXPIRED
    return {
        FailureKind.OTHER_AUTH_FAILURE: FatalReason.OTHER_AUTH_FAILURE,
        FailureKind.HTTP_ERROR: FatalReason.HTTP_ERROR,
        FailureKind.NETWORK_FAILURE: FatalReason.NETWORK_FAILURE,
    }[kind]


def remediation_for(reason: FatalReason) -> str:
    if reason == FatalReason.NO_CREDENTIAL:
        return (
            "Run `claude` once to authenticate, or provide a token with --token."
        )
    if reason in (FatalReason.AUTH_EXPIRED, FatalReason.REFRESH_FAILED):
        return (
            "Run the following command in your terminal to refresh the token "
            f"manually, then try again:\n  {MANUAL_REFRESH_COMMAND}"
        )
    if reason == FatalReason.OTHER_AUTH_FAILURE:
        return "Check that the OAuth token belongs to a Claude account with quota access."
    if reason == FatalReason.NETWORK_FAILURE:
        return "Check your network connection and try again."
    return "The quota endpoint returned an error. Try again later."

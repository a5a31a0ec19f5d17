# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Type definitions for the quota library.

This module contains the enums and dataclasses shared by the credential
resolver, the quota requester and the retry/refresh orchestrator.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional


# =============================================================================
# ENUMS
# =============================================================================


class CredentialSource(str, Enum):
    """Where a bearer credential was obtained from."""

    MANUAL_OVERRIDE = "manual_override"  # --token on the command line
    ENVIRONMENT_VARIABLE = "environment_variable"
    SECRET_STORE = "secret_store"  # OS keychain or credentials file


class FailureKind(str, Enum):
    """Classification of a failed quota request."""

    SCOPE_MISMATCH = "scope_mismatch"
    EXPIRED = "expired"
    OTHER_AUTH_FAILURE = "other_auth_failure"
    HTTP_ERROR = "http_error"
    NETWORK_FAILURE = "network_failure"


class FatalReason(str, Enum):
    """Terminal failure reasons reported to the caller."""

    NO_CREDENTIAL = "no_credential"
    AUTH_EXPIRED = "auth_expired"  # Retryable auth failure, budget exhausted
    OTHER_AUTH_FAILURE = "other_auth_failure"
    HTTP_ERROR = "http_error"
    NETWORK_FAILURE = "network_failure"
    REFRESH_FAILED = "refresh_failed"


class LimitStatus(str, Enum):
    """Display classification of a quota window's utilization."""

    OK = "OK"
    WARNING = "Warning"
    EXCEEDED = "Exceeded"


# =============================================================================
# CREDENTIAL TYPES
# =============================================================================


@dataclass(frozen=True)
class Credential:
    """A bearer token together with the source it was resolved from."""

    token: str = field(repr=False)
    source: CredentialSource


@dataclass
class AttemptState:
    """
    Mutable bookkeeping for one quota run.

    Owned by the orchestrator; created at the start of a run and
    discarded when the run reaches a terminal phase.
    """

    attempts_used: int = 0
    force_alternate_source: bool = False  # Skip the environment credential
    refreshed: bool = False  # External refresh already performed


# =============================================================================
# QUOTA TYPES
# =============================================================================


@dataclass(frozen=True)
class QuotaLimit:
    """One named quota window (e.g. the 5-hour or 7-day cap)."""

    utilization: float  # Fraction consumed, may exceed 1.0
    resets_at: Optional[datetime]


@dataclass
class QuotaSnapshot:
    """
    Quota windows reported by the remote endpoint.

    ``limits`` keeps every window key in response order. A key whose
    value was null maps to None. ``raw`` is the decoded body, so fields
    that are not quota windows are preserved as well.
    """

    limits: Dict[str, Optional[QuotaLimit]] = field(default_factory=dict)
    raw: Dict[str, Any] = field(default_factory=dict)

    def present_limits(self) -> Dict[str, QuotaLimit]:
        """Return only the windows that carry data."""
        return {
            name: limit for name, limit in self.limits.items() if limit is not None
        }


@dataclass(frozen=True)
class RequestFailure:
    """A classified failure of a single quota request."""

    kind: FailureKind
    status: Optional[int] = None
    message: Optional[str] = None


@dataclass(frozen=True)
class QuotaResult:
    """Outcome of one quota request: exactly one of the fields is set."""

    snapshot: Optional[QuotaSnapshot] = None
    failure: Optional[RequestFailure] = None

    @classmethod
    def ok(cls, snapshot: QuotaSnapshot) -> "QuotaResult":
        return cls(snapshot=snapshot)

    @classmethod
    def failed(
        cls,
        kind: FailureKind,
        status: Optional[int] = None,
        message: Optional[str] = None,
    ) -> "QuotaResult":
        return cls(failure=RequestFailure(kind=kind, status=status, message=message))

    @property
    def succeeded(self) -> bool:
        return self.snapshot is not None


@dataclass(frozen=True)
class QuotaReport:
    """Successful run summary handed back to the caller."""

    snapshot: QuotaSnapshot
    source: CredentialSource
    attempts_used: int
    refresh_count: int = 0

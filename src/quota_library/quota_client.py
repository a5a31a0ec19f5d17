# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Quota requester for the Claude OAuth usage endpoint.

Issues one GET per call and classifies the outcome:

- 2xx: body parsed into a QuotaSnapshot
- 401/403: classified from the error body (scope mismatch, expired, other)
- any other status: HTTP error
- transport failure: network failure

Response shape (simplified)::

    {
      "five_hour": {"utilization": 0.42, "resets_at": "2026-01-23T15:00:00Z"},
      "seven_day": {"utilization": 0.15, "resets_at": "2026-01-27T00:00:00Z"},
      "seven_day_opus": null
    }
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import httpx

from .config import ANTHROPIC_BETA, DEFAULT_QUOTA_URL, DEFAULT_TIMEOUT_SECONDS, USER_AGENT
from .error_handler import classify_auth_failure, extract_error_message
from .types import (
    Credential,
    FailureKind,
    QuotaLimit,
    QuotaResult,
    QuotaSnapshot,
)

lib_logger = logging.getLogger("quota_library")


# =============================================================================
# RESPONSE PARSING
# =============================================================================


def _parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 string or unix timestamp into an aware datetime."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _parse_limit(value: Any) -> Optional[QuotaLimit]:
    """Parse one window; returns None if the value is not shaped like one."""
    if not isinstance(value, dict):
        return None
    utilization = value.get("utilization")
    if isinstance(utilization, bool) or not isinstance(utilization, (int, float)):
        return None
    return QuotaLimit(
        utilization=max(0.0, float(utilization)),
        resets_at=_parse_timestamp(value.get("resets_at")),
    )


def parse_quota_snapshot(data: Any) -> QuotaSnapshot:
    """
    Parse a decoded usage response.

    Null values are recorded as absent windows. Values that are not
    windows (other metadata) are left out of ``limits`` but kept in
    ``raw``. Missing keys are not an error.
    """
    if not isinstance(data, dict):
        return QuotaSnapshot()

    limits: Dict[str, Optional[QuotaLimit]] = {}
    for name, value in data.items():
        if value is None:
            limits[name] = None
            continue
        limit = _parse_limit(value)
        if limit is not None:
            limits[name] = limit
    return QuotaSnapshot(limits=limits, raw=dict(data))


# =============================================================================
# REQUESTER
# =============================================================================


class QuotaRequester:
    """
    Performs a single quota request per call.

    A shared ``httpx.AsyncClient`` may be injected; otherwise a client
    is created for each request.
    """

    def __init__(
        self,
        url: str = DEFAULT_QUOTA_URL,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.url = url
        self.timeout = timeout
        self._client = client

    def build_headers(self, credential: Credential) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {credential.token}",
            "User-Agent": USER_AGENT,
            "anthropic-beta": ANTHROPIC_BETA,
            "Accept": "application/json",
        }

    async def _get(self, headers: Dict[str, str]) -> httpx.Response:
        if self._client is not None:
            return await self._client.get(self.url, headers=headers, timeout=self.timeout)
        async with httpx.AsyncClient() as client:
            return await client.get(self.url, headers=headers, timeout=self.timeout)

    async def request(self, credential: Credential) -> QuotaResult:
        # HTTP header values must be printable ASCII
        if not (credential.token.isascii() and credential.token.isprintable()):
            lib_logger.debug("Token contains characters that cannot be sent in a header")
            return QuotaResult.failed(
                FailureKind.OTHER_AUTH_FAILURE,
                message="Token contains invalid characters",
            )

        try:
            response = await self._get(self.build_headers(credential))
        except httpx.HTTPError as e:
            lib_logger.debug(f"Quota request failed in transport: {e!r}")
            return QuotaResult.failed(
                FailureKind.NETWORK_FAILURE, message=str(e) or type(e).__name__
            )

        status = response.status_code
        if status in (401, 403):
            try:
                body = response.json()
            except (json.JSONDecodeError, UnicodeDecodeError):
                body = {}
            kind = classify_auth_failure(body)
            lib_logger.debug(f"Quota request rejected with {status}: {kind.value}")
            return QuotaResult.failed(
                kind,
                status=status,
                message=extract_error_message(body) or response.reason_phrase,
            )

        if not response.is_success:
            return QuotaResult.failed(
                FailureKind.HTTP_ERROR, status=status, message=response.reason_phrase
            )

        try:
            data = response.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            return QuotaResult.failed(
                FailureKind.HTTP_ERROR,
                status=status,
                message=f"Invalid JSON in quota response: {e}",
            )
        return QuotaResult.ok(parse_quota_snapshot(data))

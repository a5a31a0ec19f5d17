# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Mirrowel

"""
Terminal rendering for quota snapshots.

Uses rich for the table; no network or credential access happens here.
"""

import json
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from rich.markup import escape
from rich.table import Table

from quota_library.types import LimitStatus, QuotaLimit, QuotaReport, QuotaSnapshot


# =============================================================================
# DISPLAY CONFIGURATION
# =============================================================================

# Utilization above this fraction is shown as a warning
WARNING_THRESHOLD = 0.8
EXCEEDED_THRESHOLD = 1.0

# Known windows, shown first and in this order
KNOWN_LIMIT_LABELS = {
    "five_hour": "5-Hour Cap",
    "seven_day": "7-Day Cap",
}

STATUS_STYLES = {
    LimitStatus.OK: "green",
    LimitStatus.WARNING: "yellow",
    LimitStatus.EXCEEDED: "red",
}

# (seconds, suffix) from largest to smallest
_COUNTDOWN_UNITS: Tuple[Tuple[int, str], ...] = (
    (86400, "d"),
    (3600, "h"),
    (60, "m"),
    (1, "s"),
)

# =============================================================================


def classify_utilization(utilization: float) -> LimitStatus:
    """OK up to 80%, Warning above that, Exceeded from 100%."""
    if utilization >= EXCEEDED_THRESHOLD:
        return LimitStatus.EXCEEDED
    if utilization > WARNING_THRESHOLD:
        return LimitStatus.WARNING
    return LimitStatus.OK


def format_percent(utilization: float) -> str:
    """Format a utilization fraction as a percentage (e.g. 0.425 -> 42.5%)."""
    return f"{utilization * 100:.1f}%"


def format_resets_in(
    resets_at: Optional[datetime], now: Optional[datetime] = None
) -> str:
    """
    Format the time until a window resets, using its largest unit.

    Examples: ``3h``, ``2d``, ``45m``, ``12s``. Returns ``Now`` when the
    reset time is not in the future and ``-`` when it is unknown.
    """
    if resets_at is None:
        return "-"
    now = now or datetime.now(timezone.utc)
    remaining = (resets_at - now).total_seconds()
    if remaining <= 0:
        return "Now"
    for unit_seconds, suffix in _COUNTDOWN_UNITS:
        if remaining >= unit_seconds:
            return f"{int(remaining // unit_seconds)}{suffix}"
    return "<1s"


def limit_label(name: str) -> str:
    """Human-readable label for a window key (e.g. seven_day_opus -> Seven Day Opus)."""
    if name in KNOWN_LIMIT_LABELS:
        return KNOWN_LIMIT_LABELS[name]
    return name.replace("_", " ").strip().title() or name


def ordered_limits(snapshot: QuotaSnapshot) -> List[Tuple[str, QuotaLimit]]:
    """Known windows first, then any others in response order."""
    present = snapshot.present_limits()
    ordered = [(name, present[name]) for name in KNOWN_LIMIT_LABELS if name in present]
    ordered.extend(
        (name, limit) for name, limit in present.items() if name not in KNOWN_LIMIT_LABELS
    )
    return ordered


def build_quota_table(
    snapshot: QuotaSnapshot, now: Optional[datetime] = None
) -> Table:
    table = Table(show_header=True, header_style="bold", padding=(0, 1))
    table.add_column("Limit Type", style="cyan")
    table.add_column("Utilization", justify="right")
    table.add_column("Status")
    table.add_column("Resets In", justify="right")

    for name, limit in ordered_limits(snapshot):
        status = classify_utilization(limit.utilization)
        table.add_row(
            escape(limit_label(name)),
            format_percent(limit.utilization),
            f"[{STATUS_STYLES[status]}]{status.value}[/{STATUS_STYLES[status]}]",
            format_resets_in(limit.resets_at, now),
        )
    return table


def snapshot_to_dict(report: QuotaReport) -> Dict[str, Any]:
    limits: Dict[str, Any] = {}
    for name, limit in report.snapshot.limits.items():
        if limit is None:
            limits[name] = None
            continue
        limits[name] = {
            "utilization": limit.utilization,
            "resets_at": limit.resets_at.isoformat() if limit.resets_at else None,
            "status": classify_utilization(limit.utilization).value,
        }
    return {
        "limits": limits,
        "source": report.source.value,
        "attempts_used": report.attempts_used,
        "raw": report.snapshot.raw,
    }


def snapshot_to_json(report: QuotaReport) -> str:
    return json.dumps(snapshot_to_dict(report), indent=2)

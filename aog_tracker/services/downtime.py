"""
Milestone-based downtime decomposition.

Pure functions: no database access, no side effects. Given an event (or any
object exposing the milestone attributes) they split total downtime into
three independently attributable buckets:

    procurement  = issued_back_at − procurement_requested_at
    ops          = up_and_running_at − test_start_at
    technical    = total − procurement − ops   (floored at 0)

Total runs from ``reported_at`` (or ``detected_at``) to ``up_and_running_at``
(or ``cleared_at``, or now for open events). Events that carry none of the
milestone pairs are *legacy*: their total is kept but every bucket is 0, and
aggregates report the hours separately as legacy downtime.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from aog_tracker.core.exceptions import InvalidTimestampOrderError, ValidationError
from aog_tracker.models.aog import MILESTONE_ORDER, OPS_PAIR, PROCUREMENT_PAIR, TECHNICAL_PAIR
from aog_tracker.utils.helpers import as_utc, hours_between, utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DowntimeBreakdown:
    total_hours: float
    technical_hours: float
    procurement_hours: float
    ops_hours: float
    is_legacy: bool
    is_open: bool

    def to_dict(self):
        return {
            "total_hours": self.total_hours,
            "technical_hours": self.technical_hours,
            "procurement_hours": self.procurement_hours,
            "ops_hours": self.ops_hours,
            "is_legacy": self.is_legacy,
            "is_open": self.is_open,
        }


def _pair(event, pair):
    start, end = (getattr(event, f, None) for f in pair)
    if start is None or end is None:
        return None
    return start, end


def is_legacy(event) -> bool:
    return not (_pair(event, PROCUREMENT_PAIR) or _pair(event, OPS_PAIR) or _pair(event, TECHNICAL_PAIR))


def compute_downtime(event, now: datetime | None = None) -> DowntimeBreakdown:
    """Decompose one event's downtime into technical / procurement / ops hours."""
    now = as_utc(now) if now else utcnow()

    start = event.reported_at or event.detected_at
    end = event.up_and_running_at or event.cleared_at
    is_open = end is None
    if is_open:
        end = now

    total = max(0.0, hours_between(start, end))

    if is_legacy(event):
        return DowntimeBreakdown(
            total_hours=round(total, 2),
            technical_hours=0.0,
            procurement_hours=0.0,
            ops_hours=0.0,
            is_legacy=True,
            is_open=is_open,
        )

    procurement = 0.0
    proc = _pair(event, PROCUREMENT_PAIR)
    if proc:
        procurement = max(0.0, hours_between(*proc))

    ops = 0.0
    ops_pair = _pair(event, OPS_PAIR)
    if ops_pair:
        ops = max(0.0, hours_between(*ops_pair))

    total = round(total, 2)
    procurement = round(procurement, 2)
    ops = round(ops, 2)
    # Buckets are rounded before subtraction so they add back up to total
    technical = max(0.0, round(total - procurement - ops, 2))

    return DowntimeBreakdown(
        total_hours=total,
        technical_hours=technical,
        procurement_hours=procurement,
        ops_hours=ops,
        is_legacy=False,
        is_open=is_open,
    )


# ── Write-time validation ────────────────────────────────────────────────────


def validate_milestone_order(milestones: dict) -> None:
    """Reject milestone sets whose non-null values are not non-decreasing.

    ``milestones`` maps milestone field names to datetimes (missing keys and
    None values are skipped). Raises InvalidTimestampOrderError naming the
    first offending field and the predecessor it precedes.
    """
    prev_field, prev_value = None, None
    for field in MILESTONE_ORDER:
        value = milestones.get(field)
        if value is None:
            continue
        value = as_utc(value)
        if prev_value is not None and value < prev_value:
            raise InvalidTimestampOrderError(field, prev_field, value, prev_value)
        prev_field, prev_value = field, value


def validate_cleared_after_detected(detected_at, cleared_at) -> None:
    if detected_at is None or cleared_at is None:
        return
    if as_utc(cleared_at) < as_utc(detected_at):
        raise ValidationError(
            "cleared_at must be on or after detected_at",
            details={
                "detected_at": as_utc(detected_at).isoformat(),
                "cleared_at": as_utc(cleared_at).isoformat(),
            },
        )

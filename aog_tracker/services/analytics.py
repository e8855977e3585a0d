"""
AOG analytics engine.

Stateless aggregations over the events selected by an EventFilter. Events are
re-read through the event store on every call and decomposed with
``downtime.compute_downtime``; nothing is cached. Empty selections degrade to
zeros, empty lists and ``has_data = False``, never to an error.

Functions:
    bucket_summary              technical / procurement / ops totals, per aircraft
    category_breakdown          events and hours per category
    location_breakdown          events per ICAO station
    duration_distribution       < 4h, 4-24h, 1-3 days, > 3 days
    downtime_by_responsibility  events and hours per responsible party
    aircraft_reliability        most reliable / needs attention top lists
    monthly_trend               per-month counts and hours + moving average
    forecast                    linear projection of monthly downtime
    stage_breakdown             events per status and blocking reason
    bottleneck_analytics        average hours spent in each status
    data_quality                milestone completeness score
    insights                    rule-based findings + data quality
"""

from __future__ import annotations

import logging
import math
from collections import Counter, defaultdict
from datetime import datetime

from aog_tracker.models.aog import BLOCKING_STATUSES, CLEARING_STATUSES
from aog_tracker.services import aircraft_registry, event_store
from aog_tracker.services.downtime import compute_downtime
from aog_tracker.utils.helpers import as_utc, hours_between, utcnow

logger = logging.getLogger(__name__)

BUCKETS = ("technical", "procurement", "ops")

# (label, lower bound inclusive, upper bound exclusive) in hours
DURATION_RANGES = (
    ("< 4h", 0.0, 4.0),
    ("4-24h", 4.0, 24.0),
    ("1-3 days", 24.0, 72.0),
    ("> 3 days", 72.0, math.inf),
)

MOVING_AVERAGE_WINDOW = 3
CONFIDENCE_Z = 1.96

# Insight thresholds
HIGH_RISK_FACTOR = 2.0
PROCUREMENT_SHARE_THRESHOLD = 0.5
RECURRING_DEFECT_MIN = 3
COST_SPIKE_FACTOR = 1.5
IMPROVEMENT_THRESHOLD = 0.2
DATA_QUALITY_THRESHOLD = 70.0


def _pct(part: float, whole: float) -> float:
    return round(part / whole * 100, 1) if whole else 0.0


def _avg(total: float, count: int) -> float:
    return round(total / count, 2) if count else 0.0


def _shares(parts: dict[str, float]) -> dict[str, float]:
    """Percentages to one decimal that add up to exactly 100 (largest remainder)."""
    whole = sum(parts.values())
    if not whole:
        return dict.fromkeys(parts, 0.0)
    exact = {k: v / whole * 1000 for k, v in parts.items()}
    tenths = {k: math.floor(v) for k, v in exact.items()}
    short = 1000 - sum(tenths.values())
    for k in sorted(exact, key=lambda k: exact[k] - tenths[k], reverse=True)[:short]:
        tenths[k] += 1
    return {k: t / 10 for k, t in tenths.items()}


def _month_key(value: datetime) -> str:
    return as_utc(value).strftime("%Y-%m")


def _next_month(key: str, step: int = 1) -> str:
    year, month = (int(p) for p in key.split("-"))
    index = year * 12 + (month - 1) + step
    return f"{index // 12:04d}-{index % 12 + 1:02d}"


def _load(flt, now):
    """Return [(event, breakdown)] for the filter."""
    now = as_utc(now) if now else utcnow()
    events = event_store.find_events(flt)
    return [(e, compute_downtime(e, now)) for e in events], now


# ═════════════════════════════════════════════════════════════════════════════
# Downtime buckets
# ═════════════════════════════════════════════════════════════════════════════


def bucket_summary(flt=None, now=None) -> dict:
    rows, now = _load(flt, now)

    totals = dict.fromkeys(BUCKETS, 0.0)
    legacy_hours = 0.0
    legacy_count = 0
    total_hours = 0.0
    per_aircraft: dict[int, dict] = {}

    for event, bd in rows:
        total_hours += bd.total_hours
        ac = per_aircraft.setdefault(event.aircraft_id, {
            "aircraft_id": event.aircraft_id,
            "event_count": 0,
            "technical_hours": 0.0,
            "procurement_hours": 0.0,
            "ops_hours": 0.0,
            "legacy_hours": 0.0,
            "total_hours": 0.0,
        })
        ac["event_count"] += 1
        ac["total_hours"] += bd.total_hours
        if bd.is_legacy:
            legacy_count += 1
            legacy_hours += bd.total_hours
            ac["legacy_hours"] += bd.total_hours
            continue
        for bucket in BUCKETS:
            hours = getattr(bd, f"{bucket}_hours")
            totals[bucket] += hours
            ac[f"{bucket}_hours"] += hours

    bucketed_events = len(rows) - legacy_count
    shares = _shares(totals)

    registrations = aircraft_registry.registrations_for(per_aircraft)
    by_aircraft = []
    for aircraft_id, ac in per_aircraft.items():
        ac["registration"] = registrations.get(aircraft_id)
        for key in ("technical_hours", "procurement_hours", "ops_hours", "legacy_hours", "total_hours"):
            ac[key] = round(ac[key], 2)
        by_aircraft.append(ac)
    by_aircraft.sort(key=lambda a: a["total_hours"], reverse=True)

    return {
        "summary": {
            "total_events": len(rows),
            "active_events": sum(1 for e, _ in rows if e.is_active),
            "total_downtime_hours": round(total_hours, 2),
            "average_downtime_hours": _avg(total_hours, len(rows)),
            "legacy_event_count": legacy_count,
            "legacy_downtime_hours": round(legacy_hours, 2),
        },
        "buckets": {
            bucket: {
                "total_hours": round(totals[bucket], 2),
                "average_hours": _avg(totals[bucket], bucketed_events),
                "percentage": shares[bucket],
            }
            for bucket in BUCKETS
        },
        "by_aircraft": by_aircraft,
        "has_data": bool(rows),
    }


# ═════════════════════════════════════════════════════════════════════════════
# Distributions
# ═════════════════════════════════════════════════════════════════════════════


def category_breakdown(flt=None, now=None) -> list[dict]:
    rows, _ = _load(flt, now)
    counts: Counter = Counter()
    hours: dict[str, float] = defaultdict(float)
    for event, bd in rows:
        counts[event.category] += 1
        hours[event.category] += bd.total_hours
    total = len(rows)
    return [
        {
            "category": category,
            "count": count,
            "percentage": _pct(count, total),
            "total_hours": round(hours[category], 2),
        }
        for category, count in counts.most_common()
    ]


def location_breakdown(flt=None, limit: int = 10) -> list[dict]:
    events = event_store.find_events(flt)
    counts = Counter((e.location or "Unknown") for e in events)
    total = len(events)
    return [
        {"location": location, "count": count, "percentage": _pct(count, total)}
        for location, count in counts.most_common(limit)
    ]


def duration_distribution(flt=None, now=None) -> list[dict]:
    rows, _ = _load(flt, now)
    counts = dict.fromkeys((label for label, _, _ in DURATION_RANGES), 0)
    for _, bd in rows:
        for label, low, high in DURATION_RANGES:
            if low <= bd.total_hours < high:
                counts[label] += 1
                break
    total = len(rows)
    return [
        {"range": label, "count": counts[label], "percentage": _pct(counts[label], total)}
        for label, _, _ in DURATION_RANGES
    ]


def downtime_by_responsibility(flt=None, now=None) -> list[dict]:
    rows, _ = _load(flt, now)
    grouped: dict[str, dict] = {}
    for event, bd in rows:
        entry = grouped.setdefault(event.responsible_party, {
            "responsible_party": event.responsible_party,
            "event_count": 0,
            "total_downtime_hours": 0.0,
        })
        entry["event_count"] += 1
        entry["total_downtime_hours"] += bd.total_hours
    result = sorted(grouped.values(), key=lambda r: r["total_downtime_hours"], reverse=True)
    for entry in result:
        entry["total_downtime_hours"] = round(entry["total_downtime_hours"], 2)
    return result


def aircraft_reliability(flt=None, now=None, limit: int = 3) -> dict:
    """Rank aircraft with at least one event by total downtime.

    Ties on hours are broken by event count (fewer events ranks as more
    reliable).
    """
    rows, _ = _load(flt, now)
    grouped: dict[int, dict] = {}
    for event, bd in rows:
        entry = grouped.setdefault(event.aircraft_id, {
            "aircraft_id": event.aircraft_id,
            "event_count": 0,
            "total_hours": 0.0,
        })
        entry["event_count"] += 1
        entry["total_hours"] += bd.total_hours

    registrations = aircraft_registry.registrations_for(grouped)
    stats = []
    for aircraft_id, entry in grouped.items():
        entry["total_hours"] = round(entry["total_hours"], 2)
        entry["registration"] = registrations.get(aircraft_id)
        stats.append(entry)

    most_reliable = sorted(stats, key=lambda s: (s["total_hours"], s["event_count"]))[:limit]
    needs_attention = sorted(stats, key=lambda s: (-s["total_hours"], -s["event_count"]))[:limit]
    return {"most_reliable": most_reliable, "needs_attention": needs_attention}


# ═════════════════════════════════════════════════════════════════════════════
# Trend & forecast
# ═════════════════════════════════════════════════════════════════════════════


def _series_end(flt, now: datetime) -> str:
    """Last month of a trend: the current month, or the filter's end month if earlier."""
    end = _month_key(now)
    if flt is not None and flt.end_date is not None:
        end = min(end, flt.end_date.strftime("%Y-%m"))
    return end


def _monthly_points(rows, through: str | None = None) -> list[dict]:
    """Per-month totals by ``detected_at`` month, gap months zero-filled.

    The series runs from the first month with data to ``through`` (or to the
    last month with data when ``through`` is earlier or unset).
    """
    empty = {
        "event_count": 0, "total_downtime_hours": 0.0, "total_cost": 0.0,
        "bucketed_hours": 0.0, "procurement_hours": 0.0,
    }
    grouped: dict[str, dict] = {}
    for event, bd in rows:
        key = _month_key(event.detected_at)
        entry = grouped.setdefault(key, dict(empty))
        entry["event_count"] += 1
        entry["total_downtime_hours"] += bd.total_hours
        entry["total_cost"] += event.total_actual_cost
        if not bd.is_legacy:
            entry["bucketed_hours"] += bd.total_hours
            entry["procurement_hours"] += bd.procurement_hours
    if not grouped:
        return []

    points = []
    month, last = min(grouped), max(grouped)
    if through and through > last:
        last = through
    while month <= last:
        entry = grouped.get(month, empty)
        points.append({
            "month": month,
            "event_count": entry["event_count"],
            "total_downtime_hours": round(entry["total_downtime_hours"], 2),
            "average_downtime_hours": _avg(entry["total_downtime_hours"], entry["event_count"]),
            "total_cost": round(entry["total_cost"], 2),
            "bucketed_hours": round(entry["bucketed_hours"], 2),
            "procurement_hours": round(entry["procurement_hours"], 2),
        })
        month = _next_month(month)
    return points


def _moving_average(values: list[float], window: int = MOVING_AVERAGE_WINDOW) -> list[float]:
    result = []
    for i in range(len(values)):
        chunk = values[max(0, i - window + 1): i + 1]
        result.append(round(sum(chunk) / len(chunk), 2))
    return result


def monthly_trend(flt=None, now=None) -> dict:
    rows, now = _load(flt, now)
    points = _monthly_points(rows, _series_end(flt, now))
    averages = _moving_average([p["total_downtime_hours"] for p in points])
    return {
        "trends": [
            {k: p[k] for k in ("month", "event_count", "total_downtime_hours", "average_downtime_hours")}
            for p in points
        ],
        "moving_average": [
            {"month": p["month"], "value": avg} for p, avg in zip(points, averages)
        ],
        "has_data": bool(points),
    }


def _linear_fit(values: list[float]) -> tuple[float, float, float]:
    """Least squares y = intercept + slope·x over x = 0..n-1.

    Returns (slope, intercept, residual standard error).
    """
    n = len(values)
    x_mean = (n - 1) / 2
    y_mean = sum(values) / n
    sxx = sum((x - x_mean) ** 2 for x in range(n))
    sxy = sum((x - x_mean) * (y - y_mean) for x, y in enumerate(values))
    slope = sxy / sxx if sxx else 0.0
    intercept = y_mean - slope * x_mean
    residuals = [y - (intercept + slope * x) for x, y in enumerate(values)]
    dof = n - 2
    std_err = math.sqrt(sum(r * r for r in residuals) / dof) if dof > 0 else 0.0
    return slope, intercept, std_err


def forecast(flt=None, history_months: int = 12, horizon_months: int = 3, now=None) -> dict:
    """Project monthly downtime ``horizon_months`` ahead.

    Uses a least-squares line over the trailing ``history_months`` months of
    the monthly trend with a 95 % band of ±1.96 residual standard errors. The
    trend runs through the current month, so quiet recent months count as 0 h
    and the projection starts after the current month.
    Fewer than three months of history give a flat projection at the mean.
    """
    rows, now = _load(flt, now)
    series = _monthly_points(rows, _series_end(flt, now))
    points = series[-history_months:] if history_months > 0 else []
    historical = [{"month": p["month"], "actual": p["total_downtime_hours"]} for p in points]
    if not points:
        return {"historical": [], "forecast": [], "method": None, "has_data": False}

    values = [p["total_downtime_hours"] for p in points]
    last_month = points[-1]["month"]
    n = len(values)

    predictions = []
    if n < 3:
        mean = round(sum(values) / n, 2)
        method = "mean"
        for step in range(1, horizon_months + 1):
            predictions.append({
                "month": _next_month(last_month, step),
                "predicted": mean,
                "confidence_interval": {"lower": mean, "upper": mean},
            })
    else:
        slope, intercept, std_err = _linear_fit(values)
        method = "linear_regression"
        margin = CONFIDENCE_Z * std_err
        for step in range(1, horizon_months + 1):
            x = n - 1 + step
            predicted = max(0.0, intercept + slope * x)
            predictions.append({
                "month": _next_month(last_month, step),
                "predicted": round(predicted, 2),
                "confidence_interval": {
                    "lower": round(max(0.0, predicted - margin), 2),
                    "upper": round(predicted + margin, 2),
                },
            })

    return {"historical": historical, "forecast": predictions, "method": method, "has_data": True}


# ═════════════════════════════════════════════════════════════════════════════
# Workflow stages
# ═════════════════════════════════════════════════════════════════════════════


def stage_breakdown(flt=None) -> dict:
    events = event_store.find_events(flt)
    by_status = Counter(e.current_status for e in events)
    active = [e for e in events if e.is_active]
    blocked = [e for e in active if e.current_status in BLOCKING_STATUSES]
    by_reason = Counter(e.blocking_reason or "Unspecified" for e in blocked)
    return {
        "by_status": [{"status": s, "count": c} for s, c in by_status.most_common()],
        "by_blocking_reason": [{"blocking_reason": r, "count": c} for r, c in by_reason.most_common()],
        "total_active": len(active),
        "total_blocked": len(blocked),
    }


def bottleneck_analytics(flt=None, now=None) -> list[dict]:
    """Average hours spent in each status, from consecutive history entries.

    The initial status runs from ``reported_at`` (or ``detected_at``) to the
    first transition. The current status of an active event is measured to
    now; clearing statuses are not downtime and are not measured.
    """
    events = event_store.find_events(flt)
    now = as_utc(now) if now else utcnow()
    durations: dict[str, list[float]] = defaultdict(list)

    for event in events:
        entered_status = None
        entered_at = event.reported_at or event.detected_at
        history = sorted(event.status_history, key=lambda h: (as_utc(h.changed_at), h.id))
        if history:
            entered_status = history[0].from_status
        else:
            entered_status = event.current_status

        for entry in history:
            durations[entered_status].append(max(0.0, hours_between(entered_at, entry.changed_at)))
            entered_status, entered_at = entry.to_status, entry.changed_at

        if event.is_active and entered_status not in CLEARING_STATUSES:
            durations[entered_status].append(max(0.0, hours_between(entered_at, now)))

    result = [
        {
            "status": status,
            "average_hours": _avg(sum(values), len(values)),
            "total_hours": round(sum(values), 2),
            "occurrences": len(values),
        }
        for status, values in durations.items()
        if status not in CLEARING_STATUSES
    ]
    result.sort(key=lambda r: r["average_hours"], reverse=True)
    return result


# ═════════════════════════════════════════════════════════════════════════════
# Data quality & insights
# ═════════════════════════════════════════════════════════════════════════════


def _is_complete(event) -> bool:
    return (
        (event.reported_at or event.detected_at) is not None
        and event.installation_complete_at is not None
        and (event.up_and_running_at or event.cleared_at) is not None
    )


def _data_quality(events) -> dict:
    total = len(events)
    complete = sum(1 for e in events if _is_complete(e))
    return {
        "completeness_percentage": _pct(complete, total),
        "complete_event_count": complete,
        "legacy_event_count": sum(1 for e in events if e.is_legacy),
        "total_events": total,
        "has_data": bool(total),
    }


def data_quality(flt=None) -> dict:
    return _data_quality(event_store.find_events(flt))


def _insight(id_, type_, title, description, metric=None, recommendation=None) -> dict:
    return {
        "id": id_,
        "type": type_,
        "title": title,
        "description": description,
        "metric": metric,
        "recommendation": recommendation,
    }


def insights(flt=None, now=None) -> dict:
    rows, now = _load(flt, now)
    events = [e for e, _ in rows]
    quality = _data_quality(events)
    found: list[dict] = []
    if not rows:
        return {"insights": found, "data_quality": quality}

    # ── High-risk aircraft ───────────────────────────────────────────────
    per_aircraft: dict[int, float] = defaultdict(float)
    for event, bd in rows:
        per_aircraft[event.aircraft_id] += bd.total_hours
    if len(per_aircraft) >= 2:
        fleet_avg = sum(per_aircraft.values()) / len(per_aircraft)
        registrations = aircraft_registry.registrations_for(per_aircraft)
        for aircraft_id, hours in sorted(per_aircraft.items(), key=lambda kv: kv[1], reverse=True):
            if fleet_avg and hours >= HIGH_RISK_FACTOR * fleet_avg:
                label = registrations.get(aircraft_id) or f"Aircraft {aircraft_id}"
                found.append(_insight(
                    f"high-risk-aircraft-{aircraft_id}", "warning",
                    "High-risk aircraft",
                    f"{label} accumulated {hours:.1f}h of downtime, "
                    f"{hours / fleet_avg:.1f}× the fleet average of {fleet_avg:.1f}h.",
                    metric=round(hours, 2),
                    recommendation="Review the recurring defects and maintenance programme for this tail.",
                ))

    points = _monthly_points(rows)

    # ── Procurement bottleneck ───────────────────────────────────────────
    bucketed = [bd for _, bd in rows if not bd.is_legacy]
    bucket_total = sum(bd.total_hours for bd in bucketed)
    procurement = sum(bd.procurement_hours for bd in bucketed)
    latest = next((p for p in reversed(points) if p["bucketed_hours"] > 0), None)
    overall_share = procurement / bucket_total if bucket_total else 0.0
    latest_share = latest["procurement_hours"] / latest["bucketed_hours"] if latest else 0.0
    if latest_share > PROCUREMENT_SHARE_THRESHOLD:
        share, scope = latest_share * 100, f"in {latest['month']}"
    else:
        share, scope = overall_share * 100, "across the selection"
    if share > PROCUREMENT_SHARE_THRESHOLD * 100:
        found.append(_insight(
            "procurement-bottleneck", "warning",
            "Procurement bottleneck",
            f"Procurement accounts for {share:.0f}% of attributable downtime {scope}.",
            metric=round(share, 1),
            recommendation="Pre-position critical spares and shorten finance approval for AOG orders.",
        ))

    # ── Recurring defects ────────────────────────────────────────────────
    defects = Counter(" ".join(e.reason_code.lower().split()) for e in events if e.reason_code)
    for reason, count in defects.most_common():
        if count < RECURRING_DEFECT_MIN:
            break
        found.append(_insight(
            f"recurring-defect-{len(found)}", "warning",
            "Recurring defect",
            f"'{reason}' was reported {count} times.",
            metric=count,
            recommendation="Open a reliability investigation for this defect.",
        ))

    # ── Cost spike ───────────────────────────────────────────────────────
    costs = [p["total_cost"] for p in points]
    if len(costs) >= 2:
        previous = [c for c in costs[-4:-1] if c > 0]
        if previous and costs[-1] > 0:
            baseline = sum(previous) / len(previous)
            if costs[-1] > COST_SPIKE_FACTOR * baseline:
                found.append(_insight(
                    "cost-spike", "warning",
                    "Cost spike",
                    f"{points[-1]['month']} cost {costs[-1]:.2f} against a trailing "
                    f"average of {baseline:.2f}.",
                    metric=round(costs[-1], 2),
                    recommendation="Check for one-off expedite fees or vendor pricing changes.",
                ))

    # ── Improving trend ──────────────────────────────────────────────────
    if len(points) >= 2:
        prev_hours = points[-2]["total_downtime_hours"]
        last_hours = points[-1]["total_downtime_hours"]
        if prev_hours > 0 and last_hours <= prev_hours * (1 - IMPROVEMENT_THRESHOLD):
            drop = (prev_hours - last_hours) / prev_hours * 100
            found.append(_insight(
                "improving-trend", "success",
                "Improving trend",
                f"Downtime in {points[-1]['month']} fell {drop:.0f}% compared with {points[-2]['month']}.",
                metric=round(drop, 1),
            ))

    # ── Data quality ─────────────────────────────────────────────────────
    if quality["completeness_percentage"] < DATA_QUALITY_THRESHOLD:
        found.append(_insight(
            "data-quality", "info",
            "Incomplete milestone data",
            f"Only {quality['completeness_percentage']:.0f}% of events have all key milestones; "
            f"{quality['legacy_event_count']} are legacy records.",
            metric=quality["completeness_percentage"],
            recommendation="Record installation and return-to-service milestones on every event.",
        ))

    return {"insights": found, "data_quality": quality}

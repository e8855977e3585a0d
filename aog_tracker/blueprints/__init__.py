"""
AOG Tracker
Blueprint registry and shared request helpers.
"""

from flask import request

from aog_tracker.services.event_store import EventFilter
from aog_tracker.utils.errors import E, api_error
from aog_tracker.utils.helpers import parse_date


def paginate_items(items, default_limit=200, max_limit=1000):
    """Apply limit/offset pagination to an already-loaded list.

    Query params:
        limit  — max items (default 200, capped at max_limit)
        offset — starting position (default 0)

    Returns:
        (page_items, total_count)
    """
    total = len(items)
    try:
        limit = min(int(request.args.get("limit", default_limit)), max_limit)
    except (ValueError, TypeError):
        limit = default_limit
    try:
        offset = max(int(request.args.get("offset", 0)), 0)
    except (ValueError, TypeError):
        offset = 0
    return items[offset:offset + limit], total


def filter_from_args():
    """Build an EventFilter from query parameters.

    Returns:
        (EventFilter, None) on success, (None, error_response) on bad input.
    """
    args = request.args
    start_date = parse_date(args.get("start_date"))
    end_date = parse_date(args.get("end_date"))
    if args.get("start_date") and start_date is None:
        return None, api_error(E.VALIDATION_INVALID, "start_date must be YYYY-MM-DD")
    if args.get("end_date") and end_date is None:
        return None, api_error(E.VALIDATION_INVALID, "end_date must be YYYY-MM-DD")
    if start_date and end_date and start_date > end_date:
        return None, api_error(E.VALIDATION_INVALID, "start_date must be on or before end_date")

    active = args.get("active")
    if active is not None:
        active = active.lower() in ("1", "true", "yes")

    return EventFilter(
        start_date=start_date,
        end_date=end_date,
        aircraft_id=args.get("aircraft_id", type=int),
        fleet_group=args.get("fleet_group") or None,
        status=args.get("status") or None,
        category=args.get("category") or None,
        active=active,
    ), None

"""
Rate limiting configuration.

Applies per-blueprint rate limits using Flask-Limiter. The Limiter instance
is created in aog_tracker/__init__.py with no default limits; this module
applies limits per route category.

Usage:
    from aog_tracker.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

logger = logging.getLogger(__name__)

READ_LIMIT = "300/minute"


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits (per remote IP):
        - AOG event endpoints:  RATELIMIT_WRITE_LIMIT (default 120 per minute)
        - Analytics endpoints:  300/minute (aggregations re-read every event)
        - Health check:         exempt

    Rate limiting is disabled in testing mode.
    """
    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    write_limit = app.config.get("RATELIMIT_WRITE_LIMIT", "120 per minute")

    bp = app.blueprints.get("aog")
    if bp:
        limiter.limit(write_limit)(bp)

    bp = app.blueprints.get("aog_analytics")
    if bp:
        limiter.limit(READ_LIMIT)(bp)

    bp = app.blueprints.get("health")
    if bp:
        limiter.exempt(bp)

    app.logger.info("Rate limiter configured — events: %s, analytics: %s", write_limit, READ_LIMIT)

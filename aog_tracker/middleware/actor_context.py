"""
Actor context middleware.

Authentication happens upstream; the identity proxy forwards the acting
user in ``X-Actor-Id`` / ``X-Actor-Role``. This hook copies them into
``g.actor_id`` / ``g.actor_role`` for the history and audit records.
Requests without the headers act as ``system``.
"""

import logging

from flask import g, request

logger = logging.getLogger(__name__)

DEFAULT_ACTOR = "system"
MAX_ACTOR_LEN = 100


def init_actor_context(app):
    """Register actor context middleware as a before_request hook."""

    @app.before_request
    def _actor_context():
        actor_id = (request.headers.get("X-Actor-Id") or "").strip()[:MAX_ACTOR_LEN]
        actor_role = (request.headers.get("X-Actor-Role") or "").strip()[:50]
        g.actor_id = actor_id or DEFAULT_ACTOR
        g.actor_role = actor_role or DEFAULT_ACTOR


def current_actor() -> tuple[str, str]:
    """Return (actor_id, actor_role) for the current request."""
    return getattr(g, "actor_id", DEFAULT_ACTOR), getattr(g, "actor_role", DEFAULT_ACTOR)

"""
Health probes.

    GET /api/v1/health/ready  liveness for the load balancer, no I/O
    GET /api/v1/health/live   store round-trip + budget gateway mode; 503 when degraded
"""

import logging
import time

from flask import Blueprint, current_app, jsonify
from sqlalchemy.exc import SQLAlchemyError

from aog_tracker.models import db

logger = logging.getLogger(__name__)

health_bp = Blueprint("health", __name__, url_prefix="/api/v1/health")


def _check_store() -> dict:
    t0 = time.perf_counter()
    try:
        db.session.execute(db.text("SELECT 1"))
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.error("Health check: event store unreachable: %s", exc)
        return {"status": "error", "detail": str(exc)}
    return {"status": "ok", "latency_ms": round((time.perf_counter() - t0) * 1000, 1)}


def _check_budget() -> dict:
    url = current_app.config.get("BUDGET_SERVICE_URL") or ""
    if url:
        return {"status": "configured", "mode": "remote", "timeout_s": current_app.config.get("BUDGET_SERVICE_TIMEOUT")}
    return {"status": "ok", "mode": "local"}


@health_bp.route("/ready", methods=["GET"])
def ready():
    return jsonify({"status": "ok"}), 200


@health_bp.route("/live", methods=["GET"])
def live():
    checks = {
        "database": _check_store(),
        "budget_service": _check_budget(),
    }
    healthy = checks["database"]["status"] == "ok"
    return jsonify({"status": "ok" if healthy else "degraded", "checks": checks}), 200 if healthy else 503

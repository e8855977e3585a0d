"""
AOG Tracker
AOG Analytics Blueprint.

Read-only aggregations over AOG events. Every endpoint accepts the common
filter query parameters: start_date, end_date (YYYY-MM-DD, on detected_at),
aircraft_id, fleet_group.

Routes:
    GET /api/v1/aog-events/analytics/buckets
    GET /api/v1/aog-events/analytics/categories
    GET /api/v1/aog-events/analytics/locations
    GET /api/v1/aog-events/analytics/durations
    GET /api/v1/aog-events/analytics/responsibility
    GET /api/v1/aog-events/analytics/reliability
    GET /api/v1/aog-events/analytics/monthly-trend
    GET /api/v1/aog-events/analytics/forecast
    GET /api/v1/aog-events/analytics/insights
    GET /api/v1/aog-events/analytics/data-quality
    GET /api/v1/aog-events/analytics/stages
    GET /api/v1/aog-events/analytics/bottlenecks
"""

from __future__ import annotations

import logging

from flask import Blueprint, current_app, jsonify, request
from werkzeug.exceptions import HTTPException

import aog_tracker.services.analytics as svc
from aog_tracker.blueprints import filter_from_args
from aog_tracker.core.exceptions import AOGError
from aog_tracker.utils.errors import E, api_error, domain_error

logger = logging.getLogger(__name__)

analytics_bp = Blueprint("aog_analytics", __name__, url_prefix="/api/v1/aog-events/analytics")


@analytics_bp.errorhandler(AOGError)
def _handle_domain_error(error: AOGError):
    return domain_error(error)


@analytics_bp.errorhandler(Exception)
def _handle_unexpected(error: Exception):
    if isinstance(error, HTTPException):
        return error
    logger.exception("Unexpected error in analytics_bp endpoint=%s", request.endpoint)
    return api_error(E.INTERNAL, "Internal server error")


def _bounded_int(name: str, default: int, low: int, high: int):
    value = request.args.get(name, default, type=int)
    if value is None or not low <= value <= high:
        return None, api_error(E.VALIDATION_INVALID, f"{name} must be between {low} and {high}")
    return value, None


@analytics_bp.route("/buckets", methods=["GET"])
def buckets():
    """Technical / procurement / ops downtime totals, averages and per-aircraft table."""
    flt, err = filter_from_args()
    if err:
        return err
    return jsonify(svc.bucket_summary(flt)), 200


@analytics_bp.route("/categories", methods=["GET"])
def categories():
    flt, err = filter_from_args()
    if err:
        return err
    return jsonify({"items": svc.category_breakdown(flt)}), 200


@analytics_bp.route("/locations", methods=["GET"])
def locations():
    flt, err = filter_from_args()
    if err:
        return err
    limit, err = _bounded_int("limit", 10, 1, 100)
    if err:
        return err
    return jsonify({"items": svc.location_breakdown(flt, limit=limit)}), 200


@analytics_bp.route("/durations", methods=["GET"])
def durations():
    flt, err = filter_from_args()
    if err:
        return err
    return jsonify({"items": svc.duration_distribution(flt)}), 200


@analytics_bp.route("/responsibility", methods=["GET"])
def responsibility():
    flt, err = filter_from_args()
    if err:
        return err
    return jsonify({"items": svc.downtime_by_responsibility(flt)}), 200


@analytics_bp.route("/reliability", methods=["GET"])
def reliability():
    flt, err = filter_from_args()
    if err:
        return err
    limit, err = _bounded_int("limit", 3, 1, 50)
    if err:
        return err
    return jsonify(svc.aircraft_reliability(flt, limit=limit)), 200


@analytics_bp.route("/monthly-trend", methods=["GET"])
def monthly_trend():
    flt, err = filter_from_args()
    if err:
        return err
    return jsonify(svc.monthly_trend(flt)), 200


@analytics_bp.route("/forecast", methods=["GET"])
def forecast():
    """Linear projection of monthly downtime with a 95 % band."""
    flt, err = filter_from_args()
    if err:
        return err
    history, err = _bounded_int("history_months", current_app.config.get("ANALYTICS_HISTORY_MONTHS", 12), 1, 60)
    if err:
        return err
    horizon, err = _bounded_int("months", current_app.config.get("ANALYTICS_FORECAST_MONTHS", 3), 1, 24)
    if err:
        return err
    return jsonify(svc.forecast(flt, history_months=history, horizon_months=horizon)), 200


@analytics_bp.route("/insights", methods=["GET"])
def insights():
    flt, err = filter_from_args()
    if err:
        return err
    return jsonify(svc.insights(flt)), 200


@analytics_bp.route("/data-quality", methods=["GET"])
def data_quality():
    flt, err = filter_from_args()
    if err:
        return err
    return jsonify(svc.data_quality(flt)), 200


@analytics_bp.route("/stages", methods=["GET"])
def stages():
    flt, err = filter_from_args()
    if err:
        return err
    return jsonify(svc.stage_breakdown(flt)), 200


@analytics_bp.route("/bottlenecks", methods=["GET"])
def bottlenecks():
    flt, err = filter_from_args()
    if err:
        return err
    return jsonify({"items": svc.bottleneck_analytics(flt)}), 200

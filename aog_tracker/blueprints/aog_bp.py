"""
AOG Tracker
AOG Events Blueprint.

HTTP boundary for the AOG event lifecycle: events, workflow transitions,
part requests, attachment metadata, costs and budget linkage.

Routes:
    GET    /api/v1/aog-events
    POST   /api/v1/aog-events
    GET    /api/v1/aog-events/active
    GET    /api/v1/aog-events/active/count
    GET    /api/v1/aog-events/statuses/<status>/allowed-transitions
    GET    /api/v1/aog-events/<event_id>
    PUT    /api/v1/aog-events/<event_id>
    DELETE /api/v1/aog-events/<event_id>
    POST   /api/v1/aog-events/<event_id>/transitions
    GET    /api/v1/aog-events/<event_id>/history
    POST   /api/v1/aog-events/<event_id>/parts
    PUT    /api/v1/aog-events/<event_id>/parts/<part_id>
    POST   /api/v1/aog-events/<event_id>/parts/<part_id>/advance
    POST   /api/v1/aog-events/<event_id>/attachments
    DELETE /api/v1/aog-events/<event_id>/attachments/<attachment_id>
    PUT    /api/v1/aog-events/<event_id>/costs
    GET    /api/v1/aog-events/<event_id>/cost-audit
    PUT    /api/v1/aog-events/<event_id>/budget
    POST   /api/v1/aog-events/<event_id>/generate-actual-spend

The acting user is taken from g.actor_id / g.actor_role (actor_context middleware).
"""

from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request
from werkzeug.exceptions import HTTPException

import aog_tracker.services.aog_service as svc
from aog_tracker.blueprints import filter_from_args, paginate_items
from aog_tracker.core.exceptions import AOGError
from aog_tracker.middleware.actor_context import current_actor
from aog_tracker.models.aog import AOG_STATUSES, COST_FIELDS
from aog_tracker.services import cost_ledger, workflow
from aog_tracker.utils.errors import E, api_error, domain_error

logger = logging.getLogger(__name__)

aog_bp = Blueprint("aog", __name__, url_prefix="/api/v1/aog-events")


@aog_bp.errorhandler(AOGError)
def _handle_domain_error(error: AOGError):
    return domain_error(error)


@aog_bp.errorhandler(Exception)
def _handle_unexpected(error: Exception):
    if isinstance(error, HTTPException):
        return error
    logger.exception("Unexpected error in aog_bp endpoint=%s", request.endpoint)
    return api_error(E.INTERNAL, "Internal server error")


def _json_body():
    data = request.get_json(silent=True)
    if data is None:
        return None, api_error(E.VALIDATION_REQUIRED, "JSON body is required")
    if not isinstance(data, dict):
        return None, api_error(E.VALIDATION_INVALID, "JSON body must be an object")
    return data, None


def _expected_version(data: dict | None = None):
    value = (data or {}).get("version")
    if value is None:
        value = request.headers.get("If-Match")
    if value in (None, ""):
        return None
    try:
        return int(str(value).strip('"'))
    except ValueError:
        return None


# ═════════════════════════════════════════════════════════════════════════════
# Events
# ═════════════════════════════════════════════════════════════════════════════


@aog_bp.route("", methods=["GET"])
def list_events():
    """List AOG events with optional filters."""
    flt, err = filter_from_args()
    if err:
        return err
    items, total = paginate_items(svc.list_events(flt))
    return jsonify({"items": items, "total": total}), 200


@aog_bp.route("", methods=["POST"])
def create_event():
    """Create an AOG event in REPORTED status."""
    data, err = _json_body()
    if err:
        return err
    actor_id, _ = current_actor()
    return jsonify(svc.create_event(data, actor_id=actor_id)), 201


@aog_bp.route("/active", methods=["GET"])
def list_active_events():
    flt, err = filter_from_args()
    if err:
        return err
    items, total = paginate_items(svc.list_active_events(flt))
    return jsonify({"items": items, "total": total}), 200


@aog_bp.route("/active/count", methods=["GET"])
def count_active_events():
    flt, err = filter_from_args()
    if err:
        return err
    return jsonify({"count": svc.count_active_events(flt)}), 200


@aog_bp.route("/statuses/<status>/allowed-transitions", methods=["GET"])
def allowed_transitions(status: str):
    if status not in AOG_STATUSES:
        return api_error(E.NOT_FOUND, f"Unknown status {status}")
    return jsonify({
        "status": status,
        "allowed": workflow.get_allowed_transitions(status),
        "requires_blocking_reason": workflow.requires_blocking_reason(status),
    }), 200


@aog_bp.route("/<int:event_id>", methods=["GET"])
def get_event(event_id: int):
    return jsonify(svc.get_event(event_id)), 200


@aog_bp.route("/<int:event_id>", methods=["PUT"])
def update_event(event_id: int):
    """Partial update. Pass ``version`` (or If-Match) to guard against lost updates."""
    data, err = _json_body()
    if err:
        return err
    actor_id, _ = current_actor()
    expected = _expected_version(data)
    payload = {k: v for k, v in data.items() if k != "version"}
    return jsonify(svc.update_event(event_id, payload, actor_id=actor_id, expected_version=expected)), 200


@aog_bp.route("/<int:event_id>", methods=["DELETE"])
def delete_event(event_id: int):
    actor_id, _ = current_actor()
    svc.delete_event(event_id, actor_id=actor_id)
    return jsonify({"deleted": True, "id": event_id}), 200


# ═════════════════════════════════════════════════════════════════════════════
# Workflow
# ═════════════════════════════════════════════════════════════════════════════


@aog_bp.route("/<int:event_id>/transitions", methods=["POST"])
def transition_event(event_id: int):
    """Move the event to ``to_status`` along the allowed workflow graph."""
    data, err = _json_body()
    if err:
        return err
    to_status = str(data.get("to_status", "")).strip()
    if not to_status:
        return api_error(E.VALIDATION_REQUIRED, "to_status is required")
    metadata = data.get("metadata") or {}
    if not isinstance(metadata, dict):
        return api_error(E.VALIDATION_INVALID, "metadata must be an object")

    actor_id, actor_role = current_actor()
    result = workflow.transition_event(
        event_id,
        to_status,
        actor_id=actor_id,
        actor_role=actor_role,
        notes=data.get("notes"),
        blocking_reason=data.get("blocking_reason"),
        metadata=metadata,
        expected_version=_expected_version(data),
    )
    return jsonify(result), 200


@aog_bp.route("/<int:event_id>/history", methods=["GET"])
def status_history(event_id: int):
    items = workflow.get_status_history(event_id)
    return jsonify({"items": items, "total": len(items)}), 200


# ═════════════════════════════════════════════════════════════════════════════
# Part requests
# ═════════════════════════════════════════════════════════════════════════════


@aog_bp.route("/<int:event_id>/parts", methods=["POST"])
def add_part_request(event_id: int):
    data, err = _json_body()
    if err:
        return err
    actor_id, _ = current_actor()
    return jsonify(svc.add_part_request(event_id, data, actor_id=actor_id)), 201


@aog_bp.route("/<int:event_id>/parts/<int:part_id>", methods=["PUT"])
def update_part_request(event_id: int, part_id: int):
    data, err = _json_body()
    if err:
        return err
    actor_id, _ = current_actor()
    return jsonify(svc.update_part_request(event_id, part_id, data, actor_id=actor_id)), 200


@aog_bp.route("/<int:event_id>/parts/<int:part_id>/advance", methods=["POST"])
def advance_part_request(event_id: int, part_id: int):
    data = request.get_json(silent=True) or {}
    actor_id, _ = current_actor()
    result = svc.advance_part_request(
        event_id, part_id, actor_id=actor_id, to_status=data.get("to_status"),
    )
    return jsonify(result), 200


# ═════════════════════════════════════════════════════════════════════════════
# Attachments
# ═════════════════════════════════════════════════════════════════════════════


@aog_bp.route("/<int:event_id>/attachments", methods=["POST"])
def add_attachment(event_id: int):
    data, err = _json_body()
    if err:
        return err
    actor_id, _ = current_actor()
    return jsonify(svc.add_attachment(event_id, data, actor_id=actor_id)), 201


@aog_bp.route("/<int:event_id>/attachments/<int:attachment_id>", methods=["DELETE"])
def remove_attachment(event_id: int, attachment_id: int):
    actor_id, _ = current_actor()
    svc.remove_attachment(event_id, attachment_id, actor_id=actor_id)
    return jsonify({"deleted": True, "id": attachment_id}), 200


# ═════════════════════════════════════════════════════════════════════════════
# Costs & budget
# ═════════════════════════════════════════════════════════════════════════════


@aog_bp.route("/<int:event_id>/costs", methods=["PUT"])
def update_costs(event_id: int):
    """Update one or more cost fields; overwrites are recorded in the cost audit trail."""
    data, err = _json_body()
    if err:
        return err
    values = {f: data[f] for f in COST_FIELDS if f in data}
    if not values:
        return api_error(E.VALIDATION_REQUIRED, f"At least one of {list(COST_FIELDS)} is required")
    actor_id, _ = current_actor()
    result = cost_ledger.update_costs(
        event_id, values,
        actor_id=actor_id, reason=data.get("reason"),
        expected_version=_expected_version(data),
    )
    return jsonify(result), 200


@aog_bp.route("/<int:event_id>/cost-audit", methods=["GET"])
def cost_audit(event_id: int):
    items = cost_ledger.get_cost_audit(event_id)
    return jsonify({"items": items, "total": len(items)}), 200


@aog_bp.route("/<int:event_id>/budget", methods=["PUT"])
def update_budget(event_id: int):
    data, err = _json_body()
    if err:
        return err
    actor_id, _ = current_actor()
    result = None
    if "budget_clause_id" in data or "budget_period" in data:
        result = cost_ledger.update_budget_mapping(
            event_id,
            actor_id=actor_id,
            budget_clause_id=data.get("budget_clause_id"),
            budget_period=data.get("budget_period"),
        )
    if "is_budget_affecting" in data:
        result = cost_ledger.set_budget_affecting(event_id, bool(data["is_budget_affecting"]), actor_id=actor_id)
    if result is None:
        return api_error(
            E.VALIDATION_REQUIRED,
            "One of budget_clause_id, budget_period, is_budget_affecting is required",
        )
    return jsonify(result), 200


@aog_bp.route("/<int:event_id>/generate-actual-spend", methods=["POST"])
def generate_actual_spend(event_id: int):
    data = request.get_json(silent=True) or {}
    actor_id, _ = current_actor()
    spend_id = cost_ledger.generate_actual_spend(
        event_id,
        actor_id=actor_id,
        budget_clause_id=data.get("budget_clause_id"),
        budget_period=data.get("budget_period"),
        notes=data.get("notes"),
    )
    return jsonify({"event_id": event_id, "actual_spend_id": spend_id}), 201

"""
AOG event lifecycle service.

Create / read / update / delete of AOG events plus the records they own:
part requests and attachment metadata. Status changes go through
``workflow``, cost changes through ``cost_ledger``; this module calls both
so the update endpoint can accept a mixed payload.

Every write validates before it mutates: milestone order, cleared-after-
detected and cost rules are checked on the merged (stored + proposed)
values, and a rejected write leaves the event untouched.
"""

from __future__ import annotations

import logging

from aog_tracker.core.exceptions import NotFoundError, ValidationError
from aog_tracker.models.aog import (
    AOG_CATEGORIES,
    ATTACHMENT_TYPES,
    COST_FIELDS,
    INITIAL_STATUS,
    MILESTONE_ORDER,
    PART_REQUEST_TRANSITIONS,
    RESPONSIBLE_PARTIES,
    AOGEvent,
    AttachmentMeta,
    MilestoneHistoryEntry,
    PartRequest,
    validate_part_request_transition,
)
from aog_tracker.services import aircraft_registry, cost_ledger, event_store
from aog_tracker.services.downtime import (
    compute_downtime,
    validate_cleared_after_detected,
    validate_milestone_order,
)
from aog_tracker.utils.helpers import as_utc, parse_datetime, parse_period, utcnow

logger = logging.getLogger(__name__)

_TEXT_FIELDS = ("location", "action_taken")
_BUDGET_FIELDS = ("is_budget_affecting", "budget_clause_id", "budget_period")


def _serialize(event: AOGEvent, include_children: bool = False) -> dict:
    result = event.to_dict(include_children=include_children)
    result["downtime"] = compute_downtime(event).to_dict()
    if include_children:
        result["total_parts_cost"] = cost_ledger.total_parts_cost(event)
    return result


def _validate_choice(data: dict, field: str, choices) -> None:
    value = data.get(field)
    if value is not None and value not in choices:
        raise ValidationError(
            f"{field} must be one of: {sorted(choices)}",
            details={field: value},
        )


def _non_negative(data: dict, field: str, cast):
    value = data.get(field)
    if value is None:
        return None
    try:
        number = cast(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be a number", details={field: value})
    if number < 0:
        raise ValidationError(f"{field} must be ≥ 0", details={field: value})
    return number


def _record_milestones(event: AOGEvent, changed: dict, actor_id: str) -> None:
    now = utcnow()
    for field in MILESTONE_ORDER:
        value = changed.get(field)
        if value is not None:
            event.milestone_history.append(
                MilestoneHistoryEntry(
                    milestone=field,
                    timestamp=value,
                    recorded_at=now,
                    recorded_by=actor_id,
                )
            )


# ═════════════════════════════════════════════════════════════════════════════
# Events
# ═════════════════════════════════════════════════════════════════════════════


def create_event(data: dict, *, actor_id: str) -> dict:
    """Create an AOG event in REPORTED status.

    ``reported_at`` defaults to ``detected_at`` and ``up_and_running_at`` to
    ``cleared_at`` so back-filled historical events decompose correctly.
    """
    aircraft_id = data.get("aircraft_id")
    if aircraft_id is None:
        raise ValidationError("aircraft_id is required", details={"aircraft_id": "required"})
    try:
        aircraft_id = int(aircraft_id)
    except (TypeError, ValueError):
        raise ValidationError("aircraft_id must be an integer", details={"aircraft_id": aircraft_id})
    aircraft_registry.get_aircraft(aircraft_id)

    reason_code = str(data.get("reason_code") or "").strip()
    if not reason_code:
        raise ValidationError("reason_code is required", details={"reason_code": "required"})

    detected_at = parse_datetime(data.get("detected_at"), "detected_at")
    if detected_at is None:
        raise ValidationError("detected_at is required", details={"detected_at": "required"})
    cleared_at = parse_datetime(data.get("cleared_at"), "cleared_at")

    _validate_choice(data, "category", AOG_CATEGORIES)
    _validate_choice(data, "responsible_party", RESPONSIBLE_PARTIES)

    milestones = {f: parse_datetime(data.get(f), f) for f in MILESTONE_ORDER}
    if milestones["reported_at"] is None:
        milestones["reported_at"] = detected_at
    if milestones["up_and_running_at"] is None and cleared_at is not None:
        milestones["up_and_running_at"] = cleared_at

    validate_cleared_after_detected(detected_at, cleared_at)
    validate_milestone_order(milestones)

    costs = {f: cost_ledger.coerce_cost(f, data.get(f)) for f in COST_FIELDS}

    event = AOGEvent(
        aircraft_id=aircraft_id,
        category=data.get("category") or "aog",
        responsible_party=data.get("responsible_party") or "Internal",
        location=(data.get("location") or None),
        reason_code=reason_code,
        action_taken=(data.get("action_taken") or "See defect description"),
        manpower_count=_non_negative(data, "manpower_count", int),
        man_hours=_non_negative(data, "man_hours", float),
        detected_at=detected_at,
        cleared_at=cleared_at,
        current_status=INITIAL_STATUS,
        is_budget_affecting=bool(data.get("is_budget_affecting", False)),
        budget_clause_id=data.get("budget_clause_id") or None,
        budget_period=parse_period(data["budget_period"]) if data.get("budget_period") else None,
        updated_by=actor_id,
        **milestones,
        **costs,
    )
    _record_milestones(event, milestones, actor_id)
    event_store.add(event)

    logger.info(
        "AOG event created",
        extra={"event_id": event.id, "aircraft_id": event.aircraft_id, "actor_id": actor_id},
    )
    return _serialize(event, include_children=True)


def get_event(event_id: int) -> dict:
    return _serialize(event_store.get_event(event_id), include_children=True)


def list_events(flt: event_store.EventFilter | None = None) -> list[dict]:
    return [_serialize(e) for e in event_store.find_events(flt)]


def list_active_events(flt: event_store.EventFilter | None = None) -> list[dict]:
    flt = flt or event_store.EventFilter()
    flt.active = True
    return list_events(flt)


def count_active_events(flt: event_store.EventFilter | None = None) -> int:
    flt = flt or event_store.EventFilter()
    flt.active = True
    return len(event_store.find_events(flt))


def update_event(
    event_id: int,
    data: dict,
    *,
    actor_id: str,
    expected_version: int | None = None,
) -> dict:
    """Partial update of descriptive fields, timestamps, costs and budget mapping.

    ``current_status`` is not writable here; use the transitions endpoint.
    """
    if "current_status" in data or "status" in data:
        raise ValidationError(
            "Status changes must go through the transition operation",
            details={"current_status": "read-only"},
        )

    event = event_store.get_event(event_id)
    event_store.check_version(event, expected_version)

    _validate_choice(data, "category", AOG_CATEGORIES)
    _validate_choice(data, "responsible_party", RESPONSIBLE_PARTIES)
    if "reason_code" in data and not str(data.get("reason_code") or "").strip():
        raise ValidationError("reason_code cannot be empty", details={"reason_code": "required"})

    detected_at = event.detected_at
    if "detected_at" in data:
        detected_at = parse_datetime(data.get("detected_at"), "detected_at")
        if detected_at is None:
            raise ValidationError("detected_at cannot be cleared", details={"detected_at": "required"})
    cleared_at = event.cleared_at
    if "cleared_at" in data:
        cleared_at = parse_datetime(data.get("cleared_at"), "cleared_at")

    proposed = {f: parse_datetime(data.get(f), f) for f in MILESTONE_ORDER if f in data}
    merged = {f: getattr(event, f) for f in MILESTONE_ORDER}
    merged.update(proposed)

    validate_cleared_after_detected(detected_at, cleared_at)
    validate_milestone_order(merged)

    cost_values = {f: data[f] for f in COST_FIELDS if f in data}
    for field, value in cost_values.items():
        cost_ledger.coerce_cost(field, value)
    manpower = _non_negative(data, "manpower_count", int)
    man_hours = _non_negative(data, "man_hours", float)
    budget_period = data.get("budget_period")
    if budget_period:
        budget_period = parse_period(budget_period)

    changed_milestones = {
        f: v for f, v in proposed.items()
        if v is not None and as_utc(getattr(event, f)) != v
    }

    with event_store.unit_of_work():
        for field in ("category", "responsible_party"):
            if data.get(field):
                setattr(event, field, data[field])
        if "reason_code" in data:
            event.reason_code = str(data["reason_code"]).strip()
        for field in _TEXT_FIELDS:
            if field in data:
                setattr(event, field, data[field] or None)
        if not event.action_taken:
            event.action_taken = "See defect description"
        if "manpower_count" in data:
            event.manpower_count = manpower
        if "man_hours" in data:
            event.man_hours = man_hours
        event.detected_at = detected_at
        event.cleared_at = cleared_at
        for field, value in proposed.items():
            setattr(event, field, value)
        _record_milestones(event, changed_milestones, actor_id)
        for field, value in cost_values.items():
            cost_ledger.apply_cost(event, field, value, actor_id=actor_id, reason=data.get("cost_reason"))
        if "is_budget_affecting" in data:
            event.is_budget_affecting = bool(data["is_budget_affecting"])
        if "budget_clause_id" in data:
            event.budget_clause_id = data["budget_clause_id"] or None
        if "budget_period" in data:
            event.budget_period = budget_period or None
        event.updated_by = actor_id

    logger.info(
        "AOG event updated fields=%s",
        ",".join(sorted(data)),
        extra={"event_id": event.id, "aircraft_id": event.aircraft_id, "actor_id": actor_id},
    )
    return _serialize(event, include_children=True)


def delete_event(event_id: int, *, actor_id: str) -> None:
    event = event_store.get_event(event_id)
    aircraft_id = event.aircraft_id
    event_store.delete(event)
    logger.info(
        "AOG event deleted",
        extra={"event_id": event_id, "aircraft_id": aircraft_id, "actor_id": actor_id},
    )


# ═════════════════════════════════════════════════════════════════════════════
# Part requests
# ═════════════════════════════════════════════════════════════════════════════


def _get_part(event: AOGEvent, part_id: int) -> PartRequest:
    for part in event.part_requests:
        if part.id == part_id:
            return part
    raise NotFoundError(resource="PartRequest", resource_id=part_id)


def _part_fields(data: dict, *, partial: bool) -> dict:
    fields = {}
    for name in ("part_number", "part_description"):
        if name in data or not partial:
            value = str(data.get(name) or "").strip()
            if not value:
                raise ValidationError(f"{name} is required", details={name: "required"})
            fields[name] = value
    if "quantity" in data or not partial:
        try:
            quantity = int(data.get("quantity", 1))
        except (TypeError, ValueError):
            raise ValidationError("quantity must be an integer", details={"quantity": data.get("quantity")})
        if quantity < 1:
            raise ValidationError("quantity must be ≥ 1", details={"quantity": quantity})
        fields["quantity"] = quantity
    for name in ("estimated_cost", "actual_cost"):
        if name in data:
            fields[name] = cost_ledger.coerce_cost(name, data.get(name))
    for name in ("vendor", "invoice_ref", "tracking_number"):
        if name in data:
            fields[name] = data.get(name) or None
    for name in ("requested_date", "eta", "received_date", "issued_date"):
        if name in data:
            fields[name] = parse_datetime(data.get(name), name)
    return fields


def add_part_request(event_id: int, data: dict, *, actor_id: str) -> dict:
    event = event_store.get_event(event_id)
    fields = _part_fields(data, partial=False)
    if fields.get("requested_date") is None:
        fields.pop("requested_date", None)
    part = PartRequest(status="REQUESTED", **fields)
    with event_store.unit_of_work():
        event.part_requests.append(part)
        event.updated_by = actor_id
    logger.info(
        "Part request added part=%s", part.part_number,
        extra={"event_id": event.id, "actor_id": actor_id},
    )
    return part.to_dict()


def update_part_request(event_id: int, part_id: int, data: dict, *, actor_id: str) -> dict:
    if "status" in data:
        raise ValidationError(
            "Part request status changes must go through the advance operation",
            details={"status": "read-only"},
        )
    event = event_store.get_event(event_id)
    part = _get_part(event, part_id)
    fields = _part_fields(data, partial=True)
    with event_store.unit_of_work():
        for name, value in fields.items():
            setattr(part, name, value)
        event.updated_by = actor_id
    return part.to_dict()


def advance_part_request(
    event_id: int,
    part_id: int,
    *,
    actor_id: str,
    to_status: str | None = None,
) -> dict:
    """Move a part request one step along REQUESTED → … → ISSUED."""
    event = event_store.get_event(event_id)
    part = _get_part(event, part_id)
    allowed = PART_REQUEST_TRANSITIONS.get(part.status, [])
    if to_status is None:
        if not allowed:
            raise ValidationError(
                f"Part request already {part.status}",
                details={"status": part.status},
            )
        to_status = allowed[0]
    if not validate_part_request_transition(part.status, to_status):
        raise ValidationError(
            f"Invalid part request transition: {part.status} → {to_status}",
            details={"from_status": part.status, "to_status": to_status, "allowed": allowed},
        )
    now = utcnow()
    with event_store.unit_of_work():
        part.status = to_status
        if to_status == "RECEIVED" and part.received_date is None:
            part.received_date = now
        if to_status == "ISSUED" and part.issued_date is None:
            part.issued_date = now
        event.updated_by = actor_id
    return part.to_dict()


# ═════════════════════════════════════════════════════════════════════════════
# Attachment metadata
# ═════════════════════════════════════════════════════════════════════════════


def add_attachment(event_id: int, data: dict, *, actor_id: str) -> dict:
    event = event_store.get_event(event_id)
    storage_key = str(data.get("storage_key") or "").strip()
    filename = str(data.get("filename") or "").strip()
    if not storage_key or not filename:
        raise ValidationError(
            "storage_key and filename are required",
            details={"storage_key": storage_key or "required", "filename": filename or "required"},
        )
    _validate_choice(data, "attachment_type", ATTACHMENT_TYPES)
    attachment = AttachmentMeta(
        storage_key=storage_key,
        filename=filename,
        attachment_type=data.get("attachment_type") or "other",
        uploaded_by=actor_id,
        file_size=_non_negative(data, "file_size", int),
        mime_type=data.get("mime_type") or None,
    )
    with event_store.unit_of_work():
        event.attachments_meta.append(attachment)
        event.updated_by = actor_id
    return attachment.to_dict()


def remove_attachment(event_id: int, attachment_id: int, *, actor_id: str) -> None:
    event = event_store.get_event(event_id)
    attachment = next((a for a in event.attachments_meta if a.id == attachment_id), None)
    if attachment is None:
        raise NotFoundError(resource="AttachmentMeta", resource_id=attachment_id)
    with event_store.unit_of_work():
        event.attachments_meta.remove(attachment)
        event.updated_by = actor_id

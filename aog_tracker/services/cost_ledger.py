"""
Cost & budget ledger for AOG events.

Rules:
    - Cost fields are non-negative numbers.
    - Overwriting a field that already held a different value appends a
      CostAuditEntry (previous → new) before the overwrite.
    - Setting a field that was empty, or writing the same value again,
      leaves no audit row.
    - An actual spend is generated at most once per event: a claim is
      committed before the budget collaborator is called, the booking
      carries the event id as idempotency key, and the link id is stored
      only after the collaborator confirmed the booking.
"""

from __future__ import annotations

import logging
import math

from flask import current_app
from sqlalchemy import select, update

from aog_tracker.core.exceptions import (
    AlreadyLinkedError,
    BudgetServiceError,
    NoCostRecordedError,
    SpendInProgressError,
    ValidationError,
)
from aog_tracker.integrations.budget_gateway import get_budget_gateway
from aog_tracker.models.aog import COST_FIELDS, AOGEvent, CostAuditEntry
from aog_tracker.services import event_store
from aog_tracker.utils.helpers import as_utc, parse_period, utcnow

logger = logging.getLogger(__name__)


def coerce_cost(field: str, value) -> float | None:
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number", details={field: value})
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be a number", details={field: value})
    if math.isnan(number) or math.isinf(number):
        raise ValidationError(f"{field} must be a finite number", details={field: value})
    if number < 0:
        raise ValidationError(f"{field} must be ≥ 0", details={field: value})
    return number


def apply_cost(event: AOGEvent, field: str, value, *, actor_id: str, reason: str | None) -> bool:
    """Set one cost field on ``event`` (no commit). Returns True if it changed."""
    if field not in COST_FIELDS:
        raise ValidationError(
            f"field must be one of: {list(COST_FIELDS)}",
            details={"field": field},
        )
    new_value = coerce_cost(field, value)
    previous = getattr(event, field)
    if previous == new_value:
        return False
    if previous is not None:
        event.cost_audit_trail.append(
            CostAuditEntry(
                field=field,
                previous_value=previous,
                new_value=new_value,
                changed_at=utcnow(),
                changed_by=actor_id,
                reason=reason,
            )
        )
    setattr(event, field, new_value)
    return True


def update_cost(
    event_id: int,
    field: str,
    new_value,
    *,
    actor_id: str,
    reason: str | None = None,
    expected_version: int | None = None,
) -> dict:
    """Update a single cost field with audit."""
    return update_costs(
        event_id, {field: new_value},
        actor_id=actor_id, reason=reason, expected_version=expected_version,
    )


def update_costs(
    event_id: int,
    values: dict,
    *,
    actor_id: str,
    reason: str | None = None,
    expected_version: int | None = None,
) -> dict:
    """Apply several cost fields in one commit. Validation runs before any write."""
    event = event_store.get_event(event_id)
    event_store.check_version(event, expected_version)

    for field, value in values.items():
        if field not in COST_FIELDS:
            raise ValidationError(
                f"field must be one of: {list(COST_FIELDS)}",
                details={"field": field},
            )
        coerce_cost(field, value)

    changed = []
    with event_store.unit_of_work():
        for field, value in values.items():
            if apply_cost(event, field, value, actor_id=actor_id, reason=reason):
                changed.append(field)
        if changed:
            event.updated_by = actor_id

    if changed:
        logger.info(
            "Cost updated fields=%s",
            ",".join(changed),
            extra={"event_id": event.id, "actor_id": actor_id},
        )
    return event.to_dict()


def get_cost_audit(event_id: int) -> list[dict]:
    event = event_store.get_event(event_id)
    return [c.to_dict() for c in event.cost_audit_trail]


def set_budget_affecting(event_id: int, flag: bool, *, actor_id: str) -> dict:
    event = event_store.get_event(event_id)
    with event_store.unit_of_work():
        event.is_budget_affecting = bool(flag)
        event.updated_by = actor_id
    return event.to_dict()


def update_budget_mapping(
    event_id: int,
    *,
    actor_id: str,
    budget_clause_id: str | None = None,
    budget_period: str | None = None,
) -> dict:
    event = event_store.get_event(event_id)
    if budget_period is not None:
        budget_period = parse_period(budget_period)
    with event_store.unit_of_work():
        if budget_clause_id is not None:
            event.budget_clause_id = str(budget_clause_id).strip() or None
        if budget_period is not None:
            event.budget_period = budget_period
        event.updated_by = actor_id
    return event.to_dict()


def total_parts_cost(event: AOGEvent) -> float:
    """Sum of actual costs recorded on the event's part requests."""
    return round(sum((p.actual_cost or 0.0) for p in event.part_requests), 2)


def _claim_spend(event: AOGEvent, actor_id: str) -> None:
    """Commit the generation claim through the version check.

    Two requests claiming together cannot both commit; the loser gets a 409
    before the budget collaborator is called.
    """
    claimed_at = as_utc(event.actual_spend_claimed_at)
    ttl = current_app.config.get("SPEND_CLAIM_TTL_SECONDS", 120)
    if claimed_at is not None and (utcnow() - claimed_at).total_seconds() < ttl:
        raise SpendInProgressError(
            f"Actual spend for AOG event {event.id} is already being generated",
            details={"claimed_at": claimed_at.isoformat()},
        )
    with event_store.unit_of_work():
        event.actual_spend_claimed_at = utcnow()
        event.updated_by = actor_id


def _unlinked(event_id: int):
    # conditional write; concurrent edits to other columns don't abort it
    return (
        update(AOGEvent)
        .where(AOGEvent.id == event_id, AOGEvent.linked_actual_spend_id.is_(None))
        .execution_options(synchronize_session="fetch")
    )


def _release_claim(event_id: int) -> None:
    with event_store.unit_of_work() as session:
        session.execute(
            _unlinked(event_id).values(actual_spend_claimed_at=None, version=AOGEvent.version + 1)
        )


def generate_actual_spend(
    event_id: int,
    *,
    actor_id: str,
    budget_clause_id: str | None = None,
    budget_period: str | None = None,
    notes: str | None = None,
) -> str:
    """Book the event's actual cost against a budget clause. Returns the spend id.

    The claim is committed first, the collaborator is called with the event
    id as idempotency key, and the link is written with a conditional UPDATE
    so a concurrent edit of the event cannot force a second booking.

    Raises:
        AlreadyLinkedError: a spend was already generated for this event.
        SpendInProgressError: another request holds a live claim.
        ValidationError: no clause/period given and none stored on the event.
        NoCostRecordedError: labor + parts + external cost is 0.
        BudgetServiceError: the budget collaborator failed; nothing was linked.
    """
    event = event_store.get_event(event_id)

    if event.linked_actual_spend_id:
        raise AlreadyLinkedError(event.id, event.linked_actual_spend_id)

    clause_id = budget_clause_id or event.budget_clause_id
    period = budget_period or event.budget_period
    if not clause_id or not period:
        raise ValidationError(
            "budget_clause_id and budget_period are required to generate an actual spend",
            details={"budget_clause_id": clause_id, "budget_period": period},
        )
    period = parse_period(period)

    amount = round(event.total_actual_cost, 2)
    if amount <= 0:
        raise NoCostRecordedError(
            "No actual cost recorded on this AOG event",
            details={"total_actual_cost": amount},
        )
    aircraft_id = event.aircraft_id

    _claim_spend(event, actor_id)

    gateway = get_budget_gateway(current_app)
    try:
        with event_store.unit_of_work() as session:
            spend_id = gateway.create_actual_spend(
                amount=amount,
                clause_id=clause_id,
                period=period,
                notes=notes or f"Generated from AOG event {event_id}",
                aircraft_id=aircraft_id,
                created_by=actor_id,
                aog_event_id=event_id,
            )
            result = session.execute(
                _unlinked(event_id).values(
                    linked_actual_spend_id=spend_id,
                    budget_clause_id=clause_id,
                    budget_period=period,
                    is_budget_affecting=True,
                    actual_spend_claimed_at=None,
                    updated_by=actor_id,
                    version=AOGEvent.version + 1,
                )
            )
            if not result.rowcount:
                linked = session.execute(
                    select(AOGEvent.linked_actual_spend_id).where(AOGEvent.id == event_id)
                ).scalar()
                raise AlreadyLinkedError(event_id, linked)
    except BudgetServiceError:
        _release_claim(event_id)
        raise

    logger.info(
        "Actual spend generated id=%s amount=%.2f clause=%s period=%s",
        spend_id, amount, clause_id, period,
        extra={"event_id": event_id, "aircraft_id": aircraft_id, "actor_id": actor_id},
    )
    return spend_id

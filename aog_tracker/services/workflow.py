"""
AOG workflow service — status transitions and status history.

The transition graph lives in ``aog_tracker.models.aog`` as data
(AOG_TRANSITIONS); this module enforces it. A rejected transition leaves the
event untouched; an accepted one updates ``current_status`` and appends
exactly one StatusHistoryEntry in the same commit.
"""

from __future__ import annotations

import logging

from aog_tracker.core.exceptions import (
    InvalidTransitionError,
    MissingBlockingReasonError,
    ValidationError,
)
from aog_tracker.models.aog import (
    AOG_TRANSITIONS,
    BLOCKING_REASONS,
    BLOCKING_STATUSES,
    CLEARING_STATUSES,
    StatusHistoryEntry,
    validate_aog_transition,
)
from aog_tracker.services import event_store
from aog_tracker.utils.helpers import utcnow

logger = logging.getLogger(__name__)

_METADATA_KEYS = ("part_request_id", "finance_ref", "shipping_ref", "ops_run_ref")


def get_allowed_transitions(status: str) -> list[str]:
    return list(AOG_TRANSITIONS.get(status, []))


def requires_blocking_reason(status: str) -> bool:
    return status in BLOCKING_STATUSES


def transition_event(
    event_id: int,
    to_status: str,
    *,
    actor_id: str,
    actor_role: str | None = None,
    notes: str | None = None,
    blocking_reason: str | None = None,
    metadata: dict | None = None,
    expected_version: int | None = None,
) -> dict:
    """Move an event to ``to_status``.

    Raises:
        NotFoundError: unknown event.
        InvalidTransitionError: ``to_status`` is not an allowed successor.
        MissingBlockingReasonError: blocking target without a reason.
        ValidationError: unknown blocking reason or malformed metadata.
        ConcurrentModificationError: ``expected_version`` is stale.
    """
    event = event_store.get_event(event_id)
    event_store.check_version(event, expected_version)

    from_status = event.current_status
    if not validate_aog_transition(from_status, to_status):
        raise InvalidTransitionError(from_status, to_status, get_allowed_transitions(from_status))

    if requires_blocking_reason(to_status):
        if not blocking_reason:
            raise MissingBlockingReasonError(to_status)
        if blocking_reason not in BLOCKING_REASONS:
            raise ValidationError(
                f"blocking_reason must be one of: {sorted(BLOCKING_REASONS)}",
                details={"blocking_reason": blocking_reason},
            )
    else:
        # Reasons only apply while parked in a blocking status
        blocking_reason = None

    metadata = metadata or {}
    unknown = set(metadata) - set(_METADATA_KEYS)
    if unknown:
        raise ValidationError(
            f"Unknown metadata keys: {sorted(unknown)}",
            details={"allowed": list(_METADATA_KEYS)},
        )

    now = utcnow()
    with event_store.unit_of_work():
        event.current_status = to_status
        event.blocking_reason = blocking_reason
        event.updated_by = actor_id
        if to_status in CLEARING_STATUSES and event.cleared_at is None:
            event.cleared_at = now
        event.status_history.append(
            StatusHistoryEntry(
                from_status=from_status,
                to_status=to_status,
                notes=notes,
                blocking_reason=blocking_reason,
                changed_at=now,
                changed_by=actor_id,
                actor_role=actor_role,
                **{k: metadata.get(k) for k in _METADATA_KEYS},
            )
        )

    logger.info(
        "AOG transition %s → %s",
        from_status,
        to_status,
        extra={
            "event_id": event.id,
            "aircraft_id": event.aircraft_id,
            "from_status": from_status,
            "to_status": to_status,
            "actor_id": actor_id,
        },
    )
    return event.to_dict()


def get_status_history(event_id: int) -> list[dict]:
    event = event_store.get_event(event_id)
    return [h.to_dict() for h in event.status_history]

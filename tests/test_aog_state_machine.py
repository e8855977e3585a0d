"""
Exhaustive state-machine transition tests for AOG events.

Covers AOG_TRANSITIONS defined in ``aog_tracker/models/aog.py``:

    REPORTED -> TROUBLESHOOTING -> ISSUE_IDENTIFIED
    ISSUE_IDENTIFIED -> RESOLVED_NO_PARTS | PART_REQUIRED
    PART_REQUIRED -> PROCUREMENT_REQUESTED -> FINANCE_APPROVAL_PENDING
        -> ORDER_PLACED -> IN_TRANSIT -> (AT_PORT -> CUSTOMS_CLEARANCE ->)
        RECEIVED_IN_STORES -> ISSUED_TO_MAINTENANCE -> INSTALLED_AND_TESTED
    INSTALLED_AND_TESTED -> ENGINE_RUN_REQUESTED | BACK_IN_SERVICE
    ENGINE_RUN_REQUESTED -> ENGINE_RUN_COMPLETED -> BACK_IN_SERVICE
    RESOLVED_NO_PARTS -> BACK_IN_SERVICE -> CLOSED (terminal)

Checks:
    - Every VALID edge returns HTTP 200 and appends exactly one history entry.
    - Every INVALID (from, to) pair raises InvalidTransitionError and leaves
      the event unchanged.
    - Blocking statuses require a reason; the reason is cleared on exit.
    - Clearing statuses stamp cleared_at once and make the event inactive.
"""

from datetime import datetime, timedelta, timezone

import pytest

from aog_tracker.core.exceptions import (
    ConcurrentModificationError,
    InvalidTransitionError,
    MissingBlockingReasonError,
    NotFoundError,
    ValidationError,
)
from aog_tracker.models import db
from aog_tracker.models.aog import (
    AOG_STATUSES,
    AOG_TRANSITIONS,
    BLOCKING_STATUSES,
    TERMINAL_STATUSES,
    AOGEvent,
    StatusHistoryEntry,
)
from aog_tracker.services import workflow
from aog_tracker.utils.helpers import as_utc

T0 = datetime(2025, 3, 1, 8, 0, tzinfo=timezone.utc)

BASE = "/api/v1/aog-events"


def _valid_transitions(transitions: dict) -> list[tuple[str, str]]:
    """Return all (from, to) pairs that SHOULD succeed (200)."""
    pairs = []
    for src, targets in transitions.items():
        for tgt in targets:
            pairs.append((src, tgt))
    return pairs


def _invalid_transitions(transitions: dict) -> list[tuple[str, str]]:
    """Return all (from, to) pairs that SHOULD fail (409).

    Self-transitions are invalid since none is listed.
    """
    pairs = []
    for src, valid_targets in transitions.items():
        for candidate in AOG_STATUSES:
            if candidate not in valid_targets:
                pairs.append((src, candidate))
    return pairs


def _payload(to_status: str) -> dict:
    body = {"to_status": to_status, "notes": f"moving to {to_status}"}
    if to_status in BLOCKING_STATUSES:
        body["blocking_reason"] = "Finance"
    return body


class TestAOGTransitions:
    def test_graph_covers_every_status(self):
        assert set(AOG_TRANSITIONS) == set(AOG_STATUSES)
        for targets in AOG_TRANSITIONS.values():
            assert set(targets) <= set(AOG_STATUSES)

    def test_closed_is_the_only_terminal_status(self):
        assert TERMINAL_STATUSES == {"CLOSED"}

    @pytest.mark.parametrize("from_status,to_status", _valid_transitions(AOG_TRANSITIONS))
    def test_valid_transition(self, client, make_event, from_status, to_status):
        """Transition {from_status} -> {to_status} returns 200 and records history."""
        event = make_event(current_status=from_status)

        res = client.post(
            f"{BASE}/{event.id}/transitions",
            json=_payload(to_status),
            headers={"X-Actor-Id": "eng-7", "X-Actor-Role": "engineer"},
        )

        assert res.status_code == 200, res.get_json()
        body = res.get_json()
        assert body["current_status"] == to_status

        history = db.session.query(StatusHistoryEntry).filter_by(event_id=event.id).all()
        assert len(history) == 1
        assert history[0].from_status == from_status
        assert history[0].to_status == to_status
        assert history[0].changed_by == "eng-7"
        assert history[0].actor_role == "engineer"

    @pytest.mark.parametrize("from_status,to_status", _invalid_transitions(AOG_TRANSITIONS))
    def test_invalid_transition_rejected(self, make_event, from_status, to_status):
        """Transition {from_status} -> {to_status} is rejected and nothing changes."""
        event = make_event(current_status=from_status)
        version = event.version

        with pytest.raises(InvalidTransitionError) as exc:
            workflow.transition_event(
                event.id, to_status, actor_id="eng-7", blocking_reason="Finance",
            )

        assert exc.value.details["allowed"] == AOG_TRANSITIONS[from_status]
        db.session.expire_all()
        reloaded = db.session.get(AOGEvent, event.id)
        assert reloaded.current_status == from_status
        assert reloaded.version == version
        assert reloaded.status_history == []

    def test_invalid_transition_over_http_returns_409(self, client, make_event):
        event = make_event(current_status="REPORTED")
        res = client.post(f"{BASE}/{event.id}/transitions", json={"to_status": "CLOSED"})
        assert res.status_code == 409
        body = res.get_json()
        assert body["code"] == "ERR_INVALID_TRANSITION"
        assert body["details"]["allowed"] == ["TROUBLESHOOTING"]

    def test_unknown_status_is_invalid_transition(self, make_event):
        event = make_event()
        with pytest.raises(InvalidTransitionError):
            workflow.transition_event(event.id, "GROUNDED_FOREVER", actor_id="x")

    def test_unknown_event_raises_not_found(self):
        with pytest.raises(NotFoundError):
            workflow.transition_event(9999, "TROUBLESHOOTING", actor_id="x")


class TestBlockingReasons:
    @pytest.mark.parametrize("to_status", sorted(BLOCKING_STATUSES))
    def test_blocking_status_requires_reason(self, make_event, to_status):
        source = next(s for s, targets in AOG_TRANSITIONS.items() if to_status in targets)
        event = make_event(current_status=source)

        with pytest.raises(MissingBlockingReasonError):
            workflow.transition_event(event.id, to_status, actor_id="x")

        db.session.expire_all()
        assert db.session.get(AOGEvent, event.id).current_status == source

    def test_missing_reason_over_http_returns_422(self, client, make_event):
        event = make_event(current_status="PROCUREMENT_REQUESTED")
        res = client.post(f"{BASE}/{event.id}/transitions", json={"to_status": "FINANCE_APPROVAL_PENDING"})
        assert res.status_code == 422
        assert res.get_json()["code"] == "ERR_BLOCKING_REASON_REQUIRED"

    def test_unknown_reason_rejected(self, make_event):
        event = make_event(current_status="ORDER_PLACED")
        with pytest.raises(ValidationError):
            workflow.transition_event(event.id, "IN_TRANSIT", actor_id="x", blocking_reason="Weather")

    def test_reason_stored_then_cleared_on_exit(self, make_event):
        event = make_event(current_status="ORDER_PLACED")

        result = workflow.transition_event(event.id, "IN_TRANSIT", actor_id="x", blocking_reason="Vendor")
        assert result["blocking_reason"] == "Vendor"

        result = workflow.transition_event(event.id, "RECEIVED_IN_STORES", actor_id="x")
        assert result["blocking_reason"] is None

        history = workflow.get_status_history(event.id)
        assert [h["blocking_reason"] for h in history] == ["Vendor", None]

    def test_reason_ignored_for_non_blocking_target(self, make_event):
        event = make_event()
        result = workflow.transition_event(event.id, "TROUBLESHOOTING", actor_id="x", blocking_reason="Ops")
        assert result["blocking_reason"] is None

    def test_blocking_to_blocking_keeps_new_reason(self, make_event):
        event = make_event(current_status="IN_TRANSIT", blocking_reason="Vendor")
        result = workflow.transition_event(event.id, "AT_PORT", actor_id="x", blocking_reason="Port")
        assert result["blocking_reason"] == "Port"


class TestClearingAndHistory:
    def test_back_in_service_stamps_cleared_at(self, make_event):
        event = make_event(current_status="RESOLVED_NO_PARTS")
        result = workflow.transition_event(event.id, "BACK_IN_SERVICE", actor_id="x")

        assert result["cleared_at"] is not None
        assert result["is_active"] is False

    def test_existing_cleared_at_not_overwritten(self, make_event):
        cleared = T0 + timedelta(hours=9)
        event = make_event(current_status="BACK_IN_SERVICE", cleared_at=cleared)

        workflow.transition_event(event.id, "CLOSED", actor_id="x")

        db.session.expire_all()
        assert as_utc(db.session.get(AOGEvent, event.id).cleared_at) == cleared

    def test_closed_accepts_nothing(self, make_event):
        event = make_event(current_status="CLOSED")
        for status in AOG_STATUSES:
            with pytest.raises(InvalidTransitionError):
                workflow.transition_event(event.id, status, actor_id="x")

    def test_full_procurement_path_history_matches_status(self, make_event):
        event = make_event()
        path = [
            ("TROUBLESHOOTING", None),
            ("ISSUE_IDENTIFIED", None),
            ("PART_REQUIRED", None),
            ("PROCUREMENT_REQUESTED", None),
            ("FINANCE_APPROVAL_PENDING", "Finance"),
            ("ORDER_PLACED", None),
            ("IN_TRANSIT", "Vendor"),
            ("AT_PORT", "Port"),
            ("CUSTOMS_CLEARANCE", "Customs"),
            ("RECEIVED_IN_STORES", None),
            ("ISSUED_TO_MAINTENANCE", None),
            ("INSTALLED_AND_TESTED", None),
            ("ENGINE_RUN_REQUESTED", None),
            ("ENGINE_RUN_COMPLETED", None),
            ("BACK_IN_SERVICE", None),
            ("CLOSED", None),
        ]
        for status, reason in path:
            result = workflow.transition_event(
                event.id, status, actor_id="x", blocking_reason=reason,
                metadata={"finance_ref": "FIN-1"} if status == "ORDER_PLACED" else None,
            )
            assert result["current_status"] == status

        history = workflow.get_status_history(event.id)
        assert [h["to_status"] for h in history] == [s for s, _ in path]
        assert history[-1]["to_status"] == result["current_status"]
        # each entry's from_status is the previous entry's to_status
        for prev, cur in zip(history, history[1:]):
            assert cur["from_status"] == prev["to_status"]
        assert history[5]["metadata"]["finance_ref"] == "FIN-1"

    def test_unknown_metadata_key_rejected(self, make_event):
        event = make_event()
        with pytest.raises(ValidationError):
            workflow.transition_event(event.id, "TROUBLESHOOTING", actor_id="x", metadata={"foo": 1})

    def test_legacy_event_transitions_normally(self, make_event):
        event = make_event(reported_at=None, cleared_at=None)
        assert event.is_legacy is True
        result = workflow.transition_event(event.id, "TROUBLESHOOTING", actor_id="x")
        assert result["current_status"] == "TROUBLESHOOTING"

    def test_stale_expected_version_rejected(self, make_event):
        event = make_event()
        with pytest.raises(ConcurrentModificationError):
            workflow.transition_event(event.id, "TROUBLESHOOTING", actor_id="x", expected_version=event.version + 5)

    def test_history_rows_are_append_only(self, make_event):
        event = make_event()
        workflow.transition_event(event.id, "TROUBLESHOOTING", actor_id="x")
        entry = db.session.query(StatusHistoryEntry).filter_by(event_id=event.id).one()
        entry.notes = "rewritten"
        with pytest.raises(RuntimeError):
            db.session.flush()
        db.session.rollback()

"""
Tests: cost ledger, cost audit trail and actual-spend generation.

    - first-time set leaves no audit row
    - overwrite with a different value appends previous → new
    - same value again is a no-op
    - invalid values rejected before any write
    - generate_actual_spend books once and links the spend id
    - gateway failure leaves the event unlinked and releases the claim
    - a concurrent edit during the booking does not cause a second booking
"""

import math
from datetime import timedelta

import pytest
from sqlalchemy import text

from aog_tracker.core.exceptions import (
    AlreadyLinkedError,
    BudgetServiceError,
    ConcurrentModificationError,
    NoCostRecordedError,
    SpendInProgressError,
    ValidationError,
)
from aog_tracker.integrations.budget_gateway import HttpBudgetGateway
from aog_tracker.models import db
from aog_tracker.models.aog import AOGEvent, CostAuditEntry
from aog_tracker.models.budget import ActualSpend
from aog_tracker.services import cost_ledger
from aog_tracker.utils.helpers import utcnow


class _FailingGateway:
    def create_actual_spend(self, **kwargs):
        raise BudgetServiceError("Budget service unreachable")


class _RecordingGateway:
    def __init__(self):
        self.calls = []

    def create_actual_spend(self, **kwargs):
        self.calls.append(kwargs)
        return "SPEND-77"


class TestCostUpdates:
    def test_first_set_creates_no_audit(self, make_event):
        event = make_event()
        result = cost_ledger.update_cost(event.id, "cost_labor", 500, actor_id="fin-1")

        assert result["costs"]["cost_labor"] == 500.0
        assert cost_ledger.get_cost_audit(event.id) == []

    def test_overwrite_appends_audit_entry(self, make_event):
        event = make_event(cost_labor=500.0)
        cost_ledger.update_cost(event.id, "cost_labor", 750, actor_id="fin-1", reason="invoice received")

        audit = cost_ledger.get_cost_audit(event.id)
        assert len(audit) == 1
        assert audit[0]["field"] == "cost_labor"
        assert audit[0]["previous_value"] == 500.0
        assert audit[0]["new_value"] == 750.0
        assert audit[0]["changed_by"] == "fin-1"
        assert audit[0]["reason"] == "invoice received"

    def test_same_value_is_a_no_op(self, make_event):
        event = make_event(cost_parts=1200.0)
        version = event.version
        cost_ledger.update_cost(event.id, "cost_parts", 1200, actor_id="fin-1")

        assert cost_ledger.get_cost_audit(event.id) == []
        db.session.expire_all()
        assert db.session.get(AOGEvent, event.id).version == version

    def test_audit_chain_accumulates(self, make_event):
        event = make_event(estimated_cost_parts=100.0)
        for value in (200, 300, 400):
            cost_ledger.update_cost(event.id, "estimated_cost_parts", value, actor_id="x")

        audit = cost_ledger.get_cost_audit(event.id)
        assert [(a["previous_value"], a["new_value"]) for a in audit] == [
            (100.0, 200.0), (200.0, 300.0), (300.0, 400.0),
        ]

    def test_clearing_a_value_is_audited(self, make_event):
        event = make_event(cost_external=90.0)
        cost_ledger.update_cost(event.id, "cost_external", None, actor_id="x")

        audit = cost_ledger.get_cost_audit(event.id)
        assert audit[0]["previous_value"] == 90.0
        assert audit[0]["new_value"] is None

    @pytest.mark.parametrize("value", [-1, "abc", True, math.inf, math.nan, [1]])
    def test_invalid_values_rejected(self, make_event, value):
        event = make_event(cost_labor=10.0)
        with pytest.raises(ValidationError):
            cost_ledger.update_cost(event.id, "cost_labor", value, actor_id="x")
        assert cost_ledger.get_cost_audit(event.id) == []

    def test_unknown_field_rejected(self, make_event):
        event = make_event()
        with pytest.raises(ValidationError):
            cost_ledger.update_cost(event.id, "cost_catering", 10, actor_id="x")

    def test_batch_validates_before_writing(self, make_event):
        event = make_event(cost_labor=10.0)
        with pytest.raises(ValidationError):
            cost_ledger.update_costs(event.id, {"cost_labor": 20, "cost_parts": -5}, actor_id="x")

        db.session.expire_all()
        assert db.session.get(AOGEvent, event.id).cost_labor == 10.0

    def test_stale_version_rejected(self, make_event):
        event = make_event()
        with pytest.raises(ConcurrentModificationError):
            cost_ledger.update_cost(event.id, "cost_labor", 1, actor_id="x", expected_version=event.version + 1)

    def test_audit_rows_are_append_only(self, make_event):
        event = make_event(cost_labor=1.0)
        cost_ledger.update_cost(event.id, "cost_labor", 2, actor_id="x")
        entry = db.session.query(CostAuditEntry).filter_by(event_id=event.id).one()
        entry.new_value = 3.0
        with pytest.raises(RuntimeError):
            db.session.flush()
        db.session.rollback()


class TestBudgetMapping:
    def test_set_budget_affecting(self, make_event):
        event = make_event()
        result = cost_ledger.set_budget_affecting(event.id, True, actor_id="fin-1")
        assert result["is_budget_affecting"] is True

    def test_update_mapping_validates_period(self, make_event):
        event = make_event()
        with pytest.raises(ValidationError):
            cost_ledger.update_budget_mapping(event.id, actor_id="x", budget_period="2025-13")

    def test_update_mapping(self, make_event):
        event = make_event()
        result = cost_ledger.update_budget_mapping(
            event.id, actor_id="x", budget_clause_id="MRO-AOG", budget_period="2025-03",
        )
        assert result["budget_clause_id"] == "MRO-AOG"
        assert result["budget_period"] == "2025-03"


class TestGenerateActualSpend:
    def test_local_gateway_books_spend_and_links(self, make_event):
        event = make_event(
            cost_labor=1000.0, cost_parts=2500.5, cost_external=0.0,
            budget_clause_id="MRO-AOG", budget_period="2025-03",
        )
        spend_id = cost_ledger.generate_actual_spend(event.id, actor_id="fin-1")

        spend = db.session.get(ActualSpend, int(spend_id))
        assert spend.amount == 3500.5
        assert spend.clause_id == "MRO-AOG"
        assert spend.period == "2025-03"
        assert spend.aircraft_id == event.aircraft_id
        assert spend.notes == f"Generated from AOG event {event.id}"

        db.session.expire_all()
        reloaded = db.session.get(AOGEvent, event.id)
        assert reloaded.linked_actual_spend_id == spend_id
        assert reloaded.is_budget_affecting is True

    def test_explicit_clause_and_period_override_stored(self, app, make_event):
        gateway = _RecordingGateway()
        app.extensions["aog_budget_gateway"] = gateway
        event = make_event(cost_parts=50.0, budget_clause_id="OLD", budget_period="2024-01")

        spend_id = cost_ledger.generate_actual_spend(
            event.id, actor_id="x", budget_clause_id="NEW", budget_period="2025-04", notes="manual",
        )

        assert spend_id == "SPEND-77"
        assert gateway.calls[0]["clause_id"] == "NEW"
        assert gateway.calls[0]["period"] == "2025-04"
        assert gateway.calls[0]["notes"] == "manual"
        assert gateway.calls[0]["amount"] == 50.0

    def test_second_generation_rejected(self, make_event):
        event = make_event(cost_labor=10.0, budget_clause_id="C", budget_period="2025-03")
        cost_ledger.generate_actual_spend(event.id, actor_id="x")

        with pytest.raises(AlreadyLinkedError) as exc:
            cost_ledger.generate_actual_spend(event.id, actor_id="x")
        assert exc.value.code == "ERR_DUPLICATE_SPEND"
        assert db.session.query(ActualSpend).count() == 1

    def test_zero_cost_rejected(self, make_event):
        event = make_event(budget_clause_id="C", budget_period="2025-03")
        with pytest.raises(NoCostRecordedError):
            cost_ledger.generate_actual_spend(event.id, actor_id="x")

    def test_estimates_do_not_count_as_actual_cost(self, make_event):
        event = make_event(estimated_cost_parts=900.0, budget_clause_id="C", budget_period="2025-03")
        with pytest.raises(NoCostRecordedError):
            cost_ledger.generate_actual_spend(event.id, actor_id="x")

    def test_missing_clause_rejected(self, make_event):
        event = make_event(cost_labor=10.0)
        with pytest.raises(ValidationError):
            cost_ledger.generate_actual_spend(event.id, actor_id="x")

    def test_gateway_failure_leaves_event_unlinked(self, app, make_event):
        app.extensions["aog_budget_gateway"] = _FailingGateway()
        event = make_event(cost_labor=10.0, budget_clause_id="C", budget_period="2025-03")

        with pytest.raises(BudgetServiceError):
            cost_ledger.generate_actual_spend(event.id, actor_id="x")

        db.session.expire_all()
        reloaded = db.session.get(AOGEvent, event.id)
        assert reloaded.linked_actual_spend_id is None
        assert reloaded.is_budget_affecting is False


class _BumpingResponse:
    status_code = 201

    def __init__(self, spend_id):
        self._spend_id = spend_id

    def json(self):
        return {"id": self._spend_id}


class _BumpingSession:
    """Budget service double that edits the event while the POST is in flight.

    Dedupes on the Idempotency-Key header the way the budget service does.
    """

    def __init__(self, event_id):
        self.event_id = event_id
        self.posts = []
        self.booked = {}

    def post(self, url, json=None, headers=None, timeout=None):
        self.posts.append({"json": json, "headers": headers})
        db.session.execute(
            text("UPDATE aog_events SET version = version + 1, location = 'OEJN' WHERE id = :id"),
            {"id": self.event_id},
        )
        key = headers["Idempotency-Key"]
        self.booked.setdefault(key, f"sp-{len(self.booked) + 1}")
        return _BumpingResponse(self.booked[key])


class TestActualSpendAtMostOnce:
    def _spend_ready(self, make_event, **overrides):
        fields = {"cost_labor": 500.0, "budget_clause_id": "C", "budget_period": "2025-03"}
        fields.update(overrides)
        return make_event(**fields)

    def test_concurrent_edit_during_booking_books_once(self, app, make_event):
        event = self._spend_ready(make_event)
        fake = _BumpingSession(event.id)
        app.extensions["aog_budget_gateway"] = HttpBudgetGateway("http://budget", session=fake)

        spend_id = cost_ledger.generate_actual_spend(event.id, actor_id="fin-1")
        assert spend_id == "sp-1"

        with pytest.raises(AlreadyLinkedError):
            cost_ledger.generate_actual_spend(event.id, actor_id="fin-1")

        assert len(fake.posts) == 1
        assert fake.posts[0]["headers"]["Idempotency-Key"] == f"aog-event-{event.id}"
        assert fake.posts[0]["json"]["aogEventId"] == event.id
        db.session.expire_all()
        reloaded = db.session.get(AOGEvent, event.id)
        assert reloaded.linked_actual_spend_id == "sp-1"
        assert reloaded.location == "OEJN"
        assert reloaded.actual_spend_claimed_at is None

    def test_live_claim_blocks_second_request(self, app, make_event):
        gateway = _RecordingGateway()
        app.extensions["aog_budget_gateway"] = gateway
        event = self._spend_ready(make_event, actual_spend_claimed_at=utcnow())

        with pytest.raises(SpendInProgressError) as exc:
            cost_ledger.generate_actual_spend(event.id, actor_id="x")
        assert exc.value.http_status == 409
        assert gateway.calls == []

    def test_expired_claim_is_taken_over(self, app, make_event):
        gateway = _RecordingGateway()
        app.extensions["aog_budget_gateway"] = gateway
        stale = utcnow() - timedelta(seconds=app.config["SPEND_CLAIM_TTL_SECONDS"] + 5)
        event = self._spend_ready(make_event, actual_spend_claimed_at=stale)

        assert cost_ledger.generate_actual_spend(event.id, actor_id="x") == "SPEND-77"
        assert gateway.calls[0]["aog_event_id"] == event.id

    def test_claim_released_after_gateway_failure(self, app, make_event):
        app.extensions["aog_budget_gateway"] = _FailingGateway()
        event = self._spend_ready(make_event)

        with pytest.raises(BudgetServiceError):
            cost_ledger.generate_actual_spend(event.id, actor_id="x")

        db.session.expire_all()
        assert db.session.get(AOGEvent, event.id).actual_spend_claimed_at is None

        gateway = _RecordingGateway()
        app.extensions["aog_budget_gateway"] = gateway
        assert cost_ledger.generate_actual_spend(event.id, actor_id="x") == "SPEND-77"

    def test_local_spend_keyed_by_event(self, make_event):
        event = self._spend_ready(make_event)
        spend_id = cost_ledger.generate_actual_spend(event.id, actor_id="x")

        spend = db.session.get(ActualSpend, int(spend_id))
        assert spend.aog_event_id == event.id

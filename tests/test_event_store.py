"""
Tests: event store adapter (filters, optimistic locking, failure translation).
"""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import text
from sqlalchemy.exc import OperationalError

from aog_tracker.core.exceptions import (
    ConcurrentModificationError,
    NotFoundError,
    StoreUnavailableError,
)
from aog_tracker.models import db
from aog_tracker.models.aog import AOGEvent
from aog_tracker.services import event_store
from aog_tracker.services.event_store import EventFilter

T0 = datetime(2025, 3, 1, 8, 0, tzinfo=timezone.utc)


def _operational_error(*args, **kwargs):
    raise OperationalError("SELECT 1", {}, Exception("database is locked"))


class TestFindEvents:
    def test_ordered_newest_first(self, make_event):
        old = make_event(detected_at=T0)
        new = make_event(detected_at=T0 + timedelta(days=2))
        assert [e.id for e in event_store.find_events()] == [new.id, old.id]

    def test_status_and_category(self, make_event):
        make_event(current_status="TROUBLESHOOTING", category="mro")
        make_event(current_status="TROUBLESHOOTING")
        make_event()

        assert len(event_store.find_events(EventFilter(status="TROUBLESHOOTING"))) == 2
        assert len(event_store.find_events(EventFilter(status="TROUBLESHOOTING", category="mro"))) == 1

    def test_active_flag(self, make_event):
        open_ev = make_event()
        back = make_event(current_status="BACK_IN_SERVICE")
        cleared = make_event(current_status="ENGINE_RUN_COMPLETED", cleared_at=T0 + timedelta(hours=3))

        active = event_store.find_events(EventFilter(active=True))
        inactive = event_store.find_events(EventFilter(active=False))
        assert [e.id for e in active] == [open_ev.id]
        assert {e.id for e in inactive} == {back.id, cleared.id}

    def test_aircraft_filter(self, make_event, aircraft):
        make_event()
        assert len(event_store.find_events(EventFilter(aircraft_id=aircraft.id))) == 1
        assert event_store.find_events(EventFilter(aircraft_id=aircraft.id + 100)) == []

    def test_operational_error_becomes_unavailable(self, make_event, monkeypatch):
        make_event()
        monkeypatch.setattr(db.session, "execute", _operational_error)
        with pytest.raises(StoreUnavailableError):
            event_store.find_events()


class TestGetEvent:
    def test_missing(self):
        with pytest.raises(NotFoundError) as exc:
            event_store.get_event(404)
        assert exc.value.http_status == 404

    def test_operational_error_becomes_unavailable(self, monkeypatch):
        monkeypatch.setattr(db.session, "get", _operational_error)
        with pytest.raises(StoreUnavailableError):
            event_store.get_event(1)


class TestUnitOfWork:
    def test_version_bumps_on_commit(self, make_event):
        event = make_event()
        assert event.version == 1
        with event_store.unit_of_work():
            event.location = "OEJN"
        assert event.version == 2

    def test_concurrent_write_detected(self, make_event):
        event = make_event()
        assert event.version == 1

        # another writer committed in between
        db.session.execute(
            text("UPDATE aog_events SET version = version + 1 WHERE id = :id"),
            {"id": event.id},
        )
        event.location = "OEJN"

        with pytest.raises(ConcurrentModificationError):
            with event_store.unit_of_work():
                pass

    def test_check_version(self, make_event):
        event = make_event()
        event_store.check_version(event, None)
        event_store.check_version(event, 1)
        with pytest.raises(ConcurrentModificationError) as exc:
            event_store.check_version(event, 3)
        assert exc.value.details == {"expected_version": 3, "current_version": 1}

    def test_commit_failure_translated(self, make_event, monkeypatch):
        event = make_event()
        monkeypatch.setattr(db.session, "commit", _operational_error)
        with pytest.raises(StoreUnavailableError):
            with event_store.unit_of_work():
                event.location = "OEDF"

    def test_other_errors_roll_back_and_propagate(self, make_event):
        event = make_event()
        with pytest.raises(KeyError):
            with event_store.unit_of_work():
                event.location = "OEDF"
                raise KeyError("boom")

        db.session.expire_all()
        assert db.session.get(AOGEvent, event.id).location is None

"""
Shared pytest fixtures for the AOG Tracker test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - aircraft: Pre-created Aircraft in fleet group "A330"
    - make_event: factory that inserts an AOGEvent directly (bypasses services)
"""

from datetime import datetime, timezone

import pytest

from aog_tracker import create_app
from aog_tracker.models import db as _db
from aog_tracker.models.aircraft import Aircraft
from aog_tracker.models.aog import AOGEvent

T0 = datetime(2025, 3, 1, 8, 0, tzinfo=timezone.utc)


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        app.extensions.pop("aog_budget_gateway", None)
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Convenience fixtures ─────────────────────────────────────────────────


def make_aircraft(registration="HZ-A01", fleet_group="A330", aircraft_type="A330-200"):
    a = Aircraft(registration=registration, fleet_group=fleet_group, aircraft_type=aircraft_type)
    _db.session.add(a)
    _db.session.flush()
    return a


@pytest.fixture()
def aircraft():
    """A committed aircraft in fleet group A330."""
    a = make_aircraft()
    _db.session.commit()
    return a


@pytest.fixture()
def make_event(aircraft):
    """Factory inserting an AOGEvent row with arbitrary state.

    Defaults to an open REPORTED event detected at T0 on the ``aircraft`` fixture.
    """

    def _make(**overrides):
        fields = {
            "aircraft_id": aircraft.id,
            "reason_code": "Hydraulic leak on left main gear",
            "detected_at": T0,
            "reported_at": T0,
            "current_status": "REPORTED",
        }
        fields.update(overrides)
        event = AOGEvent(**fields)
        _db.session.add(event)
        _db.session.commit()
        return event

    return _make

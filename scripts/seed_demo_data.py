#!/usr/bin/env python3
"""
AOG Tracker — Demo Seed.

Creates a small fleet and a spread of AOG events across the last six months:
closed events with full milestones, a legacy back-filled event, and open
events parked in blocking statuses.

Usage:
    python scripts/seed_demo_data.py            # seed into the development DB
    python scripts/seed_demo_data.py --reset    # drop + recreate tables first
"""

import argparse
import sys
from datetime import datetime, timedelta, timezone

sys.path.insert(0, ".")

from aog_tracker import create_app
from aog_tracker.models import db
from aog_tracker.models.aircraft import Aircraft
from aog_tracker.services import aog_service, cost_ledger, workflow

_now = datetime.now(timezone.utc).replace(minute=0, second=0, microsecond=0)
_actor = "seed-script"

FLEET = [
    ("HZ-A01", "A330", "A330-200"),
    ("HZ-A02", "A330", "A330-200"),
    ("HZ-B11", "A320", "A320neo"),
    ("HZ-B12", "A320", "A320neo"),
    ("HZ-G21", "G650", "Gulfstream G650ER"),
]

PROCUREMENT_PATH = [
    ("TROUBLESHOOTING", None),
    ("ISSUE_IDENTIFIED", None),
    ("PART_REQUIRED", None),
    ("PROCUREMENT_REQUESTED", None),
    ("FINANCE_APPROVAL_PENDING", "Finance"),
    ("ORDER_PLACED", None),
    ("IN_TRANSIT", "Vendor"),
    ("RECEIVED_IN_STORES", None),
    ("ISSUED_TO_MAINTENANCE", None),
    ("INSTALLED_AND_TESTED", None),
    ("BACK_IN_SERVICE", None),
]


def _iso(dt):
    return dt.isoformat()


# ═══════════════════════════════════════════════════════════════════════════
# 1. FLEET
# ═══════════════════════════════════════════════════════════════════════════

def seed_fleet():
    """Create the demo aircraft and return {registration: id}."""
    ids = {}
    for registration, group, ac_type in FLEET:
        aircraft = Aircraft.query.filter_by(registration=registration).first()
        if not aircraft:
            aircraft = Aircraft(registration=registration, fleet_group=group, aircraft_type=ac_type)
            db.session.add(aircraft)
            db.session.flush()
        ids[registration] = aircraft.id
    db.session.commit()
    print(f"  ✓ {len(ids)} aircraft")
    return ids


# ═══════════════════════════════════════════════════════════════════════════
# 2. EVENTS
# ═══════════════════════════════════════════════════════════════════════════

def _walk(event_id, path):
    for status, reason in path:
        workflow.transition_event(event_id, status, actor_id=_actor, actor_role="planner",
                                  blocking_reason=reason)


def seed_events(aircraft):
    created = 0
    for months_back in range(6, 0, -1):
        detected = _now - timedelta(days=30 * months_back)
        registration = FLEET[months_back % len(FLEET)][0]
        ev = aog_service.create_event({
            "aircraft_id": aircraft[registration],
            "category": "aog",
            "responsible_party": "OEM" if months_back % 2 else "Internal",
            "location": "OERK" if months_back % 3 else "OEJN",
            "reason_code": "Hydraulic pump failure" if months_back % 2 else "Bleed air leak",
            "detected_at": _iso(detected),
            "procurement_requested_at": _iso(detected + timedelta(hours=6)),
            "available_at_store_at": _iso(detected + timedelta(hours=40)),
            "issued_back_at": _iso(detected + timedelta(hours=44)),
            "installation_complete_at": _iso(detected + timedelta(hours=52)),
            "test_start_at": _iso(detected + timedelta(hours=53)),
            "up_and_running_at": _iso(detected + timedelta(hours=56)),
        }, actor_id=_actor)
        _walk(ev["id"], PROCUREMENT_PATH)
        cost_ledger.update_costs(ev["id"], {
            "cost_labor": 1800 + 150 * months_back,
            "cost_parts": 12000 + 900 * months_back,
        }, actor_id=_actor)
        created += 1

    # Legacy back-filled record: detection and clearance only
    aog_service.create_event({
        "aircraft_id": aircraft["HZ-G21"],
        "category": "unscheduled",
        "reason_code": "Cabin pressure controller fault",
        "detected_at": _iso(_now - timedelta(days=200)),
        "cleared_at": _iso(_now - timedelta(days=198)),
    }, actor_id=_actor)
    created += 1

    # Open events, one waiting on customs
    for registration in ("HZ-B11", "HZ-A02"):
        ev = aog_service.create_event({
            "aircraft_id": aircraft[registration],
            "reason_code": "Brake unit worn beyond limits",
            "location": "OEDF",
            "detected_at": _iso(_now - timedelta(hours=30)),
        }, actor_id=_actor)
        _walk(ev["id"], PROCUREMENT_PATH[:7])
        created += 1
    _walk(ev["id"], [("AT_PORT", "Port"), ("CUSTOMS_CLEARANCE", "Customs")])

    print(f"  ✓ {created} AOG events")


def main():
    parser = argparse.ArgumentParser(description="Seed AOG Tracker demo data")
    parser.add_argument("--reset", action="store_true", help="Drop and recreate all tables first")
    args = parser.parse_args()

    app = create_app()
    with app.app_context():
        if args.reset:
            db.drop_all()
            db.create_all()
            print("  ✓ tables recreated")
        aircraft = seed_fleet()
        seed_events(aircraft)
    print("Done.")


if __name__ == "__main__":
    main()
